"""Kakao Pay 支付 API 路由"""

from fastapi import APIRouter, Depends, Header, HTTPException, Path, Request
from typing import Optional
import logging

from app.core.dependencies import get_payment_service
from app.schemas.base import ErrorResponse
from app.core.security import CurrentUser, get_current_user, require_seller
from app.schemas.payment import (
    CallbackOutcomeResponse,
    PaymentApprovalData,
    PaymentApprovalResponse,
    PaymentReadyRequest,
    PaymentReadyResponse,
    PaymentRefundRequest,
    PaymentRefundResponse,
    PaymentStatusResponse,
)
from app.services.callback_interpreter import describe_outcome, interpret_callback
from app.services.payment_service import PaymentService

logger = logging.getLogger(__name__)
router = APIRouter(
    prefix="/payments/kakao",
    tags=["Kakao Pay 支付"],
    responses={
        400: {"model": ErrorResponse, "description": "请求参数错误或网关拒绝"},
        401: {"description": "未登录"},
        403: {"description": "无权访问"},
        404: {"description": "订单不存在"},
        409: {"description": "订单当前不可支付"},
        410: {"description": "支付会话已过期"},
        429: {"description": "同一订单正在处理"},
        502: {"description": "网关拒绝"},
        504: {"model": ErrorResponse, "description": "网关不可达，请查询支付状态"},
    }
)

INTERNAL_ERROR = "서버 내부 오류가 발생했습니다."


@router.post(
    "/ready",
    response_model=PaymentReadyResponse,
    summary="发起支付",
    description="""向 Kakao Pay 申请支付，返回 tid 与各端跳转地址。

    **注意：**
    - 只有 pending / failed 的订单可以发起支付
    - 再次发起会作废上一次的 tid
    - 失败时订单保持原状，可以直接重试
    """,
)
def ready(
    body: PaymentReadyRequest,
    user: CurrentUser = Depends(get_current_user),
    service: PaymentService = Depends(get_payment_service),
):
    try:
        session = service.ready(user, body.order_id)
        return {"message": "결제 준비가 완료되었습니다.", "data": session}
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"发起支付失败: order_id={body.order_id}, error: {str(e)}")
        raise HTTPException(status_code=500, detail=INTERNAL_ERROR)


@router.get(
    "/success",
    response_model=PaymentApprovalResponse,
    summary="支付成功回跳（批准）",
    description="""Kakao Pay 回跳 `?order_id=&pg_token=`，服务端完成批准。

    同一订单重复回跳会返回已有的批准结果，不会重复扣款。
    网络超时（504）后请通过状态查询接口确认结果，不要重复批准。
    """,
)
def success(
    request: Request,
    user: CurrentUser = Depends(get_current_user),
    service: PaymentService = Depends(get_payment_service),
):
    callback = interpret_callback("success", request.query_params)
    try:
        approval = service.approve(user, callback)
        return {
            "message": "결제가 완료되었습니다.",
            "data": PaymentApprovalData.model_validate(approval, from_attributes=True),
        }
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"支付批准失败: order_id={callback.order_id}, error: {str(e)}")
        raise HTTPException(status_code=500, detail=INTERNAL_ERROR)


@router.get(
    "/fail",
    response_model=CallbackOutcomeResponse,
    summary="支付失败回跳",
)
def fail(
    request: Request,
    user: CurrentUser = Depends(get_current_user),
    service: PaymentService = Depends(get_payment_service),
):
    callback = interpret_callback("fail", request.query_params)
    try:
        service.record_failure(user, callback)
        outcome = describe_outcome(callback)
        return {"message": outcome.message, "data": outcome}
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"处理失败回跳出错: order_id={callback.order_id}, error: {str(e)}")
        raise HTTPException(status_code=500, detail=INTERNAL_ERROR)


@router.get(
    "/cancel",
    response_model=CallbackOutcomeResponse,
    summary="支付取消回跳",
)
def cancel(
    request: Request,
    user: CurrentUser = Depends(get_current_user),
    service: PaymentService = Depends(get_payment_service),
):
    callback = interpret_callback("cancel", request.query_params)
    try:
        service.record_cancel(user, callback)
        outcome = describe_outcome(callback)
        return {"message": outcome.message, "data": outcome}
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"处理取消回跳出错: order_id={callback.order_id}, error: {str(e)}")
        raise HTTPException(status_code=500, detail=INTERNAL_ERROR)


@router.get(
    "/status/{order_id}",
    response_model=PaymentStatusResponse,
    summary="查询支付状态",
    description="只读查询，用于网络异常后的对账；不会触发批准。",
)
def status(
    order_id: int = Path(..., gt=0, description="订单ID"),
    user: CurrentUser = Depends(get_current_user),
    service: PaymentService = Depends(get_payment_service),
):
    try:
        snapshot = service.status(user, order_id)
        return {"message": "결제 상태 조회 성공", "data": snapshot}
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"查询支付状态失败: order_id={order_id}, error: {str(e)}")
        raise HTTPException(status_code=500, detail=INTERNAL_ERROR)


@router.post(
    "/{order_id}/refund",
    response_model=PaymentRefundResponse,
    summary="退款（卖家）",
    description="""部分或全额退款，累计退款不超过批准金额。

    可携带 `Idempotency-Key` 请求头，重复请求直接返回第一次的结果。
    """,
)
def refund(
    body: PaymentRefundRequest,
    order_id: int = Path(..., gt=0, description="订单ID"),
    idempotency_key: Optional[str] = Header(None, alias="Idempotency-Key", max_length=64),
    user: CurrentUser = Depends(require_seller),
    service: PaymentService = Depends(get_payment_service),
):
    try:
        result = service.refund(user, order_id, body.cancel_amount, idempotency_key=idempotency_key)
        return {"message": "환불이 완료되었습니다.", "data": result}
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"退款失败: order_id={order_id}, error: {str(e)}")
        raise HTTPException(status_code=500, detail=INTERNAL_ERROR)
