"""订单 API 路由"""

from fastapi import APIRouter, Depends, HTTPException, Path
import logging

from app.core.dependencies import get_order_service
from app.schemas.base import ErrorResponse
from app.core.security import CurrentUser, get_current_user, require_seller
from app.schemas.order import (
    CreateOrderRequest,
    OrderResponse,
    OrderSchema,
    OrdersResponse,
    UpdateOrderStatusRequest,
)
from app.services.order_service import OrderService

logger = logging.getLogger(__name__)
router = APIRouter(
    prefix="/orders",
    tags=["订单"],
    responses={
        400: {"model": ErrorResponse, "description": "请求参数错误"},
        401: {"description": "未登录"},
        403: {"description": "无权访问"},
        404: {"description": "订单不存在"},
        409: {"model": ErrorResponse, "description": "库存不足或状态冲突"},
        500: {"description": "服务器内部错误"}
    }
)


@router.post(
    "",
    response_model=OrderResponse,
    status_code=201,
    summary="创建订单",
    description="""根据结算草稿创建订单。

    **处理步骤：**
    - 按商品目录重新定价（忽略客户端价格）
    - 配送需要 shipping_address，自提需要门店拥有所选商品
    - 行级锁扣减库存，不足时返回 409 InsufficientStock
    - 冻结订单明细快照，并从购物车移除已下单条目
    """,
)
def create_order(
    request: CreateOrderRequest,
    user: CurrentUser = Depends(get_current_user),
    service: OrderService = Depends(get_order_service),
):
    try:
        order = service.create_order(user, request)
        return {"message": "주문이 생성되었습니다.", "order": OrderSchema.model_validate(order)}
    except HTTPException:
        # 透传 HTTPException
        raise
    except Exception as e:
        logger.error(f"创建订单失败: {str(e)}")
        # 未知异常统一抛 500
        raise HTTPException(status_code=500, detail="서버 내부 오류가 발생했습니다.")


@router.get(
    "",
    response_model=OrdersResponse,
    summary="我的订单列表",
)
def list_orders(
    user: CurrentUser = Depends(get_current_user),
    service: OrderService = Depends(get_order_service),
):
    try:
        orders = [OrderSchema.model_validate(o) for o in service.list_orders(user)]
        return {"count": len(orders), "orders": orders}
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"查询订单列表失败: {str(e)}")
        raise HTTPException(status_code=500, detail="서버 내부 오류가 발생했습니다.")


@router.get(
    "/{order_id}",
    response_model=OrderResponse,
    summary="订单详情",
)
def get_order(
    order_id: int = Path(..., gt=0, description="订单ID"),
    user: CurrentUser = Depends(get_current_user),
    service: OrderService = Depends(get_order_service),
):
    try:
        order = service.get_order(user, order_id)
        return {"message": "주문 조회 성공", "order": OrderSchema.model_validate(order)}
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"查询订单失败: order_id={order_id}, error: {str(e)}")
        raise HTTPException(status_code=500, detail="서버 내부 오류가 발생했습니다.")


@router.patch(
    "/{order_id}/status",
    response_model=OrderResponse,
    summary="更新订单状态（卖家）",
    description="""履约状态只能前进：pending → confirmed → shipping → delivered；
    cancelled 只能从 pending / confirmed 进入，并归还库存。""",
)
def update_order_status(
    body: UpdateOrderStatusRequest,
    order_id: int = Path(..., gt=0, description="订单ID"),
    user: CurrentUser = Depends(require_seller),
    service: OrderService = Depends(get_order_service),
):
    try:
        order = service.update_order_status(user, order_id, body.status)
        return {"message": "주문 상태가 변경되었습니다.", "order": OrderSchema.model_validate(order)}
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"更新订单状态失败: order_id={order_id}, error: {str(e)}")
        raise HTTPException(status_code=500, detail="서버 내부 오류가 발생했습니다.")
