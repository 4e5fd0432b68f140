"""Kakao Pay 回跳参数解析

网关回跳的查询参数先在这里校验，格式不合法的成功回调不会进入批准流程。
"""

import logging
from typing import Mapping, Optional, Union

from pydantic import ValidationError

from app.core.config import settings
from app.core.exceptions import InvalidCallbackParameters
from app.schemas.payment import CallbackOutcome, CancelCallback, FailCallback, SuccessCallback

logger = logging.getLogger(__name__)

DEFAULT_FAIL_MESSAGE = "결제가 완료되지 않았습니다."
CANCEL_MESSAGE = "결제가 취소되었습니다."

CALLBACK_MODELS = {
    "success": SuccessCallback,
    "fail": FailCallback,
    "cancel": CancelCallback,
}

Callback = Union[SuccessCallback, FailCallback, CancelCallback]


def retry_payment_url(order_id: int) -> str:
    return f"{settings.FRONTEND_BASE_URL.rstrip('/')}/payment/{order_id}"


def order_history_url() -> str:
    return f"{settings.FRONTEND_BASE_URL.rstrip('/')}/orders"


def callback_links(order_id: Optional[int]) -> dict:
    links = {"order_history_url": order_history_url()}
    if order_id is not None:
        links["retry_payment_url"] = retry_payment_url(order_id)
    return links


def _parse_order_id(raw) -> Optional[int]:
    try:
        value = int(str(raw))
    except (TypeError, ValueError):
        return None
    return value if value > 0 else None


def interpret_callback(kind: str, params: Mapping[str, str]) -> Callback:
    """把回跳查询参数解析为对应的回调模型，失败时抛 InvalidCallbackParameters"""
    model = CALLBACK_MODELS.get(kind)
    if model is None:
        raise ValueError(f"unknown callback kind: {kind}")

    try:
        return model.model_validate(dict(params))
    except ValidationError as e:
        errors = {
            ".".join(str(part) for part in err["loc"]) or kind: err["msg"]
            for err in e.errors()
        }
        logger.warning(f"回调参数不合法: kind={kind}, errors={errors}")
        raise InvalidCallbackParameters(
            errors=errors,
            links=callback_links(_parse_order_id(params.get("order_id"))),
        )


def describe_outcome(callback: Union[FailCallback, CancelCallback]) -> CallbackOutcome:
    """失败/取消回调页展示的数据"""
    if isinstance(callback, FailCallback):
        outcome = "fail"
        message = (callback.error_msg or "").strip() or DEFAULT_FAIL_MESSAGE
    else:
        outcome = "cancel"
        message = CANCEL_MESSAGE

    return CallbackOutcome(
        order_id=callback.order_id,
        outcome=outcome,
        message=message,
        retry_payment_url=retry_payment_url(callback.order_id),
        order_history_url=order_history_url(),
    )
