"""结算/支付领域异常

所有业务异常都继承自 HTTPException，路由层可以原样透传，
全局异常处理器统一渲染为 {success, message, code, errors?, links?}。
"""

from typing import Dict, Optional

from fastapi import HTTPException


class CheckoutError(HTTPException):
    """结算流程异常基类"""

    status_code = 400
    code = "CHECKOUT_ERROR"
    default_message = "요청을 처리할 수 없습니다."

    def __init__(
        self,
        message: Optional[str] = None,
        *,
        errors: Optional[Dict[str, str]] = None,
        links: Optional[Dict[str, str]] = None,
    ):
        super().__init__(status_code=self.status_code, detail=message or self.default_message)
        self.message = message or self.default_message
        self.errors = errors or {}
        self.links = links or {}

    def to_dict(self) -> dict:
        body = {"success": False, "message": self.message, "code": self.code}
        if self.errors:
            body["errors"] = self.errors
        if self.links:
            body["links"] = self.links
        return body


# ==================== 输入校验（本地可恢复，不发送到服务端） ====================

class DraftValidationError(CheckoutError):
    """订单草稿校验失败（字段级错误表）"""
    code = "DraftValidationError"
    default_message = "입력값을 확인해주세요."


class EmptyCart(DraftValidationError):
    code = "EmptyCart"
    default_message = "장바구니가 비어있습니다."


class MissingShippingField(DraftValidationError):
    code = "MissingShippingField"
    default_message = "배송지 정보를 확인해주세요."


class UnresolvedPickupStore(DraftValidationError):
    code = "UnresolvedPickupStore"
    default_message = "픽업 가능한 매장 정보를 찾을 수 없습니다."


class InvalidCallbackParameters(CheckoutError):
    code = "InvalidCallbackParameters"
    default_message = "결제 콜백 파라미터가 올바르지 않습니다."


# ==================== 前置条件违反（不发起任何网络调用） ====================

class OrderNotFound(CheckoutError):
    status_code = 404
    code = "OrderNotFound"
    default_message = "주문을 찾을 수 없습니다."


class OrderAccessDenied(CheckoutError):
    status_code = 403
    code = "OrderAccessDenied"
    default_message = "접근 권한이 없습니다."


class InvalidStatusTransition(CheckoutError):
    status_code = 409
    code = "InvalidStatusTransition"
    default_message = "변경할 수 없는 주문 상태입니다."


class PaymentNotPayable(CheckoutError):
    status_code = 409
    code = "PaymentNotPayable"
    default_message = "결제를 진행할 수 없는 주문입니다."


class PaymentSessionExpired(CheckoutError):
    status_code = 410
    code = "PaymentSessionExpired"
    default_message = "결제 세션이 만료되었습니다. 다시 결제해주세요."


class PaymentInProgress(CheckoutError):
    status_code = 429
    code = "PaymentInProgress"
    default_message = "결제 처리 중입니다. 잠시 후 결제 상태를 확인해주세요."


class RefundNotAllowed(CheckoutError):
    code = "RefundNotAllowed"
    default_message = "환불할 수 있는 결제가 아닙니다."


class RefundExceedsRemaining(CheckoutError):
    code = "RefundExceedsRemaining"
    default_message = "환불 가능 금액을 초과했습니다."


# ==================== 远端拒绝（原样展示，可由用户重试） ====================

class InsufficientStock(CheckoutError):
    status_code = 409
    code = "InsufficientStock"
    default_message = "재고가 부족합니다."


class PaymentInitiationFailed(CheckoutError):
    status_code = 502
    code = "PaymentInitiationFailed"
    default_message = "결제 준비에 실패했습니다. 다시 시도해주세요."


class PaymentApprovalFailed(CheckoutError):
    code = "PaymentApprovalFailed"
    default_message = "결제 승인에 실패했습니다."


class RefundFailed(CheckoutError):
    status_code = 502
    code = "RefundFailed"
    default_message = "환불 처리에 실패했습니다."


# ==================== 网络/传输失败 ====================

class PaymentGatewayUnavailable(CheckoutError):
    status_code = 504
    code = "PaymentGatewayUnavailable"
    default_message = "네트워크 연결을 확인해주세요. 결제 상태를 다시 조회해주세요."
