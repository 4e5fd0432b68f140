"""Kakao Pay 支付相关的 Pydantic 模型（请求、响应、回调参数）"""

from datetime import datetime
from typing import Annotated, Optional

from pydantic import BaseModel, Field, StringConstraints

from app.models.order import OrderStatus, PaymentStatus
from app.models.payment import PaymentMethod

NonEmptyStr = Annotated[str, StringConstraints(strip_whitespace=True, min_length=1)]


# ==================== 请求模型 ====================

class PaymentReadyRequest(BaseModel):
    """发起 Kakao Pay 支付"""
    order_id: int = Field(..., gt=0, description="订单ID", examples=[42])


class PaymentRefundRequest(BaseModel):
    """退款请求（部分或全额）"""
    cancel_amount: int = Field(..., gt=0, description="退款金额（韩元）", examples=[300000])


# ==================== 网关回调参数 ====================

class SuccessCallback(BaseModel):
    """/success?order_id=123&pg_token=abc"""
    order_id: int = Field(..., gt=0)
    pg_token: NonEmptyStr


class FailCallback(BaseModel):
    """/fail?order_id=123&error_msg=..."""
    order_id: int = Field(..., gt=0)
    error_msg: Optional[str] = None


class CancelCallback(BaseModel):
    """/cancel?order_id=123"""
    order_id: int = Field(..., gt=0)


# ==================== 响应模型 ====================

class PaymentReadyData(BaseModel):
    tid: NonEmptyStr
    next_redirect_pc_url: NonEmptyStr
    next_redirect_mobile_url: NonEmptyStr
    next_redirect_app_url: NonEmptyStr
    android_app_scheme: str = ""
    ios_app_scheme: str = ""


class PaymentSession(PaymentReadyData):
    """ready 到回调之间的支付会话，只缓存在 Redis（带 TTL）"""
    order_id: int = Field(..., gt=0)
    created_at: datetime


class PaymentReadyResponse(BaseModel):
    message: str
    data: PaymentSession


class PaymentApprovalData(BaseModel):
    order_id: int = Field(..., gt=0)
    aid: NonEmptyStr
    tid: NonEmptyStr
    total_amount: int = Field(..., ge=0)
    payment_method: PaymentMethod
    approved_at: datetime


class PaymentApprovalResponse(BaseModel):
    message: str
    data: PaymentApprovalData


class PaymentStatusSnapshot(BaseModel):
    """支付状态只读投影（对账用，不会触发批准）"""
    order_id: int = Field(..., gt=0)
    order_status: Optional[OrderStatus] = None
    payment_status: PaymentStatus
    payment_provider: Optional[str] = None
    payment_tid: Optional[str] = None
    payment_aid: Optional[str] = None
    payment_method: Optional[PaymentMethod] = None
    payment_approved_at: Optional[datetime] = None
    total_amount: int = Field(..., ge=0)
    refunded_amount: int = Field(0, ge=0)
    remaining_amount: int = Field(0, ge=0)


class PaymentStatusResponse(BaseModel):
    message: str
    data: PaymentStatusSnapshot


class PaymentRefundData(BaseModel):
    order_id: int = Field(..., gt=0)
    tid: NonEmptyStr
    canceled_amount: int = Field(..., ge=0)
    remaining_amount: int = Field(..., ge=0)
    canceled_at: datetime


class PaymentRefundResponse(BaseModel):
    message: str
    data: PaymentRefundData


class CallbackOutcome(BaseModel):
    """失败/取消回调页的数据：始终给出订单号以及重试、订单历史入口"""
    order_id: Optional[int] = None
    outcome: str
    message: str
    retry_payment_url: Optional[str] = None
    order_history_url: str


class CallbackOutcomeResponse(BaseModel):
    message: str
    data: CallbackOutcome
