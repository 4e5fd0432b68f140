"""结算客户端（店面侧）

草稿 -> 下单 -> 发起支付 -> 回跳批准 -> 状态 / 退款，全部通过 HTTP API 完成。
下单、发起支付、批准都不会自动重试；网络异常后用 status() 对账。
"""

import logging
import threading
from typing import Dict, List, Optional, Sequence, Tuple

import requests

from app.core.security import ROLE_BUYER
from app.schemas.order import OrderResponse, OrderSchema, OrdersResponse
from app.schemas.payment import (
    PaymentApprovalData,
    PaymentApprovalResponse,
    PaymentReadyResponse,
    PaymentRefundData,
    PaymentRefundResponse,
    PaymentSession,
    PaymentStatusResponse,
    PaymentStatusSnapshot,
)
from app.services.callback_interpreter import interpret_callback
from app.services.order_draft import (
    CartLineSelection,
    FulfillmentChoice,
    OrderDraft,
    build_order_draft,
    to_create_order_payload,
)

logger = logging.getLogger(__name__)

API_PREFIX = "/api/v1"


class ClientError(Exception):
    """客户端异常基类"""


class DuplicateSubmission(ClientError):
    """上一次下单请求尚未返回"""

    def __init__(self):
        super().__init__("주문을 처리하고 있습니다. 잠시만 기다려주세요.")


class NetworkError(ClientError):
    """请求未得到服务端答复，结果未知"""


class ApiError(ClientError):
    """服务端返回了非 2xx 响应"""

    def __init__(self, status: int, code: Optional[str], message: str, errors: Optional[dict] = None):
        super().__init__(message)
        self.status = status
        self.code = code
        self.message = message
        self.errors = errors or {}

    def __str__(self):
        return f"{self.status} {self.code or ''} {self.message}".strip()


class CheckoutClient:

    def __init__(
        self,
        base_url: str,
        user_id: int,
        role: str = ROLE_BUYER,
        session: requests.Session = None,
        timeout: float = 10,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.session = session or requests.Session()
        self.session.headers.update({
            "X-User-Id": str(user_id),
            "X-User-Role": role,
        })
        self._submit_lock = threading.Lock()
        self._in_flight = False
        self._approvals: Dict[Tuple[int, str], PaymentApprovalData] = {}

    def _request(self, method: str, path: str, **kwargs) -> dict:
        url = f"{self.base_url}{API_PREFIX}{path}"
        try:
            response = self.session.request(method, url, timeout=self.timeout, **kwargs)
        except requests.exceptions.RequestException as e:
            logger.error(f"请求失败: {method} {path}, error: {str(e)}")
            raise NetworkError(str(e)) from e

        try:
            body = response.json()
        except ValueError:
            body = {}

        if response.status_code >= 400:
            message = body.get("message") or body.get("detail") or f"HTTP {response.status_code}"
            raise ApiError(response.status_code, body.get("code"), str(message), body.get("errors"))
        return body

    # ==================== 订单 ====================

    def create_order(self, draft: OrderDraft) -> OrderSchema:
        """提交订单；同一时刻只允许一个下单请求"""
        with self._submit_lock:
            if self._in_flight:
                raise DuplicateSubmission()
            self._in_flight = True

        try:
            payload = to_create_order_payload(draft)
            cart_item_ids = [line.cart_item_id for line in draft.lines if line.cart_item_id is not None]
            if cart_item_ids and len(cart_item_ids) == len(draft.lines):
                payload["cart_item_ids"] = cart_item_ids
            body = self._request("POST", "/orders", json=payload)
        finally:
            with self._submit_lock:
                self._in_flight = False

        order = OrderResponse.model_validate(body).order
        logger.info(f"下单成功: order_id={order.id}, total={order.total_amount}")
        return order

    def list_orders(self) -> List[OrderSchema]:
        return OrdersResponse.model_validate(self._request("GET", "/orders")).orders

    # ==================== 支付 ====================

    def ready(self, order_id: int) -> PaymentSession:
        body = self._request("POST", "/payments/kakao/ready", json={"order_id": order_id})
        return PaymentReadyResponse.model_validate(body).data

    def checkout(
        self,
        lines: Sequence[CartLineSelection],
        fulfillment: FulfillmentChoice,
    ) -> Tuple[OrderSchema, PaymentSession]:
        """草稿校验通过后下单并发起支付，返回订单与跳转地址"""
        draft = build_order_draft(lines, fulfillment)
        order = self.create_order(draft)
        return order, self.ready(order.id)

    def approve(self, order_id, pg_token) -> PaymentApprovalData:
        """按 (order_id, pg_token) 缓存批准结果，同一回跳不会发出第二次请求"""
        callback = interpret_callback("success", {"order_id": order_id, "pg_token": pg_token})
        key = (callback.order_id, callback.pg_token)
        if key in self._approvals:
            return self._approvals[key]

        body = self._request(
            "GET",
            "/payments/kakao/success",
            params={"order_id": callback.order_id, "pg_token": callback.pg_token},
        )
        approval = PaymentApprovalResponse.model_validate(body).data
        self._approvals[key] = approval
        return approval

    def status(self, order_id: int) -> PaymentStatusSnapshot:
        body = self._request("GET", f"/payments/kakao/status/{order_id}")
        return PaymentStatusResponse.model_validate(body).data

    def refund(self, order_id: int, cancel_amount: int, idempotency_key: str = None) -> PaymentRefundData:
        headers = {"Idempotency-Key": idempotency_key} if idempotency_key else None
        body = self._request(
            "POST",
            f"/payments/kakao/{order_id}/refund",
            json={"cancel_amount": cancel_amount},
            headers=headers,
        )
        return PaymentRefundResponse.model_validate(body).data
