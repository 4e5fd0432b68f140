"""Kakao Pay 单次支付 API 适配器

只负责 HTTP 往返与错误分类，不读写数据库：
- 网关返回错误体 -> KakaoPayError（可展示给用户，允许用户重试）
- 超时 / 连接失败 -> KakaoPayUnavailable（结果未知，需通过状态查询对账）
"""

import logging
from typing import Optional

import requests

from app.core.config import settings

logger = logging.getLogger(__name__)

READY_PATH = "/online/v1/payment/ready"
APPROVE_PATH = "/online/v1/payment/approve"
CANCEL_PATH = "/online/v1/payment/cancel"
ORDER_PATH = "/online/v1/payment/order"


class KakaoPayError(Exception):
    """网关明确拒绝了请求"""

    def __init__(self, code, message: str, status: Optional[int] = None):
        super().__init__(message)
        self.code = code
        self.message = message
        self.status = status

    def __str__(self):
        return f"[{self.code}] {self.message}"


class KakaoPayUnavailable(Exception):
    """请求没有得到网关的明确答复"""


class KakaoPayClient:

    def __init__(
        self,
        secret_key: str = None,
        cid: str = None,
        base_url: str = None,
        timeout: float = None,
        session: requests.Session = None,
    ):
        self.secret_key = secret_key if secret_key is not None else settings.KAKAOPAY_SECRET_KEY
        self.cid = cid or settings.KAKAOPAY_CID
        self.base_url = (base_url or settings.KAKAOPAY_BASE_URL).rstrip("/")
        self.timeout = timeout or settings.KAKAOPAY_TIMEOUT
        self.session = session or requests.Session()
        self.session.headers.update({
            "Authorization": f"SECRET_KEY {self.secret_key}",
            "Content-Type": "application/json",
        })

    def _post(self, path: str, payload: dict) -> dict:
        url = f"{self.base_url}{path}"
        try:
            response = self.session.post(url, json=payload, timeout=self.timeout)
        except requests.exceptions.Timeout as e:
            logger.error(f"Kakao Pay 请求超时: {path}")
            raise KakaoPayUnavailable(f"timeout calling {path}") from e
        except requests.exceptions.RequestException as e:
            logger.error(f"Kakao Pay 请求失败: {path}, error: {str(e)}")
            raise KakaoPayUnavailable(str(e)) from e

        try:
            body = response.json()
        except ValueError:
            body = {}

        if response.status_code >= 500 and not body:
            raise KakaoPayUnavailable(f"gateway returned {response.status_code} on {path}")

        if not response.ok:
            code = body.get("error_code", response.status_code)
            message = body.get("error_message") or body.get("msg") or response.reason or "Kakao Pay error"
            logger.error(f"Kakao Pay 拒绝请求: {path}, code={code}, message={message}")
            raise KakaoPayError(code, message, response.status_code)

        return body

    def ready(
        self,
        partner_order_id: str,
        partner_user_id: str,
        item_name: str,
        quantity: int,
        total_amount: int,
        approval_url: str,
        cancel_url: str,
        fail_url: str,
        tax_free_amount: int = 0,
    ) -> dict:
        """支付准备：返回 tid 与各端跳转地址"""
        return self._post(READY_PATH, {
            "cid": self.cid,
            "partner_order_id": partner_order_id,
            "partner_user_id": partner_user_id,
            "item_name": item_name,
            "quantity": quantity,
            "total_amount": total_amount,
            "tax_free_amount": tax_free_amount,
            "approval_url": approval_url,
            "cancel_url": cancel_url,
            "fail_url": fail_url,
        })

    def approve(self, tid: str, partner_order_id: str, partner_user_id: str, pg_token: str) -> dict:
        """支付批准：返回 aid、payment_method_type、amount.total、approved_at"""
        return self._post(APPROVE_PATH, {
            "cid": self.cid,
            "tid": tid,
            "partner_order_id": partner_order_id,
            "partner_user_id": partner_user_id,
            "pg_token": pg_token,
        })

    def cancel(self, tid: str, cancel_amount: int, cancel_tax_free_amount: int = 0) -> dict:
        """支付取消（退款）：返回 canceled_amount / cancel_available_amount"""
        return self._post(CANCEL_PATH, {
            "cid": self.cid,
            "tid": tid,
            "cancel_amount": cancel_amount,
            "cancel_tax_free_amount": cancel_tax_free_amount,
        })

    def order(self, tid: str) -> dict:
        """查询网关侧的交易状态"""
        return self._post(ORDER_PATH, {"cid": self.cid, "tid": tid})
