"""支付服务实现（Kakao Pay）

流程：ready（获得 tid，缓存支付会话） -> 网关跳转 -> 回跳 success/fail/cancel
-> approve（按 tid 幂等） -> 状态查询 / 退款。
同一订单的批准与退款通过 Redlock 串行化，数据库行锁兜底。
"""

import logging
import time
from datetime import datetime, timedelta, timezone
from typing import Optional

from pydantic import ValidationError
from redis import Redis, RedisError
from redlock import Redlock
from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, selectinload

from app.core.config import settings
from app.core.exceptions import (
    OrderAccessDenied,
    OrderNotFound,
    PaymentApprovalFailed,
    PaymentGatewayUnavailable,
    PaymentInitiationFailed,
    PaymentInProgress,
    PaymentNotPayable,
    PaymentSessionExpired,
    RefundExceedsRemaining,
    RefundFailed,
    RefundNotAllowed,
)
from app.core.security import CurrentUser
from app.models.idempotency_keys import IdempotencyKey, IdempotencyStatus
from app.models.order import Order, OrderStatus, PaymentStatus
from app.models.payment import PaymentApproval, PaymentMethod, RefundRecord
from app.models.payment_events import PaymentEvent, PaymentEventType
from app.schemas.payment import (
    CancelCallback,
    FailCallback,
    PaymentRefundData,
    PaymentSession,
    PaymentStatusSnapshot,
    SuccessCallback,
)
from app.services.kakaopay_client import KakaoPayClient, KakaoPayError, KakaoPayUnavailable
from app.utils.formatting import format_won

logger = logging.getLogger(__name__)

PROVIDER = "kakaopay"
LOCK_TTL_MS = 10000
LOCK_POLL_INTERVAL = 0.2  # 秒
LOCK_WAIT_ATTEMPTS = int(LOCK_TTL_MS / 1000 / LOCK_POLL_INTERVAL)
IDEMPOTENCY_TTL = timedelta(hours=24)
KST = timezone(timedelta(hours=9))


def session_key(order_id: int) -> str:
    return f"payment:session:{order_id}"


def lock_key(order_id: int) -> str:
    return f"lock:payment:{order_id}"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _parse_gateway_time(value) -> datetime:
    """Kakao Pay 返回的时间不带时区（KST）"""
    if not value:
        return _utcnow()
    parsed = datetime.fromisoformat(str(value))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=KST)
    return parsed


def _as_aware(value: Optional[datetime]) -> Optional[datetime]:
    # SQLite 读回的时间是 naive 的，统一按 UTC 处理
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class PaymentService:
    """支付核心服务类"""

    def __init__(
        self,
        db: Session,
        redis: Redis = None,
        rlock: Redlock = None,
        gateway: KakaoPayClient = None,
    ):
        self.db = db
        self.redis = redis
        self.rlock = rlock
        self.gateway = gateway or KakaoPayClient()

    # ==================== 内部工具 ====================

    def _load_order(self, order_id: int, for_update: bool = False) -> Order:
        stmt = select(Order).where(Order.id == order_id).options(selectinload(Order.items))
        if for_update:
            # 加锁读取时刷新身份映射中的旧值
            stmt = stmt.with_for_update().execution_options(populate_existing=True)
        order = self.db.execute(stmt).scalar_one_or_none()
        if order is None:
            raise OrderNotFound()
        return order

    def _load_owned_order(self, user: CurrentUser, order_id: int, allow_seller: bool = False) -> Order:
        order = self._load_order(order_id)
        if order.user_id != user.id and not (allow_seller and user.is_seller):
            raise OrderAccessDenied()
        return order

    def _find_approval(self, order_id: int) -> Optional[PaymentApproval]:
        return self.db.execute(
            select(PaymentApproval).where(PaymentApproval.order_id == order_id)
        ).scalar_one_or_none()

    def _refunded_amount(self, order_id: int) -> int:
        return self.db.execute(
            select(func.coalesce(func.sum(RefundRecord.canceled_amount), 0))
            .where(RefundRecord.order_id == order_id)
        ).scalar_one()

    def _record_event(
        self,
        order: Order,
        event_type: PaymentEventType,
        before: PaymentStatus = None,
        tid: str = None,
        amount: int = None,
        detail: str = None,
        operator: str = None,
    ) -> None:
        self.db.add(PaymentEvent(
            order_id=order.id,
            event_type=event_type,
            tid=tid if tid is not None else order.payment_tid,
            amount=amount,
            before_status=before.value if before else None,
            after_status=order.payment_status.value if order.payment_status else None,
            detail=detail,
            operator=operator,
        ))

    def _acquire_lock(self, order_id: int, wait: bool = False):
        """wait=True 时轮询到持锁方释放（最长一个锁 TTL）"""
        if not self.rlock:
            return None
        attempts = LOCK_WAIT_ATTEMPTS if wait else 1
        for attempt in range(attempts):
            lock = self.rlock.lock(lock_key(order_id), LOCK_TTL_MS)
            if lock:
                return lock
            if attempt + 1 < attempts:
                time.sleep(LOCK_POLL_INTERVAL)
        raise PaymentInProgress()

    def _release_lock(self, lock) -> None:
        if self.rlock and lock:
            self.rlock.unlock(lock)

    def _cache_session(self, session: PaymentSession) -> None:
        if not self.redis:
            return
        try:
            self.redis.setex(session_key(session.order_id), settings.PAYMENT_SESSION_TTL, session.model_dump_json())
        except RedisError as e:
            logger.warning(f"支付会话缓存写入失败: order_id={session.order_id}, error: {str(e)}")

    def _drop_session(self, order_id: int) -> None:
        if not self.redis:
            return
        try:
            self.redis.delete(session_key(order_id))
        except RedisError as e:
            logger.warning(f"支付会话缓存删除失败: order_id={order_id}, error: {str(e)}")

    def _active_tid(self, order: Order) -> str:
        """当前有效的 tid；会话过期或已被新的 ready 取代时抛 PaymentSessionExpired"""
        if not order.payment_tid:
            raise PaymentSessionExpired()
        if not self.redis:
            return order.payment_tid

        try:
            raw = self.redis.get(session_key(order.id))
        except RedisError as e:
            # 缓存不可用时以数据库中的 tid 和 ready_at 为准
            logger.warning(f"支付会话缓存读取失败，按数据库校验: order_id={order.id}, error: {str(e)}")
            ready_at = _as_aware(order.payment_ready_at)
            if ready_at is None or _utcnow() - ready_at > timedelta(seconds=settings.PAYMENT_SESSION_TTL):
                raise PaymentSessionExpired()
            return order.payment_tid

        if raw is None:
            raise PaymentSessionExpired()
        session = PaymentSession.model_validate_json(raw)
        if session.tid != order.payment_tid:
            raise PaymentSessionExpired()
        return session.tid

    @staticmethod
    def _item_name(order: Order) -> str:
        if not order.items:
            return f"주문 #{order.id}"
        first = order.items[0].product_name_snapshot
        if len(order.items) > 1:
            return f"{first} 외 {len(order.items) - 1}건"
        return first

    # ==================== 发起支付 ====================

    def ready(self, user: CurrentUser, order_id: int) -> PaymentSession:
        """向 Kakao Pay 申请支付，新的 tid 会取代此前未完成的会话"""
        order = self._load_owned_order(user, order_id)

        if order.status == OrderStatus.CANCELLED or order.payment_status not in (
            PaymentStatus.PENDING,
            PaymentStatus.FAILED,
        ):
            raise PaymentNotPayable()

        try:
            response = self.gateway.ready(
                partner_order_id=str(order.id),
                partner_user_id=str(order.user_id),
                item_name=self._item_name(order),
                quantity=sum(item.quantity for item in order.items) or 1,
                total_amount=order.total_amount,
                approval_url=f"{settings.kakaopay_approval_url}?order_id={order.id}",
                cancel_url=f"{settings.kakaopay_cancel_url}?order_id={order.id}",
                fail_url=f"{settings.kakaopay_fail_url}?order_id={order.id}",
            )
        except KakaoPayError as e:
            logger.error(f"发起支付被拒绝: order_id={order.id}, {e}")
            raise PaymentInitiationFailed(e.message)
        except KakaoPayUnavailable as e:
            logger.error(f"发起支付失败（网关不可达）: order_id={order.id}, error: {str(e)}")
            raise PaymentInitiationFailed()

        now = _utcnow()
        try:
            session = PaymentSession(
                order_id=order.id,
                tid=response.get("tid", ""),
                next_redirect_pc_url=response.get("next_redirect_pc_url", ""),
                next_redirect_mobile_url=response.get("next_redirect_mobile_url", ""),
                next_redirect_app_url=response.get("next_redirect_app_url", ""),
                android_app_scheme=response.get("android_app_scheme") or "",
                ios_app_scheme=response.get("ios_app_scheme") or "",
                created_at=now,
            )
        except ValidationError as e:
            logger.error(f"网关返回的支付会话不完整: order_id={order.id}, error: {str(e)}")
            raise PaymentInitiationFailed()

        try:
            before = order.payment_status
            replaced_tid = order.payment_tid
            order.payment_provider = PROVIDER
            order.payment_tid = session.tid
            order.payment_ready_at = now
            order.payment_status = PaymentStatus.PENDING
            self._record_event(
                order,
                PaymentEventType.READY,
                before=before,
                amount=order.total_amount,
                detail=f"replaced tid {replaced_tid}" if replaced_tid else None,
                operator=f"user:{user.id}",
            )
            self.db.commit()
        except Exception as e:
            self.db.rollback()
            logger.error(f"保存支付会话失败: order_id={order.id}, error: {str(e)}")
            raise

        self._cache_session(session)
        logger.info(f"发起支付成功: order_id={order.id}, tid={session.tid}, amount={order.total_amount}")
        return session

    # ==================== 批准 ====================

    def approve(self, user: CurrentUser, callback: SuccessCallback) -> PaymentApproval:
        """批准支付；同一订单已批准时直接返回原记录，不会再次调用网关"""
        order = self._load_owned_order(user, callback.order_id)

        existing = self._find_approval(order.id)
        if existing is not None:
            logger.info(f"支付已批准，返回已有记录: order_id={order.id}, tid={existing.tid}")
            return existing

        # 并发的批准持锁时等待其完成，随后返回它写入的记录
        lock = self._acquire_lock(order.id, wait=True)
        try:
            order = self._load_order(order.id, for_update=True)

            # 拿到锁后再查一次：并发的批准可能刚刚完成
            existing = self._find_approval(order.id)
            if existing is not None:
                return existing

            # 订单在发起支付后被取消：不再向网关批准
            if order.status == OrderStatus.CANCELLED or order.payment_status != PaymentStatus.PENDING:
                raise PaymentNotPayable()

            tid = self._active_tid(order)

            try:
                response = self.gateway.approve(
                    tid=tid,
                    partner_order_id=str(order.id),
                    partner_user_id=str(order.user_id),
                    pg_token=callback.pg_token,
                )
            except KakaoPayError as e:
                before = order.payment_status
                order.payment_status = PaymentStatus.FAILED
                self._record_event(order, PaymentEventType.REJECT, before=before, detail=str(e), operator=f"user:{user.id}")
                self.db.commit()
                self._drop_session(order.id)
                logger.error(f"支付批准被拒绝: order_id={order.id}, tid={tid}, {e}")
                raise PaymentApprovalFailed(e.message)
            except KakaoPayUnavailable as e:
                # 结果未知：不改状态，由状态查询对账
                logger.error(f"支付批准结果未知（网关不可达）: order_id={order.id}, tid={tid}, error: {str(e)}")
                raise PaymentGatewayUnavailable()

            amount = response.get("amount") or {}
            approved_total = amount.get("total", order.total_amount)
            if approved_total != order.total_amount:
                logger.error(
                    f"批准金额与订单金额不一致: order_id={order.id}, "
                    f"order={order.total_amount}, approved={approved_total}"
                )

            method_type = response.get("payment_method_type")
            try:
                method = PaymentMethod(method_type)
            except ValueError:
                logger.warning(f"未知的支付方式: {method_type}, 按 CARD 记录")
                method = PaymentMethod.CARD

            approval = PaymentApproval(
                order_id=order.id,
                tid=response.get("tid") or tid,
                aid=response.get("aid", ""),
                total_amount=approved_total,
                payment_method=method,
                approved_at=_parse_gateway_time(response.get("approved_at")),
            )
            self.db.add(approval)

            before = order.payment_status
            order.payment_status = PaymentStatus.COMPLETED
            self._record_event(order, PaymentEventType.APPROVE, before=before, amount=approved_total, operator=f"user:{user.id}")

            try:
                self.db.commit()
            except IntegrityError:
                # 另一个进程已写入批准记录
                self.db.rollback()
                existing = self._find_approval(order.id)
                if existing is None:
                    raise
                return existing

            self._drop_session(order.id)
            logger.info(f"支付批准成功: order_id={order.id}, tid={approval.tid}, aid={approval.aid}")
            return approval

        except Exception as e:
            self.db.rollback()
            logger.error(f"支付批准失败: order_id={callback.order_id}, error: {str(e)}")
            raise
        finally:
            self._release_lock(lock)

    # ==================== 失败 / 取消回调 ====================

    def record_failure(self, user: CurrentUser, callback: FailCallback) -> Order:
        """网关失败回跳：未批准的支付标记为 failed，用户可重新发起"""
        order = self._load_owned_order(user, callback.order_id)
        try:
            if order.payment_status == PaymentStatus.PENDING:
                order.payment_status = PaymentStatus.FAILED
                self._record_event(
                    order,
                    PaymentEventType.FAIL,
                    before=PaymentStatus.PENDING,
                    detail=callback.error_msg,
                    operator=f"user:{user.id}",
                )
                self.db.commit()
                logger.info(f"支付失败: order_id={order.id}, error_msg={callback.error_msg}")
            else:
                logger.info(f"忽略失败回调: order_id={order.id}, payment_status={order.payment_status.value}")
        except Exception as e:
            self.db.rollback()
            logger.error(f"记录支付失败出错: order_id={order.id}, error: {str(e)}")
            raise

        self._drop_session(order.id)
        return order

    def record_cancel(self, user: CurrentUser, callback: CancelCallback) -> Order:
        """用户在网关页面主动取消：支付状态不变"""
        order = self._load_owned_order(user, callback.order_id)
        try:
            self._record_event(
                order,
                PaymentEventType.CANCEL,
                before=order.payment_status,
                operator=f"user:{user.id}",
            )
            self.db.commit()
        except Exception as e:
            self.db.rollback()
            logger.error(f"记录支付取消出错: order_id={order.id}, error: {str(e)}")
            raise

        self._drop_session(order.id)
        logger.info(f"用户取消支付: order_id={order.id}")
        return order

    # ==================== 状态查询 ====================

    def status(self, user: CurrentUser, order_id: int) -> PaymentStatusSnapshot:
        """只读投影，不会触发批准"""
        order = self._load_owned_order(user, order_id, allow_seller=True)
        approval = self._find_approval(order.id)
        refunded = self._refunded_amount(order.id)
        remaining = max(approval.total_amount - refunded, 0) if approval else 0

        return PaymentStatusSnapshot(
            order_id=order.id,
            order_status=order.status,
            payment_status=order.payment_status,
            payment_provider=order.payment_provider,
            payment_tid=approval.tid if approval else order.payment_tid,
            payment_aid=approval.aid if approval else None,
            payment_method=approval.payment_method if approval else None,
            payment_approved_at=approval.approved_at if approval else None,
            total_amount=order.total_amount,
            refunded_amount=refunded,
            remaining_amount=remaining,
        )

    # ==================== 退款 ====================

    def _claim_idempotency_key(self, key: str) -> Optional[PaymentRefundData]:
        """占用幂等键；已成功的请求直接返回上次结果"""
        record = self.db.get(IdempotencyKey, key)
        if record is not None:
            if record.status == IdempotencyStatus.SUCCESS:
                logger.info(f"幂等重放: key={key}")
                return PaymentRefundData.model_validate(record.response_snapshot)
            if record.status == IdempotencyStatus.PROCESSING:
                raise PaymentInProgress("동일한 환불 요청이 처리 중입니다.")
            record.status = IdempotencyStatus.PROCESSING
            record.response_snapshot = None
        else:
            self.db.add(IdempotencyKey(
                key=key,
                status=IdempotencyStatus.PROCESSING,
                expires_at=_utcnow() + IDEMPOTENCY_TTL,
            ))
        try:
            self.db.commit()
        except IntegrityError:
            self.db.rollback()
            raise PaymentInProgress("동일한 환불 요청이 처리 중입니다.")
        return None

    def _finish_idempotency_key(self, key: Optional[str], status: IdempotencyStatus, snapshot: dict = None) -> None:
        if not key:
            return
        record = self.db.get(IdempotencyKey, key)
        if record is None:
            return
        record.status = status
        record.response_snapshot = snapshot

    def refund(
        self,
        user: CurrentUser,
        order_id: int,
        cancel_amount: int,
        idempotency_key: str = None,
    ) -> PaymentRefundData:
        """卖家发起退款（可部分退款，多次累计不超过批准金额）"""
        if not user.is_seller:
            raise OrderAccessDenied("판매자만 환불할 수 있습니다.")
        if cancel_amount is None or cancel_amount <= 0:
            raise RefundNotAllowed("환불 금액이 유효하지 않습니다.", errors={"cancel_amount": "0보다 커야 합니다."})

        self._load_order(order_id)

        key = f"refund:{order_id}:{idempotency_key}" if idempotency_key else None
        if key:
            replay = self._claim_idempotency_key(key)
            if replay is not None:
                return replay

        lock = None
        try:
            lock = self._acquire_lock(order_id)
            order = self._load_order(order_id, for_update=True)

            approval = self._find_approval(order.id)
            if approval is None or order.payment_status not in (PaymentStatus.COMPLETED,):
                raise RefundNotAllowed()

            remaining = approval.total_amount - self._refunded_amount(order.id)
            if remaining <= 0:
                raise RefundNotAllowed()
            if cancel_amount > remaining:
                raise RefundExceedsRemaining(
                    errors={"cancel_amount": f"환불 가능 금액: {format_won(remaining)}"},
                )

            try:
                response = self.gateway.cancel(tid=approval.tid, cancel_amount=cancel_amount)
            except KakaoPayError as e:
                logger.error(f"退款被网关拒绝: order_id={order.id}, {e}")
                raise RefundFailed(e.message)
            except KakaoPayUnavailable as e:
                logger.error(f"退款结果未知（网关不可达）: order_id={order.id}, error: {str(e)}")
                raise PaymentGatewayUnavailable()

            new_remaining = remaining - cancel_amount
            gateway_remaining = (response.get("cancel_available_amount") or {}).get("total")
            if gateway_remaining is not None and gateway_remaining != new_remaining:
                logger.error(
                    f"退款后剩余金额不一致: order_id={order.id}, "
                    f"local={new_remaining}, gateway={gateway_remaining}"
                )

            canceled_at = _parse_gateway_time(response.get("canceled_at"))
            self.db.add(RefundRecord(
                order_id=order.id,
                tid=approval.tid,
                canceled_amount=cancel_amount,
                remaining_amount=new_remaining,
                canceled_at=canceled_at,
                operator=f"seller:{user.id}",
            ))

            before = order.payment_status
            if new_remaining == 0:
                order.payment_status = PaymentStatus.REFUNDED
            self._record_event(
                order,
                PaymentEventType.REFUND,
                before=before,
                tid=approval.tid,
                amount=cancel_amount,
                operator=f"seller:{user.id}",
            )

            result = PaymentRefundData(
                order_id=order.id,
                tid=approval.tid,
                canceled_amount=cancel_amount,
                remaining_amount=new_remaining,
                canceled_at=canceled_at,
            )
            self._finish_idempotency_key(key, IdempotencyStatus.SUCCESS, result.model_dump(mode="json"))
            self.db.commit()
            logger.info(
                f"退款成功: order_id={order.id}, amount={cancel_amount}, "
                f"remaining={new_remaining}, operator=seller:{user.id}"
            )
            return result

        except Exception as e:
            self.db.rollback()
            if key:
                self._finish_idempotency_key(key, IdempotencyStatus.FAILED)
                self.db.commit()
            logger.error(f"退款失败: order_id={order_id}, error: {str(e)}")
            raise
        finally:
            self._release_lock(lock)

    # ==================== 过期会话清理 ====================

    def expire_stale_sessions(self, batch_size: int = 500, dry_run: bool = False) -> int:
        """作废超过 TTL 仍未批准的 tid，订单保持 pending 可重新发起支付"""
        cutoff = _utcnow() - timedelta(seconds=settings.PAYMENT_SESSION_TTL)
        stale = self.db.execute(
            select(Order)
            .outerjoin(PaymentApproval, PaymentApproval.order_id == Order.id)
            .where(
                Order.payment_status == PaymentStatus.PENDING,
                Order.payment_tid.isnot(None),
                Order.payment_ready_at <= cutoff,
                PaymentApproval.id.is_(None),
            )
            .order_by(Order.payment_ready_at)
            .limit(batch_size)
        ).scalars().all()

        expired = []
        for order in stale:
            # Redis 中会话仍在（例如刚被续期）则跳过
            if self.redis and self.redis.exists(session_key(order.id)):
                continue
            expired.append(order)

        if dry_run:
            logger.info(f"试运行模式：发现 {len(expired)} 个过期支付会话")
            return len(expired)

        try:
            for order in expired:
                old_tid = order.payment_tid
                order.payment_tid = None
                self._record_event(
                    order,
                    PaymentEventType.EXPIRE,
                    before=order.payment_status,
                    tid=old_tid,
                    detail=f"ready_at={_as_aware(order.payment_ready_at).isoformat()}",
                    operator="system",
                )
            self.db.commit()
        except Exception as e:
            self.db.rollback()
            logger.error(f"清理过期支付会话失败: {str(e)}")
            raise

        if expired:
            logger.info(f"清理过期支付会话: {len(expired)} 条")
        return len(expired)
