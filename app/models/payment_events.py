import enum

from sqlalchemy import (
    Column,
    BigInteger,
    String,
    Integer,
    Text,
    TIMESTAMP,
    Enum,
    Index,
    func,
)
from app.db.base import Base, BigIntPK

# 1定义支付事件类型
class PaymentEventType(str, enum.Enum):
    READY = "READY"        # 发起支付（获得 tid）
    APPROVE = "APPROVE"    # 批准成功
    REJECT = "REJECT"      # 批准被网关拒绝
    FAIL = "FAIL"          # 失败回调
    CANCEL = "CANCEL"      # 用户取消
    REFUND = "REFUND"      # 退款（部分或全额）
    EXPIRE = "EXPIRE"      # 会话过期清理
# 2️支付事件审计表
class PaymentEvent(Base):
    __tablename__ = "payment_events"

    id = Column(
        BigIntPK,
        primary_key=True,
        autoincrement=True,
    )

    order_id = Column(
        BigInteger,
        nullable=False,
        index=True,
        comment="订单ID",
    )

    event_type = Column(
        Enum(
            PaymentEventType,
            name="payment_event_type",
        ),
        nullable=False,
        comment="支付事件类型",
    )

    tid = Column(
        String(64),
        nullable=True,
        comment="网关交易ID（发起前为空）",
    )

    amount = Column(
        Integer,
        nullable=True,
        comment="涉及金额",
    )

    before_status = Column(String(16), nullable=True)
    after_status = Column(String(16), nullable=True)

    detail = Column(
        Text,
        nullable=True,
        comment="网关错误信息等",
    )

    operator = Column(
        String(64),
        nullable=True,
        comment="操作人：user:<id> / seller:<id> / system",
    )

    created_at = Column(
        TIMESTAMP(timezone=True),
        server_default=func.now(),
        nullable=False,
    )

# 3️组合索引（按订单查时间线）


Index(
    "idx_payment_events_order_created",
    PaymentEvent.order_id,
    PaymentEvent.created_at,
)
