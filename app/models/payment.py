import enum

from sqlalchemy import (
    Column,
    BigInteger,
    String,
    Integer,
    TIMESTAMP,
    Enum,
    ForeignKey,
    CheckConstraint,
    func,
)
from sqlalchemy.orm import relationship

from app.db.base import Base, BigIntPK


class PaymentMethod(str, enum.Enum):
    CARD = "CARD"     # 信用卡/借记卡
    MONEY = "MONEY"   # 카카오머니


# 1️ 支付批准记录：永久的付款凭证，创建后不可变

class PaymentApproval(Base):
    __tablename__ = "payment_approvals"

    id = Column(
        BigIntPK,
        primary_key=True,
        autoincrement=True,
    )

    # 每个订单最多一条批准记录
    order_id = Column(
        BigInteger,
        ForeignKey("orders.id", ondelete="RESTRICT"),
        nullable=False,
        unique=True,
    )

    tid = Column(String(64), nullable=False, unique=True, comment="网关交易ID")
    aid = Column(String(64), nullable=False, comment="网关批准ID")

    total_amount = Column(Integer, nullable=False)

    payment_method = Column(
        Enum(PaymentMethod, name="payment_method", values_callable=lambda e: [m.value for m in e]),
        nullable=False,
    )

    approved_at = Column(TIMESTAMP(timezone=True), nullable=False)

    created_at = Column(
        TIMESTAMP(timezone=True),
        server_default=func.now(),
        nullable=False,
    )

    order = relationship("Order", back_populates="approval")

    __table_args__ = (
        CheckConstraint("total_amount >= 0", name="ck_approval_total_non_negative"),
    )


# 2️ 退款记录：remaining_amount = 批准金额 - 累计退款

class RefundRecord(Base):
    __tablename__ = "payment_refunds"

    id = Column(
        BigIntPK,
        primary_key=True,
        autoincrement=True,
    )

    order_id = Column(
        BigInteger,
        ForeignKey("orders.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )

    tid = Column(String(64), nullable=False, index=True)

    canceled_amount = Column(Integer, nullable=False)
    remaining_amount = Column(Integer, nullable=False)

    canceled_at = Column(TIMESTAMP(timezone=True), nullable=False)

    operator = Column(String(64), nullable=True, comment="发起退款的卖家")

    order = relationship("Order", back_populates="refunds")

    __table_args__ = (
        CheckConstraint("canceled_amount > 0", name="ck_refund_amount_positive"),
        CheckConstraint("remaining_amount >= 0", name="ck_refund_remaining_non_negative"),
    )
