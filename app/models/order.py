import enum

from sqlalchemy import (
    Column,
    BigInteger,
    String,
    Integer,
    Text,
    TIMESTAMP,
    Enum,
    ForeignKey,
    CheckConstraint,
    Index,
    func,
)
from sqlalchemy.orm import relationship

from app.db.base import Base, BigIntPK


def _values(enum_cls):
    # 数据库中存枚举值（小写），与接口格式一致
    return [member.value for member in enum_cls]


# 1️ 状态枚举：订单状态与支付状态是两条独立的轴

class FulfillmentType(str, enum.Enum):
    DELIVERY = "delivery"   # 快递配送
    PICKUP = "pickup"       # 门店自提


class OrderStatus(str, enum.Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    SHIPPING = "shipping"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"


class PaymentStatus(str, enum.Enum):
    PENDING = "pending"       # 未支付 / 等待回调
    COMPLETED = "completed"   # 已批准（含部分退款）
    FAILED = "failed"         # 网关回调失败或批准被拒
    REFUNDED = "refunded"     # 全额退款


# 2️ 订单表

class Order(Base):
    __tablename__ = "orders"

    id = Column(
        BigIntPK,
        primary_key=True,
        autoincrement=True,
    )

    user_id = Column(
        BigInteger,
        nullable=False,
        index=True,
        comment="下单用户ID",
    )

    fulfillment_type = Column(
        Enum(FulfillmentType, name="fulfillment_type", values_callable=_values),
        nullable=False,
    )

    shipping_address = Column(
        Text,
        nullable=True,
        comment="配送地址（配送时必填）",
    )

    pickup_store_id = Column(
        BigInteger,
        nullable=True,
        comment="自提门店（自提时必填）",
    )

    subtotal = Column(Integer, nullable=False)
    delivery_fee = Column(Integer, nullable=False, server_default="0")
    total_amount = Column(Integer, nullable=False)

    status = Column(
        Enum(OrderStatus, name="order_status", values_callable=_values),
        nullable=False,
        default=OrderStatus.PENDING,
        server_default=OrderStatus.PENDING.value,
    )

    payment_status = Column(
        Enum(PaymentStatus, name="payment_status", values_callable=_values),
        nullable=False,
        default=PaymentStatus.PENDING,
        server_default=PaymentStatus.PENDING.value,
    )

    # 只保留最近一次 ready 返回的 tid，旧 tid 随之失效
    payment_provider = Column(String(32), nullable=True)
    payment_tid = Column(String(64), nullable=True, index=True)
    payment_ready_at = Column(TIMESTAMP(timezone=True), nullable=True)

    created_at = Column(
        TIMESTAMP(timezone=True),
        server_default=func.now(),
        nullable=False,
    )

    updated_at = Column(
        TIMESTAMP(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )

    items = relationship(
        "OrderItem",
        back_populates="order",
        cascade="all, delete-orphan",
        order_by="OrderItem.id",
    )
    approval = relationship("PaymentApproval", uselist=False, back_populates="order")
    refunds = relationship("RefundRecord", back_populates="order", order_by="RefundRecord.id")

    __table_args__ = (
        CheckConstraint("total_amount >= 0", name="ck_order_total_non_negative"),
        CheckConstraint("total_amount = subtotal + delivery_fee", name="ck_order_total_sum"),
    )


# 3️ 订单明细：下单时冻结的快照，不受目录后续变更影响

class OrderItem(Base):
    __tablename__ = "order_items"

    id = Column(
        BigIntPK,
        primary_key=True,
        autoincrement=True,
    )

    order_id = Column(
        BigInteger,
        ForeignKey("orders.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    product_id = Column(BigInteger, nullable=False)
    product_option_id = Column(BigInteger, nullable=True)
    store_id = Column(BigInteger, nullable=False)

    product_name_snapshot = Column(String(255), nullable=False)
    option_snapshot = Column(String(255), nullable=False, server_default="")

    quantity = Column(Integer, nullable=False)
    unit_price = Column(Integer, nullable=False, comment="下单时单价（含选项附加价）")

    order = relationship("Order", back_populates="items")

    __table_args__ = (
        CheckConstraint("quantity >= 1", name="ck_order_item_quantity_positive"),
    )


Index(
    "idx_orders_user_created_desc",
    Order.user_id,
    Order.created_at.desc(),
)
