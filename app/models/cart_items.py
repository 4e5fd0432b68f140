from sqlalchemy import (
    Column,
    BigInteger,
    Integer,
    ForeignKey,
    CheckConstraint,
    TIMESTAMP,
    func,
)
from sqlalchemy.orm import relationship

from app.db.base import Base, BigIntPK


class CartItem(Base):
    """购物车条目（购物车服务维护，结算只读取并在下单后移除）"""
    __tablename__ = "cart_items"

    id = Column(
        BigIntPK,
        primary_key=True,
        autoincrement=True,
    )

    user_id = Column(
        BigInteger,
        nullable=False,
        index=True,
    )

    product_id = Column(
        BigInteger,
        ForeignKey("products.id", ondelete="CASCADE"),
        nullable=False,
    )

    product_option_id = Column(
        BigInteger,
        ForeignKey("product_options.id", ondelete="SET NULL"),
        nullable=True,
    )

    quantity = Column(
        Integer,
        nullable=False,
    )

    created_at = Column(
        TIMESTAMP(timezone=True),
        server_default=func.now(),
        nullable=False,
    )

    product = relationship("Product")
    product_option = relationship("ProductOption")

    __table_args__ = (
        CheckConstraint("quantity >= 1", name="ck_cart_quantity_positive"),
    )
