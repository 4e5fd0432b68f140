from sqlalchemy import (
    Column,
    BigInteger,
    Integer,
    ForeignKey,
    CheckConstraint,
    TIMESTAMP,
    func,
)
from app.db.base import Base


class ProductStock(Base):
    __tablename__ = "product_stocks"

    product_id = Column(
        BigInteger,
        ForeignKey("products.id", ondelete="CASCADE"),
        primary_key=True,
        comment="商品ID",
    )

    available_stock = Column(
        Integer,
        nullable=False,
        server_default="0",
        comment="当前可售库存",
    )

    sold_stock = Column(
        Integer,
        nullable=False,
        server_default="0",
        comment="已下单数量",
    )

    updated_at = Column(
        TIMESTAMP(timezone=True),
        nullable=False,
        server_default=func.now(),
        onupdate=func.now(),
    )

    __table_args__ = (
        CheckConstraint(
            "available_stock >= 0",
            name="ck_available_stock_non_negative",
        ),
        CheckConstraint(
            "sold_stock >= 0",
            name="ck_sold_stock_non_negative",
        ),
    )
