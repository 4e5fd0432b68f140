from sqlalchemy import (
    Column,
    BigInteger,
    String,
    Integer,
    TIMESTAMP,
    ForeignKey,
    CheckConstraint,
    Index,
    func,
)
from sqlalchemy.orm import relationship

from app.db.base import Base, BigIntPK


class Product(Base):
    """商品目录（只读，由商品服务维护）"""
    __tablename__ = "products"

    id = Column(
        BigIntPK,
        primary_key=True,
        autoincrement=True,
    )

    store_id = Column(
        BigInteger,
        nullable=False,
        index=True,
        comment="所属门店ID（自提门店解析依据）",
    )

    sku = Column(
        String(64),
        nullable=False,
        unique=True,
        comment="商品唯一SKU",
    )

    name = Column(
        String(255),
        nullable=False,
        comment="商品名称",
    )

    price = Column(
        Integer,
        nullable=False,
        comment="单价（韩元）",
    )

    created_at = Column(
        TIMESTAMP(timezone=True),
        server_default=func.now(),
        nullable=False,
    )

    updated_at = Column(
        TIMESTAMP(timezone=True),
        server_default=func.now(),
        nullable=False,
        onupdate=func.now(),
    )

    options = relationship("ProductOption", back_populates="product")
    stock = relationship("ProductStock", uselist=False)

    __table_args__ = (
        CheckConstraint("price >= 0", name="ck_product_price_non_negative"),
    )


class ProductOption(Base):
    """商品选项（重量、材质等），带附加价"""
    __tablename__ = "product_options"

    id = Column(
        BigIntPK,
        primary_key=True,
        autoincrement=True,
    )

    product_id = Column(
        BigInteger,
        ForeignKey("products.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    name = Column(
        String(64),
        nullable=False,
        comment="选项名，例如 중량",
    )

    value = Column(
        String(128),
        nullable=False,
        comment="选项值，例如 3.75g",
    )

    additional_price = Column(
        Integer,
        nullable=False,
        server_default="0",
        comment="附加价（韩元）",
    )

    product = relationship("Product", back_populates="options")

    @property
    def snapshot_text(self) -> str:
        return f"{self.name}: {self.value}"


Index(
    "idx_products_store",
    Product.store_id,
    Product.id,
)
