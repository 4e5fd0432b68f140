"""购物车快照（只读）

购物车由外部服务维护，结算只需要“当前选中的条目 + 目录价格”。
"""

import logging
from typing import List, Optional, Sequence

from sqlalchemy import select
from sqlalchemy.orm import Session, selectinload

from app.models.cart_items import CartItem
from app.services.order_draft import CartLineSelection

logger = logging.getLogger(__name__)


class CartSnapshotProvider:

    def __init__(self, db: Session):
        self.db = db

    def get_selection(self, user_id: int, cart_item_ids: Optional[Sequence[int]] = None) -> List[CartLineSelection]:
        """返回用户选中的购物车条目，cart_item_ids 为 None 表示全选"""
        stmt = (
            select(CartItem)
            .where(CartItem.user_id == user_id)
            .options(selectinload(CartItem.product), selectinload(CartItem.product_option))
            .order_by(CartItem.id)
        )
        if cart_item_ids is not None:
            if not cart_item_ids:
                return []
            stmt = stmt.where(CartItem.id.in_(list(cart_item_ids)))

        items = self.db.execute(stmt).scalars().all()

        selection = []
        for item in items:
            product = item.product
            option = item.product_option
            selection.append(CartLineSelection(
                cart_item_id=item.id,
                product_id=item.product_id,
                option_id=item.product_option_id,
                quantity=item.quantity,
                unit_price=product.price,
                option_surcharge=option.additional_price if option else 0,
                store_id=product.store_id,
                product_name=product.name,
                option_snapshot=option.snapshot_text if option else "",
            ))

        logger.debug(f"购物车快照: user_id={user_id}, lines={len(selection)}")
        return selection
