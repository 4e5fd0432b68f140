"""订单服务实现"""

import logging
from collections import OrderedDict
from typing import Dict, List, Optional

from redis import Redis, RedisError
from sqlalchemy import delete, or_, select, tuple_
from sqlalchemy.orm import Session, selectinload

from app.core.exceptions import (
    DraftValidationError,
    EmptyCart,
    InsufficientStock,
    InvalidStatusTransition,
    MissingShippingField,
    OrderAccessDenied,
    OrderNotFound,
)
from app.core.security import CurrentUser
from app.models.cart_items import CartItem
from app.models.order import FulfillmentType, Order, OrderItem, OrderStatus, PaymentStatus
from app.models.payment_events import PaymentEvent, PaymentEventType
from app.models.product import Product, ProductOption
from app.models.product_stocks import ProductStock
from app.schemas.order import CreateOrderRequest, OrderItemRequest
from app.services.cart_snapshot import CartSnapshotProvider
from app.services.order_draft import (
    CartLineSelection,
    compute_totals,
    resolve_pickup_store,
    validate_lines,
)
from app.services.payment_service import session_key

logger = logging.getLogger(__name__)

# 履约进度只能前进；取消只允许发生在发货之前
STATUS_FLOW = [
    OrderStatus.PENDING,
    OrderStatus.CONFIRMED,
    OrderStatus.SHIPPING,
    OrderStatus.DELIVERED,
]
CANCELLABLE = {OrderStatus.PENDING, OrderStatus.CONFIRMED}


class OrderService:
    """订单核心服务类"""

    def __init__(self, db: Session, redis: Optional[Redis] = None):
        self.db = db
        self.redis = redis

    # ==================== 下单 ====================

    def _price_lines(self, request: CreateOrderRequest) -> List[CartLineSelection]:
        """按目录重新定价，客户端传入的价格一律不采信"""
        product_ids = {item.product_id for item in request.items}
        products = {
            p.id: p
            for p in self.db.execute(select(Product).where(Product.id.in_(product_ids))).scalars()
        }
        option_ids = {item.product_option_id for item in request.items if item.product_option_id}
        options = {}
        if option_ids:
            options = {
                o.id: o
                for o in self.db.execute(select(ProductOption).where(ProductOption.id.in_(option_ids))).scalars()
            }

        errors: Dict[str, str] = {}
        lines = []
        for index, item in enumerate(request.items):
            product = products.get(item.product_id)
            if product is None:
                errors[f"items[{index}].product_id"] = f"상품 #{item.product_id}을(를) 찾을 수 없습니다."
                continue

            option = None
            if item.product_option_id is not None:
                option = options.get(item.product_option_id)
                if option is None or option.product_id != product.id:
                    errors[f"items[{index}].product_option_id"] = "상품 옵션이 올바르지 않습니다."
                    continue

            lines.append(CartLineSelection(
                product_id=product.id,
                quantity=item.quantity,
                unit_price=product.price,
                option_id=option.id if option else None,
                option_surcharge=option.additional_price if option else 0,
                store_id=product.store_id,
                product_name=product.name,
                option_snapshot=option.snapshot_text if option else "",
            ))

        if errors:
            raise DraftValidationError(errors=errors)
        return lines

    def _reserve_stock(self, lines: List[CartLineSelection]) -> None:
        """扣减可售库存（行级锁），任一商品不足则整单失败"""
        wanted: Dict[int, int] = OrderedDict()
        for line in lines:
            wanted[line.product_id] = wanted.get(line.product_id, 0) + line.quantity

        shortages: Dict[str, str] = {}
        # 按商品ID顺序加锁，避免并发下单互相死锁
        for product_id in sorted(wanted):
            quantity = wanted[product_id]
            stock = self.db.execute(
                select(ProductStock)
                .where(ProductStock.product_id == product_id)
                .with_for_update()
            ).scalar_one_or_none()

            available = stock.available_stock if stock else 0
            if available < quantity:
                shortages[f"product_id:{product_id}"] = f"남은 재고: {available}개"
                continue

            stock.available_stock -= quantity
            stock.sold_stock += quantity

        if shortages:
            raise InsufficientStock(errors=shortages)

    def _remove_cart_lines(self, user_id: int, request: CreateOrderRequest, lines: List[CartLineSelection]) -> int:
        if request.cart_item_ids is not None:
            stmt = delete(CartItem).where(
                CartItem.user_id == user_id,
                CartItem.id.in_(request.cart_item_ids),
            )
        else:
            purchased = {(line.product_id, line.option_id) for line in lines}
            with_option = [pair for pair in purchased if pair[1] is not None]
            without_option = [pid for pid, oid in purchased if oid is None]
            conditions = []
            if with_option:
                conditions.append(tuple_(CartItem.product_id, CartItem.product_option_id).in_(with_option))
            if without_option:
                conditions.append(
                    CartItem.product_id.in_(without_option) & CartItem.product_option_id.is_(None)
                )
            if not conditions:
                return 0
            stmt = delete(CartItem).where(CartItem.user_id == user_id, or_(*conditions))

        result = self.db.execute(stmt.execution_options(synchronize_session=False))
        return result.rowcount or 0

    def _items_from_cart(self, user_id: int, request: CreateOrderRequest) -> CreateOrderRequest:
        """只传 cart_item_ids 时由服务端读取购物车组装商品行"""
        selection = CartSnapshotProvider(self.db).get_selection(user_id, request.cart_item_ids)
        items = [
            OrderItemRequest(
                product_id=line.product_id,
                quantity=line.quantity,
                product_option_id=line.option_id,
            )
            for line in selection
        ]
        return request.model_copy(update={"items": items})

    def create_order(self, user: CurrentUser, request: CreateOrderRequest) -> Order:
        """创建订单：定价 -> 校验履约方式 -> 扣库存 -> 冻结明细 -> 清理购物车"""
        if not request.items and request.cart_item_ids:
            request = self._items_from_cart(user.id, request)

        if not request.items:
            raise EmptyCart(errors={"items": EmptyCart.default_message})

        shipping_address = None
        pickup_store_id = None
        if request.fulfillment_type == FulfillmentType.DELIVERY:
            shipping_address = (request.shipping_address or "").strip()
            if not shipping_address:
                raise MissingShippingField(errors={"shipping_address": "배송지를 입력해주세요."})

        try:
            lines = self._price_lines(request)
            validate_lines(lines)

            if request.fulfillment_type == FulfillmentType.PICKUP:
                pickup_store_id = resolve_pickup_store(lines, request.pickup_store_id)

            subtotal, fee, total = compute_totals(lines, request.fulfillment_type)

            self._reserve_stock(lines)

            order = Order(
                user_id=user.id,
                fulfillment_type=request.fulfillment_type,
                shipping_address=shipping_address,
                pickup_store_id=pickup_store_id,
                subtotal=subtotal,
                delivery_fee=fee,
                total_amount=total,
                status=OrderStatus.PENDING,
            )
            order.items = [
                OrderItem(
                    product_id=line.product_id,
                    product_option_id=line.option_id,
                    store_id=line.store_id,
                    product_name_snapshot=line.product_name,
                    option_snapshot=line.option_snapshot,
                    quantity=line.quantity,
                    unit_price=line.effective_unit_price,
                )
                for line in lines
            ]
            self.db.add(order)
            self.db.flush()

            removed = self._remove_cart_lines(user.id, request, lines)

            self.db.commit()
            self.db.refresh(order)
            logger.info(
                f"创建订单成功: order_id={order.id}, user_id={user.id}, "
                f"total={order.total_amount}, cart_removed={removed}"
            )
            return order

        except Exception as e:
            self.db.rollback()
            logger.error(f"创建订单失败: user_id={user.id}, error: {str(e)}")
            raise

    # ==================== 查询 ====================

    def list_orders(self, user: CurrentUser) -> List[Order]:
        stmt = (
            select(Order)
            .where(Order.user_id == user.id)
            .options(selectinload(Order.items))
            .order_by(Order.created_at.desc(), Order.id.desc())
        )
        return list(self.db.execute(stmt).scalars().all())

    def get_order(self, user: CurrentUser, order_id: int) -> Order:
        """订单详情：买家只能看自己的订单，卖家可查看任意订单"""
        order = self.db.execute(
            select(Order).where(Order.id == order_id).options(selectinload(Order.items))
        ).scalar_one_or_none()
        if order is None:
            raise OrderNotFound()
        if order.user_id != user.id and not user.is_seller:
            raise OrderAccessDenied()
        return order

    # ==================== 卖家更新状态 ====================

    def update_order_status(self, user: CurrentUser, order_id: int, new_status: OrderStatus) -> Order:
        if not user.is_seller:
            raise OrderAccessDenied("판매자만 주문 상태를 변경할 수 있습니다.")

        try:
            order = self.db.execute(
                select(Order).where(Order.id == order_id).with_for_update()
            ).scalar_one_or_none()
            if order is None:
                raise OrderNotFound()

            current = order.status
            closed_tid = None
            if new_status == OrderStatus.CANCELLED:
                if current not in CANCELLABLE:
                    raise InvalidStatusTransition(f"'{current.value}' 상태의 주문은 취소할 수 없습니다.")
                self._restore_stock(order)
                closed_tid = self._close_payment_session(order, user)
            elif current == OrderStatus.CANCELLED or STATUS_FLOW.index(new_status) <= STATUS_FLOW.index(current):
                raise InvalidStatusTransition(
                    f"'{current.value}'에서 '{new_status.value}'(으)로 변경할 수 없습니다."
                )

            order.status = new_status
            self.db.commit()
            self.db.refresh(order)
            if closed_tid:
                self._drop_payment_session(order.id)
            logger.info(f"订单状态变更: order_id={order_id}, {current.value} -> {new_status.value}, operator=seller:{user.id}")
            return order

        except Exception as e:
            self.db.rollback()
            logger.error(f"订单状态变更失败: order_id={order_id}, error: {str(e)}")
            raise

    def _restore_stock(self, order: Order) -> None:
        """取消订单时归还库存"""
        for item in order.items:
            stock = self.db.execute(
                select(ProductStock)
                .where(ProductStock.product_id == item.product_id)
                .with_for_update()
            ).scalar_one_or_none()
            if stock is None:
                continue
            stock.available_stock += item.quantity
            stock.sold_stock = max(stock.sold_stock - item.quantity, 0)

    def _close_payment_session(self, order: Order, user: CurrentUser) -> Optional[str]:
        """取消订单时作废尚未批准的支付会话，返回被作废的 tid"""
        if not order.payment_tid or order.payment_status not in (PaymentStatus.PENDING, PaymentStatus.FAILED):
            return None

        closed_tid = order.payment_tid
        order.payment_tid = None
        self.db.add(PaymentEvent(
            order_id=order.id,
            event_type=PaymentEventType.EXPIRE,
            tid=closed_tid,
            before_status=order.payment_status.value,
            after_status=order.payment_status.value,
            detail="order cancelled",
            operator=f"seller:{user.id}",
        ))
        return closed_tid

    def _drop_payment_session(self, order_id: int) -> None:
        if not self.redis:
            return
        try:
            self.redis.delete(session_key(order_id))
        except RedisError as e:
            logger.warning(f"支付会话缓存删除失败: order_id={order_id}, error: {str(e)}")
