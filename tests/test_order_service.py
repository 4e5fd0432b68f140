"""订单服务单元测试"""
import pytest
from sqlalchemy import select

from app.core.exceptions import (
    DraftValidationError,
    EmptyCart,
    InsufficientStock,
    InvalidStatusTransition,
    MissingShippingField,
    OrderAccessDenied,
    OrderNotFound,
    UnresolvedPickupStore,
)
from app.core.security import CurrentUser
from app.models.cart_items import CartItem
from app.models.order import FulfillmentType, OrderStatus, PaymentStatus
from app.models.payment_events import PaymentEvent, PaymentEventType
from app.models.product_stocks import ProductStock
from app.schemas.order import CreateOrderRequest
from app.services.cart_snapshot import CartSnapshotProvider
from app.services.order_draft import DELIVERY_FEE
from app.services.order_service import OrderService
from app.services.payment_service import session_key

BUYER = CurrentUser(id=1)
SELLER = CurrentUser(id=900, role="seller")


def _request(catalog, **overrides):
    fields = {
        "items": [
            {"product_id": catalog["ring"].id, "product_option_id": catalog["heavy"].id, "quantity": 1},
            {"product_id": catalog["bar"].id, "quantity": 1},
        ],
        "fulfillment_type": "delivery",
        "shipping_address": "김금빛 | 010-1234-5678 | (06236) 서울특별시 강남구 테헤란로 123",
    }
    fields.update(overrides)
    return CreateOrderRequest(**fields)


def _stock(db_session, product_id):
    return db_session.execute(
        select(ProductStock).where(ProductStock.product_id == product_id)
    ).scalar_one()


class TestOrderService:
    """订单服务测试类"""

    def test_create_delivery_order(self, db_session, catalog, cart):
        """配送下单：按目录定价、扣库存、清理购物车"""
        service = OrderService(db_session)
        order = service.create_order(BUYER, _request(catalog))

        assert order.id is not None
        assert order.status == OrderStatus.PENDING
        assert order.payment_status == PaymentStatus.PENDING
        assert order.subtotal == 980000 + 1200000
        assert order.delivery_fee == DELIVERY_FEE
        assert order.total_amount == order.subtotal + DELIVERY_FEE
        assert order.pickup_store_id is None

        ring_item = order.items[0]
        assert ring_item.unit_price == 980000
        assert ring_item.option_snapshot == "중량: 7.5g"
        assert ring_item.product_name_snapshot == "순금 반지"
        assert ring_item.store_id == 10

        assert _stock(db_session, catalog["ring"].id).available_stock == 4
        assert _stock(db_session, catalog["bar"].id).sold_stock == 1

        remaining = db_session.execute(select(CartItem)).scalars().all()
        # 只移除当前用户已下单的条目
        assert [(c.user_id, c.product_id) for c in remaining] == [(2, catalog["bar"].id)]

    def test_item_snapshot_frozen_after_catalog_change(self, db_session, catalog):
        service = OrderService(db_session)
        order = service.create_order(BUYER, _request(catalog))

        catalog["ring"].price = 999999
        db_session.commit()

        reloaded = service.get_order(BUYER, order.id)
        assert reloaded.items[0].unit_price == 980000

    def test_create_pickup_order_infers_store(self, db_session, catalog):
        service = OrderService(db_session)
        order = service.create_order(BUYER, _request(
            catalog,
            fulfillment_type="pickup",
            shipping_address=None,
            items=[{"product_id": catalog["ring"].id, "quantity": 2}],
        ))

        assert order.fulfillment_type == FulfillmentType.PICKUP
        assert order.pickup_store_id == 10
        assert order.delivery_fee == 0
        assert order.total_amount == 1000000

    def test_pickup_store_without_products_rejected(self, db_session, catalog):
        service = OrderService(db_session)
        with pytest.raises(UnresolvedPickupStore):
            service.create_order(BUYER, _request(
                catalog,
                fulfillment_type="pickup",
                pickup_store_id=20,
                items=[{"product_id": catalog["ring"].id, "quantity": 1}],
            ))
        # 失败时不扣库存
        assert _stock(db_session, catalog["ring"].id).available_stock == 5

    def test_delivery_requires_address(self, db_session, catalog):
        service = OrderService(db_session)
        with pytest.raises(MissingShippingField) as exc_info:
            service.create_order(BUYER, _request(catalog, shipping_address="  "))
        assert "shipping_address" in exc_info.value.errors

    def test_empty_items_rejected(self, db_session, catalog):
        with pytest.raises(EmptyCart):
            OrderService(db_session).create_order(BUYER, _request(catalog, items=[]))

    def test_unknown_product_rejected(self, db_session, catalog):
        with pytest.raises(DraftValidationError) as exc_info:
            OrderService(db_session).create_order(BUYER, _request(catalog, items=[{"product_id": 999, "quantity": 1}]))
        assert "items[0].product_id" in exc_info.value.errors

    def test_option_of_other_product_rejected(self, db_session, catalog):
        items = [{"product_id": catalog["bar"].id, "product_option_id": catalog["heavy"].id, "quantity": 1}]
        with pytest.raises(DraftValidationError) as exc_info:
            OrderService(db_session).create_order(BUYER, _request(catalog, items=items))
        assert "items[0].product_option_id" in exc_info.value.errors

    def test_insufficient_stock_rolls_back(self, db_session, catalog):
        """任一商品库存不足：整单失败，其他商品库存不变"""
        items = [
            {"product_id": catalog["ring"].id, "quantity": 1},
            {"product_id": catalog["bar"].id, "quantity": 3},
        ]
        with pytest.raises(InsufficientStock) as exc_info:
            OrderService(db_session).create_order(BUYER, _request(catalog, items=items))

        assert exc_info.value.status_code == 409
        assert f"product_id:{catalog['bar'].id}" in exc_info.value.errors
        assert _stock(db_session, catalog["ring"].id).available_stock == 5

    def test_create_order_from_cart_ids(self, db_session, catalog, cart):
        """只传购物车条目ID：服务端读取购物车并按目录定价"""
        service = OrderService(db_session)
        request = _request(catalog, items=[], cart_item_ids=[cart[0].id, cart[1].id])

        order = service.create_order(BUYER, request)

        assert sorted(item.product_id for item in order.items) == sorted([catalog["ring"].id, catalog["bar"].id])
        assert order.subtotal == 980000 + 1200000
        assert CartSnapshotProvider(db_session).get_selection(1) == []
        # 其他用户的购物车不受影响
        assert CartSnapshotProvider(db_session).get_selection(2)[0].cart_item_id == cart[2].id

    def test_create_order_from_other_users_cart_ids(self, db_session, catalog, cart):
        with pytest.raises(EmptyCart):
            OrderService(db_session).create_order(BUYER, _request(catalog, items=[], cart_item_ids=[cart[2].id]))
        assert _stock(db_session, catalog["bar"].id).available_stock == 2

    def test_list_orders_only_own(self, db_session, catalog):
        service = OrderService(db_session)
        service.create_order(BUYER, _request(catalog, items=[{"product_id": catalog["ring"].id, "quantity": 1}]))
        service.create_order(CurrentUser(id=2), _request(catalog, items=[{"product_id": catalog["ring"].id, "quantity": 1}]))

        orders = service.list_orders(BUYER)
        assert len(orders) == 1
        assert orders[0].user_id == 1

    def test_get_order_access(self, db_session, catalog):
        service = OrderService(db_session)
        order = service.create_order(BUYER, _request(catalog))

        assert service.get_order(SELLER, order.id).id == order.id
        with pytest.raises(OrderAccessDenied):
            service.get_order(CurrentUser(id=2), order.id)
        with pytest.raises(OrderNotFound):
            service.get_order(BUYER, 12345)

    def test_status_moves_forward_only(self, db_session, catalog):
        service = OrderService(db_session)
        order = service.create_order(BUYER, _request(catalog))

        assert service.update_order_status(SELLER, order.id, OrderStatus.CONFIRMED).status == OrderStatus.CONFIRMED
        assert service.update_order_status(SELLER, order.id, OrderStatus.SHIPPING).status == OrderStatus.SHIPPING

        with pytest.raises(InvalidStatusTransition):
            service.update_order_status(SELLER, order.id, OrderStatus.CONFIRMED)
        with pytest.raises(InvalidStatusTransition):
            service.update_order_status(SELLER, order.id, OrderStatus.CANCELLED)

    def test_cancel_restores_stock(self, db_session, catalog):
        service = OrderService(db_session)
        order = service.create_order(BUYER, _request(catalog))
        assert _stock(db_session, catalog["bar"].id).available_stock == 1

        service.update_order_status(SELLER, order.id, OrderStatus.CANCELLED)

        assert _stock(db_session, catalog["bar"].id).available_stock == 2
        with pytest.raises(InvalidStatusTransition):
            service.update_order_status(SELLER, order.id, OrderStatus.CONFIRMED)

    def test_cancel_closes_open_payment_session(self, db_session, catalog, mock_redis):
        """取消订单时作废未批准的支付会话"""
        service = OrderService(db_session, mock_redis)
        order = service.create_order(BUYER, _request(catalog))
        order.payment_tid = "T-open"
        db_session.commit()
        mock_redis.store[session_key(order.id)] = "{}"

        service.update_order_status(SELLER, order.id, OrderStatus.CANCELLED)

        assert order.payment_tid is None
        assert session_key(order.id) not in mock_redis.store
        events = db_session.execute(
            select(PaymentEvent).where(PaymentEvent.order_id == order.id)
        ).scalars().all()
        assert [(e.event_type, e.tid) for e in events] == [(PaymentEventType.EXPIRE, "T-open")]

    def test_buyer_cannot_update_status(self, db_session, catalog):
        service = OrderService(db_session)
        order = service.create_order(BUYER, _request(catalog))
        with pytest.raises(OrderAccessDenied):
            service.update_order_status(BUYER, order.id, OrderStatus.CONFIRMED)


class TestCartSnapshotProvider:

    def test_selection_uses_catalog_prices(self, db_session, catalog, cart):
        lines = CartSnapshotProvider(db_session).get_selection(1)

        assert [line.product_id for line in lines] == [catalog["ring"].id, catalog["bar"].id]
        ring = lines[0]
        assert ring.effective_unit_price == 980000
        assert ring.option_snapshot == "중량: 7.5g"
        assert ring.store_id == 10
        assert ring.cart_item_id == cart[0].id

    def test_selection_filtered_by_ids(self, db_session, catalog, cart):
        lines = CartSnapshotProvider(db_session).get_selection(1, [cart[1].id, cart[2].id])
        # 其他用户的条目不会被选中
        assert [line.cart_item_id for line in lines] == [cart[1].id]

    def test_empty_selection(self, db_session, catalog, cart):
        assert CartSnapshotProvider(db_session).get_selection(1, []) == []
