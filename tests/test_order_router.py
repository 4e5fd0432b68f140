"""订单路由测试"""
import pytest
from unittest.mock import Mock

from app.main import app
from app.core.dependencies import get_order_service

BUYER = {"X-User-Id": "1", "X-User-Role": "buyer"}
OTHER_BUYER = {"X-User-Id": "2", "X-User-Role": "buyer"}
SELLER = {"X-User-Id": "900", "X-User-Role": "seller"}


def _payload(catalog, **overrides):
    payload = {
        "items": [
            {"product_id": catalog["ring"].id, "product_option_id": catalog["heavy"].id, "quantity": 1},
        ],
        "fulfillment_type": "delivery",
        "shipping_address": "김금빛 | 010-1234-5678 | (06236) 서울특별시 강남구 테헤란로 123",
    }
    payload.update(overrides)
    return payload


class TestOrderRouter:
    """订单路由测试类"""

    def test_create_order(self, client, catalog):
        response = client.post("/api/v1/orders", json=_payload(catalog), headers=BUYER)

        assert response.status_code == 201
        order = response.json()["order"]
        assert order["status"] == "pending"
        assert order["payment_status"] == "pending"
        assert order["subtotal"] == 980000
        assert order["delivery_fee"] == 3000
        assert order["total_amount"] == 983000
        assert order["order_items"][0]["price"] == 980000
        assert order["order_items"][0]["option_snapshot"] == "중량: 7.5g"

    def test_create_order_requires_user(self, client, catalog):
        response = client.post("/api/v1/orders", json=_payload(catalog))
        assert response.status_code == 401
        assert response.json()["success"] is False

    def test_create_order_missing_address(self, client, catalog):
        response = client.post("/api/v1/orders", json=_payload(catalog, shipping_address=None), headers=BUYER)

        assert response.status_code == 400
        body = response.json()
        assert body["code"] == "MissingShippingField"
        assert "shipping_address" in body["errors"]

    def test_create_order_empty_items(self, client, catalog):
        response = client.post("/api/v1/orders", json=_payload(catalog, items=[]), headers=BUYER)
        assert response.status_code == 400
        assert response.json()["code"] == "EmptyCart"

    def test_create_order_insufficient_stock(self, client, catalog):
        items = [{"product_id": catalog["earring"].id, "quantity": 1}]
        response = client.post("/api/v1/orders", json=_payload(catalog, items=items), headers=BUYER)

        assert response.status_code == 409
        assert response.json()["code"] == "InsufficientStock"

    def test_create_order_invalid_fulfillment_type(self, client, catalog):
        response = client.post("/api/v1/orders", json=_payload(catalog, fulfillment_type="drone"), headers=BUYER)
        assert response.status_code == 422

    def test_list_and_get_orders(self, client, catalog):
        created = client.post("/api/v1/orders", json=_payload(catalog), headers=BUYER).json()["order"]

        listing = client.get("/api/v1/orders", headers=BUYER).json()
        assert listing["count"] == 1
        assert listing["orders"][0]["id"] == created["id"]

        detail = client.get(f"/api/v1/orders/{created['id']}", headers=BUYER)
        assert detail.status_code == 200
        assert detail.json()["order"]["id"] == created["id"]

        assert client.get(f"/api/v1/orders/{created['id']}", headers=OTHER_BUYER).status_code == 403
        assert client.get("/api/v1/orders/9999", headers=BUYER).status_code == 404

    def test_update_status(self, client, catalog):
        created = client.post("/api/v1/orders", json=_payload(catalog), headers=BUYER).json()["order"]
        url = f"/api/v1/orders/{created['id']}/status"

        assert client.patch(url, json={"status": "confirmed"}, headers=BUYER).status_code == 403

        response = client.patch(url, json={"status": "confirmed"}, headers=SELLER)
        assert response.status_code == 200
        assert response.json()["order"]["status"] == "confirmed"

        backwards = client.patch(url, json={"status": "pending"}, headers=SELLER)
        assert backwards.status_code == 409
        assert backwards.json()["code"] == "InvalidStatusTransition"

    def test_unknown_exception_becomes_500(self, client):
        service_mock = Mock()
        service_mock.list_orders.side_effect = ValueError("数据库连接失败")
        app.dependency_overrides[get_order_service] = lambda: service_mock

        response = client.get("/api/v1/orders", headers=BUYER)

        assert response.status_code == 500
        assert response.json()["success"] is False
        # 内部错误信息不暴露给客户端
        assert "数据库连接失败" not in response.json()["message"]
