"""测试配置和 fixtures"""
import pytest
from unittest.mock import Mock
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool
from redis import Redis
from redlock import Redlock
from fastapi.testclient import TestClient

import app.models  # noqa: F401  注册所有模型
from app.db.base import Base
from app.models.cart_items import CartItem
from app.models.product import Product, ProductOption
from app.models.product_stocks import ProductStock
from app.services.kakaopay_client import KakaoPayError


class FakeKakaoPay:
    """内存版 Kakao Pay 网关，记录每次调用"""

    def __init__(self):
        self.ready_calls = []
        self.approve_calls = []
        self.cancel_calls = []
        self.ready_error = None
        self.approve_error = None
        self.cancel_error = None
        self.payment_method_type = "CARD"
        self.amounts = {}
        self.remaining = {}
        self._seq = 0

    def ready(self, **kwargs):
        self.ready_calls.append(kwargs)
        if self.ready_error:
            raise self.ready_error
        self._seq += 1
        order_id = kwargs["partner_order_id"]
        tid = f"T{order_id}{self._seq:04d}"
        self.amounts[tid] = kwargs["total_amount"]
        return {
            "tid": tid,
            "next_redirect_pc_url": f"https://online-pay.kakao.com/mockup/v1/{tid}/info",
            "next_redirect_mobile_url": f"https://online-pay.kakao.com/mockup/v1/{tid}/mInfo",
            "next_redirect_app_url": f"https://online-pay.kakao.com/mockup/v1/{tid}/aInfo",
            "android_app_scheme": f"kakaotalk://kakaopay/pg?url=https://online-pay.kakao.com/pg/{tid}",
            "ios_app_scheme": f"kakaotalk://kakaopay/pg?url=https://online-pay.kakao.com/pg/{tid}",
            "created_at": "2026-10-17T12:00:00",
        }

    def approve(self, tid, partner_order_id, partner_user_id, pg_token):
        self.approve_calls.append({
            "tid": tid,
            "partner_order_id": partner_order_id,
            "partner_user_id": partner_user_id,
            "pg_token": pg_token,
        })
        if self.approve_error:
            raise self.approve_error
        if tid not in self.amounts:
            raise KakaoPayError(-702, "invalid tid", 400)
        total = self.amounts[tid]
        self.remaining[tid] = total
        return {
            "aid": f"A{tid[1:]}",
            "tid": tid,
            "cid": "TC0ONETIME",
            "partner_order_id": partner_order_id,
            "partner_user_id": partner_user_id,
            "payment_method_type": self.payment_method_type,
            "amount": {"total": total, "tax_free": 0, "vat": 0},
            "approved_at": "2026-10-17T12:01:30",
        }

    def cancel(self, tid, cancel_amount, cancel_tax_free_amount=0):
        self.cancel_calls.append({"tid": tid, "cancel_amount": cancel_amount})
        if self.cancel_error:
            raise self.cancel_error
        self.remaining[tid] = self.remaining.get(tid, 0) - cancel_amount
        return {
            "tid": tid,
            "status": "PART_CANCEL_PAYMENT" if self.remaining[tid] else "CANCEL_PAYMENT",
            "canceled_amount": {"total": cancel_amount},
            "cancel_available_amount": {"total": self.remaining[tid]},
            "canceled_at": "2026-10-18T09:00:00",
        }

    def order(self, tid):
        return {"tid": tid, "status": "READY"}


@pytest.fixture
def db_engine():
    """内存 SQLite（StaticPool 保证线程池中的路由函数共用同一连接）"""
    engine = create_engine(
        "sqlite://",
        echo=False,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    try:
        yield engine
    finally:
        Base.metadata.drop_all(engine)
        engine.dispose()


@pytest.fixture
def db_session(db_engine):
    """数据库会话"""
    SessionLocal = sessionmaker(bind=db_engine, expire_on_commit=False)
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


@pytest.fixture
def mock_redis():
    """创建模拟 Redis 客户端（字典存储，足够覆盖会话缓存的读写）"""
    store = {}
    redis_mock = Mock(spec=Redis)
    redis_mock.get.side_effect = store.get
    redis_mock.setex.side_effect = lambda key, ttl, value: store.__setitem__(key, value) or True
    redis_mock.delete.side_effect = lambda *keys: sum(1 for k in keys if store.pop(k, None) is not None)
    redis_mock.exists.side_effect = lambda *keys: sum(1 for k in keys if k in store)
    redis_mock.store = store
    return redis_mock


@pytest.fixture
def mock_redlock():
    """创建模拟 Redlock 分布式锁"""
    redlock_mock = Mock(spec=Redlock)
    lock_mock = Mock()
    redlock_mock.lock.return_value = lock_mock
    redlock_mock.unlock.return_value = True
    return redlock_mock


@pytest.fixture
def fake_gateway():
    return FakeKakaoPay()


@pytest.fixture
def catalog(db_session):
    """示例商品目录：两个门店、带选项的商品、库存"""
    ring = Product(store_id=10, sku="GOLD-RING-01", name="순금 반지", price=500000)
    bar = Product(store_id=20, sku="GOLD-BAR-10G", name="골드바 10g", price=1200000)
    earring = Product(store_id=10, sku="GOLD-EAR-01", name="금 귀걸이", price=300000)
    db_session.add_all([ring, bar, earring])
    db_session.flush()

    light = ProductOption(product_id=ring.id, name="중량", value="3.75g", additional_price=0)
    heavy = ProductOption(product_id=ring.id, name="중량", value="7.5g", additional_price=480000)
    db_session.add_all([light, heavy])
    db_session.add_all([
        ProductStock(product_id=ring.id, available_stock=5, sold_stock=0),
        ProductStock(product_id=bar.id, available_stock=2, sold_stock=0),
        ProductStock(product_id=earring.id, available_stock=0, sold_stock=0),
    ])
    db_session.commit()
    return {
        "ring": ring,
        "bar": bar,
        "earring": earring,
        "light": light,
        "heavy": heavy,
    }


@pytest.fixture
def cart(db_session, catalog):
    """用户 1 的购物车：반지(7.5g) x1 + 골드바 x1"""
    items = [
        CartItem(user_id=1, product_id=catalog["ring"].id, product_option_id=catalog["heavy"].id, quantity=1),
        CartItem(user_id=1, product_id=catalog["bar"].id, quantity=1),
        CartItem(user_id=2, product_id=catalog["bar"].id, quantity=1),
    ]
    db_session.add_all(items)
    db_session.commit()
    return items


@pytest.fixture
def client(db_session, mock_redis, mock_redlock, fake_gateway):
    """HTTP 测试客户端：数据库、Redis、Redlock、网关全部替换为测试替身"""
    from app.main import app
    from app.core.dependencies import get_db, get_redis, get_redlock, get_kakaopay_client

    def override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_redis] = lambda: mock_redis
    app.dependency_overrides[get_redlock] = lambda: mock_redlock
    app.dependency_overrides[get_kakaopay_client] = lambda: fake_gateway
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()

