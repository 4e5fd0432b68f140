"""依赖注入单元测试"""
import pytest
from unittest.mock import Mock, patch
from fastapi import HTTPException
from sqlalchemy.orm import Session

from app.core.dependencies import (
    get_db,
    get_kakaopay_client,
    get_order_service,
    get_payment_service,
    get_redis,
    get_redlock,
)
from app.core.security import CurrentUser, get_current_user, require_seller
from app.services.kakaopay_client import KakaoPayClient
from app.services.order_service import OrderService
from app.services.payment_service import PaymentService


class TestDependencies:
    """依赖注入测试类"""

    def test_get_db(self):
        """测试数据库会话依赖"""
        with patch('app.core.dependencies.SessionLocal') as mock_session_local:
            db_mock = Mock(spec=Session)
            mock_session_local.return_value = db_mock

            gen = get_db()
            db = next(gen)

            assert db == db_mock
            mock_session_local.assert_called_once()

            # 测试清理
            gen.close()
            db_mock.close.assert_called_once()

    def test_get_redis(self):
        with patch('app.core.dependencies.redis_client') as mock_redis_client:
            assert get_redis() == mock_redis_client

    def test_get_redlock(self):
        with patch('app.core.dependencies.redlock') as mock_redlock:
            assert get_redlock() == mock_redlock

    def test_get_kakaopay_client_is_shared(self):
        with patch('app.core.dependencies._kakaopay_client', None):
            first = get_kakaopay_client()
            assert isinstance(first, KakaoPayClient)
            assert get_kakaopay_client() is first

    def test_get_order_service(self, mock_redis):
        db_mock = Mock(spec=Session)
        service = get_order_service(db=db_mock, redis=mock_redis)
        assert isinstance(service, OrderService)
        assert service.db == db_mock
        assert service.redis == mock_redis

    def test_get_payment_service(self, mock_redis, mock_redlock, fake_gateway):
        db_mock = Mock(spec=Session)
        service = get_payment_service(db=db_mock, redis=mock_redis, rlock=mock_redlock, gateway=fake_gateway)

        assert isinstance(service, PaymentService)
        assert service.redis == mock_redis
        assert service.rlock == mock_redlock
        assert service.gateway is fake_gateway


class TestCurrentUser:

    def test_buyer_from_headers(self):
        user = get_current_user(x_user_id="15", x_user_role="BUYER")
        assert user == CurrentUser(id=15, role="buyer")
        assert not user.is_seller

    @pytest.mark.parametrize("header", [None, "", "abc", "0", "-1"])
    def test_invalid_user_header(self, header):
        with pytest.raises(HTTPException) as exc_info:
            get_current_user(x_user_id=header, x_user_role="buyer")
        assert exc_info.value.status_code == 401

    def test_require_seller(self):
        seller = CurrentUser(id=1, role="seller")
        assert require_seller(seller) is seller
        with pytest.raises(HTTPException) as exc_info:
            require_seller(CurrentUser(id=2))
        assert exc_info.value.status_code == 403
