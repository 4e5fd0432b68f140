"""Celery 任务与清理脚本单元测试"""
import pytest
from unittest.mock import Mock, patch

from celery_app import app as celery_app
from tasks.payment_tasks import expire_stale_payment_sessions
from app.jobs.expire_payment_sessions import main, run_expiry


class TestPaymentTasks:
    """支付 Celery 任务测试类"""

    def test_expire_stale_payment_sessions_success(self):
        service_mock = Mock()
        service_mock.expire_stale_sessions.return_value = 5
        db_mock = Mock()

        with patch('tasks.payment_tasks.SessionLocal') as mock_session_local, \
             patch('tasks.payment_tasks.PaymentService') as mock_payment_service, \
             patch('tasks.payment_tasks.redis_client') as mock_redis, \
             patch('tasks.payment_tasks.redlock') as mock_redlock:

            mock_session_local.return_value = db_mock
            mock_payment_service.return_value = service_mock

            result = expire_stale_payment_sessions(batch_size=100)

            assert result == "成功作废 5 个过期支付会话"
            mock_payment_service.assert_called_once_with(db_mock, mock_redis, mock_redlock)
            service_mock.expire_stale_sessions.assert_called_once_with(100)
            db_mock.close.assert_called_once()

    def test_expire_stale_payment_sessions_exception(self):
        db_mock = Mock()
        service_mock = Mock()
        service_mock.expire_stale_sessions.side_effect = Exception("数据库错误")

        with patch('tasks.payment_tasks.SessionLocal') as mock_session_local, \
             patch('tasks.payment_tasks.PaymentService') as mock_payment_service:

            mock_session_local.return_value = db_mock
            mock_payment_service.return_value = service_mock

            with pytest.raises(Exception) as exc_info:
                expire_stale_payment_sessions()

            assert "数据库错误" in str(exc_info.value)
            db_mock.rollback.assert_called_once()
            db_mock.close.assert_called_once()

    def test_beat_schedule_registered(self):
        entry = celery_app.conf.beat_schedule['expire-stale-payment-sessions']
        assert entry['task'] == 'tasks.payment.expire_stale_payment_sessions'
        assert expire_stale_payment_sessions.name == entry['task']


class TestExpireJob:
    """本地清理脚本测试"""

    def test_run_expiry_dry_run(self):
        service_mock = Mock()
        service_mock.expire_stale_sessions.return_value = 3
        db_mock = Mock()

        with patch('app.jobs.expire_payment_sessions.SessionLocal', return_value=db_mock), \
             patch('app.jobs.expire_payment_sessions.PaymentService', return_value=service_mock):
            assert run_expiry(batch_size=50, dry_run=True) == 3

        service_mock.expire_stale_sessions.assert_called_once_with(50, dry_run=True)
        db_mock.close.assert_called_once()

    def test_main_returns_error_code_on_failure(self):
        with patch('app.jobs.expire_payment_sessions.run_expiry', side_effect=RuntimeError("db down")):
            assert main(["--batch-size", "10"]) == 1

    def test_main_success(self):
        with patch('app.jobs.expire_payment_sessions.run_expiry', return_value=2) as mock_run:
            assert main(["--dry-run"]) == 0
        mock_run.assert_called_once_with(500, True)
