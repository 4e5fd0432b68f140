"""支付相关的 Celery 任务"""

from celery_app import app
from app.db.session import SessionLocal
from app.services.payment_service import PaymentService
from app.core.redis import redis_client, redlock
import logging

logger = logging.getLogger(__name__)


@app.task(name='tasks.payment.expire_stale_payment_sessions')
def expire_stale_payment_sessions(batch_size: int = 500):
    """作废超过 TTL 仍未批准的支付会话

    Args:
        batch_size: 批处理大小，默认500条

    Returns:
        清理结果描述
    """
    db = SessionLocal()
    try:
        service = PaymentService(db, redis_client, redlock)
        count = service.expire_stale_sessions(batch_size)
        result = f"成功作废 {count} 个过期支付会话"
        logger.info(result)
        return result
    except Exception as e:
        logger.error(f"过期支付会话清理任务执行失败: {str(e)}")
        db.rollback()
        raise
    finally:
        db.close()


# 导出任务
__all__ = [
    'expire_stale_payment_sessions',
]
