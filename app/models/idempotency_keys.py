import enum

from sqlalchemy import (
    Column,
    String,
    JSON,
    TIMESTAMP,
    Enum,
    Index,
    func,
)
from sqlalchemy.dialects.postgresql import JSONB
from app.db.base import Base


# 1️ 幂等状态枚举

class IdempotencyStatus(str, enum.Enum):
    PROCESSING = "PROCESSING"  # 正在处理中
    SUCCESS = "SUCCESS"        # 成功
    FAILED = "FAILED"          # 失败（允许同一 Key 重新提交）


# 2️ 幂等表：退款等资金操作按客户端提供的 Idempotency-Key 去重

class IdempotencyKey(Base):
    __tablename__ = "idempotency_keys"

    # 形如 refund:<order_id>:<client key>
    key = Column(
        String(128),
        primary_key=True,
        comment="幂等唯一键",
    )

    status = Column(
        Enum(
            IdempotencyStatus,
            name="idempotency_status_type",
        ),
        nullable=False,
        default=IdempotencyStatus.PROCESSING,
        server_default=IdempotencyStatus.PROCESSING.value,
        comment="当前处理状态",
    )

    # 成功后保存的响应快照，重复请求直接返回
    response_snapshot = Column(
        JSON().with_variant(JSONB, "postgresql"),
        nullable=True,
        comment="接口响应结果快照",
    )

    created_at = Column(
        TIMESTAMP(timezone=True),
        server_default=func.now(),
        nullable=False,
    )

    expires_at = Column(
        TIMESTAMP(timezone=True),
        nullable=True,
        comment="过期时间（用于清理）",
    )


# 3️ 索引设计

Index(
    "idx_idempotency_keys_expires_at",
    IdempotencyKey.expires_at,
)
