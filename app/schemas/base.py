from pydantic import BaseModel, ConfigDict
from typing import Optional
from datetime import datetime


class TimestampSchema(BaseModel):
    """带时间戳的 ORM 映射基类"""
    model_config = ConfigDict(from_attributes=True)  # 支持从 ORM 对象直接生成 Schema

    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class ErrorResponse(BaseModel):
    """统一错误响应"""
    success: bool = False
    message: str
    code: Optional[str] = None
    errors: Optional[dict] = None
    links: Optional[dict] = None
