import os
from pydantic_settings import BaseSettings

class Settings(BaseSettings):
    # 数据库配置
    POSTGRES_USER: str = os.getenv("POSTGRES_USER", "postgres")
    POSTGRES_PASSWORD: str = os.getenv("POSTGRES_PASSWORD", "123456")
    POSTGRES_HOST: str = os.getenv("POSTGRES_HOST", "localhost")
    POSTGRES_PORT: int = int(os.getenv("POSTGRES_PORT", "5432"))
    POSTGRES_DB: str = os.getenv("POSTGRES_DB", "goldmarket")

    # Redis 配置
    REDIS_HOST: str = os.getenv("REDIS_HOST", "localhost")
    REDIS_PORT: int = int(os.getenv("REDIS_PORT", "6379"))
    REDIS_DB: int = int(os.getenv("REDIS_DB", "0"))

    # Kakao Pay 配置
    KAKAOPAY_BASE_URL: str = os.getenv("KAKAOPAY_BASE_URL", "https://open-api.kakaopay.com")
    KAKAOPAY_SECRET_KEY: str = os.getenv("KAKAOPAY_SECRET_KEY", "")
    KAKAOPAY_CID: str = os.getenv("KAKAOPAY_CID", "TC0ONETIME")
    KAKAOPAY_TIMEOUT: float = float(os.getenv("KAKAOPAY_TIMEOUT", "10"))

    # 回调地址：后端对外地址（Kakao 回跳）和前端地址（重试/订单历史链接）
    PUBLIC_BASE_URL: str = os.getenv("PUBLIC_BASE_URL", "http://localhost:8000")
    FRONTEND_BASE_URL: str = os.getenv("FRONTEND_BASE_URL", "http://localhost:5173")

    # 结算规则
    DELIVERY_FEE: int = int(os.getenv("DELIVERY_FEE", "3000"))
    PAYMENT_SESSION_TTL: int = int(os.getenv("PAYMENT_SESSION_TTL", "900"))  # 秒

    @property
    def database_url(self) -> str:
        return (
            f"postgresql+psycopg://"
            f"{self.POSTGRES_USER}:{self.POSTGRES_PASSWORD}"
            f"@{self.POSTGRES_HOST}:{self.POSTGRES_PORT}/"
            f"{self.POSTGRES_DB}"
        )

    @property
    def kakaopay_approval_url(self) -> str:
        return f"{self.PUBLIC_BASE_URL.rstrip('/')}/api/v1/payments/kakao/success"

    @property
    def kakaopay_fail_url(self) -> str:
        return f"{self.PUBLIC_BASE_URL.rstrip('/')}/api/v1/payments/kakao/fail"

    @property
    def kakaopay_cancel_url(self) -> str:
        return f"{self.PUBLIC_BASE_URL.rstrip('/')}/api/v1/payments/kakao/cancel"

settings = Settings()
