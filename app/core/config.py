import os
from pydantic_settings import BaseSettings

class Settings(BaseSettings):
    # 数据库配置
    POSTGRES_USER: str = os.getenv("POSTGRES_USER", "postgres")
    POSTGRES_PASSWORD: str = os.getenv("POSTGRES_PASSWORD", "123456")
    POSTGRES_HOST: str = os.getenv("POSTGRES_HOST", "localhost")
    POSTGRES_PORT: int = int(os.getenv("POSTGRES_PORT", "5432"))
    POSTGRES_DB: str = os.getenv("POSTGRES_DB", "marketplace")

    # Redis 配置
    REDIS_HOST: str = os.getenv("REDIS_HOST", "localhost")
    REDIS_PORT: int = int(os.getenv("REDIS_PORT", "6379"))
    REDIS_DB: int = int(os.getenv("REDIS_DB", "0"))

    # 内部调用密钥
    CRON_SECRET: str = os.getenv("CRON_SECRET", "")
    INTERNAL_WEBHOOK_SECRET: str = os.getenv("INTERNAL_WEBHOOK_SECRET", "")

    # 预占（结账锁）配置
    RESERVATION_TTL_MINUTES: int = 10

    # 取消策略（唯一权威来源）
    BUYER_CANCEL_GRACE_MINUTES: int = 30
    SELLER_INACTION_DAYS: int = 5

    # 调度阈值
    SHIP_REMINDER_DAYS: int = 3
    BUYER_NOTIFY_DAYS: int = 5
    PAYOUT_DELAY_DAYS: int = 3
    SCHEDULER_BATCH_SIZE: int = 200
    SCHEDULER_LOCK_TTL_MS: int = 5 * 60 * 1000

    # 平台费率与钱包
    DEFAULT_FEE_RATE: float = 0.13
    MIN_WITHDRAWAL_CENTS: int = 100

    # 限流配置
    RATE_LIMIT_MAX_REQUESTS: int = 30
    RATE_LIMIT_WINDOW_SECONDS: int = 60

    # 外部网关配置
    PAYMENT_API_URL: str = os.getenv("PAYMENT_API_URL", "http://localhost:9001")
    PAYMENT_API_KEY: str = os.getenv("PAYMENT_API_KEY", "")
    SHIPPING_API_URL: str = os.getenv("SHIPPING_API_URL", "http://localhost:9002")
    SHIPPING_API_KEY: str = os.getenv("SHIPPING_API_KEY", "")
    NOTIFY_API_URL: str = os.getenv("NOTIFY_API_URL", "http://localhost:9003")
    NOTIFY_API_KEY: str = os.getenv("NOTIFY_API_KEY", "")
    GATEWAY_TIMEOUT_SECONDS: float = 10.0
    GATEWAY_MAX_ATTEMPTS: int = 3

    @property
    def database_url(self) -> str:
        return (
            f"postgresql+psycopg://"
            f"{self.POSTGRES_USER}:{self.POSTGRES_PASSWORD}"
            f"@{self.POSTGRES_HOST}:{self.POSTGRES_PORT}/"
            f"{self.POSTGRES_DB}"
        )

settings = Settings()
