"""自定义列类型"""

from datetime import timezone

from sqlalchemy import TIMESTAMP, BigInteger, Integer
from sqlalchemy.types import TypeDecorator


class UTCDateTime(TypeDecorator):
    """统一以 UTC 存取时间

    PostgreSQL 使用 timestamptz；SQLite 不保存时区，写入前转为 naive UTC，
    读出时补回 UTC 时区，保证 Python 侧拿到的始终是 aware datetime。
    """

    impl = TIMESTAMP(timezone=True)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        value = value.astimezone(timezone.utc)
        if dialect.name == "sqlite":
            return value.replace(tzinfo=None)
        return value

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)


# SQLite 仅对 INTEGER PRIMARY KEY 自增
BigIntegerPK = BigInteger().with_variant(Integer, "sqlite")
