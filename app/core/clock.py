from datetime import datetime, timezone


def utcnow() -> datetime:
    """当前 UTC 时间（带时区）"""
    return datetime.now(timezone.utc)
