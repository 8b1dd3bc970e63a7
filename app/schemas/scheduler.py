from typing import List

from pydantic import Field

from app.schemas.base import BaseResponse


class ProcessOrdersResponse(BaseResponse):
    """定时任务执行结果"""
    reminders: int = 0
    buyerNotifications: int = 0
    payouts: int = 0
    refundRetries: int = 0
    errors: List[str] = Field(default_factory=list)
    skipped: bool = False
