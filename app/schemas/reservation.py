"""结账预占 API 模型"""

from datetime import datetime
from typing import Dict, List, Optional

from pydantic import BaseModel, Field

from app.schemas.base import BaseResponse


# ==================== 请求模型 ====================

class ReservationRequest(BaseModel):
    """预占 / 释放请求"""
    listing_ids: List[str] = Field(
        ...,
        min_length=1,
        max_length=50,
        description="商品ID列表",
        examples=[["3f1c2a6e-0000-4000-8000-000000000001"]],
    )
    user_id: Optional[str] = Field(
        None,
        description="调用方用户ID（如提供，必须与 X-User-Id 一致）",
    )


# ==================== 响应模型 ====================

class AcquireResponse(BaseResponse):
    locked_until: datetime = Field(..., description="预占过期时间")
    listing_ids: List[str] = Field(..., description="已获得预占的商品ID")


class ReleaseResponse(BaseResponse):
    released: int = Field(..., ge=0, description="释放的预占条数")


class LockStatus(BaseModel):
    locked: bool
    isYours: bool
    expires_at: Optional[datetime] = None


class LockQueryResponse(BaseResponse):
    locks: Dict[str, LockStatus]
