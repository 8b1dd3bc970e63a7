"""订单 API 模型"""

from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field

from app.models.orders import OrderStatus
from app.schemas.base import BaseResponse


# ==================== 请求模型 ====================

class CreateOrderRequest(BaseModel):
    """支付确认后创建订单（内部回调）"""
    buyer_id: str = Field(..., min_length=1, description="买家ID")
    listing_ids: List[str] = Field(..., min_length=1, description="商品ID列表")
    payment_ref: str = Field(..., min_length=1, max_length=128, description="支付网关交易号")
    shipping_cents: int = Field(0, ge=0, description="运费（分）")


class CancelOrderRequest(BaseModel):
    order_id: str = Field(..., description="订单ID")
    reason: Optional[str] = Field(None, max_length=500, description="取消原因")


class AttachLabelRequest(BaseModel):
    label_ref: str = Field(..., min_length=1, max_length=128, description="面单交易号")
    tracking_number: Optional[str] = Field(None, max_length=128, description="物流单号")


class ShipOrderRequest(BaseModel):
    tracking_number: Optional[str] = Field(None, max_length=128, description="物流单号")


# ==================== 详细信息模型 ====================

class OrderDetail(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    buyer_id: str
    seller_id: str
    status: OrderStatus
    listing_ids: List[str]
    items_cents: int
    shipping_cents: int
    total_cents: int
    refund_ref: Optional[str] = None
    tracking_number: Optional[str] = None
    cancelled_by: Optional[str] = None
    payout_amount_cents: Optional[int] = None
    platform_fee_rate: Optional[Decimal] = None
    created_at: datetime
    shipped_at: Optional[datetime] = None
    delivered_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    payout_at: Optional[datetime] = None


# ==================== 响应模型 ====================

class OrderResponse(BaseResponse):
    order: OrderDetail
    duplicate: bool = False


class CancelResponse(BaseResponse):
    order_id: str
    already_cancelled: bool = False
    refund_id: Optional[str] = None
    refund_pending: bool = False
    amount_refunded: int = 0
    listings_restored: List[str] = []
    label_voided: bool = False


class CancelWindowResponse(BaseResponse):
    can_cancel: bool
    in_grace_period: bool
    deadline_passed: bool
    days_remaining: int
    grace_ends_at: datetime
    deadline_at: datetime
