"""钱包与账本 API 模型"""

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field

from app.models.ledger_entries import EntryCategory, EntryType
from app.schemas.base import BaseResponse


class CreditRequest(BaseModel):
    """内部入账请求"""
    seller_id: str = Field(..., min_length=1, description="卖家ID")
    amount_cents: int = Field(..., gt=0, description="入账金额（分）")
    order_id: Optional[str] = Field(None, description="关联订单ID，用于幂等")
    description: Optional[str] = Field(None, max_length=500)


class WithdrawRequest(BaseModel):
    amount_cents: int = Field(..., gt=0, description="提现金额（分）")


class LedgerEntryDetail(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    order_id: Optional[str] = None
    amount_cents: int
    entry_type: EntryType
    category: EntryCategory
    description: Optional[str] = None
    created_at: datetime


class CreditResponse(BaseResponse):
    transaction_id: int
    duplicate: bool = False


class BalanceResponse(BaseResponse):
    balance_cents: int


class TransactionsResponse(BaseResponse):
    transactions: List[LedgerEntryDetail]


class WithdrawResponse(BaseResponse):
    transaction_id: int
    amount_cents: int
    balance_cents: int
