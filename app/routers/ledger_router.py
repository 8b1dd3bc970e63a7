"""账本与钱包 API 路由"""

import logging

from fastapi import APIRouter, Depends, HTTPException, Query

from app.core.dependencies import (
    get_current_user_id,
    get_ledger_service,
    require_internal_secret,
)
from app.core.errors import ConflictError
from app.schemas.ledger import (
    BalanceResponse,
    CreditRequest,
    CreditResponse,
    LedgerEntryDetail,
    TransactionsResponse,
    WithdrawRequest,
    WithdrawResponse,
)
from app.services.ledger_service import LedgerService

logger = logging.getLogger(__name__)
router = APIRouter(
    tags=["卖家钱包"],
    responses={
        400: {"description": "请求参数错误或余额不足"},
        401: {"description": "未登录或凭证无效"},
        500: {"description": "服务器内部错误"},
    },
)


@router.post(
    "/internal/ledger/credit",
    response_model=CreditResponse,
    summary="入账（内部调用）",
    dependencies=[Depends(require_internal_secret)],
    responses={409: {"description": "该订单已入账"}},
)
def credit_ledger(
    body: CreditRequest,
    ledger: LedgerService = Depends(get_ledger_service),
):
    """同一订单重复入账返回 409 并附带已有流水ID"""
    try:
        result = ledger.credit(
            body.seller_id,
            body.amount_cents,
            order_id=body.order_id,
            description=body.description,
        )
        if result.duplicate:
            raise ConflictError(
                "该订单已入账",
                duplicate=True,
                transaction_id=result.entry.id,
            )
        return {"success": True, "message": "入账成功", "transaction_id": result.entry.id}
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"入账失败: {str(e)}")
        raise HTTPException(status_code=500, detail=str(e))


@router.get(
    "/wallet/balance",
    response_model=BalanceResponse,
    summary="查询余额",
)
def get_balance(
    user_id: str = Depends(get_current_user_id),
    ledger: LedgerService = Depends(get_ledger_service),
):
    try:
        return {"success": True, "balance_cents": ledger.balance(user_id)}
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"查询余额失败: seller_id={user_id}, error={str(e)}")
        raise HTTPException(status_code=500, detail=str(e))


@router.get(
    "/wallet/transactions",
    response_model=TransactionsResponse,
    summary="查询流水",
)
def list_transactions(
    limit: int = Query(20, ge=1, le=100, description="返回条数"),
    user_id: str = Depends(get_current_user_id),
    ledger: LedgerService = Depends(get_ledger_service),
):
    try:
        entries = ledger.entries(user_id, limit=limit)
        return {
            "success": True,
            "transactions": [LedgerEntryDetail.model_validate(e) for e in entries],
        }
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"查询流水失败: seller_id={user_id}, error={str(e)}")
        raise HTTPException(status_code=500, detail=str(e))


@router.post(
    "/wallet/withdraw",
    response_model=WithdrawResponse,
    summary="提现",
)
def withdraw(
    body: WithdrawRequest,
    user_id: str = Depends(get_current_user_id),
    ledger: LedgerService = Depends(get_ledger_service),
):
    try:
        entry = ledger.withdraw(user_id, body.amount_cents)
        return {
            "success": True,
            "message": "提现申请已提交",
            "transaction_id": entry.id,
            "amount_cents": body.amount_cents,
            "balance_cents": ledger.balance(user_id),
        }
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"提现失败: seller_id={user_id}, error={str(e)}")
        raise HTTPException(status_code=500, detail=str(e))
