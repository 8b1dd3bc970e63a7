"""结账预占 API 路由"""

from typing import Optional
import logging

from fastapi import APIRouter, Depends, HTTPException, Query

from app.core.dependencies import (
    get_current_user_id,
    get_reservation_manager,
    rate_limit,
)
from app.core.errors import AuthorizationError, ConflictError, ValidationError
from app.schemas.reservation import (
    AcquireResponse,
    LockQueryResponse,
    ReleaseResponse,
    ReservationRequest,
)
from app.services.reservation_manager import ConflictReason, ReservationManager

logger = logging.getLogger(__name__)
router = APIRouter(
    prefix="/reservations",
    tags=["结账预占"],
    responses={
        400: {"description": "商品已售出或不可售"},
        401: {"description": "未登录"},
        409: {"description": "商品正被其他买家结账"},
        429: {"description": "请求过于频繁"},
        503: {"description": "预占服务暂不可用"},
    },
)


def _check_body_user(body: ReservationRequest, user_id: str):
    if body.user_id and body.user_id != user_id:
        raise AuthorizationError("user_id 与当前用户不一致")


@router.post(
    "",
    response_model=AcquireResponse,
    summary="获取结账预占",
    description="""为每个商品获取 10 分钟的结账预占。

    - 同一用户重复调用会刷新过期时间
    - 他人持有且未过期 → 409 `locked_items`
    - 已售出 → 400 `sold_items`
    """,
    dependencies=[Depends(rate_limit("reservations"))],
)
def acquire_reservations(
    body: ReservationRequest,
    user_id: str = Depends(get_current_user_id),
    manager: ReservationManager = Depends(get_reservation_manager),
):
    try:
        _check_body_user(body, user_id)
        result = manager.acquire(body.listing_ids, user_id)

        if result.sold_items or result.ids_with(ConflictReason.UNAVAILABLE):
            raise ValidationError(
                "部分商品已售出或不可售",
                sold_items=result.sold_items,
                unavailable_items=result.ids_with(ConflictReason.UNAVAILABLE),
                locked_items=result.locked_items,
            )
        if result.locked_items:
            raise ConflictError(
                "部分商品正被其他买家结账",
                locked_items=result.locked_items,
            )

        return {
            "success": True,
            "message": "预占成功",
            "locked_until": result.expires_at,
            "listing_ids": result.granted,
        }
    except HTTPException:
        # 透传 HTTPException
        raise
    except Exception as e:
        logger.error(f"获取预占失败: {str(e)}")
        raise HTTPException(status_code=500, detail=str(e))


@router.delete(
    "",
    response_model=ReleaseResponse,
    summary="释放结账预占",
)
def release_reservations(
    body: ReservationRequest,
    user_id: str = Depends(get_current_user_id),
    manager: ReservationManager = Depends(get_reservation_manager),
):
    """只释放当前用户自己的预占，重复调用无副作用"""
    try:
        _check_body_user(body, user_id)
        released = manager.release(body.listing_ids, user_id)
        return {"success": True, "message": "释放成功", "released": released}
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"释放预占失败: {str(e)}")
        raise HTTPException(status_code=500, detail=str(e))


@router.get(
    "",
    response_model=LockQueryResponse,
    summary="查询预占状态",
)
def query_reservations(
    listings: Optional[str] = Query(None, description="逗号分隔的商品ID"),
    user_id: Optional[str] = Query(None, description="查看者ID，用于判断是否为自己的预占"),
    manager: ReservationManager = Depends(get_reservation_manager),
):
    try:
        ids = [lid.strip() for lid in (listings or "").split(",") if lid.strip()]
        if not ids:
            return {"success": True, "locks": {}}

        views = manager.query(ids, user_id)
        return {
            "success": True,
            "locks": {
                listing_id: {
                    "locked": view.locked,
                    "isYours": view.is_yours,
                    "expires_at": view.expires_at,
                }
                for listing_id, view in views.items()
            },
        }
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"查询预占失败: {str(e)}")
        raise HTTPException(status_code=500, detail=str(e))
