"""订单生命周期 API 路由"""

import logging

from fastapi import APIRouter, Depends, HTTPException, Path

from app.core.dependencies import (
    get_current_user_id,
    get_order_state_machine,
    require_internal_secret,
)
from app.schemas.order import (
    AttachLabelRequest,
    CancelOrderRequest,
    CancelResponse,
    CancelWindowResponse,
    CreateOrderRequest,
    OrderDetail,
    OrderResponse,
    ShipOrderRequest,
)
from app.services.cancellation import Actor
from app.services.order_state_machine import CancelResult, OrderStateMachine

logger = logging.getLogger(__name__)
router = APIRouter(
    prefix="/orders",
    tags=["订单管理"],
    responses={
        400: {"description": "当前状态不允许该操作"},
        401: {"description": "未登录"},
        403: {"description": "无权操作该订单"},
        404: {"description": "订单不存在"},
        500: {"description": "服务器内部错误"},
    },
)


def _order_response(order, duplicate: bool = False, message: str = None) -> dict:
    return {
        "success": True,
        "message": message,
        "order": OrderDetail.model_validate(order),
        "duplicate": duplicate,
    }


def _cancel_response(result: CancelResult) -> dict:
    return {
        "success": True,
        "message": "订单已取消",
        "order_id": result.order.id,
        "already_cancelled": result.already_cancelled,
        "refund_id": result.refund_id,
        "refund_pending": result.refund_pending,
        "amount_refunded": result.amount_refunded,
        "listings_restored": result.listings_restored,
        "label_voided": result.label_voided,
    }


@router.post(
    "",
    response_model=OrderResponse,
    summary="支付确认后创建订单（内部调用）",
    dependencies=[Depends(require_internal_secret)],
)
def create_order(
    body: CreateOrderRequest,
    orders: OrderStateMachine = Depends(get_order_state_machine),
):
    """全部商品售出成功才创建订单；同一 payment_ref 重复回调返回已有订单"""
    try:
        result = orders.create(
            body.buyer_id,
            body.listing_ids,
            body.payment_ref,
            shipping_cents=body.shipping_cents,
        )
        message = "订单已存在" if result.duplicate else "订单创建成功"
        return _order_response(result.order, duplicate=result.duplicate, message=message)
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"创建订单失败: {str(e)}")
        raise HTTPException(status_code=500, detail=str(e))


@router.post(
    "/cancel",
    response_model=CancelResponse,
    summary="买家取消订单",
    description="""买家只能在以下时间取消：

    - 下单后 30 分钟内
    - 卖家 5 天未发货之后

    其余时间返回 400 并附带 `days_remaining`。""",
)
def buyer_cancel(
    body: CancelOrderRequest,
    user_id: str = Depends(get_current_user_id),
    orders: OrderStateMachine = Depends(get_order_state_machine),
):
    try:
        result = orders.cancel(body.order_id, Actor.BUYER, user_id, reason=body.reason)
        return _cancel_response(result)
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"买家取消订单失败: order_id={body.order_id}, error={str(e)}")
        raise HTTPException(status_code=500, detail=str(e))


@router.post(
    "/seller-cancel",
    response_model=CancelResponse,
    summary="卖家取消订单（发货前）",
)
def seller_cancel(
    body: CancelOrderRequest,
    user_id: str = Depends(get_current_user_id),
    orders: OrderStateMachine = Depends(get_order_state_machine),
):
    try:
        result = orders.cancel(body.order_id, Actor.SELLER, user_id, reason=body.reason)
        return _cancel_response(result)
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"卖家取消订单失败: order_id={body.order_id}, error={str(e)}")
        raise HTTPException(status_code=500, detail=str(e))


@router.get(
    "/{order_id}",
    response_model=OrderResponse,
    summary="查看订单",
)
def get_order(
    order_id: str = Path(..., description="订单ID"),
    user_id: str = Depends(get_current_user_id),
    orders: OrderStateMachine = Depends(get_order_state_machine),
):
    try:
        return _order_response(orders.get_for_viewer(order_id, user_id))
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"查询订单失败: order_id={order_id}, error={str(e)}")
        raise HTTPException(status_code=500, detail=str(e))


@router.get(
    "/{order_id}/cancel-window",
    response_model=CancelWindowResponse,
    summary="买家取消资格",
)
def get_cancel_window(
    order_id: str = Path(..., description="订单ID"),
    user_id: str = Depends(get_current_user_id),
    orders: OrderStateMachine = Depends(get_order_state_machine),
):
    try:
        window = orders.cancel_window(order_id, user_id)
        return {
            "success": True,
            "can_cancel": window.can_cancel,
            "in_grace_period": window.in_grace_period,
            "deadline_passed": window.deadline_passed,
            "days_remaining": window.days_remaining,
            "grace_ends_at": window.grace_ends_at,
            "deadline_at": window.deadline_at,
        }
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"查询取消资格失败: order_id={order_id}, error={str(e)}")
        raise HTTPException(status_code=500, detail=str(e))


@router.post(
    "/{order_id}/label",
    response_model=OrderResponse,
    summary="关联物流面单",
)
def attach_label(
    body: AttachLabelRequest,
    order_id: str = Path(..., description="订单ID"),
    user_id: str = Depends(get_current_user_id),
    orders: OrderStateMachine = Depends(get_order_state_machine),
):
    try:
        order = orders.attach_label(
            order_id, body.label_ref, seller_id=user_id, tracking_number=body.tracking_number
        )
        return _order_response(order, message="面单已关联")
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"关联面单失败: order_id={order_id}, error={str(e)}")
        raise HTTPException(status_code=500, detail=str(e))


@router.post(
    "/{order_id}/ship",
    response_model=OrderResponse,
    summary="卖家发货",
)
def ship_order(
    body: ShipOrderRequest,
    order_id: str = Path(..., description="订单ID"),
    user_id: str = Depends(get_current_user_id),
    orders: OrderStateMachine = Depends(get_order_state_machine),
):
    """发货后订单不再可取消"""
    try:
        order = orders.mark_shipped(order_id, seller_id=user_id, tracking_number=body.tracking_number)
        return _order_response(order, message="已发货")
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"发货失败: order_id={order_id}, error={str(e)}")
        raise HTTPException(status_code=500, detail=str(e))


@router.post(
    "/{order_id}/deliver",
    response_model=OrderResponse,
    summary="签收（物流回调，内部调用）",
    dependencies=[Depends(require_internal_secret)],
)
def deliver_order(
    order_id: str = Path(..., description="订单ID"),
    orders: OrderStateMachine = Depends(get_order_state_machine),
):
    try:
        order = orders.mark_delivered(order_id)
        return _order_response(order, message="已签收")
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"签收失败: order_id={order_id}, error={str(e)}")
        raise HTTPException(status_code=500, detail=str(e))
