"""定时任务 HTTP 入口（外部 cron 调用）"""

import logging

from fastapi import APIRouter, Depends, HTTPException

from app.core.dependencies import get_scheduler_worker, require_cron_secret
from app.schemas.scheduler import ProcessOrdersResponse
from app.services.scheduler_worker import SchedulerWorker

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/cron", tags=["定时任务"])


@router.post(
    "/process-orders",
    response_model=ProcessOrdersResponse,
    summary="处理待提醒 / 待结算 / 待退款订单",
    dependencies=[Depends(require_cron_secret)],
)
def process_orders(worker: SchedulerWorker = Depends(get_scheduler_worker)):
    """单个订单失败只记录在 errors 中，不影响其他订单"""
    try:
        report = worker.run()
        return {"success": True, **report.to_dict()}
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"定时任务执行失败: {str(e)}")
        raise HTTPException(status_code=500, detail=str(e))
