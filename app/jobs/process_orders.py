"""订单调度本地执行脚本（运维手动补跑）"""

import argparse
import logging

from app.db.session import SessionLocal
from app.services.reservation_manager import ReservationManager
from tasks.order_tasks import build_scheduler

# 配置日志
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

def run(dry_run: bool = False, batch_size: int = None, use_lock: bool = True,
        session_factory=SessionLocal):
    """执行一次订单调度

    Args:
        dry_run: 是否为试运行模式（只统计待处理订单，不发送通知也不结算）
        batch_size: 每类订单的处理上限
        use_lock: 是否使用 Redlock 防止与定时任务重叠
    """
    db = session_factory()
    clients = []
    try:
        worker, clients = build_scheduler(db) if use_lock else build_scheduler(db, rlock=None)
        if batch_size:
            worker.batch_size = batch_size

        if dry_run:
            pending = worker.pending()
            logger.info(
                f"试运行模式：待提醒 {pending.reminders}，待通知买家 {pending.buyer_notifications}，"
                f"待结算 {pending.payouts}，待重试退款 {pending.refund_retries}"
            )
            return pending

        swept = ReservationManager(db).sweep()
        report = worker.run()
        logger.info(f"调度完成：清理过期预占 {swept} 条，结果 {report.to_dict()}")
        return report

    except Exception as e:
        logger.error(f"调度执行失败: {str(e)}")
        db.rollback()
        raise
    finally:
        for client in clients:
            client.close()
        db.close()

def main(argv=None):
    """主函数"""
    parser = argparse.ArgumentParser(description='订单调度手动执行工具')
    parser.add_argument(
        '--batch-size',
        type=int,
        default=None,
        help='每类订单的处理上限 (默认读取 SCHEDULER_BATCH_SIZE)'
    )
    parser.add_argument(
        '--dry-run',
        action='store_true',
        help='试运行模式，只统计不执行'
    )
    parser.add_argument(
        '--no-lock',
        action='store_true',
        help='不获取 Redis 单实例锁（Redis 不可用时使用）'
    )
    parser.add_argument(
        '--verbose',
        action='store_true',
        help='详细输出模式'
    )

    args = parser.parse_args(argv)

    if args.verbose:
        logging.getLogger().setLevel(logging.DEBUG)

    try:
        result = run(dry_run=args.dry_run, batch_size=args.batch_size, use_lock=not args.no_lock)
        if args.dry_run:
            print(f"📊 试运行结果：待结算 {result.payouts} 单，待提醒 {result.reminders} 单")
        elif result.skipped:
            print("⏭️  已有调度任务在运行，本次跳过")
        else:
            print(f"✅ 调度完成：结算 {result.payouts} 单，错误 {len(result.errors)} 个")
    except Exception as e:
        print(f"❌ 执行失败: {str(e)}")
        return 1

    return 0

if __name__ == "__main__":
    exit(main())
