#!/usr/bin/env python3
"""
单元测试运行脚本
按业务模块分组运行 tests/ 下的测试
"""

import argparse
import subprocess
import sys

# 测试分组：命令行参数 -> 测试文件
TEST_GROUPS = {
    "reservations": ["tests/test_reservation_manager.py", "tests/test_reservation_router.py"],
    "orders": [
        "tests/test_order_state_machine.py",
        "tests/test_cancellation.py",
        "tests/test_order_router.py",
    ],
    "scheduler": [
        "tests/test_scheduler_worker.py",
        "tests/test_scheduler_router.py",
        "tests/test_celery_tasks.py",
        "tests/test_process_orders_cli.py",
    ],
    "ledger": ["tests/test_ledger_service.py", "tests/test_ledger_router.py"],
    "gateways": ["tests/test_gateways.py"],
    "scenario": ["tests/test_scenario.py"],
    "app": [
        "tests/test_main.py",
        "tests/test_models.py",
        "tests/test_dependencies.py",
        "tests/test_rate_limiter.py",
    ],
}


def run_tests(targets, verbose=False, coverage=False, keyword=None):
    """运行 pytest

    Args:
        targets: 测试文件列表，为空时运行全部测试
        verbose: 是否显示详细输出
        coverage: 是否生成覆盖率报告
        keyword: 按测试名过滤（pytest -k）
    """
    cmd = [sys.executable, "-m", "pytest", *(targets or ["tests/"])]
    cmd.extend(["-v" if verbose else "-q", "--tb=short"])

    if keyword:
        cmd.extend(["-k", keyword])

    if coverage:
        cmd.extend([
            "--cov=app",
            "--cov=tasks",
            "--cov-report=html:htmlcov",
            "--cov-report=term-missing",
        ])

    print(f"🚀 运行命令: {' '.join(cmd)}")
    print("=" * 50)

    result = subprocess.run(cmd)
    if result.returncode == 0:
        print("\n✅ 测试运行完成")
    else:
        print(f"\n❌ 测试失败，退出码: {result.returncode}")
    return result.returncode


def main():
    parser = argparse.ArgumentParser(description="二手面料交易核心服务单元测试运行器")
    parser.add_argument(
        "--group",
        choices=sorted(TEST_GROUPS),
        action="append",
        help="只运行指定模块的测试，可重复指定",
    )
    parser.add_argument("--coverage", action="store_true", help="生成覆盖率报告")
    parser.add_argument("--verbose", action="store_true", help="详细输出模式")
    parser.add_argument(
        "test_name",
        nargs="?",
        help="按测试名过滤 (如 test_buyer_cancel_within_grace)",
    )

    args = parser.parse_args()

    targets = [path for group in args.group or [] for path in TEST_GROUPS[group]]
    code = run_tests(targets, args.verbose or bool(args.test_name), args.coverage, args.test_name)

    if args.coverage and code == 0:
        print("\n📊 覆盖率报告已生成到 htmlcov/ 目录")

    return code


if __name__ == "__main__":
    sys.exit(main())
