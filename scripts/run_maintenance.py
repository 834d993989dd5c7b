"""
정기 유지보수 작업

    python scripts/run_maintenance.py expire      # 만료 바우처 일괄 처리
    python scripts/run_maintenance.py recover     # 지급 후 종료되지 않은 신고 복구
    python scripts/run_maintenance.py integrity   # 전체 정합성 검증 (불일치 시 종료 코드 1)
    python scripts/run_maintenance.py all
"""

import argparse
import logging
import os
import sys

sys.path.append(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from dotenv import load_dotenv  # noqa: E402

load_dotenv("loyaltyapi/.env")

from loyaltyapi.config import settings  # noqa: E402
from loyaltyapi.containers import Container  # noqa: E402
from loyaltyapi.logging_config import setup_logging  # noqa: E402

logger = logging.getLogger("loyaltyapi.maintenance")

TASKS = ("expire", "recover", "integrity")


def run(task: str, container: Container) -> int:
    services = container.services

    if task == "expire":
        expired_count = services.voucher_service().expire_due()
        logger.info(f"Voucher expiry sweep done: {expired_count} expired")
        return 0

    if task == "recover":
        recovered = services.reconciliation_service().recover_half_applied()
        logger.info(f"Report recovery done: {len(recovered)} recovered")
        return 0

    result = services.point_service().verify_global_integrity()
    logger.info(
        f"Integrity {result.status}: {result.user_count} users, cached={result.total_cached_balance}, ledger={result.total_deltas}"
    )
    if result.mismatched_users:
        logger.error(f"Drifted balances: {', '.join(result.mismatched_users)}")
        return 1
    return 0


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description="Loyalty ledger maintenance tasks")
    parser.add_argument("task", choices=TASKS + ("all",))
    args = parser.parse_args(argv)

    setup_logging(settings.LOG_LEVEL, json_logs=settings.LOG_JSON)
    container = Container()
    tasks = TASKS if args.task == "all" else (args.task,)

    exit_code = 0
    try:
        for task in tasks:
            exit_code = max(exit_code, run(task, container))
    finally:
        container.shutdown_resources()
    return exit_code


if __name__ == "__main__":
    sys.exit(main())
