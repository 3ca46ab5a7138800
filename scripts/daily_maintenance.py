"""
일일 Ledger 유지 작업

- 잔액 체크포인트 생성 (checkpoint_interval_days 주기, 어제 기준)
- 도래한 운영사 정기 지급 회차 생성
- 만기 지난 운영사 지급 OVERDUE 전환

Ledger 코어에는 스케줄러가 없으므로 외부 cron 등에서 하루 1회 실행.

사용법:
    python -m scripts.daily_maintenance
    python -m scripts.daily_maintenance --as-of 2024-01-31
"""

import argparse
import asyncio
import logging
import sys
from datetime import date, timedelta
from pathlib import Path

# 프로젝트 루트를 Python 경로에 추가
sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from core.config.loader import LedgerConfig, load_config
from core.ledger.service import LedgerService
from core.logging import setup_logging

logger = logging.getLogger(__name__)


async def main(config: LedgerConfig, as_of: date | None) -> None:
    """유지 작업 실행

    Args:
        config: Ledger 설정
        as_of: 체크포인트 일자 (None이면 어제)
    """
    async with LedgerService.open(config) as ledger:
        checkpoint_day = as_of or ledger.reconstructor.today() - timedelta(days=1)
        created = await ledger.reconstructor.ensure_checkpoints(as_of=checkpoint_day)
        logger.info(f"체크포인트 {len(created)}건 생성 ({checkpoint_day})")

        today = ledger.reconstructor.today()
        summary = await ledger.recurring.generate_all_recurring_payments(today)
        logger.info(f"정기 지급 {summary.generated}건 생성 (오류 {len(summary.errors)}건)")

        overdue = await ledger.deriver.refresh_overdue(today)
        logger.info(f"OVERDUE 전환 {overdue}건")


if __name__ == "__main__":
    parser = argparse.ArgumentParser(
        description="일일 Ledger 유지 작업 (체크포인트 / 정기 지급 / 만기 지급)"
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="ledger.yaml 경로 (기본: config/ledger.yaml)",
    )
    parser.add_argument(
        "--as-of",
        type=date.fromisoformat,
        default=None,
        help="체크포인트 일자 YYYY-MM-DD (기본: 어제)",
    )
    args = parser.parse_args()

    setup_logging("scripts")
    asyncio.run(main(load_config(args.config), args.as_of))
