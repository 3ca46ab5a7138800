"""
과거 operation 회계 레코드 백필

operation JSON 파일(배열)을 읽어 누락된 IVA / 운영사 지급을 생성.
여러 번 실행해도 기존 레코드는 변경되지 않음.

입력 형식 (항목당):
    {"operation_id": "...", "created_at": "2024-01-05T12:00:00Z",
     "sale_amount_total": "2000", "sale_currency": "USD",
     "operator_id": "...", "operator_cost": "1900", "operator_cost_currency": "USD",
     "product_type": "HOTEL", "departure_date": "2024-03-10", "checkin_date": "2024-03-10"}

사용법:
    python -m scripts.backfill_accounting --input operations.json
    python -m scripts.backfill_accounting --input operations.json --dry-run
"""

import argparse
import asyncio
import logging
import sys
from pathlib import Path

# 프로젝트 루트를 Python 경로에 추가
sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from pydantic import TypeAdapter

from core.accounting.backfill import BackfillSummary, OperationSnapshot, backfill_operations
from core.config.loader import LedgerConfig, load_config
from core.ledger.service import LedgerService
from core.logging import setup_logging

logger = logging.getLogger(__name__)

_OPERATIONS = TypeAdapter(list[OperationSnapshot])


def load_operations(path: Path) -> list[OperationSnapshot]:
    """operation JSON 파일 로드 (pydantic 검증)"""
    return _OPERATIONS.validate_json(path.read_bytes())


async def main(config: LedgerConfig, input_path: Path, dry_run: bool) -> BackfillSummary:
    """백필 실행

    Args:
        config: Ledger 설정
        input_path: operation JSON 파일
        dry_run: True면 쓰기 없이 집계만
    """
    operations = load_operations(input_path)
    logger.info(f"백필 시작: {len(operations)}개 operation ({input_path})")

    async with LedgerService.open(config) as ledger:
        summary = await backfill_operations(ledger.deriver, operations, dry_run=dry_run)

    if summary.failed_operations:
        logger.warning(f"실패한 operation: {', '.join(summary.failed_operations)}")
    return summary


if __name__ == "__main__":
    parser = argparse.ArgumentParser(
        description="과거 operation IVA / 운영사 지급 백필"
    )
    parser.add_argument(
        "--input",
        type=Path,
        required=True,
        help="operation JSON 파일 (배열)",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="ledger.yaml 경로 (기본: config/ledger.yaml)",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="생성 대상만 집계 (쓰기 없음)",
    )
    args = parser.parse_args()

    setup_logging("scripts")
    result = asyncio.run(main(load_config(args.config), args.input, args.dry_run))
    sys.exit(1 if result.iva_errors or result.payments_errors else 0)
