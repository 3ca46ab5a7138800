"""
Ledger 스키마 마이그레이션

사용법:
    python -m scripts.migrate_ledger
    python -m scripts.migrate_ledger --config config/ledger.yaml
    python -m scripts.migrate_ledger --db data/tourledger_test.db
"""

import argparse
import asyncio
import logging
import sys
from pathlib import Path

# 프로젝트 루트를 Python 경로에 추가
sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from adapters.db.sqlite_adapter import SQLiteAdapter
from core.config.loader import load_config
from core.ledger.schema import LEDGER_TABLES, init_ledger_schema
from core.logging import setup_logging

logger = logging.getLogger(__name__)

REQUIRED_TRIGGERS = [
    "trg_movement_no_update",
    "trg_movement_no_delete",
    "trg_account_initial_immutable",
    "trg_iva_no_update",
]

REQUIRED_VIEWS = [
    "v_account_summary",
]


async def verify_schema(db: SQLiteAdapter) -> bool:
    """스키마 검증

    Returns:
        모든 테이블 / 트리거 / View가 존재하면 True
    """
    for table in LEDGER_TABLES:
        if not await db.table_exists(table):
            logger.error(f"테이블 누락: {table}")
            return False
        logger.info(f"테이블 확인: {table} ✓")

    for kind, names in (("trigger", REQUIRED_TRIGGERS), ("view", REQUIRED_VIEWS)):
        for name in names:
            row = await db.fetchone(
                "SELECT name FROM sqlite_master WHERE type=? AND name=?",
                (kind, name),
            )
            if not row:
                logger.error(f"{kind} 누락: {name}")
                return False
            logger.info(f"{kind} 확인: {name} ✓")

    row = await db.fetchone("SELECT COUNT(*) FROM financial_account")
    logger.info(f"등록된 금융 계정 수: {row[0] if row else 0}")
    row = await db.fetchone("SELECT COUNT(*) FROM ledger_movement")
    logger.info(f"기록된 이동 수: {row[0] if row else 0}")

    return True


async def main(db_path: Path) -> None:
    """마이그레이션 실행

    Args:
        db_path: Ledger DB 경로
    """
    logger.info(f"마이그레이션 시작: {db_path}")

    async with SQLiteAdapter(db_path) as db:
        await init_ledger_schema(db)

        if await verify_schema(db):
            logger.info("마이그레이션 완료 ✓")
        else:
            logger.error("마이그레이션 검증 실패!")
            raise RuntimeError("스키마 검증 실패")


if __name__ == "__main__":
    parser = argparse.ArgumentParser(
        description="Ledger 스키마 마이그레이션"
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="ledger.yaml 경로 (기본: config/ledger.yaml)",
    )
    parser.add_argument(
        "--db",
        type=Path,
        default=None,
        help="DB 경로 (설정 파일의 db_path 대신 사용)",
    )
    args = parser.parse_args()

    setup_logging("scripts")
    db_path = args.db if args.db is not None else load_config(args.config).db_path
    asyncio.run(main(db_path))
