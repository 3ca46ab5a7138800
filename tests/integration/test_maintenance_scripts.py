"""운영 스크립트 통합 테스트 (migrate / backfill / daily maintenance)"""

import json
from datetime import date
from decimal import Decimal
from pathlib import Path

import pytest

from adapters.db.sqlite_adapter import SQLiteAdapter
from core.config.loader import LedgerConfig
from core.ledger.service import LedgerService
from core.types import OperatorPaymentStatus
from scripts import backfill_accounting, daily_maintenance, migrate_ledger


class TestScripts:
    """스크립트 main 함수"""

    @pytest.mark.asyncio
    async def test_migrate(self, temp_dir: Path) -> None:
        db_path = temp_dir / "migrated.db"

        await migrate_ledger.main(db_path)

        async with SQLiteAdapter(db_path) as db:
            assert await migrate_ledger.verify_schema(db)

    @pytest.mark.asyncio
    async def test_backfill(self, ledger_config: LedgerConfig, temp_dir: Path) -> None:
        path = temp_dir / "operations.json"
        path.write_text(
            json.dumps([
                {
                    "operation_id": "op-1",
                    "created_at": "2024-01-05T12:00:00Z",
                    "sale_amount_total": "2000",
                    "sale_currency": "USD",
                    "operator_id": "operator-1",
                    "operator_cost": "1900",
                    "operator_cost_currency": "USD",
                    "product_type": "AEREO",
                }
            ]),
            encoding="utf-8",
        )

        summary = await backfill_accounting.main(ledger_config, path, dry_run=False)

        assert summary.total_created == 3
        async with LedgerService.open(ledger_config) as ledger:
            payment = await ledger.deriver.get_operator_payment("op-1")
            assert payment.due_date == date(2024, 1, 15)

    @pytest.mark.asyncio
    async def test_daily_maintenance(self, ledger_config: LedgerConfig) -> None:
        async with LedgerService.open(ledger_config) as ledger:
            account_id = await ledger.store.create_account("Caja", "USD", Decimal("100"))
            await ledger.create_operator_payment(
                "op-1", "operator-1", Decimal("10"), "USD", "2024-01-05"
            )
            recurring = await ledger.recurring.create_recurring_payment(
                "operator-2", "300", "USD", "MONTHLY", "2024-01-05", "Alquiler", end_date="2024-03-31"
            )

        await daily_maintenance.main(ledger_config, date(2024, 1, 5))

        async with LedgerService.open(ledger_config) as ledger:
            checkpoint = await ledger.reconstructor.latest_checkpoint(account_id)
            assert checkpoint.checkpoint_date == date(2024, 1, 5)
            payment = await ledger.deriver.get_operator_payment("op-1")
            assert payment.status == OperatorPaymentStatus.OVERDUE
            rows = await ledger.db.fetchall(
                "SELECT due_date, status FROM operator_payment WHERE recurring_id = ? ORDER BY due_date",
                (recurring.recurring_id,),
            )
            assert rows == [
                ("2024-01-05", "OVERDUE"),
                ("2024-02-05", "OVERDUE"),
                ("2024-03-05", "OVERDUE"),
            ]
