"""
Ledger 스키마 초기화

호출 프로세스 / 스크립트 시작 시 Ledger 테이블, 인덱스, 트리거, View 생성.
CREATE IF NOT EXISTS / DROP VIEW IF EXISTS 패턴으로 안전하게 동작.

금액은 모두 TEXT (Decimal 문자열)로 저장.
"""

import logging
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from adapters.db.sqlite_adapter import SQLiteAdapter

logger = logging.getLogger(__name__)

LEDGER_TABLES: tuple[str, ...] = (
    "financial_account",
    "ledger_movement",
    "exchange_rate",
    "iva_record",
    "recurring_payment",
    "operator_payment",
    "balance_checkpoint",
)


async def init_ledger_schema(db: "SQLiteAdapter") -> None:
    """Ledger 스키마 초기화 (테이블 + 인덱스 + 트리거 + View)

    이미 존재하는 경우 안전하게 건너뜀 (IF NOT EXISTS).

    Args:
        db: SQLiteAdapter 인스턴스
    """
    await _create_ledger_tables(db)
    await _create_ledger_indexes(db)
    await _create_ledger_triggers(db)
    await _create_ledger_views(db)
    logger.info("Ledger 스키마 초기화 완료")


async def _create_ledger_tables(db: "SQLiteAdapter") -> None:
    """Ledger 테이블 생성"""

    # financial_account: initial_* 컬럼은 생성 후 변경 불가 (트리거)
    await db.execute("""
        CREATE TABLE IF NOT EXISTS financial_account (
            account_id            TEXT PRIMARY KEY,
            name                  TEXT NOT NULL,
            currency              TEXT NOT NULL CHECK (currency IN ('ARS', 'USD')),
            initial_balance       TEXT NOT NULL DEFAULT '0',
            initial_exchange_rate TEXT,
            initial_base_balance  TEXT NOT NULL DEFAULT '0',
            is_active             INTEGER NOT NULL DEFAULT 1,
            owner_id              TEXT,
            created_at            TEXT NOT NULL
        )
    """)

    # ledger_movement: append-only
    await db.execute("""
        CREATE TABLE IF NOT EXISTS ledger_movement (
            movement_id      TEXT PRIMARY KEY,
            account_id       TEXT,
            operation_id     TEXT,
            lead_id          TEXT,
            movement_type    TEXT NOT NULL,
            currency         TEXT NOT NULL CHECK (currency IN ('ARS', 'USD')),
            amount_original  TEXT NOT NULL,
            exchange_rate    TEXT,
            base_amount      TEXT NOT NULL,
            method           TEXT NOT NULL DEFAULT 'OTHER',
            reference        TEXT,
            concept          TEXT,
            created_by       TEXT,
            created_at       TEXT NOT NULL,
            FOREIGN KEY (account_id) REFERENCES financial_account(account_id)
        )
    """)

    # exchange_rate: 날짜당 1건 (1 USD당 ARS)
    await db.execute("""
        CREATE TABLE IF NOT EXISTS exchange_rate (
            rate_date        TEXT PRIMARY KEY,
            rate             TEXT NOT NULL,
            source           TEXT NOT NULL DEFAULT 'MANUAL',
            notes            TEXT,
            created_by       TEXT,
            created_at       TEXT NOT NULL,
            updated_at       TEXT NOT NULL
        )
    """)

    # iva_record: operation당 방향별 1건
    await db.execute("""
        CREATE TABLE IF NOT EXISTS iva_record (
            record_id        TEXT PRIMARY KEY,
            direction        TEXT NOT NULL CHECK (direction IN ('SALE', 'PURCHASE')),
            operation_id     TEXT NOT NULL,
            operator_id      TEXT,
            gross_amount     TEXT NOT NULL,
            operator_cost    TEXT NOT NULL DEFAULT '0',
            net_amount       TEXT NOT NULL,
            iva_amount       TEXT NOT NULL,
            currency         TEXT NOT NULL,
            exchange_rate    TEXT NOT NULL,
            iva_base_amount  TEXT NOT NULL,
            reference_date   TEXT NOT NULL,
            created_at       TEXT NOT NULL,
            UNIQUE(operation_id, direction)
        )
    """)

    # recurring_payment: 운영사 정기 지급 (operation과 무관한 고정 비용)
    await db.execute("""
        CREATE TABLE IF NOT EXISTS recurring_payment (
            recurring_id        TEXT PRIMARY KEY,
            operator_id         TEXT NOT NULL,
            amount              TEXT NOT NULL,
            currency            TEXT NOT NULL CHECK (currency IN ('ARS', 'USD')),
            frequency           TEXT NOT NULL,
            start_date          TEXT NOT NULL,
            end_date            TEXT,
            next_due_date       TEXT NOT NULL,
            last_generated_date TEXT,
            is_active           INTEGER NOT NULL DEFAULT 1,
            description         TEXT NOT NULL,
            notes               TEXT,
            invoice_number      TEXT,
            reference           TEXT,
            created_by          TEXT,
            created_at          TEXT NOT NULL,
            updated_at          TEXT NOT NULL
        )
    """)

    # operator_payment: operation당 1건 또는 정기 지급 회차당 1건
    await db.execute("""
        CREATE TABLE IF NOT EXISTS operator_payment (
            payment_id         TEXT PRIMARY KEY,
            operation_id       TEXT UNIQUE,
            recurring_id       TEXT,
            operator_id        TEXT NOT NULL,
            amount             TEXT NOT NULL,
            currency           TEXT NOT NULL,
            due_date           TEXT NOT NULL,
            status             TEXT NOT NULL DEFAULT 'PENDING',
            ledger_movement_id TEXT,
            notes              TEXT,
            created_at         TEXT NOT NULL,
            updated_at         TEXT NOT NULL,
            CHECK (operation_id IS NOT NULL OR recurring_id IS NOT NULL),
            UNIQUE(recurring_id, due_date),
            FOREIGN KEY (recurring_id) REFERENCES recurring_payment(recurring_id),
            FOREIGN KEY (ledger_movement_id) REFERENCES ledger_movement(movement_id)
        )
    """)

    # balance_checkpoint: 영업일 종료 시점 잔액 (기준통화)
    await db.execute("""
        CREATE TABLE IF NOT EXISTS balance_checkpoint (
            account_id       TEXT NOT NULL,
            checkpoint_date  TEXT NOT NULL,
            balance          TEXT NOT NULL,
            movement_count   INTEGER NOT NULL DEFAULT 0,
            created_at       TEXT NOT NULL,
            UNIQUE(account_id, checkpoint_date),
            FOREIGN KEY (account_id) REFERENCES financial_account(account_id)
        )
    """)

    logger.debug("Ledger 테이블 생성 완료")


async def _create_ledger_indexes(db: "SQLiteAdapter") -> None:
    """인덱스 생성"""
    await db.execute(
        "CREATE INDEX IF NOT EXISTS idx_movement_account_ts "
        "ON ledger_movement(account_id, created_at)"
    )
    await db.execute(
        "CREATE INDEX IF NOT EXISTS idx_movement_operation "
        "ON ledger_movement(operation_id)"
    )
    await db.execute(
        "CREATE INDEX IF NOT EXISTS idx_movement_lead "
        "ON ledger_movement(lead_id)"
    )
    await db.execute(
        "CREATE INDEX IF NOT EXISTS idx_movement_type_ts "
        "ON ledger_movement(movement_type, created_at)"
    )
    # 환차 이동은 operation당 1건
    await db.execute(
        "CREATE UNIQUE INDEX IF NOT EXISTS idx_movement_fx_once "
        "ON ledger_movement(operation_id) "
        "WHERE movement_type IN ('FX_GAIN', 'FX_LOSS') AND operation_id IS NOT NULL"
    )
    await db.execute(
        "CREATE INDEX IF NOT EXISTS idx_iva_reference_date "
        "ON iva_record(reference_date)"
    )
    await db.execute(
        "CREATE INDEX IF NOT EXISTS idx_opay_status_due "
        "ON operator_payment(status, due_date)"
    )
    await db.execute(
        "CREATE INDEX IF NOT EXISTS idx_recurring_active_due "
        "ON recurring_payment(is_active, next_due_date)"
    )
    logger.debug("Ledger 인덱스 생성 완료")


async def _create_ledger_triggers(db: "SQLiteAdapter") -> None:
    """불변 규칙 트리거 생성

    - ledger_movement: UPDATE / DELETE 거부 (append-only)
    - financial_account: 통화 / 초기 잔액 변경 거부
    - iva_record: UPDATE 거부 (write-once)
    """
    await db.execute("""
        CREATE TRIGGER IF NOT EXISTS trg_movement_no_update
        BEFORE UPDATE ON ledger_movement
        BEGIN
            SELECT RAISE(ABORT, 'ledger_movement is append-only');
        END
    """)
    await db.execute("""
        CREATE TRIGGER IF NOT EXISTS trg_movement_no_delete
        BEFORE DELETE ON ledger_movement
        BEGIN
            SELECT RAISE(ABORT, 'ledger_movement is append-only');
        END
    """)
    await db.execute("""
        CREATE TRIGGER IF NOT EXISTS trg_account_initial_immutable
        BEFORE UPDATE OF currency, initial_balance, initial_exchange_rate, initial_base_balance
        ON financial_account
        BEGIN
            SELECT RAISE(ABORT, 'financial_account initial balance is write-once');
        END
    """)
    await db.execute("""
        CREATE TRIGGER IF NOT EXISTS trg_iva_no_update
        BEFORE UPDATE ON iva_record
        BEGIN
            SELECT RAISE(ABORT, 'iva_record is write-once');
        END
    """)
    logger.debug("Ledger 트리거 생성 완료")


async def _create_ledger_views(db: "SQLiteAdapter") -> None:
    """Ledger View 생성

    View는 조회/점검용 (REAL 근사값). 정확한 잔액은 BalanceValidator 사용.
    """

    # 계정별 이동 요약 View (v_account_summary)
    await db.execute("DROP VIEW IF EXISTS v_account_summary")
    await db.execute("""
        CREATE VIEW v_account_summary AS
        SELECT
            fa.account_id,
            fa.name,
            fa.currency,
            fa.is_active,
            CAST(fa.initial_base_balance AS REAL) as initial_base_balance,
            COUNT(lm.movement_id) as movement_count,
            COALESCE(SUM(CASE
                WHEN lm.movement_type IN ('INCOME', 'FX_GAIN')
                THEN CAST(lm.base_amount AS REAL)
                WHEN lm.movement_type IN ('EXPENSE', 'FX_LOSS', 'OPERATOR_PAYMENT')
                THEN -CAST(lm.base_amount AS REAL)
                ELSE 0
            END), 0) as net_movement,
            MAX(lm.created_at) as last_movement_at
        FROM financial_account fa
        LEFT JOIN ledger_movement lm ON lm.account_id = fa.account_id
        GROUP BY fa.account_id
    """)

    logger.debug("Ledger View 생성 완료")
