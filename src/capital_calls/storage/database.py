"""SQLite database management."""

import logging
import sqlite3
from datetime import date, datetime, timedelta
from decimal import Decimal

from ..config import Config
from ..errors import CapitalCallNotFoundError, DuplicateAllocationError
from .models import (
    STATUS_DRAFT,
    STATUS_PAID,
    STATUS_PARTIALLY_PAID,
    STATUS_SENT,
    ZERO,
    AllocationRecord,
    CapitalCallRecord,
    InvestorRecord,
    StructureRecord,
)

logger = logging.getLogger(__name__)

SCHEMA_VERSION = 1

SCHEMA = """
-- Schema version tracking
CREATE TABLE IF NOT EXISTS schema_version (
    version INTEGER PRIMARY KEY
);

-- Structures table (only what allocation needs)
CREATE TABLE IF NOT EXISTS structures (
    id TEXT PRIMARY KEY,
    name TEXT NOT NULL,
    gp_percentage TEXT NOT NULL DEFAULT '0',
    base_currency TEXT NOT NULL DEFAULT 'USD',
    created_at TEXT NOT NULL
);

-- Raw LP commitment rows, possibly several per investor
CREATE TABLE IF NOT EXISTS structure_investors (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    structure_id TEXT NOT NULL REFERENCES structures(id) ON DELETE CASCADE,
    user_id TEXT NOT NULL,
    ownership_percent TEXT,
    commitment TEXT,
    fee_discount TEXT,
    vat_exempt INTEGER NOT NULL DEFAULT 0
);

-- Capital calls table
CREATE TABLE IF NOT EXISTS capital_calls (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    structure_id TEXT NOT NULL REFERENCES structures(id),
    call_number INTEGER NOT NULL,
    call_date TEXT,
    due_date TEXT,
    notice_date TEXT,
    deadline_date TEXT,
    total_call_amount TEXT NOT NULL,
    total_paid_amount TEXT NOT NULL DEFAULT '0',
    total_unpaid_amount TEXT,
    status TEXT NOT NULL DEFAULT 'Draft',
    purpose TEXT,
    notes TEXT,
    sent_date TEXT,
    approval_status TEXT,
    management_fee_base TEXT,
    management_fee_rate TEXT,
    fee_rate_on_nic TEXT,
    fee_rate_on_unfunded TEXT,
    fee_period TEXT,
    vat_applicable INTEGER NOT NULL DEFAULT 0,
    vat_rate TEXT,
    created_at TEXT NOT NULL,
    UNIQUE(structure_id, call_number)
);

-- Per-investor allocations, one per (call, investor)
CREATE TABLE IF NOT EXISTS capital_call_allocations (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    capital_call_id INTEGER NOT NULL REFERENCES capital_calls(id) ON DELETE CASCADE,
    user_id TEXT NOT NULL,
    principal_amount TEXT NOT NULL,
    management_fee_gross TEXT NOT NULL,
    management_fee_discount TEXT NOT NULL,
    management_fee_net TEXT NOT NULL,
    vat_amount TEXT NOT NULL,
    total_due TEXT NOT NULL,
    nic_fee_amount TEXT,
    unfunded_fee_amount TEXT,
    fee_offset_amount TEXT,
    deemed_gp_contribution TEXT,
    allocated_amount TEXT NOT NULL,
    paid_amount TEXT NOT NULL,
    capital_paid TEXT NOT NULL,
    fees_paid TEXT NOT NULL,
    vat_paid TEXT NOT NULL,
    remaining_amount TEXT NOT NULL,
    status TEXT NOT NULL,
    due_date TEXT,
    UNIQUE(capital_call_id, user_id)
);

-- Indexes for common queries
CREATE INDEX IF NOT EXISTS idx_structure_investors_structure ON structure_investors(structure_id);
CREATE INDEX IF NOT EXISTS idx_calls_structure ON capital_calls(structure_id);
CREATE INDEX IF NOT EXISTS idx_calls_status ON capital_calls(status);
CREATE INDEX IF NOT EXISTS idx_allocations_call ON capital_call_allocations(capital_call_id);
CREATE INDEX IF NOT EXISTS idx_allocations_user ON capital_call_allocations(user_id);
"""

_CALL_COLUMNS = (
    "structure_id",
    "call_number",
    "call_date",
    "due_date",
    "notice_date",
    "deadline_date",
    "total_call_amount",
    "total_paid_amount",
    "total_unpaid_amount",
    "status",
    "purpose",
    "notes",
    "sent_date",
    "approval_status",
    "management_fee_base",
    "management_fee_rate",
    "fee_rate_on_nic",
    "fee_rate_on_unfunded",
    "fee_period",
    "vat_applicable",
    "vat_rate",
    "created_at",
)

_ALLOCATION_COLUMNS = (
    "capital_call_id",
    "user_id",
    "principal_amount",
    "management_fee_gross",
    "management_fee_discount",
    "management_fee_net",
    "vat_amount",
    "total_due",
    "nic_fee_amount",
    "unfunded_fee_amount",
    "fee_offset_amount",
    "deemed_gp_contribution",
    "allocated_amount",
    "paid_amount",
    "capital_paid",
    "fees_paid",
    "vat_paid",
    "remaining_amount",
    "status",
    "due_date",
)


def _dec(value) -> Decimal | None:
    """Read a TEXT money column back as Decimal."""
    if value is None or value == "":
        return None
    return Decimal(str(value))


def _text(value) -> str | None:
    """Store Decimal (or any number) as TEXT so no precision is lost."""
    if value is None:
        return None
    return str(value)


def _row_to_structure(row: sqlite3.Row) -> StructureRecord:
    return StructureRecord(
        id=row["id"],
        name=row["name"],
        gp_percentage=_dec(row["gp_percentage"]) or ZERO,
        base_currency=row["base_currency"],
        created_at=row["created_at"],
    )


def _row_to_investor(row: sqlite3.Row) -> InvestorRecord:
    return InvestorRecord(
        id=row["id"],
        structure_id=row["structure_id"],
        user_id=row["user_id"],
        ownership_percent=_dec(row["ownership_percent"]),
        commitment=_dec(row["commitment"]),
        fee_discount=_dec(row["fee_discount"]),
        vat_exempt=bool(row["vat_exempt"]),
    )


def _row_to_call(row: sqlite3.Row) -> CapitalCallRecord:
    return CapitalCallRecord(
        id=row["id"],
        structure_id=row["structure_id"],
        call_number=row["call_number"],
        call_date=row["call_date"],
        due_date=row["due_date"],
        notice_date=row["notice_date"],
        deadline_date=row["deadline_date"],
        total_call_amount=_dec(row["total_call_amount"]),
        total_paid_amount=_dec(row["total_paid_amount"]) or ZERO,
        total_unpaid_amount=_dec(row["total_unpaid_amount"]),
        status=row["status"],
        purpose=row["purpose"],
        notes=row["notes"],
        sent_date=row["sent_date"],
        approval_status=row["approval_status"],
        management_fee_base=row["management_fee_base"],
        management_fee_rate=_dec(row["management_fee_rate"]),
        fee_rate_on_nic=_dec(row["fee_rate_on_nic"]),
        fee_rate_on_unfunded=_dec(row["fee_rate_on_unfunded"]),
        fee_period=row["fee_period"],
        vat_applicable=bool(row["vat_applicable"]),
        vat_rate=_dec(row["vat_rate"]),
        created_at=row["created_at"],
    )


def _row_to_allocation(row: sqlite3.Row) -> AllocationRecord:
    return AllocationRecord(
        id=row["id"],
        capital_call_id=row["capital_call_id"],
        user_id=row["user_id"],
        principal_amount=_dec(row["principal_amount"]),
        management_fee_gross=_dec(row["management_fee_gross"]),
        management_fee_discount=_dec(row["management_fee_discount"]),
        management_fee_net=_dec(row["management_fee_net"]),
        vat_amount=_dec(row["vat_amount"]),
        total_due=_dec(row["total_due"]),
        nic_fee_amount=_dec(row["nic_fee_amount"]),
        unfunded_fee_amount=_dec(row["unfunded_fee_amount"]),
        fee_offset_amount=_dec(row["fee_offset_amount"]),
        deemed_gp_contribution=_dec(row["deemed_gp_contribution"]),
        allocated_amount=_dec(row["allocated_amount"]),
        paid_amount=_dec(row["paid_amount"]),
        capital_paid=_dec(row["capital_paid"]),
        fees_paid=_dec(row["fees_paid"]),
        vat_paid=_dec(row["vat_paid"]),
        remaining_amount=_dec(row["remaining_amount"]),
        status=row["status"],
        due_date=row["due_date"],
    )


class Database:
    """SQLite database manager."""

    def __init__(self, config: Config) -> None:
        self.config = config
        self.db_path = config.db_path
        self._conn: sqlite3.Connection | None = None

    def connect(self) -> None:
        """Open database connection and ensure schema exists."""
        self._conn = sqlite3.connect(self.db_path)
        self._conn.row_factory = sqlite3.Row
        self._conn.execute("PRAGMA foreign_keys = ON")
        self._migrate()

    def _migrate(self) -> None:
        """Run schema migrations."""
        cursor = self._conn.cursor()

        # Check if schema_version table exists
        cursor.execute(
            "SELECT name FROM sqlite_master WHERE type='table' AND name='schema_version'"
        )
        if not cursor.fetchone():
            # Fresh database - create all tables
            cursor.executescript(SCHEMA)
            cursor.execute("INSERT INTO schema_version (version) VALUES (?)", (SCHEMA_VERSION,))
            self._conn.commit()
            logger.debug("Created schema version %s at %s", SCHEMA_VERSION, self.db_path)
            return

        cursor.execute("SELECT MAX(version) FROM schema_version")
        current_version = cursor.fetchone()[0] or 0

        if current_version < SCHEMA_VERSION:
            cursor.execute(
                "INSERT OR REPLACE INTO schema_version (version) VALUES (?)", (SCHEMA_VERSION,)
            )
            self._conn.commit()

    @property
    def conn(self) -> sqlite3.Connection:
        if self._conn is None:
            self.connect()
        return self._conn

    def close(self) -> None:
        """Close database connection."""
        if self._conn:
            self._conn.close()
            self._conn = None

    def __enter__(self) -> "Database":
        self.connect()
        return self

    def __exit__(self, *args) -> None:
        self.close()

    # Structure operations

    def upsert_structure(self, structure: StructureRecord) -> str:
        """Insert or update a structure, returning its ID."""
        cursor = self.conn.cursor()
        cursor.execute(
            """
            INSERT INTO structures (id, name, gp_percentage, base_currency, created_at)
            VALUES (?, ?, ?, ?, ?)
            ON CONFLICT(id) DO UPDATE SET
                name = excluded.name,
                gp_percentage = excluded.gp_percentage,
                base_currency = excluded.base_currency
            """,
            (
                structure.id,
                structure.name,
                _text(structure.gp_percentage),
                structure.base_currency,
                structure.created_at,
            ),
        )
        self.conn.commit()
        return structure.id

    def get_structure(self, structure_id: str) -> StructureRecord | None:
        """Get a structure by ID."""
        cursor = self.conn.cursor()
        cursor.execute("SELECT * FROM structures WHERE id = ?", (structure_id,))
        row = cursor.fetchone()
        if not row:
            return None
        return _row_to_structure(row)

    def get_structure_gp_percentage(self, structure_id: str) -> Decimal | None:
        """Get the GP ownership percentage of a structure, None if it does not exist."""
        structure = self.get_structure(structure_id)
        if not structure:
            return None
        return structure.gp_percentage

    def get_all_structures(self) -> list[StructureRecord]:
        """Get all structures."""
        cursor = self.conn.cursor()
        cursor.execute("SELECT * FROM structures ORDER BY name")
        return [_row_to_structure(row) for row in cursor.fetchall()]

    # Investor record operations

    def replace_investor_records(self, structure_id: str, records: list[InvestorRecord]) -> int:
        """Replace all raw investor rows of a structure, returning count inserted."""
        cursor = self.conn.cursor()
        cursor.execute("DELETE FROM structure_investors WHERE structure_id = ?", (structure_id,))
        for r in records:
            cursor.execute(
                """
                INSERT INTO structure_investors (
                    structure_id, user_id, ownership_percent, commitment, fee_discount, vat_exempt
                )
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                (
                    structure_id,
                    r.user_id,
                    _text(r.ownership_percent),
                    _text(r.commitment),
                    _text(r.fee_discount),
                    int(r.vat_exempt),
                ),
            )
        self.conn.commit()
        return len(records)

    def list_investor_records(self, structure_id: str) -> list[InvestorRecord]:
        """Get raw investor rows for a structure, in insertion order."""
        cursor = self.conn.cursor()
        cursor.execute(
            "SELECT * FROM structure_investors WHERE structure_id = ? ORDER BY id",
            (structure_id,),
        )
        return [_row_to_investor(row) for row in cursor.fetchall()]

    # Capital call operations

    def _next_call_number(self, structure_id: str) -> int:
        cursor = self.conn.cursor()
        cursor.execute(
            "SELECT MAX(call_number) FROM capital_calls WHERE structure_id = ?",
            (structure_id,),
        )
        return (cursor.fetchone()[0] or 0) + 1

    def create_call(self, call: CapitalCallRecord) -> int:
        """Insert a capital call, returning its ID.

        Assigns the next sequential call number for the structure when none
        is given, and starts the unpaid total at the call amount.
        """
        if call.call_number is None:
            call.call_number = self._next_call_number(call.structure_id)
        if call.total_unpaid_amount is None:
            call.total_unpaid_amount = call.total_call_amount - call.total_paid_amount

        values = [getattr(call, c) for c in _CALL_COLUMNS]
        values = [
            int(v) if isinstance(v, bool) else _text(v) if isinstance(v, Decimal) else v
            for v in values
        ]
        cursor = self.conn.cursor()
        cursor.execute(
            f"""
            INSERT INTO capital_calls ({", ".join(_CALL_COLUMNS)})
            VALUES ({", ".join("?" for _ in _CALL_COLUMNS)})
            RETURNING id
            """,
            values,
        )
        call.id = cursor.fetchone()[0]
        self.conn.commit()
        logger.debug("Created capital call %s (#%s) for %s", call.id, call.call_number, call.structure_id)
        return call.id

    def get_call(self, call_id: int) -> CapitalCallRecord | None:
        """Get a capital call by ID."""
        cursor = self.conn.cursor()
        cursor.execute("SELECT * FROM capital_calls WHERE id = ?", (call_id,))
        row = cursor.fetchone()
        if not row:
            return None
        return _row_to_call(row)

    def list_calls(
        self,
        structure_id: str | None = None,
        statuses: tuple[str, ...] | None = None,
        exclude_call_id: int | None = None,
    ) -> list[CapitalCallRecord]:
        """Get capital calls, ordered by call date then call number."""
        query = "SELECT * FROM capital_calls WHERE 1 = 1"
        params: list = []
        if structure_id is not None:
            query += " AND structure_id = ?"
            params.append(structure_id)
        if statuses:
            query += f" AND status IN ({', '.join('?' for _ in statuses)})"
            params.extend(statuses)
        if exclude_call_id is not None:
            query += " AND id != ?"
            params.append(exclude_call_id)
        query += " ORDER BY call_date, call_number"

        cursor = self.conn.cursor()
        cursor.execute(query, params)
        return [_row_to_call(row) for row in cursor.fetchall()]

    def _update_call(self, call_id: int, **fields) -> CapitalCallRecord:
        if self.get_call(call_id) is None:
            raise CapitalCallNotFoundError(call_id)
        assignments = ", ".join(f"{name} = ?" for name in fields)
        values = [_text(v) if isinstance(v, Decimal) else v for v in fields.values()]
        cursor = self.conn.cursor()
        cursor.execute(
            f"UPDATE capital_calls SET {assignments} WHERE id = ?",
            (*values, call_id),
        )
        self.conn.commit()
        return self.get_call(call_id)

    def mark_call_sent(self, call_id: int, sent_date: str | None = None) -> CapitalCallRecord:
        """Mark a capital call as sent to investors."""
        return self._update_call(
            call_id,
            status=STATUS_SENT,
            sent_date=sent_date or datetime.utcnow().isoformat(),
        )

    def mark_call_paid(self, call_id: int) -> CapitalCallRecord:
        """Mark a capital call as fully paid."""
        return self._update_call(call_id, status=STATUS_PAID)

    def update_payment_amounts(self, call_id: int, paid_amount: Decimal) -> CapitalCallRecord:
        """Add a received payment to the call totals and advance its status."""
        call = self.get_call(call_id)
        if call is None:
            raise CapitalCallNotFoundError(call_id)

        total_paid = call.total_paid_amount + paid_amount
        total_unpaid = call.total_call_amount - total_paid
        fields = {"total_paid_amount": total_paid, "total_unpaid_amount": total_unpaid}

        if total_unpaid <= 0:
            fields["status"] = STATUS_PAID
        elif total_paid > 0 and call.status in (STATUS_DRAFT, STATUS_SENT):
            fields["status"] = STATUS_PARTIALLY_PAID

        return self._update_call(call_id, **fields)

    def delete_call(self, call_id: int) -> bool:
        """Delete a capital call and, by cascade, its allocations."""
        cursor = self.conn.cursor()
        cursor.execute("DELETE FROM capital_calls WHERE id = ?", (call_id,))
        self.conn.commit()
        return cursor.rowcount > 0

    def find_calls_to_notify(self, on_date: date) -> list[CapitalCallRecord]:
        """Draft calls whose notice date is the given day."""
        cursor = self.conn.cursor()
        cursor.execute(
            "SELECT * FROM capital_calls WHERE notice_date = ? AND status = ?",
            (on_date.isoformat(), STATUS_DRAFT),
        )
        return [_row_to_call(row) for row in cursor.fetchall()]

    def find_calls_for_deadline_reminder(
        self, days_before_deadline: int, today: date | None = None
    ) -> list[CapitalCallRecord]:
        """Sent or partially paid calls whose deadline is N days from today."""
        target = (today or date.today()) + timedelta(days=days_before_deadline)
        cursor = self.conn.cursor()
        cursor.execute(
            "SELECT * FROM capital_calls WHERE deadline_date = ? AND status IN (?, ?)",
            (target.isoformat(), STATUS_SENT, STATUS_PARTIALLY_PAID),
        )
        return [_row_to_call(row) for row in cursor.fetchall()]

    # Allocation operations

    def has_allocations(self, call_id: int) -> bool:
        """Check if a call already has allocations."""
        cursor = self.conn.cursor()
        cursor.execute(
            "SELECT 1 FROM capital_call_allocations WHERE capital_call_id = ? LIMIT 1",
            (call_id,),
        )
        return cursor.fetchone() is not None

    def insert_allocations(self, allocations: list[AllocationRecord]) -> list[AllocationRecord]:
        """Insert a batch of allocations in one transaction.

        Raises:
            DuplicateAllocationError: If any (call, investor) pair already exists.
                Nothing from the batch is kept.
        """
        if not allocations:
            return []

        rows = [
            tuple(
                _text(v) if isinstance(v, Decimal) else v
                for v in (getattr(a, c) for c in _ALLOCATION_COLUMNS)
            )
            for a in allocations
        ]
        conn = self.conn
        try:
            with conn:
                conn.executemany(
                    f"""
                    INSERT INTO capital_call_allocations ({", ".join(_ALLOCATION_COLUMNS)})
                    VALUES ({", ".join("?" for _ in _ALLOCATION_COLUMNS)})
                    """,
                    rows,
                )
        except sqlite3.IntegrityError as e:
            call_id = allocations[0].capital_call_id
            if "UNIQUE" in str(e):
                raise DuplicateAllocationError(call_id) from e
            raise

        return self.list_allocations(capital_call_id=allocations[0].capital_call_id)

    def list_allocations(
        self,
        capital_call_id: int | None = None,
        user_id: str | None = None,
        structure_id: str | None = None,
        call_statuses: tuple[str, ...] | None = None,
        exclude_call_id: int | None = None,
        before_call_number: int | None = None,
    ) -> list[AllocationRecord]:
        """Get allocations matching all given filters.

        structure_id, call_statuses, exclude_call_id and before_call_number
        filter on the owning call.
        """
        query = """
            SELECT a.* FROM capital_call_allocations a
            JOIN capital_calls c ON c.id = a.capital_call_id
            WHERE 1 = 1
        """
        params: list = []
        if capital_call_id is not None:
            query += " AND a.capital_call_id = ?"
            params.append(capital_call_id)
        if user_id is not None:
            query += " AND a.user_id = ?"
            params.append(user_id)
        if structure_id is not None:
            query += " AND c.structure_id = ?"
            params.append(structure_id)
        if call_statuses:
            query += f" AND c.status IN ({', '.join('?' for _ in call_statuses)})"
            params.extend(call_statuses)
        if exclude_call_id is not None:
            query += " AND a.capital_call_id != ?"
            params.append(exclude_call_id)
        if before_call_number is not None:
            query += " AND c.call_number < ?"
            params.append(before_call_number)
        query += " ORDER BY a.capital_call_id, a.id"

        cursor = self.conn.cursor()
        cursor.execute(query, params)
        return [_row_to_allocation(row) for row in cursor.fetchall()]

    def get_unpaid_allocations(self, call_id: int) -> list[AllocationRecord]:
        """Get allocations of a call that are not fully paid."""
        return [a for a in self.list_allocations(capital_call_id=call_id) if a.status != STATUS_PAID]
