"""Database operations for persisted invoices."""

import json
import logging
import sqlite3
from contextlib import contextmanager
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Iterator

from .invoicing import DraftInvoice

logger = logging.getLogger("timebill.db")

SCHEMA = """
CREATE TABLE IF NOT EXISTS invoices (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    invoice_number TEXT,
    issue_date TEXT NOT NULL,
    due_date TEXT NOT NULL,
    bill_to_name TEXT,
    bill_to_company_number TEXT,
    tax_rate REAL NOT NULL DEFAULT 0,
    items_json TEXT,
    timesheets_json TEXT,
    created_at TEXT DEFAULT (datetime('now'))
);

CREATE INDEX IF NOT EXISTS idx_invoices_bill_to_name ON invoices(bill_to_name);
"""


@dataclass
class InvoiceRow:
    id: int
    invoice_number: str | None
    issue_date: str
    due_date: str
    bill_to_name: str | None
    bill_to_company_number: str | None
    tax_rate: float
    items: list[dict]
    timesheets: list[dict]
    created_at: str | None = None

    @property
    def subtotal(self) -> float:
        return sum(item["qty"] * item["unit_price"] for item in self.items)

    @property
    def total(self) -> float:
        subtotal = self.subtotal
        return subtotal + subtotal * self.tax_rate / 100


def _run_migrations(conn: sqlite3.Connection) -> None:
    """Add columns missing from databases created by older versions."""
    for col, col_type in [
        ("invoice_number", "TEXT"),
        ("tax_rate", "REAL NOT NULL DEFAULT 0"),
        ("created_at", "TEXT"),
    ]:
        try:
            conn.execute(f"ALTER TABLE invoices ADD COLUMN {col} {col_type}")
        except sqlite3.OperationalError:
            pass  # Column already exists or table doesn't exist yet


def init_db(db_path: Path) -> None:
    """Initialize database with schema."""
    db_path.parent.mkdir(parents=True, exist_ok=True)
    with sqlite3.connect(db_path) as conn:
        _run_migrations(conn)
        conn.executescript(SCHEMA)
    logger.debug("Database ready at %s", db_path)


@contextmanager
def get_db(db_path: Path) -> Iterator[sqlite3.Connection]:
    """Get database connection with row factory."""
    conn = sqlite3.connect(db_path, timeout=30.0)
    conn.row_factory = sqlite3.Row
    try:
        yield conn
        conn.commit()
    finally:
        conn.close()


def insert_invoice(conn: sqlite3.Connection, invoice: DraftInvoice) -> int:
    """Persist a draft invoice and return its row id."""
    cursor = conn.execute(
        """
        INSERT INTO invoices (
            invoice_number, issue_date, due_date, bill_to_name,
            bill_to_company_number, tax_rate, items_json, timesheets_json
        ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
        """,
        (
            invoice.invoice_number,
            invoice.issue_date,
            invoice.due_date,
            invoice.bill_to.name,
            invoice.bill_to.company_number,
            invoice.tax_rate,
            json.dumps([asdict(item) for item in invoice.items]),
            json.dumps([asdict(row) for row in invoice.timesheets]),
        ),
    )
    invoice_id = cursor.lastrowid
    logger.debug("Inserted invoice %d for %s", invoice_id, invoice.bill_to.name)
    return invoice_id


def set_invoice_number(conn: sqlite3.Connection, invoice_id: int, number: str) -> None:
    conn.execute(
        "UPDATE invoices SET invoice_number = ? WHERE id = ?",
        (number, invoice_id),
    )


def _row_to_invoice(row: sqlite3.Row) -> InvoiceRow:
    return InvoiceRow(
        id=row["id"],
        invoice_number=row["invoice_number"],
        issue_date=row["issue_date"],
        due_date=row["due_date"],
        bill_to_name=row["bill_to_name"],
        bill_to_company_number=row["bill_to_company_number"],
        tax_rate=row["tax_rate"] or 0,
        items=json.loads(row["items_json"]) if row["items_json"] else [],
        timesheets=json.loads(row["timesheets_json"]) if row["timesheets_json"] else [],
        created_at=row["created_at"],
    )


def get_invoice(conn: sqlite3.Connection, invoice_id: int) -> InvoiceRow | None:
    cursor = conn.execute("SELECT * FROM invoices WHERE id = ?", (invoice_id,))
    row = cursor.fetchone()
    return _row_to_invoice(row) if row else None


def list_invoices(
    conn: sqlite3.Connection,
    client: str | None = None,
    limit: int = 10,
) -> list[InvoiceRow]:
    """List invoices, newest first, optionally for one client."""
    query = "SELECT * FROM invoices"
    params: list = []
    if client:
        query += " WHERE bill_to_name = ?"
        params.append(client)
    query += " ORDER BY id DESC LIMIT ?"
    params.append(limit)
    cursor = conn.execute(query, params)
    return [_row_to_invoice(row) for row in cursor.fetchall()]
