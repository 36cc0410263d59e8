"""Invoice generation pipelines behind the CLI commands.

generate: config -> period -> fetch entries -> group -> per contract:
          assemble -> persist -> number -> render
custom:   config -> contract -> user items -> persist -> number -> render

Each invoice row is committed only after its PDF is written, so a failed
render never leaves a numbered row without a document.
"""

import logging
import sqlite3
from dataclasses import dataclass, field
from datetime import date
from pathlib import Path
from typing import Callable

from . import db
from .config import Config
from .invoicing import (
    Contract,
    InvoiceItem,
    Owner,
    ServiceNotAvailableError,
    TimeEntry,
    assemble_invoice,
    build_custom_invoice,
    compute_invoice,
    find_contract,
    format_invoice_number,
    group_by_client,
    invoice_to_dict,
    is_positive_amount,
    resolve_period,
    with_invoice_number,
)
from .render import RenderError, write_invoice_pdf
from .toggl import fetch_time_entries

logger = logging.getLogger("timebill.commands")


class InvoiceRunError(RuntimeError):
    """One or more invoices in a run could not be produced."""


@dataclass
class GenerationReport:
    period: tuple[str, str]
    invoices: list[dict] = field(default_factory=list)
    failures: list[tuple[str, str]] = field(default_factory=list)  # (client, error)

    @property
    def ok(self) -> bool:
        return not self.failures

    def raise_for_failures(self) -> None:
        if self.ok:
            return
        details = "; ".join(f"{client}: {error}" for client, error in self.failures)
        raise InvoiceRunError(
            f"{len(self.failures)} of {len(self.failures) + len(self.invoices)} "
            f"invoice(s) failed: {details}"
        )


def _safe_filename(name: str) -> str:
    return name.replace("/", "_").replace("\\", "_")


def _ensure_dir(path: Path) -> None:
    try:
        path.mkdir(parents=True, exist_ok=True)
    except OSError as e:
        raise InvoiceRunError(f"Failed to create directory {path}: {e}") from e


def _generate_contract_invoice(
    conn: sqlite3.Connection,
    config: Config,
    owner: Owner,
    contract: Contract,
    period: tuple[str, str],
    entries: list[TimeEntry],
    output_dir: Path,
    today: date,
) -> dict:
    draft = assemble_invoice(
        contract, owner, period, entries,
        timezone=config.timezone,
        today=today,
    )
    invoice_id = db.insert_invoice(conn, draft)
    number = format_invoice_number(owner.invoice_prefix, invoice_id, issued=today)
    db.set_invoice_number(conn, invoice_id, number)

    invoice = compute_invoice(with_invoice_number(draft, number))
    output_path = output_dir / f"invoice_{_safe_filename(contract.name)}_{period[0][:7]}.pdf"
    write_invoice_pdf(invoice, output_path, currency=config.currency)
    conn.commit()

    logger.info("Generated invoice for %s: %s", contract.name, output_path)
    return {"invoice_id": invoice_id, **invoice_to_dict(invoice), "file": str(output_path)}


def generate_invoices(
    config: Config,
    month: str | None = None,
    client: str | None = None,
    output_dir: Path | str | None = None,
    fail_fast: bool = False,
    today: date | None = None,
) -> GenerationReport:
    """Generate one invoice per contract for a month of tracked time.

    Args:
        month: YYYY-MM billing month; defaults to the current month.
        client: Only invoice the contract with this name.
        output_dir: Where PDFs are written; defaults to config.output_dir.
        fail_fast: Stop at the first failing contract instead of
            collecting failures in the report.
        today: Run date, used for the due date and the invoice number.

    Raises ContractNotFoundError when ``client`` matches no contract, and
    TogglError when entries cannot be fetched. Per-contract failures are
    collected in the returned report unless ``fail_fast`` is set.
    """
    owner = config.require_owner()
    today = today or date.today()
    db.init_db(config.db_path)

    out_dir = Path(output_dir) if output_dir else config.output_dir
    _ensure_dir(out_dir)

    period = resolve_period(month, today=today)
    report = GenerationReport(period=period)
    logger.info("Generating invoices for period: %s to %s", *period)

    if client:
        contracts = [find_contract(config.contracts, client)]
    else:
        contracts = list(config.contracts)
    if not contracts:
        logger.info("No contracts found to process")
        return report

    entries_by_client = group_by_client(fetch_time_entries(config, *period))

    with db.get_db(config.db_path) as conn:
        for contract in contracts:
            try:
                summary = _generate_contract_invoice(
                    conn, config, owner, contract, period,
                    entries_by_client.get(contract.name, []),
                    out_dir, today,
                )
            except (ServiceNotAvailableError, RenderError, sqlite3.Error) as e:
                conn.rollback()
                if fail_fast:
                    raise
                logger.error("Invoice for %s failed: %s", contract.name, e)
                report.failures.append((contract.name, str(e)))
                continue
            report.invoices.append(summary)

    if not client:
        for name in entries_by_client:
            if name not in {c.name for c in config.contracts}:
                logger.warning("Tracked time for %r has no contract", name)

    return report


def create_custom_invoice(
    config: Config,
    client: str,
    items: list[InvoiceItem],
    issue_date: str | None = None,
    due_date: str | None = None,
    output_dir: Path | str | None = None,
    today: date | None = None,
) -> dict:
    """Create a one-off invoice for a client from a given item list."""
    owner = config.require_owner()
    today = today or date.today()
    db.init_db(config.db_path)

    contract = find_contract(config.contracts, client)
    out_dir = Path(output_dir) if output_dir else config.output_dir
    _ensure_dir(out_dir)

    draft = build_custom_invoice(
        contract, owner, items,
        issue_date=issue_date,
        due_date=due_date,
        today=today,
    )

    with db.get_db(config.db_path) as conn:
        invoice_id = db.insert_invoice(conn, draft)
        number = format_invoice_number(owner.invoice_prefix, invoice_id)
        db.set_invoice_number(conn, invoice_id, number)

        invoice = compute_invoice(with_invoice_number(draft, number))
        output_path = out_dir / f"custom_invoice_{_safe_filename(contract.name)}_{today.isoformat()}.pdf"
        write_invoice_pdf(invoice, output_path, currency=config.currency)

    logger.info("Generated custom invoice for %s: %s", contract.name, output_path)
    return {"invoice_id": invoice_id, **invoice_to_dict(invoice), "file": str(output_path)}


def prompt_custom_items(
    contract: Contract,
    input_fn: Callable[[str], str] = input,
    output_fn: Callable[[str], None] = print,
) -> list[InvoiceItem]:
    """Ask for line items on the terminal until an empty description.

    Entering a contract service name pre-fills its price.
    """
    output_fn(f"Creating custom invoice for: {contract.name}")
    if contract.services:
        output_fn("Available services from contract:")
        for idx, service in enumerate(contract.services, 1):
            output_fn(f"  {idx}. {service.name} - {service.price:.2f} ({service.type})")

    items = []
    while True:
        description = input_fn("Description (empty to finish): ").strip()
        if not description:
            break
        service = contract.find_service(description)

        qty = _prompt_number(input_fn, output_fn, "Quantity [1]: ", default=1.0)
        default_price = service.price if service else None
        price_prompt = f"Unit price [{default_price:.2f}]: " if default_price is not None else "Unit price: "
        unit_price = _prompt_number(input_fn, output_fn, price_prompt, default=default_price)
        period = input_fn("Period (optional): ").strip()

        items.append(InvoiceItem(
            description=description,
            period=period,
            qty=qty,
            unit_price=unit_price,
        ))

    if not items:
        raise ValueError("At least one line item is required")
    return items


def _prompt_number(
    input_fn: Callable[[str], str],
    output_fn: Callable[[str], None],
    prompt: str,
    default: float | None = None,
) -> float:
    while True:
        raw = input_fn(prompt).strip()
        if not raw and default is not None:
            return default
        try:
            value = float(raw)
        except ValueError:
            output_fn(f"Not a number: {raw!r}")
            continue
        if is_positive_amount(value):
            return value
        output_fn(f"Must be a positive number: {raw!r}")
