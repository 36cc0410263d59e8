"""Invoice assembly from contracts and tracked time.

Turns a month of time entries into one invoice per contract:
    resolve_period -> group_by_client -> assemble_invoice -> compute_invoice

Fixed-price services become one line item each. Hourly services are matched
by name against the entry's project and billed for the summed duration.
Amounts are never rounded here; rounding happens only in the rendered text.
"""

import calendar
import json
import math
import re
from dataclasses import dataclass, replace
from datetime import date, datetime, timedelta
from zoneinfo import ZoneInfo

PLACEHOLDER_NUMBER = "INV-temp"
SERVICE_TYPES = ("fixed", "hourly")
ENTITY_TYPES = ("entrepreneurship", "company")

_MONTH_RE = re.compile(r"^(\d{4})-(\d{1,2})$")


class ServiceNotAvailableError(ValueError):
    """Tracked project has no matching service in the client's contract."""

    def __init__(self, service: str, client: str):
        self.service = service
        self.client = client
        super().__init__(f"Service {service} is not available for client {client}")


class ContractNotFoundError(LookupError):
    """No contract matches the requested client name."""

    def __init__(self, client: str):
        self.client = client
        super().__init__(f"No contract found for client: {client}")


@dataclass(frozen=True)
class Service:
    name: str
    price: float
    type: str = "hourly"  # "fixed" | "hourly"


@dataclass(frozen=True)
class Contract:
    name: str
    notice: int  # days added to month end for the due date
    tax: float  # percent
    services: tuple[Service, ...] = ()
    address: str = ""
    city: str = ""
    zip: str = ""
    state: str = ""
    country: str = ""
    company_number: str = ""
    tracking_number: int | None = None
    lang: str = ""

    def find_service(self, name: str) -> Service | None:
        for service in self.services:
            if service.name == name:
                return service
        return None


@dataclass(frozen=True)
class Owner:
    name: str
    invoice_prefix: str
    entity_number: str = ""
    entity_type: str = "entrepreneurship"
    address: str = ""
    city: str = ""
    country: str = ""
    phone: str = ""
    iban: str = ""
    email: str = ""


@dataclass(frozen=True)
class TimeEntry:
    client_name: str
    project_name: str
    description: str
    duration: int  # seconds
    start: datetime
    stop: datetime | None = None


@dataclass(frozen=True)
class Sender:
    name: str
    entity_number: str = ""
    entity_type: str = "entrepreneurship"
    address: str = ""
    city: str = ""
    country: str = ""
    phone: str = ""
    iban: str = ""


@dataclass(frozen=True)
class BillTo:
    name: str
    company_number: str = ""
    address: str = ""
    city: str = ""
    state: str = ""
    zip: str = ""
    country: str = ""


@dataclass(frozen=True)
class InvoiceItem:
    description: str
    period: str
    qty: float
    unit_price: float


@dataclass(frozen=True)
class ComputedItem:
    description: str
    period: str
    qty: float
    unit_price: float
    amount: float


@dataclass(frozen=True)
class TimesheetRow:
    """Display-only projection of a time entry for the summary page."""
    seconds: str  # hours with two decimals, e.g. "1.50"
    name: str
    start: str  # "YYYY-MM-DD HH:MM:SS"
    end: str  # "HH:MM:SS"


@dataclass(frozen=True)
class DraftInvoice:
    invoice_number: str
    issue_date: str
    due_date: str
    sender: Sender
    bill_to: BillTo
    items: tuple[InvoiceItem, ...]
    tax_rate: float
    timesheets: tuple[TimesheetRow, ...] = ()


@dataclass(frozen=True)
class ComputedInvoice:
    """A draft invoice with every derived amount filled in."""
    draft: DraftInvoice
    items: tuple[ComputedItem, ...]
    subtotal: float
    tax: float
    total: float
    amount_due: float

    @property
    def invoice_number(self) -> str:
        return self.draft.invoice_number

    @property
    def issue_date(self) -> str:
        return self.draft.issue_date

    @property
    def due_date(self) -> str:
        return self.draft.due_date

    @property
    def sender(self) -> Sender:
        return self.draft.sender

    @property
    def bill_to(self) -> BillTo:
        return self.draft.bill_to

    @property
    def tax_rate(self) -> float:
        return self.draft.tax_rate

    @property
    def timesheets(self) -> tuple[TimesheetRow, ...]:
        return self.draft.timesheets


# --- Time range ---


def _month_end(day: date) -> date:
    return day.replace(day=calendar.monthrange(day.year, day.month)[1])


def resolve_period(month: str | None = None, today: date | None = None) -> tuple[str, str]:
    """Return ISO (first_day, last_day) for a YYYY-MM month.

    Defaults to the month containing ``today``. Raises ValueError when the
    month string is not a valid year-month.
    """
    if month is None:
        target = today or date.today()
    else:
        match = _MONTH_RE.match(month.strip())
        if not match:
            raise ValueError(f"Invalid month {month!r}, expected YYYY-MM")
        year, month_num = int(match.group(1)), int(match.group(2))
        if not 1 <= month_num <= 12:
            raise ValueError(f"Invalid month {month!r}, expected YYYY-MM")
        target = date(year, month_num, 1)

    first = target.replace(day=1)
    return first.isoformat(), _month_end(first).isoformat()


# --- Grouping ---


def group_by_client(entries: list[TimeEntry]) -> dict[str, list[TimeEntry]]:
    """Group entries by client name, in order of first appearance."""
    groups: dict[str, list[TimeEntry]] = {}
    for entry in entries:
        groups.setdefault(entry.client_name or "", []).append(entry)
    return groups


def group_by_project(entries: list[TimeEntry]) -> dict[str, list[TimeEntry]]:
    """Group entries by project (service) name, in order of first appearance."""
    groups: dict[str, list[TimeEntry]] = {}
    for entry in entries:
        groups.setdefault(entry.project_name or "", []).append(entry)
    return groups


def total_seconds(entries: list[TimeEntry]) -> int:
    return sum(entry.duration for entry in entries)


# --- Assembly ---


def sender_from_owner(owner: Owner) -> Sender:
    return Sender(
        name=owner.name,
        entity_number=owner.entity_number,
        entity_type=owner.entity_type,
        address=owner.address,
        city=owner.city,
        country=owner.country,
        phone=owner.phone,
        iban=owner.iban,
    )


def bill_to_from_contract(contract: Contract) -> BillTo:
    return BillTo(
        name=contract.name,
        company_number=contract.company_number,
        address=contract.address,
        city=contract.city,
        state=contract.state,
        zip=contract.zip,
        country=contract.country,
    )


def find_contract(contracts: list[Contract], client: str) -> Contract:
    for contract in contracts:
        if contract.name == client:
            return contract
    raise ContractNotFoundError(client)


def build_timesheets(
    entries: list[TimeEntry],
    timezone: str = "UTC",
) -> list[TimesheetRow]:
    """Project raw entries into summary rows, sorted by local start time."""
    tz = ZoneInfo(timezone)
    rows = []
    for entry in entries:
        stop = entry.stop or entry.start + timedelta(seconds=entry.duration)
        rows.append(TimesheetRow(
            seconds=f"{entry.duration / 3600:.2f}",
            name=entry.description,
            start=entry.start.astimezone(tz).strftime("%Y-%m-%d %H:%M:%S"),
            end=stop.astimezone(tz).strftime("%H:%M:%S"),
        ))
    rows.sort(key=lambda row: row.start)
    return rows


def assemble_invoice(
    contract: Contract,
    owner: Owner,
    period: tuple[str, str],
    client_entries: list[TimeEntry] | None = None,
    timezone: str = "UTC",
    today: date | None = None,
) -> DraftInvoice:
    """Build the draft invoice for one contract and billing period.

    Args:
        contract: The client's contract.
        owner: Invoice issuer.
        period: ISO (start, end) dates from resolve_period.
        client_entries: This client's time entries (may be empty).
        timezone: IANA zone used to display timesheet times.
        today: Run date; the due date is counted from the end of its month.

    Raises ServiceNotAvailableError when a tracked project has no service
    with the same name in the contract.
    """
    start, end = period
    today = today or date.today()
    due_date = _month_end(today) + timedelta(days=contract.notice)
    period_label = f"{start} - {end}"

    items = [
        InvoiceItem(
            description=service.name,
            period=period_label,
            qty=1,
            unit_price=service.price,
        )
        for service in contract.services
        if service.type == "fixed"
    ]

    entries = client_entries or []
    for project_name, project_entries in group_by_project(entries).items():
        service = contract.find_service(project_name)
        if service is None:
            raise ServiceNotAvailableError(project_name, contract.name)
        items.append(InvoiceItem(
            description=service.name,
            period=period_label,
            qty=total_seconds(project_entries) / 3600,
            unit_price=service.price,
        ))

    return DraftInvoice(
        invoice_number=PLACEHOLDER_NUMBER,
        issue_date=end,
        due_date=due_date.isoformat(),
        sender=sender_from_owner(owner),
        bill_to=bill_to_from_contract(contract),
        items=tuple(items),
        tax_rate=contract.tax,
        timesheets=tuple(build_timesheets(entries, timezone)),
    )


def is_positive_amount(value: float) -> bool:
    """Quantities and prices must be finite and greater than zero."""
    return math.isfinite(value) and value > 0


def parse_custom_items(raw: str | list) -> list[InvoiceItem]:
    """Parse user-supplied line items from a JSON string or a list of dicts.

    Each item needs ``description``, ``qty`` and ``unitPrice`` (``unit_price``
    is accepted too); ``period`` is optional and left empty when missing.
    Quantities and prices must be finite positive numbers.
    """
    if isinstance(raw, str):
        try:
            raw = json.loads(raw)
        except json.JSONDecodeError as e:
            raise ValueError(f"Invalid JSON format for items: {e}") from e
    if not isinstance(raw, list):
        raise ValueError("Items must be a JSON array")

    items = []
    for idx, item in enumerate(raw):
        if not isinstance(item, dict):
            raise ValueError(f"Item {idx} must be an object")
        description = item.get("description")
        if not isinstance(description, str) or not description.strip():
            raise ValueError(f"Item {idx}: description is required")
        qty = item.get("qty")
        unit_price = item.get("unitPrice", item.get("unit_price"))
        for name, value in (("qty", qty), ("unitPrice", unit_price)):
            if isinstance(value, bool) or not isinstance(value, (int, float)):
                raise ValueError(f"Item {idx}: {name} must be a number")
            if not is_positive_amount(value):
                raise ValueError(f"Item {idx}: {name} must be a positive number")
        items.append(InvoiceItem(
            description=description,
            period=str(item.get("period") or ""),
            qty=qty,
            unit_price=unit_price,
        ))
    return items


def build_custom_invoice(
    contract: Contract,
    owner: Owner,
    items: list[InvoiceItem],
    issue_date: str | None = None,
    due_date: str | None = None,
    today: date | None = None,
) -> DraftInvoice:
    """Build a one-off invoice from a user-supplied item list.

    Issue date defaults to today, due date to 30 days from today. Items
    without a period are labelled with the issue date.
    """
    today = today or date.today()
    issue = issue_date or today.isoformat()
    due = due_date or (today + timedelta(days=30)).isoformat()
    for value in (issue, due):
        date.fromisoformat(value)

    return DraftInvoice(
        invoice_number=PLACEHOLDER_NUMBER,
        issue_date=issue,
        due_date=due,
        sender=sender_from_owner(owner),
        bill_to=bill_to_from_contract(contract),
        items=tuple(replace(item, period=item.period or issue) for item in items),
        tax_rate=contract.tax,
    )


# --- Numbering ---


def format_invoice_number(prefix: str, invoice_id: int, issued: date | None = None) -> str:
    """Final invoice number from the persisted row id.

    Batch invoices carry the run date: INV-250630 + 12 -> INV-25063012.
    Custom invoices omit it: INV-12.
    """
    if issued is None:
        return f"{prefix}{invoice_id}"
    return f"{prefix}{issued.strftime('%y%m%d')}{invoice_id}"


def with_invoice_number(draft: DraftInvoice, number: str) -> DraftInvoice:
    return replace(draft, invoice_number=number)


# --- Math ---


def compute_invoice(draft: DraftInvoice) -> ComputedInvoice:
    """Compute item amounts, subtotal, tax, total and amount due.

    Pure: the draft is not modified and repeated calls give the same result.
    """
    items = tuple(
        ComputedItem(
            description=item.description,
            period=item.period,
            qty=item.qty,
            unit_price=item.unit_price,
            amount=item.qty * item.unit_price,
        )
        for item in draft.items
    )
    subtotal = sum((item.amount for item in items), 0.0)
    tax = subtotal * draft.tax_rate / 100
    total = subtotal + tax
    return ComputedInvoice(
        draft=draft,
        items=items,
        subtotal=subtotal,
        tax=tax,
        total=total,
        amount_due=total,
    )


def invoice_to_dict(invoice: DraftInvoice | ComputedInvoice) -> dict:
    """Summary dict for CLI/JSON output."""
    draft = invoice.draft if isinstance(invoice, ComputedInvoice) else invoice
    result = {
        "invoice_number": draft.invoice_number,
        "client": draft.bill_to.name,
        "issue_date": draft.issue_date,
        "due_date": draft.due_date,
        "items": len(draft.items),
        "timesheets": len(draft.timesheets),
    }
    if isinstance(invoice, ComputedInvoice):
        result["total"] = round(invoice.total, 2)
    return result
