"""Invoice document rendering: HTML layout converted to PDF via WeasyPrint.

Page 1 holds the header band, invoice metadata, the two party blocks and the
items table with its summary rows. A second page summarizing the raw time
entries is added only when the invoice carries timesheet rows.
"""

import io
import logging
from html import escape
from pathlib import Path
from typing import BinaryIO

from .invoicing import PLACEHOLDER_NUMBER, BillTo, ComputedInvoice, Sender, TimesheetRow

logger = logging.getLogger("timebill.render")

COLORS = {
    "primary": "#E33939",
    "secondary": "#972A2A",
    "black": "#000000",
    "gray": "#BCBABA",
    "light_gray": "#f0f0f0",
    "table_header": "#D3D1D1",
}

ENTITY_NUMBER_LABELS = {
    "entrepreneurship": "Individual entrepreneurship number",
    "company": "Company number",
}


class RenderError(RuntimeError):
    """The invoice document could not be produced or written."""


def format_money(value: float, currency: str = "€") -> str:
    return f"{currency} {value:.2f}"


def format_rate(rate: float) -> str:
    """21.0 -> "21", 5.5 -> "5.5"."""
    return f"{rate:g}"


def _header_html(title: str) -> str:
    return f"""
    <div class="band"></div>
    <h1 class="title">{escape(title)}</h1>"""


def _details_html(invoice: ComputedInvoice) -> str:
    return f"""
    <table class="details">
        <tr><td class="label">Invoice Number:</td><td>{escape(invoice.invoice_number)}</td></tr>
        <tr><td class="label">Date of Issue:</td><td>{escape(invoice.issue_date)}</td></tr>
        <tr><td class="label">Date Due:</td><td>{escape(invoice.due_date)}</td></tr>
    </table>"""


def _bill_to_html(bill_to: BillTo) -> str:
    state = f"{bill_to.state}, " if bill_to.state else ""
    lines = [
        f"<strong>{escape(bill_to.name)}</strong>",
        f"Company number: {escape(bill_to.company_number)}",
        escape(bill_to.address),
        escape(f"{bill_to.city}, {state}{bill_to.zip}"),
        escape(bill_to.country),
    ]
    return "<br>".join(lines)


def _sender_html(sender: Sender) -> str:
    label = ENTITY_NUMBER_LABELS.get(sender.entity_type, "Company number")
    lines = [
        f"<strong>{escape(sender.name)}</strong>",
        f"{label}: {escape(sender.entity_number)}",
        escape(f"{sender.address}, {sender.city}"),
        escape(sender.country),
    ]
    if sender.phone:
        lines.append(f"Phone: {escape(sender.phone)}")
    if sender.iban:
        lines.append(f"IBAN: {escape(sender.iban)}")
    return "<br>".join(lines)


def _items_html(invoice: ComputedInvoice, currency: str) -> str:
    rows = ""
    for item in invoice.items:
        period_html = f"<br><span class='period'>({escape(item.period)})</span>" if item.period else ""
        rows += f"""
            <tr>
                <td>{escape(item.description)}{period_html}</td>
                <td class="right">{item.qty:.2f}</td>
                <td class="right">{format_money(item.unit_price, currency)}</td>
                <td class="right">{format_money(item.amount, currency)}</td>
            </tr>"""

    tax_text = "0.00" if invoice.tax_rate == 0 else format_money(invoice.tax, currency)
    return f"""
    <table class="items">
        <thead>
            <tr>
                <th>Description</th>
                <th class="right">Qty</th>
                <th class="right">Unit Price</th>
                <th class="right">Amount</th>
            </tr>
        </thead>
        <tbody>{rows}
        </tbody>
        <tfoot>
            <tr class="summary first">
                <td colspan="2"></td>
                <td class="right">Subtotal</td>
                <td class="right">{format_money(invoice.subtotal, currency)}</td>
            </tr>
            <tr class="summary">
                <td colspan="2"></td>
                <td class="right">Tax ({format_rate(invoice.tax_rate)}%)</td>
                <td class="right">{tax_text}</td>
            </tr>
            <tr class="summary">
                <td colspan="2"></td>
                <td class="right">Total</td>
                <td class="right">{format_money(invoice.total, currency)}</td>
            </tr>
            <tr class="summary amount-due">
                <td colspan="2"></td>
                <td class="right">Amount Due</td>
                <td class="right">{format_money(invoice.amount_due, currency)}</td>
            </tr>
        </tfoot>
    </table>"""


def _timesheet_html(timesheets: tuple[TimesheetRow, ...]) -> str:
    if not timesheets:
        return ""

    rows = "".join(
        f"""
            <tr>
                <td>{escape(row.start)}</td>
                <td>{escape(row.end)}</td>
                <td>{escape(row.seconds)}</td>
                <td>{escape(row.name)}</td>
            </tr>"""
        for row in timesheets
    )
    return f"""
    <section class="timesheet">
        {_header_html("Time Entries Summary")}
        <table class="entries">
            <thead>
                <tr><th>Start</th><th>End</th><th>Duration</th><th>Description</th></tr>
            </thead>
            <tbody>{rows}
            </tbody>
        </table>
    </section>"""


def generate_invoice_html(invoice: ComputedInvoice, currency: str = "€") -> str:
    """Generate HTML for a computed invoice, suitable for PDF conversion."""
    c = COLORS
    return f"""<!DOCTYPE html>
<html lang="en">
<head>
    <meta charset="utf-8">
    <title>Invoice #{escape(invoice.invoice_number)}</title>
    <style>
        @page {{
            size: A4;
            margin: 1in;
            background: linear-gradient(to bottom right, #ffffff, {c["light_gray"]});
        }}
        body {{
            font-family: "Roboto", "Helvetica Neue", Helvetica, Arial, sans-serif;
            font-size: 10pt;
            color: {c["black"]};
            margin: 0;
        }}
        .band {{
            height: 5pt;
            background: linear-gradient(to right, {c["primary"]}, {c["secondary"]});
            border-bottom: 0.1pt solid {c["black"]};
        }}
        .title {{
            font-size: 24pt;
            font-weight: 600;
            text-align: center;
            margin: 12pt 0 18pt;
        }}
        .details {{
            margin-left: auto;
            border-collapse: collapse;
            margin-bottom: 24pt;
        }}
        .details td {{
            padding: 1pt 4pt;
            text-align: right;
        }}
        .details td.label {{
            font-weight: 600;
            text-align: left;
        }}
        .parties {{
            display: flex;
            justify-content: space-between;
            margin-bottom: 30pt;
        }}
        .party {{
            width: 45%;
            line-height: 1.4;
        }}
        .party-label {{
            font-size: 12pt;
            font-weight: 600;
            margin-bottom: 4pt;
        }}
        table.items, table.entries {{
            width: 100%;
            border-collapse: collapse;
        }}
        th {{
            background: {c["table_header"]};
            font-weight: 600;
            text-align: left;
            padding: 5pt;
            border-top: 0.5pt solid {c["black"]};
            border-bottom: 0.5pt solid {c["black"]};
        }}
        td {{
            padding: 5pt;
            border-bottom: 0.5pt solid {c["black"]};
            vertical-align: bottom;
        }}
        table.items td:first-child {{
            width: 50%;
        }}
        .right {{
            text-align: right;
        }}
        .period {{
            color: #555;
        }}
        tfoot td[colspan] {{
            border-bottom: none;
        }}
        tfoot tr.first td {{
            border-top: 0.5pt solid {c["black"]};
        }}
        tfoot tr.amount-due td:not([colspan]) {{
            font-weight: 600;
        }}
        .timesheet {{
            page-break-before: always;
        }}
        table.entries td {{
            padding: 2pt 5pt;
        }}
    </style>
</head>
<body>
    {_header_html("Invoice")}
    {_details_html(invoice)}

    <div class="parties">
        <div class="party">
            <div class="party-label">Issued To:</div>
            {_bill_to_html(invoice.bill_to)}
        </div>
        <div class="party">
            <div class="party-label">From:</div>
            {_sender_html(invoice.sender)}
        </div>
    </div>
    {_items_html(invoice, currency)}
    {_timesheet_html(invoice.timesheets)}
</body>
</html>"""


def write_invoice_pdf(
    invoice: ComputedInvoice,
    target: Path | str | BinaryIO,
    currency: str = "€",
) -> None:
    """Render the invoice PDF to a file path or a writable binary stream.

    Raises RenderError if the invoice has not been numbered yet or the
    conversion or write fails.
    """
    if invoice.invoice_number == PLACEHOLDER_NUMBER:
        raise RenderError("Invoice must be persisted and numbered before rendering")

    html = generate_invoice_html(invoice, currency=currency)
    try:
        from weasyprint import HTML

        if isinstance(target, (str, Path)):
            output_path = Path(target)
            output_path.parent.mkdir(parents=True, exist_ok=True)
            HTML(string=html).write_pdf(str(output_path))
        else:
            HTML(string=html).write_pdf(target)
    except Exception as e:
        raise RenderError(f"Failed to generate invoice PDF: {e}") from e

    logger.debug("Rendered invoice %s", invoice.invoice_number)


def render_invoice_pdf(invoice: ComputedInvoice, currency: str = "€") -> bytes:
    """Render the invoice PDF into memory."""
    buffer = io.BytesIO()
    write_invoice_pdf(invoice, buffer, currency=currency)
    return buffer.getvalue()
