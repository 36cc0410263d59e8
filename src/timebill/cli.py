"""CLI interface for invoice generation and administration."""

import argparse
import sqlite3
import sys
from pathlib import Path

from . import db
from .commands import (
    InvoiceRunError,
    create_custom_invoice,
    generate_invoices,
    prompt_custom_items,
)
from .config import Config, load_config
from .invoicing import find_contract, parse_custom_items
from .logging_setup import setup_logging
from .render import RenderError
from .toggl import TogglError

# Failures that end a command with a message instead of a traceback
CLI_ERRORS = (
    ValueError,  # includes ConfigError and ServiceNotAvailableError
    LookupError,  # ContractNotFoundError
    TogglError,
    RenderError,
    InvoiceRunError,
    OSError,
    sqlite3.Error,
)


def cmd_init(args, config: Config):
    """Initialize the database."""
    db.init_db(config.db_path)
    print(f"Database initialized at {config.db_path}")


def cmd_generate(args, config: Config):
    """Generate invoices for all contracts (or one client) for a month."""
    report = generate_invoices(
        config,
        month=args.month,
        client=args.client,
        output_dir=Path(args.output) if args.output else None,
        fail_fast=args.fail_fast,
    )
    start, end = report.period
    if report.ok and not report.invoices:
        print(f"No invoices to generate for {start} to {end}")
        return

    for inv in report.invoices:
        print(f"{inv['invoice_number']:20} {inv['client']:25} {inv['total']:>12,.2f}  {inv['file']}")
    print(f"Generated {len(report.invoices)} invoice(s) for {start} to {end}")
    report.raise_for_failures()


def cmd_custom(args, config: Config):
    """Create a custom invoice for a client."""
    if args.interactive:
        contract = find_contract(config.contracts, args.client)
        items = prompt_custom_items(contract)
    else:
        items = parse_custom_items(args.items)
        if not items:
            raise ValueError("At least one line item is required (use --items or --interactive)")

    result = create_custom_invoice(
        config,
        client=args.client,
        items=items,
        issue_date=args.issue_date,
        due_date=args.due_date,
        output_dir=Path(args.output) if args.output else None,
    )
    print(f"Invoice {result['invoice_number']} for {result['client']}: {result['total']:,.2f}")
    print(f"Written to {result['file']}")


def cmd_list(args, config: Config):
    """List generated invoices."""
    db.init_db(config.db_path)
    with db.get_db(config.db_path) as conn:
        invoices = db.list_invoices(conn, client=args.client, limit=args.limit)

    if not invoices:
        print("No invoices found")
        return

    for inv in invoices:
        print(
            f"[{inv.id}] {inv.invoice_number or '-':20} {inv.bill_to_name or '':25} "
            f"{inv.issue_date}  due {inv.due_date}  {inv.total:>12,.2f}"
        )


def cmd_view(args, config: Config):
    """Show invoice details."""
    db.init_db(config.db_path)
    with db.get_db(config.db_path) as conn:
        invoice = db.get_invoice(conn, args.id)
    if not invoice:
        raise LookupError(f"Invoice {args.id} not found")

    print(f"Invoice ID: {invoice.id}")
    print(f"Number: {invoice.invoice_number}")
    print(f"Client: {invoice.bill_to_name} ({invoice.bill_to_company_number or '-'})")
    print(f"Issued: {invoice.issue_date}")
    print(f"Due: {invoice.due_date}")
    print("\nItems:")
    for item in invoice.items:
        amount = item["qty"] * item["unit_price"]
        print(f"  {item['description']:30} {item['qty']:>8.2f} x {item['unit_price']:>10.2f} = {amount:>12.2f}")
    print(f"\nSubtotal: {invoice.subtotal:,.2f}")
    print(f"Tax ({invoice.tax_rate:g}%): {invoice.subtotal * invoice.tax_rate / 100:,.2f}")
    print(f"Total: {invoice.total:,.2f}")
    if invoice.timesheets:
        print(f"\nTime entries: {len(invoice.timesheets)}")


def cmd_serve(args, config: Config):
    """Run the invoice authoring web app."""
    from .server import create_app

    app = create_app(config)
    host = args.host or config.server.host
    port = args.port or config.server.port
    app.run(host=host, port=port)


def main():
    parser = argparse.ArgumentParser(description="timebill CLI")
    parser.add_argument("-c", "--config", help="Path to config file")
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable verbose (DEBUG) logging")
    subparsers = parser.add_subparsers(dest="command", required=True)

    # Subcommands accept --config too; SUPPRESS keeps the global value when omitted
    config_opt = argparse.ArgumentParser(add_help=False)
    config_opt.add_argument("--config", default=argparse.SUPPRESS, help="Path to config file")

    # init
    subparsers.add_parser("init", help="Initialize database", parents=[config_opt])

    # generate
    generate_parser = subparsers.add_parser("generate", help="Generate invoices for all contracts", parents=[config_opt])
    generate_parser.add_argument("-m", "--month", help="Month to generate invoices for (YYYY-MM, default: current)")
    generate_parser.add_argument("--client", help="Generate invoice for specific client only")
    generate_parser.add_argument("-o", "--output", help="Output directory for PDF files")
    generate_parser.add_argument("--fail-fast", action="store_true", help="Stop at the first failing contract")

    # custom
    custom_parser = subparsers.add_parser("custom", help="Create custom invoice for a client", parents=[config_opt])
    custom_parser.add_argument("--client", required=True, help="Client name")
    custom_parser.add_argument("-i", "--items", default="[]", help="Invoice items as JSON string")
    custom_parser.add_argument("--issue-date", help="Issue date (YYYY-MM-DD)")
    custom_parser.add_argument("--due-date", help="Due date (YYYY-MM-DD)")
    custom_parser.add_argument("-o", "--output", help="Output directory for PDF files")
    custom_parser.add_argument("--interactive", action="store_true", help="Enter items interactively")

    # list
    list_parser = subparsers.add_parser("list", help="List generated invoices", parents=[config_opt])
    list_parser.add_argument("-l", "--limit", type=int, default=10, help="Number of invoices to show")
    list_parser.add_argument("--client", help="Filter by client name")

    # view
    view_parser = subparsers.add_parser("view", help="View invoice details by ID", parents=[config_opt])
    view_parser.add_argument("id", type=int, help="Invoice ID")

    # serve
    serve_parser = subparsers.add_parser("serve", help="Run the invoice web form", parents=[config_opt])
    serve_parser.add_argument("--host", help="Bind address (default from config)")
    serve_parser.add_argument("-p", "--port", type=int, help="Port (default from config)")

    args = parser.parse_args()

    commands = {
        "init": cmd_init,
        "generate": cmd_generate,
        "custom": cmd_custom,
        "list": cmd_list,
        "view": cmd_view,
        "serve": cmd_serve,
    }

    try:
        config = load_config(Path(args.config) if args.config else None)
        setup_logging(config, verbose=args.verbose, server_mode=args.command == "serve")
        commands[args.command](args, config)
    except CLI_ERRORS as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
