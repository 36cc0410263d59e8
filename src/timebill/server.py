"""Invoice authoring web app: Flask endpoints.

Serves a single-page form for one-off invoices and turns its JSON payload
into a PDF download. Submitted invoices are persisted like CLI invoices;
a blank invoice number is replaced with one derived from the row id.
"""

import logging
from datetime import date, datetime, timezone

from flask import Flask, Response, jsonify, request

from . import db
from .config import Config
from .invoicing import (
    ENTITY_TYPES,
    PLACEHOLDER_NUMBER,
    BillTo,
    DraftInvoice,
    Sender,
    TimesheetRow,
    bill_to_from_contract,
    compute_invoice,
    format_invoice_number,
    parse_custom_items,
    sender_from_owner,
    with_invoice_number,
)
from .render import render_invoice_pdf

logger = logging.getLogger("timebill.server")


# ---------------------------------------------------------------------------
# Payload parsing
# ---------------------------------------------------------------------------


def _str_field(data: dict, key: str, section: str, required: bool = False) -> str:
    value = data.get(key)
    if value is None or value == "":
        if required:
            raise ValueError(f"{section}.{key} is required")
        return ""
    if not isinstance(value, (str, int, float)) or isinstance(value, bool):
        raise ValueError(f"{section}.{key} must be a string")
    return str(value)


def _parse_sender(data: dict) -> Sender:
    if not isinstance(data, dict):
        raise ValueError("sender must be an object")
    entity_type = data.get("entityType") or "entrepreneurship"
    if entity_type not in ENTITY_TYPES:
        raise ValueError(f"sender.entityType must be one of {', '.join(ENTITY_TYPES)}")
    return Sender(
        name=_str_field(data, "name", "sender", required=True),
        entity_number=_str_field(data, "entityNumber", "sender"),
        entity_type=entity_type,
        address=_str_field(data, "address", "sender"),
        city=_str_field(data, "city", "sender"),
        country=_str_field(data, "country", "sender"),
        phone=_str_field(data, "phone", "sender"),
        iban=_str_field(data, "iban", "sender"),
    )


def _parse_bill_to(data: dict) -> BillTo:
    if not isinstance(data, dict):
        raise ValueError("billTo must be an object")
    return BillTo(
        name=_str_field(data, "name", "billTo", required=True),
        company_number=_str_field(data, "companyNumber", "billTo"),
        address=_str_field(data, "address", "billTo"),
        city=_str_field(data, "city", "billTo"),
        state=_str_field(data, "state", "billTo"),
        zip=_str_field(data, "zip", "billTo"),
        country=_str_field(data, "country", "billTo"),
    )


def _parse_timesheets(data: list) -> tuple[TimesheetRow, ...]:
    if not isinstance(data, list) or not all(isinstance(row, dict) for row in data):
        raise ValueError("timesheets must be an array of objects")
    return tuple(
        TimesheetRow(
            seconds=_str_field(row, "seconds", "timesheets"),
            name=_str_field(row, "name", "timesheets"),
            start=_str_field(row, "start", "timesheets"),
            end=_str_field(row, "end", "timesheets"),
        )
        for row in data
    )


def parse_invoice_payload(data: dict) -> DraftInvoice:
    """Validate the form payload and build a draft invoice.

    Raises ValueError with a user-facing message on malformed input.
    """
    if not isinstance(data, dict):
        raise ValueError("Request body must be a JSON object")
    if not data.get("sender") or not data.get("billTo") or not data.get("items"):
        raise ValueError("Missing required invoice data")

    today = date.today().isoformat()
    issue_date = _str_field(data, "issueDate", "invoice") or today
    due_date = _str_field(data, "dueDate", "invoice") or issue_date
    for key, value in (("issueDate", issue_date), ("dueDate", due_date)):
        try:
            date.fromisoformat(value)
        except ValueError:
            raise ValueError(f"{key} must be an ISO date (YYYY-MM-DD)") from None

    tax_rate = data.get("taxRate", 0)
    if isinstance(tax_rate, bool) or not isinstance(tax_rate, (int, float)):
        raise ValueError("taxRate must be a number")
    if not 0 <= tax_rate <= 100:
        raise ValueError("taxRate must be between 0 and 100")

    items = parse_custom_items(data["items"])

    return DraftInvoice(
        invoice_number=_str_field(data, "invoiceNumber", "invoice") or PLACEHOLDER_NUMBER,
        issue_date=issue_date,
        due_date=due_date,
        sender=_parse_sender(data["sender"]),
        bill_to=_parse_bill_to(data["billTo"]),
        items=tuple(items),
        tax_rate=float(tax_rate),
        timesheets=_parse_timesheets(data.get("timesheets") or []),
    )


def _party_dict(party: Sender | BillTo) -> dict:
    if isinstance(party, Sender):
        return {
            "name": party.name,
            "entityNumber": party.entity_number,
            "entityType": party.entity_type,
            "address": party.address,
            "city": party.city,
            "country": party.country,
            "phone": party.phone,
            "iban": party.iban,
        }
    return {
        "name": party.name,
        "companyNumber": party.company_number,
        "address": party.address,
        "city": party.city,
        "state": party.state,
        "zip": party.zip,
        "country": party.country,
    }


# ---------------------------------------------------------------------------
# App
# ---------------------------------------------------------------------------


def create_app(config: Config) -> Flask:
    """Build the Flask app bound to one configuration and database."""
    app = Flask(__name__)
    db.init_db(config.db_path)

    @app.route("/", methods=["GET"])
    def index():
        return Response(FORM_HTML, mimetype="text/html")

    @app.route("/api/health", methods=["GET"])
    def health():
        return jsonify({"status": "OK", "timestamp": datetime.now(timezone.utc).isoformat()})

    @app.route("/api/defaults", methods=["GET"])
    def defaults():
        """Sender and client blocks used to pre-fill the form."""
        return jsonify({
            "sender": _party_dict(sender_from_owner(config.owner)) if config.owner else None,
            "clients": [
                {**_party_dict(bill_to_from_contract(c)), "taxRate": c.tax}
                for c in config.contracts
            ],
            "currency": config.currency,
        })

    @app.route("/api/invoices", methods=["GET"])
    def invoices():
        client = request.args.get("client") or None
        try:
            limit = int(request.args.get("limit", 20))
        except ValueError:
            return jsonify({"error": "limit must be an integer"}), 400
        with db.get_db(config.db_path) as conn:
            rows = db.list_invoices(conn, client=client, limit=limit)
        return jsonify({
            "invoices": [
                {
                    "id": row.id,
                    "invoiceNumber": row.invoice_number,
                    "client": row.bill_to_name,
                    "issueDate": row.issue_date,
                    "dueDate": row.due_date,
                    "total": round(row.total, 2),
                }
                for row in rows
            ],
        })

    @app.route("/api/generate-invoice", methods=["POST"])
    def generate_invoice():
        """Render a submitted invoice and return it as a PDF attachment."""
        data = request.get_json(silent=True)
        try:
            draft = parse_invoice_payload(data)
        except ValueError as e:
            return jsonify({"error": str(e)}), 400

        try:
            with db.get_db(config.db_path) as conn:
                invoice_id = db.insert_invoice(conn, draft)
                number = draft.invoice_number
                if number == PLACEHOLDER_NUMBER:
                    prefix = config.owner.invoice_prefix if config.owner else "INV-"
                    number = format_invoice_number(prefix, invoice_id)
                db.set_invoice_number(conn, invoice_id, number)

                invoice = compute_invoice(with_invoice_number(draft, number))
                pdf_bytes = render_invoice_pdf(invoice, currency=config.currency)
        except Exception:
            logger.exception("Error generating invoice")
            return jsonify({"error": "Failed to generate invoice"}), 500

        logger.info("Generated invoice %s for %s", number, draft.bill_to.name)
        filename = f"invoice_{number}.pdf".replace('"', "")
        return Response(
            pdf_bytes,
            mimetype="application/pdf",
            headers={"Content-Disposition": f'attachment; filename="{filename}"'},
        )

    @app.errorhandler(404)
    def not_found(e):
        if request.path.startswith("/api/"):
            return jsonify({"error": "API route not found"}), 404
        return Response(FORM_HTML, mimetype="text/html")

    return app


FORM_HTML = """<!DOCTYPE html>
<html lang="en">
<head>
<meta charset="utf-8">
<title>Invoice Generator</title>
<style>
  body { font-family: "Helvetica Neue", Arial, sans-serif; max-width: 960px; margin: 2em auto; color: #222; }
  h1 { border-bottom: 4px solid #E33939; padding-bottom: .3em; }
  fieldset { border: 1px solid #ddd; margin-bottom: 1em; }
  label { display: inline-block; margin: .3em 1em .3em 0; }
  input, select { padding: .3em; }
  .item-row { display: flex; gap: .5em; align-items: end; margin-bottom: .5em; }
  .message { padding: .6em; margin: 1em 0; display: none; }
  .error { background: #fde2e2; color: #972A2A; }
  .success { background: #e2f5e6; color: #1d6b2f; }
  button { padding: .4em 1em; }
  .hint { color: #777; font-size: .85em; margin-right: 1em; }
  #historyPanel { display: none; position: fixed; top: 0; right: 0; bottom: 0; width: 100%; max-width: 672px;
    background: #fff; box-shadow: -4px 0 16px rgba(0,0,0,.2); padding: 1em 1.5em; overflow-y: auto; }
  #historyPanel table { width: 100%; border-collapse: collapse; }
  #historyPanel th, #historyPanel td { text-align: left; padding: .3em; border-bottom: 1px solid #ddd; }
  #historyPanel td.amount { text-align: right; }
</style>
</head>
<body>
<h1>Invoice Generator</h1>
<button type="button" id="historyButton" onclick="openHistory()">Invoice History</button>
<aside id="historyPanel">
  <button type="button" onclick="closeHistory()" style="float: right">&times;</button>
  <h2>Invoice History</h2>
  <input id="invoiceSearch" type="search" placeholder="Search by number or client" oninput="renderHistory()">
  <p id="historyEmpty">No invoices found</p>
  <table id="historyTable">
    <thead><tr><th>Number</th><th>Client</th><th>Issued</th><th>Due</th><th>Total</th></tr></thead>
    <tbody id="historyRows"></tbody>
  </table>
</aside>
<div id="errorMessage" class="message error"></div>
<div id="successMessage" class="message success"></div>
<form id="invoiceForm">
  <fieldset><legend>Invoice</legend>
    <label>Number template <input id="numberTemplate" size="36"></label>
    <span class="hint">Preview: <code id="numberPreview"></code></span>
    <button type="button" onclick="useTemplateNumber()">Use</button>
    <span class="hint">{{YEAR}} {{MONTH}} {{MM}} {{DAY}} {{DD}} {{ inc }}</span><br>
    <label>Number <input id="invoiceNumber" placeholder="assigned on save"></label>
    <label>Issue date <input id="issueDate" type="date" required></label>
    <label>Due date <input id="dueDate" type="date" required></label>
    <label>Tax rate % <input id="taxRate" type="number" min="0" max="100" step="0.01" value="0"></label>
  </fieldset>
  <fieldset><legend>From</legend>
    <label>Name <input id="senderName" required></label>
    <label>Entity number <input id="senderEntityNumber"></label>
    <label>Entity type <select id="senderEntityType">
      <option value="entrepreneurship">Individual entrepreneurship</option>
      <option value="company">Company</option></select></label>
    <label>Address <input id="senderAddress"></label>
    <label>City <input id="senderCity"></label>
    <label>Country <input id="senderCountry"></label>
    <label>Phone <input id="senderPhone"></label>
    <label>IBAN <input id="senderIban"></label>
  </fieldset>
  <fieldset><legend>Bill to</legend>
    <label>Client <select id="clientSelect"><option value="">(custom)</option></select></label><br>
    <label>Name <input id="billToName" required></label>
    <label>Company number <input id="billToCompanyNumber"></label>
    <label>Address <input id="billToAddress"></label>
    <label>City <input id="billToCity"></label>
    <label>State <input id="billToState"></label>
    <label>ZIP <input id="billToZip"></label>
    <label>Country <input id="billToCountry"></label>
  </fieldset>
  <fieldset><legend>Items</legend>
    <div id="itemsContainer"></div>
    <button type="button" onclick="addItem()">Add item</button>
    <label>Item preset <input id="templateName" placeholder="name"></label>
    <button type="button" onclick="saveTemplate()">Save items</button>
    <select id="templateSelect" onchange="loadTemplate(this.value)"><option value="">Load preset</option></select>
  </fieldset>
  <button type="submit">Generate PDF</button>
</form>
<script>
const STORE = "timebill.";
const COUNTER_KEY = "invoice-daily-counter";
const NUMBER_TEMPLATE_KEY = "invoice-number-template";
const DEFAULT_NUMBER_TEMPLATE = "INV-{{YEAR}}-{{MONTH}}-{{DAY}}-{{ inc }}";
const INC_RE = /[{][{] *inc *[}][}]/i;
let clients = [];
let invoiceHistory = [];

function $(id) { return document.getElementById(id); }

// Invoice numbers: template placeholders plus a per-day counter kept in localStorage

function todayString() {
  const d = new Date();
  return d.getFullYear() + "-" + String(d.getMonth() + 1).padStart(2, "0") + "-" +
    String(d.getDate()).padStart(2, "0");
}

function loadDailyCounter() {
  const today = todayString();
  try {
    const stored = JSON.parse(localStorage.getItem(COUNTER_KEY) || "null");
    if (stored && stored.date === today) return stored;
  } catch (err) {
    console.error("Error loading daily counter:", err);
  }
  return { date: today, counter: 0 };
}

function loadNumberTemplate() {
  try {
    const stored = JSON.parse(localStorage.getItem(NUMBER_TEMPLATE_KEY) || "null");
    if (stored && stored.template) return stored.template;
  } catch (err) {
    console.error("Error loading invoice template:", err);
  }
  return DEFAULT_NUMBER_TEMPLATE;
}

function saveNumberTemplate(template) {
  localStorage.setItem(NUMBER_TEMPLATE_KEY, JSON.stringify({ template: template, lastUsed: new Date().toISOString() }));
}

function processTemplate(template, increment) {
  const d = new Date();
  const month = String(d.getMonth() + 1).padStart(2, "0");
  const day = String(d.getDate()).padStart(2, "0");
  return template
    .replace(/[{][{] *YEAR *[}][}]/g, String(d.getFullYear()))
    .replace(/[{][{] *(MM|MONTH) *[}][}]/g, month)
    .replace(/[{][{] *(DD|DAY) *[}][}]/g, day)
    .replace(/[{][{] *inc *[}][}]/gi, String(increment).padStart(3, "0"));
}

function previewTemplate(template) {
  const next = INC_RE.test(template) ? loadDailyCounter().counter + 1 : 0;
  return processTemplate(template, next);
}

function refreshPreview() {
  $("numberPreview").textContent = previewTemplate($("numberTemplate").value);
}

function useTemplateNumber() {
  const template = $("numberTemplate").value.trim() || DEFAULT_NUMBER_TEMPLATE;
  saveNumberTemplate(template);
  $("invoiceNumber").value = previewTemplate(template);
}

// Called after a successful download: consume today's number if it came from the template
function commitTemplateNumber(number) {
  const template = $("numberTemplate").value.trim() || DEFAULT_NUMBER_TEMPLATE;
  if (!INC_RE.test(template) || number !== previewTemplate(template)) return;
  const counter = loadDailyCounter();
  counter.counter += 1;
  localStorage.setItem(COUNTER_KEY, JSON.stringify(counter));
  saveNumberTemplate(template);
  $("invoiceNumber").value = previewTemplate(template);
  refreshPreview();
}

// Invoice history panel backed by /api/invoices

async function openHistory() {
  $("historyPanel").style.display = "block";
  $("invoiceSearch").focus();
  const res = await fetch("/api/invoices?limit=100");
  invoiceHistory = res.ok ? (await res.json()).invoices : [];
  renderHistory();
}

function closeHistory() { $("historyPanel").style.display = "none"; }

function renderHistory() {
  const query = $("invoiceSearch").value.trim().toLowerCase();
  const rows = invoiceHistory.filter((inv) =>
    !query || (inv.invoiceNumber || "").toLowerCase().includes(query) ||
    (inv.client || "").toLowerCase().includes(query));
  const body = $("historyRows");
  body.innerHTML = "";
  rows.forEach((inv) => {
    const tr = document.createElement("tr");
    [inv.invoiceNumber || "-", inv.client || "", inv.issueDate, inv.dueDate, inv.total.toFixed(2)].forEach((text, i) => {
      const td = document.createElement("td");
      td.textContent = text;
      if (i === 4) td.className = "amount";
      tr.appendChild(td);
    });
    body.appendChild(tr);
  });
  $("historyEmpty").style.display = rows.length ? "none" : "block";
  $("historyTable").style.display = rows.length ? "table" : "none";
}

function show(kind, text) {
  const el = $(kind === "error" ? "errorMessage" : "successMessage");
  el.textContent = text; el.style.display = "block";
  setTimeout(() => { el.style.display = "none"; }, 5000);
}

function addItem(item) {
  item = item || { description: "", period: "", qty: 1, unitPrice: "" };
  const row = document.createElement("div");
  row.className = "item-row";
  row.innerHTML = '<input name="description" placeholder="Description" required>' +
    '<input name="period" placeholder="Period">' +
    '<input name="qty" type="number" min="0.01" step="0.01" required>' +
    '<input name="unitPrice" type="number" min="0" step="0.01" required>' +
    '<button type="button">Remove</button>';
  row.querySelector("[name=description]").value = item.description;
  row.querySelector("[name=period]").value = item.period || "";
  row.querySelector("[name=qty]").value = item.qty;
  row.querySelector("[name=unitPrice]").value = item.unitPrice;
  row.querySelector("button").onclick = () => {
    if ($("itemsContainer").children.length > 1) row.remove();
    else show("error", "At least one item is required");
  };
  $("itemsContainer").appendChild(row);
}

function readItems() {
  return Array.from($("itemsContainer").children).map((row) => ({
    description: row.querySelector("[name=description]").value,
    period: row.querySelector("[name=period]").value,
    qty: parseFloat(row.querySelector("[name=qty]").value),
    unitPrice: parseFloat(row.querySelector("[name=unitPrice]").value),
  }));
}

function templates() { return JSON.parse(localStorage.getItem(STORE + "templates") || "{}"); }

function refreshTemplates() {
  const select = $("templateSelect");
  select.length = 1;
  Object.keys(templates()).forEach((name) => select.add(new Option(name, name)));
}

function saveTemplate() {
  const name = $("templateName").value.trim();
  if (!name) { show("error", "Template name is required"); return; }
  const all = templates(); all[name] = readItems();
  localStorage.setItem(STORE + "templates", JSON.stringify(all));
  refreshTemplates(); show("success", "Template saved");
}

function loadTemplate(name) {
  const items = templates()[name];
  if (!items) return;
  $("itemsContainer").innerHTML = "";
  items.forEach(addItem);
}

function fillClient(idx) {
  const c = clients[idx];
  if (!c) return;
  $("billToName").value = c.name; $("billToCompanyNumber").value = c.companyNumber;
  $("billToAddress").value = c.address; $("billToCity").value = c.city;
  $("billToState").value = c.state; $("billToZip").value = c.zip;
  $("billToCountry").value = c.country; $("taxRate").value = c.taxRate;
}

async function loadDefaults() {
  const res = await fetch("/api/defaults");
  const data = await res.json();
  if (data.sender) {
    const s = data.sender;
    $("senderName").value = s.name; $("senderEntityNumber").value = s.entityNumber;
    $("senderEntityType").value = s.entityType; $("senderAddress").value = s.address;
    $("senderCity").value = s.city; $("senderCountry").value = s.country;
    $("senderPhone").value = s.phone; $("senderIban").value = s.iban;
  }
  clients = data.clients;
  clients.forEach((c, i) => $("clientSelect").add(new Option(c.name, i)));
}

document.addEventListener("DOMContentLoaded", () => {
  const today = new Date();
  const due = new Date(today.getTime() + 30 * 24 * 3600 * 1000);
  $("issueDate").value = today.toISOString().slice(0, 10);
  $("dueDate").value = due.toISOString().slice(0, 10);
  $("clientSelect").onchange = (e) => fillClient(e.target.value);
  addItem(); refreshTemplates(); loadDefaults();

  $("numberTemplate").value = loadNumberTemplate();
  $("numberTemplate").oninput = refreshPreview;
  $("invoiceNumber").value = previewTemplate($("numberTemplate").value);
  refreshPreview();
  document.addEventListener("keydown", (e) => { if (e.key === "Escape") closeHistory(); });

  $("invoiceForm").onsubmit = async (e) => {
    e.preventDefault();
    const payload = {
      invoiceNumber: $("invoiceNumber").value,
      issueDate: $("issueDate").value,
      dueDate: $("dueDate").value,
      taxRate: parseFloat($("taxRate").value || "0"),
      sender: {
        name: $("senderName").value, entityNumber: $("senderEntityNumber").value,
        entityType: $("senderEntityType").value, address: $("senderAddress").value,
        city: $("senderCity").value, country: $("senderCountry").value,
        phone: $("senderPhone").value, iban: $("senderIban").value,
      },
      billTo: {
        name: $("billToName").value, companyNumber: $("billToCompanyNumber").value,
        address: $("billToAddress").value, city: $("billToCity").value,
        state: $("billToState").value, zip: $("billToZip").value,
        country: $("billToCountry").value,
      },
      items: readItems(),
    };
    const res = await fetch("/api/generate-invoice", {
      method: "POST", headers: { "Content-Type": "application/json" },
      body: JSON.stringify(payload),
    });
    if (!res.ok) {
      const err = await res.json().catch(() => ({ error: res.statusText }));
      show("error", err.error); return;
    }
    const blob = await res.blob();
    const match = /filename="([^"]+)"/.exec(res.headers.get("Content-Disposition") || "");
    const link = document.createElement("a");
    link.href = URL.createObjectURL(blob);
    link.download = match ? match[1] : "invoice.pdf";
    link.click();
    commitTemplateNumber(payload.invoiceNumber);
    show("success", "Invoice generated");
  };
});
</script>
</body>
</html>
"""
