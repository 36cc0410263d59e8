"""Tests for the invoice web app endpoints."""

import json
from unittest.mock import patch

import pytest

from timebill import db
from timebill.render import RenderError
from timebill.server import create_app, parse_invoice_payload


def _payload(**overrides):
    data = {
        "invoiceNumber": "",
        "issueDate": "2025-06-15",
        "dueDate": "2025-07-15",
        "sender": {
            "name": "Jonas Jonaitis",
            "entityNumber": "1234567",
            "entityType": "entrepreneurship",
            "city": "Vilnius",
        },
        "billTo": {"name": "Acme", "companyNumber": "ACME-001", "zip": 12345},
        "items": [
            {"description": "Audit", "qty": 2, "unitPrice": 50, "period": "June"},
            {"description": "Report", "qty": 1, "unitPrice": 75},
        ],
        "taxRate": 21,
    }
    data.update(overrides)
    return data


@pytest.fixture
def config(make_config):
    return make_config()


@pytest.fixture
def client(config):
    app = create_app(config)
    app.config["TESTING"] = True
    return app.test_client()


@pytest.fixture
def mock_render():
    with patch("timebill.server.render_invoice_pdf", return_value=b"%PDF-1.7 fake") as mock:
        yield mock


def _rows(config):
    with db.get_db(config.db_path) as conn:
        return db.list_invoices(conn, limit=100)


class TestParseInvoicePayload:
    def test_valid(self):
        draft = parse_invoice_payload(_payload())
        assert draft.invoice_number == "INV-temp"
        assert draft.sender.name == "Jonas Jonaitis"
        assert draft.bill_to.zip == "12345"
        assert draft.tax_rate == 21.0
        assert [i.unit_price for i in draft.items] == [50, 75]
        assert draft.items[1].period == ""
        assert draft.timesheets == ()

    def test_due_date_defaults_to_issue_date(self):
        draft = parse_invoice_payload(_payload(dueDate=""))
        assert draft.due_date == "2025-06-15"

    def test_timesheets(self):
        rows = [{"seconds": "1.00", "name": "work", "start": "2025-06-02 09:00:00", "end": "10:00:00"}]
        draft = parse_invoice_payload(_payload(timesheets=rows))
        assert draft.timesheets[0].name == "work"

    @pytest.mark.parametrize("missing", ["sender", "billTo", "items"])
    def test_missing_sections(self, missing):
        data = _payload()
        del data[missing]
        with pytest.raises(ValueError, match="Missing required invoice data"):
            parse_invoice_payload(data)

    def test_empty_items(self):
        with pytest.raises(ValueError, match="Missing required invoice data"):
            parse_invoice_payload(_payload(items=[]))

    def test_not_an_object(self):
        with pytest.raises(ValueError, match="JSON object"):
            parse_invoice_payload(None)

    def test_bad_date(self):
        with pytest.raises(ValueError, match="issueDate must be an ISO date"):
            parse_invoice_payload(_payload(issueDate="15/06/2025"))

    @pytest.mark.parametrize("rate", [-1, 101, "21", True])
    def test_bad_tax_rate(self, rate):
        with pytest.raises(ValueError, match="taxRate"):
            parse_invoice_payload(_payload(taxRate=rate))

    def test_bad_item(self):
        with pytest.raises(ValueError, match="qty must be a number"):
            parse_invoice_payload(_payload(items=[{"description": "x", "qty": "a", "unitPrice": 1}]))

    def test_sender_name_required(self):
        with pytest.raises(ValueError, match="sender.name is required"):
            parse_invoice_payload(_payload(sender={"city": "Vilnius"}))

    def test_bad_entity_type(self):
        with pytest.raises(ValueError, match="entityType"):
            parse_invoice_payload(_payload(sender={"name": "J", "entityType": "llc"}))

    def test_bad_timesheets(self):
        with pytest.raises(ValueError, match="timesheets"):
            parse_invoice_payload(_payload(timesheets="nope"))


class TestPages:
    def test_index(self, client):
        resp = client.get("/")
        assert resp.status_code == 200
        assert resp.mimetype == "text/html"
        assert b"Invoice Generator" in resp.data

    def test_form_number_template(self, client):
        html = client.get("/").get_data(as_text=True)
        assert 'id="numberTemplate"' in html
        assert 'id="numberPreview"' in html
        assert "INV-{{YEAR}}-{{MONTH}}-{{DAY}}-{{ inc }}" in html
        assert "invoice-daily-counter" in html
        assert 'padStart(3, "0")' in html

    def test_form_history_panel(self, client):
        html = client.get("/").get_data(as_text=True)
        assert "Invoice History" in html
        assert 'id="invoiceSearch"' in html
        assert "/api/invoices?limit=100" in html
        assert "No invoices found" in html

    def test_unknown_page_serves_form(self, client):
        resp = client.get("/some/page")
        assert resp.mimetype == "text/html"
        assert b"Invoice Generator" in resp.data

    def test_unknown_api_route(self, client):
        resp = client.get("/api/nope")
        assert resp.status_code == 404
        assert resp.get_json() == {"error": "API route not found"}

    def test_health(self, client):
        resp = client.get("/api/health")
        body = resp.get_json()
        assert resp.status_code == 200
        assert body["status"] == "OK"
        assert "timestamp" in body


class TestDefaults:
    def test_sender_and_clients(self, client):
        body = client.get("/api/defaults").get_json()
        assert body["sender"]["name"] == "Jonas Jonaitis"
        assert body["sender"]["entityType"] == "entrepreneurship"
        assert [c["name"] for c in body["clients"]] == ["Acme", "Beta"]
        assert body["clients"][0]["companyNumber"] == "ACME-001"
        assert body["clients"][0]["taxRate"] == 21
        assert body["currency"] == "€"

    def test_without_owner(self, make_config):
        app = create_app(make_config(owner=None, contracts=[]))
        body = app.test_client().get("/api/defaults").get_json()
        assert body["sender"] is None
        assert body["clients"] == []


class TestGenerateInvoice:
    def test_returns_pdf(self, client, config, mock_render):
        resp = client.post("/api/generate-invoice", json=_payload())

        assert resp.status_code == 200
        assert resp.mimetype == "application/pdf"
        assert resp.data == b"%PDF-1.7 fake"
        assert resp.headers["Content-Disposition"] == 'attachment; filename="invoice_JJ-1.pdf"'

    def test_persists_and_numbers(self, client, config, mock_render):
        client.post("/api/generate-invoice", json=_payload())

        invoice = mock_render.call_args.args[0]
        assert invoice.invoice_number == "JJ-1"
        assert invoice.subtotal == 175
        assert invoice.total == pytest.approx(211.75)
        assert mock_render.call_args.kwargs["currency"] == "€"

        rows = _rows(config)
        assert len(rows) == 1
        assert rows[0].invoice_number == "JJ-1"
        assert rows[0].bill_to_name == "Acme"

    def test_keeps_given_number(self, client, config, mock_render):
        resp = client.post("/api/generate-invoice", json=_payload(invoiceNumber="ACME-2025-7"))
        assert resp.headers["Content-Disposition"] == 'attachment; filename="invoice_ACME-2025-7.pdf"'
        assert _rows(config)[0].invoice_number == "ACME-2025-7"

    def test_default_prefix_without_owner(self, make_config, mock_render):
        app = create_app(make_config(owner=None))
        resp = app.test_client().post("/api/generate-invoice", json=_payload())
        assert 'filename="invoice_INV-1.pdf"' in resp.headers["Content-Disposition"]

    def test_missing_data(self, client, config, mock_render):
        resp = client.post("/api/generate-invoice", json={"sender": {"name": "J"}})
        assert resp.status_code == 400
        assert resp.get_json() == {"error": "Missing required invoice data"}
        mock_render.assert_not_called()
        assert _rows(config) == []

    def test_non_json_body(self, client, mock_render):
        resp = client.post("/api/generate-invoice", data="not json", content_type="text/plain")
        assert resp.status_code == 400
        assert "error" in resp.get_json()

    @pytest.mark.parametrize("qty,price", [(-5, 100), (0, 100), (1, -50)])
    def test_non_positive_amounts_rejected(self, client, config, mock_render, qty, price):
        items = [{"description": "Audit", "qty": qty, "unitPrice": price}]
        resp = client.post("/api/generate-invoice", json=_payload(items=items))

        assert resp.status_code == 400
        assert "must be a positive number" in resp.get_json()["error"]
        mock_render.assert_not_called()
        assert _rows(config) == []

    @pytest.mark.parametrize("literal", ["NaN", "Infinity"])
    def test_non_finite_amount_rejected(self, client, config, mock_render, literal):
        body = json.dumps(_payload(items=[{"description": "Audit", "qty": 1, "unitPrice": 50}]))
        body = body.replace('"unitPrice": 50', f'"unitPrice": {literal}')
        resp = client.post("/api/generate-invoice", data=body, content_type="application/json")

        assert resp.status_code == 400
        assert "must be a positive number" in resp.get_json()["error"]
        mock_render.assert_not_called()
        assert _rows(config) == []

    def test_render_failure(self, client, config, mock_render):
        mock_render.side_effect = RenderError("Failed to generate invoice PDF: boom")
        resp = client.post("/api/generate-invoice", json=_payload())

        assert resp.status_code == 500
        assert resp.get_json() == {"error": "Failed to generate invoice"}
        assert _rows(config) == []


class TestListInvoices:
    def test_lists_generated(self, client, mock_render):
        client.post("/api/generate-invoice", json=_payload())
        client.post("/api/generate-invoice", json=_payload(billTo={"name": "Beta"}, taxRate=0))

        body = client.get("/api/invoices").get_json()
        assert [i["client"] for i in body["invoices"]] == ["Beta", "Acme"]
        assert body["invoices"][1]["total"] == 211.75
        assert body["invoices"][1]["invoiceNumber"] == "JJ-1"

    def test_filter_and_limit(self, client, mock_render):
        for name in ("Acme", "Beta", "Acme"):
            client.post("/api/generate-invoice", json=_payload(billTo={"name": name}))

        body = client.get("/api/invoices?client=Acme&limit=1").get_json()
        assert len(body["invoices"]) == 1
        assert body["invoices"][0]["id"] == 3

    def test_bad_limit(self, client):
        resp = client.get("/api/invoices?limit=abc")
        assert resp.status_code == 400
