"""Shared test fixtures for timebill tests."""

from datetime import datetime, timedelta, timezone

import pytest

from timebill import db
from timebill.config import Config, TogglConfig
from timebill.invoicing import Contract, Owner, Service, TimeEntry


@pytest.fixture
def db_path(tmp_path):
    """Initialize a real SQLite database and return its path."""
    path = tmp_path / "test.db"
    db.init_db(path)
    return path


@pytest.fixture
def db_conn(db_path):
    """Yield a database connection with row factory set."""
    with db.get_db(db_path) as conn:
        yield conn


@pytest.fixture
def owner():
    return Owner(
        name="Jonas Jonaitis",
        invoice_prefix="JJ-",
        entity_number="1234567",
        address="Gedimino pr. 1",
        city="Vilnius",
        country="Lithuania",
        phone="+37060000000",
        iban="LT000000000000000001",
    )


@pytest.fixture
def acme_contract():
    return Contract(
        name="Acme",
        notice=14,
        tax=21,
        services=(
            Service(name="Retainer", price=500, type="fixed"),
            Service(name="Dev", price=60, type="hourly"),
            Service(name="Support", price=40, type="hourly"),
        ),
        address="1 Main St",
        city="Springfield",
        zip="12345",
        state="IL",
        country="USA",
        company_number="ACME-001",
    )


@pytest.fixture
def beta_contract():
    return Contract(
        name="Beta",
        notice=30,
        tax=0,
        services=(Service(name="Consulting", price=100, type="hourly"),),
        city="Kaunas",
        zip="44000",
        country="Lithuania",
        company_number="BETA-9",
    )


@pytest.fixture
def make_entry():
    """Factory fixture for TimeEntry instances starting at a UTC datetime."""
    def _make_entry(
        client="Acme",
        project="Dev",
        duration=3600,
        start="2025-06-02T09:00:00",
        description="work",
    ):
        start_dt = datetime.fromisoformat(start).replace(tzinfo=timezone.utc)
        return TimeEntry(
            client_name=client,
            project_name=project,
            description=description,
            duration=duration,
            start=start_dt,
            stop=start_dt + timedelta(seconds=duration),
        )
    return _make_entry


@pytest.fixture
def make_config(tmp_path, owner, acme_contract, beta_contract):
    """Factory fixture that creates Config instances with tmp paths."""
    def _make_config(**overrides):
        defaults = {
            "db_path": tmp_path / "test.db",
            "output_dir": tmp_path / "invoices",
            "toggl": TogglConfig(api_token="secret-token"),
            "owner": owner,
            "contracts": [acme_contract, beta_contract],
        }
        defaults.update(overrides)
        return Config(**defaults)
    return _make_config
