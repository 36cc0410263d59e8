"""Configuration loading for timebill.config module."""

from pathlib import Path

import pytest

from timebill.config import (
    Config,
    ConfigError,
    LoggingConfig,
    ServerConfig,
    TogglConfig,
    load_config,
    parse_contract,
    parse_contracts,
    parse_owner,
)


FULL_CONFIG = """\
db_path = "/srv/timebill/invoices.db"
output_dir = "/srv/timebill/pdf"
timezone = "Europe/Vilnius"
currency = "$"

[toggl]
api_token = "file-token"
timeout = 10

[server]
host = "0.0.0.0"
port = 8080

[logging]
level = "DEBUG"
output = "both"
file = "/var/log/timebill.log"

[owner]
name = "Jonas Jonaitis"
entity_number = "1234567"
entity_type = "company"
address = "Gedimino pr. 1"
city = "Vilnius"
country = "Lithuania"
iban = "LT000000000000000001"

[owner.invoice]
prefix = "JJ-"

[[contracts]]
name = "Acme"
notice = 14
tax = 21
company_number = "ACME-001"
state = "IL"
zip = 12345
tracking_number = 42

[[contracts.services]]
name = "Retainer"
price = 500
type = "fixed"

[[contracts.services]]
name = "Dev"
price = 60.5

[[contracts]]
name = "Beta"
notice = 0
tax = 0
"""


@pytest.fixture(autouse=True)
def _no_env_token(monkeypatch):
    monkeypatch.delenv("TOGGL_API_TOKEN", raising=False)


def _write(tmp_path, content):
    path = tmp_path / "config.toml"
    path.write_text(content)
    return path


class TestConfigDefaults:
    def test_default_paths(self):
        cfg = Config()
        assert cfg.db_path == Path("data/timebill.db")
        assert cfg.output_dir == Path("invoices")

    def test_default_toggl(self):
        cfg = Config()
        assert cfg.toggl.api_token == ""
        assert cfg.toggl.base_url == "https://api.track.toggl.com"
        assert cfg.toggl.timeout == 30.0

    def test_default_server(self):
        assert Config().server == ServerConfig(host="127.0.0.1", port=3000)

    def test_default_logging(self):
        cfg = Config()
        assert cfg.logging == LoggingConfig()
        assert cfg.logging.level == "INFO"
        assert cfg.logging.output == "console"

    def test_default_no_owner(self):
        cfg = Config()
        assert cfg.owner is None
        assert cfg.contracts == []
        with pytest.raises(ConfigError, match="owner"):
            cfg.require_owner()


class TestLoadConfig:
    def test_full_file(self, tmp_path):
        cfg = load_config(_write(tmp_path, FULL_CONFIG))

        assert cfg.db_path == Path("/srv/timebill/invoices.db")
        assert cfg.output_dir == Path("/srv/timebill/pdf")
        assert cfg.timezone == "Europe/Vilnius"
        assert cfg.currency == "$"
        assert cfg.toggl == TogglConfig(api_token="file-token", timeout=10.0)
        assert cfg.server == ServerConfig(host="0.0.0.0", port=8080)
        assert cfg.logging.level == "DEBUG"
        assert cfg.logging.output == "both"

    def test_owner(self, tmp_path):
        owner = load_config(_write(tmp_path, FULL_CONFIG)).require_owner()
        assert owner.name == "Jonas Jonaitis"
        assert owner.invoice_prefix == "JJ-"
        assert owner.entity_type == "company"
        assert owner.phone == ""

    def test_contracts(self, tmp_path):
        contracts = load_config(_write(tmp_path, FULL_CONFIG)).contracts
        assert [c.name for c in contracts] == ["Acme", "Beta"]

        acme = contracts[0]
        assert acme.notice == 14
        assert acme.tax == 21.0
        assert acme.zip == "12345"
        assert acme.tracking_number == 42
        assert [(s.name, s.price, s.type) for s in acme.services] == [
            ("Retainer", 500.0, "fixed"),
            ("Dev", 60.5, "hourly"),
        ]
        assert contracts[1].services == ()

    def test_env_token_overrides_file(self, tmp_path, monkeypatch):
        monkeypatch.setenv("TOGGL_API_TOKEN", "env-token")
        cfg = load_config(_write(tmp_path, FULL_CONFIG))
        assert cfg.toggl.api_token == "env-token"

    def test_env_token_without_file_section(self, tmp_path, monkeypatch):
        monkeypatch.setenv("TOGGL_API_TOKEN", "env-token")
        cfg = load_config(_write(tmp_path, 'currency = "€"\n'))
        assert cfg.toggl.api_token == "env-token"

    def test_explicit_missing_file(self, tmp_path):
        with pytest.raises(ConfigError, match="does not exist"):
            load_config(tmp_path / "nope.toml")

    def test_no_file_found_uses_defaults(self, tmp_path, monkeypatch):
        monkeypatch.chdir(tmp_path)
        monkeypatch.setenv("HOME", str(tmp_path))
        cfg = load_config()
        assert cfg.owner is None
        assert cfg.contracts == []

    def test_searches_config_dir(self, tmp_path, monkeypatch):
        (tmp_path / "config").mkdir()
        (tmp_path / "config" / "config.toml").write_text('currency = "£"\n')
        monkeypatch.chdir(tmp_path)
        assert load_config().currency == "£"

    def test_invalid_toml(self, tmp_path):
        with pytest.raises(ConfigError, match="Failed to read config"):
            load_config(_write(tmp_path, "owner = [unclosed"))

    def test_example_config_loads(self):
        example = Path(__file__).resolve().parents[1] / "config" / "config.example.toml"
        cfg = load_config(example)
        assert cfg.require_owner().invoice_prefix == "JJ-"
        assert cfg.contracts[0].find_service("Dev").price == 60

    def test_unknown_timezone(self, tmp_path):
        with pytest.raises(ConfigError, match="Unknown timezone"):
            load_config(_write(tmp_path, 'timezone = "Mars/Olympus"\n'))


class TestParseOwner:
    def test_defaults(self):
        owner = parse_owner({"name": "Jonas"})
        assert owner.invoice_prefix == "INV-"
        assert owner.entity_type == "entrepreneurship"

    def test_missing_name(self):
        with pytest.raises(ConfigError, match="owner.name"):
            parse_owner({"city": "Vilnius"})

    def test_invalid_entity_type(self):
        with pytest.raises(ConfigError, match="entity_type"):
            parse_owner({"name": "Jonas", "entity_type": "llc"})


class TestParseContract:
    def _base(self, **overrides):
        data = {"name": "Acme", "notice": 14, "tax": 21}
        data.update(overrides)
        return data

    def test_minimal(self):
        contract = parse_contract(self._base(), 0)
        assert contract.name == "Acme"
        assert contract.services == ()
        assert contract.tracking_number is None

    def test_missing_name(self):
        with pytest.raises(ConfigError, match=r"contracts\[3\]\.name"):
            parse_contract({"notice": 1, "tax": 0}, 3)

    def test_missing_tax(self):
        with pytest.raises(ConfigError, match=r"contracts\[0\]\.tax"):
            parse_contract({"name": "Acme", "notice": 1}, 0)

    def test_negative_notice(self):
        with pytest.raises(ConfigError, match="non-negative"):
            parse_contract(self._base(notice=-1), 0)

    def test_fractional_notice(self):
        with pytest.raises(ConfigError, match="non-negative integer"):
            parse_contract(self._base(notice=1.5), 0)

    def test_string_tax(self):
        with pytest.raises(ConfigError, match="must be a number"):
            parse_contract(self._base(tax="21"), 0)

    def test_bool_tax(self):
        with pytest.raises(ConfigError, match="must be a number"):
            parse_contract(self._base(tax=True), 0)

    def test_invalid_service_type(self):
        data = self._base(services=[{"name": "Dev", "price": 60, "type": "daily"}])
        with pytest.raises(ConfigError, match=r"services\[0\]\.type"):
            parse_contract(data, 0)

    def test_service_missing_price(self):
        data = self._base(services=[{"name": "Dev"}])
        with pytest.raises(ConfigError, match="price"):
            parse_contract(data, 0)

    def test_not_a_table(self):
        with pytest.raises(ConfigError, match="must be a table"):
            parse_contract("Acme", 0)


class TestParseContracts:
    def test_duplicate_names(self):
        data = [
            {"name": "Acme", "notice": 1, "tax": 0},
            {"name": "Acme", "notice": 2, "tax": 0},
        ]
        with pytest.raises(ConfigError, match="Duplicate contract names: Acme"):
            parse_contracts(data)

    def test_not_a_list(self):
        with pytest.raises(ConfigError, match="array"):
            parse_contracts({"name": "Acme"})
