"""Configuration loading for timebill."""

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

import tomli

from .invoicing import ENTITY_TYPES, SERVICE_TYPES, Contract, Owner, Service

logger = logging.getLogger("timebill.config")


class ConfigError(ValueError):
    """Configuration file is missing, unreadable or incomplete."""


@dataclass
class LoggingConfig:
    """Logging configuration."""
    level: str = "INFO"           # INFO or DEBUG
    output: str = "console"       # console, file, or both
    file: str = ""                # log file path
    rotate: bool = True           # enable rotation
    max_size_mb: int = 10         # max file size before rotation
    backup_count: int = 5         # rotated files to keep


@dataclass
class TogglConfig:
    api_token: str = ""
    base_url: str = "https://api.track.toggl.com"
    timeout: float = 30.0  # seconds per request


@dataclass
class ServerConfig:
    host: str = "127.0.0.1"
    port: int = 3000


@dataclass
class Config:
    db_path: Path = field(default_factory=lambda: Path("data/timebill.db"))
    output_dir: Path = field(default_factory=lambda: Path("invoices"))
    timezone: str = "UTC"
    currency: str = "€"
    toggl: TogglConfig = field(default_factory=TogglConfig)
    server: ServerConfig = field(default_factory=ServerConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    owner: Owner | None = None
    contracts: list[Contract] = field(default_factory=list)

    def require_owner(self) -> Owner:
        if self.owner is None:
            raise ConfigError("Missing [owner] section in config")
        return self.owner


# --- Validation helpers ---


def _require(data: dict, key: str, path: str):
    value = data.get(key)
    if value is None or (isinstance(value, str) and not value.strip()):
        raise ConfigError(f"Missing required field: {path}.{key}")
    return value


def _require_number(data: dict, key: str, path: str) -> float:
    value = _require(data, key, path)
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ConfigError(f"Field {path}.{key} must be a number, got {value!r}")
    return value


def _optional_str(data: dict, key: str, path: str) -> str:
    value = data.get(key, "")
    if not isinstance(value, (str, int)):
        raise ConfigError(f"Field {path}.{key} must be a string, got {value!r}")
    return str(value)


def parse_owner(data: dict) -> Owner:
    """Parse and validate the [owner] table."""
    path = "owner"
    invoice_data = data.get("invoice", {})
    if not isinstance(invoice_data, dict):
        raise ConfigError("Field owner.invoice must be a table")
    prefix = invoice_data.get("prefix", "INV-")
    if not isinstance(prefix, str):
        raise ConfigError(f"Field owner.invoice.prefix must be a string, got {prefix!r}")

    entity_type = data.get("entity_type", "entrepreneurship")
    if entity_type not in ENTITY_TYPES:
        raise ConfigError(
            f"Field owner.entity_type must be one of {', '.join(ENTITY_TYPES)}, got {entity_type!r}"
        )

    return Owner(
        name=str(_require(data, "name", path)),
        invoice_prefix=prefix,
        entity_number=_optional_str(data, "entity_number", path),
        entity_type=entity_type,
        address=_optional_str(data, "address", path),
        city=_optional_str(data, "city", path),
        country=_optional_str(data, "country", path),
        phone=_optional_str(data, "phone", path),
        iban=_optional_str(data, "iban", path),
        email=_optional_str(data, "email", path),
    )


def parse_service(data: dict, path: str) -> Service:
    service_type = data.get("type", "hourly")
    if service_type not in SERVICE_TYPES:
        raise ConfigError(
            f"Field {path}.type must be one of {', '.join(SERVICE_TYPES)}, got {service_type!r}"
        )
    return Service(
        name=str(_require(data, "name", path)),
        price=float(_require_number(data, "price", path)),
        type=service_type,
    )


def parse_contract(data: dict, index: int) -> Contract:
    """Parse and validate one [[contracts]] entry."""
    path = f"contracts[{index}]"
    if not isinstance(data, dict):
        raise ConfigError(f"Field {path} must be a table")
    notice = _require_number(data, "notice", path)
    if not isinstance(notice, int) or notice < 0:
        raise ConfigError(f"Field {path}.notice must be a non-negative integer, got {notice!r}")

    services_data = data.get("services", [])
    if not isinstance(services_data, list):
        raise ConfigError(f"Field {path}.services must be an array of tables")
    services = tuple(
        parse_service(svc, f"{path}.services[{i}]")
        for i, svc in enumerate(services_data)
    )

    tracking_number = data.get("tracking_number")
    if tracking_number is not None and not isinstance(tracking_number, int):
        raise ConfigError(f"Field {path}.tracking_number must be an integer")

    return Contract(
        name=str(_require(data, "name", path)),
        notice=notice,
        tax=float(_require_number(data, "tax", path)),
        services=services,
        address=_optional_str(data, "address", path),
        city=_optional_str(data, "city", path),
        zip=_optional_str(data, "zip", path),
        state=_optional_str(data, "state", path),
        country=_optional_str(data, "country", path),
        company_number=_optional_str(data, "company_number", path),
        tracking_number=tracking_number,
        lang=_optional_str(data, "lang", path),
    )


def parse_contracts(data: list) -> list[Contract]:
    if not isinstance(data, list):
        raise ConfigError("Field contracts must be an array of tables")
    contracts = [parse_contract(item, i) for i, item in enumerate(data)]
    names = [c.name for c in contracts]
    duplicates = sorted({n for n in names if names.count(n) > 1})
    if duplicates:
        raise ConfigError(f"Duplicate contract names: {', '.join(duplicates)}")
    return contracts


def load_config(config_path: Path | None = None) -> Config:
    """Load configuration from TOML file.

    An explicitly given path must exist. Without one, the standard locations
    are searched and defaults are returned when none exists.
    """
    if config_path is not None and not config_path.exists():
        raise ConfigError(f"Failed to read config: {config_path} does not exist")

    if config_path is None:
        # Look for config in standard locations
        candidates = [
            Path("config/config.toml"),
            Path.home() / ".config/timebill/config.toml",
            Path("/etc/timebill/config.toml"),
        ]
        for candidate in candidates:
            if candidate.exists():
                config_path = candidate
                break

    config = Config()

    if config_path is None:
        logger.debug("No config file found, using defaults")
        data = {}
    else:
        try:
            with open(config_path, "rb") as f:
                data = tomli.load(f)
        except (OSError, tomli.TOMLDecodeError) as e:
            raise ConfigError(f"Failed to read config: {e}") from e

    if "db_path" in data:
        config.db_path = Path(data["db_path"])

    if "output_dir" in data:
        config.output_dir = Path(data["output_dir"])

    if "timezone" in data:
        try:
            ZoneInfo(data["timezone"])
        except (ZoneInfoNotFoundError, ValueError) as e:
            raise ConfigError(f"Unknown timezone: {data['timezone']!r}") from e
        config.timezone = data["timezone"]

    if "currency" in data:
        config.currency = data["currency"]

    if "toggl" in data:
        tg = data["toggl"]
        config.toggl = TogglConfig(
            api_token=tg.get("api_token", ""),
            base_url=tg.get("base_url", "https://api.track.toggl.com"),
            timeout=float(tg.get("timeout", 30.0)),
        )

    # Env var takes precedence so the token can stay out of the file
    env_token = os.environ.get("TOGGL_API_TOKEN", "")
    if env_token:
        config.toggl.api_token = env_token

    if "server" in data:
        srv = data["server"]
        config.server = ServerConfig(
            host=srv.get("host", "127.0.0.1"),
            port=int(srv.get("port", 3000)),
        )

    if "logging" in data:
        log = data["logging"]
        config.logging = LoggingConfig(
            level=log.get("level", "INFO"),
            output=log.get("output", "console"),
            file=log.get("file", ""),
            rotate=log.get("rotate", True),
            max_size_mb=log.get("max_size_mb", 10),
            backup_count=log.get("backup_count", 5),
        )

    if "owner" in data:
        config.owner = parse_owner(data["owner"])

    if "contracts" in data:
        config.contracts = parse_contracts(data["contracts"])

    return config
