"""Toggl Track API client for billable time entries."""

import logging
from datetime import date, datetime, timedelta

import httpx

from .config import Config
from .invoicing import TimeEntry

logger = logging.getLogger("timebill.toggl")


class TogglError(RuntimeError):
    """Time entries could not be fetched from Toggl."""


def _toggl_auth(config: Config) -> tuple[str, str]:
    # Toggl accepts the API token as username with the literal password "api_token"
    return (config.toggl.api_token, "api_token")


def _parse_timestamp(value: str) -> datetime:
    # Toggl sends RFC 3339; older Pythons choke on the trailing "Z"
    return datetime.fromisoformat(value.replace("Z", "+00:00"))


def parse_time_entry(data: dict) -> TimeEntry:
    """Convert one API time entry into a TimeEntry."""
    stop = data.get("stop")
    return TimeEntry(
        client_name=data.get("client_name") or "",
        project_name=data.get("project_name") or "",
        description=data.get("description") or "",
        duration=int(data.get("duration") or 0),
        start=_parse_timestamp(data["start"]),
        stop=_parse_timestamp(stop) if stop else None,
    )


def fetch_time_entries(config: Config, start: str, end: str) -> list[TimeEntry]:
    """
    Fetch the authenticated user's time entries for an ISO date range.

    ``end`` is inclusive: the API treats end_date as exclusive, so the day
    after is requested. Running entries (negative duration) are skipped.

    Raises TogglError on a missing token, transport error or non-2xx status.
    """
    if not config.toggl.api_token:
        raise TogglError("Toggl API token is not configured (set [toggl] api_token or TOGGL_API_TOKEN)")

    url = f"{config.toggl.base_url.rstrip('/')}/api/v9/me/time_entries"
    end_exclusive = (date.fromisoformat(end) + timedelta(days=1)).isoformat()
    params = {"meta": "true", "start_date": start, "end_date": end_exclusive}

    try:
        resp = httpx.get(
            url,
            auth=_toggl_auth(config),
            headers={"Content-Type": "application/json"},
            params=params,
            timeout=config.toggl.timeout,
        )
        resp.raise_for_status()
        payload = resp.json()
    except httpx.HTTPStatusError as e:
        raise TogglError(
            f"Error fetching entries: {e.response.status_code} {e.response.reason_phrase}"
        ) from e
    except (httpx.HTTPError, ValueError) as e:
        raise TogglError(f"Failed to get entries: {e}") from e

    if not isinstance(payload, list):
        raise TogglError("Failed to get entries: unexpected response shape")

    entries = []
    for item in payload:
        if not isinstance(item, dict):
            raise TogglError(f"Malformed time entry: {item!r}")
        try:
            if int(item.get("duration") or 0) < 0:
                logger.warning("Skipping running time entry %s", item.get("id"))
                continue
            entries.append(parse_time_entry(item))
        except (KeyError, ValueError, TypeError) as e:
            raise TogglError(f"Malformed time entry {item.get('id')}: {e}") from e

    logger.info("Fetched %d time entries for %s to %s", len(entries), start, end)
    return entries
