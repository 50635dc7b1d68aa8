
# Runtime settings and the server-list loader.

# Every constant can be overridden through the environment so the same image
# runs in dev and prod without edits. The server list lives in a JSON file
# (servers.json) in one of two shapes:
#
#   {"servers": [{"id": "eu-1", "name": "EU #1", "apiUrl": "http://..."}]}
#   [{"name": "EU #1", "url": "http://..."}]
#
# The second, older shape has no ids, so one is derived from the name.

import json
import logging
import math
import os
import re
from pathlib import Path
from urllib.parse import urlsplit

from oce_status.models import ServerConfig

log = logging.getLogger(__name__)


class ConfigError(ValueError):
    """Raised when the server list cannot be loaded or fails validation."""

    def __init__(self, message: str, errors: list[str] | None = None) -> None:
        self.errors = errors or []
        if self.errors:
            message = message + ":\n- " + "\n- ".join(self.errors)
        super().__init__(message)


def _env_number(name: str, default: str, cast: type = float) -> float:
    """Positive, finite number from the environment; ConfigError names the variable."""
    raw = os.environ.get(name, default)
    try:
        value = cast(raw)
    except ValueError:
        raise ConfigError(f"{name} is not a valid number: {raw!r}") from None
    if not math.isfinite(value) or value <= 0:
        raise ConfigError(f"{name} must be a positive number, got {raw!r}")
    return value


POLL_INTERVAL_SECONDS: float = _env_number("OCE_POLL_INTERVAL", "60")
REQUEST_TIMEOUT_SECONDS: float = _env_number("OCE_REQUEST_TIMEOUT", "10")
SERVERS_FILE: str = os.environ.get("OCE_SERVERS_FILE", "servers.json")

USER_AGENT: str = "OCEStatus/1.0 (server-status-poller)"
CONNECTION_LIMIT: int = 50

# reverse proxy
TARGET_ORIGIN: str = os.environ.get("TARGET_ORIGIN", "http://127.0.0.1:7010")
ALLOWED_HOSTS: list[str] = [
    h.strip() for h in os.environ.get("ALLOWED_HOSTS", "").split(",") if h.strip()
]
PROXY_PORT: int = _env_number("PROXY_PORT", "8788", int)


def _slug(name: str) -> str:
    return re.sub(r"[^a-z0-9]+", "-", name.lower()).strip("-")


def _is_http_url(value: str) -> bool:
    try:
        parts = urlsplit(value)
    except ValueError:
        return False
    return parts.scheme in ("http", "https") and bool(parts.netloc)


def _non_empty(entry: dict, key: str) -> bool:
    value = entry.get(key)
    return isinstance(value, str) and value.strip() != ""


def parse_servers(data) -> list[ServerConfig]:
    """
    Validate a decoded servers document and build ServerConfig objects.

    All problems are collected before raising so a broken file can be fixed
    in one pass instead of one error at a time.
    """
    errors: list[str] = []
    servers: list[ServerConfig] = []

    if isinstance(data, list):
        entries, url_key, legacy = data, "url", True
    elif isinstance(data, dict):
        entries = data.get("servers")
        if not isinstance(entries, list):
            raise ConfigError("Invalid servers document", ["root.servers must be an array"])
        url_key, legacy = "apiUrl", False
    else:
        raise ConfigError("Invalid servers document", ["root must be an array or object"])

    seen: set[str] = set()
    for idx, entry in enumerate(entries):
        path = f"servers[{idx}]"
        if not isinstance(entry, dict):
            errors.append(f"{path} must be an object")
            continue

        entry_errors: list[str] = []
        if not _non_empty(entry, "name"):
            entry_errors.append(f"{path}.name must be a non-empty string")
        if not _non_empty(entry, url_key):
            entry_errors.append(f"{path}.{url_key} must be a non-empty string")
        elif not _is_http_url(entry[url_key].strip()):
            entry_errors.append(f"{path}.{url_key} must be an http(s) URL")

        if _non_empty(entry, "id"):
            server_id = entry["id"].strip()
        elif legacy and _non_empty(entry, "name"):
            server_id = _slug(entry["name"])
        else:
            server_id = ""

        if not server_id:
            if not legacy or _non_empty(entry, "name"):
                entry_errors.append(f"{path}.id must be a non-empty string")
        else:
            if server_id in seen:
                entry_errors.append(f'{path}.id duplicates id "{server_id}"')
            seen.add(server_id)

        if entry_errors:
            errors.extend(entry_errors)
            continue

        servers.append(ServerConfig(
            id=server_id,
            name=entry["name"].strip(),
            endpoint=entry[url_key].strip(),
        ))

    if errors:
        raise ConfigError("Invalid servers document", errors)
    return servers


def load_servers(path: str | Path = SERVERS_FILE) -> list[ServerConfig]:
    """Read and validate the servers JSON file at path."""
    try:
        with open(path, encoding="utf-8") as f:
            data = json.load(f)
    except OSError as exc:
        raise ConfigError(f"Cannot read {path}: {exc}") from exc
    except ValueError as exc:
        raise ConfigError(f"{path} is not valid JSON: {exc}") from exc

    servers = parse_servers(data)
    log.info("Loaded configuration for %d server(s) from %s", len(servers), path)
    return servers
