from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache
from typing import Optional


_STORE_URI_ENV = "GRAPH_STORE_URI"
_STORE_USERNAME_ENV = "GRAPH_STORE_USERNAME"
_STORE_PASSWORD_ENV = "GRAPH_STORE_PASSWORD"
_STORE_PATH_ENV = "GRAPH_STORE_PERSISTENCE_PATH"
_CONFLICT_RETRIES_ENV = "GRAPH_STORE_CONFLICT_RETRIES"
_HTTP_HOST_ENV = "HTTP_HOST"
_HTTP_PORT_ENV = "HTTP_PORT"
_LOG_LEVEL_ENV = "LOG_LEVEL"


@dataclass(frozen=True)
class Settings:
    store_uri: str
    store_username: str
    store_password: str
    store_persistence_path: Optional[str]
    conflict_retries: int
    http_host: str
    http_port: int
    log_level: str


def _read_str_env(name: str, default: str) -> str:
    value = os.getenv(name)
    if value is None:
        return default
    candidate = value.strip()
    return candidate or default


def _read_optional_env(name: str, default: Optional[str]) -> Optional[str]:
    value = os.getenv(name)
    if value is None:
        return default
    candidate = value.strip()
    return candidate or None


def _read_positive_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None:
        return default
    candidate = value.strip()
    if not candidate:
        return default
    try:
        parsed = int(candidate)
    except ValueError:
        return default
    return parsed if parsed > 0 else default


def _read_log_level(default: str) -> str:
    value = os.getenv(_LOG_LEVEL_ENV)
    if value is None:
        return default
    candidate = value.strip()
    if not candidate:
        return default
    return candidate.upper()


@lru_cache
def get_settings() -> Settings:
    return Settings(
        store_uri=_read_str_env(_STORE_URI_ENV, "memory://"),
        store_username=_read_str_env(_STORE_USERNAME_ENV, "neo4j"),
        # Passwords are taken verbatim; surrounding whitespace may be significant.
        store_password=os.getenv(_STORE_PASSWORD_ENV, ""),
        store_persistence_path=_read_optional_env(_STORE_PATH_ENV, "./tmp/sensor_graph.json"),
        conflict_retries=_read_positive_int(_CONFLICT_RETRIES_ENV, 3),
        http_host=_read_str_env(_HTTP_HOST_ENV, "0.0.0.0"),
        http_port=_read_positive_int(_HTTP_PORT_ENV, 8000),
        log_level=_read_log_level("INFO"),
    )
