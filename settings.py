from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache
from typing import Optional, Tuple


_HOST_ENV = "AIRVISUAL_HOST"
_PORT_ENV = "AIRVISUAL_PORT"
_USER_ENV = "AIRVISUAL_USER"
_PASSWORD_ENV = "AIRVISUAL_PASSWORD"
_SHARE_ENV = "AIRVISUAL_SHARE"
_FILE_ENV = "AIRVISUAL_FILE"
_TIMEOUT_ENV = "AIRVISUAL_TIMEOUT_SECONDS"
_LISTEN_ENV = "EXPORTER_LISTEN"
_SINGLE_FLIGHT_ENV = "REFRESH_SINGLE_FLIGHT"
_LOG_LEVEL_ENV = "LOG_LEVEL"

DEFAULT_LISTEN = ":1280"


@dataclass(frozen=True)
class Settings:
    device_host: str
    device_port: int
    device_username: str
    device_password: str
    device_share: str
    device_file_path: str
    device_timeout: Optional[float]
    listen_host: str
    listen_port: int
    single_flight: bool
    log_level: str

    @property
    def listen_address(self) -> str:
        return f"{self.listen_host}:{self.listen_port}"


def _read_str_env(name: str, default: str) -> str:
    value = os.getenv(name)
    if value is None:
        return default
    candidate = value.strip()
    return candidate or default


def _read_secret_env(name: str) -> str:
    # Passwords may legitimately carry surrounding whitespace.
    return os.getenv(name) or ""


def _read_port(name: str, default: int) -> int:
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
    return parsed if 0 < parsed < 65536 else default


def _read_timeout(default: Optional[float]) -> Optional[float]:
    value = os.getenv(_TIMEOUT_ENV)
    if value is None:
        return default
    candidate = value.strip()
    if not candidate:
        return default
    try:
        parsed = float(candidate)
    except ValueError:
        return default
    if parsed == 0:
        return None
    return parsed if parsed > 0 else default


def _read_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    candidate = value.strip().lower()
    if candidate in {"1", "true", "yes", "on"}:
        return True
    if candidate in {"0", "false", "no", "off"}:
        return False
    return default


def _read_log_level(default: str) -> str:
    value = os.getenv(_LOG_LEVEL_ENV)
    if value is None:
        return default
    candidate = value.strip()
    if not candidate:
        return default
    return candidate.upper()


def parse_listen_address(value: str) -> Tuple[str, int]:
    """Split a ``host:port`` listen address; an empty host binds every interface."""
    host, sep, port = value.strip().rpartition(":")
    if not sep:
        raise ValueError(f"Listen address {value!r} must look like 'host:port'.")
    try:
        parsed_port = int(port)
    except ValueError as exc:
        raise ValueError(f"Listen address {value!r} has an invalid port.") from exc
    if not 0 < parsed_port < 65536:
        raise ValueError(f"Listen address {value!r} has an out-of-range port.")
    return host.strip("[]") or "0.0.0.0", parsed_port


def _read_listen(default: str) -> Tuple[str, int]:
    value = _read_str_env(_LISTEN_ENV, default)
    try:
        return parse_listen_address(value)
    except ValueError:
        return parse_listen_address(default)


@lru_cache
def get_settings() -> Settings:
    listen_host, listen_port = _read_listen(DEFAULT_LISTEN)
    return Settings(
        device_host=_read_str_env(_HOST_ENV, "192.168.1.2"),
        device_port=_read_port(_PORT_ENV, 445),
        device_username=_read_str_env(_USER_ENV, "airvisual"),
        device_password=_read_secret_env(_PASSWORD_ENV),
        device_share=_read_str_env(_SHARE_ENV, "airvisual"),
        device_file_path=_read_str_env(_FILE_ENV, "latest_config_measurements.json"),
        device_timeout=_read_timeout(10.0),
        listen_host=listen_host,
        listen_port=listen_port,
        single_flight=_read_bool(_SINGLE_FLIGHT_ENV, False),
        log_level=_read_log_level("INFO"),
    )
