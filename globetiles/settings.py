"""Environment driven settings shared by the ``globetiles`` package."""

from __future__ import annotations

import os
from pathlib import Path

BASE_DIR = Path(__file__).resolve().parent.parent

DATA_DIR_ENV = "GLOBETILES_DATA_DIR"
REQUEST_TIMEOUT_ENV = "GLOBETILES_REQUEST_TIMEOUT"
PICK_TOLERANCE_ENV = "GLOBETILES_PICK_TOLERANCE"
TILE_PROTOCOL_ENV = "GLOBETILES_TILE_PROTOCOL"
DATABASE_URL_ENV = "GLOBETILES_DATABASE_URL"

DEFAULT_REQUEST_TIMEOUT = 60.0
DEFAULT_PICK_TOLERANCE = 2
DEFAULT_TILE_PROTOCOL = "https"


def data_dir() -> Path:
    override = os.getenv(DATA_DIR_ENV, "").strip()
    if override:
        return Path(override).expanduser()
    return BASE_DIR / "data"


def request_timeout_seconds() -> float:
    raw_value = os.getenv(REQUEST_TIMEOUT_ENV, "").strip()
    if not raw_value:
        return DEFAULT_REQUEST_TIMEOUT
    try:
        timeout = float(raw_value)
    except ValueError:
        return DEFAULT_REQUEST_TIMEOUT
    return timeout if timeout > 0 else DEFAULT_REQUEST_TIMEOUT


def pick_tolerance() -> int:
    raw_value = os.getenv(PICK_TOLERANCE_ENV, "").strip()
    if not raw_value:
        return DEFAULT_PICK_TOLERANCE
    try:
        tolerance = int(raw_value)
    except ValueError:
        return DEFAULT_PICK_TOLERANCE
    return max(0, tolerance)


def default_tile_protocol() -> str:
    """Scheme used for quadkey tile URLs when the caller does not choose one."""

    protocol = os.getenv(TILE_PROTOCOL_ENV, "").strip().rstrip(":").lower()
    if protocol in {"http", "https"}:
        return protocol
    return DEFAULT_TILE_PROTOCOL


def database_url() -> str:
    """SQLAlchemy URL of the request accounting database."""

    override = os.getenv(DATABASE_URL_ENV, "").strip()
    if override:
        return override
    return f"sqlite:///{data_dir() / 'globetiles.db'}"
