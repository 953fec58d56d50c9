"""
Configuration – reads from environment variables or .env file.

Required:
  ROS_HOST           – Router API host (name or address)

Optional:
  ROS_PORT           – Router API port (default: 8728)
  ROS_USER           – API username (default: admin)
  ROS_PASS           – API password (default: empty)
  ROS_TIMEOUT        – Connect / login / command timeout in seconds (default: 10)
  ROS_ENCODING       – Encoding of API words (default: utf-8)
  LOG_LEVEL          – Logging level: DEBUG | INFO | WARNING | ERROR (default: INFO)

Demo mode – no router needed:
  ROS_MOCK=1         – Talk to the built-in fake router instead of ROS_HOST
"""

import codecs
import os
import sys
import logging

from dotenv import load_dotenv

load_dotenv()

log = logging.getLogger("Config")


def _require_env(key: str, hint: str = "") -> str:
    val = os.environ.get(key, "").strip()
    _PLACEHOLDERS = {"", "PUT_HOST_HERE", "change_me"}
    if val in _PLACEHOLDERS:
        msg = (
            f"\n{'='*60}\n"
            f"  FATAL: Required environment variable '{key}' is not set.\n"
            + (f"  Hint: {hint}\n" if hint else "")
            + f"{'='*60}\n"
        )
        sys.stderr.write(msg)
        sys.exit(1)
    return val


def _optional_int(key: str, default: int | None = None) -> int | None:
    raw = os.environ.get(key, "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        log.warning(f"Config: {key}='{raw}' is not a valid integer, using default {default}")
        return default


def _optional_float(key: str, default: float) -> float:
    raw = os.environ.get(key, "").strip()
    if not raw:
        return default
    try:
        value = float(raw)
    except ValueError:
        value = 0
    if value <= 0:
        log.warning(f"Config: {key}='{raw}' is not a positive number, using default {default}")
        return default
    return value


def _optional_str(key: str, default: str = "") -> str:
    return os.environ.get(key, default).strip() or default


def _optional_bool(key: str) -> bool:
    return os.environ.get(key, "").lower() in ("1", "true", "yes")


def _valid_log_level(level: str) -> str:
    if level.upper() not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
        log.warning(f"Config: LOG_LEVEL='{level}' is invalid, defaulting to INFO")
        return "INFO"
    return level.upper()


def _valid_encoding(name: str) -> str:
    try:
        return codecs.lookup(name).name
    except LookupError:
        log.warning(f"Config: ROS_ENCODING='{name}' is unknown, defaulting to utf-8")
        return "utf-8"


# ─── Mode ─────────────────────────────────────────────────────────────────────

MOCK: bool = _optional_bool("ROS_MOCK")

# ─── Required ─────────────────────────────────────────────────────────────────

HOST: str = "mock" if MOCK else _require_env(
    "ROS_HOST",
    hint="Address of the router API service, e.g. 192.168.88.1 (or set ROS_MOCK=1)",
)

# ─── Optional ─────────────────────────────────────────────────────────────────

PORT: int = _optional_int("ROS_PORT", 8728) or 8728
USERNAME: str = _optional_str("ROS_USER", "admin")
PASSWORD: str = os.environ.get("ROS_PASS", "")
TIMEOUT: float = _optional_float("ROS_TIMEOUT", 10.0)
ENCODING: str = _valid_encoding(_optional_str("ROS_ENCODING", "utf-8"))
LOG_LEVEL: str = _valid_log_level(_optional_str("LOG_LEVEL", "INFO"))
