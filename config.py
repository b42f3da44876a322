"""Configuration for the bracket engine and its API."""
from __future__ import annotations

import os
from pathlib import Path

from dotenv import load_dotenv

load_dotenv()


def _parse_bool(value: str) -> bool:
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _parse_int(value: str, default: int) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


# Database
DATABASE_URL = os.getenv(
    "DATABASE_URL",
    f"sqlite+aiosqlite:///{Path(__file__).parent / 'brackets.db'}",
)

# Broadcast webhook for "bracket changed" events (empty = in-process listeners only)
BROADCAST_URL = os.getenv("BROADCAST_URL", "")
BROADCAST_SECRET = os.getenv("BROADCAST_SECRET", "")  # Sent as Bearer token to BROADCAST_URL
BROADCAST_TIMEOUT = float(os.getenv("BROADCAST_TIMEOUT", "5.0"))

# Format defaults
SWISS_DEFAULT_ROUNDS = _parse_int(os.getenv("SWISS_DEFAULT_ROUNDS", "5"), 5)
GROUP_STAGE_DEFAULT_GROUPS = _parse_int(os.getenv("GROUP_STAGE_DEFAULT_GROUPS", "4"), 4)
# Generate the next Swiss round as soon as the current one is complete
SWISS_AUTO_PAIRING = _parse_bool(os.getenv("SWISS_AUTO_PAIRING", "false"))

# Logging / server
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
API_HOST = os.getenv("API_HOST", "0.0.0.0")
API_PORT = _parse_int(os.getenv("API_PORT", "8000"), 8000)
