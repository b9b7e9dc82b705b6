"""Configuration loaded from environment variables."""

from __future__ import annotations

import os
from pathlib import Path

from dotenv import load_dotenv

load_dotenv()


def _optional_int(name: str) -> int | None:
    val = os.getenv(name)
    if not val:
        return None
    return int(val)


def _optional_float(name: str) -> float | None:
    val = os.getenv(name)
    if not val:
        return None
    return float(val)


# Paths
DATA_DIR: Path = Path(os.getenv("DATA_DIR", "./data"))

# API keys
GEMINI_API_KEY: str = os.getenv("GEMINI_API_KEY", "")

# Models
GEMINI_MODEL: str = os.getenv("GEMINI_MODEL", "gemini-3-flash-preview")
MAX_OUTPUT_TOKENS: int | None = _optional_int("MAX_OUTPUT_TOKENS")
TEMPERATURE: float | None = _optional_float("TEMPERATURE")

# Agent
MAX_AGENT_STEPS: int = int(os.getenv("MAX_AGENT_STEPS", "5"))
MAX_EDIT_RETRIES: int = int(os.getenv("MAX_EDIT_RETRIES", "3"))

# Diagram
MAX_HISTORY_SIZE: int = int(os.getenv("MAX_HISTORY_SIZE", "20"))

# Server
HOST: str = os.getenv("HOST", "0.0.0.0")
PORT: int = int(os.getenv("PORT", "8000"))
LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO").upper()

# Security: comma-separated list, empty disables the check
ACCESS_CODE_LIST: str = os.getenv("ACCESS_CODE_LIST", "")

# Derived paths
SQLITE_PATH: Path = Path(os.getenv("SQLITE_PATH", str(DATA_DIR / "drawchat.db")))


def get_access_codes() -> list[str]:
    """Return the configured access codes, stripped and without blanks."""
    return [code.strip() for code in ACCESS_CODE_LIST.split(",") if code.strip()]
