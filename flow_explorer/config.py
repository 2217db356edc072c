"""Runtime settings for Flow-Explorer.

Values come from the process environment; a local `.env` file is loaded first so
that API keys and test credentials do not have to be exported by hand.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, replace
from typing import Any

from dotenv import load_dotenv


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    return float(raw)


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    return int(raw)


@dataclass(frozen=True)
class Credentials:
    username: str
    password: str


@dataclass(frozen=True)
class Settings:
    """Everything the explorer, driver and oracle need to be configured."""

    openai_api_key: str = ""
    model: str = "gpt-4o-mini"
    oracle_timeout: float = 30.0
    oracle_retries: int = 3
    oracle_backoff: float = 1.0
    driver_timeout_ms: int = 10_000
    website_context: str = ""
    credentials: Credentials | None = None

    @classmethod
    def from_env(cls, dotenv: bool = True) -> "Settings":
        if dotenv:
            load_dotenv()
        username = os.getenv("FLOW_EXPLORER_USERNAME", "")
        password = os.getenv("FLOW_EXPLORER_PASSWORD", "")
        creds = Credentials(username, password) if username and password else None
        return cls(
            openai_api_key=os.getenv("OPENAI_API_KEY", ""),
            model=os.getenv("FLOW_EXPLORER_MODEL", cls.model),
            oracle_timeout=_env_float("FLOW_EXPLORER_ORACLE_TIMEOUT", cls.oracle_timeout),
            oracle_retries=_env_int("FLOW_EXPLORER_ORACLE_RETRIES", cls.oracle_retries),
            oracle_backoff=_env_float("FLOW_EXPLORER_ORACLE_BACKOFF", cls.oracle_backoff),
            driver_timeout_ms=_env_int("FLOW_EXPLORER_DRIVER_TIMEOUT_MS", cls.driver_timeout_ms),
            website_context=os.getenv("FLOW_EXPLORER_CONTEXT", ""),
            credentials=creds,
        )

    def override(self, **changes: Any) -> "Settings":
        """Return a copy with every non-None keyword applied (CLI flags)."""
        return replace(self, **{k: v for k, v in changes.items() if v is not None})

    @property
    def has_openai(self) -> bool:
        return bool(self.openai_api_key)
