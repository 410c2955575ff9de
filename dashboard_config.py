"""Runtime settings for the KPC AI dashboard, overridable through the environment."""
from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping, Optional

DEFAULT_SHEET_ID = "1scqI8Kdz7VKLP9933Q-J3rqOCNgUaYFOT1nqsNwqIWk"
DEFAULT_SHEET_GID = "0"
DEFAULT_REFRESH_SECONDS = 60
DEFAULT_FETCH_TIMEOUT = 10.0
DEFAULT_TOP_N = 10
DEFAULT_RATE_DECIMALS = 1

DEFAULT_DATA_FILE = Path(__file__).with_name("kpc_ai_survey.csv")

CSV_EXPORT_TEMPLATE = (
    "https://docs.google.com/spreadsheets/d/{sheet_id}/export?format=csv&gid={gid}"
)


def build_export_url(sheet_id: str, gid: str = DEFAULT_SHEET_GID) -> str:
    return CSV_EXPORT_TEMPLATE.format(sheet_id=sheet_id, gid=gid)


def _read_number(env: Mapping[str, str], name: str, default, cast, minimum=0):
    raw = env.get(name, "").strip()
    if not raw:
        return default
    try:
        value = cast(raw)
    except ValueError as exc:
        raise ValueError(f"{name} must be a number, got {raw!r}") from exc
    if value < minimum:
        raise ValueError(f"{name} must be at least {minimum}, got {raw!r}")
    return value


@dataclass(frozen=True)
class DashboardSettings:
    sheet_id: str = DEFAULT_SHEET_ID
    sheet_gid: str = DEFAULT_SHEET_GID
    csv_url_override: Optional[str] = None
    refresh_seconds: int = DEFAULT_REFRESH_SECONDS
    fetch_timeout: float = DEFAULT_FETCH_TIMEOUT
    top_n: int = DEFAULT_TOP_N
    rate_decimals: int = DEFAULT_RATE_DECIMALS

    @property
    def csv_url(self) -> str:
        return self.csv_url_override or build_export_url(self.sheet_id, self.sheet_gid)

    @classmethod
    def from_env(cls, env: Optional[Mapping[str, str]] = None) -> "DashboardSettings":
        """Build settings from ``KPC_*`` variables, falling back to the defaults."""
        env = os.environ if env is None else env
        return cls(
            sheet_id=env.get("KPC_SHEET_ID", "").strip() or DEFAULT_SHEET_ID,
            sheet_gid=env.get("KPC_SHEET_GID", "").strip() or DEFAULT_SHEET_GID,
            csv_url_override=env.get("KPC_CSV_URL", "").strip() or None,
            refresh_seconds=_read_number(
                env, "KPC_REFRESH_SECONDS", DEFAULT_REFRESH_SECONDS, int, minimum=1
            ),
            fetch_timeout=_read_number(env, "KPC_FETCH_TIMEOUT", DEFAULT_FETCH_TIMEOUT, float),
            top_n=_read_number(env, "KPC_TOP_N", DEFAULT_TOP_N, int),
            rate_decimals=_read_number(env, "KPC_RATE_DECIMALS", DEFAULT_RATE_DECIMALS, int),
        )
