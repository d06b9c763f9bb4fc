"""Static league constants and environment-driven service settings."""

from __future__ import annotations

import os
from dataclasses import dataclass, field

DEFAULT_POINTS: dict[str, float] = {"win": 2, "otLoss": 1, "loss": 0}

DEFAULT_TIEBREAKERS: tuple[str, ...] = (
    "points",
    "regulationWins",
    "goalDifferential",
    "headToHead",
    "goalsFor",
)

# Tiebreaker key -> TeamStanding attribute compared (descending).
TIEBREAKER_FIELDS: dict[str, str] = {
    "points": "points",
    "regulationWins": "regulation_wins",
    "goalDifferential": "goal_differential",
    "headToHead": "head_to_head_wins",
    "goalsFor": "goals_for",
}

EA_API_BASE = "https://proclubs.ea.com/api/nhl"
EA_PLATFORM = "common-gen5"
EA_MATCH_TYPE = "club_private"
DEFAULT_CLUB_IDS: tuple[int, ...] = (3383, 4388, 490, 765)
EA_REQUEST_HEADERS: dict[str, str] = {
    "User-Agent": "Mozilla/5.0 (X11; Ubuntu; Linux x86_64; rv:109.0) Gecko/20100101 Firefox/119.0",
    "Accept": "application/json",
    "Accept-Language": "en-US,en",
    "Connection": "keep-alive",
}

DEFAULT_MAX_RETRIES = 3
DEFAULT_BATCH_SIZE = 10
MAX_BATCH_SIZE = 50


def _env_int(name: str, default: int) -> int:
    try:
        return int(os.getenv(name, str(default)))
    except ValueError:
        return default


def _env_float(name: str, default: float) -> float:
    try:
        return float(os.getenv(name, str(default)))
    except ValueError:
        return default


def _env_int_list(name: str, default: tuple[int, ...]) -> tuple[int, ...]:
    """Read a comma-delimited integer list such as ``EA_CLUB_IDS="3383,490"``."""
    raw = os.getenv(name)
    if not raw:
        return default
    out: list[int] = []
    for part in raw.split(","):
        part = part.strip()
        if not part:
            continue
        try:
            out.append(int(part))
        except ValueError:
            continue
    return tuple(out) or default


@dataclass(frozen=True)
class Settings:
    ea_api_base: str = EA_API_BASE
    ea_platform: str = EA_PLATFORM
    ea_club_ids: tuple[int, ...] = DEFAULT_CLUB_IDS
    ea_timeout_seconds: float = 10.0
    queue_max_retries: int = DEFAULT_MAX_RETRIES
    queue_batch_size: int = DEFAULT_BATCH_SIZE
    data_path: str | None = None
    log_level: str = "INFO"
    request_headers: dict[str, str] = field(default_factory=lambda: dict(EA_REQUEST_HEADERS))

    @classmethod
    def from_env(cls) -> "Settings":
        batch_size = _env_int("STATS_QUEUE_BATCH_SIZE", DEFAULT_BATCH_SIZE)
        return cls(
            ea_api_base=os.getenv("EA_API_BASE", EA_API_BASE).rstrip("/"),
            ea_platform=os.getenv("EA_PLATFORM", EA_PLATFORM),
            ea_club_ids=_env_int_list("EA_CLUB_IDS", DEFAULT_CLUB_IDS),
            ea_timeout_seconds=max(0.5, _env_float("EA_TIMEOUT_SECONDS", 10.0)),
            queue_max_retries=max(1, _env_int("STATS_QUEUE_MAX_RETRIES", DEFAULT_MAX_RETRIES)),
            queue_batch_size=max(1, min(MAX_BATCH_SIZE, batch_size)),
            data_path=os.getenv("LEAGUE_DATA_PATH") or None,
            log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
        )
