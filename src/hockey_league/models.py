from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import date, datetime
from typing import Any
from uuid import uuid4

SEASON_UPCOMING = "UPCOMING"
SEASON_ACTIVE = "ACTIVE"
SEASON_COMPLETED = "COMPLETED"

GAME_SCHEDULED = "SCHEDULED"
GAME_IN_PROGRESS = "IN_PROGRESS"
GAME_COMPLETED = "COMPLETED"
GAME_CANCELLED = "CANCELLED"

SOURCE_MANUAL = "MANUAL"
SOURCE_EA_SPORTS = "EA_SPORTS"

QUEUE_PENDING = "PENDING"
QUEUE_PROCESSING = "PROCESSING"
QUEUE_COMPLETED = "COMPLETED"
QUEUE_FAILED = "FAILED"
QUEUE_STATUSES = (QUEUE_PENDING, QUEUE_PROCESSING, QUEUE_COMPLETED, QUEUE_FAILED)


def _new_id() -> str:
    return uuid4().hex


@dataclass(slots=True)
class Team:
    name: str
    league_id: str
    abbreviation: str = ""
    id: str = field(default_factory=_new_id)


@dataclass(slots=True)
class Season:
    league_id: str
    name: str
    start_date: date | None = None
    end_date: date | None = None
    status: str = SEASON_UPCOMING
    # Raw rules document; parsed (with fallbacks) by rules.parse_rules.
    rules: dict[str, Any] | None = None
    id: str = field(default_factory=_new_id)


@dataclass(slots=True)
class Game:
    season_id: str
    home_team_id: str
    away_team_id: str
    scheduled_at: datetime | None = None
    status: str = GAME_SCHEDULED
    venue: str = ""
    id: str = field(default_factory=_new_id)

    @property
    def is_completed(self) -> bool:
        return self.status == GAME_COMPLETED


@dataclass(slots=True)
class GameStat:
    game_id: str
    player_id: str
    team_id: str
    goals: int = 0
    assists: int = 0
    shots: int = 0
    time_on_ice: int = 0
    penalty_minutes: int = 0
    plus_minus: int = 0
    # Goalie-only; None means the player did not play goal in this game.
    saves: int | None = None
    goals_against: int | None = None
    source: str = SOURCE_MANUAL
    processed_at: datetime | None = None
    id: str = field(default_factory=_new_id)

    @property
    def points(self) -> int:
        return self.goals + self.assists

    @property
    def is_goalie(self) -> bool:
        return self.saves is not None

    def to_dict(self) -> dict[str, Any]:
        out = asdict(self)
        out["points"] = self.points
        out["processed_at"] = self.processed_at.isoformat() if self.processed_at else None
        if self.saves is None:
            out.pop("saves")
            out.pop("goals_against")
        return out


@dataclass(slots=True)
class TeamStanding:
    team_id: str
    team_name: str
    team_abbreviation: str = ""
    games_played: int = 0
    wins: int = 0
    losses: int = 0
    overtime_losses: int = 0
    points: float = 0
    goals_for: int = 0
    goals_against: int = 0
    goal_differential: int = 0
    regulation_wins: int = 0
    head_to_head_wins: int = 0

    @property
    def record(self) -> str:
        return f"{self.wins}-{self.losses}-{self.overtime_losses}"

    def to_dict(self) -> dict[str, Any]:
        out = asdict(self)
        out["record"] = self.record
        return out


@dataclass(slots=True)
class StatsQueueItem:
    game_id: str
    created_at: datetime
    provider: str = "ea_sports"
    status: str = QUEUE_PENDING
    # Normalized stats captured on completion, kept for audit.
    stats_data: list[dict[str, Any]] = field(default_factory=list)
    processed_at: datetime | None = None
    error_message: str | None = None
    retry_count: int = 0
    max_retries: int = 3
    id: str = field(default_factory=_new_id)

    @property
    def attempts_left(self) -> int:
        return max(0, self.max_retries - self.retry_count)

    def to_dict(self) -> dict[str, Any]:
        out = asdict(self)
        out["created_at"] = self.created_at.isoformat()
        out["processed_at"] = self.processed_at.isoformat() if self.processed_at else None
        out["attempts_left"] = self.attempts_left
        return out
