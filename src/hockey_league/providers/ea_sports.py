"""EA Sports NHL Pro Clubs adapter.

The provider has no lookup by match id: matches are read per tracked club from
the match-history endpoint and searched locally. Wire payloads are validated
into pydantic models at this boundary and turned into ``GameStat`` rows right
away.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from threading import Lock
from typing import Any, Callable, Iterable

import httpx
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from ..config import DEFAULT_CLUB_IDS, EA_API_BASE, EA_MATCH_TYPE, EA_PLATFORM, EA_REQUEST_HEADERS
from ..errors import NotFoundError, ProviderError
from ..models import SOURCE_EA_SPORTS, GameStat
from ..store import LeagueStore

logger = logging.getLogger(__name__)


class EAPlayerStats(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    goals: int = 0
    assists: int = 0
    shots: int = 0
    time_on_ice: int = Field(0, alias="timeOnIce")
    penalty_minutes: int = Field(0, alias="penaltyMinutes")
    plus_minus: int = Field(0, alias="plusMinus")
    saves: int | None = None
    goals_against: int | None = Field(None, alias="goalsAgainst")

    @field_validator("goals", "assists", "shots", "time_on_ice", "penalty_minutes", "plus_minus", mode="before")
    @classmethod
    def _blank_is_zero(cls, value: Any) -> Any:
        return 0 if value in (None, "") else value

    @field_validator("saves", "goals_against", mode="before")
    @classmethod
    def _blank_is_missing(cls, value: Any) -> Any:
        return None if value == "" else value


class EAMatch(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    match_id: str = Field(alias="matchId")
    timestamp: int | None = None
    clubs: dict[str, Any] = Field(default_factory=dict)
    # club id -> player id -> stats
    players: dict[str, dict[str, EAPlayerStats]] = Field(default_factory=dict)

    @field_validator("match_id", mode="before")
    @classmethod
    def _match_id_text(cls, value: Any) -> Any:
        return str(value) if isinstance(value, int) else value

    @field_validator("clubs", "players", mode="before")
    @classmethod
    def _mapping_default(cls, value: Any) -> Any:
        return {} if value is None else value


def normalize_match(match: EAMatch, processed_at: datetime | None = None) -> list[GameStat]:
    """Flatten ``players[clubId][playerId]`` into one GameStat per player.

    ``team_id``/``player_id`` are the provider's club and player ids. Goalie
    fields are copied only when the payload carries ``saves``.
    """
    stamp = processed_at or datetime.now(timezone.utc)
    out: list[GameStat] = []
    for club_id, players in match.players.items():
        for player_id, entry in players.items():
            stat = GameStat(
                game_id=match.match_id,
                player_id=player_id,
                team_id=club_id,
                goals=entry.goals,
                assists=entry.assists,
                shots=entry.shots,
                time_on_ice=entry.time_on_ice,
                penalty_minutes=entry.penalty_minutes,
                plus_minus=entry.plus_minus,
                source=SOURCE_EA_SPORTS,
                processed_at=stamp,
            )
            if entry.saves is not None:
                stat.saves = entry.saves
                stat.goals_against = entry.goals_against or 0
            out.append(stat)
    return out


def _unique_matches(matches: Iterable[EAMatch]) -> list[EAMatch]:
    seen: set[str] = set()
    out: list[EAMatch] = []
    for match in matches:
        if match.match_id in seen:
            continue
        seen.add(match.match_id)
        out.append(match)
    return out


class EASportsProvider:
    name = "ea_sports"
    description = "Automated statistics from EA Sports NHL Pro Clubs matches"
    supports_batch = True

    def __init__(
        self,
        club_ids: Iterable[int] = DEFAULT_CLUB_IDS,
        base_url: str = EA_API_BASE,
        platform: str = EA_PLATFORM,
        timeout: float = 10.0,
        headers: dict[str, str] | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.platform = platform
        self.timeout = timeout
        self.headers = dict(headers if headers is not None else EA_REQUEST_HEADERS)
        self._transport = transport
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._club_ids: list[int] = []
        self._club_lock = Lock()
        self.set_club_ids(club_ids)

    # -------------------------
    # Tracked clubs
    # -------------------------

    def get_club_ids(self) -> list[int]:
        with self._club_lock:
            return list(self._club_ids)

    def set_club_ids(self, club_ids: Iterable[int]) -> None:
        unique: list[int] = []
        for club_id in club_ids:
            if int(club_id) not in unique:
                unique.append(int(club_id))
        with self._club_lock:
            self._club_ids = unique

    def add_club_id(self, club_id: int) -> None:
        club_id = int(club_id)
        with self._club_lock:
            if club_id not in self._club_ids:
                self._club_ids.append(club_id)

    def remove_club_id(self, club_id: int) -> None:
        club_id = int(club_id)
        with self._club_lock:
            self._club_ids = [cid for cid in self._club_ids if cid != club_id]

    # -------------------------
    # HTTP
    # -------------------------

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self.base_url,
            headers=self.headers,
            timeout=self.timeout,
            transport=self._transport,
        )

    def _match_params(self, club_id: int) -> dict[str, Any]:
        return {"clubIds": club_id, "platform": self.platform, "matchType": EA_MATCH_TYPE}

    async def _fetch_club_matches(self, client: httpx.AsyncClient, club_id: int) -> list[EAMatch]:
        response = await client.get("/clubs/matches", params=self._match_params(club_id))
        if not response.is_success:
            raise ProviderError(f"EA Sports API returned {response.status_code} for club {club_id}")
        try:
            payload = response.json()
        except ValueError as exc:
            raise ProviderError(f"EA Sports API returned invalid JSON for club {club_id}") from exc
        if not isinstance(payload, list):
            raise ProviderError(f"EA Sports API returned {type(payload).__name__} for club {club_id}, expected a list")
        matches: list[EAMatch] = []
        for raw in payload:
            try:
                matches.append(EAMatch.model_validate(raw))
            except ValidationError as exc:
                logger.warning("Skipping malformed EA match for club %s: %s", club_id, exc.errors()[:1])
        return matches

    async def fetch_all_matches(self) -> list[EAMatch]:
        """Concatenate match history for every tracked club.

        A club whose request fails is logged and skipped. Only when every club
        fails is the whole fetch reported as a ProviderError.
        """
        club_ids = self.get_club_ids()
        matches: list[EAMatch] = []
        failures = 0
        async with self._client() as client:
            for club_id in club_ids:
                try:
                    matches.extend(await self._fetch_club_matches(client, club_id))
                except (httpx.HTTPError, ProviderError) as exc:
                    failures += 1
                    logger.warning("Failed to fetch matches for club %s: %s", club_id, exc)
        if club_ids and failures == len(club_ids):
            raise ProviderError("EA Sports API unreachable for every tracked club")
        return matches

    async def get_game_stats(self, game_id: str) -> list[GameStat]:
        target = str(game_id)
        for match in await self.fetch_all_matches():
            if match.match_id == target:
                return normalize_match(match, self._clock())
        raise NotFoundError(f"Game {game_id} not found in EA Sports match history")

    async def get_player_stats(self, player_id: str) -> list[GameStat]:
        stamp = self._clock()
        out: list[GameStat] = []
        for match in _unique_matches(await self.fetch_all_matches()):
            out.extend(stat for stat in normalize_match(match, stamp) if stat.player_id == str(player_id))
        return out

    async def get_team_stats(self, team_id: str) -> list[GameStat]:
        stamp = self._clock()
        out: list[GameStat] = []
        for match in _unique_matches(await self.fetch_all_matches()):
            out.extend(stat for stat in normalize_match(match, stamp) if stat.team_id == str(team_id))
        return out

    async def validate_connection(self) -> bool:
        club_ids = self.get_club_ids()
        if not club_ids:
            return False
        try:
            async with self._client() as client:
                response = await client.get("/clubs/matches", params=self._match_params(club_ids[0]))
        except httpx.HTTPError as exc:
            logger.warning("EA Sports connection check failed: %s", exc)
            return False
        return response.is_success

    async def import_game(self, match_id: str, store: LeagueStore) -> list[GameStat]:
        """Fetch one match and persist its stats; duplicates raise PersistenceError."""
        stats = await self.get_game_stats(match_id)
        if stats:
            store.insert("game_stats", stats)
        return stats
