from __future__ import annotations

from typing import Protocol

from ..models import GameStat


class StatsProvider(Protocol):
    """A source of per-player game statistics the stats queue can pull from."""

    name: str
    description: str
    supports_batch: bool

    async def get_game_stats(self, game_id: str) -> list[GameStat]: ...

    async def get_player_stats(self, player_id: str) -> list[GameStat]: ...

    async def get_team_stats(self, team_id: str) -> list[GameStat]: ...

    async def validate_connection(self) -> bool: ...
