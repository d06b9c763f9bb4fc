from __future__ import annotations

from ..models import SOURCE_MANUAL, GameStat
from ..store import LeagueStore


class ManualStatsProvider:
    """Stats typed in by league staff; they already live in the store."""

    name = "manual"
    description = "Manually entered game statistics"
    supports_batch = False

    def __init__(self, store: LeagueStore) -> None:
        self.store = store

    async def get_game_stats(self, game_id: str) -> list[GameStat]:
        return self.store.select("game_stats", game_id=game_id, source=SOURCE_MANUAL)

    async def get_player_stats(self, player_id: str) -> list[GameStat]:
        return self.store.select("game_stats", player_id=player_id, source=SOURCE_MANUAL)

    async def get_team_stats(self, team_id: str) -> list[GameStat]:
        return self.store.select("game_stats", team_id=team_id, source=SOURCE_MANUAL)

    async def validate_connection(self) -> bool:
        return True
