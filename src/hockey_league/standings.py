"""Season standings computed from completed games and their per-player goal totals."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Iterable, Sequence

from .config import TIEBREAKER_FIELDS
from .errors import NotFoundError
from .models import GAME_COMPLETED, Game, GameStat, Team, TeamStanding
from .rules import SeasonRules, parse_rules
from .store import LeagueStore


def team_goals(stats: Iterable[GameStat]) -> dict[tuple[str, str], int]:
    """Sum goals per (game_id, team_id). This is the only source of a game's score."""
    totals: dict[tuple[str, str], int] = {}
    for stat in stats:
        key = (stat.game_id, stat.team_id)
        totals[key] = totals.get(key, 0) + (stat.goals or 0)
    return totals


def _award_result(winner: TeamStanding, loser: TeamStanding, margin: int, rules: SeasonRules) -> None:
    winner.wins += 1
    winner.points += rules.win
    loser.losses += 1
    loser.points += rules.loss
    # One-goal wins are treated as OT/shootout wins.
    if margin >= 2:
        winner.regulation_wins += 1


def _award_tie(home: TeamStanding, away: TeamStanding, rules: SeasonRules) -> None:
    for side in (home, away):
        side.overtime_losses += 1
        side.points += rules.ot_loss


def sort_standings(rows: Sequence[TeamStanding], tiebreakers: Sequence[str]) -> list[TeamStanding]:
    """Order rows descending by each tiebreaker in turn; full ties keep input order."""
    attrs = [TIEBREAKER_FIELDS[key] for key in tiebreakers if key in TIEBREAKER_FIELDS]
    return sorted(rows, key=lambda row: tuple(-getattr(row, attr) for attr in attrs))


def compute_standings(
    teams: Sequence[Team],
    games: Iterable[Game],
    stats: Iterable[GameStat],
    rules: SeasonRules,
) -> list[TeamStanding]:
    table: dict[str, TeamStanding] = {
        team.id: TeamStanding(team_id=team.id, team_name=team.name, team_abbreviation=team.abbreviation)
        for team in teams
    }
    goals = team_goals(stats)
    played: list[tuple[TeamStanding, TeamStanding]] = []

    for game in games:
        if not game.is_completed:
            continue
        home = table.get(game.home_team_id)
        away = table.get(game.away_team_id)
        if home is None or away is None:
            continue
        # No stat rows means a 0-0 game, which scores as a tie below.
        home_goals = goals.get((game.id, game.home_team_id), 0)
        away_goals = goals.get((game.id, game.away_team_id), 0)

        home.games_played += 1
        away.games_played += 1
        home.goals_for += home_goals
        home.goals_against += away_goals
        away.goals_for += away_goals
        away.goals_against += home_goals

        if home_goals > away_goals:
            _award_result(home, away, home_goals - away_goals, rules)
        elif away_goals > home_goals:
            _award_result(away, home, away_goals - home_goals, rules)
        else:
            _award_tie(home, away, rules)
        played.append((home, away))

    for row in table.values():
        row.goal_differential = row.goals_for - row.goals_against

    # "Head-to-head" credits, per game, whichever side has the better season
    # goal differential; it is not a pairwise record between the two teams.
    for home, away in played:
        home_diff = home.goals_for - home.goals_against
        away_diff = away.goals_for - away.goals_against
        if home_diff > away_diff:
            home.head_to_head_wins += 1
        elif away_diff > home_diff:
            away.head_to_head_wins += 1

    return sort_standings(list(table.values()), rules.tiebreakers)


@dataclass(slots=True)
class StandingsReport:
    season_id: str
    standings: list[TeamStanding]
    rules: SeasonRules

    def to_dict(self) -> dict[str, Any]:
        return {
            "season_id": self.season_id,
            "standings": [row.to_dict() for row in self.standings],
            "rules": self.rules.to_dict(),
        }


class StandingsService:
    """Reads a season's committed data from the store and ranks its teams."""

    def __init__(self, store: LeagueStore) -> None:
        self.store = store

    def compute(self, season_id: str, league_id: str | None = None) -> StandingsReport:
        season = self.store.get("seasons", season_id)
        if season is None:
            raise NotFoundError(f"Season {season_id} not found")
        rules = parse_rules(season.rules)
        teams = self.store.select("teams", league_id=league_id or season.league_id)
        games = self.store.select("games", season_id=season_id, status=GAME_COMPLETED)
        stats: list[GameStat] = []
        for game in games:
            stats.extend(self.store.select("game_stats", game_id=game.id))
        return StandingsReport(
            season_id=season_id,
            standings=compute_standings(teams, games, stats, rules),
            rules=rules,
        )
