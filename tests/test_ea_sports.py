import asyncio
from datetime import datetime, timezone

import httpx
import pytest

from hockey_league.errors import NotFoundError, PersistenceError, ProviderError
from hockey_league.models import SOURCE_EA_SPORTS
from hockey_league.providers.ea_sports import EAMatch, EASportsProvider, normalize_match
from hockey_league.store import LeagueStore

STAMP = datetime(2025, 3, 1, tzinfo=timezone.utc)

MATCH_1001 = {
    "matchId": "1001",
    "timestamp": 1740000000,
    "clubs": {"3383": {"score": "3"}, "490": {"score": "1"}},
    "players": {
        "3383": {
            "77": {"goals": 2, "assists": 1, "points": 99, "shots": 5, "timeOnIce": 1200, "penaltyMinutes": 2, "plusMinus": 2},
            "31": {"goals": 0, "assists": 0, "saves": 28},
        },
        "490": {
            "12": {"goals": "1", "assists": "0", "shots": "4", "timeOnIce": "1100", "plusMinus": "-2"},
        },
    },
}

MATCH_2002 = {
    "matchId": 2002,
    "timestamp": 1740100000,
    "clubs": {"4388": {}},
    "players": {"4388": {"5": {"goals": 1}}},
}


def _provider(handler, club_ids=(3383, 4388)) -> EASportsProvider:
    return EASportsProvider(club_ids=club_ids, transport=httpx.MockTransport(handler), clock=lambda: STAMP)


def _by_club(responses: dict[str, object]):
    requests: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        club = request.url.params["clubIds"]
        body = responses.get(club)
        if isinstance(body, int):
            return httpx.Response(body, json={"error": "unavailable"})
        return httpx.Response(200, json=body if body is not None else [])

    return handler, requests


def test_normalize_maps_players_per_club() -> None:
    stats = normalize_match(EAMatch.model_validate(MATCH_1001), STAMP)
    by_player = {stat.player_id: stat for stat in stats}
    assert set(by_player) == {"77", "31", "12"}
    skater = by_player["77"]
    assert skater.game_id == "1001"
    assert skater.team_id == "3383"
    assert skater.goals == 2
    assert skater.time_on_ice == 1200
    assert skater.penalty_minutes == 2
    assert skater.plus_minus == 2
    assert skater.source == SOURCE_EA_SPORTS
    assert skater.processed_at == STAMP
    # Points are derived, never copied from the payload.
    assert skater.points == 3


def test_skater_without_saves_has_no_goalie_fields() -> None:
    stats = normalize_match(EAMatch.model_validate(MATCH_1001), STAMP)
    skater = next(stat for stat in stats if stat.player_id == "77")
    assert skater.saves is None
    assert skater.goals_against is None
    assert "saves" not in skater.to_dict()


def test_goalie_fields_copied_when_saves_present() -> None:
    stats = normalize_match(EAMatch.model_validate(MATCH_1001), STAMP)
    goalie = next(stat for stat in stats if stat.player_id == "31")
    assert goalie.saves == 28
    assert goalie.goals_against == 0
    assert goalie.is_goalie


def test_string_counts_are_coerced() -> None:
    stats = normalize_match(EAMatch.model_validate(MATCH_1001), STAMP)
    away = next(stat for stat in stats if stat.player_id == "12")
    assert away.goals == 1
    assert away.plus_minus == -2
    assert away.penalty_minutes == 0


def test_numeric_match_id_becomes_text() -> None:
    assert EAMatch.model_validate(MATCH_2002).match_id == "2002"


def test_fetch_all_matches_queries_every_club() -> None:
    handler, requests = _by_club({"3383": [MATCH_1001], "4388": [MATCH_2002]})
    matches = asyncio.run(_provider(handler).fetch_all_matches())
    assert [match.match_id for match in matches] == ["1001", "2002"]
    assert [req.url.params["clubIds"] for req in requests] == ["3383", "4388"]
    assert requests[0].url.path.endswith("/clubs/matches")
    assert requests[0].url.params["platform"] == "common-gen5"
    assert requests[0].url.params["matchType"] == "club_private"


def test_failing_club_is_skipped() -> None:
    handler, _requests = _by_club({"3383": 500, "4388": [MATCH_2002]})
    matches = asyncio.run(_provider(handler).fetch_all_matches())
    assert [match.match_id for match in matches] == ["2002"]


def test_malformed_match_entries_are_skipped() -> None:
    handler, _requests = _by_club({"3383": [{"timestamp": 1}, MATCH_1001], "4388": []})
    matches = asyncio.run(_provider(handler).fetch_all_matches())
    assert [match.match_id for match in matches] == ["1001"]


def test_every_club_failing_is_a_provider_error() -> None:
    handler, _requests = _by_club({"3383": 503, "4388": 500})
    with pytest.raises(ProviderError):
        asyncio.run(_provider(handler).fetch_all_matches())


def test_get_game_stats_finds_match_by_id() -> None:
    handler, _requests = _by_club({"3383": [MATCH_1001], "4388": [MATCH_2002]})
    stats = asyncio.run(_provider(handler).get_game_stats("2002"))
    assert [(stat.game_id, stat.player_id, stat.team_id) for stat in stats] == [("2002", "5", "4388")]


def test_get_game_stats_unknown_match_is_not_found() -> None:
    handler, _requests = _by_club({"3383": [MATCH_1001]})
    with pytest.raises(NotFoundError):
        asyncio.run(_provider(handler).get_game_stats("9999"))


def test_player_stats_count_shared_matches_once() -> None:
    # Both tracked clubs report the same match.
    handler, _requests = _by_club({"3383": [MATCH_1001], "4388": [MATCH_1001]})
    provider = _provider(handler)
    player = asyncio.run(provider.get_player_stats("77"))
    team = asyncio.run(provider.get_team_stats("490"))
    assert len(player) == 1
    assert [stat.player_id for stat in team] == ["12"]


def test_validate_connection() -> None:
    ok, _ = _by_club({"3383": []})
    down, _ = _by_club({"3383": 503})

    def unreachable(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    assert asyncio.run(_provider(ok).validate_connection()) is True
    assert asyncio.run(_provider(down).validate_connection()) is False
    assert asyncio.run(_provider(unreachable).validate_connection()) is False
    assert asyncio.run(_provider(ok, club_ids=()).validate_connection()) is False


def test_club_id_configuration() -> None:
    provider = EASportsProvider(club_ids=[1, 2, 2])
    assert provider.get_club_ids() == [1, 2]
    provider.add_club_id(3)
    provider.add_club_id(3)
    provider.remove_club_id(1)
    assert provider.get_club_ids() == [2, 3]
    ids = provider.get_club_ids()
    ids.append(99)
    assert provider.get_club_ids() == [2, 3]
    provider.set_club_ids([490])
    assert provider.get_club_ids() == [490]
    provider.add_club_id("490")
    provider.add_club_id("3383")
    assert provider.get_club_ids() == [490, 3383]
    provider.remove_club_id("490")
    assert provider.get_club_ids() == [3383]


def test_import_game_persists_stats_once() -> None:
    handler, _requests = _by_club({"3383": [MATCH_1001]})
    provider = _provider(handler)
    store = LeagueStore()
    stats = asyncio.run(provider.import_game("1001", store))
    assert len(stats) == 3
    assert store.count("game_stats", game_id="1001") == 3
    with pytest.raises(PersistenceError):
        asyncio.run(provider.import_game("1001", store))
