from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Literal

from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, ConfigDict, Field

from .app import Services, build_services, configure_logging
from .config import MAX_BATCH_SIZE
from .errors import NotFoundError, PersistenceError, ProviderError, ValidationError
from .models import SOURCE_MANUAL, GameStat


class QueueGamesRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    game_ids: list[str] = Field(alias="gameIds", min_length=1)
    provider: Literal["ea_sports", "manual"] = "ea_sports"


class ProcessQueueRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    batch_size: int | None = Field(None, alias="batchSize", ge=1, le=MAX_BATCH_SIZE)


class ImportGameRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    match_id: str = Field(alias="matchId", min_length=1)


class ClubIdsUpdate(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    club_ids: list[int] = Field(alias="clubIds")


class GameStatCreate(BaseModel):
    game_id: str = Field(min_length=1)
    player_id: str = Field(min_length=1)
    team_id: str = Field(min_length=1)
    goals: int = Field(0, ge=0)
    assists: int = Field(0, ge=0)
    shots: int = Field(0, ge=0)
    time_on_ice: int = Field(0, ge=0)
    penalty_minutes: int = Field(0, ge=0)
    plus_minus: int = 0
    saves: int | None = Field(None, ge=0)
    goals_against: int | None = Field(None, ge=0)


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def create_app(services: Services | None = None) -> FastAPI:
    """Build the API around explicitly constructed services."""
    services = services or build_services()
    configure_logging(services.settings.log_level)

    app = FastAPI(title="Hockey League API", version="0.1.0")
    app.state.services = services
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    store = services.store
    queue = services.queue
    ea_sports = services.ea_sports

    @app.get("/api/health")
    def health() -> dict[str, str]:
        return {"status": "ok"}

    # -------------------------
    # Standings
    # -------------------------

    @app.get("/api/standings")
    def standings(season_id: str, league_id: str | None = None) -> dict[str, Any]:
        try:
            report = services.standings.compute(season_id, league_id)
        except NotFoundError as exc:
            raise HTTPException(status_code=404, detail="Season not found") from exc
        return report.to_dict()

    # -------------------------
    # Stats queue
    # -------------------------

    @app.get("/api/stats/queue")
    def queue_status() -> dict[str, Any]:
        return {**queue.status(), "processing_active": queue.processing}

    @app.get("/api/stats/queue/items")
    def queue_items(status: str | None = None) -> list[dict[str, Any]]:
        try:
            items = queue.list_items(status)
        except ValidationError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc
        return [item.to_dict() for item in items]

    @app.post("/api/stats/queue", status_code=201)
    def queue_games(payload: QueueGamesRequest) -> dict[str, Any]:
        try:
            queue_ids = queue.enqueue(payload.game_ids, payload.provider)
        except ValidationError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc
        return {
            "message": f"Added {len(queue_ids)} games to processing queue",
            "queueIds": queue_ids,
        }

    @app.put("/api/stats/queue")
    async def process_queue(payload: ProcessQueueRequest | None = None) -> dict[str, Any]:
        batch_size = services.settings.queue_batch_size
        if payload is not None and payload.batch_size is not None:
            batch_size = payload.batch_size
        result = await queue.process_batch(batch_size)
        if not result.started:
            raise HTTPException(status_code=409, detail="Queue processing already in progress")
        return {"batchSize": batch_size, **result.to_dict(), "status": queue.status()}

    @app.delete("/api/stats/queue")
    def clear_completed() -> dict[str, Any]:
        removed = queue.clear_completed()
        return {"message": "Completed items cleared from queue", "removed": removed}

    @app.delete("/api/stats/queue/failed")
    def clear_failed() -> dict[str, Any]:
        removed = queue.clear_failed()
        return {"message": "Failed items cleared from queue", "removed": removed}

    # -------------------------
    # Manual stats entry
    # -------------------------

    @app.get("/api/stats")
    def list_stats(
        game_id: str | None = None,
        player_id: str | None = None,
        team_id: str | None = None,
        page: int = 1,
        limit: int = 20,
    ) -> dict[str, Any]:
        if page < 1 or not 1 <= limit <= 100:
            raise HTTPException(status_code=400, detail="page must be >= 1 and limit between 1 and 100")
        filters = {
            key: value
            for key, value in (("game_id", game_id), ("player_id", player_id), ("team_id", team_id))
            if value is not None
        }
        rows = store.select("game_stats", **filters)
        offset = (page - 1) * limit
        return {
            "data": [row.to_dict() for row in rows[offset : offset + limit]],
            "pagination": {
                "page": page,
                "limit": limit,
                "total": len(rows),
                "pages": (len(rows) + limit - 1) // limit,
            },
        }

    @app.post("/api/stats", status_code=201)
    def create_stat(payload: GameStatCreate) -> dict[str, Any]:
        game = store.get("games", payload.game_id)
        if game is None:
            raise HTTPException(status_code=404, detail="Game not found")
        if payload.team_id not in (game.home_team_id, game.away_team_id):
            raise HTTPException(status_code=400, detail="Team did not play in this game")
        stat = GameStat(**payload.model_dump(), source=SOURCE_MANUAL, processed_at=datetime.now(timezone.utc))
        if stat.saves is not None and stat.goals_against is None:
            stat.goals_against = 0
        try:
            store.insert("game_stats", [stat])
        except PersistenceError as exc:
            raise HTTPException(status_code=409, detail="Stats already exist for this player in this game") from exc
        return stat.to_dict()

    # -------------------------
    # EA Sports
    # -------------------------

    @app.get("/api/ea-sports/status")
    async def ea_status() -> dict[str, Any]:
        connected = await ea_sports.validate_connection()
        return {"connected": connected, "timestamp": _now_iso()}

    @app.get("/api/ea-sports/matches")
    async def ea_matches() -> dict[str, Any]:
        try:
            matches = await ea_sports.fetch_all_matches()
        except ProviderError as exc:
            raise HTTPException(status_code=502, detail=str(exc)) from exc
        return {
            "matches": [match.model_dump(by_alias=True) for match in matches],
            "count": len(matches),
        }

    @app.post("/api/ea-sports/import-game")
    async def ea_import_game(payload: ImportGameRequest) -> dict[str, Any]:
        try:
            stats = await ea_sports.import_game(payload.match_id, store)
        except NotFoundError as exc:
            raise HTTPException(status_code=404, detail=str(exc)) from exc
        except PersistenceError as exc:
            raise HTTPException(status_code=409, detail=str(exc)) from exc
        except ProviderError as exc:
            raise HTTPException(status_code=502, detail=str(exc)) from exc
        return {
            "matchId": payload.match_id,
            "statsCount": len(stats),
            "stats": [stat.to_dict() for stat in stats],
        }

    @app.get("/api/ea-sports/clubs")
    def ea_clubs() -> dict[str, Any]:
        return {"clubIds": ea_sports.get_club_ids()}

    @app.put("/api/ea-sports/clubs")
    def ea_set_clubs(payload: ClubIdsUpdate) -> dict[str, Any]:
        ea_sports.set_club_ids(payload.club_ids)
        return {"clubIds": ea_sports.get_club_ids()}

    @app.post("/api/ea-sports/clubs/{club_id}")
    def ea_add_club(club_id: int) -> dict[str, Any]:
        ea_sports.add_club_id(club_id)
        return {"clubIds": ea_sports.get_club_ids()}

    @app.delete("/api/ea-sports/clubs/{club_id}")
    def ea_remove_club(club_id: int) -> dict[str, Any]:
        ea_sports.remove_club_id(club_id)
        return {"clubIds": ea_sports.get_club_ids()}

    return app
