from __future__ import annotations

import logging
from dataclasses import dataclass

import httpx

from .config import Settings
from .providers.base import StatsProvider
from .providers.ea_sports import EASportsProvider
from .providers.manual import ManualStatsProvider
from .standings import StandingsService
from .stats_queue import StatsQueueManager
from .store import LeagueStore

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


def configure_logging(level: str = "INFO") -> None:
    root = logging.getLogger()
    if root.handlers:
        root.setLevel(level)
        return
    logging.basicConfig(level=level, format=LOG_FORMAT)


@dataclass(slots=True)
class Services:
    settings: Settings
    store: LeagueStore
    ea_sports: EASportsProvider
    manual: ManualStatsProvider
    queue: StatsQueueManager
    standings: StandingsService

    @property
    def providers(self) -> dict[str, StatsProvider]:
        return {self.ea_sports.name: self.ea_sports, self.manual.name: self.manual}


def build_services(
    settings: Settings | None = None,
    store: LeagueStore | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
) -> Services:
    """Wire the store, providers, stats queue and standings service together."""
    settings = settings or Settings.from_env()
    store = store if store is not None else LeagueStore(settings.data_path)
    ea_sports = EASportsProvider(
        club_ids=settings.ea_club_ids,
        base_url=settings.ea_api_base,
        platform=settings.ea_platform,
        timeout=settings.ea_timeout_seconds,
        headers=settings.request_headers,
        transport=transport,
    )
    manual = ManualStatsProvider(store)
    queue = StatsQueueManager(
        store,
        providers={ea_sports.name: ea_sports, manual.name: manual},
        max_retries=settings.queue_max_retries,
    )
    return Services(
        settings=settings,
        store=store,
        ea_sports=ea_sports,
        manual=manual,
        queue=queue,
        standings=StandingsService(store),
    )
