"""Retryable work queue that imports per-game player stats from a stats provider.

Item lifecycle::

    PENDING -> PROCESSING -> COMPLETED
                          -> PENDING   (retry_count + 1, below max_retries)
                          -> FAILED    (retry_count reached max_retries)

A PROCESSING item left behind by a pass whose store writes failed is claimed
again by the next pass. Only one processing pass runs at a time per manager.
The guard is local to the process; several service instances sharing one
store would need a store-level claim to keep that property.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Iterable, Mapping

from .config import DEFAULT_BATCH_SIZE, DEFAULT_MAX_RETRIES
from .errors import PersistenceError, ProviderError, RetryExhaustedError, ValidationError
from .models import (
    QUEUE_COMPLETED,
    QUEUE_FAILED,
    QUEUE_PENDING,
    QUEUE_PROCESSING,
    QUEUE_STATUSES,
    StatsQueueItem,
)
from .providers.base import StatsProvider
from .store import LeagueStore

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class BatchResult:
    started: bool
    claimed: int = 0
    completed: list[str] = field(default_factory=list)
    retried: list[str] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)
    exhausted: list[RetryExhaustedError] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "started": self.started,
            "claimed": self.claimed,
            "completed": list(self.completed),
            "retried": list(self.retried),
            "failed": list(self.failed),
            "exhausted": [
                {"item_id": err.item_id, "attempts": err.attempts, "error": err.last_error}
                for err in self.exhausted
            ],
        }


class StatsQueueManager:
    def __init__(
        self,
        store: LeagueStore,
        providers: Mapping[str, StatsProvider],
        max_retries: int = DEFAULT_MAX_RETRIES,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        if max_retries < 1:
            raise ValueError("max_retries must be at least 1")
        self.store = store
        self.providers = dict(providers)
        self.max_retries = max_retries
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._processing = False

    @property
    def processing(self) -> bool:
        return self._processing

    def enqueue(self, game_ids: Iterable[str], provider: str = "ea_sports") -> list[str]:
        """Create one PENDING item per game id.

        The same game enqueued twice yields two independent items.
        """
        if provider not in self.providers:
            raise ValidationError(f"Unknown stats provider {provider!r}")
        ids = list(game_ids)
        for game_id in ids:
            if not isinstance(game_id, str) or not game_id.strip():
                raise ValidationError(f"Invalid game id {game_id!r}")
        items = [
            StatsQueueItem(
                game_id=game_id,
                created_at=self._clock(),
                provider=provider,
                max_retries=self.max_retries,
            )
            for game_id in ids
        ]
        created = self.store.insert("stats_queue", items)
        if created:
            logger.info("Queued %d game(s) for %s stats import", len(created), provider)
        return created

    def _claim_pending(self, batch_size: int) -> list[StatsQueueItem]:
        pending = self.store.select("stats_queue", status=QUEUE_PENDING)
        # No pass is running, so PROCESSING rows were left behind by one that could not finish.
        pending.extend(self.store.select("stats_queue", status=QUEUE_PROCESSING))
        # sorted() is stable, so items created in the same instant stay in insert order.
        pending.sort(key=lambda item: item.created_at)
        return pending[:batch_size]

    async def process_batch(self, batch_size: int = DEFAULT_BATCH_SIZE) -> BatchResult:
        """Process up to ``batch_size`` of the oldest PENDING items, one at a time.

        Returns ``started=False`` without touching anything when another pass is
        already running.
        """
        if batch_size < 1:
            raise ValidationError("batch_size must be at least 1")
        if self._processing:
            logger.info("Stats queue processing already in progress")
            return BatchResult(started=False)

        self._processing = True
        try:
            items = self._claim_pending(batch_size)
            result = BatchResult(started=True, claimed=len(items))
            if not items:
                logger.info("No pending items in stats queue")
                return result
            logger.info("Processing %d stats queue item(s)", len(items))
            for item in items:
                await self._process_item(item, result)
            logger.info(
                "Stats queue pass done: %d completed, %d retried, %d failed",
                len(result.completed),
                len(result.retried),
                len(result.failed),
            )
            return result
        finally:
            self._processing = False

    async def _process_item(self, item: StatsQueueItem, result: BatchResult) -> None:
        inserted: list[str] = []
        try:
            self.store.update("stats_queue", item.id, status=QUEUE_PROCESSING, processed_at=self._clock())
            provider = self.providers.get(item.provider)
            if provider is None:
                raise ProviderError(f"Stats provider {item.provider!r} is not registered")
            if not provider.supports_batch:
                raise ProviderError(f"{provider.description} does not support batch processing")
            stats = await provider.get_game_stats(item.game_id)
            if stats:
                inserted = self.store.insert("game_stats", stats)
            self.store.update(
                "stats_queue",
                item.id,
                status=QUEUE_COMPLETED,
                stats_data=[stat.to_dict() for stat in stats],
                error_message=None,
            )
        except Exception as exc:
            self._discard_stats(item, inserted)
            self._record_failure(item, exc, result)
            return

        result.completed.append(item.id)
        logger.info("Imported %d stat row(s) for game %s", len(stats), item.game_id)

    def _discard_stats(self, item: StatsQueueItem, stat_ids: list[str]) -> None:
        # Stats written for an item that did not complete would block its retry.
        for stat_id in stat_ids:
            try:
                self.store.delete("game_stats", id=stat_id)
            except PersistenceError as exc:
                logger.error("Could not remove stat row %s for game %s: %s", stat_id, item.game_id, exc)

    def _record_failure(self, item: StatsQueueItem, exc: Exception, result: BatchResult) -> None:
        message = str(exc) or type(exc).__name__
        retry_count = item.retry_count + 1
        exhausted = retry_count >= item.max_retries
        try:
            self.store.update(
                "stats_queue",
                item.id,
                status=QUEUE_FAILED if exhausted else QUEUE_PENDING,
                retry_count=retry_count,
                error_message=message,
            )
        except PersistenceError as store_exc:
            # The item keeps its last stored state; the next pass claims it again.
            logger.error("Could not record failure of queue item %s: %s (%s)", item.id, store_exc, message)
            result.retried.append(item.id)
            return
        if exhausted:
            result.failed.append(item.id)
            result.exhausted.append(RetryExhaustedError(item.id, retry_count, message))
            logger.error("Queue item %s for game %s failed after %d attempts: %s", item.id, item.game_id, retry_count, message)
        else:
            result.retried.append(item.id)
            logger.warning(
                "Queue item %s for game %s failed (attempt %d/%d): %s",
                item.id,
                item.game_id,
                retry_count,
                item.max_retries,
                message,
            )

    def status(self) -> dict[str, int]:
        return {status.lower(): self.store.count("stats_queue", status=status) for status in QUEUE_STATUSES}

    def list_items(self, status: str | None = None) -> list[StatsQueueItem]:
        if status is None:
            items = self.store.select("stats_queue")
        else:
            status = status.upper()
            if status not in QUEUE_STATUSES:
                raise ValidationError(f"Unknown queue status {status!r}")
            items = self.store.select("stats_queue", status=status)
        items.sort(key=lambda item: item.created_at)
        return items

    def clear_completed(self) -> int:
        removed = self.store.delete("stats_queue", status=QUEUE_COMPLETED)
        logger.info("Cleared %d completed stats queue item(s)", removed)
        return removed

    def clear_failed(self) -> int:
        removed = self.store.delete("stats_queue", status=QUEUE_FAILED)
        logger.info("Cleared %d failed stats queue item(s)", removed)
        return removed
