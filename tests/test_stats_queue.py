import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from hockey_league.errors import PersistenceError, ProviderError, ValidationError
from hockey_league.models import QUEUE_COMPLETED, QUEUE_FAILED, QUEUE_PENDING, QUEUE_PROCESSING, GameStat
from hockey_league.providers.manual import ManualStatsProvider
from hockey_league.stats_queue import StatsQueueManager
from hockey_league.store import LeagueStore


class FakeProvider:
    name = "ea_sports"
    description = "Fake provider"
    supports_batch = True

    def __init__(self, failing: set[str] | None = None, empty: set[str] | None = None) -> None:
        self.failing = failing or set()
        self.empty = empty or set()
        self.calls: list[str] = []

    async def get_game_stats(self, game_id: str) -> list[GameStat]:
        self.calls.append(game_id)
        if game_id in self.failing:
            raise ProviderError(f"EA Sports API returned 503 for game {game_id}")
        if game_id in self.empty:
            return []
        return [
            GameStat(game_id=game_id, player_id="p1", team_id="t1", goals=2, assists=1),
            GameStat(game_id=game_id, player_id="p2", team_id="t2", saves=30, goals_against=2),
        ]

    async def get_player_stats(self, player_id: str) -> list[GameStat]:
        return []

    async def get_team_stats(self, team_id: str) -> list[GameStat]:
        return []

    async def validate_connection(self) -> bool:
        return True


class Clock:
    def __init__(self) -> None:
        self.now = datetime(2025, 3, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        self.now += timedelta(seconds=1)
        return self.now


def _queue(provider=None, max_retries: int = 3) -> tuple[StatsQueueManager, LeagueStore, FakeProvider]:
    store = LeagueStore()
    provider = provider or FakeProvider()
    queue = StatsQueueManager(store, {provider.name: provider}, max_retries=max_retries, clock=Clock())
    return queue, store, provider


def test_enqueue_creates_pending_items() -> None:
    queue, store, _provider = _queue()
    ids = queue.enqueue(["A", "B"])
    assert len(ids) == 2
    assert queue.status() == {"pending": 2, "processing": 0, "completed": 0, "failed": 0}
    item = store.get("stats_queue", ids[0])
    assert item.retry_count == 0
    assert item.max_retries == 3
    assert item.provider == "ea_sports"


def test_enqueuing_the_same_game_twice_creates_two_items() -> None:
    queue, _store, _provider = _queue()
    first = queue.enqueue(["A"])
    second = queue.enqueue(["A"])
    assert first != second
    assert queue.status()["pending"] == 2


def test_enqueue_rejects_unknown_provider_and_blank_ids() -> None:
    queue, _store, _provider = _queue()
    with pytest.raises(ValidationError):
        queue.enqueue(["A"], provider="espn")
    with pytest.raises(ValidationError):
        queue.enqueue(["  "])
    assert queue.status()["pending"] == 0


def test_successful_batch_completes_items_and_persists_stats() -> None:
    queue, store, _provider = _queue()
    ids = queue.enqueue(["A", "B"])
    result = asyncio.run(queue.process_batch(10))
    assert result.started
    assert result.completed == ids
    assert queue.status() == {"pending": 0, "processing": 0, "completed": 2, "failed": 0}
    assert store.count("game_stats", game_id="A") == 2
    item = store.get("stats_queue", ids[0])
    assert item.processed_at is not None
    assert [row["player_id"] for row in item.stats_data] == ["p1", "p2"]
    assert item.stats_data[0]["points"] == 3


def test_empty_provider_result_is_a_success() -> None:
    queue, store, _provider = _queue(FakeProvider(empty={"A"}))
    [item_id] = queue.enqueue(["A"])
    asyncio.run(queue.process_batch())
    item = store.get("stats_queue", item_id)
    assert item.status == QUEUE_COMPLETED
    assert item.stats_data == []


def test_batch_claims_oldest_pending_items_first() -> None:
    queue, _store, provider = _queue()
    queue.enqueue(["A"])
    queue.enqueue(["B"])
    queue.enqueue(["C"])
    result = asyncio.run(queue.process_batch(2))
    assert result.claimed == 2
    assert provider.calls == ["A", "B"]
    assert queue.status()["pending"] == 1


def test_failure_returns_item_to_pending_until_retries_run_out() -> None:
    queue, store, _provider = _queue(FakeProvider(failing={"X"}))
    [item_id] = queue.enqueue(["X"])

    first = asyncio.run(queue.process_batch())
    item = store.get("stats_queue", item_id)
    assert first.retried == [item_id]
    assert item.status == QUEUE_PENDING
    assert item.retry_count == 1
    assert "503" in item.error_message

    asyncio.run(queue.process_batch())
    last = asyncio.run(queue.process_batch())
    item = store.get("stats_queue", item_id)
    assert item.status == QUEUE_FAILED
    assert item.retry_count == 3
    assert item.error_message
    assert last.failed == [item_id]
    assert last.exhausted[0].attempts == 3

    queue.clear_completed()
    assert queue.status()["failed"] == 1


def test_one_failing_item_does_not_abort_the_batch() -> None:
    queue, store, _provider = _queue(FakeProvider(failing={"X"}))
    bad, good = queue.enqueue(["X", "A"])
    result = asyncio.run(queue.process_batch())
    assert result.retried == [bad]
    assert result.completed == [good]
    assert store.get("stats_queue", good).status == QUEUE_COMPLETED


def test_duplicate_import_is_reported_as_item_error() -> None:
    queue, store, _provider = _queue()
    first, second = queue.enqueue(["A", "A"])
    asyncio.run(queue.process_batch())
    assert store.get("stats_queue", first).status == QUEUE_COMPLETED
    duplicate = store.get("stats_queue", second)
    assert duplicate.status == QUEUE_PENDING
    assert "already exist" in duplicate.error_message
    assert store.count("game_stats", game_id="A") == 2


def test_clear_completed_leaves_other_states_alone() -> None:
    queue, _store, _provider = _queue(FakeProvider(failing={"X"}), max_retries=1)
    queue.enqueue(["A", "X"])
    asyncio.run(queue.process_batch())
    queue.enqueue(["B"])
    assert queue.status() == {"pending": 1, "processing": 0, "completed": 1, "failed": 1}
    assert queue.clear_completed() == 1
    assert queue.status() == {"pending": 1, "processing": 0, "completed": 0, "failed": 1}
    assert queue.clear_failed() == 1
    assert queue.status()["failed"] == 0


def test_manual_provider_items_fail_through_retry_path() -> None:
    store = LeagueStore()
    manual = ManualStatsProvider(store)
    queue = StatsQueueManager(store, {"manual": manual}, max_retries=1)
    [item_id] = queue.enqueue(["A"], provider="manual")
    asyncio.run(queue.process_batch())
    item = store.get("stats_queue", item_id)
    assert item.status == QUEUE_FAILED
    assert "does not support batch processing" in item.error_message


def test_list_items_by_status() -> None:
    queue, _store, _provider = _queue(FakeProvider(failing={"X"}), max_retries=1)
    queue.enqueue(["A", "X"])
    asyncio.run(queue.process_batch())
    assert [item.game_id for item in queue.list_items("failed")] == ["X"]
    assert [item.game_id for item in queue.list_items()] == ["A", "X"]
    with pytest.raises(ValidationError):
        queue.list_items("stuck")


def test_second_pass_is_ignored_while_one_is_running() -> None:
    class BlockingProvider(FakeProvider):
        def __init__(self) -> None:
            super().__init__()
            self.release = asyncio.Event()

        async def get_game_stats(self, game_id: str) -> list[GameStat]:
            await self.release.wait()
            return await super().get_game_stats(game_id)

    async def scenario():
        provider = BlockingProvider()
        queue, _store, _ = _queue(provider)
        queue.enqueue(["A"])
        running = asyncio.create_task(queue.process_batch())
        await asyncio.sleep(0)
        assert queue.processing
        second = await queue.process_batch()
        provider.release.set()
        first = await running
        return queue, first, second

    queue, first, second = asyncio.run(scenario())
    assert first.started
    assert first.completed
    assert not second.started
    assert not queue.processing
    assert queue.status()["completed"] == 1


def test_batch_size_must_be_positive() -> None:
    queue, _store, _provider = _queue()
    with pytest.raises(ValidationError):
        asyncio.run(queue.process_batch(0))


class UnreliableStore(LeagueStore):
    """Fails every write while ``broken``, or only the COMPLETED transition."""

    def __init__(self) -> None:
        super().__init__()
        self.broken = False
        self.fail_completion = False

    def update(self, table: str, row_id: str, **changes):
        if self.fail_completion and changes.get("status") == QUEUE_COMPLETED:
            raise PersistenceError("disk full")
        return super().update(table, row_id, **changes)

    def _save(self) -> None:
        if self.broken:
            raise PersistenceError("disk full")


def _unreliable_queue() -> tuple[StatsQueueManager, UnreliableStore, FakeProvider]:
    store = UnreliableStore()
    provider = FakeProvider()
    return StatsQueueManager(store, {provider.name: provider}, clock=Clock()), store, provider


def test_store_outage_does_not_abort_the_batch_or_strand_items() -> None:
    queue, store, provider = _unreliable_queue()
    first, second = queue.enqueue(["A", "B"])
    store.broken = True

    result = asyncio.run(queue.process_batch())
    assert result.started
    assert result.retried == [first, second]
    assert result.completed == []
    assert provider.calls == []

    store.broken = False
    assert queue.status() == {"pending": 2, "processing": 0, "completed": 0, "failed": 0}
    assert asyncio.run(queue.process_batch()).completed == [first, second]
    assert store.count("game_stats") == 4


def test_failed_completion_write_discards_imported_stats() -> None:
    queue, store, _provider = _unreliable_queue()
    [item_id] = queue.enqueue(["A"])
    store.fail_completion = True

    result = asyncio.run(queue.process_batch())
    item = store.get("stats_queue", item_id)
    assert result.retried == [item_id]
    assert item.status == QUEUE_PENDING
    assert item.retry_count == 1
    assert item.error_message == "disk full"
    assert store.count("game_stats", game_id="A") == 0

    store.fail_completion = False
    assert asyncio.run(queue.process_batch()).completed == [item_id]
    assert store.count("game_stats", game_id="A") == 2


def test_item_left_processing_is_claimed_again() -> None:
    queue, store, _provider = _queue()
    [item_id] = queue.enqueue(["A"])
    store.update("stats_queue", item_id, status=QUEUE_PROCESSING)
    result = asyncio.run(queue.process_batch())
    assert result.completed == [item_id]
    assert store.get("stats_queue", item_id).status == QUEUE_COMPLETED
