"""In-process relational-style store for seasons, teams, games, stats and queue items.

Every call is atomic on its own (guarded by a lock) and rows handed out are
copies, so readers see committed state only. When a path is given the whole
store is snapshotted to JSON after each mutation.
"""

from __future__ import annotations

import copy
import json
import logging
import shutil
from dataclasses import asdict, fields
from datetime import date, datetime
from pathlib import Path
from threading import RLock
from typing import Any, Iterable

from .errors import PersistenceError
from .models import Game, GameStat, Season, StatsQueueItem, Team

logger = logging.getLogger(__name__)

TABLES: dict[str, type] = {
    "seasons": Season,
    "teams": Team,
    "games": Game,
    "game_stats": GameStat,
    "stats_queue": StatsQueueItem,
}

_TEMPORAL_FIELDS: dict[str, dict[str, type]] = {
    "seasons": {"start_date": date, "end_date": date},
    "games": {"scheduled_at": datetime},
    "game_stats": {"processed_at": datetime},
    "stats_queue": {"created_at": datetime, "processed_at": datetime},
}


def _stat_key(row: GameStat) -> tuple[str, str]:
    return (row.game_id, row.player_id)


class LeagueStore:
    SAVE_VERSION = 1

    def __init__(self, path: str | None = None) -> None:
        self._lock = RLock()
        self._tables: dict[str, dict[str, Any]] = {name: {} for name in TABLES}
        self.path = Path(path) if path else None
        self.last_load_error: str = ""
        if self.path is not None:
            self._load()

    def _table(self, name: str) -> dict[str, Any]:
        table = self._tables.get(name)
        if table is None:
            raise PersistenceError(f"Unknown table {name!r}")
        return table

    @staticmethod
    def _matches(row: Any, filters: dict[str, Any]) -> bool:
        return all(getattr(row, key, None) == value for key, value in filters.items())

    def insert(self, table: str, rows: Iterable[Any]) -> list[str]:
        """Insert rows all-or-nothing and return their ids.

        ``game_stats`` rows must be unique per (game_id, player_id), both against
        stored rows and within the batch.
        """
        pending = list(rows)
        with self._lock:
            target = self._table(table)
            row_type = TABLES[table]
            seen_ids: set[str] = set()
            for row in pending:
                if not isinstance(row, row_type):
                    raise PersistenceError(f"{table} expects {row_type.__name__}, got {type(row).__name__}")
                if row.id in target or row.id in seen_ids:
                    raise PersistenceError(f"Duplicate id {row.id} in {table}")
                seen_ids.add(row.id)
            if table == "game_stats":
                existing = {_stat_key(row) for row in target.values()}
                for row in pending:
                    key = _stat_key(row)
                    if key in existing:
                        raise PersistenceError(
                            f"Stats already exist for player {row.player_id} in game {row.game_id}"
                        )
                    existing.add(key)
            before = dict(target)
            for row in pending:
                target[row.id] = copy.deepcopy(row)
            self._commit(target, before)
        return [row.id for row in pending]

    def get(self, table: str, row_id: str) -> Any | None:
        with self._lock:
            row = self._table(table).get(row_id)
            return copy.deepcopy(row) if row is not None else None

    def select(self, table: str, **filters: Any) -> list[Any]:
        with self._lock:
            return [copy.deepcopy(row) for row in self._table(table).values() if self._matches(row, filters)]

    def count(self, table: str, **filters: Any) -> int:
        with self._lock:
            return sum(1 for row in self._table(table).values() if self._matches(row, filters))

    def update(self, table: str, row_id: str, **changes: Any) -> Any:
        with self._lock:
            target = self._table(table)
            current = target.get(row_id)
            if current is None:
                raise PersistenceError(f"No row {row_id} in {table}")
            known = {f.name for f in fields(current)}
            unknown = set(changes) - known - {"id"}
            if "id" in changes or unknown:
                raise PersistenceError(f"Cannot update fields {sorted(unknown | ({'id'} & set(changes)))} on {table}")
            updated = copy.deepcopy(current)
            for key, value in changes.items():
                setattr(updated, key, value)
            if table == "game_stats" and _stat_key(updated) != _stat_key(current):
                if any(_stat_key(row) == _stat_key(updated) for row in target.values()):
                    raise PersistenceError(
                        f"Stats already exist for player {updated.player_id} in game {updated.game_id}"
                    )
            before = dict(target)
            target[row_id] = updated
            self._commit(target, before)
            return copy.deepcopy(updated)

    def delete(self, table: str, **filters: Any) -> int:
        with self._lock:
            target = self._table(table)
            doomed = [row_id for row_id, row in target.items() if self._matches(row, filters)]
            if doomed:
                before = dict(target)
                for row_id in doomed:
                    del target[row_id]
                self._commit(target, before)
            return len(doomed)

    def _commit(self, target: dict[str, Any], before: dict[str, Any]) -> None:
        # A failed snapshot write leaves the table as it was before the mutation.
        try:
            self._save()
        except PersistenceError:
            target.clear()
            target.update(before)
            raise

    # -------------------------
    # Snapshot persistence
    # -------------------------

    def _serialize_row(self, table: str, row: Any) -> dict[str, Any]:
        out = asdict(row)
        for name in _TEMPORAL_FIELDS.get(table, {}):
            value = out.get(name)
            if isinstance(value, (date, datetime)):
                out[name] = value.isoformat()
        return out

    def _deserialize_row(self, table: str, raw: dict[str, Any]) -> Any:
        row_type = TABLES[table]
        known = {f.name for f in fields(row_type)}
        kwargs = {key: value for key, value in raw.items() if key in known}
        for name, kind in _TEMPORAL_FIELDS.get(table, {}).items():
            value = kwargs.get(name)
            if isinstance(value, str):
                kwargs[name] = datetime.fromisoformat(value) if kind is datetime else date.fromisoformat(value)
        return row_type(**kwargs)

    def _load(self) -> None:
        assert self.path is not None
        if not self.path.exists():
            return
        try:
            raw = json.loads(self.path.read_text(encoding="utf-8"))
        except (json.JSONDecodeError, OSError) as exc:
            self.last_load_error = f"Failed to load league data ({exc}); starting empty."
            logger.error(self.last_load_error)
            return
        if not isinstance(raw, dict):
            self.last_load_error = "League data file has invalid format; starting empty."
            logger.error(self.last_load_error)
            return
        version = int(raw.get("save_version", 1) or 1)
        if version > self.SAVE_VERSION:
            self.last_load_error = (
                f"Unsupported league data version {version}; app supports up to {self.SAVE_VERSION}."
            )
            logger.error(self.last_load_error)
            return
        for table in TABLES:
            rows = raw.get(table, [])
            if not isinstance(rows, list):
                continue
            for entry in rows:
                if not isinstance(entry, dict):
                    continue
                try:
                    row = self._deserialize_row(table, entry)
                except (TypeError, ValueError) as exc:
                    self.last_load_error = f"Skipped unreadable {table} row ({exc})."
                    logger.warning(self.last_load_error)
                    continue
                self._tables[table][row.id] = row

    def _save(self) -> None:
        if self.path is None:
            return
        payload: dict[str, Any] = {"save_version": self.SAVE_VERSION}
        for table, rows in self._tables.items():
            payload[table] = [self._serialize_row(table, row) for row in rows.values()]
        if self.path.exists():
            try:
                shutil.copy2(self.path, self.path.with_suffix(self.path.suffix + ".bak"))
            except OSError:
                logger.warning("Could not refresh backup of %s", self.path)
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            self.path.write_text(json.dumps(payload, indent=2), encoding="utf-8")
        except OSError as exc:
            raise PersistenceError(f"Failed to write league data to {self.path}: {exc}") from exc
