"""Persistence port for giveaway records and its storage adapters."""

from __future__ import annotations

import abc
import asyncio
import json
import logging
import sqlite3
from pathlib import Path
from typing import Dict, List, Optional

from .errors import PersistenceFailure
from .models import GiveawayRecord, RequirementSet

LOGGER = logging.getLogger(__name__)


class GiveawayStore(abc.ABC):
    """CRUD contract every storage backend implements."""

    @abc.abstractmethod
    async def save(self, record: GiveawayRecord) -> None:
        """Insert or update ``record`` by id."""

    @abc.abstractmethod
    async def get(self, giveaway_id: str) -> Optional[GiveawayRecord]:
        ...

    @abc.abstractmethod
    async def get_all(self) -> List[GiveawayRecord]:
        ...

    @abc.abstractmethod
    async def delete(self, giveaway_id: str) -> None:
        ...

    @abc.abstractmethod
    async def edit(self, giveaway_id: str, record: GiveawayRecord) -> None:
        """Replace the stored fields of an existing record."""


def _copy(record: GiveawayRecord) -> GiveawayRecord:
    return GiveawayRecord.from_payload(record.to_payload())


class MemoryStore(GiveawayStore):
    """Process-local store, mostly useful for tests and throwaway bots."""

    def __init__(self) -> None:
        self._records: Dict[str, GiveawayRecord] = {}

    async def save(self, record: GiveawayRecord) -> None:
        self._records[record.id] = _copy(record)

    async def get(self, giveaway_id: str) -> Optional[GiveawayRecord]:
        record = self._records.get(giveaway_id)
        return _copy(record) if record else None

    async def get_all(self) -> List[GiveawayRecord]:
        return [_copy(record) for record in self._records.values()]

    async def delete(self, giveaway_id: str) -> None:
        self._records.pop(giveaway_id, None)

    async def edit(self, giveaway_id: str, record: GiveawayRecord) -> None:
        self._records.pop(giveaway_id, None)
        self._records[record.id] = _copy(record)


class JSONStore(GiveawayStore):
    """Flat-file store keeping every record in a single JSON array."""

    def __init__(self, path: Path) -> None:
        self.path = path
        self._lock = asyncio.Lock()

    async def save(self, record: GiveawayRecord) -> None:
        async with self._lock:
            records = await self._load()
            records[record.id] = record.to_payload()
            await self._write(records)

    async def get(self, giveaway_id: str) -> Optional[GiveawayRecord]:
        async with self._lock:
            payload = (await self._load()).get(giveaway_id)
        return GiveawayRecord.from_payload(payload) if payload else None

    async def get_all(self) -> List[GiveawayRecord]:
        async with self._lock:
            payloads = list((await self._load()).values())
        return [GiveawayRecord.from_payload(payload) for payload in payloads]

    async def delete(self, giveaway_id: str) -> None:
        async with self._lock:
            records = await self._load()
            if records.pop(giveaway_id, None) is not None:
                await self._write(records)

    async def edit(self, giveaway_id: str, record: GiveawayRecord) -> None:
        async with self._lock:
            records = await self._load()
            records.pop(giveaway_id, None)
            records[record.id] = record.to_payload()
            await self._write(records)

    # --- Internal helpers -------------------------------------------------

    async def _load(self) -> Dict[str, dict]:
        try:
            return await asyncio.to_thread(self._read_file)
        except (OSError, ValueError, KeyError, TypeError) as exc:
            raise PersistenceFailure(f"Unable to read {self.path}: {exc}") from exc

    async def _write(self, records: Dict[str, dict]) -> None:
        try:
            await asyncio.to_thread(self._write_file, records)
        except OSError as exc:
            raise PersistenceFailure(f"Unable to write {self.path}: {exc}") from exc

    def _read_file(self) -> Dict[str, dict]:
        if not self.path.exists():
            return {}
        raw = self.path.read_text(encoding="utf-8")
        if not raw.strip():
            return {}
        payload = json.loads(raw)
        if not isinstance(payload, list):
            raise ValueError("giveaway file must contain a JSON array")
        return {str(item["id"]): item for item in payload}

    def _write_file(self, records: Dict[str, dict]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self.path.with_suffix(self.path.suffix + ".tmp")
        tmp_path.write_text(json.dumps(list(records.values()), indent=2), encoding="utf-8")
        tmp_path.replace(self.path)


class SQLiteStore(GiveawayStore):
    """Relational store backed by a single SQLite database file."""

    def __init__(self, path: Path) -> None:
        self.path = path
        self._lock = asyncio.Lock()

    async def save(self, record: GiveawayRecord) -> None:
        await self._run(self._upsert, record)

    async def get(self, giveaway_id: str) -> Optional[GiveawayRecord]:
        return await self._run(self._select_one, giveaway_id)

    async def get_all(self) -> List[GiveawayRecord]:
        return await self._run(self._select_all)

    async def delete(self, giveaway_id: str) -> None:
        await self._run(self._delete, giveaway_id)

    async def edit(self, giveaway_id: str, record: GiveawayRecord) -> None:
        await self._run(self._replace, giveaway_id, record)

    # --- Internal helpers -------------------------------------------------

    async def _run(self, func, *args):
        async with self._lock:
            try:
                return await asyncio.to_thread(func, *args)
            except sqlite3.Error as exc:
                raise PersistenceFailure(f"SQLite error on {self.path}: {exc}") from exc

    def _connect(self) -> sqlite3.Connection:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        conn = sqlite3.connect(self.path)
        conn.row_factory = sqlite3.Row
        self._ensure_schema(conn)
        return conn

    def _upsert(self, record: GiveawayRecord) -> None:
        conn = self._connect()
        try:
            conn.execute("BEGIN")
            self._insert(conn, record)
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def _replace(self, giveaway_id: str, record: GiveawayRecord) -> None:
        conn = self._connect()
        try:
            conn.execute("BEGIN")
            conn.execute("DELETE FROM giveaways WHERE id = ?", (giveaway_id,))
            self._insert(conn, record)
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def _delete(self, giveaway_id: str) -> None:
        conn = self._connect()
        try:
            conn.execute("DELETE FROM giveaways WHERE id = ?", (giveaway_id,))
            conn.commit()
        finally:
            conn.close()

    def _select_one(self, giveaway_id: str) -> Optional[GiveawayRecord]:
        conn = self._connect()
        try:
            row = conn.execute(
                "SELECT * FROM giveaways WHERE id = ?", (giveaway_id,)
            ).fetchone()
            return self._from_row(row) if row else None
        finally:
            conn.close()

    def _select_all(self) -> List[GiveawayRecord]:
        conn = self._connect()
        try:
            rows = conn.execute("SELECT * FROM giveaways ORDER BY created_at").fetchall()
            return [self._from_row(row) for row in rows]
        finally:
            conn.close()

    @staticmethod
    def _insert(conn: sqlite3.Connection, record: GiveawayRecord) -> None:
        conn.execute(
            """
            INSERT OR REPLACE INTO giveaways(
                id,
                channel_id,
                message_id,
                prize,
                winner_count,
                end_at,
                created_at,
                ended,
                requirements,
                winners
            )
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                record.id,
                record.channel_id,
                record.message_id,
                record.prize,
                record.winner_count,
                record.end_at,
                record.created_at,
                1 if record.ended else 0,
                json.dumps(record.requirements.to_payload())
                if record.requirements is not None
                else None,
                json.dumps(list(record.winners)),
            ),
        )

    @staticmethod
    def _from_row(row: sqlite3.Row) -> GiveawayRecord:
        requirements = json.loads(row["requirements"]) if row["requirements"] else None
        winners = json.loads(row["winners"]) if row["winners"] else []
        return GiveawayRecord(
            id=row["id"],
            channel_id=row["channel_id"],
            message_id=row["message_id"],
            prize=row["prize"],
            winner_count=row["winner_count"],
            end_at=row["end_at"],
            created_at=row["created_at"],
            ended=bool(row["ended"]),
            requirements=RequirementSet.from_payload(requirements) if requirements else None,
            winners=[str(value) for value in winners],
        )

    @staticmethod
    def _ensure_schema(conn: sqlite3.Connection) -> None:
        conn.execute("PRAGMA journal_mode=WAL;")
        conn.execute(
            """
            CREATE TABLE IF NOT EXISTS giveaways (
                id TEXT PRIMARY KEY,
                channel_id TEXT NOT NULL,
                message_id TEXT,
                prize TEXT NOT NULL,
                winner_count INTEGER NOT NULL,
                end_at INTEGER NOT NULL,
                created_at INTEGER NOT NULL,
                ended INTEGER NOT NULL,
                requirements TEXT,
                winners TEXT
            )
            """
        )


def build_store(backend: str, path: Path) -> GiveawayStore:
    if backend == "sqlite":
        return SQLiteStore(path)
    if backend == "json":
        return JSONStore(path)
    if backend == "memory":
        LOGGER.warning("Using in-memory giveaway storage; giveaways will not survive restarts.")
        return MemoryStore()
    raise ValueError(f"Unknown storage backend: {backend}")
