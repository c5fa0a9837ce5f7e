from __future__ import annotations

import asyncio
import copy
import logging
import threading
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Dict, List, Mapping, Optional

from wrapper_studio.config import Settings

logger = logging.getLogger(__name__)

Record = Dict[str, Any]


class EntityKind(str, Enum):
    USERS = "users"
    WRAPPERS = "wrappers"
    PROMPTS = "prompts"
    INTEGRATIONS = "integrations"
    CONVERSATIONS = "conversations"


# Column each kind is filtered on by list_by_parent().
PARENT_FIELDS: Dict[EntityKind, str] = {
    EntityKind.WRAPPERS: "user_id",
    EntityKind.PROMPTS: "wrapper_id",
    EntityKind.INTEGRATIONS: "wrapper_id",
    EntityKind.CONVERSATIONS: "wrapper_id",
}

TIMESTAMPED = frozenset(
    {EntityKind.WRAPPERS, EntityKind.PROMPTS, EntityKind.INTEGRATIONS, EntityKind.CONVERSATIONS}
)
DELETABLE = frozenset({EntityKind.WRAPPERS, EntityKind.PROMPTS, EntityKind.INTEGRATIONS})
STORE_OWNED = ("id", "created_at")


class StorageError(RuntimeError):
    """Raised when the datastore rejects or fails an operation."""


def _writable(fields: Mapping[str, Any]) -> Record:
    return {k: v for k, v in fields.items() if k not in STORE_OWNED}


def _parent_field(kind: EntityKind) -> str:
    try:
        return PARENT_FIELDS[kind]
    except KeyError:
        raise StorageError(f"{kind.value} have no parent to filter on") from None


def _ensure_deletable(kind: EntityKind) -> None:
    if kind not in DELETABLE:
        raise StorageError(f"{kind.value} cannot be deleted")


class Storage(ABC):
    """Keyed record storage for the five entity kinds.

    Records are plain dicts keyed by snake_case column names. Every operation
    touches exactly one record; there are no multi-record transactions.
    """

    @abstractmethod
    async def create(self, kind: EntityKind, fields: Mapping[str, Any]) -> Record:
        """Insert a record, assigning ``id`` (and ``created_at`` where applicable)."""

    @abstractmethod
    async def get(self, kind: EntityKind, record_id: int) -> Optional[Record]:
        ...

    @abstractmethod
    async def list_by_parent(self, kind: EntityKind, parent_id: int) -> List[Record]:
        """All records of ``kind`` owned by ``parent_id``, in insertion order."""

    @abstractmethod
    async def find_one(self, kind: EntityKind, field: str, value: Any) -> Optional[Record]:
        ...

    @abstractmethod
    async def update(
        self, kind: EntityKind, record_id: int, fields: Mapping[str, Any]
    ) -> Optional[Record]:
        """Merge ``fields`` into an existing record. ``id``/``created_at`` never change."""

    @abstractmethod
    async def delete(self, kind: EntityKind, record_id: int) -> bool:
        """Remove a record; returns whether it existed."""


# ---------------------------------------------------------------------------
# In-memory backend
# ---------------------------------------------------------------------------
class MemoryStorage(Storage):
    """Process-lifetime store. Ids start at 1 and are never reused."""

    def __init__(self) -> None:
        self._tables: Dict[EntityKind, Dict[int, Record]] = {kind: {} for kind in EntityKind}
        self._counters: Dict[EntityKind, int] = {kind: 0 for kind in EntityKind}
        self._lock = threading.Lock()

    async def create(self, kind: EntityKind, fields: Mapping[str, Any]) -> Record:
        record = copy.deepcopy(_writable(fields))
        with self._lock:
            self._counters[kind] += 1
            record["id"] = self._counters[kind]
            if kind in TIMESTAMPED:
                record["created_at"] = datetime.now(timezone.utc)
            self._tables[kind][record["id"]] = record
            return copy.deepcopy(record)

    async def get(self, kind: EntityKind, record_id: int) -> Optional[Record]:
        with self._lock:
            record = self._tables[kind].get(record_id)
            return copy.deepcopy(record) if record is not None else None

    async def list_by_parent(self, kind: EntityKind, parent_id: int) -> List[Record]:
        parent = _parent_field(kind)
        with self._lock:
            return [
                copy.deepcopy(record)
                for record in self._tables[kind].values()
                if record.get(parent) == parent_id
            ]

    async def find_one(self, kind: EntityKind, field: str, value: Any) -> Optional[Record]:
        with self._lock:
            for record in self._tables[kind].values():
                if record.get(field) == value:
                    return copy.deepcopy(record)
        return None

    async def update(
        self, kind: EntityKind, record_id: int, fields: Mapping[str, Any]
    ) -> Optional[Record]:
        changes = copy.deepcopy(_writable(fields))
        with self._lock:
            record = self._tables[kind].get(record_id)
            if record is None:
                return None
            merged = {**record, **changes}
            self._tables[kind][record_id] = merged
            return copy.deepcopy(merged)

    async def delete(self, kind: EntityKind, record_id: int) -> bool:
        _ensure_deletable(kind)
        with self._lock:
            return self._tables[kind].pop(record_id, None) is not None


# ---------------------------------------------------------------------------
# Supabase backend
# ---------------------------------------------------------------------------
class SupabaseStorage(Storage):
    """One Postgres table per entity kind, reached through the Supabase client.

    Ids come from each table's identity column. The client is synchronous, so
    every call is pushed onto a worker thread.
    """

    def __init__(self, client: Any) -> None:
        self._client = client

    @classmethod
    def from_settings(cls, settings: Settings) -> "SupabaseStorage":
        if not settings.supabase_url or not settings.supabase_key:
            raise RuntimeError(
                "STORAGE_BACKEND is 'supabase' but SUPABASE_URL / SUPABASE_KEY are not set."
            )
        from supabase import create_client

        client = create_client(settings.supabase_url, settings.supabase_key)
        logger.info("Supabase client initialized successfully.")
        return cls(client)

    async def _execute(self, kind: EntityKind, build: Callable[[Any], Any]) -> List[Record]:
        def _call() -> Any:
            return build(self._client.table(kind.value)).execute()

        try:
            res = await asyncio.to_thread(_call)
        except Exception as exc:
            logger.error("Supabase %s query failed: %s", kind.value, exc)
            raise StorageError(f"Datastore request for {kind.value} failed") from exc
        return list(res.data or [])

    async def create(self, kind: EntityKind, fields: Mapping[str, Any]) -> Record:
        row = _writable(fields)
        if kind in TIMESTAMPED:
            row["created_at"] = datetime.now(timezone.utc).isoformat()
        rows = await self._execute(kind, lambda t: t.insert(row))
        if not rows:
            raise StorageError(f"Insert into {kind.value} returned no row")
        return rows[0]

    async def get(self, kind: EntityKind, record_id: int) -> Optional[Record]:
        rows = await self._execute(kind, lambda t: t.select("*").eq("id", record_id).limit(1))
        return rows[0] if rows else None

    async def list_by_parent(self, kind: EntityKind, parent_id: int) -> List[Record]:
        parent = _parent_field(kind)
        return await self._execute(
            kind, lambda t: t.select("*").eq(parent, parent_id).order("id")
        )

    async def find_one(self, kind: EntityKind, field: str, value: Any) -> Optional[Record]:
        rows = await self._execute(kind, lambda t: t.select("*").eq(field, value).limit(1))
        return rows[0] if rows else None

    async def update(
        self, kind: EntityKind, record_id: int, fields: Mapping[str, Any]
    ) -> Optional[Record]:
        changes = _writable(fields)
        if not changes:
            return await self.get(kind, record_id)
        rows = await self._execute(kind, lambda t: t.update(changes).eq("id", record_id))
        return rows[0] if rows else None

    async def delete(self, kind: EntityKind, record_id: int) -> bool:
        _ensure_deletable(kind)
        rows = await self._execute(kind, lambda t: t.delete().eq("id", record_id))
        return bool(rows)


def build_storage(settings: Settings) -> Storage:
    if settings.storage_backend == "supabase":
        return SupabaseStorage.from_settings(settings)
    return MemoryStorage()


__all__ = [
    "DELETABLE",
    "EntityKind",
    "MemoryStorage",
    "PARENT_FIELDS",
    "Record",
    "Storage",
    "StorageError",
    "SupabaseStorage",
    "build_storage",
]
