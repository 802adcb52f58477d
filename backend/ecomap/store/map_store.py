"""
Map Store - persists ecosystem maps in the shared `ecosystems` table and
pushes full, recency-ordered snapshots to subscribers after every write.

Write semantics:
- save():   upsert; createdAt is assigned once, updatedAt on every write
- update(): merge-patch of top-level fields, NotFound if the id is absent
- delete(): idempotent

Concurrent writers are reconciled by last-writer-wins: there is no version
token, the write that commits last wins for the fields it touches.

When the database is unconfigured or unreachable every operation degrades to
a no-op returning a benign default instead of raising.
"""

import asyncio
import functools
import inspect
import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Awaitable, Callable, Dict, List, Optional, Set, Tuple, Union

from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError
from pydantic_core import to_jsonable_python
from sqlalchemy import select
from sqlalchemy.exc import ArgumentError, InterfaceError, OperationalError

from ecomap.config import get_settings
from ecomap.db.models import EcosystemDocument
from ecomap.db.session import create_engine, create_sessionmaker, dispose, init_models
from ecomap.ir.ecosystem import EcosystemCandidate, EcosystemMap, new_map_id
from ecomap.ir.errors import MapValidationError, NotFound, StoreUnavailable
from ecomap.ir.validation import ValidationIssue, ValidationSeverity
from ecomap.validation import validate_map

log = logging.getLogger(__name__)

Snapshot = List[EcosystemMap]
Listener = Callable[[Snapshot], Union[None, Awaitable[None]]]

TIMESTAMP_FORMAT = "%Y-%m-%dT%H:%M:%S.%fZ"

PATCHABLE_FIELDS = {"name", "section", "nodes", "edges"}
IMMUTABLE_FIELDS = {"id", "createdAt", "updatedAt", "created_at", "updated_at"}

_UNAVAILABLE_ERRORS = (OperationalError, InterfaceError, OSError)


# ============================================================
# TIMESTAMPS
# ============================================================

def format_timestamp(value: datetime) -> str:
    return value.astimezone(timezone.utc).strftime(TIMESTAMP_FORMAT)


def parse_timestamp(value: str) -> datetime:
    return datetime.strptime(value, TIMESTAMP_FORMAT).replace(tzinfo=timezone.utc)


def next_timestamp(previous: Optional[str] = None) -> str:
    """Current UTC time, bumped past `previous` so updatedAt strictly increases."""
    now = datetime.now(timezone.utc)
    if previous:
        last = parse_timestamp(previous)
        if now <= last:
            now = last + timedelta(microseconds=1)
    return format_timestamp(now)


# ============================================================
# SUBSCRIPTIONS
# ============================================================

class Subscription:
    """
    Handle returned by MapStore.subscribe(); unsubscribe() is idempotent.

    Snapshots are versioned by the store. A subscription never hands its
    listener a snapshot older than one it already accepted, and snapshots
    arriving while the listener is busy collapse into the newest one.
    """

    def __init__(self, store: "MapStore", listener: Listener):
        self._store = store
        self.listener = listener
        self.version = -1
        self._pending: Optional[Snapshot] = None
        self._draining = False

    @property
    def active(self) -> bool:
        return self in self._store._subscriptions

    def unsubscribe(self) -> None:
        self._store._subscriptions.discard(self)

    async def push(self, snapshot: Snapshot, version: int) -> None:
        if version <= self.version:
            log.debug("[MapStore] dropping stale snapshot v%d (have v%d)", version, self.version)
            return
        self.version = version
        self._pending = snapshot
        if self._draining:
            # The running drain loop picks it up
            return

        self._draining = True
        try:
            while self._pending is not None and self.active:
                snapshot, self._pending = self._pending, None
                await self._call(snapshot)
        finally:
            self._draining = False

    async def _call(self, snapshot: Snapshot) -> None:
        try:
            result = self.listener(list(snapshot))
            if inspect.isawaitable(result):
                await result
        except Exception:
            # A broken listener must not fail the writer or starve other listeners
            log.exception("[MapStore] snapshot listener failed")


def fail_soft(default: Callable[..., Any]):
    """Return default(...) instead of raising while the store is unavailable."""
    def decorator(fn):
        @functools.wraps(fn)
        async def wrapper(self: "MapStore", *args, **kwargs):
            if not self.available:
                log.debug("[MapStore] %s skipped: store unavailable", fn.__name__)
                return default(*args, **kwargs)
            try:
                return await fn(self, *args, **kwargs)
            except _UNAVAILABLE_ERRORS as exc:
                log.warning("[MapStore] %s failed, store unavailable: %s", fn.__name__, exc)
                return default(*args, **kwargs)
        return wrapper
    return decorator


def _as_document(value: Any) -> Dict[str, Any]:
    if isinstance(value, BaseModel):
        return value.model_dump(by_alias=True, exclude_none=True)
    if isinstance(value, dict):
        return dict(value)
    raise MapValidationError([
        ValidationIssue(
            severity=ValidationSeverity.ERROR,
            code="NOT_AN_OBJECT",
            message=f"Map payload must be an object, got {type(value).__name__}",
        )
    ])


def _field_issue(code: str, field: str, message: str) -> ValidationIssue:
    return ValidationIssue(
        severity=ValidationSeverity.ERROR,
        code=code,
        message=message,
        location=field,
    )


class MapStore:
    def __init__(
        self,
        database_url: Optional[str] = None,
        section: Optional[str] = None,
    ):
        settings = get_settings()
        self.database_url = settings.database_url if database_url is None else database_url
        self.section = section or settings.section

        self._engine = None
        self._sessionmaker = None
        self._subscriptions: Set[Subscription] = set()
        self._write_lock = asyncio.Lock()
        self._version = 0
        self.available = False

        try:
            self._engine = create_engine(self.database_url)
            self._sessionmaker = create_sessionmaker(self._engine)
            self.available = True
        except (StoreUnavailable, ArgumentError) as exc:
            log.warning("[MapStore] running without persistence: %s", exc)

    # ---------- lifecycle ----------

    async def init(self, retries: int = 5, delay: float = 2.0) -> bool:
        """Create the schema; on failure the store stays in fail-soft mode."""
        if not self.available:
            return False
        self.available = await init_models(self._engine, retries=retries, delay=delay)
        return self.available

    async def close(self) -> None:
        self._subscriptions.clear()
        await dispose(self._engine)

    # ---------- reads ----------

    @fail_soft(lambda: [])
    async def list_maps(self) -> Snapshot:
        async with self._sessionmaker() as session:
            return await self._query_maps(session)

    @fail_soft(lambda map_id: None)
    async def get(self, map_id: str) -> Optional[EcosystemMap]:
        async with self._sessionmaker() as session:
            row = await session.get(EcosystemDocument, map_id)
            return self._to_map(row) if row is not None else None

    async def _query_maps(self, session) -> Snapshot:
        result = await session.execute(
            select(EcosystemDocument).order_by(EcosystemDocument.updated_at.desc())
        )
        return [m for m in (self._to_map(row) for row in result.scalars()) if m is not None]

    async def _take_snapshot(self, session) -> Tuple[int, Snapshot]:
        # Caller holds the write lock, so versions follow commit order
        snapshot = await self._query_maps(session)
        self._version += 1
        return self._version, snapshot

    # ---------- writes ----------

    async def save(self, ecosystem_map: Any) -> Optional[EcosystemMap]:
        """
        Upsert a map. Generates an id when absent.
        createdAt is kept from the first insert; updatedAt is always restamped.
        """
        document = _as_document(ecosystem_map)
        map_id = document.get("id") or new_map_id()
        document.setdefault("section", self.section)
        candidate = validate_map(document)
        return await self._save(map_id, candidate)

    @fail_soft(lambda map_id, candidate: None)
    async def _save(self, map_id: str, candidate: EcosystemCandidate) -> EcosystemMap:
        values = candidate.model_dump(exclude_none=True)

        async with self._write_lock:
            async with self._sessionmaker() as session:
                async with session.begin():
                    row = await session.get(EcosystemDocument, map_id)
                    if row is None:
                        stamp = next_timestamp()
                        row = EcosystemDocument(id=map_id, created_at=stamp, updated_at=stamp)
                        session.add(row)
                    else:
                        row.updated_at = next_timestamp(row.updated_at)
                    row.name = values["name"]
                    row.section = values["section"]
                    row.nodes = values["nodes"]
                    row.edges = values["edges"]
                saved = self._to_map(row)
                version, snapshot = await self._take_snapshot(session)

        log.info("[MapStore] saved map %s (%s)", map_id, saved.updated_at)
        await self._publish(version, snapshot)
        return saved

    async def update(self, map_id: str, fields: Dict[str, Any]) -> Optional[EcosystemMap]:
        """Merge-patch top-level fields. Raises NotFound if map_id is absent."""
        patch = self._check_patch(fields)
        return await self._update(map_id, patch)

    @fail_soft(lambda map_id, patch: None)
    async def _update(self, map_id: str, patch: Dict[str, Any]) -> EcosystemMap:
        async with self._write_lock:
            async with self._sessionmaker() as session:
                async with session.begin():
                    row = await session.get(EcosystemDocument, map_id)
                    if row is None:
                        raise NotFound(map_id)

                    merged = {**row.to_dict(), **patch}
                    values = validate_map(merged).model_dump(exclude_none=True)
                    for key in patch:
                        setattr(row, key, values[key])
                    row.updated_at = next_timestamp(row.updated_at)
                updated = self._to_map(row)
                version, snapshot = await self._take_snapshot(session)

        log.info("[MapStore] updated map %s fields=%s", map_id, sorted(patch))
        await self._publish(version, snapshot)
        return updated

    @fail_soft(lambda map_id: False)
    async def delete(self, map_id: str) -> bool:
        """Remove a map. Deleting an absent id is not an error."""
        async with self._write_lock:
            async with self._sessionmaker() as session:
                async with session.begin():
                    row = await session.get(EcosystemDocument, map_id)
                    if row is None:
                        return False
                    await session.delete(row)
                version, snapshot = await self._take_snapshot(session)

        log.info("[MapStore] deleted map %s", map_id)
        await self._publish(version, snapshot)
        return True

    # ---------- live feed ----------

    async def subscribe(self, listener: Listener) -> Subscription:
        """
        Register a listener and deliver the current snapshot right away.
        Afterwards every committed write delivers the full ordered collection.
        """
        subscription = Subscription(self, listener)
        self._subscriptions.add(subscription)
        version, snapshot = await self._current_snapshot()
        await subscription.push(snapshot, version)
        return subscription

    @fail_soft(lambda: (0, []))
    async def _current_snapshot(self) -> Tuple[int, Snapshot]:
        async with self._write_lock:
            async with self._sessionmaker() as session:
                return await self._take_snapshot(session)

    async def _publish(self, version: int, snapshot: Snapshot) -> None:
        for subscription in list(self._subscriptions):
            if subscription.active:
                await subscription.push(snapshot, version)

    # ---------- helpers ----------

    @staticmethod
    def _check_patch(fields: Dict[str, Any]) -> Dict[str, Any]:
        if not isinstance(fields, dict):
            raise MapValidationError([
                _field_issue("NOT_AN_OBJECT", "", "Patch must be an object")
            ])

        issues = []
        for key in fields:
            if key in IMMUTABLE_FIELDS:
                issues.append(_field_issue("IMMUTABLE_FIELD", key, f"Field '{key}' cannot be patched"))
            elif key not in PATCHABLE_FIELDS:
                issues.append(_field_issue("UNKNOWN_FIELD", key, f"Unknown map field '{key}'"))
        if issues:
            raise MapValidationError(issues)

        return {key: to_jsonable_python(value) for key, value in fields.items()}

    @staticmethod
    def _to_map(row: EcosystemDocument) -> Optional[EcosystemMap]:
        try:
            return EcosystemMap.model_validate(row.to_dict())
        except PydanticValidationError as exc:
            log.warning("[MapStore] skipping malformed document %s: %s", row.id, exc)
            return None
