"""
Resource Store

Typed persistence over the closed resource catalog. Every kind gets the same
Put/Get/List/Delete contract; kind-specific behaviour lives only in the
payload schema and table bound to it in the catalog.

Concurrency model:
- Writes (put, delete, mark_synced, drop_db) go through a single writer lock
  and run as one transaction each, so a reader sees either the previous or the
  new complete object for an id.
- Reads run unlocked, except when the engine shares a single connection
  (in-memory SQLite) where they queue behind the writer lock as well.
- Session bodies run in their own task. Cancelling or timing out an
  operation lets the body roll back before the cancellation surfaces, so no
  statement is cut off halfway and no connection is discarded.
"""

import asyncio
from contextlib import asynccontextmanager, nullcontext
from datetime import datetime
from pathlib import Path
from typing import Any, AsyncIterator, Awaitable, Callable, Dict, Generic, List, Optional, TypeVar

import structlog
from pydantic import ValidationError
from sqlalchemy import delete, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from infraguard.schemas.resources import StoredObject, SyncTime, sync_time_id
from infraguard.shared.core.config import get_settings
from infraguard.shared.core.exceptions import (
    InfraGuardException,
    InvalidResourceError,
    ProviderConflictError,
    ResourceNotFoundError,
    StorageIOError,
    StoreClosedError,
    StoreError,
)
from infraguard.shared.core.timeout import TimeoutManager
from infraguard.shared.db.base import Base, ResourceRecordMixin, utcnow
from infraguard.shared.db.catalog import CATALOG, KindSpec, ResourceKind, spec_for
from infraguard.shared.db.session import EngineRuntime, build_engine

logger = structlog.get_logger()

T = TypeVar("T", bound=StoredObject)
R = TypeVar("R")

# Sentinel: "use the store's default deadline".
_DEFAULT = object()


class KindStore(Generic[T]):
    """Typed view of one collection of a ResourceStore."""

    def __init__(self, store: "ResourceStore", spec: KindSpec[T]):
        self._store = store
        self.spec = spec

    @property
    def kind(self) -> ResourceKind:
        return self.spec.kind

    async def put(self, obj: T, *, timeout: Any = _DEFAULT) -> None:
        await self._store.put(self.kind, obj, timeout=timeout)

    async def get(self, db_id: str, *, timeout: Any = _DEFAULT) -> T:
        return await self._store.get(self.kind, db_id, timeout=timeout)

    async def list(self, *, timeout: Any = _DEFAULT) -> List[T]:
        return await self._store.list(self.kind, timeout=timeout)

    async def delete(self, db_id: str, *, timeout: Any = _DEFAULT) -> None:
        await self._store.delete(self.kind, db_id, timeout=timeout)

    def __repr__(self) -> str:
        return f"<KindStore {self.kind.value}>"


class ResourceStore:
    """Keyed, typed persistence facade over the resource catalog."""

    def __init__(self, *, timeout: Any = _DEFAULT, echo: Optional[bool] = None):
        """`timeout` is the default per-operation deadline in seconds; None disables it."""
        settings = get_settings()
        self._default_timeout = (
            settings.STORE_OPERATION_TIMEOUT_SECONDS if timeout is _DEFAULT else timeout
        )
        self._echo = settings.DB_ECHO if echo is None else echo
        self._runtime: EngineRuntime | None = None
        self._session_maker: async_sessionmaker[AsyncSession] | None = None
        self._closed = False
        self._write_lock = asyncio.Lock()
        self._collections: Dict[ResourceKind, KindStore[Any]] = {}

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    @classmethod
    @asynccontextmanager
    async def connect(
        cls, location: str | Path | None = None, **kwargs: Any
    ) -> AsyncIterator["ResourceStore"]:
        """
        Open a store for the duration of a block.

        Usage:
            async with ResourceStore.connect("inventory.db") as store:
                await store.put(ResourceKind.VPC, vpc)
        """
        store = cls(**kwargs)
        await store.open(location)
        try:
            yield store
        finally:
            await store.close()

    @property
    def is_open(self) -> bool:
        return self._runtime is not None

    async def open(self, location: str | Path | None = None, *, timeout: Any = _DEFAULT) -> None:
        """Open the backing engine at `location` and create any missing collections."""
        if self._runtime is not None:
            raise StoreError("store is already open")

        if location is None:
            location = get_settings().INVENTORY_DB_URL
        runtime = build_engine(location, echo=self._echo)
        try:
            await self._execute("open", self._create_collections, runtime, timeout=timeout)
        except BaseException:
            await runtime.engine.dispose()
            raise

        self._runtime = runtime
        self._session_maker = async_sessionmaker(
            runtime.engine, class_=AsyncSession, expire_on_commit=False
        )
        self._closed = False
        logger.info(
            "resource_store_opened",
            dialect=runtime.engine.dialect.name,
            collections=len(CATALOG),
        )

    async def close(self) -> None:
        """Release the engine. Later calls fail with StoreClosedError; closing twice is a no-op."""
        if self._runtime is None:
            self._closed = True
            return
        # Let an in-flight write finish before the engine goes away.
        async with self._write_lock:
            runtime, self._runtime = self._runtime, None
            self._session_maker = None
            self._closed = True
            await runtime.engine.dispose()
        logger.info("resource_store_closed")

    async def drop_db(self, *, timeout: Any = _DEFAULT) -> None:
        """Clear every collection in one transaction: all of them or none."""
        self._require_open()
        await self._execute("drop_db", self._drop_all, timeout=timeout)
        logger.warning("resource_store_dropped", collections=len(CATALOG))

    # ------------------------------------------------------------------
    # Typed CRUD
    # ------------------------------------------------------------------

    def collection(self, kind: Any) -> KindStore[Any]:
        spec = spec_for(kind)
        view = self._collections.get(spec.kind)
        if view is None:
            view = self._collections[spec.kind] = KindStore(self, spec)
        return view

    async def put(self, kind: Any, obj: StoredObject, *, timeout: Any = _DEFAULT) -> None:
        """Upsert `obj` into its kind's collection, replacing any object with the same id."""
        spec = spec_for(kind)
        self._require_open()
        db_id = self._validate(spec, obj)
        payload = obj.model_dump(mode="json")
        await self._execute(
            "put",
            self._put,
            spec,
            db_id,
            obj.provider,
            obj.last_sync_time,
            payload,
            kind=spec.kind,
            db_id=db_id,
            timeout=timeout,
        )

    async def get(self, kind: Any, db_id: str, *, timeout: Any = _DEFAULT) -> Any:
        spec = spec_for(kind)
        self._require_open()
        return await self._execute(
            "get", self._get, spec, db_id, kind=spec.kind, db_id=db_id, timeout=timeout
        )

    async def list(self, kind: Any, *, timeout: Any = _DEFAULT) -> List[Any]:
        """Snapshot of every object of a kind. Order is unspecified."""
        spec = spec_for(kind)
        self._require_open()
        return await self._execute("list", self._list, spec, kind=spec.kind, timeout=timeout)

    async def delete(self, kind: Any, db_id: str, *, timeout: Any = _DEFAULT) -> None:
        """Remove an object by id. Deleting a missing id is not an error."""
        spec = spec_for(kind)
        self._require_open()
        await self._execute(
            "delete", self._delete, spec, db_id, kind=spec.kind, db_id=db_id, timeout=timeout
        )

    # ------------------------------------------------------------------
    # Sync bookkeeping
    # ------------------------------------------------------------------

    async def mark_synced(
        self,
        kind: Any,
        db_id: str,
        when: Optional[datetime] = None,
        *,
        timeout: Any = _DEFAULT,
    ) -> Any:
        """Stamp an existing object as refreshed from its provider and return it."""
        spec = spec_for(kind)
        self._require_open()
        return await self._execute(
            "mark_synced",
            self._mark_synced,
            spec,
            db_id,
            when or utcnow(),
            kind=spec.kind,
            db_id=db_id,
            timeout=timeout,
        )

    async def record_sync(
        self,
        provider: str,
        resource_type: str = "",
        when: Optional[datetime] = None,
        *,
        timeout: Any = _DEFAULT,
    ) -> SyncTime:
        """Record a successful sync of a provider, or of one resource type of it."""
        if isinstance(resource_type, ResourceKind):
            resource_type = resource_type.value
        record = SyncTime(
            provider=provider,
            resource_type=resource_type,
            last_sync_time=when or utcnow(),
        )
        await self.put(ResourceKind.SYNC_TIME, record, timeout=timeout)
        return record

    async def get_sync_time(
        self, provider: str, resource_type: str = "", *, timeout: Any = _DEFAULT
    ) -> SyncTime:
        if isinstance(resource_type, ResourceKind):
            resource_type = resource_type.value
        return await self.get(
            ResourceKind.SYNC_TIME, sync_time_id(provider, resource_type), timeout=timeout
        )

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _require_open(self) -> None:
        if self._runtime is None or self._session_maker is None:
            if self._closed:
                raise StoreClosedError()
            raise StoreClosedError("store is not open")

    def _sessions(self) -> async_sessionmaker[AsyncSession]:
        # close() may run between the caller's check and the locked section.
        self._require_open()
        assert self._session_maker is not None
        return self._session_maker

    def _read_guard(self) -> Any:
        if self._runtime is not None and self._runtime.shared_connection:
            return self._write_lock
        return nullcontext()

    @staticmethod
    def _validate(spec: KindSpec[Any], obj: Any) -> str:
        if not isinstance(obj, spec.schema):
            raise InvalidResourceError(
                f"{spec.kind.value} expects {spec.schema.__name__}, got {type(obj).__name__}",
                details={"kind": spec.kind.value},
            )
        db_id = obj.db_id()
        if not db_id or not db_id.strip():
            raise InvalidResourceError(
                f"{spec.kind.value} object has an empty id",
                details={"kind": spec.kind.value},
            )
        if not obj.get_provider():
            raise InvalidResourceError(
                f"{spec.kind.value} '{db_id}' has an empty provider",
                details={"kind": spec.kind.value, "db_id": db_id},
            )
        return db_id

    @staticmethod
    def _to_object(spec: KindSpec[Any], record: ResourceRecordMixin) -> Any:
        try:
            return spec.schema.model_validate(record.payload)
        except ValidationError as exc:
            raise StorageIOError(
                f"Stored {spec.kind.value} '{record.db_id}' is not a valid {spec.schema.__name__}",
                details={"kind": spec.kind.value, "db_id": record.db_id},
            ) from exc

    async def _execute(
        self,
        operation: str,
        func: Callable[..., Awaitable[R]],
        *args: Any,
        kind: Optional[ResourceKind] = None,
        db_id: Optional[str] = None,
        timeout: Any = _DEFAULT,
    ) -> R:
        context: Dict[str, Any] = {"operation": operation}
        if kind is not None:
            context["kind"] = kind.value
        if db_id is not None:
            context["db_id"] = db_id

        manager = TimeoutManager(
            "store", self._default_timeout if timeout is _DEFAULT else timeout
        )
        try:
            return await manager.execute_with_timeout(func, *args, context=context)
        except InfraGuardException:
            raise
        except (SQLAlchemyError, OSError) as exc:
            logger.error("store_operation_failed", error=str(exc), **context)
            raise StorageIOError(f"{operation} failed: {exc}", details=context) from exc

    @staticmethod
    async def _create_collections(runtime: EngineRuntime) -> None:
        tables = [spec.record.__table__ for spec in CATALOG.values()]
        async with runtime.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all, tables=tables)

    async def _guarded(
        self, lock: Any, body: Callable[[asyncio.Event], Awaitable[R]]
    ) -> R:
        """
        Run a session body under `lock` in its own task.

        A cancellation that arrives while the body is running does not
        interrupt it: an interrupted statement discards its connection, and
        with a shared connection that takes the in-memory database along. The
        body is told to roll back instead of committing, awaited, and then the
        cancellation is re-raised.
        """
        async with lock:
            abandoned = asyncio.Event()
            task = asyncio.ensure_future(body(abandoned))
            try:
                return await asyncio.shield(task)
            except asyncio.CancelledError:
                abandoned.set()
                await _drain(task)
                raise

    async def _put(
        self,
        spec: KindSpec[Any],
        db_id: str,
        provider: str,
        last_sync_time: Optional[datetime],
        payload: Dict[str, Any],
    ) -> None:
        async def body(abandoned: asyncio.Event) -> None:
            async with self._sessions()() as session, session.begin():
                record = await session.get(spec.record, db_id)
                if record is None:
                    session.add(
                        spec.record(
                            db_id=db_id,
                            provider=provider,
                            last_sync_time=last_sync_time,
                            payload=payload,
                        )
                    )
                else:
                    if record.provider != provider:
                        raise ProviderConflictError(
                            f"{spec.kind.value} '{db_id}' belongs to provider "
                            f"'{record.provider}', refusing to rewrite it as '{provider}'",
                            details={
                                "kind": spec.kind.value,
                                "db_id": db_id,
                                "stored_provider": record.provider,
                                "provider": provider,
                            },
                        )
                    record.last_sync_time = last_sync_time
                    record.payload = payload
                _raise_if_abandoned(abandoned)

        await self._guarded(self._write_lock, body)
        logger.debug("resource_put", kind=spec.kind.value, db_id=db_id)

    async def _get(self, spec: KindSpec[Any], db_id: str) -> Any:
        async def body(_abandoned: asyncio.Event) -> Any:
            async with self._sessions()() as session:
                record = await session.get(spec.record, db_id)
                if record is None:
                    raise ResourceNotFoundError(
                        f"{spec.kind.value} '{db_id}' not found",
                        details={"kind": spec.kind.value, "db_id": db_id},
                    )
                return self._to_object(spec, record)

        return await self._guarded(self._read_guard(), body)

    async def _list(self, spec: KindSpec[Any]) -> List[Any]:
        async def body(_abandoned: asyncio.Event) -> List[Any]:
            async with self._sessions()() as session:
                result = await session.execute(select(spec.record))
                return [self._to_object(spec, record) for record in result.scalars().all()]

        return await self._guarded(self._read_guard(), body)

    async def _delete(self, spec: KindSpec[Any], db_id: str) -> None:
        async def body(abandoned: asyncio.Event) -> None:
            async with self._sessions()() as session, session.begin():
                await session.execute(delete(spec.record).where(spec.record.db_id == db_id))
                _raise_if_abandoned(abandoned)

        await self._guarded(self._write_lock, body)
        logger.debug("resource_deleted", kind=spec.kind.value, db_id=db_id)

    async def _mark_synced(self, spec: KindSpec[Any], db_id: str, when: datetime) -> Any:
        async def body(abandoned: asyncio.Event) -> Any:
            async with self._sessions()() as session, session.begin():
                record = await session.get(spec.record, db_id)
                if record is None:
                    raise ResourceNotFoundError(
                        f"{spec.kind.value} '{db_id}' not found",
                        details={"kind": spec.kind.value, "db_id": db_id},
                    )
                obj = self._to_object(spec, record)
                obj.set_sync_time(when)
                record.last_sync_time = when
                record.payload = obj.model_dump(mode="json")
                _raise_if_abandoned(abandoned)
            return obj

        return await self._guarded(self._write_lock, body)

    async def _drop_all(self) -> None:
        async def body(abandoned: asyncio.Event) -> None:
            async with self._sessions()() as session, session.begin():
                for spec in CATALOG.values():
                    await session.execute(delete(spec.record))
                _raise_if_abandoned(abandoned)

        await self._guarded(self._write_lock, body)


class _Abandoned(Exception):
    """The caller of a guarded body gave up; roll the transaction back."""


def _raise_if_abandoned(abandoned: asyncio.Event) -> None:
    if abandoned.is_set():
        raise _Abandoned()


async def _drain(task: "asyncio.Future[Any]") -> None:
    # The caller re-raises its own cancellation once the body has finished.
    while not task.done():
        try:
            await asyncio.wait({task})
        except asyncio.CancelledError:
            continue
    if not task.cancelled():
        task.exception()
