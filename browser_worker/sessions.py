"""Session registry and idle reaper.

The registry maps session ids to live browser resources. Two locks are
involved:

* the registry lock guards the id -> Session map. It is only held for map
  reads and writes, never across a browser launch or teardown.
* each Session has its own lock giving one request at a time exclusive use
  of its page. Other requests for the same id queue behind it.

A session is "pending" from the moment a request claims it (under the
registry lock) until that request releases it. The reaper never evicts a
pending session, so a lookup followed by a lock wait cannot lose its
session to a sweep.
"""
from __future__ import annotations

import asyncio
import contextlib
import time
import uuid
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Callable

import structlog

from browser_worker.engine import BrowserResource, PlaywrightEngine
from browser_worker.errors import EngineFatalError, SessionNotFoundError

log = structlog.get_logger(__name__)


@dataclass(eq=False)
class Session:
    id: str
    resource: BrowserResource
    last_used_at: float
    created_at: float = field(default_factory=time.time)
    pending: int = 0
    closed: bool = False
    lock: asyncio.Lock = field(default_factory=asyncio.Lock, repr=False)

    @property
    def page(self) -> Any:
        return self.resource.page

    @property
    def busy(self) -> bool:
        return self.pending > 0

    def touch(self, now: float) -> None:
        self.last_used_at = now

    def idle_for(self, now: float) -> float:
        return now - self.last_used_at


class SessionRegistry:
    """Owns every live session and its browser resource."""

    def __init__(
        self,
        engine: PlaywrightEngine,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.engine = engine
        self._clock = clock
        self._sessions: dict[str, Session] = {}
        self._lock = asyncio.Lock()

    def __len__(self) -> int:
        return len(self._sessions)

    def __contains__(self, session_id: object) -> bool:
        return session_id in self._sessions

    def ids(self) -> list[str]:
        return list(self._sessions)

    def describe(self) -> list[dict[str, Any]]:
        now = self._clock()
        return [
            {
                "id": s.id,
                "createdAt": s.created_at,
                "idleMs": int(s.idle_for(now) * 1000),
                "busy": s.busy,
            }
            for s in self._sessions.values()
        ]

    # -- Lookup / creation -----------------------------------------------------

    async def resolve_or_create(self, requested_id: str | None = None) -> Session:
        """Return the session named by requested_id, creating it if unknown."""
        return await self._resolve(requested_id, create=True, claim=False)

    async def get(self, session_id: str) -> Session:
        """Return an existing session (refreshing it) or raise SessionNotFoundError."""
        return await self._resolve(session_id, create=False, claim=False)

    async def _resolve(self, session_id: str | None, create: bool, claim: bool) -> Session:
        async with self._lock:
            session = self._sessions.get(session_id) if session_id else None
            if session is not None:
                session.touch(self._clock())
                if claim:
                    session.pending += 1
                log.debug("session reused", session_id=session.id)
                return session
            if not create:
                raise SessionNotFoundError(session_id or "")

        session_id = session_id or uuid.uuid4().hex
        resource = await self._launch(session_id)

        async with self._lock:
            session = self._sessions.get(session_id)
            created = session is None
            if created:
                session = Session(id=session_id, resource=resource, last_used_at=self._clock())
                self._sessions[session_id] = session
            else:
                session.touch(self._clock())
            if claim:
                session.pending += 1

        if created:
            log.info("session created", session_id=session_id, active=len(self._sessions))
        else:
            # A concurrent request registered the same id while we were launching
            log.info("session launch raced, reusing existing", session_id=session_id)
            await self._release(session_id, resource)
        return session

    async def _launch(self, session_id: str) -> BrowserResource:
        try:
            return await self.engine.open()
        except Exception as exc:
            log.error("session launch failed", session_id=session_id, error=str(exc))
            raise EngineFatalError(f"Failed to launch browser: {exc}") from exc

    @contextlib.asynccontextmanager
    async def use(self, session_id: str | None, create: bool = False) -> AsyncIterator[Session]:
        """Hold exclusive use of a session for the duration of the block.

        With create=True an unknown (or concurrently closed) id gets a fresh
        session; otherwise SessionNotFoundError is raised.
        """
        while True:
            session = await self._resolve(session_id, create=create, claim=True)
            try:
                await session.lock.acquire()
            except BaseException:
                session.pending -= 1
                raise
            if not session.closed:
                break
            # Closed while we were queued behind another holder
            session.lock.release()
            session.pending -= 1
            if not create:
                raise SessionNotFoundError(session.id)
            session_id = session.id

        try:
            yield session
        finally:
            session.touch(self._clock())
            session.pending -= 1
            session.lock.release()

    # -- Teardown --------------------------------------------------------------

    async def close(self, session_id: str) -> bool:
        """Close a session. Unknown ids are a no-op returning False."""
        async with self._lock:
            session = self._sessions.pop(session_id, None)
        if session is None:
            return False
        await self._close_session(session, reason="closed")
        return True

    async def sweep(self, ttl: float, now: float | None = None) -> list[str]:
        """Close every non-busy session idle for longer than ttl seconds."""
        if now is None:
            now = self._clock()
        async with self._lock:
            expired = [
                s for s in self._sessions.values()
                if not s.busy and s.idle_for(now) > ttl
            ]
            for s in expired:
                del self._sessions[s.id]
        for s in expired:
            await self._close_session(s, reason="idle")
        return [s.id for s in expired]

    async def close_all(self) -> int:
        async with self._lock:
            sessions = list(self._sessions.values())
            self._sessions.clear()
        for s in sessions:
            await self._close_session(s, reason="shutdown")
        return len(sessions)

    async def _close_session(self, session: Session, reason: str) -> None:
        # Waits for the current holder, if any, before releasing the page
        async with session.lock:
            if session.closed:
                return
            session.closed = True
            await self._release(session.id, session.resource)
        log.info("session closed", session_id=session.id, reason=reason)

    async def _release(self, session_id: str, resource: BrowserResource) -> None:
        try:
            await self.engine.close(resource)
        except Exception as exc:
            log.warning("browser close failed", session_id=session_id, error=str(exc))


class IdleReaper:
    """Periodically evict sessions idle beyond the TTL."""

    def __init__(
        self,
        registry: SessionRegistry,
        ttl: float,
        interval: float = 60.0,
    ) -> None:
        self.registry = registry
        self.ttl = ttl
        self._interval = interval
        self._sweep_count = 0
        self._running = False
        self._task: asyncio.Task | None = None

    @property
    def sweep_count(self) -> int:
        return self._sweep_count

    @property
    def running(self) -> bool:
        return self._running

    def start(self) -> None:
        self._running = True
        self._task = asyncio.get_running_loop().create_task(self._monitor())
        log.info("idle reaper started", ttl_s=self.ttl, interval_s=self._interval)

    async def stop(self) -> None:
        self._running = False
        if self._task:
            self._task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._task
            self._task = None

    async def _monitor(self) -> None:
        while self._running:
            await asyncio.sleep(self._interval)
            try:
                evicted = await self.registry.sweep(self.ttl)
            except Exception:
                log.exception("idle sweep failed")
                continue
            self._sweep_count += 1
            if evicted:
                log.info("idle sessions evicted", sessions=evicted, active=len(self.registry))
