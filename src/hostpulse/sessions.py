"""Observer sessions: per-connection push timers for hostpulse."""

import asyncio
import contextlib
import logging
import time
import uuid
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import Protocol

from hostpulse.errors import DeliveryError
from hostpulse.models import Snapshot
from hostpulse.monitor import Sampler

logger = logging.getLogger(__name__)

DEFAULT_INTERVAL = 1.0


class SessionState(Enum):
    """Lifecycle of an observer session."""

    ATTACHING = "attaching"
    ACTIVE = "active"
    CLOSING = "closing"
    CLOSED = "closed"


class Transport(Protocol):
    """Push channel to one observer."""

    @property
    def is_open(self) -> bool: ...

    async def send_text(self, data: str) -> None: ...

    async def close(self) -> None: ...


@dataclass(slots=True, eq=False)
class ObserverSession:
    """State owned by the SessionManager for one attached observer."""

    session_id: str
    transport: Transport
    state: SessionState = SessionState.ATTACHING
    task: asyncio.Task | None = None
    last_tick: float = 0.0
    send_lock: asyncio.Lock = field(default_factory=asyncio.Lock)


class SessionManager:
    """
    Tracks attached observers and pushes a fresh Snapshot to each one.

    Every session owns its own timer task, so a slow observer never delays
    another one and each observer gets its first snapshot on attach. A failed
    send closes only the session it happened on.
    """

    def __init__(
        self,
        sampler: Sampler | None = None,
        *,
        interval: float = DEFAULT_INTERVAL,
        producer: Callable[[], Snapshot] | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """
        Initialize the SessionManager.

        Args:
            sampler: Sampler used to produce snapshots when no producer is given.
            interval: Seconds between pushes to one session.
            producer: Blocking callable returning a Snapshot; run in a worker thread.
            sleep: Awaitable sleep used between ticks.
            clock: Monotonic clock used to keep the cadence.
        """
        if producer is None:
            producer = (sampler if sampler is not None else Sampler()).sample
        self._producer = producer
        self._interval = interval
        self._sleep = sleep
        self._clock = clock
        self._sessions: dict[str, ObserverSession] = {}

    @property
    def interval(self) -> float:
        return self._interval

    @property
    def active_count(self) -> int:
        return len(self._sessions)

    def state(self, session_id: str) -> SessionState:
        """Return the session's state; sessions no longer registered are closed."""
        session = self._sessions.get(session_id)
        return session.state if session is not None else SessionState.CLOSED

    async def attach(self, transport: Transport) -> str:
        """Register a transport, push one snapshot right away and start its timer."""
        session = ObserverSession(session_id=uuid.uuid4().hex, transport=transport)
        self._sessions[session.session_id] = session
        session.state = SessionState.ACTIVE
        logger.info(
            "Observer session %s attached (%d active)", session.session_id, self.active_count
        )

        session.last_tick = self._clock()
        await self._tick(session)

        if session.state is SessionState.ACTIVE:
            session.task = asyncio.create_task(
                self._run(session), name=f"session-{session.session_id[:8]}"
            )
        return session.session_id

    async def detach(self, session_id: str) -> None:
        """Cancel the session's timer and release its transport. Safe to repeat."""
        session = self._sessions.pop(session_id, None)
        if session is None:
            return

        session.state = SessionState.CLOSING
        task = session.task
        if task is not None and task is not asyncio.current_task():
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task
        session.task = None

        try:
            await session.transport.close()
        except Exception as exc:
            logger.debug("Closing transport of session %s failed: %s", session_id, exc)

        session.state = SessionState.CLOSED
        logger.info("Observer session %s detached (%d active)", session_id, self.active_count)

    async def deliver(self, session_id: str, snapshot: Snapshot) -> bool:
        """
        Send one snapshot to a session.

        Returns False without sending when the session is not active. A send
        failure detaches the session and raises DeliveryError; serialization
        errors propagate unchanged and leave the session attached.
        """
        session = self._sessions.get(session_id)
        if session is None or session.state is not SessionState.ACTIVE:
            return False

        payload = snapshot.to_json()

        async with session.send_lock:
            # The session may have closed while waiting for the previous send
            if session.state is not SessionState.ACTIVE:
                return False
            try:
                await session.transport.send_text(payload)
                return True
            except Exception as exc:
                session.state = SessionState.CLOSING
                error = DeliveryError(session_id, exc)

        await self.detach(session_id)
        raise error from error.cause

    async def close_all(self) -> None:
        """Detach every session, e.g. on server shutdown."""
        for session_id in list(self._sessions):
            await self.detach(session_id)

    async def _run(self, session: ObserverSession) -> None:
        """Recurring timer for one session."""
        while session.state is SessionState.ACTIVE:
            elapsed = self._clock() - session.last_tick
            await self._sleep(max(0.0, self._interval - elapsed))
            if session.state is not SessionState.ACTIVE:
                break
            session.last_tick = self._clock()
            await self._tick(session)

    async def _tick(self, session: ObserverSession) -> None:
        try:
            snapshot = await asyncio.to_thread(self._producer)
        except Exception:
            logger.exception("Sampling failed for session %s; skipping tick", session.session_id)
            return

        if not session.transport.is_open:
            logger.debug("Session %s is not open; skipping tick", session.session_id)
            return

        try:
            await self.deliver(session.session_id, snapshot)
        except DeliveryError as exc:
            logger.info("%s; session closed", exc)
        except Exception:
            logger.exception(
                "Serializing snapshot failed for session %s; skipping tick", session.session_id
            )
