"""Session pool: reuse authenticated browser sessions across funds jobs.

One pooled session per ``(identity, base_url, headless, resource blocking)``
key. A per-key ``asyncio.Lock`` serializes jobs for the same agent so two
jobs never drive the same page at once; waiters are served in FIFO order.

Only fast-profile jobs (no tracing, no action delay) are pooled. Everything
else gets an isolated single-use session that is closed on release.

Lease protocol::

    lease = await pool.acquire("agent01", profile)
    try:
        ...
    except Exception:
        await lease.invalidate()
        raise
    else:
        await lease.release()

or, equivalently, ``async with await pool.acquire(...) as lease``.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any, Protocol, runtime_checkable

from pydantic import BaseModel, ConfigDict

from opconsole.exceptions import ResourceError
from opconsole.funds.money import normalize_text
from opconsole.models.job import ExecutionOptions

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Profile and session handles
# ---------------------------------------------------------------------------


class SessionProfile(BaseModel):
    """Effective browser configuration a session was created with."""

    model_config = ConfigDict(frozen=True)

    base_url: str
    headless: bool = True
    block_resources: bool = True
    timeout_ms: int = 30_000
    action_delay_ms: int = 0
    debug_tracing: bool = False

    @property
    def fast_profile(self) -> bool:
        return not self.debug_tracing and self.action_delay_ms == 0

    @classmethod
    def for_job(cls, options: ExecutionOptions, *, base_url: str, block_resources: bool) -> "SessionProfile":
        """Build the profile for a job's execution options."""
        return cls(
            base_url=base_url,
            headless=options.headless,
            block_resources=block_resources,
            timeout_ms=options.timeout_ms,
            action_delay_ms=options.action_delay_ms,
            debug_tracing=options.debug_tracing,
        )


@dataclass
class BrowserSession:
    """Browser, context and page triple owned by the pool or a single job."""

    browser: Any
    context: Any
    page: Any


@runtime_checkable
class SessionFactory(Protocol):
    """Creates and tears down browser sessions for the pool."""

    async def create(self, profile: SessionProfile) -> BrowserSession:
        """Launch a new session configured for *profile*."""
        ...

    async def close(self, session: BrowserSession) -> None:
        """Close the session's context and browser."""
        ...

    def apply_timeouts(self, session: BrowserSession, profile: SessionProfile) -> None:
        """Reapply *profile*'s default timeouts to a reused session."""
        ...


def build_cache_key(identity: str, profile: SessionProfile) -> str:
    """Return the pool key for *identity* under *profile*.

    >>> build_cache_key(" Agent01 ", SessionProfile(base_url="https://x", headless=False))
    'agent01|https://x|h=0|br=1'
    """
    return "|".join(
        [
            normalize_text(identity),
            profile.base_url,
            f"h={1 if profile.headless else 0}",
            f"br={1 if profile.block_resources else 0}",
        ]
    )


# ---------------------------------------------------------------------------
# Lease
# ---------------------------------------------------------------------------


class SessionLease:
    """Exclusive hold on a browser session.

    Exactly one of :meth:`release` or :meth:`invalidate` takes effect;
    further calls to either are no-ops.
    """

    def __init__(
        self,
        session: BrowserSession,
        *,
        key: str,
        reused: bool,
        pooled: bool,
        on_release: Callable[[], Awaitable[None]],
        on_invalidate: Callable[[], Awaitable[None]],
    ) -> None:
        self._session = session
        self.key = key
        self.reused = reused
        self.pooled = pooled
        self._on_release = on_release
        self._on_invalidate = on_invalidate
        self._released = False

    @property
    def browser(self) -> Any:
        return self._session.browser

    @property
    def context(self) -> Any:
        return self._session.context

    @property
    def page(self) -> Any:
        return self._session.page

    @property
    def released(self) -> bool:
        return self._released

    async def release(self) -> None:
        """Return the session to the pool (or close it if isolated)."""
        if self._released:
            return
        self._released = True
        await self._on_release()

    async def invalidate(self) -> None:
        """Tear the session down and drop it from the pool."""
        if self._released:
            return
        self._released = True
        await self._on_invalidate()

    async def __aenter__(self) -> "SessionLease":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        if exc_type is None:
            await self.release()
        else:
            await self.invalidate()


# ---------------------------------------------------------------------------
# Pool
# ---------------------------------------------------------------------------


@dataclass
class _PoolEntry:
    key: str
    session: BrowserSession
    created_at: float
    last_used_at: float


@dataclass
class _KeySlot:
    """Per-key lock plus the number of holders and waiters referencing it."""

    lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    refs: int = 0


class SessionPool:
    """Keyed pool of reusable browser sessions.

    Args:
        factory: Creates and closes the underlying browser sessions.
        enabled: When ``False`` every acquisition gets an isolated session.
        ttl_sec: Idle time after which a pooled session is evicted.
        max_agents: Maximum number of pooled sessions. The least recently
            used idle entry is evicted to make room; when every entry is
            leased the caller gets an isolated, unpooled session instead.
        clock: Monotonic clock in seconds.
    """

    def __init__(
        self,
        factory: SessionFactory,
        *,
        enabled: bool = True,
        ttl_sec: float = 600.0,
        max_agents: int = 8,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._factory = factory
        self.enabled = enabled
        self.ttl_sec = ttl_sec
        self.max_agents = max(1, max_agents)
        self._clock = clock
        self._entries: dict[str, _PoolEntry] = {}
        self._slots: dict[str, _KeySlot] = {}

    # ------------------------------------------------------------------
    # Acquisition
    # ------------------------------------------------------------------

    async def acquire(self, identity: str, profile: SessionProfile) -> SessionLease:
        """Lease a session for *identity*, waiting behind earlier holders of the same key.

        Raises:
            ResourceError: If a new browser session could not be created.
        """
        if not (self.enabled and profile.fast_profile):
            return await self._acquire_isolated(profile)

        key = build_cache_key(identity, profile)
        slot = self._slots.setdefault(key, _KeySlot())
        slot.refs += 1
        try:
            await slot.lock.acquire()
        except BaseException:
            self._drop_ref(key, slot)
            raise

        try:
            checked_out = await self._checkout(key, profile)
        except BaseException:
            self._unlock(key, slot)
            raise

        if checked_out is None:
            self._unlock(key, slot)
            logger.warning(
                "Session pool at capacity (%d) with every entry in use; using an isolated session", self.max_agents
            )
            return await self._acquire_isolated(profile)

        session, reused = checked_out

        return SessionLease(
            session,
            key=key,
            reused=reused,
            pooled=True,
            on_release=lambda: self._release(key, slot),
            on_invalidate=lambda: self._invalidate(key, slot),
        )

    async def _acquire_isolated(self, profile: SessionProfile) -> SessionLease:
        key = f"isolated:{int(time.time() * 1000)}"
        session = await self._create(profile)
        logger.debug("Created isolated session key=%s", key)

        async def _close() -> None:
            await self._teardown(key, session)

        return SessionLease(session, key=key, reused=False, pooled=False, on_release=_close, on_invalidate=_close)

    async def _checkout(self, key: str, profile: SessionProfile) -> tuple[BrowserSession, bool] | None:
        """Find or create the session for *key*. Caller holds the key lock.

        Returns ``None`` when the pool is full and no idle entry can be evicted.
        """
        await self._evict_expired(holder_key=key)

        entry = self._entries.get(key)
        if entry is not None and not self._is_usable(entry.session):
            logger.debug("Pooled session no longer usable key=%s", key)
            del self._entries[key]
            await self._teardown(key, entry.session)
            entry = None

        if entry is not None:
            entry.last_used_at = self._clock()
            self._factory.apply_timeouts(entry.session, profile)
            logger.debug("Reusing pooled session key=%s", key)
            return entry.session, True

        if not await self._make_room():
            return None
        session = await self._create(profile)
        now = self._clock()
        self._entries[key] = _PoolEntry(key=key, session=session, created_at=now, last_used_at=now)
        logger.debug("Created pooled session key=%s size=%d", key, len(self._entries))
        return session, False

    async def _create(self, profile: SessionProfile) -> BrowserSession:
        try:
            return await self._factory.create(profile)
        except Exception as exc:
            raise ResourceError(f"Could not start browser session: {exc}") from exc

    # ------------------------------------------------------------------
    # Release paths
    # ------------------------------------------------------------------

    async def _release(self, key: str, slot: _KeySlot) -> None:
        try:
            entry = self._entries.get(key)
            if entry is not None:
                entry.last_used_at = self._clock()
        finally:
            self._unlock(key, slot)

    async def _invalidate(self, key: str, slot: _KeySlot) -> None:
        try:
            entry = self._entries.pop(key, None)
            if entry is not None:
                logger.debug("Invalidating pooled session key=%s", key)
                await self._teardown(key, entry.session)
        finally:
            self._unlock(key, slot)

    def _unlock(self, key: str, slot: _KeySlot) -> None:
        slot.lock.release()
        self._drop_ref(key, slot)

    def _drop_ref(self, key: str, slot: _KeySlot) -> None:
        slot.refs -= 1
        if slot.refs <= 0 and self._slots.get(key) is slot:
            del self._slots[key]

    # ------------------------------------------------------------------
    # Eviction
    # ------------------------------------------------------------------

    def _in_use(self, key: str) -> bool:
        slot = self._slots.get(key)
        return slot is not None and slot.lock.locked()

    async def _evict_expired(self, holder_key: str | None = None) -> None:
        """Drop idle entries past the TTL. *holder_key* is locked by the caller, not by another job."""
        now = self._clock()
        expired = [
            entry
            for entry in self._entries.values()
            if now - entry.last_used_at > self.ttl_sec and (entry.key == holder_key or not self._in_use(entry.key))
        ]
        for entry in expired:
            self._entries.pop(entry.key, None)
            logger.debug("Evicting expired session key=%s", entry.key)
            await self._teardown(entry.key, entry.session)

    async def _make_room(self) -> bool:
        """Evict idle entries, oldest first, until a new entry fits under ``max_agents``."""
        while len(self._entries) >= self.max_agents:
            idle = [entry for entry in self._entries.values() if not self._in_use(entry.key)]
            if not idle:
                return False
            oldest = min(idle, key=lambda entry: entry.last_used_at)
            self._entries.pop(oldest.key, None)
            logger.debug("Evicting least recently used session key=%s", oldest.key)
            await self._teardown(oldest.key, oldest.session)
        return True

    @staticmethod
    def _is_usable(session: BrowserSession) -> bool:
        try:
            if session.page.is_closed():
                return False
            _ = session.page.url
        except Exception:
            return False
        return True

    async def _teardown(self, key: str, session: BrowserSession) -> None:
        try:
            await self._factory.close(session)
        except Exception as exc:
            logger.warning("Session teardown failed key=%s (non-fatal): %s", key, exc)

    # ------------------------------------------------------------------
    # Lifecycle and diagnostics
    # ------------------------------------------------------------------

    async def close_all(self) -> None:
        """Tear down every pooled session. Used on shutdown."""
        entries = list(self._entries.values())
        self._entries.clear()
        for entry in entries:
            await self._teardown(entry.key, entry.session)
        if entries:
            logger.info("Closed %d pooled session(s)", len(entries))

    def stats(self) -> dict[str, Any]:
        """Return a snapshot of pool occupancy for diagnostics."""
        return {
            "enabled": self.enabled,
            "size": len(self._entries),
            "max_agents": self.max_agents,
            "keys": sorted(self._entries),
            "active_locks": len(self._slots),
        }
