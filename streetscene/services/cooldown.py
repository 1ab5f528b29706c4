# ─────────────────────────────────────────────────────────────────────────────
# Cooldown Limiter — fixed per-identity window before expensive model calls
# ─────────────────────────────────────────────────────────────────────────────
# One shared slot per identity: describe, synthesize, and the composed call
# all read and write the same last-request timestamp.
#
# Sequence per run: lock(identity) → check → (resolve token) → record.
# The in-process lock stops two requests from one identity interleaving;
# record() is a compare-and-set against the value check() saw, which also
# covers multiple server processes sharing a store.
# ─────────────────────────────────────────────────────────────────────────────

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator, Callable
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import datetime
from weakref import WeakValueDictionary

import structlog

from streetscene.exceptions import CooldownActiveError
from streetscene.pipeline.types import utcnow
from streetscene.store.quota_store import QuotaStore

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class CooldownTicket:
    """Proof that check() passed, carrying the timestamp it observed."""

    identity: str
    observed: datetime | None


def remaining_minutes(
    last_request_at: datetime | None, now: datetime, window_minutes: int
) -> int:
    """Minutes left in the window, or 0 when a new request is allowed.

    Elapsed time is floored to whole minutes and clamped at zero, so the
    result is always in [0, window_minutes].
    """
    if last_request_at is None:
        return 0
    elapsed = max(0, int((now - last_request_at).total_seconds() // 60))
    if elapsed < window_minutes:
        return window_minutes - elapsed
    return 0


class CooldownLimiter:
    """Per-identity cooldown gate over a QuotaStore."""

    def __init__(
        self,
        store: QuotaStore,
        window_minutes: int = 10,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._store = store
        self._window = window_minutes
        self._clock = clock
        self._locks: WeakValueDictionary[str, asyncio.Lock] = WeakValueDictionary()

    @property
    def window_minutes(self) -> int:
        return self._window

    @asynccontextmanager
    async def guard(self, identity: str) -> AsyncIterator[None]:
        """Serialize gate sequences for one identity within this process."""
        lock = self._locks.get(identity)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[identity] = lock
        async with lock:
            yield

    async def check(self, identity: str) -> CooldownTicket:
        """Raise CooldownActiveError if the identity is inside its window."""
        last = await self._store.get_last_request(identity)
        remaining = remaining_minutes(last, self._clock(), self._window)
        if remaining:
            logger.info("cooldown_active", identity=identity, retry_after_minutes=remaining)
            raise CooldownActiveError(remaining)
        return CooldownTicket(identity=identity, observed=last)

    async def record(self, ticket: CooldownTicket) -> datetime:
        """Consume the window. Raises CooldownActiveError if another request won the slot."""
        now = self._clock()
        stamp = now if ticket.observed is None else max(now, ticket.observed)
        if await self._store.compare_and_set_last_request(ticket.identity, ticket.observed, stamp):
            logger.info("cooldown_recorded", identity=ticket.identity)
            return stamp

        current = await self._store.get_last_request(ticket.identity)
        remaining = remaining_minutes(current, now, self._window) or self._window
        logger.warning(
            "cooldown_race_lost",
            identity=ticket.identity,
            retry_after_minutes=remaining,
        )
        raise CooldownActiveError(remaining)
