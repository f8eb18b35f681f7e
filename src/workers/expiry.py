"""
Background Request-Expiry Worker
================================

Runs every ``EXPIRY_INTERVAL_SECONDS`` (default 60 s).

Ride requests that no driver has answered within
``REQUEST_TIMEOUT_MINUTES`` are moved to ``cancelled`` through the
``request_timed_out`` transition, so the passenger is notified and the
timeline shows why the booking ended.

Concurrency safety
------------------
* **Redis distributed lock** ensures only one instance runs the expiry
  cycle at a time across multiple API processes.
* The transition re-checks the cached phase, so a request that received
  an offer between the query and the write is left alone.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import timedelta
from typing import Optional

from src.config import settings
from src.domain.entities import utcnow
from src.domain.enums import ActorRole
from src.domain.errors import BookingError
from src.domain.transitions import REQUEST_TIMED_OUT
from src.infrastructure.locks import DistributedLock
from src.infrastructure.redis_client import get_redis
from src.infrastructure.repositories import SqlPersistence
from src.sync.store import BookingStore

logger = logging.getLogger(__name__)

_task: asyncio.Task | None = None
_stop_event: asyncio.Event | None = None


# ── Public API ────────────────────────────────────────────────────────


async def start_expiry_loop(store: BookingStore, persistence: SqlPersistence) -> None:
    global _task, _stop_event
    _stop_event = asyncio.Event()
    _task = asyncio.create_task(_loop(store, persistence))
    logger.info(
        "Expiry worker started (interval=%ds, timeout=%dm)",
        settings.expiry_interval_seconds,
        settings.request_timeout_minutes,
    )


async def stop_expiry_loop() -> None:
    if _stop_event:
        _stop_event.set()
    if _task:
        _task.cancel()
        try:
            await _task
        except asyncio.CancelledError:
            pass
    logger.info("Expiry worker stopped")


# ── Internals ─────────────────────────────────────────────────────────


async def _loop(store: BookingStore, persistence: SqlPersistence) -> None:
    assert _stop_event is not None
    while not _stop_event.is_set():
        try:
            await run_expiry_cycle(store, persistence)
        except Exception:
            logger.exception("Unhandled error in expiry cycle")
        try:
            await asyncio.wait_for(
                _stop_event.wait(), timeout=settings.expiry_interval_seconds
            )
            break
        except asyncio.TimeoutError:
            pass


async def run_expiry_cycle(
    store: BookingStore,
    persistence: SqlPersistence,
    lock: Optional[DistributedLock] = None,
) -> int:
    """Execute one expiry cycle.  Returns the number of requests expired."""
    if lock is None:
        lock = DistributedLock(await get_redis(), "request_expiry", ttl_seconds=60)

    if not await lock.acquire():
        logger.debug("Lock held by another worker - skipping cycle")
        return 0

    expired = 0
    try:
        cutoff = utcnow() - timedelta(minutes=settings.request_timeout_minutes)
        for booking_id in await persistence.find_stale_requests(cutoff):
            try:
                await store.apply_transition(
                    booking_id, REQUEST_TIMED_OUT, actor=ActorRole.SYSTEM
                )
            except BookingError as exc:
                logger.info("Skipping expiry of %s: %s", booking_id, exc)
                continue
            expired += 1
        if expired:
            logger.info("Expiry cycle: %d requests timed out", expired)
    finally:
        await lock.release()

    return expired
