"""
Concurrency safety tests.

Demonstrates:
1. The distributed lock admits one holder and never releases another's key.
2. Replayed or reordered feed records cannot roll a booking back.
3. A newer remote write wins over the local cache (last-write-wins).
"""

from __future__ import annotations

from datetime import timedelta
from unittest.mock import AsyncMock

import pytest

from src.domain.enums import CanonicalPhase
from src.domain.errors import InvalidState
from src.domain import transitions as tx
from src.infrastructure.locks import DistributedLock, LockUnavailable
from tests.conftest import make_draft, walk_to


class TestDistributedLock:
    """Redis lock logic (mocked Redis)."""

    @pytest.mark.asyncio
    async def test_acquire_succeeds(self):
        mock_redis = AsyncMock()
        mock_redis.set = AsyncMock(return_value=True)

        lock = DistributedLock(mock_redis, "request_expiry", ttl_seconds=10)
        assert await lock.acquire() is True
        mock_redis.set.assert_awaited_once_with(
            "lock:request_expiry", lock.token, nx=True, ex=10
        )

    @pytest.mark.asyncio
    async def test_acquire_fails_if_held(self):
        mock_redis = AsyncMock()
        mock_redis.set = AsyncMock(return_value=None)

        lock = DistributedLock(mock_redis, "request_expiry")
        assert await lock.acquire() is False

    @pytest.mark.asyncio
    async def test_release_reports_foreign_owner(self):
        mock_redis = AsyncMock()
        mock_redis.eval = AsyncMock(return_value=0)

        lock = DistributedLock(mock_redis, "request_expiry")
        assert await lock.release() is False
        mock_redis.eval.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_held_compares_token(self):
        mock_redis = AsyncMock()
        lock = DistributedLock(mock_redis, "request_expiry")
        mock_redis.get = AsyncMock(return_value=lock.token)
        assert await lock.held()
        mock_redis.get = AsyncMock(return_value="someone-else")
        assert not await lock.held()

    @pytest.mark.asyncio
    async def test_context_manager_acquire_fail_raises(self):
        mock_redis = AsyncMock()
        mock_redis.set = AsyncMock(return_value=False)

        lock = DistributedLock(mock_redis, "request_expiry")
        with pytest.raises(LockUnavailable, match="Could not acquire lock"):
            async with lock:
                pass
        mock_redis.eval.assert_not_called()


class TestFeedReplay:
    @pytest.mark.asyncio
    async def test_replayed_record_cannot_roll_back(self, store, clock):
        booking = await store.create_booking(make_draft(clock))
        await walk_to(store, booking.id, tx.OFFER_SENT, tx.OFFER_ACCEPTED)
        current = store.get(booking.id)

        replay = {
            "id": booking.id,
            "payment_confirmation_status": "offer_sent",
            "updated_at": current.updated_at - timedelta(seconds=30),
        }
        await store.upsert(replay, from_feed=True)

        assert store.get(booking.id).phase is CanonicalPhase.PAYMENT_PENDING


class TestLastWriteWins:
    @pytest.mark.asyncio
    async def test_newer_remote_write_overrides_local_transition(self, store, clock):
        booking = await store.create_booking(make_draft(clock))
        await walk_to(store, booking.id, tx.OFFER_SENT)
        local = store.get(booking.id)

        # Passenger cancelled from another device just after the offer landed.
        remote = {
            "id": booking.id,
            "payment_confirmation_status": "cancelled",
            "updated_at": local.updated_at + timedelta(seconds=1),
        }
        await store.upsert(remote, from_feed=True)

        assert store.get(booking.id).phase is CanonicalPhase.CANCELLED
        with pytest.raises(InvalidState):
            await walk_to(store, booking.id, tx.OFFER_ACCEPTED)
