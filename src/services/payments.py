"""
Payment reconciliation.

The passenger marks a booking as paid (``paid_unconfirmed``); the
payment confirmation only lands once an external oracle agrees.  This is
the single place that asks it, keeping payment I/O out of the normalizer
and the dispatcher.
"""

from __future__ import annotations

import logging
from typing import Protocol

from src.domain.enums import ActorRole, CanonicalPhase
from src.domain.transitions import PAYMENT_CONFIRMED
from src.sync.store import BookingStore

logger = logging.getLogger(__name__)


class PaymentOracle(Protocol):
    async def is_paid(self, booking_id: str) -> bool: ...


async def reconcile_payment(
    store: BookingStore, oracle: PaymentOracle, booking_id: str
) -> CanonicalPhase:
    """Confirm payment for *booking_id* if the oracle reports it settled."""
    booking = await store.load(booking_id)
    if booking.phase is not CanonicalPhase.PAID_UNCONFIRMED:
        return booking.phase

    if not await oracle.is_paid(booking_id):
        logger.info("Payment for %s not settled yet", booking_id)
        return booking.phase

    await store.apply_transition(booking_id, PAYMENT_CONFIRMED, actor=ActorRole.SYSTEM)
    return store.get(booking_id).phase
