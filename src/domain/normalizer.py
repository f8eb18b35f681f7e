"""
Status normalizer.

A booking carries several overlapping status columns inherited from
schema evolution (``status``, ``ride_status``,
``payment_confirmation_status`` and the driver's ``ride_stage``).  They
can disagree transiently, so nothing reads them directly: every consumer
asks :func:`normalize` for the canonical phase.

Precedence (first match wins)
-----------------------------
1.  pcs == all_set and ride (status | stage) == completed -> completed
2.  pcs == cancelled                                      -> cancelled
3.  pcs == declined                                       -> declined
4.  pcs == all_set and an active ride stage is set        -> in_progress
5.  pcs == all_set                                        -> all_set
6.  pcs == offer_sent or ride_status == offer_sent        -> offer_sent
7.  pcs == waiting_for_payment                            -> payment_pending
8.  pcs == passenger_paid                                 -> paid_unconfirmed
9.  pcs in WAITING_FOR_OFFER_SYNONYMS                     -> requested
10. anything else                                         -> requested

Unknown or garbled values fall through to the default; the function
never raises.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any, Optional

from .enums import (
    ACTIVE_RIDE_STAGES,
    WAITING_FOR_OFFER_SYNONYMS,
    CanonicalPhase,
    PaymentConfirmationStatus as PCS,
    RideStage,
    RideStatus,
)

RAW_STATUS_FIELDS = ("status", "ride_status", "payment_confirmation_status", "ride_stage")


def _field(raw: Any, name: str) -> Optional[str]:
    if raw is None:
        return None
    if isinstance(raw, Mapping):
        value = raw.get(name)
    else:
        value = getattr(raw, name, None)
    if isinstance(value, str):
        value = value.strip().lower()
        return value or None
    return None


def normalize(raw: Any) -> CanonicalPhase:
    """Derive the single canonical phase from a raw booking record."""
    pcs = _field(raw, "payment_confirmation_status")
    ride_status = _field(raw, "ride_status")
    stage = _field(raw, "ride_stage")

    if pcs == PCS.ALL_SET.value and (
        ride_status == RideStatus.COMPLETED.value
        or stage == RideStage.COMPLETED.value
    ):
        return CanonicalPhase.COMPLETED
    if pcs == PCS.CANCELLED.value:
        return CanonicalPhase.CANCELLED
    if pcs == PCS.DECLINED.value:
        return CanonicalPhase.DECLINED
    if pcs == PCS.ALL_SET.value and stage in ACTIVE_RIDE_STAGES:
        return CanonicalPhase.IN_PROGRESS
    if pcs == PCS.ALL_SET.value:
        return CanonicalPhase.ALL_SET
    if pcs == PCS.OFFER_SENT.value or ride_status == RideStatus.OFFER_SENT.value:
        return CanonicalPhase.OFFER_SENT
    if pcs == PCS.WAITING_FOR_PAYMENT.value:
        return CanonicalPhase.PAYMENT_PENDING
    if pcs == PCS.PASSENGER_PAID.value:
        return CanonicalPhase.PAID_UNCONFIRMED
    if pcs in WAITING_FOR_OFFER_SYNONYMS:
        return CanonicalPhase.REQUESTED
    return CanonicalPhase.REQUESTED


def stage_of(raw: Any) -> Optional[RideStage]:
    """Active ride sub-stage, or ``None`` outside ``in_progress``."""
    if normalize(raw) is not CanonicalPhase.IN_PROGRESS:
        return None
    return RideStage(_field(raw, "ride_stage"))


# History rows store whatever status string the writer used at the time.
# This table folds legacy spellings into the canonical vocabulary.
_STATUS_SYNONYMS: dict[str, CanonicalPhase] = {
    "requested": CanonicalPhase.REQUESTED,
    "booking_requested": CanonicalPhase.REQUESTED,
    "waiting_for_offer": CanonicalPhase.REQUESTED,
    "pending": CanonicalPhase.REQUESTED,
    "pending_driver": CanonicalPhase.REQUESTED,
    "offer_sent": CanonicalPhase.OFFER_SENT,
    "offered": CanonicalPhase.OFFER_SENT,
    "offer_accepted": CanonicalPhase.PAYMENT_PENDING,
    "driver_accepted": CanonicalPhase.PAYMENT_PENDING,
    "waiting_for_payment": CanonicalPhase.PAYMENT_PENDING,
    "payment_pending": CanonicalPhase.PAYMENT_PENDING,
    "awaiting_payment": CanonicalPhase.PAYMENT_PENDING,
    "passenger_paid": CanonicalPhase.PAID_UNCONFIRMED,
    "paid_unconfirmed": CanonicalPhase.PAID_UNCONFIRMED,
    "payment_confirmed": CanonicalPhase.PAID_UNCONFIRMED,
    "all_set": CanonicalPhase.ALL_SET,
    "paid": CanonicalPhase.ALL_SET,
    "driver_assigned": CanonicalPhase.ALL_SET,
    "in_progress": CanonicalPhase.IN_PROGRESS,
    "completed": CanonicalPhase.COMPLETED,
    "cancelled": CanonicalPhase.CANCELLED,
    "cancelled_by_driver": CanonicalPhase.CANCELLED,
    "expired": CanonicalPhase.CANCELLED,
    "declined": CanonicalPhase.DECLINED,
    "passenger_rejected": CanonicalPhase.DECLINED,
    "offer_rejected": CanonicalPhase.DECLINED,
}
_STATUS_SYNONYMS.update({s: CanonicalPhase.IN_PROGRESS for s in ACTIVE_RIDE_STAGES})


def phase_for_status(status: Any) -> CanonicalPhase:
    """Map a free-text history status onto a canonical phase (never raises)."""
    if not isinstance(status, str):
        return CanonicalPhase.REQUESTED
    return _STATUS_SYNONYMS.get(status.strip().lower(), CanonicalPhase.REQUESTED)
