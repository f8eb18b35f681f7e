"""Domain enumerations: lifecycle vocabulary, raw status values, roles."""

import enum


class CanonicalPhase(str, enum.Enum):
    REQUESTED = "requested"
    OFFER_SENT = "offer_sent"
    OFFER_ACCEPTED = "offer_accepted"
    PAYMENT_PENDING = "payment_pending"
    PAID_UNCONFIRMED = "paid_unconfirmed"
    ALL_SET = "all_set"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    DECLINED = "declined"


TERMINAL_PHASES: frozenset[CanonicalPhase] = frozenset(
    {CanonicalPhase.COMPLETED, CanonicalPhase.CANCELLED, CanonicalPhase.DECLINED}
)

# Position along the happy path; terminal branches sit outside it.
PHASE_ORDER: dict[CanonicalPhase, int] = {
    CanonicalPhase.REQUESTED: 0,
    CanonicalPhase.OFFER_SENT: 1,
    CanonicalPhase.OFFER_ACCEPTED: 2,
    CanonicalPhase.PAYMENT_PENDING: 3,
    CanonicalPhase.PAID_UNCONFIRMED: 4,
    CanonicalPhase.ALL_SET: 5,
    CanonicalPhase.IN_PROGRESS: 6,
    CanonicalPhase.COMPLETED: 7,
}


class RideStage(str, enum.Enum):
    HEADING_TO_PICKUP = "driver_heading_to_pickup"
    ARRIVED_AT_PICKUP = "driver_arrived_at_pickup"
    PASSENGER_ONBOARD = "passenger_onboard"
    IN_TRANSIT = "in_transit"
    ARRIVED_AT_DROPOFF = "driver_arrived_at_dropoff"
    COMPLETED = "completed"


RIDE_STAGE_SEQUENCE: tuple[RideStage, ...] = (
    RideStage.HEADING_TO_PICKUP,
    RideStage.ARRIVED_AT_PICKUP,
    RideStage.PASSENGER_ONBOARD,
    RideStage.IN_TRANSIT,
    RideStage.ARRIVED_AT_DROPOFF,
    RideStage.COMPLETED,
)

ACTIVE_RIDE_STAGES: frozenset[str] = frozenset(
    s.value for s in RIDE_STAGE_SEQUENCE if s is not RideStage.COMPLETED
)


class RideStatus(str, enum.Enum):
    """Values written to the legacy ``ride_status`` column."""

    PENDING_DRIVER = "pending_driver"
    OFFER_SENT = "offer_sent"
    DRIVER_ACCEPTED = "driver_accepted"
    PASSENGER_REJECTED = "passenger_rejected"
    ALL_SET = "all_set"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    EXPIRED = "expired"


class PaymentConfirmationStatus(str, enum.Enum):
    WAITING_FOR_OFFER = "waiting_for_offer"
    OFFER_SENT = "offer_sent"
    WAITING_FOR_PAYMENT = "waiting_for_payment"
    PASSENGER_PAID = "passenger_paid"
    ALL_SET = "all_set"
    DECLINED = "declined"
    CANCELLED = "cancelled"


# One canonical synonym set for "no offer yet", applied everywhere.
WAITING_FOR_OFFER_SYNONYMS: frozenset[str] = frozenset(
    {"waiting_for_offer", "pending", "pending_driver"}
)


class ActorRole(str, enum.Enum):
    PASSENGER = "passenger"
    DRIVER = "driver"
    DISPATCHER = "dispatcher"
    SYSTEM = "system"


class Channel(str, enum.Enum):
    IN_APP = "in_app"
    EMAIL = "email"
    PUSH = "push"
    SOUND = "sound"


class Category(str, enum.Enum):
    BOOKING_UPDATES = "booking_updates"
    COUNTERPART_MESSAGES = "counterpart_messages"
    PROMOTIONS = "promotions"


class Concern(str, enum.Enum):
    """Which change-feed channel a subscription listens to."""

    BOOKING = "booking"
    OFFERS = "offers"


class OfferStatus(str, enum.Enum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    DECLINED = "declined"
    WITHDRAWN = "withdrawn"


PHASE_LABELS: dict[CanonicalPhase, str] = {
    CanonicalPhase.REQUESTED: "Ride Requested",
    CanonicalPhase.OFFER_SENT: "Offer Sent",
    CanonicalPhase.OFFER_ACCEPTED: "Offer Accepted",
    CanonicalPhase.PAYMENT_PENDING: "Payment Pending",
    CanonicalPhase.PAID_UNCONFIRMED: "Payment Sent",
    CanonicalPhase.ALL_SET: "All Set - Ready to Go",
    CanonicalPhase.IN_PROGRESS: "Ride In Progress",
    CanonicalPhase.COMPLETED: "Ride Completed",
    CanonicalPhase.CANCELLED: "Ride Cancelled",
    CanonicalPhase.DECLINED: "Offer Declined",
}

STAGE_LABELS: dict[RideStage, str] = {
    RideStage.HEADING_TO_PICKUP: "Driver En Route",
    RideStage.ARRIVED_AT_PICKUP: "Driver Arrived",
    RideStage.PASSENGER_ONBOARD: "Ride Started",
    RideStage.IN_TRANSIT: "In Transit",
    RideStage.ARRIVED_AT_DROPOFF: "Arrived at Destination",
    RideStage.COMPLETED: "Ride Completed",
}
