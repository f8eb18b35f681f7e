"""
Unit tests for the status normalizer.

Every combination of raw values (including garbage) must map to exactly
one canonical phase without raising.
"""

from __future__ import annotations

import itertools

import pytest

from src.domain.enums import CanonicalPhase, RideStage
from src.domain.normalizer import normalize, phase_for_status, stage_of

PCS_VALUES = [
    None, "", "waiting_for_offer", "pending", "pending_driver", "offer_sent",
    "waiting_for_payment", "passenger_paid", "all_set", "declined", "cancelled",
    "  ALL_SET ", "???", 42,
]
RIDE_STATUS_VALUES = [None, "pending_driver", "offer_sent", "completed", "expired", 7]
STAGE_VALUES = [None, "driver_heading_to_pickup", "in_transit", "completed", "teleporting"]


class TestTotality:
    def test_every_combination_yields_one_phase(self):
        for pcs, ride_status, stage in itertools.product(
            PCS_VALUES, RIDE_STATUS_VALUES, STAGE_VALUES
        ):
            raw = {
                "payment_confirmation_status": pcs,
                "ride_status": ride_status,
                "ride_stage": stage,
            }
            assert isinstance(normalize(raw), CanonicalPhase)

    def test_none_and_empty_records(self):
        assert normalize(None) is CanonicalPhase.REQUESTED
        assert normalize({}) is CanonicalPhase.REQUESTED

    def test_objects_are_read_by_attribute(self):
        class Row:
            payment_confirmation_status = "all_set"
            ride_status = None
            ride_stage = "in_transit"

        assert normalize(Row()) is CanonicalPhase.IN_PROGRESS


class TestPrecedence:
    @pytest.mark.parametrize(
        "raw, expected",
        [
            ({"payment_confirmation_status": "all_set", "ride_status": "completed"}, CanonicalPhase.COMPLETED),
            ({"payment_confirmation_status": "all_set", "ride_stage": "completed"}, CanonicalPhase.COMPLETED),
            ({"payment_confirmation_status": "cancelled", "ride_status": "offer_sent"}, CanonicalPhase.CANCELLED),
            ({"payment_confirmation_status": "declined"}, CanonicalPhase.DECLINED),
            ({"payment_confirmation_status": "all_set", "ride_stage": "passenger_onboard"}, CanonicalPhase.IN_PROGRESS),
            ({"payment_confirmation_status": "all_set"}, CanonicalPhase.ALL_SET),
            ({"payment_confirmation_status": "offer_sent"}, CanonicalPhase.OFFER_SENT),
            ({"payment_confirmation_status": "waiting_for_offer", "ride_status": "offer_sent"}, CanonicalPhase.OFFER_SENT),
            ({"payment_confirmation_status": "waiting_for_payment"}, CanonicalPhase.PAYMENT_PENDING),
            ({"payment_confirmation_status": "passenger_paid"}, CanonicalPhase.PAID_UNCONFIRMED),
            ({"payment_confirmation_status": "pending_driver"}, CanonicalPhase.REQUESTED),
        ],
    )
    def test_rule_order(self, raw, expected):
        assert normalize(raw) is expected

    def test_completed_ride_status_without_all_set_is_not_completed(self):
        raw = {"payment_confirmation_status": "passenger_paid", "ride_status": "completed"}
        assert normalize(raw) is CanonicalPhase.PAID_UNCONFIRMED

    def test_values_are_trimmed_and_case_folded(self):
        assert normalize({"payment_confirmation_status": " Declined "}) is CanonicalPhase.DECLINED

    def test_waiting_synonyms_all_mean_requested(self):
        for value in ("waiting_for_offer", "pending", "pending_driver"):
            assert normalize({"payment_confirmation_status": value}) is CanonicalPhase.REQUESTED

    def test_offer_accepted_is_never_produced(self):
        for pcs, ride_status, stage in itertools.product(
            PCS_VALUES, RIDE_STATUS_VALUES, STAGE_VALUES
        ):
            raw = {
                "payment_confirmation_status": pcs,
                "ride_status": ride_status,
                "ride_stage": stage,
            }
            assert normalize(raw) is not CanonicalPhase.OFFER_ACCEPTED


class TestStage:
    def test_stage_only_inside_in_progress(self):
        assert stage_of({"payment_confirmation_status": "all_set", "ride_stage": "in_transit"}) is RideStage.IN_TRANSIT
        assert stage_of({"payment_confirmation_status": "passenger_paid", "ride_stage": "in_transit"}) is None
        assert stage_of({"payment_confirmation_status": "all_set", "ride_stage": "teleporting"}) is None


class TestHistoryStatus:
    @pytest.mark.parametrize(
        "status, expected",
        [
            ("offer_sent", CanonicalPhase.OFFER_SENT),
            ("driver_accepted", CanonicalPhase.PAYMENT_PENDING),
            ("Passenger_Paid", CanonicalPhase.PAID_UNCONFIRMED),
            ("in_transit", CanonicalPhase.IN_PROGRESS),
            ("expired", CanonicalPhase.CANCELLED),
            ("nonsense", CanonicalPhase.REQUESTED),
            (None, CanonicalPhase.REQUESTED),
        ],
    )
    def test_legacy_spellings(self, status, expected):
        assert phase_for_status(status) is expected
