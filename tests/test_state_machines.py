"""Tests for booking and manifest transition tables"""
import pytest

from app.core.exceptions import ValidationFailure
from app.services import booking_state_machine as bsm
from app.services import manifest_state_machine as msm


@pytest.mark.parametrize("current,new", [
    ("booked", "loading"),
    ("booked", "cancelled"),
    ("loading", "in_transit"),
    ("loading", "cancelled"),
    ("in_transit", "unloaded"),
    ("unloaded", "delivered"),
    ("in_transit", "in_transit"),
])
def test_allowed_booking_transitions(current, new):
    assert bsm.can_transition(current, new)
    bsm.validate_transition(current, new)


@pytest.mark.parametrize("current,new", [
    ("booked", "in_transit"),
    ("booked", "unloaded"),
    ("in_transit", "cancelled"),
    ("in_transit", "loading"),
    ("unloaded", "in_transit"),
    ("delivered", "cancelled"),
    ("cancelled", "booked"),
])
def test_rejected_booking_transitions(current, new):
    assert not bsm.can_transition(current, new)
    with pytest.raises(ValidationFailure):
        bsm.validate_transition(current, new)


def test_terminal_states_report_no_transitions():
    with pytest.raises(ValidationFailure) as exc_info:
        bsm.validate_transition("delivered", "unloaded")
    assert "terminal" in exc_info.value.message


def test_unknown_status_rejected():
    with pytest.raises(ValidationFailure):
        bsm.validate_transition("booked", "lost")


def test_payload_whitelist():
    bsm.validate_payload({"pod_status": "pending", "remarks": "ok"})
    with pytest.raises(ValidationFailure) as exc_info:
        bsm.validate_payload({"total_amount": 0, "lr_number": "X"})
    assert exc_info.value.details["fields"] == ["lr_number", "total_amount"]


def test_merge_payload_keeps_existing_pod_fields():
    current = {"pod_data": {"condition": "good", "photo": "a.jpg"}}
    merged = bsm.merge_payload(current, {"pod_data": {"received_by": "R. Shah"}, "pod_status": "delivered"})

    assert merged["pod_data"] == {"condition": "good", "photo": "a.jpg", "received_by": "R. Shah"}
    assert merged["pod_status"] == "delivered"


def test_status_helpers():
    assert bsm.can_cancel("loading") and not bsm.can_cancel("in_transit")
    assert bsm.can_load("booked") and not bsm.can_load("loading")
    assert bsm.is_terminal("cancelled") and not bsm.is_terminal("unloaded")


def test_manifest_transitions_only_move_forward():
    assert msm.can_transition("created", "in_transit")
    assert msm.can_transition("in_transit", "unloaded")
    assert msm.can_transition("unloaded", "completed")
    assert not msm.can_transition("created", "unloaded")
    assert not msm.can_transition("completed", "created")
    with pytest.raises(ValidationFailure):
        msm.validate_transition("in_transit", "completed")


def test_manifest_loading_only_while_created():
    assert msm.can_load("created")
    assert not msm.can_load("in_transit")
    assert msm.is_active("in_transit") and not msm.is_active("unloaded")
