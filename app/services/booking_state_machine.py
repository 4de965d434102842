"""
Booking State Machine

Single source of truth for booking status transitions.

    booked → loading → in_transit → unloaded → delivered
       └────────┴──→ cancelled

Transitions only move forward. Cancellation is allowed before the vehicle
leaves. A transition to the current status is a plain merge-patch of the
payload and is always allowed.
"""

from typing import Dict, List

from app.core.exceptions import ValidationFailure
from app.models.booking import BookingStatus


# =============================================================================
# TRANSITION RULES
# =============================================================================

# Format: current_status -> [list of allowed next statuses]
BOOKING_TRANSITIONS: Dict[str, List[str]] = {
    BookingStatus.BOOKED.value: [
        BookingStatus.LOADING.value,      # Attached to an OGPL
        BookingStatus.CANCELLED.value,
    ],
    BookingStatus.LOADING.value: [
        BookingStatus.IN_TRANSIT.value,   # OGPL dispatched
        BookingStatus.CANCELLED.value,
    ],
    BookingStatus.IN_TRANSIT.value: [
        BookingStatus.UNLOADED.value,     # Received at destination
    ],
    BookingStatus.UNLOADED.value: [
        BookingStatus.DELIVERED.value,    # POD resolved
    ],
    BookingStatus.DELIVERED.value: [],    # Terminal
    BookingStatus.CANCELLED.value: [],    # Terminal
}

# Fields a transition payload may set. Anything else is rejected.
PATCHABLE_FIELDS = frozenset({
    "loaded_at",
    "dispatched_at",
    "delivered_at",
    "cancelled_at",
    "cancellation_reason",
    "unloading_status",
    "unloading_session_id",
    "pod_status",
    "pod_data",
    "remarks",
})


def all_statuses() -> List[str]:
    return list(BOOKING_TRANSITIONS.keys())


def can_transition(current_status: str, new_status: str) -> bool:
    """Check if a transition is allowed."""
    if current_status == new_status:
        return current_status in BOOKING_TRANSITIONS
    return new_status in BOOKING_TRANSITIONS.get(current_status, [])


def get_allowed_transitions(current_status: str) -> List[str]:
    return BOOKING_TRANSITIONS.get(current_status, [])


def validate_transition(current_status: str, new_status: str) -> None:
    """
    Validate a status transition. Raises ValidationFailure if invalid.
    """
    if new_status not in BOOKING_TRANSITIONS:
        raise ValidationFailure(f"Unknown booking status '{new_status}'")

    if can_transition(current_status, new_status):
        return

    allowed = get_allowed_transitions(current_status)
    if not allowed:
        raise ValidationFailure(
            f"Booking in '{current_status}' status cannot change status. This is a terminal state.",
            {"current_status": current_status, "requested_status": new_status},
        )
    raise ValidationFailure(
        f"Cannot transition booking from '{current_status}' to '{new_status}'",
        {
            "current_status": current_status,
            "requested_status": new_status,
            "allowed_transitions": allowed,
        },
    )


def validate_payload(payload: dict) -> None:
    """Reject payload keys a transition may not touch."""
    unknown = sorted(set(payload) - PATCHABLE_FIELDS)
    if unknown:
        raise ValidationFailure(
            f"Fields cannot be set by a status transition: {', '.join(unknown)}",
            {"fields": unknown},
        )


def merge_payload(current: dict, payload: dict) -> dict:
    """
    Merge a transition payload over the booking's current values.

    Top-level keys replace; ``pod_data`` is merged key by key so a later
    transition never drops POD fields written earlier.
    """
    merged = {}
    for key, value in payload.items():
        if key == "pod_data" and isinstance(value, dict):
            existing = current.get("pod_data") or {}
            merged[key] = {**existing, **value}
        else:
            merged[key] = value
    return merged


# =============================================================================
# STATUS CHECK HELPERS
# =============================================================================

def can_cancel(status: str) -> bool:
    return status in (BookingStatus.BOOKED.value, BookingStatus.LOADING.value)


def can_load(status: str) -> bool:
    return status == BookingStatus.BOOKED.value


def is_terminal(status: str) -> bool:
    return status in (BookingStatus.DELIVERED.value, BookingStatus.CANCELLED.value)
