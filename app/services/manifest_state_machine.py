"""
Manifest (OGPL) State Machine

    created → in_transit → unloaded → completed

Loading attaches bookings while the manifest is ``created``; dispatch
moves it to ``in_transit``; the unloading workflow moves it to
``unloaded``; closing it afterwards makes it ``completed``.
"""

from typing import Dict, List

from app.core.exceptions import ValidationFailure
from app.models.manifest import ManifestStatus


MANIFEST_TRANSITIONS: Dict[str, List[str]] = {
    ManifestStatus.CREATED.value: [ManifestStatus.IN_TRANSIT.value],
    ManifestStatus.IN_TRANSIT.value: [ManifestStatus.UNLOADED.value],
    ManifestStatus.UNLOADED.value: [ManifestStatus.COMPLETED.value],
    ManifestStatus.COMPLETED.value: [],
}

# Manifests a booking may still be attached to
ACTIVE_STATUSES = (ManifestStatus.CREATED.value, ManifestStatus.IN_TRANSIT.value)


def can_transition(current_status: str, new_status: str) -> bool:
    return new_status in MANIFEST_TRANSITIONS.get(current_status, [])


def validate_transition(current_status: str, new_status: str) -> None:
    if not can_transition(current_status, new_status):
        raise ValidationFailure(
            f"Cannot change manifest from '{current_status}' to '{new_status}'",
            {"current_status": current_status, "requested_status": new_status},
        )


def can_load(status: str) -> bool:
    return status == ManifestStatus.CREATED.value


def is_active(status: str) -> bool:
    return status in ACTIVE_STATUSES
