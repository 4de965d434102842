"""
Unloading Notification Hook

The unloading workflow announces each completed receipt through a notifier.
Delivery (SMS, email, push) is owned by a separate service; the notifier here
only logs the event. A notifier failure never fails the unloading.
"""
import logging
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Protocol
from uuid import uuid4

from app.models.unloading import UnloadingSession


logger = logging.getLogger(__name__)


class NotificationType(str, Enum):
    """Events the engine announces."""
    UNLOADING_COMPLETED = "unloading_completed"


class Notifier(Protocol):
    async def unloading_completed(self, session: UnloadingSession) -> None:
        ...


class LoggingNotifier:
    """Notifier that records events in the application log."""

    def build_event(self, session: UnloadingSession) -> Dict[str, Any]:
        return {
            "notification_id": str(uuid4()),
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "type": NotificationType.UNLOADING_COMPLETED.value,
            "session_id": str(session.id),
            "manifest_id": str(session.manifest_id),
            "branch_id": str(session.branch_id),
            "total_items": session.total_items,
            "items_damaged": session.items_damaged,
            "items_missing": session.items_missing,
        }

    async def unloading_completed(self, session: UnloadingSession) -> None:
        event = self.build_event(session)
        logger.info(
            f"[NOTIFICATION] {event['type']} manifest={event['manifest_id']} "
            f"damaged={event['items_damaged']} missing={event['items_missing']}"
        )


async def notify_unloading_completed(notifier: Notifier, session: UnloadingSession) -> None:
    """Fire-and-forget: log and drop any notifier error."""
    try:
        await notifier.unloading_completed(session)
    except Exception as e:
        logger.error(f"Unloading notification failed for session {session.id}: {e}")
