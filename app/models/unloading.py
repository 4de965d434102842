"""Unloading (receipt) models."""
import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import TYPE_CHECKING, Optional, List

from sqlalchemy import String, DateTime, ForeignKey, Integer, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.database import Base
from app.db_types import UUIDType, JSONType

if TYPE_CHECKING:
    from app.models.manifest import Manifest


class UnloadingStep(str, Enum):
    """Steps of the unloading workflow, in execution order."""
    VALIDATED = "validated"
    SESSION_CREATED = "session_created"
    LEGACY_RECORD = "legacy_record"
    MANIFEST_UNLOADED = "manifest_unloaded"
    BOOKINGS_UPDATED = "bookings_updated"


UNLOADING_STEP_ORDER: List[str] = [step.value for step in UnloadingStep]


class UnloadingProgressStatus(str, Enum):
    IN_PROGRESS = "in_progress"
    FAILED = "failed"
    COMPLETED = "completed"


class UnloadingSession(Base):
    """
    Immutable audit record of one receipt event for one manifest.
    Created once per unloading; never updated.
    """
    __tablename__ = "unloading_sessions"

    id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        primary_key=True,
        default=uuid.uuid4
    )
    organization_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        ForeignKey("organizations.id", ondelete="RESTRICT"),
        nullable=False,
        index=True
    )
    manifest_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        ForeignKey("manifests.id", ondelete="RESTRICT"),
        nullable=False,
        index=True
    )
    branch_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        ForeignKey("branches.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
        comment="Receiving branch"
    )
    unloaded_by: Mapped[Optional[uuid.UUID]] = mapped_column(UUIDType, nullable=True)

    # Tallies
    total_items: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    items_good: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    items_damaged: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    items_missing: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    unloaded_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
        index=True
    )

    manifest: Mapped["Manifest"] = relationship("Manifest")

    def __repr__(self) -> str:
        return (
            f"<UnloadingSession(manifest={self.manifest_id}, good={self.items_good}, "
            f"damaged={self.items_damaged}, missing={self.items_missing})>"
        )


class UnloadingRecord(Base):
    """
    Legacy-format unloading record kept for older readers.
    Written best-effort; the session is the source of truth.
    """
    __tablename__ = "unloading_records"

    id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        primary_key=True,
        default=uuid.uuid4
    )
    manifest_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        ForeignKey("manifests.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    session_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        ForeignKey("unloading_sessions.id", ondelete="CASCADE"),
        unique=True,
        nullable=False
    )
    unloaded_by: Mapped[Optional[uuid.UUID]] = mapped_column(UUIDType, nullable=True)
    conditions: Mapped[dict] = mapped_column(JSONType, nullable=False)
    unloaded_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False
    )


class UnloadingProgress(Base):
    """
    Step cursor for the unloading workflow.

    One row per manifest. The unique manifest_id doubles as the
    in-progress guard: a second concurrent unloading of the same manifest
    cannot claim the row. A failed run leaves the cursor behind so a retry
    resumes after the last committed step.
    """
    __tablename__ = "unloading_progress"

    id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        primary_key=True,
        default=uuid.uuid4
    )
    manifest_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        ForeignKey("manifests.id", ondelete="CASCADE"),
        unique=True,
        nullable=False
    )
    session_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUIDType,
        ForeignKey("unloading_sessions.id", ondelete="SET NULL"),
        nullable=True
    )
    status: Mapped[str] = mapped_column(
        String(20),
        default=UnloadingProgressStatus.IN_PROGRESS.value,
        nullable=False,
        comment="in_progress, failed, completed"
    )
    last_completed_step: Mapped[str] = mapped_column(
        String(30),
        default=UnloadingStep.VALIDATED.value,
        nullable=False
    )
    processed_booking_ids: Mapped[List[str]] = mapped_column(
        JSONType,
        default=list,
        nullable=False
    )
    last_error: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    attempts: Mapped[int] = mapped_column(Integer, default=1, nullable=False)

    started_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
        nullable=False
    )

    def has_completed(self, step: UnloadingStep) -> bool:
        """Check whether the cursor is at or past a step."""
        return UNLOADING_STEP_ORDER.index(self.last_completed_step) >= UNLOADING_STEP_ORDER.index(step.value)

    def __repr__(self) -> str:
        return f"<UnloadingProgress(manifest={self.manifest_id}, step='{self.last_completed_step}', status='{self.status}')>"
