"""Manifest (OGPL) models for outbound dispatch."""
import uuid
from datetime import datetime, date, timezone
from enum import Enum
from typing import TYPE_CHECKING, Optional, List

from sqlalchemy import String, Date, DateTime, ForeignKey, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.database import Base
from app.db_types import UUIDType

if TYPE_CHECKING:
    from app.models.organization import Branch
    from app.models.vehicle import Vehicle
    from app.models.booking import Booking


class ManifestStatus(str, Enum):
    """Manifest status enumeration."""
    CREATED = "created"         # Being loaded at origin
    IN_TRANSIT = "in_transit"   # Vehicle dispatched
    UNLOADED = "unloaded"       # Received at destination
    COMPLETED = "completed"     # Closed after unloading


class Manifest(Base):
    """
    OGPL: one vehicle trip carrying a batch of bookings
    from an origin branch to a destination branch.
    """
    __tablename__ = "manifests"

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

    # Identification
    ogpl_number: Mapped[str] = mapped_column(
        String(30),
        unique=True,
        nullable=False,
        index=True,
        comment="Unique OGPL number e.g., OGPL-2026-00001"
    )

    vehicle_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        ForeignKey("vehicles.id", ondelete="RESTRICT"),
        nullable=False,
        index=True
    )

    # Route
    from_branch_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        ForeignKey("branches.id", ondelete="RESTRICT"),
        nullable=False,
        index=True
    )
    to_branch_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        ForeignKey("branches.id", ondelete="RESTRICT"),
        nullable=False,
        index=True
    )
    transit_date: Mapped[date] = mapped_column(Date, nullable=False)

    # Status
    status: Mapped[str] = mapped_column(
        String(20),
        default=ManifestStatus.CREATED.value,
        nullable=False,
        index=True,
        comment="created, in_transit, unloaded, completed"
    )

    # Driver details
    primary_driver_name: Mapped[str] = mapped_column(String(200), nullable=False)
    primary_driver_mobile: Mapped[str] = mapped_column(String(20), nullable=False)
    secondary_driver_name: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)
    secondary_driver_mobile: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)

    seal_number: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    remarks: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    created_by: Mapped[Optional[uuid.UUID]] = mapped_column(UUIDType, nullable=True)
    dispatched_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    unloaded_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
        index=True
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
        nullable=False
    )

    # Relationships
    vehicle: Mapped["Vehicle"] = relationship("Vehicle")
    from_branch: Mapped["Branch"] = relationship("Branch", foreign_keys=[from_branch_id])
    to_branch: Mapped["Branch"] = relationship("Branch", foreign_keys=[to_branch_id])
    loading_records: Mapped[List["LoadingRecord"]] = relationship(
        "LoadingRecord",
        back_populates="manifest",
        cascade="all, delete-orphan"
    )

    def __repr__(self) -> str:
        return f"<Manifest(number='{self.ogpl_number}', status='{self.status}')>"


class LoadingRecord(Base):
    """
    Link between a manifest and a booking loaded onto it.
    """
    __tablename__ = "loading_records"
    __table_args__ = (
        UniqueConstraint("manifest_id", "booking_id", name="uq_loading_manifest_booking"),
    )

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
    booking_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        ForeignKey("bookings.id", ondelete="RESTRICT"),
        nullable=False,
        index=True
    )
    loaded_by: Mapped[Optional[uuid.UUID]] = mapped_column(UUIDType, nullable=True)
    loaded_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False
    )

    # Relationships
    manifest: Mapped["Manifest"] = relationship(
        "Manifest",
        back_populates="loading_records"
    )
    booking: Mapped["Booking"] = relationship("Booking")

    def __repr__(self) -> str:
        return f"<LoadingRecord(manifest={self.manifest_id}, booking={self.booking_id})>"
