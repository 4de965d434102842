"""Booking (consignment) models."""
import uuid
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import TYPE_CHECKING, Optional, List

from sqlalchemy import String, DateTime, ForeignKey, Integer, Text, Numeric
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.database import Base
from app.db_types import UUIDType, JSONType

if TYPE_CHECKING:
    from app.models.organization import Branch
    from app.models.customer import Customer


class BookingStatus(str, Enum):
    """Booking lifecycle status."""
    BOOKED = "booked"           # Accepted at origin branch
    LOADING = "loading"         # Attached to an OGPL that has not left
    IN_TRANSIT = "in_transit"   # On a dispatched OGPL
    UNLOADED = "unloaded"       # Received at destination, POD pending
    DELIVERED = "delivered"     # Handed to consignee
    CANCELLED = "cancelled"     # Cancelled before dispatch


class PaymentMode(str, Enum):
    """How freight is paid."""
    PAID = "paid"
    TO_PAY = "to_pay"
    QUOTATION = "quotation"


class PODStatus(str, Enum):
    """Proof-of-delivery sub-status."""
    PENDING = "pending"
    DELIVERED = "delivered"


class UnloadingStatus(str, Enum):
    """Marker written by the unloading workflow."""
    UNLOADED = "unloaded"
    MISSING = "missing"


class Booking(Base):
    """
    One consignment, identified by its LR number.
    Never deleted; cancellation is a status.
    """
    __tablename__ = "bookings"

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
    lr_number: Mapped[str] = mapped_column(
        String(30),
        unique=True,
        nullable=False,
        index=True,
        comment="ORIGIN-DEST-YEAR-SEQ e.g. DEL-BOM-2026-00001"
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

    customer_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUIDType,
        ForeignKey("customers.id", ondelete="RESTRICT"),
        nullable=True,
        index=True
    )

    # Consignor
    consignor_name: Mapped[str] = mapped_column(String(200), nullable=False)
    consignor_mobile: Mapped[str] = mapped_column(String(20), nullable=False)
    consignor_address: Mapped[str] = mapped_column(Text, nullable=False)
    consignor_gstin: Mapped[Optional[str]] = mapped_column(String(15), nullable=True)

    # Consignee
    consignee_name: Mapped[str] = mapped_column(String(200), nullable=False)
    consignee_mobile: Mapped[str] = mapped_column(String(20), nullable=False)
    consignee_address: Mapped[str] = mapped_column(Text, nullable=False)
    consignee_gstin: Mapped[Optional[str]] = mapped_column(String(15), nullable=True)

    destination_address: Mapped[str] = mapped_column(Text, nullable=False)

    # Goods
    package_count: Mapped[int] = mapped_column(Integer, default=0)
    weight_kg: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=Decimal("0"))
    declared_value: Mapped[Decimal] = mapped_column(Numeric(14, 2), default=Decimal("0"))

    # Charges
    payment_mode: Mapped[str] = mapped_column(
        String(20),
        default=PaymentMode.PAID.value,
        nullable=False,
        comment="paid, to_pay, quotation"
    )
    freight_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=Decimal("0"))
    loading_charges: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=Decimal("0"))
    unloading_charges: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=Decimal("0"))
    insurance_charge: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=Decimal("0"))
    packaging_charge: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=Decimal("0"))
    total_amount: Mapped[Decimal] = mapped_column(Numeric(14, 2), default=Decimal("0"))

    remarks: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # Lifecycle
    status: Mapped[str] = mapped_column(
        String(20),
        default=BookingStatus.BOOKED.value,
        nullable=False,
        index=True,
        comment="booked, loading, in_transit, unloaded, delivered, cancelled"
    )
    version: Mapped[int] = mapped_column(
        Integer,
        default=1,
        nullable=False,
        comment="Bumped on every status write; compare-and-set guard"
    )
    loaded_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    dispatched_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    delivered_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    cancelled_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    cancellation_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # Proof of delivery (written by unloading)
    unloading_status: Mapped[Optional[str]] = mapped_column(
        String(20),
        nullable=True,
        comment="unloaded, missing"
    )
    unloading_session_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUIDType,
        ForeignKey("unloading_sessions.id", ondelete="SET NULL"),
        nullable=True
    )
    pod_status: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    pod_data: Mapped[Optional[dict]] = mapped_column(
        JSONType,
        nullable=True,
        comment="condition, remarks, photo, unloaded_at"
    )

    created_by: Mapped[Optional[uuid.UUID]] = mapped_column(UUIDType, nullable=True)

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
    from_branch: Mapped["Branch"] = relationship("Branch", foreign_keys=[from_branch_id])
    to_branch: Mapped["Branch"] = relationship("Branch", foreign_keys=[to_branch_id])
    customer: Mapped[Optional["Customer"]] = relationship("Customer")
    articles: Mapped[List["BookingArticle"]] = relationship(
        "BookingArticle",
        back_populates="booking",
        cascade="all, delete-orphan"
    )

    def __repr__(self) -> str:
        return f"<Booking(lr='{self.lr_number}', status='{self.status}')>"


class BookingArticle(Base):
    """One article line of a booking."""
    __tablename__ = "booking_articles"

    id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        primary_key=True,
        default=uuid.uuid4
    )
    booking_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        ForeignKey("bookings.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    description: Mapped[str] = mapped_column(String(255), nullable=False)
    quantity: Mapped[int] = mapped_column(Integer, default=1, nullable=False)
    weight_kg: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=Decimal("0"))
    rate: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=Decimal("0"))
    amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=Decimal("0"))

    booking: Mapped["Booking"] = relationship("Booking", back_populates="articles")

    def __repr__(self) -> str:
        return f"<BookingArticle(description='{self.description}', qty={self.quantity})>"
