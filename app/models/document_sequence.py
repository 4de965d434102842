"""
Document Sequence Model for Atomic Number Generation

One counter row per (scope, year), shared by every organization so that
LR and OGPL numbers stay globally unique:

• LR numbers:   scope "LR:DEL-BOM", formatted DEL-BOM-2026-00001
• OGPL numbers: scope "OGPL",       formatted OGPL-2026-00001

The row is created and incremented by a single atomic upsert, so the
counter is never read and written back in two steps.
"""

import uuid
from datetime import datetime, timezone

from sqlalchemy import String, Integer, DateTime, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from app.database import Base
from app.db_types import UUIDType


class DocumentSequence(Base):
    """
    Document sequence counter.

    Example:
        scope = "LR:DEL-BOM"
        year = 2026
        current_number = 42
        → Next LR number: DEL-BOM-2026-00043
    """
    __tablename__ = "document_sequences"
    __table_args__ = (
        UniqueConstraint(
            "scope", "year",
            name="uq_document_sequence_scope_year"
        ),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        primary_key=True,
        default=uuid.uuid4
    )
    scope: Mapped[str] = mapped_column(
        String(30),
        nullable=False,
        comment="LR:{ORIGIN}-{DEST} or OGPL"
    )
    year: Mapped[int] = mapped_column(Integer, nullable=False)

    # Sequence Counter
    current_number: Mapped[int] = mapped_column(
        Integer,
        default=0,
        nullable=False,
        comment="Last issued sequence number"
    )

    created_at: Mapped[datetime] = mapped_column(
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

    def __repr__(self) -> str:
        return f"<DocumentSequence({self.scope}/{self.year}: {self.current_number})>"
