"""
Document Sequence Service for Atomic Number Generation

FORMATS:
    LR   - {ORIGIN}-{DEST}-{YEAR}-{SEQ}   e.g. DEL-BOM-2026-00001
    OGPL - OGPL-{YEAR}-{SEQ}              e.g. OGPL-2026-00001

The sequence scope for LR numbers is (origin, destination, year) across
all organizations: LR and OGPL numbers are unique system-wide, and two
organizations may both have a DEL and a BOM branch. Every allocation is a
single INSERT ... ON CONFLICT DO UPDATE ... RETURNING statement: the
counter row is created or incremented
atomically and the row stays locked until the caller's transaction ends.
Allocation runs inside the caller's transaction, so a booking that fails
to persist also gives its number back.

USAGE:
    from app.services.document_sequence_service import DocumentSequenceService

    async def create_booking(db: AsyncSession):
        service = DocumentSequenceService(db)
        lr_number = await service.allocate_lr_number("DEL", "BOM", 2026)
        # Returns: DEL-BOM-2026-00001
        ...
        await db.commit()
"""

import logging
import re
import uuid
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import select
from sqlalchemy.exc import InterfaceError, OperationalError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.exceptions import ConflictFailure, TransientStoreFailure, ValidationFailure
from app.models.document_sequence import DocumentSequence


logger = logging.getLogger(__name__)


LR_NUMBER_PATTERN = re.compile(r"^[A-Z]{3}-[A-Z]{3}-\d{4}-\d{5}$")
BRANCH_CODE_PATTERN = re.compile(r"^[A-Z]{3}$")

SEQUENCE_PADDING = 5
MAX_SEQUENCE = 10 ** SEQUENCE_PADDING - 1

OGPL_SCOPE = "OGPL"


def lr_scope(origin_code: str, dest_code: str) -> str:
    return f"LR:{origin_code}-{dest_code}"


def format_lr_number(origin_code: str, dest_code: str, year: int, sequence: int) -> str:
    """Format an LR number, e.g. DEL-BOM-2026-00001."""
    return f"{origin_code}-{dest_code}-{year:04d}-{sequence:0{SEQUENCE_PADDING}d}"


def parse_lr_sequence(lr_number: str) -> int:
    """Extract the SEQ part of a well-formed LR number."""
    if not LR_NUMBER_PATTERN.match(lr_number):
        raise ValidationFailure(f"Invalid LR number: {lr_number}")
    return int(lr_number.rsplit("-", 1)[1])


class DocumentSequenceService:
    """
    Service for generating atomic document numbers.

    Features:
    - Atomic create-or-increment in one statement (no read-then-write)
    - Counter increment shares the caller's transaction
    - Separate counter per (scope, year), shared by all organizations
    """

    def __init__(self, db: AsyncSession):
        self.db = db

    def _insert_construct(self):
        """Pick the dialect-specific INSERT that supports ON CONFLICT."""
        dialect = self.db.get_bind().dialect.name
        if dialect == "postgresql":
            from sqlalchemy.dialects.postgresql import insert
        elif dialect == "sqlite":
            from sqlalchemy.dialects.sqlite import insert
        else:
            raise NotImplementedError(f"Atomic sequence upsert not supported on {dialect}")
        return insert

    async def _increment(self, scope: str, year: int) -> int:
        """
        Reserve the next counter value for a scope.

        Creates the counter row at 1 on first use, otherwise adds one.
        Returns the reserved value.
        """
        insert = self._insert_construct()
        now = datetime.now(timezone.utc)

        stmt = (
            insert(DocumentSequence)
            .values(
                id=uuid.uuid4(),
                scope=scope,
                year=year,
                current_number=1,
                created_at=now,
                updated_at=now,
            )
            .on_conflict_do_update(
                index_elements=["scope", "year"],
                set_={
                    "current_number": DocumentSequence.current_number + 1,
                    "updated_at": now,
                },
            )
            .returning(DocumentSequence.current_number)
        )

        try:
            result = await self.db.execute(stmt)
        except (OperationalError, InterfaceError) as e:
            logger.error(f"Sequence increment failed for {scope}/{year}: {e}")
            raise TransientStoreFailure(
                f"Failed to allocate number for {scope}/{year}",
                {"scope": scope, "year": year},
            ) from e

        number = result.scalar_one()
        if number > MAX_SEQUENCE:
            raise ConflictFailure(
                f"Sequence exhausted for {scope}/{year}",
                {"scope": scope, "year": year},
            )
        return number

    async def allocate_lr_number(
        self,
        origin_code: str,
        dest_code: str,
        year: int,
    ) -> str:
        """
        Allocate the next LR number for a route and year.

        The caller must commit (or roll back) the surrounding transaction;
        the counter row stays locked until then.

        Args:
            origin_code: Three-letter origin branch code
            dest_code: Three-letter destination branch code
            year: Four-digit booking year

        Returns:
            Formatted LR number, e.g., DEL-BOM-2026-00001

        Raises:
            ValidationFailure: If a branch code or year is malformed
            ConflictFailure: If the scope has used all five-digit values
            TransientStoreFailure: If the store could not increment the counter
        """
        for field, code in (("origin branch code", origin_code), ("destination branch code", dest_code)):
            if not code or not BRANCH_CODE_PATTERN.match(code):
                raise ValidationFailure(f"Invalid {field}: {code!r}")
        if not 1000 <= year <= 9999:
            raise ValidationFailure(f"Invalid booking year: {year}")

        sequence = await self._increment(lr_scope(origin_code, dest_code), year)
        lr_number = format_lr_number(origin_code, dest_code, year, sequence)
        logger.debug(f"Reserved LR number {lr_number}")
        return lr_number

    async def allocate_ogpl_number(self, year: int) -> str:
        """Allocate the next OGPL (manifest) number, e.g. OGPL-2026-00001."""
        sequence = await self._increment(OGPL_SCOPE, year)
        return f"OGPL-{year:04d}-{sequence:0{SEQUENCE_PADDING}d}"

    async def get_current_number(self, scope: str, year: int) -> int:
        """
        Get the last issued sequence number (0 if the scope is unused).
        """
        result = await self.db.execute(
            select(DocumentSequence.current_number)
            .where(
                DocumentSequence.scope == scope,
                DocumentSequence.year == year,
            )
        )
        current = result.scalar_one_or_none()
        return current or 0

    async def preview_next_lr_number(
        self,
        origin_code: str,
        dest_code: str,
        year: Optional[int] = None,
    ) -> str:
        """
        Preview what the next LR number would be without reserving it.

        The preview is advisory only: a concurrent booking may take it.
        """
        year = year or datetime.now(timezone.utc).year
        current = await self.get_current_number(lr_scope(origin_code, dest_code), year)
        return format_lr_number(origin_code, dest_code, year, current + 1)
