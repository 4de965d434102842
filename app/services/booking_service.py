"""
Booking service: intake, status transitions and branch-scoped reads.

Every write to a booking's status goes through ``apply_transition``, which
checks the state table and performs a compare-and-set on ``version`` so two
concurrent transitions of the same booking cannot both succeed.
"""
import logging
import uuid
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Dict, List, Optional, Tuple, Union

from pydantic import ValidationError
from sqlalchemy import select, func, update, delete, and_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from app.core.exceptions import ConflictFailure, NotFoundFailure, ValidationFailure
from app.core.permissions import AuthContext, branch_scope_clause, ensure_branch_access
from app.models.booking import Booking, BookingArticle, BookingStatus
from app.models.customer import Customer
from app.models.manifest import Manifest, LoadingRecord, ManifestStatus
from app.models.organization import Branch
from app.schemas.booking import BookingCreate
from app.services import booking_state_machine
from app.services.document_sequence_service import DocumentSequenceService

logger = logging.getLogger(__name__)


# Checked in this order; the first missing one is reported.
REQUIRED_FIELDS = (
    "consignor_name",
    "consignor_mobile",
    "consignor_address",
    "consignee_name",
    "consignee_mobile",
    "consignee_address",
    "destination_address",
    "from_branch_id",
    "to_branch_id",
    "articles",
)

_DATETIME_FIELDS = ("loaded_at", "dispatched_at", "delivered_at", "cancelled_at")


def _is_blank(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, str):
        return not value.strip()
    if isinstance(value, (list, tuple)):
        return len(value) == 0
    return False


def _first_error_field(exc: ValidationError) -> str:
    errors = exc.errors()
    if not errors:
        return "payload"
    return ".".join(str(part) for part in errors[0].get("loc", ())) or "payload"


class BookingService:
    """Service for booking intake and lifecycle."""

    def __init__(self, db: AsyncSession):
        self.db = db

    # ==================== LOOKUPS ====================

    async def _get_branch(self, auth: AuthContext, branch_id: uuid.UUID, label: str) -> Branch:
        result = await self.db.execute(
            select(Branch).where(
                Branch.id == branch_id,
                Branch.organization_id == auth.organization_id,
            )
        )
        branch = result.scalar_one_or_none()
        if not branch:
            raise NotFoundFailure(f"{label} not found", {"branch_id": str(branch_id)})
        return branch

    async def _get_customer(self, auth: AuthContext, customer_id: uuid.UUID) -> Customer:
        result = await self.db.execute(
            select(Customer).where(
                Customer.id == customer_id,
                Customer.organization_id == auth.organization_id,
                Customer.is_active == True,
            )
        )
        customer = result.scalar_one_or_none()
        if not customer:
            raise NotFoundFailure("Customer not found", {"customer_id": str(customer_id)})
        return customer

    async def _load_booking(self, auth: AuthContext, booking_id: uuid.UUID) -> Booking:
        """Fetch a booking in the caller's organization and branch scope."""
        result = await self.db.execute(
            select(Booking)
            .options(selectinload(Booking.articles))
            .execution_options(populate_existing=True)
            .where(
                Booking.id == booking_id,
                Booking.organization_id == auth.organization_id,
            )
        )
        booking = result.scalar_one_or_none()
        if not booking:
            raise NotFoundFailure("Booking not found", {"booking_id": str(booking_id)})
        ensure_branch_access(auth, booking.from_branch_id, booking.to_branch_id, entity="Booking")
        return booking

    # ==================== CREATE ====================

    @staticmethod
    def _coerce_create(payload: Union[BookingCreate, Dict[str, Any]]) -> BookingCreate:
        if isinstance(payload, BookingCreate):
            return payload
        try:
            return BookingCreate.model_validate(payload)
        except ValidationError as e:
            field = _first_error_field(e)
            raise ValidationFailure(f"{field} is invalid", {"field": field}) from e

    @staticmethod
    def _check_required(data: BookingCreate) -> None:
        for field in REQUIRED_FIELDS:
            if _is_blank(getattr(data, field)):
                raise ValidationFailure(f"{field} is required", {"field": field})

    @staticmethod
    def compute_totals(data: BookingCreate) -> Dict[str, Any]:
        """
        Derive package count, weight and amounts from the article lines.

        total = sum(article amount) + loading + unloading + insurance + packaging,
        where an article's amount defaults to quantity x rate.
        """
        freight = Decimal("0")
        weight = Decimal("0")
        packages = 0
        for article in data.articles or []:
            amount = article.amount if article.amount is not None else article.rate * article.quantity
            freight += amount
            weight += article.weight_kg
            packages += article.quantity

        total = (
            freight
            + data.loading_charges
            + data.unloading_charges
            + data.insurance_charge
            + data.packaging_charge
        )
        return {
            "package_count": packages,
            "weight_kg": weight,
            "freight_amount": freight,
            "total_amount": total,
        }

    async def create_booking(
        self,
        auth: AuthContext,
        payload: Union[BookingCreate, Dict[str, Any]],
    ) -> Booking:
        """
        Create a booking with a freshly allocated LR number.

        All checks run before the first write. The LR allocation, the
        booking row and its articles commit together; any failure rolls
        all of them back, including the counter increment.
        """
        data = self._coerce_create(payload)
        self._check_required(data)

        if data.customer_id:
            await self._get_customer(auth, data.customer_id)

        from_branch = await self._get_branch(auth, data.from_branch_id, "Origin branch")
        to_branch = await self._get_branch(auth, data.to_branch_id, "Destination branch")

        if not auth.is_elevated and auth.branch_id != from_branch.id:
            raise ValidationFailure(
                "Bookings can only be created from your own branch",
                {"from_branch_id": str(from_branch.id)},
            )

        totals = self.compute_totals(data)
        year = datetime.now(timezone.utc).year

        try:
            lr_number = await DocumentSequenceService(self.db).allocate_lr_number(
                from_branch.code, to_branch.code, year
            )

            booking = Booking(
                organization_id=auth.organization_id,
                lr_number=lr_number,
                from_branch_id=from_branch.id,
                to_branch_id=to_branch.id,
                customer_id=data.customer_id,
                consignor_name=data.consignor_name.strip(),
                consignor_mobile=data.consignor_mobile.strip(),
                consignor_address=data.consignor_address.strip(),
                consignor_gstin=data.consignor_gstin,
                consignee_name=data.consignee_name.strip(),
                consignee_mobile=data.consignee_mobile.strip(),
                consignee_address=data.consignee_address.strip(),
                consignee_gstin=data.consignee_gstin,
                destination_address=data.destination_address.strip(),
                declared_value=data.declared_value,
                payment_mode=data.payment_mode.value,
                loading_charges=data.loading_charges,
                unloading_charges=data.unloading_charges,
                insurance_charge=data.insurance_charge,
                packaging_charge=data.packaging_charge,
                remarks=data.remarks,
                status=BookingStatus.BOOKED.value,
                version=1,
                created_by=auth.caller_id,
                **totals,
            )
            booking.articles = [
                BookingArticle(
                    description=article.description,
                    quantity=article.quantity,
                    weight_kg=article.weight_kg,
                    rate=article.rate,
                    amount=article.amount if article.amount is not None else article.rate * article.quantity,
                )
                for article in data.articles
            ]
            self.db.add(booking)
            await self.db.flush()
            await self.db.commit()
        except IntegrityError as e:
            await self.db.rollback()
            logger.error(f"Booking insert conflicted: {e}")
            raise ConflictFailure("Booking conflicts with an existing record") from e
        except Exception:
            await self.db.rollback()
            raise

        logger.info(f"Booking {lr_number} created by {auth.caller_id} at branch {from_branch.code}")
        return await self._load_booking(auth, booking.id)

    # ==================== TRANSITIONS ====================

    @staticmethod
    def _coerce_payload(payload: Dict[str, Any]) -> Dict[str, Any]:
        """Turn JSON-shaped payload values into column types."""
        values = dict(payload)
        for field in _DATETIME_FIELDS:
            raw = values.get(field)
            if isinstance(raw, str):
                try:
                    values[field] = datetime.fromisoformat(raw.replace("Z", "+00:00"))
                except ValueError as e:
                    raise ValidationFailure(f"{field} is not a valid timestamp") from e
        raw = values.get("unloading_session_id")
        if isinstance(raw, str):
            try:
                values["unloading_session_id"] = uuid.UUID(raw)
            except ValueError as e:
                raise ValidationFailure("unloading_session_id is not a valid UUID") from e
        if "pod_data" in values and values["pod_data"] is not None and not isinstance(values["pod_data"], dict):
            raise ValidationFailure("pod_data must be an object")
        return values

    async def is_on_dispatched_manifest(self, booking_id: uuid.UUID) -> bool:
        """True if the booking is loaded on a manifest that is in transit."""
        result = await self.db.execute(
            select(func.count(LoadingRecord.id))
            .join(Manifest, Manifest.id == LoadingRecord.manifest_id)
            .where(
                LoadingRecord.booking_id == booking_id,
                Manifest.status == ManifestStatus.IN_TRANSIT.value,
            )
        )
        return (result.scalar() or 0) > 0

    async def apply_transition(
        self,
        booking: Booking,
        new_status: str,
        payload: Optional[Dict[str, Any]] = None,
    ) -> Booking:
        """
        Validate and write one transition without committing.

        The caller owns the transaction. Raises ConflictFailure if the
        booking's version moved since it was read.
        """
        payload = payload or {}
        current_status = booking.status

        booking_state_machine.validate_transition(current_status, new_status)
        booking_state_machine.validate_payload(payload)

        if (
            new_status != current_status
            and new_status == BookingStatus.IN_TRANSIT.value
            and not await self.is_on_dispatched_manifest(booking.id)
        ):
            raise ValidationFailure(
                "Booking can only move to in_transit on a dispatched manifest",
                {"booking_id": str(booking.id), "lr_number": booking.lr_number},
            )

        values = booking_state_machine.merge_payload(
            {"pod_data": booking.pod_data},
            self._coerce_payload(payload),
        )
        values["status"] = new_status
        values["version"] = booking.version + 1

        result = await self.db.execute(
            update(Booking)
            .where(Booking.id == booking.id, Booking.version == booking.version)
            .values(**values)
            .execution_options(synchronize_session="evaluate")
        )
        if result.rowcount != 1:
            raise ConflictFailure(
                f"Booking {booking.lr_number} was modified concurrently",
                {"booking_id": str(booking.id), "expected_version": booking.version},
            )

        logger.debug(f"Booking {booking.lr_number}: {current_status} -> {new_status}")
        return booking

    async def transition(
        self,
        auth: AuthContext,
        booking_id: uuid.UUID,
        new_status: str,
        payload: Optional[Dict[str, Any]] = None,
    ) -> Booking:
        """
        Move a booking to ``new_status`` and merge ``payload`` into it.

        A transition to the current status is a plain merge-patch.
        """
        booking = await self._load_booking(auth, booking_id)
        try:
            await self.apply_transition(booking, new_status, payload)
            await self.db.commit()
        except Exception:
            await self.db.rollback()
            raise

        logger.info(f"Booking {booking.lr_number} moved to {new_status} by {auth.caller_id}")
        return await self._load_booking(auth, booking_id)

    async def cancel_booking(
        self,
        auth: AuthContext,
        booking_id: uuid.UUID,
        reason: str,
    ) -> Booking:
        """Cancel a booking that has not left its origin. Drops its pending loading link."""
        if _is_blank(reason):
            raise ValidationFailure("reason is required", {"field": "reason"})

        booking = await self._load_booking(auth, booking_id)
        if not booking_state_machine.can_cancel(booking.status):
            raise ValidationFailure(
                f"Cannot cancel booking in '{booking.status}' status",
                {"booking_id": str(booking.id), "status": booking.status},
            )

        try:
            if booking.status == BookingStatus.LOADING.value:
                await self.db.execute(
                    delete(LoadingRecord).where(LoadingRecord.booking_id == booking.id)
                )
            await self.apply_transition(
                booking,
                BookingStatus.CANCELLED.value,
                {
                    "cancelled_at": datetime.now(timezone.utc),
                    "cancellation_reason": reason.strip(),
                },
            )
            await self.db.commit()
        except Exception:
            await self.db.rollback()
            raise

        logger.info(f"Booking {booking.lr_number} cancelled by {auth.caller_id}: {reason}")
        return await self._load_booking(auth, booking_id)

    # ==================== READS ====================

    async def get_booking(self, auth: AuthContext, booking_id: uuid.UUID) -> Booking:
        return await self._load_booking(auth, booking_id)

    async def get_by_lr_number(self, auth: AuthContext, lr_number: str) -> Booking:
        """Look up a booking by its LR number within the caller's scope."""
        result = await self.db.execute(
            select(Booking.id).where(
                Booking.lr_number == lr_number.strip().upper(),
                Booking.organization_id == auth.organization_id,
            )
        )
        booking_id = result.scalar_one_or_none()
        if not booking_id:
            raise NotFoundFailure("Booking not found", {"lr_number": lr_number})
        return await self._load_booking(auth, booking_id)

    async def list_bookings(
        self,
        auth: AuthContext,
        status: Optional[str] = None,
        page: int = 1,
        size: int = 20,
    ) -> Tuple[List[Booking], int]:
        """Get paginated bookings visible to the caller, newest first."""
        filters = [
            Booking.organization_id == auth.organization_id,
            branch_scope_clause(auth, [Booking.from_branch_id, Booking.to_branch_id]),
        ]
        if status:
            if status not in booking_state_machine.all_statuses():
                raise ValidationFailure(f"Unknown booking status '{status}'")
            filters.append(Booking.status == status)

        count_stmt = select(func.count(Booking.id)).where(and_(*filters))
        total = (await self.db.execute(count_stmt)).scalar() or 0

        stmt = (
            select(Booking)
            .where(and_(*filters))
            .order_by(Booking.created_at.desc())
            .offset((page - 1) * size)
            .limit(size)
        )
        result = await self.db.execute(stmt)
        return list(result.scalars().all()), total
