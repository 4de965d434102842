"""Service for manifest (OGPL) lifecycle, loading and dispatch.

Manifest status writes are compare-and-set on the current status, so two
callers racing to dispatch (or complete) the same manifest cannot both win.
"""
import logging
from dataclasses import dataclass, field
from typing import List, Optional, Tuple
from datetime import datetime, timezone
import uuid

from sqlalchemy import select, func, update, and_
from sqlalchemy.exc import DBAPIError, IntegrityError
from sqlalchemy.orm import selectinload
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.exceptions import (
    ConflictFailure,
    NotFoundFailure,
    TransientStoreFailure,
    ValidationFailure,
)
from app.core.permissions import AuthContext, branch_scope_clause, ensure_branch_access
from app.models.booking import Booking, BookingStatus
from app.models.manifest import Manifest, LoadingRecord, ManifestStatus
from app.models.organization import Branch
from app.models.unloading import UnloadingSession
from app.models.vehicle import Vehicle
from app.schemas.manifest import ManifestCreate
from app.services import manifest_state_machine
from app.services.booking_service import BookingService
from app.services.document_sequence_service import DocumentSequenceService

logger = logging.getLogger(__name__)


# Read strategies for incoming manifests, most complete first
INCOMING_READ_VARIANTS = ("full", "flat")


@dataclass
class IncomingManifests:
    """Result of an incoming-manifest read and the variant that served it."""
    variant: str
    items: List[Manifest] = field(default_factory=list)

    @property
    def degraded(self) -> bool:
        return self.variant != INCOMING_READ_VARIANTS[0]

    @property
    def with_relations(self) -> bool:
        return not self.degraded


class ManifestService:
    """Service for manifest management, loading and dispatch."""

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

    async def _get_vehicle(self, auth: AuthContext, vehicle_id: uuid.UUID) -> Vehicle:
        result = await self.db.execute(
            select(Vehicle).where(
                Vehicle.id == vehicle_id,
                Vehicle.organization_id == auth.organization_id,
                Vehicle.is_active == True,
            )
        )
        vehicle = result.scalar_one_or_none()
        if not vehicle:
            raise NotFoundFailure("Vehicle not found", {"vehicle_id": str(vehicle_id)})
        return vehicle

    # ==================== MANIFEST CRUD ====================

    async def get_manifest(self, auth: AuthContext, manifest_id: uuid.UUID) -> Manifest:
        """Get a manifest with vehicle, branches and loaded bookings."""
        stmt = (
            select(Manifest)
            .options(
                selectinload(Manifest.vehicle),
                selectinload(Manifest.from_branch),
                selectinload(Manifest.to_branch),
                selectinload(Manifest.loading_records).selectinload(LoadingRecord.booking),
            )
            .execution_options(populate_existing=True)
            .where(
                Manifest.id == manifest_id,
                Manifest.organization_id == auth.organization_id,
            )
        )
        result = await self.db.execute(stmt)
        manifest = result.scalar_one_or_none()
        if not manifest:
            raise NotFoundFailure("Manifest not found", {"manifest_id": str(manifest_id)})
        ensure_branch_access(auth, manifest.from_branch_id, manifest.to_branch_id, entity="Manifest")
        return manifest

    async def list_manifests(
        self,
        auth: AuthContext,
        status: Optional[str] = None,
        page: int = 1,
        size: int = 20,
    ) -> Tuple[List[Manifest], int]:
        """Get paginated manifests touching the caller's branch."""
        filters = [
            Manifest.organization_id == auth.organization_id,
            branch_scope_clause(auth, [Manifest.from_branch_id, Manifest.to_branch_id]),
        ]
        if status:
            if status not in manifest_state_machine.MANIFEST_TRANSITIONS:
                raise ValidationFailure(f"Unknown manifest status '{status}'")
            filters.append(Manifest.status == status)

        count_stmt = select(func.count(Manifest.id)).where(and_(*filters))
        total = (await self.db.execute(count_stmt)).scalar() or 0

        stmt = (
            select(Manifest)
            .where(and_(*filters))
            .order_by(Manifest.created_at.desc())
            .offset((page - 1) * size)
            .limit(size)
        )
        result = await self.db.execute(stmt)
        return list(result.scalars().all()), total

    async def create_manifest(self, auth: AuthContext, data: ManifestCreate) -> Manifest:
        """Create an OGPL in ``created`` status with a new OGPL number."""
        await self._get_vehicle(auth, data.vehicle_id)
        from_branch = await self._get_branch(auth, data.from_branch_id, "Origin branch")
        await self._get_branch(auth, data.to_branch_id, "Destination branch")

        if not auth.is_elevated and auth.branch_id != from_branch.id:
            raise ValidationFailure(
                "Manifests can only be created from your own branch",
                {"from_branch_id": str(from_branch.id)},
            )

        try:
            ogpl_number = await DocumentSequenceService(self.db).allocate_ogpl_number(
                datetime.now(timezone.utc).year
            )
            manifest = Manifest(
                organization_id=auth.organization_id,
                ogpl_number=ogpl_number,
                vehicle_id=data.vehicle_id,
                from_branch_id=data.from_branch_id,
                to_branch_id=data.to_branch_id,
                transit_date=data.transit_date,
                primary_driver_name=data.primary_driver_name.strip(),
                primary_driver_mobile=data.primary_driver_mobile.strip(),
                secondary_driver_name=data.secondary_driver_name,
                secondary_driver_mobile=data.secondary_driver_mobile,
                seal_number=data.seal_number,
                remarks=data.remarks,
                status=ManifestStatus.CREATED.value,
                created_by=auth.caller_id,
            )
            self.db.add(manifest)
            await self.db.commit()
        except IntegrityError as e:
            await self.db.rollback()
            raise ConflictFailure("Manifest conflicts with an existing record") from e
        except Exception:
            await self.db.rollback()
            raise

        logger.info(f"Manifest {ogpl_number} created by {auth.caller_id}")
        return await self.get_manifest(auth, manifest.id)

    # ==================== INCOMING ====================

    def _incoming_filters(self, auth: AuthContext) -> list:
        return [
            Manifest.organization_id == auth.organization_id,
            Manifest.status == ManifestStatus.IN_TRANSIT.value,
            branch_scope_clause(auth, [Manifest.to_branch_id]),
        ]

    async def _read_incoming_full(self, auth: AuthContext) -> List[Manifest]:
        stmt = (
            select(Manifest)
            .options(
                selectinload(Manifest.vehicle),
                selectinload(Manifest.from_branch),
                selectinload(Manifest.to_branch),
                selectinload(Manifest.loading_records).selectinload(LoadingRecord.booking),
            )
            .where(and_(*self._incoming_filters(auth)))
            .order_by(Manifest.dispatched_at.desc())
        )
        result = await self.db.execute(stmt)
        return list(result.scalars().all())

    async def _read_incoming_flat(self, auth: AuthContext) -> List[Manifest]:
        stmt = (
            select(Manifest)
            .where(and_(*self._incoming_filters(auth)))
            .order_by(Manifest.dispatched_at.desc())
        )
        result = await self.db.execute(stmt)
        return list(result.scalars().all())

    async def get_incoming_manifests(self, auth: AuthContext) -> IncomingManifests:
        """
        In-transit manifests headed for the caller's branch.

        Tries each read variant in order and returns the first that
        succeeds, tagged with its name. The branch filter applies to every
        variant.
        """
        readers = {
            "full": self._read_incoming_full,
            "flat": self._read_incoming_flat,
        }
        last_error: Optional[Exception] = None

        for variant in INCOMING_READ_VARIANTS:
            try:
                items = await readers[variant](auth)
            except DBAPIError as e:
                await self.db.rollback()
                logger.warning(f"Incoming manifest read '{variant}' failed: {e}")
                last_error = e
                continue
            if variant != INCOMING_READ_VARIANTS[0]:
                logger.warning(f"Incoming manifests served by degraded read '{variant}'")
            return IncomingManifests(variant=variant, items=items)

        raise TransientStoreFailure(
            "Could not read incoming manifests",
            {"variants": list(INCOMING_READ_VARIANTS)},
        ) from last_error

    # ==================== LOADING ====================

    async def add_bookings(
        self,
        auth: AuthContext,
        manifest_id: uuid.UUID,
        booking_ids: List[uuid.UUID],
    ) -> Manifest:
        """
        Load bookings onto a manifest that has not been dispatched.

        Every booking must be ``booked``, on the manifest's route and not
        already on an active manifest. All bookings load or none do.
        """
        booking_ids = list(dict.fromkeys(booking_ids))
        if not booking_ids:
            raise ValidationFailure("booking_ids is required", {"field": "booking_ids"})

        manifest = await self.get_manifest(auth, manifest_id)
        if not auth.can_access(manifest.from_branch_id):
            raise ValidationFailure("Only the origin branch can load this manifest")
        if not manifest_state_machine.can_load(manifest.status):
            raise ValidationFailure(
                f"Cannot add bookings to manifest in '{manifest.status}' status",
                {"manifest_id": str(manifest.id), "status": manifest.status},
            )

        result = await self.db.execute(
            select(Booking).where(
                Booking.id.in_(booking_ids),
                Booking.organization_id == auth.organization_id,
            )
        )
        bookings = {booking.id: booking for booking in result.scalars().all()}
        missing = [str(booking_id) for booking_id in booking_ids if booking_id not in bookings]
        if missing:
            raise NotFoundFailure("Booking not found", {"booking_ids": missing})

        for booking in bookings.values():
            if booking.status != BookingStatus.BOOKED.value:
                raise ValidationFailure(
                    f"Booking {booking.lr_number} is '{booking.status}' and cannot be loaded",
                    {"booking_id": str(booking.id), "status": booking.status},
                )
            if (booking.from_branch_id, booking.to_branch_id) != (manifest.from_branch_id, manifest.to_branch_id):
                raise ValidationFailure(
                    f"Booking {booking.lr_number} is not on this manifest's route",
                    {"booking_id": str(booking.id)},
                )

        linked = await self.db.execute(
            select(LoadingRecord.booking_id)
            .join(Manifest, Manifest.id == LoadingRecord.manifest_id)
            .where(
                LoadingRecord.booking_id.in_(booking_ids),
                Manifest.status.in_(manifest_state_machine.ACTIVE_STATUSES),
            )
        )
        already_linked = [str(booking_id) for booking_id in linked.scalars().all()]
        if already_linked:
            raise ConflictFailure(
                "Bookings are already loaded on an active manifest",
                {"booking_ids": already_linked},
            )

        now = datetime.now(timezone.utc)
        booking_service = BookingService(self.db)
        try:
            for booking_id in booking_ids:
                self.db.add(LoadingRecord(
                    manifest_id=manifest.id,
                    booking_id=booking_id,
                    loaded_by=auth.caller_id,
                    loaded_at=now,
                ))
                await booking_service.apply_transition(
                    bookings[booking_id],
                    BookingStatus.LOADING.value,
                    {"loaded_at": now},
                )
            await self.db.commit()
        except IntegrityError as e:
            await self.db.rollback()
            raise ConflictFailure(
                "Bookings are already loaded on this manifest",
                {"manifest_id": str(manifest.id)},
            ) from e
        except Exception:
            await self.db.rollback()
            raise

        logger.info(f"Loaded {len(booking_ids)} bookings onto {manifest.ogpl_number}")
        return await self.get_manifest(auth, manifest.id)

    async def dispatch_manifest(self, auth: AuthContext, manifest_id: uuid.UUID) -> Manifest:
        """
        Send the vehicle: manifest to ``in_transit``, then every loaded
        booking to ``in_transit``, in one transaction.
        """
        manifest = await self.get_manifest(auth, manifest_id)
        if not auth.can_access(manifest.from_branch_id):
            raise ValidationFailure("Only the origin branch can dispatch this manifest")
        manifest_state_machine.validate_transition(manifest.status, ManifestStatus.IN_TRANSIT.value)

        loaded = [
            record.booking for record in manifest.loading_records
            if record.booking.status == BookingStatus.LOADING.value
        ]
        if not loaded:
            raise ValidationFailure(
                "Cannot dispatch a manifest with no bookings loaded",
                {"manifest_id": str(manifest.id)},
            )

        now = datetime.now(timezone.utc)
        booking_service = BookingService(self.db)
        try:
            await self._compare_and_set_status(
                manifest,
                ManifestStatus.CREATED.value,
                ManifestStatus.IN_TRANSIT.value,
                dispatched_at=now,
            )
            for booking in loaded:
                await booking_service.apply_transition(
                    booking,
                    BookingStatus.IN_TRANSIT.value,
                    {"dispatched_at": now},
                )
            await self.db.commit()
        except Exception:
            await self.db.rollback()
            raise

        logger.info(f"Manifest {manifest.ogpl_number} dispatched with {len(loaded)} bookings")
        return await self.get_manifest(auth, manifest.id)

    async def complete_manifest(self, auth: AuthContext, manifest_id: uuid.UUID) -> Manifest:
        """Close an unloaded manifest. Requires its unloading session."""
        manifest = await self.get_manifest(auth, manifest_id)
        manifest_state_machine.validate_transition(manifest.status, ManifestStatus.COMPLETED.value)

        sessions = await self.db.execute(
            select(func.count(UnloadingSession.id)).where(UnloadingSession.manifest_id == manifest.id)
        )
        if not sessions.scalar():
            raise ValidationFailure(
                "Manifest has no unloading session",
                {"manifest_id": str(manifest.id)},
            )

        try:
            await self._compare_and_set_status(
                manifest,
                ManifestStatus.UNLOADED.value,
                ManifestStatus.COMPLETED.value,
                completed_at=datetime.now(timezone.utc),
            )
            await self.db.commit()
        except Exception:
            await self.db.rollback()
            raise

        logger.info(f"Manifest {manifest.ogpl_number} completed by {auth.caller_id}")
        return await self.get_manifest(auth, manifest.id)

    async def mark_unloaded(self, manifest: Manifest) -> None:
        """Move an in-transit manifest to ``unloaded``. No-op if already there. Does not commit."""
        if manifest.status == ManifestStatus.UNLOADED.value:
            return
        manifest_state_machine.validate_transition(manifest.status, ManifestStatus.UNLOADED.value)
        await self._compare_and_set_status(
            manifest,
            ManifestStatus.IN_TRANSIT.value,
            ManifestStatus.UNLOADED.value,
            unloaded_at=datetime.now(timezone.utc),
        )

    async def _compare_and_set_status(
        self,
        manifest: Manifest,
        expected: str,
        new_status: str,
        **values,
    ) -> None:
        result = await self.db.execute(
            update(Manifest)
            .where(Manifest.id == manifest.id, Manifest.status == expected)
            .values(status=new_status, **values)
            .execution_options(synchronize_session="evaluate")
        )
        if result.rowcount != 1:
            raise ConflictFailure(
                f"Manifest {manifest.ogpl_number} is no longer '{expected}'",
                {"manifest_id": str(manifest.id), "expected_status": expected},
            )
        logger.debug(f"Manifest {manifest.ogpl_number}: {expected} -> {new_status}")
