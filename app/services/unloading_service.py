"""
Unloading Workflow

Receiving a manifest at its destination is a sequence of steps that each
commit on their own:

    1. tally item conditions
    2. create the UnloadingSession            (fatal on failure)
    3. write the legacy UnloadingRecord       (best effort)
    4. manifest -> unloaded                   (fatal on failure)
    5. each booking -> unloaded / missing     (fatal on failure)

Progress is recorded on an UnloadingProgress row (one per manifest). The
row is also the in-progress guard: a second caller cannot claim it while a
run is live. When a step fails the cursor is marked ``failed`` and a later
call resumes after the last committed step, reusing the session and
skipping bookings already processed. Committed steps are never undone.

All input is validated before the first write.
"""
import logging
import uuid
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Iterable, List, Optional, Tuple

from pydantic import ValidationError
from sqlalchemy import select, func, update, and_, or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from app.config import settings
from app.core.exceptions import (
    ConflictFailure,
    PartialWorkflowFailure,
    ValidationFailure,
)
from app.core.permissions import AuthContext, branch_scope_clause
from app.models.booking import Booking, BookingStatus, PODStatus, UnloadingStatus
from app.models.manifest import Manifest, ManifestStatus
from app.models.unloading import (
    UnloadingProgress,
    UnloadingProgressStatus,
    UnloadingRecord,
    UnloadingSession,
    UnloadingStep,
)
from app.schemas.unloading import (
    DamagedCondition,
    GoodCondition,
    MissingCondition,
    item_condition_adapter,
)
from app.services.booking_service import BookingService
from app.services.manifest_service import ManifestService
from app.services.notification_service import LoggingNotifier, Notifier, notify_unloading_completed

logger = logging.getLogger(__name__)


DAMAGED_REMARKS_MESSAGE = "Please provide remarks for all damaged items"


def _parse_uuid(value: Any, field: str) -> uuid.UUID:
    if isinstance(value, uuid.UUID):
        return value
    try:
        return uuid.UUID(str(value))
    except (TypeError, ValueError) as e:
        raise ValidationFailure(f"Invalid {field}: {value!r}", {"field": field}) from e


def parse_conditions(
    booking_ids: Iterable[uuid.UUID],
    conditions: Dict[Any, Any],
) -> Dict[uuid.UUID, Any]:
    """
    Parse the raw condition map into typed conditions, one per booking.

    Raises ValidationFailure on the first booking without a condition or
    with a condition that does not parse. Damaged items without remarks
    get a dedicated message.
    """
    if not isinstance(conditions, dict):
        raise ValidationFailure("conditions must be an object", {"field": "conditions"})

    raw_by_id: Dict[uuid.UUID, Any] = {}
    for key, value in conditions.items():
        raw_by_id[_parse_uuid(key, "booking_id")] = value

    parsed: Dict[uuid.UUID, Any] = {}
    for booking_id in booking_ids:
        if booking_id not in raw_by_id:
            raise ValidationFailure(
                f"Condition is required for booking {booking_id}",
                {"booking_id": str(booking_id)},
            )
        raw = raw_by_id[booking_id]
        if isinstance(raw, (GoodCondition, DamagedCondition, MissingCondition)):
            parsed[booking_id] = raw
            continue
        if isinstance(raw, dict) and isinstance(raw.get("status"), str):
            raw = {**raw, "status": raw["status"].strip().lower()}
        try:
            parsed[booking_id] = item_condition_adapter.validate_python(raw)
        except ValidationError as e:
            if isinstance(raw, dict) and raw.get("status") == "damaged":
                raise ValidationFailure(DAMAGED_REMARKS_MESSAGE, {"booking_id": str(booking_id)}) from e
            raise ValidationFailure(
                f"Invalid condition for booking {booking_id}",
                {"booking_id": str(booking_id)},
            ) from e
    return parsed


def tally_conditions(conditions: Dict[uuid.UUID, Any]) -> Dict[str, int]:
    """Count good, damaged and missing items."""
    tally = {"total_items": len(conditions), "items_good": 0, "items_damaged": 0, "items_missing": 0}
    for condition in conditions.values():
        if isinstance(condition, DamagedCondition):
            tally["items_damaged"] += 1
        elif isinstance(condition, MissingCondition):
            tally["items_missing"] += 1
        else:
            tally["items_good"] += 1
    return tally


def booking_update_for(condition: Any, session_id: uuid.UUID, unloaded_at: datetime) -> Tuple[str, Dict[str, Any]]:
    """Target status and merge-patch payload for one booking."""
    if isinstance(condition, MissingCondition):
        return BookingStatus.IN_TRANSIT.value, {
            "unloading_status": UnloadingStatus.MISSING.value,
            "unloading_session_id": session_id,
        }
    pod_data = {"condition": condition.status, "unloaded_at": unloaded_at.isoformat()}
    # Absent remarks/photo leave earlier POD values alone
    if condition.remarks is not None:
        pod_data["remarks"] = condition.remarks
    if condition.photo is not None:
        pod_data["photo"] = condition.photo
    return BookingStatus.UNLOADED.value, {
        "unloading_status": UnloadingStatus.UNLOADED.value,
        "unloading_session_id": session_id,
        "pod_status": PODStatus.PENDING.value,
        "pod_data": pod_data,
    }


class UnloadingService:
    """Runs the unloading workflow and serves unloading history."""

    def __init__(self, db: AsyncSession, notifier: Optional[Notifier] = None):
        self.db = db
        self.notifier = notifier or LoggingNotifier()

    # ==================== CURSOR ====================

    async def _get_progress(self, manifest_id: uuid.UUID) -> Optional[UnloadingProgress]:
        result = await self.db.execute(
            select(UnloadingProgress)
            .execution_options(populate_existing=True)
            .where(UnloadingProgress.manifest_id == manifest_id)
        )
        return result.scalar_one_or_none()

    async def _claim_progress(
        self,
        manifest_id: uuid.UUID,
        existing: Optional[UnloadingProgress],
    ) -> UnloadingProgress:
        """
        Take the cursor for this run and commit.

        A new cursor is inserted; the unique manifest_id rejects a concurrent
        insert. An existing cursor is taken over only if it failed or its
        lease ran out.
        """
        now = datetime.now(timezone.utc)
        busy = ConflictFailure(
            "Manifest is already being unloaded",
            {"manifest_id": str(manifest_id)},
        )

        if existing is None:
            progress = UnloadingProgress(
                manifest_id=manifest_id,
                status=UnloadingProgressStatus.IN_PROGRESS.value,
                last_completed_step=UnloadingStep.VALIDATED.value,
                processed_booking_ids=[],
                attempts=1,
                started_at=now,
                updated_at=now,
            )
            self.db.add(progress)
            try:
                await self.db.commit()
            except IntegrityError as e:
                await self.db.rollback()
                raise busy from e
            return await self._get_progress(manifest_id)

        lease_expired = now - timedelta(seconds=settings.UNLOADING_LEASE_SECONDS)
        result = await self.db.execute(
            update(UnloadingProgress)
            .where(
                UnloadingProgress.id == existing.id,
                or_(
                    UnloadingProgress.status == UnloadingProgressStatus.FAILED.value,
                    and_(
                        UnloadingProgress.status == UnloadingProgressStatus.IN_PROGRESS.value,
                        UnloadingProgress.updated_at < lease_expired,
                    ),
                ),
            )
            .values(
                status=UnloadingProgressStatus.IN_PROGRESS.value,
                attempts=UnloadingProgress.attempts + 1,
                last_error=None,
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            await self.db.rollback()
            raise busy
        await self.db.commit()
        logger.info(f"Resuming unloading of manifest {manifest_id} after step '{existing.last_completed_step}'")
        return await self._get_progress(manifest_id)

    async def _advance(self, progress_id: uuid.UUID, **values) -> None:
        """Stage a cursor update in the current transaction."""
        values["updated_at"] = datetime.now(timezone.utc)
        await self.db.execute(
            update(UnloadingProgress)
            .where(UnloadingProgress.id == progress_id)
            .values(**values)
            .execution_options(synchronize_session=False)
        )

    async def _record_failure(self, progress_id: uuid.UUID, error: Exception) -> None:
        """Mark the cursor failed in a fresh transaction so a retry can resume."""
        try:
            await self._advance(
                progress_id,
                status=UnloadingProgressStatus.FAILED.value,
                last_error=str(error)[:2000],
            )
            await self.db.commit()
        except Exception as e:
            await self.db.rollback()
            logger.error(f"Could not record unloading failure on cursor {progress_id}: {e}")

    # ==================== WORKFLOW ====================

    async def unload_manifest(
        self,
        auth: AuthContext,
        manifest_id: Any,
        booking_ids: List[Any],
        conditions: Dict[Any, Any],
        notes: Optional[str] = None,
    ) -> UnloadingSession:
        """
        Receive a manifest at its destination branch.

        Args:
            auth: Caller
            manifest_id: Manifest being unloaded
            booking_ids: Bookings received from the vehicle
            conditions: booking id -> {"status": good|damaged|missing, "remarks", "photo"}
            notes: Free-text notes stored on the session

        Returns:
            The UnloadingSession

        Raises:
            ValidationFailure: Bad input or the manifest cannot be unloaded (nothing written)
            NotFoundFailure: Manifest missing or outside the caller's branch (nothing written)
            ConflictFailure: Another unloading of this manifest is running or already finished
            PartialWorkflowFailure: A step failed after earlier steps committed
        """
        # ---- Preconditions: no writes until all of these pass ----
        manifest_uuid = _parse_uuid(manifest_id, "manifest_id")
        if auth.branch_id is None:
            raise ValidationFailure("Caller branch is required to unload", {"field": "branch_id"})
        caller_branch_id = _parse_uuid(auth.branch_id, "branch_id")
        if not booking_ids:
            raise ValidationFailure("booking_ids is required", {"field": "booking_ids"})

        ids = list(dict.fromkeys(_parse_uuid(b, "booking_id") for b in booking_ids))
        parsed = parse_conditions(ids, conditions or {})

        manifest_service = ManifestService(self.db)
        manifest = await manifest_service.get_manifest(auth, manifest_uuid)
        # Applies to elevated roles too
        if caller_branch_id != manifest.to_branch_id:
            raise ValidationFailure("Only the destination branch can unload this manifest")

        progress = await self._get_progress(manifest.id)
        if progress and progress.status == UnloadingProgressStatus.COMPLETED.value:
            raise ConflictFailure(
                "Manifest has already been unloaded",
                {"manifest_id": str(manifest.id), "session_id": str(progress.session_id)},
            )

        resumable = (ManifestStatus.IN_TRANSIT.value, ManifestStatus.UNLOADED.value) if progress else (
            ManifestStatus.IN_TRANSIT.value,
        )
        if manifest.status not in resumable:
            raise ValidationFailure(
                f"Cannot unload manifest in '{manifest.status}' status",
                {"manifest_id": str(manifest.id), "status": manifest.status},
            )

        linked = {record.booking_id for record in manifest.loading_records}
        unlinked = [str(b) for b in ids if b not in linked]
        if unlinked:
            raise ValidationFailure(
                "Bookings are not loaded on this manifest",
                {"booking_ids": unlinked},
            )

        ogpl_number = manifest.ogpl_number
        receiving_branch_id = manifest.to_branch_id

        progress = await self._claim_progress(manifest.id, progress)
        progress_id = progress.id
        session_id = progress.session_id
        processed: List[str] = list(progress.processed_booking_ids or [])
        done = {step for step in UnloadingStep if progress.has_completed(step)}

        # ---- Step 1: tally ----
        tally = tally_conditions(parsed)
        logger.info(
            f"Unloading {ogpl_number}: {tally['items_good']} good, "
            f"{tally['items_damaged']} damaged, {tally['items_missing']} missing"
        )

        # ---- Step 2: session ----
        if UnloadingStep.SESSION_CREATED not in done:
            try:
                session = UnloadingSession(
                    organization_id=auth.organization_id,
                    manifest_id=manifest_uuid,
                    branch_id=receiving_branch_id,
                    unloaded_by=auth.caller_id,
                    notes=notes,
                    unloaded_at=datetime.now(timezone.utc),
                    **tally,
                )
                self.db.add(session)
                await self.db.flush()
                session_id = session.id
                await self._advance(
                    progress_id,
                    session_id=session_id,
                    last_completed_step=UnloadingStep.SESSION_CREATED.value,
                )
                await self.db.commit()
            except Exception as e:
                await self.db.rollback()
                await self._record_failure(progress_id, e)
                logger.error(f"Unloading {ogpl_number}: session creation failed: {e}")
                raise PartialWorkflowFailure(
                    "Failed to create unloading session",
                    UnloadingStep.SESSION_CREATED.value,
                    {"manifest_id": str(manifest_uuid), "session_id": None, "processed_booking_ids": []},
                ) from e
            logger.info(f"Unloading {ogpl_number}: session {session_id} created")

        # ---- Step 3: legacy record (best effort) ----
        if UnloadingStep.LEGACY_RECORD not in done:
            await self._write_legacy_record(manifest_uuid, session_id, auth.caller_id, parsed, ogpl_number)
            try:
                await self._advance(progress_id, last_completed_step=UnloadingStep.LEGACY_RECORD.value)
                await self.db.commit()
            except Exception as e:
                # Step 4 moves the cursor past this step anyway
                await self.db.rollback()
                logger.warning(f"Unloading {ogpl_number}: cursor not advanced past legacy record: {e}")

        # ---- Step 4: manifest -> unloaded ----
        if UnloadingStep.MANIFEST_UNLOADED not in done:
            try:
                manifest = await self.db.get(Manifest, manifest_uuid, populate_existing=True)
                await manifest_service.mark_unloaded(manifest)
                await self._advance(progress_id, last_completed_step=UnloadingStep.MANIFEST_UNLOADED.value)
                await self.db.commit()
            except Exception as e:
                await self.db.rollback()
                await self._record_failure(progress_id, e)
                logger.error(f"Unloading {ogpl_number}: manifest status update failed: {e}")
                raise PartialWorkflowFailure(
                    "Unloading session created but manifest status update failed",
                    UnloadingStep.MANIFEST_UNLOADED.value,
                    {
                        "manifest_id": str(manifest_uuid),
                        "session_id": str(session_id),
                        "processed_booking_ids": processed,
                    },
                ) from e
            logger.info(f"Unloading {ogpl_number}: manifest marked unloaded")

        # ---- Step 5: bookings ----
        booking_service = BookingService(self.db)
        unloaded_at = datetime.now(timezone.utc)
        for booking_id in ids:
            if str(booking_id) in processed:
                continue
            try:
                booking = await self.db.get(Booking, booking_id, populate_existing=True)
                new_status, payload = booking_update_for(parsed[booking_id], session_id, unloaded_at)
                await booking_service.apply_transition(booking, new_status, payload)
                processed.append(str(booking_id))
                await self._advance(progress_id, processed_booking_ids=list(processed))
                await self.db.commit()
            except Exception as e:
                await self.db.rollback()
                await self._record_failure(progress_id, e)
                logger.error(f"Unloading {ogpl_number}: booking {booking_id} update failed: {e}")
                raise PartialWorkflowFailure(
                    "Unloading session created but booking updates did not finish",
                    UnloadingStep.BOOKINGS_UPDATED.value,
                    {
                        "manifest_id": str(manifest_uuid),
                        "session_id": str(session_id),
                        "processed_booking_ids": list(processed),
                        "failed_booking_id": str(booking_id),
                    },
                ) from e

        try:
            await self._advance(
                progress_id,
                last_completed_step=UnloadingStep.BOOKINGS_UPDATED.value,
                status=UnloadingProgressStatus.COMPLETED.value,
            )
            await self.db.commit()
        except Exception as e:
            await self.db.rollback()
            await self._record_failure(progress_id, e)
            logger.error(f"Unloading {ogpl_number}: could not mark unloading complete: {e}")
            raise PartialWorkflowFailure(
                "Bookings updated but unloading could not be marked complete",
                UnloadingStep.BOOKINGS_UPDATED.value,
                {
                    "manifest_id": str(manifest_uuid),
                    "session_id": str(session_id),
                    "processed_booking_ids": list(processed),
                },
            ) from e

        session = await self.db.get(UnloadingSession, session_id, populate_existing=True)
        logger.info(f"Unloading {ogpl_number} completed: session {session_id}, {len(processed)} bookings")
        await notify_unloading_completed(self.notifier, session)
        return session

    async def _write_legacy_record(
        self,
        manifest_id: uuid.UUID,
        session_id: uuid.UUID,
        caller_id: uuid.UUID,
        conditions: Dict[uuid.UUID, Any],
        ogpl_number: str,
    ) -> None:
        """Write the legacy-format record. Failures are logged, never raised."""
        try:
            existing = await self.db.execute(
                select(UnloadingRecord.id).where(UnloadingRecord.session_id == session_id)
            )
            if existing.scalar_one_or_none():
                return
            self.db.add(UnloadingRecord(
                manifest_id=manifest_id,
                session_id=session_id,
                unloaded_by=caller_id,
                conditions={
                    str(booking_id): condition.model_dump()
                    for booking_id, condition in conditions.items()
                },
            ))
            await self.db.commit()
        except Exception as e:
            await self.db.rollback()
            logger.warning(f"Unloading {ogpl_number}: legacy unloading record not written: {e}")

    # ==================== HISTORY ====================

    async def get_completed_unloadings(
        self,
        auth: AuthContext,
        page: int = 1,
        size: int = 20,
    ) -> Tuple[List[UnloadingSession], int]:
        """Unloading sessions received at the caller's branch, newest first."""
        filters = [
            UnloadingSession.organization_id == auth.organization_id,
            branch_scope_clause(auth, [UnloadingSession.branch_id]),
        ]
        total = (
            await self.db.execute(select(func.count(UnloadingSession.id)).where(and_(*filters)))
        ).scalar() or 0

        result = await self.db.execute(
            select(UnloadingSession)
            .options(selectinload(UnloadingSession.manifest))
            .where(and_(*filters))
            .order_by(UnloadingSession.unloaded_at.desc())
            .offset((page - 1) * size)
            .limit(size)
        )
        return list(result.scalars().all()), total

    async def get_unloading_stats(self, auth: AuthContext) -> Dict[str, int]:
        """Session count and item totals for the caller's branch."""
        result = await self.db.execute(
            select(
                func.count(UnloadingSession.id),
                func.coalesce(func.sum(UnloadingSession.total_items), 0),
                func.coalesce(func.sum(UnloadingSession.items_good), 0),
                func.coalesce(func.sum(UnloadingSession.items_damaged), 0),
                func.coalesce(func.sum(UnloadingSession.items_missing), 0),
            ).where(
                UnloadingSession.organization_id == auth.organization_id,
                branch_scope_clause(auth, [UnloadingSession.branch_id]),
            )
        )
        sessions, total, good, damaged, missing = result.one()
        return {
            "total_sessions": int(sessions),
            "total_items": int(total),
            "items_good": int(good),
            "items_damaged": int(damaged),
            "items_missing": int(missing),
        }
