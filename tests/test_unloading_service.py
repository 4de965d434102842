"""Tests for the unloading workflow, its resume cursor and history reads"""
from datetime import datetime, timedelta, timezone
import uuid

import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import OperationalError

from app.core.exceptions import (
    ConflictFailure,
    NotFoundFailure,
    PartialWorkflowFailure,
    ValidationFailure,
)
from app.models import Booking, Manifest, UnloadingProgress, UnloadingRecord, UnloadingSession
from app.services import unloading_service as unloading_module
from app.services.booking_service import BookingService
from app.services.manifest_service import ManifestService
from app.services.unloading_service import (
    DAMAGED_REMARKS_MESSAGE,
    UnloadingService,
    parse_conditions,
    tally_conditions,
)
from factories import all_good, make_auth, manifest_data


async def _count(db, column) -> int:
    return (await db.execute(select(func.count(column)))).scalar()


async def _fresh_booking(db, booking_id) -> Booking:
    return await db.get(Booking, booking_id, populate_existing=True)


async def _progress(db) -> UnloadingProgress:
    result = await db.execute(select(UnloadingProgress).execution_options(populate_existing=True))
    return result.scalar_one()


class RecordingNotifier:
    def __init__(self):
        self.sessions = []

    async def unloading_completed(self, session):
        self.sessions.append(session.id)


class BrokenNotifier:
    async def unloading_completed(self, session):
        raise RuntimeError("SMS gateway down")


# ==================== CONDITION PARSING ====================

def test_parse_conditions_accepts_mixed_case_status():
    good, damaged = uuid.uuid4(), uuid.uuid4()
    parsed = parse_conditions(
        [good, damaged],
        {str(good): {"status": "GOOD"}, str(damaged): {"status": "Damaged", "remarks": "Crushed corner"}},
    )

    assert parsed[good].status == "good"
    assert parsed[damaged].remarks == "Crushed corner"
    assert tally_conditions(parsed) == {
        "total_items": 2, "items_good": 1, "items_damaged": 1, "items_missing": 0,
    }


@pytest.mark.parametrize("condition", [
    {"status": "damaged"},
    {"status": "damaged", "remarks": ""},
    {"status": "damaged", "remarks": "   "},
])
def test_damaged_requires_remarks(condition):
    booking_id = uuid.uuid4()
    with pytest.raises(ValidationFailure) as exc_info:
        parse_conditions([booking_id], {str(booking_id): condition})
    assert exc_info.value.message == DAMAGED_REMARKS_MESSAGE


def test_unknown_condition_and_missing_entry():
    first, second = uuid.uuid4(), uuid.uuid4()
    with pytest.raises(ValidationFailure, match="Invalid condition"):
        parse_conditions([first], {str(first): {"status": "lost"}})
    with pytest.raises(ValidationFailure, match="Condition is required"):
        parse_conditions([first, second], {str(first): {"status": "good"}})


# ==================== WORKFLOW ====================

async def test_unload_all_good(db, seed, mumbai_auth, dispatched_manifest):
    manifest, bookings = await dispatched_manifest(3)
    notifier = RecordingNotifier()

    session = await UnloadingService(db, notifier).unload_manifest(
        mumbai_auth, str(manifest.id), [str(b.id) for b in bookings], all_good(bookings), notes="Dock 4",
    )

    assert session.total_items == 3
    assert session.items_good == 3
    assert session.branch_id == seed.mumbai.id
    assert session.notes == "Dock 4"
    assert notifier.sessions == [session.id]

    assert (await db.get(Manifest, manifest.id, populate_existing=True)).status == "unloaded"
    for booking in bookings:
        fresh = await _fresh_booking(db, booking.id)
        assert fresh.status == "unloaded"
        assert fresh.unloading_status == "unloaded"
        assert fresh.unloading_session_id == session.id
        assert fresh.pod_status == "pending"
        assert fresh.pod_data["condition"] == "good"

    progress = await _progress(db)
    assert progress.status == "completed"
    assert progress.last_completed_step == "bookings_updated"
    assert await _count(db, UnloadingRecord.id) == 1


async def test_unload_mixed_conditions(db, seed, mumbai_auth, dispatched_manifest):
    manifest, bookings = await dispatched_manifest(3)
    good, damaged, missing = bookings
    conditions = {
        str(good.id): {"status": "good"},
        str(damaged.id): {"status": "damaged", "remarks": "Water damage", "photo": "s3://pod/1.jpg"},
        str(missing.id): {"status": "missing"},
    }

    session = await UnloadingService(db).unload_manifest(
        mumbai_auth, manifest.id, [b.id for b in bookings], conditions,
    )

    assert (session.items_good, session.items_damaged, session.items_missing) == (1, 1, 1)

    damaged_row = await _fresh_booking(db, damaged.id)
    assert damaged_row.status == "unloaded"
    assert damaged_row.pod_data["condition"] == "damaged"
    assert damaged_row.pod_data["remarks"] == "Water damage"
    assert damaged_row.pod_data["photo"] == "s3://pod/1.jpg"

    missing_row = await _fresh_booking(db, missing.id)
    assert missing_row.status == "in_transit"
    assert missing_row.unloading_status == "missing"
    assert missing_row.unloading_session_id == session.id


async def test_damaged_without_remarks_writes_nothing(db, seed, mumbai_auth, dispatched_manifest):
    manifest, bookings = await dispatched_manifest(2)
    conditions = all_good(bookings)
    conditions[str(bookings[1].id)] = {"status": "damaged"}

    with pytest.raises(ValidationFailure) as exc_info:
        await UnloadingService(db).unload_manifest(mumbai_auth, manifest.id, [b.id for b in bookings], conditions)

    assert exc_info.value.message == DAMAGED_REMARKS_MESSAGE
    assert await _count(db, UnloadingSession.id) == 0
    assert await _count(db, UnloadingProgress.id) == 0
    assert (await db.get(Manifest, manifest.id, populate_existing=True)).status == "in_transit"


async def test_unlinked_booking_rejected(db, seed, mumbai_auth, dispatched_manifest, create_bookings):
    manifest, bookings = await dispatched_manifest(1)
    stray = (await create_bookings(1))[0]
    ids = [bookings[0].id, stray.id]

    with pytest.raises(ValidationFailure, match="not loaded on this manifest"):
        await UnloadingService(db).unload_manifest(mumbai_auth, manifest.id, ids, all_good([bookings[0], stray]))
    assert await _count(db, UnloadingSession.id) == 0


async def test_only_destination_branch_unloads(db, seed, delhi_auth, pune_auth, admin_auth, dispatched_manifest):
    manifest, bookings = await dispatched_manifest(1)
    service = UnloadingService(db)
    ids = [b.id for b in bookings]

    with pytest.raises(ValidationFailure, match="destination branch"):
        await service.unload_manifest(delhi_auth, manifest.id, ids, all_good(bookings))
    with pytest.raises(NotFoundFailure):
        await service.unload_manifest(pune_auth, manifest.id, ids, all_good(bookings))
    with pytest.raises(ValidationFailure, match="Caller branch is required"):
        await service.unload_manifest(admin_auth, manifest.id, ids, all_good(bookings))
    with pytest.raises(ValidationFailure, match="destination branch"):
        await service.unload_manifest(make_auth(seed, "admin", seed.delhi), manifest.id, ids, all_good(bookings))
    assert await _count(db, UnloadingSession.id) == 0


async def test_bad_input_rejected(db, seed, mumbai_auth, dispatched_manifest):
    manifest, bookings = await dispatched_manifest(1)
    service = UnloadingService(db)

    with pytest.raises(ValidationFailure, match="booking_ids is required"):
        await service.unload_manifest(mumbai_auth, manifest.id, [], {})
    with pytest.raises(ValidationFailure, match="manifest_id"):
        await service.unload_manifest(mumbai_auth, "not-a-uuid", [bookings[0].id], all_good(bookings))


async def test_cannot_unload_before_dispatch(db, seed, delhi_auth, mumbai_auth, create_bookings):
    bookings = await create_bookings(1)
    manifests = ManifestService(db)
    manifest = await manifests.create_manifest(delhi_auth, manifest_data(seed))
    await manifests.add_bookings(delhi_auth, manifest.id, [bookings[0].id])

    with pytest.raises(ValidationFailure, match="Cannot unload manifest in 'created' status"):
        await UnloadingService(db).unload_manifest(mumbai_auth, manifest.id, [bookings[0].id], all_good(bookings))


async def test_second_unloading_conflicts(db, seed, mumbai_auth, dispatched_manifest):
    manifest, bookings = await dispatched_manifest(2)
    service = UnloadingService(db)
    ids = [b.id for b in bookings]
    await service.unload_manifest(mumbai_auth, manifest.id, ids, all_good(bookings))

    with pytest.raises(ConflictFailure, match="already been unloaded"):
        await service.unload_manifest(mumbai_auth, manifest.id, ids, all_good(bookings))
    assert await _count(db, UnloadingSession.id) == 1


async def test_live_cursor_blocks_concurrent_run(db, seed, mumbai_auth, dispatched_manifest):
    manifest, bookings = await dispatched_manifest(1)
    db.add(UnloadingProgress(manifest_id=manifest.id, status="in_progress", last_completed_step="validated"))
    await db.commit()

    with pytest.raises(ConflictFailure, match="already being unloaded"):
        await UnloadingService(db).unload_manifest(mumbai_auth, manifest.id, [bookings[0].id], all_good(bookings))
    assert await _count(db, UnloadingSession.id) == 0


async def test_stale_cursor_is_taken_over(db, seed, mumbai_auth, dispatched_manifest):
    manifest, bookings = await dispatched_manifest(1)
    an_hour_ago = datetime.now(timezone.utc) - timedelta(hours=1)
    db.add(UnloadingProgress(
        manifest_id=manifest.id,
        status="in_progress",
        last_completed_step="validated",
        started_at=an_hour_ago,
        updated_at=an_hour_ago,
    ))
    await db.commit()

    session = await UnloadingService(db).unload_manifest(
        mumbai_auth, manifest.id, [bookings[0].id], all_good(bookings)
    )

    progress = await _progress(db)
    assert progress.status == "completed"
    assert progress.attempts == 2
    assert progress.session_id == session.id


async def test_partial_failure_then_resume(db, seed, mumbai_auth, dispatched_manifest, monkeypatch):
    manifest, bookings = await dispatched_manifest(3)
    manifest_id = manifest.id
    ids = [b.id for b in bookings]
    conditions = all_good(bookings)
    original = BookingService.apply_transition
    calls = {"count": 0}

    async def flaky(self, booking, new_status, payload=None):
        calls["count"] += 1
        if calls["count"] == 2:
            raise RuntimeError("connection reset by peer")
        return await original(self, booking, new_status, payload)

    monkeypatch.setattr(BookingService, "apply_transition", flaky)
    service = UnloadingService(db)

    with pytest.raises(PartialWorkflowFailure) as exc_info:
        await service.unload_manifest(mumbai_auth, manifest_id, ids, conditions)

    failure = exc_info.value
    assert failure.step == "bookings_updated"
    assert failure.details["processed_booking_ids"] == [str(ids[0])]
    assert failure.details["failed_booking_id"] == str(ids[1])
    session_id = failure.details["session_id"]

    # Committed steps stay committed
    assert (await db.get(Manifest, manifest_id, populate_existing=True)).status == "unloaded"
    assert (await _fresh_booking(db, ids[0])).status == "unloaded"
    assert (await _fresh_booking(db, ids[1])).status == "in_transit"
    progress = await _progress(db)
    assert progress.status == "failed"
    assert "connection reset" in progress.last_error

    monkeypatch.setattr(BookingService, "apply_transition", original)
    session = await service.unload_manifest(mumbai_auth, manifest_id, ids, conditions)

    assert str(session.id) == session_id
    assert await _count(db, UnloadingSession.id) == 1
    for booking_id in ids:
        assert (await _fresh_booking(db, booking_id)).status == "unloaded"


async def test_manifest_update_failure_then_resume(db, seed, mumbai_auth, dispatched_manifest, monkeypatch):
    manifest, bookings = await dispatched_manifest(2)
    manifest_id = manifest.id
    ids = [b.id for b in bookings]
    conditions = all_good(bookings)
    original = ManifestService.mark_unloaded

    async def broken(self, manifest):
        raise OperationalError("UPDATE manifests", {}, Exception("deadlock detected"))

    monkeypatch.setattr(ManifestService, "mark_unloaded", broken)
    service = UnloadingService(db)

    with pytest.raises(PartialWorkflowFailure) as exc_info:
        await service.unload_manifest(mumbai_auth, manifest_id, ids, conditions)

    failure = exc_info.value
    assert failure.step == "manifest_unloaded"
    assert failure.details["session_id"] is not None
    assert failure.details["processed_booking_ids"] == []
    session_id = failure.details["session_id"]

    assert await _count(db, UnloadingSession.id) == 1
    assert (await db.get(Manifest, manifest_id, populate_existing=True)).status == "in_transit"
    for booking_id in ids:
        assert (await _fresh_booking(db, booking_id)).status == "in_transit"
    progress = await _progress(db)
    assert progress.status == "failed"
    assert "deadlock" in progress.last_error

    monkeypatch.setattr(ManifestService, "mark_unloaded", original)
    session = await service.unload_manifest(mumbai_auth, manifest_id, ids, conditions)

    assert str(session.id) == session_id
    assert await _count(db, UnloadingSession.id) == 1
    assert (await db.get(Manifest, manifest_id, populate_existing=True)).status == "unloaded"
    assert (await _progress(db)).status == "completed"


async def test_cursor_write_after_legacy_record_is_not_fatal(db, seed, mumbai_auth, dispatched_manifest, monkeypatch):
    manifest, bookings = await dispatched_manifest(2)
    manifest_id = manifest.id
    original = UnloadingService._advance

    async def advance(self, progress_id, **values):
        if values.get("last_completed_step") == "legacy_record":
            raise OperationalError("UPDATE unloading_progress", {}, Exception("database is locked"))
        return await original(self, progress_id, **values)

    monkeypatch.setattr(UnloadingService, "_advance", advance)

    session = await UnloadingService(db).unload_manifest(
        mumbai_auth, manifest_id, [b.id for b in bookings], all_good(bookings)
    )

    assert session.items_good == 2
    assert await _count(db, UnloadingRecord.id) == 1
    assert (await db.get(Manifest, manifest_id, populate_existing=True)).status == "unloaded"
    progress = await _progress(db)
    assert progress.status == "completed"
    assert progress.last_completed_step == "bookings_updated"


async def test_completion_write_failure_then_resume(db, seed, mumbai_auth, dispatched_manifest, monkeypatch):
    manifest, bookings = await dispatched_manifest(2)
    manifest_id = manifest.id
    ids = [b.id for b in bookings]
    conditions = all_good(bookings)
    original = UnloadingService._advance

    async def advance(self, progress_id, **values):
        if values.get("status") == "completed":
            raise OperationalError("UPDATE unloading_progress", {}, Exception("disk I/O error"))
        return await original(self, progress_id, **values)

    monkeypatch.setattr(UnloadingService, "_advance", advance)
    service = UnloadingService(db)

    with pytest.raises(PartialWorkflowFailure) as exc_info:
        await service.unload_manifest(mumbai_auth, manifest_id, ids, conditions)

    failure = exc_info.value
    assert failure.step == "bookings_updated"
    assert sorted(failure.details["processed_booking_ids"]) == sorted(str(b) for b in ids)
    session_id = failure.details["session_id"]

    # Not left in_progress, so a retry is not blocked by the lease
    progress = await _progress(db)
    assert progress.status == "failed"
    for booking_id in ids:
        assert (await _fresh_booking(db, booking_id)).status == "unloaded"

    monkeypatch.setattr(UnloadingService, "_advance", original)
    session = await service.unload_manifest(mumbai_auth, manifest_id, ids, conditions)

    assert str(session.id) == session_id
    assert await _count(db, UnloadingSession.id) == 1
    progress = await _progress(db)
    assert progress.status == "completed"
    assert progress.attempts == 2


async def test_unloading_keeps_existing_pod_remarks(db, seed, delhi_auth, mumbai_auth, create_bookings):
    booking = (await create_bookings(1))[0]
    booking_id = booking.id
    await BookingService(db).transition(
        delhi_auth, booking_id, "booked",
        {"pod_data": {"remarks": "Fragile, keep upright", "photo": "s3://pod/pickup.jpg"}},
    )
    manifests = ManifestService(db)
    manifest = await manifests.create_manifest(delhi_auth, manifest_data(seed))
    await manifests.add_bookings(delhi_auth, manifest.id, [booking_id])
    await manifests.dispatch_manifest(delhi_auth, manifest.id)

    await UnloadingService(db).unload_manifest(
        mumbai_auth, manifest.id, [booking_id], {str(booking_id): {"status": "good"}}
    )

    pod_data = (await _fresh_booking(db, booking_id)).pod_data
    assert pod_data["condition"] == "good"
    assert pod_data["remarks"] == "Fragile, keep upright"
    assert pod_data["photo"] == "s3://pod/pickup.jpg"
    assert "unloaded_at" in pod_data


async def test_legacy_record_failure_is_not_fatal(db, seed, mumbai_auth, dispatched_manifest, monkeypatch):
    manifest, bookings = await dispatched_manifest(2)
    manifest_id = manifest.id

    def broken_record(**kwargs):
        raise RuntimeError("legacy table missing")

    monkeypatch.setattr(unloading_module, "UnloadingRecord", broken_record)

    session = await UnloadingService(db).unload_manifest(
        mumbai_auth, manifest.id, [b.id for b in bookings], all_good(bookings)
    )

    assert session.total_items == 2
    assert await _count(db, UnloadingRecord.id) == 0
    assert (await db.get(Manifest, manifest_id, populate_existing=True)).status == "unloaded"


async def test_notifier_failure_is_not_fatal(db, seed, mumbai_auth, dispatched_manifest):
    manifest, bookings = await dispatched_manifest(1)

    session = await UnloadingService(db, BrokenNotifier()).unload_manifest(
        mumbai_auth, manifest.id, [bookings[0].id], all_good(bookings)
    )

    assert session.items_good == 1


async def test_completed_manifest_after_unloading(db, seed, mumbai_auth, dispatched_manifest):
    manifest, bookings = await dispatched_manifest(1)
    await UnloadingService(db).unload_manifest(mumbai_auth, manifest.id, [bookings[0].id], all_good(bookings))

    completed = await ManifestService(db).complete_manifest(mumbai_auth, manifest.id)

    assert completed.status == "completed"
    assert completed.completed_at is not None


# ==================== HISTORY ====================

async def test_sessions_and_stats_are_branch_scoped(db, seed, mumbai_auth, pune_auth, admin_auth, dispatched_manifest):
    manifest, bookings = await dispatched_manifest(3)
    conditions = all_good(bookings)
    conditions[str(bookings[2].id)] = {"status": "missing"}
    await UnloadingService(db).unload_manifest(mumbai_auth, manifest.id, [b.id for b in bookings], conditions)
    service = UnloadingService(db)

    sessions, total = await service.get_completed_unloadings(mumbai_auth)
    assert total == 1
    assert sessions[0].manifest.ogpl_number == manifest.ogpl_number

    assert await service.get_unloading_stats(mumbai_auth) == {
        "total_sessions": 1,
        "total_items": 3,
        "items_good": 2,
        "items_damaged": 0,
        "items_missing": 1,
    }
    assert (await service.get_unloading_stats(pune_auth))["total_sessions"] == 0
    assert (await service.get_unloading_stats(admin_auth))["total_sessions"] == 1
    _, total = await service.get_completed_unloadings(pune_auth)
    assert total == 0


async def test_legacy_record_write_is_idempotent(db, seed, mumbai_auth, dispatched_manifest):
    manifest, bookings = await dispatched_manifest(2)
    ids = [b.id for b in bookings]
    conditions = all_good(bookings)
    service = UnloadingService(db)
    session = await service.unload_manifest(mumbai_auth, manifest.id, ids, conditions)

    await service._write_legacy_record(
        manifest.id, session.id, mumbai_auth.caller_id, parse_conditions(ids, conditions), manifest.ogpl_number,
    )

    assert await _count(db, UnloadingRecord.id) == 1
    assert await _count(db, UnloadingSession.id) == 1
    for booking_id in ids:
        assert (await _fresh_booking(db, booking_id)).status == "unloaded"
