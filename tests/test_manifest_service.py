"""Tests for OGPL creation, loading, dispatch and the incoming view"""
import uuid

import pytest
from sqlalchemy.exc import OperationalError

from app.core.exceptions import (
    ConflictFailure,
    NotFoundFailure,
    TransientStoreFailure,
    ValidationFailure,
)
from app.services.booking_service import BookingService
from app.services.manifest_service import ManifestService
from factories import manifest_data


def _boom(*args, **kwargs):
    raise OperationalError("SELECT manifests", {}, Exception("relation is locked"))


async def test_create_manifest(db, seed, delhi_auth):
    manifest = await ManifestService(db).create_manifest(delhi_auth, manifest_data(seed))

    assert manifest.ogpl_number.startswith("OGPL-")
    assert manifest.ogpl_number.endswith("-00001")
    assert manifest.status == "created"
    assert manifest.vehicle.vehicle_number == "DL01AB1234"
    assert manifest.loading_records == []


async def test_create_manifest_unknown_vehicle(db, seed, delhi_auth):
    with pytest.raises(NotFoundFailure, match="Vehicle not found"):
        await ManifestService(db).create_manifest(delhi_auth, manifest_data(seed, vehicle_id=uuid.uuid4()))


async def test_create_manifest_from_other_branch_rejected(db, seed, mumbai_auth):
    with pytest.raises(ValidationFailure):
        await ManifestService(db).create_manifest(mumbai_auth, manifest_data(seed))


async def test_add_bookings_moves_them_to_loading(db, seed, delhi_auth, create_bookings):
    bookings = await create_bookings(2)
    service = ManifestService(db)
    manifest = await service.create_manifest(delhi_auth, manifest_data(seed))

    manifest = await service.add_bookings(delhi_auth, manifest.id, [b.id for b in bookings])

    assert {r.booking_id for r in manifest.loading_records} == {b.id for b in bookings}
    for booking in bookings:
        fresh = await BookingService(db).get_booking(delhi_auth, booking.id)
        assert fresh.status == "loading"
        assert fresh.loaded_at is not None


async def test_add_bookings_is_all_or_nothing(db, seed, delhi_auth, create_bookings):
    good = (await create_bookings(1))[0]
    cancelled = (await create_bookings(1))[0]
    await BookingService(db).cancel_booking(delhi_auth, cancelled.id, "Duplicate")
    service = ManifestService(db)
    manifest = await service.create_manifest(delhi_auth, manifest_data(seed))

    with pytest.raises(ValidationFailure, match="cannot be loaded"):
        await service.add_bookings(delhi_auth, manifest.id, [good.id, cancelled.id])

    manifest = await service.get_manifest(delhi_auth, manifest.id)
    assert manifest.loading_records == []
    assert (await BookingService(db).get_booking(delhi_auth, good.id)).status == "booked"


async def test_add_bookings_rejects_other_route(db, seed, delhi_auth, create_bookings):
    booking = (await create_bookings(1, to_branch_id=str(seed.pune.id)))[0]
    service = ManifestService(db)
    manifest = await service.create_manifest(delhi_auth, manifest_data(seed))

    with pytest.raises(ValidationFailure, match="route"):
        await service.add_bookings(delhi_auth, manifest.id, [booking.id])


async def test_add_unknown_booking(db, seed, delhi_auth):
    service = ManifestService(db)
    manifest = await service.create_manifest(delhi_auth, manifest_data(seed))

    with pytest.raises(NotFoundFailure):
        await service.add_bookings(delhi_auth, manifest.id, [uuid.uuid4()])
    with pytest.raises(ValidationFailure, match="booking_ids is required"):
        await service.add_bookings(delhi_auth, manifest.id, [])


async def test_destination_cannot_load(db, seed, delhi_auth, mumbai_auth, create_bookings):
    booking = (await create_bookings(1))[0]
    service = ManifestService(db)
    manifest = await service.create_manifest(delhi_auth, manifest_data(seed))

    with pytest.raises(ValidationFailure, match="origin branch"):
        await service.add_bookings(mumbai_auth, manifest.id, [booking.id])


async def test_dispatch_moves_bookings_in_transit(db, seed, delhi_auth, dispatched_manifest):
    manifest, bookings = await dispatched_manifest(3)

    assert manifest.status == "in_transit"
    assert manifest.dispatched_at is not None
    for booking in bookings:
        fresh = await BookingService(db).get_booking(delhi_auth, booking.id)
        assert fresh.status == "in_transit"
        assert fresh.dispatched_at is not None


async def test_dispatch_empty_manifest_rejected(db, seed, delhi_auth):
    service = ManifestService(db)
    manifest = await service.create_manifest(delhi_auth, manifest_data(seed))

    with pytest.raises(ValidationFailure, match="no bookings"):
        await service.dispatch_manifest(delhi_auth, manifest.id)


async def test_cannot_dispatch_twice_or_load_after_dispatch(db, seed, delhi_auth, dispatched_manifest, create_bookings):
    manifest, _ = await dispatched_manifest(1)
    extra = (await create_bookings(1))[0]
    service = ManifestService(db)

    with pytest.raises(ValidationFailure):
        await service.dispatch_manifest(delhi_auth, manifest.id)
    with pytest.raises(ValidationFailure):
        await service.add_bookings(delhi_auth, manifest.id, [extra.id])


async def test_stale_dispatch_loses(db, session_factory, seed, delhi_auth, create_bookings):
    booking = (await create_bookings(1))[0]
    service = ManifestService(db)
    manifest = await service.create_manifest(delhi_auth, manifest_data(seed))
    await service.add_bookings(delhi_auth, manifest.id, [booking.id])

    async with session_factory() as other:
        await ManifestService(other).dispatch_manifest(delhi_auth, manifest.id)

    with pytest.raises(ConflictFailure):
        await service._compare_and_set_status(manifest, "created", "in_transit")
    await db.rollback()


async def test_manifest_reads_are_branch_scoped(db, seed, delhi_auth, mumbai_auth, pune_auth):
    service = ManifestService(db)
    manifest = await service.create_manifest(delhi_auth, manifest_data(seed))

    assert (await service.get_manifest(mumbai_auth, manifest.id)).id == manifest.id
    with pytest.raises(NotFoundFailure):
        await service.get_manifest(pune_auth, manifest.id)

    _, total = await service.list_manifests(pune_auth)
    assert total == 0
    items, total = await service.list_manifests(delhi_auth, status="created")
    assert total == 1 and items[0].id == manifest.id


# ==================== INCOMING ====================

async def test_incoming_manifests_for_destination(db, seed, mumbai_auth, pune_auth, delhi_auth, dispatched_manifest):
    manifest, bookings = await dispatched_manifest(2)
    service = ManifestService(db)

    incoming = await service.get_incoming_manifests(mumbai_auth)
    assert incoming.variant == "full"
    assert not incoming.degraded
    assert [m.id for m in incoming.items] == [manifest.id]
    assert len(incoming.items[0].loading_records) == 2

    assert (await service.get_incoming_manifests(pune_auth)).items == []
    # Origin branch sees nothing incoming from its own dispatch
    assert (await service.get_incoming_manifests(delhi_auth)).items == []


async def test_incoming_falls_back_to_flat_read(db, seed, mumbai_auth, pune_auth, dispatched_manifest, monkeypatch):
    manifest, _ = await dispatched_manifest(1)
    manifest_id = manifest.id
    monkeypatch.setattr(ManifestService, "_read_incoming_full", _boom)
    service = ManifestService(db)

    incoming = await service.get_incoming_manifests(mumbai_auth)
    assert incoming.variant == "flat"
    assert incoming.degraded
    assert [m.id for m in incoming.items] == [manifest_id]

    # Branch filter still applies to the fallback
    assert (await service.get_incoming_manifests(pune_auth)).items == []


async def test_incoming_all_variants_fail(db, seed, mumbai_auth, monkeypatch):
    monkeypatch.setattr(ManifestService, "_read_incoming_full", _boom)
    monkeypatch.setattr(ManifestService, "_read_incoming_flat", _boom)

    with pytest.raises(TransientStoreFailure):
        await ManifestService(db).get_incoming_manifests(mumbai_auth)


# ==================== COMPLETE ====================

async def test_complete_requires_unloading(db, seed, mumbai_auth, dispatched_manifest):
    manifest, _ = await dispatched_manifest(1)

    with pytest.raises(ValidationFailure):
        await ManifestService(db).complete_manifest(mumbai_auth, manifest.id)
