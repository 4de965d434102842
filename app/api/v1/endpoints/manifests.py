"""Manifest (OGPL) API endpoints: creation, loading, dispatch and receipt."""
from typing import Optional
import uuid
from math import ceil

from fastapi import APIRouter, Query, status

from app.api.deps import DB, Auth
from app.models.manifest import Manifest
from app.schemas.manifest import (
    ManifestCreate,
    ManifestResponse,
    ManifestDetailResponse,
    ManifestListResponse,
    IncomingManifestsResponse,
    ManifestAddBookings,
)
from app.services.manifest_service import ManifestService


router = APIRouter()


def _incoming_item(manifest: Manifest, with_relations: bool) -> ManifestDetailResponse:
    if with_relations:
        return ManifestDetailResponse.model_validate(manifest)
    # Degraded reads carry only the manifest's own columns
    flat = ManifestResponse.model_validate(manifest)
    return ManifestDetailResponse(**flat.model_dump())


# ==================== MANIFEST CRUD ====================

@router.post(
    "",
    response_model=ManifestDetailResponse,
    status_code=status.HTTP_201_CREATED,
)
async def create_manifest(data: ManifestCreate, db: DB, auth: Auth):
    """Create an OGPL for a vehicle trip."""
    manifest = await ManifestService(db).create_manifest(auth, data)
    return ManifestDetailResponse.model_validate(manifest)


@router.get("", response_model=ManifestListResponse)
async def list_manifests(
    db: DB,
    auth: Auth,
    page: int = Query(1, ge=1),
    size: int = Query(20, ge=1, le=100),
    status: Optional[str] = Query(None),
):
    """Get paginated list of manifests."""
    manifests, total = await ManifestService(db).list_manifests(auth, status=status, page=page, size=size)
    return ManifestListResponse(
        items=[ManifestResponse.model_validate(m) for m in manifests],
        total=total,
        page=page,
        size=size,
        pages=ceil(total / size) if total > 0 else 1,
    )


@router.get("/incoming", response_model=IncomingManifestsResponse)
async def get_incoming_manifests(db: DB, auth: Auth):
    """In-transit manifests headed for the caller's branch."""
    incoming = await ManifestService(db).get_incoming_manifests(auth)
    return IncomingManifestsResponse(
        variant=incoming.variant,
        degraded=incoming.degraded,
        items=[_incoming_item(m, incoming.with_relations) for m in incoming.items],
    )


@router.get("/{manifest_id}", response_model=ManifestDetailResponse)
async def get_manifest(manifest_id: uuid.UUID, db: DB, auth: Auth):
    manifest = await ManifestService(db).get_manifest(auth, manifest_id)
    return ManifestDetailResponse.model_validate(manifest)


# ==================== LOADING & DISPATCH ====================

@router.post("/{manifest_id}/bookings", response_model=ManifestDetailResponse)
async def add_bookings(
    manifest_id: uuid.UUID,
    data: ManifestAddBookings,
    db: DB,
    auth: Auth,
):
    """Load bookings onto the manifest."""
    manifest = await ManifestService(db).add_bookings(auth, manifest_id, data.booking_ids)
    return ManifestDetailResponse.model_validate(manifest)


@router.post("/{manifest_id}/dispatch", response_model=ManifestDetailResponse)
async def dispatch_manifest(manifest_id: uuid.UUID, db: DB, auth: Auth):
    """Send the vehicle. Manifest and loaded bookings go in transit."""
    manifest = await ManifestService(db).dispatch_manifest(auth, manifest_id)
    return ManifestDetailResponse.model_validate(manifest)


@router.post("/{manifest_id}/complete", response_model=ManifestDetailResponse)
async def complete_manifest(manifest_id: uuid.UUID, db: DB, auth: Auth):
    manifest = await ManifestService(db).complete_manifest(auth, manifest_id)
    return ManifestDetailResponse.model_validate(manifest)
