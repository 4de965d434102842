"""Unloading API endpoints."""
from math import ceil

from fastapi import APIRouter, Query, status

from app.api.deps import DB, Auth
from app.schemas.unloading import (
    UnloadRequest,
    UnloadingSessionResponse,
    UnloadingSessionListResponse,
    UnloadingStatsResponse,
)
from app.services.unloading_service import UnloadingService


router = APIRouter()


@router.post(
    "",
    response_model=UnloadingSessionResponse,
    status_code=status.HTTP_201_CREATED,
)
async def unload_manifest(data: UnloadRequest, db: DB, auth: Auth):
    """
    Receive a manifest at the destination branch.

    Returns the unloading session. A failure after the session was written
    is reported as PARTIAL_WORKFLOW_FAILURE; calling again resumes.
    """
    session = await UnloadingService(db).unload_manifest(
        auth,
        data.manifest_id,
        data.booking_ids,
        data.conditions,
        notes=data.notes,
    )
    return UnloadingSessionResponse.model_validate(session)


@router.get("/sessions", response_model=UnloadingSessionListResponse)
async def list_unloading_sessions(
    db: DB,
    auth: Auth,
    page: int = Query(1, ge=1),
    size: int = Query(20, ge=1, le=100),
):
    sessions, total = await UnloadingService(db).get_completed_unloadings(auth, page=page, size=size)
    return UnloadingSessionListResponse(
        items=[UnloadingSessionResponse.model_validate(s) for s in sessions],
        total=total,
        page=page,
        size=size,
        pages=ceil(total / size) if total > 0 else 1,
    )


@router.get("/stats", response_model=UnloadingStatsResponse)
async def get_unloading_stats(db: DB, auth: Auth):
    stats = await UnloadingService(db).get_unloading_stats(auth)
    return UnloadingStatsResponse(**stats)
