"""Booking API endpoints."""
from typing import Optional
import uuid
from math import ceil

from fastapi import APIRouter, Query, status

from app.api.deps import DB, Auth
from app.schemas.booking import (
    BookingCreate,
    BookingResponse,
    BookingDetailResponse,
    BookingListResponse,
    BookingStatusUpdate,
    BookingCancelRequest,
)
from app.services.booking_service import BookingService


router = APIRouter()


@router.post(
    "",
    response_model=BookingDetailResponse,
    status_code=status.HTTP_201_CREATED,
)
async def create_booking(data: BookingCreate, db: DB, auth: Auth):
    """Book a consignment and issue its LR number."""
    booking = await BookingService(db).create_booking(auth, data)
    return BookingDetailResponse.model_validate(booking)


@router.get("", response_model=BookingListResponse)
async def list_bookings(
    db: DB,
    auth: Auth,
    page: int = Query(1, ge=1),
    size: int = Query(20, ge=1, le=100),
    status: Optional[str] = Query(None),
):
    """Get paginated bookings for the caller's branch."""
    bookings, total = await BookingService(db).list_bookings(auth, status=status, page=page, size=size)
    return BookingListResponse(
        items=[BookingResponse.model_validate(b) for b in bookings],
        total=total,
        page=page,
        size=size,
        pages=ceil(total / size) if total > 0 else 1,
    )


@router.get("/lr/{lr_number}", response_model=BookingDetailResponse)
async def get_booking_by_lr(lr_number: str, db: DB, auth: Auth):
    booking = await BookingService(db).get_by_lr_number(auth, lr_number)
    return BookingDetailResponse.model_validate(booking)


@router.get("/{booking_id}", response_model=BookingDetailResponse)
async def get_booking(booking_id: uuid.UUID, db: DB, auth: Auth):
    booking = await BookingService(db).get_booking(auth, booking_id)
    return BookingDetailResponse.model_validate(booking)


@router.patch("/{booking_id}/status", response_model=BookingDetailResponse)
async def update_booking_status(
    booking_id: uuid.UUID,
    data: BookingStatusUpdate,
    db: DB,
    auth: Auth,
):
    """Move a booking to a new status, merging the payload into it."""
    booking = await BookingService(db).transition(auth, booking_id, data.status, data.payload)
    return BookingDetailResponse.model_validate(booking)


@router.post("/{booking_id}/cancel", response_model=BookingDetailResponse)
async def cancel_booking(
    booking_id: uuid.UUID,
    data: BookingCancelRequest,
    db: DB,
    auth: Auth,
):
    booking = await BookingService(db).cancel_booking(auth, booking_id, data.reason)
    return BookingDetailResponse.model_validate(booking)
