"""Pydantic schemas for Manifest (OGPL) models."""
from pydantic import BaseModel, Field
from typing import Optional, List
from datetime import datetime, date
from decimal import Decimal
import uuid

from app.schemas.base import BaseResponseSchema, PaginatedResponse
from app.schemas.booking import BookingBrief


# ==================== RELATED BRIEFS ====================

class BranchBrief(BaseResponseSchema):
    id: uuid.UUID
    name: str
    code: str
    city: Optional[str] = None


class VehicleBrief(BaseResponseSchema):
    id: uuid.UUID
    vehicle_number: str
    vehicle_type: Optional[str] = None
    capacity_kg: Optional[Decimal] = None


# ==================== LOADING RECORD SCHEMAS ====================

class LoadingRecordResponse(BaseResponseSchema):
    """Booking loaded onto a manifest."""
    id: uuid.UUID
    booking_id: uuid.UUID
    loaded_by: Optional[uuid.UUID] = None
    loaded_at: datetime
    booking: Optional[BookingBrief] = None


# ==================== MANIFEST SCHEMAS ====================

class ManifestCreate(BaseModel):
    """Manifest creation schema."""
    vehicle_id: uuid.UUID
    from_branch_id: uuid.UUID
    to_branch_id: uuid.UUID
    transit_date: date
    primary_driver_name: str = Field(..., min_length=1, max_length=200)
    primary_driver_mobile: str = Field(..., min_length=10, max_length=20)
    secondary_driver_name: Optional[str] = Field(None, max_length=200)
    secondary_driver_mobile: Optional[str] = Field(None, max_length=20)
    seal_number: Optional[str] = Field(None, max_length=50)
    remarks: Optional[str] = None


class ManifestResponse(BaseResponseSchema):
    """Manifest response schema (own columns only)."""
    id: uuid.UUID
    organization_id: uuid.UUID
    ogpl_number: str
    vehicle_id: uuid.UUID
    from_branch_id: uuid.UUID
    to_branch_id: uuid.UUID
    transit_date: date
    status: str
    primary_driver_name: str
    primary_driver_mobile: str
    secondary_driver_name: Optional[str] = None
    secondary_driver_mobile: Optional[str] = None
    seal_number: Optional[str] = None
    remarks: Optional[str] = None
    created_by: Optional[uuid.UUID] = None
    dispatched_at: Optional[datetime] = None
    unloaded_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime


class ManifestDetailResponse(ManifestResponse):
    """
    Manifest with related records.

    Relation fields are null when the record was read without them.
    """
    vehicle: Optional[VehicleBrief] = None
    from_branch: Optional[BranchBrief] = None
    to_branch: Optional[BranchBrief] = None
    loading_records: Optional[List[LoadingRecordResponse]] = None


class ManifestListResponse(PaginatedResponse):
    """Paginated manifest list."""
    items: List[ManifestResponse]


class IncomingManifestsResponse(BaseModel):
    """Incoming manifests plus which read variant served them."""
    variant: str
    degraded: bool
    items: List[ManifestDetailResponse]


# ==================== LOADING OPERATIONS ====================

class ManifestAddBookings(BaseModel):
    """Attach bookings to a manifest."""
    booking_ids: List[uuid.UUID] = Field(..., min_length=1)
