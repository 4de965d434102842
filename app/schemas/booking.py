"""Pydantic schemas for Booking models."""
from pydantic import BaseModel, Field
from typing import Optional, List, Any, Dict
from datetime import datetime
from decimal import Decimal
import uuid

from app.models.booking import PaymentMode
from app.schemas.base import BaseResponseSchema, BaseCreateSchema, PaginatedResponse


# ==================== ARTICLE SCHEMAS ====================

class ArticleLine(BaseModel):
    """One article line on a booking request."""
    description: str = Field(..., min_length=1, max_length=255)
    quantity: int = Field(1, ge=1)
    weight_kg: Decimal = Field(Decimal("0"), ge=0)
    rate: Decimal = Field(Decimal("0"), ge=0)
    amount: Optional[Decimal] = Field(None, ge=0, description="Defaults to quantity x rate")


class BookingArticleResponse(BaseResponseSchema):
    id: uuid.UUID
    description: str
    quantity: int
    weight_kg: Decimal
    rate: Decimal
    amount: Decimal


# ==================== BOOKING SCHEMAS ====================

class BookingCreate(BaseCreateSchema):
    """
    Booking creation payload.

    Required fields are declared optional here; the booking service checks
    them in a fixed order and reports the first one missing.
    """
    customer_id: Optional[uuid.UUID] = None

    consignor_name: Optional[str] = None
    consignor_mobile: Optional[str] = None
    consignor_address: Optional[str] = None
    consignor_gstin: Optional[str] = Field(None, max_length=15)

    consignee_name: Optional[str] = None
    consignee_mobile: Optional[str] = None
    consignee_address: Optional[str] = None
    consignee_gstin: Optional[str] = Field(None, max_length=15)

    destination_address: Optional[str] = None

    from_branch_id: Optional[uuid.UUID] = None
    to_branch_id: Optional[uuid.UUID] = None

    articles: Optional[List[ArticleLine]] = None

    payment_mode: PaymentMode = PaymentMode.PAID
    declared_value: Decimal = Field(Decimal("0"), ge=0)
    loading_charges: Decimal = Field(Decimal("0"), ge=0)
    unloading_charges: Decimal = Field(Decimal("0"), ge=0)
    insurance_charge: Decimal = Field(Decimal("0"), ge=0)
    packaging_charge: Decimal = Field(Decimal("0"), ge=0)
    remarks: Optional[str] = None


class BookingResponse(BaseResponseSchema):
    """Booking response schema."""
    id: uuid.UUID
    organization_id: uuid.UUID
    lr_number: str
    from_branch_id: uuid.UUID
    to_branch_id: uuid.UUID
    customer_id: Optional[uuid.UUID] = None
    consignor_name: str
    consignor_mobile: str
    consignor_address: str
    consignor_gstin: Optional[str] = None
    consignee_name: str
    consignee_mobile: str
    consignee_address: str
    consignee_gstin: Optional[str] = None
    destination_address: str
    package_count: int
    weight_kg: Decimal
    declared_value: Decimal
    payment_mode: str
    freight_amount: Decimal
    loading_charges: Decimal
    unloading_charges: Decimal
    insurance_charge: Decimal
    packaging_charge: Decimal
    total_amount: Decimal
    remarks: Optional[str] = None
    status: str
    loaded_at: Optional[datetime] = None
    dispatched_at: Optional[datetime] = None
    delivered_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    cancellation_reason: Optional[str] = None
    unloading_status: Optional[str] = None
    unloading_session_id: Optional[uuid.UUID] = None
    pod_status: Optional[str] = None
    pod_data: Optional[Dict[str, Any]] = None
    created_by: Optional[uuid.UUID] = None
    created_at: datetime
    updated_at: datetime


class BookingDetailResponse(BookingResponse):
    """Booking with its article lines."""
    articles: List[BookingArticleResponse] = []


class BookingBrief(BaseResponseSchema):
    """Brief booking info."""
    id: uuid.UUID
    lr_number: str
    status: str
    consignor_name: str
    consignee_name: str
    package_count: int
    unloading_status: Optional[str] = None


class BookingListResponse(PaginatedResponse):
    """Paginated booking list."""
    items: List[BookingResponse]


# ==================== BOOKING OPERATIONS ====================

class BookingStatusUpdate(BaseModel):
    """Status transition with optional merge-patch payload."""
    status: str
    payload: Dict[str, Any] = Field(default_factory=dict)


class BookingCancelRequest(BaseModel):
    reason: str = Field(..., min_length=1)
