from pydantic import Field

from app.schemas.base import BaseResponseSchema, BaseCreateSchema, PaginatedResponse
from typing import Optional, List
from datetime import datetime
import uuid


class CustomerCreate(BaseCreateSchema):
    """Customer creation schema."""
    name: str = Field(..., min_length=1, max_length=200)
    mobile: str = Field(..., pattern=r"^\+?\d{10,15}$")
    email: Optional[str] = Field(None, max_length=255)
    address: Optional[str] = None
    gstin: Optional[str] = Field(None, max_length=15)
    branch_id: Optional[uuid.UUID] = None


class CustomerResponse(BaseResponseSchema):
    """Customer response schema."""
    id: uuid.UUID
    organization_id: uuid.UUID
    branch_id: Optional[uuid.UUID] = None
    name: str
    mobile: str
    email: Optional[str] = None
    address: Optional[str] = None
    gstin: Optional[str] = None
    is_active: bool
    created_at: datetime


class CustomerListResponse(PaginatedResponse):
    items: List[CustomerResponse]
