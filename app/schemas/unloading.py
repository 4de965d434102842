"""Pydantic schemas for the unloading workflow."""
from pydantic import BaseModel, Field, TypeAdapter, field_validator
from typing import Annotated, Any, Dict, List, Literal, Optional, Union
from datetime import datetime
import uuid

from app.schemas.base import BaseResponseSchema, PaginatedResponse


# ==================== ITEM CONDITIONS ====================

class GoodCondition(BaseModel):
    status: Literal["good"]
    remarks: Optional[str] = None
    photo: Optional[str] = None


class DamagedCondition(BaseModel):
    """Damaged items must say what is wrong."""
    status: Literal["damaged"]
    remarks: str
    photo: Optional[str] = None

    @field_validator("remarks")
    @classmethod
    def remarks_not_blank(cls, v: str) -> str:
        if not v or not v.strip():
            raise ValueError("remarks are required for damaged items")
        return v.strip()


class MissingCondition(BaseModel):
    status: Literal["missing"]
    remarks: Optional[str] = None
    photo: Optional[str] = None


ItemCondition = Annotated[
    Union[GoodCondition, DamagedCondition, MissingCondition],
    Field(discriminator="status"),
]

item_condition_adapter = TypeAdapter(ItemCondition)


# ==================== REQUESTS ====================

class UnloadRequest(BaseModel):
    """
    Unload a manifest.

    Identifiers and conditions are kept raw here; the unloading service
    validates all of them before writing anything.
    """
    manifest_id: str
    booking_ids: List[str] = Field(default_factory=list)
    conditions: Dict[str, Dict[str, Any]] = Field(default_factory=dict)
    notes: Optional[str] = None


# ==================== RESPONSES ====================

class UnloadingSessionResponse(BaseResponseSchema):
    """Unloading session response schema."""
    id: uuid.UUID
    organization_id: uuid.UUID
    manifest_id: uuid.UUID
    branch_id: uuid.UUID
    unloaded_by: Optional[uuid.UUID] = None
    total_items: int
    items_good: int
    items_damaged: int
    items_missing: int
    notes: Optional[str] = None
    unloaded_at: datetime


class UnloadingSessionListResponse(PaginatedResponse):
    items: List[UnloadingSessionResponse]


class UnloadingStatsResponse(BaseModel):
    """Unloading totals for the caller's scope."""
    total_sessions: int
    total_items: int
    items_good: int
    items_damaged: int
    items_missing: int
