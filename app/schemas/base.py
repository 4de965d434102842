"""
Shared schema bases.

Response schemas read straight from ORM rows, so they inherit
``from_attributes``. Request schemas ignore unknown keys so older clients
that still send removed fields keep working.
"""

from pydantic import BaseModel, ConfigDict


class BaseResponseSchema(BaseModel):
    """
    Base for every schema built from an ORM object.

    Usage:
        class BookingBrief(BaseResponseSchema):
            id: UUID
            lr_number: str
    """
    model_config = ConfigDict(
        from_attributes=True,
        populate_by_name=True,
    )


class BaseCreateSchema(BaseModel):
    """Base for request bodies. UUIDs arrive as strings and are parsed here."""
    model_config = ConfigDict(
        extra='ignore',
    )


class PaginatedResponse(BaseModel):
    """Paging fields shared by the list endpoints; subclasses add ``items``."""
    total: int
    page: int
    size: int
    pages: int
