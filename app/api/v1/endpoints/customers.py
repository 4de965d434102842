"""Customer API endpoints."""
from typing import Optional
import uuid
from math import ceil

from fastapi import APIRouter, Query, status

from app.api.deps import DB, Auth
from app.schemas.customer import CustomerCreate, CustomerResponse, CustomerListResponse
from app.services.customer_service import CustomerService


router = APIRouter()


@router.post(
    "",
    response_model=CustomerResponse,
    status_code=status.HTTP_201_CREATED,
)
async def create_customer(data: CustomerCreate, db: DB, auth: Auth):
    customer = await CustomerService(db).create_customer(auth, data)
    return CustomerResponse.model_validate(customer)


@router.get("", response_model=CustomerListResponse)
async def list_customers(
    db: DB,
    auth: Auth,
    page: int = Query(1, ge=1),
    size: int = Query(20, ge=1, le=100),
    search: Optional[str] = Query(None),
):
    """Get paginated customers, searchable by name or mobile."""
    customers, total = await CustomerService(db).list_customers(auth, search=search, page=page, size=size)
    return CustomerListResponse(
        items=[CustomerResponse.model_validate(c) for c in customers],
        total=total,
        page=page,
        size=size,
        pages=ceil(total / size) if total > 0 else 1,
    )


@router.get("/{customer_id}", response_model=CustomerResponse)
async def get_customer(customer_id: uuid.UUID, db: DB, auth: Auth):
    customer = await CustomerService(db).get_customer(auth, customer_id)
    return CustomerResponse.model_validate(customer)
