"""Customer master service."""
import logging
import uuid
from typing import List, Optional, Tuple

from sqlalchemy import select, func, and_, or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.exceptions import ConflictFailure, NotFoundFailure
from app.core.permissions import AuthContext, branch_scope_clause
from app.models.customer import Customer
from app.schemas.customer import CustomerCreate

logger = logging.getLogger(__name__)


class CustomerService:
    """Consignor/consignee records, unique by mobile within an organization."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def create_customer(self, auth: AuthContext, data: CustomerCreate) -> Customer:
        existing = await self.db.execute(
            select(Customer.id).where(
                Customer.organization_id == auth.organization_id,
                Customer.mobile == data.mobile,
            )
        )
        if existing.scalar_one_or_none():
            raise ConflictFailure(
                "Customer with this mobile number already exists",
                {"mobile": data.mobile},
            )

        # Non-elevated callers always register customers at their own branch
        branch_id = data.branch_id if auth.is_elevated else auth.branch_id

        customer = Customer(
            organization_id=auth.organization_id,
            branch_id=branch_id,
            name=data.name.strip(),
            mobile=data.mobile,
            email=data.email,
            address=data.address,
            gstin=data.gstin,
        )
        self.db.add(customer)
        try:
            await self.db.commit()
        except IntegrityError as e:
            # Lost a race against a concurrent create with the same mobile
            await self.db.rollback()
            raise ConflictFailure(
                "Customer with this mobile number already exists",
                {"mobile": data.mobile},
            ) from e

        await self.db.refresh(customer)
        logger.info(f"Customer {customer.id} created by {auth.caller_id}")
        return customer

    async def get_customer(self, auth: AuthContext, customer_id: uuid.UUID) -> Customer:
        result = await self.db.execute(
            select(Customer).where(
                Customer.id == customer_id,
                Customer.organization_id == auth.organization_id,
                or_(
                    Customer.branch_id.is_(None),
                    branch_scope_clause(auth, [Customer.branch_id]),
                ),
            )
        )
        customer = result.scalar_one_or_none()
        if not customer:
            raise NotFoundFailure("Customer not found", {"customer_id": str(customer_id)})
        return customer

    async def list_customers(
        self,
        auth: AuthContext,
        search: Optional[str] = None,
        page: int = 1,
        size: int = 20,
    ) -> Tuple[List[Customer], int]:
        """Active customers visible to the caller; organization-wide ones included."""
        filters = [
            Customer.organization_id == auth.organization_id,
            Customer.is_active == True,
            or_(
                Customer.branch_id.is_(None),
                branch_scope_clause(auth, [Customer.branch_id]),
            ),
        ]
        if search:
            pattern = f"%{search.strip()}%"
            filters.append(or_(Customer.name.ilike(pattern), Customer.mobile.ilike(pattern)))

        total = (
            await self.db.execute(select(func.count(Customer.id)).where(and_(*filters)))
        ).scalar() or 0

        result = await self.db.execute(
            select(Customer)
            .where(and_(*filters))
            .order_by(Customer.name)
            .offset((page - 1) * size)
            .limit(size)
        )
        return list(result.scalars().all()), total
