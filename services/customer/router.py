"""
services/customer/router.py
Customer registration. Customers are identified by phone number.
"""

import logging

from fastapi import APIRouter, Depends, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from config.database import get_db
from shared.errors import DuplicateRecord
from shared.models.models import Customer
from shared.schemas.schemas import CustomerCreate, CustomerResponse
from shared.utils.security import hash_password

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/customers", tags=["Customers"])


@router.post("", response_model=CustomerResponse, status_code=status.HTTP_201_CREATED)
async def register_customer(
    data: CustomerCreate,
    db: AsyncSession = Depends(get_db),
):
    """Create a customer account. 409 if the phone number is already registered."""
    result = await db.execute(select(Customer).where(Customer.phone == data.phone))
    if result.scalar_one_or_none():
        raise DuplicateRecord("An account with this phone number already exists")

    customer = Customer(
        phone=data.phone,
        password_hash=hash_password(data.password),
        name=data.name,
        email=str(data.email).lower() if data.email else None,
    )
    db.add(customer)
    await db.flush()
    await db.commit()

    logger.info("Customer %s registered", customer.id)
    return CustomerResponse.model_validate(customer)
