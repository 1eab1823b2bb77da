"""Catalog schemas."""

from decimal import Decimal
from typing import Optional

from pydantic import BaseModel


class BuffetPackageResponse(BaseModel):
    id: int
    name: str
    price: Decimal
    duration_minutes: Optional[int] = None
    is_active: bool

    model_config = {"from_attributes": True}


class ServiceResponse(BaseModel):
    id: int
    name: str
    category: Optional[str] = None
    price: Decimal
    commission_rate: Optional[Decimal] = None
    is_active: bool

    model_config = {"from_attributes": True}
