from pydantic import BaseModel, ConfigDict
from typing import Optional
from decimal import Decimal
from datetime import datetime
from servicehub.db.db_models import PricingType


class ServiceCreate(BaseModel):
    title: str
    description: str
    pricing_type: PricingType = PricingType.BUDGET
    price: Optional[Decimal] = None


class ServiceResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    professional_id: str
    title: str
    description: str
    pricing_type: str
    price: Optional[Decimal] = None
    created_at: Optional[datetime] = None


class ServiceSummary(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    title: str
    description: Optional[str] = None
    pricing_type: Optional[str] = None
    price: Optional[Decimal] = None
