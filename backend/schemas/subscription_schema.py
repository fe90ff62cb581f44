from pydantic import BaseModel, Field
from typing import List, Optional, Literal
from datetime import datetime
from decimal import Decimal

BillingCycle = Literal["MONTHLY", "QUARTERLY", "YEARLY"]


class PlanCreate(BaseModel):
    name: str = Field(min_length=2, max_length=100)
    description: str = ""
    price: Decimal = Field(gt=0)
    billing_cycle: BillingCycle = "MONTHLY"
    benefits: List[str] = []
    commission_percentage: Optional[Decimal] = Field(default=None, ge=0, le=1)
    is_active: bool = True


class Plan(BaseModel):
    id: int
    name: str
    description: Optional[str] = ""
    price: Decimal
    billing_cycle: str
    benefits: List[str] = []
    commission_percentage: Optional[Decimal] = None
    is_active: bool

    class Config:
        from_attributes = True


class SubscribeRequest(BaseModel):
    plan_id: int


class Subscription(BaseModel):
    id: int
    user_id: int
    plan_id: int
    status: str
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    next_billing_date: Optional[datetime] = None
    created_at: Optional[datetime] = None
    plan: Optional[Plan] = None

    class Config:
        from_attributes = True


class PaymentRecord(BaseModel):
    amount: Optional[Decimal] = Field(default=None, gt=0)
    payment_method: str = "manual"
    external_reference: str = Field(min_length=1, max_length=255)


class BillingEntry(BaseModel):
    id: int
    subscription_id: int
    amount: Decimal
    status: str
    payment_method: Optional[str] = None
    external_reference: Optional[str] = None
    paid_at: Optional[datetime] = None
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True
