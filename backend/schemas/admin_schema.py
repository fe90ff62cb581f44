from pydantic import BaseModel, Field
from typing import Optional
from decimal import Decimal


class CommissionSettingsUpdate(BaseModel):
    default_percentage: Optional[Decimal] = Field(default=None, ge=0, le=1)
    release_days: Optional[int] = Field(default=None, ge=0, le=365)
    min_withdrawal_amount: Optional[Decimal] = Field(default=None, gt=0)


class UserStatusUpdate(BaseModel):
    is_active: bool
