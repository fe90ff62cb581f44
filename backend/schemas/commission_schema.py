from pydantic import BaseModel, Field
from typing import Optional, Literal, Dict, Any
from datetime import datetime
from decimal import Decimal

CommissionStatus = Literal["PENDING", "AVAILABLE", "REQUESTED", "PAID", "CANCELED"]
WithdrawalStatus = Literal["PENDING", "APPROVED", "PROCESSING", "PAID", "REJECTED", "CANCELED"]


class Commission(BaseModel):
    id: int
    earner_id: int
    source_id: int
    billing_history_id: Optional[int] = None
    type: str
    amount: Decimal
    percentage: Decimal
    status: str
    withdrawal_request_id: Optional[int] = None
    available_at: Optional[datetime] = None
    paid_at: Optional[datetime] = None
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class WithdrawalCreate(BaseModel):
    # Whole centavos only
    amount: Decimal = Field(..., decimal_places=2)


class Withdrawal(BaseModel):
    id: int
    user_id: int
    amount: Decimal
    status: str
    bank_data: Dict[str, Any]
    admin_notes: Optional[str] = None
    processed_at: Optional[datetime] = None
    paid_at: Optional[datetime] = None
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class WithdrawalProcess(BaseModel):
    status: WithdrawalStatus
    admin_notes: Optional[str] = None


class CommissionTransition(BaseModel):
    status: CommissionStatus
