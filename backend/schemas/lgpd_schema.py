from pydantic import BaseModel, Field
from typing import Optional, Literal
from datetime import date, datetime

ConsentType = Literal["MARKETING", "ANALYTICS", "PERSONALIZATION", "THIRD_PARTY_SHARING"]
RequestType = Literal["ACCESS", "RECTIFICATION", "ERASURE", "PORTABILITY", "RESTRICTION", "OBJECTION"]
RequestStatus = Literal["PENDING", "IN_PROGRESS", "COMPLETED", "REJECTED"]


class ConsentIn(BaseModel):
    consent_type: ConsentType
    granted: bool
    purpose: Optional[str] = None


class Consent(BaseModel):
    consent_type: str
    granted: bool
    purpose: Optional[str] = None
    granted_at: Optional[datetime] = None
    revoked_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class DataRequestCreate(BaseModel):
    type: RequestType
    reason: Optional[str] = Field(default=None, max_length=1000)


class RectificationRequest(BaseModel):
    first_name: Optional[str] = Field(default=None, min_length=2, max_length=50)
    last_name: Optional[str] = Field(default=None, min_length=2, max_length=50)
    phone: Optional[str] = None
    birth_date: Optional[date] = None


class DataRequest(BaseModel):
    id: int
    user_id: int
    type: str
    status: str
    reason: Optional[str] = None
    admin_email: Optional[str] = None
    admin_notes: Optional[str] = None
    requested_at: Optional[datetime] = None
    processed_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class ProcessDataRequest(BaseModel):
    action: Literal["approve", "reject"]
    admin_notes: Optional[str] = None
