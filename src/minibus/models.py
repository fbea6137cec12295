from __future__ import annotations

from datetime import date, datetime
from typing import Literal

from pydantic import BaseModel, Field

Role = Literal["user", "driver", "admin"]
BookingStatus = Literal["confirmed", "cancelled"]
IssueSeverity = Literal["low", "medium", "high", "critical"]
IssueStatus = Literal["open", "in_progress", "resolved"]
DocumentType = Literal["insurance", "itp", "vignette"]


class BookingCreate(BaseModel):
    start_date: datetime
    end_date: datetime
    purpose: str | None = Field(default=None, max_length=500)


class Booking(BaseModel):
    booking_id: int
    resource_id: str
    user_id: int
    name: str
    phone: str
    start_date: datetime
    end_date: datetime
    purpose: str | None = None
    status: BookingStatus = "confirmed"
    created_at: datetime
    cancelled_at: datetime | None = None


class BookingCreated(BaseModel):
    id: int
    message: str = "Booking created"


class UserCreate(BaseModel):
    name: str = Field(..., min_length=1)
    phone: str = Field(..., min_length=1)
    email: str | None = None
    role: Role = "user"


class User(BaseModel):
    id: int
    name: str
    phone: str
    role: Role = "user"
    email: str | None = None
    created_at: datetime | None = None


class UserSummary(BaseModel):
    id: int
    name: str


class UserCreated(BaseModel):
    id: int
    message: str = "User created"


class PinRequest(BaseModel):
    phone: str = Field(..., min_length=1)


class PinValidate(BaseModel):
    phone: str = Field(..., min_length=1)
    pin: str


class EmailCheck(BaseModel):
    has_email: bool


class TokenClaims(BaseModel):
    user_id: int
    phone: str
    role: Role
    exp: int


class LoginResult(BaseModel):
    token: str
    user: User


class AccessLogEntry(BaseModel):
    user_id: int
    name: str
    phone: str
    role: Role
    timestamp: datetime
    ip: str = "unknown"
    user_agent: str = "unknown"


class Message(BaseModel):
    message: str


class IssueCreate(BaseModel):
    title: str = Field(..., min_length=1, max_length=200)
    description: str = Field(..., min_length=1, max_length=2000)
    severity: IssueSeverity
    location: str = Field(..., min_length=1, max_length=200)


class IssueUpdate(BaseModel):
    status: IssueStatus
    resolution_notes: str | None = Field(default=None, max_length=2000)


class Issue(BaseModel):
    id: int
    reported_by: int
    title: str
    description: str
    severity: IssueSeverity
    location: str
    status: IssueStatus = "open"
    resolution_notes: str | None = None
    created_at: datetime
    updated_at: datetime | None = None
    resolved_at: datetime | None = None
    resolved_by: int | None = None
    reporter_name: str | None = None
    reporter_phone: str | None = None


class IssueCreated(BaseModel):
    id: int
    message: str = "Issue reported"


class MaintenanceUpdate(BaseModel):
    type: str = Field(..., min_length=1)
    expiry_date: str = Field(..., min_length=1)


class MaintenanceItem(BaseModel):
    type: DocumentType
    label: str
    expiry_date: date
    status: str = "active"
    updated_at: datetime | None = None
    updated_by: int | None = None
