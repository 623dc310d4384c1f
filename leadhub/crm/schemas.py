from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Annotated, Any
from uuid import UUID

from pydantic import BaseModel, ConfigDict, EmailStr, Field, StringConstraints


PersonName = Annotated[str, StringConstraints(strip_whitespace=True, min_length=1, max_length=120)]
# Passwords are never stripped; the upper bound is bcrypt's input limit.
Password = Annotated[str, Field(min_length=6, max_length=72)]


class UserSummary(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    first_name: str
    last_name: str
    email: str
    role: str


class LeadBrief(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    first_name: str
    last_name: str
    email: str
    company: str | None = None
    status: str


class Pagination(BaseModel):
    total: int
    page: int
    limit: int
    pages: int


class LeadCreate(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    first_name: str = Field(min_length=1, max_length=120)
    last_name: str = Field(min_length=1, max_length=120)
    email: EmailStr
    phone: str | None = None
    company: str | None = None
    title: str | None = None
    status: str | None = None
    source: str | None = None
    estimated_value: Decimal | None = Field(default=None, ge=0)
    notes: str | None = None
    assigned_to_id: UUID | None = None


class LeadUpdate(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    first_name: str | None = Field(default=None, min_length=1, max_length=120)
    last_name: str | None = Field(default=None, min_length=1, max_length=120)
    email: EmailStr | None = None
    phone: str | None = None
    company: str | None = None
    title: str | None = None
    status: str | None = None
    source: str | None = None
    estimated_value: Decimal | None = Field(default=None, ge=0)
    notes: str | None = None
    assigned_to_id: UUID | None = None
    row_version: int | None = None


class LeadAssignRequest(BaseModel):
    assigned_to_id: UUID


class LeadStatusRequest(BaseModel):
    status: str


class LeadRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    first_name: str
    last_name: str
    email: str
    phone: str | None
    company: str | None
    title: str | None
    status: str
    source: str | None
    estimated_value: float
    notes: str | None
    assigned_to_id: UUID | None
    created_by_id: UUID
    assigned_to: UserSummary | None = None
    created_by: UserSummary | None = None
    created_at: datetime
    updated_at: datetime
    row_version: int


class ActivityCreate(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    type: str
    title: str = Field(min_length=1, max_length=255)
    description: str | None = None
    lead_id: UUID
    scheduled_at: datetime | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)


class ActivityUpdate(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    type: str | None = None
    title: str | None = Field(default=None, min_length=1, max_length=255)
    description: str | None = None
    scheduled_at: datetime | None = None
    metadata: dict[str, Any] | None = None


class ActivityRead(BaseModel):
    id: UUID
    type: str
    title: str
    description: str | None
    lead_id: UUID
    user_id: UUID
    scheduled_at: datetime | None
    metadata: dict[str, Any]
    created_at: datetime
    updated_at: datetime
    lead: LeadBrief | None = None
    user: UserSummary | None = None


class LeadDetailRead(LeadRead):
    activities: list[ActivityRead] = Field(default_factory=list)


class LeadListResponse(BaseModel):
    leads: list[LeadRead]
    pagination: Pagination


class ActivityListResponse(BaseModel):
    activities: list[ActivityRead]
    pagination: Pagination


class UserCreate(BaseModel):
    email: EmailStr
    first_name: PersonName
    last_name: PersonName
    role: str = "Sales Executive"
    is_active: bool = True
    password: Password | None = None


class UserUpdate(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    email: EmailStr | None = None
    first_name: str | None = Field(default=None, min_length=1, max_length=120)
    last_name: str | None = Field(default=None, min_length=1, max_length=120)
    role: str | None = None
    is_active: bool | None = None


class UserRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    email: str
    first_name: str
    last_name: str
    role: str
    is_active: bool
    created_at: datetime
    updated_at: datetime


class UserDetailRead(UserRead):
    assigned_leads: list[LeadBrief] = Field(default_factory=list)


class UserListResponse(BaseModel):
    users: list[UserRead]
    pagination: Pagination


class RegisterRequest(BaseModel):
    email: EmailStr
    password: Password
    first_name: PersonName
    last_name: PersonName
    role: str = "Sales Executive"


class LoginRequest(BaseModel):
    email: EmailStr
    password: str = Field(min_length=1)


class AuthResponse(BaseModel):
    user: UserRead
    token: str
