from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Literal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, EmailStr, Field


DivisionType = Literal["GEOGRAPHIC", "SERVICE_LINE", "MARKET_SEGMENT", "BUSINESS_UNIT", "OPERATIONAL"]
PerformanceStatus = Literal["above_target", "on_target", "below_target", "no_target"]

_PHONE_PATTERN = r"^\+?[\d\s\-\(\)]+$"
_COLOR_PATTERN = r"^#[0-9A-Fa-f]{6}$"


class EntityKind(str, Enum):
    USER = "user"
    CONTACT = "contact"
    PROPERTY = "property"
    OPPORTUNITY = "opportunity"
    PROJECT = "project"


class DivisionAddress(BaseModel):
    model_config = ConfigDict(extra="allow")

    street: str = Field(min_length=1, max_length=255)
    city: str = Field(min_length=1, max_length=100)
    state: str = Field(min_length=2, max_length=50)
    zip: str = Field(pattern=r"^\d{5}(-\d{4})?$")
    country: str = Field(min_length=2, max_length=2)


class DivisionCreate(BaseModel):
    name: str = Field(min_length=1, max_length=150)
    description: str | None = Field(default=None, max_length=1000)
    division_type: DivisionType = "GEOGRAPHIC"
    phone: str | None = Field(default=None, pattern=_PHONE_PATTERN)
    email: EmailStr | None = None
    address: DivisionAddress | None = None
    division_manager_id: UUID | None = None
    parent_division_id: UUID | None = None
    target_revenue: Decimal | None = Field(default=None, ge=Decimal("0"))
    target_margin_percentage: Decimal | None = Field(default=None, ge=Decimal("0"), le=Decimal("100"))
    color_code: str | None = Field(default=None, pattern=_COLOR_PATTERN)
    icon: str | None = Field(default=None, max_length=64)
    settings: dict[str, Any] | None = None


class DivisionUpdate(BaseModel):
    """Partial update; only fields present in the payload are applied.

    ``parent_division_id: null`` detaches the division to become a root,
    while omitting the key leaves the parent untouched.
    """

    name: str | None = Field(default=None, min_length=1, max_length=150)
    description: str | None = Field(default=None, max_length=1000)
    division_type: DivisionType | None = None
    phone: str | None = Field(default=None, pattern=_PHONE_PATTERN)
    email: EmailStr | None = None
    address: DivisionAddress | None = None
    division_manager_id: UUID | None = None
    parent_division_id: UUID | None = None
    target_revenue: Decimal | None = Field(default=None, ge=Decimal("0"))
    target_margin_percentage: Decimal | None = Field(default=None, ge=Decimal("0"), le=Decimal("100"))
    color_code: str | None = Field(default=None, pattern=_COLOR_PATTERN)
    icon: str | None = Field(default=None, max_length=64)
    settings: dict[str, Any] | None = None


class DivisionRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    company_id: UUID
    name: str
    description: str | None
    division_type: DivisionType
    phone: str | None
    email: str | None
    address: dict[str, Any] | None
    division_manager_id: UUID | None
    parent_division_id: UUID | None
    target_revenue: Decimal | None
    target_margin_percentage: Decimal | None
    employee_count: int
    active_projects_count: int
    color_code: str
    icon: str | None
    sort_order: int
    settings: dict[str, Any]
    is_active: bool
    created_at: datetime
    updated_at: datetime
    created_by: str | None
    updated_by: str | None


class DivisionHierarchyNode(BaseModel):
    division: DivisionRead
    children: list[DivisionHierarchyNode] = Field(default_factory=list)
    level: int
    path: list[str]


class DivisionRelativeRead(BaseModel):
    division: DivisionRead
    depth: int


class DivisionStatsRead(BaseModel):
    id: UUID
    name: str
    division_type: DivisionType
    employee_count: int
    active_projects_count: int
    total_revenue: Decimal
    total_opportunities: int
    avg_project_value: Decimal
    completion_rate: float
    target_revenue: Decimal | None
    target_margin_percentage: Decimal | None
    performance_status: PerformanceStatus
    assigned_entities: dict[str, int]


class EntityReassignmentRequest(BaseModel):
    entity_type: EntityKind
    entity_id: UUID
    new_division_id: UUID | None = None


class EntityReassignmentResult(BaseModel):
    success: bool
    entity_type: EntityKind
    entity_id: UUID
    previous_division_id: UUID | None = None
    new_division_id: UUID | None = None
    message: str
    error_code: str | None = None


class BulkReassignmentRequest(BaseModel):
    assignments: list[EntityReassignmentRequest] = Field(min_length=1)


class BulkReassignmentResult(BaseModel):
    success_count: int
    failure_count: int
    results: list[EntityReassignmentResult]
