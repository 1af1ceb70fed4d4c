from __future__ import annotations

import uuid
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    Uuid,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.core.database import Base


DIVISION_TYPES = ("GEOGRAPHIC", "SERVICE_LINE", "MARKET_SEGMENT", "BUSINESS_UNIT", "OPERATIONAL")
DEFAULT_COLOR_CODE = "#007bff"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def default_settings() -> dict[str, Any]:
    return {
        "operating_region": [],
        "specializations": [],
        "budget_limits": {},
        "custom_fields": {},
        "automation_rules": {},
    }


class Division(Base):
    __tablename__ = "division"

    id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    company_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("company.id", ondelete="CASCADE"),
        nullable=False,
    )
    name: Mapped[str] = mapped_column(String(150), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    division_type: Mapped[str] = mapped_column(String(32), nullable=False, default="GEOGRAPHIC", server_default="GEOGRAPHIC")
    phone: Mapped[str | None] = mapped_column(String(32), nullable=True)
    email: Mapped[str | None] = mapped_column(String(255), nullable=True)
    address: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)
    parent_division_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("division.id", ondelete="SET NULL"),
        nullable=True,
    )
    # crm_user.id of an active user in the same company; checked by DivisionHierarchyService.
    division_manager_id: Mapped[uuid.UUID | None] = mapped_column(Uuid(as_uuid=True), nullable=True)
    target_revenue: Mapped[Decimal | None] = mapped_column(Numeric(18, 2), nullable=True)
    target_margin_percentage: Mapped[Decimal | None] = mapped_column(Numeric(5, 2), nullable=True)
    employee_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    active_projects_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    color_code: Mapped[str] = mapped_column(String(7), nullable=False, default=DEFAULT_COLOR_CODE)
    icon: Mapped[str | None] = mapped_column(String(64), nullable=True)
    sort_order: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    settings: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False, default=default_settings)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default="true")
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
        onupdate=utcnow,
    )
    deleted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_by: Mapped[str | None] = mapped_column(String(128), nullable=True)
    updated_by: Mapped[str | None] = mapped_column(String(128), nullable=True)

    parent_division: Mapped[Division | None] = relationship(
        "Division",
        remote_side=[id],
        back_populates="child_divisions",
    )
    child_divisions: Mapped[list[Division]] = relationship(
        "Division",
        back_populates="parent_division",
        order_by="Division.sort_order",
    )

    __table_args__ = (
        CheckConstraint(
            "division_type IN (" + ", ".join(f"'{value}'" for value in DIVISION_TYPES) + ")",
            name="ck_division_type",
        ),
        Index("ix_division_scope", "company_id", "is_active", "sort_order"),
        Index("ix_division_parent", "parent_division_id"),
    )


class DivisionClosure(Base):
    __tablename__ = "division_closure"

    ancestor_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("division.id", ondelete="CASCADE"),
        primary_key=True,
    )
    descendant_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("division.id", ondelete="CASCADE"),
        primary_key=True,
    )
    depth: Mapped[int] = mapped_column(Integer, nullable=False)

    __table_args__ = (
        CheckConstraint("depth >= 0", name="ck_division_closure_depth"),
        Index("ix_division_closure_descendant", "descendant_id", "depth"),
    )
