from __future__ import annotations

import uuid
from datetime import datetime, timezone
from decimal import Decimal

from sqlalchemy import Boolean, DateTime, ForeignKey, Index, Numeric, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from app.core.database import Base


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Company(Base):
    __tablename__ = "company"

    id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    business_name: Mapped[str] = mapped_column(Text, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default="true")
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)


class DivisionAssignedMixin:
    """Columns shared by every entity that can be moved between divisions."""

    id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    company_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("company.id", ondelete="CASCADE"),
        nullable=False,
    )
    division_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("division.id", ondelete="SET NULL"),
        nullable=True,
    )
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default="true")
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
        onupdate=utcnow,
    )
    updated_by: Mapped[str | None] = mapped_column(String(128), nullable=True)


class CRMUser(DivisionAssignedMixin, Base):
    __tablename__ = "crm_user"

    first_name: Mapped[str] = mapped_column(Text, nullable=False)
    last_name: Mapped[str] = mapped_column(Text, nullable=False)
    email: Mapped[str] = mapped_column(Text, nullable=False)

    __table_args__ = (Index("ix_crm_user_division", "company_id", "division_id", "is_active"),)


class CRMContact(DivisionAssignedMixin, Base):
    __tablename__ = "crm_contact"

    first_name: Mapped[str] = mapped_column(Text, nullable=False)
    last_name: Mapped[str] = mapped_column(Text, nullable=False)
    email: Mapped[str | None] = mapped_column(Text, nullable=True)

    __table_args__ = (Index("ix_crm_contact_division", "company_id", "division_id", "is_active"),)


class CRMProperty(DivisionAssignedMixin, Base):
    __tablename__ = "crm_property"

    name: Mapped[str] = mapped_column(Text, nullable=False)
    street: Mapped[str | None] = mapped_column(Text, nullable=True)
    city: Mapped[str | None] = mapped_column(Text, nullable=True)

    __table_args__ = (Index("ix_crm_property_division", "company_id", "division_id", "is_active"),)


class CRMOpportunity(DivisionAssignedMixin, Base):
    __tablename__ = "crm_opportunity"

    name: Mapped[str] = mapped_column(Text, nullable=False)
    amount: Mapped[Decimal | None] = mapped_column(Numeric(18, 2), nullable=True)

    __table_args__ = (Index("ix_crm_opportunity_division", "company_id", "division_id", "is_active"),)


class CRMProject(DivisionAssignedMixin, Base):
    __tablename__ = "crm_project"

    name: Mapped[str] = mapped_column(Text, nullable=False)
    project_status: Mapped[str] = mapped_column(String(32), nullable=False, default="PLANNING", server_default="PLANNING")
    contract_value: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False, default=Decimal("0"))

    __table_args__ = (Index("ix_crm_project_division", "company_id", "division_id", "is_active"),)
