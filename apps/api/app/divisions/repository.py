from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from decimal import Decimal
from typing import Any

from sqlalchemy import Select, and_, func, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, selectinload

from app.crm.models import CRMContact, CRMOpportunity, CRMProject, CRMProperty, CRMUser
from app.divisions.closure import ClosureTableMaintainer, closure_maintainer
from app.divisions.models import Division, DivisionClosure, default_settings, utcnow
from app.divisions.schemas import EntityKind


logger = logging.getLogger("app.divisions.repository")

ENTITY_MODELS: dict[EntityKind, type[Any]] = {
    EntityKind.USER: CRMUser,
    EntityKind.CONTACT: CRMContact,
    EntityKind.PROPERTY: CRMProperty,
    EntityKind.OPPORTUNITY: CRMOpportunity,
    EntityKind.PROJECT: CRMProject,
}

_UPDATABLE_FIELDS = {
    "name",
    "description",
    "division_type",
    "phone",
    "email",
    "address",
    "division_manager_id",
    "parent_division_id",
    "target_revenue",
    "target_margin_percentage",
    "color_code",
    "icon",
    "settings",
}


@dataclass(frozen=True, slots=True)
class EntityDivisionRef:
    entity_id: uuid.UUID
    company_id: uuid.UUID
    division_id: uuid.UUID | None


def _active(stmt: Select[Any]) -> Select[Any]:
    return stmt.where(and_(Division.is_active.is_(True), Division.deleted_at.is_(None)))


class DivisionHierarchyStore:
    """Tenant-scoped persistence for divisions.

    Structural changes (create, re-parent) run in a single transaction with
    the closure-table writes they imply. Business rules live in the service.
    """

    def __init__(self, maintainer: ClosureTableMaintainer | None = None) -> None:
        self.maintainer = maintainer or closure_maintainer

    def create(self, session: Session, data: dict[str, Any]) -> Division:
        company_id = data["company_id"]
        max_sort_order = session.scalar(
            _active(select(func.max(Division.sort_order)).where(Division.company_id == company_id))
        )

        division = Division(
            company_id=company_id,
            name=data["name"],
            description=data.get("description"),
            division_type=data.get("division_type") or "GEOGRAPHIC",
            phone=data.get("phone"),
            email=data.get("email"),
            address=data.get("address"),
            division_manager_id=data.get("division_manager_id"),
            parent_division_id=data.get("parent_division_id"),
            target_revenue=data.get("target_revenue"),
            target_margin_percentage=data.get("target_margin_percentage"),
            icon=data.get("icon"),
            sort_order=(max_sort_order or 0) + 1,
            settings=data.get("settings") or default_settings(),
            created_by=data.get("created_by"),
            updated_by=data.get("updated_by") or data.get("created_by"),
        )
        if data.get("color_code"):
            division.color_code = data["color_code"]

        try:
            session.add(division)
            session.flush()
            self.maintainer.on_create(session, division.id, division.parent_division_id)
            session.commit()
        except SQLAlchemyError:
            session.rollback()
            raise
        session.refresh(division)
        return division

    def find_by_id(self, session: Session, division_id: uuid.UUID) -> Division | None:
        return session.scalar(_active(select(Division).where(Division.id == division_id)))

    def find_by_company(self, session: Session, company_id: uuid.UUID) -> list[Division]:
        stmt = _active(select(Division).where(Division.company_id == company_id))
        return list(session.scalars(stmt.order_by(Division.sort_order.asc())).all())

    def find_by_name(self, session: Session, company_id: uuid.UUID, name: str) -> Division | None:
        stmt = _active(
            select(Division).where(
                and_(
                    Division.company_id == company_id,
                    func.lower(Division.name) == func.lower(name.strip()),
                )
            )
        )
        return session.scalars(stmt.order_by(Division.sort_order.asc())).first()

    def find_hierarchy(self, session: Session, company_id: uuid.UUID) -> list[Division]:
        stmt = (
            _active(select(Division).where(Division.company_id == company_id))
            .options(selectinload(Division.child_divisions))
            .order_by(Division.sort_order.asc())
        )
        return list(session.scalars(stmt).all())

    def find_ancestors(self, session: Session, division_id: uuid.UUID) -> list[tuple[Division, int]]:
        stmt = (
            _active(select(Division, DivisionClosure.depth))
            .join(DivisionClosure, DivisionClosure.ancestor_id == Division.id)
            .where(and_(DivisionClosure.descendant_id == division_id, DivisionClosure.depth > 0))
            .order_by(DivisionClosure.depth.asc())
        )
        return [(division, depth) for division, depth in session.execute(stmt).all()]

    def find_descendants(self, session: Session, division_id: uuid.UUID) -> list[tuple[Division, int]]:
        stmt = (
            _active(select(Division, DivisionClosure.depth))
            .join(DivisionClosure, DivisionClosure.descendant_id == Division.id)
            .where(and_(DivisionClosure.ancestor_id == division_id, DivisionClosure.depth > 0))
            .order_by(DivisionClosure.depth.asc(), Division.sort_order.asc())
        )
        return [(division, depth) for division, depth in session.execute(stmt).all()]

    def is_descendant(self, session: Session, division_id: uuid.UUID, candidate_id: uuid.UUID) -> bool:
        return self.maintainer.is_ancestor(session, division_id, candidate_id)

    def update(self, session: Session, division_id: uuid.UUID, data: dict[str, Any]) -> Division | None:
        changes = {key: value for key, value in data.items() if key in _UPDATABLE_FIELDS}
        try:
            division = session.get(Division, division_id)
            if division is None:
                return None

            old_parent_id = division.parent_division_id
            for field_name, value in changes.items():
                setattr(division, field_name, value)
            division.updated_by = data.get("updated_by", division.updated_by)
            division.updated_at = utcnow()
            session.flush()

            if "parent_division_id" in changes and old_parent_id != changes["parent_division_id"]:
                self.maintainer.on_reparent(session, division.id, old_parent_id, changes["parent_division_id"])

            session.commit()
        except SQLAlchemyError as exc:
            session.rollback()
            logger.exception("division.update_failed", extra={"division_id": str(division_id), "error": str(exc)})
            raise

        session.refresh(division)
        return division

    def delete(self, session: Session, division_id: uuid.UUID, actor_id: str) -> bool:
        division = session.get(Division, division_id)
        if division is None:
            return False

        now = utcnow()
        division.is_active = False
        division.deleted_at = now
        division.updated_at = now
        division.updated_by = actor_id
        try:
            session.commit()
        except SQLAlchemyError as exc:
            session.rollback()
            logger.exception("division.delete_failed", extra={"division_id": str(division_id), "error": str(exc)})
            return False
        return True

    def count_assigned_entities(self, session: Session, division_id: uuid.UUID) -> dict[str, int]:
        counts: dict[str, int] = {}
        for kind, model in ENTITY_MODELS.items():
            counts[kind.value] = int(
                session.scalar(
                    select(func.count())
                    .select_from(model)
                    .where(and_(model.division_id == division_id, model.is_active.is_(True)))
                )
                or 0
            )
        return counts

    def find_entity(self, session: Session, kind: EntityKind, entity_id: uuid.UUID) -> EntityDivisionRef | None:
        model = ENTITY_MODELS[kind]
        row = session.execute(
            select(model.id, model.company_id, model.division_id).where(model.id == entity_id)
        ).first()
        if row is None:
            return None
        return EntityDivisionRef(entity_id=row.id, company_id=row.company_id, division_id=row.division_id)

    def reassign_user(self, session: Session, user_id: uuid.UUID, division_id: uuid.UUID, actor_id: str) -> bool:
        return self._reassign(session, CRMUser, user_id, division_id, actor_id)

    def reassign_contact(self, session: Session, contact_id: uuid.UUID, division_id: uuid.UUID, actor_id: str) -> bool:
        return self._reassign(session, CRMContact, contact_id, division_id, actor_id)

    def reassign_property(self, session: Session, property_id: uuid.UUID, division_id: uuid.UUID, actor_id: str) -> bool:
        return self._reassign(session, CRMProperty, property_id, division_id, actor_id)

    def reassign_opportunity(
        self,
        session: Session,
        opportunity_id: uuid.UUID,
        division_id: uuid.UUID,
        actor_id: str,
    ) -> bool:
        return self._reassign(session, CRMOpportunity, opportunity_id, division_id, actor_id)

    def reassign_project(self, session: Session, project_id: uuid.UUID, division_id: uuid.UUID, actor_id: str) -> bool:
        return self._reassign(session, CRMProject, project_id, division_id, actor_id)

    def get_stats(self, session: Session, division_id: uuid.UUID) -> dict[str, Any] | None:
        division = self.find_by_id(session, division_id)
        if division is None:
            return None

        projects = session.execute(
            select(CRMProject.project_status, CRMProject.contract_value).where(
                and_(CRMProject.division_id == division_id, CRMProject.is_active.is_(True))
            )
        ).all()
        total_opportunities = int(
            session.scalar(
                select(func.count())
                .select_from(CRMOpportunity)
                .where(and_(CRMOpportunity.division_id == division_id, CRMOpportunity.is_active.is_(True)))
            )
            or 0
        )

        completed = [Decimal(value or 0) for status, value in projects if status == "COMPLETED"]
        total_revenue = sum(completed, Decimal("0"))
        total_projects = len(projects)
        completion_rate = (len(completed) / total_projects) * 100 if total_projects else 0.0
        avg_project_value = total_revenue / total_projects if total_projects else Decimal("0")

        performance_status = "no_target"
        if division.target_revenue:
            achievement = total_revenue / Decimal(division.target_revenue)
            if achievement >= Decimal("1.1"):
                performance_status = "above_target"
            elif achievement >= Decimal("0.9"):
                performance_status = "on_target"
            else:
                performance_status = "below_target"

        return {
            "id": division.id,
            "name": division.name,
            "division_type": division.division_type,
            "employee_count": division.employee_count,
            "active_projects_count": division.active_projects_count,
            "total_revenue": total_revenue,
            "total_opportunities": total_opportunities,
            "avg_project_value": avg_project_value,
            "completion_rate": completion_rate,
            "target_revenue": division.target_revenue,
            "target_margin_percentage": division.target_margin_percentage,
            "performance_status": performance_status,
            "assigned_entities": self.count_assigned_entities(session, division_id),
        }

    def _reassign(
        self,
        session: Session,
        model: type[Any],
        entity_id: uuid.UUID,
        division_id: uuid.UUID,
        actor_id: str,
    ) -> bool:
        result = session.execute(
            update(model)
            .where(model.id == entity_id)
            .values(division_id=division_id, updated_by=actor_id, updated_at=utcnow())
            .execution_options(synchronize_session="fetch")
        )
        if not result.rowcount:
            session.rollback()
            return False
        session.commit()
        return True


division_store = DivisionHierarchyStore()
