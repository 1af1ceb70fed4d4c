from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from typing import Any

from opentelemetry import trace
from sqlalchemy import and_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app import audit
from app.core.config import get_settings
from app.crm.models import CRMUser
from app.divisions.errors import BusinessRuleViolationError, ConflictError, NotFoundError
from app.divisions.models import Division
from app.divisions.repository import DivisionHierarchyStore, division_store
from app.divisions.schemas import (
    DivisionCreate,
    DivisionHierarchyNode,
    DivisionRead,
    DivisionRelativeRead,
    DivisionStatsRead,
    DivisionUpdate,
)


logger = logging.getLogger("app.divisions.service")
tracer = trace.get_tracer("app.divisions")

DEFAULT_DIVISION_DESCRIPTION = "Default division for company-level operations"

# Columns that cannot be cleared through a partial update.
_NON_NULLABLE_UPDATES = {"name", "division_type", "color_code", "settings"}


def _snapshot(division: Division) -> dict[str, Any]:
    return {
        "name": division.name,
        "division_type": division.division_type,
        "parent_division_id": str(division.parent_division_id) if division.parent_division_id else None,
        "division_manager_id": str(division.division_manager_id) if division.division_manager_id else None,
        "is_active": division.is_active,
    }


@dataclass
class DivisionHierarchyService:
    entity_type = "division"
    store: DivisionHierarchyStore = field(default_factory=lambda: division_store)

    def create_division(
        self,
        session: Session,
        company_id: uuid.UUID,
        dto: DivisionCreate,
        actor_id: str,
    ) -> DivisionRead:
        name = dto.name.strip()
        if self.store.find_by_name(session, company_id, name) is not None:
            raise ConflictError(f"Division with name '{name}' already exists", details={"name": name})

        if dto.parent_division_id is not None:
            self._require_division(session, dto.parent_division_id, company_id, label="Parent division")

        if dto.division_manager_id is not None:
            self._require_manager(session, dto.division_manager_id, company_id)

        data = dto.model_dump(mode="json", exclude={"parent_division_id", "division_manager_id"})
        data.update(
            {
                "name": name,
                "company_id": company_id,
                "parent_division_id": dto.parent_division_id,
                "division_manager_id": dto.division_manager_id,
                "target_revenue": dto.target_revenue,
                "target_margin_percentage": dto.target_margin_percentage,
                "created_by": actor_id,
                "updated_by": actor_id,
            }
        )
        try:
            division = self.store.create(session, data)
        except IntegrityError as exc:
            raise ConflictError(f"Division with name '{name}' already exists", details={"name": name}) from exc

        audit.record(
            actor_user_id=actor_id,
            entity_type=self.entity_type,
            entity_id=str(division.id),
            action="create",
            before=None,
            after=_snapshot(division),
            company_id=str(company_id),
        )
        logger.info(
            "division.created",
            extra={
                "division_id": str(division.id),
                "division_name": division.name,
                "parent_division_id": str(division.parent_division_id) if division.parent_division_id else None,
                "actor_id": actor_id,
            },
        )
        return DivisionRead.model_validate(division)

    def update_division(
        self,
        session: Session,
        division_id: uuid.UUID,
        dto: DivisionUpdate,
        actor_id: str,
        *,
        company_id: uuid.UUID | None = None,
    ) -> DivisionRead:
        division = self.store.find_by_id(session, division_id)
        if division is None or (company_id is not None and division.company_id != company_id):
            raise NotFoundError("Division not found", details={"division_id": str(division_id)})

        changes = dto.model_dump(exclude_unset=True)
        changes = {
            key: value for key, value in changes.items() if not (key in _NON_NULLABLE_UPDATES and value is None)
        }
        if "address" in changes and dto.address is not None:
            changes["address"] = dto.address.model_dump(mode="json")
        if changes.get("email") is not None:
            changes["email"] = str(changes["email"])

        new_parent_id = changes.get("parent_division_id")
        if new_parent_id is not None:
            if new_parent_id == division.id:
                raise BusinessRuleViolationError(
                    "Division cannot be its own parent",
                    details={"division_id": str(division.id)},
                )
            self._require_division(session, new_parent_id, division.company_id, label="Parent division")
            if self.store.is_descendant(session, division.id, new_parent_id):
                raise BusinessRuleViolationError(
                    "Division cannot be moved under one of its own descendants",
                    details={"division_id": str(division.id), "parent_division_id": str(new_parent_id)},
                )

        if "name" in changes:
            changes["name"] = changes["name"].strip()
            existing = self.store.find_by_name(session, division.company_id, changes["name"])
            if existing is not None and existing.id != division.id:
                raise ConflictError(
                    f"Division with name '{changes['name']}' already exists",
                    details={"name": changes["name"]},
                )

        if changes.get("division_manager_id") is not None:
            self._require_manager(session, changes["division_manager_id"], division.company_id)

        before = _snapshot(division)
        old_parent_id = division.parent_division_id
        reparenting = "parent_division_id" in changes and changes["parent_division_id"] != old_parent_id
        changes["updated_by"] = actor_id

        try:
            if reparenting:
                with tracer.start_as_current_span("division.reparent") as span:
                    span.set_attribute("division.id", str(division.id))
                    span.set_attribute("division.parent_id", str(new_parent_id) if new_parent_id else "")
                    updated = self.store.update(session, division.id, changes)
            else:
                updated = self.store.update(session, division.id, changes)
        except IntegrityError as exc:
            raise ConflictError(
                "Division update conflicts with an existing division",
                details={"division_id": str(division_id), "name": changes.get("name", before["name"])},
            ) from exc

        if updated is None:
            raise NotFoundError("Division not found", details={"division_id": str(division_id)})

        audit.record(
            actor_user_id=actor_id,
            entity_type=self.entity_type,
            entity_id=str(updated.id),
            action="reparent" if reparenting else "update",
            before=before,
            after=_snapshot(updated),
            company_id=str(updated.company_id),
        )
        logger.info(
            "division.reparented" if reparenting else "division.updated",
            extra={
                "division_id": str(updated.id),
                "old_parent_division_id": str(old_parent_id) if old_parent_id else None,
                "parent_division_id": str(updated.parent_division_id) if updated.parent_division_id else None,
                "actor_id": actor_id,
            },
        )
        return DivisionRead.model_validate(updated)

    def delete_division(
        self,
        session: Session,
        division_id: uuid.UUID,
        actor_id: str,
        *,
        company_id: uuid.UUID | None = None,
    ) -> None:
        division = self.store.find_by_id(session, division_id)
        if division is None or (company_id is not None and division.company_id != company_id):
            raise NotFoundError("Division not found", details={"division_id": str(division_id)})

        dependencies = self.store.count_assigned_entities(session, division_id)
        if any(count > 0 for count in dependencies.values()):
            logger.info(
                "division.delete_blocked",
                extra={"division_id": str(division_id), "dependencies": dependencies, "actor_id": actor_id},
            )
            raise BusinessRuleViolationError(
                "Division still has assigned entities; reassign entities first",
                details={"dependencies": dependencies},
            )

        before = _snapshot(division)
        if not self.store.delete(session, division_id, actor_id):
            raise NotFoundError("Division not found", details={"division_id": str(division_id)})

        audit.record(
            actor_user_id=actor_id,
            entity_type=self.entity_type,
            entity_id=str(division_id),
            action="soft_delete",
            before=before,
            after={**before, "is_active": False},
            company_id=str(division.company_id),
        )
        logger.info("division.deleted", extra={"division_id": str(division_id), "actor_id": actor_id})

    def get_division(self, session: Session, division_id: uuid.UUID, company_id: uuid.UUID) -> DivisionRead:
        division = self._require_division(session, division_id, company_id)
        return DivisionRead.model_validate(division)

    def list_divisions(self, session: Session, company_id: uuid.UUID) -> list[DivisionRead]:
        return [DivisionRead.model_validate(item) for item in self.store.find_by_company(session, company_id)]

    def get_hierarchy(self, session: Session, company_id: uuid.UUID) -> list[DivisionHierarchyNode]:
        """Assemble the tenant's divisions into a forest.

        A division whose parent is missing from the active set (soft-deleted)
        is promoted to a root so that no active division disappears from the
        tree.
        """
        divisions = self.store.find_hierarchy(session, company_id)
        active_ids = {division.id for division in divisions}

        def build(division: Division, level: int, path: list[str]) -> DivisionHierarchyNode:
            node_path = [*path, division.name]
            children = [child for child in division.child_divisions if child.id in active_ids]
            return DivisionHierarchyNode(
                division=DivisionRead.model_validate(division),
                children=[build(child, level + 1, node_path) for child in children],
                level=level,
                path=node_path,
            )

        roots = [
            division
            for division in divisions
            if division.parent_division_id is None or division.parent_division_id not in active_ids
        ]
        return [build(root, 0, []) for root in roots]

    def get_ancestors(self, session: Session, division_id: uuid.UUID, company_id: uuid.UUID) -> list[DivisionRelativeRead]:
        self._require_division(session, division_id, company_id)
        return [
            DivisionRelativeRead(division=DivisionRead.model_validate(item), depth=depth)
            for item, depth in self.store.find_ancestors(session, division_id)
        ]

    def get_descendants(
        self,
        session: Session,
        division_id: uuid.UUID,
        company_id: uuid.UUID,
    ) -> list[DivisionRelativeRead]:
        self._require_division(session, division_id, company_id)
        return [
            DivisionRelativeRead(division=DivisionRead.model_validate(item), depth=depth)
            for item, depth in self.store.find_descendants(session, division_id)
        ]

    def get_division_stats(self, session: Session, division_id: uuid.UUID, company_id: uuid.UUID) -> DivisionStatsRead:
        self._require_division(session, division_id, company_id)
        stats = self.store.get_stats(session, division_id)
        if stats is None:
            raise NotFoundError("Division not found", details={"division_id": str(division_id)})
        return DivisionStatsRead.model_validate(stats)

    def resolve_division_id(
        self,
        session: Session,
        division_id: uuid.UUID | None,
        company_id: uuid.UUID,
    ) -> uuid.UUID:
        """Return the division an entity should be assigned to.

        An explicit id must name an active division of ``company_id``. Without
        one, the tenant's default division is used.
        """
        if division_id is not None:
            return self._require_division(session, division_id, company_id).id

        default_name = get_settings().default_division_name
        default_division = self.store.find_by_name(session, company_id, default_name)
        if default_division is None or default_division.name != default_name:
            raise BusinessRuleViolationError(
                f"No division specified and no '{default_name}' division found",
                details={"company_id": str(company_id)},
            )
        return default_division.id

    def ensure_default_division(self, session: Session, company_id: uuid.UUID, actor_id: str) -> DivisionRead:
        default_name = get_settings().default_division_name
        existing = self.store.find_by_name(session, company_id, default_name)
        if existing is not None:
            if existing.name == default_name:
                return DivisionRead.model_validate(existing)
            raise BusinessRuleViolationError(
                f"Division '{existing.name}' blocks the default '{default_name}' division; rename it first",
                details={"company_id": str(company_id), "division_id": str(existing.id)},
            )

        return self.create_division(
            session,
            company_id,
            DivisionCreate(
                name=default_name,
                description=DEFAULT_DIVISION_DESCRIPTION,
                division_type="OPERATIONAL",
            ),
            actor_id,
        )

    def _require_division(
        self,
        session: Session,
        division_id: uuid.UUID,
        company_id: uuid.UUID,
        *,
        label: str = "Division",
    ) -> Division:
        division = self.store.find_by_id(session, division_id)
        if division is None or division.company_id != company_id:
            raise NotFoundError(f"{label} not found", details={"division_id": str(division_id)})
        return division

    def _require_manager(self, session: Session, manager_id: uuid.UUID, company_id: uuid.UUID) -> None:
        manager = session.scalar(
            select(CRMUser.id).where(
                and_(
                    CRMUser.id == manager_id,
                    CRMUser.company_id == company_id,
                    CRMUser.is_active.is_(True),
                )
            )
        )
        if manager is None:
            raise NotFoundError("Division manager not found", details={"division_manager_id": str(manager_id)})


division_service = DivisionHierarchyService()
