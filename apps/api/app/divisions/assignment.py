from __future__ import annotations

import logging
import uuid
from collections.abc import Callable
from dataclasses import dataclass, field

from opentelemetry import trace
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app import audit
from app.divisions.errors import DivisionError, NotFoundError
from app.divisions.repository import DivisionHierarchyStore, division_store
from app.divisions.schemas import (
    BulkReassignmentRequest,
    BulkReassignmentResult,
    EntityKind,
    EntityReassignmentRequest,
    EntityReassignmentResult,
)
from app.divisions.service import DivisionHierarchyService, division_service
from app.metrics import observe_reassignment


logger = logging.getLogger("app.divisions.assignment")
tracer = trace.get_tracer("app.divisions")

PERSISTENCE_ERROR_CODE = "persistence_error"
UNEXPECTED_ERROR_CODE = "unexpected_error"


@dataclass(frozen=True, slots=True)
class EntityHandler:
    label: str
    reassign: Callable[[DivisionHierarchyStore, Session, uuid.UUID, uuid.UUID, str], bool]


# Lookups go through ENTITY_MODELS in the repository; updates through these store methods.
ENTITY_HANDLERS: dict[EntityKind, EntityHandler] = {
    EntityKind.USER: EntityHandler("User", DivisionHierarchyStore.reassign_user),
    EntityKind.CONTACT: EntityHandler("Contact", DivisionHierarchyStore.reassign_contact),
    EntityKind.PROPERTY: EntityHandler("Property", DivisionHierarchyStore.reassign_property),
    EntityKind.OPPORTUNITY: EntityHandler("Opportunity", DivisionHierarchyStore.reassign_opportunity),
    EntityKind.PROJECT: EntityHandler("Project", DivisionHierarchyStore.reassign_project),
}


@dataclass
class EntityAssignmentCoordinator:
    """Moves business entities between divisions of their own company."""

    store: DivisionHierarchyStore = field(default_factory=lambda: division_store)
    service: DivisionHierarchyService = field(default_factory=lambda: division_service)

    def reassign_entity(
        self,
        session: Session,
        request: EntityReassignmentRequest,
        actor_id: str,
        *,
        company_id: uuid.UUID | None = None,
    ) -> EntityReassignmentResult:
        kind = request.entity_type
        handler = ENTITY_HANDLERS[kind]
        previous_division_id: uuid.UUID | None = None

        try:
            entity = self.store.find_entity(session, kind, request.entity_id)
            if entity is None or (company_id is not None and entity.company_id != company_id):
                raise NotFoundError(f"{handler.label} not found", details={"entity_id": str(request.entity_id)})
            previous_division_id = entity.division_id

            # The target is resolved against the entity's own company, never the caller's.
            target_division_id = self.service.resolve_division_id(session, request.new_division_id, entity.company_id)

            if not handler.reassign(self.store, session, entity.entity_id, target_division_id, actor_id):
                raise NotFoundError(f"{handler.label} not found", details={"entity_id": str(request.entity_id)})
        except DivisionError as exc:
            return self._failure(request, previous_division_id, exc.message, exc.code)
        except SQLAlchemyError as exc:
            session.rollback()
            logger.exception(
                "entity.reassign_failed",
                extra={"entity_type": kind.value, "entity_id": str(request.entity_id), "error": str(exc)},
            )
            return self._failure(request, previous_division_id, f"Failed to reassign {kind.value}", PERSISTENCE_ERROR_CODE)

        audit.record(
            actor_user_id=actor_id,
            entity_type=f"crm.{kind.value}",
            entity_id=str(entity.entity_id),
            action="reassign_division",
            before={"division_id": str(previous_division_id) if previous_division_id else None},
            after={"division_id": str(target_division_id)},
            company_id=str(entity.company_id),
        )
        observe_reassignment(kind.value, True)
        logger.info(
            "entity.reassigned",
            extra={
                "entity_type": kind.value,
                "entity_id": str(entity.entity_id),
                "previous_division_id": str(previous_division_id) if previous_division_id else None,
                "new_division_id": str(target_division_id),
                "actor_id": actor_id,
            },
        )
        return EntityReassignmentResult(
            success=True,
            entity_type=kind,
            entity_id=request.entity_id,
            previous_division_id=previous_division_id,
            new_division_id=target_division_id,
            message=f"{handler.label} successfully reassigned to new division",
        )

    def bulk_reassign_entities(
        self,
        session: Session,
        request: BulkReassignmentRequest,
        actor_id: str,
        *,
        company_id: uuid.UUID | None = None,
    ) -> BulkReassignmentResult:
        """Reassign each item independently, in input order.

        There is no spanning transaction: items committed before a failure
        stay committed, and every failure is reported in its slot.
        """
        results: list[EntityReassignmentResult] = []
        with tracer.start_as_current_span("division.bulk_reassign") as span:
            span.set_attribute("division.bulk.total", len(request.assignments))
            for item in request.assignments:
                try:
                    result = self.reassign_entity(session, item, actor_id, company_id=company_id)
                except Exception as exc:
                    session.rollback()
                    logger.exception(
                        "entity.reassign_failed",
                        extra={"entity_type": item.entity_type.value, "entity_id": str(item.entity_id), "error": str(exc)},
                    )
                    result = self._failure(item, None, str(exc) or "Unknown error", UNEXPECTED_ERROR_CODE)
                results.append(result)

            success_count = sum(1 for result in results if result.success)
            failure_count = len(results) - success_count
            span.set_attribute("division.bulk.failures", failure_count)

        logger.info(
            "entity.bulk_reassigned",
            extra={
                "total": len(results),
                "success_count": success_count,
                "failure_count": failure_count,
                "actor_id": actor_id,
            },
        )
        return BulkReassignmentResult(success_count=success_count, failure_count=failure_count, results=results)

    def _failure(
        self,
        request: EntityReassignmentRequest,
        previous_division_id: uuid.UUID | None,
        message: str,
        error_code: str,
    ) -> EntityReassignmentResult:
        observe_reassignment(request.entity_type.value, False)
        logger.warning(
            "entity.reassign_rejected",
            extra={
                "entity_type": request.entity_type.value,
                "entity_id": str(request.entity_id),
                "error": message,
            },
        )
        return EntityReassignmentResult(
            success=False,
            entity_type=request.entity_type,
            entity_id=request.entity_id,
            previous_division_id=previous_division_id,
            new_division_id=request.new_division_id,
            message=message,
            error_code=error_code,
        )


assignment_coordinator = EntityAssignmentCoordinator()
