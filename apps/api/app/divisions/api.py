from __future__ import annotations

import uuid
from dataclasses import dataclass
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Request, status
from fastapi.responses import JSONResponse, Response
from sqlalchemy.orm import Session

from app.context import get_correlation_id, set_company_id
from app.core.auth import AuthUser, get_current_user as get_auth_user
from app.core.config import get_settings
from app.core.database import get_db
from app.divisions.assignment import assignment_coordinator
from app.divisions.errors import DivisionError
from app.divisions.schemas import (
    BulkReassignmentRequest,
    BulkReassignmentResult,
    DivisionCreate,
    DivisionHierarchyNode,
    DivisionRead,
    DivisionRelativeRead,
    DivisionStatsRead,
    DivisionUpdate,
    EntityReassignmentRequest,
    EntityReassignmentResult,
)
from app.divisions.service import division_service

router = APIRouter(prefix="/api/divisions", tags=["divisions"])
service = division_service
coordinator = assignment_coordinator

_STATUS_BY_ERROR_CODE = {
    "not_found": status.HTTP_404_NOT_FOUND,
    "conflict": status.HTTP_409_CONFLICT,
    "business_rule_violation": status.HTTP_422_UNPROCESSABLE_ENTITY,
}


@dataclass
class ErrorEnvelope:
    code: str
    message: str
    details: Any
    correlation_id: str | None


@dataclass
class ActorContext:
    user_id: str
    roles: list[str]
    company_id: uuid.UUID
    correlation_id: str | None


def error_response(
    request: Request,
    *,
    status_code: int,
    code: str,
    message: str,
    details: Any = None,
) -> JSONResponse:
    correlation_id = get_correlation_id() or getattr(getattr(request.state, "context", None), "request_id", None)
    payload = ErrorEnvelope(
        code=code,
        message=message,
        details=details,
        correlation_id=correlation_id,
    )
    return JSONResponse(status_code=status_code, content=payload.__dict__)


def division_error_response(request: Request, exc: DivisionError) -> JSONResponse:
    return error_response(
        request,
        status_code=_STATUS_BY_ERROR_CODE.get(exc.code, status.HTTP_400_BAD_REQUEST),
        code=exc.code,
        message=exc.message,
        details=exc.details,
    )


async def get_current_actor(request: Request, auth_user: AuthUser = Depends(get_auth_user)) -> ActorContext:
    raw_company_id = auth_user.company_id or request.headers.get("x-company-id")
    if not raw_company_id:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="company context required")
    try:
        company_id = uuid.UUID(raw_company_id)
    except ValueError:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="invalid company context") from None

    set_company_id(str(company_id))
    context = getattr(request.state, "context", None)
    if context is not None:
        context.company_id = str(company_id)

    return ActorContext(
        user_id=auth_user.sub,
        roles=auth_user.roles,
        company_id=company_id,
        correlation_id=get_correlation_id(),
    )


@router.get("", response_model=list[DivisionRead])
def list_divisions(
    db: Session = Depends(get_db),
    actor: ActorContext = Depends(get_current_actor),
) -> list[DivisionRead]:
    return service.list_divisions(db, actor.company_id)


@router.post("", response_model=DivisionRead, status_code=status.HTTP_201_CREATED)
def create_division(
    request: Request,
    dto: DivisionCreate,
    db: Session = Depends(get_db),
    actor: ActorContext = Depends(get_current_actor),
) -> DivisionRead | JSONResponse:
    try:
        return service.create_division(db, actor.company_id, dto, actor.user_id)
    except DivisionError as exc:
        return division_error_response(request, exc)


@router.get("/hierarchy", response_model=list[DivisionHierarchyNode])
def get_hierarchy(
    db: Session = Depends(get_db),
    actor: ActorContext = Depends(get_current_actor),
) -> list[DivisionHierarchyNode]:
    return service.get_hierarchy(db, actor.company_id)


@router.post("/reassign", response_model=EntityReassignmentResult)
def reassign_entity(
    request: Request,
    dto: EntityReassignmentRequest,
    db: Session = Depends(get_db),
    actor: ActorContext = Depends(get_current_actor),
) -> EntityReassignmentResult | JSONResponse:
    result = coordinator.reassign_entity(db, dto, actor.user_id, company_id=actor.company_id)
    if result.success:
        return result
    return error_response(
        request,
        status_code=_STATUS_BY_ERROR_CODE.get(result.error_code or "", status.HTTP_500_INTERNAL_SERVER_ERROR),
        code=result.error_code or "reassignment_failed",
        message=result.message,
        details=result.model_dump(mode="json"),
    )


@router.post("/bulk-reassign", response_model=BulkReassignmentResult)
def bulk_reassign_entities(
    request: Request,
    dto: BulkReassignmentRequest,
    db: Session = Depends(get_db),
    actor: ActorContext = Depends(get_current_actor),
) -> BulkReassignmentResult | JSONResponse:
    max_items = get_settings().bulk_reassign_max_items
    if len(dto.assignments) > max_items:
        return error_response(
            request,
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            code="validation_error",
            message=f"At most {max_items} assignments are allowed per request",
            details={"max_items": max_items, "received": len(dto.assignments)},
        )
    return coordinator.bulk_reassign_entities(db, dto, actor.user_id, company_id=actor.company_id)


@router.get("/{division_id}", response_model=DivisionRead)
def get_division(
    request: Request,
    division_id: uuid.UUID,
    db: Session = Depends(get_db),
    actor: ActorContext = Depends(get_current_actor),
) -> DivisionRead | JSONResponse:
    try:
        return service.get_division(db, division_id, actor.company_id)
    except DivisionError as exc:
        return division_error_response(request, exc)


@router.put("/{division_id}", response_model=DivisionRead)
def update_division(
    request: Request,
    division_id: uuid.UUID,
    dto: DivisionUpdate,
    db: Session = Depends(get_db),
    actor: ActorContext = Depends(get_current_actor),
) -> DivisionRead | JSONResponse:
    try:
        return service.update_division(db, division_id, dto, actor.user_id, company_id=actor.company_id)
    except DivisionError as exc:
        return division_error_response(request, exc)


@router.delete("/{division_id}", status_code=status.HTTP_204_NO_CONTENT, response_model=None)
def delete_division(
    request: Request,
    division_id: uuid.UUID,
    db: Session = Depends(get_db),
    actor: ActorContext = Depends(get_current_actor),
) -> Response:
    try:
        service.delete_division(db, division_id, actor.user_id, company_id=actor.company_id)
    except DivisionError as exc:
        return division_error_response(request, exc)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get("/{division_id}/stats", response_model=DivisionStatsRead)
def get_division_stats(
    request: Request,
    division_id: uuid.UUID,
    db: Session = Depends(get_db),
    actor: ActorContext = Depends(get_current_actor),
) -> DivisionStatsRead | JSONResponse:
    try:
        return service.get_division_stats(db, division_id, actor.company_id)
    except DivisionError as exc:
        return division_error_response(request, exc)


@router.get("/{division_id}/ancestors", response_model=list[DivisionRelativeRead])
def get_ancestors(
    request: Request,
    division_id: uuid.UUID,
    db: Session = Depends(get_db),
    actor: ActorContext = Depends(get_current_actor),
) -> list[DivisionRelativeRead] | JSONResponse:
    try:
        return service.get_ancestors(db, division_id, actor.company_id)
    except DivisionError as exc:
        return division_error_response(request, exc)


@router.get("/{division_id}/descendants", response_model=list[DivisionRelativeRead])
def get_descendants(
    request: Request,
    division_id: uuid.UUID,
    db: Session = Depends(get_db),
    actor: ActorContext = Depends(get_current_actor),
) -> list[DivisionRelativeRead] | JSONResponse:
    try:
        return service.get_descendants(db, division_id, actor.company_id)
    except DivisionError as exc:
        return division_error_response(request, exc)
