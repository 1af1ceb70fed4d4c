from __future__ import annotations

import uuid

from sqlalchemy.orm import Session

from app.divisions.schemas import DivisionRead
from app.divisions.service import DivisionHierarchyService


class DivisionSeedHelper:
    """Onboarding hook: every company starts with its default division."""

    def __init__(self, service: DivisionHierarchyService) -> None:
        self._service = service

    def ensure_default_division(self, session: Session, company_id: uuid.UUID, actor_id: str) -> DivisionRead:
        return self._service.ensure_default_division(session, company_id, actor_id)

    def ensure_default_divisions(
        self,
        session: Session,
        company_ids: list[uuid.UUID],
        actor_id: str,
    ) -> list[DivisionRead]:
        return [self.ensure_default_division(session, company_id, actor_id) for company_id in company_ids]


division_seed_helper = DivisionSeedHelper(DivisionHierarchyService())
