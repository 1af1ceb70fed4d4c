from app.divisions.api import router
from app.divisions.assignment import EntityAssignmentCoordinator, assignment_coordinator
from app.divisions.closure import ClosureTableMaintainer, closure_maintainer
from app.divisions.errors import BusinessRuleViolationError, ConflictError, DivisionError, NotFoundError
from app.divisions.models import Division, DivisionClosure
from app.divisions.repository import DivisionHierarchyStore, division_store
from app.divisions.seed import DivisionSeedHelper, division_seed_helper
from app.divisions.service import DivisionHierarchyService, division_service

__all__ = [
    "router",
    "Division",
    "DivisionClosure",
    "DivisionError",
    "NotFoundError",
    "ConflictError",
    "BusinessRuleViolationError",
    "ClosureTableMaintainer",
    "closure_maintainer",
    "DivisionHierarchyStore",
    "division_store",
    "DivisionHierarchyService",
    "division_service",
    "EntityAssignmentCoordinator",
    "assignment_coordinator",
    "DivisionSeedHelper",
    "division_seed_helper",
]
