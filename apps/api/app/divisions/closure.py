"""Closure table maintenance for the division tree.

Every division owns a self row ``(D, D, 0)`` plus one row per proper
ancestor, so ancestor/descendant questions are a single indexed lookup:

    ancestor | descendant | depth
    ---------|------------|------
    Root     | Root       | 0
    Root     | Ops        | 1
    Root     | FieldCrew  | 2
    Ops      | Ops        | 0
    Ops      | FieldCrew  | 1
    FieldCrew| FieldCrew  | 0

Only this module writes ``division_closure``. Callers own the transaction:
nothing here commits, and any error must roll back the division change that
triggered it.
"""

from __future__ import annotations

import logging
import time
import uuid
from dataclasses import dataclass

from sqlalchemy import and_, delete, insert, select
from sqlalchemy.orm import Session

from app.divisions.models import DivisionClosure
from app.metrics import observe_closure_rows, observe_reparent


logger = logging.getLogger("app.divisions.closure")


@dataclass(frozen=True, slots=True)
class ClosurePath:
    node_id: uuid.UUID
    depth: int


class ClosureTableMaintainer:
    def on_create(
        self,
        session: Session,
        division_id: uuid.UUID,
        parent_division_id: uuid.UUID | None = None,
    ) -> int:
        rows = [{"ancestor_id": division_id, "descendant_id": division_id, "depth": 0}]

        if parent_division_id is not None:
            # The parent's own rows (self row included) already describe its full ancestor chain.
            for path in self.ancestor_paths(session, parent_division_id):
                rows.append({"ancestor_id": path.node_id, "descendant_id": division_id, "depth": path.depth + 1})

        session.execute(insert(DivisionClosure), rows)
        observe_closure_rows("insert", len(rows))
        logger.debug(
            "division.closure.created",
            extra={"division_id": str(division_id), "parent_division_id": str(parent_division_id), "rows": len(rows)},
        )
        return len(rows)

    def on_reparent(
        self,
        session: Session,
        division_id: uuid.UUID,
        old_parent_id: uuid.UUID | None,
        new_parent_id: uuid.UUID | None,
    ) -> None:
        started = time.perf_counter()

        subtree = self.descendant_paths(session, division_id)
        subtree_ids = [path.node_id for path in subtree]

        # Strip external-ancestor -> subtree paths; paths inside the subtree stay valid.
        result = session.execute(
            delete(DivisionClosure)
            .where(
                and_(
                    DivisionClosure.descendant_id.in_(subtree_ids),
                    DivisionClosure.depth > 0,
                    DivisionClosure.ancestor_id.not_in(subtree_ids),
                )
            )
            .execution_options(synchronize_session="fetch")
        )
        deleted = result.rowcount or 0
        observe_closure_rows("delete", deleted)

        inserted = 0
        if new_parent_id is not None:
            rows = [
                {
                    "ancestor_id": ancestor.node_id,
                    "descendant_id": member.node_id,
                    "depth": ancestor.depth + 1 + member.depth,
                }
                for ancestor in self.ancestor_paths(session, new_parent_id)
                for member in subtree
            ]
            if rows:
                session.execute(insert(DivisionClosure), rows)
            inserted = len(rows)
            observe_closure_rows("insert", inserted)

        observe_reparent(time.perf_counter() - started)
        logger.info(
            "division.closure.rebuilt",
            extra={
                "division_id": str(division_id),
                "old_parent_division_id": str(old_parent_id) if old_parent_id else None,
                "parent_division_id": str(new_parent_id) if new_parent_id else None,
                "subtree_size": len(subtree),
                "rows_deleted": deleted,
                "rows_inserted": inserted,
            },
        )

    def ancestor_paths(self, session: Session, division_id: uuid.UUID) -> list[ClosurePath]:
        """Ancestors of ``division_id`` including itself at depth 0, nearest first."""
        rows = session.execute(
            select(DivisionClosure.ancestor_id, DivisionClosure.depth)
            .where(DivisionClosure.descendant_id == division_id)
            .order_by(DivisionClosure.depth.asc())
        ).all()
        return [ClosurePath(node_id=ancestor_id, depth=depth) for ancestor_id, depth in rows]

    def descendant_paths(self, session: Session, division_id: uuid.UUID) -> list[ClosurePath]:
        """Descendants of ``division_id`` including itself at depth 0, shallowest first."""
        rows = session.execute(
            select(DivisionClosure.descendant_id, DivisionClosure.depth)
            .where(DivisionClosure.ancestor_id == division_id)
            .order_by(DivisionClosure.depth.asc())
        ).all()
        return [ClosurePath(node_id=descendant_id, depth=depth) for descendant_id, depth in rows]

    def is_ancestor(self, session: Session, ancestor_id: uuid.UUID, descendant_id: uuid.UUID) -> bool:
        row = session.execute(
            select(DivisionClosure.depth).where(
                and_(
                    DivisionClosure.ancestor_id == ancestor_id,
                    DivisionClosure.descendant_id == descendant_id,
                )
            )
        ).first()
        return row is not None


closure_maintainer = ClosureTableMaintainer()
