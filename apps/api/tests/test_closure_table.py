from __future__ import annotations

import uuid
from collections.abc import Generator

import pytest
from sqlalchemy import create_engine, select
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from app.core.database import Base
from app.crm.models import Company
from app.divisions.closure import closure_maintainer
from app.divisions.models import Division, DivisionClosure
from app.divisions.repository import DivisionHierarchyStore


@pytest.fixture()
def db_session() -> Generator[Session, None, None]:
    engine = create_engine(
        "sqlite+pysqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    SessionLocal = sessionmaker(bind=engine, autocommit=False, autoflush=False)
    Base.metadata.create_all(bind=engine)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture()
def company_id(db_session: Session) -> uuid.UUID:
    company = Company(business_name="Acme Roofing")
    db_session.add(company)
    db_session.commit()
    return company.id


@pytest.fixture()
def store() -> DivisionHierarchyStore:
    return DivisionHierarchyStore()


def _create(
    store: DivisionHierarchyStore,
    session: Session,
    company_id: uuid.UUID,
    name: str,
    parent: Division | None = None,
) -> Division:
    return store.create(
        session,
        {
            "company_id": company_id,
            "name": name,
            "parent_division_id": parent.id if parent is not None else None,
            "created_by": "user-1",
        },
    )


def _rows(session: Session) -> set[tuple[uuid.UUID, uuid.UUID, int]]:
    return {
        (row.ancestor_id, row.descendant_id, row.depth)
        for row in session.execute(
            select(DivisionClosure.ancestor_id, DivisionClosure.descendant_id, DivisionClosure.depth)
        ).all()
    }


def test_create_writes_unique_self_row(db_session: Session, store: DivisionHierarchyStore, company_id: uuid.UUID) -> None:
    root = _create(store, db_session, company_id, "Root")
    child = _create(store, db_session, company_id, "Child", root)

    for division in (root, child):
        self_rows = db_session.scalars(
            select(DivisionClosure).where(
                DivisionClosure.ancestor_id == division.id,
                DivisionClosure.descendant_id == division.id,
            )
        ).all()
        assert len(self_rows) == 1
        assert self_rows[0].depth == 0


def test_chain_depths_follow_parent_path(db_session: Session, store: DivisionHierarchyStore, company_id: uuid.UUID) -> None:
    root = _create(store, db_session, company_id, "Root")
    a = _create(store, db_session, company_id, "A", root)
    b = _create(store, db_session, company_id, "B", a)
    c = _create(store, db_session, company_id, "C", b)

    rows = _rows(db_session)
    assert {(root.id, c.id, 3), (a.id, c.id, 2), (b.id, c.id, 1), (c.id, c.id, 0)} <= rows
    assert not any(ancestor == c.id and descendant == root.id for ancestor, descendant, _ in rows)
    assert len(rows) == 10


def test_sort_order_increments_per_company(db_session: Session, store: DivisionHierarchyStore, company_id: uuid.UUID) -> None:
    first = _create(store, db_session, company_id, "First")
    second = _create(store, db_session, company_id, "Second")

    other_company = Company(business_name="Other Co")
    db_session.add(other_company)
    db_session.commit()
    other = _create(store, db_session, other_company.id, "Elsewhere")

    assert (first.sort_order, second.sort_order) == (1, 2)
    assert other.sort_order == 1


def test_reparent_under_grandparent_drops_old_parent_row(
    db_session: Session,
    store: DivisionHierarchyStore,
    company_id: uuid.UUID,
) -> None:
    root = _create(store, db_session, company_id, "Root")
    a = _create(store, db_session, company_id, "A", root)
    b = _create(store, db_session, company_id, "B", a)

    updated = store.update(db_session, b.id, {"parent_division_id": root.id, "updated_by": "user-1"})
    assert updated is not None
    assert updated.parent_division_id == root.id

    rows = _rows(db_session)
    assert (a.id, b.id, 1) not in rows
    assert (root.id, b.id, 1) in rows
    assert (b.id, b.id, 0) in rows
    assert (root.id, b.id, 2) not in rows


def test_detach_to_root_removes_all_foreign_ancestors(
    db_session: Session,
    store: DivisionHierarchyStore,
    company_id: uuid.UUID,
) -> None:
    root = _create(store, db_session, company_id, "Root")
    a = _create(store, db_session, company_id, "A", root)
    b = _create(store, db_session, company_id, "B", a)

    updated = store.update(db_session, b.id, {"parent_division_id": None, "updated_by": "user-1"})
    assert updated is not None
    assert updated.parent_division_id is None

    rows_for_b = {(ancestor, depth) for ancestor, descendant, depth in _rows(db_session) if descendant == b.id}
    assert rows_for_b == {(b.id, 0)}


def test_subtree_move_recomputes_depths(db_session: Session, store: DivisionHierarchyStore, company_id: uuid.UUID) -> None:
    root = _create(store, db_session, company_id, "Root")
    east = _create(store, db_session, company_id, "East", root)
    west = _create(store, db_session, company_id, "West", root)
    metro = _create(store, db_session, company_id, "Metro", west)
    crew = _create(store, db_session, company_id, "Crew", metro)

    store.update(db_session, metro.id, {"parent_division_id": east.id, "updated_by": "user-1"})

    rows = _rows(db_session)
    assert (west.id, metro.id, 1) not in rows
    assert (west.id, crew.id, 2) not in rows
    assert {(east.id, metro.id, 1), (east.id, crew.id, 2), (root.id, metro.id, 2), (root.id, crew.id, 3)} <= rows
    # Paths inside the moved subtree are preserved.
    assert (metro.id, crew.id, 1) in rows
    assert closure_maintainer.is_ancestor(db_session, east.id, crew.id)
    assert not closure_maintainer.is_ancestor(db_session, west.id, crew.id)


def test_descendant_and_ancestor_paths_include_self(
    db_session: Session,
    store: DivisionHierarchyStore,
    company_id: uuid.UUID,
) -> None:
    root = _create(store, db_session, company_id, "Root")
    ops = _create(store, db_session, company_id, "Ops", root)

    assert [(path.node_id, path.depth) for path in closure_maintainer.ancestor_paths(db_session, ops.id)] == [
        (ops.id, 0),
        (root.id, 1),
    ]
    assert [(path.node_id, path.depth) for path in closure_maintainer.descendant_paths(db_session, root.id)] == [
        (root.id, 0),
        (ops.id, 1),
    ]


def test_three_level_tree_has_exactly_six_rows(
    db_session: Session,
    store: DivisionHierarchyStore,
    company_id: uuid.UUID,
) -> None:
    root = _create(store, db_session, company_id, "Root")
    ops = _create(store, db_session, company_id, "Ops", root)
    field_crew = _create(store, db_session, company_id, "FieldCrew", ops)

    assert _rows(db_session) == {
        (root.id, root.id, 0),
        (ops.id, ops.id, 0),
        (field_crew.id, field_crew.id, 0),
        (root.id, ops.id, 1),
        (root.id, field_crew.id, 2),
        (ops.id, field_crew.id, 1),
    }
