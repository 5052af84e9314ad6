"""Shared test fixtures."""
from datetime import date, datetime, timedelta
from typing import Generator

import pytest
from sqlalchemy.pool import StaticPool
from sqlmodel import Session, SQLModel, create_engine

# Import all models so SQLModel.metadata knows about them
from ledgersync.models.connection import ConnectionRecord
from ledgersync.models.entities import Bill, Client, Invoice, Payment, Project, Vendor  # noqa: F401
from ledgersync.models.milestone import Milestone, MilestoneLog, Notification  # noqa: F401
from ledgersync.models.sync import SyncRecord, SyncTriggerLog  # noqa: F401

COMPANY = "company-1"
OWNER = "owner-1"
NOW = datetime(2026, 3, 15, 12, 0, 0)
TODAY = NOW.date()


@pytest.fixture(name="engine")
def engine_fixture():
    """In-memory SQLite engine. Tables recreated fresh for each test."""
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    SQLModel.metadata.create_all(engine)
    yield engine
    SQLModel.metadata.drop_all(engine)


@pytest.fixture(name="test_session")
def test_session_fixture(engine) -> Generator[Session, None, None]:
    """Provides a DB session connected to in-memory SQLite."""
    with Session(engine) as session:
        yield session


def add_all(engine, *rows):
    """Persist rows and return them refreshed (ids populated)."""
    with Session(engine) as s:
        for row in rows:
            s.add(row)
        s.commit()
        for row in rows:
            s.refresh(row)
    return rows


def make_connection(owner_id=OWNER, *, expires_in=timedelta(hours=1), refresh_token="rt-123",
                    created_at=None, expires_at=None) -> ConnectionRecord:
    if expires_at is None:
        expires_at = (NOW + expires_in).isoformat()
    return ConnectionRecord(
        owner_id=owner_id,
        realm_id="realm-1",
        access_token="at-123",
        refresh_token=refresh_token,
        expires_at=expires_at,
        created_at=created_at or NOW - timedelta(days=1),
    )


@pytest.fixture(name="project")
def project_fixture(engine) -> Project:
    (project,) = add_all(engine, Project(
        company_id=COMPANY,
        owner_id=COMPANY,
        name="Harbor Renovation",
        client="Acme Holdings",
        contact_email="ap@acme.test",
    ))
    return project


def make_milestone(project_id: int, name: str, *, due_date: date = TODAY, amount: float = 1000.0,
                   due_type: str = "time", status: str = "pending") -> Milestone:
    return Milestone(
        project_id=project_id,
        name=name,
        due_type=due_type,
        due_date=due_date,
        amount=amount,
        status=status,
    )
