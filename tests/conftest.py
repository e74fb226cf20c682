from datetime import date, datetime, time

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from vaxcare.db.base import Base
from vaxcare.reminders import models  # noqa: F401  (register tables)
from vaxcare.reminders.api import get_service, router
from vaxcare.reminders.dispatcher import DispatchResult, DispatchTransport
from vaxcare.reminders.models import build_reminder
from vaxcare.reminders.service import ReminderService

NOW = datetime(2024, 6, 1, 8, 0)


class FakeTransport(DispatchTransport):
    """Records every send; answers with queued outcomes, then success."""

    def __init__(self, *outcomes: DispatchResult):
        self.outcomes = list(outcomes)
        self.sent = []

    def send(self, channel, user_id, message, fire_at):
        self.sent.append((channel, user_id, message, fire_at))
        if self.outcomes:
            return self.outcomes.pop(0)
        return DispatchResult.ok()


def make_reminder(**overrides):
    fields = dict(
        user_id="user-1",
        name="Tetanus booster",
        scheduled_date=date(2024, 6, 30),
        scheduled_time=time(9, 0),
        priority="medium",
        notification_channels=["push"],
        advance_notice_days=[30, 7, 1],
    )
    fields.update(overrides)
    return build_reminder(**fields)


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def db(engine):
    session = sessionmaker(autocommit=False, autoflush=False, expire_on_commit=False, bind=engine)()
    yield session
    session.close()


@pytest.fixture
def service(db):
    return ReminderService(db, now_fn=lambda: NOW)


@pytest.fixture
def catalogue(service):
    service.ensure_government_catalogue()
    return service


@pytest.fixture
def client(db):
    app = FastAPI()
    app.include_router(router, prefix="/api/v1/reminders")
    app.dependency_overrides[get_service] = lambda: ReminderService(db, now_fn=lambda: NOW)
    with TestClient(app) as c:
        yield c
