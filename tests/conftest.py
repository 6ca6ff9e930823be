import asyncio
import os
import tempfile
from datetime import datetime, timezone

from cryptography.fernet import Fernet

# Settings are read at import time
os.environ["SECRET_KEY"] = "test-secret-key"
os.environ["ENCRYPTION_KEY"] = Fernet.generate_key().decode()
os.environ["SCHEDULER_ENABLED"] = "false"
os.environ["DISPATCHER_TRIGGER_TOKEN"] = "test-trigger-token"
os.environ["DATABASE_URL"] = "sqlite:///" + os.path.join(tempfile.mkdtemp(), "unused.db")
os.environ["ATTACHMENT_STORAGE_DIR"] = tempfile.mkdtemp()

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker

from webhook_scheduler.auth import create_access_token
from webhook_scheduler.connectors.base import BaseDeliveryConnector, DeliveryResult, DeliveryStatus
from webhook_scheduler.database import Base, get_db
from webhook_scheduler.main import app
from webhook_scheduler.models.schedule import Schedule
from webhook_scheduler.scheduler import get_dispatcher
from webhook_scheduler.schemas.auth import Owner
from webhook_scheduler.schemas.builder import StoredFileAttachment
from webhook_scheduler.services.attachment_storage import AttachmentStorage
from webhook_scheduler.services.dispatcher import ScheduleDispatcher
from webhook_scheduler.utils.encrypt import encrypt_data

OWNER_ID = "owner-1"
OTHER_OWNER_ID = "owner-2"
WEBHOOK_URL = "https://discord.com/api/webhooks/123456/secret-token"
TRIGGER_HEADERS = {"X-Trigger-Token": "test-trigger-token"}
NOW = datetime(2024, 1, 1, 9, 0, 30, tzinfo=timezone.utc)


class FakeConnector(BaseDeliveryConnector):
    """Records deliveries; returns queued results (or raises queued exceptions), then success."""

    def __init__(self, results=None, delay: float = 0.0, on_deliver=None):
        self.results = list(results or [])
        self.delay = delay
        self.on_deliver = on_deliver
        self.calls = []
        self.in_flight = 0
        self.max_in_flight = 0

    async def deliver(self, url, payload, attachments=None):
        self.calls.append({"url": url, "payload": payload, "attachments": list(attachments or [])})
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            if self.on_deliver is not None:
                self.on_deliver(url, payload)
            if self.delay:
                await asyncio.sleep(self.delay)
        finally:
            self.in_flight -= 1
        result = self.results.pop(0) if self.results else DeliveryResult(status=DeliveryStatus.SUCCESS, status_code=204)
        if isinstance(result, Exception):
            raise result
        return result


@pytest.fixture
def engine(tmp_path):
    engine = create_engine(f"sqlite:///{tmp_path / 'test.db'}", connect_args={"check_same_thread": False})
    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db(session_factory) -> Session:
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def storage(tmp_path) -> AttachmentStorage:
    return AttachmentStorage(tmp_path / "attachments")


def store_attachment(storage: AttachmentStorage, entity_id: str, index: int, name: str,
                     content: bytes, mime_type: str = "application/octet-stream") -> StoredFileAttachment:
    """Write a file where the editor upload would have put it."""
    storage_path = f"users/{OWNER_ID}/schedules/{entity_id}/{index}-{name}"
    path = storage.base_dir / storage_path
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(content)
    return StoredFileAttachment(
        name=name, size=len(content), mime_type=mime_type, storage_path=storage_path, original_index=index,
    )


@pytest.fixture
def connector() -> FakeConnector:
    return FakeConnector()


@pytest.fixture
def dispatcher(session_factory, connector, storage) -> ScheduleDispatcher:
    return ScheduleDispatcher(
        connector=connector,
        session_factory=session_factory,
        storage=storage,
        max_workers=4,
        batch_size=100,
        lease_seconds=300,
    )


@pytest.fixture
def client(session_factory, dispatcher) -> TestClient:
    def override_get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_dispatcher] = lambda: dispatcher
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def owner() -> Owner:
    return Owner(id=OWNER_ID)


@pytest.fixture
def auth_headers() -> dict:
    return {"Authorization": f"Bearer {create_access_token(OWNER_ID)}"}


@pytest.fixture
def paid_headers() -> dict:
    return {"Authorization": f"Bearer {create_access_token(OWNER_ID, tier='paid')}"}


@pytest.fixture
def other_headers() -> dict:
    return {"Authorization": f"Bearer {create_access_token(OTHER_OWNER_ID)}"}


def cron_config(expression: str, tz: str = "UTC") -> dict:
    return {"cronExpression": expression, "timezone": tz}


@pytest.fixture
def make_schedule(session_factory):
    """Insert a schedule row directly, bypassing API validation. Returns its id."""
    def _make(**overrides):
        values = dict(
            owner_id=OWNER_ID,
            name="Test schedule",
            target_url=encrypt_data(WEBHOOK_URL),
            builder_state={"content": "hello"},
            scheduled_at=NOW,
            next_execution_at=NOW,
            is_recurring=False,
            recurrence_pattern="once",
            recurrence_config={},
            execution_count=0,
            is_active=True,
        )
        values.update(overrides)
        session = session_factory()
        try:
            schedule = Schedule(**values)
            session.add(schedule)
            session.commit()
            return schedule.id
        finally:
            session.close()

    return _make
