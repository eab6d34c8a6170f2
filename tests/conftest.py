import os
import uuid
from datetime import UTC, datetime

import pytest
from dotenv import load_dotenv
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from cozmo_inbox.db import Base
from cozmo_inbox.models.customer import Customer
from cozmo_inbox.models.enums import Channel, CustomerStatus, MessageCategory
from cozmo_inbox.models.message import Message
from cozmo_inbox.services.change_feed import ChangeFeed
from cozmo_inbox.services.storage import LocalBlobStore, storage

load_dotenv(os.path.join(os.getcwd(), ".env"))


@pytest.fixture()
def engine():
    # One in-memory database per test; commits are real so rollback paths can be observed.
    engine = create_engine(
        "sqlite+pysqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture()
def session_factory(engine):
    return sessionmaker(bind=engine, autoflush=False, autocommit=False)


@pytest.fixture()
def db_session(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture(autouse=True)
def attachment_storage(tmp_path):
    store = LocalBlobStore(str(tmp_path / "attachments"), "/files")
    storage.use(store)
    yield store
    storage.use(None)


@pytest.fixture(autouse=True)
def provider_env(monkeypatch):
    for name in (
        "RESEND_API_KEY",
        "DEFAULT_FROM_EMAIL",
        "DEFAULT_FROM_NAME",
        "WHATSAPP_API_KEY",
        "WHATSAPP_PHONE_NUMBER_ID",
    ):
        monkeypatch.delenv(name, raising=False)


@pytest.fixture()
def feed(session_factory):
    feed = ChangeFeed()
    feed.attach(session_factory)
    yield feed
    feed.detach_all()


def _unique_email() -> str:
    return f"test-{uuid.uuid4().hex}@example.com"


@pytest.fixture()
def make_customer(db_session):
    def _make(**overrides) -> Customer:
        values = {
            "name": "Ada Customer",
            "email": _unique_email(),
            "phone": "+1 555 123 4567",
            "status": CustomerStatus.new,
        }
        values.update(overrides)
        customer = Customer(**values)
        db_session.add(customer)
        db_session.commit()
        db_session.refresh(customer)
        return customer

    return _make


@pytest.fixture()
def make_message(db_session):
    def _make(**overrides) -> Message:
        values = {
            "channel": Channel.email,
            "content": "Hello, I need help with my order",
            "subject": "Order status",
            "timestamp": datetime.now(UTC),
            "is_read": False,
            "is_replied": False,
        }
        values.update(overrides)
        message = Message(**values)
        db_session.add(message)
        db_session.commit()
        db_session.refresh(message)
        return message

    return _make


@pytest.fixture()
def customer(make_customer):
    return make_customer()


@pytest.fixture()
def message(make_message, customer):
    return make_message(customer_id=customer.id)


@pytest.fixture()
def categorized_message(make_message, customer):
    return make_message(customer_id=customer.id, category=MessageCategory.inquiry)
