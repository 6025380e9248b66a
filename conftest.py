"""
Pytest configuration and shared fixtures.

Test environment variables are set here before any ticketdesk import so
the engine and settings bind to a throwaway SQLite database.
"""

import os
import tempfile
from datetime import datetime

import pytest

TEST_DB_PATH = os.path.join(tempfile.gettempdir(), f"ticketdesk_test_{os.getpid()}.db")
TEST_API_TOKEN = "test-api-token"

os.environ["DATABASE_URL"] = f"sqlite:///{TEST_DB_PATH}"
os.environ["API_TOKEN"] = TEST_API_TOKEN
os.environ["TIMEZONE"] = "UTC"
os.environ.setdefault("LOG_LEVEL", "INFO")

# Clear settings cache before any app imports to ensure test env vars are used
from ticketdesk.config import get_settings  # noqa: E402
get_settings.cache_clear()

from ticketdesk import models  # noqa: E402,F401
from ticketdesk.models import Contact, Message, Ticket  # noqa: E402
from ticketdesk.storage import Base, SessionLocal, engine  # noqa: E402
from ticketdesk.stores import sql_stores  # noqa: E402


@pytest.fixture(scope="function")
def db():
    """Fresh tables and a session for each test."""
    Base.metadata.create_all(bind=engine)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture
def stores(db):
    """SQLAlchemy-backed stores bound to the test session."""
    return sql_stores(db)


class Seeder:
    """Small helper to insert contacts, tickets and messages."""

    def __init__(self, db):
        self.db = db
        self._message_seq = 0

    def contact(self, number: str, name: str = None) -> Contact:
        contact = Contact(name=name or number, number=number)
        self.db.add(contact)
        self.db.commit()
        return contact

    def ticket(self, contact: Contact, updated_at: datetime, status: str = "open") -> Ticket:
        ticket = Ticket(
            contact_id=contact.id,
            status=status,
            created_at=updated_at,
            updated_at=updated_at,
        )
        self.db.add(ticket)
        self.db.commit()
        return ticket

    def message(
        self,
        ticket: Ticket,
        body: str,
        created_at: datetime,
        from_me: bool = False,
        quoted: Message = None,
        message_id: str = None,
    ) -> Message:
        self._message_seq += 1
        message = Message(
            id=message_id or f"msg-{self._message_seq:04d}",
            body=body,
            from_me=from_me,
            ticket_id=ticket.id,
            contact_id=ticket.contact_id,
            quoted_msg_id=quoted.id if quoted else None,
            created_at=created_at,
            updated_at=created_at,
        )
        self.db.add(message)
        self.db.commit()
        return message


@pytest.fixture
def seed(db):
    """Seeder bound to the test session."""
    return Seeder(db)


@pytest.fixture
def auth_headers():
    return {"Authorization": f"Bearer {TEST_API_TOKEN}"}
