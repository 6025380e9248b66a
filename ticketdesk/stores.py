"""
Read-only store interfaces and their SQLAlchemy implementations.

The engine depends only on the Protocols below. Every store call is a
potential suspension point and the only place the engine touches the
database. SQLAlchemy errors are logged and re-raised as StoreFailure.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from functools import wraps
from typing import List, Optional, Protocol, Sequence

from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, selectinload
from sqlalchemy.sql.elements import ColumnElement

from ticketdesk.errors import StoreFailure
from ticketdesk.models import Contact, Message, Ticket
from ticketdesk.pagination import SQL_INTEGER_MAX

logger = logging.getLogger(__name__)


@dataclass
class QueryResult:
    """A window of rows plus the total count matching the predicate."""
    items: list = field(default_factory=list)
    total_count: int = 0


# =============================================================================
# Store Interfaces
# =============================================================================

class TicketStore(Protocol):
    def find_by_id(self, ticket_id: int) -> Optional[Ticket]: ...

    def find_by_contact(self, contact_id: int) -> List[Ticket]: ...

    def find_updated_in_range(self, start: datetime, end: datetime) -> List[Ticket]: ...

    def query(
        self,
        predicate: ColumnElement,
        order: Sequence[ColumnElement],
        limit: int,
        offset: int = 0,
    ) -> QueryResult: ...


class ContactStore(Protocol):
    def find_by_id(self, contact_id: int) -> Optional[Contact]: ...

    def find_by_number(self, number: str) -> Optional[Contact]: ...


class MessageStore(Protocol):
    def query(
        self,
        predicate: ColumnElement,
        order: Sequence[ColumnElement],
        limit: int,
        offset: int = 0,
        include_quoted: bool = False,
    ) -> QueryResult: ...


@dataclass
class Stores:
    """The three stores an engine operation reads from."""
    tickets: TicketStore
    contacts: ContactStore
    messages: MessageStore


# =============================================================================
# SQLAlchemy Implementations
# =============================================================================

def store_call(fn):
    """Wrap SQLAlchemy errors raised by a store method in StoreFailure."""
    @wraps(fn)
    def wrapper(*args, **kwargs):
        try:
            return fn(*args, **kwargs)
        except SQLAlchemyError as e:
            logger.error(f"Store call {fn.__qualname__} failed: {e}")
            raise StoreFailure() from e
    return wrapper


class SqlTicketStore:
    def __init__(self, db: Session):
        self.db = db

    @store_call
    def find_by_id(self, ticket_id: int) -> Optional[Ticket]:
        logger.debug(f"Looking up ticket by ID: {ticket_id}")
        if abs(ticket_id) > SQL_INTEGER_MAX:
            return None
        stmt = (
            select(Ticket)
            .options(selectinload(Ticket.contact))
            .where(Ticket.id == ticket_id)
        )
        return self.db.execute(stmt).scalars().first()

    @store_call
    def find_by_contact(self, contact_id: int) -> List[Ticket]:
        stmt = select(Ticket).where(Ticket.contact_id == contact_id).order_by(Ticket.id.asc())
        return list(self.db.execute(stmt).scalars().all())

    @store_call
    def find_updated_in_range(self, start: datetime, end: datetime) -> List[Ticket]:
        """Tickets with start <= updated_at < end, in ticket id order."""
        logger.debug(f"Looking up tickets updated in [{start}, {end})")
        stmt = (
            select(Ticket)
            .where(Ticket.updated_at >= start, Ticket.updated_at < end)
            .order_by(Ticket.id.asc())
        )
        return list(self.db.execute(stmt).scalars().all())

    @store_call
    def query(
        self,
        predicate: ColumnElement,
        order: Sequence[ColumnElement],
        limit: int,
        offset: int = 0,
    ) -> QueryResult:
        """Run a ticket query joined to its contact, with the total matching count."""
        count_stmt = (
            select(func.count(Ticket.id))
            .select_from(Ticket)
            .join(Contact, Ticket.contact_id == Contact.id)
            .where(predicate)
        )
        total = self.db.execute(count_stmt).scalar() or 0

        stmt = (
            select(Ticket)
            .join(Contact, Ticket.contact_id == Contact.id)
            .where(predicate)
            .options(selectinload(Ticket.contact))
            .order_by(*order)
            .offset(offset)
            .limit(limit)
        )
        items = list(self.db.execute(stmt).scalars().all())
        logger.debug(f"Ticket query returned {len(items)} of {total} rows")

        return QueryResult(items=items, total_count=total)


class SqlContactStore:
    def __init__(self, db: Session):
        self.db = db

    @store_call
    def find_by_id(self, contact_id: int) -> Optional[Contact]:
        return self.db.get(Contact, contact_id)

    @store_call
    def find_by_number(self, number: str) -> Optional[Contact]:
        stmt = select(Contact).where(Contact.number == number)
        return self.db.execute(stmt).scalars().first()


class SqlMessageStore:
    def __init__(self, db: Session):
        self.db = db

    @store_call
    def query(
        self,
        predicate: ColumnElement,
        order: Sequence[ColumnElement],
        limit: int,
        offset: int = 0,
        include_quoted: bool = False,
    ) -> QueryResult:
        """
        Run a message query joined to the ticket's contact.

        Args:
            predicate: Boolean clause over Message, Ticket and Contact
            order: ORDER BY clauses
            limit: Maximum number of rows to return
            offset: Number of rows to skip
            include_quoted: Also eager-load each quoted message and its contact

        Returns:
            QueryResult with the row window and the total matching count
        """
        count_stmt = (
            select(func.count(Message.id))
            .select_from(Message)
            .join(Ticket, Message.ticket_id == Ticket.id)
            .join(Contact, Ticket.contact_id == Contact.id)
            .where(predicate)
        )
        total = self.db.execute(count_stmt).scalar() or 0

        options = [selectinload(Message.contact)]
        if include_quoted:
            options.append(selectinload(Message.quoted_msg).selectinload(Message.contact))

        stmt = (
            select(Message)
            .join(Ticket, Message.ticket_id == Ticket.id)
            .join(Contact, Ticket.contact_id == Contact.id)
            .where(predicate)
            .options(*options)
            .order_by(*order)
            .offset(offset)
            .limit(limit)
        )
        items = list(self.db.execute(stmt).scalars().all())
        logger.debug(f"Message query returned {len(items)} of {total} rows")

        return QueryResult(items=items, total_count=total)


def sql_stores(db: Session) -> Stores:
    """Build the SQLAlchemy-backed stores for one session."""
    return Stores(
        tickets=SqlTicketStore(db),
        contacts=SqlContactStore(db),
        messages=SqlMessageStore(db),
    )
