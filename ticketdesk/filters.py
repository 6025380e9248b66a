"""
Message and ticket predicate compilers.

Turn an optional set of filters into a single SQLAlchemy boolean clause,
over Message joined to its Ticket and the Ticket's Contact, or over Ticket
joined to its Contact. Normalization of the search term (trim, lower-case)
happens here, never in the store.
"""

import logging
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, timezone
from typing import Optional, Tuple, Union
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from sqlalchemy import and_, func, or_, true
from sqlalchemy.sql.elements import ColumnElement

from ticketdesk.errors import ConfigurationError, ValidationError
from ticketdesk.models import Contact, Message, Ticket

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class MessageFilter:
    """Optional filters for a message query. Absent fields impose no constraint."""
    search_param: Optional[str] = None
    date: "Optional[date]" = None
    contact_number: Optional[str] = None


@dataclass(frozen=True)
class TicketFilter:
    """Optional filters for a ticket listing. Absent fields impose no constraint."""
    search_param: Optional[str] = None
    status: Optional[str] = None
    date: "Optional[date]" = None
    contact_id: Optional[int] = None


def normalize_search_term(value: Optional[str]) -> Optional[str]:
    """
    Trim and lower-case a search term.

    Returns:
        The normalized term, or None if the value is missing or blank.
    """
    if value is None:
        return None
    term = value.strip().lower()
    return term or None


def parse_calendar_date(value: Union[date, str, None]) -> Optional[date]:
    """
    Coerce a calendar date from a date object or an ISO YYYY-MM-DD string.

    Raises:
        ValidationError: If the value cannot be read as a calendar date.
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value).strip())
    except ValueError:
        raise ValidationError("ERR_INVALID_DATE")


def day_bucket(day: date, tz_name: str = "UTC") -> Tuple[datetime, datetime]:
    """
    Half-open interval [day 00:00, day+1 00:00) in the reference timezone.

    Boundaries are converted to naive UTC to compare against stored values.

    Raises:
        ConfigurationError: If tz_name is not a known IANA zone.
    """
    try:
        tz = ZoneInfo(tz_name)
    except (ZoneInfoNotFoundError, ValueError):
        raise ConfigurationError("ERR_INVALID_TIMEZONE")

    start = datetime.combine(day, time.min, tzinfo=tz)
    end = datetime.combine(day + timedelta(days=1), time.min, tzinfo=tz)
    return (
        start.astimezone(timezone.utc).replace(tzinfo=None),
        end.astimezone(timezone.utc).replace(tzinfo=None),
    )


def body_contains(term: str) -> ColumnElement:
    """Case-insensitive literal substring match on the message body."""
    return func.lower(Message.body).contains(term, autoescape=True)


def created_in(bounds: Tuple[datetime, datetime]) -> ColumnElement:
    """Message created_at falls in [start, end)."""
    start, end = bounds
    return and_(Message.created_at >= start, Message.created_at < end)


def compile_message_predicate(filters: MessageFilter, tz_name: str = "UTC") -> ColumnElement:
    """
    Compile filters into one clause. Present filters are AND-ed.

    The contact filter refers to Contact, so the query must join
    Message -> Ticket -> Contact.

    Returns:
        A boolean clause; true() when no filter is present.
    """
    clauses = []

    term = normalize_search_term(filters.search_param)
    if term is not None:
        clauses.append(body_contains(term))

    if filters.date is not None:
        clauses.append(created_in(day_bucket(filters.date, tz_name)))

    if filters.contact_number:
        clauses.append(Contact.number == filters.contact_number)

    logger.debug(
        f"Compiled message predicate: term={term!r}, date={filters.date}, "
        f"contact_number={filters.contact_number!r}"
    )

    if not clauses:
        return true()
    return and_(*clauses)


def ticket_matches(term: str) -> ColumnElement:
    """The ticket's contact name or number, or any of its message bodies, contains term."""
    return or_(
        func.lower(Contact.name).contains(term, autoescape=True),
        Contact.number.contains(term, autoescape=True),
        Ticket.messages.any(body_contains(term)),
    )


def compile_ticket_predicate(filters: TicketFilter, tz_name: str = "UTC") -> ColumnElement:
    """
    Compile ticket filters into one clause over Ticket joined to its Contact.

    The date filter applies to the ticket's created_at. Returns true() when
    no filter is present.
    """
    clauses = []

    term = normalize_search_term(filters.search_param)
    if term is not None:
        clauses.append(ticket_matches(term))

    if filters.status:
        clauses.append(Ticket.status == filters.status)

    if filters.date is not None:
        start, end = day_bucket(filters.date, tz_name)
        clauses.append(and_(Ticket.created_at >= start, Ticket.created_at < end))

    if filters.contact_id is not None:
        clauses.append(Ticket.contact_id == filters.contact_id)

    logger.debug(
        f"Compiled ticket predicate: term={term!r}, status={filters.status!r}, "
        f"date={filters.date}, contact_id={filters.contact_id}"
    )

    if not clauses:
        return true()
    return and_(*clauses)
