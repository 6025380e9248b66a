"""
Message query and aggregation engine.

Four read-only operations over the ticket, contact and message stores:

- list_tickets: one page of tickets, most recently updated first
- list_ticket_messages: one page of a ticket's messages
- search_messages: global filtered search, capped
- aggregate_daily_contact_messages: per-contact matches for one day

Messages are always queried newest-first; every message result is reversed
to oldest-first before it is returned.
"""

import logging
from dataclasses import dataclass, field
from datetime import date
from typing import Callable, List, Optional, Union

from sqlalchemy import and_

from ticketdesk.config import settings
from ticketdesk.errors import NotFoundError, ValidationError
from ticketdesk.filters import (
    MessageFilter,
    TicketFilter,
    body_contains,
    compile_message_predicate,
    compile_ticket_predicate,
    created_in,
    day_bucket,
    normalize_search_term,
    parse_calendar_date,
)
from ticketdesk.models import Contact, Message, Ticket
from ticketdesk.pagination import coerce_page_number, has_more, page_window
from ticketdesk.stores import QueryResult, Stores

logger = logging.getLogger(__name__)

NEWEST_FIRST = (Message.created_at.desc(), Message.id.desc())
RECENTLY_UPDATED_FIRST = (Ticket.updated_at.desc(), Ticket.id.desc())


@dataclass
class TicketMessagesPage:
    messages: List[Message]
    ticket: Ticket
    count: int
    has_more: bool


@dataclass
class TicketListPage:
    tickets: List[Ticket]
    count: int
    has_more: bool


@dataclass
class MessageSearchResult:
    messages: List[Message]
    count: int


@dataclass
class ContactMessagesGroup:
    contact_number: str
    messages: List[Message]
    count: int


@dataclass
class ContactSubquery:
    """One independent per-contact query of a daily aggregation batch."""
    contact: Contact
    ticket_ids: List[int] = field(default_factory=list)


def _oldest_first(result: QueryResult) -> List[Message]:
    return list(reversed(result.items))


# =============================================================================
# Ticket listing
# =============================================================================

def list_tickets(
    stores: Stores,
    search_param: Optional[str] = None,
    page_number: Union[int, str, None] = None,
    status: Optional[str] = None,
    date: Union[date, str, None] = None,
    contact_number: Optional[str] = None,
    page_size: Optional[int] = None,
) -> TicketListPage:
    """
    Return one page of tickets, most recently updated first.

    Args:
        stores: Store bundle to read from
        search_param: Matched against contact name, contact number and message bodies
        page_number: 1-indexed page, default 1; numeric strings accepted
        status: Exact ticket status
        date: Calendar day the ticket was created on
        contact_number: Exact number of the ticket's contact
        page_size: Page size, defaults to settings.TICKET_LIST_PAGE_SIZE

    Raises:
        ValidationError: page_number or date is malformed
    """
    number = coerce_page_number(page_number)
    window = page_window(number, page_size or settings.TICKET_LIST_PAGE_SIZE)
    day = parse_calendar_date(date)

    contact_id = None
    if contact_number:
        contact = stores.contacts.find_by_number(contact_number)
        if contact is None:
            logger.info(f"Ticket listing: no contact with number {contact_number}")
            return TicketListPage(tickets=[], count=0, has_more=False)
        contact_id = contact.id

    filters = TicketFilter(
        search_param=search_param,
        status=status or None,
        date=day,
        contact_id=contact_id,
    )
    predicate = compile_ticket_predicate(filters, settings.TIMEZONE)

    result = stores.tickets.query(
        predicate,
        RECENTLY_UPDATED_FIRST,
        limit=window.limit,
        offset=window.offset,
    )
    more = has_more(result.total_count, window.offset, len(result.items))

    logger.info(
        f"Ticket listing page {number}: {len(result.items)} of {result.total_count} tickets, "
        f"has_more={more}"
    )
    return TicketListPage(tickets=result.items, count=result.total_count, has_more=more)


# =============================================================================
# Single-ticket pagination
# =============================================================================

def list_ticket_messages(
    stores: Stores,
    ticket_id: int,
    page_number: Union[int, str, None] = None,
    page_size: Optional[int] = None,
) -> TicketMessagesPage:
    """
    Return one page of a ticket's messages, oldest first.

    Args:
        stores: Store bundle to read from
        ticket_id: Ticket identifier (must exist)
        page_number: 1-indexed page, default 1; numeric strings accepted
        page_size: Page size, defaults to settings.TICKET_PAGE_SIZE

    Returns:
        TicketMessagesPage with count = total messages of the ticket

    Raises:
        ValidationError: page_number is not a positive integer
        NotFoundError: ERR_NO_TICKET_FOUND
    """
    number = coerce_page_number(page_number)
    window = page_window(number, page_size or settings.TICKET_PAGE_SIZE)

    ticket = stores.tickets.find_by_id(ticket_id)
    if ticket is None:
        logger.info(f"Ticket not found: {ticket_id}")
        raise NotFoundError("ERR_NO_TICKET_FOUND")

    result = stores.messages.query(
        Message.ticket_id == ticket.id,
        NEWEST_FIRST,
        limit=window.limit,
        offset=window.offset,
        include_quoted=True,
    )
    messages = _oldest_first(result)
    more = has_more(result.total_count, window.offset, len(messages))

    logger.info(
        f"Ticket {ticket.id} page {number}: {len(messages)} of {result.total_count} messages, "
        f"has_more={more}"
    )
    return TicketMessagesPage(
        messages=messages,
        ticket=ticket,
        count=result.total_count,
        has_more=more,
    )


# =============================================================================
# Global search
# =============================================================================

def search_messages(
    stores: Stores,
    search_param: Optional[str] = None,
    date: Union[date, str, None] = None,
    contact_number: Optional[str] = None,
    limit: Optional[int] = None,
) -> MessageSearchResult:
    """
    Search every message with optional filters, newest matches kept.

    At most `limit` (default settings.SEARCH_RESULT_LIMIT) messages are
    returned, oldest first. count is the full number of matches and may
    exceed the cap; there is no cursor past it.
    """
    filters = MessageFilter(
        search_param=search_param,
        date=parse_calendar_date(date),
        contact_number=contact_number or None,
    )
    predicate = compile_message_predicate(filters, settings.TIMEZONE)

    result = stores.messages.query(
        predicate,
        NEWEST_FIRST,
        limit=limit or settings.SEARCH_RESULT_LIMIT,
    )
    messages = _oldest_first(result)

    logger.info(f"Message search returned {len(messages)} of {result.total_count} matches")
    return MessageSearchResult(messages=messages, count=result.total_count)


# =============================================================================
# Daily contact aggregation
# =============================================================================

def plan_contact_batch(stores: Stores, tickets: List[Ticket]) -> List[ContactSubquery]:
    """
    Group day-active tickets by contact, in first-encountered contact order.

    Contacts that no longer exist are skipped.
    """
    ticket_ids_by_contact = {}
    for ticket in tickets:
        ticket_ids_by_contact.setdefault(ticket.contact_id, []).append(ticket.id)

    batch = []
    for contact_id, ticket_ids in ticket_ids_by_contact.items():
        contact = stores.contacts.find_by_id(contact_id)
        if contact is None:
            logger.warning(f"Skipping missing contact {contact_id} ({len(ticket_ids)} tickets)")
            continue
        batch.append(ContactSubquery(contact=contact, ticket_ids=ticket_ids))
    return batch


def run_batch(
    batch: List[ContactSubquery],
    run: Callable[[ContactSubquery], QueryResult],
) -> List[ContactMessagesGroup]:
    """
    Run independent per-contact queries and collect non-empty groups.

    Groups come back in batch order regardless of how the queries run.
    """
    groups = []
    for subquery, result in zip(batch, map(run, batch)):
        if result.total_count == 0:
            continue
        groups.append(
            ContactMessagesGroup(
                contact_number=subquery.contact.number,
                messages=_oldest_first(result),
                count=result.total_count,
            )
        )
    return groups


def aggregate_daily_contact_messages(
    stores: Stores,
    search_param: Optional[str],
    date: Union[date, str, None],
    contact_number: Optional[str] = None,
    limit: Optional[int] = None,
) -> List[ContactMessagesGroup]:
    """
    Per-contact message matches for contacts whose tickets were updated on a day.

    Args:
        stores: Store bundle to read from
        search_param: Required search term (case-insensitive substring)
        date: Required calendar date (date or YYYY-MM-DD)
        contact_number: Accepted but does not restrict the result
        limit: Per-contact cap, defaults to settings.DAILY_CONTACT_MESSAGE_LIMIT

    Returns:
        Groups for contacts with at least one match, in order of first
        appearance among the day's tickets

    Raises:
        ValidationError: search_param or date missing, before any store access
    """
    term = normalize_search_term(search_param)
    if term is None:
        raise ValidationError("ERR_SEARCH_PARAM_REQUIRED")
    day = parse_calendar_date(date)
    if day is None:
        raise ValidationError("ERR_DATE_REQUIRED")
    if contact_number:
        logger.debug(f"Ignoring contact_number={contact_number!r} for daily aggregation")

    bounds = day_bucket(day, settings.TIMEZONE)
    per_contact_limit = limit or settings.DAILY_CONTACT_MESSAGE_LIMIT

    tickets = stores.tickets.find_updated_in_range(*bounds)
    batch = plan_contact_batch(stores, tickets)

    def run(subquery: ContactSubquery) -> QueryResult:
        predicate = and_(
            Message.ticket_id.in_(subquery.ticket_ids),
            created_in(bounds),
            body_contains(term),
        )
        return stores.messages.query(predicate, NEWEST_FIRST, limit=per_contact_limit)

    groups = run_batch(batch, run)

    logger.info(
        f"Daily aggregation for {day}: {len(tickets)} tickets, {len(batch)} contacts, "
        f"{len(groups)} groups"
    )
    return groups
