"""
Tests for the ticket and message query engine and its stores.

Uses the SQLAlchemy stores over a fresh SQLite database (see conftest.py),
plus stub stores where the engine must not touch the database.
"""

from datetime import date, datetime, timedelta

import pytest
from sqlalchemy.exc import OperationalError

from ticketdesk.engine import (
    aggregate_daily_contact_messages,
    list_ticket_messages,
    list_tickets,
    search_messages,
)
from ticketdesk.errors import NotFoundError, StoreFailure, ValidationError
from ticketdesk.pagination import SQL_INTEGER_MAX
from ticketdesk.stores import Stores

T0 = datetime(2024, 3, 1, 8, 0, 0)


class NeverCalledStore:
    """Store stub failing the test if any method is used."""

    def __getattr__(self, name):
        def fail(*args, **kwargs):
            pytest.fail(f"store method {name} must not be called")
        return fail


@pytest.fixture
def never_called_stores():
    return Stores(
        tickets=NeverCalledStore(),
        contacts=NeverCalledStore(),
        messages=NeverCalledStore(),
    )


@pytest.fixture
def ticket_with_25(seed):
    """Ticket T1 with 25 messages created at t0 < t1 < ... < t24."""
    contact = seed.contact("5511900000001", "Alice")
    ticket = seed.ticket(contact, T0)
    for i in range(25):
        seed.message(ticket, f"message {i}", T0 + timedelta(minutes=i), message_id=f"t1-{i:02d}")
    return ticket


# =============================================================================
# Single-ticket pagination
# =============================================================================

class TestListTicketMessages:
    """Tests for list_ticket_messages."""

    def test_first_page_is_newest_twenty_oldest_first(self, stores, ticket_with_25):
        page = list_ticket_messages(stores, ticket_with_25.id)

        assert [m.id for m in page.messages] == [f"t1-{i:02d}" for i in range(5, 25)]
        assert page.count == 25
        assert page.has_more is True
        assert page.ticket.id == ticket_with_25.id

    def test_second_page_is_final_partial_page(self, stores, ticket_with_25):
        page = list_ticket_messages(stores, ticket_with_25.id, page_number=2)

        assert [m.id for m in page.messages] == [f"t1-{i:02d}" for i in range(0, 5)]
        assert page.count == 25
        assert page.has_more is False

    def test_page_number_as_string(self, stores, ticket_with_25):
        page = list_ticket_messages(stores, ticket_with_25.id, page_number="2")
        assert len(page.messages) == 5

    def test_page_beyond_end_is_empty(self, stores, ticket_with_25):
        page = list_ticket_messages(stores, ticket_with_25.id, page_number=3)
        assert page.messages == []
        assert page.count == 25
        assert page.has_more is False

    def test_ascending_created_at(self, stores, ticket_with_25):
        page = list_ticket_messages(stores, ticket_with_25.id)
        stamps = [m.created_at for m in page.messages]
        assert stamps == sorted(stamps)
        assert len(set(stamps)) == len(stamps)

    def test_count_is_scoped_to_ticket(self, seed, stores, ticket_with_25):
        other = seed.ticket(seed.contact("5511900000009"), T0)
        seed.message(other, "elsewhere", T0)

        page = list_ticket_messages(stores, ticket_with_25.id)
        assert page.count == 25
        assert all(m.ticket_id == ticket_with_25.id for m in page.messages)

    def test_includes_contact_and_quoted_message(self, seed, stores):
        contact = seed.contact("5511900000001", "Alice")
        ticket = seed.ticket(contact, T0)
        original = seed.message(ticket, "original", T0)
        seed.message(ticket, "reply", T0 + timedelta(minutes=1), from_me=True, quoted=original)

        page = list_ticket_messages(stores, ticket.id)

        reply = page.messages[-1]
        assert reply.contact.number == "5511900000001"
        assert reply.quoted_msg.id == original.id
        assert reply.quoted_msg.contact.name == "Alice"
        assert page.ticket.contact.number == "5511900000001"

    def test_unknown_ticket_raises_not_found(self, stores):
        with pytest.raises(NotFoundError) as exc_info:
            list_ticket_messages(stores, 999)
        assert exc_info.value.code == "ERR_NO_TICKET_FOUND"
        assert exc_info.value.status_code == 404

    def test_invalid_page_number_rejected_before_store(self, never_called_stores):
        with pytest.raises(ValidationError):
            list_ticket_messages(never_called_stores, 1, page_number="abc")

    def test_oversized_page_number_rejected_before_store(self, never_called_stores):
        with pytest.raises(ValidationError) as exc_info:
            list_ticket_messages(never_called_stores, 1, page_number="99999999999999999999")
        assert exc_info.value.code == "ERR_INVALID_PAGE_NUMBER"

    def test_ticket_id_beyond_sql_integer_is_not_found(self, stores, ticket_with_25):
        with pytest.raises(NotFoundError) as exc_info:
            list_ticket_messages(stores, SQL_INTEGER_MAX + 1)
        assert exc_info.value.code == "ERR_NO_TICKET_FOUND"


# =============================================================================
# Global search
# =============================================================================

class TestSearchMessages:
    """Tests for search_messages."""

    def test_empty_request_returns_recent_messages(self, stores, ticket_with_25):
        result = search_messages(stores)
        assert result.count == 25
        assert len(result.messages) == 25
        assert result.messages[0].id == "t1-00"

    def test_cap_keeps_newest_and_reports_full_count(self, seed, stores):
        contact = seed.contact("5511900000001")
        ticket = seed.ticket(contact, T0)
        for i in range(205):
            seed.message(ticket, f"bulk {i}", T0 + timedelta(seconds=i), message_id=f"bulk-{i:03d}")

        result = search_messages(stores)

        assert result.count == 205
        assert len(result.messages) == 200
        assert result.messages[0].id == "bulk-005"
        assert result.messages[-1].id == "bulk-204"

    def test_explicit_limit(self, stores, ticket_with_25):
        result = search_messages(stores, limit=3)
        assert [m.id for m in result.messages] == ["t1-22", "t1-23", "t1-24"]
        assert result.count == 25

    def test_normalized_search(self, seed, stores):
        contact = seed.contact("5511900000001")
        ticket = seed.ticket(contact, T0)
        seed.message(ticket, "Ola mundo", T0)
        seed.message(ticket, "tchau", T0 + timedelta(minutes=1))

        padded = search_messages(stores, search_param="  OLA  ")
        plain = search_messages(stores, search_param="ola")

        assert [m.id for m in padded.messages] == [m.id for m in plain.messages]
        assert padded.count == plain.count == 1

    def test_filters_by_contact_and_date(self, seed, stores):
        alice = seed.contact("5511900000001")
        bob = seed.contact("5511900000002")
        t_alice = seed.ticket(alice, T0)
        t_bob = seed.ticket(bob, T0)
        seed.message(t_alice, "hello", T0, message_id="a-day1")
        seed.message(t_alice, "hello", T0 + timedelta(days=1), message_id="a-day2")
        seed.message(t_bob, "hello", T0, message_id="b-day1")

        result = search_messages(stores, date="2024-03-01", contact_number="5511900000001")

        assert [m.id for m in result.messages] == ["a-day1"]
        assert result.count == 1

    def test_malformed_date_rejected(self, never_called_stores):
        with pytest.raises(ValidationError):
            search_messages(never_called_stores, date="March 1st")


# =============================================================================
# Daily contact aggregation
# =============================================================================

class TestAggregateDailyContactMessages:
    """Tests for aggregate_daily_contact_messages."""

    def test_only_contacts_with_matches(self, seed, stores):
        contact_a = seed.contact("5511900000001", "A")
        contact_b = seed.contact("5511900000002", "B")
        t2 = seed.ticket(contact_a, datetime(2024, 3, 1, 17, 0))
        t3 = seed.ticket(contact_b, datetime(2024, 3, 1, 18, 0))
        seed.message(t2, "I need a refund please", datetime(2024, 3, 1, 9, 0))
        seed.message(t3, "thanks for the help", datetime(2024, 3, 1, 10, 0))

        groups = aggregate_daily_contact_messages(stores, "refund", "2024-03-01")

        assert len(groups) == 1
        assert groups[0].contact_number == "5511900000001"
        assert groups[0].count == 1
        assert groups[0].messages[0].body == "I need a refund please"

    def test_requires_search_param_without_store_access(self, never_called_stores):
        with pytest.raises(ValidationError) as exc_info:
            aggregate_daily_contact_messages(never_called_stores, None, "2024-03-01")
        assert exc_info.value.code == "ERR_SEARCH_PARAM_REQUIRED"

    def test_blank_search_param_counts_as_missing(self, never_called_stores):
        with pytest.raises(ValidationError):
            aggregate_daily_contact_messages(never_called_stores, "   ", "2024-03-01")

    def test_requires_date_without_store_access(self, never_called_stores):
        with pytest.raises(ValidationError) as exc_info:
            aggregate_daily_contact_messages(never_called_stores, "refund", None)
        assert exc_info.value.code == "ERR_DATE_REQUIRED"

    def test_contact_with_several_tickets_grouped_once(self, seed, stores):
        contact = seed.contact("5511900000001")
        first = seed.ticket(contact, datetime(2024, 3, 1, 12, 0))
        second = seed.ticket(contact, datetime(2024, 3, 1, 13, 0))
        seed.message(first, "refund 1", datetime(2024, 3, 1, 9, 0), message_id="r1")
        seed.message(second, "refund 2", datetime(2024, 3, 1, 10, 0), message_id="r2")

        groups = aggregate_daily_contact_messages(stores, "refund", date(2024, 3, 1))

        assert len(groups) == 1
        assert groups[0].count == 2
        assert [m.id for m in groups[0].messages] == ["r1", "r2"]

    def test_groups_in_first_encountered_contact_order(self, seed, stores):
        day = datetime(2024, 3, 1, 12, 0)
        zed = seed.contact("5511900000003", "Zed")
        amy = seed.contact("5511900000001", "Amy")
        # Zed's ticket is created first, so Zed is encountered first
        t_zed = seed.ticket(zed, day)
        t_amy = seed.ticket(amy, day)
        t_zed_again = seed.ticket(zed, day)
        seed.message(t_amy, "refund amy", datetime(2024, 3, 1, 8, 0))
        seed.message(t_zed, "refund zed", datetime(2024, 3, 1, 9, 0))
        seed.message(t_zed_again, "refund zed again", datetime(2024, 3, 1, 10, 0))

        groups = aggregate_daily_contact_messages(stores, "REFUND", "2024-03-01")

        assert [g.contact_number for g in groups] == ["5511900000003", "5511900000001"]
        assert groups[0].count == 2

    def test_only_tickets_updated_that_day(self, seed, stores):
        contact = seed.contact("5511900000001")
        stale = seed.ticket(contact, datetime(2024, 2, 28, 12, 0))
        seed.message(stale, "refund", datetime(2024, 3, 1, 9, 0))

        assert aggregate_daily_contact_messages(stores, "refund", "2024-03-01") == []

    def test_only_messages_created_that_day(self, seed, stores):
        contact = seed.contact("5511900000001")
        ticket = seed.ticket(contact, datetime(2024, 3, 1, 12, 0))
        seed.message(ticket, "refund yesterday", datetime(2024, 2, 29, 23, 59, 59), message_id="old")
        seed.message(ticket, "refund today", datetime(2024, 3, 1, 0, 0, 0), message_id="new")

        groups = aggregate_daily_contact_messages(stores, "refund", "2024-03-01")

        assert [m.id for m in groups[0].messages] == ["new"]
        assert groups[0].count == 1

    def test_contact_number_does_not_restrict(self, seed, stores):
        alice = seed.contact("5511900000001")
        bob = seed.contact("5511900000002")
        seed.message(seed.ticket(alice, T0), "refund", T0)
        seed.message(seed.ticket(bob, T0), "refund", T0)

        groups = aggregate_daily_contact_messages(
            stores, "refund", "2024-03-01", contact_number="5511900000002"
        )

        assert len(groups) == 2

    def test_per_contact_cap_keeps_newest_with_full_count(self, seed, stores):
        contact = seed.contact("5511900000001")
        ticket = seed.ticket(contact, T0)
        for i in range(5):
            seed.message(ticket, f"refund {i}", T0 + timedelta(minutes=i), message_id=f"r{i}")

        groups = aggregate_daily_contact_messages(stores, "refund", "2024-03-01", limit=3)

        assert groups[0].count == 5
        assert [m.id for m in groups[0].messages] == ["r2", "r3", "r4"]

    def test_missing_contact_is_skipped(self, seed, stores):
        present = seed.contact("5511900000001")
        seed.message(seed.ticket(present, T0), "refund", T0)

        class PartialContacts:
            def find_by_id(self, contact_id):
                return None if contact_id == present.id else stores.contacts.find_by_id(contact_id)

        ghost = seed.contact("5511900000002")
        seed.message(seed.ticket(ghost, T0), "refund", T0)

        partial = Stores(tickets=stores.tickets, contacts=PartialContacts(), messages=stores.messages)
        groups = aggregate_daily_contact_messages(partial, "refund", "2024-03-01")

        assert [g.contact_number for g in groups] == ["5511900000002"]


# =============================================================================
# Ticket listing
# =============================================================================

@pytest.fixture
def ticket_list(seed):
    """45 tickets for Alice updated one minute apart, plus one for Bob."""
    alice = seed.contact("5511900000001", "Alice")
    bob = seed.contact("5511900000002", "Bob")
    alice_tickets = [seed.ticket(alice, T0 + timedelta(minutes=i)) for i in range(45)]
    bob_ticket = seed.ticket(bob, T0 - timedelta(days=1), status="closed")
    seed.message(bob_ticket, "please cancel my order", T0 - timedelta(days=1))
    return {"alice": alice_tickets, "bob": bob_ticket}


class TestListTickets:
    """Tests for list_tickets."""

    def test_first_page_most_recently_updated_first(self, stores, ticket_list):
        page = list_tickets(stores)

        expected = [t.id for t in reversed(ticket_list["alice"])][:40]
        assert [t.id for t in page.tickets] == expected
        assert page.count == 46
        assert page.has_more is True
        assert page.tickets[0].contact.number == "5511900000001"

    def test_last_page(self, stores, ticket_list):
        page = list_tickets(stores, page_number="2")

        assert len(page.tickets) == 6
        assert page.tickets[-1].id == ticket_list["bob"].id
        assert page.has_more is False

    def test_contact_number_resolves_contact(self, stores, ticket_list):
        page = list_tickets(stores, contact_number="5511900000002")

        assert [t.id for t in page.tickets] == [ticket_list["bob"].id]
        assert page.count == 1

    def test_unknown_contact_number_is_empty(self, stores, ticket_list):
        class NumberOnlyContacts:
            def find_by_number(self, number):
                return stores.contacts.find_by_number(number)

        partial = Stores(tickets=NeverCalledStore(), contacts=NumberOnlyContacts(), messages=NeverCalledStore())
        page = list_tickets(partial, contact_number="5511999999999")

        assert page.tickets == []
        assert page.count == 0
        assert page.has_more is False

    def test_search_status_and_date(self, stores, ticket_list):
        page = list_tickets(stores, search_param="CANCEL", status="closed", date="2024-02-29")
        assert [t.id for t in page.tickets] == [ticket_list["bob"].id]

        assert list_tickets(stores, search_param="cancel", status="open").count == 0

    def test_invalid_page_rejected_before_store(self, never_called_stores):
        with pytest.raises(ValidationError):
            list_tickets(never_called_stores, page_number=0)

    def test_malformed_date_rejected_before_store(self, never_called_stores):
        with pytest.raises(ValidationError) as exc_info:
            list_tickets(never_called_stores, date="yesterday")
        assert exc_info.value.code == "ERR_INVALID_DATE"


# =============================================================================
# Store lookups
# =============================================================================

class TestSqlStores:
    """Direct lookups on the SQLAlchemy stores."""

    def test_find_tickets_by_contact_in_id_order(self, seed, stores):
        alice = seed.contact("5511900000001")
        other = seed.contact("5511900000002")
        later = seed.ticket(alice, T0 + timedelta(hours=1))
        seed.ticket(other, T0)
        earlier_updated = seed.ticket(alice, T0)

        tickets = stores.tickets.find_by_contact(alice.id)

        assert [t.id for t in tickets] == [later.id, earlier_updated.id]

    def test_find_tickets_by_contact_without_tickets(self, seed, stores):
        lonely = seed.contact("5511900000003")
        assert stores.tickets.find_by_contact(lonely.id) == []

    def test_find_contact_by_number(self, seed, stores):
        alice = seed.contact("5511900000001", "Alice")

        assert stores.contacts.find_by_number("5511900000001").id == alice.id
        assert stores.contacts.find_by_number("551190000000") is None
        assert stores.contacts.find_by_number("5511999999999") is None

    def test_find_ticket_by_id_out_of_sql_range(self, stores):
        assert stores.tickets.find_by_id(SQL_INTEGER_MAX + 1) is None
        assert stores.tickets.find_by_id(-SQL_INTEGER_MAX - 2) is None


# =============================================================================
# Store failures
# =============================================================================

class TestStoreFailure:
    """Store errors surface as StoreFailure."""

    def test_sqlalchemy_error_wrapped(self, db, stores, monkeypatch):
        def broken_execute(*args, **kwargs):
            raise OperationalError("SELECT 1", {}, Exception("database is locked"))

        monkeypatch.setattr(db, "execute", broken_execute)

        with pytest.raises(StoreFailure) as exc_info:
            search_messages(stores)
        assert exc_info.value.code == "ERR_STORE_FAILURE"
        assert isinstance(exc_info.value.__cause__, OperationalError)
