"""
SQLAlchemy ORM models for database tables.

This module contains database table definitions using SQLAlchemy.
For Pydantic request/response schemas, see schemas.py.

Timestamps are stored as naive UTC datetimes.
"""

from datetime import datetime, timezone

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Integer, String, Text
from sqlalchemy.orm import relationship

from ticketdesk.storage import Base


def utcnow() -> datetime:
    """Naive UTC now, matching how timestamps are stored."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class Contact(Base):
    """
    A messaging counterparty identified by phone number.

    Table: contacts
    number holds digits only (country + area + subscriber).
    """
    __tablename__ = "contacts"

    id = Column(Integer, primary_key=True)
    name = Column(String, nullable=False)
    number = Column(String, nullable=False, unique=True, index=True)
    email = Column(String, nullable=True)
    profile_pic_url = Column(String, nullable=True)
    is_group = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    tickets = relationship("Ticket", back_populates="contact")


class Ticket(Base):
    """
    A conversation thread belonging to exactly one contact.

    Table: tickets
    """
    __tablename__ = "tickets"

    id = Column(Integer, primary_key=True)
    status = Column(String, nullable=False, default="pending")
    last_message = Column(Text, nullable=True)
    unread_messages = Column(Integer, nullable=False, default=0)
    contact_id = Column(Integer, ForeignKey("contacts.id"), nullable=False, index=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow, index=True)

    contact = relationship("Contact", back_populates="tickets")
    messages = relationship("Message", back_populates="ticket")


class Message(Base):
    """
    An immutable unit of conversation content inside a ticket.

    Table: messages
    Primary Key: id (provider message identifier)
    """
    __tablename__ = "messages"

    id = Column(String, primary_key=True)
    body = Column(Text, nullable=False)
    ack = Column(Integer, nullable=False, default=0)
    read = Column(Boolean, nullable=False, default=False)
    from_me = Column(Boolean, nullable=False, default=False)
    media_type = Column(String, nullable=True)
    media_url = Column(String, nullable=True)
    ticket_id = Column(Integer, ForeignKey("tickets.id"), nullable=False, index=True)
    contact_id = Column(Integer, ForeignKey("contacts.id"), nullable=True)
    quoted_msg_id = Column(String, ForeignKey("messages.id"), nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow, index=True)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    ticket = relationship("Ticket", back_populates="messages")
    contact = relationship("Contact")
    quoted_msg = relationship("Message", remote_side=[id])
