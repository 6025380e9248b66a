"""
Pydantic schemas for request/response validation.

This module contains:
- Request models for the ticket listing and search endpoints
- Response models for contacts, tickets, messages and result envelopes

Field names are snake_case in Python and camelCase on the wire.
"""

from datetime import datetime
from typing import Optional, Union

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    """Base model serializing with camelCase aliases."""
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        from_attributes=True,  # Allow creating from ORM objects
    )


# =============================================================================
# Pydantic Request Models
# =============================================================================

class MessageSearchRequest(CamelModel):
    """
    Body of the search and daily aggregation endpoints.

    date is kept as a string and parsed by the engine, so a malformed date
    surfaces as ERR_INVALID_DATE like the other validation errors.
    """
    search_param: Optional[str] = Field(
        None,
        description="Case-insensitive substring searched in message bodies"
    )
    date: Optional[str] = Field(
        None,
        description="Calendar date (YYYY-MM-DD)"
    )
    contact_number: Optional[str] = Field(
        None,
        description="Exact contact number (digits only)"
    )

    model_config = ConfigDict(
        json_schema_extra={
            "examples": [
                {
                    "searchParam": "refund",
                    "date": "2024-03-01",
                    "contactNumber": "5511999990000"
                }
            ]
        }
    )


class TicketListRequest(CamelModel):
    """Body of the ticket listing endpoint. Every filter is optional."""
    search_param: Optional[str] = Field(
        None,
        description="Substring of the contact name or number, or of any message body"
    )
    page_number: Optional[Union[int, str]] = Field(
        None,
        description="1-indexed page number"
    )
    status: Optional[str] = Field(
        None,
        description="Exact ticket status, e.g. open or pending"
    )
    date: Optional[str] = Field(
        None,
        description="Calendar date the ticket was created (YYYY-MM-DD)"
    )
    contact_number: Optional[str] = Field(
        None,
        description="Exact contact number (digits only)"
    )


# =============================================================================
# Pydantic Response Models
# =============================================================================

class ContactResponse(CamelModel):
    id: int
    name: str
    number: str
    email: Optional[str] = None
    profile_pic_url: Optional[str] = None
    is_group: bool = False


class QuotedMessageResponse(CamelModel):
    """A message referenced by another message, with its own contact."""
    id: str
    body: str
    from_me: bool
    media_type: Optional[str] = None
    media_url: Optional[str] = None
    ticket_id: int
    created_at: datetime
    contact: Optional[ContactResponse] = None


class MessageResponse(CamelModel):
    id: str
    body: str
    ack: int = 0
    read: bool = False
    from_me: bool
    media_type: Optional[str] = None
    media_url: Optional[str] = None
    ticket_id: int
    contact_id: Optional[int] = None
    quoted_msg_id: Optional[str] = None
    created_at: datetime
    updated_at: datetime
    contact: Optional[ContactResponse] = None


class TicketMessageResponse(MessageResponse):
    """A message in the ticket view, with the message it quotes."""
    quoted_msg: Optional[QuotedMessageResponse] = None


class TicketResponse(CamelModel):
    id: int
    status: str
    last_message: Optional[str] = None
    unread_messages: int = 0
    contact_id: int
    created_at: datetime
    updated_at: datetime
    contact: Optional[ContactResponse] = None


class TicketMessagesResponse(CamelModel):
    """
    One page of a ticket's messages.

    Contains:
    - messages: oldest first, at most one page
    - ticket: the ticket with its contact
    - count: total messages of the ticket (ignoring pagination)
    - has_more: whether a further page exists
    """
    messages: list[TicketMessageResponse] = Field(default_factory=list)
    ticket: TicketResponse
    count: int = Field(..., ge=0)
    has_more: bool


class TicketListResponse(CamelModel):
    """One page of tickets, most recently updated first."""
    tickets: list[TicketResponse] = Field(default_factory=list)
    count: int = Field(..., ge=0)
    has_more: bool


class MessageSearchResponse(CamelModel):
    """Capped search result; count may exceed the number of messages."""
    messages: list[MessageResponse] = Field(default_factory=list)
    count: int = Field(..., ge=0)


class ContactMessagesGroupResponse(CamelModel):
    contact_number: str
    messages: list[MessageResponse] = Field(default_factory=list)
    count: int = Field(..., ge=1)


class DailyContactMessagesResponse(CamelModel):
    """Non-empty per-contact groups in order of first appearance."""
    messages: list[ContactMessagesGroupResponse] = Field(default_factory=list)


class ErrorResponse(BaseModel):
    """Response model for error responses."""
    error: str = Field(..., description="Stable error code")


class HealthResponse(BaseModel):
    """Response model for health check endpoints."""
    status: str = Field(..., description="Health status")
    reason: Optional[str] = Field(None, description="Reason if not ready")
