import logging
from contextlib import asynccontextmanager
from typing import Annotated, Optional

from fastapi import Depends, FastAPI, Query, Request, Response, status
from sqlalchemy.orm import Session

from ticketdesk import __version__
from ticketdesk.config import settings
from ticketdesk.engine import (
    aggregate_daily_contact_messages,
    list_ticket_messages,
    list_tickets,
    search_messages,
)
from ticketdesk.errors import register_error_handlers
from ticketdesk.logging_utils import setup_logging, RequestLoggingMiddleware, log_query_data
from ticketdesk.metrics import record_message_query, get_metrics, get_metrics_content_type
from ticketdesk.schemas import (
    ContactMessagesGroupResponse,
    DailyContactMessagesResponse,
    ErrorResponse,
    HealthResponse,
    MessageResponse,
    MessageSearchRequest,
    MessageSearchResponse,
    TicketListRequest,
    TicketListResponse,
    TicketMessageResponse,
    TicketMessagesResponse,
    TicketResponse,
)
from ticketdesk.storage import init_db, check_db_health, get_db
from ticketdesk.stores import Stores, sql_stores
from ticketdesk.utils import require_api_token


# Setup structured JSON logging
setup_logging(settings.LOG_LEVEL)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Lifespan context manager for startup and shutdown events.
    - Startup: Initialize database and create tables
    """
    init_db()
    if not settings.API_TOKEN:
        logger.warning("API_TOKEN not configured: API authentication disabled")
    yield


app = FastAPI(
    title="ticketdesk",
    description="Message query and aggregation API over a ticketing message store",
    version=__version__,
    lifespan=lifespan,
)

app.add_middleware(RequestLoggingMiddleware)
register_error_handlers(app)


def get_stores(db: Session = Depends(get_db)) -> Stores:
    """Dependency building the SQLAlchemy stores for the request session."""
    return sql_stores(db)


ERROR_RESPONSES = {
    400: {"model": ErrorResponse, "description": "Missing or malformed filter"},
    401: {"model": ErrorResponse, "description": "Missing or invalid API token"},
    422: {"model": ErrorResponse, "description": "Malformed request body or parameter"},
    500: {"model": ErrorResponse, "description": "Store failure"},
}


# =============================================================================
# Health Check Routes
# =============================================================================

@app.get("/health/live", response_model=HealthResponse)
async def health_live() -> HealthResponse:
    """
    Liveness probe - always returns 200 once the app is running.
    """
    return HealthResponse(status="ok")


@app.get("/health/ready", response_model=HealthResponse)
def health_ready(response: Response) -> HealthResponse:
    """
    Readiness probe - returns 200 only if the DB is reachable and the
    contacts, tickets and messages tables exist. Otherwise returns 503.
    """
    if not check_db_health():
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE
        return HealthResponse(
            status="not_ready",
            reason="Database not reachable or schema not applied"
        )

    return HealthResponse(status="ready")


# =============================================================================
# Ticket Messages Route
# =============================================================================

@app.get(
    "/tickets/{ticket_id}/messages",
    response_model=TicketMessagesResponse,
    dependencies=[Depends(require_api_token)],
    responses={**ERROR_RESPONSES, 404: {"model": ErrorResponse, "description": "Ticket not found"}},
)
def get_ticket_messages(
    request: Request,
    ticket_id: int,
    page_number: Annotated[Optional[str], Query(alias="pageNumber", description="1-indexed page number")] = None,
    stores: Stores = Depends(get_stores),
) -> TicketMessagesResponse:
    """
    One page (20 messages) of a ticket's messages, oldest first.

    Response:
        - messages: the page, oldest first, each with contact and quoted message
        - ticket: the ticket with its contact
        - count: total messages in the ticket
        - hasMore: whether a further page exists
    """
    logger.info(f"GET /tickets/{ticket_id}/messages: pageNumber={page_number}")

    page = list_ticket_messages(stores, ticket_id, page_number)

    record_message_query("ticket")
    log_query_data(request, mode="ticket", count=page.count)

    return TicketMessagesResponse(
        messages=[TicketMessageResponse.model_validate(msg) for msg in page.messages],
        ticket=TicketResponse.model_validate(page.ticket),
        count=page.count,
        has_more=page.has_more,
    )


# =============================================================================
# Ticket Listing Route
# =============================================================================

@app.post(
    "/api",
    response_model=TicketListResponse,
    dependencies=[Depends(require_api_token)],
    responses=ERROR_RESPONSES,
)
def post_ticket_list(
    request: Request,
    body: TicketListRequest,
    stores: Stores = Depends(get_stores),
) -> TicketListResponse:
    """
    One page (40 tickets) of tickets, most recently updated first.

    searchParam matches the contact name or number, or any message body.
    status, date (creation day) and contactNumber narrow the listing.
    """
    logger.info(
        f"POST /api: searchParam={body.search_param!r}, pageNumber={body.page_number}, "
        f"status={body.status}, date={body.date}, contactNumber={body.contact_number}"
    )

    page = list_tickets(
        stores,
        search_param=body.search_param,
        page_number=body.page_number,
        status=body.status,
        date=body.date,
        contact_number=body.contact_number,
    )

    record_message_query("tickets")
    log_query_data(request, mode="tickets", count=page.count)

    return TicketListResponse(
        tickets=[TicketResponse.model_validate(ticket) for ticket in page.tickets],
        count=page.count,
        has_more=page.has_more,
    )


# =============================================================================
# Search Routes
# =============================================================================

@app.post(
    "/api/v2",
    response_model=MessageSearchResponse,
    dependencies=[Depends(require_api_token)],
    responses=ERROR_RESPONSES,
)
def post_message_search(
    request: Request,
    body: MessageSearchRequest,
    stores: Stores = Depends(get_stores),
) -> MessageSearchResponse:
    """
    Search all messages by text, date and contact number.

    All filters are optional. At most 200 messages are returned, oldest
    first; count is the total number of matches.
    """
    logger.info(
        f"POST /api/v2: searchParam={body.search_param!r}, date={body.date}, "
        f"contactNumber={body.contact_number}"
    )

    result = search_messages(
        stores,
        search_param=body.search_param,
        date=body.date,
        contact_number=body.contact_number,
    )

    record_message_query("search")
    log_query_data(request, mode="search", count=result.count)

    return MessageSearchResponse(
        messages=[MessageResponse.model_validate(msg) for msg in result.messages],
        count=result.count,
    )


@app.post(
    "/api/v3",
    response_model=DailyContactMessagesResponse,
    dependencies=[Depends(require_api_token)],
    responses=ERROR_RESPONSES,
)
def post_daily_contact_messages(
    request: Request,
    body: MessageSearchRequest,
    stores: Stores = Depends(get_stores),
) -> DailyContactMessagesResponse:
    """
    Matching messages per contact for the contacts active on a day.

    searchParam and date are required; contactNumber is accepted but does
    not restrict the result. Contacts without matches are omitted.
    """
    logger.info(f"POST /api/v3: searchParam={body.search_param!r}, date={body.date}")

    groups = aggregate_daily_contact_messages(
        stores,
        search_param=body.search_param,
        date=body.date,
        contact_number=body.contact_number,
    )

    record_message_query("daily_contacts", groups=len(groups))
    log_query_data(
        request,
        mode="daily_contacts",
        count=sum(group.count for group in groups),
        groups=len(groups),
    )

    return DailyContactMessagesResponse(
        messages=[
            ContactMessagesGroupResponse(
                contact_number=group.contact_number,
                messages=[MessageResponse.model_validate(msg) for msg in group.messages],
                count=group.count,
            )
            for group in groups
        ]
    )


# =============================================================================
# Metrics Route
# =============================================================================

@app.get("/metrics")
async def metrics() -> Response:
    """
    Expose Prometheus-style metrics.
    """
    return Response(
        content=get_metrics(),
        media_type=get_metrics_content_type()
    )
