"""
Page window arithmetic for paginated ticket and message listings.
"""

from typing import NamedTuple, Union

from ticketdesk.errors import ValidationError

# Largest value a bound parameter may take in SQLite and PostgreSQL BIGINT
SQL_INTEGER_MAX = 2**63 - 1


class PageWindow(NamedTuple):
    offset: int
    limit: int


def coerce_page_number(value: Union[int, str, None]) -> int:
    """
    Coerce a 1-indexed page number, defaulting to 1.

    Raises:
        ValidationError: If the value is not a positive integer.
    """
    if value is None or value == "":
        return 1
    if isinstance(value, bool):
        raise ValidationError("ERR_INVALID_PAGE_NUMBER")
    try:
        page_number = int(str(value).strip())
    except ValueError:
        raise ValidationError("ERR_INVALID_PAGE_NUMBER")
    if page_number < 1:
        raise ValidationError("ERR_INVALID_PAGE_NUMBER")
    return page_number


def page_window(page_number: int, page_size: int) -> PageWindow:
    """
    Offset and limit for a 1-indexed page.

    Raises:
        ValidationError: If the offset does not fit a signed 64-bit SQL integer.
    """
    offset = page_size * (page_number - 1)
    if offset > SQL_INTEGER_MAX:
        raise ValidationError("ERR_INVALID_PAGE_NUMBER")
    return PageWindow(offset=offset, limit=page_size)



def has_more(total: int, offset: int, returned: int) -> bool:
    """
    Whether rows exist beyond the returned page.

    Uses the length of the page actually returned, not the nominal limit,
    so a final partial page reports False.
    """
    return total > offset + returned
