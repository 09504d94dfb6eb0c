"""Skip/limit pagination over a session."""

import logging
from typing import Any, Callable, Optional, Protocol

logger = logging.getLogger(__name__)

RowCallback = Callable[[dict[str, Any]], None]


class RowStreamSession(Protocol):
    async def stream(
        self,
        query: str,
        parameters: Optional[dict[str, Any]],
        on_row: RowCallback,
    ) -> int: ...


async def paginate(
    session: RowStreamSession,
    query: str,
    page_size: int,
    on_row: Optional[RowCallback] = None,
    parameters: Optional[dict[str, Any]] = None,
) -> int:
    """Run ``query`` page by page until a page comes back empty.

    Each page is executed with ``skip = page_index * page_size`` and
    ``limit = page_size``. Rows are handed to ``on_row`` in order before the
    next page is requested. Statement errors propagate; there is no retry.

    Args:
        session: Session exposing ``stream(query, parameters, on_row)``.
        query: Statement using ``$limit`` and optionally ``$skip``.
        page_size: Rows per page, at least 1.
        on_row: Called synchronously for every row.
        parameters: Extra statement parameters.

    Returns:
        Total number of rows visited.
    """
    if page_size < 1:
        raise ValueError(f"page_size must be >= 1, got {page_size}")

    callback = on_row or _ignore_row
    skip = 0
    total = 0
    pages = 0
    while True:
        page_parameters = dict(parameters or {})
        page_parameters["skip"] = skip
        page_parameters["limit"] = page_size
        rows = await session.stream(query, page_parameters, callback)
        if rows == 0:
            break
        pages += 1
        total += rows
        skip += page_size
        logger.debug("Page %d: %d rows (total %d)", pages, rows, total)
    return total


def _ignore_row(row: dict[str, Any]) -> None:
    return None
