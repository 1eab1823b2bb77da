"""Standardized API response helpers.

List endpoints return a consistent envelope:
    {"items": [...], "total": <int>}

Paginated endpoints use ``PaginatedResponse`` from tabsettle.schemas.pagination.

Conflicts returned by the order services are rendered by
``conflict_response()`` as 409 with the conflict kind as ``code`` and its
context merged into the body.
"""

import logging
from typing import Optional

from fastapi import status
from fastapi.responses import JSONResponse

from tabsettle.core.errors import Conflict, TabSettleError
from tabsettle.core.metrics import metrics

logger = logging.getLogger(__name__)


def list_response(
    items: list,
    total: Optional[int] = None,
) -> dict:
    """Wrap a list in the standard envelope.

    Args:
        items: The list of serialized items.
        total: Total count (defaults to len(items) when the full list is returned).

    Returns:
        {"items": items, "total": total}
    """
    return {
        "items": items,
        "total": total if total is not None else len(items),
    }


def conflict_response(conflict: Conflict) -> JSONResponse:
    metrics.record_conflict(conflict.kind.value)
    return JSONResponse(status_code=status.HTTP_409_CONFLICT, content=conflict.to_detail())


def error_response(exc: TabSettleError) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content=exc.to_detail())
