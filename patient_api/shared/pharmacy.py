"""Shared helpers for the pharmacy and telehealth adapters"""

import logging
import math
from typing import Optional

import httpx
from fastapi import HTTPException

logger = logging.getLogger(__name__)


class PharmacyAPIError(Exception):
    """A failed call to a third-party pharmacy API"""

    def __init__(self, message: str, status_code: Optional[int] = None, body: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.body = body


def raise_for_pharmacy_response(response: httpx.Response, provider: str) -> None:
    """Raise PharmacyAPIError for a non-2xx response, keeping the status in the message"""
    if response.is_success:
        return
    body = response.text
    logger.error(f"❌ {provider} API error {response.status_code}")
    raise PharmacyAPIError(
        f"{provider} API error {response.status_code}: {body[:500]}",
        status_code=response.status_code,
        body=body,
    )


def network_error(exc: httpx.RequestError, provider: str) -> PharmacyAPIError:
    """Wrap a transport failure; the message keeps 'network' so it is treated as retryable"""
    kind = "timeout" if isinstance(exc, httpx.TimeoutException) else "network error"
    logger.error(f"❌ {provider} {kind}: {type(exc).__name__}")
    return PharmacyAPIError(f"{provider} {kind}: {exc}", status_code=None)


def to_http_exception(exc: PharmacyAPIError, detail: str) -> HTTPException:
    """
    Map an adapter failure to the response the API returns.

    Remote 4xx answers the caller can act on pass through; everything else,
    including remote auth failures, becomes 502.
    """
    status = exc.status_code
    if status and 400 <= status < 500 and status not in (401, 403):
        return HTTPException(status_code=status, detail=f"{detail}: {exc.message}")
    return HTTPException(status_code=502, detail=f"{detail}: {exc.message}")


def paginate(total: int, page: int, per_page: int) -> dict:
    return {
        "page": page,
        "per_page": per_page,
        "total": total,
        "total_pages": math.ceil(total / per_page) if per_page else 0,
    }
