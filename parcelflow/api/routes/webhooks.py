"""Webhook endpoints for incoming orders.

One generic endpoint detects the platform from headers and payload
shape (or takes ``?source=``); one endpoint per platform skips
detection.  Re-delivered webhooks answer 200 with the original order id
instead of 201.
"""

from __future__ import annotations

from typing import Any, Optional

from fastapi import APIRouter, Depends, Query, Request, Response, status

from parcelflow.api.deps import Services, get_services
from parcelflow.core.exceptions import ValidationError
from parcelflow.core.logging import get_logger
from parcelflow.schemas.order import IngestResponse

logger = get_logger(__name__)

router = APIRouter()

# Path names that differ from the source tag they stand for
SOURCE_ALIASES = {"overflow": "overflow_in"}


async def _read_payload(request: Request) -> Any:
    try:
        return await request.json()
    except ValueError as exc:
        raise ValidationError(f"Request body is not valid JSON: {exc}") from None


def _ingest(
    services: Services,
    source: Optional[str],
    payload: Any,
    request: Request,
    response: Response,
) -> IngestResponse:
    result = services.ingestion.ingest(source, payload, dict(request.headers))
    response.status_code = (
        status.HTTP_201_CREATED if result.created else status.HTTP_200_OK
    )
    return result.to_response()


@router.post("/orders", response_model=IngestResponse)
async def receive_order(
    request: Request,
    response: Response,
    source: Optional[str] = Query(
        None,
        description="gomag, shopify, woocommerce, innoship or overflow_in; "
        "detected from headers and payload when omitted",
    ),
    services: Services = Depends(get_services),
) -> IngestResponse:
    """Universal order webhook."""
    payload = await _read_payload(request)
    logger.info("Webhook received: source=%s", source or "auto")
    return _ingest(services, source, payload, request, response)


@router.post("/{source}", response_model=IngestResponse)
async def receive_platform_order(
    source: str,
    request: Request,
    response: Response,
    services: Services = Depends(get_services),
) -> IngestResponse:
    """Platform-specific webhook, e.g. ``/webhooks/shopify``."""
    payload = await _read_payload(request)
    tag = SOURCE_ALIASES.get(source.lower(), source)
    logger.info("Webhook received: source=%s", tag)
    return _ingest(services, tag, payload, request, response)
