"""ParcelFlow Courier Order Engine - Main Application."""

import logging.config
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from parcelflow.api.deps import Services, build_services
from parcelflow.api.routes import finance, orders, webhooks
from parcelflow.core.config import Settings, settings
from parcelflow.core.exceptions import ParcelFlowError
from parcelflow.core.logging import setup_logging
from parcelflow.core.logging_config import LOGGING_CONFIG
from parcelflow.services.notifications.port import BackgroundNotifier

# Configure logging before anything else
logging.config.dictConfig(LOGGING_CONFIG)
logger = setup_logging(settings.log_level)

# -- OpenAPI tag metadata for Swagger grouping --
tags_metadata = [
    {
        "name": "Health",
        "description": "Service health and readiness checks.",
    },
    {
        "name": "Webhooks",
        "description": (
            "Receive orders from Gomag, Shopify, WooCommerce, Innoship and "
            "partner-carrier overflow. Payloads are normalized into one "
            "canonical order; re-delivered webhooks return the original order."
        ),
    },
    {
        "name": "Orders",
        "description": (
            "Query orders and drive them through the delivery lifecycle: "
            "driver assignment (issues the delivery OTP), out for delivery, "
            "OTP-confirmed delivery and cancellation."
        ),
    },
    {
        "name": "Finance",
        "description": (
            "Cash-on-delivery custody: mark cash collected, submit driver "
            "settlements, verify and transfer them, and reconcile daily totals."
        ),
    },
]


def create_app(config: Settings = settings, services: Optional[Services] = None) -> FastAPI:
    """Build the API around ``services`` (wired from ``config`` if omitted)."""
    services = services or build_services(config)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        yield
        if isinstance(services.notifier, BackgroundNotifier):
            services.notifier.shutdown(wait=True)

    app = FastAPI(
        title="ParcelFlow Courier Order Engine",
        description=(
            "## Courier order ingestion, delivery lifecycle and COD settlement\n\n"
            "### Supported sources\n"
            "| Source | Webhook | Detected by |\n"
            "|--------|---------|-------------|\n"
            "| **Gomag** | `/api/v1/webhooks/gomag` | `X-Gomag-Webhook`, `customer` + `shipping_address` |\n"
            "| **Shopify** | `/api/v1/webhooks/shopify` | `X-Shopify-Topic`, `line_items` + `province_code` |\n"
            "| **WooCommerce** | `/api/v1/webhooks/woocommerce` | `X-WC-Webhook-Topic`, `billing` + `shipping` |\n"
            "| **Innoship** | `/api/v1/webhooks/innoship` | `X-Innoship-Signature`, `AddressTo` + `AddressFrom` |\n"
            "| **Overflow** | `/api/v1/webhooks/overflow` | `awb_number` + `carrier_id` |\n\n"
            "### Delivery lifecycle\n"
            "`pending -> assigned -> in_transit -> delivered`, cancellable until "
            "delivered. Delivery requires the OTP issued at assignment.\n\n"
            "### COD custody\n"
            "`pending -> collected -> submitted -> settled`, with settlements "
            "moving `submitted -> verified -> transferred`.\n"
        ),
        version="1.0.0",
        openapi_tags=tags_metadata,
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
    )
    app.state.services = services
    app.state.settings = config

    app.include_router(webhooks.router, prefix="/api/v1/webhooks", tags=["Webhooks"])
    app.include_router(orders.router, prefix="/api/v1/orders", tags=["Orders"])
    app.include_router(finance.router, prefix="/api/v1/finance", tags=["Finance"])

    @app.exception_handler(ParcelFlowError)
    async def parcelflow_error_handler(request: Request, exc: ParcelFlowError):
        if exc.status_code >= 500:
            logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
        else:
            logger.info(
                "%s %s rejected (%s): %s",
                request.method,
                request.url.path,
                exc.code,
                exc.message,
            )
        return JSONResponse(
            status_code=exc.status_code,
            content={"success": False, "error": exc.to_dict()},
        )

    @app.get("/health", tags=["Health"])
    def health_check():
        """Health check endpoint.

        Reports whether orders are going to the database or, after a
        storage failure, to the in-memory fallback.
        """
        return {
            "status": "healthy",
            "service": "parcelflow",
            "environment": config.app_env,
            "storage": services.storage_status(),
            "notifications": services.notification_status(),
        }

    logger.info("ParcelFlow API ready - routes registered")
    return app


app = create_app()
