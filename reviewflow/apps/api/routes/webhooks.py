from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse, PlainTextResponse
from sqlalchemy.ext.asyncio import AsyncSession

from reviewflow.apps.api.deps import get_db
from reviewflow.core.config import get_settings
from reviewflow.core.errors import ConfigError, WebhookSignatureError
from reviewflow.services.billing.webhook import StripeWebhookConsumer, verify_stripe_event
from reviewflow.services.plans import PlanCatalog, load_plan_catalog
from reviewflow.services.telemetry import increment_counter


logger = logging.getLogger(__name__)

router = APIRouter(prefix="/webhooks", tags=["webhooks"])


def _plan_catalog(request: Request) -> PlanCatalog:
    catalog = getattr(request.app.state, "plan_catalog", None)
    if catalog is None:
        catalog = load_plan_catalog(get_settings())
        request.app.state.plan_catalog = catalog
    return catalog


@router.post("/stripe")
async def stripe_webhook(request: Request, db: AsyncSession = Depends(get_db)):
    settings = get_settings()
    # The signature covers the exact bytes Stripe sent; read them before anything parses the body.
    payload = await request.body()
    try:
        event = verify_stripe_event(
            payload,
            request.headers.get("Stripe-Signature"),
            settings.stripe_webhook_secret,
            tolerance_s=settings.stripe_webhook_tolerance_s,
        )
    except WebhookSignatureError as exc:
        increment_counter("stripe_events_rejected_total")
        logger.warning("stripe_webhook_rejected reason=%s", exc)
        return PlainTextResponse(f"Webhook Error: {exc}", status_code=400)

    consumer = StripeWebhookConsumer(_plan_catalog(request))
    try:
        result = await consumer.apply(db, event)
    except ConfigError:
        raise
    except Exception:  # noqa: BLE001 - Stripe retries on 5xx, so every failure maps to one response
        logger.exception("stripe_webhook_failed event_id=%s type=%s", event.get("id"), event.get("type"))
        return JSONResponse(content={"error": "Webhook handler failed"}, status_code=500)

    logger.info(
        "stripe_webhook_applied event_id=%s type=%s action=%s organization_id=%s",
        event.get("id"),
        result.event_type,
        result.action,
        result.organization_id,
    )
    return {"received": True}
