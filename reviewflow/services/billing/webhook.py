from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
import json
import logging
from typing import Any

import stripe
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from reviewflow.core.errors import StoreError, WebhookSignatureError, require_settings
from reviewflow.domain.models import Organization
from reviewflow.persistence.repos import organizations as organizations_repo
from reviewflow.services.plans import PlanCatalog, PlanTier, classify_plan
from reviewflow.services.telemetry import increment_counter


logger = logging.getLogger(__name__)

ACTION_PLAN_UPDATED = "plan_updated"
ACTION_PLAN_CANCELLED = "plan_cancelled"
ACTION_INVOICE_RECORDED = "invoice_recorded"
ACTION_UNRESOLVED = "unresolved"
ACTION_IGNORED = "ignored"


@dataclass(frozen=True)
class WebhookResult:
    event_type: str
    action: str
    organization_id: str | None = None


def verify_stripe_event(
    payload: bytes,
    signature: str | None,
    secret: str | None,
    *,
    tolerance_s: int = 300,
) -> dict[str, Any]:
    """Authenticate a raw Stripe payload and only then decode it.

    Nothing in the body is trusted or parsed until the signature checks out.
    """
    require_settings(stripe_webhook_secret=secret)
    if not signature:
        raise WebhookSignatureError("Missing Stripe-Signature header")
    try:
        body = payload.decode("utf-8")
    except UnicodeDecodeError as exc:
        raise WebhookSignatureError("Payload is not valid UTF-8") from exc
    try:
        stripe.WebhookSignature.verify_header(body, signature, secret, tolerance_s)
    except stripe.SignatureVerificationError as exc:
        raise WebhookSignatureError(str(exc) or "Invalid signature") from exc

    try:
        event = json.loads(body)
    except json.JSONDecodeError as exc:
        raise WebhookSignatureError("Payload is not valid JSON") from exc
    if not isinstance(event, dict) or not isinstance(event.get("type"), str):
        raise WebhookSignatureError("Payload is not a Stripe event")
    return event


def _event_object(event: dict[str, Any]) -> dict[str, Any]:
    data = event.get("data") or {}
    obj = data.get("object") if isinstance(data, dict) else None
    return obj if isinstance(obj, dict) else {}


def _epoch_to_datetime(value: Any) -> datetime | None:
    if value is None:
        return None
    try:
        return datetime.fromtimestamp(int(value), tz=timezone.utc)
    except (TypeError, ValueError, OverflowError):
        return None


def _checkout_email(obj: dict[str, Any]) -> str | None:
    details = obj.get("customer_details") or {}
    email = details.get("email") if isinstance(details, dict) else None
    return email or obj.get("customer_email") or None


class StripeWebhookConsumer:
    """Applies verified Stripe events to tenant subscription state.

    Every handler converges on the same state when an event is delivered
    twice, so retries from Stripe are safe.
    """

    def __init__(self, catalog: PlanCatalog) -> None:
        self._catalog = catalog

    async def _resolve_checkout_organization(
        self, session: AsyncSession, obj: dict[str, Any]
    ) -> Organization | None:
        reference = obj.get("client_reference_id")
        if reference:
            # The checkout link carries the purchasing user's id; an org id is accepted too.
            user = await organizations_repo.get_user(session, str(reference))
            if user is not None:
                return await organizations_repo.get_organization(session, user.organization_id)
            organization = await organizations_repo.get_organization(session, str(reference))
            if organization is not None:
                return organization

        email = _checkout_email(obj)
        if email:
            user = await organizations_repo.find_user_by_email(session, email)
            if user is not None:
                logger.info("stripe_checkout_resolved_by_email user_id=%s", user.id)
                return await organizations_repo.get_organization(session, user.organization_id)
        return None

    async def _on_checkout_completed(self, session: AsyncSession, event_type: str, obj: dict[str, Any]) -> WebhookResult:
        organization = await self._resolve_checkout_organization(session, obj)
        if organization is None:
            logger.warning(
                "stripe_checkout_unresolved session_id=%s client_reference_id=%s",
                obj.get("id"),
                obj.get("client_reference_id"),
            )
            return WebhookResult(event_type, ACTION_UNRESOLVED)

        tier = classify_plan(obj.get("amount_total"), self._catalog.thresholds)
        organization.subscription_plan = tier.value

        customer_id = obj.get("customer")
        if customer_id:
            if organization.stripe_customer_id is None:
                organization.stripe_customer_id = str(customer_id)
            elif organization.stripe_customer_id != customer_id:
                logger.warning(
                    "stripe_customer_mismatch organization_id=%s stored=%s incoming=%s",
                    organization.id,
                    organization.stripe_customer_id,
                    customer_id,
                )
        logger.info(
            "stripe_plan_updated organization_id=%s plan=%s amount_total=%s",
            organization.id,
            tier.value,
            obj.get("amount_total"),
        )
        return WebhookResult(event_type, ACTION_PLAN_UPDATED, organization.id)

    async def _on_subscription_deleted(self, session: AsyncSession, event_type: str, obj: dict[str, Any]) -> WebhookResult:
        customer_id = obj.get("customer")
        organization = (
            await organizations_repo.get_organization_by_customer(session, str(customer_id))
            if customer_id
            else None
        )
        if organization is None:
            logger.warning("stripe_subscription_unresolved customer_id=%s", customer_id)
            return WebhookResult(event_type, ACTION_UNRESOLVED)

        # Downgrade from any tier; the customer id stays for future checkouts.
        organization.subscription_plan = PlanTier.FREE.value
        logger.info("stripe_plan_cancelled organization_id=%s", organization.id)
        return WebhookResult(event_type, ACTION_PLAN_CANCELLED, organization.id)

    async def _on_invoice_paid(self, session: AsyncSession, event_type: str, obj: dict[str, Any]) -> WebhookResult:
        customer_id = obj.get("customer")
        organization = (
            await organizations_repo.get_organization_by_customer(session, str(customer_id))
            if customer_id
            else None
        )
        invoice_id = obj.get("id")
        if organization is None or not invoice_id:
            logger.warning(
                "stripe_invoice_unresolved invoice_id=%s customer_id=%s", invoice_id, customer_id
            )
            return WebhookResult(event_type, ACTION_UNRESOLVED)

        await organizations_repo.upsert_invoice(
            session,
            organization_id=organization.id,
            stripe_invoice_id=str(invoice_id),
            amount=int(obj.get("amount_paid") or obj.get("total") or 0),
            currency=obj.get("currency"),
            status=obj.get("status"),
            number=obj.get("number"),
            pdf_url=obj.get("invoice_pdf") or obj.get("hosted_invoice_url"),
            issued_at=_epoch_to_datetime(obj.get("created")),
        )
        return WebhookResult(event_type, ACTION_INVOICE_RECORDED, organization.id)

    async def apply(self, session: AsyncSession, event: dict[str, Any]) -> WebhookResult:
        event_type = str(event.get("type") or "")
        obj = _event_object(event)
        handlers = {
            "checkout.session.completed": self._on_checkout_completed,
            "customer.subscription.deleted": self._on_subscription_deleted,
            "invoice.paid": self._on_invoice_paid,
            "invoice.payment_succeeded": self._on_invoice_paid,
        }
        handler = handlers.get(event_type)
        if handler is None:
            logger.info("stripe_event_ignored event_id=%s type=%s", event.get("id"), event_type)
            return WebhookResult(event_type, ACTION_IGNORED)

        try:
            result = await handler(session, event_type, obj)
            await session.commit()
        except SQLAlchemyError as exc:
            await session.rollback()
            raise StoreError(f"Failed to apply Stripe event {event.get('id')}") from exc
        increment_counter(f"stripe_events_{result.action}_total")
        return result
