from __future__ import annotations

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy import func, select

from reviewflow.apps.api.main import create_app
from reviewflow.core.config import get_settings
from reviewflow.domain.models import BillingInvoice
from reviewflow.persistence.db import SessionLocal
from reviewflow.persistence.repos import organizations as organizations_repo
from reviewflow.services.billing.webhook import StripeWebhookConsumer
from reviewflow.services.plans import PlanCatalog, PlanThresholds, load_plan_catalog
from reviewflow.tests.utils.seed import create_organization, load_organization
from reviewflow.tests.utils.stripe_events import build_event, encode_event, sign_payload


def _consumer() -> StripeWebhookConsumer:
    return StripeWebhookConsumer(load_plan_catalog(get_settings()))


async def _apply(event: dict):
    async with SessionLocal() as session:
        return await _consumer().apply(session, event)


async def _post(payload: bytes, signature: str | None):
    app = create_app()
    headers = {"Content-Type": "application/json"}
    if signature is not None:
        headers["Stripe-Signature"] = signature
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        return await client.post("/webhooks/stripe", content=payload, headers=headers)


def _checkout(client_reference_id: str | None, amount_total: int, customer: str = "cus_123", **extra) -> dict:
    obj = {
        "id": "cs_test_1",
        "object": "checkout.session",
        "client_reference_id": client_reference_id,
        "amount_total": amount_total,
        "customer": customer,
    }
    obj.update(extra)
    return build_event("checkout.session.completed", obj)


@pytest.mark.asyncio
async def test_checkout_sets_plan_and_customer_idempotently() -> None:
    organization_id, user_id = await create_organization()
    event = _checkout(user_id, 7000)

    first = await _apply(event)
    second = await _apply(event)

    assert first.action == second.action == "plan_updated"
    organization = await load_organization(organization_id)
    assert organization.subscription_plan == "pro"
    assert organization.stripe_customer_id == "cus_123"


@pytest.mark.asyncio
async def test_checkout_at_or_below_threshold_buys_starter() -> None:
    organization_id, user_id = await create_organization()

    await _apply(_checkout(user_id, 2900))

    assert (await load_organization(organization_id)).subscription_plan == "starter"


@pytest.mark.asyncio
async def test_elite_threshold_applies_when_configured() -> None:
    organization_id, user_id = await create_organization()
    consumer = StripeWebhookConsumer(
        PlanCatalog(thresholds=PlanThresholds(pro_min_amount=5000, elite_min_amount=20000))
    )

    async with SessionLocal() as session:
        await consumer.apply(session, _checkout(user_id, 25000))

    assert (await load_organization(organization_id)).subscription_plan == "elite"


@pytest.mark.asyncio
async def test_existing_customer_id_is_sticky() -> None:
    organization_id, user_id = await create_organization(stripe_customer_id="cus_original")

    await _apply(_checkout(user_id, 7000, customer="cus_other"))

    organization = await load_organization(organization_id)
    assert organization.stripe_customer_id == "cus_original"
    assert organization.subscription_plan == "pro"


@pytest.mark.asyncio
async def test_checkout_resolves_tenant_by_email_when_reference_missing() -> None:
    organization_id, _ = await create_organization(user_email="Owner@Bistro.test")

    result = await _apply(
        _checkout(None, 7000, customer_details={"email": "owner@bistro.test"})
    )

    assert result.organization_id == organization_id
    assert (await load_organization(organization_id)).subscription_plan == "pro"


@pytest.mark.asyncio
async def test_unresolvable_checkout_is_acknowledged_without_changes() -> None:
    organization_id, _ = await create_organization()

    result = await _apply(_checkout("user-missing", 7000, customer_email="nobody@example.test"))

    assert result.action == "unresolved"
    assert (await load_organization(organization_id)).subscription_plan == "free"


@pytest.mark.asyncio
@pytest.mark.parametrize("plan", ["starter", "pro", "elite"])
async def test_subscription_deleted_downgrades_any_tier(plan: str) -> None:
    organization_id, _ = await create_organization(plan=plan, stripe_customer_id="cus_cancel")
    event = build_event("customer.subscription.deleted", {"id": "sub_1", "customer": "cus_cancel"})

    await _apply(event)
    await _apply(event)

    organization = await load_organization(organization_id)
    assert organization.subscription_plan == "free"
    assert organization.stripe_customer_id == "cus_cancel"


@pytest.mark.asyncio
async def test_invoice_paid_is_recorded_once() -> None:
    organization_id, _ = await create_organization(plan="pro", stripe_customer_id="cus_inv")
    event = build_event(
        "invoice.paid",
        {
            "id": "in_1",
            "customer": "cus_inv",
            "amount_paid": 7900,
            "currency": "eur",
            "status": "paid",
            "number": "RF-0001",
            "invoice_pdf": "https://pay.stripe.com/invoice/in_1/pdf",
            "created": 1767268800,
        },
    )

    await _apply(event)
    await _apply(event)

    async with SessionLocal() as session:
        count = (await session.execute(select(func.count()).select_from(BillingInvoice))).scalar_one()
        invoice = (await session.execute(select(BillingInvoice))).scalar_one()
    assert count == 1
    assert invoice.organization_id == organization_id
    assert invoice.amount == 7900
    assert (await load_organization(organization_id)).subscription_plan == "pro"


@pytest.mark.asyncio
async def test_unknown_event_is_ignored() -> None:
    result = await _apply(build_event("customer.created", {"id": "cus_new"}))
    assert result.action == "ignored"


@pytest.mark.asyncio
async def test_webhook_endpoint_applies_signed_event() -> None:
    organization_id, user_id = await create_organization()
    payload = encode_event(_checkout(user_id, 7000))

    response = await _post(payload, sign_payload(payload))

    assert response.status_code == 200
    assert response.json() == {"received": True}
    assert (await load_organization(organization_id)).subscription_plan == "pro"


@pytest.mark.asyncio
async def test_webhook_endpoint_rejects_bad_signature_before_touching_state(monkeypatch) -> None:
    organization_id, user_id = await create_organization()
    reads = {"count": 0}
    original_get_user = organizations_repo.get_user

    async def counting_get_user(session, user_id):
        reads["count"] += 1
        return await original_get_user(session, user_id)

    monkeypatch.setattr(organizations_repo, "get_user", counting_get_user)
    payload = encode_event(_checkout(user_id, 7000))

    response = await _post(payload, "t=1,v1=forged")

    assert response.status_code == 400
    assert response.text.startswith("Webhook Error:")
    assert reads["count"] == 0
    assert (await load_organization(organization_id)).subscription_plan == "free"


@pytest.mark.asyncio
async def test_webhook_endpoint_without_secret_reports_missing_config(monkeypatch) -> None:
    monkeypatch.setenv("STRIPE_WEBHOOK_SECRET", "")
    get_settings.cache_clear()
    payload = encode_event(build_event("invoice.paid", {"id": "in_1"}))

    response = await _post(payload, sign_payload(payload))

    assert response.status_code == 500
    assert response.json()["missing"] == {"stripe_webhook_secret": True}
