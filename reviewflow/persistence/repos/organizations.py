from __future__ import annotations

from datetime import datetime
from typing import Any
from uuid import uuid4

from sqlalchemy import func, select
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import AsyncSession

from reviewflow.domain.models import BillingInvoice, Organization, User
from reviewflow.persistence.db import dialect_name


async def get_organization(session: AsyncSession, organization_id: str) -> Organization | None:
    result = await session.execute(select(Organization).where(Organization.id == organization_id))
    return result.scalar_one_or_none()


async def get_organization_by_customer(
    session: AsyncSession, stripe_customer_id: str
) -> Organization | None:
    result = await session.execute(
        select(Organization).where(Organization.stripe_customer_id == stripe_customer_id)
    )
    return result.scalar_one_or_none()


async def get_user(session: AsyncSession, user_id: str) -> User | None:
    result = await session.execute(select(User).where(User.id == user_id))
    return result.scalar_one_or_none()


async def find_user_by_email(session: AsyncSession, email: str) -> User | None:
    # Case-insensitive; oldest account wins when an address is shared.
    result = await session.execute(
        select(User)
        .where(func.lower(User.email) == email.strip().lower())
        .order_by(User.created_at, User.id)
        .limit(1)
    )
    return result.scalar_one_or_none()


async def upsert_invoice(
    session: AsyncSession,
    *,
    organization_id: str,
    stripe_invoice_id: str,
    amount: int,
    currency: str | None,
    status: str | None,
    number: str | None,
    pdf_url: str | None,
    issued_at: datetime | None,
) -> None:
    values: dict[str, Any] = {
        "organization_id": organization_id,
        "stripe_invoice_id": stripe_invoice_id,
        "amount": amount,
        "currency": currency,
        "status": status,
        "number": number,
        "pdf_url": pdf_url,
        "issued_at": issued_at,
    }
    dialect = dialect_name(session)
    if dialect in {"postgresql", "sqlite"}:
        insert = postgresql.insert if dialect == "postgresql" else sqlite.insert
        stmt = insert(BillingInvoice).values(id=uuid4().hex, **values)
        stmt = stmt.on_conflict_do_update(
            index_elements=[BillingInvoice.stripe_invoice_id],
            set_={key: value for key, value in values.items() if key != "stripe_invoice_id"},
        )
        await session.execute(stmt)
        return

    result = await session.execute(
        select(BillingInvoice).where(BillingInvoice.stripe_invoice_id == stripe_invoice_id)
    )
    existing = result.scalar_one_or_none()
    if existing is None:
        session.add(BillingInvoice(id=uuid4().hex, **values))
        return
    for key, value in values.items():
        setattr(existing, key, value)
