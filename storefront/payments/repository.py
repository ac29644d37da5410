from typing import Any, Dict, List, Optional
from sqlalchemy import insert, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from storefront.common.utils import now
from storefront.payments.constants import PROVIDER
from storefront.schema.full_schema import PaymentWebhookEvent, WebhookOutcome


class WebhookEventStore:
    """Append-only log of authenticated gateway deliveries, kept for manual reconciliation."""

    def __init__(self, session_maker: async_sessionmaker[AsyncSession]):
        self.session_maker = session_maker

    async def record(self, event: Optional[str], reference: Optional[str], payload: Optional[dict],
                     outcome: str = WebhookOutcome.PROCESSED.value, last_error: Optional[str] = None,
                     provider: str = PROVIDER) -> int:

        stmt = insert(PaymentWebhookEvent).values(
            provider=provider,
            event=event,
            reference=reference,
            payload=payload,
            outcome=outcome,
            last_error=last_error,
            created_at=now(),
        )
        async with self.session_maker() as session:
            res = await session.execute(stmt)
            await session.commit()
            return int(res.inserted_primary_key[0])

    async def list_for_reference(self, reference: str) -> List[PaymentWebhookEvent]:
        stmt = (
            select(PaymentWebhookEvent)
            .where(PaymentWebhookEvent.reference == reference)
            .order_by(PaymentWebhookEvent.id)
        )
        async with self.session_maker() as session:
            res = await session.execute(stmt)
            return list(res.scalars().all())
