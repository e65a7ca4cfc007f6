"""Pre-redirect bookkeeping: what amount we expect for each reference.

Expected amounts live only in ``payment_intents``. Notifications never write
there, so a notification cannot vouch for its own amount.
"""
import logging
from decimal import Decimal
from typing import Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import select

from ..db import insert_for
from ..models import Payment, PaymentIntent, PaymentStatus, utcnow
from .payfast import to_amount

logger = logging.getLogger(__name__)


class IntentStore:
    def __init__(self, session_factory):
        self.session_factory = session_factory

    async def create_intent(self, amount: Decimal, reference: str) -> Optional[PaymentIntent]:
        """Record an intent and its INITIATED payment. Best effort: returns None if the write fails."""
        try:
            async with self.session_factory() as session:
                intent = PaymentIntent(merchant_reference=reference, amount=amount)
                session.add(intent)

                now = utcnow()
                table = Payment.__table__
                stmt = insert_for(session, table).values(
                    merchant_reference=reference,
                    amount=amount,
                    status=PaymentStatus.INITIATED.value,
                    tags=[],
                    created_at=now,
                    updated_at=now,
                )
                # a retried checkout refreshes the amount until the gateway has reported
                stmt = stmt.on_conflict_do_update(
                    index_elements=[table.c.merchant_reference],
                    set_={"amount": stmt.excluded.amount, "updated_at": now},
                    where=table.c.status == PaymentStatus.INITIATED.value,
                )
                await session.exec(stmt)
                await session.commit()
                await session.refresh(intent)
                return intent
        except (SQLAlchemyError, OSError) as exc:
            # the payer is redirected anyway; reconciliation will see no expected amount
            logger.error("could not record payment intent reference=%s amount=%s: %r", reference, amount, exc)
            return None

    async def lookup_expected_amount(self, session, reference: str) -> Optional[Decimal]:
        """Amount of the most recent intent for ``reference``, or None."""
        if not reference:
            return None
        q = (
            select(PaymentIntent.amount)
            .where(PaymentIntent.merchant_reference == reference)
            .order_by(PaymentIntent.created_at.desc(), PaymentIntent.id.desc())
            .limit(1)
        )
        res = await session.exec(q)
        amount = res.first()
        if amount is None:
            return None
        return to_amount(amount)
