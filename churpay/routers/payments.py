from typing import List, Optional

from fastapi import APIRouter, Depends, Query
from sqlmodel import select

from ..db import async_session
from ..errors import NotFound
from ..models import IpnEvent, Payment
from ..schemas import IpnEventOut, PaymentOut
from ..utils import require_service_api_key

router = APIRouter(prefix="/api", tags=["payments"], dependencies=[Depends(require_service_api_key)])


@router.get("/payments", response_model=List[PaymentOut])
async def list_payments(limit: int = Query(default=100, ge=1, le=1000)):
    async with async_session() as session:
        q = select(Payment).order_by(Payment.created_at.desc(), Payment.id.desc()).limit(limit)
        res = await session.exec(q)
        return res.all()


@router.get("/payments/ref/{ref}", response_model=PaymentOut)
async def payment_by_reference(ref: str):
    async with async_session() as session:
        res = await session.exec(select(Payment).where(Payment.merchant_reference == ref))
        found = res.one_or_none()
    if found is None:
        raise NotFound(f"no payment for reference {ref}")
    return found


@router.get("/ipn-events", response_model=List[IpnEventOut])
async def list_ipn_events(ref: Optional[str] = None, limit: int = Query(default=100, ge=1, le=1000)):
    """Newest first; ``ref`` filters by m_payment_id."""
    async with async_session() as session:
        q = select(IpnEvent)
        if ref and ref.strip():
            q = q.where(IpnEvent.merchant_reference == ref.strip())
        q = q.order_by(IpnEvent.created_at.desc(), IpnEvent.id.desc()).limit(limit)
        res = await session.exec(q)
        return res.all()
