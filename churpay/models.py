from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Optional, List

from sqlalchemy import Column, JSON
from sqlmodel import SQLModel, Field


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class PaymentStatus(str, Enum):
    INITIATED = "INITIATED"
    PAID = "PAID"
    PENDING = "PENDING"
    FAILED = "FAILED"
    INVALID = "INVALID"
    UNKNOWN = "UNKNOWN"


class Payment(SQLModel, table=True):
    __tablename__ = "payments"

    id: Optional[int] = Field(default=None, primary_key=True)
    merchant_reference: str = Field(unique=True, index=True)  # m_payment_id, never changes
    gateway_payment_id: Optional[str] = Field(default=None, unique=True, index=True)  # pf_payment_id
    amount: Decimal = Field(default=Decimal("0.00"), max_digits=12, decimal_places=2)
    status: str = Field(default=PaymentStatus.INITIATED.value, index=True)
    payer_email: Optional[str] = None
    payer_name: Optional[str] = None
    # operator metadata, never touched by reconciliation
    note: Optional[str] = None
    tags: List[str] = Field(default_factory=list, sa_column=Column(JSON, nullable=False, default=list))
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class PaymentIntent(SQLModel, table=True):
    """Amount we expect for a reference, written only at checkout. Several per reference are allowed."""

    __tablename__ = "payment_intents"

    id: Optional[int] = Field(default=None, primary_key=True)
    merchant_reference: str = Field(index=True)
    amount: Decimal = Field(max_digits=12, decimal_places=2)
    created_at: datetime = Field(default_factory=utcnow)


class IpnEvent(SQLModel, table=True):
    """Append-only copy of every notification the gateway sent us."""

    __tablename__ = "ipn_events"

    id: Optional[int] = Field(default=None, primary_key=True)
    gateway_payment_id: Optional[str] = Field(default=None, index=True)
    merchant_reference: Optional[str] = Field(default=None, index=True)
    raw: dict = Field(default_factory=dict, sa_column=Column(JSON, nullable=False))
    created_at: datetime = Field(default_factory=utcnow)
