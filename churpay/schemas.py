from datetime import datetime
from decimal import Decimal
from typing import Optional, List

from pydantic import BaseModel, ConfigDict, Field


class InitiateIn(BaseModel):
    amount: Optional[str] = Field(default=None, description="Amount as string e.g. '50.00'")
    email: Optional[str] = None
    name: Optional[str] = None


class InitiateOut(BaseModel):
    redirect: str
    merchant_reference: str
    amount: str


class PaymentOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    merchant_reference: str
    gateway_payment_id: Optional[str] = None
    amount: Decimal
    status: str
    payer_email: Optional[str] = None
    payer_name: Optional[str] = None
    note: Optional[str] = None
    tags: List[str] = []
    created_at: datetime
    updated_at: datetime


class IpnEventOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    gateway_payment_id: Optional[str] = None
    merchant_reference: Optional[str] = None
    raw: dict
    created_at: datetime


class GatesOut(BaseModel):
    signature: Optional[bool] = None
    identity: Optional[bool] = None
    remote: Optional[bool] = None
    amount: Optional[bool] = None
    passed: bool


class RevalidateIn(BaseModel):
    reference: str


class RevalidateOut(BaseModel):
    reference: str
    ipn_event_id: Optional[int] = None
    gates: GatesOut
    status: str
    expected_amount: Optional[Decimal] = None
    claimed_amount: Optional[Decimal] = None
    payment: Optional[PaymentOut] = None


class BackfillIn(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    ipn_id: int = Field(alias="ipnId")


class BackfillOut(BaseModel):
    created: bool
    payment: PaymentOut
