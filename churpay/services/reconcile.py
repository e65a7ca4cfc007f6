"""
IPN reconciliation.

Turns an untrusted PayFast notification into a Payment update. Every
notification is stored as an IpnEvent first, then four gates are checked:

1. signature: our MD5 over the posted fields matches theirs
2. identity: the posted merchant_id is ours
3. remote: PayFast's validate endpoint confirms it sent this
4. amount: the posted amount equals the amount recorded at initiation

Only when all four pass does the payment take the gateway's status; otherwise
it is marked INVALID so operators can see something arrived.
"""
import logging
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Dict, Mapping, Optional, Tuple

from sqlalchemy import case, func, or_
from sqlmodel import select

from ..config import PayFastConfig
from ..db import insert_for
from ..errors import BadInput, NotFound
from ..logging import gateway_id_ctx, reference_ctx
from ..models import IpnEvent, Payment, PaymentStatus, utcnow
from .intents import IntentStore
from .payfast import (
    EMAIL_FIELD,
    GATEWAY_ID_FIELD,
    IDENTITY_FIELD,
    REFERENCE_FIELD,
    STATUS_FIELD,
    RemoteValidator,
    claimed_amount,
)
from .receipts import ReceiptSender
from .signature import verify

logger = logging.getLogger(__name__)

GATEWAY_STATUS_MAP = {
    "COMPLETE": PaymentStatus.PAID,
    "PAID": PaymentStatus.PAID,
    "PENDING": PaymentStatus.PENDING,
    "FAILED": PaymentStatus.FAILED,
    "CANCELLED": PaymentStatus.FAILED,
}


def map_gateway_status(value: Any) -> PaymentStatus:
    return GATEWAY_STATUS_MAP.get(str(value or "").strip().upper(), PaymentStatus.UNKNOWN)


def _field(payload: Mapping[str, Any], name: str) -> Optional[str]:
    value = payload.get(name)
    if value is None:
        return None
    value = str(value).strip()
    return value or None


def payer_name(payload: Mapping[str, Any]) -> Optional[str]:
    parts = [_field(payload, "name_first"), _field(payload, "name_last")]
    name = " ".join(p for p in parts if p)
    return name or None


GATES = ("signature", "identity", "remote", "amount")


@dataclass
class GateResults:
    """Outcome of each gate; None means the gate was not evaluated."""

    signature: Optional[bool] = None
    identity: Optional[bool] = None
    remote: Optional[bool] = None
    amount: Optional[bool] = None

    @property
    def passed(self) -> bool:
        return all(g is True for g in (self.signature, self.identity, self.remote, self.amount))

    @property
    def failed(self) -> Tuple[str, ...]:
        return tuple(name for name in GATES if getattr(self, name) is False)

    @property
    def skipped(self) -> Tuple[str, ...]:
        return tuple(name for name in GATES if getattr(self, name) is None)

    def as_dict(self) -> Dict[str, Optional[bool]]:
        return {
            "signature": self.signature,
            "identity": self.identity,
            "remote": self.remote,
            "amount": self.amount,
        }


@dataclass
class ReconcileResult:
    reference: Optional[str]
    gates: GateResults
    status: PaymentStatus
    payment: Optional[Payment] = None
    event_id: Optional[int] = None
    expected_amount: Optional[Decimal] = None
    claimed_amount: Optional[Decimal] = None
    raw: Dict[str, Any] = field(default_factory=dict)

    @property
    def receipt_due(self) -> bool:
        return (
            self.status == PaymentStatus.PAID
            and self.payment is not None
            and bool(self.payment.payer_email)
        )


def _payment_values(reference: str, status: PaymentStatus, amount: Optional[Decimal],
                    payload: Mapping[str, Any], with_gateway_id: bool = True) -> Dict[str, Any]:
    now = utcnow()
    return dict(
        merchant_reference=reference,
        status=status.value,
        amount=amount if amount is not None else Decimal("0.00"),
        gateway_payment_id=_field(payload, GATEWAY_ID_FIELD) if with_gateway_id else None,
        payer_email=_field(payload, EMAIL_FIELD),
        payer_name=payer_name(payload),
        tags=[],
        created_at=now,
        updated_at=now,
    )


async def _get_payment(session, reference: str) -> Optional[Payment]:
    q = (
        select(Payment)
        .where(Payment.merchant_reference == reference)
        .execution_options(populate_existing=True)
    )
    res = await session.exec(q)
    return res.one_or_none()


async def _gateway_id_owner(session, gateway_payment_id: Optional[str]) -> Optional[str]:
    if gateway_payment_id is None:
        return None
    q = select(Payment.merchant_reference).where(Payment.gateway_payment_id == gateway_payment_id)
    res = await session.exec(q)
    return res.first()


async def upsert_payment(session, reference: str, status: PaymentStatus,
                         amount: Optional[Decimal], payload: Mapping[str, Any],
                         with_gateway_id: bool = True) -> Payment:
    """Insert or update the payment keyed by merchant reference.

    Status is last-write-wins. The amount is only written when the stored
    amount is missing or zero, so the amount recorded at initiation is never
    replaced by what a notification claims. Payer fields and the gateway id
    keep their stored value when the notification omits them, or when
    ``with_gateway_id`` is False.
    """
    table = Payment.__table__
    values = _payment_values(reference, status, amount, payload, with_gateway_id)
    stmt = insert_for(session, table).values(**values)
    excluded = stmt.excluded
    stmt = stmt.on_conflict_do_update(
        index_elements=[table.c.merchant_reference],
        set_={
            "status": excluded.status,
            "gateway_payment_id": func.coalesce(excluded.gateway_payment_id, table.c.gateway_payment_id),
            "payer_email": func.coalesce(excluded.payer_email, table.c.payer_email),
            "payer_name": func.coalesce(excluded.payer_name, table.c.payer_name),
            "amount": case(
                (or_(table.c.amount.is_(None), table.c.amount == 0), excluded.amount),
                else_=table.c.amount,
            ),
            "updated_at": values["updated_at"],
        },
    )
    await session.exec(stmt)
    await session.commit()
    return await _get_payment(session, reference)


async def insert_payment_if_absent(session, reference: str, status: PaymentStatus,
                                   amount: Optional[Decimal], payload: Mapping[str, Any]) -> Tuple[Payment, bool]:
    table = Payment.__table__
    stmt = insert_for(session, table).values(**_payment_values(reference, status, amount, payload))
    stmt = stmt.on_conflict_do_nothing(index_elements=[table.c.merchant_reference])
    res = await session.exec(stmt)
    await session.commit()
    return await _get_payment(session, reference), res.rowcount == 1


class ReconciliationEngine:
    def __init__(self, config: PayFastConfig, session_factory, validator: RemoteValidator,
                 intents: Optional[IntentStore] = None, receipts: Optional[ReceiptSender] = None):
        self.config = config
        self.session_factory = session_factory
        self.validator = validator
        self.intents = intents or IntentStore(session_factory)
        self.receipts = receipts

    async def log_event(self, payload: Mapping[str, Any]) -> IpnEvent:
        """Store the notification verbatim, whatever it contains."""
        async with self.session_factory() as session:
            event = IpnEvent(
                gateway_payment_id=_field(payload, GATEWAY_ID_FIELD),
                merchant_reference=_field(payload, REFERENCE_FIELD),
                raw=dict(payload),
            )
            session.add(event)
            await session.commit()
            await session.refresh(event)
            return event

    def check_identity(self, payload: Mapping[str, Any]) -> bool:
        claimed = str(payload.get(IDENTITY_FIELD) or "").strip()
        return bool(self.config.merchant_id) and claimed == self.config.merchant_id.strip()

    async def evaluate(self, session, payload: Mapping[str, Any]) -> Tuple[GateResults, Optional[Decimal], Optional[Decimal]]:
        gates = GateResults()
        gates.signature = verify(payload, self.config.signing_passphrase)
        gates.identity = self.check_identity(payload)
        # forged or foreign notifications are not worth a round trip to PayFast
        if gates.signature and gates.identity:
            gates.remote = await self.validator.validate(payload)

        expected = await self.intents.lookup_expected_amount(session, _field(payload, REFERENCE_FIELD))
        claimed = claimed_amount(payload)
        gates.amount = expected is not None and claimed is not None and claimed == expected

        logger.info(
            "ipn gates signature=%s identity=%s remote=%s amount=%s expected=%s claimed=%s",
            gates.signature, gates.identity, gates.remote, gates.amount, expected, claimed,
        )
        return gates, expected, claimed

    async def apply(self, session, payload: Mapping[str, Any], gates: GateResults,
                    claimed: Optional[Decimal]) -> Tuple[PaymentStatus, Optional[Payment]]:
        status = map_gateway_status(payload.get(STATUS_FIELD)) if gates.passed else PaymentStatus.INVALID
        reference = _field(payload, REFERENCE_FIELD)
        if reference is None:
            logger.warning("notification has no %s, payment not updated", REFERENCE_FIELD)
            return status, None
        with_gateway_id = True
        if not gates.passed:
            logger.warning(
                "notification rejected failed_gates=%s skipped_gates=%s",
                ",".join(gates.failed), ",".join(gates.skipped),
            )
            # a rejected notification may not take a gateway id another payment owns
            owner = await _gateway_id_owner(session, _field(payload, GATEWAY_ID_FIELD))
            with_gateway_id = owner is None or owner == reference
        payment = await upsert_payment(session, reference, status, claimed, payload, with_gateway_id)
        return status, payment

    async def _run(self, payload: Mapping[str, Any], event_id: Optional[int]) -> ReconcileResult:
        async with self.session_factory() as session:
            gates, expected, claimed = await self.evaluate(session, payload)
            status, payment = await self.apply(session, payload, gates, claimed)
        logger.info("payment reconciled status=%s", status.value)
        return ReconcileResult(
            reference=_field(payload, REFERENCE_FIELD),
            gates=gates,
            status=status,
            payment=payment,
            event_id=event_id,
            expected_amount=expected,
            claimed_amount=claimed,
            raw=dict(payload),
        )

    async def reconcile(self, payload: Mapping[str, Any]) -> ReconcileResult:
        """Log, check and apply one live notification. May raise; see routers/payfast.py."""
        event = await self.log_event(payload)
        return await self._run(payload, event.id)

    async def latest_event(self, reference: str) -> Optional[IpnEvent]:
        async with self.session_factory() as session:
            q = (
                select(IpnEvent)
                .where(IpnEvent.merchant_reference == reference)
                .order_by(IpnEvent.created_at.desc(), IpnEvent.id.desc())
                .limit(1)
            )
            res = await session.exec(q)
            return res.first()

    async def revalidate(self, reference: str) -> ReconcileResult:
        """Re-run the gates against the newest stored notification for ``reference``."""
        reference = (reference or "").strip()
        if not reference:
            raise BadInput("reference is required")
        event = await self.latest_event(reference)
        if event is None:
            raise NotFound(f"no IPN event for reference {reference}")

        ref_token = reference_ctx.set(reference)
        gw_token = gateway_id_ctx.set(event.gateway_payment_id or "")
        try:
            logger.info("revalidating from ipn_event=%s", event.id)
            return await self._run(event.raw, event.id)
        finally:
            reference_ctx.reset(ref_token)
            gateway_id_ctx.reset(gw_token)

    async def backfill_from_ipn(self, ipn_id: int) -> Tuple[Payment, bool]:
        """Create the payment row for a stored notification if it has none."""
        async with self.session_factory() as session:
            event = await session.get(IpnEvent, ipn_id)
            if event is None:
                raise NotFound(f"IPN event {ipn_id} not found")
            raw = event.raw or {}
            reference = _field(raw, REFERENCE_FIELD)
            if reference is None:
                raise BadInput(f"IPN event {ipn_id} has no {REFERENCE_FIELD}")
            payment, created = await insert_payment_if_absent(
                session, reference, map_gateway_status(raw.get(STATUS_FIELD)), claimed_amount(raw), raw,
            )
        logger.info("backfill from ipn_event=%s reference=%s created=%s", ipn_id, reference, created)
        return payment, created

    async def send_receipt(self, result: ReconcileResult) -> None:
        if self.receipts is None or not result.receipt_due:
            return
        payment = result.payment
        try:
            await self.receipts.send(payment.payer_email, payment.amount, payment.merchant_reference, payment.status)
        except Exception:
            logger.exception("receipt delivery failed reference=%s", payment.merchant_reference)
