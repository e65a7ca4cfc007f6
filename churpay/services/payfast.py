import logging
import secrets
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Any, Dict, Mapping, Optional
from urllib.parse import urlencode

import httpx

from ..config import PayFastConfig
from ..errors import BadInput, NotConfigured
from .signature import SIGNATURE_FIELD, canonical_string, sign

logger = logging.getLogger(__name__)

# IPN field names
REFERENCE_FIELD = "m_payment_id"
AMOUNT_FIELD = "amount_gross"
FALLBACK_AMOUNT_FIELD = "amount"
STATUS_FIELD = "payment_status"
IDENTITY_FIELD = "merchant_id"
GATEWAY_ID_FIELD = "pf_payment_id"
EMAIL_FIELD = "email_address"

VALID_TOKEN = "VALID"
CENTS = Decimal("0.01")
DEFAULT_AMOUNT = "50.00"


def to_amount(value: Any) -> Optional[Decimal]:
    """Parse an amount and round it half-up to cents; None when unparseable."""
    if value is None or value == "":
        return None
    try:
        amount = Decimal(str(value).strip())
        if not amount.is_finite():
            return None
        return amount.quantize(CENTS, rounding=ROUND_HALF_UP)
    except (InvalidOperation, ValueError):
        return None


def claimed_amount(payload: Mapping[str, Any]) -> Optional[Decimal]:
    value = payload.get(AMOUNT_FIELD)
    if value is None or value == "":
        value = payload.get(FALLBACK_AMOUNT_FIELD)
    return to_amount(value)


def new_merchant_reference() -> str:
    return secrets.token_urlsafe(16)


class RemoteValidator:
    """Asks PayFast whether it really sent a notification."""

    def __init__(self, config: PayFastConfig, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.config = config
        self.transport = transport

    async def validate(self, payload: Mapping[str, Any]) -> bool:
        body = canonical_string({k: v for k, v in payload.items() if k != SIGNATURE_FIELD})
        try:
            async with httpx.AsyncClient(timeout=self.config.validate_timeout, transport=self.transport) as client:
                resp = await client.post(
                    self.config.validate_url,
                    content=body,
                    headers={"Content-Type": "application/x-www-form-urlencoded"},
                )
        except httpx.HTTPError as exc:
            logger.warning("remote validation request failed: %r", exc)
            return False
        if not resp.is_success:
            logger.warning("remote validation returned HTTP %s", resp.status_code)
            return False
        ok = VALID_TOKEN in resp.text.upper().split()
        if not ok:
            logger.warning("remote validation rejected notification body=%r", resp.text[:200])
        return ok


@dataclass
class Checkout:
    merchant_reference: str
    amount: Decimal
    redirect_url: str
    params: Dict[str, str]


def build_checkout(config: PayFastConfig,
                   amount: Optional[str] = None,
                   email: Optional[str] = None,
                   name: Optional[str] = None,
                   merchant_reference: Optional[str] = None,
                   ) -> Checkout:
    """
    Build the signed redirect to PayFast's payment page.
    """
    if not config.is_configured:
        raise NotConfigured("PayFast merchant id/key are not configured")

    value = to_amount(amount if amount not in (None, "") else DEFAULT_AMOUNT)
    if value is None or value <= 0:
        raise BadInput(f"invalid amount {amount!r}")

    reference = merchant_reference or new_merchant_reference()
    params = {
        "merchant_id": config.merchant_id,
        "merchant_key": config.merchant_key,
        "return_url": config.return_url,
        "cancel_url": config.cancel_url,
        "notify_url": config.notify_url,
        "name_first": name or "",
        "email_address": email or "",
        REFERENCE_FIELD: reference,
        "amount": f"{value:.2f}",
        "item_name": config.item_name,
    }
    params = {k: v for k, v in params.items() if v}
    params[SIGNATURE_FIELD] = sign(params, config.signing_passphrase)

    redirect_url = f"{config.process_url}?{urlencode(params)}"
    logger.info("checkout built mode=%s merchant_id=%s amount=%s", config.mode, config.merchant_id, params["amount"])
    return Checkout(merchant_reference=reference, amount=value, redirect_url=redirect_url, params=params)
