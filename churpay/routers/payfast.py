import logging
from typing import Optional

from fastapi import APIRouter, BackgroundTasks, Depends, Request
from fastapi.responses import PlainTextResponse

from ..config import PayFastConfig
from ..logging import gateway_id_ctx, reference_ctx
from ..schemas import InitiateIn, InitiateOut
from ..services.intents import IntentStore
from ..services.payfast import GATEWAY_ID_FIELD, REFERENCE_FIELD, build_checkout
from ..services.reconcile import ReconcileResult, ReconciliationEngine
from ..utils import get_intents, get_payfast_config, get_reconciler

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/payfast", tags=["payfast"])

ACK = "OK"


@router.post("/initiate", response_model=InitiateOut)
async def initiate(payload: InitiateIn,
                   config: PayFastConfig = Depends(get_payfast_config),
                   intents: IntentStore = Depends(get_intents)):
    """Start a checkout: record the intent and hand back the PayFast redirect."""
    checkout = build_checkout(config, payload.amount, email=payload.email, name=payload.name)
    await intents.create_intent(checkout.amount, checkout.merchant_reference)
    return InitiateOut(
        redirect=checkout.redirect_url,
        merchant_reference=checkout.merchant_reference,
        amount=f"{checkout.amount:.2f}",
    )


async def process_notification(reconciler: ReconciliationEngine, request: Request) -> Optional[ReconcileResult]:
    """
    Run reconciliation for one IPN and never raise.

    PayFast retries any notification that does not get a 200, so every failure
    here is logged and swallowed; the caller always acknowledges.
    """
    payload = {}
    ref_token = gw_token = None
    try:
        form = await request.form()
        payload = {k: v for k, v in form.items() if isinstance(v, str)}
        ref_token = reference_ctx.set(payload.get(REFERENCE_FIELD, ""))
        gw_token = gateway_id_ctx.set(payload.get(GATEWAY_ID_FIELD, ""))
        return await reconciler.reconcile(payload)
    except Exception:
        logger.exception(
            "ipn processing failed m_payment_id=%s pf_payment_id=%s",
            payload.get(REFERENCE_FIELD), payload.get(GATEWAY_ID_FIELD),
        )
        return None
    finally:
        if ref_token is not None:
            reference_ctx.reset(ref_token)
        if gw_token is not None:
            gateway_id_ctx.reset(gw_token)


# PayFast -> form-encoded POST
@router.post("/ipn", response_class=PlainTextResponse)
async def ipn(request: Request, background_tasks: BackgroundTasks,
              reconciler: ReconciliationEngine = Depends(get_reconciler)):
    result = await process_notification(reconciler, request)
    if result is not None and result.receipt_due:
        background_tasks.add_task(reconciler.send_receipt, result)
    return PlainTextResponse(ACK, status_code=200)
