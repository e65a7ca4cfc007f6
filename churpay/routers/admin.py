from fastapi import APIRouter, BackgroundTasks, Depends

from ..schemas import BackfillIn, BackfillOut, GatesOut, PaymentOut, RevalidateIn, RevalidateOut
from ..services.reconcile import ReconciliationEngine
from ..utils import get_reconciler, require_service_api_key

router = APIRouter(prefix="/api/admin", tags=["admin"], dependencies=[Depends(require_service_api_key)])


@router.post("/revalidate", response_model=RevalidateOut)
async def revalidate(body: RevalidateIn, background_tasks: BackgroundTasks,
                     reconciler: ReconciliationEngine = Depends(get_reconciler)):
    """Re-run every gate against the latest stored IPN for a reference and report each outcome."""
    result = await reconciler.revalidate(body.reference)
    if result.receipt_due:
        background_tasks.add_task(reconciler.send_receipt, result)
    return RevalidateOut(
        reference=result.reference or body.reference.strip(),
        ipn_event_id=result.event_id,
        gates=GatesOut(passed=result.gates.passed, **result.gates.as_dict()),
        status=result.status.value,
        expected_amount=result.expected_amount,
        claimed_amount=result.claimed_amount,
        payment=PaymentOut.model_validate(result.payment) if result.payment else None,
    )


@router.post("/backfill-from-ipn", response_model=BackfillOut)
async def backfill_from_ipn(body: BackfillIn, reconciler: ReconciliationEngine = Depends(get_reconciler)):
    payment, created = await reconciler.backfill_from_ipn(body.ipn_id)
    return BackfillOut(created=created, payment=PaymentOut.model_validate(payment))
