from functools import lru_cache
from typing import Optional

from fastapi import Header, HTTPException

from .config import PayFastConfig, payfast_config, settings
from .db import async_session
from .services.intents import IntentStore
from .services.payfast import RemoteValidator
from .services.receipts import ReceiptSender
from .services.reconcile import ReconciliationEngine


def require_service_api_key(x_api_key: Optional[str] = Header(default=None)):
    if x_api_key != settings.service_api_key:
        raise HTTPException(status_code=401, detail="Invalid X-API-KEY")
    return True


def get_payfast_config() -> PayFastConfig:
    return payfast_config


@lru_cache
def get_intents() -> IntentStore:
    return IntentStore(async_session)


@lru_cache
def get_reconciler() -> ReconciliationEngine:
    return ReconciliationEngine(
        payfast_config,
        async_session,
        RemoteValidator(payfast_config),
        intents=get_intents(),
        receipts=ReceiptSender(settings),
    )
