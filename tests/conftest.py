"""Shared fixtures for the Churpay backend tests.

Provides:
- db: fresh SQLite tables per test (file database in a temp dir)
- config: PayFast credentials used to sign test notifications
- validator: stub remote validator whose answer tests can flip
- reconciler: engine wired to the stub validator and a fake receipt sender
- client: httpx client talking to the FastAPI app in-process
- notification(): builds a correctly signed IPN payload
"""

import os
import tempfile

_TMP = tempfile.mkdtemp(prefix="churpay-tests-")
os.environ["DATABASE_URL"] = f"sqlite+aiosqlite:///{os.path.join(_TMP, 'test.db')}"
os.environ["SERVICE_API_KEY"] = "test-api-key"
os.environ["PAYFAST_MERCHANT_ID"] = "10012345"
os.environ["PAYFAST_MERCHANT_KEY"] = "test-merchant-key"
os.environ["PAYFAST_PASSPHRASE"] = "jt7NOE43FZPn"

import httpx  # noqa: E402
import pytest  # noqa: E402
from sqlmodel import SQLModel  # noqa: E402

from churpay import models  # noqa: E402,F401
from churpay.config import PayFastConfig  # noqa: E402
from churpay.db import async_session, engine  # noqa: E402
from churpay.main import app  # noqa: E402
from churpay.services.intents import IntentStore  # noqa: E402
from churpay.services.reconcile import ReconciliationEngine  # noqa: E402
from churpay.services.signature import sign  # noqa: E402
from churpay.utils import get_intents, get_payfast_config, get_reconciler  # noqa: E402

MERCHANT_ID = "10012345"
API_HEADERS = {"X-API-KEY": "test-api-key"}


class StubValidator:
    """Stands in for PayFast's validate endpoint."""

    def __init__(self, result=True):
        self.result = result
        self.calls = []

    async def validate(self, payload):
        self.calls.append(dict(payload))
        return self.result


class FakeReceipts:
    def __init__(self):
        self.sent = []

    async def send(self, to, amount, reference, status):
        self.sent.append({"to": to, "amount": amount, "reference": reference, "status": status})
        return True


@pytest.fixture
async def db():
    """Create all tables before each test, drop them after."""
    async with engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.drop_all)
        await conn.run_sync(SQLModel.metadata.create_all)
    yield async_session
    # connections are bound to this test's event loop
    await engine.dispose()


@pytest.fixture
def config():
    return PayFastConfig(
        merchant_id=MERCHANT_ID,
        merchant_key="test-merchant-key",
        passphrase="jt7NOE43FZPn",
        mode="sandbox",
        validate_timeout=2.0,
        no_passphrase_merchant_ids=frozenset({"10000100"}),
        return_url="http://localhost:5173/payfast/return",
        cancel_url="http://localhost:5173/payfast/cancel",
        notify_url="http://localhost:5000/api/payfast/ipn",
    )


@pytest.fixture
def validator():
    return StubValidator(True)


@pytest.fixture
def receipts():
    return FakeReceipts()


@pytest.fixture
def intents(db):
    return IntentStore(async_session)


@pytest.fixture
def reconciler(db, config, validator, intents, receipts):
    return ReconciliationEngine(config, async_session, validator, intents=intents, receipts=receipts)


@pytest.fixture
def notification(config):
    """Factory for signed PayFast IPN payloads."""

    def _make(reference, amount, status="COMPLETE", sign_with=None, **extra):
        payload = {
            "m_payment_id": reference,
            "pf_payment_id": extra.pop("pf_payment_id", f"pf-{reference}"),
            "payment_status": status,
            "item_name": "Churpay Top Up",
            "amount_gross": amount,
            "amount_fee": "-2.30",
            "amount_net": amount,
            "name_first": "Thandi",
            "name_last": "Mokoena",
            "email_address": "thandi@example.co.za",
            "merchant_id": MERCHANT_ID,
        }
        payload.update(extra)
        passphrase = config.signing_passphrase if sign_with is None else sign_with
        payload["signature"] = sign(payload, passphrase)
        return payload

    return _make


@pytest.fixture
async def client(reconciler, config, intents):
    app.dependency_overrides[get_reconciler] = lambda: reconciler
    app.dependency_overrides[get_payfast_config] = lambda: config
    app.dependency_overrides[get_intents] = lambda: intents
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as c:
        yield c
    app.dependency_overrides.clear()
