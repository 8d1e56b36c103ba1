"""Pytest fixtures.

Every test gets its own SQLite file database and a container wired with stub
gateways and the in-memory publisher, so services run exactly as in
production minus the network.
"""
import json
from typing import Any, List, Mapping, Optional, Tuple

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import create_async_engine

from application.dtos.payments import (
    ProviderPaymentRequest,
    ProviderPaymentResult,
    ProviderRefundRequest,
    ProviderRefundResult,
    WebhookNotification,
)
from core.config import Settings
from core.settings import PaymentRetry, PaymentSettings
from domain.common.exceptions import SignatureInvalidException
from infrastructure.container import build_container
from infrastructure.database import create_session_factory, create_tables
from infrastructure.external.messaging import JsonSerializer
from infrastructure.external.messaging.providers.inmemory import InMemoryPublisher
from infrastructure.unit_of_work import SQLAlchemyUnitOfWork


STUB_SIGNATURE = "stub-valid"


class StubGateway:
    """Provider double; tests flip the attributes to script its answers."""

    def __init__(self, provider: str) -> None:
        self.provider = provider
        self.create_status = "succeeded"
        self.create_error: Optional[Exception] = None
        self.verify_status = "succeeded"
        self.verify_found = True
        self.refund_status = "succeeded"
        self.refund_error: Optional[Exception] = None
        self.calls: List[Tuple[str, str]] = []

    async def create_payment(self, req: ProviderPaymentRequest) -> ProviderPaymentResult:
        self.calls.append(("create_payment", req.payment_id))
        if self.create_error is not None:
            raise self.create_error
        return ProviderPaymentResult(
            provider=self.provider,
            provider_payment_id=f"pi_{req.payment_id}",
            status=self.create_status,
            client_secret=f"secret_{req.payment_id}",
            error_code="card_declined" if self.create_status == "failed" else None,
        )

    async def verify_payment(self, payment_id: str, provider_payment_id: Optional[str] = None) -> ProviderPaymentResult:
        self.calls.append(("verify_payment", payment_id))
        if not self.verify_found:
            return ProviderPaymentResult(provider=self.provider, status="pending", found=False)
        return ProviderPaymentResult(
            provider=self.provider,
            provider_payment_id=provider_payment_id or f"pi_{payment_id}",
            status=self.verify_status,
        )

    async def refund(self, req: ProviderRefundRequest) -> ProviderRefundResult:
        self.calls.append(("refund", req.refund_id))
        if self.refund_error is not None:
            raise self.refund_error
        return ProviderRefundResult(
            provider=self.provider,
            refund_id=req.refund_id,
            provider_refund_id=f"rf_{req.refund_id}",
            status=self.refund_status,
        )

    def parse_webhook(self, headers: Mapping[str, Any], body: bytes) -> WebhookNotification:
        if headers.get("x-stub-signature") != STUB_SIGNATURE:
            raise SignatureInvalidException("stub signature mismatch", provider=self.provider)
        return WebhookNotification(provider=self.provider, signature=STUB_SIGNATURE, **json.loads(body))

    def count(self, operation: str) -> int:
        return sum(1 for name, _ in self.calls if name == operation)


@pytest.fixture
def stub_headers() -> dict:
    return {"x-stub-signature": STUB_SIGNATURE}


@pytest.fixture
def payment_settings() -> PaymentSettings:
    # 退避缩短到毫秒级，保持重试次数不变
    return PaymentSettings(retry=PaymentRetry(max_attempts=3, base_backoff=0.001, max_backoff=0.005))


@pytest.fixture
def gateways():
    return {"stripe": StubGateway("stripe"), "paystack": StubGateway("paystack")}


@pytest.fixture
def stripe_stub(gateways) -> StubGateway:
    return gateways["stripe"]


@pytest.fixture
def publisher() -> InMemoryPublisher:
    return InMemoryPublisher(JsonSerializer())


@pytest_asyncio.fixture
async def engine(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'paysync.db'}", connect_args={"timeout": 30})
    await create_tables(engine)
    yield engine
    await engine.dispose()


@pytest_asyncio.fixture
async def container(engine, gateways, publisher, payment_settings):
    built = build_container(
        Settings(),
        payment_settings,
        session_factory=create_session_factory(engine),
        gateways=gateways,
        publisher=publisher,
    )
    yield built
    await built.aclose()


@pytest.fixture
def unpublished(container):
    """Read back outbox rows that the relay has not published yet."""

    async def read(aggregate_id: Optional[str] = None):
        async with SQLAlchemyUnitOfWork(container.session_factory, readonly=True) as uow:
            entries = await uow.outbox.list_unpublished(limit=1000)
        return [e for e in entries if aggregate_id is None or e.aggregate_id == aggregate_id]

    return read


@pytest.fixture
def ledger(container):
    async def read(payment_id: str):
        async with SQLAlchemyUnitOfWork(container.session_factory, readonly=True) as uow:
            return await uow.transactions.list_by_payment(payment_id)

    return read
