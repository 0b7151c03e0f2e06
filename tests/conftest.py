"""Pytest fixtures for testing"""

import asyncio
import pytest
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal
from typing import Callable, Dict, Generator, List, Optional, Sequence
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, Session
from earlypay.api.main import create_app
from earlypay.api.dependencies import get_ledger_client, get_payment_gateway
from earlypay.infrastructure.database.models import Base
from earlypay.infrastructure.database.session import get_db
from earlypay.domain.exceptions import CaptureError, ConfigurationError, LedgerError, TransactionNotFoundError
from earlypay.domain.models import (
    CaptureReceipt,
    CommitState,
    DiscountTier,
    EarlyPaymentRecord,
    FeeSchedule,
    Installment,
    InstallmentStatus,
    MerchantEarlyPaymentConfig,
    Transaction,
    TransactionStatus,
)


# Test database
TEST_DATABASE_URL = "sqlite:///./test_earlypay.db"
engine = create_engine(TEST_DATABASE_URL, connect_args={"check_same_thread": False})
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

NOW = datetime(2026, 3, 2, 12, 0, tzinfo=timezone.utc)


class InMemoryLedger:
    """Installment ledger holding transactions in a dict"""

    def __init__(self, transactions: Sequence[Transaction] = ()):
        self.transactions: Dict[str, Transaction] = {t.transaction_id: t for t in transactions}
        self.settle_calls: List[tuple] = []
        self.settlements: List[tuple] = []
        self.claims: Dict[str, str] = {}
        self.claim_calls: List[tuple] = []
        self.failures_before_success = 0

    def get_transaction(self, transaction_id: str) -> Transaction:
        if transaction_id not in self.transactions:
            raise TransactionNotFoundError(f"Transaction {transaction_id} not found")
        return self.transactions[transaction_id]

    def mark_settled(self, transaction_id, installment_ids, discount_cents, idempotency_key) -> None:
        self.settle_calls.append((transaction_id, tuple(installment_ids), discount_cents, idempotency_key))
        if self.failures_before_success > 0:
            self.failures_before_success -= 1
            raise LedgerError("ledger unavailable")

        transaction = self.transactions[transaction_id]
        targets = [inst for inst in transaction.installments if inst.installment_id in installment_ids]
        if len(targets) != len(installment_ids) or not all(inst.is_open for inst in targets):
            raise LedgerError("installment set changed")
        for inst in targets:
            inst.status = InstallmentStatus.COMPLETED
        if all(inst.status == InstallmentStatus.COMPLETED for inst in transaction.installments):
            transaction.status = TransactionStatus.COMPLETED
        self.settlements.append((transaction_id, transaction.merchant_id, NOW))

    def claim(self, transaction_id: str, holder: str, ttl_seconds: float) -> bool:
        self.claim_calls.append((transaction_id, holder))
        if self.claims.get(transaction_id, holder) != holder:
            return False
        self.claims[transaction_id] = holder
        return True

    def release(self, transaction_id: str, holder: str) -> None:
        if self.claims.get(transaction_id) == holder:
            del self.claims[transaction_id]

    def count_settlements(self, transaction_id=None, merchant_id=None, since=None) -> int:
        return sum(
            1
            for txn_id, merchant, settled_at in self.settlements
            if (transaction_id is None or txn_id == transaction_id)
            and (merchant_id is None or merchant == merchant_id)
            and (since is None or settled_at >= since)
        )


class FakeGateway:
    """Payment gateway double that dedupes on idempotency key"""

    def __init__(self, supports_cancellation: bool = True):
        self.supports_cancellation = supports_cancellation
        self.calls: List[tuple] = []
        self.cancelled: List[str] = []
        self.captures: Dict[str, CaptureReceipt] = {}
        self.errors: List[CaptureError] = []
        self.delay: float = 0.0

    async def capture(self, idempotency_key: str, payment_method_ref: str, amount_cents: int) -> CaptureReceipt:
        self.calls.append((idempotency_key, payment_method_ref, amount_cents))
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.errors:
            raise self.errors.pop(0)
        if idempotency_key not in self.captures:
            self.captures[idempotency_key] = CaptureReceipt(
                capture_reference=f"cap_{len(self.captures) + 1}",
                amount_cents=amount_cents,
                captured_at=NOW,
            )
        return self.captures[idempotency_key]

    async def cancel(self, idempotency_key: str) -> None:
        self.cancelled.append(idempotency_key)


class InMemoryConfigSource:
    def __init__(self, configs: Sequence[MerchantEarlyPaymentConfig] = ()):
        self.configs = {c.merchant_id: c for c in configs}
        self.loads = 0

    def get_config(self, merchant_id: str) -> MerchantEarlyPaymentConfig:
        self.loads += 1
        if merchant_id not in self.configs:
            raise ConfigurationError(f"No early payment configuration for merchant {merchant_id}")
        return self.configs[merchant_id]

    def get_discount_tiers(self, merchant_id):
        return self.get_config(merchant_id).discount_tiers

    def get_fee_schedule(self, merchant_id):
        return self.get_config(merchant_id).fee_schedule

    def allows_partial_payments(self, merchant_id):
        return self.get_config(merchant_id).allow_partial_payments

    def requires_approval(self, merchant_id):
        return self.get_config(merchant_id).require_merchant_approval


class InMemoryAuditSink:
    def __init__(self):
        self.records: List[EarlyPaymentRecord] = []

    def append(self, record: EarlyPaymentRecord) -> None:
        self.records.append(record)

    def find_completed(self, idempotency_key: str) -> Optional[EarlyPaymentRecord]:
        for record in self.records:
            if record.idempotency_key == idempotency_key and record.state == CommitState.COMPLETED:
                return record
        return None

    def states(self, idempotency_key: str | None = None) -> List[CommitState]:
        return [r.state for r in self.records if idempotency_key is None or r.idempotency_key == idempotency_key]


class FakeLedgerClient:
    def __init__(self):
        self.events = []

    async def send_settlement_event(self, result) -> None:
        self.events.append(result)


def build_transaction(
    transaction_id: str,
    amounts: Sequence[int],
    due_in_days: Sequence[int],
    today: date,
    merchant_id: str = "merchant_1",
) -> Transaction:
    """Transaction with one installment per (amount, days-until-due) pair"""
    installments = [
        Installment(
            installment_id=f"{transaction_id}_inst_{i + 1}",
            transaction_id=transaction_id,
            due_date=today + timedelta(days=days),
            amount_cents=amount,
        )
        for i, (amount, days) in enumerate(zip(amounts, due_in_days))
    ]
    return Transaction(
        transaction_id=transaction_id,
        merchant_id=merchant_id,
        total_cents=sum(amounts),
        installments=installments,
    )


@pytest.fixture
def now() -> datetime:
    return NOW


@pytest.fixture
def seven_day_tier() -> DiscountTier:
    """2% for paying 0-7 days early, $50 minimum, $100 cap"""
    return DiscountTier.from_time_range("0-7days", "0.02", 5_000, 10_000, "Pay within 7 days for 2% discount")


@pytest.fixture
def tiered_config() -> MerchantEarlyPaymentConfig:
    """Three non-overlapping tiers, no processing fee"""
    return MerchantEarlyPaymentConfig(
        merchant_id="merchant_1",
        discount_tiers=(
            DiscountTier.from_time_range("0-7days", "0.02", 1_000, 5_000),
            DiscountTier.from_time_range("8-14days", "0.015", 1_000, 3_000),
            DiscountTier.from_time_range("15-30days", "0.01", 1_000, 2_000),
        ),
    )


@pytest.fixture
def make_transaction(now: datetime) -> Callable[..., Transaction]:
    def _make(transaction_id="txn_1", amounts=(25_000,), due_in_days=(3,), merchant_id="merchant_1"):
        return build_transaction(transaction_id, amounts, due_in_days, now.date(), merchant_id)

    return _make


@pytest.fixture
def fee_schedule() -> FeeSchedule:
    """$1.00 flat fee, $0.50 for partial batches"""
    return FeeSchedule(flat_fee_cents=100, percentage_rate=Decimal("0"), partial_flat_fee_cents=50)


@pytest.fixture
def db() -> Generator[Session, None, None]:
    """Create test database and session"""
    Base.metadata.create_all(bind=engine)
    db = TestingSessionLocal()
    try:
        yield db
    finally:
        db.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture
def gateway() -> FakeGateway:
    return FakeGateway()


@pytest.fixture
def ledger_client() -> FakeLedgerClient:
    return FakeLedgerClient()


@pytest.fixture
def client(db: Session, gateway: FakeGateway, ledger_client: FakeLedgerClient) -> TestClient:
    """Create FastAPI test client with test database and fake payment collaborators"""
    app = create_app()

    def override_get_db():
        try:
            yield db
        finally:
            pass

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_payment_gateway] = lambda: gateway
    app.dependency_overrides[get_ledger_client] = lambda: ledger_client
    return TestClient(app)


@pytest.fixture
def make_ledger() -> Callable[..., InMemoryLedger]:
    return InMemoryLedger


@pytest.fixture
def make_config_source() -> Callable[..., InMemoryConfigSource]:
    return InMemoryConfigSource


@pytest.fixture
def audit() -> InMemoryAuditSink:
    return InMemoryAuditSink()
