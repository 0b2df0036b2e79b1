import os

# settings are read at import time by app.db.session / app.main
os.environ.setdefault("DATABASE_URL", "sqlite:///./.pytest-dapp-factory.db")
os.environ.setdefault("JWT_SECRET_KEY", "test-secret")
os.environ.setdefault("SOLANA_TREASURY_WALLET", "Treasury1111111111111111111111111111111111")
os.environ.setdefault("LOG_LEVEL", "WARNING")

import threading
import time
from dataclasses import dataclass
from decimal import Decimal
from typing import Dict, List, Optional

import pytest
from sqlalchemy.orm import sessionmaker

# FORCE model registration
import app.models  # noqa

from app.clients.solana_client import ChainRpcError, ChainTransaction, PreparedTransfer, TransferState
from app.clients.stripe_gateway import CardGatewayError, CheckoutSession
from app.core.config import Settings
from app.core.security import hash_password
from app.db.base import Base
from app.db.session import build_engine
from app.models.enums import PaymentMethod, ProductType, ServiceTier
from app.schemas.compliance import ComplianceReport
from app.schemas.generation import GeneratedFile, GeneratorResult
from app.schemas.orders import OrderCreateRequest
from app.services.compliance_service import ComplianceScorer
from app.services.container import Collaborators, ServiceContainer
from app.services.packaging_service import Packager

TREASURY = "Treasury1111111111111111111111111111111111"
PAYER = "Payer11111111111111111111111111111111111111"
ADMIN_PASSWORD = "correct horse battery staple"


# ---------------------------------------------------------------------
# fake collaborators
# ---------------------------------------------------------------------


class FakeChain:
    def __init__(self):
        self.txs: Dict[str, ChainTransaction] = {}
        self.transfers: List[tuple] = []
        self.fail_transfers = False
        # state a submitted transfer reaches; None means the cluster never sees it
        self.next_state: Optional[TransferState] = TransferState.confirmed
        self.states: Dict[str, TransferState] = {}
        self.block_height = 1000
        self.lookups = 0
        self._prepared: Dict[str, tuple] = {}
        self._lock = threading.Lock()

    def add_tx(self, signature, *, sender=PAYER, lamports=100_000_000, success=True, confirmations=32):
        self.txs[signature] = ChainTransaction(
            signature=signature,
            success=success,
            sender_address=sender,
            lamports_to_treasury=lamports,
            slot=1000,
            confirmations=confirmations,
        )

    def lookup_transaction(self, signature):
        with self._lock:
            self.lookups += 1
        return self.txs.get(signature)

    def prepare_transfer(self, recipient, lamports):
        if self.fail_transfers:
            raise ChainRpcError("rpc_request_failed: connection refused")
        with self._lock:
            signature = f"refund-sig-{len(self._prepared) + 1}"
            self._prepared[signature] = (recipient, lamports)
        return PreparedTransfer(signature=signature, raw="", last_valid_block_height=self.block_height + 150)

    def submit_transfer(self, prepared):
        with self._lock:
            self.transfers.append(self._prepared[prepared.signature])
            if self.next_state is not None:
                self.states[prepared.signature] = self.next_state

    def transfer_state(self, signature, last_valid_block_height=None):
        state = self.states.get(signature)
        if state is not None:
            return state
        if last_valid_block_height is not None and self.block_height > last_valid_block_height:
            return TransferState.expired
        return TransferState.pending

    def await_transfer(self, signature, last_valid_block_height=None):
        return self.transfer_state(signature, last_valid_block_height)


class FakeGenerator:
    def __init__(self, files: Optional[List[GeneratedFile]] = None, *, delay: float = 0.0, error: Exception = None):
        self.files = files or [
            GeneratedFile(path="src/app/page.tsx", content="export default function Page() {\n  return null\n}\n", language="tsx"),
            GeneratedFile(path="src/lib/solana.ts", content="export const network = 'devnet'\n", language="ts"),
        ]
        self.delay = delay
        self.error = error
        self.calls = 0
        self._lock = threading.Lock()

    def generate(self, spec):
        with self._lock:
            self.calls += 1
        if self.delay:
            time.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return GeneratorResult(
            files=self.files,
            packageManifest={"name": "demo", "version": "0.1.0"},
            readme=f"# {spec.projectName}\n",
            totalFiles=len(self.files),
            totalLines=sum(len(f.content.splitlines()) for f in self.files),
            tokensUsed=1234,
        )


class FixedScorer:
    def __init__(self, report: Optional[ComplianceReport] = None):
        self.report = report or ComplianceReport(riskScore=0, flags=[])

    def analyze(self, files):
        return self.report


class FakeCardGateway:
    def __init__(self):
        self.refunds: List[dict] = []
        self.sessions = 0
        self.fail_refunds = False

    def create_checkout_session(self, **kwargs):
        self.sessions += 1
        return CheckoutSession(session_id=f"cs_test_{self.sessions}", url="https://checkout.stripe.test/pay")

    def construct_event(self, payload, sig_header):
        import json

        if sig_header != "valid-signature":
            raise ValueError("invalid Stripe signature")
        return json.loads(payload)

    def refund(self, *, payment_intent_id, amount_cents, reason):
        if self.fail_refunds:
            raise CardGatewayError("card_declined")
        self.refunds.append({"payment_intent": payment_intent_id, "amount": amount_cents, "reason": reason})
        return f"re_{len(self.refunds)}"


class RecordingNotifier:
    def __init__(self, *, explode: bool = False):
        self.sent: List[tuple] = []
        self.explode = explode

    def _record(self, kind, order):
        if self.explode:
            raise RuntimeError("smtp down")
        self.sent.append((kind, order.id))

    def send_payment_confirmation(self, order):
        self._record("payment", order)

    def send_completion(self, order, download_url):
        self._record("completion", order)

    def send_refund(self, order, reason):
        self._record("refund", order)


# ---------------------------------------------------------------------
# fixtures
# ---------------------------------------------------------------------


@pytest.fixture
def settings(tmp_path):
    return Settings(
        database_url=f"sqlite:///{tmp_path / 'test.db'}",
        jwt_secret_key="test-secret",
        solana_treasury_wallet=TREASURY,
        download_dir=str(tmp_path / "downloads"),
        admin_username="admin",
        admin_password_hash=hash_password(ADMIN_PASSWORD),
        generation_timeout_seconds=5.0,
        rate_limit_capacity=1000,
        rate_limit_per_minute=1000,
        smtp_host=None,
    )


@pytest.fixture
def engine(settings):
    eng = build_engine(settings.database_url)
    Base.metadata.create_all(eng)
    yield eng
    eng.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


@pytest.fixture(scope="function")
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@dataclass
class Fakes:
    chain: FakeChain
    generator: FakeGenerator
    scorer: object
    card_gateway: FakeCardGateway
    notifier: RecordingNotifier


@pytest.fixture
def fakes():
    return Fakes(
        chain=FakeChain(),
        generator=FakeGenerator(),
        scorer=ComplianceScorer(),
        card_gateway=FakeCardGateway(),
        notifier=RecordingNotifier(),
    )


@pytest.fixture
def collaborators(settings, fakes):
    return Collaborators(
        chain=fakes.chain,
        generator=fakes.generator,
        scorer=fakes.scorer,
        packager=Packager(settings.download_dir, ttl_hours=settings.download_ttl_hours),
        card_gateway=fakes.card_gateway,
        notifier=fakes.notifier,
    )


@pytest.fixture
def services(settings, collaborators, session_factory):
    """Synchronous wiring: generation runs only when a test calls it."""
    container = ServiceContainer(
        settings,
        collaborators,
        session_factory,
        run_generation_in_background=False,
    )
    yield container
    container.shutdown()


# ---------------------------------------------------------------------
# order builders
# ---------------------------------------------------------------------


def _order_request(**overrides) -> OrderCreateRequest:
    data = dict(
        walletAddress=PAYER,
        customerName="Ada",
        customerEmail="ada@example.com",
        projectName="Moon Swap",
        projectDescription="A token swap dApp",
        productType=ProductType.app_only,
        tier=ServiceTier.starter,
        paymentMethod=PaymentMethod.solana,
        features=["wallet-connect"],
    )
    data.update(overrides)
    return OrderCreateRequest(**data)


@pytest.fixture
def payer():
    return PAYER


@pytest.fixture
def admin_password():
    return ADMIN_PASSWORD


@pytest.fixture
def order_request():
    return _order_request


@pytest.fixture
def make_order(db, services):
    def _make(**overrides):
        return services.orders.create_order(db, _order_request(**overrides), ip_address="127.0.0.1")
    return _make


@pytest.fixture
def paid_order(db, services, fakes, make_order):
    """Order in payment_confirmed, paid on-chain with the exact tier price."""
    def _paid(signature="sig-paid-1", **overrides):
        order = make_order(**overrides)
        fakes.chain.add_tx(signature, lamports=int(Decimal(order.payment_amount) * 1_000_000_000))
        services.payments.verify_onchain(db, order.id, signature)
        return services.orders.get(db, order.id, fresh=True)
    return _paid


@pytest.fixture
def completed_order(db, services, paid_order):
    def _completed(signature="sig-done-1", **overrides):
        order = paid_order(signature=signature, **overrides)
        return services.generation.generate(db, order.id)
    return _completed


@pytest.fixture
def use_scorer(services):
    """Swap in a scorer that always returns the given report."""
    def _use(risk_score, flags=()):
        services.generation.scorer = FixedScorer(ComplianceReport(riskScore=risk_score, flags=list(flags)))
    return _use


# ---------------------------------------------------------------------
# HTTP
# ---------------------------------------------------------------------


@pytest.fixture
def make_client(collaborators, session_factory):
    """TestClient over a fresh app; generation runs inline on /generate."""
    from fastapi.testclient import TestClient

    from app.db.session import get_db
    from app.main import create_app

    clients = []

    def _override_db():
        db = session_factory()
        try:
            yield db
        finally:
            db.close()

    def _make(settings):
        app = create_app(
            collaborators,
            settings=settings,
            session_factory=session_factory,
            run_generation_in_background=False,
        )
        app.dependency_overrides[get_db] = _override_db
        c = TestClient(app)
        c.__enter__()
        clients.append(c)
        return c

    yield _make

    for c in clients:
        c.__exit__(None, None, None)


@pytest.fixture
def client(settings, make_client):
    return make_client(settings)
