# app/services/container.py
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Callable, Optional

from sqlalchemy.orm import Session

from app.clients.generator_client import HttpCodeGenerator
from app.clients.solana_client import SolanaRpcClient
from app.clients.stripe_gateway import StripeGateway
from app.core.config import Settings
from app.core.order_locks import KeyedLock
from app.services.audit_service import AuditService
from app.services.compliance_service import ComplianceScorer
from app.services.download_service import DownloadService
from app.services.generation_queue import GenerationQueue
from app.services.generation_service import GenerationService
from app.services.notification_service import EmailNotifier
from app.services.orders_service import OrderService
from app.services.packaging_service import Packager
from app.services.payment_service import PaymentService
from app.services.refund_service import RefundService

logger = logging.getLogger(__name__)


@dataclass
class Collaborators:
    """Everything the lifecycle talks to outside its own database."""
    chain: Any
    generator: Any
    scorer: Any
    packager: Packager
    card_gateway: Any
    notifier: Any


def build_collaborators(settings: Settings) -> Collaborators:
    return Collaborators(
        chain=SolanaRpcClient(
            settings.solana_rpc_url,
            settings.solana_treasury_wallet,
            treasury_secret=settings.solana_treasury_private_key,
            commitment=settings.solana_commitment,
            timeout=settings.solana_rpc_timeout_seconds,
        ),
        generator=HttpCodeGenerator(
            settings.generator_url,
            api_key=settings.generator_api_key,
            timeout=settings.generation_timeout_seconds,
        ),
        scorer=ComplianceScorer(),
        packager=Packager(settings.download_dir, ttl_hours=settings.download_ttl_hours),
        card_gateway=StripeGateway(settings.stripe_secret_key, settings.stripe_webhook_secret),
        notifier=EmailNotifier(settings),
    )


class ServiceContainer:
    """
    Wires services over one set of collaborators. Built once per app.
    """
    def __init__(
        self,
        settings: Settings,
        collaborators: Collaborators,
        session_factory: Callable[[], Session],
        *,
        run_generation_in_background: bool = True,
    ):
        self.settings = settings
        self.collaborators = collaborators
        c = collaborators

        self.audit = AuditService()
        self.orders = OrderService(settings)
        # one registry per container; refunds for an order are serialised on it
        self.refund_locks = KeyedLock()
        self.refunds = RefundService(
            settings,
            self.orders,
            self.audit,
            chain=c.chain,
            card_gateway=c.card_gateway,
            notifier=c.notifier,
            locks=self.refund_locks,
        )
        self.generation = GenerationService(
            settings,
            self.orders,
            self.audit,
            generator=c.generator,
            scorer=c.scorer,
            packager=c.packager,
            refunds=self.refunds,
            notifier=c.notifier,
        )
        self.queue: Optional[GenerationQueue] = None
        if run_generation_in_background:
            self.queue = GenerationQueue(
                session_factory,
                self.generation,
                max_workers=settings.max_concurrent_generations,
            )
        self.payments = PaymentService(
            settings,
            self.orders,
            self.audit,
            chain=c.chain,
            card_gateway=c.card_gateway,
            notifier=c.notifier,
            on_confirmed=self.queue.submit if self.queue else None,
        )
        self.downloads = DownloadService(self.orders, c.packager, self.audit)

    def shutdown(self) -> None:
        if self.queue is not None:
            self.queue.shutdown(wait=False)
        notifier_shutdown = getattr(self.collaborators.notifier, "shutdown", None)
        if notifier_shutdown is not None:
            notifier_shutdown()
        logger.info("services shut down")
