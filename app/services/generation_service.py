# app/services/generation_service.py
from __future__ import annotations

import logging
import time
import traceback
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FutureTimeout
from datetime import datetime
from typing import Callable, List, Optional

from pydantic import ValidationError as PydanticValidationError
from sqlalchemy.orm import Session

from app.clients.generator_client import GeneratorError, GeneratorTimeout
from app.core.clock import utcnow
from app.core.config import Settings
from app.core.errors import ConflictError, GenerationError
from app.models.compliance_flag import ComplianceFlag
from app.models.enums import (
    EventStage,
    LifecycleStatus,
    PaymentStatus,
    ReviewDecision,
    WhitelistStatus,
)
from app.models.order import Order
from app.models.order_file import OrderFile
from app.schemas.compliance import ComplianceReport
from app.schemas.generation import GeneratedFile, GenerationSpec, GeneratorResult
from app.services.audit_service import AuditService
from app.services.notification_service import safe_notify
from app.services.orders_service import OrderService
from app.services.packaging_service import Packager
from app.services.refund_service import RefundService

logger = logging.getLogger(__name__)


def needs_review(report: ComplianceReport, threshold: int) -> bool:
    return report.riskScore > threshold or report.has_high_severity


def spec_for(order: Order) -> GenerationSpec:
    return GenerationSpec(
        orderId=order.id,
        projectName=order.project_name,
        projectDescription=order.project_description,
        productType=order.product_type,
        tier=order.tier,
        features=list(order.features or []),
        tokenConfig=order.token_config,
    )


class GenerationService:
    """
    Runs an order from payment_confirmed to review_required or completed.

    Entry is a conditional UPDATE payment_confirmed -> generating, so at most
    one run per order ever reaches the generator.
    """
    def __init__(
        self,
        settings: Settings,
        orders: OrderService,
        audit: AuditService,
        *,
        generator,
        scorer,
        packager: Packager,
        refunds: RefundService,
        notifier=None,
        now_fn: Callable[[], datetime] = utcnow,
    ):
        self.settings = settings
        self.orders = orders
        self.audit = audit
        self.generator = generator
        self.scorer = scorer
        self.packager = packager
        self.refunds = refunds
        self.notifier = notifier
        self.now_fn = now_fn

    # ---------------------------
    # GENERATE
    # ---------------------------

    def generate(self, db: Session, order_id: str) -> Order:
        order = self.orders.get(db, order_id, fresh=True)
        if order.payment_status != PaymentStatus.confirmed.value:
            raise ConflictError("Payment not confirmed.")

        started = self.now_fn()
        entered = self.orders.compare_and_set(
            db,
            order_id,
            expected={
                "lifecycle_status": LifecycleStatus.payment_confirmed,
                "payment_status": PaymentStatus.confirmed,
            },
            values={
                "lifecycle_status": LifecycleStatus.generating,
                "generation_started_at": started,
            },
        )
        if not entered:
            db.rollback()
            current = self.orders.get(db, order_id, fresh=True)
            raise ConflictError(f"Generation not allowed from {current.lifecycle_status}.")
        db.commit()
        logger.info("generation started", extra={"order_id": order_id})

        order = self.orders.get(db, order_id, fresh=True)
        t0 = time.monotonic()
        try:
            result = self._call_generator(spec_for(order))
            report = self.scorer.analyze(result.files)
            elapsed_ms = int((time.monotonic() - t0) * 1000)
            self._store_artifact(db, order, result, report, elapsed_ms)
        except Exception as e:
            # failed rows are picked up by the auto-refund sweep
            self._fail(db, order_id, EventStage.generation, e, from_status=LifecycleStatus.generating)
            raise GenerationError(str(e) or e.__class__.__name__) from e

        review = needs_review(report, self.settings.review_risk_threshold)

        if review:
            ok = self.orders.compare_and_set(
                db,
                order_id,
                expected={"lifecycle_status": LifecycleStatus.generating},
                values={
                    "lifecycle_status": LifecycleStatus.review_required,
                    "whitelist_status": WhitelistStatus.pending,
                    "generation_completed_at": self.now_fn(),
                },
            )
            self._commit_or_conflict(db, ok, order_id)
            logger.warning(
                "generation needs review",
                extra={"order_id": order_id, "risk_score": report.riskScore, "flags": len(report.flags)},
            )
            return self.orders.get(db, order_id, fresh=True)

        ok = self.orders.compare_and_set(
            db,
            order_id,
            expected={"lifecycle_status": LifecycleStatus.generating},
            values={
                "lifecycle_status": LifecycleStatus.approved,
                "whitelist_status": WhitelistStatus.approved,
                "approved_at": self.now_fn(),
            },
        )
        self._commit_or_conflict(db, ok, order_id)
        return self._package_and_complete(db, order_id)

    def _call_generator(self, spec: GenerationSpec) -> GeneratorResult:
        """
        Bounded wait on the generator; on expiry the run is abandoned with the
        message "timeout" (the worker thread is left to finish on its own).
        """
        pool = ThreadPoolExecutor(max_workers=1, thread_name_prefix="generator")
        try:
            future = pool.submit(self.generator.generate, spec)
            try:
                result = future.result(timeout=self.settings.generation_timeout_seconds)
            except FutureTimeout as e:
                raise GeneratorTimeout("timeout") from e
        finally:
            pool.shutdown(wait=False)

        if not isinstance(result, GeneratorResult):
            try:
                result = GeneratorResult.model_validate(result)
            except PydanticValidationError as e:
                raise GeneratorError("AI generation returned invalid structure") from e
        if not result.files:
            raise GeneratorError("AI generation returned invalid structure")
        return result

    def _store_artifact(
        self,
        db: Session,
        order: Order,
        result: GeneratorResult,
        report: ComplianceReport,
        elapsed_ms: int,
    ) -> None:
        for pos, f in enumerate(result.files):
            db.add(OrderFile(order_id=order.id, position=pos, path=f.path, language=f.language, content=f.content))
        for finding in report.flags:
            db.add(
                ComplianceFlag(
                    order_id=order.id,
                    category=finding.category.value,
                    severity=finding.severity.value,
                    message=finding.message[:512],
                    file_path=finding.file,
                    line=finding.line,
                )
            )

        total_lines = result.totalLines or sum(len(f.content.splitlines()) for f in result.files)
        self.orders.compare_and_set(
            db,
            order.id,
            expected={"lifecycle_status": LifecycleStatus.generating},
            values={
                "package_manifest": result.packageManifest,
                "readme": result.readme,
                "total_files": result.totalFiles or len(result.files),
                "total_lines": total_lines,
                "risk_score": report.riskScore,
                "tokens_used": result.tokensUsed,
                "generation_time_ms": elapsed_ms,
            },
        )
        db.flush()

    # ---------------------------
    # REVIEW
    # ---------------------------

    def resolve_review(
        self,
        db: Session,
        order_id: str,
        *,
        decision: ReviewDecision,
        reviewer: str,
        notes: Optional[str] = None,
    ) -> Order:
        """
        approve: package and complete.
        reject:  mark failed (whitelist rejected) and refund the payment.
        """
        decision = ReviewDecision(decision)
        now = self.now_fn()
        review_fields = {"reviewed_by": reviewer, "reviewed_at": now, "review_notes": notes}

        if decision == ReviewDecision.approve:
            ok = self.orders.compare_and_set(
                db,
                order_id,
                expected={"lifecycle_status": LifecycleStatus.review_required},
                values={
                    "lifecycle_status": LifecycleStatus.approved,
                    "whitelist_status": WhitelistStatus.approved,
                    "approved_at": now,
                    **review_fields,
                },
            )
            self._require_in_review(db, ok, order_id)
            self.audit.write(db, order_id=order_id, stage=EventStage.review, message=f"Approved by {reviewer}")
            db.commit()
            logger.info("review approved", extra={"order_id": order_id, "reviewer": reviewer})
            return self._package_and_complete(db, order_id)

        ok = self.orders.compare_and_set(
            db,
            order_id,
            expected={"lifecycle_status": LifecycleStatus.review_required},
            values={
                "lifecycle_status": LifecycleStatus.failed,
                "whitelist_status": WhitelistStatus.rejected,
                **review_fields,
            },
        )
        self._require_in_review(db, ok, order_id)
        self.audit.write(
            db,
            order_id=order_id,
            stage=EventStage.review,
            message=f"Rejected by {reviewer}" + (f": {notes}" if notes else ""),
        )
        db.commit()
        logger.info("review rejected", extra={"order_id": order_id, "reviewer": reviewer})

        # a failed refund leaves the order failed + confirmed for the sweep
        self.refunds.refund(db, order_id, reason="Failed compliance review", admin_notes=notes)
        return self.orders.get(db, order_id, fresh=True)

    # ---------------------------
    # PACKAGE
    # ---------------------------

    def _package_and_complete(self, db: Session, order_id: str) -> Order:
        order = self.orders.get(db, order_id, fresh=True)
        files: List[GeneratedFile] = [
            GeneratedFile(path=f.path, content=f.content, language=f.language) for f in order.files
        ]
        try:
            pkg = self.packager.package(
                order_id=order.id,
                project_name=order.project_name,
                files=files,
                package_manifest=order.package_manifest,
                readme=order.readme,
            )
        except Exception as e:
            self._fail(db, order_id, EventStage.packaging, e, from_status=LifecycleStatus.approved)
            raise GenerationError(str(e) or e.__class__.__name__) from e

        values = {
            "lifecycle_status": LifecycleStatus.completed,
            "download_token": pkg.token,
            "zip_location": pkg.zip_location,
            "download_expires_at": pkg.expires_at,
            "download_count": 0,
            "max_downloads": self.settings.max_downloads,
        }
        if order.generation_completed_at is None:
            values["generation_completed_at"] = self.now_fn()

        ok = self.orders.compare_and_set(
            db,
            order_id,
            expected={"lifecycle_status": LifecycleStatus.approved},
            values=values,
        )
        self._commit_or_conflict(db, ok, order_id)
        order = self.orders.get(db, order_id, fresh=True)
        logger.info("order completed", extra={"order_id": order_id, "size_bytes": pkg.size_bytes})

        if self.notifier is not None:
            safe_notify(self.notifier.send_completion, order, self.download_url(order))
        return order

    def download_url(self, order: Order) -> str:
        base = self.settings.public_app_url.rstrip("/")
        return f"{base}{self.settings.api_prefix}/downloads/{order.download_token}"

    # ---------------------------
    # internals
    # ---------------------------

    def _fail(
        self,
        db: Session,
        order_id: str,
        stage: EventStage,
        exc: BaseException,
        *,
        from_status: LifecycleStatus,
    ) -> None:
        db.rollback()
        self.orders.compare_and_set(
            db,
            order_id,
            expected={"lifecycle_status": from_status},
            values={"lifecycle_status": LifecycleStatus.failed},
        )
        self.audit.write(
            db,
            order_id=order_id,
            stage=stage,
            message=str(exc) or exc.__class__.__name__,
            stack="".join(traceback.format_exception(type(exc), exc, exc.__traceback__)),
        )
        db.commit()
        logger.error("%s failed", stage.value, extra={"order_id": order_id, "error": str(exc)})

    def _commit_or_conflict(self, db: Session, ok: bool, order_id: str) -> None:
        if not ok:
            db.rollback()
            raise ConflictError(f"Order {order_id} changed state during generation.")
        db.commit()

    def _require_in_review(self, db: Session, ok: bool, order_id: str) -> None:
        if not ok:
            db.rollback()
            current = self.orders.get(db, order_id, fresh=True)
            raise ConflictError(f"Order is {current.lifecycle_status}, not awaiting review.")
