# app/services/notification_service.py
from __future__ import annotations

import logging
import smtplib
import ssl
from concurrent.futures import ThreadPoolExecutor
from email.message import EmailMessage
from typing import Any, Callable, Optional

from app.core.config import Settings
from app.models.order import Order

logger = logging.getLogger(__name__)


def safe_notify(send: Callable[..., None], *args: Any) -> None:
    """Notification failures are logged and never reach the caller."""
    try:
        send(*args)
    except Exception:
        logger.exception("notification failed", extra={"notification": getattr(send, "__name__", repr(send))})


class EmailNotifier:
    """
    Customer emails. Fire-and-forget: sends run on a small background pool and
    a failed send is logged, never raised into the lifecycle.
    """
    def __init__(self, settings: Settings, *, executor: Optional[ThreadPoolExecutor] = None):
        self.settings = settings
        self._executor = executor or ThreadPoolExecutor(max_workers=2, thread_name_prefix="email")

    @property
    def enabled(self) -> bool:
        return bool(self.settings.smtp_host)

    def send_payment_confirmation(self, order: Order) -> None:
        subject = f"Payment received for {order.project_name}"
        body = (
            f"Hi {order.customer_name or 'there'},\n\n"
            f"We received your payment of {order.payment_amount} {order.payment_currency} "
            f"for order {order.id}. Generation has started; we will email you when your "
            f"project is ready to download.\n"
        )
        self._dispatch(order.customer_email, subject, body, order_id=order.id)

    def send_completion(self, order: Order, download_url: str) -> None:
        subject = f"{order.project_name} is ready"
        body = (
            f"Hi {order.customer_name or 'there'},\n\n"
            f"Your project is ready: {download_url}\n\n"
            f"The link can be used {order.max_downloads} times and expires at "
            f"{order.download_expires_at:%Y-%m-%d %H:%M} UTC.\n"
        )
        self._dispatch(order.customer_email, subject, body, order_id=order.id)

    def send_refund(self, order: Order, reason: str) -> None:
        subject = f"Refund issued for order {order.id}"
        body = (
            f"Hi {order.customer_name or 'there'},\n\n"
            f"We refunded {order.payment_amount} {order.payment_currency} for "
            f"{order.project_name}.\nReason: {reason}\n"
        )
        self._dispatch(order.customer_email, subject, body, order_id=order.id)

    def shutdown(self) -> None:
        self._executor.shutdown(wait=False)

    # ---------------------------
    # internals
    # ---------------------------

    def _dispatch(self, to_addr: Optional[str], subject: str, body: str, *, order_id: str) -> None:
        if not self.enabled or not to_addr:
            logger.debug("email skipped", extra={"order_id": order_id, "email_subject": subject})
            return
        self._executor.submit(self._send_safely, to_addr, subject, body, order_id)

    def _send_safely(self, to_addr: str, subject: str, body: str, order_id: str) -> None:
        try:
            self._send_via_smtp(to_addr, subject, body)
            logger.info("email sent", extra={"order_id": order_id, "email_subject": subject})
        except (smtplib.SMTPException, OSError):
            logger.exception("email failed", extra={"order_id": order_id, "email_subject": subject})

    def _send_via_smtp(self, to_addr: str, subject: str, body: str) -> None:
        s = self.settings
        msg = EmailMessage()
        msg["Subject"] = subject
        msg["From"] = s.email_from
        msg["To"] = to_addr
        msg.set_content(body)

        with smtplib.SMTP(s.smtp_host, s.smtp_port, timeout=30) as server:
            server.ehlo()
            if s.smtp_use_tls:
                server.starttls(context=ssl.create_default_context())
                server.ehlo()
            if s.smtp_username and s.smtp_password:
                server.login(s.smtp_username, s.smtp_password)
            server.send_message(msg)
