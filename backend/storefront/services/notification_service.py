# Overview: Service-layer operations for transactional email; renders templates and hands off to SMTP.

"""
Transactional Email

Order confirmation, status update and pickup reminder emails are rendered
from Jinja templates under templates/email/ (HTML + plain text) and sent
through the app's Mailer.

Every send_* function returns a NotificationResult and never raises, so a
mail outage cannot fail the order operation that triggered it.
"""

from __future__ import annotations

import smtplib
from dataclasses import dataclass
from email.message import EmailMessage
from email.utils import make_msgid, parseaddr
from typing import Callable

from flask import current_app, render_template

from ..models.orders import ORDER_STATUS_LABELS


STATUS_MESSAGES = {
    "paid": "Your payment has been confirmed and your order is now being prepared!",
    "preparing": "Your order is currently being prepared by our kitchen team.",
    "ready": "Great news! Your order is ready for pickup.",
    "completed": "Your order has been completed. Thank you for choosing {restaurant}!",
    "cancelled": "Your order has been cancelled. If you have any questions, please contact us.",
}

STATUS_COLORS = {
    "paid": "#28a745",
    "preparing": "#ffc107",
    "ready": "#28a745",
    "completed": "#28a745",
    "cancelled": "#dc3545",
}

DEFAULT_STATUS_COLOR = "#7D9D74"


class MailerError(Exception):
    """Raised when the SMTP relay rejects or cannot take a message."""
    pass


@dataclass
class NotificationResult:
    success: bool
    message_id: str | None = None
    message: str | None = None
    error: str | None = None

    def to_dict(self) -> dict:
        if self.success:
            return {"success": True, "messageId": self.message_id, "message": self.message}
        return {"success": False, "error": self.error}


class Mailer:
    """
    SMTP sender.

    transport, when given, receives each EmailMessage instead of the SMTP
    relay (tests use a recording transport). With no transport and no
    server configured, sending raises MailerError.
    """

    def __init__(
        self,
        server: str = "",
        port: int = 587,
        username: str = "",
        password: str = "",
        use_tls: bool = True,
        sender: str = "",
        timeout: float = 10,
        transport: Callable[[EmailMessage], None] | None = None,
    ):
        self.server = server
        self.port = port
        self.username = username
        self.password = password
        self.use_tls = use_tls
        self.sender = sender
        self.timeout = timeout
        self.transport = transport

    @classmethod
    def from_config(cls, config) -> "Mailer":
        return cls(
            server=config.get("MAIL_SERVER", ""),
            port=config.get("MAIL_PORT", 587),
            username=config.get("MAIL_USERNAME", ""),
            password=config.get("MAIL_PASSWORD", ""),
            use_tls=config.get("MAIL_USE_TLS", True),
            sender=config.get("MAIL_FROM", ""),
            timeout=config.get("MAIL_TIMEOUT_SECONDS", 10),
        )

    def _msgid_domain(self) -> str:
        # Avoids a hostname lookup in make_msgid
        _name, address = parseaddr(self.sender)
        return address.rpartition("@")[2] or "localhost"

    @property
    def is_configured(self) -> bool:
        return self.transport is not None or bool(self.server)

    def _connect(self) -> smtplib.SMTP:
        smtp = smtplib.SMTP(self.server, self.port, timeout=self.timeout)
        if self.use_tls:
            smtp.starttls()
        if self.username and self.password:
            smtp.login(self.username, self.password)
        return smtp

    def send(self, to: str, subject: str, html_body: str, text_body: str) -> str:
        """Send a multipart message. Returns its Message-ID."""
        if not self.is_configured:
            raise MailerError("Email is not configured")

        msg = EmailMessage()
        msg["Subject"] = subject
        msg["From"] = self.sender
        msg["To"] = to
        msg["Message-ID"] = make_msgid(domain=self._msgid_domain())
        msg.set_content(text_body)
        msg.add_alternative(html_body, subtype="html")

        if self.transport is not None:
            self.transport(msg)
            return msg["Message-ID"]

        try:
            with self._connect() as smtp:
                smtp.send_message(msg)
        except (smtplib.SMTPException, OSError) as e:
            raise MailerError(str(e)) from e
        return msg["Message-ID"]

    def verify(self) -> None:
        """Open and close a relay connection (login included)."""
        if not self.is_configured:
            raise MailerError("Email is not configured")
        if self.transport is not None:
            return
        try:
            with self._connect() as smtp:
                smtp.noop()
        except (smtplib.SMTPException, OSError) as e:
            raise MailerError(str(e)) from e


def get_mailer() -> Mailer:
    return current_app.extensions["storefront.mailer"]


# =============================================================================
# RENDER + SEND
# =============================================================================

def _context(order, customer: dict, **extra) -> dict:
    cfg = current_app.config
    context = {
        "restaurant_name": cfg.get("RESTAURANT_NAME", "Lentil Life"),
        "pickup_location": cfg.get("PICKUP_LOCATION", ""),
        "order": order,
        "customer": customer,
        "items": order.items_for_display(),
    }
    context.update(extra)
    return context


def _deliver(kind: str, to: str | None, subject: str, template: str, context: dict, sent_message: str) -> NotificationResult:
    if not to:
        return NotificationResult(success=False, error="Customer email is required")
    try:
        html_body = render_template(f"email/{template}.html", **context)
        text_body = render_template(f"email/{template}.txt", **context)
        message_id = get_mailer().send(to, subject, html_body, text_body)
    except MailerError as e:
        current_app.logger.warning("Failed to send %s email to %s: %s", kind, to, e)
        return NotificationResult(success=False, error=str(e))
    except Exception as e:
        current_app.logger.exception("Failed to send %s email", kind)
        return NotificationResult(success=False, error=str(e))
    return NotificationResult(success=True, message_id=message_id, message=sent_message)


def send_order_confirmation(order, customer: dict, points_to_earn: int = 0) -> NotificationResult:
    context = _context(order, customer, points_to_earn=points_to_earn)
    subject = f"Order Confirmation #{order.id} - {context['restaurant_name']}"
    return _deliver(
        "order confirmation",
        customer.get("email"),
        subject,
        "order_confirmation",
        context,
        "Order confirmation email sent successfully",
    )


def status_message(status: str, label: str, restaurant_name: str) -> str:
    template = STATUS_MESSAGES.get(status)
    if template is None:
        return f"Your order status has been updated to: {label}"
    return template.format(restaurant=restaurant_name)


def send_status_update(order, customer: dict, new_status: str, points: dict | None = None) -> NotificationResult:
    label = ORDER_STATUS_LABELS.get(new_status, new_status)
    context = _context(order, customer, points=points, status_label=label)
    context["status_message"] = status_message(new_status, label, context["restaurant_name"])
    context["status_color"] = STATUS_COLORS.get(new_status, DEFAULT_STATUS_COLOR)
    subject = f"Order Update #{order.id} - {label} - {context['restaurant_name']}"
    return _deliver(
        "status update",
        customer.get("email"),
        subject,
        "status_update",
        context,
        "Order status update email sent successfully",
    )


def send_pickup_reminder(order, customer: dict) -> NotificationResult:
    context = _context(order, customer)
    subject = f"Pickup Reminder #{order.id} - {context['restaurant_name']}"
    return _deliver(
        "pickup reminder",
        customer.get("email"),
        subject,
        "pickup_reminder",
        context,
        "Pickup reminder email sent successfully",
    )


def test_configuration() -> NotificationResult:
    try:
        get_mailer().verify()
    except MailerError as e:
        return NotificationResult(success=False, error=str(e))
    return NotificationResult(success=True, message="Email configuration is valid")
