"""
Transactional email sender over a Resend-compatible REST API.

When no API key is configured the sender runs in demo mode: messages are
logged instead of delivered and every send reports success. Delivery
failures are logged and reported as False; ``send`` never raises, so a
failed notification cannot undo the state change that triggered it.
"""

from html import escape
from typing import Any, Optional

import httpx
import structlog

from zenith.models.enums import EmailKind

logger = structlog.get_logger(__name__)


class EmailDeliveryError(Exception):
    """Raised when the email provider rejects or fails a send."""

    pass


def _money(amount: Any) -> str:
    try:
        return f"${float(amount):.2f}"
    except (TypeError, ValueError):
        return "$0.00"


def render_email(kind: EmailKind, data: dict[str, Any]) -> tuple[str, str]:
    """
    Build the subject and HTML body for an email kind.

    Args:
        kind: Template to render
        data: Template values (name, plan, amount, urls, dates)

    Returns:
        (subject, html) tuple
    """
    name = escape(str(data.get("name") or "there"))

    if kind == EmailKind.WELCOME:
        subject = "Welcome to Zenith - Your Account is Ready!"
        body = (
            f"<h2>Hi {name}!</h2>"
            "<p>Your Zenith subscription is active.</p>"
            f'<p><a href="{escape(str(data.get("login_url", "")))}">Open your dashboard</a></p>'
        )
    elif kind == EmailKind.SUBSCRIPTION_UPDATE:
        old_plan = escape(str(data.get("old_plan") or "Previous Plan"))
        new_plan = escape(str(data.get("new_plan") or "Unknown"))
        subject = f"Your subscription changed to {new_plan}"
        body = (
            f"<h2>Hi {name}!</h2>"
            f"<p>Your plan changed from {old_plan} to <strong>{new_plan}</strong>.</p>"
            f"<p>Effective date: {escape(str(data.get('effective_date', '')))}</p>"
            f"<p>New amount: {_money(data.get('amount'))}</p>"
            f"<p>Next billing date: {escape(str(data.get('next_billing_date', 'N/A')))}</p>"
        )
    elif kind == EmailKind.PAYMENT_CONFIRMATION:
        subject = "Payment Confirmed"
        body = (
            f"<h2>Thank you, {name}!</h2>"
            f"<p>We received your payment of {_money(data.get('amount'))} "
            f"for the {escape(str(data.get('plan', 'Unknown')))} plan.</p>"
            f"<p>Next billing date: {escape(str(data.get('next_billing_date', 'N/A')))}</p>"
            f'<p><a href="{escape(str(data.get("invoice_url", "")))}">View invoice</a></p>'
        )
    elif kind == EmailKind.PAYMENT_FAILED:
        subject = "Action required: payment failed"
        body = (
            f"<h2>Hi {name},</h2>"
            f"<p>We could not process your payment of {_money(data.get('amount'))}.</p>"
            f"<p>Attempt {escape(str(data.get('attempt_count', 1)))}. "
            "Please update your payment method to keep your subscription active.</p>"
            f'<p><a href="{escape(str(data.get("billing_url", "")))}">Update billing details</a></p>'
        )
    else:
        raise ValueError(f"Unknown email kind: {kind}")

    html = f"<!DOCTYPE html><html><body>{body}<p>The Zenith Team</p></body></html>"
    return subject, html


class EmailSender:
    """
    Sends templated transactional emails.

    Attributes:
        from_email: Sender address
        demo_mode: True when no API key is configured (log instead of send)

    Example:
        >>> sender = EmailSender(api_key="", from_email="noreply@zenith.com")
        >>> await sender.send(EmailKind.WELCOME, "ada@example.com", {"name": "Ada"})
        True
    """

    def __init__(
        self,
        api_key: str = "",
        from_email: str = "noreply@zenith.com",
        base_url: str = "https://api.resend.com",
        timeout: float = 10.0,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        self.api_key = api_key
        self.from_email = from_email
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.demo_mode = not (api_key and from_email)
        self._http_client = http_client

        logger.info("email_sender_initialized", demo_mode=self.demo_mode)

    async def send(self, kind: EmailKind, to: str, data: dict[str, Any]) -> bool:
        """
        Render and send one email.

        Returns:
            True on delivery (or in demo mode), False on any failure
        """
        try:
            subject, html = render_email(kind, data)

            if self.demo_mode:
                logger.info(
                    "demo_email",
                    kind=kind.value,
                    to=to,
                    subject=subject,
                    from_email=self.from_email,
                )
                return True

            await self._deliver(to, subject, html)
            logger.info("email_sent", kind=kind.value, to=to)
            return True

        except Exception as e:
            logger.error("email_send_failed", kind=kind.value, to=to, error=str(e))
            return False

    async def _deliver(self, to: str, subject: str, html: str) -> None:
        payload = {"from": self.from_email, "to": [to], "subject": subject, "html": html}
        headers = {"Authorization": f"Bearer {self.api_key}"}

        if self._http_client is not None:
            response = await self._http_client.post(
                f"{self.base_url}/emails", json=payload, headers=headers
            )
        else:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.post(
                    f"{self.base_url}/emails", json=payload, headers=headers
                )

        if response.status_code >= 400:
            raise EmailDeliveryError(
                f"Email provider returned {response.status_code}: {response.text}"
            )
