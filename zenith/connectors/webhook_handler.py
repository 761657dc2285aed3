"""
Webhook event processor for payment provider notifications.

Turns one inbound provider event into local state changes plus side
effects. Each event type has its own handler, and every handler follows the
same shape:
1. Resolve the provider customer to a local user by email
2. Resolve the plan from the price id (unmapped ids become "Unknown")
3. Persist the state transition (subscription, invoice, user link)
4. Send at most one notification email, after the state write
5. Record a tracking event, best-effort

Processing is idempotent on the provider event id: the id is claimed before
any side effect, duplicates are acknowledged without re-running the
handler, and a failed handler releases its claim so a redelivery can retry.
Handler failures are dead-lettered to ``failed_webhooks``.
"""

from datetime import datetime
from typing import Any, Awaitable, Callable, Optional

import structlog
from pydantic import ValidationError

from zenith.connectors.email_client import EmailSender
from zenith.connectors.stripe_client import PaymentProviderClient
from zenith.models.analytics import AnalyticsEvent
from zenith.models.billing import (
    FailedWebhook,
    Invoice,
    ProviderEvent,
    Subscription,
    User,
    WebhookResult,
)
from zenith.models.enums import (
    EmailKind,
    InvoiceStatus,
    SubscriptionStatus,
    TrackedEvent,
    WebhookEventType,
)
from zenith.storage.base import StorageBackend

logger = structlog.get_logger(__name__)

UNKNOWN_PLAN = "Unknown"
DEFAULT_CUSTOMER_NAME = "Valued Customer"


class WebhookValidationError(Exception):
    """Raised when a webhook payload is missing its id, type or data object."""

    pass


class CustomerNotFoundError(Exception):
    """Raised when a provider customer cannot be matched to a local user."""

    pass


def _from_epoch(value: Optional[int]) -> Optional[datetime]:
    if not value:
        return None
    return datetime.utcfromtimestamp(value)


def _cents(value: Optional[int]) -> float:
    return (value or 0) / 100


def _first_price(obj: dict[str, Any], container: str) -> tuple[Optional[str], int]:
    """Price id and unit amount of the first line item, if any."""
    items = (obj.get(container) or {}).get("data") or []
    if not items:
        return None, 0
    price = items[0].get("price") or {}
    return price.get("id"), price.get("unit_amount") or 0


def _parse_status(value: Optional[str]) -> SubscriptionStatus:
    if not value:
        return SubscriptionStatus.ACTIVE
    try:
        return SubscriptionStatus(value)
    except ValueError:
        logger.warning("unknown_subscription_status", status=value)
        return SubscriptionStatus.INCOMPLETE


def _billing_date(value: Optional[int]) -> str:
    moment = _from_epoch(value)
    return moment.date().isoformat() if moment else "N/A"


def _invoice_id(invoice: dict[str, Any]) -> str:
    invoice_id = invoice.get("id")
    if not invoice_id:
        raise WebhookValidationError("Invoice object has no id")
    return invoice_id


class WebhookEventProcessor:
    """
    Dispatches provider events to per-type handlers.

    Attributes:
        storage: Relational store for users, subscriptions, invoices and events
        payment_client: Provider client used to resolve customers
        email_sender: Transactional email sender
        price_plan_mapping: Price id -> plan name
        app_url: Dashboard base URL used in email links

    Example:
        >>> processor = WebhookEventProcessor(storage, client, sender, {"price_pro": "Pro"})
        >>> event = processor.validate_payload(json.loads(body))
        >>> result = await processor.process_event(event)
        >>> result.success
        True
    """

    def __init__(
        self,
        storage: StorageBackend,
        payment_client: Optional[PaymentProviderClient],
        email_sender: EmailSender,
        price_plan_mapping: Optional[dict[str, str]] = None,
        app_url: str = "http://localhost:3000",
    ):
        self.storage = storage
        self.payment_client = payment_client
        self.email_sender = email_sender
        self.price_plan_mapping = dict(price_plan_mapping or {})
        self.app_url = app_url.rstrip("/")

        self._handlers: dict[str, Callable[[dict[str, Any]], Awaitable[str]]] = {
            WebhookEventType.SUBSCRIPTION_CREATED.value: self.handle_subscription_created,
            WebhookEventType.SUBSCRIPTION_UPDATED.value: self.handle_subscription_updated,
            WebhookEventType.SUBSCRIPTION_DELETED.value: self.handle_subscription_deleted,
            WebhookEventType.INVOICE_PAYMENT_SUCCEEDED.value: self.handle_invoice_payment_succeeded,
            WebhookEventType.INVOICE_PAYMENT_FAILED.value: self.handle_invoice_payment_failed,
            WebhookEventType.CUSTOMER_CREATED.value: self.handle_customer_created,
            WebhookEventType.CUSTOMER_UPDATED.value: self.handle_customer_updated,
            WebhookEventType.CHECKOUT_SESSION_COMPLETED.value: self.handle_checkout_completed,
        }

    # =========================================================================
    # Entry Points
    # =========================================================================

    @staticmethod
    def validate_payload(payload: Any) -> ProviderEvent:
        """
        Validate a parsed webhook body.

        Raises:
            WebhookValidationError: If id, type or data.object is missing
        """
        if not isinstance(payload, dict):
            raise WebhookValidationError("Webhook payload must be a JSON object")
        try:
            return ProviderEvent.model_validate(payload)
        except ValidationError as e:
            logger.warning("webhook_payload_invalid", errors=e.error_count())
            raise WebhookValidationError(f"Invalid webhook payload: {e}") from e

    async def process_event(self, event: ProviderEvent) -> WebhookResult:
        """
        Process one validated event. Never raises.

        Returns:
            WebhookResult with ``success=False`` only when the handler failed
        """
        with structlog.contextvars.bound_contextvars(event_id=event.id, event_type=event.type):
            handler = self._handlers.get(event.type)
            if handler is None:
                logger.info("webhook_event_unhandled")
                return WebhookResult(event_id=event.id, event_type=event.type, action="ignored")

            try:
                claimed = self.storage.claim_webhook_event(event.id, event.type)
            except Exception as e:
                logger.error("webhook_claim_failed", error=str(e))
                return WebhookResult(
                    event_id=event.id,
                    event_type=event.type,
                    success=False,
                    action="failed",
                    error=str(e),
                )

            if not claimed:
                logger.info("webhook_event_duplicate")
                return WebhookResult(event_id=event.id, event_type=event.type, action="duplicate")

            try:
                action = await handler(event.object)
                logger.info("webhook_event_processed", action=action)
                return WebhookResult(event_id=event.id, event_type=event.type, action=action)

            except CustomerNotFoundError as e:
                logger.warning("webhook_customer_not_found", reason=str(e))
                return WebhookResult(
                    event_id=event.id, event_type=event.type, action="user_not_found"
                )

            except Exception as e:
                logger.error("webhook_handler_failed", error=str(e), exc_info=True)
                self._release(event.id)
                self.handle_webhook_error(e, event)
                return WebhookResult(
                    event_id=event.id,
                    event_type=event.type,
                    success=False,
                    action="failed",
                    error=str(e),
                )

    def handle_webhook_error(self, error: Exception, event: ProviderEvent) -> None:
        """Persist a dead-letter record for manual replay. Storage failures are logged."""
        try:
            self.storage.write_failed_webhook(
                FailedWebhook(
                    event_id=event.id,
                    event_type=event.type,
                    error=str(error),
                    payload=event.model_dump(mode="json"),
                )
            )
        except Exception as e:
            logger.error("failed_webhook_store_error", error=str(e))

    # =========================================================================
    # Subscription Handlers
    # =========================================================================

    async def handle_subscription_created(self, subscription: dict[str, Any]) -> str:
        """Store the subscription, send a welcome email, track the signup."""
        user, customer = await self._resolve_user(subscription.get("customer"))
        price_id, unit_amount = _first_price(subscription, "items")
        plan = self.get_plan_from_price_id(price_id)

        self._link_customer(user, customer.get("id"))
        self.storage.upsert_subscription(self._build_subscription(subscription, user, plan))

        await self.email_sender.send(
            EmailKind.WELCOME,
            user.email,
            {
                "name": self._display_name(user, customer),
                "email": user.email,
                "login_url": f"{self.app_url}/dashboard",
            },
        )
        self.track_event(
            TrackedEvent.SUBSCRIPTION_CREATED,
            user.user_id,
            {
                "subscription_id": subscription.get("id"),
                "plan": plan,
                "amount": _cents(unit_amount),
            },
        )
        return "subscription_created"

    async def handle_subscription_updated(self, subscription: dict[str, Any]) -> str:
        """Store the new state; notify and track only when the plan changed."""
        user, customer = await self._resolve_user(subscription.get("customer"))
        price_id, unit_amount = _first_price(subscription, "items")
        new_plan = self.get_plan_from_price_id(price_id)

        previous = self.storage.upsert_subscription(
            self._build_subscription(subscription, user, new_plan)
        )
        old_plan = previous.plan if previous else None

        if new_plan == old_plan:
            logger.info("subscription_plan_unchanged", plan=new_plan)
            return "subscription_updated"

        await self.email_sender.send(
            EmailKind.SUBSCRIPTION_UPDATE,
            user.email,
            {
                "name": self._display_name(user, customer),
                "old_plan": old_plan or "Previous Plan",
                "new_plan": new_plan,
                "effective_date": datetime.utcnow().date().isoformat(),
                "next_billing_date": _billing_date(subscription.get("current_period_end")),
                "amount": _cents(unit_amount),
            },
        )
        self.track_event(
            TrackedEvent.PLAN_CHANGED,
            user.user_id,
            {
                "subscription_id": subscription.get("id"),
                "old_plan": old_plan,
                "new_plan": new_plan,
                "amount": _cents(unit_amount),
            },
        )
        return "plan_changed"

    async def handle_subscription_deleted(self, subscription: dict[str, Any]) -> str:
        """Mark the subscription canceled and track the churn."""
        user, _ = await self._resolve_user(subscription.get("customer"))
        price_id, _ = _first_price(subscription, "items")

        record = self._build_subscription(
            subscription, user, self.get_plan_from_price_id(price_id)
        )
        canceled_at = record.canceled_at or datetime.utcnow()
        self.storage.upsert_subscription(
            record.model_copy(
                update={"status": SubscriptionStatus.CANCELED, "canceled_at": canceled_at}
            )
        )

        self.track_event(
            TrackedEvent.SUBSCRIPTION_CANCELED,
            user.user_id,
            {
                "subscription_id": subscription.get("id"),
                "canceled_at": canceled_at.isoformat(),
                "reason": "provider_webhook",
            },
        )
        return "subscription_canceled"

    # =========================================================================
    # Invoice Handlers
    # =========================================================================

    async def handle_invoice_payment_succeeded(self, invoice: dict[str, Any]) -> str:
        """Record the paid invoice and send a payment confirmation."""
        user, customer = await self._resolve_user(invoice.get("customer"))
        price_id, _ = _first_price(invoice, "lines")
        plan = self.get_plan_from_price_id(price_id)
        amount = _cents(invoice.get("amount_paid"))
        invoice_url = invoice.get("hosted_invoice_url") or f"{self.app_url}/billing"

        self.storage.write_invoice(
            Invoice(
                invoice_id=_invoice_id(invoice),
                user_id=user.user_id,
                amount=amount,
                status=InvoiceStatus.PAID,
                plan=plan,
                hosted_invoice_url=invoice_url,
                period_end=_from_epoch(invoice.get("period_end")),
                attempt_count=invoice.get("attempt_count") or 0,
            )
        )

        await self.email_sender.send(
            EmailKind.PAYMENT_CONFIRMATION,
            user.email,
            {
                "name": self._display_name(user, customer),
                "amount": amount,
                "plan": plan,
                "invoice_url": invoice_url,
                "next_billing_date": _billing_date(invoice.get("period_end")),
            },
        )
        self.track_event(
            TrackedEvent.PAYMENT_SUCCEEDED,
            user.user_id,
            {"invoice_id": invoice.get("id"), "amount": amount, "plan": plan},
        )
        return "payment_recorded"

    async def handle_invoice_payment_failed(self, invoice: dict[str, Any]) -> str:
        """Record the failed attempt, mark the subscription past due, notify."""
        user, customer = await self._resolve_user(invoice.get("customer"))
        price_id, _ = _first_price(invoice, "lines")
        plan = self.get_plan_from_price_id(price_id)
        amount = _cents(invoice.get("amount_due"))
        attempt_count = invoice.get("attempt_count") or 0

        self.storage.write_invoice(
            Invoice(
                invoice_id=_invoice_id(invoice),
                user_id=user.user_id,
                amount=amount,
                status=InvoiceStatus.FAILED,
                plan=plan,
                hosted_invoice_url=invoice.get("hosted_invoice_url"),
                period_end=_from_epoch(invoice.get("period_end")),
                attempt_count=attempt_count,
            )
        )

        self.storage.set_subscription_status(user.user_id, SubscriptionStatus.PAST_DUE)

        await self.email_sender.send(
            EmailKind.PAYMENT_FAILED,
            user.email,
            {
                "name": self._display_name(user, customer),
                "amount": amount,
                "attempt_count": attempt_count,
                "billing_url": f"{self.app_url}/billing",
            },
        )
        self.track_event(
            TrackedEvent.PAYMENT_FAILED,
            user.user_id,
            {"invoice_id": invoice.get("id"), "amount": amount, "attempt_count": attempt_count},
        )
        return "payment_failure_recorded"

    # =========================================================================
    # Customer and Checkout Handlers
    # =========================================================================

    async def handle_customer_created(self, customer: dict[str, Any]) -> str:
        """Link the provider customer id to the matching local user."""
        email = customer.get("email")
        if not email:
            logger.warning("customer_created_without_email", customer_id=customer.get("id"))
            return "skipped"

        user = self.storage.find_user_by_email(email)
        if user is None:
            raise CustomerNotFoundError(f"No user for email {email}")

        self._link_customer(user, customer.get("id"))
        return "customer_linked"

    async def handle_customer_updated(self, customer: dict[str, Any]) -> str:
        """Sync the user's display name when the provider's copy changed."""
        email = customer.get("email")
        if not email:
            logger.warning("customer_updated_without_email", customer_id=customer.get("id"))
            return "skipped"

        user = self.storage.find_user_by_email(email)
        if user is None:
            raise CustomerNotFoundError(f"No user for email {email}")

        name = customer.get("name")
        if name and name != user.name:
            self.storage.update_user(user.user_id, name=name)
            return "customer_synced"
        return "no_change"

    async def handle_checkout_completed(self, session: dict[str, Any]) -> str:
        """Track a completed checkout for the matching user."""
        email = (session.get("customer_details") or {}).get("email") or session.get(
            "customer_email"
        )
        customer_id = session.get("customer")

        if email:
            user = self.storage.find_user_by_email(email)
            if user is None:
                raise CustomerNotFoundError(f"No user for email {email}")
        else:
            user, _ = await self._resolve_user(customer_id)

        self._link_customer(user, customer_id)
        self.track_event(
            TrackedEvent.CHECKOUT_COMPLETED,
            user.user_id,
            {
                "session_id": session.get("id"),
                "subscription_id": session.get("subscription"),
                "amount": _cents(session.get("amount_total")),
            },
        )
        return "checkout_completed"

    # =========================================================================
    # Helpers
    # =========================================================================

    def get_plan_from_price_id(self, price_id: Optional[str]) -> str:
        """Map a price id to a plan name; unmapped or missing ids map to "Unknown"."""
        if not price_id:
            return UNKNOWN_PLAN
        return self.price_plan_mapping.get(price_id, UNKNOWN_PLAN)

    def track_event(self, name: TrackedEvent, user_id: str, properties: dict[str, Any]) -> None:
        """Append a tracking event. Failures are logged and never raised."""
        try:
            self.storage.write_analytics_event(
                AnalyticsEvent(event_name=name.value, user_id=user_id, properties=properties)
            )
            logger.debug("tracking_event_recorded", tracked_event=name.value)
        except Exception as e:
            logger.error("tracking_event_failed", tracked_event=name.value, error=str(e))

    async def _resolve_user(self, customer_id: Optional[str]) -> tuple[User, dict[str, Any]]:
        if not customer_id:
            raise CustomerNotFoundError("Event has no customer id")
        if self.payment_client is None:
            raise CustomerNotFoundError("Payment provider client is not configured")

        customer = await self.payment_client.retrieve_customer(customer_id)
        email = customer.get("email")
        if not email:
            raise CustomerNotFoundError(f"Customer {customer_id} has no email")

        user = self.storage.find_user_by_email(email)
        if user is None:
            raise CustomerNotFoundError(f"No user for email {email}")
        return user, customer

    def _link_customer(self, user: User, customer_id: Optional[str]) -> None:
        if customer_id and user.stripe_customer_id != customer_id:
            self.storage.update_user(user.user_id, stripe_customer_id=customer_id)
            logger.info("customer_linked", user_id=user.user_id, customer_id=customer_id)

    def _release(self, event_id: str) -> None:
        try:
            self.storage.release_webhook_event(event_id)
        except Exception as e:
            logger.error("webhook_release_failed", error=str(e))

    @staticmethod
    def _display_name(user: User, customer: dict[str, Any]) -> str:
        return user.name or customer.get("name") or DEFAULT_CUSTOMER_NAME

    @staticmethod
    def _build_subscription(subscription: dict[str, Any], user: User, plan: str) -> Subscription:
        return Subscription(
            user_id=user.user_id,
            stripe_subscription_id=subscription.get("id") or "",
            plan=plan,
            status=_parse_status(subscription.get("status")),
            current_period_start=_from_epoch(subscription.get("current_period_start")),
            current_period_end=_from_epoch(subscription.get("current_period_end")),
            cancel_at_period_end=bool(subscription.get("cancel_at_period_end")),
            canceled_at=_from_epoch(subscription.get("canceled_at")),
        )
