"""
Payments (Stripe)

Subscription checkout and the webhook that provisions a couple once the
payer completes checkout.

DESIGN DECISION: The Stripe SDK is synchronous, so every call goes through
asyncio.to_thread behind a small gateway class. PaymentService only talks
to the gateway, which keeps the provisioning logic testable without
network access.

CRITICAL BOUNDARIES:
- No webhook is acted on before its signature is verified
- Provisioning runs with the service-role repository (bypasses RLS)
"""

import asyncio
import json
from typing import Optional

import stripe
import structlog
from pydantic import BaseModel

from gossip_couple.audit.logger import AuditLogger
from gossip_couple.auth.session import AuthService
from gossip_couple.config import get_settings
from gossip_couple.config.settings import StripeSettings
from gossip_couple.models.entities import MemberRole, RiskTolerance, SubscriptionStatus
from gossip_couple.services.repository.interface import CoupleRepository, Table

logger = structlog.get_logger(__name__)


CHECKOUT_COMPLETED = "checkout.session.completed"
DEFAULT_COUPLE_NAME = "My Couple"
DEFAULT_ORIGIN = "http://localhost:5173"


class PaymentError(Exception):
    """Base exception for payment failures."""
    pass


class WebhookSignatureError(PaymentError):
    """Missing or invalid Stripe-Signature header."""
    pass


class CheckoutSession(BaseModel):
    url: str
    customer_id: str


class WebhookResult(BaseModel):
    received: bool = True
    event_type: Optional[str] = None
    couple_id: Optional[str] = None
    user_id: Optional[str] = None
    created_couple: bool = False


class StripeGateway:
    """Thin async wrapper over the Stripe SDK calls the app needs."""

    def __init__(self, settings: Optional[StripeSettings] = None):
        self._settings = settings or get_settings().stripe

    async def find_customer(self, email: str) -> Optional[str]:
        customers = await asyncio.to_thread(
            stripe.Customer.list,
            email=email,
            limit=1,
            api_key=self._settings.secret_key,
        )
        return customers.data[0].id if customers.data else None

    async def create_customer(self, email: str, user_id: str) -> str:
        customer = await asyncio.to_thread(
            stripe.Customer.create,
            email=email,
            metadata={"supabase_user_id": user_id},
            api_key=self._settings.secret_key,
        )
        return customer.id

    async def create_checkout_session(
        self,
        customer_id: str,
        user_id: str,
        origin: str,
    ) -> str:
        session = await asyncio.to_thread(
            stripe.checkout.Session.create,
            customer=customer_id,
            line_items=[{"price": self._settings.price_id, "quantity": 1}],
            mode="subscription",
            client_reference_id=user_id,
            success_url=f"{origin}/?session_id={{CHECKOUT_SESSION_ID}}",
            cancel_url=f"{origin}/",
            allow_promotion_codes=True,
            api_key=self._settings.secret_key,
        )
        return session.url

    def verify_webhook(self, body: str, signature: str) -> dict:
        """
        Verify the signature header and return the event as a plain dict.

        Raises:
            WebhookSignatureError
        """
        try:
            stripe.WebhookSignature.verify_header(
                body, signature, self._settings.webhook_secret
            )
        except stripe.SignatureVerificationError as e:
            raise WebhookSignatureError(f"Webhook signature verification failed: {e}")
        try:
            return json.loads(body)
        except ValueError as e:
            raise PaymentError(f"Malformed webhook payload: {e}")


class PaymentService:
    """
    Checkout and webhook handling.

    Args:
        repository: service-role repository
        auth: used to resolve a payer by email when the session has no
            client reference
    """

    def __init__(
        self,
        repository: CoupleRepository,
        gateway: Optional[StripeGateway] = None,
        auth: Optional[AuthService] = None,
        audit_logger: Optional[AuditLogger] = None,
        settings: Optional[StripeSettings] = None,
    ):
        self._repository = repository
        self._gateway = gateway or StripeGateway(settings)
        self._default_origin = settings.default_origin if settings else DEFAULT_ORIGIN
        self._auth = auth
        self._audit = audit_logger or AuditLogger()

    async def _stored_customer_id(self, user_id: str) -> Optional[str]:
        profile = await self._repository.select_one(Table.PROFILES, {"id": user_id})
        couple_id = (profile or {}).get("couple_id")
        if not couple_id:
            return None
        couple = await self._repository.select_one(Table.COUPLES, {"id": couple_id})
        return (couple or {}).get("stripe_customer_id")

    async def create_checkout_session(
        self,
        user_id: str,
        email: str,
        origin: Optional[str] = None,
    ) -> CheckoutSession:
        """
        Create a subscription checkout for the signed-in user.

        Customer resolution order: the couple's stored customer id, then
        an existing Stripe customer with the same email, then a new one.
        """
        customer_id = await self._stored_customer_id(user_id)
        if customer_id:
            logger.info("stripe_customer_reused", user_id=user_id)
        else:
            customer_id = await self._gateway.find_customer(email)
            if not customer_id:
                customer_id = await self._gateway.create_customer(email, user_id)
                logger.info("stripe_customer_created", user_id=user_id)

        try:
            url = await self._gateway.create_checkout_session(
                customer_id, user_id, origin or self._default_origin
            )
        except Exception as e:
            await self._audit.log_external_service_error("stripe", str(e))
            raise PaymentError(f"Failed to create checkout session: {e}")
        return CheckoutSession(url=url, customer_id=customer_id)

    async def handle_webhook(self, body: str, signature: Optional[str]) -> WebhookResult:
        """
        Verify and apply a Stripe webhook.

        Only checkout.session.completed changes state; every other event is
        acknowledged and ignored.

        Raises:
            WebhookSignatureError: missing or invalid signature
        """
        if not signature:
            raise WebhookSignatureError("No signature")
        event = self._gateway.verify_webhook(body, signature)
        event_type = event.get("type")
        if event_type != CHECKOUT_COMPLETED:
            return WebhookResult(event_type=event_type)

        session = (event.get("data") or {}).get("object") or {}
        return await self._provision(session)

    async def _resolve_user(self, session: dict) -> Optional[str]:
        user_id = session.get("client_reference_id")
        if user_id:
            return user_id
        email = (session.get("customer_details") or {}).get("email")
        if not email:
            logger.error("webhook_session_without_email")
            return None
        if self._auth is None:
            logger.error("webhook_cannot_resolve_email", reason="no admin auth")
            return None
        return await self._auth.find_user_id_by_email(email)

    async def _provision(self, session: dict) -> WebhookResult:
        customer_id = session.get("customer")
        user_id = await self._resolve_user(session)
        if not user_id:
            logger.error("webhook_user_not_found")
            return WebhookResult(event_type=CHECKOUT_COMPLETED)

        profile = await self._repository.select_one(Table.PROFILES, {"id": user_id})
        couple_id = (profile or {}).get("couple_id")

        if couple_id:
            await self._repository.update(
                Table.COUPLES,
                {"id": couple_id},
                {
                    "subscription_status": SubscriptionStatus.ACTIVE.value,
                    "stripe_customer_id": customer_id,
                },
            )
            created = False
        else:
            couple = await self._repository.insert(Table.COUPLES, {
                "name": DEFAULT_COUPLE_NAME,
                "subscription_status": SubscriptionStatus.ACTIVE.value,
                "stripe_customer_id": customer_id,
                "financial_risk_profile": RiskTolerance.MEDIUM.value,
            })
            couple_id = couple["id"]
            await self._repository.update(
                Table.PROFILES,
                {"id": user_id},
                {"couple_id": couple_id, "role": MemberRole.P1.value},
            )
            created = True

        await self._audit.log_couple_provisioned(couple_id, user_id, created)
        return WebhookResult(
            event_type=CHECKOUT_COMPLETED,
            couple_id=couple_id,
            user_id=user_id,
            created_couple=created,
        )
