"""
PayPal peer-network adapter.

Implements:
- Order creation and capture for one-time checkouts
- Subscription provisioning saga (product -> billing plan -> subscription)
- Subscription cancellation
- Webhook header checks and signature verification through the REST API
"""
import json
from decimal import Decimal
from typing import Any, Dict, Mapping, Optional, Sequence, Tuple, Union

import httpx
import structlog

from payment_orchestrator.config import Settings, get_settings
from payment_orchestrator.core.models import (
    DEFAULT_CURRENCY,
    CheckoutSession,
    ProvisionedBillingResources,
    SubscriptionPlanRef,
    WebhookEvent,
    format_amount,
)
from payment_orchestrator.core.pricing import PricingCatalog, StaticPricingCatalog
from payment_orchestrator.core.provider import PaymentProvider
from payment_orchestrator.core.saga import Saga, SagaExecutionError
from payment_orchestrator.exceptions import (
    AuthenticationError,
    DecodingError,
    PaymentError,
    ProviderAPIError,
    SubscriptionProvisioningError,
)
from payment_orchestrator.integrations.paypal_auth import PayPalTokenManager
from payment_orchestrator.monitoring.metrics import (
    subscription_provisioning_total,
    track_provider_call,
)
from payment_orchestrator.utils import get_header

logger = structlog.get_logger(__name__)

ORDERS_PATH = "/v2/checkout/orders"
PRODUCTS_PATH = "/v1/catalogs/products"
PLANS_PATH = "/v1/billing/plans"
SUBSCRIPTIONS_PATH = "/v1/billing/subscriptions"
VERIFY_WEBHOOK_PATH = "/v1/notifications/verify-webhook-signature"

TRANSMISSION_ID_HEADER = "PAYPAL-TRANSMISSION-ID"
TRANSMISSION_TIME_HEADER = "PAYPAL-TRANSMISSION-TIME"
TRANSMISSION_SIG_HEADER = "PAYPAL-TRANSMISSION-SIG"
CERT_URL_HEADER = "PAYPAL-CERT-URL"
AUTH_ALGO_HEADER = "PAYPAL-AUTH-ALGO"
REQUIRED_WEBHOOK_HEADERS = (
    TRANSMISSION_ID_HEADER,
    CERT_URL_HEADER,
    AUTH_ALGO_HEADER,
    TRANSMISSION_SIG_HEADER,
)

# PayPal rejects return URLs with template placeholders.
_UNSUPPORTED_PLACEHOLDERS = ("{{subscription_id}}", "{subscription_id}")


def find_link(payload: Mapping[str, Any], rel: str) -> str:
    """Return the href of the first HATEOAS link with the given relation."""
    for link in payload.get("links") or []:
        if isinstance(link, Mapping) and link.get("rel") == rel:
            return link.get("href") or ""
    return ""


def strip_placeholders(url: str) -> str:
    for placeholder in _UNSUPPORTED_PLACEHOLDERS:
        url = url.replace(placeholder, "")
    return url


def _require_id(payload: Mapping[str, Any], operation: str) -> str:
    resource_id = payload.get("id")
    if not isinstance(resource_id, str) or not resource_id:
        raise DecodingError(f"{operation}: response carries no id")
    return resource_id


class PayPalProvider(PaymentProvider):
    """Peer-network adapter talking to the PayPal REST API."""

    name = "paypal"

    def __init__(
        self,
        settings: Optional[Settings] = None,
        token_manager: Optional[PayPalTokenManager] = None,
        pricing: Optional[PricingCatalog] = None,
    ):
        """
        Initialize PayPal adapter.

        Args:
            settings: Optional settings (uses cached settings if not provided)
            token_manager: Optional token manager shared with other adapters
            pricing: Optional pricing catalog (default plans if not provided)
        """
        self.settings = settings or get_settings()
        self.token_manager = token_manager or PayPalTokenManager(settings=self.settings)
        self.pricing = pricing or StaticPricingCatalog()

    async def _request(
        self,
        operation: str,
        method: str,
        path: str,
        json_body: Optional[Dict[str, Any]] = None,
        expected: Sequence[int] = (200, 201),
    ) -> Dict[str, Any]:
        """
        Make one authenticated REST call.

        Raises:
            ConfigurationError: If credentials are missing
            ProviderAPIError: On transport failure or an unexpected status
            DecodingError: If the body is not JSON
        """
        token = await self.token_manager.ensure_fresh_token()
        client = self.token_manager.http_client
        headers = {
            "Authorization": f"Bearer {token}",
            "Accept": "application/json",
            "Content-Type": "application/json",
            "Prefer": "return=representation",
        }

        with track_provider_call(self.name, operation):
            try:
                response = await client.request(method, path, json=json_body, headers=headers)
            except httpx.HTTPError as e:
                logger.error("paypal_request_failed", operation=operation, error=str(e))
                raise ProviderAPIError(
                    f"Failed to send request: {e}",
                    provider=self.name,
                    operation=operation,
                ) from e

            if response.status_code not in expected:
                if response.status_code == 401:
                    self.token_manager.invalidate()
                logger.error(
                    "paypal_api_error",
                    operation=operation,
                    status_code=response.status_code,
                    body=response.text,
                )
                raise ProviderAPIError(
                    f"{operation} failed",
                    provider=self.name,
                    operation=operation,
                    status_code=response.status_code,
                    body=response.text,
                    code=_error_name(response),
                )

        if response.status_code == 204 or not response.content:
            return {}
        try:
            payload = response.json()
        except ValueError as e:
            raise DecodingError(f"{operation}: response is not JSON: {e}") from e
        if not isinstance(payload, dict):
            raise DecodingError(f"{operation}: unexpected response shape")
        return payload

    async def create_checkout(
        self, order_id: str, amount_usd: Union[float, Decimal], description: str
    ) -> CheckoutSession:
        """Create a PayPal order awaiting buyer approval."""
        amount = self.validate_checkout_request(order_id, amount_usd)
        self.token_manager.ensure_initialized()

        logger.info("creating_paypal_order", order_id=order_id, amount=format_amount(amount))

        order_request = {
            "intent": "CAPTURE",
            "purchase_units": [
                {
                    "reference_id": order_id,
                    "custom_id": order_id,
                    "amount": {
                        "currency_code": DEFAULT_CURRENCY,
                        "value": format_amount(amount),
                    },
                    "description": description,
                }
            ],
            "application_context": {
                "brand_name": self.settings.brand_name,
                "return_url": self.settings.paypal_success_url.replace("{order_id}", order_id),
                "cancel_url": self.settings.paypal_cancel_url,
            },
        }
        payload = await self._request(
            "create_order", "POST", ORDERS_PATH, order_request, expected=(201,)
        )

        paypal_order_id = _require_id(payload, "create_order")
        approve_url = find_link(payload, "approve")
        if not approve_url:
            logger.warning("paypal_order_missing_approve_link", paypal_order_id=paypal_order_id)

        logger.info("paypal_order_created", order_id=order_id, paypal_order_id=paypal_order_id)

        return CheckoutSession(
            provider=self.name,
            provider_session_id=paypal_order_id,
            redirect_url=approve_url,
            order_id=order_id,
            amount_usd=amount,
            description=description,
        )

    async def capture_order(self, paypal_order_id: str) -> str:
        """
        Capture an approved order.

        Returns:
            str: The capture (settlement) ID

        Raises:
            DecodingError: If the response carries no capture
        """
        logger.info("capturing_paypal_order", paypal_order_id=paypal_order_id)

        payload = await self._request(
            "capture_order",
            "POST",
            f"{ORDERS_PATH}/{paypal_order_id}/capture",
            expected=(200, 201),
        )

        try:
            capture_id = payload["purchase_units"][0]["payments"]["captures"][0]["id"]
        except (KeyError, IndexError, TypeError) as e:
            raise DecodingError(
                f"Failed to extract payment ID from capture of {paypal_order_id}"
            ) from e
        if not isinstance(capture_id, str) or not capture_id:
            raise DecodingError(f"Failed to extract payment ID from capture of {paypal_order_id}")

        logger.info(
            "paypal_order_captured",
            paypal_order_id=paypal_order_id,
            capture_id=capture_id,
        )
        return capture_id

    async def create_subscription(self, user_id: str, plan_type: str) -> Tuple[str, str]:
        """
        Provision product, billing plan and subscription, in that order.

        Returns:
            Tuple[str, str]: Subscription ID and approve URL (empty if absent)

        Raises:
            NotFoundError: If the plan type is unknown
            SubscriptionProvisioningError: If any provisioning step fails
        """
        plan = self.pricing.get_plan(plan_type)
        self.token_manager.ensure_initialized()

        resources = ProvisionedBillingResources()
        saga = Saga(
            name="paypal_subscription_provisioning",
            compensate=self.settings.compensate_failed_provisioning,
        )

        async def create_product(ctx: Dict[str, Any]) -> str:
            resources.product_id = await self._create_product(plan)
            return resources.product_id

        async def create_plan(ctx: Dict[str, Any]) -> str:
            resources.plan_id = await self._create_billing_plan(
                ctx["create_product_result"], plan
            )
            return resources.plan_id

        async def deactivate_plan(ctx: Dict[str, Any], plan_id: str) -> None:
            await self._request(
                "deactivate_plan",
                "POST",
                f"{PLANS_PATH}/{plan_id}/deactivate",
                expected=(204, 200),
            )

        async def create_subscription(ctx: Dict[str, Any]) -> Tuple[str, str]:
            subscription_id, approve_url = await self._create_billing_subscription(
                ctx["create_plan_result"], user_id, plan_type
            )
            resources.subscription_id = subscription_id
            return subscription_id, approve_url

        saga.add_step("create_product", create_product)
        saga.add_step("create_plan", create_plan, deactivate_plan)
        saga.add_step("create_subscription", create_subscription)

        logger.info("provisioning_paypal_subscription", user_id=user_id, plan_type=plan_type)

        try:
            context = await saga.execute()
        except SagaExecutionError as e:
            result = "compensated" if saga.compensate_on_failure else "failed"
            subscription_provisioning_total.labels(provider=self.name, result=result).inc()
            logger.error(
                "paypal_subscription_provisioning_failed",
                user_id=user_id,
                plan_type=plan_type,
                failed_step=e.failed_step,
                orphaned_product_id=resources.product_id,
                plan_id=resources.plan_id,
                error=str(e.cause),
            )
            cause = e.cause if isinstance(e.cause, PaymentError) else None
            raise SubscriptionProvisioningError(
                f"Subscription provisioning failed at {e.failed_step}: {e.cause}",
                failed_step=e.failed_step,
                resources=resources,
                cause=cause,
            ) from e.cause

        subscription_id, approve_url = context["create_subscription_result"]
        subscription_provisioning_total.labels(provider=self.name, result="completed").inc()
        logger.info(
            "paypal_subscription_provisioned",
            user_id=user_id,
            plan_type=plan_type,
            **resources.as_dict(),
        )
        return subscription_id, approve_url

    async def _create_product(self, plan: SubscriptionPlanRef) -> str:
        payload = await self._request(
            "create_product",
            "POST",
            PRODUCTS_PATH,
            {
                "name": plan.name,
                "description": f"{self.settings.brand_name} {plan.name} Plan",
                "type": "SERVICE",
            },
        )
        return _require_id(payload, "create_product")

    async def _create_billing_plan(self, product_id: str, plan: SubscriptionPlanRef) -> str:
        payload = await self._request(
            "create_plan",
            "POST",
            PLANS_PATH,
            {
                "product_id": product_id,
                "name": plan.name,
                "billing_cycles": [
                    {
                        "frequency": {"interval_unit": "MONTH", "interval_count": 1},
                        "tenure_type": "REGULAR",
                        "sequence": 1,
                        "total_cycles": 0,  # infinite
                        "pricing_scheme": {
                            "fixed_price": {
                                "value": format_amount(plan.monthly_price_usd),
                                "currency_code": DEFAULT_CURRENCY,
                            }
                        },
                    }
                ],
                "payment_preferences": {
                    "auto_bill_outstanding": True,
                    "payment_failure_action": "CANCEL",
                },
            },
        )
        return _require_id(payload, "create_plan")

    async def _create_billing_subscription(
        self, plan_id: str, user_id: str, plan_type: str
    ) -> Tuple[str, str]:
        payload = await self._request(
            "create_subscription",
            "POST",
            SUBSCRIPTIONS_PATH,
            {
                "plan_id": plan_id,
                "custom_id": f"{user_id}|{plan_type}",
                "application_context": {
                    "brand_name": self.settings.brand_name,
                    "return_url": strip_placeholders(self.settings.paypal_subscription_success_url),
                    "cancel_url": self.settings.paypal_subscription_cancel_url,
                },
            },
            expected=(201,),
        )
        return _require_id(payload, "create_subscription"), find_link(payload, "approve")

    async def cancel_subscription(self, provider_subscription_id: str) -> None:
        logger.info("canceling_paypal_subscription", subscription_id=provider_subscription_id)
        await self._request(
            "cancel_subscription",
            "POST",
            f"{SUBSCRIPTIONS_PATH}/{provider_subscription_id}/cancel",
            {"reason": "User requested cancellation"},
            expected=(204, 200),
        )
        logger.info("paypal_subscription_canceled", subscription_id=provider_subscription_id)

    async def verify_webhook(self, headers: Mapping[str, str], event: Dict[str, Any]) -> bool:
        """
        Verify a webhook notification.

        Returns:
            bool: True if verified, False if verification is disabled

        Raises:
            AuthenticationError: If headers are missing or PayPal rejects the signature
        """
        webhook_id = self.settings.paypal_webhook_id
        if not webhook_id:
            logger.warning("paypal_webhook_verification_skipped", reason="PAYPAL_WEBHOOK_ID unset")
            return False

        missing = [name for name in REQUIRED_WEBHOOK_HEADERS if not get_header(headers, name)]
        if missing:
            logger.error("paypal_webhook_headers_missing", missing=missing)
            raise AuthenticationError(f"Missing required PayPal webhook headers: {missing}")

        payload = await self._request(
            "verify_webhook_signature",
            "POST",
            VERIFY_WEBHOOK_PATH,
            {
                "auth_algo": get_header(headers, AUTH_ALGO_HEADER),
                "cert_url": get_header(headers, CERT_URL_HEADER),
                "transmission_id": get_header(headers, TRANSMISSION_ID_HEADER),
                "transmission_sig": get_header(headers, TRANSMISSION_SIG_HEADER),
                "transmission_time": get_header(headers, TRANSMISSION_TIME_HEADER),
                "webhook_id": webhook_id,
                "webhook_event": event,
            },
            expected=(200,),
        )
        status = payload.get("verification_status")
        if status != "SUCCESS":
            logger.error("paypal_webhook_signature_rejected", verification_status=status)
            raise AuthenticationError(f"Invalid webhook signature (status {status})")

        logger.info("webhook_signature_verified", provider=self.name, event_id=event.get("id"))
        return True

    async def parse_webhook(self, headers: Mapping[str, str], raw_body: bytes) -> WebhookEvent:
        try:
            event = json.loads(raw_body)
        except ValueError as e:
            raise DecodingError(f"Invalid PayPal webhook payload: {e}") from e
        if not isinstance(event, dict):
            raise DecodingError("Invalid PayPal webhook payload: not an object")

        await self.verify_webhook(headers, event)

        event_id = event.get("id")
        event_type = event.get("event_type")
        if not event_id or not event_type:
            raise DecodingError("PayPal webhook payload lacks id or event_type")

        resource = event.get("resource")
        return WebhookEvent(
            provider=self.name,
            event_id=event_id,
            event_type=event_type,
            resource=resource if isinstance(resource, dict) else {},
            raw_payload=raw_body,
        )


def _error_name(response: httpx.Response) -> Optional[str]:
    """PayPal error bodies carry a machine-readable ``name`` (or ``details[0].issue``)."""
    try:
        body = response.json()
    except ValueError:
        return None
    if not isinstance(body, dict):
        return None
    details = body.get("details")
    if isinstance(details, list) and details and isinstance(details[0], dict):
        issue = details[0].get("issue")
        if issue:
            return issue
    return body.get("name")
