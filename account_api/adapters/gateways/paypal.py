"""PayPal subscriptions gateway adapter."""

from __future__ import annotations

import logging
from typing import Any, Mapping

import httpx

from account_api.adapters.gateways.base import (
    AbstractPaymentGateway,
    CheckoutRequest,
    CheckoutSession,
    gateway_failure,
)
from account_api.core.errors import ValidationAppError
from account_api.schemas.subscription import PlanType

logger = logging.getLogger(__name__)

# INR equivalent (paisa) of the USD plans, stored on the local row.
PLAN_AMOUNT_INR: dict[PlanType, int] = {
    PlanType.PRO_MONTHLY: 129900,
    PlanType.PRO_YEARLY: 1299900,
}

# verify-webhook-signature field -> delivery header carrying it
VERIFY_HEADER_FIELDS = {
    "auth_algo": "paypal-auth-algo",
    "cert_url": "paypal-cert-url",
    "transmission_id": "paypal-transmission-id",
    "transmission_sig": "paypal-transmission-sig",
    "transmission_time": "paypal-transmission-time",
}


class PayPalGateway(AbstractPaymentGateway):
    """Client for PayPal's billing subscriptions API.

    Each call exchanges the client credentials for a short-lived OAuth token
    first; tokens are not cached between calls.
    """

    name = "paypal"

    def __init__(
        self,
        *,
        client_id: str,
        client_secret: str,
        base_url: str,
        plan_ids: dict[PlanType, str | None],
        brand_name: str = "Noxyai",
        webhook_id: str | None = None,
        timeout_seconds: float = 15.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self._client_id = client_id
        self._client_secret = client_secret
        self._plan_ids = plan_ids
        self._brand_name = brand_name
        self._webhook_id = webhook_id
        self._timeout = timeout_seconds
        self._transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self.base_url,
            timeout=self._timeout,
            transport=self._transport,
        )

    async def _access_token(self, client: httpx.AsyncClient, operation: str) -> str:
        response = await client.post(
            "/v1/oauth2/token",
            data={"grant_type": "client_credentials"},
            auth=(self._client_id, self._client_secret),
        )
        if response.is_error:
            raise gateway_failure(self.name, operation, response=response)
        try:
            token = response.json().get("access_token")
        except ValueError as exc:
            raise gateway_failure(self.name, operation, response=response, exc=exc) from exc
        if not token:
            raise gateway_failure(self.name, operation, response=response)
        return token

    async def create_subscription(self, request: CheckoutRequest) -> CheckoutSession:
        plan_id = self._plan_ids.get(request.plan_type)
        if not plan_id:
            raise ValidationAppError(
                code="paypal_plan_not_configured",
                message="PayPal plan is not configured for this plan type",
                details={"plan_type": request.plan_type.value},
            )

        body = {
            "plan_id": plan_id,
            "subscriber": {
                "name": {"given_name": request.name or request.email.split("@")[0]},
                "email_address": request.email,
            },
            "application_context": {
                "brand_name": self._brand_name,
                "locale": "en-US",
                "shipping_preference": "NO_SHIPPING",
                "user_action": "SUBSCRIBE_NOW",
                "payment_method": {
                    "payer_selected": "PAYPAL",
                    "payee_preferred": "IMMEDIATE_PAYMENT_REQUIRED",
                },
                "return_url": f"{request.return_url}?status=success",
                "cancel_url": f"{request.return_url}?status=cancelled",
            },
            "custom_id": request.user_id,
        }

        try:
            async with self._client() as client:
                token = await self._access_token(client, "create")
                response = await client.post(
                    "/v1/billing/subscriptions",
                    json=body,
                    headers={
                        "Authorization": f"Bearer {token}",
                        "Prefer": "return=representation",
                    },
                )
        except httpx.HTTPError as exc:
            raise gateway_failure(self.name, "create", exc=exc) from exc

        if response.is_error:
            raise gateway_failure(self.name, "create", response=response)

        try:
            data = response.json()
        except ValueError as exc:
            raise gateway_failure(self.name, "create", response=response, exc=exc) from exc

        approval_url = next(
            (link.get("href") for link in data.get("links", []) if link.get("rel") == "approve"),
            None,
        )
        if not approval_url:
            raise gateway_failure(self.name, "create", response=response)

        return CheckoutSession(
            payment_url=approval_url,
            amount_inr=PLAN_AMOUNT_INR[request.plan_type],
            subscription_id=data.get("id"),
        )

    async def cancel_subscription(self, subscription_id: str) -> None:
        try:
            async with self._client() as client:
                token = await self._access_token(client, "cancel")
                response = await client.post(
                    f"/v1/billing/subscriptions/{subscription_id}/cancel",
                    json={"reason": "Customer requested cancellation"},
                    headers={"Authorization": f"Bearer {token}"},
                )
        except httpx.HTTPError as exc:
            raise gateway_failure(self.name, "cancel", exc=exc) from exc

        if response.is_error:
            raise gateway_failure(self.name, "cancel", response=response)

    async def verify_webhook(self, headers: Mapping[str, str], event: dict[str, Any]) -> bool:
        """Verify a delivery with PayPal's verify-webhook-signature API.

        Returns:
            True only when PayPal answers ``verification_status: SUCCESS``.

        Raises:
            GatewayAppError: If PayPal cannot be reached or answers non-2xx.
        """

        if not self._webhook_id:
            logger.error("paypal.webhook_id_not_configured")
            return False

        fields = {field: headers.get(header) for field, header in VERIFY_HEADER_FIELDS.items()}
        missing = sorted(field for field, value in fields.items() if not value)
        if missing:
            logger.warning("paypal.webhook_headers_missing", extra={"missing_headers": missing})
            return False

        body = {**fields, "webhook_id": self._webhook_id, "webhook_event": event}
        try:
            async with self._client() as client:
                token = await self._access_token(client, "verify")
                response = await client.post(
                    "/v1/notifications/verify-webhook-signature",
                    json=body,
                    headers={"Authorization": f"Bearer {token}"},
                )
        except httpx.HTTPError as exc:
            raise gateway_failure(self.name, "verify", exc=exc) from exc

        if response.is_error:
            raise gateway_failure(self.name, "verify", response=response)
        try:
            status = response.json().get("verification_status")
        except ValueError as exc:
            raise gateway_failure(self.name, "verify", response=response, exc=exc) from exc
        return status == "SUCCESS"
