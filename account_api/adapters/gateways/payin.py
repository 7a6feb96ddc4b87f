"""Pay.in autopay gateway adapter (recurring mandates)."""

from __future__ import annotations

from typing import Any

import httpx

from account_api.adapters.gateways.base import (
    AbstractPaymentGateway,
    CheckoutRequest,
    CheckoutSession,
    gateway_failure,
)
from account_api.schemas.subscription import PlanType

# Prices in paisa (1 INR = 100 paisa).
PLAN_PRICING: dict[PlanType, dict[str, Any]] = {
    PlanType.PRO_MONTHLY: {
        "amount": 129900,
        "interval": "month",
        "name": "Pro Monthly",
        "description": "Full access to all AI models with auto-select feature",
    },
    PlanType.PRO_YEARLY: {
        "amount": 2100000,
        "interval": "year",
        "name": "Pro Yearly",
        "description": "Full access to all AI models - Save ₹5,588/year",
    },
}


class PayinGateway(AbstractPaymentGateway):
    """Client for the Pay.in subscriptions API.

    Uses httpx's async client; ``transport`` lets tests plug in a mock.
    """

    name = "payin"

    def __init__(
        self,
        *,
        base_url: str,
        merchant_id: str,
        api_key: str,
        timeout_seconds: float = 15.0,
        grace_period_days: int = 3,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self._merchant_id = merchant_id
        self._api_key = api_key
        self._timeout = timeout_seconds
        self._grace_period_days = grace_period_days
        self._transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self.base_url,
            timeout=self._timeout,
            transport=self._transport,
            headers={
                "X-Merchant-Id": self._merchant_id,
                "X-Api-Key": self._api_key,
            },
        )

    async def create_subscription(self, request: CheckoutRequest) -> CheckoutSession:
        plan = PLAN_PRICING[request.plan_type]
        body = {
            "customer_id": request.user_id,
            "customer_email": request.email,
            "customer_phone": request.phone,
            "plan": {
                "amount": plan["amount"],
                "currency": "INR",
                "interval": plan["interval"],
                "interval_count": 1,
                "name": plan["name"],
                "description": plan["description"],
            },
            "autopay": {
                "enabled": True,
                "mandate_type": "recurring",
                "max_amount": int(plan["amount"] * 1.1),
                "grace_period_days": self._grace_period_days,
            },
            "return_url": f"{request.return_url}?status=success",
            "webhook_url": request.webhook_url,
            "metadata": {"plan_type": request.plan_type.value},
        }

        try:
            async with self._client() as client:
                response = await client.post("/v1/subscriptions", json=body)
        except httpx.HTTPError as exc:
            raise gateway_failure(self.name, "create", exc=exc) from exc

        if response.is_error:
            raise gateway_failure(self.name, "create", response=response)

        try:
            data = response.json()
        except ValueError as exc:
            raise gateway_failure(self.name, "create", response=response, exc=exc) from exc
        if not data.get("payment_url"):
            raise gateway_failure(self.name, "create", response=response)

        return CheckoutSession(
            payment_url=data["payment_url"],
            amount_inr=plan["amount"],
            subscription_id=data.get("subscription_id"),
            mandate_id=data.get("mandate_id"),
        )

    async def cancel_subscription(self, subscription_id: str) -> None:
        try:
            async with self._client() as client:
                response = await client.post(f"/v1/subscriptions/{subscription_id}/cancel")
        except httpx.HTTPError as exc:
            raise gateway_failure(self.name, "cancel", exc=exc) from exc

        if response.is_error:
            raise gateway_failure(self.name, "cancel", response=response)
