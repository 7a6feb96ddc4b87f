"""Payment gateway interface and shared error reporting."""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Mapping

import httpx

from account_api.core.errors import GatewayAppError
from account_api.schemas.subscription import PlanType

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CheckoutRequest:
    """What a gateway needs to start a recurring checkout."""

    user_id: str
    email: str
    plan_type: PlanType
    return_url: str
    webhook_url: str
    name: str | None = None
    phone: str | None = None


@dataclass(frozen=True)
class CheckoutSession:
    """Gateway answer to a checkout request.

    Attributes:
        payment_url: Where to send the user to approve/pay.
        amount_inr: Plan price in paisa recorded on the local row.
        subscription_id: Gateway subscription id, when issued up front.
        mandate_id: Autopay mandate id, when issued up front.
    """

    payment_url: str
    amount_inr: int
    subscription_id: str | None = None
    mandate_id: str | None = None


class AbstractPaymentGateway(ABC):
    """Interface for recurring-payment gateways."""

    name: str = ""
    supports_remote_cancel: bool = True

    @abstractmethod
    async def create_subscription(self, request: CheckoutRequest) -> CheckoutSession:
        """Start a recurring checkout.

        Raises:
            GatewayAppError: If the gateway is unreachable or rejects the request.
        """
        ...

    @abstractmethod
    async def cancel_subscription(self, subscription_id: str) -> None:
        """Cancel a subscription at the gateway.

        Raises:
            GatewayAppError: If the gateway is unreachable or refuses.
        """
        ...

    async def verify_webhook(self, headers: Mapping[str, str], event: dict[str, Any]) -> bool:
        """Ask the gateway whether a webhook delivery is authentic.

        Gateways without a verification endpoint accept nothing.
        """
        return False


def gateway_failure(
    gateway: str,
    operation: str,
    *,
    response: httpx.Response | None = None,
    exc: Exception | None = None,
) -> GatewayAppError:
    """Log a failed gateway call and build the error surfaced to callers.

    The gateway body goes to the log only; the client message stays generic.
    """

    logger.error(
        "gateway.request_failed",
        extra={
            "gateway": gateway,
            "operation": operation,
            "status_code": response.status_code if response is not None else None,
            "gateway_body": response.text[:2000] if response is not None else None,
            "error_type": type(exc).__name__ if exc else None,
            "error_msg": str(exc) if exc else None,
        },
    )
    return GatewayAppError(
        code=f"gateway_{operation}_failed",
        message="Payment provider request failed. Please try again later.",
        details={
            "payment_gateway": gateway,
            "http_status": response.status_code if response is not None else 0,
        },
    )
