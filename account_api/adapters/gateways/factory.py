"""Factory pattern for creating payment gateway instances."""

import logging

from account_api.adapters.gateways.base import AbstractPaymentGateway
from account_api.adapters.gateways.payin import PayinGateway
from account_api.adapters.gateways.paypal import PayPalGateway
from account_api.core.config import settings
from account_api.core.errors import ValidationAppError
from account_api.schemas.subscription import PlanType

SUPPORTED_GATEWAYS = ("payin", "paypal")

logger = logging.getLogger(__name__)


def _not_configured(gateway: str, missing: list[str]) -> ValidationAppError:
    logger.error(
        "gateway.not_configured",
        extra={"payment_gateway": gateway, "missing_settings": missing},
    )
    return ValidationAppError(
        code="gateway_not_configured",
        message="This payment method is currently unavailable.",
        details={"payment_gateway": gateway},
    )


def create_payment_gateway(name: str) -> AbstractPaymentGateway:
    """Factory function to instantiate a gateway client by name.

    Reads configuration from account_api.core.config.settings (Pydantic Settings).
    Validates gateway-specific requirements before building the client.

    Args:
        name: Gateway name (payin or paypal).

    Returns:
        AbstractPaymentGateway: Configured gateway client.

    Raises:
        ValidationAppError: If the gateway is unknown or not configured.
    """
    gateway = name.lower()

    if gateway == "payin":
        missing = [
            env
            for env, value in (
                ("PAYIN_MERCHANT_ID", settings.payin.merchant_id),
                ("PAYIN_API_KEY", settings.payin.api_key),
            )
            if not value
        ]
        if missing:
            raise _not_configured(gateway, missing)
        return PayinGateway(
            base_url=settings.payin.base_url,
            merchant_id=settings.payin.merchant_id,
            api_key=settings.payin.api_key,
            timeout_seconds=settings.payin.timeout_seconds,
            grace_period_days=settings.billing.grace_period_days,
        )

    if gateway == "paypal":
        missing = [
            env
            for env, value in (
                ("PAYPAL_CLIENT_ID", settings.paypal.client_id),
                ("PAYPAL_CLIENT_SECRET", settings.paypal.client_secret),
            )
            if not value
        ]
        if missing:
            raise _not_configured(gateway, missing)
        return PayPalGateway(
            client_id=settings.paypal.client_id,
            client_secret=settings.paypal.client_secret,
            base_url=settings.paypal.base_url,
            plan_ids={
                PlanType.PRO_MONTHLY: settings.paypal.monthly_plan_id,
                PlanType.PRO_YEARLY: settings.paypal.yearly_plan_id,
            },
            brand_name=settings.paypal.brand_name,
            webhook_id=settings.paypal.webhook_id,
            timeout_seconds=settings.paypal.timeout_seconds,
        )

    raise ValidationAppError(
        code="unknown_payment_gateway",
        message=(
            f"Unknown payment method: '{name}'. "
            f"Supported methods: {', '.join(SUPPORTED_GATEWAYS)}"
        ),
        details={"payment_gateway": name},
    )
