"""Payment gateway adapter layer - abstracts over recurring-payment providers."""

from account_api.adapters.gateways.base import (
    AbstractPaymentGateway,
    CheckoutRequest,
    CheckoutSession,
)
from account_api.adapters.gateways.factory import SUPPORTED_GATEWAYS, create_payment_gateway
from account_api.adapters.gateways.payin import PayinGateway
from account_api.adapters.gateways.paypal import PayPalGateway
from account_api.adapters.gateways.paypal_events import to_webhook_event

__all__ = [
    "AbstractPaymentGateway",
    "CheckoutRequest",
    "CheckoutSession",
    "PayPalGateway",
    "PayinGateway",
    "SUPPORTED_GATEWAYS",
    "create_payment_gateway",
    "to_webhook_event",
]
