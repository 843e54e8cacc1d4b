"""
Module 'payments' (feature-first): point d'entrée public.
Réunit l'adaptateur Stripe et le client de passerelle utilisé par le checkout.
"""

from .stripe_client import require_stripe, create_payment_intent, search_payment_intents
from .gateway import (
    ChargeResult,
    Completed,
    Declined,
    GatewayUnavailable,
    TokenizationRejected,
    PaymentGatewayClient,
    result_from_intent,
)

__all__ = [
    # stripe
    "require_stripe",
    "create_payment_intent",
    "search_payment_intents",
    # gateway
    "ChargeResult",
    "Completed",
    "Declined",
    "GatewayUnavailable",
    "TokenizationRejected",
    "PaymentGatewayClient",
    "result_from_intent",
]
