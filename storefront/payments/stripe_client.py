"""
Adaptateur Stripe: centralise les appels et la configuration Stripe (PaymentIntents).
"""
import stripe
from typing import Any, Dict, List, Optional

from storefront.config import STRIPE_SECRET_KEY, STRIPE_MAX_NETWORK_RETRIES


# module storefront.payments.stripe_client
def require_stripe():
    """
    Prépare et retourne le module stripe prêt à l'emploi.
    - Configure stripe.api_key via STRIPE_SECRET_KEY si disponible.
    - Les retries réseau du SDK réutilisent la clé d'idempotence de la requête.
    - En absence de clé, les appels échouent côté SDK (AuthenticationError).
    """
    if STRIPE_SECRET_KEY:
        stripe.api_key = STRIPE_SECRET_KEY
    stripe.max_network_retries = STRIPE_MAX_NETWORK_RETRIES
    return stripe


def create_payment_intent(
    *,
    amount: int,
    currency: str,
    payment_method: str,
    idempotency_key: str,
    metadata: Dict[str, str],
    receipt_email: Optional[str] = None,
) -> Any:
    """
    Crée et confirme un PaymentIntent en un seul appel.
    - amount: en centimes
    - payment_method: jeton tokenisé côté navigateur (pm_...)
    - idempotency_key: transmis à Stripe, un rejeu ne débite jamais deux fois
    - Les moyens de paiement à redirection sont désactivés (confirmation synchrone)
    """
    require_stripe()
    params: Dict[str, Any] = {
        "amount": amount,
        "currency": currency,
        "payment_method": payment_method,
        "confirm": True,
        "metadata": metadata,
        "automatic_payment_methods": {"enabled": True, "allow_redirects": "never"},
        "expand": ["latest_charge"],
    }
    if receipt_email:
        params["receipt_email"] = receipt_email
    return stripe.PaymentIntent.create(idempotency_key=idempotency_key, **params)


def search_payment_intents(attempt_key: str) -> List[Any]:
    """
    Recherche les PaymentIntents portant metadata.attempt_key (réconciliation).
    Note: l'index de recherche Stripe est éventuellement cohérent (délai ~1 min).
    """
    require_stripe()
    safe_key = attempt_key.replace("'", "")
    res = stripe.PaymentIntent.search(
        query=f"metadata['attempt_key']:'{safe_key}'",
        limit=10,
        expand=["data.latest_charge"],
    )
    return list(getattr(res, "data", None) or [])
