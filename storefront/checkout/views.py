import hashlib
import logging
from decimal import Decimal
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, BackgroundTasks, Depends, Header
from pydantic import AliasChoices, BaseModel, EmailStr, Field

from storefront.checkout.service import CheckoutService
from storefront.utils.rate_limit import optional_rate_limit

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/v1/checkout", tags=["Checkout API"])


class CheckoutRequest(BaseModel):
    amount: Decimal
    session_id: str = Field(min_length=1, validation_alias=AliasChoices("sessionId", "session_id"))
    payment_token: str = Field(min_length=1, validation_alias=AliasChoices("paymentToken", "payment_token", "sourceId"))
    attempt_id: Optional[str] = Field(default=None, validation_alias=AliasChoices("attemptId", "attempt_id"))
    cart_items: Optional[List[Dict[str, Any]]] = Field(default=None, validation_alias=AliasChoices("cartItems", "cart_items"))
    customer_email: Optional[EmailStr] = Field(default=None, validation_alias=AliasChoices("customerEmail", "customer_email"))
    shipping_address: Optional[Dict[str, Any]] = Field(default=None, validation_alias=AliasChoices("shippingAddress", "shipping_address"))
    billing_address: Optional[Dict[str, Any]] = Field(default=None, validation_alias=AliasChoices("billingAddress", "billing_address"))


def get_checkout_service() -> CheckoutService:
    return CheckoutService()


def attempt_nonce_for(body: CheckoutRequest, idempotency_key: Optional[str]) -> str:
    """
    Nonce de tentative: attemptId, sinon en-tête Idempotency-Key, sinon dérivé du jeton
    de paiement (un nouveau moyen de paiement = une nouvelle tentative).
    """
    explicit = (body.attempt_id or idempotency_key or "").strip()
    if explicit:
        return explicit
    return "tok_" + hashlib.sha256(body.payment_token.encode("utf-8")).hexdigest()[:32]


# module storefront.checkout.views
@router.post("", dependencies=[Depends(optional_rate_limit(times=10, seconds=60))])
def checkout(
    body: CheckoutRequest,
    background_tasks: BackgroundTasks,
    idempotency_key: Optional[str] = Header(default=None, alias="Idempotency-Key"),
    service: CheckoutService = Depends(get_checkout_service),
):
    """
    Paiement du panier (API JSON).
    - Le total est recalculé côté serveur; `amount` n'est qu'un montant déclaré (tolérance 0.01)
    - cartItems est ignoré pour le calcul (le panier persisté fait foi)
    - Rejouer avec le même attemptId (ou Idempotency-Key) ne débite jamais deux fois
    - Succès: {paymentId, orderId, amount, currency, status: "completed", receiptUrl}
    - Erreurs: {"error": {"code", "message", ...}} (voir storefront.errors)
    - L'email de confirmation est envoyé après la réponse (BackgroundTasks)
    """
    if body.cart_items is not None:
        logger.info("checkout.views.checkout client cart ignored session_id=%s items=%s", body.session_id, len(body.cart_items))
    result = service.checkout(
        session_id=body.session_id.strip(),
        declared_amount=body.amount,
        payment_token=body.payment_token,
        attempt_nonce=attempt_nonce_for(body, idempotency_key),
        customer_email=str(body.customer_email) if body.customer_email else None,
        shipping_address=body.shipping_address,
        billing_address=body.billing_address,
    )
    if result.notification_key:
        background_tasks.add_task(service.notifier.deliver, result.notification_key)
    return result.response
