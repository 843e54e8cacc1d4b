"""
Vérification du montant avant paiement.

Le total est toujours recalculé côté serveur à partir du panier persisté (prix snapshotés);
le montant envoyé par le client n'est qu'une valeur déclarée comparée à ce total.
"""
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, Optional, Tuple
import hashlib
import json
import logging

from pydantic import BaseModel, ConfigDict

from storefront.cart.models import CartLine
from storefront.cart.service import CartStore
from storefront.config import AMOUNT_TOLERANCE, CHECKOUT_CURRENCY
from storefront.errors import AmountMismatchError, EmptyCartError, ValidationError
from storefront.utils.money import money_json, to_money

logger = logging.getLogger(__name__)


class CheckoutIntent(BaseModel):
    """Snapshot immuable d'un checkout validé (panier + total + clé d'idempotence)."""
    model_config = ConfigDict(frozen=True)

    session_id: str
    cart_version: int
    cart_updated_at: datetime
    lines: Tuple[CartLine, ...]
    total: Decimal
    currency: str
    idempotency_key: str
    attempt_nonce: Optional[str] = None
    customer_email: Optional[str] = None
    shipping_address: Optional[Dict[str, Any]] = None
    billing_address: Optional[Dict[str, Any]] = None

    def to_json(self) -> Dict[str, Any]:
        return self.model_dump(mode="json")

    @classmethod
    def from_json(cls, data: Dict[str, Any]) -> "CheckoutIntent":
        return cls.model_validate(data)


def _canonical_lines(lines) -> str:
    return json.dumps(
        [
            {
                "product_id": line.product_id,
                "variant_id": line.variant_id,
                "unit_price": str(line.unit_price),
                "quantity": line.quantity,
            }
            for line in lines
        ],
        sort_keys=True,
        separators=(",", ":"),
    )


def make_idempotency_key(session_id: str, cart_version: int, updated_at: datetime, lines, attempt_nonce: Optional[str]) -> str:
    """
    Clé déterministe d'une tentative logique: même panier (version, horodatage, lignes)
    et même nonce => même clé. Toute modification du panier ou nouveau nonce => nouvelle clé.
    """
    material = "|".join([
        session_id,
        str(cart_version),
        updated_at.isoformat(),
        _canonical_lines(lines),
        attempt_nonce or "",
    ])
    return "chk_" + hashlib.sha256(material.encode("utf-8")).hexdigest()


class CheckoutValidator:
    def __init__(self, cart_store: Optional[CartStore] = None, currency: str = CHECKOUT_CURRENCY,
                 tolerance: Decimal = AMOUNT_TOLERANCE):
        self.cart_store = cart_store or CartStore()
        self.currency = currency
        self.tolerance = tolerance

    def prepare_checkout(
        self,
        session_id: str,
        client_declared_amount: Any,
        attempt_nonce: Optional[str] = None,
        customer_email: Optional[str] = None,
        shipping_address: Optional[Dict[str, Any]] = None,
        billing_address: Optional[Dict[str, Any]] = None,
    ) -> CheckoutIntent:
        if not session_id:
            raise ValidationError("sessionId manquant")
        try:
            declared = to_money(client_declared_amount)
        except ValueError:
            raise ValidationError("Montant invalide", amount=str(client_declared_amount))

        # Une seule lecture: lignes et version proviennent de la même ligne cart_sessions
        cart = self.cart_store.get(session_id)
        if cart.is_empty:
            raise EmptyCartError(sessionId=session_id)

        server_total = cart.total_amount
        if abs(declared - server_total) > self.tolerance:
            logger.warning(
                "checkout.validator.prepare_checkout amount mismatch session_id=%s declared=%s server=%s",
                session_id, declared, server_total,
            )
            raise AmountMismatchError(
                expected=money_json(server_total),
                received=money_json(declared),
            )

        key = make_idempotency_key(session_id, cart.version, cart.updated_at, cart.lines, attempt_nonce)
        return CheckoutIntent(
            session_id=session_id,
            cart_version=cart.version,
            cart_updated_at=cart.updated_at,
            lines=tuple(cart.lines),
            total=server_total,
            currency=self.currency,
            idempotency_key=key,
            attempt_nonce=attempt_nonce,
            customer_email=customer_email,
            shipping_address=shipping_address,
            billing_address=billing_address,
        )
