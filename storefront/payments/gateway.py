"""
Client de passerelle de paiement.

charge() ne lève jamais pour un résultat de paiement: il retourne un ChargeResult qui
distingue les trois cas qui comptent pour le checkout:
- débit certain (Completed)
- aucun débit (Declined, TokenizationRejected)
- statut inconnu après réconciliation (GatewayUnavailable): à rejouer avec la même clé
"""
from dataclasses import asdict, dataclass
from decimal import Decimal
from typing import Any, Dict, Optional, Union
import logging

import stripe

from storefront.payments import stripe_client
from storefront.utils.money import from_cents, to_cents, to_money

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Completed:
    gateway_reference: str
    amount_captured: Decimal
    receipt_url: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["amount_captured"] = str(self.amount_captured)
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Completed":
        return cls(
            gateway_reference=str(data["gateway_reference"]),
            amount_captured=to_money(data["amount_captured"]),
            receipt_url=data.get("receipt_url"),
        )


@dataclass(frozen=True)
class Declined:
    reason: str


@dataclass(frozen=True)
class GatewayUnavailable:
    detail: str


@dataclass(frozen=True)
class TokenizationRejected:
    reason: str


ChargeResult = Union[Completed, Declined, GatewayUnavailable, TokenizationRejected]

DECLINED_STATUSES = {"requires_payment_method", "canceled", "requires_action", "requires_confirmation"}

# Erreurs après lesquelles on ne sait pas si le débit a eu lieu
_UNCERTAIN_ERRORS = (
    stripe.APIConnectionError,
    stripe.RateLimitError,
    stripe.APIError,
    stripe.IdempotencyError,
)


def _field(obj: Any, name: str) -> Any:
    if obj is None:
        return None
    if isinstance(obj, dict):
        return obj.get(name)
    return getattr(obj, name, None)


def _receipt_url(pi: Any) -> Optional[str]:
    charge = _field(pi, "latest_charge")
    if not charge or isinstance(charge, str):
        return None
    return _field(charge, "receipt_url")


def result_from_intent(pi: Any) -> ChargeResult:
    """Traduit un PaymentIntent Stripe en ChargeResult."""
    status = _field(pi, "status") or ""
    if status == "succeeded":
        received = _field(pi, "amount_received") or _field(pi, "amount") or 0
        return Completed(
            gateway_reference=str(_field(pi, "id")),
            amount_captured=from_cents(int(received)),
            receipt_url=_receipt_url(pi),
        )
    if status in DECLINED_STATUSES:
        error = _field(pi, "last_payment_error")
        reason = _field(error, "message") or f"Paiement non abouti (status={status})"
        return Declined(reason=reason)
    return GatewayUnavailable(detail=f"Statut de paiement en attente (status={status})")


def _is_payment_method_error(e: stripe.InvalidRequestError) -> bool:
    param = getattr(e, "param", None) or ""
    code = getattr(e, "code", None) or ""
    return param.startswith("payment_method") or code.startswith("payment_method") or code == "resource_missing"


class PaymentGatewayClient:
    def __init__(self, api=None):
        self.api = api or stripe_client

    def charge(self, intent, payment_token: str, idempotency_key: str) -> ChargeResult:
        if not payment_token:
            return TokenizationRejected(reason="Jeton de paiement manquant")
        try:
            pi = self.api.create_payment_intent(
                amount=to_cents(intent.total),
                currency=intent.currency,
                payment_method=payment_token,
                idempotency_key=idempotency_key,
                metadata={"attempt_key": idempotency_key, "session_id": intent.session_id},
                receipt_email=intent.customer_email,
            )
        except stripe.CardError as e:
            logger.info("payments.gateway.charge declined key=%s code=%s", idempotency_key, getattr(e, "code", None))
            return Declined(reason=getattr(e, "user_message", None) or str(e))
        except stripe.InvalidRequestError as e:
            if _is_payment_method_error(e):
                logger.info("payments.gateway.charge tokenization rejected key=%s", idempotency_key)
                return TokenizationRejected(reason=getattr(e, "user_message", None) or str(e))
            logger.exception("payments.gateway.charge invalid request key=%s", idempotency_key)
            return GatewayUnavailable(detail="Requête de paiement rejetée par la passerelle")
        except (stripe.AuthenticationError, stripe.PermissionError):
            # Configuration (clé absente ou révoquée): aucun débit n'a pu avoir lieu
            logger.exception("payments.gateway.charge configuration error key=%s", idempotency_key)
            return GatewayUnavailable(detail="Passerelle de paiement mal configurée")
        except _UNCERTAIN_ERRORS as e:
            logger.warning("payments.gateway.charge uncertain outcome key=%s error=%s", idempotency_key, e)
            found = self.lookup(idempotency_key)
            if found is not None:
                return found
            return GatewayUnavailable(detail=str(e) or "Passerelle injoignable")

        result = result_from_intent(pi)
        logger.info(
            "payments.gateway.charge key=%s result=%s",
            idempotency_key, type(result).__name__,
        )
        return result

    def lookup(self, idempotency_key: str) -> Optional[ChargeResult]:
        """
        Interroge la passerelle par clé de tentative.
        Retourne None si aucun PaymentIntent n'existe (ou si la recherche échoue).
        Un PaymentIntent réussi l'emporte sur les autres.
        """
        try:
            intents = self.api.search_payment_intents(idempotency_key)
        except stripe.StripeError:
            logger.exception("payments.gateway.lookup failed key=%s", idempotency_key)
            return None
        if not intents:
            return None
        results = [result_from_intent(pi) for pi in intents]
        for result in results:
            if isinstance(result, Completed):
                return result
        return results[0]
