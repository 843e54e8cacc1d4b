"""
Cas d'usage 'checkout': orchestre validation -> débit -> enregistrement -> notification -> vidage du panier.

Les étapes sont strictement séquentielles: aucun débit avant une validation réussie, aucune
commande sans débit confirmé. Une tentative est identifiée par sa clé d'idempotence et
persistée dans checkout_attempts avant tout appel à la passerelle, ce qui garantit au plus
un débit par tentative logique même si la réponse au client est perdue. Une tentative
restée 'unknown' est d'abord recherchée auprès de la passerelle par sa clé: tant que son
sort n'est pas connu, aucun débit n'est ouvert sous une autre clé pour le même nonce.
"""
from dataclasses import dataclass
from typing import Any, Dict, Optional
import logging

from storefront.cart.service import CartStore
from storefront.checkout import repository as checkout_repository
from storefront.checkout.validator import CheckoutIntent, CheckoutValidator
from storefront.errors import (
    CheckoutInProgressError,
    GatewayUnavailableError,
    PaymentDeclinedError,
    StorefrontError,
)
from storefront.notifications.dispatcher import NotificationDispatcher
from storefront.orders.ledger import OrderLedger, completed_from_attempt
from storefront.payments.gateway import Completed, Declined, PaymentGatewayClient, TokenizationRejected
from storefront.utils.money import money_json, to_money

logger = logging.getLogger(__name__)


@dataclass
class CheckoutResult:
    response: Dict[str, Any]
    notification_key: Optional[str] = None
    replayed: bool = False


def _response(gateway_reference: str, order_id: str, amount, currency: str, receipt_url: Optional[str]) -> Dict[str, Any]:
    return {
        "paymentId": gateway_reference,
        "orderId": order_id,
        "amount": money_json(to_money(amount)),
        "currency": currency.upper(),
        "status": "completed",
        "receiptUrl": receipt_url,
    }


class CheckoutService:
    def __init__(
        self,
        cart_store: Optional[CartStore] = None,
        validator: Optional[CheckoutValidator] = None,
        gateway: Optional[PaymentGatewayClient] = None,
        ledger: Optional[OrderLedger] = None,
        attempts=None,
        notifier: Optional[NotificationDispatcher] = None,
    ):
        self.cart_store = cart_store or CartStore()
        self.validator = validator or CheckoutValidator(self.cart_store)
        self.gateway = gateway or PaymentGatewayClient()
        self.attempts = attempts or checkout_repository
        self.ledger = ledger or OrderLedger(attempts_repo=self.attempts, gateway=self.gateway)
        self.notifier = notifier or NotificationDispatcher()

    def checkout(
        self,
        session_id: str,
        declared_amount: Any,
        payment_token: str,
        attempt_nonce: Optional[str] = None,
        customer_email: Optional[str] = None,
        shipping_address: Optional[Dict[str, Any]] = None,
        billing_address: Optional[Dict[str, Any]] = None,
    ) -> CheckoutResult:
        # 1) Rejeu d'une tentative connue (réponse perdue, panier déjà vidé)
        unresolved = None
        if attempt_nonce and session_id:
            previous = self.attempts.fetch_attempt_by_nonce(session_id, attempt_nonce)
            if previous and previous.get("status") in ("committed", "charged", "pending", "declined"):
                return self._resume(previous)
            if previous and previous.get("status") == "unknown":
                settled = self._settle_unknown(previous)
                if settled is not None:
                    return settled
                unresolved = previous

        # 2) Validation (aucun effet de bord en cas d'échec)
        intent = self.validator.prepare_checkout(
            session_id,
            declared_amount,
            attempt_nonce=attempt_nonce,
            customer_email=customer_email,
            shipping_address=shipping_address,
            billing_address=billing_address,
        )
        key = intent.idempotency_key
        if unresolved and unresolved.get("idempotency_key") != key:
            # Le panier a changé depuis le débit incertain: une nouvelle clé ouvrirait un second débit
            logger.warning(
                "checkout.service.checkout unresolved attempt key=%s new_key=%s session_id=%s",
                unresolved.get("idempotency_key"), key, intent.session_id,
            )
            raise CheckoutInProgressError(
                "Le paiement précédent de cette tentative n'est pas encore confirmé",
                attemptKey=unresolved.get("idempotency_key"),
                attemptId=attempt_nonce,
            )

        # 3) Réservation de la tentative avant tout appel à la passerelle
        created = self.attempts.insert_attempt({
            "idempotency_key": key,
            "session_id": intent.session_id,
            "attempt_nonce": attempt_nonce,
            "amount": str(intent.total),
            "currency": intent.currency,
            "intent": intent.to_json(),
        })
        if not created:
            existing = self.attempts.fetch_attempt(key) or {}
            if existing.get("status") != "unknown":
                return self._resume(existing)
            if not self.attempts.update_attempt(key, {"status": "pending"}, expected_statuses=["unknown"]):
                raise CheckoutInProgressError(attemptKey=key)
            logger.info("checkout.service.checkout retrying unknown attempt key=%s", key)

        # 4) Débit
        result = self.gateway.charge(intent, payment_token, key)
        if isinstance(result, (Declined, TokenizationRejected)):
            self.attempts.update_attempt(key, {"status": "declined", "decline_reason": result.reason})
            logger.info("checkout.service.checkout declined key=%s session_id=%s", key, intent.session_id)
            raise PaymentDeclinedError(result.reason)
        if not isinstance(result, Completed):
            self.attempts.update_attempt(key, {"status": "unknown"})
            logger.warning("checkout.service.checkout gateway unavailable key=%s detail=%s", key, result.detail)
            raise GatewayUnavailableError(retryable=True, attemptKey=key, attemptId=attempt_nonce)

        self._record_charge(key, result)
        return self._commit(result, intent)

    @staticmethod
    def _charge_fields(completed: Completed) -> Dict[str, Any]:
        return {
            "status": "charged",
            "gateway_reference": completed.gateway_reference,
            "amount_captured": str(completed.amount_captured),
            "receipt_url": completed.receipt_url,
        }

    def _settle_unknown(self, attempt: Dict[str, Any]) -> Optional[CheckoutResult]:
        """
        Interroge la passerelle par la clé d'une tentative 'unknown' avant tout nouveau débit.
        Retourne None si aucun débit n'est (encore) visible pour cette clé.
        """
        key = attempt.get("idempotency_key")
        found = self.gateway.lookup(key)
        if isinstance(found, Completed):
            logger.info("checkout.service.checkout unknown attempt was charged key=%s ref=%s", key, found.gateway_reference)
            fields = self._charge_fields(found)
            if not self.attempts.update_attempt(key, fields, expected_statuses=["unknown"]):
                return self._resume(self.attempts.fetch_attempt(key) or attempt)
            return self._resume({**attempt, **fields})
        if isinstance(found, (Declined, TokenizationRejected)):
            self.attempts.update_attempt(key, {"status": "declined", "decline_reason": found.reason}, expected_statuses=["unknown"])
            raise PaymentDeclinedError(found.reason, attemptKey=key)
        return None

    def _record_charge(self, key: str, completed: Completed) -> None:
        try:
            self.attempts.update_attempt(key, self._charge_fields(completed))
        except StorefrontError:
            # Le débit est acquis: la commande est tout de même enregistrée, la réconciliation retrouve le débit par clé
            logger.exception("checkout.service.record_charge failed key=%s ref=%s", key, completed.gateway_reference)

    def _commit(self, completed: Completed, intent: CheckoutIntent) -> CheckoutResult:
        key = intent.idempotency_key
        order = self.ledger.commit(completed, intent)
        try:
            self.attempts.update_attempt(key, {"status": "committed", "order_id": order.id})
        except StorefrontError:
            logger.exception("checkout.service.commit attempt update failed key=%s order_id=%s", key, order.id)

        notification_key = self.notifier.notify_order_created(order)
        self._clear_cart(intent)
        logger.info(
            "checkout.service.checkout completed key=%s order_id=%s ref=%s amount=%s",
            key, order.id, completed.gateway_reference, completed.amount_captured,
        )
        return CheckoutResult(
            response=_response(completed.gateway_reference, order.id, completed.amount_captured, intent.currency, completed.receipt_url),
            notification_key=notification_key,
        )

    def _clear_cart(self, intent: CheckoutIntent) -> None:
        """Vide le panier acheté; si le panier a bougé pendant le paiement, ne retire que les lignes achetées."""
        try:
            if not self.cart_store.clear(
                intent.session_id,
                expected_version=intent.cart_version,
                expected_updated_at=intent.cart_updated_at,
            ):
                self.cart_store.remove_lines(intent.session_id, intent.lines)
        except StorefrontError:
            logger.exception("checkout.service.clear_cart failed session_id=%s", intent.session_id)

    def _resume(self, attempt: Dict[str, Any]) -> CheckoutResult:
        """Reprend une tentative existante sans jamais rappeler la passerelle."""
        key = attempt.get("idempotency_key")
        status = attempt.get("status")
        if status == "committed":
            logger.info("checkout.service.checkout replay key=%s order_id=%s", key, attempt.get("order_id"))
            return CheckoutResult(
                response=_response(
                    attempt.get("gateway_reference") or "",
                    attempt.get("order_id") or "",
                    attempt.get("amount_captured") or attempt.get("amount"),
                    attempt.get("currency") or "usd",
                    attempt.get("receipt_url"),
                ),
                replayed=True,
            )
        if status == "charged":
            logger.info("checkout.service.checkout re-commit charged attempt key=%s", key)
            completed = completed_from_attempt(attempt)
            intent = CheckoutIntent.from_json(attempt["intent"])
            result = self._commit(completed, intent)
            result.replayed = True
            return result
        if status == "declined":
            raise PaymentDeclinedError(attempt.get("decline_reason") or None, attemptKey=key)
        raise CheckoutInProgressError(attemptKey=key)
