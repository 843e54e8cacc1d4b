"""
Grand livre des commandes: transforme un débit capturé en Order + OrderItems.

Règles:
- commit() est idempotent par payment_reference (unique en base).
- Une commande n'est jamais silencieusement sans lignes: échec d'insertion des lignes
  => réparation 'missing_items' + log CRITICAL + Order.items_complete=False.
- Débit capturé sans commande enregistrée => réparation 'missing_order' + log CRITICAL
  + PersistenceFailureError (le client ne doit pas repayer).
- reconcile() rejoue la file de réparation et les tentatives bloquées.
"""
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional
from uuid import uuid4
import json
import logging

from storefront.checkout import repository as checkout_repository
from storefront.checkout.validator import CheckoutIntent
from storefront.errors import PersistenceFailureError, StorageUnavailableError, StorefrontError
from storefront.orders import repository as orders_repository
from storefront.orders.models import Order, OrderItem
from storefront.payments.gateway import Completed, Declined, PaymentGatewayClient, TokenizationRejected
from storefront.utils.money import to_money

logger = logging.getLogger(__name__)

ONE_CENT = to_money("0.01")


def completed_from_attempt(attempt: Dict[str, Any]) -> Completed:
    return Completed.from_dict({
        "gateway_reference": attempt.get("gateway_reference"),
        "amount_captured": attempt.get("amount_captured") or attempt.get("amount"),
        "receipt_url": attempt.get("receipt_url"),
    })


class OrderLedger:
    def __init__(self, repo=None, attempts_repo=None, gateway: Optional[PaymentGatewayClient] = None):
        self.repo = repo or orders_repository
        self.attempts = attempts_repo or checkout_repository
        self._gateway = gateway

    @property
    def gateway(self) -> PaymentGatewayClient:
        if self._gateway is None:
            self._gateway = PaymentGatewayClient()
        return self._gateway

    def build_order(self, completed: Completed, intent: CheckoutIntent) -> Order:
        order_id = str(uuid4())
        items = [
            OrderItem(
                order_id=order_id,
                product_id=line.product_id,
                variant_id=line.variant_id,
                quantity=line.quantity,
                price_at_time=line.unit_price,
                product_name=(f"{line.product_name} ({line.variant_name})" if line.variant_name else line.product_name),
                image_url=line.image_url,
            )
            for line in intent.lines
        ]
        return Order(
            id=order_id,
            payment_reference=completed.gateway_reference,
            idempotency_key=intent.idempotency_key,
            total_amount=completed.amount_captured,
            currency=intent.currency,
            customer_email=intent.customer_email,
            shipping_address=intent.shipping_address,
            billing_address=intent.billing_address,
            created_at=datetime.now(timezone.utc),
            items=items,
            receipt_url=completed.receipt_url,
        )

    def commit(self, completed: Completed, intent: CheckoutIntent) -> Order:
        return self._commit(completed, intent, escalate=True)

    def _existing(self, payment_reference: str, receipt_url: Optional[str]) -> Optional[Order]:
        try:
            row = self.repo.fetch_order_by_payment_reference(payment_reference)
        except StorageUnavailableError:
            # La contrainte d'unicité protège l'insertion qui suit
            return None
        if not row:
            return None
        order = Order.from_row(row)
        return order.model_copy(update={"items_complete": bool(order.items), "receipt_url": receipt_url})

    def _commit(self, completed: Completed, intent: CheckoutIntent, escalate: bool) -> Order:
        ref = completed.gateway_reference
        existing = self._existing(ref, completed.receipt_url)
        if existing:
            logger.info("orders.ledger.commit already committed ref=%s order_id=%s", ref, existing.id)
            return existing

        order = self.build_order(completed, intent)
        try:
            inserted = self.repo.insert_order(order.to_row())
        except StorageUnavailableError as e:
            if escalate:
                self._escalate_missing_order(completed, intent, e)
            raise PersistenceFailureError(paymentId=ref)
        if inserted is None:
            # Commit concurrent du même paiement
            existing = self._existing(ref, completed.receipt_url)
            if existing:
                return existing
            raise PersistenceFailureError(paymentId=ref)

        self._check_amount(order)
        items_complete = self._insert_items(order)
        logger.info(
            "orders.ledger.commit ok ref=%s order_id=%s total=%s items=%s complete=%s",
            ref, order.id, order.total_amount, len(order.items), items_complete,
        )
        return order.model_copy(update={"items_complete": items_complete})

    def _check_amount(self, order: Order) -> None:
        if abs(order.total_amount - order.items_total) <= ONE_CENT:
            return
        logger.error(
            "orders.ledger.commit amount mismatch ref=%s captured=%s items_total=%s",
            order.payment_reference, order.total_amount, order.items_total,
        )
        self.repo.insert_repair(
            "amount_mismatch",
            order.payment_reference,
            {"captured": str(order.total_amount), "items_total": str(order.items_total)},
            order_id=order.id,
            idempotency_key=order.idempotency_key,
        )

    def _insert_items(self, order: Order) -> bool:
        rows = [item.to_row() for item in order.items]
        for attempt in (1, 2):
            try:
                self.repo.insert_order_items(rows)
                return True
            except StorageUnavailableError:
                logger.warning("orders.ledger.insert_items failed order_id=%s attempt=%s", order.id, attempt)
        payload = {"order_id": order.id, "items": rows}
        self.repo.insert_repair(
            "missing_items",
            order.payment_reference,
            payload,
            order_id=order.id,
            idempotency_key=order.idempotency_key,
        )
        logger.critical(
            "orders.ledger.insert_items gave up order_id=%s ref=%s payload=%s",
            order.id, order.payment_reference, json.dumps(payload),
        )
        return False

    def _escalate_missing_order(self, completed: Completed, intent: CheckoutIntent, error: Exception) -> None:
        payload = {"charge": completed.to_dict(), "intent": intent.to_json()}
        queued = self.repo.insert_repair(
            "missing_order",
            completed.gateway_reference,
            payload,
            idempotency_key=intent.idempotency_key,
        )
        logger.critical(
            "orders.ledger.commit charge captured but order not recorded ref=%s key=%s queued=%s error=%s payload=%s",
            completed.gateway_reference, intent.idempotency_key, queued, error, json.dumps(payload),
        )

    # Réconciliation
    def reconcile(self, limit: int = 50, on_order: Optional[Callable[[Order], Any]] = None) -> Dict[str, Any]:
        """
        Job de réparation:
        1) file order_repairs: crée les commandes manquantes, complète les lignes manquantes
        2) tentatives bloquées (pending/unknown/charged): interroge la passerelle par clé
           et enregistre la commande si le débit a eu lieu
        3) signale les commandes toujours sans lignes
        `on_order` est appelé pour chaque commande créée (ex: email de confirmation).
        """
        report: Dict[str, Any] = {
            "repairs_resolved": 0,
            "repairs_failed": 0,
            "attempts_committed": 0,
            "attempts_declined": 0,
            "attempts_released": 0,
            "orders_missing_items": [],
        }

        for repair in self.repo.fetch_pending_repairs(["missing_order", "missing_items"], limit):
            try:
                order = self._apply_repair(repair)
            except (StorefrontError, KeyError, ValueError) as e:
                logger.exception("orders.ledger.reconcile repair failed id=%s kind=%s", repair.get("id"), repair.get("kind"))
                self.repo.update_repair(repair.get("id"), "pending", last_error=str(e))
                report["repairs_failed"] += 1
                continue
            self.repo.update_repair(repair.get("id"), "resolved")
            report["repairs_resolved"] += 1
            if order is not None and on_order:
                on_order(order)

        for attempt in self.attempts.fetch_stale_attempts(["pending", "unknown", "charged"], limit=limit):
            outcome = self._resume_attempt(attempt, on_order)
            if outcome:
                report[outcome] += 1

        report["orders_missing_items"] = self.repo.fetch_orders_without_items(limit)
        if report["orders_missing_items"]:
            logger.error("orders.ledger.reconcile orders without items ids=%s", report["orders_missing_items"])
        logger.info("orders.ledger.reconcile report=%s", report)
        return report

    def _apply_repair(self, repair: Dict[str, Any]) -> Optional[Order]:
        payload = repair.get("payload") or {}
        if repair.get("kind") == "missing_order":
            completed = Completed.from_dict(payload["charge"])
            intent = CheckoutIntent.from_json(payload["intent"])
            order = self._commit(completed, intent, escalate=False)
            self.attempts.update_attempt(
                intent.idempotency_key,
                {"status": "committed", "order_id": order.id},
                expected_statuses=["charged", "pending", "unknown"],
            )
            return order
        order_id = payload["order_id"]
        if self.repo.count_order_items(order_id) == 0:
            self.repo.insert_order_items(payload["items"])
        return None

    def _resume_attempt(self, attempt: Dict[str, Any], on_order: Optional[Callable[[Order], Any]]) -> Optional[str]:
        key = attempt["idempotency_key"]
        status = attempt.get("status")
        if status == "charged":
            completed = completed_from_attempt(attempt)
        else:
            result = self.gateway.lookup(key)
            if isinstance(result, Completed):
                completed = result
                self.attempts.update_attempt(key, {
                    "status": "charged",
                    "gateway_reference": completed.gateway_reference,
                    "amount_captured": str(completed.amount_captured),
                    "receipt_url": completed.receipt_url,
                }, expected_statuses=[status])
            elif isinstance(result, (Declined, TokenizationRejected)):
                self.attempts.update_attempt(key, {"status": "declined", "decline_reason": result.reason}, expected_statuses=[status])
                return "attempts_declined"
            else:
                if status == "pending":
                    # Débit introuvable: la même tentative peut être rejouée par le client
                    self.attempts.update_attempt(key, {"status": "unknown"}, expected_statuses=["pending"])
                    return "attempts_released"
                return None

        intent = CheckoutIntent.from_json(attempt["intent"])
        try:
            order = self._commit(completed, intent, escalate=False)
        except PersistenceFailureError:
            logger.exception("orders.ledger.reconcile commit failed key=%s", key)
            return None
        self.attempts.update_attempt(
            key,
            {"status": "committed", "order_id": order.id},
            expected_statuses=["charged", "pending", "unknown"],
        )
        if on_order:
            on_order(order)
        return "attempts_committed"
