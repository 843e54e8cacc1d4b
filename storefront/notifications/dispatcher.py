"""
Notifications post-achat (outbox).

Côté requête, notify_* ne fait qu'écrire une ligne dans notification_outbox (dedup_key
unique) et ne lève jamais: un email raté ne doit pas faire échouer un checkout.
Côté worker, deliver()/drain_outbox() envoient, journalisent dans email_logs et mettent
à jour l'outbox (sent | skipped | failed après NOTIFICATION_MAX_ATTEMPTS).
"""
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, Optional
import logging
import secrets
import uuid

from fastapi.templating import Jinja2Templates

from storefront.cart.service import CartStore
from storefront.config import NOTIFICATION_MAX_ATTEMPTS, REORDER_REMINDER_DAYS, STORE_BASE_URL, TEMPLATES_DIR
from storefront.errors import EmptyCartError, StorefrontError
from storefront.notifications import email_client
from storefront.notifications import repository as notifications_repository
from storefront.orders import repository as orders_repository
from storefront.orders.models import Order
from storefront.utils.money import money_json

logger = logging.getLogger(__name__)

templates = Jinja2Templates(directory=str(TEMPLATES_DIR))

ORDER_CONFIRMATION = "order_confirmation"
ABANDONED_CART = "abandoned_cart"
REORDER_REMINDER = "reorder_reminder"

SUBJECTS = {
    ORDER_CONFIRMATION: "Confirmation de votre commande #{order_number}",
    ABANDONED_CART: "Votre panier vous attend",
    REORDER_REMINDER: "Besoin de renouveler votre commande #{order_number} ?",
}


def render_email(email_type: str, payload: Dict[str, Any]) -> Dict[str, str]:
    """Retourne {subject, html}; le HTML est rendu par Jinja2 avec auto-échappement."""
    subject = SUBJECTS[email_type].format(order_number=payload.get("order_number", ""))
    html = templates.get_template(f"emails/{email_type}.html").render(subject=subject, **payload)
    return {"subject": subject, "html": html}


class NotificationDispatcher:
    def __init__(self, repo=None, send: Optional[Callable[[str, str, str], Any]] = None,
                 cart_store: Optional[CartStore] = None, orders_repo=None,
                 max_attempts: int = NOTIFICATION_MAX_ATTEMPTS):
        self.repo = repo or notifications_repository
        self.send = send or email_client.send_email
        self._cart_store = cart_store
        self.orders_repo = orders_repo or orders_repository
        self.max_attempts = max_attempts

    @property
    def cart_store(self) -> CartStore:
        if self._cart_store is None:
            self._cart_store = CartStore()
        return self._cart_store

    def _enqueue(self, email_type: str, subject_id: str, recipient: Optional[str], payload: Dict[str, Any],
                 order_id: Optional[str] = None, cart_session_id: Optional[str] = None) -> str:
        dedup_key = f"{email_type}:{subject_id}"
        queued = self.repo.enqueue({
            "dedup_key": dedup_key,
            "email_type": email_type,
            "recipient": recipient,
            "order_id": order_id,
            "cart_session_id": cart_session_id,
            "payload": payload,
        })
        if not queued:
            logger.info("notifications.dispatcher.enqueue already queued dedup_key=%s", dedup_key)
        return dedup_key

    # Côté requête
    def notify_order_created(self, order: Order) -> Optional[str]:
        """Fire-and-forget: ne lève jamais, retourne la dedup_key (ou None si l'écriture a échoué)."""
        try:
            return self._enqueue(
                ORDER_CONFIRMATION,
                order.id,
                order.customer_email,
                order.to_email_context(),
                order_id=order.id,
            )
        except Exception:
            logger.exception("notifications.dispatcher.notify_order_created failed order_id=%s", order.id)
            return None

    def notify_abandoned_cart(self, session_id: str, customer_email: str) -> str:
        """Pose un jeton de récupération sur le panier et met en file l'email de relance."""
        cart = self.cart_store.get(session_id)
        if cart.is_empty:
            raise EmptyCartError(sessionId=session_id)
        token = secrets.token_urlsafe(24)
        self.cart_store.set_recovery_token(session_id, token, customer_email)
        payload = {
            "recovery_url": f"{STORE_BASE_URL.rstrip('/')}/checkout?recovery={token}",
            "total_amount": money_json(cart.total_amount),
            "items": [
                {
                    "product_name": line.product_name,
                    "variant_name": line.variant_name,
                    "quantity": line.quantity,
                    "price": money_json(line.unit_price),
                    "image_url": line.image_url,
                }
                for line in cart.lines
            ],
        }
        # Une clé par relance: chaque jeton invalide le lien précédent, l'email suivant doit partir
        event_id = uuid.uuid4().hex[:16]
        dedup_key = self._enqueue(ABANDONED_CART, f"{session_id}:{event_id}", customer_email, payload,
                                  cart_session_id=session_id)
        logger.info("notifications.dispatcher.notify_abandoned_cart session_id=%s dedup_key=%s", session_id, dedup_key)
        return dedup_key

    def queue_reorder_reminders(self, days: int = REORDER_REMINDER_DAYS, now: Optional[datetime] = None) -> int:
        """Met en file une relance pour chaque commande 'completed' créée il y a exactement `days` jours."""
        now = now or datetime.now(timezone.utc)
        start = (now - timedelta(days=days)).replace(hour=0, minute=0, second=0, microsecond=0)
        end = start + timedelta(days=1)
        queued = 0
        for row in self.orders_repo.fetch_completed_orders_between(start, end):
            order = Order.from_row(row)
            if not order.customer_email:
                continue
            payload = order.to_email_context()
            payload["reorder_url"] = f"{STORE_BASE_URL.rstrip('/')}/shop"
            if self.repo.enqueue({
                "dedup_key": f"{REORDER_REMINDER}:{order.id}",
                "email_type": REORDER_REMINDER,
                "recipient": order.customer_email,
                "order_id": order.id,
                "payload": payload,
            }):
                queued += 1
        logger.info("notifications.dispatcher.queue_reorder_reminders days=%s queued=%s", days, queued)
        return queued

    # Côté worker
    def deliver(self, dedup_key: str) -> str:
        """Envoie un email de l'outbox. Ne lève jamais; retourne le statut final de la ligne."""
        try:
            row = self.repo.fetch_outbox(dedup_key)
        except StorefrontError:
            return "error"
        if not row:
            return "missing"
        return self._deliver_row(row)

    def _deliver_row(self, row: Dict[str, Any]) -> str:
        dedup_key = row.get("dedup_key")
        email_type = row.get("email_type")
        status = row.get("status")
        if status in ("sent", "skipped", "failed"):
            return status
        recipient = row.get("recipient")
        try:
            if not recipient:
                self.repo.update_outbox(dedup_key, {"status": "skipped", "last_error": "no recipient"})
                return "skipped"
            # Le journal ne fait foi que pour les emails liés à une commande; ailleurs la ligne d'outbox suffit
            if row.get("order_id") and self.repo.has_email_log(email_type, order_id=row.get("order_id")):
                self.repo.update_outbox(dedup_key, {"status": "skipped", "last_error": "already sent"})
                return "skipped"

            rendered = render_email(email_type, row.get("payload") or {})
            try:
                self.send(recipient, rendered["subject"], rendered["html"])
            except StorefrontError as e:
                attempts = int(row.get("attempts") or 0) + 1
                final = "failed" if attempts >= self.max_attempts else "pending"
                self.repo.update_outbox(dedup_key, {"status": final, "attempts": attempts, "last_error": str(e)[:500]})
                logger.warning("notifications.dispatcher.deliver send failed dedup_key=%s attempts=%s error=%s", dedup_key, attempts, e)
                return final

            self.repo.insert_email_log(
                recipient_email=recipient,
                email_type=email_type,
                subject=rendered["subject"],
                status="sent",
                order_id=row.get("order_id"),
                cart_session_id=row.get("cart_session_id"),
            )
            self.repo.update_outbox(dedup_key, {
                "status": "sent",
                "attempts": int(row.get("attempts") or 0) + 1,
                "last_error": None,
            })
            return "sent"
        except Exception:
            logger.exception("notifications.dispatcher.deliver failed dedup_key=%s", dedup_key)
            return "error"

    def drain_outbox(self, limit: int = 50) -> Dict[str, int]:
        counts: Dict[str, int] = {}
        for row in self.repo.fetch_pending(limit):
            status = self._deliver_row(row)
            counts[status] = counts.get(status, 0) + 1
        logger.info("notifications.dispatcher.drain_outbox counts=%s", counts)
        return counts
