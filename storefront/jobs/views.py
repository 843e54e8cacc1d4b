"""
Points d'entrée des jobs planifiés (cron externe), protégés par l'en-tête X-Jobs-Token.
- drain-outbox: envoie les emails en attente
- reconcile: répare les commandes (débits sans commande, lignes manquantes, tentatives bloquées)
- reorder-reminders: met en file les relances de ré-achat (commandes d'il y a N jours)
"""
import logging

from fastapi import APIRouter, Depends, Query

from storefront.config import REORDER_REMINDER_DAYS
from storefront.notifications.dispatcher import NotificationDispatcher
from storefront.notifications.views import get_dispatcher
from storefront.orders.ledger import OrderLedger
from storefront.utils.security import require_jobs_token

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/v1/jobs", tags=["Jobs"], dependencies=[Depends(require_jobs_token)])


def get_ledger() -> OrderLedger:
    return OrderLedger()


@router.post("/drain-outbox")
def drain_outbox(limit: int = Query(50, ge=1, le=500), dispatcher: NotificationDispatcher = Depends(get_dispatcher)):
    return {"status": "ok", "counts": dispatcher.drain_outbox(limit)}


@router.post("/reconcile")
def reconcile(
    limit: int = Query(50, ge=1, le=500),
    ledger: OrderLedger = Depends(get_ledger),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
):
    report = ledger.reconcile(limit, on_order=dispatcher.notify_order_created)
    return {"status": "ok", "report": report}


@router.post("/reorder-reminders")
def reorder_reminders(
    days: int = Query(REORDER_REMINDER_DAYS, ge=1, le=365),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
):
    queued = dispatcher.queue_reorder_reminders(days)
    return {"status": "ok", "queued": queued}
