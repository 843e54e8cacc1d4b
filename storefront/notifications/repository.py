"""
Accès aux données pour la feature 'notifications':
- notification_outbox: file d'emails à envoyer (dedup_key unique)
- email_logs: journal des envois (anti-doublon entre jobs et rejeux)
"""
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional
import logging

import storefront.infra.supabase_client as supabase_client
from storefront.errors import StorageUnavailableError

logger = logging.getLogger(__name__)

OUTBOX = "notification_outbox"


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


# module storefront.notifications.repository
def enqueue(row: Dict[str, Any]) -> bool:
    """Ajoute un email à l'outbox. False si dedup_key existe déjà (déjà en file)."""
    payload = dict(row)
    payload.setdefault("status", "pending")
    payload.setdefault("attempts", 0)
    payload.setdefault("created_at", _now_iso())
    try:
        supabase_client.get_service_supabase().table(OUTBOX).insert(payload).execute()
        return True
    except Exception as e:
        if supabase_client.is_duplicate_key(e):
            return False
        logger.exception("notifications.repository.enqueue failed dedup_key=%s", row.get("dedup_key"))
        raise StorageUnavailableError() from e


def fetch_outbox(dedup_key: str) -> Optional[Dict[str, Any]]:
    try:
        res = (
            supabase_client.get_service_supabase()
            .table(OUTBOX)
            .select("*")
            .eq("dedup_key", dedup_key)
            .limit(1)
            .execute()
        )
    except Exception as e:
        logger.exception("notifications.repository.fetch_outbox failed dedup_key=%s", dedup_key)
        raise StorageUnavailableError() from e
    rows = res.data or []
    return rows[0] if rows else None


def fetch_pending(limit: int = 50) -> List[Dict[str, Any]]:
    try:
        res = (
            supabase_client.get_service_supabase()
            .table(OUTBOX)
            .select("*")
            .eq("status", "pending")
            .order("created_at")
            .limit(limit)
            .execute()
        )
    except Exception as e:
        logger.exception("notifications.repository.fetch_pending failed")
        raise StorageUnavailableError() from e
    return res.data or []


def update_outbox(dedup_key: str, fields: Dict[str, Any]) -> None:
    try:
        supabase_client.get_service_supabase().table(OUTBOX).update(fields).eq("dedup_key", dedup_key).execute()
    except Exception as e:
        logger.exception("notifications.repository.update_outbox failed dedup_key=%s", dedup_key)
        raise StorageUnavailableError() from e


def has_email_log(email_type: str, order_id: str) -> bool:
    """Vrai si un email de ce type a déjà été envoyé pour cette commande."""
    try:
        res = (
            supabase_client.get_service_supabase()
            .table("email_logs")
            .select("id")
            .eq("email_type", email_type)
            .eq("status", "sent")
            .eq("order_id", order_id)
            .limit(1)
            .execute()
        )
    except Exception as e:
        logger.exception("notifications.repository.has_email_log failed type=%s order_id=%s", email_type, order_id)
        raise StorageUnavailableError() from e
    return bool(res.data)


def insert_email_log(*, recipient_email: str, email_type: str, subject: str, status: str,
                     order_id: Optional[str] = None, cart_session_id: Optional[str] = None) -> None:
    try:
        supabase_client.get_service_supabase().table("email_logs").insert({
            "recipient_email": recipient_email,
            "email_type": email_type,
            "subject": subject,
            "order_id": order_id,
            "cart_session_id": cart_session_id,
            "status": status,
            "sent_at": _now_iso(),
        }).execute()
    except Exception as e:
        logger.exception("notifications.repository.insert_email_log failed type=%s to=%s", email_type, recipient_email)
        raise StorageUnavailableError() from e
