"""
Accès aux données pour la feature 'orders' (orders, order_items, order_repairs).
orders et order_items sont en ajout seul dans ce pipeline.
"""
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional
import logging

import storefront.infra.supabase_client as supabase_client
from storefront.errors import StorageUnavailableError

logger = logging.getLogger(__name__)

ORDER_COLUMNS = (
    "id, payment_reference, idempotency_key, status, fulfillment_status, total_amount, currency, "
    "customer_email, shipping_address, billing_address, created_at"
)


# module storefront.orders.repository
def fetch_order_by_payment_reference(payment_reference: str) -> Optional[Dict[str, Any]]:
    try:
        res = (
            supabase_client.get_service_supabase()
            .table("orders")
            .select(ORDER_COLUMNS + ", order_items(*)")
            .eq("payment_reference", payment_reference)
            .limit(1)
            .execute()
        )
    except Exception as e:
        logger.exception("orders.repository.fetch_order_by_payment_reference failed ref=%s", payment_reference)
        raise StorageUnavailableError() from e
    rows = res.data or []
    return rows[0] if rows else None


def insert_order(row: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    """Insère la commande. None si payment_reference/idempotency_key existe déjà (23505)."""
    try:
        res = supabase_client.get_service_supabase().table("orders").insert(row).execute()
    except Exception as e:
        if supabase_client.is_duplicate_key(e):
            logger.info("orders.repository.insert_order duplicate ref=%s", row.get("payment_reference"))
            return None
        logger.exception("orders.repository.insert_order failed ref=%s", row.get("payment_reference"))
        raise StorageUnavailableError() from e
    rows = res.data or []
    return rows[0] if rows else row


def insert_order_items(rows: List[Dict[str, Any]]) -> None:
    """Insertion groupée (une seule instruction, tout ou rien côté Postgres)."""
    if not rows:
        return
    try:
        supabase_client.get_service_supabase().table("order_items").insert(rows).execute()
    except Exception as e:
        logger.exception("orders.repository.insert_order_items failed order_id=%s", rows[0].get("order_id"))
        raise StorageUnavailableError() from e


def count_order_items(order_id: str) -> int:
    try:
        res = (
            supabase_client.get_service_supabase()
            .table("order_items")
            .select("id")
            .eq("order_id", order_id)
            .execute()
        )
    except Exception as e:
        logger.exception("orders.repository.count_order_items failed order_id=%s", order_id)
        raise StorageUnavailableError() from e
    return len(res.data or [])


def fetch_orders_without_items(limit: int = 100) -> List[str]:
    try:
        res = (
            supabase_client.get_service_supabase()
            .table("orders")
            .select("id, order_items(id)")
            .order("created_at", desc=True)
            .limit(limit)
            .execute()
        )
    except Exception as e:
        logger.exception("orders.repository.fetch_orders_without_items failed")
        raise StorageUnavailableError() from e
    return [str(r.get("id")) for r in (res.data or []) if not r.get("order_items")]


def fetch_completed_orders_between(start: datetime, end: datetime) -> List[Dict[str, Any]]:
    """Commandes 'completed' créées dans [start, end[ avec leurs lignes (relances de ré-achat)."""
    try:
        res = (
            supabase_client.get_service_supabase()
            .table("orders")
            .select(ORDER_COLUMNS + ", order_items(*)")
            .eq("status", "completed")
            .gte("created_at", start.isoformat())
            .lt("created_at", end.isoformat())
            .execute()
        )
    except Exception as e:
        logger.exception("orders.repository.fetch_completed_orders_between failed start=%s", start)
        raise StorageUnavailableError() from e
    return res.data or []


# File de réparation
def insert_repair(kind: str, payment_reference: str, payload: Dict[str, Any],
                  order_id: Optional[str] = None, idempotency_key: Optional[str] = None) -> bool:
    try:
        supabase_client.get_service_supabase().table("order_repairs").insert({
            "kind": kind,
            "payment_reference": payment_reference,
            "order_id": order_id,
            "idempotency_key": idempotency_key,
            "payload": payload,
            "status": "pending",
            "created_at": datetime.now(timezone.utc).isoformat(),
        }).execute()
        return True
    except Exception:
        logger.exception("orders.repository.insert_repair failed kind=%s ref=%s", kind, payment_reference)
        return False


def fetch_pending_repairs(kinds: List[str], limit: int = 50) -> List[Dict[str, Any]]:
    try:
        res = (
            supabase_client.get_service_supabase()
            .table("order_repairs")
            .select("*")
            .eq("status", "pending")
            .in_("kind", kinds)
            .order("created_at")
            .limit(limit)
            .execute()
        )
    except Exception as e:
        logger.exception("orders.repository.fetch_pending_repairs failed")
        raise StorageUnavailableError() from e
    return res.data or []


def update_repair(repair_id: Any, status: str, last_error: Optional[str] = None) -> None:
    try:
        (
            supabase_client.get_service_supabase()
            .table("order_repairs")
            .update({"status": status, "last_error": last_error})
            .eq("id", repair_id)
            .execute()
        )
    except Exception as e:
        logger.exception("orders.repository.update_repair failed id=%s", repair_id)
        raise StorageUnavailableError() from e
