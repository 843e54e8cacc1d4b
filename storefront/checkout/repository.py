"""
Accès aux données des tentatives de paiement (table checkout_attempts).

Une ligne par clé d'idempotence. Statuts:
- pending: débit en cours (une seule requête à la fois)
- unknown: la passerelle n'a pas répondu, la même tentative peut être rejouée
- declined: refus définitif pour cette clé
- charged: débit capturé, commande pas encore enregistrée
- committed: commande enregistrée (order_id renseigné)
"""
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Iterable, List, Optional
import logging

import storefront.infra.supabase_client as supabase_client
from storefront.errors import StorageUnavailableError

logger = logging.getLogger(__name__)

TABLE = "checkout_attempts"


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


# module storefront.checkout.repository
def fetch_attempt(idempotency_key: str) -> Optional[Dict[str, Any]]:
    try:
        res = (
            supabase_client.get_service_supabase()
            .table(TABLE)
            .select("*")
            .eq("idempotency_key", idempotency_key)
            .limit(1)
            .execute()
        )
    except Exception as e:
        logger.exception("checkout.repository.fetch_attempt failed key=%s", idempotency_key)
        raise StorageUnavailableError() from e
    rows = res.data or []
    return rows[0] if rows else None


def fetch_attempt_by_nonce(session_id: str, attempt_nonce: str) -> Optional[Dict[str, Any]]:
    """Dernière tentative d'une session pour un nonce client (rejeu après vidage du panier)."""
    try:
        res = (
            supabase_client.get_service_supabase()
            .table(TABLE)
            .select("*")
            .eq("session_id", session_id)
            .eq("attempt_nonce", attempt_nonce)
            .order("created_at", desc=True)
            .limit(1)
            .execute()
        )
    except Exception as e:
        logger.exception("checkout.repository.fetch_attempt_by_nonce failed session_id=%s", session_id)
        raise StorageUnavailableError() from e
    rows = res.data or []
    return rows[0] if rows else None


def insert_attempt(row: Dict[str, Any]) -> bool:
    """Crée la tentative en 'pending'. False si la clé existe déjà (23505)."""
    payload = dict(row)
    payload.setdefault("status", "pending")
    payload.setdefault("created_at", _now_iso())
    payload["updated_at"] = payload["created_at"]
    try:
        supabase_client.get_service_supabase().table(TABLE).insert(payload).execute()
        return True
    except Exception as e:
        if supabase_client.is_duplicate_key(e):
            return False
        logger.exception("checkout.repository.insert_attempt failed key=%s", row.get("idempotency_key"))
        raise StorageUnavailableError() from e


def update_attempt(idempotency_key: str, fields: Dict[str, Any], expected_statuses: Optional[Iterable[str]] = None) -> bool:
    """
    Met à jour la tentative. Avec expected_statuses, la mise à jour est conditionnelle
    (transition de statut atomique); retourne False si aucune ligne ne correspondait.
    """
    payload = dict(fields)
    payload["updated_at"] = _now_iso()
    try:
        query = (
            supabase_client.get_service_supabase()
            .table(TABLE)
            .update(payload)
            .eq("idempotency_key", idempotency_key)
        )
        if expected_statuses is not None:
            query = query.in_("status", list(expected_statuses))
        res = query.execute()
    except Exception as e:
        logger.exception("checkout.repository.update_attempt failed key=%s fields=%s", idempotency_key, list(fields))
        raise StorageUnavailableError() from e
    return bool(res.data)


def fetch_stale_attempts(statuses: Iterable[str], older_than_seconds: int = 120, limit: int = 50) -> List[Dict[str, Any]]:
    """Tentatives bloquées (crash, timeout) à reprendre par la réconciliation."""
    cutoff = (datetime.now(timezone.utc) - timedelta(seconds=older_than_seconds)).isoformat()
    try:
        res = (
            supabase_client.get_service_supabase()
            .table(TABLE)
            .select("*")
            .in_("status", list(statuses))
            .lt("updated_at", cutoff)
            .order("updated_at")
            .limit(limit)
            .execute()
        )
    except Exception as e:
        logger.exception("checkout.repository.fetch_stale_attempts failed")
        raise StorageUnavailableError() from e
    return res.data or []
