"""
Accès aux données pour la feature 'cart' (table cart_sessions).
Toutes les écritures sont conditionnées par `version` et `updated_at` (compare-and-swap):
une session supprimée puis recréée repart à version=1, seul updated_at la distingue.
Les lectures et écritures lèvent StorageUnavailableError: un panier illisible ne doit
jamais être confondu avec un panier vide.
"""
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional
import logging

import storefront.infra.supabase_client as supabase_client
from storefront.errors import StorageUnavailableError

logger = logging.getLogger(__name__)

TABLE = "cart_sessions"
COLUMNS = "session_id, cart_data, version, updated_at, customer_email"


def _ts(value: Optional[datetime]) -> str:
    return (value or datetime.now(timezone.utc)).isoformat()


# module storefront.cart.repository
def fetch_cart_session(session_id: str) -> Optional[Dict[str, Any]]:
    try:
        res = (
            supabase_client.get_service_supabase()
            .table(TABLE)
            .select(COLUMNS)
            .eq("session_id", session_id)
            .limit(1)
            .execute()
        )
    except Exception as e:
        logger.exception("cart.repository.fetch_cart_session failed session_id=%s", session_id)
        raise StorageUnavailableError() from e
    rows = res.data or []
    return rows[0] if rows else None


def insert_cart_session(session_id: str, cart_data: List[Dict[str, Any]], updated_at: Optional[datetime] = None) -> bool:
    """
    Première écriture (version=1). Retourne False si la ligne existe déjà (23505):
    l'appelant relit puis repasse par compare_and_swap_cart.
    """
    try:
        (
            supabase_client.get_service_supabase()
            .table(TABLE)
            .insert({
                "session_id": session_id,
                "cart_data": cart_data,
                "version": 1,
                "updated_at": _ts(updated_at),
            })
            .execute()
        )
        return True
    except Exception as e:
        if supabase_client.is_duplicate_key(e):
            logger.info("cart.repository.insert_cart_session duplicate session_id=%s", session_id)
            return False
        logger.exception("cart.repository.insert_cart_session failed session_id=%s", session_id)
        raise StorageUnavailableError() from e


def compare_and_swap_cart(session_id: str, expected_version: int, cart_data: List[Dict[str, Any]],
                          expected_updated_at: Optional[datetime] = None,
                          updated_at: Optional[datetime] = None) -> bool:
    """UPDATE ... WHERE session_id=? AND version=? [AND updated_at=?]; False si une autre écriture est passée avant."""
    try:
        query = (
            supabase_client.get_service_supabase()
            .table(TABLE)
            .update({
                "cart_data": cart_data,
                "version": expected_version + 1,
                "updated_at": _ts(updated_at),
            })
            .eq("session_id", session_id)
            .eq("version", expected_version)
        )
        if expected_updated_at is not None:
            query = query.eq("updated_at", expected_updated_at.isoformat())
        res = query.execute()
    except Exception as e:
        logger.exception("cart.repository.compare_and_swap_cart failed session_id=%s", session_id)
        raise StorageUnavailableError() from e
    return bool(res.data)


def delete_cart_session(session_id: str, expected_version: Optional[int] = None,
                        expected_updated_at: Optional[datetime] = None) -> bool:
    try:
        query = supabase_client.get_service_supabase().table(TABLE).delete().eq("session_id", session_id)
        if expected_version is not None:
            query = query.eq("version", expected_version)
            if expected_updated_at is not None:
                query = query.eq("updated_at", expected_updated_at.isoformat())
        res = query.execute()
    except Exception as e:
        logger.exception("cart.repository.delete_cart_session failed session_id=%s", session_id)
        raise StorageUnavailableError() from e
    if expected_version is None:
        return True
    return bool(res.data)


def set_recovery_token(session_id: str, token: str, customer_email: Optional[str] = None) -> bool:
    """Pose cart_recovery_token (emails de panier abandonné). Ne touche pas à la version."""
    payload: Dict[str, Any] = {"cart_recovery_token": token}
    if customer_email:
        payload["customer_email"] = customer_email
    try:
        res = (
            supabase_client.get_service_supabase()
            .table(TABLE)
            .update(payload)
            .eq("session_id", session_id)
            .execute()
        )
        return bool(res.data)
    except Exception as e:
        logger.exception("cart.repository.set_recovery_token failed session_id=%s", session_id)
        raise StorageUnavailableError() from e
