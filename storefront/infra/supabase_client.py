from typing import Optional
from supabase import create_client, Client
from storefront.config import SUPABASE_URL, SUPABASE_SERVICE_KEY

_service_supabase: Optional[Client] = None

def get_service_supabase() -> Client:
    """
    Client service-role (bypass RLS): toutes les écritures du pipeline panier/commande
    passent par lui, le navigateur n'ayant jamais accès direct aux tables.
    """
    global _service_supabase
    if not SUPABASE_SERVICE_KEY:
        raise RuntimeError("SUPABASE_SERVICE_KEY manquant pour get_service_supabase()")
    if _service_supabase is None:
        _service_supabase = create_client(SUPABASE_URL, SUPABASE_SERVICE_KEY)
    return _service_supabase

def is_duplicate_key(exc: Exception) -> bool:
    """
    Vrai si l'erreur PostgREST correspond à une violation d'unicité Postgres (23505).
    """
    code = getattr(exc, "code", None)
    if not code and exc.args and isinstance(exc.args[0], dict):
        code = exc.args[0].get("code")
    return str(code or "") == "23505"
