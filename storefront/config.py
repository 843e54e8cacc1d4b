# storefront.config
from decimal import Decimal
from pathlib import Path
import os
from dotenv import load_dotenv

# Calculer le chemin du projet puis charger .env de manière explicite
BASE_DIR = Path(__file__).resolve().parent.parent
ENV_PATH = BASE_DIR / ".env"
load_dotenv(dotenv_path=ENV_PATH, override=True)

TEMPLATES_DIR = Path(__file__).resolve().parent / "templates"

"""
Configuration centrale du pipeline panier -> commande.

- Charge le fichier .env à la racine du projet (BASE_DIR/.env)
- Normalise et expose les secrets/URLs (Supabase, Stripe, fournisseur email)
- Expose les réglages métier du checkout (devise, tolérance, retries CAS)
- Expose CORS/hosts et le secret des jobs planifiés
"""

def _clean_env(v: str) -> str:
    """
    Nettoie une valeur d'environnement:
    - supprime les espaces et guillemets (simples, doubles) et backticks
    - retourne toujours une chaîne (jamais None)
    """
    return (v or "").strip().strip("'").strip('"').strip("`")

def _int_env(name: str, default: int) -> int:
    try:
        return int(_clean_env(os.getenv(name) or "") or default)
    except ValueError:
        return default

# Supabase: URL et clé service-role (toutes les lectures/écritures passent par le serveur)
# - SUPABASE_URL peut parfois être sans schéma: on préfixe en https:// si nécessaire
SUPABASE_URL = _clean_env(os.getenv("SUPABASE_URL") or os.getenv("NEXT_PUBLIC_SUPABASE_URL") or "")
SUPABASE_SERVICE_KEY = _clean_env(os.getenv("SUPABASE_SERVICE_KEY") or os.getenv("SUPABASE_SERVICE_ROLE_KEY") or "")

if SUPABASE_URL and not SUPABASE_URL.startswith("http"):
    SUPABASE_URL = "https://" + SUPABASE_URL
if SUPABASE_URL.endswith("/"):
    SUPABASE_URL = SUPABASE_URL.rstrip("/")

# Stripe: clé secrète et retries réseau du SDK (réutilisent la même clé d'idempotence)
STRIPE_SECRET_KEY = _clean_env(os.getenv("STRIPE_SECRET_KEY") or "")
STRIPE_MAX_NETWORK_RETRIES = _int_env("STRIPE_MAX_NETWORK_RETRIES", 2)

# Checkout: devise ISO (minuscule pour Stripe) et tolérance absolue client/serveur
CHECKOUT_CURRENCY = _clean_env(os.getenv("CHECKOUT_CURRENCY") or "usd").lower()
AMOUNT_TOLERANCE = Decimal(_clean_env(os.getenv("AMOUNT_TOLERANCE") or "0.01"))

# Panier: nombre max de tentatives read-modify-write avant CART_CONFLICT
CART_CAS_MAX_ATTEMPTS = _int_env("CART_CAS_MAX_ATTEMPTS", 10)

# Emails transactionnels (API HTTP du fournisseur, ex: GoHighLevel)
EMAIL_API_URL = _clean_env(os.getenv("EMAIL_API_URL") or "https://services.leadconnectorhq.com/hooks/emails")
GHL_API_KEY = _clean_env(os.getenv("GOHIGHLEVEL_API_KEY") or os.getenv("GHL_API_KEY") or "")
GHL_LOCATION_ID = _clean_env(os.getenv("GOHIGHLEVEL_LOCATION_ID") or os.getenv("GHL_LOCATION_ID") or "")
EMAIL_FROM = _clean_env(os.getenv("EMAIL_FROM") or "orders@example.com")
EMAIL_FROM_NAME = _clean_env(os.getenv("EMAIL_FROM_NAME") or "Boutique")
NOTIFICATION_MAX_ATTEMPTS = _int_env("NOTIFICATION_MAX_ATTEMPTS", 5)
REORDER_REMINDER_DAYS = _int_env("REORDER_REMINDER_DAYS", 14)

# Liens insérés dans les emails (récupération de panier, ré-achat)
STORE_BASE_URL = _clean_env(os.getenv("STORE_BASE_URL") or os.getenv("BASE_URL") or "http://localhost:8000")

# Jobs planifiés (outbox, réconciliation, relances): secret partagé du planificateur
JOBS_SECRET = _clean_env(os.getenv("JOBS_SECRET") or "")

# CORS / hosts
CORS_ORIGINS = [o.strip() for o in os.getenv("CORS_ORIGINS", "*").split(",") if o.strip()]
ALLOWED_HOSTS = [h.strip() for h in os.getenv("ALLOWED_HOSTS", "localhost,127.0.0.1,testserver").split(",") if h.strip()]
COOKIE_SECURE = (os.getenv("COOKIE_SECURE", "false").lower() == "true")

# Cookie portant l'identifiant opaque de session panier (clé du rate limiting)
CART_SESSION_COOKIE = os.getenv("CART_SESSION_COOKIE", "cart_session")
