"""
Client HTTP du fournisseur d'emails transactionnels (endpoint GoHighLevel hooks/emails).
"""
from typing import Any, Dict
import logging

import httpx

from storefront.config import EMAIL_API_URL, EMAIL_FROM, EMAIL_FROM_NAME, GHL_API_KEY, GHL_LOCATION_ID
from storefront.errors import NotificationError

logger = logging.getLogger(__name__)

TIMEOUT_SECONDS = 10.0


# module storefront.notifications.email_client
def send_email(to: str, subject: str, html: str) -> Dict[str, Any]:
    """
    Envoie un email HTML.
    - Auth: Bearer GHL_API_KEY, locationId obligatoire
    - Lève NotificationError si non configuré, réseau KO ou statut HTTP >= 400
    """
    if not GHL_API_KEY or not GHL_LOCATION_ID:
        raise NotificationError("Fournisseur email non configuré (GHL_API_KEY / GHL_LOCATION_ID)")
    body = {
        "locationId": GHL_LOCATION_ID,
        "to": to,
        "subject": subject,
        "html": html,
        "from": EMAIL_FROM,
        "fromName": EMAIL_FROM_NAME,
    }
    try:
        res = httpx.post(
            EMAIL_API_URL,
            json=body,
            headers={"Authorization": f"Bearer {GHL_API_KEY}", "Content-Type": "application/json"},
            timeout=TIMEOUT_SECONDS,
        )
    except httpx.HTTPError as e:
        raise NotificationError(f"Envoi email impossible: {e}") from e
    if res.status_code >= 400:
        raise NotificationError(f"Envoi email refusé: HTTP {res.status_code} {res.text[:200]}")
    logger.info("notifications.email_client.send_email ok to=%s subject=%s", to, subject)
    try:
        return res.json()
    except ValueError:
        return {}
