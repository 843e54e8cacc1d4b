from urllib.parse import urlparse
import socket
from storefront.config import SUPABASE_URL
import storefront.infra.supabase_client as supabase_client

TABLES = ["cart_sessions", "orders", "order_items", "checkout_attempts", "order_repairs", "notification_outbox", "email_logs"]


def _check_table(client, name: str):
    try:
        res = client.table(name).select("*").limit(1).execute()
        return {"ok": True, "rows": len(res.data or [])}
    except Exception as e:
        return {"ok": False, "error": str(e)}


def health_supabase_info():
    parsed = urlparse(SUPABASE_URL) if SUPABASE_URL else None
    hostname = parsed.hostname if parsed else None
    dns_ok = None
    dns_error = None
    if hostname:
        try:
            socket.getaddrinfo(hostname, 443)
            dns_ok = True
        except OSError as e:
            dns_ok = False
            dns_error = str(e)

    info = {
        "supabase_url": SUPABASE_URL,
        "hostname": hostname,
        "dns_ok": dns_ok,
        "dns_error": dns_error,
        "connect_ok": False,
        "error": None,
        "tables": {},
    }
    try:
        client = supabase_client.get_service_supabase()
        for t in TABLES:
            info["tables"][t] = _check_table(client, t)
        info["connect_ok"] = all(t["ok"] for t in info["tables"].values())
    except Exception as e:
        info["error"] = str(e)
    return info
