from typing import Dict, Any
from fastapi import Request, Response, HTTPException
import os
import time
import hashlib
from storefront.config import CART_SESSION_COOKIE


def _client_key(req: Request) -> str:
    # Priorité: cookie de session panier (hashé) puis IP, toujours suffixé par le chemin
    token = req.cookies.get(CART_SESSION_COOKIE)
    path = req.url.path
    if token:
        h = hashlib.sha256(token.encode("utf-8")).hexdigest()[:16]
        return f"cart:{h}:{path}"
    ip = req.client.host if req.client else "local"
    return f"ip:{ip}:{path}"


def optional_rate_limit(times: int, seconds: int):
    """
    Dépendance FastAPI de rate limiting.
    - LOCAL_RATE_LIMIT_FALLBACK=1: fenêtre glissante en mémoire (app.state._rl_store)
    - app.state.rate_limit_enabled=False: aucune limite
    - sinon fastapi-limiter (Redis); une erreur du limiter ne bloque jamais la requête
    """
    async def _dep(request: Request, response: Response):
        if os.getenv("LOCAL_RATE_LIMIT_FALLBACK") == "1":
            now = time.time()
            key = _client_key(request)
            store = getattr(request.app.state, "_rl_store", {})
            hits = [t for t in store.get(key, []) if now - t < seconds]
            if len(hits) >= times:
                raise HTTPException(status_code=429, detail="Too Many Requests")
            hits.append(now)
            store[key] = hits
            request.app.state._rl_store = store
            return

        if getattr(request.app.state, "rate_limit_enabled", None) is False:
            return

        try:
            from fastapi_limiter import FastAPILimiter
            from fastapi_limiter.depends import RateLimiter
        except ImportError:
            return
        if getattr(FastAPILimiter, "redis", None) is None:
            return

        async def _identifier(req: Request) -> str:
            return _client_key(req)

        limiter = RateLimiter(times=times, seconds=seconds, identifier=_identifier)
        try:
            return await limiter(request, response)
        except HTTPException:
            raise
        except Exception:
            # Redis indisponible en cours de route: pas de 429 en production
            return
    return _dep


def rate_limit_health_info(request: Request) -> Dict[str, Any]:
    enabled = getattr(request.app.state, "rate_limit_enabled", None)

    limiter_ready = False
    backend = None
    try:
        from fastapi_limiter import FastAPILimiter
        limiter_ready = getattr(FastAPILimiter, "redis", None) is not None
        backend = "redis" if limiter_ready else None
    except ImportError:
        pass
    if os.getenv("LOCAL_RATE_LIMIT_FALLBACK") == "1":
        backend = "memory"

    info: Dict[str, Any] = {
        "enabled": (bool(enabled) if enabled is not None else None),
        "ready": limiter_ready,
        "backend": backend,
    }

    redis_url = os.getenv("RATE_LIMIT_REDIS_URL")
    if backend == "redis" and redis_url:
        from urllib.parse import urlparse
        p = urlparse(redis_url)
        info["redis"] = {"scheme": p.scheme, "host": p.hostname, "port": p.port}

    return info
