"""
Middlewares transverses de l'application.
- register_basic_middlewares: CORS, TrustedHost et confiance en X-Forwarded-*.
- register_security_middleware: en-têtes de sécurité et no-store sur les réponses de l'API.
"""
from fastapi import Request, FastAPI
from fastapi.middleware.cors import CORSMiddleware
from starlette.middleware.trustedhost import TrustedHostMiddleware
from uvicorn.middleware.proxy_headers import ProxyHeadersMiddleware
from storefront.config import COOKIE_SECURE, CORS_ORIGINS, ALLOWED_HOSTS


def register_basic_middlewares(app: FastAPI) -> None:
    """
    - CORSMiddleware: autorise les origines définies (dev/prod).
    - TrustedHostMiddleware: limite les hôtes acceptés (défense host header).
    - ProxyHeadersMiddleware: fait confiance aux en-têtes du proxy (x-forwarded-*),
      nécessaire pour que le rate limiting par IP voie l'IP cliente réelle.
    """
    app.add_middleware(
        CORSMiddleware,
        allow_origins=CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_middleware(
        TrustedHostMiddleware,
        allowed_hosts=ALLOWED_HOSTS + ["*"] if "*" in CORS_ORIGINS else ALLOWED_HOSTS,
    )
    app.add_middleware(ProxyHeadersMiddleware, trusted_hosts=["*"])


def register_security_middleware(app: FastAPI) -> None:
    @app.middleware("http")
    async def security_headers(request: Request, call_next):
        response = await call_next(request)
        if "X-Frame-Options" not in response.headers:
            response.headers["X-Frame-Options"] = "DENY"
        if "X-Content-Type-Options" not in response.headers:
            response.headers["X-Content-Type-Options"] = "nosniff"
        if "Referrer-Policy" not in response.headers:
            response.headers["Referrer-Policy"] = "no-referrer"
        if COOKIE_SECURE and "Strict-Transport-Security" not in response.headers:
            response.headers["Strict-Transport-Security"] = "max-age=63072000; includeSubDomains; preload"
        # Panier et paiements: jamais de cache intermédiaire
        if request.url.path.startswith("/api/"):
            response.headers["Cache-Control"] = "no-store"
        return response
