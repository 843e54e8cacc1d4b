"""
ASGI entrypoint: expose `app` pour les process managers / déploiements.

- En production, un process manager (ex: gunicorn + uvicorn workers) importe `storefront.asgi:app`.
- Toute la configuration FastAPI est centralisée dans storefront.app_setup.factory.
"""

from storefront.app import app

__all__ = ["app"]
