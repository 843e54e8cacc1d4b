"""
Registre central des routers (API v1, jobs, health).
"""
from fastapi import FastAPI
from storefront.cart import views as cart_views
from storefront.checkout import views as checkout_views
from storefront.notifications import views as notifications_views
from storefront.jobs import views as jobs_views
from storefront.health.router import router as health_router


def register_routers(app: FastAPI) -> None:
    # API v1
    app.include_router(cart_views.router)
    app.include_router(checkout_views.router)
    app.include_router(notifications_views.router)
    # Jobs planifiés
    app.include_router(jobs_views.router)
    # Health & monitoring
    app.include_router(health_router)
