"""
Gestionnaires d'exceptions.
- StorefrontError: {"error": {"code", "message", ...détails}} avec le statut porté par l'erreur
- RequestValidationError (pydantic): mappée sur VALIDATION_FAILED (400)
- HTTPException: forme FastAPI {"detail": ...} (429 rate limit, 401 jobs)
"""
import logging
from fastapi import FastAPI, HTTPException, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from storefront.errors import PersistenceFailureError, StorefrontError, ValidationError

logger = logging.getLogger(__name__)


def register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(StorefrontError)
    async def storefront_error(request: Request, exc: StorefrontError):
        if isinstance(exc, PersistenceFailureError):
            logger.critical("api %s %s -> %s details=%s", request.method, request.url.path, exc.code, exc.details)
        elif exc.status_code >= 500:
            logger.error("api %s %s -> %s", request.method, request.url.path, exc.code)
        return JSONResponse(status_code=exc.status_code, content=exc.to_payload())

    @app.exception_handler(RequestValidationError)
    async def request_validation_error(request: Request, exc: RequestValidationError):
        errors = [
            {"field": ".".join(str(p) for p in err.get("loc", ())[1:]), "message": err.get("msg")}
            for err in exc.errors()
        ]
        error = ValidationError("Requête invalide", errors=errors)
        return JSONResponse(status_code=error.status_code, content=jsonable_encoder(error.to_payload()))

    @app.exception_handler(HTTPException)
    async def http_error(request: Request, exc: HTTPException):
        return JSONResponse(status_code=exc.status_code, content={"detail": exc.detail}, headers=getattr(exc, "headers", None))
