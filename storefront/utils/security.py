import secrets
from typing import Optional
from fastapi import Header, HTTPException
from storefront.config import JOBS_SECRET

JOBS_HEADER = "X-Jobs-Token"


def require_jobs_token(x_jobs_token: Optional[str] = Header(default=None, alias=JOBS_HEADER)) -> None:
    """
    Protège les endpoints de jobs planifiés (outbox, réconciliation, relances).
    - 401 si le secret n'est pas configuré, absent ou différent (comparaison à temps constant).
    """
    if not JOBS_SECRET or not x_jobs_token:
        raise HTTPException(status_code=401, detail="Jeton de job manquant")
    if not secrets.compare_digest(x_jobs_token, JOBS_SECRET):
        raise HTTPException(status_code=401, detail="Jeton de job invalide")
