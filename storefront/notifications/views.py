import logging

from fastapi import APIRouter, BackgroundTasks, Depends
from pydantic import AliasChoices, BaseModel, EmailStr, Field

from storefront.notifications.dispatcher import NotificationDispatcher
from storefront.utils.rate_limit import optional_rate_limit

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/v1/notifications", tags=["Notifications API"])


class AbandonedCartRequest(BaseModel):
    session_id: str = Field(min_length=1, validation_alias=AliasChoices("sessionId", "session_id"))
    customer_email: EmailStr = Field(validation_alias=AliasChoices("customerEmail", "customer_email"))


def get_dispatcher() -> NotificationDispatcher:
    return NotificationDispatcher()


@router.post("/abandoned-cart", dependencies=[Depends(optional_rate_limit(times=5, seconds=60))])
def abandoned_cart(body: AbandonedCartRequest, background_tasks: BackgroundTasks,
                   dispatcher: NotificationDispatcher = Depends(get_dispatcher)):
    """Met en file l'email de panier abandonné (lien de récupération) et l'envoie après la réponse."""
    dedup_key = dispatcher.notify_abandoned_cart(body.session_id, str(body.customer_email))
    background_tasks.add_task(dispatcher.deliver, dedup_key)
    return {"success": True, "dedupKey": dedup_key}
