import logging
import secrets
from typing import Literal, Optional

from fastapi import APIRouter, Depends, Request, Response
from pydantic import AliasChoices, BaseModel, Field

from storefront.cart.service import CartStore
from storefront.config import CART_SESSION_COOKIE, COOKIE_SECURE
from storefront.errors import ValidationError
from storefront.utils.rate_limit import optional_rate_limit

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/v1/cart", tags=["Cart API"])

CartAction = Literal["GET_CART", "ADD_ITEM", "REMOVE_ITEM", "UPDATE_QUANTITY", "CLEAR_CART"]


class CartRequest(BaseModel):
    action: CartAction
    session_id: Optional[str] = Field(default=None, validation_alias=AliasChoices("session_id", "sessionId"))
    product_id: Optional[str] = Field(default=None, validation_alias=AliasChoices("product_id", "productId"))
    variant_id: Optional[str] = Field(default=None, validation_alias=AliasChoices("variant_id", "variantId"))
    quantity: Optional[int] = None


def get_cart_store() -> CartStore:
    return CartStore()


def set_cart_cookie(response: Response, session_id: str):
    response.set_cookie(
        key=CART_SESSION_COOKIE,
        value=session_id,
        httponly=True,
        secure=COOKIE_SECURE,
        samesite="Lax",
        max_age=60 * 60 * 24 * 30,
        path="/",
    )


# module storefront.cart.views
@router.post("", dependencies=[Depends(optional_rate_limit(times=60, seconds=60))])
def cart_action(body: CartRequest, request: Request, response: Response, store: CartStore = Depends(get_cart_store)):
    """
    Point d'entrée unique du panier (API JSON).
    - Session: body.session_id, sinon cookie cart_session, sinon nouvelle session (GET/ADD seulement)
    - ADD_ITEM: quantité par défaut 1; UPDATE_QUANTITY <= 0 équivaut à REMOVE_ITEM
    - Réponse: {sessionId, items, totalItems, totalAmount}
    - Erreurs: VALIDATION_FAILED (400), PRODUCT_NOT_FOUND (404), CART_CONFLICT (409)
    """
    session_id = (body.session_id or request.cookies.get(CART_SESSION_COOKIE) or "").strip()
    if not session_id:
        if body.action not in ("GET_CART", "ADD_ITEM"):
            raise ValidationError("sessionId manquant")
        session_id = secrets.token_urlsafe(24)

    if body.action in ("ADD_ITEM", "REMOVE_ITEM", "UPDATE_QUANTITY") and not body.product_id:
        raise ValidationError("product_id manquant", action=body.action)

    if body.action == "GET_CART":
        cart = store.get(session_id)
    elif body.action == "ADD_ITEM":
        quantity = body.quantity if body.quantity is not None else 1
        cart = store.add_item(session_id, body.product_id, body.variant_id, quantity)
    elif body.action == "REMOVE_ITEM":
        cart = store.remove_item(session_id, body.product_id, body.variant_id)
    elif body.action == "UPDATE_QUANTITY":
        if body.quantity is None:
            raise ValidationError("quantity manquante", action=body.action)
        cart = store.update_quantity(session_id, body.product_id, body.variant_id, body.quantity)
    else:
        store.clear(session_id)
        cart = store.get(session_id)

    set_cart_cookie(response, session_id)
    logger.info("cart.views.cart_action action=%s session_id=%s items=%s", body.action, session_id, cart.total_items)
    return cart.to_response()
