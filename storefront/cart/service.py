"""
Cas d'usage 'cart': mutations du panier sous verrou optimiste.

Chaque mutation suit le cycle lecture -> modification en mémoire -> écriture conditionnée
par la version (compare-and-swap). Un conflit relance tout le cycle (tenacity, jitter
aléatoire, nombre de tentatives borné); au-delà, CartConflictError (409).
"""
from datetime import datetime
from typing import Callable, Dict, Iterable, List, Optional
import logging

from tenacity import Retrying, retry_if_exception_type, stop_after_attempt, wait_random

from storefront.cart import repository as cart_repository
from storefront.cart.models import CartLine, CartSession, utcnow
from storefront.cart.pricing import PriceSnapshotResolver
from storefront.config import CART_CAS_MAX_ATTEMPTS
from storefront.errors import CartConflictError, ValidationError

logger = logging.getLogger(__name__)

Mutation = Callable[[CartSession], Optional[List[CartLine]]]


def _check_quantity(quantity) -> int:
    if isinstance(quantity, bool) or not isinstance(quantity, int):
        raise ValidationError("La quantité doit être un entier", quantity=quantity)
    return quantity


def _norm_variant(variant_id: Optional[str]) -> Optional[str]:
    return str(variant_id) if variant_id not in (None, "") else None


class CartStore:
    def __init__(self, repo=None, resolver: Optional[PriceSnapshotResolver] = None,
                 max_attempts: int = CART_CAS_MAX_ATTEMPTS):
        self.repo = repo or cart_repository
        self.resolver = resolver or PriceSnapshotResolver()
        self.max_attempts = max_attempts

    # Lecture
    def get(self, session_id: str) -> CartSession:
        row = self.repo.fetch_cart_session(session_id)
        if not row:
            return CartSession.empty(session_id)
        return CartSession.from_row(row)

    def _write(self, session: CartSession, lines: List[CartLine], now: datetime) -> bool:
        data = [line.to_row() for line in lines]
        if session.version == 0:
            return self.repo.insert_cart_session(session.session_id, data, updated_at=now)
        return self.repo.compare_and_swap_cart(
            session.session_id, session.version, data,
            expected_updated_at=session.updated_at, updated_at=now,
        )

    def _mutate(self, session_id: str, mutation: Mutation) -> CartSession:
        """
        Applique `mutation` (qui retourne les nouvelles lignes, ou None pour un no-op)
        avec relecture complète à chaque conflit de version.
        """
        retrying = Retrying(
            stop=stop_after_attempt(self.max_attempts),
            wait=wait_random(0, 0.05),
            retry=retry_if_exception_type(CartConflictError),
            reraise=True,
        )
        for attempt in retrying:
            with attempt:
                session = self.get(session_id)
                lines = mutation(session)
                if lines is None:
                    return session
                now = utcnow()
                if not self._write(session, lines, now):
                    logger.info(
                        "cart.service.mutate conflict session_id=%s version=%s attempt=%s",
                        session_id, session.version, attempt.retry_state.attempt_number,
                    )
                    raise CartConflictError(sessionId=session_id)
                return CartSession(
                    session_id=session_id,
                    lines=lines,
                    version=session.version + 1,
                    updated_at=now,
                    customer_email=session.customer_email,
                )

    # Mutations
    def add_item(self, session_id: str, product_id: str, variant_id: Optional[str], quantity: int) -> CartSession:
        quantity = _check_quantity(quantity)
        if quantity <= 0:
            raise ValidationError("La quantité doit être positive", quantity=quantity)
        product_id = str(product_id)
        variant_id = _norm_variant(variant_id)
        # Le snapshot n'est résolu qu'une fois par appel, même si le cycle CAS est rejoué
        snapshot: Dict[str, CartLine] = {}

        def mutation(session: CartSession) -> List[CartLine]:
            existing = session.find(product_id, variant_id)
            if existing:
                return [
                    line.with_quantity(line.quantity + quantity) if line.key == existing.key else line
                    for line in session.lines
                ]
            if "line" not in snapshot:
                snapshot["line"] = self.resolver.resolve(product_id, variant_id, quantity)
            return list(session.lines) + [snapshot["line"].with_quantity(quantity)]

        cart = self._mutate(session_id, mutation)
        logger.info("cart.service.add_item session_id=%s product_id=%s quantity=%s", session_id, product_id, quantity)
        return cart

    def remove_item(self, session_id: str, product_id: str, variant_id: Optional[str] = None) -> CartSession:
        product_id = str(product_id)
        variant_id = _norm_variant(variant_id)

        def mutation(session: CartSession) -> Optional[List[CartLine]]:
            existing = session.find(product_id, variant_id)
            if not existing:
                return None
            # Retirer la dernière ligne laisse une ligne cart_sessions vide (pas de suppression)
            return [line for line in session.lines if line.key != existing.key]

        return self._mutate(session_id, mutation)

    def update_quantity(self, session_id: str, product_id: str, variant_id: Optional[str], quantity: int) -> CartSession:
        quantity = _check_quantity(quantity)
        if quantity <= 0:
            return self.remove_item(session_id, product_id, variant_id)
        product_id = str(product_id)
        variant_id = _norm_variant(variant_id)
        snapshot: Dict[str, CartLine] = {}

        def mutation(session: CartSession) -> Optional[List[CartLine]]:
            existing = session.find(product_id, variant_id)
            if existing:
                if existing.quantity == quantity:
                    return None
                return [
                    line.with_quantity(quantity) if line.key == existing.key else line
                    for line in session.lines
                ]
            if "line" not in snapshot:
                snapshot["line"] = self.resolver.resolve(product_id, variant_id, quantity)
            return list(session.lines) + [snapshot["line"].with_quantity(quantity)]

        return self._mutate(session_id, mutation)

    def clear(self, session_id: str, expected_version: Optional[int] = None,
              expected_updated_at: Optional[datetime] = None) -> bool:
        """
        Supprime la session. Avec expected_version (et expected_updated_at), la suppression
        n'a lieu que si personne n'a modifié ni recréé le panier depuis (retourne False sinon).
        """
        deleted = self.repo.delete_cart_session(session_id, expected_version, expected_updated_at)
        logger.info("cart.service.clear session_id=%s expected_version=%s deleted=%s", session_id, expected_version, deleted)
        return deleted

    def remove_lines(self, session_id: str, lines: Iterable[CartLine]) -> CartSession:
        """
        Retire les quantités achetées du panier courant (après checkout) sans écraser
        les articles ajoutés pendant le paiement.
        """
        purchased: Dict[tuple, int] = {}
        for line in lines:
            purchased[line.key] = purchased.get(line.key, 0) + line.quantity

        def mutation(session: CartSession) -> Optional[List[CartLine]]:
            if session.version == 0:
                return None
            remaining: List[CartLine] = []
            changed = False
            for line in session.lines:
                bought = purchased.get(line.key, 0)
                if not bought:
                    remaining.append(line)
                    continue
                changed = True
                if line.quantity > bought:
                    remaining.append(line.with_quantity(line.quantity - bought))
            return remaining if changed else None

        return self._mutate(session_id, mutation)

    def set_recovery_token(self, session_id: str, token: str, customer_email: Optional[str] = None) -> bool:
        return self.repo.set_recovery_token(session_id, token, customer_email)
