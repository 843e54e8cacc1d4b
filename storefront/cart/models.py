# module storefront.cart.models
"""
Modèles du panier.
- CartLine: ligne snapshotée (prix figé à l'ajout, jamais relu au catalogue).
- CartSession: lignes ordonnées + version (verrou optimiste) + updated_at.
Les lignes sont stockées en JSON dans cart_sessions.cart_data avec les clés historiques
`price` et `product_image_url` pour rester lisibles par les anciennes lignes.
"""
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Dict, List, Optional, Tuple
import logging

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, field_validator

from storefront.utils.money import to_money, money_json

logger = logging.getLogger(__name__)

_timestamp = TypeAdapter(datetime)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def parse_timestamp(value: Any) -> datetime:
    """Horodatage PostgREST (ISO 8601, 'Z' ou offset, 0 à 6 décimales); maintenant si absent ou illisible."""
    if value:
        try:
            return _timestamp.validate_python(value)
        except ValueError:
            logger.warning("cart.models.parse_timestamp unreadable value=%r", value)
    return utcnow()


LineKey = Tuple[str, Optional[str]]


class CartLine(BaseModel):
    model_config = ConfigDict(frozen=True)

    product_id: str
    variant_id: Optional[str] = None
    product_name: str = ""
    variant_name: Optional[str] = None
    unit_price: Decimal
    quantity: int = Field(ge=1)
    image_url: Optional[str] = None
    added_at: datetime = Field(default_factory=utcnow)

    @field_validator("unit_price", mode="before")
    def _round_price(cls, v: Any) -> Decimal:
        return to_money(v)

    @field_validator("variant_id", mode="before")
    def _empty_variant_is_none(cls, v: Any) -> Optional[str]:
        return str(v) if v not in (None, "") else None

    @property
    def key(self) -> LineKey:
        return (self.product_id, self.variant_id)

    @property
    def line_total(self) -> Decimal:
        return to_money(self.unit_price * self.quantity)

    def with_quantity(self, quantity: int) -> "CartLine":
        return self.model_copy(update={"quantity": quantity})

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "CartLine":
        return cls(
            product_id=str(row.get("product_id") or ""),
            variant_id=row.get("variant_id"),
            product_name=row.get("product_name") or "",
            variant_name=row.get("variant_name"),
            unit_price=row.get("price", row.get("unit_price")),
            quantity=int(row.get("quantity") or 0),
            image_url=row.get("product_image_url") or row.get("image_url"),
            added_at=parse_timestamp(row.get("added_at")),
        )

    def to_row(self) -> Dict[str, Any]:
        return {
            "product_id": self.product_id,
            "variant_id": self.variant_id,
            "product_name": self.product_name,
            "variant_name": self.variant_name,
            "price": money_json(self.unit_price),
            "quantity": self.quantity,
            "product_image_url": self.image_url,
            "added_at": self.added_at.isoformat(),
        }

    def to_response(self) -> Dict[str, Any]:
        row = self.to_row()
        row["unit_price"] = row["price"]
        row["line_total"] = money_json(self.line_total)
        return row


class CartSession(BaseModel):
    session_id: str
    lines: List[CartLine] = Field(default_factory=list)
    version: int = 0
    updated_at: datetime = Field(default_factory=utcnow)
    customer_email: Optional[str] = None

    @property
    def is_empty(self) -> bool:
        return not self.lines

    @property
    def total_items(self) -> int:
        return sum(line.quantity for line in self.lines)

    @property
    def total_amount(self) -> Decimal:
        return to_money(sum((line.unit_price * line.quantity for line in self.lines), Decimal("0")))

    def find(self, product_id: str, variant_id: Optional[str]) -> Optional[CartLine]:
        key = (str(product_id), variant_id or None)
        for line in self.lines:
            if line.key == key:
                return line
        return None

    @classmethod
    def empty(cls, session_id: str) -> "CartSession":
        return cls(session_id=session_id)

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "CartSession":
        session_id = str(row.get("session_id") or "")
        lines: List[CartLine] = []
        for raw in row.get("cart_data") or []:
            if not isinstance(raw, dict):
                continue
            try:
                lines.append(CartLine.from_row(raw))
            except (ValueError, TypeError) as e:
                # Ligne corrompue (quantité nulle, prix absent...): ignorée, disparaît à la prochaine écriture
                logger.warning("cart.models.from_row skipped line session_id=%s product_id=%s error=%s",
                               session_id, raw.get("product_id"), e)
        return cls(
            session_id=session_id,
            lines=lines,
            version=int(row.get("version") or 1),
            updated_at=parse_timestamp(row.get("updated_at")),
            customer_email=row.get("customer_email"),
        )

    def cart_data(self) -> List[Dict[str, Any]]:
        return [line.to_row() for line in self.lines]

    def to_response(self) -> Dict[str, Any]:
        return {
            "sessionId": self.session_id,
            "items": [line.to_response() for line in self.lines],
            "totalItems": self.total_items,
            "totalAmount": money_json(self.total_amount),
        }
