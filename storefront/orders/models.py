# module storefront.orders.models
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field, field_validator

from storefront.utils.money import money_json, to_money

FulfillmentStatus = Literal["pending", "processing", "completed", "cancelled", "refunded"]


class OrderItem(BaseModel):
    order_id: str
    product_id: str
    variant_id: Optional[str] = None
    quantity: int = Field(ge=1)
    price_at_time: Decimal
    product_name: str = ""
    image_url: Optional[str] = None

    @field_validator("price_at_time", mode="before")
    def _round_price(cls, v: Any) -> Decimal:
        return to_money(v)

    def to_row(self) -> Dict[str, Any]:
        return {
            "order_id": self.order_id,
            "product_id": self.product_id,
            "variant_id": self.variant_id,
            "quantity": self.quantity,
            "price_at_time": str(self.price_at_time),
            "product_name": self.product_name,
            "product_image_url": self.image_url,
        }

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "OrderItem":
        return cls(
            order_id=str(row.get("order_id") or ""),
            product_id=str(row.get("product_id") or ""),
            variant_id=row.get("variant_id"),
            quantity=int(row.get("quantity") or 1),
            price_at_time=row.get("price_at_time"),
            product_name=row.get("product_name") or "",
            image_url=row.get("product_image_url"),
        )


class Order(BaseModel):
    id: str
    payment_reference: str
    idempotency_key: Optional[str] = None
    status: Literal["completed"] = "completed"
    fulfillment_status: FulfillmentStatus = "pending"
    total_amount: Decimal
    currency: str
    customer_email: Optional[str] = None
    shipping_address: Optional[Dict[str, Any]] = None
    billing_address: Optional[Dict[str, Any]] = None
    created_at: Optional[datetime] = None
    items: List[OrderItem] = Field(default_factory=list)
    items_complete: bool = True
    receipt_url: Optional[str] = None

    @field_validator("total_amount", mode="before")
    def _round_total(cls, v: Any) -> Decimal:
        return to_money(v)

    @property
    def items_total(self) -> Decimal:
        return to_money(sum((i.price_at_time * i.quantity for i in self.items), Decimal("0")))

    def to_row(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "payment_reference": self.payment_reference,
            "idempotency_key": self.idempotency_key,
            "status": self.status,
            "fulfillment_status": self.fulfillment_status,
            "total_amount": str(self.total_amount),
            "currency": self.currency,
            "customer_email": self.customer_email,
            "shipping_address": self.shipping_address,
            "billing_address": self.billing_address,
        }

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "Order":
        items = [OrderItem.from_row(r) for r in (row.get("order_items") or [])]
        return cls(
            id=str(row.get("id")),
            payment_reference=str(row.get("payment_reference") or ""),
            idempotency_key=row.get("idempotency_key"),
            fulfillment_status=row.get("fulfillment_status") or "pending",
            total_amount=row.get("total_amount"),
            currency=row.get("currency") or "usd",
            customer_email=row.get("customer_email"),
            shipping_address=row.get("shipping_address"),
            billing_address=row.get("billing_address"),
            created_at=row.get("created_at"),
            items=items,
        )

    def to_email_context(self) -> Dict[str, Any]:
        return {
            "order_id": self.id,
            "order_number": self.id[:8].upper(),
            "total_amount": money_json(self.total_amount),
            "currency": self.currency.upper(),
            "shipping_address": self.shipping_address,
            "receipt_url": self.receipt_url,
            "items": [
                {
                    "product_id": i.product_id,
                    "product_name": i.product_name,
                    "quantity": i.quantity,
                    "price": money_json(i.price_at_time),
                    "image_url": i.image_url,
                }
                for i in self.items
            ],
        }
