"""
Résolution du snapshot de prix d'une ligne de panier (products / product_variants).
Le prix de la variante, s'il existe, remplace celui du produit.
"""
from typing import Any, Dict, Optional
import logging

import storefront.infra.supabase_client as supabase_client
from storefront.cart.models import CartLine, utcnow
from storefront.errors import ProductNotFoundError, StorageUnavailableError, ValidationError
from storefront.utils.money import to_money

logger = logging.getLogger(__name__)


# module storefront.cart.pricing
def fetch_product(product_id: str) -> Optional[Dict[str, Any]]:
    try:
        res = (
            supabase_client.get_service_supabase()
            .table("products")
            .select("id, name, price, image_url")
            .eq("id", product_id)
            .limit(1)
            .execute()
        )
    except Exception as e:
        logger.exception("cart.pricing.fetch_product failed product_id=%s", product_id)
        raise StorageUnavailableError() from e
    rows = res.data or []
    return rows[0] if rows else None


def fetch_variant(variant_id: str) -> Optional[Dict[str, Any]]:
    try:
        res = (
            supabase_client.get_service_supabase()
            .table("product_variants")
            .select("id, product_id, name, price")
            .eq("id", variant_id)
            .limit(1)
            .execute()
        )
    except Exception as e:
        logger.exception("cart.pricing.fetch_variant failed variant_id=%s", variant_id)
        raise StorageUnavailableError() from e
    rows = res.data or []
    return rows[0] if rows else None


class PriceSnapshotResolver:
    """Lit le catalogue et fige nom, prix et image dans une CartLine."""

    def resolve(self, product_id: str, variant_id: Optional[str], quantity: int) -> CartLine:
        product = fetch_product(product_id)
        if not product:
            raise ProductNotFoundError(f"Produit introuvable: {product_id}", productId=product_id)

        price = product.get("price")
        variant_name = None
        if variant_id:
            variant = fetch_variant(variant_id)
            if not variant or str(variant.get("product_id")) != str(product_id):
                raise ProductNotFoundError(
                    f"Variante introuvable pour ce produit: {variant_id}",
                    productId=product_id,
                    variantId=variant_id,
                )
            variant_name = variant.get("name")
            if variant.get("price") is not None:
                price = variant.get("price")

        try:
            unit_price = to_money(price)
        except ValueError:
            raise ValidationError("Prix catalogue invalide", productId=product_id)
        if unit_price <= 0:
            raise ValidationError("Prix catalogue invalide", productId=product_id)

        return CartLine(
            product_id=str(product_id),
            variant_id=variant_id,
            product_name=product.get("name") or "",
            variant_name=variant_name,
            unit_price=unit_price,
            quantity=quantity,
            image_url=product.get("image_url"),
            added_at=utcnow(),
        )
