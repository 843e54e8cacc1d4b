from decimal import Decimal
from unittest.mock import MagicMock

import pytest

from storefront.cart import pricing
from storefront.cart.pricing import PriceSnapshotResolver
from storefront.errors import ProductNotFoundError, StorageUnavailableError, ValidationError

PRODUCT = {"id": "p1", "name": "Tee-shirt", "price": 19.9, "image_url": "https://img.example.test/p1.png"}


def _patch(monkeypatch, product=PRODUCT, variant=None):
    monkeypatch.setattr(pricing, "fetch_product", lambda pid: product)
    monkeypatch.setattr(pricing, "fetch_variant", lambda vid: variant)


def test_resolve_product_snapshot(monkeypatch):
    _patch(monkeypatch)
    line = PriceSnapshotResolver().resolve("p1", None, 2)
    assert line.unit_price == Decimal("19.90")
    assert line.product_name == "Tee-shirt"
    assert line.image_url == PRODUCT["image_url"]
    assert line.quantity == 2


def test_variant_price_overrides_product_price(monkeypatch):
    _patch(monkeypatch, variant={"id": "v1", "product_id": "p1", "name": "XL", "price": "24.50"})
    line = PriceSnapshotResolver().resolve("p1", "v1", 1)
    assert line.unit_price == Decimal("24.50")
    assert line.variant_name == "XL"


def test_variant_of_another_product_is_not_found(monkeypatch):
    _patch(monkeypatch, variant={"id": "v1", "product_id": "other", "name": "XL", "price": "24.50"})
    with pytest.raises(ProductNotFoundError):
        PriceSnapshotResolver().resolve("p1", "v1", 1)


def test_missing_product(monkeypatch):
    _patch(monkeypatch, product=None)
    with pytest.raises(ProductNotFoundError) as exc:
        PriceSnapshotResolver().resolve("nope", None, 1)
    assert exc.value.status_code == 404
    assert exc.value.code == "PRODUCT_NOT_FOUND"


@pytest.mark.parametrize("price", [0, -3, None, "abc"])
def test_invalid_catalog_price(monkeypatch, price):
    _patch(monkeypatch, product={**PRODUCT, "price": price})
    with pytest.raises(ValidationError):
        PriceSnapshotResolver().resolve("p1", None, 1)


def test_fetch_product_storage_failure(monkeypatch):
    client = MagicMock()
    client.table.side_effect = RuntimeError("connection refused")
    monkeypatch.setattr("storefront.infra.supabase_client.get_service_supabase", lambda: client)
    with pytest.raises(StorageUnavailableError):
        pricing.fetch_product("p1")


def test_fetch_product_reads_first_row(monkeypatch):
    client = MagicMock()
    chain = client.table.return_value.select.return_value.eq.return_value.limit.return_value
    chain.execute.return_value = MagicMock(data=[PRODUCT])
    monkeypatch.setattr("storefront.infra.supabase_client.get_service_supabase", lambda: client)
    assert pricing.fetch_product("p1") == PRODUCT
    client.table.assert_called_with("products")
