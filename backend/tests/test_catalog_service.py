# Overview: Product master data rules for variants and their price adjustments.

import pytest

from storefront.errors import ValidationError
from storefront.extensions import db
from storefront.models import Product, ProductVariant
from storefront.services import catalog_service


def _payload(**extra):
    payload = {"sku": "LASH-KIT", "name": "Lash Kit", "price_cents": 5000}
    payload.update(extra)
    return payload


class TestVariantPrices:

    def test_discounted_variant_is_allowed(self, db_session):
        product = catalog_service.create_product(_payload(variants=[
            {"variant_type": "Size", "value": "Mini", "price_adjustment_cents": -5000, "stock": 2},
            {"variant_type": "Size", "value": "Pro", "price_adjustment_cents": 1500, "stock": 1},
        ]))
        assert [v.price_adjustment_cents for v in product.variants] == [-5000, 1500]

    def test_negative_unit_price_rejected_on_create(self, db_session):
        with pytest.raises(ValidationError) as exc:
            catalog_service.create_product(_payload(variants=[
                {"variant_type": "Size", "value": "Mini", "price_adjustment_cents": -5001, "stock": 2},
            ]))
        assert "Mini" in exc.value.message
        assert db.session.query(Product).count() == 0
        assert db.session.query(ProductVariant).count() == 0

    def test_price_cut_below_adjustment_rejected(self, db_session):
        product = catalog_service.create_product(_payload(variants=[
            {"variant_type": "Size", "value": "Mini", "price_adjustment_cents": -3000, "stock": 2},
        ]))

        with pytest.raises(ValidationError):
            catalog_service.update_product(product.id, {"price_cents": 2999})
        db.session.expire_all()
        assert db.session.get(Product, product.id).price_cents == 5000

        assert catalog_service.update_product(product.id, {"price_cents": 3000}).price_cents == 3000

    def test_admin_route_returns_400(self, client, admin_headers):
        resp = client.post(
            "/api/products",
            json=_payload(variants=[{"variant_type": "Size", "value": "Mini", "price_adjustment_cents": -9000}]),
            headers=admin_headers,
        )
        assert resp.status_code == 400
        assert resp.json["details"]["unit_price_cents"] == -4000
