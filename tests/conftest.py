from decimal import Decimal

import pytest
from django.contrib.auth import get_user_model

from core.models import Entity, UserProfile
from documents.models import PurchaseOrder
from documents.services import purchase_orders, receptions
from masterdata.models import Product, ProductVariant, Shop, Supplier, Warehouse


@pytest.fixture
def entity(db):
    return Entity.objects.create(name="Nordic Supplies ApS")


@pytest.fixture
def user(db, entity):
    user = get_user_model().objects.create_user(username="buyer", password="secret")
    UserProfile.objects.create(user=user, entity=entity, is_entity_admin=True)
    return user


@pytest.fixture
def supplier(entity):
    return Supplier.objects.create(entity=entity, number="S100", name="Widget Works")


@pytest.fixture
def other_supplier(entity):
    return Supplier.objects.create(entity=entity, number="S200", name="Bolt Brothers")


@pytest.fixture
def warehouse(entity):
    return Warehouse.objects.create(entity=entity, code="MAIN", name="Main warehouse")


@pytest.fixture
def shop(entity):
    return Shop.objects.create(entity=entity, code="CPH", name="Copenhagen shop")


@pytest.fixture
def product(entity):
    return Product.objects.create(entity=entity, number="P-1", name="Widget", purchase_cost=Decimal("2.0000"))


@pytest.fixture
def other_product(entity):
    return Product.objects.create(entity=entity, number="P-2", name="Bolt", purchase_cost=Decimal("0.5000"))


@pytest.fixture
def variant(product):
    return ProductVariant.objects.create(product=product, sku="W-RED", name="Red widget")


@pytest.fixture
def make_order(entity, supplier, user):
    """Create a purchase order and walk it to SENT_TO_SUPPLIER (unless send=False)."""
    def _make(lines, *, send=True, order_supplier=None):
        order = purchase_orders.create_purchase_order(
            entity, {"supplier_id": (order_supplier or supplier).pk, "lines": lines}, by=user,
        )
        if send:
            purchase_orders.submit_purchase_order(order.pk, by=user)
            purchase_orders.approve_purchase_order(order.pk, by=user)
            purchase_orders.send_purchase_order(order.pk, by=user)
        return PurchaseOrder.objects.get(pk=order.pk)
    return _make


@pytest.fixture
def order(make_order, product):
    """Sent order: 10 x Widget @ 2.50."""
    return make_order([{"product_id": product.pk, "quantity": "10", "unit_price": "2.50", "vat_rate": "25"}])


@pytest.fixture
def order_line(order):
    return order.lines.get()


@pytest.fixture
def make_reception(entity, supplier, warehouse, user):
    def _make(order=None, lines=(), **extra):
        data = {"supplier_id": supplier.pk, "warehouse_id": warehouse.pk, "lines": list(lines)}
        if order is not None:
            data["purchase_order_id"] = order.pk
        data.update(extra)
        return receptions.create_reception(entity, data, by=user)
    return _make


@pytest.fixture
def receipt():
    """Build the line payload for receiving against an order line."""
    def _receipt(order_line, quantity, **extra):
        data = {"product_id": order_line.product_id, "order_line_id": order_line.pk, "quantity": quantity}
        if order_line.variant_id:
            data["variant_id"] = order_line.variant_id
        data.update(extra)
        return data
    return _receipt
