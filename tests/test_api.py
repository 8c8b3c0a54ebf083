import json
from decimal import Decimal

import pytest
from django.contrib.auth import get_user_model
from django.db import OperationalError
from django.urls import reverse

from documents.models import PurchaseOrder, PurchaseOrderLine, Reception
from documents.services import receptions, supplier_invoices

pytestmark = pytest.mark.django_db


@pytest.fixture
def api(client, user):
    client.force_login(user)
    return client


def post_json(client, url, payload=None):
    return client.post(url, data=json.dumps(payload or {}), content_type="application/json")


@pytest.fixture
def reception_payload(supplier, warehouse, order, order_line, receipt):
    def _payload(quantity):
        return {
            "supplier_id": supplier.pk,
            "warehouse_id": warehouse.pk,
            "purchase_order_id": order.pk,
            "lines": [receipt(order_line, quantity)],
        }
    return _payload


def test_create_reception(api, reception_payload, order_line):
    response = post_json(api, reverse("api-create-reception"), reception_payload("6"))

    assert response.status_code == 201
    body = response.json()
    assert body["reception_no"] == "REC-00001"
    assert body["status"] == Reception.Status.PARTIAL
    assert body["purchase_order_status"] == PurchaseOrder.Status.PARTIALLY_RECEIVED
    assert Decimal(body["lines"][0]["remaining"]) == Decimal("4")


def test_over_receipt_is_conflict(api, reception_payload, order_line):
    response = post_json(api, reverse("api-create-reception"), reception_payload("11"))

    assert response.status_code == 409
    assert response.json()["error"] == "over_receipt"
    assert not Reception.objects.exists()
    assert PurchaseOrderLine.objects.get(pk=order_line.pk).received_quantity == 0


def test_error_mapping(api, reception_payload, supplier, warehouse, shop):
    payload = reception_payload("1")
    payload["shop_id"] = shop.pk
    assert post_json(api, reverse("api-create-reception"), payload).status_code == 422

    assert post_json(api, reverse("api-create-reception"), reception_payload("0")).status_code == 400

    response = api.post(reverse("api-create-reception"), data="{not json", content_type="application/json")
    assert response.status_code == 400

    assert api.get(reverse("api-reception-status", args=[987654])).status_code == 404


def test_database_failure_is_unavailable(api, reception_payload, monkeypatch):
    def boom(*args, **kwargs):
        raise OperationalError("connection lost")

    monkeypatch.setattr(receptions, "create_reception", boom)

    response = post_json(api, reverse("api-create-reception"), reception_payload("1"))

    assert response.status_code == 503
    assert response.json()["error"] == "unavailable"


def test_requires_login(client):
    response = client.get(reverse("api-reception-status", args=[1]))
    assert response.status_code == 302


def test_user_without_entity(client, db):
    stranger = get_user_model().objects.create_user(username="stranger", password="secret")
    client.force_login(stranger)

    assert client.get(reverse("api-reception-status", args=[1])).status_code == 404


def test_method_not_allowed(api):
    assert api.get(reverse("api-create-reception")).status_code == 405


def test_line_endpoints(api, make_reception, order, order_line, receipt):
    reception = make_reception(order, [receipt(order_line, "6")])
    line = reception.lines.get()
    url = reverse("api-reception-line", args=[reception.pk, line.pk])

    response = api.patch(url, data=json.dumps({"quantity": "3"}), content_type="application/json")
    assert response.status_code == 200
    assert Decimal(response.json()["quantity"]) == Decimal("3")

    response = api.delete(url)
    assert response.status_code == 200
    assert response.json() == {"id": line.pk, "removed": True}
    assert PurchaseOrderLine.objects.get(pk=order_line.pk).received_quantity == Decimal("0")

    response = post_json(api, reverse("api-add-reception-line", args=[reception.pk]), receipt(order_line, "2", lot_number="L2"))
    assert response.status_code == 201
    assert PurchaseOrderLine.objects.get(pk=order_line.pk).received_quantity == Decimal("2")

    duplicate = post_json(api, reverse("api-add-reception-line", args=[reception.pk]), receipt(order_line, "1"))
    assert duplicate.status_code == 400


def test_changes_endpoint(api, make_reception, order, order_line, receipt):
    reception = make_reception(order, [receipt(order_line, "6")])
    line = reception.lines.get()

    response = post_json(api, reverse("api-reception-changes", args=[reception.pk]), {"changes": [
        {"op": "remove", "line_id": line.pk},
        {"op": "add", "data": receipt(order_line, "10", lot_number="L9")},
    ]})

    assert response.status_code == 200
    assert response.json()["status"] == Reception.Status.COMPLETE
    assert PurchaseOrder.objects.get(pk=order.pk).status == PurchaseOrder.Status.FULLY_RECEIVED

    bad = post_json(api, reverse("api-reception-changes", args=[reception.pk]), {"changes": [{"op": "rename"}]})
    assert bad.status_code == 400


def test_complete_and_cancel(api, make_reception, order, order_line, receipt):
    reception = make_reception(order, [receipt(order_line, "4")])

    response = post_json(api, reverse("api-complete-reception", args=[reception.pk]))
    assert response.status_code == 200
    assert response.json()["status"] == Reception.Status.COMPLETE

    assert post_json(api, reverse("api-cancel-reception", args=[reception.pk])).status_code == 409


def test_order_transitions(api, make_order, product):
    order = make_order([{"product_id": product.pk, "quantity": "2"}], send=False)

    for action, status in (
        ("submit", PurchaseOrder.Status.PENDING_APPROVAL),
        ("approve", PurchaseOrder.Status.APPROVED),
        ("send", PurchaseOrder.Status.SENT_TO_SUPPLIER),
    ):
        response = post_json(api, reverse("api-order-transition", args=[order.pk, action]))
        assert response.status_code == 200
        assert response.json()["status"] == status

    assert post_json(api, reverse("api-order-transition", args=[order.pk, "approve"])).status_code == 409
    assert post_json(api, reverse("api-order-transition", args=[order.pk, "explode"])).status_code == 404


def test_remaining_and_stock_level(api, make_reception, order, order_line, receipt, product, warehouse):
    make_reception(order, [receipt(order_line, "6")])

    body = api.get(reverse("api-order-line-remaining", args=[order_line.pk])).json()
    assert Decimal(body["remaining"]) == Decimal("4")
    assert Decimal(body["received"]) == Decimal("6")

    response = api.get(reverse("api-stock-level"), {"product_id": product.pk, "warehouse_id": warehouse.pk})
    assert response.status_code == 200
    assert Decimal(response.json()["quantity"]) == Decimal("6")

    assert api.get(reverse("api-stock-level"), {"product_id": product.pk}).status_code == 422


def test_three_way_match_endpoint(api, entity, supplier, user, make_reception, order, order_line, receipt, product):
    reception_line = make_reception(order, [receipt(order_line, "6")]).lines.get()
    invoice = supplier_invoices.create_supplier_invoice(entity, {
        "supplier_id": supplier.pk,
        "invoice_number": "INV-1",
        "purchase_order_ids": [order.pk],
        "lines": [{"product_id": product.pk, "quantity": "6", "unit_price": "2.50", "reception_line_id": reception_line.pk}],
    }, by=user)

    body = api.get(reverse("api-three-way-match", args=[invoice.pk])).json()

    assert body["matched"] is True
    assert body["purchase_order_ids"] == [order.pk]


def test_reception_of_filled_order_is_closed(api, make_reception, order, order_line, receipt):
    first = make_reception(order, [receipt(order_line, "6")])
    make_reception(order, [receipt(order_line, "4")])
    line = first.lines.get()

    body = api.get(reverse("api-reception-status", args=[first.pk])).json()
    assert body["status"] == Reception.Status.COMPLETE

    response = post_json(api, reverse("api-cancel-reception", args=[first.pk]))
    assert response.status_code == 409
    assert response.json()["error"] == "invalid_state"
    assert api.delete(reverse("api-reception-line", args=[first.pk, line.pk])).status_code == 409
