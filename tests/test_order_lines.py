from decimal import Decimal

import pytest

from core.exceptions import NotFoundError, OverReceiptError, QuantityDriftError
from documents.models import PurchaseOrderLine
from documents.services import order_lines, purchase_orders

pytestmark = pytest.mark.django_db


def test_remaining_is_ordered_minus_active_reception_lines(order_line, make_reception, receipt):
    assert order_lines.remaining_quantity(order_line.pk) == Decimal("10")

    reception = make_reception(order_line.order, [receipt(order_line, "6")])

    assert order_lines.remaining_quantity(order_line.pk) == Decimal("4")
    assert order_lines.remaining_quantity(order_line.pk, excluding_reception_id=reception.pk) == Decimal("10")
    assert order_lines.received_quantity(order_line.pk) == Decimal("6")


def test_unknown_order_line():
    with pytest.raises(NotFoundError):
        order_lines.remaining_quantity(424242)
    with pytest.raises(NotFoundError):
        order_lines.apply_receipt(424242, Decimal("1"))


def test_apply_receipt_rejects_over_receipt(order_line):
    with pytest.raises(OverReceiptError):
        order_lines.apply_receipt(order_line.pk, Decimal("10.001"))

    assert PurchaseOrderLine.objects.get(pk=order_line.pk).received_quantity == Decimal("0")


def test_apply_receipt_honours_tolerance(order_line, settings):
    settings.PROCUREMENT = {"OVER_RECEIPT_TOLERANCE": Decimal("1")}

    with pytest.raises(OverReceiptError):
        order_lines.apply_receipt(order_line.pk, Decimal("11.5"))

    line = order_lines.apply_receipt(order_line.pk, Decimal("11"))
    assert line.received_quantity == Decimal("11")


def test_apply_receipt_cannot_go_negative(order_line):
    with pytest.raises(QuantityDriftError):
        order_lines.apply_receipt(order_line.pk, Decimal("-1"))


def test_drift_between_cache_and_reception_lines_is_fatal(order_line, make_reception, receipt):
    make_reception(order_line.order, [receipt(order_line, "3")])
    PurchaseOrderLine.objects.filter(pk=order_line.pk).update(received_quantity=Decimal("5"))

    with pytest.raises(QuantityDriftError):
        order_lines.apply_receipt(order_line.pk, Decimal("1"))


def test_drift_is_an_over_receipt_error():
    assert issubclass(QuantityDriftError, OverReceiptError)


def test_cancelled_order_lines_are_closed(order_line, user):
    purchase_orders.cancel_purchase_order(order_line.order_id, by=user)

    with pytest.raises(NotFoundError):
        order_lines.apply_receipt(order_line.pk, Decimal("1"))
