from decimal import Decimal
from types import SimpleNamespace

import pytest

from core.services.totals import amounts_match, compute_totals, line_total_ht, line_total_vat, q4
from documents.services import purchase_orders


def line(quantity, unit_price, vat_rate):
    return SimpleNamespace(
        quantity=Decimal(quantity),
        unit_price=Decimal(unit_price),
        vat_rate=None if vat_rate is None else Decimal(vat_rate),
    )


def test_mixed_vat_rates():
    totals = compute_totals([
        line("2", "10.00", "20"),
        line("1", "5.00", "0"),
        line("3", "7.50", "10"),
    ])

    assert totals.total_ht == Decimal("47.5000")
    assert totals.total_vat == Decimal("6.2500")
    assert totals.total_ttc == Decimal("53.7500")


def test_no_lines_gives_zero():
    assert compute_totals([]) == (Decimal("0.0000"),) * 3


def test_null_vat_rate_counts_as_zero():
    totals = compute_totals([line("4", "2.50", None)])
    assert totals.total_vat == Decimal("0")
    assert totals.total_ttc == Decimal("10.0000")


def test_line_amounts_rounded_half_up_to_four_places():
    assert line_total_ht("3", "0.33335") == Decimal("1.0001")
    assert line_total_vat(Decimal("0.0005"), Decimal("10")) == Decimal("0.0001")
    assert q4("0.00005") == Decimal("0.0001")


def test_amounts_match_uses_tolerance():
    assert amounts_match(Decimal("100.0000"), Decimal("100.0009"))
    assert amounts_match(Decimal("100.000"), Decimal("100.001"))
    assert not amounts_match(Decimal("100.000"), Decimal("100.002"))
    assert amounts_match(Decimal("1"), Decimal("2"), tolerance=Decimal("1"))


@pytest.mark.django_db
def test_order_totals_follow_line_changes(entity, supplier, product, other_product, user):
    order = purchase_orders.create_purchase_order(entity, {
        "supplier_id": supplier.pk,
        "lines": [
            {"product_id": product.pk, "quantity": "2", "unit_price": "10.00", "vat_rate": "20"},
            {"product_id": other_product.pk, "quantity": "1", "unit_price": "5.00", "vat_rate": "0"},
        ],
    }, by=user)
    assert order.total_ttc == Decimal("29.0000")

    line = purchase_orders.add_order_line(
        order.pk, {"product_id": product.pk, "quantity": "3", "unit_price": "7.50", "vat_rate": "10"}, by=user,
    )
    order.refresh_from_db(fields=["total_ht", "total_vat", "total_ttc"])
    assert (order.total_ht, order.total_vat, order.total_ttc) == (
        Decimal("47.5000"), Decimal("6.2500"), Decimal("53.7500"),
    )

    purchase_orders.remove_order_line(order.pk, line.pk, by=user)
    order.refresh_from_db(fields=["total_ht", "total_vat", "total_ttc"])
    assert order.total_ttc == Decimal("29.0000")
