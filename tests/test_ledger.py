from decimal import Decimal

import pytest

from core.exceptions import InvalidLocationError, NotFoundError, ValidationError
from inventory.models import StockLedgerEntry
from inventory.services import ledger

pytestmark = pytest.mark.django_db

MovementType = StockLedgerEntry.MovementType


@pytest.fixture
def book(entity, product, warehouse, user):
    def _book(quantity, **kwargs):
        kwargs.setdefault("warehouse", warehouse)
        kwargs.setdefault("product", product)
        return ledger.append(
            entity=entity,
            quantity=Decimal(quantity),
            movement_type=kwargs.pop("movement_type", MovementType.MANUAL_ENTRY_IN),
            by=user,
            **kwargs,
        )
    return _book


def test_level_is_zero_without_movements(product, warehouse):
    assert ledger.current_level(product, warehouse=warehouse) == Decimal("0")


def test_level_is_sum_of_deltas(book, product, warehouse):
    book("5")
    book("2.5")
    book("-1.25", movement_type=MovementType.MANUAL_ENTRY_OUT)

    assert ledger.current_level(product, warehouse=warehouse) == Decimal("6.25")


def test_level_is_per_location_and_variant(book, product, variant, warehouse, shop):
    book("5")
    book("3", warehouse=None, shop=shop)
    book("7", variant=variant)

    assert ledger.current_level(product, warehouse=warehouse) == Decimal("5")
    assert ledger.current_level(product, shop=shop) == Decimal("3")
    assert ledger.current_level(product, variant, warehouse=warehouse) == Decimal("7")

    rows = ledger.levels_by_location(product)
    assert {(r["warehouse_id"], r["shop_id"]): r["quantity"] for r in rows} == {
        (warehouse.pk, None): Decimal("5"),
        (None, shop.pk): Decimal("3"),
    }


def test_reverse_appends_negated_delta(book, product, warehouse, user):
    entry = book("4")

    reversal = ledger.reverse(entry.pk, by=user)

    assert reversal.quantity == Decimal("-4")
    assert reversal.movement_type == MovementType.REVERSAL
    assert reversal.reversal_of_id == entry.pk
    assert StockLedgerEntry.objects.get(pk=entry.pk).quantity == Decimal("4")
    assert ledger.current_level(product, warehouse=warehouse) == Decimal("0")
    assert StockLedgerEntry.objects.count() == 2


def test_entry_can_only_be_reversed_once(book):
    entry = book("4")
    ledger.reverse(entry.pk)

    with pytest.raises(ValidationError):
        ledger.reverse(entry.pk)


def test_reversal_cannot_be_reversed(book):
    reversal = ledger.reverse(book("4").pk)

    with pytest.raises(ValidationError):
        ledger.reverse(reversal.pk)


def test_reverse_unknown_entry():
    with pytest.raises(NotFoundError):
        ledger.reverse(999999)


def test_zero_delta_rejected(book):
    with pytest.raises(ValidationError):
        book("0")


def test_delta_finer_than_storage_rejected(book):
    with pytest.raises(ValidationError):
        book("0.0004")
    assert not StockLedgerEntry.objects.exists()


def test_location_must_be_exactly_one(book, shop, product, warehouse):
    with pytest.raises(InvalidLocationError):
        book("1", shop=shop)
    with pytest.raises(InvalidLocationError):
        book("1", warehouse=None)
    with pytest.raises(InvalidLocationError):
        ledger.current_level(product)
    with pytest.raises(InvalidLocationError):
        ledger.current_level(product, warehouse=warehouse, shop=shop)


def test_entries_are_immutable(book):
    entry = book("3")

    entry.quantity = Decimal("30")
    with pytest.raises(ValidationError):
        entry.save()
    with pytest.raises(ValidationError):
        entry.delete()
    with pytest.raises(ValidationError):
        StockLedgerEntry.objects.filter(pk=entry.pk).update(quantity=Decimal("30"))
    with pytest.raises(ValidationError):
        StockLedgerEntry.objects.all().delete()

    assert StockLedgerEntry.objects.get(pk=entry.pk).quantity == Decimal("3")


def test_manual_adjustment_sign_follows_type(entity, product, warehouse, user):
    ledger.manual_adjustment(
        entity=entity, product=product, warehouse=warehouse,
        quantity="-12", movement_type=MovementType.MANUAL_ENTRY_IN, by=user,
    )
    out = ledger.manual_adjustment(
        entity=entity, product=product, warehouse=warehouse,
        quantity="5", movement_type=MovementType.MANUAL_ENTRY_OUT, by=user,
    )

    assert out.quantity == Decimal("-5")
    assert ledger.current_level(product, warehouse=warehouse) == Decimal("7")


def test_manual_adjustment_rejects_other_types(entity, product, variant, other_product, warehouse):
    with pytest.raises(ValidationError):
        ledger.manual_adjustment(
            entity=entity, product=product, warehouse=warehouse,
            quantity="1", movement_type=MovementType.PURCHASE_RECEPTION,
        )
    with pytest.raises(ValidationError):
        ledger.manual_adjustment(
            entity=entity, product=other_product, variant=variant, warehouse=warehouse,
            quantity="1", movement_type=MovementType.MANUAL_ENTRY_IN,
        )


def test_entries_for_lists_history_in_order(book, product, warehouse):
    first = book("2")
    second = book("3")
    reversal = ledger.reverse(first.pk)

    assert list(ledger.entries_for(product, warehouse=warehouse)) == [first, second, reversal]
