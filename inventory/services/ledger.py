"""Stock ledger: append-only stock movements and derived stock levels.

Nothing here keeps a mutable stock counter. The level of a
(product, variant, location) key is always the sum of its ledger rows, so it
is read-your-writes inside the caller's transaction and cannot drift.

Ledger writes are inserts only, so they never conflict with each other. The
serialisation that matters (received vs ordered) lives in
documents.services.order_lines.
"""

import logging
from decimal import Decimal

from django.db import transaction
from django.db.models import Sum

from core.exceptions import InvalidLocationError, NotFoundError, ValidationError
from inventory.models import StockLedgerEntry

logger = logging.getLogger(__name__)

MovementType = StockLedgerEntry.MovementType

ZERO = Decimal("0.000")
QUANTITY_STEP = Decimal("0.001")

MANUAL_TYPES = {MovementType.MANUAL_ENTRY_IN, MovementType.MANUAL_ENTRY_OUT}


def check_location(warehouse=None, shop=None):
    """Exactly one of warehouse/shop must be given."""
    if warehouse is not None and shop is not None:
        raise InvalidLocationError("Provide either a warehouse or a shop as stock location, not both.")
    if warehouse is None and shop is None:
        raise InvalidLocationError("Either a warehouse or a shop must be provided as stock location.")


def append(*, entity, product, quantity, movement_type, warehouse=None, shop=None, variant=None,
           unit_cost=None, reception_line=None, reversal_of=None, note="", by=None, moved_at=None) -> StockLedgerEntry:
    """Insert one immutable delta row inside the caller's transaction."""
    check_location(warehouse, shop)

    quantity = Decimal(quantity)
    if quantity == 0:
        raise ValidationError("Stock ledger delta must be non-zero.")
    if quantity != quantity.quantize(QUANTITY_STEP):
        raise ValidationError(f"Stock ledger delta {quantity} has more than 3 decimal places.")

    fields = dict(
        entity=entity,
        product=product,
        variant=variant,
        warehouse=warehouse,
        shop=shop,
        quantity=quantity,
        unit_cost=unit_cost if unit_cost is not None else Decimal("0.0000"),
        movement_type=movement_type,
        reception_line=reception_line,
        reversal_of=reversal_of,
        note=note[:255],
        created_by=by,
    )
    if moved_at is not None:
        fields["moved_at"] = moved_at

    entry = StockLedgerEntry.objects.create(**fields)
    logger.info(
        "Stock ledger entry %s (%s, qty %s) product=%s variant=%s location=%s",
        entry.pk, movement_type, quantity, entry.product_id, entry.variant_id, entry.location,
    )
    return entry


def current_level(product, variant=None, *, warehouse=None, shop=None) -> Decimal:
    """Signed sum of deltas for (product, variant, location); 0 when there are no rows."""
    check_location(warehouse, shop)
    total = (
        StockLedgerEntry.objects
        .for_key(product, variant, warehouse=warehouse, shop=shop)
        .aggregate(total=Sum("quantity"))["total"]
    )
    return total if total is not None else ZERO


@transaction.atomic
def reverse(entry_id, *, by=None, note="") -> StockLedgerEntry:
    """Append the negated delta of an entry, pointing back at it.

    The original row is never touched. An entry can be reversed once, and a
    reversal itself cannot be reversed (append a new movement instead).
    """
    try:
        original = StockLedgerEntry.objects.select_for_update().get(pk=entry_id)
    except StockLedgerEntry.DoesNotExist:
        raise NotFoundError(f"Stock ledger entry {entry_id} not found.")

    if original.reversal_of_id is not None:
        raise ValidationError(f"Stock ledger entry {entry_id} is itself a reversal.")
    if StockLedgerEntry.objects.filter(reversal_of=original).exists():
        raise ValidationError(f"Stock ledger entry {entry_id} is already reversed.")

    return append(
        entity=original.entity,
        product=original.product,
        variant=original.variant,
        warehouse=original.warehouse,
        shop=original.shop,
        quantity=-original.quantity,
        unit_cost=original.unit_cost,
        movement_type=MovementType.REVERSAL,
        reception_line=original.reception_line,
        reversal_of=original,
        note=note or f"Reversal of entry {original.pk}",
        by=by,
    )


def manual_adjustment(*, entity, product, quantity, movement_type, warehouse=None, shop=None,
                      variant=None, unit_cost=None, note="", by=None) -> StockLedgerEntry:
    """Manual stock entry (opening stock, breakage, ...).

    The sign follows the movement type: *_in is added, *_out is removed,
    whatever sign the caller used.
    """
    if movement_type not in MANUAL_TYPES:
        raise ValidationError(
            f"Invalid movement type '{movement_type}' for a manual adjustment. "
            f"Must be '{MovementType.MANUAL_ENTRY_IN}' or '{MovementType.MANUAL_ENTRY_OUT}'."
        )
    if variant is not None and variant.product_id != product.pk:
        raise ValidationError(f"Variant {variant.pk} does not belong to product {product.pk}.")

    quantity = abs(Decimal(quantity))
    if movement_type == MovementType.MANUAL_ENTRY_OUT:
        quantity = -quantity

    return append(
        entity=entity,
        product=product,
        variant=variant,
        warehouse=warehouse,
        shop=shop,
        quantity=quantity,
        unit_cost=unit_cost,
        movement_type=movement_type,
        note=note,
        by=by,
    )


def entries_for(product, variant=None, *, warehouse=None, shop=None):
    """Movement history for one key, oldest first."""
    check_location(warehouse, shop)
    return (
        StockLedgerEntry.objects
        .for_key(product, variant, warehouse=warehouse, shop=shop)
        .select_related("reception_line", "reversal_of")
        .order_by("moved_at", "id")
    )


def levels_by_location(product, variant=None):
    """Stock of one product/variant per location, for reporting.

    Returns a list of dicts: {"warehouse_id", "shop_id", "quantity"}; keys
    whose movements net to zero are left out.
    """
    qs = StockLedgerEntry.objects.filter(product=product)
    qs = qs.filter(variant=variant) if variant is not None else qs.filter(variant__isnull=True)
    rows = (
        qs.values("warehouse_id", "shop_id")
        .annotate(quantity=Sum("quantity"))
        .order_by("warehouse_id", "shop_id")
    )
    return [row for row in rows if row["quantity"] != 0]
