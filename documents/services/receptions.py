"""Reception processor.

Every public function here is one transaction. A line change runs, in order:

1. lock the reception and check it is still open
2. validate product / variant / order line
3. check and apply the quantity on the order line tracker (row lock on the order line)
4. save the reception line
5. append to the stock ledger
6. recompute reception status, then purchase order status

Any failure rolls back all of it. Audit listeners are told after commit.
"""

import logging
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Optional

from django.db import transaction
from django.utils import timezone
from django_fsm import can_proceed

from core.conf import procurement_setting
from core.exceptions import (
    InvalidStateTransitionError,
    NotFoundError,
    OverReceiptError,
    ValidationError,
    run_transition,
)
from core.models import NumberSeries
from core.permissions import grant_document_perms
from documents.models import PurchaseOrder, PurchaseOrderLine, Reception, ReceptionLine
from documents.services import order_lines, status
from documents.services.common import PRICE_PLACES, fetch, parse_decimal, parse_optional_date, parse_quantity
from documents.signals import notify_document_changed
from inventory.services import ledger
from masterdata.models import Product, ProductVariant, Shop, Supplier, Warehouse

logger = logging.getLogger(__name__)

MovementType = ledger.MovementType

IMMUTABLE_LINE_KEYS = ("product_id", "variant_id", "order_line_id")
METADATA_FIELDS = ("lot_number", "notes")


@dataclass(frozen=True)
class AddLine:
    data: dict = field(default_factory=dict)


@dataclass(frozen=True)
class UpdateLine:
    line_id: int
    data: dict = field(default_factory=dict)


@dataclass(frozen=True)
class RemoveLine:
    line_id: int


# ---------------------------------------------------------------------------
# internals (caller holds the reception lock inside transaction.atomic)
# ---------------------------------------------------------------------------

def _same_id(a, b) -> bool:
    if a is None or b is None:
        return a is None and b is None
    return str(a) == str(b)


def _lock_reception(reception_id) -> Reception:
    return fetch(Reception, reception_id, "Reception", for_update=True)


def _ensure_order_open(reception: Reception):
    if reception.purchase_order_id is None:
        return
    order_status = PurchaseOrder.objects.values_list("status", flat=True).get(pk=reception.purchase_order_id)
    if order_status in order_lines.CLOSED_ORDER_STATUSES:
        raise InvalidStateTransitionError(
            f"Reception {reception.pk}: purchase order {reception.purchase_order_id} is {order_status}; "
            "received quantities can no longer be changed."
        )


def _ensure_mutable(reception: Reception):
    if not reception.is_mutable:
        raise InvalidStateTransitionError(
            f"Reception {reception.pk} is {reception.status}; its lines can no longer be changed."
        )
    _ensure_order_open(reception)


def _active_line(reception: Reception, line_id) -> ReceptionLine:
    qs = ReceptionLine.objects.active().filter(reception=reception)
    return fetch(qs, line_id, "Reception line", for_update=True)


def _check_remaining(order_line_id, requested: Decimal):
    remaining = order_lines.remaining_quantity(order_line_id, for_update=True)
    tolerance = procurement_setting("OVER_RECEIPT_TOLERANCE")
    if requested > remaining + tolerance:
        raise OverReceiptError(
            f"Purchase order line {order_line_id}: {requested} requested but only {remaining} remaining."
        )


def _resolve_order_line(reception: Reception, order_line_id, product, variant) -> Optional[PurchaseOrderLine]:
    if order_line_id is None:
        return None
    if reception.purchase_order_id is None:
        raise ValidationError("A reception without purchase order cannot reference order lines.")

    order_line = fetch(PurchaseOrderLine, order_line_id, "Purchase order line")
    if order_line.order_id != reception.purchase_order_id:
        raise ValidationError(
            f"Purchase order line {order_line.pk} does not belong to purchase order {reception.purchase_order_id}."
        )
    if order_line.product_id != product.pk or order_line.variant_id != (variant.pk if variant else None):
        raise ValidationError(
            f"Purchase order line {order_line.pk} is for a different product or variant."
        )
    return order_line


def _add_line(reception: Reception, data: dict, *, by=None) -> ReceptionLine:
    quantity = parse_quantity(data.get("quantity"))

    product = fetch(Product.objects.filter(entity=reception.entity), data.get("product_id"), "Product")
    variant = None
    if data.get("variant_id") is not None:
        variant = fetch(ProductVariant, data["variant_id"], "Product variant")
        if variant.product_id != product.pk:
            raise ValidationError(f"Variant {variant.pk} does not belong to product {product.pk}.")

    order_line = _resolve_order_line(reception, data.get("order_line_id"), product, variant)

    # the partial unique index cannot see NULL variant/order line duplicates
    duplicate = ReceptionLine.objects.active().filter(
        reception=reception, product=product, variant=variant, order_line=order_line,
    )
    if duplicate.exists():
        raise ValidationError(
            "This reception already has a line for that product, variant and order line; update it instead."
        )

    if order_line is not None:
        _check_remaining(order_line.pk, quantity)
        order_lines.apply_receipt(order_line.pk, quantity)

    if data.get("unit_cost") not in (None, ""):
        unit_cost = parse_decimal(data["unit_cost"], "unit_cost", places=PRICE_PLACES)
    elif order_line is not None:
        unit_cost = order_line.unit_price
    else:
        unit_cost = product.purchase_cost

    line = ReceptionLine.objects.create(
        reception=reception,
        order_line=order_line,
        product=product,
        variant=variant,
        quantity=quantity,
        unit_cost=unit_cost,
        lot_number=data.get("lot_number") or "",
        expiry_date=parse_optional_date(data.get("expiry_date"), "expiry_date"),
        notes=data.get("notes") or "",
    )

    ledger.append(
        entity=reception.entity,
        product=product,
        variant=variant,
        warehouse=reception.warehouse,
        shop=reception.shop,
        quantity=quantity,
        unit_cost=unit_cost,
        movement_type=MovementType.PURCHASE_RECEPTION,
        reception_line=line,
        note=f"Reception {reception.reception_no}",
        by=by,
    )
    return line


def _update_line(reception: Reception, line: ReceptionLine, data: dict, *, by=None) -> ReceptionLine:
    for key in IMMUTABLE_LINE_KEYS:
        if key in data and not _same_id(data[key], getattr(line, key)):
            raise ValidationError(f"{key} of a reception line cannot be changed; remove the line and add a new one.")

    for name in METADATA_FIELDS:
        if name in data:
            setattr(line, name, data[name] or "")
    if "expiry_date" in data:
        line.expiry_date = parse_optional_date(data["expiry_date"], "expiry_date")

    if data.get("quantity") is not None:
        new_quantity = parse_quantity(data["quantity"])
        delta = new_quantity - line.quantity
        if delta != 0:
            if line.order_line_id is not None:
                if delta > 0:
                    _check_remaining(line.order_line_id, delta)
                order_lines.apply_receipt(line.order_line_id, delta)

            line.quantity = new_quantity
            ledger.append(
                entity=reception.entity,
                product=line.product,
                variant=line.variant,
                warehouse=reception.warehouse,
                shop=reception.shop,
                quantity=delta,
                unit_cost=line.unit_cost,
                movement_type=MovementType.RECEPTION_CORRECTION,
                reception_line=line,
                note=f"Reception {reception.reception_no}: quantity corrected",
                by=by,
            )

    line.save()
    return line


def _remove_line(reception: Reception, line: ReceptionLine, *, by=None):
    open_entries = line.ledger_entries.filter(reversal_of__isnull=True, reversal__isnull=True)
    for entry_id in open_entries.values_list("pk", flat=True):
        ledger.reverse(entry_id, by=by, note=f"Reception {reception.reception_no}: line {line.pk} removed")

    if line.order_line_id is not None:
        order_lines.apply_receipt(line.order_line_id, -line.quantity)

    line.removed_at = timezone.now()
    line.save(update_fields=["removed_at", "updated_at"])


def _after_line_change(reception: Reception, action: str, *, by=None) -> Reception:
    reception = status.recompute_reception_status(reception.pk, by=by)
    if reception.purchase_order_id is not None:
        status.recompute_order_status(reception.purchase_order_id, by=by)
    notify_document_changed(reception, action, by=by)
    return reception


# ---------------------------------------------------------------------------
# public API
# ---------------------------------------------------------------------------

@transaction.atomic
def create_reception(entity, data: dict, *, by=None) -> Reception:
    """Create a reception, optionally against a purchase order, with initial lines.

    data keys: supplier_id, warehouse_id | shop_id, purchase_order_id,
    reception_date, notes, lines (list of line dicts as for add_line).
    """
    warehouse_id = data.get("warehouse_id")
    shop_id = data.get("shop_id")
    ledger.check_location(warehouse_id, shop_id)

    warehouse = fetch(Warehouse.objects.filter(entity=entity), warehouse_id, "Warehouse") if warehouse_id is not None else None
    shop = fetch(Shop.objects.filter(entity=entity), shop_id, "Shop") if shop_id is not None else None
    supplier = fetch(Supplier.objects.filter(entity=entity), data.get("supplier_id"), "Supplier")

    order = None
    if data.get("purchase_order_id") is not None:
        order = fetch(PurchaseOrder.objects.filter(entity=entity), data["purchase_order_id"], "Purchase order", for_update=True)
        if not order.is_receivable:
            raise InvalidStateTransitionError(
                f"Purchase order {order.pk} is {order.status}; goods can only be received on "
                f"approved, sent or partially received orders."
            )
        if order.supplier_id != supplier.pk:
            raise ValidationError(f"Purchase order {order.pk} is not from supplier {supplier.pk}.")

    reception = Reception.objects.create(
        entity=entity,
        supplier=supplier,
        purchase_order=order,
        warehouse=warehouse,
        shop=shop,
        reception_date=parse_optional_date(data.get("reception_date"), "reception_date") or timezone.localdate(),
        notes=data.get("notes") or "",
        received_by=by,
        reception_no=NumberSeries.allocate_for(entity, "series_purchase_reception", code="RECEPTION", prefix="REC-"),
    )
    grant_document_perms(reception, by)
    logger.info("Reception %s (%s) created for supplier %s", reception.pk, reception.reception_no, supplier.pk)

    lines = data.get("lines") or []
    for line_data in lines:
        _add_line(reception, line_data, by=by)

    if lines:
        return _after_line_change(reception, "created", by=by)
    notify_document_changed(reception, "created", by=by)
    return reception


@transaction.atomic
def add_line(reception_id, data: dict, *, by=None) -> ReceptionLine:
    reception = _lock_reception(reception_id)
    _ensure_mutable(reception)
    line = _add_line(reception, data, by=by)
    _after_line_change(reception, "line_added", by=by)
    logger.info("Reception %s: line %s added (qty %s)", reception.pk, line.pk, line.quantity)
    return line


@transaction.atomic
def update_line(reception_id, line_id, data: dict, *, by=None) -> ReceptionLine:
    """Change quantity and/or lot, expiry and notes of an active line.

    A quantity change is booked as a reception_correction ledger entry for the
    difference. Metadata-only updates leave tracker and ledger alone.
    """
    reception = _lock_reception(reception_id)
    _ensure_mutable(reception)
    line = _update_line(reception, _active_line(reception, line_id), data, by=by)
    _after_line_change(reception, "line_updated", by=by)
    logger.info("Reception %s: line %s updated", reception.pk, line.pk)
    return line


@transaction.atomic
def remove_line(reception_id, line_id, *, by=None):
    """Undo a line: reverse its ledger entries, give back the quantity, mark it removed."""
    reception = _lock_reception(reception_id)
    _ensure_mutable(reception)
    line = _active_line(reception, line_id)
    _remove_line(reception, line, by=by)
    _after_line_change(reception, "line_removed", by=by)
    logger.info("Reception %s: line %s removed", reception.pk, line.pk)


@transaction.atomic
def apply_line_changes(reception_id, changes, *, by=None) -> list:
    """Apply a batch of AddLine / UpdateLine / RemoveLine in one transaction.

    Removals go first so the quantity they free is available to updates and
    adds in the same batch. Returns the added and updated lines.
    """
    reception = _lock_reception(reception_id)
    _ensure_mutable(reception)

    removals, updates, adds = [], [], []
    for change in changes:
        if isinstance(change, RemoveLine):
            removals.append(change)
        elif isinstance(change, UpdateLine):
            updates.append(change)
        elif isinstance(change, AddLine):
            adds.append(change)
        else:
            raise ValidationError(f"Unknown reception line change: {change!r}")

    touched = []
    for change in removals:
        _remove_line(reception, _active_line(reception, change.line_id), by=by)
    for change in updates:
        touched.append(_update_line(reception, _active_line(reception, change.line_id), change.data, by=by))
    for change in adds:
        touched.append(_add_line(reception, change.data, by=by))

    _after_line_change(reception, "lines_changed", by=by)
    logger.info(
        "Reception %s: %d removed, %d updated, %d added",
        reception.pk, len(removals), len(updates), len(adds),
    )
    return touched


@transaction.atomic
def complete_reception(reception_id, *, by=None) -> Reception:
    reception = _lock_reception(reception_id)
    run_transition(reception, "complete", by=by)
    reception.save()
    notify_document_changed(reception, "completed", by=by)
    logger.info("Reception %s completed", reception.pk)
    return reception


@transaction.atomic
def cancel_reception(reception_id, *, by=None) -> Reception:
    """Cancel an open reception; every active line is reversed first."""
    reception = _lock_reception(reception_id)
    if not can_proceed(reception.cancel):
        raise InvalidStateTransitionError(
            f"Reception {reception.pk} is {reception.status} and cannot be cancelled."
        )
    if reception.lines.active().exists():
        _ensure_order_open(reception)

    for line in reception.lines.active().select_for_update():
        _remove_line(reception, line, by=by)

    run_transition(reception, "cancel", by=by)
    reception.save()

    if reception.purchase_order_id is not None:
        status.recompute_order_status(reception.purchase_order_id, by=by)
    notify_document_changed(reception, "cancelled", by=by)
    logger.info("Reception %s cancelled", reception.pk)
    return reception


def reception_status(reception_id) -> dict:
    """Status and per-line summary of a reception (read-only)."""
    try:
        reception = Reception.objects.select_related("purchase_order").get(pk=reception_id)
    except Reception.DoesNotExist:
        raise NotFoundError(f"Reception {reception_id} not found.")

    lines = []
    for line in reception.lines.active().select_related("order_line"):
        row = {
            "id": line.pk,
            "product_id": line.product_id,
            "variant_id": line.variant_id,
            "order_line_id": line.order_line_id,
            "quantity": line.quantity,
            "unit_cost": line.unit_cost,
            "lot_number": line.lot_number,
            "expiry_date": line.expiry_date,
        }
        if line.order_line is not None:
            row["ordered"] = line.order_line.quantity
            row["received"] = line.order_line.received_quantity
            row["remaining"] = line.order_line.quantity - line.order_line.received_quantity
        lines.append(row)

    return {
        "id": reception.pk,
        "reception_no": reception.reception_no,
        "status": reception.status,
        "purchase_order_id": reception.purchase_order_id,
        "purchase_order_status": reception.purchase_order.status if reception.purchase_order else None,
        "lines": lines,
    }
