"""Purchase order services: header, lines and workflow transitions.

Lines can be edited while the order is DRAFT or PENDING_APPROVAL; the header
totals are recomputed in the same transaction as every line change.
Receipt progress (PARTIALLY/FULLY_RECEIVED) is never set here, see
documents.services.status.
"""

import logging

from django.db import transaction
from django.utils import timezone

from core.exceptions import InvalidStateTransitionError, ValidationError, run_transition
from core.models import NumberSeries
from core.permissions import grant_document_perms
from core.services.totals import apply_totals
from documents.models import PurchaseOrder, PurchaseOrderLine
from documents.services import status
from documents.services.common import (
    PRICE_PLACES,
    RATE_PLACES,
    fetch,
    parse_decimal,
    parse_optional_date,
    parse_quantity,
)
from documents.signals import notify_document_changed
from masterdata.models import Product, ProductVariant, Supplier

logger = logging.getLogger(__name__)

HEADER_FIELDS = ("expected_date", "notes")


def _lock_order(order_id) -> PurchaseOrder:
    return fetch(PurchaseOrder, order_id, "Purchase order", for_update=True)


def _ensure_editable(order: PurchaseOrder):
    if not order.is_editable:
        raise InvalidStateTransitionError(
            f"Purchase order {order.pk} is {order.status}; lines can only change in draft or pending approval."
        )


def _line_values(order: PurchaseOrder, data: dict, line: PurchaseOrderLine = None) -> dict:
    values = {}
    if line is None or "product_id" in data:
        product = fetch(Product.objects.filter(entity=order.entity), data.get("product_id"), "Product")
        values["product"] = product
    else:
        product = line.product

    if line is None or "variant_id" in data or "product" in values:
        variant = None
        if data.get("variant_id") is not None:
            variant = fetch(ProductVariant, data["variant_id"], "Product variant")
            if variant.product_id != product.pk:
                raise ValidationError(f"Variant {variant.pk} does not belong to product {product.pk}.")
        values["variant"] = variant

    if line is None or data.get("quantity") is not None:
        values["quantity"] = parse_quantity(data.get("quantity"))
    if data.get("unit_price") is not None:
        unit_price = parse_decimal(data["unit_price"], "unit_price", places=PRICE_PLACES)
        if unit_price < 0:
            raise ValidationError("unit_price cannot be negative.")
        values["unit_price"] = unit_price
    elif line is None:
        values["unit_price"] = product.purchase_cost
    if "vat_rate" in data:
        vat_rate = data["vat_rate"]
        values["vat_rate"] = None if vat_rate in (None, "") else parse_decimal(vat_rate, "vat_rate", places=RATE_PLACES)
    if "description" in data:
        values["description"] = data["description"] or ""
    return values


@transaction.atomic
def create_purchase_order(entity, data: dict, *, by=None) -> PurchaseOrder:
    """Create a DRAFT order. data: supplier_id, order_date, expected_date, notes, lines."""
    supplier = fetch(Supplier.objects.filter(entity=entity), data.get("supplier_id"), "Supplier")
    if not supplier.is_active:
        raise ValidationError(f"Supplier {supplier.pk} is inactive.")

    order = PurchaseOrder.objects.create(
        entity=entity,
        supplier=supplier,
        order_date=parse_optional_date(data.get("order_date"), "order_date") or timezone.localdate(),
        expected_date=parse_optional_date(data.get("expected_date"), "expected_date"),
        notes=data.get("notes") or "",
        created_by=by,
        order_no=NumberSeries.allocate_for(entity, "series_purchase_order", code="PURCHASE_ORDER", prefix="PO-"),
    )
    for line_data in data.get("lines") or []:
        PurchaseOrderLine.objects.create(order=order, **_line_values(order, line_data))
    apply_totals(order)

    grant_document_perms(order, by)
    notify_document_changed(order, "created", by=by)
    logger.info("Purchase order %s (%s) created", order.pk, order.order_no)
    return order


@transaction.atomic
def update_purchase_order(order_id, data: dict, *, by=None) -> PurchaseOrder:
    order = _lock_order(order_id)
    _ensure_editable(order)
    unknown = set(data) - set(HEADER_FIELDS)
    if unknown:
        raise ValidationError(f"Unknown or read-only purchase order fields: {', '.join(sorted(unknown))}.")
    if "expected_date" in data:
        order.expected_date = parse_optional_date(data["expected_date"], "expected_date")
    if "notes" in data:
        order.notes = data["notes"] or ""
    order.save()
    notify_document_changed(order, "updated", by=by)
    return order


@transaction.atomic
def add_order_line(order_id, data: dict, *, by=None) -> PurchaseOrderLine:
    order = _lock_order(order_id)
    _ensure_editable(order)
    line = PurchaseOrderLine.objects.create(order=order, **_line_values(order, data))
    apply_totals(order)
    notify_document_changed(order, "line_added", by=by)
    return line


@transaction.atomic
def update_order_line(order_id, line_id, data: dict, *, by=None) -> PurchaseOrderLine:
    order = _lock_order(order_id)
    _ensure_editable(order)
    line = fetch(order.lines.all(), line_id, "Purchase order line", for_update=True)
    for name, value in _line_values(order, data, line).items():
        setattr(line, name, value)
    line.save()
    apply_totals(order)
    notify_document_changed(order, "line_updated", by=by)
    return line


@transaction.atomic
def remove_order_line(order_id, line_id, *, by=None):
    order = _lock_order(order_id)
    _ensure_editable(order)
    line = fetch(order.lines.all(), line_id, "Purchase order line", for_update=True)
    if line.reception_lines.exists():
        raise ValidationError(f"Purchase order line {line.pk} is referenced by receptions.")
    line.delete()
    apply_totals(order)
    notify_document_changed(order, "line_removed", by=by)


def _transition(order_id, name: str, action: str, *, by=None) -> PurchaseOrder:
    order = _lock_order(order_id)
    run_transition(order, name, by=by)
    order.save()
    notify_document_changed(order, action, by=by)
    logger.info("Purchase order %s: %s -> %s", order.pk, name, order.status)
    return order


@transaction.atomic
def submit_purchase_order(order_id, *, by=None) -> PurchaseOrder:
    return _transition(order_id, "submit_for_approval", "submitted", by=by)


@transaction.atomic
def approve_purchase_order(order_id, *, by) -> PurchaseOrder:
    return _transition(order_id, "approve", "approved", by=by)


@transaction.atomic
def send_purchase_order(order_id, *, by=None) -> PurchaseOrder:
    return _transition(order_id, "send_to_supplier", "sent", by=by)


@transaction.atomic
def cancel_purchase_order(order_id, *, by=None) -> PurchaseOrder:
    """Cancel the order and close the receptions still open on it."""
    order = _transition(order_id, "cancel", "cancelled", by=by)
    status.close_open_receptions(order, by=by)
    return order


@transaction.atomic
def delete_purchase_order(order_id, *, by=None):
    """Only DRAFT/CANCELLED orders without receptions or invoices can go."""
    order = _lock_order(order_id)
    if order.status not in PurchaseOrder.DELETABLE_STATUSES:
        raise InvalidStateTransitionError(
            f"Purchase order {order.pk} is {order.status}; only draft or cancelled orders can be deleted."
        )
    if order.receptions.exists():
        raise ValidationError(f"Purchase order {order.pk} has receptions and cannot be deleted.")
    if order.invoice_links.exists():
        raise ValidationError(f"Purchase order {order.pk} is linked to supplier invoices and cannot be deleted.")

    pk = order.pk
    order.delete()
    logger.info("Purchase order %s deleted by %s", pk, getattr(by, "pk", None))
