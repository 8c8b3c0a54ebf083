"""Order line tracker: ordered vs. received on a single purchase order line.

received_quantity on PurchaseOrderLine is a cached sum of the active
reception lines pointing at the order line. Only this module writes it, and
only while holding the order line row lock, so two receptions against the
same line are serialised at the database:

    with transaction.atomic():
        remaining = remaining_quantity(line_id, for_update=True)
        ...check the requested quantity against remaining...
        apply_receipt(line_id, quantity)

The stored value is cross-checked against the reception lines on every
write. A mismatch means something bypassed this module and is a hard error.
"""

import logging
from decimal import Decimal

from django.db import transaction
from django.db.models import Sum

from core.conf import procurement_setting
from core.exceptions import NotFoundError, OverReceiptError, QuantityDriftError
from documents.models import PurchaseOrder, PurchaseOrderLine, ReceptionLine

logger = logging.getLogger(__name__)

ZERO = Decimal("0.000")

# orders whose lines no longer accept receipts
CLOSED_ORDER_STATUSES = (PurchaseOrder.Status.CANCELLED, PurchaseOrder.Status.FULLY_RECEIVED)


def _get_line(order_line_id, *, for_update=False) -> PurchaseOrderLine:
    qs = PurchaseOrderLine.objects.all()
    if for_update:
        qs = qs.select_for_update()
    try:
        return qs.get(pk=order_line_id)
    except PurchaseOrderLine.DoesNotExist:
        raise NotFoundError(f"Purchase order line {order_line_id} not found.")


def active_received_sum(order_line_id, excluding_reception_id=None) -> Decimal:
    """Sum of active reception line quantities on an order line."""
    qs = ReceptionLine.objects.active().filter(order_line_id=order_line_id)
    if excluding_reception_id is not None:
        qs = qs.exclude(reception_id=excluding_reception_id)
    total = qs.aggregate(total=Sum("quantity"))["total"]
    return total if total is not None else ZERO


def remaining_quantity(order_line_id, excluding_reception_id=None, *, for_update=False) -> Decimal:
    """ordered - received, computed from the active reception lines.

    With for_update=True the order line row is locked first; the caller must
    be inside transaction.atomic and keeps the lock until commit.
    """
    line = _get_line(order_line_id, for_update=for_update)
    return line.quantity - active_received_sum(line.pk, excluding_reception_id)


def received_quantity(order_line_id) -> Decimal:
    """Read-only lookup (invoice display, three-way match)."""
    return _get_line(order_line_id).received_quantity


@transaction.atomic
def apply_receipt(order_line_id, delta) -> PurchaseOrderLine:
    """Add delta (positive or negative) to the received quantity of an order line.

    Must run before the reception line change it accounts for is saved, so
    that the stored value still equals the active reception line sum.
    """
    line = _get_line(order_line_id, for_update=True)
    order_status = PurchaseOrder.objects.filter(pk=line.order_id).values_list("status", flat=True).get()
    if order_status in CLOSED_ORDER_STATUSES:
        raise NotFoundError(
            f"Purchase order line {order_line_id} belongs to a {order_status} order and cannot receive goods."
        )

    active = active_received_sum(line.pk)
    if line.received_quantity != active:
        raise QuantityDriftError(
            f"Purchase order line {line.pk}: stored received {line.received_quantity} "
            f"does not match active reception lines {active}."
        )

    delta = Decimal(delta)
    new_received = line.received_quantity + delta
    tolerance = procurement_setting("OVER_RECEIPT_TOLERANCE")

    if new_received < 0:
        raise QuantityDriftError(
            f"Purchase order line {line.pk}: received quantity would become negative ({new_received})."
        )
    if new_received > line.quantity + tolerance:
        raise OverReceiptError(
            f"Purchase order line {line.pk}: receiving {delta} would exceed the ordered quantity "
            f"{line.quantity} (already received {line.received_quantity})."
        )

    line.received_quantity = new_received
    line.save(update_fields=["received_quantity"])

    logger.info(
        "Order line %s received %s -> %s (ordered %s)",
        line.pk, delta, new_received, line.quantity,
    )
    return line
