"""Status recomputation after reception line changes.

Receipt status of a purchase order is a pure function of its
(ordered, received) pairs, see derive_order_status(). The recompute_*
functions lock the header, derive the target and run the matching FSM
transition so django-fsm-log records it.
"""

import logging

from django.db import transaction

from core.exceptions import NotFoundError, run_transition
from documents.models import PurchaseOrder, PurchaseOrderLine, Reception

logger = logging.getLogger(__name__)

POStatus = PurchaseOrder.Status

# statuses whose receipt state follows the order lines
RECEIVING_STATUSES = (
    POStatus.APPROVED,
    POStatus.SENT_TO_SUPPLIER,
    POStatus.PARTIALLY_RECEIVED,
)

ORDER_TRANSITIONS = {
    POStatus.FULLY_RECEIVED: "mark_fully_received",
    POStatus.PARTIALLY_RECEIVED: "mark_partially_received",
    POStatus.SENT_TO_SUPPLIER: "reopen_receiving",
}


def derive_order_status(current_status, pairs):
    """Target status for an order given (ordered, received) pairs.

    - every line received in full -> FULLY_RECEIVED
    - anything received -> PARTIALLY_RECEIVED
    - nothing received -> SENT_TO_SUPPLIER when it was PARTIALLY_RECEIVED
    Orders outside the receiving statuses keep their status.
    """
    if current_status not in RECEIVING_STATUSES:
        return current_status

    pairs = list(pairs)
    if pairs and all(received >= ordered for ordered, received in pairs):
        return POStatus.FULLY_RECEIVED
    if any(received > 0 for _, received in pairs):
        return POStatus.PARTIALLY_RECEIVED
    if current_status == POStatus.PARTIALLY_RECEIVED:
        return POStatus.SENT_TO_SUPPLIER
    return current_status


def _order_pairs(order_id):
    return PurchaseOrderLine.objects.filter(order_id=order_id).values_list("quantity", "received_quantity")


@transaction.atomic
def recompute_order_status(order_id, *, by=None) -> PurchaseOrder:
    try:
        order = PurchaseOrder.objects.select_for_update().get(pk=order_id)
    except PurchaseOrder.DoesNotExist:
        raise NotFoundError(f"Purchase order {order_id} not found.")

    target = derive_order_status(order.status, _order_pairs(order.pk))
    if target != order.status:
        previous = order.status
        run_transition(order, ORDER_TRANSITIONS[target], by=by)
        order.save()
        logger.info("Purchase order %s: %s -> %s", order.pk, previous, target)
        if target == POStatus.FULLY_RECEIVED:
            close_open_receptions(order, by=by)
    return order


def close_open_receptions(order: PurchaseOrder, *, by=None) -> list:
    """Close the receptions still open on an order that no longer receives goods.

    Receptions with lines are completed, empty ones are cancelled (there is
    nothing to reverse). Rows locked by a concurrent edit are skipped; that
    edit recomputes its own reception, and the closed-order guard in the
    reception services refuses anything else.
    """
    closed = []
    open_receptions = (
        Reception.objects
        .select_for_update(skip_locked=True)
        .filter(purchase_order=order, status__in=Reception.MUTABLE_STATUSES)
        .order_by("pk")
    )
    for reception in open_receptions:
        previous = reception.status
        if reception.lines.active().exists():
            run_transition(reception, "complete", by=by)
        else:
            run_transition(reception, "cancel", by=by)
        reception.save()
        logger.info(
            "Reception %s: %s -> %s (purchase order %s is %s)",
            reception.pk, previous, reception.status, order.pk, order.status,
        )
        closed.append(reception)
    return closed


@transaction.atomic
def recompute_reception_status(reception_id, *, by=None) -> Reception:
    """Move an open reception to PARTIAL or COMPLETE after its lines changed.

    Order-linked: COMPLETE once every line of the order is fully received,
    PARTIAL otherwise. Blind receptions only move to PARTIAL here and are
    completed explicitly.
    """
    try:
        reception = Reception.objects.select_for_update().get(pk=reception_id)
    except Reception.DoesNotExist:
        raise NotFoundError(f"Reception {reception_id} not found.")

    if not reception.is_mutable or not reception.lines.active().exists():
        return reception

    previous = reception.status
    if reception.purchase_order_id is not None:
        pairs = list(_order_pairs(reception.purchase_order_id))
        if pairs and all(received >= ordered for ordered, received in pairs):
            run_transition(reception, "complete", by=by)
        elif reception.status != Reception.Status.PARTIAL:
            run_transition(reception, "mark_partial", by=by)
    elif reception.status == Reception.Status.PENDING_QUALITY_CHECK:
        run_transition(reception, "mark_partial", by=by)

    if reception.status != previous:
        reception.save()
        logger.info("Reception %s: %s -> %s", reception.pk, previous, reception.status)
    return reception
