"""Invoice line linker.

Connects supplier invoice lines to the reception lines they bill, and
supplier invoices to purchase orders. Linking is traceability only: it never
touches ordered or received quantities. Invoicing more than was received is
allowed (suppliers bill what they bill) but logged.
"""

import logging
from decimal import Decimal

from django.db import transaction
from django.db.models import Sum

from core.exceptions import InvalidStateTransitionError, NotFoundError, ValidationError
from core.services.totals import amounts_match
from documents.models import (
    PurchaseOrder,
    Reception,
    ReceptionLine,
    SupplierInvoice,
    SupplierInvoiceLine,
    SupplierInvoicePurchaseOrder,
)
from documents.services import order_lines
from documents.services.common import fetch

logger = logging.getLogger(__name__)

# orders that cannot be billed yet (or any more)
UNLINKABLE_ORDER_STATUSES = (
    PurchaseOrder.Status.DRAFT,
    PurchaseOrder.Status.PENDING_APPROVAL,
    PurchaseOrder.Status.CANCELLED,
)

# invoices that no longer count towards invoiced quantities
DEAD_INVOICE_STATUSES = (SupplierInvoice.Status.CANCELLED, SupplierInvoice.Status.VOIDED)


def ensure_draft(invoice: SupplierInvoice):
    if not invoice.is_draft:
        raise InvalidStateTransitionError(
            f"Supplier invoice {invoice.pk} is {invoice.status}; lines and order links can only change in draft."
        )


def invoiced_quantity(reception_line_id) -> Decimal:
    """Quantity billed against a reception line on live invoices."""
    total = (
        SupplierInvoiceLine.objects
        .filter(reception_line_id=reception_line_id)
        .exclude(invoice__status__in=DEAD_INVOICE_STATUSES)
        .aggregate(total=Sum("quantity"))["total"]
    )
    return total if total is not None else Decimal("0.000")


def attach_reception_line(invoice_line: SupplierInvoiceLine, reception_line_id) -> SupplierInvoiceLine:
    """Point an invoice line at a reception line (None clears the link).

    The caller holds the invoice lock and has checked the invoice is a draft.
    """
    if reception_line_id is None:
        invoice_line.reception_line = None
        invoice_line.save(update_fields=["reception_line"])
        return invoice_line

    reception_line = fetch(
        ReceptionLine.objects.select_related("reception"), reception_line_id, "Reception line",
    )
    invoice = invoice_line.invoice

    if not reception_line.is_active or reception_line.reception.status == Reception.Status.CANCELLED:
        raise ValidationError(f"Reception line {reception_line.pk} has been removed and cannot be invoiced.")
    if reception_line.reception.supplier_id != invoice.supplier_id:
        raise ValidationError(
            f"Reception line {reception_line.pk} was received from another supplier than invoice {invoice.pk}."
        )
    if invoice_line.product_id is not None and (
        invoice_line.product_id != reception_line.product_id
        or invoice_line.variant_id != reception_line.variant_id
    ):
        raise ValidationError(
            f"Invoice line {invoice_line.pk} and reception line {reception_line.pk} are for different products."
        )

    invoice_line.reception_line = reception_line
    invoice_line.save(update_fields=["reception_line"])

    invoiced = invoiced_quantity(reception_line.pk)
    if invoiced > reception_line.quantity:
        logger.warning(
            "Reception line %s: invoiced %s exceeds received %s (invoice %s)",
            reception_line.pk, invoiced, reception_line.quantity, invoice.pk,
        )
    return invoice_line


@transaction.atomic
def link_reception_line(invoice_line_id, reception_line_id, *, by=None) -> SupplierInvoiceLine:
    try:
        invoice_line = SupplierInvoiceLine.objects.select_related("invoice").get(pk=invoice_line_id)
    except SupplierInvoiceLine.DoesNotExist:
        raise NotFoundError(f"Supplier invoice line {invoice_line_id} not found.")

    invoice = fetch(SupplierInvoice, invoice_line.invoice_id, "Supplier invoice", for_update=True)
    ensure_draft(invoice)
    invoice_line.invoice = invoice
    return attach_reception_line(invoice_line, reception_line_id)


@transaction.atomic
def link_purchase_orders(invoice_id, purchase_order_ids, *, by=None) -> list:
    """Link an invoice to one or more purchase orders (idempotent per pair)."""
    invoice = fetch(SupplierInvoice, invoice_id, "Supplier invoice", for_update=True)
    ensure_draft(invoice)

    links = []
    for order_id in purchase_order_ids:
        order = fetch(PurchaseOrder.objects.filter(entity=invoice.entity), order_id, "Purchase order")
        if order.supplier_id != invoice.supplier_id:
            raise ValidationError(f"Purchase order {order.pk} is not from the invoice's supplier.")
        if order.status in UNLINKABLE_ORDER_STATUSES:
            raise InvalidStateTransitionError(
                f"Purchase order {order.pk} is {order.status} and cannot be linked to an invoice."
            )
        link, created = SupplierInvoicePurchaseOrder.objects.get_or_create(invoice=invoice, purchase_order=order)
        if created:
            logger.info("Supplier invoice %s linked to purchase order %s", invoice.pk, order.pk)
        links.append(link)
    return links


@transaction.atomic
def unlink_purchase_order(invoice_id, purchase_order_id, *, by=None):
    invoice = fetch(SupplierInvoice, invoice_id, "Supplier invoice", for_update=True)
    ensure_draft(invoice)
    deleted, _ = SupplierInvoicePurchaseOrder.objects.filter(
        invoice=invoice, purchase_order_id=purchase_order_id,
    ).delete()
    if not deleted:
        raise NotFoundError(f"Supplier invoice {invoice.pk} is not linked to purchase order {purchase_order_id}.")


def three_way_match(invoice_id) -> dict:
    """Compare invoice lines with what was ordered and received.

    Read-only. For each invoice line linked to a reception line that was
    received against an order line: ordered, received and invoiced quantities
    and ordered vs. invoiced unit price.
    """
    try:
        invoice = SupplierInvoice.objects.get(pk=invoice_id)
    except SupplierInvoice.DoesNotExist:
        raise NotFoundError(f"Supplier invoice {invoice_id} not found.")

    rows = []
    for line in invoice.lines.select_related("reception_line__order_line"):
        row = {
            "invoice_line_id": line.pk,
            "quantity": line.quantity,
            "unit_price": line.unit_price,
            "reception_line_id": line.reception_line_id,
            "received": None,
            "ordered": None,
            "remaining": None,
            "order_received": None,
            "order_unit_price": None,
            "quantity_ok": None,
            "price_ok": None,
        }
        reception_line = line.reception_line
        if reception_line is not None:
            row["received"] = reception_line.quantity
            row["quantity_ok"] = line.quantity <= reception_line.quantity
            order_line = reception_line.order_line
            if order_line is not None:
                row["ordered"] = order_line.quantity
                row["remaining"] = order_lines.remaining_quantity(order_line.pk)
                row["order_received"] = order_lines.received_quantity(order_line.pk)
                row["order_unit_price"] = order_line.unit_price
                row["price_ok"] = amounts_match(line.unit_price, order_line.unit_price)
        rows.append(row)

    matched = bool(rows) and all(
        row["quantity_ok"] is not False and row["price_ok"] is not False and row["reception_line_id"] is not None
        for row in rows
    )
    return {
        "invoice_id": invoice.pk,
        "status": invoice.status,
        "purchase_order_ids": list(invoice.order_links.values_list("purchase_order_id", flat=True)),
        "lines": rows,
        "matched": matched,
    }
