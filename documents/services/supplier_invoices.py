"""Supplier invoice services.

Lines and purchase order links are only editable in DRAFT. Once an invoice is
PAID, CANCELLED or VOIDED only the header fields listed in
SupplierInvoice.LOCKED_EDITABLE_FIELDS may change.

Payments work like a settlement: each SupplierPayment adds to the paid
amount and the invoice moves to PARTIALLY_PAID or PAID accordingly.
"""

import logging

from django.db import IntegrityError, transaction
from django.utils import timezone

from core.exceptions import InvalidStateTransitionError, ValidationError, run_transition
from core.permissions import grant_document_perms
from core.services.totals import amounts_match, apply_totals
from documents.models import SupplierInvoice, SupplierInvoiceLine, SupplierPayment
from documents.services import invoice_links
from documents.services.invoice_links import ensure_draft
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

HEADER_FIELDS = ("invoice_number", "invoice_date", "due_date", "notes", "attachment_url")


def _lock_invoice(invoice_id) -> SupplierInvoice:
    return fetch(SupplierInvoice, invoice_id, "Supplier invoice", for_update=True)


def _line_values(invoice: SupplierInvoice, data: dict, line: SupplierInvoiceLine = None) -> dict:
    values = {}
    if "product_id" in data:
        product = None
        if data["product_id"] is not None:
            product = fetch(Product.objects.filter(entity=invoice.entity), data["product_id"], "Product")
        values["product"] = product
    else:
        product = line.product if line is not None else None

    if "variant_id" in data or "product" in values:
        variant = None
        if data.get("variant_id") is not None:
            variant = fetch(ProductVariant, data["variant_id"], "Product variant")
            if product is None or variant.product_id != product.pk:
                raise ValidationError(f"Variant {variant.pk} does not belong to the line's product.")
        values["variant"] = variant

    if line is None or data.get("quantity") is not None:
        values["quantity"] = parse_quantity(data.get("quantity"))
    if line is None or data.get("unit_price") is not None:
        values["unit_price"] = parse_decimal(data.get("unit_price"), "unit_price", places=PRICE_PLACES)
    if "vat_rate" in data:
        vat_rate = data["vat_rate"]
        values["vat_rate"] = None if vat_rate in (None, "") else parse_decimal(vat_rate, "vat_rate", places=RATE_PLACES)
    if "description" in data:
        values["description"] = data["description"] or ""

    if line is None and product is None and not values.get("description"):
        raise ValidationError("An invoice line without product needs a description.")
    return values


def _apply_header(invoice: SupplierInvoice, data: dict):
    if "invoice_number" in data:
        number = (data["invoice_number"] or "").strip()
        if not number:
            raise ValidationError("invoice_number is required.")
        invoice.invoice_number = number
    if "invoice_date" in data:
        invoice.invoice_date = parse_optional_date(data["invoice_date"], "invoice_date") or invoice.invoice_date
    if "due_date" in data:
        invoice.due_date = parse_optional_date(data["due_date"], "due_date")
    if "notes" in data:
        invoice.notes = data["notes"] or ""
    if "attachment_url" in data:
        invoice.attachment_url = data["attachment_url"] or ""


def _save_header(invoice: SupplierInvoice):
    try:
        with transaction.atomic():
            invoice.save()
    except IntegrityError:
        raise ValidationError(
            f"Supplier {invoice.supplier_id} already has an invoice numbered {invoice.invoice_number!r}."
        )


@transaction.atomic
def create_supplier_invoice(entity, data: dict, *, by=None) -> SupplierInvoice:
    """Create a DRAFT invoice. data: supplier_id, invoice_number, dates, notes, lines, purchase_order_ids."""
    supplier = fetch(Supplier.objects.filter(entity=entity), data.get("supplier_id"), "Supplier")
    if not (data.get("invoice_number") or "").strip():
        raise ValidationError("invoice_number is required.")

    invoice = SupplierInvoice(entity=entity, supplier=supplier, created_by=by)
    _apply_header(invoice, {k: v for k, v in data.items() if k in HEADER_FIELDS})
    _save_header(invoice)

    for line_data in data.get("lines") or []:
        _create_line(invoice, line_data)
    apply_totals(invoice)

    if data.get("purchase_order_ids"):
        invoice_links.link_purchase_orders(invoice.pk, data["purchase_order_ids"], by=by)

    grant_document_perms(invoice, by)
    notify_document_changed(invoice, "created", by=by)
    logger.info("Supplier invoice %s (%s) created", invoice.pk, invoice.invoice_number)
    return invoice


def _create_line(invoice: SupplierInvoice, data: dict) -> SupplierInvoiceLine:
    line = SupplierInvoiceLine.objects.create(invoice=invoice, **_line_values(invoice, data))
    if data.get("reception_line_id") is not None:
        invoice_links.attach_reception_line(line, data["reception_line_id"])
    return line


@transaction.atomic
def update_supplier_invoice(invoice_id, data: dict, *, by=None) -> SupplierInvoice:
    invoice = _lock_invoice(invoice_id)
    unknown = set(data) - set(HEADER_FIELDS)
    if unknown:
        raise ValidationError(f"Unknown or read-only supplier invoice fields: {', '.join(sorted(unknown))}.")
    if invoice.is_locked:
        blocked = set(data) - set(SupplierInvoice.LOCKED_EDITABLE_FIELDS)
        if blocked:
            raise InvalidStateTransitionError(
                f"Supplier invoice {invoice.pk} is {invoice.status}; only "
                f"{', '.join(SupplierInvoice.LOCKED_EDITABLE_FIELDS)} can be changed."
            )
    _apply_header(invoice, data)
    _save_header(invoice)
    notify_document_changed(invoice, "updated", by=by)
    return invoice


@transaction.atomic
def add_invoice_line(invoice_id, data: dict, *, by=None) -> SupplierInvoiceLine:
    invoice = _lock_invoice(invoice_id)
    ensure_draft(invoice)
    line = _create_line(invoice, data)
    apply_totals(invoice)
    notify_document_changed(invoice, "line_added", by=by)
    return line


@transaction.atomic
def update_invoice_line(invoice_id, line_id, data: dict, *, by=None) -> SupplierInvoiceLine:
    invoice = _lock_invoice(invoice_id)
    ensure_draft(invoice)
    line = fetch(invoice.lines.all(), line_id, "Supplier invoice line", for_update=True)
    for name, value in _line_values(invoice, data, line).items():
        setattr(line, name, value)
    line.save()
    if "reception_line_id" in data:
        invoice_links.attach_reception_line(line, data["reception_line_id"])
    apply_totals(invoice)
    notify_document_changed(invoice, "line_updated", by=by)
    return line


@transaction.atomic
def remove_invoice_line(invoice_id, line_id, *, by=None):
    invoice = _lock_invoice(invoice_id)
    ensure_draft(invoice)
    fetch(invoice.lines.all(), line_id, "Supplier invoice line").delete()
    apply_totals(invoice)
    notify_document_changed(invoice, "line_removed", by=by)


def _transition(invoice_id, name: str, action: str, *, by=None) -> SupplierInvoice:
    invoice = _lock_invoice(invoice_id)
    run_transition(invoice, name, by=by)
    invoice.save()
    notify_document_changed(invoice, action, by=by)
    logger.info("Supplier invoice %s: %s -> %s", invoice.pk, name, invoice.status)
    return invoice


@transaction.atomic
def submit_supplier_invoice(invoice_id, *, by=None) -> SupplierInvoice:
    return _transition(invoice_id, "submit", "submitted", by=by)


@transaction.atomic
def mark_supplier_invoice_paid(invoice_id, *, by=None) -> SupplierInvoice:
    return _transition(invoice_id, "mark_paid", "paid", by=by)


@transaction.atomic
def cancel_supplier_invoice(invoice_id, *, by=None) -> SupplierInvoice:
    return _transition(invoice_id, "cancel", "cancelled", by=by)


@transaction.atomic
def void_supplier_invoice(invoice_id, *, by=None) -> SupplierInvoice:
    return _transition(invoice_id, "void", "voided", by=by)


@transaction.atomic
def record_payment(invoice_id, amount, *, paid_on=None, reference="", by=None) -> SupplierPayment:
    """Register a payment and move the invoice to PARTIALLY_PAID or PAID."""
    invoice = _lock_invoice(invoice_id)
    if invoice.status not in SupplierInvoice.PAYABLE_STATUSES:
        raise InvalidStateTransitionError(
            f"Supplier invoice {invoice.pk} is {invoice.status}; payments need a pending or partially paid invoice."
        )

    amount = parse_decimal(amount, "amount", places=PRICE_PLACES)
    if amount <= 0:
        raise ValidationError("Payment amount must be positive.")

    payment = SupplierPayment.objects.create(
        invoice=invoice,
        amount=amount,
        paid_on=parse_optional_date(paid_on, "paid_on") or timezone.localdate(),
        reference=reference or "",
        created_by=by,
    )

    paid = invoice.amount_paid()
    if paid > invoice.total_ttc or amounts_match(paid, invoice.total_ttc):
        run_transition(invoice, "mark_paid", by=by)
    else:
        run_transition(invoice, "mark_partially_paid", by=by)
    invoice.save()

    notify_document_changed(invoice, "payment_recorded", by=by)
    logger.info(
        "Supplier invoice %s: payment %s recorded (paid %s of %s, status %s)",
        invoice.pk, amount, paid, invoice.total_ttc, invoice.status,
    )
    return payment


@transaction.atomic
def delete_supplier_invoice(invoice_id, *, by=None):
    invoice = _lock_invoice(invoice_id)
    if invoice.status not in SupplierInvoice.DELETABLE_STATUSES:
        raise InvalidStateTransitionError(
            f"Supplier invoice {invoice.pk} is {invoice.status}; it cannot be deleted."
        )
    if invoice.payments.exists():
        raise ValidationError(f"Supplier invoice {invoice.pk} has payments and cannot be deleted.")

    pk = invoice.pk
    invoice.delete()
    logger.info("Supplier invoice %s deleted by %s", pk, getattr(by, "pk", None))
