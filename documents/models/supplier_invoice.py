import logging
from decimal import Decimal

from django.conf import settings
from django.db import models
from django.db.models import Q, Sum
from django.utils import timezone
from django_fsm import FSMField, transition
from django_fsm_log.decorators import fsm_log_by
from simple_history.models import HistoricalRecords

from core.exceptions import ValidationError
from core.services.totals import amounts_match, line_total_ht

logger = logging.getLogger(__name__)


class SupplierInvoice(models.Model):
    """Invoice received from a supplier.

    DRAFT -> PENDING_PAYMENT -> PARTIALLY_PAID -> PAID
    DRAFT / PENDING_PAYMENT -> CANCELLED
    PENDING_PAYMENT / PARTIALLY_PAID -> VOIDED

    Invoicing never changes ordered or received quantities: lines only point
    at reception lines for traceability.
    """

    class Status(models.TextChoices):
        DRAFT = "draft", "Draft"
        PENDING_PAYMENT = "pending_payment", "Pending payment"
        PARTIALLY_PAID = "partially_paid", "Partially paid"
        PAID = "paid", "Paid"
        CANCELLED = "cancelled", "Cancelled"
        VOIDED = "voided", "Voided"

    LOCKED_STATUSES = (Status.PAID, Status.CANCELLED, Status.VOIDED)
    DELETABLE_STATUSES = (Status.DRAFT, Status.PENDING_PAYMENT, Status.CANCELLED)
    PAYABLE_STATUSES = (Status.PENDING_PAYMENT, Status.PARTIALLY_PAID)

    # header fields that may still change once the invoice is locked
    LOCKED_EDITABLE_FIELDS = ("notes", "attachment_url")

    entity = models.ForeignKey("core.Entity", on_delete=models.CASCADE, related_name="supplier_invoices")
    supplier = models.ForeignKey("masterdata.Supplier", on_delete=models.PROTECT, related_name="supplier_invoices")
    status = FSMField(default=Status.DRAFT, choices=Status.choices, protected=True)

    # the supplier's own number
    invoice_number = models.CharField(max_length=64)
    invoice_date = models.DateField(default=timezone.localdate)
    due_date = models.DateField(null=True, blank=True)

    total_ht = models.DecimalField(max_digits=15, decimal_places=4, default=Decimal("0.0000"))
    total_vat = models.DecimalField(max_digits=15, decimal_places=4, default=Decimal("0.0000"))
    total_ttc = models.DecimalField(max_digits=15, decimal_places=4, default=Decimal("0.0000"))

    notes = models.TextField(blank=True, default="")
    attachment_url = models.URLField(max_length=2048, blank=True, default="")

    purchase_orders = models.ManyToManyField(
        "documents.PurchaseOrder",
        through="documents.SupplierInvoicePurchaseOrder",
        related_name="supplier_invoices",
        blank=True,
    )

    paid_at = models.DateTimeField(null=True, blank=True)
    created_by = models.ForeignKey(settings.AUTH_USER_MODEL, null=True, blank=True, on_delete=models.PROTECT, related_name="+")
    created_at = models.DateTimeField(auto_now_add=True)

    history = HistoricalRecords()

    class Meta:
        ordering = ("-invoice_date", "-id")
        constraints = [
            models.UniqueConstraint(
                fields=["entity", "supplier", "invoice_number"], name="supplier_invoice_unique_number"
            ),
        ]

    def __str__(self):
        return f"Supplier invoice {self.invoice_number} ({self.get_status_display()})"

    @property
    def is_draft(self) -> bool:
        return self.status == self.Status.DRAFT

    @property
    def is_locked(self) -> bool:
        return self.status in self.LOCKED_STATUSES

    def amount_paid(self) -> Decimal:
        total = self.payments.aggregate(total=Sum("amount"))["total"]
        return total if total is not None else Decimal("0.0000")

    @fsm_log_by
    @transition(field=status, source=Status.DRAFT, target=Status.PENDING_PAYMENT)
    def submit(self, by=None):
        if not self.lines.exists():
            raise ValidationError("A supplier invoice needs at least one line before it can be submitted.")

    @fsm_log_by
    @transition(
        field=status,
        source=[Status.PENDING_PAYMENT, Status.PARTIALLY_PAID],
        target=Status.PARTIALLY_PAID,
    )
    def mark_partially_paid(self, by=None):
        pass

    @fsm_log_by
    @transition(
        field=status,
        source=[Status.PENDING_PAYMENT, Status.PARTIALLY_PAID, Status.PAID],
        target=Status.PAID,
    )
    def mark_paid(self, by=None):
        """Paid-vs-total mismatches are reported, never blocking."""
        paid = self.amount_paid()
        if not amounts_match(paid, self.total_ttc):
            logger.warning(
                "Supplier invoice %s marked paid with payments %s vs total_ttc %s",
                self.pk, paid, self.total_ttc,
            )
        if self.paid_at is None:
            self.paid_at = timezone.now()

    @fsm_log_by
    @transition(
        field=status,
        source=[Status.DRAFT, Status.PENDING_PAYMENT, Status.CANCELLED],
        target=Status.CANCELLED,
    )
    def cancel(self, by=None):
        pass

    @fsm_log_by
    @transition(
        field=status,
        source=[Status.PENDING_PAYMENT, Status.PARTIALLY_PAID, Status.VOIDED],
        target=Status.VOIDED,
    )
    def void(self, by=None):
        pass


class SupplierInvoiceLine(models.Model):
    invoice = models.ForeignKey(SupplierInvoice, on_delete=models.CASCADE, related_name="lines")
    line_no = models.IntegerField()

    product = models.ForeignKey("masterdata.Product", null=True, blank=True, on_delete=models.PROTECT, related_name="+")
    variant = models.ForeignKey("masterdata.ProductVariant", null=True, blank=True, on_delete=models.PROTECT, related_name="+")
    description = models.CharField(max_length=255, blank=True, default="")

    quantity = models.DecimalField(max_digits=15, decimal_places=3)
    unit_price = models.DecimalField(max_digits=15, decimal_places=4, default=Decimal("0.0000"))
    vat_rate = models.DecimalField(max_digits=5, decimal_places=2, null=True, blank=True)

    # traceability only, never changes received quantities
    reception_line = models.ForeignKey(
        "documents.ReceptionLine", null=True, blank=True, on_delete=models.PROTECT, related_name="invoice_lines"
    )

    class Meta:
        unique_together = ("invoice", "line_no")
        ordering = ["line_no"]
        constraints = [
            models.CheckConstraint(condition=Q(quantity__gt=0), name="supplier_invoice_line_quantity_positive"),
        ]

    def __str__(self):
        return f"{self.invoice} #{self.line_no}"

    def save(self, *args, **kwargs):
        if not self.line_no:
            last = (
                SupplierInvoiceLine.objects
                .filter(invoice_id=self.invoice_id)
                .order_by("-line_no")
                .values_list("line_no", flat=True)
                .first()
            )
            self.line_no = (last or 0) + 10

        if not self.description and self.product_id:
            self.description = self.product.name

        super().save(*args, **kwargs)

    @property
    def total_ht(self) -> Decimal:
        return line_total_ht(self.quantity, self.unit_price)


class SupplierInvoicePurchaseOrder(models.Model):
    invoice = models.ForeignKey(SupplierInvoice, on_delete=models.CASCADE, related_name="order_links")
    purchase_order = models.ForeignKey("documents.PurchaseOrder", on_delete=models.PROTECT, related_name="invoice_links")
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        constraints = [
            models.UniqueConstraint(fields=["invoice", "purchase_order"], name="supplier_invoice_po_unique"),
        ]

    def __str__(self):
        return f"{self.invoice} <-> {self.purchase_order}"


class SupplierPayment(models.Model):
    """Money paid against a supplier invoice. The sum drives PARTIALLY_PAID / PAID."""
    invoice = models.ForeignKey(SupplierInvoice, on_delete=models.PROTECT, related_name="payments")

    amount = models.DecimalField(max_digits=15, decimal_places=4)
    paid_on = models.DateField(default=timezone.localdate)
    reference = models.CharField(max_length=100, blank=True, default="")

    created_by = models.ForeignKey(settings.AUTH_USER_MODEL, null=True, blank=True, on_delete=models.PROTECT, related_name="+")
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ("paid_on", "id")
        constraints = [
            models.CheckConstraint(condition=Q(amount__gt=0), name="supplier_payment_amount_positive"),
        ]

    def __str__(self):
        return f"{self.invoice} payment {self.amount}"
