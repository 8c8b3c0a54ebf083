from decimal import Decimal

from django.conf import settings
from django.db import models
from django.db.models import Q
from django.utils import timezone
from django_fsm import FSMField, transition
from django_fsm_log.decorators import fsm_log_by
from simple_history.models import HistoricalRecords

from core.exceptions import ValidationError
from core.services.totals import line_total_ht


class PurchaseOrder(models.Model):
    """Purchase order.

    DRAFT -> PENDING_APPROVAL -> APPROVED -> SENT_TO_SUPPLIER
          -> PARTIALLY_RECEIVED -> FULLY_RECEIVED, or CANCELLED.

    The two receiving states are never set by hand: they are derived from the
    order lines by documents.services.status.recompute_order_status().
    FULLY_RECEIVED and CANCELLED are terminal (re-applying them is a no-op).
    """

    class Status(models.TextChoices):
        DRAFT = "draft", "Draft"
        PENDING_APPROVAL = "pending_approval", "Pending approval"
        APPROVED = "approved", "Approved"
        SENT_TO_SUPPLIER = "sent_to_supplier", "Sent to supplier"
        PARTIALLY_RECEIVED = "partially_received", "Partially received"
        FULLY_RECEIVED = "fully_received", "Fully received"
        CANCELLED = "cancelled", "Cancelled"

    EDITABLE_STATUSES = (Status.DRAFT, Status.PENDING_APPROVAL)
    RECEIVABLE_STATUSES = (Status.APPROVED, Status.SENT_TO_SUPPLIER, Status.PARTIALLY_RECEIVED)
    TERMINAL_STATUSES = (Status.FULLY_RECEIVED, Status.CANCELLED)
    DELETABLE_STATUSES = (Status.DRAFT, Status.CANCELLED)

    entity = models.ForeignKey("core.Entity", on_delete=models.CASCADE, related_name="purchase_orders")
    supplier = models.ForeignKey("masterdata.Supplier", on_delete=models.PROTECT, related_name="purchase_orders")
    status = FSMField(default=Status.DRAFT, choices=Status.choices, protected=True)

    order_no = models.CharField(max_length=40, blank=True, default="")
    order_date = models.DateField(default=timezone.localdate)
    expected_date = models.DateField(null=True, blank=True)
    notes = models.TextField(blank=True, default="")

    total_ht = models.DecimalField(max_digits=15, decimal_places=4, default=Decimal("0.0000"))
    total_vat = models.DecimalField(max_digits=15, decimal_places=4, default=Decimal("0.0000"))
    total_ttc = models.DecimalField(max_digits=15, decimal_places=4, default=Decimal("0.0000"))

    approved_at = models.DateTimeField(null=True, blank=True)
    approved_by = models.ForeignKey(settings.AUTH_USER_MODEL, null=True, blank=True, on_delete=models.PROTECT, related_name="+")
    created_by = models.ForeignKey(settings.AUTH_USER_MODEL, null=True, blank=True, on_delete=models.PROTECT, related_name="+")
    created_at = models.DateTimeField(auto_now_add=True)

    history = HistoricalRecords()

    class Meta:
        ordering = ("-order_date", "-id")
        indexes = [
            models.Index(fields=["entity", "status", "order_date"]),
            models.Index(fields=["entity", "order_no"]),
        ]

    def __str__(self):
        return f"PO {self.order_no or self.pk} ({self.get_status_display()})"

    @property
    def is_editable(self) -> bool:
        return self.status in self.EDITABLE_STATUSES

    @property
    def is_receivable(self) -> bool:
        return self.status in self.RECEIVABLE_STATUSES

    def _ensure_lines(self):
        """Transition precondition: a non-draft order must have lines."""
        if not self.lines.exists():
            raise ValidationError("A non-draft purchase order must have at least one line.")

    @fsm_log_by
    @transition(field=status, source=Status.DRAFT, target=Status.PENDING_APPROVAL)
    def submit_for_approval(self, by=None):
        self._ensure_lines()

    @fsm_log_by
    @transition(field=status, source=Status.PENDING_APPROVAL, target=Status.APPROVED)
    def approve(self, by=None):
        """Approval must record who approved."""
        if by is None:
            raise ValidationError("An approver is required when approving a purchase order.")
        self.approved_by = by
        self.approved_at = timezone.now()

    @fsm_log_by
    @transition(field=status, source=Status.APPROVED, target=Status.SENT_TO_SUPPLIER)
    def send_to_supplier(self, by=None):
        pass

    @fsm_log_by
    @transition(
        field=status,
        source=[Status.APPROVED, Status.SENT_TO_SUPPLIER, Status.PARTIALLY_RECEIVED],
        target=Status.PARTIALLY_RECEIVED,
    )
    def mark_partially_received(self, by=None):
        pass

    @fsm_log_by
    @transition(
        field=status,
        source=[Status.APPROVED, Status.SENT_TO_SUPPLIER, Status.PARTIALLY_RECEIVED, Status.FULLY_RECEIVED],
        target=Status.FULLY_RECEIVED,
    )
    def mark_fully_received(self, by=None):
        pass

    @fsm_log_by
    @transition(field=status, source=Status.PARTIALLY_RECEIVED, target=Status.SENT_TO_SUPPLIER)
    def reopen_receiving(self, by=None):
        """Every reception line was removed again: nothing is received any more."""

    @fsm_log_by
    @transition(
        field=status,
        source=[
            Status.DRAFT,
            Status.PENDING_APPROVAL,
            Status.APPROVED,
            Status.SENT_TO_SUPPLIER,
            Status.PARTIALLY_RECEIVED,
            Status.CANCELLED,
        ],
        target=Status.CANCELLED,
    )
    def cancel(self, by=None):
        pass


class PurchaseOrderLine(models.Model):
    """One product/quantity/price entry on a purchase order.

    received_quantity is owned by documents.services.order_lines and always
    equals the sum of the active reception lines pointing at this line.
    """
    order = models.ForeignKey(PurchaseOrder, on_delete=models.CASCADE, related_name="lines")
    line_no = models.IntegerField()

    product = models.ForeignKey("masterdata.Product", on_delete=models.PROTECT, related_name="+")
    variant = models.ForeignKey("masterdata.ProductVariant", null=True, blank=True, on_delete=models.PROTECT, related_name="+")
    description = models.CharField(max_length=255, blank=True, default="")

    quantity = models.DecimalField(max_digits=15, decimal_places=3)
    unit_price = models.DecimalField(max_digits=15, decimal_places=4, default=Decimal("0.0000"))
    vat_rate = models.DecimalField(max_digits=5, decimal_places=2, null=True, blank=True, help_text="VAT rate in percent (e.g. 20.00)")

    received_quantity = models.DecimalField(max_digits=15, decimal_places=3, default=Decimal("0.000"))

    class Meta:
        unique_together = ("order", "line_no")
        ordering = ["line_no"]
        constraints = [
            models.CheckConstraint(condition=Q(quantity__gt=0), name="po_line_quantity_positive"),
            models.CheckConstraint(condition=Q(received_quantity__gte=0), name="po_line_received_non_negative"),
        ]

    def __str__(self):
        return f"{self.order} #{self.line_no} {self.product_id}"

    def save(self, *args, **kwargs):
        """Allocate an ERP-style line number and default the description."""
        if not self.line_no:
            last = (
                PurchaseOrderLine.objects
                .filter(order_id=self.order_id)
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

    @property
    def remaining_quantity(self) -> Decimal:
        """Cached view (ordered - received). Writes use order_lines.remaining_quantity()."""
        return self.quantity - self.received_quantity
