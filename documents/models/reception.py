from decimal import Decimal

from django.conf import settings
from django.db import models
from django.db.models import Q
from django.utils import timezone
from django_fsm import FSMField, transition
from django_fsm_log.decorators import fsm_log_by
from simple_history.models import HistoricalRecords

from core.exceptions import ValidationError


class Reception(models.Model):
    """Goods reception (goods received note).

    PENDING_QUALITY_CHECK -> PARTIAL -> COMPLETE, or straight to COMPLETE.
    PENDING_QUALITY_CHECK / PARTIAL -> CANCELLED.

    Lines can only be changed while the reception is PENDING_QUALITY_CHECK or
    PARTIAL. All line changes go through documents.services.receptions so the
    order line tracker and the stock ledger stay in step.
    """

    class Status(models.TextChoices):
        PENDING_QUALITY_CHECK = "pending_quality_check", "Pending quality check"
        PARTIAL = "partial", "Partial"
        COMPLETE = "complete", "Complete"
        CANCELLED = "cancelled", "Cancelled"

    MUTABLE_STATUSES = (Status.PENDING_QUALITY_CHECK, Status.PARTIAL)

    entity = models.ForeignKey("core.Entity", on_delete=models.CASCADE, related_name="receptions")
    status = FSMField(default=Status.PENDING_QUALITY_CHECK, choices=Status.choices, protected=True)

    reception_no = models.CharField(max_length=40, blank=True, default="")
    reception_date = models.DateField(default=timezone.localdate)

    supplier = models.ForeignKey("masterdata.Supplier", on_delete=models.PROTECT, related_name="receptions")
    purchase_order = models.ForeignKey(
        "documents.PurchaseOrder", null=True, blank=True, on_delete=models.PROTECT, related_name="receptions"
    )

    # exactly one of warehouse/shop
    warehouse = models.ForeignKey("masterdata.Warehouse", null=True, blank=True, on_delete=models.PROTECT, related_name="receptions")
    shop = models.ForeignKey("masterdata.Shop", null=True, blank=True, on_delete=models.PROTECT, related_name="receptions")

    notes = models.TextField(blank=True, default="")

    received_by = models.ForeignKey(settings.AUTH_USER_MODEL, null=True, blank=True, on_delete=models.PROTECT, related_name="+")
    created_at = models.DateTimeField(auto_now_add=True)
    completed_at = models.DateTimeField(null=True, blank=True)
    cancelled_at = models.DateTimeField(null=True, blank=True)

    history = HistoricalRecords()

    class Meta:
        ordering = ("-reception_date", "-id")
        indexes = [
            models.Index(fields=["entity", "status", "reception_date"]),
            models.Index(fields=["entity", "reception_no"]),
        ]
        constraints = [
            models.CheckConstraint(
                condition=(
                    Q(warehouse__isnull=False, shop__isnull=True)
                    | Q(warehouse__isnull=True, shop__isnull=False)
                ),
                name="reception_exactly_one_location",
            ),
        ]

    def __str__(self):
        return f"Reception {self.reception_no or self.pk} ({self.get_status_display()})"

    @property
    def is_mutable(self) -> bool:
        return self.status in self.MUTABLE_STATUSES

    @property
    def location(self):
        return self.warehouse or self.shop

    @fsm_log_by
    @transition(
        field=status,
        source=[Status.PENDING_QUALITY_CHECK, Status.PARTIAL],
        target=Status.PARTIAL,
    )
    def mark_partial(self, by=None):
        pass

    @fsm_log_by
    @transition(
        field=status,
        source=[Status.PENDING_QUALITY_CHECK, Status.PARTIAL, Status.COMPLETE],
        target=Status.COMPLETE,
    )
    def complete(self, by=None):
        if not self.lines.filter(removed_at__isnull=True).exists():
            raise ValidationError("A reception needs at least one line before it can be completed.")
        if self.completed_at is None:
            self.completed_at = timezone.now()

    @fsm_log_by
    @transition(
        field=status,
        source=[Status.PENDING_QUALITY_CHECK, Status.PARTIAL, Status.CANCELLED],
        target=Status.CANCELLED,
    )
    def cancel(self, by=None):
        if self.cancelled_at is None:
            self.cancelled_at = timezone.now()


class ReceptionLineQuerySet(models.QuerySet):
    def active(self):
        """Lines that count: removed lines stay for the ledger trail but are ignored."""
        return self.filter(removed_at__isnull=True)


class ReceptionLine(models.Model):
    """Quantity of one product/variant received, optionally against an order line.

    Product and variant are fixed once the line exists. Lines that have
    touched the stock ledger are never deleted; removal stamps removed_at.
    """
    reception = models.ForeignKey(Reception, on_delete=models.CASCADE, related_name="lines")
    order_line = models.ForeignKey(
        "documents.PurchaseOrderLine", null=True, blank=True, on_delete=models.PROTECT, related_name="reception_lines"
    )

    product = models.ForeignKey("masterdata.Product", on_delete=models.PROTECT, related_name="+")
    variant = models.ForeignKey("masterdata.ProductVariant", null=True, blank=True, on_delete=models.PROTECT, related_name="+")

    quantity = models.DecimalField(max_digits=15, decimal_places=3)
    unit_cost = models.DecimalField(max_digits=15, decimal_places=4, default=Decimal("0.0000"))

    lot_number = models.CharField(max_length=100, blank=True, default="")
    expiry_date = models.DateField(null=True, blank=True)
    notes = models.TextField(blank=True, default="")

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)
    removed_at = models.DateTimeField(null=True, blank=True)

    objects = ReceptionLineQuerySet.as_manager()

    class Meta:
        ordering = ["id"]
        constraints = [
            models.CheckConstraint(condition=Q(quantity__gt=0), name="reception_line_quantity_positive"),
            models.UniqueConstraint(
                fields=["reception", "product", "variant", "order_line"],
                condition=Q(removed_at__isnull=True),
                name="reception_line_unique_active_triple",
            ),
        ]

    def __str__(self):
        return f"{self.reception} / {self.product_id} x {self.quantity}"

    @property
    def is_active(self) -> bool:
        return self.removed_at is None
