from decimal import Decimal

from django.conf import settings
from django.db import models
from django.db.models import Q
from django.utils import timezone

from core.exceptions import ValidationError


class StockLedgerQuerySet(models.QuerySet):
    def for_key(self, product, variant=None, *, warehouse=None, shop=None):
        """Rows for one (product, variant, location) key. variant=None means 'no variant'."""
        qs = self.filter(product=product)
        qs = qs.filter(variant=variant) if variant is not None else qs.filter(variant__isnull=True)
        if warehouse is not None:
            return qs.filter(warehouse=warehouse)
        return qs.filter(shop=shop)

    def update(self, **kwargs):
        raise ValidationError("Stock ledger entries are append-only; append an offsetting entry instead.")

    def delete(self):
        raise ValidationError("Stock ledger entries are append-only; append an offsetting entry instead.")


class StockLedgerEntry(models.Model):
    """One immutable stock movement (signed quantity delta).

    Current stock for (product, variant, location) is the sum of all deltas.
    Rows are never updated or deleted: corrections are new rows, and a
    reversal points back at the row it cancels.
    """

    class MovementType(models.TextChoices):
        PURCHASE_RECEPTION = "purchase_reception", "Purchase reception"
        RECEPTION_CORRECTION = "reception_correction", "Reception correction"
        REVERSAL = "reversal", "Reversal"
        MANUAL_ENTRY_IN = "manual_entry_in", "Manual entry (in)"
        MANUAL_ENTRY_OUT = "manual_entry_out", "Manual entry (out)"
        INVENTORY_ADJUSTMENT_IN = "inventory_adjustment_in", "Inventory adjustment (in)"
        INVENTORY_ADJUSTMENT_OUT = "inventory_adjustment_out", "Inventory adjustment (out)"
        SUPPLIER_RETURN = "supplier_return", "Supplier return"

    entity = models.ForeignKey("core.Entity", on_delete=models.PROTECT, related_name="stock_ledger_entries")
    product = models.ForeignKey("masterdata.Product", on_delete=models.PROTECT, related_name="stock_ledger_entries")
    variant = models.ForeignKey("masterdata.ProductVariant", null=True, blank=True, on_delete=models.PROTECT, related_name="stock_ledger_entries")

    # exactly one of warehouse/shop (see constraints)
    warehouse = models.ForeignKey("masterdata.Warehouse", null=True, blank=True, on_delete=models.PROTECT, related_name="stock_ledger_entries")
    shop = models.ForeignKey("masterdata.Shop", null=True, blank=True, on_delete=models.PROTECT, related_name="stock_ledger_entries")

    quantity = models.DecimalField(max_digits=15, decimal_places=3)
    unit_cost = models.DecimalField(max_digits=15, decimal_places=4, default=Decimal("0.0000"))
    movement_type = models.CharField(max_length=32, choices=MovementType.choices)

    moved_at = models.DateTimeField(default=timezone.now)

    reception_line = models.ForeignKey("documents.ReceptionLine", null=True, blank=True, on_delete=models.PROTECT, related_name="ledger_entries")
    reversal_of = models.OneToOneField("self", null=True, blank=True, on_delete=models.PROTECT, related_name="reversal")

    note = models.CharField(max_length=255, blank=True, default="")
    created_by = models.ForeignKey(settings.AUTH_USER_MODEL, null=True, blank=True, on_delete=models.PROTECT, related_name="+")

    objects = StockLedgerQuerySet.as_manager()

    class Meta:
        ordering = ("moved_at", "id")
        verbose_name_plural = "stock ledger entries"
        indexes = [
            models.Index(fields=["product", "variant", "warehouse"]),
            models.Index(fields=["product", "variant", "shop"]),
        ]
        constraints = [
            models.CheckConstraint(
                condition=(
                    Q(warehouse__isnull=False, shop__isnull=True)
                    | Q(warehouse__isnull=True, shop__isnull=False)
                ),
                name="stock_ledger_exactly_one_location",
            ),
            models.CheckConstraint(condition=~Q(quantity=0), name="stock_ledger_nonzero_delta"),
        ]

    def __str__(self):
        return f"{self.get_movement_type_display()} {self.product_id} {self.quantity:+}"

    @property
    def location(self):
        return self.warehouse or self.shop

    def save(self, *args, **kwargs):
        if self.pk is not None:
            raise ValidationError("Stock ledger entries are append-only; append an offsetting entry instead.")
        super().save(*args, **kwargs)

    def delete(self, *args, **kwargs):
        raise ValidationError("Stock ledger entries are append-only; append an offsetting entry instead.")
