from decimal import Decimal

from django.db import models


class Product(models.Model):
    """Purchasable product (master data owned by the catalogue module)."""
    entity = models.ForeignKey("core.Entity", on_delete=models.CASCADE, related_name="products")

    number = models.CharField(max_length=50)
    name = models.CharField(max_length=255)

    is_stock_item = models.BooleanField(default=True)

    # Fallback unit cost for receptions that are not tied to an order line
    purchase_cost = models.DecimalField(max_digits=15, decimal_places=4, default=Decimal("0.0000"))

    class Meta:
        unique_together = ("entity", "number")
        ordering = ["number"]

    def __str__(self):
        return f"{self.number} {self.name}"


class ProductVariant(models.Model):
    product = models.ForeignKey(Product, on_delete=models.CASCADE, related_name="variants")

    sku = models.CharField(max_length=64)
    name = models.CharField(max_length=255)

    class Meta:
        unique_together = ("product", "sku")
        ordering = ["sku"]

    def __str__(self):
        return f"{self.product.number}/{self.sku}"
