from django.db import models


class Warehouse(models.Model):
    """Stock location. A ledger entry points at a warehouse or a shop, never both."""
    entity = models.ForeignKey("core.Entity", on_delete=models.CASCADE, related_name="warehouses")

    code = models.CharField(max_length=20)
    name = models.CharField(max_length=255)

    class Meta:
        unique_together = ("entity", "code")
        ordering = ["code"]

    def __str__(self):
        return f"{self.code} {self.name}"


class Shop(models.Model):
    entity = models.ForeignKey("core.Entity", on_delete=models.CASCADE, related_name="shops")

    code = models.CharField(max_length=20)
    name = models.CharField(max_length=255)

    class Meta:
        unique_together = ("entity", "code")
        ordering = ["code"]

    def __str__(self):
        return f"{self.code} {self.name}"
