from django.db import models


class Supplier(models.Model):
    entity = models.ForeignKey("core.Entity", on_delete=models.CASCADE, related_name="suppliers")

    number = models.CharField(max_length=50)
    name = models.CharField(max_length=255)

    is_active = models.BooleanField(default=True)

    class Meta:
        unique_together = ("entity", "number")
        ordering = ["number"]

    def __str__(self):
        return f"{self.number} {self.name}"
