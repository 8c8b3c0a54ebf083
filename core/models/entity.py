from django.db import models
from django.conf import settings


class Entity(models.Model):
    """Company/legal entity.

    Key principle:
    - Every procurement document, product and stock location belongs to an Entity.
    - Entity holds default configuration: the number series used when documents are created.
    """

    name = models.CharField(max_length=255)

    # Number series used when documents are created
    series_purchase_order = models.ForeignKey("core.NumberSeries", null=True, blank=True, on_delete=models.PROTECT, related_name="+")
    series_purchase_reception = models.ForeignKey("core.NumberSeries", null=True, blank=True, on_delete=models.PROTECT, related_name="+")

    is_active = models.BooleanField(default=True)

    class Meta:
        ordering = ["name"]
        verbose_name_plural = "entities"

    def __str__(self):
        return self.name


class UserProfile(models.Model):
    """Connect a user to an Entity."""
    user = models.OneToOneField(settings.AUTH_USER_MODEL, on_delete=models.CASCADE, related_name="profile")
    entity = models.ForeignKey("core.Entity", on_delete=models.CASCADE, related_name="users")

    is_entity_admin = models.BooleanField(default=False)

    def __str__(self):
        return f"{self.user} @ {self.entity}"
