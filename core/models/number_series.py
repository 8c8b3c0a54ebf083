from django.db import models, transaction


class NumberSeries(models.Model):
    """Document number series (PO-00001, REC-00001, ...).

    Allocation locks the series row (select_for_update) so two requests
    creating documents at the same time never get the same number.
    """

    entity = models.ForeignKey("core.Entity", on_delete=models.CASCADE, related_name="number_series")

    code = models.CharField(max_length=50)
    prefix = models.CharField(max_length=50, blank=True, default="")
    next_number = models.IntegerField(default=1)
    min_width = models.IntegerField(default=5)

    class Meta:
        unique_together = ("entity", "code")
        ordering = ["code"]

    def __str__(self):
        return f"{self.entity} {self.code}"

    @transaction.atomic
    def allocate(self) -> str:
        """Allocate the next number; the row lock is held until commit."""
        series = type(self).objects.select_for_update().get(pk=self.pk)

        current = series.next_number
        series.next_number = current + 1
        series.save(update_fields=["next_number"])

        return f"{series.prefix}{str(current).zfill(series.min_width)}"

    @classmethod
    def allocate_for(cls, entity, attr: str, *, code: str, prefix: str) -> str:
        """Allocate from the series configured on entity.<attr>.

        Entities without a configured series get one created on first use,
        so a fresh entity can create documents without setup.
        """
        series = getattr(entity, attr)
        if series is None:
            series, _ = cls.objects.get_or_create(entity=entity, code=code, defaults={"prefix": prefix})
            setattr(entity, attr, series)
            entity.save(update_fields=[attr])
        return series.allocate()
