"""Small helpers shared by the document services.

Incoming `data` dicts come from the JSON endpoints, admin actions or tests;
values may be Decimals, ints or strings.
"""

from datetime import date
from decimal import Decimal, InvalidOperation

from django.utils.dateparse import parse_date as _parse_iso_date

from core.exceptions import NotFoundError, ValidationError

QUANTITY_PLACES = 3
PRICE_PLACES = 4
RATE_PLACES = 2


def fetch(queryset, pk, label: str, *, for_update=False):
    """Get one row or raise NotFoundError.

    `queryset` may be a model class or an (already scoped) queryset.
    """
    if pk is None:
        raise ValidationError(f"{label} is required.")
    qs = queryset.objects.all() if isinstance(queryset, type) else queryset
    if for_update:
        qs = qs.select_for_update()
    try:
        return qs.get(pk=pk)
    except (qs.model.DoesNotExist, ValueError, TypeError):
        raise NotFoundError(f"{label} {pk} not found.")


def parse_decimal(value, label: str, places: int = None) -> Decimal:
    """Parse a number; with `places`, reject digits the column cannot store."""
    if value is None or value == "":
        raise ValidationError(f"{label} is required.")
    try:
        result = Decimal(str(value))
    except InvalidOperation:
        raise ValidationError(f"{label} must be a number, got {value!r}.")
    if not result.is_finite():
        raise ValidationError(f"{label} must be a finite number.")
    if places is not None:
        try:
            rounded = result.quantize(Decimal(1).scaleb(-places))
        except InvalidOperation:
            raise ValidationError(f"{label} is out of range, got {value!r}.")
        if rounded != result:
            raise ValidationError(f"{label} allows at most {places} decimal places, got {value!r}.")
        result = rounded
    return result


def parse_quantity(value, label: str = "quantity") -> Decimal:
    """Positive quantity, at most 3 decimal places (the database precision)."""
    result = parse_decimal(value, label, places=QUANTITY_PLACES)
    if result <= 0:
        raise ValidationError(f"{label} must be positive, got {result}.")
    return result


def parse_optional_date(value, label: str):
    if value in (None, ""):
        return None
    if isinstance(value, date):
        return value
    try:
        parsed = _parse_iso_date(str(value))
    except ValueError:
        parsed = None
    if parsed is None:
        raise ValidationError(f"{label} must be an ISO date (YYYY-MM-DD), got {value!r}.")
    return parsed
