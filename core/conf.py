from decimal import Decimal

from django.conf import settings

DEFAULTS = {
    "OVER_RECEIPT_TOLERANCE": Decimal("0"),
    "MONEY_TOLERANCE": Decimal("0.001"),
}


def procurement_setting(name: str):
    """Read a key of settings.PROCUREMENT, falling back to DEFAULTS."""
    overrides = getattr(settings, "PROCUREMENT", None) or {}
    if name in overrides:
        return overrides[name]
    return DEFAULTS[name]
