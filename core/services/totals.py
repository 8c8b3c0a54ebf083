"""Header totals for line-based documents (purchase orders, supplier invoices).

Rules:
- line_ht  = quantity * unit_price, rounded to 4 dp
- line_vat = line_ht * vat_rate / 100 (0 when the line has no VAT rate), rounded to 4 dp
- header totals are summed from the rounded line values and rounded again to 4 dp
- total_ttc = total_ht + total_vat

Money comparisons never use exact equality: see amounts_match().
"""

from collections import namedtuple
from decimal import Decimal, ROUND_HALF_UP

from core.conf import procurement_setting

FOUR_DP = Decimal("0.0001")
ZERO = Decimal("0.0000")

Totals = namedtuple("Totals", ["total_ht", "total_vat", "total_ttc"])


def q4(value) -> Decimal:
    """Round to 4 decimal places (half up)."""
    return Decimal(value).quantize(FOUR_DP, rounding=ROUND_HALF_UP)


def line_total_ht(quantity, unit_price) -> Decimal:
    return q4(Decimal(quantity) * Decimal(unit_price))


def line_total_vat(line_ht, vat_rate) -> Decimal:
    if vat_rate is None:
        return ZERO
    return q4(Decimal(line_ht) * Decimal(vat_rate) / Decimal("100"))


def compute_totals(lines) -> Totals:
    """Compute header totals from lines.

    `lines` is any iterable of objects exposing quantity, unit_price and
    vat_rate (order lines, invoice lines, or plain test doubles).
    """
    total_ht = ZERO
    total_vat = ZERO
    for line in lines:
        ht = line_total_ht(line.quantity, line.unit_price)
        total_ht += ht
        total_vat += line_total_vat(ht, line.vat_rate)

    total_ht = q4(total_ht)
    total_vat = q4(total_vat)
    return Totals(total_ht, total_vat, q4(total_ht + total_vat))


def amounts_match(a, b, tolerance=None) -> bool:
    """True when two money amounts differ by no more than the tolerance (default 0.001)."""
    if tolerance is None:
        tolerance = procurement_setting("MONEY_TOLERANCE")
    return abs(Decimal(a) - Decimal(b)) <= Decimal(tolerance)


def apply_totals(document, lines=None) -> Totals:
    """Recompute and store total_ht/total_vat/total_ttc on a document header.

    The caller is inside the transaction that changed the lines.
    """
    if lines is None:
        lines = document.lines.all()
    totals = compute_totals(lines)
    document.total_ht, document.total_vat, document.total_ttc = totals
    document.save(update_fields=["total_ht", "total_vat", "total_ttc"])
    return totals
