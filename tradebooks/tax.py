"""
tradebooks/tax.py

GST totals for an invoice.

compute_totals() is pure: the same lines and rates always produce the same
dict, so an edit-then-resave round trip never drifts.

Rounding rules:
- each line amount (quantity x rate) is rounded to 2 dp before summing
- discount, CGST and SGST amounts are rounded to 2 dp
- the grand total is rounded to the nearest whole rupee; round_off is the
  signed difference
"""

from __future__ import annotations

from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Iterable, Mapping, Optional

from .errors import ValidationError

ZERO = Decimal("0.00")
HUNDRED = Decimal("100")

# Numeric(12, 2) for money, Numeric(12, 3) for quantities
MAX_DIGITS = 12
MONEY_PLACES = 2
QUANTITY_PLACES = 3

TOTAL_FIELDS = (
    "subtotal",
    "discount_amount",
    "taxable_value",
    "cgst_amount",
    "sgst_amount",
    "round_off",
    "total",
)


def money(value: Decimal) -> Decimal:
    return value.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)


def to_decimal(value, field: str, places: Optional[int] = None, digits: int = MAX_DIGITS) -> Decimal:
    """
    Parse a number from JSON input. Floats go through str() to keep their printed value.

    The value must fit a Numeric(digits, places) column. With places set, a
    value carrying more decimal places is rejected rather than rounded.
    Separators such as "2,200" are rejected: the input is never guessed at.
    """
    if isinstance(value, bool) or value is None:
        raise ValidationError(f"{field} must be a number.", field=field)
    if isinstance(value, Decimal):
        result = value
    else:
        raw = str(value).strip()
        if "," in raw:
            raise ValidationError(f"{field} must be a plain number without separators.", field=field)
        try:
            result = Decimal(raw)
        except (InvalidOperation, ValueError):
            raise ValidationError(f"{field} must be a number.", field=field) from None
    if not result.is_finite():
        raise ValidationError(f"{field} must be a finite number.", field=field)

    int_digits = digits - (places or 0)
    if abs(result) >= Decimal(10) ** int_digits:
        raise ValidationError(f"{field} is out of range.", field=field, max_integer_digits=int_digits)
    if places is not None and result != result.quantize(Decimal(1).scaleb(-places)):
        raise ValidationError(f"{field} allows at most {places} decimal places.", field=field)
    return result


def check_range(value: Decimal, field: str, places: int = MONEY_PLACES) -> Decimal:
    """Reject a computed amount that does not fit a Numeric(12, places) column."""
    if abs(value) >= Decimal(10) ** (MAX_DIGITS - places):
        raise ValidationError(f"{field} is out of range.", field=field)
    return value


def line_amount(quantity: Decimal, rate: Decimal) -> Decimal:
    return money(quantity * rate)


def _percent(value, field: str) -> Decimal:
    pct = to_decimal(value if value is not None else ZERO, field, places=MONEY_PLACES, digits=5)
    if pct < 0 or pct > HUNDRED:
        raise ValidationError(f"{field} must be between 0 and 100.", field=field)
    return pct


def compute_totals(
    lines: Iterable[Mapping],
    discount_percent=ZERO,
    cgst_percent=ZERO,
    sgst_percent=ZERO,
) -> dict:
    """
    Compute invoice totals from line items.

    lines: iterable of mappings with "quantity" and "rate".

    Raises ValidationError for an empty line list, a quantity <= 0, a negative
    rate or a percent outside 0..100.
    """
    lines = list(lines)
    if not lines:
        raise ValidationError("At least one line item is required.", field="items")

    subtotal = ZERO
    for idx, line in enumerate(lines):
        quantity = to_decimal(line.get("quantity"), f"items[{idx}].quantity", places=QUANTITY_PLACES)
        rate = to_decimal(line.get("rate"), f"items[{idx}].rate", places=MONEY_PLACES)
        if quantity <= 0:
            raise ValidationError("Quantity must be greater than zero.", field=f"items[{idx}].quantity")
        if rate < 0:
            raise ValidationError("Rate cannot be negative.", field=f"items[{idx}].rate")
        subtotal += check_range(line_amount(quantity, rate), f"items[{idx}].amount")

    discount_pct = _percent(discount_percent, "discountPercent")
    cgst_pct = _percent(cgst_percent, "cgstPercent")
    sgst_pct = _percent(sgst_percent, "sgstPercent")

    subtotal = check_range(money(subtotal), "subtotal")
    discount_amount = money(subtotal * discount_pct / HUNDRED)
    taxable_value = subtotal - discount_amount

    cgst_amount = money(taxable_value * cgst_pct / HUNDRED)
    sgst_amount = money(taxable_value * sgst_pct / HUNDRED)

    pre_round_total = taxable_value + cgst_amount + sgst_amount
    total = check_range(pre_round_total.quantize(Decimal("1"), rounding=ROUND_HALF_UP), "total")
    round_off = money(total - pre_round_total)

    return {
        "subtotal": subtotal,
        "discount_amount": discount_amount,
        "taxable_value": money(taxable_value),
        "cgst_amount": cgst_amount,
        "sgst_amount": sgst_amount,
        "round_off": round_off,
        "total": money(total),
    }


def check_client_totals(computed: Mapping, supplied: Mapping, tolerance: Decimal) -> None:
    """
    Compare client-sent totals with the recomputed ones.

    Client values are advisory: a missing field is ignored, a field off by more
    than the tolerance rejects the request.
    """
    for field, value in supplied.items():
        if value is None or field not in computed:
            continue
        sent = to_decimal(value, field)
        if abs(sent - computed[field]) > tolerance:
            raise ValidationError(
                f"{field} does not match the computed value.",
                field=field,
                expected=str(computed[field]),
                received=str(sent),
            )
