"""
Proposal pricing calculator.

WHAT: Computes subtotal, per-item and global discounts, tax and final
amount from a list of line items.

WHY: Pricing must be deterministic and exact to the cent:
1. The same items always produce the same figures
2. Every output is rounded half-up to 2 decimals
3. Invalid items are reported, never silently clamped

HOW: Decimal arithmetic throughout. Figures are rounded only at the end,
so intermediate values keep full precision. Problems are collected as
human-readable error strings; the numeric result is still produced
(best effort) and the caller decides whether to block on errors.
"""

import logging
from decimal import Decimal, ROUND_HALF_UP, InvalidOperation, localcontext
from typing import Any, Iterable, Union

from proposal_engine.core.config import settings
from proposal_engine.schemas.proposal import PricingResult


logger = logging.getLogger(__name__)

CENT = Decimal("0.01")
HUNDRED = Decimal("100")
ZERO = Decimal("0")

NumberLike = Union[Decimal, int, float, str, None]


def to_decimal(value: NumberLike) -> Decimal:
    """
    Convert a number-like value to Decimal.

    WHY: Going through str() avoids binary float artifacts
    (``Decimal(0.1)`` is not ``Decimal("0.1")``). None, NaN, infinities and
    unparseable values become 0.
    """
    if value is None:
        return ZERO
    try:
        number = value if isinstance(value, Decimal) else Decimal(str(value))
    except (InvalidOperation, ValueError):
        return ZERO
    return number if number.is_finite() else ZERO


def round_money(value: Decimal) -> Decimal:
    """
    Round to cent precision, half-up.

    The context precision grows with the value so that quantizing a very
    large figure never raises; the ceiling check reports it instead.
    """
    with localcontext() as ctx:
        ctx.prec = max(ctx.prec, value.adjusted() + 4)
        return value.quantize(CENT, rounding=ROUND_HALF_UP)


def _field(item: Any, name: str, default: Any = None) -> Any:
    """Read a field from a dict, an ORM row or a pydantic model."""
    if isinstance(item, dict):
        return item.get(name, default)
    return getattr(item, name, default)


def line_total(item: Any) -> Decimal:
    """
    Price of one line after its own discount, rounded to the cent.

    Used for ProposalItem.total_price.
    """
    quantity = to_decimal(_field(item, "quantity"))
    unit_price = to_decimal(_field(item, "unit_price"))
    discount = to_decimal(_field(item, "discount_percent", 0))
    return round_money(quantity * unit_price * (1 - discount / HUNDRED))


def _format_limit(amount: Decimal) -> str:
    return f"${amount:,.0f}" if amount == amount.to_integral_value() else f"${amount:,.2f}"


class PricingCalculator:
    """
    Pure pricing function over proposal line items.

    WHAT: ``calculate(items, tax_rate_percent, global_discount_percent)``
    returns a PricingResult.

    HOW:
        subtotal       = sum(qty * price * (1 - item_discount/100))
        discount       = subtotal * global_discount/100
        taxable        = subtotal - discount
        tax            = taxable * tax_rate/100
        final          = taxable + tax

    Example:
        calculator = PricingCalculator()
        result = calculator.calculate([{"quantity": 2, "unit_price": 100}])
        assert result.final_amount == Decimal("220.00")
    """

    def __init__(
        self,
        tax_rate_percent: NumberLike = None,
        max_amount: NumberLike = None,
    ):
        """
        Args:
            tax_rate_percent: Default tax rate (configuration when omitted)
            max_amount: Ceiling for the final amount (configuration when omitted)
        """
        self.tax_rate_percent = to_decimal(
            settings.DEFAULT_TAX_RATE_PERCENT if tax_rate_percent is None else tax_rate_percent
        )
        self.max_amount = to_decimal(
            settings.MAX_PROPOSAL_AMOUNT if max_amount is None else max_amount
        )

    def calculate(
        self,
        items: Iterable[Any],
        tax_rate_percent: NumberLike = None,
        global_discount_percent: NumberLike = 0,
    ) -> PricingResult:
        """
        Price a list of items.

        Args:
            items: Ordered line items (dicts, ORM rows or schemas)
            tax_rate_percent: Overrides the calculator's default tax rate
            global_discount_percent: Discount applied after item discounts

        Returns:
            PricingResult with rounded figures and collected errors. An
            empty list yields zero figures and a single informational error.
        """
        items = list(items)
        if not items:
            return PricingResult(errors=["No items to calculate"])

        tax_rate = self.tax_rate_percent if tax_rate_percent is None else to_decimal(tax_rate_percent)
        global_discount = to_decimal(global_discount_percent)

        errors = []
        raw_subtotal = ZERO
        subtotal = ZERO

        for index, item in enumerate(items, start=1):
            name = _field(item, "name") or f"#{index}"
            quantity = to_decimal(_field(item, "quantity"))
            unit_price = to_decimal(_field(item, "unit_price"))
            discount = to_decimal(_field(item, "discount_percent", 0))

            if quantity <= ZERO:
                errors.append(f'Item "{name}" has invalid quantity: {quantity}')
            if unit_price < ZERO:
                errors.append(f'Item "{name}" has invalid unit price: {unit_price}')
            if discount < ZERO or discount > HUNDRED:
                errors.append(f'Item "{name}" has invalid discount: {discount}% (must be 0-100)')

            gross = quantity * unit_price
            raw_subtotal += gross
            subtotal += gross * (1 - discount / HUNDRED)

        if global_discount < ZERO or global_discount > HUNDRED:
            errors.append(f"Invalid global discount: {global_discount}% (must be 0-100)")
        if tax_rate < ZERO:
            errors.append(f"Invalid tax rate: {tax_rate}%")

        discount_amount = subtotal * global_discount / HUNDRED
        taxable = subtotal - discount_amount
        tax_amount = taxable * tax_rate / HUNDRED
        final_amount = taxable + tax_amount

        if raw_subtotal < ZERO:
            errors.append("Subtotal cannot be negative")
        if round_money(final_amount) > self.max_amount:
            errors.append(f"Total amount exceeds maximum limit of {_format_limit(self.max_amount)}")

        if errors:
            logger.debug(f"Pricing produced {len(errors)} error(s)", extra={"errors": errors})

        return PricingResult(
            subtotal=round_money(subtotal),
            tax_amount=round_money(tax_amount),
            discount_amount=round_money(discount_amount),
            final_amount=round_money(final_amount),
            errors=errors,
        )
