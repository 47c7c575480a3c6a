"""Cart engine for the in-progress sale.

The module holds the pure pricing functions (money coercion, per-line
discounts, tax) and the :class:`Cart` that owns the ordered line items. The
cart never touches the catalog: it works on the product snapshots handed to
it, and stock is only decremented once a sale is committed through the store.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Dict, Iterator, Optional, Tuple, Union

from . import log
from .constants import CURRENCY_QUANTUM, DEFAULT_TAX_RATE, DiscountType
from .data_manager import ProductRow


MoneyLike = Union[int, str, Decimal]

ZERO = Decimal("0")
HUNDRED = Decimal("100")


def to_decimal(value: MoneyLike) -> Decimal:
    """Coerce ``value`` into a finite :class:`Decimal` without rounding.

    Binary floats are rejected outright so rounding drift can never creep
    into tax or discount math.

    Raises:
        TypeError: If ``value`` is a ``float``, a ``bool`` or another
            unsupported type.
        ValueError: If ``value`` is not a finite number.
    """
    if isinstance(value, bool) or not isinstance(value, (int, str, Decimal)):
        raise TypeError(f"Unsupported money value {value!r}; use int, str or Decimal")
    try:
        result = value if isinstance(value, Decimal) else Decimal(value)
    except InvalidOperation as exc:
        raise ValueError(f"Invalid money value: {value!r}") from exc
    if not result.is_finite():
        raise ValueError(f"Money value must be finite: {value!r}")
    return result


def round_half_up(amount: Decimal) -> Decimal:
    """Round ``amount`` half-up to a whole currency unit."""
    return amount.quantize(CURRENCY_QUANTUM, rounding=ROUND_HALF_UP)


def to_money(value: MoneyLike) -> Decimal:
    """Coerce ``value`` into whole currency units (half-up).

    Raises:
        TypeError: If ``value`` is not an accepted money type.
        ValueError: If ``value`` is invalid or too large to express in
            whole units.
    """
    amount = to_decimal(value)
    try:
        return round_half_up(amount)
    except InvalidOperation as exc:
        raise ValueError(f"Money value out of range: {value!r}") from exc


def calculate_discount_amount(
    unit_total: Decimal,
    discount: Optional[Decimal],
    discount_type: Optional[DiscountType],
) -> Decimal:
    """Return the currency amount a line discount takes off ``unit_total``.

    Percentage discounts are taken from ``unit_total`` and rounded half-up;
    fixed discounts are used as-is. Missing discounts yield zero.
    """
    if not discount:
        return ZERO
    if discount_type == DiscountType.PERCENTAGE:
        return round_half_up(unit_total * discount / HUNDRED)
    return discount


def calculate_tax(subtotal: Decimal, rate: Decimal = DEFAULT_TAX_RATE) -> Decimal:
    """Apply the flat sales tax ``rate`` to ``subtotal``, rounded half-up."""
    return round_half_up(subtotal * rate)


@dataclass(frozen=True)
class CartLine:
    """One product in the cart with its quantity and optional discount."""

    product: ProductRow
    quantity: int
    discount: Optional[Decimal] = None
    discount_type: Optional[DiscountType] = None

    @property
    def product_id(self) -> str:
        return self.product.product_id

    @property
    def unit_total(self) -> Decimal:
        return self.product.price * self.quantity


def line_total(line: CartLine) -> Decimal:
    """Return the discounted total of ``line``, never below zero."""
    unit_total = line.unit_total
    discount_amount = calculate_discount_amount(unit_total, line.discount, line.discount_type)
    return max(ZERO, unit_total - discount_amount)


def _require_quantity(quantity: int) -> int:
    if isinstance(quantity, bool) or not isinstance(quantity, int):
        raise TypeError(f"Quantity must be an integer, got {quantity!r}")
    return quantity


class Cart:
    """Ordered collection of :class:`CartLine` objects keyed by product id.

    Insertion order is display order. Every mutation clamps quantities to
    ``1..product.stock``; requests beyond the available stock are capped
    rather than rejected.
    """

    def __init__(self, *, tax_rate: Decimal = DEFAULT_TAX_RATE) -> None:
        self.tax_rate = tax_rate
        self._lines: Dict[str, CartLine] = {}

    def __iter__(self) -> Iterator[CartLine]:
        return iter(self._lines.values())

    def __len__(self) -> int:
        return len(self._lines)

    @property
    def lines(self) -> Tuple[CartLine, ...]:
        return tuple(self._lines.values())

    def is_empty(self) -> bool:
        return not self._lines

    def get_line(self, product_id: str) -> Optional[CartLine]:
        return self._lines.get(product_id)

    def item_count(self) -> int:
        """Total number of units across all lines."""
        return sum(line.quantity for line in self._lines.values())

    def add_line(self, product: ProductRow) -> Optional[CartLine]:
        """Add one unit of ``product``.

        An existing line is incremented by one (capped at ``product.stock``)
        and refreshed with the supplied product snapshot. A new product starts
        at quantity one. Nothing is added when the product has no stock.

        Returns:
            CartLine | None: The resulting line, or ``None`` when the product
                is out of stock and was not in the cart.
        """
        existing = self._lines.get(product.product_id)
        if existing is not None:
            quantity = min(existing.quantity + 1, product.stock)
            if quantity < 1:
                log.warning("Product '%s' has no stock left; removing it from the cart", product.product_id)
                del self._lines[product.product_id]
                return None
            if quantity == existing.quantity:
                log.warning(
                    "Quantity for '%s' capped at available stock %d",
                    product.product_id,
                    product.stock,
                )
            line = replace(existing, product=product, quantity=quantity)
            self._lines[product.product_id] = line
            return line

        if product.stock < 1:
            log.warning("Product '%s' is out of stock; not added to cart", product.product_id)
            return None

        line = CartLine(product=product, quantity=1)
        self._lines[product.product_id] = line
        log.debug("Added product '%s' to cart", product.product_id)
        return line

    def set_quantity(self, product_id: str, quantity: int) -> Optional[CartLine]:
        """Set the quantity of an existing line.

        ``quantity <= 0`` removes the line; anything else is clamped to
        ``1..product.stock``. Unknown product ids are ignored.
        """
        _require_quantity(quantity)
        existing = self._lines.get(product_id)
        if existing is None:
            return None
        if quantity <= 0 or existing.product.stock < 1:
            self.remove_line(product_id)
            return None

        clamped = max(1, min(quantity, existing.product.stock))
        if clamped != quantity:
            log.warning(
                "Requested quantity %d for '%s' capped at available stock %d",
                quantity,
                product_id,
                existing.product.stock,
            )
        line = replace(existing, quantity=clamped)
        self._lines[product_id] = line
        return line

    def remove_line(self, product_id: str) -> None:
        """Delete the line for ``product_id``; absent lines are ignored."""
        if self._lines.pop(product_id, None) is not None:
            log.debug("Removed product '%s' from cart", product_id)

    def set_discount(
        self,
        product_id: str,
        discount: Optional[MoneyLike],
        discount_type: DiscountType = DiscountType.PERCENTAGE,
    ) -> CartLine:
        """Attach, replace or clear the discount on an existing line.

        A ``None`` or zero ``discount`` clears it. Percentages must lie within
        ``0..100``; fixed discounts must be non-negative and are taken in
        whole currency units.

        Raises:
            KeyError: If the product is not in the cart.
            ValueError: If the discount value is out of range.
        """
        existing = self._lines.get(product_id)
        if existing is None:
            raise KeyError(f"Product not in cart: {product_id}")

        if discount is None or to_decimal(discount) == ZERO:
            line = replace(existing, discount=None, discount_type=None)
        else:
            discount_type = DiscountType(discount_type)
            if discount_type == DiscountType.PERCENTAGE:
                value = to_decimal(discount)
                if not ZERO <= value <= HUNDRED:
                    raise ValueError(f"Percentage discount must be within 0..100: {value}")
            else:
                value = to_money(discount)
                if value < ZERO:
                    raise ValueError(f"Fixed discount must be zero or positive: {value}")
            line = replace(existing, discount=value, discount_type=discount_type)

        self._lines[product_id] = line
        log.debug("Discount for '%s' set to %s (%s)", product_id, line.discount, line.discount_type)
        return line

    def clear(self) -> None:
        self._lines.clear()

    def line_total(self, line: CartLine) -> Decimal:
        return line_total(line)

    def subtotal(self) -> Decimal:
        """Sum of every line total."""
        return sum((line_total(line) for line in self._lines.values()), ZERO)

    def tax(self, subtotal: Optional[Decimal] = None) -> Decimal:
        if subtotal is None:
            subtotal = self.subtotal()
        return calculate_tax(subtotal, self.tax_rate)

    def total(self) -> Decimal:
        """Grand total: subtotal plus tax. No cart-level discount is applied."""
        subtotal = self.subtotal()
        return subtotal + self.tax(subtotal)
