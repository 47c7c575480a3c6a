"""Business logic layer for the till.

This module owns the sale state machine that moves a sale from building a
cart to awaiting payment to a committed transaction. It consumes the cart
engine and the payment allocator for all pricing, and the store for catalog
lookups, stock decrements and the transaction history. Catalog
administration and the static login lookup live here as well.
"""

from __future__ import annotations

from dataclasses import dataclass, fields, replace
from datetime import UTC, datetime
from decimal import Decimal
from pathlib import Path
from typing import Any, Iterable, List, Optional, Tuple

from . import data_manager, log
from .cart import ZERO, Cart, CartLine, MoneyLike, to_money
from .constants import EXPECTED_SCHEMA_VERSION, DiscountType, SaleState, TenderType, TransactionStatus
from .errors import (
    AlreadyFinalized,
    BusinessRuleViolation,
    InsufficientFunds,
    InvalidAmount,
    InvalidSaleState,
    MissingReferenceError,
    NotSettled,
    OutOfStock,
    OverPayment,
)
from .payment import PaymentAllocator, Tender
from .store import InMemoryStore, TillStore


__all__ = [
    "AlreadyFinalized",
    "BusinessRuleViolation",
    "InsufficientFunds",
    "InvalidAmount",
    "InvalidSaleState",
    "MissingReferenceError",
    "NotSettled",
    "OutOfStock",
    "OverPayment",
    "RuntimeContext",
    "SaleSession",
    "SaleTotals",
    "TransactionRecord",
]


@dataclass(frozen=True)
class RuntimeContext:
    """Container for configuration and the store used by the BLL."""

    settings: data_manager.ConfigSettings
    store: TillStore


@dataclass(frozen=True)
class SaleTotals:
    """Pricing snapshot of a cart."""

    subtotal: Decimal
    tax: Decimal
    discount: Decimal
    total: Decimal


@dataclass(frozen=True)
class TransactionRecord:
    """A finalized sale. Never mutated once committed."""

    transaction_id: str
    timestamp: datetime
    lines: Tuple[CartLine, ...]
    subtotal: Decimal
    tax: Decimal
    discount: Decimal
    total: Decimal
    tenders: Tuple[Tender, ...]
    cashier: data_manager.UserRow
    status: TransactionStatus
    receipt_number: str

    @property
    def total_paid(self) -> Decimal:
        return sum((tender.amount for tender in self.tenders), ZERO)

    @property
    def change(self) -> Decimal:
        return sum((tender.change for tender in self.tenders), ZERO)

    @property
    def item_count(self) -> int:
        return sum(line.quantity for line in self.lines)


def _resolve_timestamp(candidate: Optional[datetime]) -> datetime:
    """Return ``candidate`` unchanged, or the current UTC time when ``None``."""

    return candidate if candidate is not None else datetime.now(UTC)


def generate_transaction_id(*, prefix: str = "TXN-", when: Optional[datetime] = None) -> str:
    """Generate a sortable transaction identifier using UTC timestamps.

    Returns:
        str: Identifier formed as ``{prefix}{YYYYMMDDHHMMSSffffff}``.
    """
    when = when or _resolve_timestamp(None)
    return f"{prefix}{when.strftime('%Y%m%d%H%M%S%f')}"


def generate_receipt_number(*, when: Optional[datetime] = None) -> str:
    """Generate a short receipt number: ``R`` plus the last six digits of the epoch milliseconds."""
    when = when or _resolve_timestamp(None)
    millis = int(when.timestamp() * 1000)
    return f"R{millis % 1_000_000:06d}"


def require_nonnegative_money(amount: Decimal) -> None:
    """Validate that a monetary value is nonnegative.

    Raises:
        ValueError: If ``amount`` is less than zero.
    """
    if amount < Decimal("0"):
        log.error("Monetary value validation failed: %s", amount)
        raise ValueError("Amount must be zero or positive")


def require_nonnegative_stock(stock: int) -> None:
    if stock < 0:
        log.error("Stock validation failed: %s", stock)
        raise ValueError("Stock must be zero or positive")


# ---------------------------------------------------------------------------
# Runtime context
# ---------------------------------------------------------------------------


def build_runtime_context(
    settings: data_manager.ConfigSettings,
    products: Iterable[data_manager.ProductRow],
    users: Iterable[data_manager.UserRow],
) -> RuntimeContext:
    """Seed a fresh in-memory store and wrap it with ``settings``."""
    store = InMemoryStore(products=products, users=users)
    return RuntimeContext(settings=settings, store=store)


def load_runtime_context(config_path: Optional[Path] = None) -> RuntimeContext:
    """Load configuration and seed the in-memory store from the catalog workbook.

    The helper resolves ``config.ini``, parses the settings and reads the
    products and users from the configured workbook. Nothing is ever written
    back: the returned context lives only as long as the caller keeps it.

    Raises:
        FileNotFoundError: If the configuration file or workbook cannot be
            located.
        KeyError: When mandatory configuration options are missing.
    """
    located_config = data_manager.find_config_file(config_path)
    resolved_config = Path(located_config).expanduser().resolve()
    parser = data_manager.read_config(resolved_config)
    settings = data_manager.parse_settings(parser, base_path=resolved_config.parent)
    products, users = data_manager.load_catalog(settings.data_file)
    log.info("Loaded runtime context for store '%s'", settings.store_name)
    return build_runtime_context(settings, products, users)


def ensure_schema_version(context: RuntimeContext) -> None:
    """Validate that the configured schema version matches this release.

    Raises:
        RuntimeError: If the schema version declared in the configuration does
            not match ``EXPECTED_SCHEMA_VERSION``.
    """
    if context.settings.schema_version != EXPECTED_SCHEMA_VERSION:
        log.error(
            "Catalog schema mismatch: expected %s, found %s",
            EXPECTED_SCHEMA_VERSION,
            context.settings.schema_version,
        )
        raise RuntimeError(
            "Catalog schema mismatch: expected %s, found %s"
            % (EXPECTED_SCHEMA_VERSION, context.settings.schema_version)
        )

    log.debug("Schema version '%s' validated", context.settings.schema_version)


def login(context: RuntimeContext, email: str) -> data_manager.UserRow:
    """Resolve the user signing in at the till.

    This is a static lookup against the seeded user list, not an
    authentication check.

    Raises:
        MissingReferenceError: If no user has the given email.
    """
    user = context.store.get_user_by_email(email)
    log.info("User '%s' (%s) signed in", user.name, user.role.value)
    return user


# ---------------------------------------------------------------------------
# Catalog browsing and administration
# ---------------------------------------------------------------------------


def list_products(context: RuntimeContext) -> List[data_manager.ProductRow]:
    return context.store.list_products()


def get_product(context: RuntimeContext, product_id: str) -> data_manager.ProductRow:
    """Resolve a product by id.

    Raises:
        MissingReferenceError: If ``product_id`` is unknown.
    """
    return context.store.get_product(product_id)


def list_categories(context: RuntimeContext) -> List[str]:
    """Distinct product categories in catalog order."""
    categories: List[str] = []
    for product in context.store.list_products():
        if product.category and product.category not in categories:
            categories.append(product.category)
    return categories


def search_products(
    context: RuntimeContext,
    term: str = "",
    *,
    category: Optional[str] = None,
    in_stock_only: bool = False,
) -> List[data_manager.ProductRow]:
    """Filter the catalog by a case-insensitive name/SKU term and a category.

    An empty ``term`` matches every product; a ``None`` category matches every
    category. ``in_stock_only`` hides sold-out products from the till listing.
    """
    needle = term.strip().lower()
    matches = []
    for product in context.store.list_products():
        if needle and needle not in product.name.lower() and needle not in product.sku.lower():
            continue
        if category is not None and product.category != category:
            continue
        if in_stock_only and product.stock < 1:
            continue
        matches.append(product)
    return matches


def add_product(
    context: RuntimeContext,
    *,
    product_id: str,
    sku: str,
    name: str,
    price: MoneyLike,
    cost: MoneyLike,
    stock: int,
    category: str,
    barcode: Optional[str] = None,
    min_stock: Optional[int] = None,
    description: Optional[str] = None,
) -> data_manager.ProductRow:
    """Validate and register a new catalog product.

    Raises:
        BusinessRuleViolation: If the id or SKU is already in use.
        ValueError: If a price, cost or stock figure is negative.
    """
    product = data_manager.ProductRow(
        product_id=product_id,
        sku=sku,
        name=name,
        price=to_money(price),
        cost=to_money(cost),
        stock=stock,
        category=category,
        barcode=barcode,
        min_stock=min_stock,
        description=description,
    )
    _validate_product(product)
    context.store.add_product(product)
    log.info("Added product '%s' (%s)", product.product_id, product.name)
    return product


def update_product(context: RuntimeContext, product_id: str, /, **changes: Any) -> data_manager.ProductRow:
    """Apply ``changes`` to an existing product.

    Raises:
        MissingReferenceError: If ``product_id`` is unknown.
        KeyError: If a change names an unknown product field.
        ValueError: If the updated figures are invalid.
    """
    known = {field.name for field in fields(data_manager.ProductRow)}
    unknown = set(changes) - known
    if unknown or "product_id" in changes:
        raise KeyError(f"Unknown or immutable product field(s): {', '.join(sorted(unknown or {'product_id'}))}")
    for money_field in ("price", "cost"):
        if money_field in changes:
            changes[money_field] = to_money(changes[money_field])

    product = replace(context.store.get_product(product_id), **changes)
    _validate_product(product)
    context.store.update_product(product)
    log.info("Updated product '%s' (%s)", product_id, ", ".join(sorted(changes)))
    return product


def delete_product(context: RuntimeContext, product_id: str) -> None:
    """Remove a product from the catalog.

    Raises:
        MissingReferenceError: If ``product_id`` is unknown.
    """
    context.store.delete_product(product_id)
    log.info("Deleted product '%s'", product_id)


def _validate_product(product: data_manager.ProductRow) -> None:
    if not product.product_id or not product.sku or not product.name:
        raise ValueError("Product id, SKU and name are required")
    require_nonnegative_money(product.price)
    require_nonnegative_money(product.cost)
    require_nonnegative_stock(product.stock)
    if product.min_stock is not None:
        require_nonnegative_stock(product.min_stock)


# ---------------------------------------------------------------------------
# Sale state machine
# ---------------------------------------------------------------------------


class SaleSession:
    """One sale at the till, from the first scanned item to the receipt.

    States: ``BUILDING`` (cart open) -> ``AWAITING_PAYMENT`` (cart frozen,
    allocator created) -> ``SETTLED`` (nothing left to pay) -> ``COMMITTED``
    (transaction recorded, stock decremented, cart cleared). Payment can be
    abandoned back to ``BUILDING`` at any point before the commit; a
    committed session accepts no further operations.
    """

    def __init__(self, context: RuntimeContext, cashier: data_manager.UserRow) -> None:
        self.context = context
        self.cashier = cashier
        self.cart = Cart(tax_rate=context.settings.tax_rate)
        self._state = SaleState.BUILDING
        self._allocator: Optional[PaymentAllocator] = None
        self._transaction: Optional[TransactionRecord] = None

    @property
    def state(self) -> SaleState:
        return self._state

    @property
    def allocator(self) -> Optional[PaymentAllocator]:
        return self._allocator

    @property
    def transaction(self) -> Optional[TransactionRecord]:
        return self._transaction

    @property
    def remaining(self) -> Decimal:
        if self._allocator is None:
            return self.totals().total
        return self._allocator.remaining

    def _require_state(self, *allowed: SaleState) -> None:
        if self._state not in allowed:
            log.warning(
                "Rejected sale operation in state '%s' (allowed: %s)",
                self._state.value,
                ", ".join(state.value for state in allowed),
            )
            raise InvalidSaleState(
                f"Operation not allowed while sale is {self._state.value}"
            )

    def totals(self) -> SaleTotals:
        subtotal = self.cart.subtotal()
        tax = self.cart.tax(subtotal)
        return SaleTotals(subtotal=subtotal, tax=tax, discount=ZERO, total=subtotal + tax)

    # Cart mutations -----------------------------------------------------

    def add_product(self, code: str) -> Optional[CartLine]:
        """Add one unit of the product identified by id, SKU or barcode."""
        self._require_state(SaleState.BUILDING)
        product = self.context.store.find_product(code)
        return self.cart.add_line(product)

    def set_quantity(self, product_id: str, quantity: int) -> Optional[CartLine]:
        self._require_state(SaleState.BUILDING)
        return self.cart.set_quantity(product_id, quantity)

    def remove_product(self, product_id: str) -> None:
        self._require_state(SaleState.BUILDING)
        self.cart.remove_line(product_id)

    def set_discount(
        self,
        product_id: str,
        discount: Optional[MoneyLike],
        discount_type: DiscountType = DiscountType.PERCENTAGE,
    ) -> CartLine:
        self._require_state(SaleState.BUILDING)
        return self.cart.set_discount(product_id, discount, discount_type)

    def clear_cart(self) -> None:
        self._require_state(SaleState.BUILDING)
        self.cart.clear()

    # Payment ------------------------------------------------------------

    def begin_payment(self) -> PaymentAllocator:
        """Freeze the cart total and open a payment allocator.

        Raises:
            InvalidSaleState: If the sale is not building a cart.
            BusinessRuleViolation: If the cart is empty.
        """
        self._require_state(SaleState.BUILDING)
        if self.cart.is_empty():
            raise BusinessRuleViolation("Cannot take payment for an empty cart")
        total = self.cart.total()
        self._allocator = PaymentAllocator(total)
        self._state = SaleState.SETTLED if self._allocator.is_settled() else SaleState.AWAITING_PAYMENT
        log.info("Payment started for total %s (%d lines)", total, len(self.cart))
        return self._allocator

    def cancel_payment(self) -> None:
        """Abandon the payment and reopen the cart unchanged."""
        self._require_state(SaleState.AWAITING_PAYMENT, SaleState.SETTLED)
        self._allocator = None
        self._state = SaleState.BUILDING
        log.info("Payment cancelled; cart reopened")

    def submit_tender(
        self,
        tender_type: TenderType,
        amount: Optional[MoneyLike] = None,
        *,
        cash_received: Optional[MoneyLike] = None,
        reference: Optional[str] = None,
    ) -> Tender:
        """Record a tender through the allocator; see :meth:`PaymentAllocator.propose_tender`."""
        self._require_state(SaleState.AWAITING_PAYMENT)
        tender = self._allocator.propose_tender(
            tender_type,
            amount,
            cash_received=cash_received,
            reference=reference,
        )
        if self._allocator.is_settled():
            self._state = SaleState.SETTLED
        return tender

    def commit(self, *, when: Optional[datetime] = None) -> TransactionRecord:
        """Finalize payment, record the transaction and decrement stock.

        Stock is checked against the catalog before the allocator is
        finalized, so a shortfall leaves the session settled and the cashier
        can cancel the payment to adjust the cart.

        Raises:
            InvalidSaleState: If the sale is not settled.
            OutOfStock: If the catalog no longer covers a cart line.
        """
        self._require_state(SaleState.SETTLED)
        self._check_stock()

        summary = self._allocator.finalize()
        timestamp = _resolve_timestamp(when)
        totals = self.totals()
        transaction = TransactionRecord(
            transaction_id=generate_transaction_id(when=timestamp),
            timestamp=timestamp,
            lines=self.cart.lines,
            subtotal=totals.subtotal,
            tax=totals.tax,
            discount=totals.discount,
            total=summary.total,
            tenders=summary.tenders,
            cashier=self.cashier,
            status=TransactionStatus.COMPLETED,
            receipt_number=generate_receipt_number(when=timestamp),
        )
        self.context.store.commit_transaction(transaction)

        self.cart.clear()
        self._allocator = None
        self._transaction = transaction
        self._state = SaleState.COMMITTED
        log.info(
            "Committed transaction '%s' receipt %s (total=%s, tenders=%d, change=%s)",
            transaction.transaction_id,
            transaction.receipt_number,
            transaction.total,
            len(transaction.tenders),
            transaction.change,
        )
        return transaction

    def _check_stock(self) -> None:
        for line in self.cart:
            product = self.context.store.get_product(line.product_id)
            if line.quantity > product.stock:
                log.error(
                    "Stock check failed for '%s': in cart %d, available %d",
                    line.product_id,
                    line.quantity,
                    product.stock,
                )
                raise OutOfStock(
                    f"Insufficient stock for '{line.product_id}': in cart {line.quantity}, available {product.stock}"
                )


def open_sale(context: RuntimeContext, cashier: Optional[data_manager.UserRow] = None) -> SaleSession:
    """Start a new sale for ``cashier`` (defaults to the configured cashier)."""
    if cashier is None:
        cashier = context.store.get_user_by_email(context.settings.default_cashier_email)
    log.debug("Opening sale for cashier '%s'", cashier.user_id)
    return SaleSession(context, cashier)
