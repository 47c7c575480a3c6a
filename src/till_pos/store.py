"""Repository abstraction standing in for a database.

The business logic layer depends on the :class:`CatalogStore` and
:class:`TransactionStore` protocols only. :class:`InMemoryStore` implements
both on plain dictionaries; its lifecycle belongs to the hosting application,
which seeds it (usually from the catalog workbook) and discards it on exit.
"""

from __future__ import annotations

from collections import defaultdict
from dataclasses import replace
from typing import TYPE_CHECKING, Dict, Iterable, List, Protocol, Tuple

from . import log
from .data_manager import ProductRow, UserRow
from .errors import BusinessRuleViolation, MissingReferenceError, OutOfStock

if TYPE_CHECKING:
    from .core_logic import TransactionRecord


StockItem = Tuple[str, int]


class CatalogStore(Protocol):
    """Read access to the product catalog plus the inventory mutation hook."""

    def get_product(self, product_id: str) -> ProductRow: ...

    def find_product(self, code: str) -> ProductRow: ...

    def list_products(self) -> List[ProductRow]: ...

    def add_product(self, product: ProductRow) -> ProductRow: ...

    def update_product(self, product: ProductRow) -> ProductRow: ...

    def delete_product(self, product_id: str) -> None: ...

    def apply_stock_delta(self, items: Iterable[StockItem]) -> None: ...


class TransactionStore(Protocol):
    """Append-only history of committed transactions."""

    def commit_transaction(self, transaction: "TransactionRecord") -> None: ...

    def list_transactions(self) -> List["TransactionRecord"]: ...

    def get_transaction(self, transaction_id: str) -> "TransactionRecord": ...


class UserDirectory(Protocol):
    """Static user lookup backing the login step."""

    def list_users(self) -> List[UserRow]: ...

    def get_user_by_email(self, email: str) -> UserRow: ...


class TillStore(CatalogStore, TransactionStore, UserDirectory, Protocol):
    """Everything a till session needs from its hosting application."""


class InMemoryStore:
    """Dictionary-backed catalog, user directory and transaction history."""

    def __init__(
        self,
        products: Iterable[ProductRow] = (),
        users: Iterable[UserRow] = (),
    ) -> None:
        self._products: Dict[str, ProductRow] = {}
        self._users: Dict[str, UserRow] = {}
        self._transactions: Dict[str, "TransactionRecord"] = {}
        for product in products:
            self.add_product(product)
        for user in users:
            self._users[user.email.lower()] = user

    # ------------------------------------------------------------------
    # Catalog
    # ------------------------------------------------------------------

    def get_product(self, product_id: str) -> ProductRow:
        try:
            return self._products[product_id]
        except KeyError as exc:
            log.warning("Product lookup failed for id '%s'", product_id)
            raise MissingReferenceError(f"Unknown product id: {product_id}") from exc

    def find_product(self, code: str) -> ProductRow:
        """Resolve a product by id, SKU (case-insensitive) or barcode."""
        if code in self._products:
            return self._products[code]
        needle = code.strip().lower()
        for product in self._products.values():
            if product.sku.lower() == needle or (product.barcode is not None and product.barcode == code.strip()):
                return product
        log.warning("Product lookup failed for code '%s'", code)
        raise MissingReferenceError(f"Unknown product code: {code}")

    def list_products(self) -> List[ProductRow]:
        return list(self._products.values())

    def add_product(self, product: ProductRow) -> ProductRow:
        if product.product_id in self._products:
            raise BusinessRuleViolation(f"Product id already exists: {product.product_id}")
        self._require_unique_sku(product)
        self._products[product.product_id] = product
        return product

    def update_product(self, product: ProductRow) -> ProductRow:
        if product.product_id not in self._products:
            raise MissingReferenceError(f"Unknown product id: {product.product_id}")
        self._require_unique_sku(product)
        self._products[product.product_id] = product
        return product

    def delete_product(self, product_id: str) -> None:
        if self._products.pop(product_id, None) is None:
            raise MissingReferenceError(f"Unknown product id: {product_id}")

    def apply_stock_delta(self, items: Iterable[StockItem]) -> None:
        """Decrement stock for every ``(product_id, quantity)`` pair.

        All pairs are validated before any product is touched, so either the
        whole delta is applied or nothing is.

        Raises:
            MissingReferenceError: If a product is unknown.
            OutOfStock: If a product lacks the requested stock.
        """
        totals: Dict[str, int] = defaultdict(int)
        for product_id, quantity in items:
            totals[product_id] += quantity

        for product_id, quantity in totals.items():
            product = self.get_product(product_id)
            if quantity > product.stock:
                log.error(
                    "Stock check failed for '%s': requested %d, available %d",
                    product_id,
                    quantity,
                    product.stock,
                )
                raise OutOfStock(
                    f"Insufficient stock for '{product_id}': requested {quantity}, available {product.stock}"
                )

        for product_id, quantity in totals.items():
            product = self._products[product_id]
            self._products[product_id] = replace(product, stock=product.stock - quantity)
        log.debug("Applied stock delta for %d products", len(totals))

    def _require_unique_sku(self, product: ProductRow) -> None:
        sku = product.sku.lower()
        for existing in self._products.values():
            if existing.product_id != product.product_id and existing.sku.lower() == sku:
                raise BusinessRuleViolation(f"SKU already in use: {product.sku}")

    # ------------------------------------------------------------------
    # Users
    # ------------------------------------------------------------------

    def list_users(self) -> List[UserRow]:
        return list(self._users.values())

    def get_user_by_email(self, email: str) -> UserRow:
        try:
            return self._users[email.strip().lower()]
        except KeyError as exc:
            log.warning("User lookup failed for email '%s'", email)
            raise MissingReferenceError(f"Unknown user email: {email}") from exc

    # ------------------------------------------------------------------
    # Transactions
    # ------------------------------------------------------------------

    def commit_transaction(self, transaction: "TransactionRecord") -> None:
        """Decrement stock for ``transaction`` and append it to the history.

        Raises:
            BusinessRuleViolation: If the transaction id was already committed.
            OutOfStock: If the catalog can no longer cover a line; nothing is
                recorded in that case.
        """
        if transaction.transaction_id in self._transactions:
            raise BusinessRuleViolation(f"Transaction already committed: {transaction.transaction_id}")
        self.apply_stock_delta((line.product_id, line.quantity) for line in transaction.lines)
        self._transactions[transaction.transaction_id] = transaction

    def list_transactions(self) -> List["TransactionRecord"]:
        return list(self._transactions.values())

    def get_transaction(self, transaction_id: str) -> "TransactionRecord":
        try:
            return self._transactions[transaction_id]
        except KeyError as exc:
            log.warning("Transaction lookup failed for id '%s'", transaction_id)
            raise MissingReferenceError(f"Unknown transaction id: {transaction_id}") from exc
