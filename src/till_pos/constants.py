"""Enumerations and fixed values shared across the till modules.

Centralises domain constants so that the cart engine, the payment allocator,
the data access layer (DAL) and the presentation layers rely on a single
source of truth for identifiers and pricing defaults.
"""

from __future__ import annotations

from decimal import Decimal
from enum import Enum


# Central schema version expected by all layers when validating the seed workbook.
EXPECTED_SCHEMA_VERSION = "1.0.0"

# Flat sales tax (PPN) applied to the cart subtotal.
DEFAULT_TAX_RATE = Decimal("0.10")

# Stock at or below this threshold is classified as low unless a product overrides it.
DEFAULT_MIN_STOCK = 10

# Currency has no minor unit; every amount is quantized to whole units.
CURRENCY_QUANTUM = Decimal("1")

# Number of entries shown in the "top products" report.
TOP_PRODUCTS_LIMIT = 5


class TenderType(str, Enum):
    """Enumerate the payment instruments accepted at the till."""

    CASH = "cash"
    CARD = "card"
    DIGITAL_WALLET = "digital_wallet"
    QRIS = "qris"


class DiscountType(str, Enum):
    """Enumerate how a per-line discount value is interpreted."""

    PERCENTAGE = "percentage"
    FIXED = "fixed"


class TransactionStatus(str, Enum):
    """Enumerate the lifecycle states of a finalized transaction."""

    COMPLETED = "completed"
    REFUNDED = "refunded"
    PARTIAL_REFUND = "partial-refund"


class SaleState(str, Enum):
    """Enumerate the states a single sale moves through at the till."""

    BUILDING = "building"
    AWAITING_PAYMENT = "awaiting_payment"
    SETTLED = "settled"
    COMMITTED = "committed"


class UserRole(str, Enum):
    """Enumerate the roles known to the static login lookup."""

    ADMIN = "admin"
    MANAGER = "manager"
    CASHIER = "cashier"


class StockStatus(str, Enum):
    """Enumerate the stock classifications shown on the inventory table."""

    LOW = "low"
    WARNING = "warning"
    NORMAL = "normal"


class SheetName(str, Enum):
    """Enumerate the workbook sheet names managed by the DAL."""

    PRODUCTS = "Products"
    USERS = "Users"
    SUMMARY = "Summary"
    INVENTORY = "Inventory"
    TRANSACTIONS = "Transactions"


__all__ = [
    "EXPECTED_SCHEMA_VERSION",
    "DEFAULT_TAX_RATE",
    "DEFAULT_MIN_STOCK",
    "CURRENCY_QUANTUM",
    "TOP_PRODUCTS_LIMIT",
    "TenderType",
    "DiscountType",
    "TransactionStatus",
    "SaleState",
    "UserRole",
    "StockStatus",
    "SheetName",
]
