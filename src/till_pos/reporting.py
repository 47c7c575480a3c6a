"""Back-office dashboard computations.

Everything here is read-only: the functions derive inventory classifications,
transaction history views and sales figures from the store behind a
:class:`~till_pos.core_logic.RuntimeContext`.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import UTC, datetime
from decimal import Decimal
from pathlib import Path
from typing import Dict, List, Optional

from . import data_manager, log
from .cart import ZERO
from .constants import TOP_PRODUCTS_LIMIT, SheetName, StockStatus, TransactionStatus
from .core_logic import RuntimeContext, TransactionRecord


@dataclass(frozen=True)
class DashboardOverview:
    """Headline figures for the dashboard landing tab."""

    total_products: int
    low_stock: List[data_manager.ProductRow]
    total_revenue: Decimal
    today_transactions: List[TransactionRecord]
    recent_transactions: List[TransactionRecord]


@dataclass
class ProductSales:
    """Units sold and undiscounted revenue for one product."""

    product_id: str
    name: str
    quantity: int = 0
    revenue: Decimal = ZERO


@dataclass(frozen=True)
class SalesReport:
    """Revenue and profit figures for the reports tab."""

    today_revenue: Decimal
    monthly_revenue: Decimal
    total_revenue: Decimal
    total_profit: Decimal
    top_products: List[ProductSales]


def effective_min_stock(product: data_manager.ProductRow, default_min_stock: int) -> int:
    return product.min_stock if product.min_stock is not None else default_min_stock


def stock_status(product: data_manager.ProductRow, default_min_stock: int) -> StockStatus:
    """Classify stock as low (at or below the minimum), warning (up to twice it) or normal."""
    threshold = effective_min_stock(product, default_min_stock)
    if product.stock <= threshold:
        return StockStatus.LOW
    if product.stock <= threshold * 2:
        return StockStatus.WARNING
    return StockStatus.NORMAL


def list_low_stock(context: RuntimeContext) -> List[data_manager.ProductRow]:
    default = context.settings.default_min_stock
    return [
        product
        for product in context.store.list_products()
        if stock_status(product, default) == StockStatus.LOW
    ]


def _newest_first(transactions: List[TransactionRecord]) -> List[TransactionRecord]:
    return sorted(transactions, key=lambda transaction: transaction.timestamp, reverse=True)


def _local(moment: datetime, now: datetime) -> datetime:
    return moment.astimezone(now.tzinfo) if now.tzinfo is not None else moment


def _total_revenue(transactions: List[TransactionRecord]) -> Decimal:
    return sum((transaction.total for transaction in transactions), ZERO)


def calculate_dashboard_overview(
    context: RuntimeContext,
    *,
    now: Optional[datetime] = None,
    recent_limit: int = 5,
) -> DashboardOverview:
    """Assemble the overview tab: catalog size, low stock, revenue, today's sales."""
    now = now or datetime.now(UTC)
    transactions = _newest_first(context.store.list_transactions())
    today = [t for t in transactions if _local(t.timestamp, now).date() == now.date()]
    overview = DashboardOverview(
        total_products=len(context.store.list_products()),
        low_stock=list_low_stock(context),
        total_revenue=_total_revenue(transactions),
        today_transactions=today,
        recent_transactions=transactions[:recent_limit],
    )
    log.debug(
        "Calculated dashboard overview: products=%d low_stock=%d revenue=%s",
        overview.total_products,
        len(overview.low_stock),
        overview.total_revenue,
    )
    return overview


def filter_transactions(
    context: RuntimeContext,
    term: str = "",
    *,
    status: Optional[TransactionStatus] = None,
) -> List[TransactionRecord]:
    """Transaction history matching a receipt number / cashier name term and a status, newest first."""
    needle = term.strip().lower()
    matches = []
    for transaction in _newest_first(context.store.list_transactions()):
        if needle and needle not in transaction.receipt_number.lower() and needle not in transaction.cashier.name.lower():
            continue
        if status is not None and transaction.status != status:
            continue
        matches.append(transaction)
    return matches


def calculate_sales_report(
    context: RuntimeContext,
    *,
    now: Optional[datetime] = None,
    top_limit: int = TOP_PRODUCTS_LIMIT,
) -> SalesReport:
    """Compute today's, month-to-date and all-time revenue, gross profit and top sellers.

    Gross profit is ``(price - cost) * quantity`` over every sold line using the
    product snapshot taken at sale time. Product revenue in the top-seller
    list is the undiscounted ``price * quantity``.
    """
    now = now or datetime.now(UTC)
    month_start = now.replace(day=1, hour=0, minute=0, second=0, microsecond=0)
    transactions = context.store.list_transactions()

    today_revenue = ZERO
    monthly_revenue = ZERO
    total_profit = ZERO
    sales: Dict[str, ProductSales] = {}
    for transaction in transactions:
        moment = _local(transaction.timestamp, now)
        if moment.date() == now.date():
            today_revenue += transaction.total
        if moment >= month_start:
            monthly_revenue += transaction.total
        for line in transaction.lines:
            product = line.product
            total_profit += (product.price - product.cost) * line.quantity
            entry = sales.setdefault(product.product_id, ProductSales(product.product_id, product.name))
            entry.quantity += line.quantity
            entry.revenue += product.price * line.quantity

    top_products = sorted(sales.values(), key=lambda entry: entry.quantity, reverse=True)[:top_limit]
    report = SalesReport(
        today_revenue=today_revenue,
        monthly_revenue=monthly_revenue,
        total_revenue=_total_revenue(transactions),
        total_profit=total_profit,
        top_products=top_products,
    )
    log.debug(
        "Calculated sales report: today=%s month=%s total=%s profit=%s",
        report.today_revenue,
        report.monthly_revenue,
        report.total_revenue,
        report.total_profit,
    )
    return report


def build_report_sheets(context: RuntimeContext, *, now: Optional[datetime] = None) -> data_manager.SheetRows:
    """Lay out the summary, inventory and transaction tables for export."""
    report = calculate_sales_report(context, now=now)
    default = context.settings.default_min_stock

    summary_rows = [
        ("Store", context.settings.store_name),
        ("Today revenue", report.today_revenue),
        ("Monthly revenue", report.monthly_revenue),
        ("Total revenue", report.total_revenue),
        ("Total profit", report.total_profit),
    ]
    summary_rows.extend(
        (f"Top {rank}: {entry.name}", entry.quantity)
        for rank, entry in enumerate(report.top_products, start=1)
    )

    inventory_rows = [
        (
            product.product_id,
            product.sku,
            product.name,
            product.category,
            product.price,
            product.stock,
            effective_min_stock(product, default),
            stock_status(product, default).value,
        )
        for product in context.store.list_products()
    ]

    transaction_rows = [
        (
            transaction.receipt_number,
            transaction.transaction_id,
            transaction.timestamp.isoformat(),
            transaction.cashier.name,
            transaction.item_count,
            transaction.subtotal,
            transaction.tax,
            transaction.total,
            ", ".join(tender.tender_type.value for tender in transaction.tenders),
            transaction.status.value,
        )
        for transaction in _newest_first(context.store.list_transactions())
    ]

    return {
        SheetName.SUMMARY.value: (("Metric", "Value"), summary_rows),
        SheetName.INVENTORY.value: (
            ("ProductID", "SKU", "ProductName", "Category", "Price", "Stock", "MinStock", "Status"),
            inventory_rows,
        ),
        SheetName.TRANSACTIONS.value: (
            (
                "ReceiptNumber",
                "TransactionID",
                "Timestamp",
                "Cashier",
                "Items",
                "Subtotal",
                "Tax",
                "Total",
                "Tenders",
                "Status",
            ),
            transaction_rows,
        ),
    }


def export_report(context: RuntimeContext, destination: Path, *, now: Optional[datetime] = None) -> Path:
    """Write the back-office report workbook to ``destination``."""
    return data_manager.write_report_workbook(destination, build_report_sheets(context, now=now))
