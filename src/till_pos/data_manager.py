"""Data access layer for the till.

This module provides low-level helpers around the seed workbook
(``catalog.xlsx``) and the exported report workbook. Business logic belongs
elsewhere; nothing here writes sales back to the seed workbook.

The public API is designed around three responsibilities:

1. Configuration handling: finding and parsing ``config.ini``.
2. Workbook lifecycle: opening the seed workbook and saving report exports.
3. Sheet operations: loading structured product and user records.
"""


from __future__ import annotations

import configparser
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from pathlib import Path
from typing import Iterable, Mapping, Optional, Sequence, Tuple

from openpyxl.styles import Font
from openpyxl.workbook import Workbook
import openpyxl

from . import log
from .constants import CURRENCY_QUANTUM, DEFAULT_MIN_STOCK, DEFAULT_TAX_RATE, SheetName, UserRole


CONFIG_FILE_NAME = "config.ini"
PRODUCTS_SHEET = SheetName.PRODUCTS.value
USERS_SHEET = SheetName.USERS.value

PRODUCT_COLUMNS: Tuple[str, ...] = (
    "ProductID",
    "SKU",
    "Barcode",
    "ProductName",
    "Category",
    "Price",
    "Cost",
    "Stock",
    "MinStock",
    "Description",
)
USER_COLUMNS: Tuple[str, ...] = ("UserID", "UserName", "Email", "Role")

# Sheet name -> (header row, data rows) as accepted by :func:`write_report_workbook`.
SheetRows = Mapping[str, Tuple[Sequence[str], Iterable[Sequence[object]]]]


@dataclass(frozen=True)
class ConfigSettings:
    """Typed representation of the ``config.ini`` settings we care about."""

    data_file: Path
    store_name: str
    schema_version: str
    default_cashier_email: str
    tax_rate: Decimal = DEFAULT_TAX_RATE
    default_min_stock: int = DEFAULT_MIN_STOCK


@dataclass(frozen=True)
class ProductRow:
    """In-memory view of a catalog product."""

    product_id: str
    sku: str
    name: str
    price: Decimal
    cost: Decimal
    stock: int
    category: str
    barcode: Optional[str] = None
    min_stock: Optional[int] = None
    description: Optional[str] = None


@dataclass(frozen=True)
class UserRow:
    """In-memory view of a row from the ``Users`` sheet."""

    user_id: str
    name: str
    email: str
    role: UserRole


def find_config_file(explicit_path: Optional[Path] = None) -> Path:
    """Locate the configuration file that controls how the till behaves.

    If the caller provides ``explicit_path`` the value is returned immediately
    without any verification. Otherwise the function walks up from the current
    working directory toward the filesystem root looking for a file named
    ``CONFIG_FILE_NAME``; the first match is considered authoritative.

    Args:
        explicit_path (Path | None): Optional path to use instead of performing
            the upward search.

    Returns:
        Path: The path provided by the caller or the discovered configuration
            file.

    Raises:
        FileNotFoundError: If the search exhausts all parent directories without
            finding ``CONFIG_FILE_NAME``.
    """

    if explicit_path:
        return explicit_path

    current = Path.cwd()
    for p in (current, *current.parents):
        candidate = p / CONFIG_FILE_NAME
        if candidate.exists():
            return candidate

    raise FileNotFoundError(
        f"Configuration file not found: {CONFIG_FILE_NAME}")


def read_config(config_path: Path) -> configparser.ConfigParser:
    """Load ``config.ini`` and return a populated ``ConfigParser`` instance.

    Validation of required entries happens in :func:`parse_settings`.

    Raises:
        FileNotFoundError: If ``config_path`` does not exist after expansion and
            resolution.
    """

    config_path = config_path.expanduser().resolve()
    if not config_path.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    parser = configparser.ConfigParser()
    parser.read(config_path)
    return parser


def parse_settings(parser: configparser.ConfigParser, *, base_path: Optional[Path] = None) -> ConfigSettings:
    """Convert a ``ConfigParser`` into strongly typed :class:`ConfigSettings`.

    ``[System]`` and ``[Defaults]`` entries are mandatory. ``[Sales] TaxRate``
    and ``[Inventory] DefaultMinStock`` fall back to the package defaults when
    absent. Relative ``DataFile`` entries are anchored to ``base_path`` (or the
    current working directory) and resolved.

    Args:
        parser (configparser.ConfigParser): Parsed configuration data.
        base_path (Path | None): Directory to use as the anchor for relative
            ``DataFile`` entries.

    Returns:
        ConfigSettings: Immutable settings container.

    Raises:
        KeyError: If one of the required sections or options is missing.
        ValueError: If the tax rate or minimum stock cannot be parsed, or the
            tax rate lies outside ``0..1``.
    """

    try:
        data_file_raw = parser.get("System", "DataFile")
        store_name = parser.get("System", "StoreName")
        schema_version = parser.get("System", "SchemaVersion")
        default_cashier = parser.get("Defaults", "DefaultCashier")
    except (configparser.NoSectionError, configparser.NoOptionError) as exc:
        raise KeyError(f"Missing required configuration entry: {exc}") from exc

    tax_raw = parser.get("Sales", "TaxRate", fallback=str(DEFAULT_TAX_RATE))
    try:
        tax_rate = Decimal(tax_raw)
    except InvalidOperation as exc:
        raise ValueError(f"Invalid tax rate: {tax_raw!r}") from exc
    if not Decimal("0") <= tax_rate <= Decimal("1"):
        raise ValueError(f"Tax rate must lie between 0 and 1: {tax_rate}")

    default_min_stock = parser.getint("Inventory", "DefaultMinStock", fallback=DEFAULT_MIN_STOCK)

    data_file_path = Path(data_file_raw)
    if not data_file_path.is_absolute():
        if base_path is None:
            base_path = Path.cwd()
        data_file_path = (base_path / data_file_path).resolve()

    return ConfigSettings(
        data_file=data_file_path,
        store_name=store_name,
        schema_version=schema_version,
        default_cashier_email=default_cashier,
        tax_rate=tax_rate,
        default_min_stock=default_min_stock,
    )


def open_workbook(data_file: Path) -> Workbook:
    """Open the seed workbook and return a live ``openpyxl`` workbook.

    Raises:
        FileNotFoundError: If ``data_file`` does not exist after expansion and
            resolution.
    """

    data_file = Path(data_file).expanduser().resolve()
    if not data_file.exists():
        raise FileNotFoundError(f"Workbook not found: {data_file}")

    wb = openpyxl.load_workbook(data_file)
    return wb


def save_workbook(workbook: Workbook, destination: Path) -> Path:
    """Persist a workbook at an explicitly provided destination.

    Parent directories are created on demand.

    Returns:
        Path: The resolved destination.
    """

    dest = Path(destination).expanduser().resolve()
    dest.parent.mkdir(parents=True, exist_ok=True)
    workbook.save(dest)
    return dest


def iter_products(workbook: Workbook) -> Iterable[ProductRow]:
    """Iterate over product records stored on the ``Products`` worksheet.

    The iterator skips the header row and any fully empty rows. Each remaining
    row is converted into a :class:`ProductRow` via :func:`deserialize_product`.

    Args:
        workbook (Workbook): Workbook containing the ``Products`` sheet.

    Yields:
        ProductRow: One structured row for each meaningful record in the sheet.
    """

    sheet = workbook[PRODUCTS_SHEET]
    for raw in sheet.iter_rows(min_row=2, values_only=True):
        # skip fully empty rows
        if any(cell is not None for cell in raw):
            yield deserialize_product(raw)


def iter_users(workbook: Workbook) -> Iterable[UserRow]:
    """Iterate over the ``Users`` worksheet and yield typed records."""

    sheet = workbook[USERS_SHEET]
    for raw in sheet.iter_rows(min_row=2, values_only=True):
        if any(cell is not None for cell in raw):
            yield deserialize_user(raw)


def load_catalog(data_file: Path) -> Tuple[list[ProductRow], list[UserRow]]:
    """Read every product and user from the seed workbook at ``data_file``."""

    workbook = open_workbook(data_file)
    products = list(iter_products(workbook))
    users = list(iter_users(workbook))
    log.info(
        "Loaded %d products and %d users from '%s'",
        len(products),
        len(users),
        data_file,
    )
    return products, users


def write_report_workbook(destination: Path, sheets: SheetRows) -> Path:
    """Write one worksheet per entry of ``sheets`` and save to ``destination``.

    Header cells are rendered bold, mirroring the seed workbook layout.

    Args:
        destination (Path): Target ``.xlsx`` path.
        sheets (Mapping): Sheet name mapped to ``(header, rows)``.

    Returns:
        Path: The resolved destination.
    """

    workbook = openpyxl.Workbook()
    if workbook.active and workbook.active.title == "Sheet":
        workbook.remove(workbook.active)

    bold_font = Font(bold=True)
    for sheet_name, (header, rows) in sheets.items():
        worksheet = workbook.create_sheet(title=sheet_name)
        worksheet.append(list(header))
        for cell in worksheet[1]:
            cell.font = bold_font
        for row in rows:
            worksheet.append(list(row))

    saved = save_workbook(workbook, destination)
    log.info("Wrote report workbook '%s' (%s)", saved, ", ".join(sheets))
    return saved


def serialize_product(record: ProductRow) -> list[object]:
    """Convert a product dataclass into the ``Products`` column ordering."""

    return [
        record.product_id,
        record.sku,
        record.barcode,
        record.name,
        record.category,
        record.price,
        record.cost,
        record.stock,
        record.min_stock,
        record.description,
    ]


def serialize_user(record: UserRow) -> list[object]:
    """Convert a user dataclass into the ``Users`` column ordering."""

    return [record.user_id, record.name, record.email, record.role.value]


def _to_whole_units(raw: object) -> Decimal:
    if raw is None or raw == "":
        return Decimal("0")
    return Decimal(str(raw)).quantize(CURRENCY_QUANTUM, rounding=ROUND_HALF_UP)


def _optional_text(raw: object) -> Optional[str]:
    if raw is None or raw == "":
        return None
    return str(raw)


def deserialize_product(raw_row: Sequence[object]) -> ProductRow:
    """Convert a raw worksheet row into a strongly typed product record.

    Money columns become whole-unit :class:`~decimal.Decimal` values, stock
    columns become ``int`` and identifier columns are coerced to ``str`` so
    Excel's numeric guessing cannot leak through.

    Raises:
        ValueError: If the row carries a negative stock figure.
    """

    (
        product_id,
        sku,
        barcode,
        name,
        category,
        price_raw,
        cost_raw,
        stock_raw,
        min_stock_raw,
        description,
    ) = tuple(raw_row[: len(PRODUCT_COLUMNS)]) + (None,) * (len(PRODUCT_COLUMNS) - len(raw_row))

    stock = int(stock_raw) if stock_raw is not None else 0
    if stock < 0:
        raise ValueError(f"Product '{product_id}' has negative stock: {stock}")

    return ProductRow(
        product_id=str(product_id),
        sku=str(sku) if sku is not None else "",
        name=str(name) if name is not None else "",
        price=_to_whole_units(price_raw),
        cost=_to_whole_units(cost_raw),
        stock=stock,
        category=str(category) if category is not None else "",
        barcode=_optional_text(barcode),
        min_stock=int(min_stock_raw) if min_stock_raw not in (None, "") else None,
        description=_optional_text(description),
    )


def deserialize_user(raw_row: Sequence[object]) -> UserRow:
    """Convert a raw worksheet row into a strongly typed user record.

    Raises:
        ValueError: If the role column holds an unknown role.
    """

    user_id, name, email, role = raw_row[:4]
    return UserRow(
        user_id=str(user_id),
        name=str(name),
        email=str(email).strip().lower(),
        role=UserRole(str(role).strip().lower()),
    )
