"""Utility for initializing the till's seed catalog workbook.

The module doubles as a script (``python setup_excel.py``) and as a library
used by tests or other tooling. Shared helpers keep the workbook bootstrap
logic consistent regardless of the execution path.
"""

from __future__ import annotations

import argparse
from decimal import Decimal
from pathlib import Path
from typing import Mapping, Sequence
import sys

import openpyxl
from openpyxl.styles import Font

from till_pos import data_manager
from till_pos.constants import SheetName, UserRole

# Column layout shared with the data access layer.
SHEET_COLUMNS: Mapping[str, Sequence[str]] = {
    SheetName.PRODUCTS.value: data_manager.PRODUCT_COLUMNS,
    SheetName.USERS.value: data_manager.USER_COLUMNS,
}

SAMPLE_PRODUCTS: Sequence[data_manager.ProductRow] = (
    data_manager.ProductRow(
        product_id="1",
        sku="ESP001",
        name="Kopi Espresso",
        price=Decimal("25000"),
        cost=Decimal("15000"),
        stock=50,
        category="Minuman",
        barcode="1234567890123",
    ),
    data_manager.ProductRow(
        product_id="2",
        sku="NSG001",
        name="Nasi Goreng Special",
        price=Decimal("35000"),
        cost=Decimal("20000"),
        stock=30,
        category="Makanan",
        barcode="1234567890124",
    ),
    data_manager.ProductRow(
        product_id="3",
        sku="CAP001",
        name="Cappuccino",
        price=Decimal("30000"),
        cost=Decimal("18000"),
        stock=40,
        category="Minuman",
        barcode="1234567890125",
    ),
    data_manager.ProductRow(
        product_id="4",
        sku="SAN001",
        name="Sandwich Tuna",
        price=Decimal("28000"),
        cost=Decimal("16000"),
        stock=25,
        category="Makanan",
        barcode="1234567890126",
    ),
)

SAMPLE_USERS: Sequence[data_manager.UserRow] = (
    data_manager.UserRow("1", "Admin System", "admin@pos.com", UserRole.ADMIN),
    data_manager.UserRow("2", "Manajer Toko", "manager@pos.com", UserRole.MANAGER),
    data_manager.UserRow("3", "Kasir 1", "kasir@pos.com", UserRole.CASHIER),
)

CONFIG_FILE = "config.ini"


def create_catalog_workbook(
    destination: Path,
    *,
    products: Sequence[data_manager.ProductRow] = SAMPLE_PRODUCTS,
    users: Sequence[data_manager.UserRow] = SAMPLE_USERS,
    sheet_columns: Mapping[str, Sequence[str]] = SHEET_COLUMNS,
    overwrite: bool = False,
) -> Path:
    """Create the seed catalog workbook at ``destination``.

    Parameters are overridable to facilitate testing. When ``overwrite`` is
    ``False`` (the default) this function raises ``FileExistsError`` if the
    target already exists.
    """

    destination = destination.expanduser().resolve()
    if destination.exists() and not overwrite:
        raise FileExistsError(
            f"Refusing to overwrite existing catalog workbook: {destination}"
        )

    destination.parent.mkdir(parents=True, exist_ok=True)

    workbook = openpyxl.Workbook()

    # Remove the default sheet openpyxl generates so we can create ours.
    if workbook.active and workbook.active.title == "Sheet":
        workbook.remove(workbook.active)

    bold_font = Font(bold=True)

    for sheet_name, columns in sheet_columns.items():
        worksheet = workbook.create_sheet(title=sheet_name)
        for column_index, column_name in enumerate(columns, start=1):
            cell = worksheet.cell(row=1, column=column_index)
            cell.value = column_name
            cell.font = bold_font

    products_sheet = workbook[SheetName.PRODUCTS.value]
    for product in products:
        products_sheet.append(data_manager.serialize_product(product))

    users_sheet = workbook[SheetName.USERS.value]
    for user in users:
        users_sheet.append(data_manager.serialize_user(user))

    workbook.save(destination)
    return destination


def run_from_config(config_path: Path, *, overwrite: bool = False) -> Path:
    """Create the workbook named by ``[System] DataFile`` in ``config_path``."""

    parser = data_manager.read_config(config_path)
    settings = data_manager.parse_settings(parser, base_path=config_path.parent)
    return create_catalog_workbook(settings.data_file, overwrite=overwrite)


def parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    """Parse CLI arguments for the setup script."""

    parser = argparse.ArgumentParser(description="Initialize the till catalog workbook")
    parser.add_argument(
        "--config",
        default=CONFIG_FILE,
        help="Path to configuration file (default: config.ini)",
    )
    parser.add_argument(
        "--force",
        action="store_true",
        help="Overwrite the target workbook if it already exists.",
    )
    return parser.parse_args(argv)


def main(argv: Sequence[str] | None = None) -> int:
    """Entry point for the CLI script."""

    args = parse_args(argv)
    config_path = Path(args.config).expanduser().resolve()

    print("--- Till Catalog Setup Script ---")
    print(f"Using configuration: {config_path}")

    try:
        output_path = run_from_config(config_path, overwrite=args.force)
    except FileNotFoundError as exc:
        print(f"\n[ERROR] {exc}")
        return 1
    except KeyError as exc:
        print(f"\n[ERROR] {exc}")
        return 1
    except FileExistsError as exc:
        print(f"\n[ERROR] {exc}")
        print("Run with --force to overwrite the existing file if appropriate.")
        return 1
    except (PermissionError, OSError) as exc:
        print(f"\n[ERROR] Unable to write workbook: {exc}")
        return 1

    print(f"\n[SUCCESS] Created catalog workbook at '{output_path}'.")
    return 0


if __name__ == "__main__":  # pragma: no cover - exercised via manual runs
    sys.exit(main())
