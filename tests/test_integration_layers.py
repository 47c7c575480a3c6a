"""Integration tests describing end-to-end till workflows.

These scenarios load a real config and seed workbook from disk and drive the
business logic, reporting and data access layers together.
"""

from __future__ import annotations

from datetime import UTC, datetime
from decimal import Decimal

import openpyxl
import pytest

from till_pos import core_logic, data_manager, reporting
from till_pos.constants import DiscountType, SaleState, SheetName, TenderType

import setup_excel


def test_sale_lifecycle_flow(runtime_context, tmp_path):
    """Ring up, pay with split tenders, commit, then report and export."""

    context = runtime_context
    cashier = core_logic.login(context, "kasir@pos.com")
    session = core_logic.open_sale(context, cashier)

    session.add_product("1234567890123")
    session.add_product("ESP001")
    session.add_product("SAN001")
    session.set_discount("4", "50", DiscountType.PERCENTAGE)
    assert session.totals().subtotal == Decimal("64000")

    session.begin_payment()
    session.submit_tender(TenderType.DIGITAL_WALLET, "30400")
    session.submit_tender(TenderType.CASH, cash_received="50000")
    assert session.state is SaleState.SETTLED

    moment = datetime.now(UTC)
    transaction = session.commit(when=moment)

    assert transaction.total == Decimal("70400")
    assert transaction.change == Decimal("10000")
    assert context.store.get_product("1").stock == 48
    assert context.store.get_product("4").stock == 24

    report = reporting.calculate_sales_report(context, now=moment)
    assert report.today_revenue == Decimal("70400")
    assert report.total_profit == Decimal("32000")

    exported = reporting.export_report(context, tmp_path / "report.xlsx", now=moment)
    rows = list(openpyxl.load_workbook(exported)[SheetName.TRANSACTIONS.value].iter_rows(min_row=2, values_only=True))
    assert rows[0][0] == transaction.receipt_number


def test_seed_workbook_is_never_modified(runtime_context):
    """Committed sales stay in memory; reloading the workbook yields the seed stock."""

    session = core_logic.open_sale(runtime_context)
    session.add_product("CAP001")
    session.begin_payment()
    session.submit_tender(TenderType.CARD, session.remaining)
    session.commit()

    products, _ = data_manager.load_catalog(runtime_context.settings.data_file)
    assert {p.product_id: p.stock for p in products}["3"] == 40
    assert runtime_context.store.get_product("3").stock == 39


def test_relative_data_file_is_resolved_next_to_config(config_factory):
    bundle = config_factory(make_relative=True, store_name="Zamirzz")

    context = core_logic.load_runtime_context(bundle.config_path)

    assert context.settings.store_name == "Zamirzz"
    assert context.settings.data_file == bundle.workbook_path.resolve()
    assert len(core_logic.list_products(context)) == 4


def test_schema_mismatch_is_rejected(config_factory):
    bundle = config_factory(schema_version="0.1.0")
    context = core_logic.load_runtime_context(bundle.config_path)

    with pytest.raises(RuntimeError):
        core_logic.ensure_schema_version(context)


# ---------------------------------------------------------------------------
# Setup script
# ---------------------------------------------------------------------------


def test_create_catalog_workbook_refuses_overwrite(tmp_path):
    destination = setup_excel.create_catalog_workbook(tmp_path / "catalog.xlsx")

    with pytest.raises(FileExistsError):
        setup_excel.create_catalog_workbook(destination)

    workbook = openpyxl.load_workbook(destination)
    assert workbook.sheetnames == [SheetName.PRODUCTS.value, SheetName.USERS.value]
    assert workbook[SheetName.PRODUCTS.value]["A1"].font.bold


def test_setup_main_reports_success_and_conflict(tmp_path, capsys):
    config_path = tmp_path / "config.ini"
    config_path.write_text(
        "[System]\nDataFile = catalog.xlsx\nStoreName = Zamirzz\nSchemaVersion = 1.0.0\n\n"
        "[Defaults]\nDefaultCashier = kasir@pos.com\n"
    )

    assert setup_excel.main(["--config", str(config_path)]) == 0
    assert (tmp_path / "catalog.xlsx").exists()
    assert "[SUCCESS]" in capsys.readouterr().out

    assert setup_excel.main(["--config", str(config_path)]) == 1
    assert "--force" in capsys.readouterr().out

    assert setup_excel.main(["--config", str(config_path), "--force"]) == 0


def test_setup_main_missing_config(tmp_path, capsys):
    assert setup_excel.main(["--config", str(tmp_path / "absent.ini")]) == 1
    assert "[ERROR]" in capsys.readouterr().out
