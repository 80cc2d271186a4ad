import base64
from datetime import date
from io import BytesIO

import pytest
from openpyxl import load_workbook

from db.models import OrderStatus, OrderType
from api.schemas import BillingDraft, MaterialUsage, OrderCompletion, OrderCreate
from api.services.errors import ReportError
from api.services.modules import OPL, VECTRA
from api.services.orders import OrderLifecycle
from api.services.reports import ReportService, encode_report, write_report


def _load(content):
    return load_workbook(BytesIO(content)).active


def test_write_report_layout():
    sheet = _load(write_report([{"A": 1, "B": "x"}, {"A": 22, "B": "yy"}], "Stock"))

    assert sheet.title == "Stock"
    assert [[c.value for c in row] for row in sheet.iter_rows()] == [["A", "B"], [1, "x"], [22, "yy"]]
    assert sheet.column_dimensions["A"].width == 4
    assert sheet.column_dimensions["B"].width == 4


def test_header_is_styled():
    sheet = _load(write_report([{"Name": "Cable"}]))
    header = sheet["A1"]
    assert header.font.bold
    assert header.fill.fgColor.rgb == "FF2297DB"
    assert header.alignment.horizontal == "center"
    assert header.border.left.style == "thin"
    assert not sheet["A2"].font.bold


def test_columns_follow_first_row_order():
    sheet = _load(write_report([{"Zeta": 1, "Alpha": 2}, {"Alpha": 3, "Zeta": 4}]))
    assert [c.value for c in sheet[1]] == ["Zeta", "Alpha"]
    assert [c.value for c in sheet[3]] == [4, 3]


def test_empty_report_rejected():
    with pytest.raises(ReportError) as exc:
        write_report([])
    assert exc.value.message == "no rows to export"


def test_encode_report_is_base64_xlsx():
    payload = encode_report([{"A": 1}], "VECTRA_stock_WH-1")
    assert payload["filename"] == "VECTRA_stock_WH-1.xlsx"
    assert _load(base64.b64decode(payload["content"]))["A2"].value == 1


def test_stock_reports(db, stocked, technician):
    reports = ReportService(db, VECTRA)

    warehouse = reports.warehouse_stock_rows("WH-1")
    assert {(r["Name"], r["Quantity"]) for r in warehouse} == {("Box 4K", 1), ("Cable RG6", 70)}

    tech = reports.technician_stock_rows(technician.id)
    assert {(r["Name"], r["Serial number"]) for r in tech} == {("Box 4K", "SN-001"), ("Cable RG6", "")}


def test_return_to_operator_report(db, stocked, vectra_ledger):
    received = vectra_ledger.item_history(stocked["device2"].id)[0]
    vectra_ledger.return_to_operator([received.id])

    rows = ReportService(db, VECTRA).return_to_operator_rows([received.id])

    assert len(rows) == 1
    assert rows[0]["Serial number"] == "SN-002"


def test_used_materials_and_settlement(db, coordinator, technician, stocked, definitions):
    vectra = OrderLifecycle(db, VECTRA, coordinator)
    order = vectra.create_order(OrderCreate(
        order_number="R-1", type=OrderType.INSTALLATION, city="Gdynia", street="Morska 1",
        scheduled_date=date(2026, 10, 2), time_slot="8-10", technician_id=technician.id,
    ))
    vectra.complete_order(order.id, OrderCompletion(
        status=OrderStatus.COMPLETED,
        work_codes=[{"code": "INST"}],
        materials=[MaterialUsage(material_definition_id=definitions["cable"].id, quantity=5)],
    ))
    reports = ReportService(db, VECTRA)

    today = order.completed_at.date()
    used = reports.used_materials_rows(today, today)
    assert [(r["Order number"], r["Material"], r["Quantity"]) for r in used] == [("R-1", "Cable RG6", 5)]

    settlement = reports.settlement_rows(2026, 10)
    assert settlement[0]["Work codes"] == "INST x1"
    assert settlement[0]["Amount"] == 0.0
    assert ReportService(db, OPL).settlement_rows(2026, 10) == []


def test_opl_settlement_uses_rates(db, coordinator, technician):
    opl = OrderLifecycle(db, OPL, coordinator)
    order = opl.create_order(OrderCreate(
        order_number="S-1", type=OrderType.INSTALLATION, city="Gdynia", street="Morska 2",
        scheduled_date=date(2026, 10, 3), time_slot="8-10", technician_id=technician.id,
    ))
    opl.complete_order(order.id, OrderCompletion(
        status=OrderStatus.COMPLETED,
        billing_draft=BillingDraft(base_code="ZJD", multiroom_count=1),
    ))

    rows = ReportService(db, OPL).settlement_rows(2026, 10, technician.id)

    assert rows[0]["Work codes"] == "ZJD x1, MR x1"
    assert rows[0]["Amount"] == 221.0
