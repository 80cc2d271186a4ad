"""Spreadsheet exports.

Report builders return plain row dicts; `write_report` turns any list of
uniform rows into an .xlsx document with a styled header row.
"""
import base64
import re
from datetime import date, datetime
from decimal import Decimal
from io import BytesIO
from typing import Any, Dict, Iterable, List, Optional

from openpyxl import Workbook
from openpyxl.styles import Alignment, Border, Font, PatternFill, Side
from openpyxl.utils import get_column_letter
from sqlalchemy import or_, select
from sqlalchemy.orm import Session

from db.models import (
    Order,
    OrderMaterial,
    OrderStatus,
    RateDefinition,
    WarehouseAction,
    WarehouseHistory,
)
from api.services.billing import sort_billing_codes
from api.services.errors import ReportError
from api.services.modules import ModuleDescriptor
from api.services.stock import Holder, StockLedger
from api.utils.util import day_bounds, month_range

HEADER_FILL = PatternFill(fill_type="solid", fgColor="FF2297DB")
HEADER_FONT = Font(bold=True, color="FFFFFFFF")
HEADER_ALIGNMENT = Alignment(horizontal="center", vertical="center", wrap_text=True)
_thin = Side(style="thin", color="FF000000")
HEADER_BORDER = Border(top=_thin, left=_thin, bottom=_thin, right=_thin)

_INVALID_SHEET_CHARS = re.compile(r"[\\/*?:\[\]]")


def _cell_text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    return str(value)


def _cell_value(value: Any) -> Any:
    if isinstance(value, Decimal):
        return float(value)
    if isinstance(value, (list, tuple, dict)):
        return str(value)
    return value


def write_report(rows: List[Dict[str, Any]], sheet_name: str = "Report") -> bytes:
    """Render rows as a one-sheet workbook.

    Columns follow the key order of the first row. Each column is as wide as
    its longest header or cell text plus 2.
    """
    if not rows:
        raise ReportError("no rows to export")
    headers = list(rows[0].keys())

    workbook = Workbook()
    sheet = workbook.active
    sheet.title = _INVALID_SHEET_CHARS.sub("_", sheet_name)[:31] or "Report"

    sheet.append(headers)
    for cell in sheet[1]:
        cell.fill = HEADER_FILL
        cell.font = HEADER_FONT
        cell.alignment = HEADER_ALIGNMENT
        cell.border = HEADER_BORDER

    widths = [len(h) for h in headers]
    for row in rows:
        values = [row.get(h) for h in headers]
        sheet.append([_cell_value(v) for v in values])
        for i, value in enumerate(values):
            widths[i] = max(widths[i], len(_cell_text(value)))

    for i, width in enumerate(widths, start=1):
        sheet.column_dimensions[get_column_letter(i)].width = width + 2

    buffer = BytesIO()
    workbook.save(buffer)
    return buffer.getvalue()


def encode_report(rows: List[Dict[str, Any]], name: str) -> Dict[str, str]:
    content = write_report(rows, sheet_name=name)
    return {"filename": f"{name}.xlsx", "content": base64.b64encode(content).decode("ascii")}


class ReportService:
    def __init__(self, db: Session, module: ModuleDescriptor):
        self.db = db
        self.module = module
        self.ledger = StockLedger(db, module)

    @staticmethod
    def _stock_rows(items) -> List[Dict[str, Any]]:
        return [
            {
                "Name": i.name,
                "Category": i.category,
                "Type": i.item_type.value,
                "Serial number": i.serial_number or "",
                "Quantity": i.quantity,
                "Unit": i.unit,
                "Status": i.status.value,
                "Location": i.location_id,
            }
            for i in items
        ]

    def warehouse_stock_rows(self, location_id: str) -> List[Dict[str, Any]]:
        items = self.ledger.list_items(holder=Holder.warehouse(location_id))
        return self._stock_rows(i for i in items if i.quantity > 0)

    def technician_stock_rows(self, technician_id: int) -> List[Dict[str, Any]]:
        return self._stock_rows(self.ledger.technician_stock(technician_id))

    def return_to_operator_rows(self, history_ids: Iterable[int]) -> List[Dict[str, Any]]:
        ids = list(history_ids)
        stmt = (
            select(WarehouseHistory)
            .where(
                WarehouseHistory.action == WarehouseAction.RETURNED_TO_OPERATOR,
                or_(WarehouseHistory.id.in_(ids), WarehouseHistory.source_history_id.in_(ids)),
            )
            .order_by(WarehouseHistory.id)
        )
        rows = []
        for entry in self.db.execute(stmt).scalars():
            if entry.item.module_code != self.module.code:
                continue
            rows.append({
                "Name": entry.item.name,
                "Category": entry.item.category,
                "Serial number": entry.item.serial_number or "",
                "Quantity": entry.quantity,
                "Order number": entry.assigned_order.order_number if entry.assigned_order else "",
                "Returned at": entry.action_date,
            })
        return rows

    def used_materials_rows(self, date_from: date, date_to: date) -> List[Dict[str, Any]]:
        start, end = day_bounds(date_from, date_to)
        stmt = (
            select(OrderMaterial)
            .join(Order, OrderMaterial.order_id == Order.id)
            .where(
                Order.module_code == self.module.code,
                Order.completed_at >= start,
                Order.completed_at < end,
            )
            .order_by(Order.completed_at, OrderMaterial.id)
        )
        return [
            {
                "Order number": m.order.order_number,
                "Completed at": m.order.completed_at,
                "Technician": m.order.technician.name if m.order.technician else "",
                "Material": m.material.name,
                "Quantity": m.quantity,
                "Unit": m.unit,
            }
            for m in self.db.execute(stmt).scalars()
        ]

    def settlement_rows(self, year: int, month: int, technician_id: Optional[int] = None) -> List[Dict[str, Any]]:
        start, end = month_range(year, month)
        stmt = select(Order).where(
            Order.module_code == self.module.code,
            Order.status == OrderStatus.COMPLETED,
            Order.scheduled_date >= start,
            Order.scheduled_date <= end,
        )
        if technician_id is not None:
            stmt = stmt.where(Order.technician_id == technician_id)
        rates = {
            r.code: Decimal(r.amount or 0)
            for r in self.db.execute(
                select(RateDefinition).where(RateDefinition.module_code == self.module.code)
            ).scalars()
        }
        rows = []
        for order in self.db.execute(stmt.order_by(Order.scheduled_date, Order.id)).scalars():
            quantities: Dict[str, int] = {}
            for entry in order.settlement_entries:
                quantities[entry.code] = quantities.get(entry.code, 0) + entry.quantity
            codes = sort_billing_codes(quantities)
            amount = sum((rates.get(c, Decimal(0)) * quantities[c] for c in codes), Decimal(0))
            rows.append({
                "Order number": order.order_number,
                "Date": order.scheduled_date,
                "Technician": order.technician.name if order.technician else "",
                "Work codes": ", ".join(f"{c} x{quantities[c]}" for c in codes),
                "Amount": float(amount),
            })
        return rows
