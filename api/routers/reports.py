from typing import Optional

from fastapi import APIRouter, Depends, Query

from api.schemas import ReportResponse, ReturnToOperatorRequest
from api.services.access import RequestContext, module_context, role_required
from api.services.errors import BadRequestError, ForbiddenError
from api.services.reports import ReportService, encode_report
from api.utils.util import parse_local_date

router = APIRouter(prefix="/{module}/reports", tags=["reports"])

REPORT_ROLES = ["admin", "coordinator", "warehouseman"]


def _reports(ctx: RequestContext) -> ReportService:
    return ReportService(ctx.db, ctx.module)


@router.get("/warehouse-stock", response_model=ReportResponse)
@role_required(REPORT_ROLES)
async def warehouse_stock_report(ctx: RequestContext = Depends(module_context)):
    """
    Spreadsheet of everything in stock at the active warehouse location.
    The file is returned base64 encoded in `content`.
    """
    location_id = ctx.capabilities.require_location()
    rows = _reports(ctx).warehouse_stock_rows(location_id)
    return encode_report(rows, f"{ctx.module_code}_stock_{location_id}")


@router.get("/technician-stock/{technician_id}", response_model=ReportResponse)
@role_required(["admin", "coordinator", "warehouseman", "technician"])
async def technician_stock_report(technician_id: int, ctx: RequestContext = Depends(module_context)):
    if ctx.capabilities.is_technician and technician_id != ctx.user.id:
        raise ForbiddenError("technicians can only export their own stock")
    rows = _reports(ctx).technician_stock_rows(technician_id)
    return encode_report(rows, f"{ctx.module_code}_technician_{technician_id}_stock")


@router.post("/return-to-operator", response_model=ReportResponse)
@role_required(REPORT_ROLES)
async def return_to_operator_report(data: ReturnToOperatorRequest, ctx: RequestContext = Depends(module_context)):
    """
    Hand-over sheet for items returned to the operator. Accepts the ids of the
    return entries or of the entries they were created from.
    """
    rows = _reports(ctx).return_to_operator_rows(data.history_ids)
    return encode_report(rows, f"{ctx.module_code}_return_to_operator")


@router.get("/used-materials", response_model=ReportResponse)
@role_required(REPORT_ROLES)
async def used_materials_report(
    date_from: str = Query(..., description="YYYY-MM-DD"),
    date_to: str = Query(..., description="YYYY-MM-DD"),
    ctx: RequestContext = Depends(module_context),
):
    """
    Materials used on orders completed between two calendar days, both inclusive.
    """
    try:
        date_from, date_to = parse_local_date(date_from), parse_local_date(date_to)
    except ValueError:
        raise BadRequestError("dates must be YYYY-MM-DD", {"date_from": date_from, "date_to": date_to})
    if date_to < date_from:
        raise BadRequestError("date_to is before date_from")
    rows = _reports(ctx).used_materials_rows(date_from, date_to)
    return encode_report(rows, f"{ctx.module_code}_materials_{date_from}_{date_to}")


@router.get("/settlement", response_model=ReportResponse)
@role_required(["admin", "coordinator", "technician"])
async def settlement_report(
    year: int = Query(..., ge=2000, le=2100),
    month: int = Query(..., ge=1, le=12),
    technician_id: Optional[int] = Query(None),
    ctx: RequestContext = Depends(module_context),
):
    """
    Completed orders of a month with their work codes and amounts.
    """
    if ctx.capabilities.is_technician:
        technician_id = ctx.user.id
    rows = _reports(ctx).settlement_rows(year, month, technician_id)
    return encode_report(rows, f"{ctx.module_code}_settlement_{year}_{month:02d}")
