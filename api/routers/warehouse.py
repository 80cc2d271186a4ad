from typing import Optional
import logging

from fastapi import APIRouter, Depends, File, Query, UploadFile, status

from db.models import ItemType, WarehouseItemStatus
from api.schemas import (
    AddItemsRequest,
    ImportDevicesResponse,
    IssueItemsRequest,
    ReturnItemsRequest,
    ReturnToOperatorRequest,
    ReturnToOperatorResponse,
    StockSumResponse,
    StockTransferRequest,
    TechnicianTransferRequest,
    TransferDecision,
)
from api.services.access import RequestContext, module_context, role_required
from api.services.errors import BadRequestError, ForbiddenError
from api.services.stock import Holder, StockLedger, parse_device_file
from api.utils.email import EmailConfigurationError, send_operation_failure_email

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/{module}/warehouse", tags=["warehouse"])

STOCK_ROLES = ["admin", "coordinator", "warehouseman"]


def _ledger(ctx: RequestContext) -> StockLedger:
    return StockLedger(ctx.db, ctx.module, ctx.user)


def _holder(ctx: RequestContext, technician_id: Optional[int], location_id: Optional[str]) -> Holder:
    if technician_id is not None:
        return Holder.technician(technician_id)
    return Holder.warehouse(location_id or ctx.capabilities.require_location())


async def _notify_import_failure(ctx: RequestContext, filename: Optional[str], reason: str) -> None:
    try:
        await send_operation_failure_email(ctx.user.email, f"device import ({filename})", reason)
    except EmailConfigurationError as e:
        logger.error(f"Import failure email to {ctx.user.email} not sent: {e}")


def _own_technician_id(ctx: RequestContext, technician_id: Optional[int]) -> int:
    """Technicians act for themselves; other roles must name the technician."""
    if ctx.capabilities.is_technician:
        if technician_id is not None and technician_id != ctx.user.id:
            raise ForbiddenError("technicians can only act on their own stock")
        return ctx.user.id
    if technician_id is None:
        raise BadRequestError("technician_id is required")
    return technician_id


# --- Receipts ---
@router.post("/items", status_code=status.HTTP_201_CREATED)
@role_required(STOCK_ROLES)
async def add_items(data: AddItemsRequest, ctx: RequestContext = Depends(module_context)):
    """
    Receive devices and materials into the active warehouse location.
    Devices must match a device definition; serial numbers are stored upper-case.
    """
    location_id = ctx.capabilities.require_location()
    items = _ledger(ctx).add_items(location_id, data.devices, data.materials, data.notes)
    return [i.to_dict() for i in items]


@router.post("/import", response_model=ImportDevicesResponse)
@role_required(STOCK_ROLES)
async def import_devices(file: UploadFile = File(...), ctx: RequestContext = Depends(module_context)):
    """
    Receive devices from an .xlsx or .csv file with `name`, `category` and
    `serial_number` columns. Rows that cannot be added are reported, not fatal.
    """
    location_id = ctx.capabilities.require_location()
    content = await file.read()
    try:
        rows = parse_device_file(content, file.filename or "")
    except BadRequestError as e:
        await _notify_import_failure(ctx, file.filename, e.message)
        raise
    return _ledger(ctx).import_devices(rows, location_id)


# --- Reads ---
@router.get("/items")
@role_required(["admin", "coordinator", "warehouseman", "technician"])
async def list_items(
    technician_id: Optional[int] = Query(None),
    item_type: Optional[ItemType] = Query(None),
    item_status: Optional[WarehouseItemStatus] = Query(None, alias="status"),
    search: Optional[str] = Query(None),
    ctx: RequestContext = Depends(module_context),
):
    """
    Stock of the active warehouse location, or of a technician when
    `technician_id` is given. Technicians always see their own stock.
    """
    if ctx.capabilities.is_technician:
        technician_id = ctx.user.id
    holder = _holder(ctx, technician_id, None)
    items = _ledger(ctx).list_items(holder=holder, item_type=item_type, status=item_status, search=search)
    return [i.to_dict() for i in items]


@router.get("/technician/{technician_id}/stock")
@role_required(["admin", "coordinator", "warehouseman", "technician"])
async def technician_stock(technician_id: int, ctx: RequestContext = Depends(module_context)):
    technician_id = _own_technician_id(ctx, technician_id)
    return [i.to_dict() for i in _ledger(ctx).technician_stock(technician_id)]


@router.get("/sum", response_model=StockSumResponse)
@role_required(["admin", "coordinator", "warehouseman", "technician"])
async def stock_sum(
    material_name: str = Query(..., min_length=1),
    technician_id: Optional[int] = Query(None),
    ctx: RequestContext = Depends(module_context),
):
    """
    Total quantity of a material held by a technician or the active warehouse location.
    """
    if ctx.capabilities.is_technician:
        technician_id = _own_technician_id(ctx, technician_id)
    quantity = _ledger(ctx).sum_stock_for_holder(_holder(ctx, technician_id, None), material_name)
    return StockSumResponse(material_name=material_name, quantity=quantity)


@router.get("/items/{item_id}/history")
@role_required(STOCK_ROLES)
async def item_history(item_id: int, ctx: RequestContext = Depends(module_context)):
    return [h.to_dict() for h in _ledger(ctx).item_history(item_id)]


# --- Movements ---
@router.post("/issue")
@role_required(STOCK_ROLES)
async def issue_items(data: IssueItemsRequest, ctx: RequestContext = Depends(module_context)):
    """
    Issue items from the active warehouse location to a technician.
    """
    location_id = ctx.capabilities.require_location()
    items = _ledger(ctx).issue_items(location_id, data.technician_id, data.items, data.notes)
    return [i.to_dict() for i in items]


@router.post("/return")
@role_required(STOCK_ROLES)
async def return_items(data: ReturnItemsRequest, ctx: RequestContext = Depends(module_context)):
    """
    Take items back from technicians into the active warehouse location.
    Devices collected from clients come back as RETURNED.
    """
    location_id = ctx.capabilities.require_location()
    items = _ledger(ctx).return_to_warehouse(location_id, data.items, data.notes)
    return [i.to_dict() for i in items]


@router.post("/transfer")
@role_required(STOCK_ROLES)
async def transfer(data: StockTransferRequest, ctx: RequestContext = Depends(module_context)):
    """
    Move an item between any two holders (warehouse locations or technicians).
    """
    source = _holder(ctx, data.from_technician_id, data.from_location_id)
    target = _holder(ctx, data.to_technician_id, data.to_location_id)
    return _ledger(ctx).transfer(data.item_id, source, target, data.quantity).to_dict()


@router.post("/items/{item_id}/assign-order")
@role_required(STOCK_ROLES)
async def assign_to_order(
    item_id: int,
    order_id: int = Query(...),
    quantity: int = Query(1, ge=1),
    ctx: RequestContext = Depends(module_context),
):
    return _ledger(ctx).assign_to_order(item_id, order_id, quantity).to_dict()


@router.post("/return-to-operator", response_model=ReturnToOperatorResponse)
@role_required(STOCK_ROLES)
async def return_to_operator(data: ReturnToOperatorRequest, ctx: RequestContext = Depends(module_context)):
    """
    Hand items back to the operator. Source entries that were already
    returned are listed in `skipped_ids`, so repeating a call is safe.
    """
    return _ledger(ctx).return_to_operator(data.history_ids)


# --- Technician hand-over ---
@router.post("/handover")
@role_required(["technician"])
async def request_handover(data: TechnicianTransferRequest, ctx: RequestContext = Depends(module_context)):
    """
    Offer items to another technician. They stay with you until accepted.
    """
    items = _ledger(ctx).request_transfer(ctx.user.id, data.to_technician_id, data.items)
    return [i.to_dict() for i in items]


@router.get("/handover/incoming")
@role_required(["technician"])
async def incoming_handovers(ctx: RequestContext = Depends(module_context)):
    return [i.to_dict() for i in _ledger(ctx).incoming_transfers(ctx.user.id)]


@router.post("/handover/confirm")
@role_required(["technician"])
async def confirm_handover(data: TransferDecision, ctx: RequestContext = Depends(module_context)):
    return [i.to_dict() for i in _ledger(ctx).confirm_transfer(ctx.user.id, data.item_ids)]


@router.post("/handover/reject")
@role_required(["technician"])
async def reject_handover(data: TransferDecision, ctx: RequestContext = Depends(module_context)):
    return [i.to_dict() for i in _ledger(ctx).reject_transfer(ctx.user.id, data.item_ids)]


@router.post("/handover/cancel")
@role_required(["technician"])
async def cancel_handover(data: TransferDecision, ctx: RequestContext = Depends(module_context)):
    return [i.to_dict() for i in _ledger(ctx).cancel_transfer(ctx.user.id, data.item_ids)]
