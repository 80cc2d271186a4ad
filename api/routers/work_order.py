from datetime import date
from typing import List, Optional

from fastapi import APIRouter, Depends, Query, status

from db.models import Order, OrderStatus
from api.schemas import (
    CompletionResponse,
    OrderAssign,
    OrderCompletion,
    OrderCreate,
    OrderRetry,
)
from api.services.access import RequestContext, module_context, role_required
from api.services.errors import ForbiddenError
from api.services.orders import OrderLifecycle

router = APIRouter(prefix="/{module}/order", tags=["order"])

ALL_ROLES = ["admin", "coordinator", "warehouseman", "technician"]
DISPATCH_ROLES = ["admin", "coordinator"]


def _lifecycle(ctx: RequestContext) -> OrderLifecycle:
    return OrderLifecycle(ctx.db, ctx.module, ctx.user)


def _check_visible(order: Order, ctx: RequestContext) -> Order:
    if ctx.capabilities.is_technician and order.technician_id != ctx.user.id:
        raise ForbiddenError("order is not assigned to you", {"order_id": order.id})
    return order


@router.post("", status_code=status.HTTP_201_CREATED)
@role_required(DISPATCH_ROLES)
async def create_order(data: OrderCreate, ctx: RequestContext = Depends(module_context)):
    """
    Create an order in the module.

    Reusing the number of a not completed order creates its next attempt; a
    completed or still open order with the same number is rejected.
    """
    return _lifecycle(ctx).create_order(data).to_dict()


@router.get("")
@role_required(ALL_ROLES)
async def list_orders(
    order_status: Optional[OrderStatus] = Query(None, alias="status"),
    technician_id: Optional[int] = Query(None),
    date_from: Optional[date] = Query(None),
    date_to: Optional[date] = Query(None),
    search: Optional[str] = Query(None, description="Order number or address"),
    ctx: RequestContext = Depends(module_context),
):
    """
    List orders; technicians only see orders assigned to them.
    """
    if ctx.capabilities.is_technician:
        technician_id = ctx.user.id
    orders = _lifecycle(ctx).list_orders(
        status=order_status,
        technician_id=technician_id,
        date_from=date_from,
        date_to=date_to,
        search=search,
    )
    return [o.to_dict() for o in orders]


@router.get("/summary/{technician_id}")
@role_required(ALL_ROLES)
async def technician_month_summary(
    technician_id: int,
    year: int = Query(..., ge=2000, le=2100),
    month: int = Query(..., ge=1, le=12),
    ctx: RequestContext = Depends(module_context),
):
    """
    Monthly counts, revenue and working days of a technician against their goals.
    """
    if ctx.capabilities.is_technician and technician_id != ctx.user.id:
        raise ForbiddenError("technicians can only see their own summary")
    return _lifecycle(ctx).technician_month_summary(technician_id, year, month)


@router.get("/{order_id}")
@role_required(ALL_ROLES)
async def get_order(order_id: int, ctx: RequestContext = Depends(module_context)):
    order = _check_visible(_lifecycle(ctx).get_order(order_id), ctx)
    data = order.to_dict()
    data["settlement"] = [{"code": e.code, "quantity": e.quantity} for e in order.settlement_entries]
    data["materials"] = [
        {"material_definition_id": m.material_definition_id, "name": m.material.name, "quantity": m.quantity, "unit": m.unit}
        for m in order.materials
    ]
    data["equipment"] = [e.item.to_dict() for e in order.equipment]
    return data


@router.get("/{order_id}/timeline")
@role_required(ALL_ROLES)
async def order_timeline(order_id: int, ctx: RequestContext = Depends(module_context)):
    """
    Status history of every attempt of the order, first attempt first.
    """
    lifecycle = _lifecycle(ctx)
    _check_visible(lifecycle.get_order(order_id), ctx)
    return lifecycle.timeline(order_id)


@router.put("/{order_id}/assign")
@role_required(DISPATCH_ROLES)
async def assign_order(order_id: int, data: OrderAssign, ctx: RequestContext = Depends(module_context)):
    """
    Assign a technician, or pass `technician_id: null` to unassign.
    """
    return _lifecycle(ctx).assign_technician(order_id, data.technician_id).to_dict()


@router.post("/{order_id}/complete", response_model=CompletionResponse)
@role_required(["admin", "coordinator", "technician"])
async def complete_order(order_id: int, data: OrderCompletion, ctx: RequestContext = Depends(module_context)):
    """
    Close an order as COMPLETED or NOT_COMPLETED.

    A completed order settles its work codes and consumes the materials and
    devices reported; nothing is written when any part fails.
    """
    order, warnings = _lifecycle(ctx).complete_order(order_id, data)
    return CompletionResponse(order=order.to_dict(), warnings=warnings)


@router.post("/{order_id}/retry", status_code=status.HTTP_201_CREATED)
@role_required(DISPATCH_ROLES)
async def retry_order(order_id: int, data: OrderRetry, ctx: RequestContext = Depends(module_context)):
    """
    Schedule the next attempt of a not completed order.
    """
    return _lifecycle(ctx).create_retry(order_id, data).to_dict()


@router.get("/{order_id}/attempts")
@role_required(ALL_ROLES)
async def order_attempts(order_id: int, ctx: RequestContext = Depends(module_context)) -> List[dict]:
    lifecycle = _lifecycle(ctx)
    _check_visible(lifecycle.get_order(order_id), ctx)
    return [o.to_dict() for o in lifecycle.attempt_chain(order_id)]


@router.delete("/{order_id}")
@role_required(DISPATCH_ROLES)
async def delete_order(order_id: int, ctx: RequestContext = Depends(module_context)):
    _lifecycle(ctx).delete_order(order_id)
    return {"message": "Order deleted", "order_id": order_id}
