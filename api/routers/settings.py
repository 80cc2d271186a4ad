from fastapi import APIRouter, Depends, status

from api.schemas import (
    DeviceDefinitionCreate,
    DeviceDefinitionUpdate,
    MaterialDefinitionCreate,
    MaterialDefinitionUpdate,
    RateDefinitionCreate,
    RateDefinitionUpdate,
)
from api.services.access import RequestContext, module_context, role_required
from api.services.definitions import DefinitionService

router = APIRouter(prefix="/{module}/settings", tags=["settings"])

ALL_ROLES = ["admin", "coordinator", "warehouseman", "technician"]
CATALOGUE_ROLES = ["admin", "coordinator"]


def _definitions(ctx: RequestContext) -> DefinitionService:
    return DefinitionService(ctx.db, ctx.module, ctx.user)


# --- Device definitions ---
@router.get("/devices")
@role_required(ALL_ROLES)
async def list_device_definitions(ctx: RequestContext = Depends(module_context)):
    return [d.to_dict() for d in _definitions(ctx).list_device_definitions()]


@router.post("/devices", status_code=status.HTTP_201_CREATED)
@role_required(CATALOGUE_ROLES)
async def create_device_definition(data: DeviceDefinitionCreate, ctx: RequestContext = Depends(module_context)):
    """
    Register a device model; devices can only be received when their category and name match one.
    """
    return _definitions(ctx).create_device_definition(data).to_dict()


@router.put("/devices/{definition_id}")
@role_required(CATALOGUE_ROLES)
async def update_device_definition(
    definition_id: int,
    data: DeviceDefinitionUpdate,
    ctx: RequestContext = Depends(module_context),
):
    """
    Edit a device model. Devices already in stock are updated with it.
    """
    return _definitions(ctx).update_device_definition(definition_id, data).to_dict()


@router.delete("/devices/{definition_id}")
@role_required(CATALOGUE_ROLES)
async def delete_device_definition(definition_id: int, ctx: RequestContext = Depends(module_context)):
    _definitions(ctx).delete_device_definition(definition_id)
    return {"message": "Device definition deleted", "definition_id": definition_id}


# --- Material definitions ---
@router.get("/materials")
@role_required(ALL_ROLES)
async def list_material_definitions(ctx: RequestContext = Depends(module_context)):
    return [m.to_dict() for m in _definitions(ctx).list_material_definitions()]


@router.post("/materials", status_code=status.HTTP_201_CREATED)
@role_required(CATALOGUE_ROLES)
async def create_material_definition(data: MaterialDefinitionCreate, ctx: RequestContext = Depends(module_context)):
    return _definitions(ctx).create_material_definition(data).to_dict()


@router.put("/materials/{definition_id}")
@role_required(CATALOGUE_ROLES)
async def update_material_definition(
    definition_id: int,
    data: MaterialDefinitionUpdate,
    ctx: RequestContext = Depends(module_context),
):
    return _definitions(ctx).update_material_definition(definition_id, data).to_dict()


@router.delete("/materials/{definition_id}")
@role_required(CATALOGUE_ROLES)
async def delete_material_definition(definition_id: int, ctx: RequestContext = Depends(module_context)):
    """
    Remove an unused material. Materials with stock rows or order usage are kept.
    """
    _definitions(ctx).delete_material_definition(definition_id)
    return {"message": "Material definition deleted", "definition_id": definition_id}


# --- Rates ---
@router.get("/rates")
@role_required(ALL_ROLES)
async def list_rates(ctx: RequestContext = Depends(module_context)):
    return [r.to_dict() for r in _definitions(ctx).list_rates()]


@router.post("/rates", status_code=status.HTTP_201_CREATED)
@role_required(["admin"])
async def create_rate(data: RateDefinitionCreate, ctx: RequestContext = Depends(module_context)):
    """
    Add the amount paid for a work code. Codes are stored upper-case without spaces.
    """
    return _definitions(ctx).create_rate(data).to_dict()


@router.put("/rates/{rate_id}")
@role_required(["admin"])
async def update_rate(rate_id: int, data: RateDefinitionUpdate, ctx: RequestContext = Depends(module_context)):
    """
    Change the amount of a rate, e.g. one auto-created with amount 0 at order completion.
    """
    return _definitions(ctx).update_rate(rate_id, data).to_dict()


@router.delete("/rates/{rate_id}")
@role_required(["admin"])
async def delete_rate(rate_id: int, ctx: RequestContext = Depends(module_context)):
    _definitions(ctx).delete_rate(rate_id)
    return {"message": "Rate deleted", "rate_id": rate_id}
