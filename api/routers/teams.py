from fastapi import APIRouter, Depends, Query, status

from api.schemas import TeamCreate, TeamUpdate
from api.services.access import RequestContext, module_context, role_required
from api.services.errors import BadRequestError
from api.services.teams import TeamService

router = APIRouter(prefix="/{module}/teams", tags=["teams"])


def _teams(ctx: RequestContext) -> TeamService:
    if not ctx.module.teams_enabled:
        raise BadRequestError("teams are not used in this module", {"module": ctx.module.code})
    return TeamService(ctx.db, ctx.module, ctx.user)


@router.get("")
@role_required(["admin", "coordinator", "warehouseman", "technician"])
async def list_teams(active_only: bool = Query(False), ctx: RequestContext = Depends(module_context)):
    return [t.to_dict() for t in _teams(ctx).list_teams(active_only=active_only)]


@router.get("/suggest/{technician_id}")
@role_required(["admin", "coordinator", "technician"])
async def suggest_partner(technician_id: int, ctx: RequestContext = Depends(module_context)):
    """
    Partner of the technician in their first active team, used to prefill order assignment.
    """
    return {"technician_id": technician_id, "partner_id": _teams(ctx).suggest_partner(technician_id)}


@router.post("", status_code=status.HTTP_201_CREATED)
@role_required(["admin", "coordinator"])
async def create_team(data: TeamCreate, ctx: RequestContext = Depends(module_context)):
    return _teams(ctx).create_team(data).to_dict()


@router.put("/{team_id}")
@role_required(["admin", "coordinator"])
async def update_team(team_id: int, data: TeamUpdate, ctx: RequestContext = Depends(module_context)):
    return _teams(ctx).update_team(team_id, data).to_dict()


@router.delete("/{team_id}")
@role_required(["admin", "coordinator"])
async def delete_team(team_id: int, ctx: RequestContext = Depends(module_context)):
    _teams(ctx).delete_team(team_id)
    return {"message": "Team deleted", "team_id": team_id}
