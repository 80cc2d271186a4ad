from typing import List
import logging

from fastapi import APIRouter, Body, Depends, status
from fastapi.security import HTTPAuthorizationCredentials
from sqlalchemy import select
from sqlalchemy.orm import Session

from auth.auth import get_current_user, security
from db.database import get_db
from db.models import Location, User
from api.schemas import (
    CapabilitiesResponse,
    LocationResponse,
    LoginRequest,
    TechnicianSettingsResponse,
    TechnicianSettingsUpdate,
    TokenResponse,
    UserResponse,
)
from api.services import users as user_service
from api.services.access import RequestContext, get_request_context, role_required
from api.services.users import UserService

logger = logging.getLogger(__name__)

users_router = APIRouter(prefix="/core/user", tags=["core.user"])

ALL_ROLES = ["admin", "coordinator", "warehouseman", "technician"]


def _settings_response(settings) -> TechnicianSettingsResponse:
    return TechnicianSettingsResponse(
        user_id=settings.user_id,
        working_days_goal=settings.working_days_goal,
        revenue_goal=float(settings.revenue_goal or 0),
    )


# --- Authentication ---
@users_router.post(
    "/login",
    summary="User login",
    response_model=TokenResponse,
    response_description="Access token and user info",
)
async def login(
    login_data: LoginRequest = Body(
        ..., examples=[{"email": "user@example.com", "password": "yourpassword"}]
    ),
    db: Session = Depends(get_db),
):
    """
    Authenticate with email and password and receive a bearer token.
    Inactive, suspended and deleted accounts cannot log in.
    """
    user, token = await user_service.login(db, login_data.email, login_data.password)
    return TokenResponse(access_token=token.access_token, user=UserResponse(**user.to_dict()))


@users_router.post("/logout", status_code=status.HTTP_200_OK)
async def logout(
    current_user: User = Depends(get_current_user),
    credentials: HTTPAuthorizationCredentials = Depends(security),
    db: Session = Depends(get_db),
):
    """
    End the current session by revoking its access token.
    """
    user_service.logout(db, credentials.credentials)
    logger.info(f"User {current_user.id} logged out")
    return {"message": "Successfully logged out"}


# --- Session ---
@users_router.get("/me", response_model=UserResponse)
async def me(current_user: User = Depends(get_current_user)):
    """
    Profile of the authenticated user.
    """
    return UserResponse(**current_user.to_dict())


@users_router.get("/capabilities", response_model=CapabilitiesResponse)
async def capabilities(ctx: RequestContext = Depends(get_request_context)):
    """
    Role flags and active location resolved for this request.
    Pass `location_id` (query) or `X-Location-Id` (header) to pick a location.
    """
    caps = ctx.capabilities
    return CapabilitiesResponse(
        role=caps.role,
        is_admin=caps.is_admin,
        is_coordinator=caps.is_coordinator,
        is_warehouseman=caps.is_warehouseman,
        is_technician=caps.is_technician,
        active_location_id=caps.active_location_id,
        module_codes=list(caps.module_codes),
    )


@users_router.get("/locations", response_model=List[LocationResponse])
async def locations(ctx: RequestContext = Depends(get_request_context)):
    """
    Locations the user can work in; admins see all of them.
    """
    if ctx.capabilities.is_admin:
        return list(ctx.db.execute(select(Location).order_by(Location.id)).scalars().all())
    return ctx.user.locations


# --- Technician settings ---
@users_router.get("/settings/{user_id}", response_model=TechnicianSettingsResponse)
@role_required(ALL_ROLES)
async def get_technician_settings(user_id: int, ctx: RequestContext = Depends(get_request_context)):
    """
    Monthly goals of a technician. Technicians read their own, admins anyone's.
    """
    return _settings_response(UserService(ctx.db, ctx.user).get_settings(user_id))


@users_router.put("/settings/{user_id}", response_model=TechnicianSettingsResponse)
@role_required(ALL_ROLES)
async def update_technician_settings(
    user_id: int,
    data: TechnicianSettingsUpdate,
    ctx: RequestContext = Depends(get_request_context),
):
    """
    Update the working days and revenue goals of a technician.
    """
    return _settings_response(UserService(ctx.db, ctx.user).update_settings(user_id, data))
