from typing import List, Optional
import logging

from fastapi import APIRouter, Depends, Query, status

from db.models import UserRole, UserStatus
from api.schemas import (
    UserCreate,
    UserCreatedResponse,
    UserResponse,
    UserStatusUpdate,
    UserUpdate,
)
from api.services.access import RequestContext, hr_context, role_required
from api.services.modules import ALL_MODULE_CODES
from api.services.errors import BadRequestError
from api.services.users import UserService, deactivate_module_access

admin_router = APIRouter(prefix="/hr/user", tags=["hr.user"])

logger = logging.getLogger(__name__)


# --- User Management ---
@admin_router.post("", response_model=UserCreatedResponse, status_code=status.HTTP_201_CREATED)
@role_required(["admin"])
async def create_user(data: UserCreate, ctx: RequestContext = Depends(hr_context)):
    """
    Create an account with a temporary password and email the credentials.
    The account is created even when the email cannot be sent; check `email_sent`.
    """
    service = UserService(ctx.db, ctx.user)
    user, temp_password = service.create_user(data)
    email_sent = await service.send_credentials(user, temp_password)
    return UserCreatedResponse(user=UserResponse(**user.to_dict()), email_sent=email_sent)


@admin_router.get("", response_model=List[UserResponse])
@role_required(["admin", "coordinator"])
async def list_users(
    role: Optional[UserRole] = Query(None),
    user_status: Optional[UserStatus] = Query(None, alias="status"),
    module: Optional[str] = Query(None, description="Only users with an active profile in this module"),
    search: Optional[str] = Query(None),
    ctx: RequestContext = Depends(hr_context),
):
    users = UserService(ctx.db, ctx.user).list_users(
        role=role,
        status=user_status,
        module_code=module.upper() if module else None,
        search=search,
    )
    return [UserResponse(**u.to_dict()) for u in users]


@admin_router.get("/{user_id}", response_model=UserResponse)
@role_required(["admin", "coordinator"])
async def get_user(user_id: int, ctx: RequestContext = Depends(hr_context)):
    return UserResponse(**UserService(ctx.db, ctx.user).get_user(user_id).to_dict())


@admin_router.put("/{user_id}", response_model=UserResponse)
@role_required(["admin"])
async def update_user(user_id: int, data: UserUpdate, ctx: RequestContext = Depends(hr_context)):
    """
    Update profile fields, role, locations and module assignment.
    Module profiles follow `module_codes`: missing ones are created, dropped ones deactivated.
    """
    user = UserService(ctx.db, ctx.user).update_user(user_id, data)
    return UserResponse(**user.to_dict())


@admin_router.put("/{user_id}/status", response_model=UserResponse)
@role_required(["admin"])
async def set_user_status(user_id: int, data: UserStatusUpdate, ctx: RequestContext = Depends(hr_context)):
    """
    Activate, suspend, deactivate or delete an account. Any status other than
    ACTIVE revokes the user's open sessions.
    """
    user = UserService(ctx.db, ctx.user).set_status(user_id, data.status)
    return UserResponse(**user.to_dict())


@admin_router.post("/{user_id}/modules/{module_code}/deactivate")
@role_required(["admin"])
async def deactivate_module(user_id: int, module_code: str, ctx: RequestContext = Depends(hr_context)):
    """
    Switch off a user's access to one module. Calling it again is a no-op.
    """
    code = module_code.upper()
    if code not in ALL_MODULE_CODES:
        raise BadRequestError("unknown module", {"module": module_code})
    profile = deactivate_module_access(ctx.db, user_id, code)
    return {
        "user_id": user_id,
        "module_code": code,
        "active": bool(profile.active) if profile else False,
        "deactivated_at": profile.deactivated_at if profile else None,
    }
