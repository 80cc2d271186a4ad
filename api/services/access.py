"""Identity and role resolution.

A request is turned into an explicit `RequestContext` (session, principal,
resolved capabilities and the module it targets). Services receive the
context as an argument; nothing is read from globals.
"""
from dataclasses import dataclass
from functools import wraps
from typing import Optional, Tuple
import logging

from fastapi import Depends, Header, Path, Query
from sqlalchemy.orm import Session

from auth.auth import get_current_user
from db.database import get_db
from db.models import User, UserRole
from api.services.errors import ForbiddenError, LocationRequiredError
from api.services.modules import ModuleDescriptor, get_module

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Capabilities:
    role: UserRole
    is_admin: bool
    is_coordinator: bool
    is_warehouseman: bool
    is_technician: bool
    active_location_id: Optional[str]
    module_codes: Tuple[str, ...] = ()

    def require_location(self) -> str:
        if not self.active_location_id:
            raise LocationRequiredError()
        return self.active_location_id

    def has_module(self, code: str) -> bool:
        return self.is_admin or code in self.module_codes


def resolve_capabilities(user: User, requested_location_id: Optional[str] = None) -> Capabilities:
    """Map a principal to its role flags and active location.

    Admins and coordinators pick the location per request (coordinators only
    among their own locations), warehousemen fall back to their first assigned
    location and technicians never have one.
    """
    role = user.role
    assigned = user.location_ids
    active_location_id = None

    if role == UserRole.ADMIN:
        active_location_id = requested_location_id
    elif role == UserRole.COORDINATOR:
        if requested_location_id and requested_location_id not in assigned:
            raise ForbiddenError("location not assigned", {"location_id": requested_location_id})
        active_location_id = requested_location_id
    elif role == UserRole.WAREHOUSEMAN:
        if not assigned:
            raise ForbiddenError("no assigned location")
        if requested_location_id:
            if requested_location_id not in assigned:
                raise ForbiddenError("location not assigned", {"location_id": requested_location_id})
            active_location_id = requested_location_id
        else:
            active_location_id = assigned[0]

    module_codes = tuple(p.module_code for p in user.module_profiles if p.active)
    return Capabilities(
        role=role,
        is_admin=role == UserRole.ADMIN,
        is_coordinator=role == UserRole.COORDINATOR,
        is_warehouseman=role == UserRole.WAREHOUSEMAN,
        is_technician=role == UserRole.TECHNICIAN,
        active_location_id=active_location_id,
        module_codes=module_codes,
    )


@dataclass
class RequestContext:
    db: Session
    user: User
    capabilities: Capabilities
    module: Optional[ModuleDescriptor] = None

    @property
    def module_code(self) -> str:
        return self.module.code


def get_requested_location(
    location_id: Optional[str] = Query(None),
    x_location_id: Optional[str] = Header(None),
) -> Optional[str]:
    return location_id or x_location_id


async def get_request_context(
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
    location_id: Optional[str] = Depends(get_requested_location),
) -> RequestContext:
    return RequestContext(db=db, user=user, capabilities=resolve_capabilities(user, location_id))


async def module_context(
    module: str = Path(..., description="Module code, e.g. vectra or opl"),
    ctx: RequestContext = Depends(get_request_context),
) -> RequestContext:
    """Context for `/{module}/...` routes; the user needs an active profile in that module."""
    descriptor = get_module(module)
    if not ctx.capabilities.has_module(descriptor.code):
        logger.info(f"User {ctx.user.id} denied access to module {descriptor.code}")
        raise ForbiddenError("module access denied", {"module": descriptor.code})
    ctx.module = descriptor
    return ctx


async def hr_context(ctx: RequestContext = Depends(get_request_context)) -> RequestContext:
    if not ctx.capabilities.has_module("HR"):
        raise ForbiddenError("module access denied", {"module": "HR"})
    return ctx


def role_required(required_roles):
    """Endpoint decorator; the endpoint must take the request context as `ctx`."""
    allowed_roles = {UserRole(r.upper()) for r in required_roles}

    def decorator(func):
        @wraps(func)
        async def wrapper(*args, ctx: RequestContext, **kwargs):
            if ctx.capabilities.role not in allowed_roles:
                raise ForbiddenError(
                    "role not allowed",
                    {"required": sorted(r.value for r in allowed_roles)},
                )
            return await func(*args, ctx=ctx, **kwargs)
        return wrapper
    return decorator
