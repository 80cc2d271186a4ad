import pytest

from db.models import UserRole
from api.services.access import resolve_capabilities
from api.services.errors import ForbiddenError, LocationRequiredError


def test_admin_picks_any_location(admin):
    caps = resolve_capabilities(admin, "WH-2")
    assert caps.is_admin
    assert caps.active_location_id == "WH-2"
    assert caps.has_module("OPL")
    assert resolve_capabilities(admin).active_location_id is None


def test_coordinator_limited_to_assigned_locations(coordinator):
    assert resolve_capabilities(coordinator, "WH-1").active_location_id == "WH-1"
    assert resolve_capabilities(coordinator).active_location_id is None
    with pytest.raises(ForbiddenError):
        resolve_capabilities(coordinator, "WH-2")


def test_warehouseman_defaults_to_first_location(warehouseman):
    assert resolve_capabilities(warehouseman).active_location_id == "WH-1"
    assert resolve_capabilities(warehouseman, "WH-2").active_location_id == "WH-2"


def test_warehouseman_without_location_is_forbidden(make_user):
    user = make_user(UserRole.WAREHOUSEMAN)
    with pytest.raises(ForbiddenError) as exc:
        resolve_capabilities(user)
    assert exc.value.code == "FORBIDDEN"


def test_technician_has_no_location(technician):
    caps = resolve_capabilities(technician, "WH-1")
    assert caps.is_technician
    assert caps.active_location_id is None
    with pytest.raises(LocationRequiredError):
        caps.require_location()


def test_module_access_follows_active_profiles(make_user):
    user = make_user(UserRole.TECHNICIAN, modules=("VECTRA",))
    caps = resolve_capabilities(user)
    assert caps.has_module("VECTRA")
    assert not caps.has_module("OPL")
