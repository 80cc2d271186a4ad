import asyncio

import pytest

from auth.auth import verify_password
from db.models import Token, UserRole, UserStatus
from api.schemas import TechnicianSettingsUpdate, UserCreate, UserUpdate
from api.services import users as user_service
from api.services.errors import (
    BadRequestError,
    ConflictError,
    ForbiddenError,
    UnauthorizedError,
)
from api.services.users import UserService, deactivate_module_access, sync_module_profiles

PASSWORD = "Secret123!"


def _profiles(user):
    return {p.module_code: p.active for p in user.module_profiles}


def test_create_user_with_temporary_password(db, admin):
    service = UserService(db, admin)
    user, temp_password = service.create_user(UserCreate(
        email="New.Tech@Example.com",
        name="New Tech",
        role=UserRole.TECHNICIAN,
        module_codes=["vectra"],
        location_ids=["WH-1"],
    ))

    assert user.email == "new.tech@example.com"
    assert verify_password(temp_password, user.password_hash)
    assert _profiles(user) == {"VECTRA": True}
    assert user.settings is not None
    assert user.location_ids == ["WH-1"]
    with pytest.raises(ConflictError):
        service.create_user(UserCreate(email="new.tech@example.com", name="Again"))


def test_unknown_module_rejected(db, admin):
    with pytest.raises(BadRequestError):
        UserService(db, admin).create_user(UserCreate(email="x@example.com", name="Xavier", module_codes=["NOPE"]))


def test_sync_module_profiles_keeps_history(db, technician):
    sync_module_profiles(db, technician, ["VECTRA"])
    db.commit()
    opl = next(p for p in technician.module_profiles if p.module_code == "OPL")
    assert opl.active is False
    assert opl.deactivated_at is not None

    sync_module_profiles(db, technician, ["VECTRA", "OPL"])
    db.commit()
    assert _profiles(technician) == {"VECTRA": True, "OPL": True}
    assert len(technician.module_profiles) == 2


def test_deactivate_module_access_is_idempotent(db, technician):
    first = deactivate_module_access(db, technician.id, "OPL")
    stamp = first.deactivated_at

    second = deactivate_module_access(db, technician.id, "OPL")

    assert second.active is False
    assert second.deactivated_at == stamp
    assert "OPL" not in technician.module_codes
    assert _profiles(technician) == {"VECTRA": True, "OPL": False}


def test_update_user_moves_modules(db, admin, technician):
    UserService(db, admin).update_user(technician.id, UserUpdate(module_codes=["OPL"], name="Tom T."))
    assert technician.name == "Tom T."
    assert _profiles(technician) == {"VECTRA": False, "OPL": True}


def test_status_change_revokes_sessions(db, admin, technician, auth_headers):
    auth_headers(technician)
    UserService(db, admin).set_status(technician.id, UserStatus.SUSPENDED)

    tokens = db.query(Token).filter(Token.user_id == technician.id).all()
    assert tokens and all(t.revoked for t in tokens)
    with pytest.raises(BadRequestError):
        UserService(db, admin).set_status(admin.id, UserStatus.INACTIVE)


def test_login(db, technician):
    user, token = asyncio.run(user_service.login(db, technician.email.upper(), PASSWORD))
    assert user.id == technician.id
    assert token.access_token
    assert technician.last_login is not None

    with pytest.raises(UnauthorizedError):
        asyncio.run(user_service.login(db, technician.email, "wrong"))


def test_inactive_user_cannot_login(db, make_user):
    user = make_user(UserRole.TECHNICIAN, status=UserStatus.SUSPENDED)
    with pytest.raises(UnauthorizedError):
        asyncio.run(user_service.login(db, user.email, PASSWORD))


class TestTechnicianSettings:
    def test_technician_updates_own_goals(self, db, technician):
        settings = UserService(db, technician).update_settings(
            technician.id, TechnicianSettingsUpdate(working_days_goal=21, revenue_goal=8000)
        )
        assert settings.working_days_goal == 21
        assert UserService(db, technician).get_settings(technician.id).revenue_goal == 8000

    def test_admin_can_read_anyone(self, db, admin, technician):
        assert UserService(db, admin).get_settings(technician.id).working_days_goal == 0

    def test_others_are_forbidden(self, db, coordinator, technician, technician2):
        with pytest.raises(ForbiddenError):
            UserService(db, coordinator).get_settings(technician.id)
        with pytest.raises(ForbiddenError):
            UserService(db, technician2).update_settings(
                technician.id, TechnicianSettingsUpdate(working_days_goal=1, revenue_goal=1)
            )

    def test_only_technicians_have_settings(self, db, admin, coordinator):
        with pytest.raises(BadRequestError):
            UserService(db, admin).get_settings(coordinator.id)


def test_credentials_email_is_best_effort(db, admin, monkeypatch):
    monkeypatch.setenv("MAIL_PROVIDER", "sendgrid")
    monkeypatch.delenv("SENDGRID_API_KEY", raising=False)
    service = UserService(db, admin)
    user, temp_password = service.create_user(UserCreate(email="mail@example.com", name="Mail User"))

    assert asyncio.run(service.send_credentials(user, temp_password)) is False
    assert user.id is not None
