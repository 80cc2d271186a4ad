from datetime import datetime
from typing import Iterable, List, Optional, Tuple
import logging

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from auth.auth import hash_password, issue_token, verify_password
from db.database import transaction
from db.models import (
    Location,
    Module,
    ModuleProfile,
    TechnicianSettings,
    Token,
    User,
    UserRole,
    UserStatus,
)
from api.schemas import TechnicianSettingsUpdate, UserCreate, UserUpdate
from api.services.errors import (
    BadRequestError,
    ConflictError,
    ForbiddenError,
    NotFoundError,
    UnauthorizedError,
)
from api.utils.email import EmailConfigurationError, send_credentials_email
from api.utils.util import generate_secure_password, normalize_search

logger = logging.getLogger(__name__)


async def get_user_by_email(db: Session, email: str) -> Optional[User]:
    return db.execute(select(User).where(User.email.ilike(email.strip()))).scalar_one_or_none()


async def login(db: Session, email: str, password: str) -> Tuple[User, Token]:
    user = await get_user_by_email(db, email)
    if user is None or not verify_password(password, user.password_hash):
        logger.info(f"Failed login for {email}")
        raise UnauthorizedError("invalid credentials")
    if user.status != UserStatus.ACTIVE:
        raise UnauthorizedError("account is not active")
    with transaction(db):
        token = issue_token(db, user)
    logger.info(f"User {user.id} logged in")
    return user, token


def logout(db: Session, access_token: str) -> None:
    with transaction(db):
        db.execute(update(Token).where(Token.access_token == access_token).values(revoked=True))


def sync_module_profiles(db: Session, user: User, module_codes: Iterable[str]) -> None:
    """Make the user's active module profiles match `module_codes`.

    Assigned modules get an active profile (created or re-activated); every
    other profile is deactivated, keeping the row and its history.
    """
    wanted = set(module_codes)
    now = datetime.utcnow()
    profiles = {p.module_code: p for p in user.module_profiles}
    for code in wanted:
        profile = profiles.get(code)
        if profile is None:
            user.module_profiles.append(ModuleProfile(module_code=code, active=True, activated_at=now))
        elif not profile.active:
            profile.active = True
            profile.activated_at = now
            profile.deactivated_at = None
    for code, profile in profiles.items():
        if code not in wanted and profile.active:
            profile.active = False
            profile.deactivated_at = now


def deactivate_module_access(db: Session, user_id: int, module_code: str) -> Optional[ModuleProfile]:
    """Switch off a user's profile for one module; already inactive profiles are left untouched."""
    with transaction(db):
        user = db.get(User, user_id)
        if user is None:
            raise NotFoundError("User", user_id)
        user.modules = [m for m in user.modules if m.code != module_code]
        profile = next((p for p in user.module_profiles if p.module_code == module_code), None)
        if profile is not None and profile.active:
            profile.active = False
            profile.deactivated_at = datetime.utcnow()
            logger.info(f"Module {module_code} deactivated for user {user_id}")
        return profile


class UserService:
    def __init__(self, db: Session, actor: User):
        self.db = db
        self.actor = actor

    def get_user(self, user_id: int) -> User:
        user = self.db.get(User, user_id)
        if user is None:
            raise NotFoundError("User", user_id)
        return user

    def list_users(
        self,
        role: Optional[UserRole] = None,
        status: Optional[UserStatus] = None,
        module_code: Optional[str] = None,
        search: Optional[str] = None,
    ) -> List[User]:
        stmt = select(User).order_by(User.name)
        if role is not None:
            stmt = stmt.where(User.role == role)
        if status is not None:
            stmt = stmt.where(User.status == status)
        users = list(self.db.execute(stmt).scalars().all())
        if module_code:
            users = [u for u in users if any(p.active and p.module_code == module_code for p in u.module_profiles)]
        if search:
            needle = normalize_search(search)
            users = [u for u in users if needle in normalize_search(f"{u.name} {u.email} {u.identifier or ''}")]
        return users

    def _modules(self, codes: Iterable[str]) -> List[Module]:
        modules = []
        for code in dict.fromkeys(codes):
            module = self.db.get(Module, code)
            if module is None:
                raise BadRequestError("unknown module", {"module": code})
            modules.append(module)
        return modules

    def _locations(self, ids: Iterable[str]) -> List[Location]:
        locations = []
        for location_id in dict.fromkeys(ids):
            location = self.db.get(Location, location_id)
            if location is None:
                raise NotFoundError("Location", location_id)
            locations.append(location)
        return locations

    def _ensure_email_free(self, email: str, exclude_id: Optional[int] = None) -> None:
        existing = self.db.execute(select(User).where(User.email.ilike(email.strip()))).scalar_one_or_none()
        if existing is not None and existing.id != exclude_id:
            raise ConflictError("email already in use", {"email": email})

    def create_user(self, data: UserCreate) -> Tuple[User, str]:
        """Create an account with a generated temporary password; returns the user and that password."""
        with transaction(self.db):
            self._ensure_email_free(data.email)
            temp_password = generate_secure_password()
            user = User(
                email=data.email.lower(),
                name=data.name.strip(),
                phone_number=data.phone_number,
                identifier=data.identifier,
                role=data.role,
                status=UserStatus.ACTIVE,
                password_hash=hash_password(temp_password),
            )
            user.modules = self._modules(data.module_codes)
            user.locations = self._locations(data.location_ids)
            self.db.add(user)
            sync_module_profiles(self.db, user, data.module_codes)
            if data.role == UserRole.TECHNICIAN:
                user.settings = TechnicianSettings(working_days_goal=0, revenue_goal=0)
            self.db.flush()
            logger.info(f"User {user.id} ({user.email}) created by {self.actor.id}")
        return user, temp_password

    async def send_credentials(self, user: User, temp_password: str) -> bool:
        """Best effort: a failed or unconfigured mail transport never fails the caller."""
        try:
            return await send_credentials_email(user.email, user.name, temp_password)
        except EmailConfigurationError as e:
            logger.error(f"Credentials email to {user.email} not sent: {e}")
            return False

    def update_user(self, user_id: int, data: UserUpdate) -> User:
        with transaction(self.db):
            user = self.get_user(user_id)
            if data.email is not None:
                self._ensure_email_free(data.email, exclude_id=user.id)
                user.email = data.email.lower()
            for field in ("name", "phone_number", "identifier", "role"):
                value = getattr(data, field)
                if value is not None:
                    setattr(user, field, value)
            if data.module_codes is not None:
                user.modules = self._modules(data.module_codes)
                sync_module_profiles(self.db, user, data.module_codes)
            if data.location_ids is not None:
                user.locations = self._locations(data.location_ids)
            if user.role == UserRole.TECHNICIAN and user.settings is None:
                user.settings = TechnicianSettings(working_days_goal=0, revenue_goal=0)
            logger.info(f"User {user.id} updated by {self.actor.id}")
            return user

    def set_status(self, user_id: int, status: UserStatus) -> User:
        with transaction(self.db):
            user = self.get_user(user_id)
            if user.id == self.actor.id:
                raise BadRequestError("cannot change your own status")
            user.status = status
            if status != UserStatus.ACTIVE:
                self.db.execute(update(Token).where(Token.user_id == user.id).values(revoked=True))
            logger.info(f"User {user.id} status -> {status.value} by {self.actor.id}")
            return user

    def _settings_target(self, user_id: int) -> User:
        if self.actor.id != user_id and self.actor.role != UserRole.ADMIN:
            raise ForbiddenError("only the technician or an admin can access these settings")
        user = self.get_user(user_id)
        if user.role != UserRole.TECHNICIAN:
            raise BadRequestError("settings exist only for technicians", {"user_id": user_id})
        return user

    def get_settings(self, user_id: int) -> TechnicianSettings:
        user = self._settings_target(user_id)
        return user.settings or TechnicianSettings(user_id=user.id, working_days_goal=0, revenue_goal=0)

    def update_settings(self, user_id: int, data: TechnicianSettingsUpdate) -> TechnicianSettings:
        with transaction(self.db):
            user = self._settings_target(user_id)
            if user.settings is None:
                user.settings = TechnicianSettings()
            user.settings.working_days_goal = data.working_days_goal
            user.settings.revenue_goal = data.revenue_goal
            self.db.flush()
            return user.settings
