from typing import Iterable, List, Optional
import logging

from sqlalchemy import select
from sqlalchemy.orm import Session

from db.database import transaction
from db.models import Team, User
from api.schemas import TeamCreate, TeamUpdate
from api.services.errors import BadRequestError, ConflictError, NotFoundError
from api.services.modules import ModuleDescriptor
from api.services.stock import StockLedger

logger = logging.getLogger(__name__)


def get_suggested_partner(teams: Iterable[Team], technician_id: int) -> Optional[int]:
    """Partner of `technician_id` in the first active team that contains them, or None."""
    for team in teams:
        if not team.active:
            continue
        if team.technician1_id == technician_id:
            return team.technician2_id
        if team.technician2_id == technician_id:
            return team.technician1_id
    return None


def pair_key(a: int, b: int):
    return tuple(sorted((a, b)))


class TeamService:
    def __init__(self, db: Session, module: ModuleDescriptor, actor: User):
        self.db = db
        self.module = module
        self.actor = actor

    def list_teams(self, active_only: bool = False) -> List[Team]:
        stmt = select(Team).where(Team.module_code == self.module.code)
        if active_only:
            stmt = stmt.where(Team.active.is_(True))
        return list(self.db.execute(stmt.order_by(Team.active.desc(), Team.id)).scalars().all())

    def suggest_partner(self, technician_id: int) -> Optional[int]:
        stmt = select(Team).where(Team.module_code == self.module.code).order_by(Team.id)
        return get_suggested_partner(self.db.execute(stmt).scalars(), technician_id)

    def _check_pair(self, technician1_id: int, technician2_id: int, exclude_id: Optional[int] = None) -> None:
        if technician1_id == technician2_id:
            raise BadRequestError("a team needs two different technicians")
        ledger = StockLedger(self.db, self.module)
        for technician_id in (technician1_id, technician2_id):
            ledger.get_technician(technician_id)
        key = pair_key(technician1_id, technician2_id)
        for team in self.list_teams():
            if team.id != exclude_id and pair_key(team.technician1_id, team.technician2_id) == key:
                raise ConflictError("team already exists", {"team_id": team.id})

    def _get_team(self, team_id: int) -> Team:
        team = self.db.get(Team, team_id)
        if team is None or team.module_code != self.module.code:
            raise NotFoundError("Team", team_id)
        return team

    def create_team(self, data: TeamCreate) -> Team:
        with transaction(self.db):
            self._check_pair(data.technician1_id, data.technician2_id)
            team = Team(
                module_code=self.module.code,
                technician1_id=data.technician1_id,
                technician2_id=data.technician2_id,
                active=data.active,
            )
            self.db.add(team)
            self.db.flush()
            logger.info(f"Team {team.id} created ({data.technician1_id}, {data.technician2_id}) by user {self.actor.id}")
            return team

    def update_team(self, team_id: int, data: TeamUpdate) -> Team:
        with transaction(self.db):
            team = self._get_team(team_id)
            technician1_id = data.technician1_id if data.technician1_id is not None else team.technician1_id
            technician2_id = data.technician2_id if data.technician2_id is not None else team.technician2_id
            if (technician1_id, technician2_id) != (team.technician1_id, team.technician2_id):
                self._check_pair(technician1_id, technician2_id, exclude_id=team.id)
            team.technician1_id = technician1_id
            team.technician2_id = technician2_id
            if data.active is not None:
                team.active = data.active
            return team

    def delete_team(self, team_id: int) -> None:
        with transaction(self.db):
            self.db.delete(self._get_team(team_id))
