from types import SimpleNamespace

import pytest

from db.models import UserRole
from api.schemas import TeamCreate, TeamUpdate
from api.services.errors import BadRequestError, ConflictError
from api.services.modules import OPL
from api.services.teams import TeamService, get_suggested_partner


def _team(t1, t2, active=True):
    return SimpleNamespace(technician1_id=t1, technician2_id=t2, active=active)


class TestSuggestedPartner:
    def test_partner_found_on_either_side(self):
        teams = [_team(1, 2), _team(3, 4)]
        assert get_suggested_partner(teams, 1) == 2
        assert get_suggested_partner(teams, 4) == 3

    def test_inactive_teams_are_skipped(self):
        teams = [_team(1, 2, active=False), _team(5, 1)]
        assert get_suggested_partner(teams, 1) == 5

    def test_first_active_team_wins(self):
        assert get_suggested_partner([_team(1, 2), _team(1, 3)], 1) == 2

    def test_no_team(self):
        assert get_suggested_partner([_team(1, 2, active=False)], 1) is None
        assert get_suggested_partner([], 7) is None


@pytest.fixture()
def teams(db, coordinator):
    return TeamService(db, OPL, coordinator)


def test_create_and_suggest(teams, technician, technician2):
    team = teams.create_team(TeamCreate(technician1_id=technician.id, technician2_id=technician2.id))
    assert team.to_dict()["technician1_name"] == "Tom Technician"
    assert teams.suggest_partner(technician2.id) == technician.id


def test_duplicate_pair_in_any_order_conflicts(teams, technician, technician2):
    teams.create_team(TeamCreate(technician1_id=technician.id, technician2_id=technician2.id))
    with pytest.raises(ConflictError):
        teams.create_team(TeamCreate(technician1_id=technician2.id, technician2_id=technician.id))


def test_team_needs_two_technicians(teams, technician):
    with pytest.raises(BadRequestError):
        teams.create_team(TeamCreate(technician1_id=technician.id, technician2_id=technician.id))


def test_members_need_module_access(teams, technician, make_user):
    outsider = make_user(UserRole.TECHNICIAN, modules=("VECTRA",))
    with pytest.raises(BadRequestError):
        teams.create_team(TeamCreate(technician1_id=technician.id, technician2_id=outsider.id))


def test_deactivated_team_is_not_suggested(teams, technician, technician2):
    team = teams.create_team(TeamCreate(technician1_id=technician.id, technician2_id=technician2.id))
    teams.update_team(team.id, TeamUpdate(active=False))
    assert teams.suggest_partner(technician.id) is None
    assert teams.list_teams(active_only=True) == []
