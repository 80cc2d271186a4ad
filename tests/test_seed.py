from sqlalchemy import select

from db.models import Module, RateDefinition
from api.services.modules import OPL
from seed_reference_data import seed_reference_data


def test_reference_data_is_present(db):
    codes = {m.code for m in db.execute(select(Module)).scalars()}
    assert {"VECTRA", "OPL", "HR"} <= codes
    rates = db.execute(select(RateDefinition).where(RateDefinition.module_code == "OPL")).scalars().all()
    assert {r.code for r in rates} == set(OPL.default_rates)


def test_seeding_again_creates_nothing(db):
    stats = seed_reference_data(db)
    assert stats["created"] == 0
    assert stats["existing"] > 0


def test_removed_rate_is_restored(db):
    rate = db.execute(select(RateDefinition).where(RateDefinition.module_code == "OPL")).scalars().first()
    db.delete(rate)
    db.commit()

    assert seed_reference_data(db)["created"] == 1
