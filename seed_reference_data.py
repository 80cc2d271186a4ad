"""
Seed reference data

Creates the module records and the default rate definitions of every module.
Safe to run repeatedly: rows that already exist are counted and left alone.

    python seed_reference_data.py
"""
from typing import Dict
import logging

from sqlalchemy import select
from sqlalchemy.orm import Session

from db.database import SessionLocal, transaction
from db.models import Module, RateDefinition
from api.services.modules import ACCESS_ONLY_MODULES, MODULES

logger = logging.getLogger(__name__)


def seed_modules(db: Session, stats: Dict[str, int]) -> None:
    names = {code: m.name for code, m in MODULES.items()}
    names.update(ACCESS_ONLY_MODULES)
    for code, name in names.items():
        if db.get(Module, code) is not None:
            stats["existing"] += 1
            continue
        db.add(Module(code=code, name=name))
        stats["created"] += 1
    db.flush()


def seed_rates(db: Session, stats: Dict[str, int]) -> None:
    for module in MODULES.values():
        for code, amount in module.default_rates.items():
            existing = db.execute(
                select(RateDefinition).where(
                    RateDefinition.module_code == module.code,
                    RateDefinition.code == code,
                )
            ).scalar_one_or_none()
            if existing is not None:
                stats["existing"] += 1
                continue
            db.add(RateDefinition(module_code=module.code, code=code, amount=amount))
            stats["created"] += 1


def seed_reference_data(db: Session) -> Dict[str, int]:
    """
    Insert missing modules and rate definitions.

    Returns:
        dict with the number of `created` and `existing` rows
    """
    stats = {"created": 0, "existing": 0}
    with transaction(db):
        seed_modules(db, stats)
        seed_rates(db, stats)
    logger.info(f"Reference data seeded: {stats}")
    return stats


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    session = SessionLocal()
    try:
        result = seed_reference_data(session)
    finally:
        session.close()
    print(f"Created: {result['created']}, already existing: {result['existing']}")
