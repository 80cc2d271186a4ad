import os

os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ["MAIL_PROVIDER"] = "mock"
os.environ.pop("GEOCODER_URL", None)

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from auth.auth import hash_password, issue_token
from db.database import Base, get_db, transaction
from db.models import (
    DeviceDefinition,
    Location,
    MaterialDefinition,
    Module,
    User,
    UserRole,
    UserStatus,
)
from api.services.modules import OPL, VECTRA
from api.services.stock import StockLedger
from api.services.users import sync_module_profiles
from seed_reference_data import seed_reference_data

PASSWORD = "Secret123!"


@pytest.fixture()
def db():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    session = TestingSessionLocal()
    seed_reference_data(session)
    session.add_all([Location(id="WH-1", name="Main warehouse"), Location(id="WH-2", name="North warehouse")])
    session.commit()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)
        engine.dispose()


@pytest.fixture()
def make_user(db):
    counter = {"n": 0}

    def _make(role=UserRole.TECHNICIAN, modules=("VECTRA", "OPL"), locations=(), name=None, status=UserStatus.ACTIVE):
        counter["n"] += 1
        user = User(
            email=f"{role.value.lower()}{counter['n']}@example.com",
            name=name or f"{role.value.title()} {counter['n']}",
            role=role,
            status=status,
            password_hash=hash_password(PASSWORD),
        )
        user.modules = [db.get(Module, code) for code in modules]
        user.locations = [db.get(Location, loc) for loc in locations]
        db.add(user)
        sync_module_profiles(db, user, modules)
        db.commit()
        return user

    return _make


@pytest.fixture()
def admin(make_user):
    return make_user(UserRole.ADMIN, modules=("VECTRA", "OPL", "HR"), name="Ada Admin")


@pytest.fixture()
def coordinator(make_user):
    return make_user(UserRole.COORDINATOR, locations=("WH-1",), name="Cora Coordinator")


@pytest.fixture()
def warehouseman(make_user):
    return make_user(UserRole.WAREHOUSEMAN, locations=("WH-1", "WH-2"), name="Walt Warehouse")


@pytest.fixture()
def technician(make_user):
    return make_user(UserRole.TECHNICIAN, name="Tom Technician")


@pytest.fixture()
def technician2(make_user):
    return make_user(UserRole.TECHNICIAN, name="Tess Technician")


@pytest.fixture()
def definitions(db):
    cable = MaterialDefinition(module_code="VECTRA", name="Cable RG6", category="CABLE", unit="M", price=2)
    connector = MaterialDefinition(module_code="VECTRA", name="Connector F", category="CONNECTOR", unit="PIECE", price=1)
    opl_cable = MaterialDefinition(module_code="OPL", name="Fiber drop", category="CABLE", unit="M", price=3)
    db.add_all([
        cable,
        connector,
        opl_cable,
        DeviceDefinition(module_code="VECTRA", category="DECODER", name="Box 4K", price=300),
        DeviceDefinition(module_code="VECTRA", category="MODEM", name="Modem X", price=200),
        DeviceDefinition(module_code="OPL", category="ONT", name="ONT G1", price=150),
    ])
    db.commit()
    return {"cable": cable, "connector": connector, "opl_cable": opl_cable}


@pytest.fixture()
def vectra_ledger(db, warehouseman):
    return StockLedger(db, VECTRA, warehouseman)


@pytest.fixture()
def opl_ledger(db, warehouseman):
    return StockLedger(db, OPL, warehouseman)


@pytest.fixture()
def stocked(vectra_ledger, definitions, technician):
    """WH-1 holds 100 m of cable and two decoders; the technician got 30 m and one decoder."""
    from api.schemas import DeviceReceipt, MaterialReceipt, TransferItem

    items = vectra_ledger.add_items(
        "WH-1",
        devices=[
            DeviceReceipt(name="Box 4K", category="DECODER", serial_number="sn-001"),
            DeviceReceipt(name="Box 4K", category="DECODER", serial_number="sn-002"),
        ],
        materials=[MaterialReceipt(material_definition_id=definitions["cable"].id, quantity=100)],
    )
    device1, device2, cable_row = items
    vectra_ledger.issue_items(
        "WH-1",
        technician.id,
        [TransferItem(item_id=device1.id), TransferItem(item_id=cable_row.id, quantity=30)],
    )
    return {"device1": device1, "device2": device2, "cable_row": cable_row}


@pytest.fixture()
def client(db):
    from main import app

    def override_get_db():
        yield db

    app.dependency_overrides[get_db] = override_get_db
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


@pytest.fixture()
def auth_headers(db):
    def _headers(user, location_id=None):
        with transaction(db):
            token = issue_token(db, user)
        headers = {"Authorization": f"Bearer {token.access_token}"}
        if location_id:
            headers["X-Location-Id"] = location_id
        return headers

    return _headers

