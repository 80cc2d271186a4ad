from sqlalchemy import (
    Column, Integer, String, Boolean, DateTime, Date, ForeignKey, Text, Float,
    Enum as SQLAlchemyEnum, DECIMAL, Table, UniqueConstraint,
)
from sqlalchemy.orm import relationship
import datetime as dt
from enum import Enum
from db.database import Base
from typing import Dict, Any

# --- Enums ---
class UserRole(str, Enum):
    ADMIN = "ADMIN"
    COORDINATOR = "COORDINATOR"
    WAREHOUSEMAN = "WAREHOUSEMAN"
    TECHNICIAN = "TECHNICIAN"

class UserStatus(str, Enum):
    ACTIVE = "ACTIVE"
    INACTIVE = "INACTIVE"
    SUSPENDED = "SUSPENDED"
    DELETED = "DELETED"

class OrderStatus(str, Enum):
    PENDING = "PENDING"
    ASSIGNED = "ASSIGNED"
    COMPLETED = "COMPLETED"
    NOT_COMPLETED = "NOT_COMPLETED"

class OrderType(str, Enum):
    INSTALLATION = "INSTALLATION"
    SERVICE = "SERVICE"
    OUTAGE = "OUTAGE"

class ItemType(str, Enum):
    DEVICE = "DEVICE"
    MATERIAL = "MATERIAL"

class WarehouseItemStatus(str, Enum):
    AVAILABLE = "AVAILABLE"
    ASSIGNED = "ASSIGNED"
    ASSIGNED_TO_ORDER = "ASSIGNED_TO_ORDER"
    RETURNED = "RETURNED"
    RETURNED_TO_OPERATOR = "RETURNED_TO_OPERATOR"
    COLLECTED_FROM_CLIENT = "COLLECTED_FROM_CLIENT"

class WarehouseAction(str, Enum):
    RECEIVED = "RECEIVED"
    ISSUED = "ISSUED"
    RETURNED = "RETURNED"
    TRANSFER = "TRANSFER"
    ASSIGNED_TO_ORDER = "ASSIGNED_TO_ORDER"
    RETURNED_TO_OPERATOR = "RETURNED_TO_OPERATOR"
    COLLECTED_FROM_CLIENT = "COLLECTED_FROM_CLIENT"

TERMINAL_ORDER_STATUSES = (OrderStatus.COMPLETED, OrderStatus.NOT_COMPLETED)

# --- Association tables ---
user_modules = Table(
    "user_modules",
    Base.metadata,
    Column("user_id", Integer, ForeignKey("users.id", ondelete="CASCADE"), primary_key=True),
    Column("module_code", String(20), ForeignKey("modules.code"), primary_key=True),
)

user_locations = Table(
    "user_locations",
    Base.metadata,
    Column("user_id", Integer, ForeignKey("users.id", ondelete="CASCADE"), primary_key=True),
    Column("location_id", String(50), ForeignKey("locations.id"), primary_key=True),
)

# --- Models ---
class Module(Base):
    __tablename__ = "modules"

    code = Column(String(20), primary_key=True)
    name = Column(String(100), nullable=False)
    created_at = Column(DateTime, default=dt.datetime.utcnow)

class Location(Base):
    __tablename__ = "locations"

    id = Column(String(50), primary_key=True)
    name = Column(String(100), nullable=False)
    created_at = Column(DateTime, default=dt.datetime.utcnow)

    def to_dict(self) -> Dict[str, Any]:
        return {"id": self.id, "name": self.name}

class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True)
    email = Column(String(150), unique=True, nullable=False)
    name = Column(String(150), nullable=False)
    phone_number = Column(String(30))
    identifier = Column(String(50))
    password_hash = Column(String(100), nullable=False)
    role = Column(SQLAlchemyEnum(UserRole), nullable=False, default=UserRole.TECHNICIAN)
    status = Column(SQLAlchemyEnum(UserStatus), default=UserStatus.ACTIVE)
    last_login = Column(DateTime)
    created_at = Column(DateTime, default=dt.datetime.utcnow)
    updated_at = Column(DateTime, default=dt.datetime.utcnow, onupdate=dt.datetime.utcnow)

    # Relationships
    modules = relationship("Module", secondary=user_modules, order_by="Module.code")
    locations = relationship("Location", secondary=user_locations, order_by="Location.id")
    module_profiles = relationship("ModuleProfile", back_populates="user", cascade="all, delete-orphan")
    settings = relationship("TechnicianSettings", back_populates="user", uselist=False, cascade="all, delete-orphan")
    tokens = relationship("Token", back_populates="user", cascade="all, delete-orphan")

    @property
    def module_codes(self):
        return [m.code for m in self.modules]

    @property
    def location_ids(self):
        return [loc.id for loc in self.locations]

    def to_dict(self) -> Dict[str, Any]:
        """Convert User model to dictionary."""
        return {
            "id": self.id,
            "email": self.email,
            "name": self.name,
            "phone_number": self.phone_number,
            "identifier": self.identifier,
            "role": self.role.value if self.role else None,
            "status": self.status.value if self.status else None,
            "modules": self.module_codes,
            "locations": [loc.to_dict() for loc in self.locations],
            "created_at": self.created_at,
        }

class ModuleProfile(Base):
    """Per-module activation record of a user."""
    __tablename__ = "module_profiles"
    __table_args__ = (UniqueConstraint("user_id", "module_code", name="uq_module_profile_user_module"),)

    id = Column(Integer, primary_key=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    module_code = Column(String(20), ForeignKey("modules.code"), nullable=False)
    active = Column(Boolean, default=True, nullable=False)
    activated_at = Column(DateTime, default=dt.datetime.utcnow)
    deactivated_at = Column(DateTime)

    user = relationship("User", back_populates="module_profiles")

class TechnicianSettings(Base):
    __tablename__ = "technician_settings"

    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), primary_key=True)
    working_days_goal = Column(Integer, default=0, nullable=False)
    revenue_goal = Column(DECIMAL(12, 2), default=0, nullable=False)
    updated_at = Column(DateTime, default=dt.datetime.utcnow, onupdate=dt.datetime.utcnow)

    user = relationship("User", back_populates="settings")

class Token(Base):
    __tablename__ = "auth_tokens"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"))
    access_token = Column(Text, nullable=False, unique=True)
    expires_at = Column(DateTime, nullable=True)
    revoked = Column(Boolean, default=False)
    created_at = Column(DateTime, default=dt.datetime.utcnow)
    last_used_at = Column(DateTime, nullable=True)

    user = relationship("User", back_populates="tokens")

    def __repr__(self):
        return f"<AuthToken(user_id='{self.user_id}')>"

class Team(Base):
    __tablename__ = "teams"

    id = Column(Integer, primary_key=True)
    module_code = Column(String(20), ForeignKey("modules.code"), nullable=False)
    technician1_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    technician2_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime, default=dt.datetime.utcnow)

    technician1 = relationship("User", foreign_keys=[technician1_id])
    technician2 = relationship("User", foreign_keys=[technician2_id])

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "module_code": self.module_code,
            "technician1_id": self.technician1_id,
            "technician2_id": self.technician2_id,
            "technician1_name": self.technician1.name if self.technician1 else None,
            "technician2_name": self.technician2.name if self.technician2 else None,
            "active": self.active,
        }

class RateDefinition(Base):
    __tablename__ = "rate_definitions"
    __table_args__ = (UniqueConstraint("module_code", "code", name="uq_rate_module_code"),)

    id = Column(Integer, primary_key=True)
    module_code = Column(String(20), ForeignKey("modules.code"), nullable=False)
    code = Column(String(30), nullable=False)
    amount = Column(DECIMAL(10, 2), default=0, nullable=False)
    created_at = Column(DateTime, default=dt.datetime.utcnow)

    def to_dict(self) -> Dict[str, Any]:
        return {"id": self.id, "module_code": self.module_code, "code": self.code, "amount": float(self.amount or 0)}

class MaterialDefinition(Base):
    __tablename__ = "material_definitions"
    __table_args__ = (UniqueConstraint("module_code", "name", name="uq_material_module_name"),)

    id = Column(Integer, primary_key=True)
    module_code = Column(String(20), ForeignKey("modules.code"), nullable=False)
    name = Column(String(150), nullable=False)
    category = Column(String(50))
    material_index = Column(String(50))
    unit = Column(String(20), default="PIECE", nullable=False)
    price = Column(DECIMAL(10, 2), default=0, nullable=False)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "module_code": self.module_code,
            "name": self.name,
            "category": self.category,
            "material_index": self.material_index,
            "unit": self.unit,
            "price": float(self.price or 0),
        }

class DeviceDefinition(Base):
    __tablename__ = "device_definitions"
    __table_args__ = (UniqueConstraint("module_code", "category", "name", name="uq_device_module_category_name"),)

    id = Column(Integer, primary_key=True)
    module_code = Column(String(20), ForeignKey("modules.code"), nullable=False)
    category = Column(String(50), nullable=False)
    name = Column(String(150), nullable=False)
    price = Column(DECIMAL(10, 2), default=0, nullable=False)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "module_code": self.module_code,
            "category": self.category,
            "name": self.name,
            "price": float(self.price or 0),
        }

class Order(Base):
    __tablename__ = "orders"

    id = Column(Integer, primary_key=True)
    module_code = Column(String(20), ForeignKey("modules.code"), nullable=False, index=True)
    order_number = Column(String(50), nullable=False, index=True)
    type = Column(SQLAlchemyEnum(OrderType), nullable=False)
    status = Column(SQLAlchemyEnum(OrderStatus), nullable=False, default=OrderStatus.PENDING)
    operator = Column(String(50))
    city = Column(String(100), nullable=False)
    street = Column(String(150), nullable=False)
    postal_code = Column(String(20))
    scheduled_date = Column(Date, nullable=False)
    time_slot = Column(String(20), nullable=False)
    notes = Column(Text)
    failure_reason = Column(String(100))
    attempt_number = Column(Integer, default=1, nullable=False)
    previous_order_id = Column(Integer, ForeignKey("orders.id"))
    technician_id = Column(Integer, ForeignKey("users.id"))
    created_by_id = Column(Integer, ForeignKey("users.id"))
    lat = Column(Float)
    lng = Column(Float)
    completed_at = Column(DateTime)
    created_at = Column(DateTime, default=dt.datetime.utcnow)
    updated_at = Column(DateTime, default=dt.datetime.utcnow, onupdate=dt.datetime.utcnow)

    # Relationships
    technician = relationship("User", foreign_keys=[technician_id])
    previous_order = relationship("Order", remote_side=[id])
    history = relationship("OrderHistory", back_populates="order", order_by="OrderHistory.id", cascade="all, delete-orphan")
    materials = relationship("OrderMaterial", back_populates="order", cascade="all, delete-orphan")
    equipment = relationship("OrderEquipment", back_populates="order", cascade="all, delete-orphan")
    settlement_entries = relationship("SettlementEntry", back_populates="order", cascade="all, delete-orphan")

    def to_dict(self) -> Dict[str, Any]:
        """Convert Order model to dictionary."""
        return {
            "id": self.id,
            "module_code": self.module_code,
            "order_number": self.order_number,
            "type": self.type.value,
            "status": self.status.value,
            "operator": self.operator,
            "city": self.city,
            "street": self.street,
            "postal_code": self.postal_code,
            "scheduled_date": self.scheduled_date,
            "time_slot": self.time_slot,
            "notes": self.notes,
            "failure_reason": self.failure_reason,
            "attempt_number": self.attempt_number,
            "previous_order_id": self.previous_order_id,
            "technician_id": self.technician_id,
            "technician_name": self.technician.name if self.technician else None,
            "lat": self.lat,
            "lng": self.lng,
            "completed_at": self.completed_at,
            "created_at": self.created_at,
        }

class OrderHistory(Base):
    __tablename__ = "order_history"

    id = Column(Integer, primary_key=True)
    order_id = Column(Integer, ForeignKey("orders.id", ondelete="CASCADE"), nullable=False)
    changed_by_id = Column(Integer, ForeignKey("users.id"))
    status_before = Column(SQLAlchemyEnum(OrderStatus))
    status_after = Column(SQLAlchemyEnum(OrderStatus), nullable=False)
    notes = Column(Text)
    changed_at = Column(DateTime, default=dt.datetime.utcnow)

    order = relationship("Order", back_populates="history")
    changed_by = relationship("User")

class OrderMaterial(Base):
    __tablename__ = "order_materials"

    id = Column(Integer, primary_key=True)
    order_id = Column(Integer, ForeignKey("orders.id", ondelete="CASCADE"), nullable=False)
    material_definition_id = Column(Integer, ForeignKey("material_definitions.id"), nullable=False)
    quantity = Column(Integer, nullable=False)
    unit = Column(String(20))

    order = relationship("Order", back_populates="materials")
    material = relationship("MaterialDefinition")

class OrderEquipment(Base):
    __tablename__ = "order_equipment"

    id = Column(Integer, primary_key=True)
    order_id = Column(Integer, ForeignKey("orders.id", ondelete="CASCADE"), nullable=False)
    warehouse_item_id = Column(Integer, ForeignKey("warehouse_items.id"), nullable=False)

    order = relationship("Order", back_populates="equipment")
    item = relationship("WarehouseItem")

class SettlementEntry(Base):
    __tablename__ = "settlement_entries"

    id = Column(Integer, primary_key=True)
    order_id = Column(Integer, ForeignKey("orders.id", ondelete="CASCADE"), nullable=False)
    code = Column(String(30), nullable=False)
    quantity = Column(Integer, default=1, nullable=False)

    order = relationship("Order", back_populates="settlement_entries")

class WarehouseItem(Base):
    __tablename__ = "warehouse_items"
    __table_args__ = (UniqueConstraint("module_code", "serial_number", name="uq_item_module_serial"),)

    id = Column(Integer, primary_key=True)
    module_code = Column(String(20), ForeignKey("modules.code"), nullable=False, index=True)
    item_type = Column(SQLAlchemyEnum(ItemType), nullable=False)
    category = Column(String(50))
    name = Column(String(150), nullable=False)
    serial_number = Column(String(100))
    quantity = Column(Integer, default=1, nullable=False)
    unit = Column(String(20), default="PIECE")
    price = Column(DECIMAL(10, 2), default=0)
    status = Column(SQLAlchemyEnum(WarehouseItemStatus), default=WarehouseItemStatus.AVAILABLE, nullable=False)
    assigned_to_id = Column(Integer, ForeignKey("users.id"))
    location_id = Column(String(50), ForeignKey("locations.id"))
    order_id = Column(Integer, ForeignKey("orders.id"))
    transfer_pending = Column(Boolean, default=False, nullable=False)
    transfer_to_id = Column(Integer, ForeignKey("users.id"))
    material_definition_id = Column(Integer, ForeignKey("material_definitions.id"))
    created_at = Column(DateTime, default=dt.datetime.utcnow)
    updated_at = Column(DateTime, default=dt.datetime.utcnow, onupdate=dt.datetime.utcnow)

    assigned_to = relationship("User", foreign_keys=[assigned_to_id])
    transfer_to = relationship("User", foreign_keys=[transfer_to_id])
    location = relationship("Location")
    history = relationship("WarehouseHistory", back_populates="item", order_by="WarehouseHistory.id")

    def to_dict(self) -> Dict[str, Any]:
        """Convert WarehouseItem model to dictionary."""
        return {
            "id": self.id,
            "module_code": self.module_code,
            "item_type": self.item_type.value,
            "category": self.category,
            "name": self.name,
            "serial_number": self.serial_number,
            "quantity": self.quantity,
            "unit": self.unit,
            "price": float(self.price or 0),
            "status": self.status.value,
            "assigned_to_id": self.assigned_to_id,
            "location_id": self.location_id,
            "order_id": self.order_id,
            "transfer_pending": self.transfer_pending,
            "transfer_to_id": self.transfer_to_id,
        }

class WarehouseHistory(Base):
    __tablename__ = "warehouse_history"

    id = Column(Integer, primary_key=True)
    warehouse_item_id = Column(Integer, ForeignKey("warehouse_items.id"), nullable=False)
    action = Column(SQLAlchemyEnum(WarehouseAction), nullable=False)
    quantity = Column(Integer)
    performed_by_id = Column(Integer, ForeignKey("users.id"))
    assigned_to_id = Column(Integer, ForeignKey("users.id"))
    assigned_order_id = Column(Integer, ForeignKey("orders.id"))
    from_location_id = Column(String(50), ForeignKey("locations.id"))
    to_location_id = Column(String(50), ForeignKey("locations.id"))
    source_history_id = Column(Integer, ForeignKey("warehouse_history.id"))
    notes = Column(Text)
    action_date = Column(DateTime, default=dt.datetime.utcnow)

    item = relationship("WarehouseItem", back_populates="history")
    performed_by = relationship("User", foreign_keys=[performed_by_id])
    assigned_to = relationship("User", foreign_keys=[assigned_to_id])
    assigned_order = relationship("Order")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "warehouse_item_id": self.warehouse_item_id,
            "action": self.action.value,
            "quantity": self.quantity,
            "performed_by_id": self.performed_by_id,
            "assigned_to_id": self.assigned_to_id,
            "assigned_order_id": self.assigned_order_id,
            "from_location_id": self.from_location_id,
            "to_location_id": self.to_location_id,
            "source_history_id": self.source_history_id,
            "notes": self.notes,
            "action_date": self.action_date,
        }
