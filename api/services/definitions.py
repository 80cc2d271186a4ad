from typing import List, Optional, Type
import logging

from sqlalchemy import func, select, update
from sqlalchemy.orm import Session

from db.database import transaction
from db.models import (
    DeviceDefinition,
    ItemType,
    MaterialDefinition,
    OrderMaterial,
    RateDefinition,
    User,
    WarehouseItem,
)
from api.schemas import (
    DeviceDefinitionCreate,
    DeviceDefinitionUpdate,
    MaterialDefinitionCreate,
    MaterialDefinitionUpdate,
    RateDefinitionCreate,
    RateDefinitionUpdate,
)
from api.services.errors import ConflictError, NotFoundError
from api.services.modules import ModuleDescriptor

logger = logging.getLogger(__name__)


class DefinitionService:
    """Per-module catalogue of device, material and rate definitions."""

    def __init__(self, db: Session, module: ModuleDescriptor, actor: User):
        self.db = db
        self.module = module
        self.actor = actor

    def _get(self, model: Type, definition_id: int):
        definition = self.db.get(model, definition_id)
        if definition is None or definition.module_code != self.module.code:
            raise NotFoundError(model.__name__, definition_id)
        return definition

    def _list(self, model: Type, *order_by) -> list:
        stmt = select(model).where(model.module_code == self.module.code).order_by(*order_by)
        return list(self.db.execute(stmt).scalars().all())

    # --- devices ---
    def list_device_definitions(self) -> List[DeviceDefinition]:
        return self._list(DeviceDefinition, DeviceDefinition.category, DeviceDefinition.name)

    def _check_device_free(self, category: str, name: str, exclude_id: Optional[int] = None) -> None:
        existing = self.db.execute(
            select(DeviceDefinition).where(
                DeviceDefinition.module_code == self.module.code,
                DeviceDefinition.category == category,
                func.lower(DeviceDefinition.name) == name.lower(),
            )
        ).scalar_one_or_none()
        if existing is not None and existing.id != exclude_id:
            raise ConflictError("device definition already exists", {"category": category, "name": name})

    def create_device_definition(self, data: DeviceDefinitionCreate) -> DeviceDefinition:
        with transaction(self.db):
            self._check_device_free(data.category, data.name)
            definition = DeviceDefinition(
                module_code=self.module.code, category=data.category, name=data.name, price=data.price,
            )
            self.db.add(definition)
            self.db.flush()
            logger.info(f"Device definition {definition.id} ({self.module.code}/{data.category}/{data.name}) created by user {self.actor.id}")
            return definition

    def update_device_definition(self, definition_id: int, data: DeviceDefinitionUpdate) -> DeviceDefinition:
        """Edit a definition; devices already received under it follow the new name, category and price."""
        with transaction(self.db):
            definition = self._get(DeviceDefinition, definition_id)
            self._check_device_free(data.category, data.name, exclude_id=definition.id)
            self.db.execute(
                update(WarehouseItem)
                .where(
                    WarehouseItem.module_code == self.module.code,
                    WarehouseItem.item_type == ItemType.DEVICE,
                    WarehouseItem.category == definition.category,
                    WarehouseItem.name == definition.name,
                )
                .values(category=data.category, name=data.name, price=data.price)
                .execution_options(synchronize_session="fetch")
            )
            definition.category = data.category
            definition.name = data.name
            definition.price = data.price
            logger.info(f"Device definition {definition.id} updated by user {self.actor.id}")
            return definition

    def delete_device_definition(self, definition_id: int) -> None:
        with transaction(self.db):
            self.db.delete(self._get(DeviceDefinition, definition_id))
            logger.info(f"Device definition {definition_id} deleted by user {self.actor.id}")

    # --- materials ---
    def list_material_definitions(self) -> List[MaterialDefinition]:
        return self._list(MaterialDefinition, MaterialDefinition.name)

    def _check_material_free(self, name: str, exclude_id: Optional[int] = None) -> None:
        existing = self.db.execute(
            select(MaterialDefinition).where(
                MaterialDefinition.module_code == self.module.code,
                func.lower(MaterialDefinition.name) == name.lower(),
            )
        ).scalar_one_or_none()
        if existing is not None and existing.id != exclude_id:
            raise ConflictError("material definition already exists", {"name": name})

    def create_material_definition(self, data: MaterialDefinitionCreate) -> MaterialDefinition:
        with transaction(self.db):
            self._check_material_free(data.name)
            definition = MaterialDefinition(module_code=self.module.code, **data.model_dump())
            self.db.add(definition)
            self.db.flush()
            logger.info(f"Material definition {definition.id} ({self.module.code}/{data.name}) created by user {self.actor.id}")
            return definition

    def update_material_definition(self, definition_id: int, data: MaterialDefinitionUpdate) -> MaterialDefinition:
        """Edit a definition; stock rows of the material take over its name, unit and price."""
        with transaction(self.db):
            definition = self._get(MaterialDefinition, definition_id)
            self._check_material_free(data.name, exclude_id=definition.id)
            for field, value in data.model_dump().items():
                setattr(definition, field, value)
            self.db.execute(
                update(WarehouseItem)
                .where(WarehouseItem.material_definition_id == definition.id)
                .values(name=data.name, category=data.category, unit=data.unit, price=data.price)
                .execution_options(synchronize_session="fetch")
            )
            logger.info(f"Material definition {definition.id} updated by user {self.actor.id}")
            return definition

    def delete_material_definition(self, definition_id: int) -> None:
        with transaction(self.db):
            definition = self._get(MaterialDefinition, definition_id)
            in_stock = self.db.execute(
                select(func.count(WarehouseItem.id)).where(WarehouseItem.material_definition_id == definition.id)
            ).scalar_one()
            used = self.db.execute(
                select(func.count(OrderMaterial.id)).where(OrderMaterial.material_definition_id == definition.id)
            ).scalar_one()
            if in_stock or used:
                raise ConflictError("material definition is in use", {"stock_rows": in_stock, "order_materials": used})
            self.db.delete(definition)
            logger.info(f"Material definition {definition_id} deleted by user {self.actor.id}")

    # --- rates ---
    def list_rates(self) -> List[RateDefinition]:
        return self._list(RateDefinition, RateDefinition.code)

    def create_rate(self, data: RateDefinitionCreate) -> RateDefinition:
        with transaction(self.db):
            existing = self.db.execute(
                select(RateDefinition).where(
                    RateDefinition.module_code == self.module.code, RateDefinition.code == data.code,
                )
            ).scalar_one_or_none()
            if existing is not None:
                raise ConflictError("rate already exists", {"code": data.code})
            rate = RateDefinition(module_code=self.module.code, code=data.code, amount=data.amount)
            self.db.add(rate)
            self.db.flush()
            logger.info(f"Rate {self.module.code}/{data.code} = {data.amount} created by user {self.actor.id}")
            return rate

    def update_rate(self, rate_id: int, data: RateDefinitionUpdate) -> RateDefinition:
        with transaction(self.db):
            rate = self._get(RateDefinition, rate_id)
            rate.amount = data.amount
            logger.info(f"Rate {self.module.code}/{rate.code} = {data.amount} set by user {self.actor.id}")
            return rate

    def delete_rate(self, rate_id: int) -> None:
        with transaction(self.db):
            rate = self._get(RateDefinition, rate_id)
            self.db.delete(rate)
            logger.info(f"Rate {self.module.code}/{rate.code} deleted by user {self.actor.id}")
