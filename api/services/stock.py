"""Warehouse stock ledger.

Stock rows are held either by a central warehouse location (no technician)
or by a technician. Devices are single serialized rows; materials are
fungible quantity rows and a holder may have several rows of the same
material. Every mutation writes a `WarehouseHistory` entry and the public
methods run in one transaction each, so a failed transfer leaves both
holders untouched.
"""
from dataclasses import dataclass
from io import BytesIO
from typing import Any, Dict, Iterable, List, Optional
import logging

import pandas as pd
from sqlalchemy import and_, func, select
from sqlalchemy.orm import Session

from db.database import transaction
from db.models import (
    DeviceDefinition,
    ItemType,
    Location,
    MaterialDefinition,
    Order,
    User,
    UserRole,
    UserStatus,
    WarehouseAction,
    WarehouseHistory,
    WarehouseItem,
    WarehouseItemStatus,
)
from api.schemas import CollectedDevice, DeviceReceipt, MaterialReceipt, TransferItem
from api.services.errors import (
    BadRequestError,
    ConflictError,
    InsufficientStockError,
    NotFoundError,
)
from api.services.modules import ModuleDescriptor
from api.utils.util import is_valid_serial, normalize_serial, normalize_search

logger = logging.getLogger(__name__)

# Statuses of a device that is physically in the central warehouse.
WAREHOUSE_DEVICE_STATUSES = (WarehouseItemStatus.AVAILABLE, WarehouseItemStatus.RETURNED)
# A device in one of these states belongs to an order or the operator and can no longer move.
CONSUMED_STATUSES = (WarehouseItemStatus.ASSIGNED_TO_ORDER, WarehouseItemStatus.RETURNED_TO_OPERATOR)


@dataclass(frozen=True)
class Holder:
    """Custodian of stock: a technician, or the central warehouse at a location."""

    technician_id: Optional[int] = None
    location_id: Optional[str] = None

    @classmethod
    def warehouse(cls, location_id: str) -> "Holder":
        return cls(technician_id=None, location_id=location_id)

    @classmethod
    def technician(cls, technician_id: int) -> "Holder":
        return cls(technician_id=technician_id)

    @property
    def is_warehouse(self) -> bool:
        return self.technician_id is None

    def describe(self) -> str:
        if self.is_warehouse:
            return f"warehouse:{self.location_id}"
        return f"technician:{self.technician_id}"


class StockLedger:
    def __init__(self, db: Session, module: ModuleDescriptor, performed_by: Optional[User] = None):
        self.db = db
        self.module = module
        self.performed_by = performed_by

    # --- lookups ---
    def get_item(self, item_id: int, for_update: bool = False) -> WarehouseItem:
        """Load an item of this module; `for_update` locks its row until the transaction ends."""
        if for_update:
            self.db.flush()
            item = self.db.get(WarehouseItem, item_id, with_for_update=True, populate_existing=True)
        else:
            item = self.db.get(WarehouseItem, item_id)
        if item is None or item.module_code != self.module.code:
            raise NotFoundError("WarehouseItem", item_id)
        return item

    def _get_order(self, order_id: int) -> Order:
        order = self.db.get(Order, order_id)
        if order is None or order.module_code != self.module.code:
            raise NotFoundError("Order", order_id)
        return order

    def _get_location(self, location_id: Optional[str]) -> Location:
        location = self.db.get(Location, location_id) if location_id else None
        if location is None:
            raise NotFoundError("Location", location_id)
        return location

    def get_technician(self, technician_id: int) -> User:
        user = self.db.get(User, technician_id)
        if user is None or user.role != UserRole.TECHNICIAN:
            raise NotFoundError("Technician", technician_id)
        if user.status != UserStatus.ACTIVE:
            raise BadRequestError("technician is not active", {"technician_id": technician_id})
        if not any(p.active and p.module_code == self.module.code for p in user.module_profiles):
            raise BadRequestError("technician has no access to module", {"technician_id": technician_id})
        return user

    def _check_holder(self, holder: Holder) -> None:
        if holder.is_warehouse:
            self._get_location(holder.location_id)
        else:
            self.get_technician(holder.technician_id)

    def _holder_filter(self, holder: Holder):
        if holder.is_warehouse:
            return and_(
                WarehouseItem.assigned_to_id.is_(None),
                WarehouseItem.location_id == holder.location_id,
                WarehouseItem.status.notin_(CONSUMED_STATUSES),
            )
        return and_(
            WarehouseItem.assigned_to_id == holder.technician_id,
            WarehouseItem.status.notin_(CONSUMED_STATUSES),
        )

    def holds(self, item: WarehouseItem, holder: Holder) -> bool:
        if item.transfer_pending or item.status in CONSUMED_STATUSES:
            return False
        if holder.is_warehouse:
            return item.assigned_to_id is None and item.location_id == holder.location_id
        return item.assigned_to_id == holder.technician_id

    def _material_rows(self, holder: Holder, material_name: str) -> List[WarehouseItem]:
        stmt = (
            select(WarehouseItem)
            .where(
                WarehouseItem.module_code == self.module.code,
                WarehouseItem.item_type == ItemType.MATERIAL,
                WarehouseItem.name == material_name,
                WarehouseItem.transfer_pending.is_(False),
                self._holder_filter(holder),
            )
            .order_by(WarehouseItem.id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        self.db.flush()
        return list(self.db.execute(stmt).scalars().all())

    def _destination_row(self, template: WarehouseItem, holder: Holder) -> WarehouseItem:
        rows = self._material_rows(holder, template.name)
        if rows:
            return rows[0]
        row = WarehouseItem(
            module_code=self.module.code,
            item_type=ItemType.MATERIAL,
            category=template.category,
            name=template.name,
            quantity=0,
            unit=template.unit,
            price=template.price,
            material_definition_id=template.material_definition_id,
            status=WarehouseItemStatus.AVAILABLE if holder.is_warehouse else WarehouseItemStatus.ASSIGNED,
            assigned_to_id=holder.technician_id,
            location_id=holder.location_id if holder.is_warehouse else template.location_id,
        )
        self.db.add(row)
        self.db.flush()
        return row

    def _log(self, item: WarehouseItem, action: WarehouseAction, quantity: int, **fields) -> WarehouseHistory:
        entry = WarehouseHistory(
            warehouse_item_id=item.id,
            action=action,
            quantity=quantity,
            performed_by_id=self.performed_by.id if self.performed_by else None,
            **fields,
        )
        self.db.add(entry)
        self.db.flush()
        return entry

    # --- reads ---
    def sum_stock_for_holder(self, holder: Holder, material_name: str) -> int:
        """Total quantity of a material held by `holder` (pending hand-overs excluded)."""
        stmt = select(func.coalesce(func.sum(WarehouseItem.quantity), 0)).where(
            WarehouseItem.module_code == self.module.code,
            WarehouseItem.item_type == ItemType.MATERIAL,
            WarehouseItem.name == material_name,
            WarehouseItem.transfer_pending.is_(False),
            self._holder_filter(holder),
        )
        return int(self.db.execute(stmt).scalar_one())

    def list_items(
        self,
        holder: Optional[Holder] = None,
        item_type: Optional[ItemType] = None,
        status: Optional[WarehouseItemStatus] = None,
        search: Optional[str] = None,
    ) -> List[WarehouseItem]:
        stmt = select(WarehouseItem).where(WarehouseItem.module_code == self.module.code)
        if holder is not None:
            stmt = stmt.where(self._holder_filter(holder))
        if item_type is not None:
            stmt = stmt.where(WarehouseItem.item_type == item_type)
        if status is not None:
            stmt = stmt.where(WarehouseItem.status == status)
        items = list(self.db.execute(stmt.order_by(WarehouseItem.name, WarehouseItem.id)).scalars().all())
        if search:
            needle = normalize_search(search)
            items = [
                i for i in items
                if needle in normalize_search(i.name) or needle in normalize_search(i.serial_number)
            ]
        return items

    def technician_stock(self, technician_id: int) -> List[WarehouseItem]:
        return [
            i for i in self.list_items(holder=Holder.technician(technician_id))
            if i.item_type == ItemType.DEVICE or i.quantity > 0
        ]

    def item_history(self, item_id: int) -> List[WarehouseHistory]:
        self.get_item(item_id)
        stmt = (
            select(WarehouseHistory)
            .where(WarehouseHistory.warehouse_item_id == item_id)
            .order_by(WarehouseHistory.action_date, WarehouseHistory.id)
        )
        return list(self.db.execute(stmt).scalars().all())

    # --- transfer ---
    def transfer(self, item_id: int, from_holder: Holder, to_holder: Holder, quantity: int = 1) -> WarehouseItem:
        with transaction(self.db):
            return self._transfer(item_id, from_holder, to_holder, quantity)

    def _transfer(self, item_id: int, from_holder: Holder, to_holder: Holder, quantity: int, notes: Optional[str] = None) -> WarehouseItem:
        if quantity < 1:
            raise BadRequestError("quantity must be positive", {"quantity": quantity})
        if from_holder == to_holder:
            raise BadRequestError("source and destination holders are the same")
        item = self.get_item(item_id, for_update=True)
        if item.transfer_pending:
            raise ConflictError("item has a pending transfer", {"item_id": item_id})
        self._check_holder(to_holder)

        if from_holder.is_warehouse and not to_holder.is_warehouse:
            action = WarehouseAction.ISSUED
        elif to_holder.is_warehouse and not from_holder.is_warehouse:
            action = WarehouseAction.RETURNED
        else:
            action = WarehouseAction.TRANSFER
        history_fields = dict(
            assigned_to_id=to_holder.technician_id,
            from_location_id=from_holder.location_id,
            to_location_id=to_holder.location_id,
            notes=notes,
        )

        if item.item_type == ItemType.DEVICE:
            if quantity != 1:
                raise BadRequestError("device quantity must be 1", {"item_id": item_id})
            if item.status in CONSUMED_STATUSES or item.order_id is not None:
                raise BadRequestError("device is attached to an order", {"item_id": item_id})
            if not self.holds(item, from_holder):
                raise BadRequestError("item not held by source", {"item_id": item_id, "holder": from_holder.describe()})
            collected = item.status == WarehouseItemStatus.COLLECTED_FROM_CLIENT
            if to_holder.is_warehouse:
                item.assigned_to_id = None
                item.location_id = to_holder.location_id
                item.status = WarehouseItemStatus.RETURNED if collected else WarehouseItemStatus.AVAILABLE
            else:
                item.assigned_to_id = to_holder.technician_id
                if item.status != WarehouseItemStatus.COLLECTED_FROM_CLIENT:
                    item.status = WarehouseItemStatus.ASSIGNED
            self._log(item, action, 1, **history_fields)
            logger.info(f"Device {item.serial_number} moved {from_holder.describe()} -> {to_holder.describe()}")
            return item

        sources = self._material_rows(from_holder, item.name)
        if self.holds(item, from_holder):
            sources = [item] + [row for row in sources if row.id != item.id]
        available = sum(row.quantity for row in sources)
        if available < quantity:
            raise InsufficientStockError(item.name, quantity, available)

        destination = self._destination_row(sources[0], to_holder)
        remaining = quantity
        for row in sources:
            take = min(row.quantity, remaining)
            if take:
                row.quantity -= take
                remaining -= take
                self._log(row, action, take, **history_fields)
            if remaining == 0:
                break
        destination.quantity += quantity
        logger.info(
            f"Material '{item.name}' x{quantity} moved {from_holder.describe()} -> {to_holder.describe()}"
        )
        return destination

    # --- order consumption ---
    def assign_to_order(self, item_id: int, order_id: int, quantity: int = 1) -> WarehouseItem:
        with transaction(self.db):
            return self.attach_to_order(self.get_item(item_id, for_update=True), self._get_order(order_id), quantity)

    def attach_to_order(self, item: WarehouseItem, order: Order, quantity: int = 1) -> WarehouseItem:
        if item.transfer_pending:
            raise ConflictError("item has a pending transfer", {"item_id": item.id})
        if item.item_type == ItemType.DEVICE:
            if item.status in CONSUMED_STATUSES or item.order_id is not None:
                raise ConflictError("device already attached to an order", {"item_id": item.id})
            holder_id = item.assigned_to_id
            item.status = WarehouseItemStatus.ASSIGNED_TO_ORDER
            item.order_id = order.id
            item.assigned_to_id = None
            self._log(item, WarehouseAction.ASSIGNED_TO_ORDER, 1, assigned_to_id=holder_id, assigned_order_id=order.id)
            return item

        if item.status in CONSUMED_STATUSES:
            raise ConflictError("material row is no longer in stock", {"item_id": item.id})
        if quantity < 1:
            raise BadRequestError("quantity must be positive", {"quantity": quantity})
        if item.quantity < quantity:
            raise InsufficientStockError(item.name, quantity, item.quantity)
        item.quantity -= quantity
        self._log(
            item, WarehouseAction.ASSIGNED_TO_ORDER, quantity,
            assigned_to_id=item.assigned_to_id, assigned_order_id=order.id,
        )
        return item

    def consume_material(self, holder: Holder, material_name: str, quantity: int, order: Order) -> None:
        """Use `quantity` of a material on an order, drawing from the holder's rows oldest first."""
        rows = self._material_rows(holder, material_name)
        available = sum(r.quantity for r in rows)
        if available < quantity:
            raise InsufficientStockError(material_name, quantity, available)
        remaining = quantity
        for row in rows:
            if remaining == 0:
                break
            take = min(row.quantity, remaining)
            if take:
                self.attach_to_order(row, order, take)
                remaining -= take

    # --- receipts ---
    def add_items(
        self,
        location_id: str,
        devices: Iterable[DeviceReceipt] = (),
        materials: Iterable[MaterialReceipt] = (),
        notes: Optional[str] = None,
    ) -> List[WarehouseItem]:
        with transaction(self.db):
            self._get_location(location_id)
            added = [self._receive_device(d, location_id, notes) for d in devices]
            for receipt in materials:
                definition = self.db.get(MaterialDefinition, receipt.material_definition_id)
                if definition is None or definition.module_code != self.module.code:
                    raise NotFoundError("MaterialDefinition", receipt.material_definition_id)
                template = WarehouseItem(
                    name=definition.name,
                    category=definition.category,
                    unit=definition.unit,
                    price=definition.price,
                    material_definition_id=definition.id,
                    location_id=location_id,
                )
                row = self._destination_row(template, Holder.warehouse(location_id))
                row.quantity += receipt.quantity
                self._log(row, WarehouseAction.RECEIVED, receipt.quantity, to_location_id=location_id, notes=notes)
                added.append(row)
            if not added:
                raise BadRequestError("nothing to add")
            logger.info(f"Received {len(added)} stock rows into {location_id} ({self.module.code})")
            return added

    def _device_definition(self, category: str, name: str) -> Optional[DeviceDefinition]:
        return self.db.execute(
            select(DeviceDefinition).where(
                DeviceDefinition.module_code == self.module.code,
                DeviceDefinition.category == category,
                DeviceDefinition.name == name,
            )
        ).scalar_one_or_none()

    def _find_serial(self, serial: str) -> Optional[WarehouseItem]:
        return self.db.execute(
            select(WarehouseItem).where(
                WarehouseItem.module_code == self.module.code,
                WarehouseItem.serial_number == serial,
            )
        ).scalar_one_or_none()

    def _receive_device(self, receipt: DeviceReceipt, location_id: str, notes: Optional[str]) -> WarehouseItem:
        serial = normalize_serial(receipt.serial_number)
        if not is_valid_serial(serial):
            raise BadRequestError("invalid serial number", {"serial_number": receipt.serial_number})
        definition = self._device_definition(receipt.category, receipt.name)
        if definition is None:
            raise BadRequestError("device definition not found", {"category": receipt.category, "name": receipt.name})
        if self._find_serial(serial) is not None:
            raise ConflictError("serial number already exists", {"serial_number": serial})
        item = WarehouseItem(
            module_code=self.module.code,
            item_type=ItemType.DEVICE,
            category=definition.category,
            name=definition.name,
            serial_number=serial,
            quantity=1,
            price=definition.price,
            status=WarehouseItemStatus.AVAILABLE,
            location_id=location_id,
        )
        self.db.add(item)
        self.db.flush()
        self._log(item, WarehouseAction.RECEIVED, 1, to_location_id=location_id, notes=notes)
        return item

    def import_devices(self, rows: Iterable[Dict[str, Any]], location_id: str) -> Dict[str, Any]:
        """Receive a batch of devices, skipping rows that cannot be added instead of failing."""
        added = 0
        skipped = []
        seen = set()
        with transaction(self.db):
            self._get_location(location_id)
            for index, row in enumerate(rows, start=1):
                serial = normalize_serial(str(row.get("serial_number") or ""))
                name = str(row.get("name") or "").strip()
                category = str(row.get("category") or "").strip()
                if not serial or not is_valid_serial(serial):
                    skipped.append({"row": index, "serial_number": serial or None, "reason": "invalid identifier"})
                    continue
                if serial in seen or self._find_serial(serial) is not None:
                    skipped.append({"row": index, "serial_number": serial, "reason": "duplicate serial number"})
                    continue
                if self._device_definition(category, name) is None:
                    skipped.append({"row": index, "serial_number": serial, "reason": "device definition not found"})
                    continue
                seen.add(serial)
                self._receive_device(
                    DeviceReceipt(name=name, category=category, serial_number=serial), location_id, "import"
                )
                added += 1
        logger.info(f"Device import into {location_id}: added={added} skipped={len(skipped)}")
        return {"added_count": added, "skipped_count": len(skipped), "skipped": skipped}

    # --- warehouse <-> technician ---
    def issue_items(self, location_id: str, technician_id: int, items: Iterable[TransferItem], notes: Optional[str] = None) -> List[WarehouseItem]:
        with transaction(self.db):
            source = Holder.warehouse(location_id)
            target = Holder.technician(technician_id)
            return [self._transfer(i.item_id, source, target, i.quantity, notes) for i in items]

    def return_to_warehouse(self, location_id: str, items: Iterable[TransferItem], notes: Optional[str] = None) -> List[WarehouseItem]:
        with transaction(self.db):
            target = Holder.warehouse(location_id)
            returned = []
            for entry in items:
                item = self.get_item(entry.item_id, for_update=True)
                if item.assigned_to_id is None:
                    raise BadRequestError("item is not held by a technician", {"item_id": item.id})
                returned.append(
                    self._transfer(item.id, Holder.technician(item.assigned_to_id), target, entry.quantity, notes)
                )
            return returned

    # --- technician hand-over ---
    def request_transfer(self, from_technician_id: int, to_technician_id: int, items: Iterable[TransferItem]) -> List[WarehouseItem]:
        """Offer items to another technician; they stay with the sender until confirmed."""
        if from_technician_id == to_technician_id:
            raise BadRequestError("cannot transfer to yourself")
        with transaction(self.db):
            self.get_technician(to_technician_id)
            sender = Holder.technician(from_technician_id)
            pending = []
            for entry in items:
                item = self.get_item(entry.item_id, for_update=True)
                if not self.holds(item, sender):
                    raise BadRequestError("item not held by source", {"item_id": item.id})
                if item.item_type == ItemType.DEVICE:
                    if entry.quantity != 1:
                        raise BadRequestError("device quantity must be 1", {"item_id": item.id})
                    packet = item
                elif entry.quantity > item.quantity:
                    raise InsufficientStockError(item.name, entry.quantity, item.quantity)
                elif entry.quantity == item.quantity:
                    packet = item
                else:
                    item.quantity -= entry.quantity
                    packet = WarehouseItem(
                        module_code=self.module.code,
                        item_type=ItemType.MATERIAL,
                        category=item.category,
                        name=item.name,
                        quantity=entry.quantity,
                        unit=item.unit,
                        price=item.price,
                        material_definition_id=item.material_definition_id,
                        status=item.status,
                        assigned_to_id=from_technician_id,
                        location_id=item.location_id,
                    )
                    self.db.add(packet)
                    self.db.flush()
                packet.transfer_pending = True
                packet.transfer_to_id = to_technician_id
                self._log(
                    packet, WarehouseAction.TRANSFER, entry.quantity,
                    assigned_to_id=to_technician_id, notes="transfer requested",
                )
                pending.append(packet)
            logger.info(f"Technician {from_technician_id} offered {len(pending)} items to {to_technician_id}")
            return pending

    def _pending_items(self, item_ids: Iterable[int]) -> List[WarehouseItem]:
        items = [self.get_item(item_id, for_update=True) for item_id in item_ids]
        for item in items:
            if not item.transfer_pending:
                raise BadRequestError("item has no pending transfer", {"item_id": item.id})
        return items

    def confirm_transfer(self, technician_id: int, item_ids: Iterable[int]) -> List[WarehouseItem]:
        with transaction(self.db):
            items = self._pending_items(item_ids)
            for item in items:
                if item.transfer_to_id != technician_id:
                    raise BadRequestError("transfer is addressed to another technician", {"item_id": item.id})
                sender_id = item.assigned_to_id
                item.assigned_to_id = technician_id
                item.transfer_pending = False
                item.transfer_to_id = None
                self._log(
                    item, WarehouseAction.TRANSFER, item.quantity,
                    assigned_to_id=technician_id, notes=f"transfer confirmed (from technician {sender_id})",
                )
            return items

    def reject_transfer(self, technician_id: int, item_ids: Iterable[int]) -> List[WarehouseItem]:
        with transaction(self.db):
            items = self._pending_items(item_ids)
            for item in items:
                if item.transfer_to_id != technician_id:
                    raise BadRequestError("transfer is addressed to another technician", {"item_id": item.id})
                self._clear_pending(item, "transfer rejected")
            return items

    def cancel_transfer(self, technician_id: int, item_ids: Iterable[int]) -> List[WarehouseItem]:
        with transaction(self.db):
            items = self._pending_items(item_ids)
            for item in items:
                if item.assigned_to_id != technician_id:
                    raise BadRequestError("transfer was requested by another technician", {"item_id": item.id})
                self._clear_pending(item, "transfer cancelled")
            return items

    def _clear_pending(self, item: WarehouseItem, note: str) -> None:
        item.transfer_pending = False
        item.transfer_to_id = None
        self._log(item, WarehouseAction.TRANSFER, item.quantity, assigned_to_id=item.assigned_to_id, notes=note)

    def incoming_transfers(self, technician_id: int) -> List[WarehouseItem]:
        stmt = select(WarehouseItem).where(
            WarehouseItem.module_code == self.module.code,
            WarehouseItem.transfer_pending.is_(True),
            WarehouseItem.transfer_to_id == technician_id,
        )
        return list(self.db.execute(stmt.order_by(WarehouseItem.id)).scalars().all())

    # --- client devices ---
    def collect_from_client(self, order: Order, device: CollectedDevice, technician_id: int) -> WarehouseItem:
        serial = normalize_serial(device.serial_number)
        if not is_valid_serial(serial):
            raise BadRequestError("invalid serial number", {"serial_number": device.serial_number})
        item = self._find_serial(serial)
        if item is not None and item.status not in CONSUMED_STATUSES:
            raise ConflictError("device is already in stock", {"serial_number": serial})
        if item is None:
            item = WarehouseItem(
                module_code=self.module.code,
                item_type=ItemType.DEVICE,
                serial_number=serial,
                quantity=1,
            )
            self.db.add(item)
        item.name = device.name
        item.category = device.category
        item.status = WarehouseItemStatus.COLLECTED_FROM_CLIENT
        item.assigned_to_id = technician_id
        item.order_id = None
        self.db.flush()
        self._log(
            item, WarehouseAction.COLLECTED_FROM_CLIENT, 1,
            assigned_to_id=technician_id, assigned_order_id=order.id,
        )
        return item

    # --- operator returns ---
    def return_to_operator(self, history_ids: Iterable[int]) -> Dict[str, List[int]]:
        """Hand items referenced by history entries back to the operator.

        Each source entry is reconciled at most once: ids that already have a
        RETURNED_TO_OPERATOR entry are reported in `skipped_ids`.
        """
        created: List[int] = []
        skipped: List[int] = []
        with transaction(self.db):
            for history_id in dict.fromkeys(history_ids):
                source = self.db.get(WarehouseHistory, history_id)
                if source is None or source.item.module_code != self.module.code:
                    raise NotFoundError("WarehouseHistory", history_id)
                if source.action == WarehouseAction.RETURNED_TO_OPERATOR or self._already_returned(history_id):
                    skipped.append(history_id)
                    continue
                item = self.get_item(source.warehouse_item_id, for_update=True)
                if item.item_type == ItemType.DEVICE:
                    if item.status == WarehouseItemStatus.RETURNED_TO_OPERATOR:
                        skipped.append(history_id)
                        continue
                    if item.assigned_to_id is not None or item.transfer_pending or item.status not in WAREHOUSE_DEVICE_STATUSES:
                        raise BadRequestError("item is not in the warehouse", {"item_id": item.id})
                    quantity = 1
                    item.status = WarehouseItemStatus.RETURNED_TO_OPERATOR
                else:
                    quantity = source.quantity or 0
                    if item.assigned_to_id is not None:
                        raise BadRequestError("item is not in the warehouse", {"item_id": item.id})
                    if item.quantity < quantity:
                        raise InsufficientStockError(item.name, quantity, item.quantity)
                    item.quantity -= quantity
                entry = self._log(
                    item, WarehouseAction.RETURNED_TO_OPERATOR, quantity,
                    assigned_order_id=self._last_order_id(item, source),
                    from_location_id=item.location_id,
                    source_history_id=history_id,
                )
                created.append(entry.id)
        logger.info(f"Returned to operator: created={created} skipped={skipped}")
        return {"history_ids": created, "skipped_ids": skipped}

    def _already_returned(self, history_id: int) -> bool:
        stmt = select(WarehouseHistory.id).where(
            WarehouseHistory.action == WarehouseAction.RETURNED_TO_OPERATOR,
            WarehouseHistory.source_history_id == history_id,
        )
        return self.db.execute(stmt).first() is not None

    def _last_order_id(self, item: WarehouseItem, source: WarehouseHistory) -> Optional[int]:
        if source.assigned_order_id:
            return source.assigned_order_id
        stmt = (
            select(WarehouseHistory.assigned_order_id)
            .where(
                WarehouseHistory.warehouse_item_id == item.id,
                WarehouseHistory.assigned_order_id.isnot(None),
            )
            .order_by(WarehouseHistory.id.desc())
        )
        return self.db.execute(stmt).scalars().first() or item.order_id


def parse_device_file(content: bytes, filename: str) -> List[Dict[str, Any]]:
    """Read an uploaded .xlsx/.csv device list into row dicts (name, category, serial_number)."""
    buffer = BytesIO(content)
    if filename.lower().endswith(".csv"):
        frame = pd.read_csv(buffer, dtype=str)
    elif filename.lower().endswith((".xlsx", ".xls")):
        frame = pd.read_excel(buffer, dtype=str)
    else:
        raise BadRequestError("unsupported file type", {"filename": filename})
    frame.columns = [str(c).strip().lower().replace(" ", "_") for c in frame.columns]
    if "serial" in frame.columns and "serial_number" not in frame.columns:
        frame = frame.rename(columns={"serial": "serial_number"})
    missing = {"name", "category", "serial_number"} - set(frame.columns)
    if missing:
        raise BadRequestError("missing columns", {"columns": sorted(missing)})
    frame = frame.fillna("")
    return frame[["name", "category", "serial_number"]].to_dict(orient="records")
