from datetime import date

import pytest
from sqlalchemy.dialects import postgresql

from db.models import (
    ItemType,
    Order,
    OrderStatus,
    OrderType,
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
from api.services.stock import Holder, parse_device_file

WH1 = Holder.warehouse("WH-1")


def _make_order(db, technician, number="ORD-1"):
    order = Order(
        module_code="VECTRA",
        order_number=number,
        type=OrderType.INSTALLATION,
        status=OrderStatus.ASSIGNED,
        city="Gdansk",
        street="Dluga 1",
        scheduled_date=date(2026, 10, 1),
        time_slot="8-10",
        technician_id=technician.id,
    )
    db.add(order)
    db.commit()
    return order


def test_receipt_and_issue(stocked, vectra_ledger, technician):
    tech = Holder.technician(technician.id)
    assert vectra_ledger.sum_stock_for_holder(WH1, "Cable RG6") == 70
    assert vectra_ledger.sum_stock_for_holder(tech, "Cable RG6") == 30
    device = stocked["device1"]
    assert device.serial_number == "SN-001"
    assert device.assigned_to_id == technician.id
    assert device.status == WarehouseItemStatus.ASSIGNED
    actions = [h.action for h in vectra_ledger.item_history(device.id)]
    assert actions == [WarehouseAction.RECEIVED, WarehouseAction.ISSUED]


def test_material_transfer_conserves_quantity(stocked, vectra_ledger, technician, technician2):
    tech1 = Holder.technician(technician.id)
    tech2 = Holder.technician(technician2.id)
    row = vectra_ledger.list_items(holder=tech1, item_type=ItemType.MATERIAL)[0]

    vectra_ledger.transfer(row.id, tech1, tech2, 12)

    assert vectra_ledger.sum_stock_for_holder(tech1, "Cable RG6") == 18
    assert vectra_ledger.sum_stock_for_holder(tech2, "Cable RG6") == 12
    assert vectra_ledger.sum_stock_for_holder(WH1, "Cable RG6") == 70


def test_insufficient_stock_leaves_holders_untouched(stocked, vectra_ledger, technician, technician2):
    tech1 = Holder.technician(technician.id)
    tech2 = Holder.technician(technician2.id)
    row = vectra_ledger.list_items(holder=tech1, item_type=ItemType.MATERIAL)[0]
    history_before = vectra_ledger.db.query(WarehouseHistory).count()

    with pytest.raises(InsufficientStockError) as exc:
        vectra_ledger.transfer(row.id, tech1, tech2, 31)

    assert exc.value.details == {"item": "Cable RG6", "required": 31, "available": 30}
    assert vectra_ledger.sum_stock_for_holder(tech1, "Cable RG6") == 30
    assert vectra_ledger.sum_stock_for_holder(tech2, "Cable RG6") == 0
    assert vectra_ledger.db.query(WarehouseHistory).count() == history_before


def test_device_transfer_requires_source_to_hold_it(stocked, vectra_ledger, technician, technician2):
    with pytest.raises(BadRequestError):
        vectra_ledger.transfer(stocked["device2"].id, Holder.technician(technician.id), Holder.technician(technician2.id))
    with pytest.raises(BadRequestError):
        vectra_ledger.transfer(stocked["device1"].id, WH1, Holder.technician(technician2.id), 2)


def test_duplicate_serial_rejected(stocked, vectra_ledger):
    with pytest.raises(ConflictError):
        vectra_ledger.add_items("WH-1", devices=[DeviceReceipt(name="Box 4K", category="DECODER", serial_number="SN-001")])


def test_unknown_device_definition_rejected(definitions, vectra_ledger):
    with pytest.raises(BadRequestError):
        vectra_ledger.add_items("WH-1", devices=[DeviceReceipt(name="Box 8K", category="DECODER", serial_number="A1")])


def test_modules_do_not_share_stock(stocked, opl_ledger):
    with pytest.raises(NotFoundError):
        opl_ledger.get_item(stocked["device1"].id)
    assert opl_ledger.sum_stock_for_holder(WH1, "Cable RG6") == 0


def test_assign_device_to_order(db, stocked, vectra_ledger, technician):
    order = _make_order(db, technician)
    device = vectra_ledger.assign_to_order(stocked["device1"].id, order.id)

    assert device.status == WarehouseItemStatus.ASSIGNED_TO_ORDER
    assert device.order_id == order.id
    assert device.assigned_to_id is None
    with pytest.raises(ConflictError):
        vectra_ledger.assign_to_order(device.id, order.id)
    with pytest.raises(BadRequestError):
        vectra_ledger.transfer(device.id, Holder.technician(technician.id), WH1)


def test_return_to_warehouse_marks_collected_devices(db, stocked, vectra_ledger, technician):
    order = _make_order(db, technician)
    collected = vectra_ledger.collect_from_client(
        order, CollectedDevice(name="Old box", category="DECODER", serial_number="old-1"), technician.id
    )
    db.commit()

    returned = vectra_ledger.return_to_warehouse(
        "WH-1", [TransferItem(item_id=collected.id), TransferItem(item_id=stocked["device1"].id)]
    )

    assert [i.status for i in returned] == [WarehouseItemStatus.RETURNED, WarehouseItemStatus.AVAILABLE]
    assert all(i.assigned_to_id is None and i.location_id == "WH-1" for i in returned)


def test_collecting_a_device_in_stock_conflicts(db, stocked, vectra_ledger, technician):
    order = _make_order(db, technician)
    with pytest.raises(ConflictError):
        vectra_ledger.collect_from_client(
            order, CollectedDevice(name="Box 4K", category="DECODER", serial_number="SN-002"), technician.id
        )


class TestHandover:
    def _offer(self, ledger, technician, technician2, quantity):
        row = ledger.list_items(holder=Holder.technician(technician.id), item_type=ItemType.MATERIAL)[0]
        return ledger.request_transfer(technician.id, technician2.id, [TransferItem(item_id=row.id, quantity=quantity)])[0]

    def test_confirm_moves_packet(self, stocked, vectra_ledger, technician, technician2):
        packet = self._offer(vectra_ledger, technician, technician2, 10)
        assert packet.transfer_pending
        assert [i.id for i in vectra_ledger.incoming_transfers(technician2.id)] == [packet.id]

        vectra_ledger.confirm_transfer(technician2.id, [packet.id])

        assert vectra_ledger.sum_stock_for_holder(Holder.technician(technician.id), "Cable RG6") == 20
        assert vectra_ledger.sum_stock_for_holder(Holder.technician(technician2.id), "Cable RG6") == 10
        assert vectra_ledger.incoming_transfers(technician2.id) == []

    def test_reject_keeps_sender_total(self, stocked, vectra_ledger, technician, technician2):
        packet = self._offer(vectra_ledger, technician, technician2, 10)
        vectra_ledger.reject_transfer(technician2.id, [packet.id])

        assert vectra_ledger.sum_stock_for_holder(Holder.technician(technician.id), "Cable RG6") == 30
        assert vectra_ledger.sum_stock_for_holder(Holder.technician(technician2.id), "Cable RG6") == 0

    def test_cancel_keeps_sender_total(self, stocked, vectra_ledger, technician, technician2):
        packet = self._offer(vectra_ledger, technician, technician2, 30)
        vectra_ledger.cancel_transfer(technician.id, [packet.id])

        assert vectra_ledger.sum_stock_for_holder(Holder.technician(technician.id), "Cable RG6") == 30
        assert not packet.transfer_pending

    def test_only_recipient_can_confirm(self, stocked, vectra_ledger, technician, technician2):
        packet = self._offer(vectra_ledger, technician, technician2, 5)
        with pytest.raises(BadRequestError):
            vectra_ledger.confirm_transfer(technician.id, [packet.id])

    def test_offering_more_than_held_fails(self, stocked, vectra_ledger, technician, technician2):
        with pytest.raises(InsufficientStockError):
            self._offer(vectra_ledger, technician, technician2, 31)

    def test_pending_packet_cannot_be_used_on_order(self, db, stocked, vectra_ledger, technician, technician2):
        packet = self._offer(vectra_ledger, technician, technician2, 10)
        order = _make_order(db, technician)

        with pytest.raises(ConflictError):
            vectra_ledger.assign_to_order(packet.id, order.id, 10)
        vectra_ledger.confirm_transfer(technician2.id, [packet.id])

        assert packet.quantity == 10
        assert vectra_ledger.sum_stock_for_holder(Holder.technician(technician2.id), "Cable RG6") == 10

    def test_split_packet_history_starts_with_request(self, stocked, vectra_ledger, technician, technician2):
        packet = self._offer(vectra_ledger, technician, technician2, 10)
        vectra_ledger.confirm_transfer(technician2.id, [packet.id])

        notes = [h.notes for h in vectra_ledger.item_history(packet.id)]
        assert notes[0] == "transfer requested"
        assert notes[1].startswith("transfer confirmed")


class TestReturnToOperator:
    def test_device_return_is_idempotent(self, stocked, vectra_ledger):
        device = stocked["device2"]
        received = vectra_ledger.item_history(device.id)[0]

        first = vectra_ledger.return_to_operator([received.id])
        second = vectra_ledger.return_to_operator([received.id])

        assert len(first["history_ids"]) == 1
        assert first["skipped_ids"] == []
        assert second == {"history_ids": [], "skipped_ids": [received.id]}
        assert device.status == WarehouseItemStatus.RETURNED_TO_OPERATOR
        returned = [h for h in vectra_ledger.item_history(device.id) if h.action == WarehouseAction.RETURNED_TO_OPERATOR]
        assert len(returned) == 1

    def test_material_return_decrements_once(self, stocked, vectra_ledger, definitions):
        (row,) = vectra_ledger.add_items(
            "WH-1", materials=[MaterialReceipt(material_definition_id=definitions["connector"].id, quantity=8)]
        )
        received = vectra_ledger.item_history(row.id)[-1]

        vectra_ledger.return_to_operator([received.id, received.id])
        vectra_ledger.return_to_operator([received.id])

        assert vectra_ledger.sum_stock_for_holder(WH1, "Connector F") == 0

    def test_device_held_by_technician_cannot_be_returned(self, stocked, vectra_ledger):
        issued = vectra_ledger.item_history(stocked["device1"].id)[-1]
        with pytest.raises(BadRequestError):
            vectra_ledger.return_to_operator([issued.id])


def test_import_devices_skips_bad_rows(definitions, vectra_ledger):
    content = (
        "name,category,serial_number\n"
        "Box 4K,DECODER,imp-1\n"
        "Box 4K,DECODER,IMP-1\n"
        "Box 4K,DECODER,bad serial!\n"
        "Box 9K,DECODER,imp-2\n"
        "Modem X,MODEM,imp-3\n"
    ).encode()
    rows = parse_device_file(content, "devices.csv")

    result = vectra_ledger.import_devices(rows, "WH-1")

    assert result["added_count"] == 2
    assert result["skipped_count"] == 3
    assert [s["reason"] for s in result["skipped"]] == [
        "duplicate serial number",
        "invalid identifier",
        "device definition not found",
    ]
    serials = {i.serial_number for i in vectra_ledger.list_items(holder=WH1, item_type=ItemType.DEVICE)}
    assert serials == {"IMP-1", "IMP-3"}


def test_parse_device_file_rejects_missing_columns():
    with pytest.raises(BadRequestError):
        parse_device_file(b"name,serial_number\nBox,1\n", "devices.csv")


def test_pending_items_are_not_counted(db, stocked, vectra_ledger, technician, technician2):
    row = vectra_ledger.list_items(holder=Holder.technician(technician.id), item_type=ItemType.MATERIAL)[0]
    vectra_ledger.request_transfer(technician.id, technician2.id, [TransferItem(item_id=row.id, quantity=10)])
    pending = db.query(WarehouseItem).filter(WarehouseItem.transfer_pending.is_(True)).count()

    assert pending == 1
    assert vectra_ledger.sum_stock_for_holder(Holder.technician(technician.id), "Cable RG6") == 20


class TestRowLocking:
    def test_material_moves_lock_source_rows(self, db, stocked, vectra_ledger, technician, technician2, monkeypatch):
        statements = []
        execute = db.execute

        def recording_execute(stmt, *args, **kwargs):
            statements.append(stmt)
            return execute(stmt, *args, **kwargs)

        monkeypatch.setattr(db, "execute", recording_execute)
        row = vectra_ledger.list_items(holder=Holder.technician(technician.id), item_type=ItemType.MATERIAL)[0]
        vectra_ledger.transfer(row.id, Holder.technician(technician.id), Holder.technician(technician2.id), 5)

        rendered = [str(s.compile(dialect=postgresql.dialect())) for s in statements if hasattr(s, "compile")]
        assert any("FROM warehouse_items" in sql and "FOR UPDATE" in sql for sql in rendered)

    def test_mutating_lookups_lock_the_item(self, db, stocked, vectra_ledger, technician, monkeypatch):
        locked = []
        get = db.get

        def recording_get(entity, ident, **kwargs):
            if entity is WarehouseItem:
                locked.append((ident, bool(kwargs.get("with_for_update"))))
            return get(entity, ident, **kwargs)

        monkeypatch.setattr(db, "get", recording_get)
        order = _make_order(db, technician)
        vectra_ledger.assign_to_order(stocked["device1"].id, order.id)

        assert (stocked["device1"].id, True) in locked
