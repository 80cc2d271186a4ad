from datetime import date

import pytest

from db.models import OrderStatus, OrderType, WarehouseItemStatus
from api.schemas import (
    BillingDraft,
    CollectedDevice,
    MaterialUsage,
    OrderCompletion,
    OrderCreate,
    OrderRetry,
    WorkCodeInput,
)
from api.services.errors import (
    BadRequestError,
    BillingDraftError,
    ConflictError,
    ForbiddenError,
    InsufficientStockError,
)
from api.services.modules import OPL, VECTRA
from api.services.orders import OrderLifecycle
from api.services.stock import Holder


def _order_data(number="ORD-1", technician_id=None, order_type=OrderType.INSTALLATION, day=date(2026, 10, 5)):
    return OrderCreate(
        order_number=number,
        type=order_type,
        city="Gdańsk",
        street="Długa 12",
        scheduled_date=day,
        time_slot="8-10",
        technician_id=technician_id,
    )


@pytest.fixture()
def vectra(db, coordinator):
    return OrderLifecycle(db, VECTRA, coordinator)


@pytest.fixture()
def opl(db, coordinator):
    return OrderLifecycle(db, OPL, coordinator)


def _not_completed(reason):
    return OrderCompletion(status=OrderStatus.NOT_COMPLETED, failure_reason=reason)


class TestCreate:
    def test_status_follows_technician(self, vectra, technician):
        assert vectra.create_order(_order_data("A")).status == OrderStatus.PENDING
        assert vectra.create_order(_order_data("B", technician.id)).status == OrderStatus.ASSIGNED

    def test_open_duplicate_conflicts(self, vectra):
        vectra.create_order(_order_data())
        with pytest.raises(ConflictError):
            vectra.create_order(_order_data())

    def test_completed_duplicate_rejected(self, vectra, technician):
        order = vectra.create_order(_order_data(technician_id=technician.id))
        vectra.complete_order(order.id, OrderCompletion(status=OrderStatus.COMPLETED, work_codes=[WorkCodeInput(code="INST")]))
        with pytest.raises(BadRequestError):
            vectra.create_order(_order_data())

    def test_not_completed_duplicate_becomes_next_attempt(self, vectra, technician):
        first = vectra.create_order(_order_data(technician_id=technician.id))
        vectra.complete_order(first.id, _not_completed(VECTRA.failure_reasons[0]))

        second = vectra.create_order(_order_data(technician_id=technician.id, day=date(2026, 10, 8)))

        assert second.attempt_number == 2
        assert second.previous_order_id == first.id

    def test_same_number_in_other_module_is_independent(self, vectra, opl):
        vectra.create_order(_order_data())
        assert opl.create_order(_order_data()).attempt_number == 1

    def test_order_type_must_belong_to_module(self, opl):
        with pytest.raises(BadRequestError):
            opl.create_order(_order_data(order_type=OrderType.OUTAGE))


def test_assign_and_unassign(vectra, technician):
    order = vectra.create_order(_order_data())
    assert vectra.assign_technician(order.id, technician.id).status == OrderStatus.ASSIGNED
    assert vectra.assign_technician(order.id, None).status == OrderStatus.PENDING


class TestCompletion:
    def test_completed_consumes_stock_and_settles(self, db, vectra, stocked, technician, definitions):
        order = vectra.create_order(_order_data(technician_id=technician.id))
        completion = OrderCompletion(
            status=OrderStatus.COMPLETED,
            work_codes=[WorkCodeInput(code="inst"), WorkCodeInput(code="CAB", quantity=2)],
            materials=[MaterialUsage(material_definition_id=definitions["cable"].id, quantity=12)],
            device_ids=[stocked["device1"].id],
            collected_devices=[CollectedDevice(name="Old box", category="DECODER", serial_number="old-7")],
        )

        order, warnings = vectra.complete_order(order.id, completion)

        assert order.status == OrderStatus.COMPLETED
        assert order.completed_at is not None
        assert sorted((e.code, e.quantity) for e in order.settlement_entries) == [("CAB", 2), ("INST", 1)]
        assert len(warnings) == 2
        assert vectra.ledger.sum_stock_for_holder(Holder.technician(technician.id), "Cable RG6") == 18
        assert stocked["device1"].status == WarehouseItemStatus.ASSIGNED_TO_ORDER
        assert stocked["device1"].order_id == order.id
        assert [m.quantity for m in order.materials] == [12]
        collected = [i for i in vectra.ledger.technician_stock(technician.id) if i.serial_number == "OLD-7"]
        assert collected[0].status == WarehouseItemStatus.COLLECTED_FROM_CLIENT

    def test_insufficient_material_changes_nothing(self, vectra, stocked, technician, definitions):
        order = vectra.create_order(_order_data(technician_id=technician.id))
        completion = OrderCompletion(
            status=OrderStatus.COMPLETED,
            work_codes=[WorkCodeInput(code="INST")],
            materials=[MaterialUsage(material_definition_id=definitions["cable"].id, quantity=31)],
            device_ids=[stocked["device1"].id],
        )

        with pytest.raises(InsufficientStockError):
            vectra.complete_order(order.id, completion)

        order = vectra.get_order(order.id)
        assert order.status == OrderStatus.ASSIGNED
        assert order.settlement_entries == []
        assert vectra.ledger.sum_stock_for_holder(Holder.technician(technician.id), "Cable RG6") == 30
        assert vectra.ledger.get_item(stocked["device1"].id).status == WarehouseItemStatus.ASSIGNED

    def test_device_must_be_held_by_technician(self, vectra, stocked, technician):
        order = vectra.create_order(_order_data(technician_id=technician.id))
        completion = OrderCompletion(
            status=OrderStatus.COMPLETED,
            work_codes=[WorkCodeInput(code="INST")],
            device_ids=[stocked["device2"].id],
        )
        with pytest.raises(BadRequestError):
            vectra.complete_order(order.id, completion)

    def test_billable_order_needs_work_codes(self, vectra, technician):
        order = vectra.create_order(_order_data(technician_id=technician.id))
        with pytest.raises(BadRequestError):
            vectra.complete_order(order.id, OrderCompletion(status=OrderStatus.COMPLETED))

    def test_service_order_completes_without_codes(self, vectra, technician):
        order = vectra.create_order(_order_data(technician_id=technician.id, order_type=OrderType.SERVICE))
        order, warnings = vectra.complete_order(order.id, OrderCompletion(status=OrderStatus.COMPLETED))
        assert order.status == OrderStatus.COMPLETED
        assert warnings == []

    def test_not_completed_needs_known_reason(self, vectra, technician):
        order = vectra.create_order(_order_data(technician_id=technician.id))
        with pytest.raises(BadRequestError):
            vectra.complete_order(order.id, _not_completed("Dog ate the cable"))

        order, _ = vectra.complete_order(order.id, _not_completed("Subscriber absent"))
        assert order.status == OrderStatus.NOT_COMPLETED
        assert order.failure_reason == "Subscriber absent"

    def test_not_completed_uses_no_stock(self, vectra, stocked, technician, definitions):
        order = vectra.create_order(_order_data(technician_id=technician.id))
        completion = OrderCompletion(
            status=OrderStatus.NOT_COMPLETED,
            failure_reason="Subscriber absent",
            materials=[MaterialUsage(material_definition_id=definitions["cable"].id, quantity=1)],
        )
        with pytest.raises(BadRequestError):
            vectra.complete_order(order.id, completion)

    def test_closed_order_cannot_be_completed_again(self, vectra, technician):
        order = vectra.create_order(_order_data(technician_id=technician.id, order_type=OrderType.SERVICE))
        vectra.complete_order(order.id, OrderCompletion(status=OrderStatus.COMPLETED))
        with pytest.raises(BadRequestError):
            vectra.complete_order(order.id, OrderCompletion(status=OrderStatus.COMPLETED))

    def test_technician_only_completes_own_orders(self, db, vectra, technician, technician2):
        order = vectra.create_order(_order_data(technician_id=technician.id, order_type=OrderType.SERVICE))
        other = OrderLifecycle(db, VECTRA, technician2)
        with pytest.raises(ForbiddenError):
            other.complete_order(order.id, OrderCompletion(status=OrderStatus.COMPLETED))

    def test_unassigned_order_cannot_be_completed(self, vectra):
        order = vectra.create_order(_order_data(order_type=OrderType.SERVICE))
        with pytest.raises(BadRequestError):
            vectra.complete_order(order.id, OrderCompletion(status=OrderStatus.COMPLETED))

    def test_closed_order_cannot_be_reassigned(self, vectra, technician, technician2):
        order = vectra.create_order(_order_data(technician_id=technician.id, order_type=OrderType.SERVICE))
        vectra.complete_order(order.id, OrderCompletion(status=OrderStatus.COMPLETED))

        with pytest.raises(BadRequestError):
            vectra.assign_technician(order.id, technician2.id)
        with pytest.raises(BadRequestError):
            vectra.assign_technician(order.id, None)

        assert order.technician_id == technician.id
        summary = vectra.technician_month_summary(technician.id, 2026, 10)
        assert summary["completed"] == 1


class TestOplBilling:
    def test_draft_settles_normalised_codes(self, opl, technician):
        order = opl.create_order(_order_data(technician_id=technician.id))
        completion = OrderCompletion(
            status=OrderStatus.COMPLETED,
            billing_draft=BillingDraft(base_code="ZJD", activation="I_1P", multiroom_count=2),
        )

        order, warnings = opl.complete_order(order.id, completion)

        assert [(e.code, e.quantity) for e in order.settlement_entries] == [("ZJD", 1), ("1P", 1), ("MR", 2)]
        assert warnings == ["rate definition for 1P was missing and has been created with amount 0"]

    def test_work_codes_are_mapped_to_a_draft(self, opl, technician):
        order = opl.create_order(_order_data(technician_id=technician.id))
        completion = OrderCompletion(
            status=OrderStatus.COMPLETED,
            work_codes=[WorkCodeInput(code="WGH"), WorkCodeInput(code="ZJDD", quantity=2)],
        )
        order, warnings = opl.complete_order(order.id, completion)
        assert [(e.code, e.quantity) for e in order.settlement_entries] == [("WGH", 1), ("ZJDD", 2)]
        assert warnings == []

    def test_invalid_draft_rejected(self, opl, technician):
        order = opl.create_order(_order_data(technician_id=technician.id))
        completion = OrderCompletion(
            status=OrderStatus.COMPLETED,
            billing_draft=BillingDraft(base_code="P1P", activation="I_1P"),
        )
        with pytest.raises(BillingDraftError) as exc:
            opl.complete_order(order.id, completion)
        assert exc.value.rule == "ACTIVATION_NOT_ALLOWED"
        assert opl.get_order(order.id).status == OrderStatus.ASSIGNED


class TestRetry:
    def _failed(self, lifecycle, technician):
        order = lifecycle.create_order(_order_data(technician_id=technician.id))
        lifecycle.complete_order(order.id, _not_completed("Subscriber absent"))
        return order

    def test_retry_links_attempts(self, vectra, technician, technician2):
        first = self._failed(vectra, technician)

        retry = vectra.create_retry(first.id, OrderRetry(scheduled_date=date(2026, 10, 9), time_slot="10-12", technician_id=technician2.id))

        assert retry.attempt_number == 2
        assert retry.previous_order_id == first.id
        assert retry.order_number == first.order_number
        assert retry.status == OrderStatus.ASSIGNED
        assert vectra.get_order(first.id).status == OrderStatus.NOT_COMPLETED
        assert [o.id for o in vectra.attempt_chain(retry.id)] == [first.id, retry.id]
        assert len(vectra.timeline(first.id)) == 3

    def test_second_retry_of_same_attempt_conflicts(self, vectra, technician):
        first = self._failed(vectra, technician)
        vectra.create_retry(first.id, OrderRetry(scheduled_date=date(2026, 10, 9), time_slot="10-12"))
        with pytest.raises(ConflictError):
            vectra.create_retry(first.id, OrderRetry(scheduled_date=date(2026, 10, 10), time_slot="10-12"))

    def test_only_not_completed_orders_retry(self, vectra):
        order = vectra.create_order(_order_data())
        with pytest.raises(BadRequestError):
            vectra.create_retry(order.id, OrderRetry(scheduled_date=date(2026, 10, 9), time_slot="10-12"))


def test_delete_only_open_orders(vectra, technician):
    open_order = vectra.create_order(_order_data("OPEN"))
    vectra.delete_order(open_order.id)
    assert vectra.list_orders() == []

    closed = vectra.create_order(_order_data("CLOSED", technician.id, OrderType.SERVICE))
    vectra.complete_order(closed.id, OrderCompletion(status=OrderStatus.COMPLETED))
    with pytest.raises(BadRequestError):
        vectra.delete_order(closed.id)


def test_list_orders_search_ignores_diacritics(vectra):
    vectra.create_order(_order_data("A-1"))
    vectra.create_order(OrderCreate(
        order_number="B-2", type=OrderType.SERVICE, city="Sopot", street="Monte Cassino 3",
        scheduled_date=date(2026, 10, 6), time_slot="12-14",
    ))
    assert [o.order_number for o in vectra.list_orders(search="dluga")] == ["A-1"]
    assert [o.order_number for o in vectra.list_orders(search="GDANSK")] == ["A-1"]


def test_month_summary_against_goals(db, opl, technician):
    from api.schemas import TechnicianSettingsUpdate
    from api.services.users import UserService

    UserService(db, technician).update_settings(
        technician.id, TechnicianSettingsUpdate(working_days_goal=20, revenue_goal=1000)
    )
    done = opl.create_order(_order_data("D-1", technician.id, day=date(2026, 10, 5)))
    opl.complete_order(done.id, OrderCompletion(
        status=OrderStatus.COMPLETED, billing_draft=BillingDraft(base_code="ZJD"),
    ))
    failed = opl.create_order(_order_data("D-2", technician.id, day=date(2026, 10, 6)))
    opl.complete_order(failed.id, _not_completed("Customer resigned"))
    opl.create_order(_order_data("D-3", technician.id, day=date(2026, 10, 7)))
    opl.create_order(_order_data("D-4", technician.id, day=date(2026, 11, 1)))

    summary = opl.technician_month_summary(technician.id, 2026, 10)

    assert summary["completed"] == 1
    assert summary["not_completed"] == 1
    assert summary["assigned"] == 1
    assert summary["revenue"] == 212.0
    assert summary["working_days"] == 2
    assert summary["working_days_goal"] == 20
    assert summary["revenue_goal_percent"] == 21.2
