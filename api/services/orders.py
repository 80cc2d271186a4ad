from collections import OrderedDict
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional, Tuple
import logging

from sqlalchemy import select
from sqlalchemy.orm import Session

from db.database import transaction
from db.models import (
    TERMINAL_ORDER_STATUSES,
    ItemType,
    MaterialDefinition,
    Order,
    OrderEquipment,
    OrderHistory,
    OrderMaterial,
    OrderStatus,
    RateDefinition,
    SettlementEntry,
    TechnicianSettings,
    User,
    UserRole,
)
from api.schemas import OrderCompletion, OrderCreate, OrderRetry
from api.services.billing import build_billing_draft, draft_to_work_codes, sort_billing_codes, validate_billing_draft
from api.services.errors import (
    BadRequestError,
    ConflictError,
    ForbiddenError,
    InsufficientStockError,
    NotFoundError,
)
from api.services.modules import ModuleDescriptor
from api.services.stock import Holder, StockLedger
from api.utils.geocode import geocode_address
from api.utils.util import month_range, normalize_search

logger = logging.getLogger(__name__)


class OrderLifecycle:
    """Creation, assignment, completion and retries of a module's orders."""

    def __init__(self, db: Session, module: ModuleDescriptor, actor: User):
        self.db = db
        self.module = module
        self.actor = actor
        self.ledger = StockLedger(db, module, actor)

    def get_order(self, order_id: int) -> Order:
        order = self.db.get(Order, order_id)
        if order is None or order.module_code != self.module.code:
            raise NotFoundError("Order", order_id)
        return order

    def _record(self, order: Order, before: Optional[OrderStatus], notes: Optional[str] = None) -> None:
        self.db.add(
            OrderHistory(
                order=order,
                changed_by_id=self.actor.id,
                status_before=before,
                status_after=order.status,
                notes=notes,
            )
        )

    def _latest_attempt(self, order_number: str) -> Optional[Order]:
        stmt = (
            select(Order)
            .where(Order.module_code == self.module.code, Order.order_number == order_number)
            .order_by(Order.attempt_number.desc(), Order.id.desc())
        )
        return self.db.execute(stmt).scalars().first()

    # --- create / assign ---
    def create_order(self, data: OrderCreate) -> Order:
        with transaction(self.db):
            if data.type not in self.module.order_types:
                raise BadRequestError("order type not supported by module", {"type": data.type.value})
            if data.technician_id is not None:
                self.ledger.get_technician(data.technician_id)

            attempt_number, previous_order_id = 1, None
            existing = self._latest_attempt(data.order_number)
            if existing is not None:
                if existing.status == OrderStatus.COMPLETED:
                    raise BadRequestError("order already completed", {"order_number": data.order_number})
                if existing.status != OrderStatus.NOT_COMPLETED:
                    raise ConflictError("order already exists", {"order_number": data.order_number, "order_id": existing.id})
                attempt_number, previous_order_id = existing.attempt_number + 1, existing.id

            order = Order(
                module_code=self.module.code,
                order_number=data.order_number,
                type=data.type,
                city=data.city.strip(),
                street=data.street.strip(),
                postal_code=data.postal_code,
                operator=data.operator,
                scheduled_date=data.scheduled_date,
                time_slot=data.time_slot,
                notes=data.notes,
                technician_id=data.technician_id,
                status=OrderStatus.ASSIGNED if data.technician_id else OrderStatus.PENDING,
                attempt_number=attempt_number,
                previous_order_id=previous_order_id,
                created_by_id=self.actor.id,
            )
            coords = geocode_address(order.street, order.city, order.postal_code)
            if coords:
                order.lat, order.lng = coords
            self.db.add(order)
            self.db.flush()
            note = f"attempt {attempt_number} of order {order.order_number}" if previous_order_id else "order created"
            self._record(order, None, note)
            logger.info(f"Order {order.order_number} created ({self.module.code}, attempt {attempt_number}) by user {self.actor.id}")
            return order

    def assign_technician(self, order_id: int, technician_id: Optional[int]) -> Order:
        """Set or clear the technician of an open order."""
        with transaction(self.db):
            order = self.get_order(order_id)
            if order.status in TERMINAL_ORDER_STATUSES:
                raise BadRequestError("closed orders cannot be reassigned", {"order_id": order.id, "status": order.status.value})
            if technician_id is not None:
                self.ledger.get_technician(technician_id)
            before = order.status
            order.technician_id = technician_id
            order.status = OrderStatus.ASSIGNED if technician_id else OrderStatus.PENDING
            self._record(order, before, f"technician set to {technician_id}" if technician_id else "technician removed")
            logger.info(f"Order {order.id} technician -> {technician_id}")
            return order

    # --- completion ---
    def _settlement_codes(self, order: Order, completion: OrderCompletion) -> List[Tuple[str, int]]:
        billable = self.module.is_billable(order.type)
        if self.module.uses_billing_draft and (billable or completion.billing_draft is not None):
            draft = completion.billing_draft or build_billing_draft(completion.work_codes)
            validate_billing_draft(draft)
            return draft_to_work_codes(draft)

        quantities: "OrderedDict[str, int]" = OrderedDict()
        for work_code in completion.work_codes:
            code = work_code.code.strip().upper()
            quantities[code] = quantities.get(code, 0) + work_code.quantity
        if billable and not quantities:
            raise BadRequestError("work codes required", {"order_type": order.type.value})
        return [(code, quantities[code]) for code in sort_billing_codes(quantities)]

    def _rate(self, code: str, warnings: List[str]) -> RateDefinition:
        rate = self.db.execute(
            select(RateDefinition).where(RateDefinition.module_code == self.module.code, RateDefinition.code == code)
        ).scalar_one_or_none()
        if rate is None:
            rate = RateDefinition(module_code=self.module.code, code=code, amount=0)
            self.db.add(rate)
            self.db.flush()
            warnings.append(f"rate definition for {code} was missing and has been created with amount 0")
            logger.warning(f"Created missing rate definition {self.module.code}/{code} with amount 0")
        return rate

    def complete_order(self, order_id: int, completion: OrderCompletion) -> Tuple[Order, List[str]]:
        """Close an order as COMPLETED or NOT_COMPLETED.

        Stock usage, issued devices, collected devices and settlement entries are
        written in the same transaction as the status change. Returns the order
        and any warnings (e.g. auto-created rate definitions).
        """
        warnings: List[str] = []
        with transaction(self.db):
            order = self.get_order(order_id)
            if order.status in TERMINAL_ORDER_STATUSES:
                raise BadRequestError("order already closed", {"order_id": order.id, "status": order.status.value})
            if self.actor.role == UserRole.TECHNICIAN and order.technician_id != self.actor.id:
                raise ForbiddenError("order is not assigned to you", {"order_id": order.id})
            if order.technician_id is None:
                raise BadRequestError("order has no technician", {"order_id": order.id})
            holder = Holder.technician(order.technician_id)
            before = order.status

            if completion.status == OrderStatus.NOT_COMPLETED:
                if completion.failure_reason not in self.module.failure_reasons:
                    raise BadRequestError("invalid failure reason", {"failure_reason": completion.failure_reason})
                if completion.materials or completion.device_ids or completion.collected_devices:
                    raise BadRequestError("a not completed order cannot use stock")
                order.failure_reason = completion.failure_reason
            else:
                order.failure_reason = None
                for code, quantity in self._settlement_codes(order, completion):
                    self._rate(code, warnings)
                    order.settlement_entries.append(SettlementEntry(code=code, quantity=quantity))

                used: "OrderedDict[int, int]" = OrderedDict()
                for usage in completion.materials:
                    used[usage.material_definition_id] = used.get(usage.material_definition_id, 0) + usage.quantity
                for definition_id, quantity in used.items():
                    definition = self.db.get(MaterialDefinition, definition_id)
                    if definition is None or definition.module_code != self.module.code:
                        raise NotFoundError("MaterialDefinition", definition_id)
                    held = self.ledger.sum_stock_for_holder(holder, definition.name)
                    if held < quantity:
                        raise InsufficientStockError(definition.name, quantity, held)
                    self.ledger.consume_material(holder, definition.name, quantity, order)
                    order.materials.append(OrderMaterial(material_definition_id=definition.id, quantity=quantity, unit=definition.unit))

                for item_id in dict.fromkeys(completion.device_ids):
                    item = self.ledger.get_item(item_id, for_update=True)
                    if item.item_type != ItemType.DEVICE or not self.ledger.holds(item, holder):
                        raise BadRequestError("device not held by technician", {"item_id": item_id})
                    self.ledger.attach_to_order(item, order)
                    order.equipment.append(OrderEquipment(warehouse_item_id=item.id))

                for device in completion.collected_devices:
                    self.ledger.collect_from_client(order, device, order.technician_id)

            order.status = completion.status
            order.completed_at = datetime.utcnow()
            if completion.notes:
                order.notes = completion.notes
            self._record(order, before, completion.failure_reason if order.failure_reason else completion.notes)
            logger.info(f"Order {order.id} closed as {order.status.value} by user {self.actor.id}")
        return order, warnings

    # --- retries ---
    def create_retry(self, order_id: int, data: OrderRetry) -> Order:
        """Schedule the next attempt of a not completed order; the original row is left as is."""
        with transaction(self.db):
            previous = self.get_order(order_id)
            if previous.status != OrderStatus.NOT_COMPLETED:
                raise BadRequestError("only not completed orders can be retried", {"status": previous.status.value})
            later = self.db.execute(select(Order.id).where(Order.previous_order_id == previous.id)).first()
            if later is not None:
                raise ConflictError("order already has a next attempt", {"order_id": previous.id, "next_order_id": later[0]})
            if data.technician_id is not None:
                self.ledger.get_technician(data.technician_id)

            retry = Order(
                module_code=self.module.code,
                order_number=previous.order_number,
                type=previous.type,
                city=previous.city,
                street=previous.street,
                postal_code=previous.postal_code,
                operator=previous.operator,
                lat=previous.lat,
                lng=previous.lng,
                scheduled_date=data.scheduled_date,
                time_slot=data.time_slot,
                notes=data.notes,
                technician_id=data.technician_id,
                status=OrderStatus.ASSIGNED if data.technician_id else OrderStatus.PENDING,
                attempt_number=previous.attempt_number + 1,
                previous_order_id=previous.id,
                created_by_id=self.actor.id,
            )
            self.db.add(retry)
            self.db.flush()
            self._record(retry, None, f"attempt {retry.attempt_number} of order {retry.order_number}")
            logger.info(f"Retry {retry.id} created for order {previous.id}")
            return retry

    def delete_order(self, order_id: int) -> None:
        with transaction(self.db):
            order = self.get_order(order_id)
            if order.status in TERMINAL_ORDER_STATUSES:
                raise BadRequestError("closed orders cannot be deleted", {"status": order.status.value})
            self.db.delete(order)
            logger.info(f"Order {order_id} deleted by user {self.actor.id}")

    # --- reads ---
    def list_orders(
        self,
        status: Optional[OrderStatus] = None,
        technician_id: Optional[int] = None,
        date_from: Optional[date] = None,
        date_to: Optional[date] = None,
        search: Optional[str] = None,
    ) -> List[Order]:
        stmt = select(Order).where(Order.module_code == self.module.code)
        if status is not None:
            stmt = stmt.where(Order.status == status)
        if technician_id is not None:
            stmt = stmt.where(Order.technician_id == technician_id)
        if date_from is not None:
            stmt = stmt.where(Order.scheduled_date >= date_from)
        if date_to is not None:
            stmt = stmt.where(Order.scheduled_date <= date_to)
        orders = list(self.db.execute(stmt.order_by(Order.scheduled_date.desc(), Order.id.desc())).scalars().all())
        if search:
            needle = normalize_search(search)
            orders = [
                o for o in orders
                if needle in normalize_search(f"{o.order_number} {o.city} {o.street}")
            ]
        return orders

    def attempt_chain(self, order_id: int) -> List[Order]:
        """All attempts of the job `order_id` belongs to, first attempt first."""
        order = self.get_order(order_id)
        while order.previous_order is not None:
            order = order.previous_order
        chain = [order]
        while True:
            nxt = self.db.execute(select(Order).where(Order.previous_order_id == chain[-1].id)).scalars().first()
            if nxt is None:
                return chain
            chain.append(nxt)

    def timeline(self, order_id: int) -> List[Dict[str, Any]]:
        entries = []
        for attempt in self.attempt_chain(order_id):
            for h in attempt.history:
                entries.append({
                    "order_id": attempt.id,
                    "attempt_number": attempt.attempt_number,
                    "status_before": h.status_before.value if h.status_before else None,
                    "status_after": h.status_after.value,
                    "notes": h.notes,
                    "changed_by_id": h.changed_by_id,
                    "changed_at": h.changed_at,
                })
        return entries

    def technician_month_summary(self, technician_id: int, year: int, month: int) -> Dict[str, Any]:
        start, end = month_range(year, month)
        orders = self.list_orders(technician_id=technician_id, date_from=start, date_to=end)
        closed = [o for o in orders if o.status in TERMINAL_ORDER_STATUSES]
        completed = [o for o in closed if o.status == OrderStatus.COMPLETED]
        rates = {
            r.code: Decimal(r.amount or 0)
            for r in self.db.execute(
                select(RateDefinition).where(RateDefinition.module_code == self.module.code)
            ).scalars()
        }
        revenue = sum(
            (rates.get(e.code, Decimal(0)) * e.quantity for o in completed for e in o.settlement_entries),
            Decimal(0),
        )
        working_days = len({o.scheduled_date for o in closed})
        settings = self.db.get(TechnicianSettings, technician_id)
        days_goal = settings.working_days_goal if settings else 0
        revenue_goal = Decimal(settings.revenue_goal) if settings else Decimal(0)
        return {
            "technician_id": technician_id,
            "year": year,
            "month": month,
            "completed": len(completed),
            "not_completed": len(closed) - len(completed),
            "assigned": len(orders) - len(closed),
            "revenue": float(revenue),
            "working_days": working_days,
            "working_days_goal": days_goal,
            "revenue_goal": float(revenue_goal),
            "revenue_goal_percent": round(float(revenue / revenue_goal * 100), 1) if revenue_goal else None,
        }
