"""Module descriptors.

Vectra and OPL run the same order, warehouse and settlement engine. Everything
that differs between the two product lines is declared here and looked up by
module code, so services never branch on a module name.
"""
from dataclasses import dataclass, field
from typing import Dict, FrozenSet, Tuple

from db.models import OrderType
from api.services.errors import NotFoundError


@dataclass(frozen=True)
class ModuleDescriptor:
    code: str
    name: str
    order_types: FrozenSet[OrderType]
    billable_order_types: FrozenSet[OrderType]
    failure_reasons: Tuple[str, ...]
    uses_billing_draft: bool = False
    teams_enabled: bool = False
    default_rates: Dict[str, float] = field(default_factory=dict)

    def is_billable(self, order_type: OrderType) -> bool:
        return order_type in self.billable_order_types


VECTRA = ModuleDescriptor(
    code="VECTRA",
    name="Vectra CRM",
    order_types=frozenset({OrderType.INSTALLATION, OrderType.SERVICE, OrderType.OUTAGE}),
    billable_order_types=frozenset({OrderType.INSTALLATION}),
    failure_reasons=(
        "No keys or access to the distribution box",
        "No cable in the subscriber premises",
        "Damaged signal cable",
        "No signal in the building",
        "Technician did not reach the subscriber",
        "Network failure",
        "Incorrect contract data",
        "Contract does not match the order",
        "Incorrect appointment date",
        "Subscriber absent",
        "Appointment changed by subscriber",
        "Subscriber equipment problem",
        "No consent for drilling",
        "Cable not released",
        "Subscriber resigned",
    ),
    default_rates={},
)

OPL = ModuleDescriptor(
    code="OPL",
    name="OPL CRM",
    order_types=frozenset({OrderType.INSTALLATION, OrderType.SERVICE}),
    billable_order_types=frozenset({OrderType.INSTALLATION}),
    failure_reasons=(
        "Customer resigned",
        "Rescheduled for customer reasons",
        "Rescheduled for technical reasons",
        "Rescheduled for technician reasons",
        "Extended scope of work",
        "No access to operator equipment",
        "No consent from building administrator",
        "Missing materials",
        "Incorrect contract data",
        "Force majeure",
    ),
    uses_billing_draft=True,
    teams_enabled=True,
    default_rates={
        "WGH": 116,
        "ZJD": 212,
        "ZJDD": 51,
        "ZJKD": 8,
        "ZJND": 21,
        "P1P": 33,
        "DAFP": 85,
        "ZJN": 15,
        "MR": 9,
        "OZA": 13,
    },
)

MODULES: Dict[str, ModuleDescriptor] = {m.code: m for m in (VECTRA, OPL)}

# Modules that only gate access and carry no order or warehouse data.
ACCESS_ONLY_MODULES = {"HR": "HR"}

ALL_MODULE_CODES = tuple(MODULES) + tuple(ACCESS_ONLY_MODULES)


def get_module(code: str) -> ModuleDescriptor:
    descriptor = MODULES.get(code.upper())
    if descriptor is None:
        raise NotFoundError("Module", code)
    return descriptor
