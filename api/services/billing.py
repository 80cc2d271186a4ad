"""Billing drafts for completed installations.

A technician reports work codes; they are mapped to a `BillingDraft`
(one base work, an optional activation, a multiroom count and addons),
validated, and only then turned into settlement entries.
"""
from collections import OrderedDict
from typing import Iterable, List, Tuple

from api.schemas import BillingAddon, BillingDraft, WorkCodeInput
from api.services.errors import BadRequestError, BillingDraftError

BASE_ORDER = (
    "W1", "W2", "W3", "W4", "W5", "W6", "WGH",
    "ZJD", "ZJN", "ZJK", "ZJDEW", "DU",
    "P1P", "P2P", "P3P", "PUTD",
)
# Base works that already include the service; they never carry an activation.
OVERRIDE_BASE_CODES = frozenset({"P1P", "P2P", "P3P", "PUTD", "DU"})

ACTIVATION_CODES = ("ZJWEW", "I_1P", "I_2P", "I_3P", "UTD")
# Settlement code written for each reported activation.
ACTIVATION_SETTLEMENT_CODES = {"I_1P": "1P", "I_2P": "2P", "I_3P": "3P"}
ACTIVATION_ORDER = ("ZJWEW", "1P", "2P", "3P", "UTD")

MULTIROOM_CODE = "MR"
MAX_MULTIROOM = 3
DMR_CODE = "DMR"
SPECIAL_ORDER = ("UMZ", "MR", "ZJDD", "ZJND", "ZJKD")

_base_index = {code: i for i, code in enumerate(BASE_ORDER)}
_activation_index = {code: i for i, code in enumerate(ACTIVATION_ORDER)}
_special_index = {code: i for i, code in enumerate(SPECIAL_ORDER)}
_activation_by_settlement = {v: k for k, v in ACTIVATION_SETTLEMENT_CODES.items()}


def validate_billing_draft(draft: BillingDraft) -> BillingDraft:
    """Check a draft against the billing rules in order; the first broken rule raises."""
    if not draft.base_code:
        raise BillingDraftError("base work required", "BASE_REQUIRED")
    if draft.base_code in OVERRIDE_BASE_CODES and draft.activation:
        raise BillingDraftError("activation not allowed for override base work", "ACTIVATION_NOT_ALLOWED")
    if draft.activation and draft.multiroom_count > MAX_MULTIROOM:
        raise BillingDraftError("maximum 3 multiroom units", "MULTIROOM_LIMIT")
    if not draft.activation and any(addon.code == DMR_CODE for addon in draft.addons):
        raise BillingDraftError("DMR requires activation context", "DMR_REQUIRES_ACTIVATION")

    if draft.base_code not in _base_index:
        raise BillingDraftError(f"unknown base work code: {draft.base_code}", "UNKNOWN_BASE")
    if draft.activation and draft.activation not in ACTIVATION_CODES:
        raise BillingDraftError(f"unknown activation code: {draft.activation}", "UNKNOWN_ACTIVATION")
    return draft


def _normalize_code(code: str) -> str:
    return code.strip().upper()


def build_billing_draft(work_codes: Iterable[WorkCodeInput]) -> BillingDraft:
    """Map raw reported work codes onto a draft.

    Base and activation codes are single-valued, `MR` quantities add up into
    the multiroom count and every other code becomes an addon. Activations
    may be reported either raw (`I_2P`) or in settlement form (`2P`).
    """
    base_codes: List[str] = []
    activations: List[str] = []
    multiroom = 0
    addons: "OrderedDict[str, int]" = OrderedDict()

    for item in work_codes:
        code = _normalize_code(item.code)
        code = _activation_by_settlement.get(code, code)
        if code in _base_index:
            if code not in base_codes:
                base_codes.append(code)
        elif code in ACTIVATION_CODES:
            if code not in activations:
                activations.append(code)
        elif code == MULTIROOM_CODE:
            multiroom += item.quantity
        else:
            addons[code] = addons.get(code, 0) + item.quantity

    if len(base_codes) > 1:
        raise BadRequestError("only one base work code allowed", {"codes": base_codes})
    if len(activations) > 1:
        raise BadRequestError("only one activation code allowed", {"codes": activations})

    return BillingDraft(
        base_code=base_codes[0] if base_codes else None,
        activation=activations[0] if activations else None,
        multiroom_count=multiroom,
        addons=[BillingAddon(code=code, quantity=qty) for code, qty in addons.items()],
    )


def draft_to_work_codes(draft: BillingDraft) -> List[Tuple[str, int]]:
    """Settlement `(code, quantity)` pairs for a validated draft, in billing order."""
    quantities: "OrderedDict[str, int]" = OrderedDict()

    def add(code: str, quantity: int) -> None:
        if quantity > 0:
            quantities[code] = quantities.get(code, 0) + quantity

    add(draft.base_code, 1)
    if draft.activation:
        add(ACTIVATION_SETTLEMENT_CODES.get(draft.activation, draft.activation), 1)
    add(MULTIROOM_CODE, draft.multiroom_count)
    for addon in draft.addons:
        add(_normalize_code(addon.code), addon.quantity)

    return [(code, quantities[code]) for code in sort_billing_codes(quantities)]


def _bucket(code: str) -> int:
    if code in _base_index:
        return 0
    if code in _activation_index:
        return 1
    if code in _special_index:
        return 2
    if code.startswith("PKI"):
        return 4
    return 3


def _sort_key(code: str):
    bucket = _bucket(code)
    if bucket == 0:
        return bucket, _base_index[code], ""
    if bucket == 1:
        return bucket, _activation_index[code], ""
    if bucket == 2:
        return bucket, _special_index[code], ""
    if bucket == 4:
        suffix = code[3:]
        return bucket, int(suffix) if suffix.isdigit() else 999, code
    return bucket, 0, code


def sort_billing_codes(codes: Iterable[str]) -> List[str]:
    """Unique codes ordered base -> activation -> addons -> misc -> PKI."""
    unique = {c.strip() for c in codes if c and c.strip()}
    return sorted(unique, key=_sort_key)
