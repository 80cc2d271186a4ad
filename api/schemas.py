from datetime import date, datetime
from decimal import Decimal
from typing import List, Optional
from pydantic import BaseModel, Field, EmailStr, field_validator

from db.models import OrderStatus, OrderType, UserRole, UserStatus


def _strip_upper(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    value = value.strip().upper()
    return value or None


# --- Auth / users ---
class LoginRequest(BaseModel):
    email: EmailStr
    password: str = Field(..., min_length=1)

class LocationResponse(BaseModel):
    id: str
    name: str

    class Config:
        from_attributes = True

class UserResponse(BaseModel):
    id: int
    email: str
    name: str
    phone_number: Optional[str] = None
    identifier: Optional[str] = None
    role: UserRole
    status: UserStatus
    modules: List[str] = []
    locations: List[LocationResponse] = []
    created_at: Optional[datetime] = None

class TokenResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    user: UserResponse

class CapabilitiesResponse(BaseModel):
    role: UserRole
    is_admin: bool
    is_coordinator: bool
    is_warehouseman: bool
    is_technician: bool
    active_location_id: Optional[str] = None
    module_codes: List[str] = []

class UserCreate(BaseModel):
    email: EmailStr
    name: str = Field(..., min_length=2, max_length=150)
    phone_number: Optional[str] = None
    identifier: Optional[str] = None
    role: UserRole = UserRole.TECHNICIAN
    module_codes: List[str] = []
    location_ids: List[str] = []

    @field_validator("module_codes")
    @classmethod
    def upper_module_codes(cls, v):
        return [code.strip().upper() for code in v]

class UserUpdate(BaseModel):
    email: Optional[EmailStr] = None
    name: Optional[str] = Field(None, min_length=2, max_length=150)
    phone_number: Optional[str] = None
    identifier: Optional[str] = None
    role: Optional[UserRole] = None
    module_codes: Optional[List[str]] = None
    location_ids: Optional[List[str]] = None

    @field_validator("module_codes")
    @classmethod
    def upper_module_codes(cls, v):
        return None if v is None else [code.strip().upper() for code in v]

class UserStatusUpdate(BaseModel):
    status: UserStatus

class UserCreatedResponse(BaseModel):
    user: UserResponse
    email_sent: bool

class TechnicianSettingsUpdate(BaseModel):
    working_days_goal: int = Field(..., ge=0, le=31)
    revenue_goal: Decimal = Field(..., ge=0)

class TechnicianSettingsResponse(BaseModel):
    user_id: int
    working_days_goal: int
    revenue_goal: float


# --- Orders ---
class OrderCreate(BaseModel):
    order_number: str = Field(..., min_length=1, max_length=50)
    type: OrderType
    city: str = Field(..., min_length=1)
    street: str = Field(..., min_length=1)
    postal_code: Optional[str] = None
    operator: Optional[str] = None
    scheduled_date: date
    time_slot: str = Field(..., min_length=1, max_length=20)
    notes: Optional[str] = None
    technician_id: Optional[int] = None

    @field_validator("order_number")
    @classmethod
    def strip_order_number(cls, v):
        return v.strip()

class OrderAssign(BaseModel):
    technician_id: Optional[int] = None

class WorkCodeInput(BaseModel):
    code: str = Field(..., min_length=1)
    quantity: int = Field(1, ge=1)

class MaterialUsage(BaseModel):
    material_definition_id: int
    quantity: int = Field(..., ge=1)

class CollectedDevice(BaseModel):
    name: str
    category: str
    serial_number: str

    @field_validator("serial_number")
    @classmethod
    def upper_serial(cls, v):
        return v.strip().upper()

class BillingAddon(BaseModel):
    code: str = Field(..., min_length=1)
    quantity: int = Field(1, ge=1)

class BillingDraft(BaseModel):
    base_code: Optional[str] = None
    activation: Optional[str] = None
    multiroom_count: int = Field(0, ge=0)
    addons: List[BillingAddon] = []

    @field_validator("base_code", "activation")
    @classmethod
    def upper_codes(cls, v):
        return _strip_upper(v)

class OrderCompletion(BaseModel):
    status: OrderStatus
    notes: Optional[str] = None
    failure_reason: Optional[str] = None
    work_codes: List[WorkCodeInput] = []
    billing_draft: Optional[BillingDraft] = None
    materials: List[MaterialUsage] = []
    device_ids: List[int] = []
    collected_devices: List[CollectedDevice] = []

    @field_validator("status")
    @classmethod
    def terminal_status(cls, v):
        if v not in (OrderStatus.COMPLETED, OrderStatus.NOT_COMPLETED):
            raise ValueError("status must be COMPLETED or NOT_COMPLETED")
        return v

class OrderRetry(BaseModel):
    scheduled_date: date
    time_slot: str = Field(..., min_length=1, max_length=20)
    technician_id: Optional[int] = None
    notes: Optional[str] = None

class CompletionResponse(BaseModel):
    order: dict
    warnings: List[str] = []


# --- Teams ---
class TeamCreate(BaseModel):
    technician1_id: int
    technician2_id: int
    active: bool = True

class TeamUpdate(BaseModel):
    technician1_id: Optional[int] = None
    technician2_id: Optional[int] = None
    active: Optional[bool] = None


# --- Warehouse ---
class DeviceReceipt(BaseModel):
    name: str
    category: str
    serial_number: str

    @field_validator("serial_number")
    @classmethod
    def upper_serial(cls, v):
        return v.strip().upper()

class MaterialReceipt(BaseModel):
    material_definition_id: int
    quantity: int = Field(..., ge=1)

class AddItemsRequest(BaseModel):
    devices: List[DeviceReceipt] = []
    materials: List[MaterialReceipt] = []
    notes: Optional[str] = None

class TransferItem(BaseModel):
    item_id: int
    quantity: int = Field(1, ge=1)

class IssueItemsRequest(BaseModel):
    technician_id: int
    items: List[TransferItem] = Field(..., min_length=1)
    notes: Optional[str] = None

class ReturnItemsRequest(BaseModel):
    items: List[TransferItem] = Field(..., min_length=1)
    notes: Optional[str] = None

class StockTransferRequest(BaseModel):
    item_id: int
    from_technician_id: Optional[int] = None
    to_technician_id: Optional[int] = None
    from_location_id: Optional[str] = None
    to_location_id: Optional[str] = None
    quantity: int = Field(1, ge=1)

class TechnicianTransferRequest(BaseModel):
    to_technician_id: int
    items: List[TransferItem] = Field(..., min_length=1)

class TransferDecision(BaseModel):
    item_ids: List[int] = Field(..., min_length=1)

class ReturnToOperatorRequest(BaseModel):
    history_ids: List[int] = Field(..., min_length=1)

class ReturnToOperatorResponse(BaseModel):
    history_ids: List[int]
    skipped_ids: List[int]

class SkippedImportRow(BaseModel):
    row: int
    serial_number: Optional[str] = None
    reason: str

class ImportDevicesResponse(BaseModel):
    added_count: int
    skipped_count: int
    skipped: List[SkippedImportRow]

class StockSumResponse(BaseModel):
    material_name: str
    quantity: int


# --- Settings ---
class DeviceDefinitionCreate(BaseModel):
    category: str = Field(..., min_length=1, max_length=50)
    name: str = Field(..., min_length=2, max_length=150)
    price: Decimal = Field(0, ge=0)

    @field_validator("category")
    @classmethod
    def upper_category(cls, v):
        return v.strip().upper()

    @field_validator("name")
    @classmethod
    def strip_name(cls, v):
        return v.strip()

class DeviceDefinitionUpdate(DeviceDefinitionCreate):
    pass

class MaterialDefinitionCreate(BaseModel):
    name: str = Field(..., min_length=2, max_length=150)
    category: Optional[str] = None
    material_index: Optional[str] = None
    unit: str = "PIECE"
    price: Decimal = Field(0, ge=0)

    @field_validator("name")
    @classmethod
    def strip_name(cls, v):
        return v.strip()

    @field_validator("unit")
    @classmethod
    def upper_unit(cls, v):
        return v.strip().upper()

class MaterialDefinitionUpdate(MaterialDefinitionCreate):
    pass

class RateDefinitionCreate(BaseModel):
    code: str = Field(..., min_length=1, max_length=30)
    amount: Decimal = Field(..., ge=0)

    @field_validator("code")
    @classmethod
    def canonical_code(cls, v):
        return "".join(v.split()).upper()

class RateDefinitionUpdate(BaseModel):
    amount: Decimal = Field(..., ge=0)


# --- Reports ---
class ReportResponse(BaseModel):
    filename: str
    content: str
