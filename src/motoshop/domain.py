from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Literal, Optional

WorkOrderStatus = Literal["received", "in_progress", "completed", "delivered", "cancelled"]
PaymentStatus = Literal["unpaid", "partial", "paid"]
TransactionType = Literal["income", "expense"]
MaintenanceType = Literal["oil_change", "gearbox_oil", "throttle_clean"]

WORK_ORDER_STATUSES: tuple[str, ...] = ("received", "in_progress", "completed", "delivered", "cancelled")
TERMINAL_STATUS = "cancelled"


@dataclass(frozen=True)
class Customer:
    id: int
    full_name: str
    phone: str
    email: Optional[str]
    created_at: datetime


@dataclass(frozen=True)
class MaintenanceRecord:
    km: int
    date: datetime


@dataclass(frozen=True)
class Vehicle:
    id: int
    customer_id: int
    model: str
    license_plate: str
    current_km: int = 0
    last_maintenances: dict[str, MaintenanceRecord] = field(default_factory=dict)


@dataclass(frozen=True)
class Part:
    id: int
    sku: str
    name: str
    retail_price: Decimal
    cost_price: Decimal
    is_active: bool
    created_at: datetime


@dataclass(frozen=True)
class PartLine:
    part_id: int
    name: str
    sku: str
    quantity: int
    price: Decimal
    cost_price: Decimal = Decimal("0")


@dataclass(frozen=True)
class ServiceLine:
    description: str
    quantity: int
    price: Decimal
    cost_price: Optional[Decimal] = None


@dataclass(frozen=True)
class WorkOrder:
    id: str
    branch_id: str
    customer_id: Optional[int]
    customer_name: str
    customer_phone: str
    vehicle_id: Optional[int]
    vehicle_model: Optional[str]
    license_plate: Optional[str]
    current_km: Optional[int]
    issue_description: Optional[str]
    technician_name: Optional[str]
    status: WorkOrderStatus
    labor_cost: Decimal
    discount: Decimal
    parts: tuple[PartLine, ...]
    services: tuple[ServiceLine, ...]
    total: Decimal
    payment_status: PaymentStatus
    payment_method: Optional[str]
    deposit_amount: Decimal
    additional_payment: Decimal
    total_paid: Decimal
    remaining_amount: Decimal
    notes: Optional[str]
    created_at: datetime
    refunded: bool = False
    refunded_at: Optional[datetime] = None
    refund_reason: Optional[str] = None


@dataclass(frozen=True)
class CashTransaction:
    id: int
    type: TransactionType
    category: str
    amount: Decimal
    description: str
    branch_id: str
    payment_source_id: str
    reference_id: Optional[str]
    created_at: datetime


@dataclass(frozen=True)
class CustomerDebt:
    id: int
    customer_id: int
    work_order_id: str
    customer_name: str
    phone: Optional[str]
    license_plate: Optional[str]
    description: str
    total_amount: Decimal
    paid_amount: Decimal
    remaining_amount: Decimal
    branch_id: str


@dataclass(frozen=True)
class SupplierDebt:
    id: int
    supplier_name: str
    description: str
    total_amount: Decimal
    paid_amount: Decimal
    remaining_amount: Decimal
    branch_id: str
    receipt_code: Optional[str] = None


@dataclass(frozen=True)
class InventoryLine:
    id: int
    receipt_code: str
    part_id: int
    part_name: str
    quantity: int
    unit_cost: Decimal
    branch_id: str
    supplier_name: Optional[str]
