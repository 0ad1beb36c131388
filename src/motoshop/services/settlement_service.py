from __future__ import annotations

import logging
import re
from collections import defaultdict
from dataclasses import dataclass, field, replace
from datetime import datetime
from decimal import Decimal
from typing import Callable, Optional
from uuid import uuid4

import psycopg
from psycopg import Connection

from ..domain import (
    TERMINAL_STATUS,
    WORK_ORDER_STATUSES,
    MaintenanceType,
    PartLine,
    ServiceLine,
    Vehicle,
    WorkOrder,
)
from ..maintenance import detect_maintenances, update_vehicle_maintenances
from ..repositories.customer_repo import CustomerRepository
from ..repositories.debt_repo import DebtRepository
from ..repositories.ledger_repo import LedgerRepository
from ..repositories.payment_source_repo import PaymentSourceRepository
from ..repositories.stock_repo import StockRepository
from ..repositories.vehicle_repo import VehicleRepository
from ..repositories.work_order_repo import WorkOrderRepository
from .errors import ConflictError, NotFoundError, RemoteWriteError, StockUnderflowError, ValidationError
from .totals import ZERO, compute_totals, outsourcing_cost, payment_status, remaining_amount

logger = logging.getLogger(__name__)

PHONE_RE = re.compile(r"^[0-9]{10,11}$")
MAINTENANCE_STATUSES = ("completed", "delivered")
INCOME_CATEGORIES = ("service_deposit", "service_income")


@dataclass
class WorkOrderInput:
    customer_name: str
    customer_phone: str
    status: str = "received"
    labor_cost: Decimal = ZERO
    discount: Decimal = ZERO
    parts: list[PartLine] = field(default_factory=list)
    services: list[ServiceLine] = field(default_factory=list)
    payment_method: Optional[str] = None
    deposit_amount: Decimal = ZERO
    additional_payment: Decimal = ZERO
    vehicle_id: Optional[int] = None
    vehicle_model: Optional[str] = None
    license_plate: Optional[str] = None
    current_km: Optional[int] = None
    issue_description: Optional[str] = None
    technician_name: Optional[str] = None
    notes: Optional[str] = None
    branch_id: Optional[str] = None

    @classmethod
    def from_order(cls, order: WorkOrder) -> WorkOrderInput:
        return cls(
            customer_name=order.customer_name,
            customer_phone=order.customer_phone,
            status=order.status,
            labor_cost=order.labor_cost,
            discount=order.discount,
            parts=list(order.parts),
            services=list(order.services),
            payment_method=order.payment_method,
            deposit_amount=order.deposit_amount,
            additional_payment=order.additional_payment,
            vehicle_id=order.vehicle_id,
            vehicle_model=order.vehicle_model,
            license_plate=order.license_plate,
            current_km=order.current_km,
            issue_description=order.issue_description,
            technician_name=order.technician_name,
            notes=order.notes,
            branch_id=order.branch_id,
        )


@dataclass
class SettlementResult:
    order: WorkOrder
    created: bool
    transaction_ids: list[int] = field(default_factory=list)
    debt_id: Optional[int] = None
    maintenance: set[MaintenanceType] = field(default_factory=set)


@dataclass
class RefundResult:
    order: WorkOrder
    refund_amount: Decimal
    transaction_ids: list[int] = field(default_factory=list)
    debt_id: Optional[int] = None


class SettlementService:
    """Applies work order saves and refunds to the order, ledger, stock and debt stores.

    Writes happen in a fixed order: work order, cash transactions (with payment
    source balances), part stock, customer debt, vehicle maintenance history.
    Input is validated and stock availability checked before the first write.
    A store failure after the work order row is written raises RemoteWriteError
    with ``primary_applied=True``; callers that need all-or-nothing behaviour run
    the call inside ``Db.transaction()``.
    """

    def __init__(
        self,
        *,
        customer_repo: CustomerRepository,
        vehicle_repo: VehicleRepository,
        work_order_repo: WorkOrderRepository,
        ledger_repo: LedgerRepository,
        payment_source_repo: PaymentSourceRepository,
        stock_repo: StockRepository,
        debt_repo: DebtRepository,
        branch_id: str = "CN1",
        work_order_prefix: str = "SC",
        default_payment_source: str = "cash",
        outsourcing_payment_source: str = "cash",
        clock: Callable[[], datetime] = datetime.now,
        id_factory: Callable[[], str] | None = None,
    ) -> None:
        self.customer_repo = customer_repo
        self.vehicle_repo = vehicle_repo
        self.work_order_repo = work_order_repo
        self.ledger_repo = ledger_repo
        self.payment_source_repo = payment_source_repo
        self.stock_repo = stock_repo
        self.debt_repo = debt_repo
        self.branch_id = branch_id
        self.work_order_prefix = work_order_prefix
        self.default_payment_source = default_payment_source
        self.outsourcing_payment_source = outsourcing_payment_source
        self.clock = clock
        self.id_factory = id_factory or self._new_order_id

    def _new_order_id(self) -> str:
        return f"{self.work_order_prefix}-{self.clock():%Y%m%d}-{uuid4().hex[:6].upper()}"

    # -- validation -----------------------------------------------------------

    def validate(self, data: WorkOrderInput) -> None:
        if not (data.customer_name and data.customer_name.strip()):
            raise ValidationError("CUSTOMER_NAME_REQUIRED", "Customer name is required.")
        if not (data.customer_phone and PHONE_RE.match(data.customer_phone.strip())):
            raise ValidationError("INVALID_PHONE", "Customer phone must be 10-11 digits.")
        if data.status not in WORK_ORDER_STATUSES or data.status == TERMINAL_STATUS:
            raise ValidationError(
                "INVALID_STATUS", f"Status {data.status!r} cannot be set on save; cancel through refund."
            )

        amounts = [data.labor_cost, data.discount, data.deposit_amount, data.additional_payment]
        amounts += [p.price for p in data.parts] + [p.cost_price for p in data.parts]
        amounts += [s.price for s in data.services] + [s.cost_price for s in data.services if s.cost_price is not None]
        if any(a < 0 for a in amounts):
            raise ValidationError("INVALID_AMOUNT", "Amounts cannot be negative.")
        if data.current_km is not None and data.current_km < 0:
            raise ValidationError("INVALID_AMOUNT", "Odometer reading cannot be negative.")

        for p in data.parts:
            if p.quantity <= 0:
                raise ValidationError("INVALID_QUANTITY", f"Quantity for {p.name} must be > 0.")
        for s in data.services:
            if s.quantity <= 0:
                raise ValidationError("INVALID_QUANTITY", f"Quantity for {s.description} must be > 0.")

        totals = compute_totals(data.labor_cost, data.parts, data.services, data.discount)
        if data.discount > totals.subtotal:
            raise ValidationError("INVALID_DISCOUNT", "Discount cannot exceed the subtotal.")

    # -- helpers ----------------------------------------------------------------

    def _call(self, step: str, reference: str | None, primary_applied: bool, fn, *args, **kwargs):
        try:
            return fn(*args, **kwargs)
        except psycopg.Error as e:
            logger.error("Settlement step %s failed for %s: %s", step, reference, e)
            raise RemoteWriteError(step=step, reference=reference, primary_applied=primary_applied, cause=e) from e

    def _post(
        self,
        conn: Connection,
        order: WorkOrder,
        *,
        type: str,
        category: str,
        amount: Decimal,
        source_id: str,
        description: str,
    ) -> int:
        tx_id = self._call(
            "ledger",
            order.id,
            True,
            self.ledger_repo.append,
            conn,
            type=type,
            category=category,
            amount=amount,
            description=description,
            branch_id=order.branch_id,
            payment_source_id=source_id,
            reference_id=order.id,
        )
        self._call(
            "payment_source",
            order.id,
            True,
            self.payment_source_repo.adjust_balance,
            conn,
            source_id=source_id,
            branch_id=order.branch_id,
            delta=amount,
        )
        logger.info("Posted %s %s for work order %s (tx %s)", category, amount, order.id, tx_id)
        return tx_id

    @staticmethod
    def _stock_deltas(previous: tuple[PartLine, ...], current: list[PartLine]) -> dict[int, int]:
        deltas: dict[int, int] = defaultdict(int)
        for p in current:
            deltas[p.part_id] += p.quantity
        for p in previous:
            deltas[p.part_id] -= p.quantity
        return {part_id: d for part_id, d in deltas.items() if d != 0}

    # -- operations -------------------------------------------------------------

    def save_work_order(
        self,
        conn: Connection,
        data: WorkOrderInput,
        *,
        order_id: str | None = None,
    ) -> SettlementResult:
        self.validate(data)
        branch_id = data.branch_id or self.branch_id

        existing: WorkOrder | None = None
        if order_id is not None:
            existing = self._call("read", order_id, False, self.work_order_repo.get, conn, order_id, branch_id)
            if existing is None:
                raise NotFoundError("ORDER_NOT_FOUND", f"Work order {order_id} not found.")
            if existing.refunded:
                raise ConflictError("ALREADY_REFUNDED", f"Work order {order_id} was refunded and cannot be changed.")

        deposit_delta = data.deposit_amount - (existing.deposit_amount if existing else ZERO)
        payment_delta = data.additional_payment - (existing.additional_payment if existing else ZERO)
        if deposit_delta < 0 or payment_delta < 0:
            raise ValidationError("PAYMENT_DECREASE", "Recorded payments cannot be reduced; use a refund instead.")
        # new money needs a source; a resave without a method keeps the stored one
        payment_method = (data.payment_method or "").strip() or (existing.payment_method if existing else None)
        if (deposit_delta > 0 or payment_delta > 0) and not payment_method:
            raise ValidationError("PAYMENT_METHOD_REQUIRED", "Choose a payment method for the recorded payment.")
        outsourcing_delta = outsourcing_cost(data.services) - (outsourcing_cost(existing.services) if existing else ZERO)

        stock_deltas = self._stock_deltas(existing.parts if existing else (), data.parts)
        names = {p.part_id: p.name for p in data.parts}
        for part_id, delta in stock_deltas.items():
            if delta <= 0:
                continue
            available = self._call("read", order_id, False, self.stock_repo.get_stock, conn, part_id, branch_id)
            if available < delta:
                raise StockUnderflowError(
                    part_id=part_id, branch_id=branch_id, available=available, requested=delta, part_name=names.get(part_id)
                )

        vehicle: Vehicle | None = None
        if data.vehicle_id is not None:
            vehicle = self._call("read", order_id, False, self.vehicle_repo.get, conn, data.vehicle_id)
            if vehicle is None:
                raise NotFoundError("VEHICLE_NOT_FOUND", f"Vehicle {data.vehicle_id} not found.")

        totals = compute_totals(data.labor_cost, data.parts, data.services, data.discount)
        total_paid = data.deposit_amount + data.additional_payment
        name = data.customer_name.strip()
        phone = data.customer_phone.strip()

        customer_id = self._call(
            "customer", order_id, False, self.customer_repo.get_or_create, conn, full_name=name, phone=phone
        )

        order = WorkOrder(
            id=existing.id if existing else self.id_factory(),
            branch_id=branch_id,
            customer_id=customer_id,
            customer_name=name,
            customer_phone=phone,
            vehicle_id=data.vehicle_id,
            vehicle_model=data.vehicle_model or (vehicle.model if vehicle else None),
            license_plate=data.license_plate or (vehicle.license_plate if vehicle else None),
            current_km=data.current_km,
            issue_description=data.issue_description,
            technician_name=data.technician_name,
            status=data.status,
            labor_cost=data.labor_cost,
            discount=data.discount,
            parts=tuple(data.parts),
            services=tuple(data.services),
            total=totals.total,
            payment_status=payment_status(total_paid, totals.total),
            payment_method=payment_method,
            deposit_amount=data.deposit_amount,
            additional_payment=data.additional_payment,
            total_paid=total_paid,
            remaining_amount=remaining_amount(totals.total, total_paid),
            notes=data.notes,
            created_at=existing.created_at if existing else self.clock(),
        )

        if existing is None:
            self._call("work_order", order.id, False, self.work_order_repo.insert, conn, order)
        else:
            self._call("work_order", order.id, False, self.work_order_repo.update, conn, order)
        logger.info(
            "Saved work order %s status=%s total=%s paid=%s (%s)",
            order.id, order.status, order.total, order.total_paid, order.payment_status,
        )

        result = SettlementResult(order=order, created=existing is None)

        if deposit_delta > 0:
            result.transaction_ids.append(
                self._post(
                    conn, order,
                    type="income",
                    category="service_deposit",
                    amount=deposit_delta,
                    source_id=order.payment_method,
                    description=f"Deposit for work order #{order.id} - {order.customer_name}",
                )
            )
        if payment_delta > 0:
            result.transaction_ids.append(
                self._post(
                    conn, order,
                    type="income",
                    category="service_income",
                    amount=payment_delta,
                    source_id=order.payment_method,
                    description=f"Payment for work order #{order.id} - {order.customer_name}",
                )
            )
        if outsourcing_delta != 0:
            # a negative delta means outsourced work was removed; the entry reverses it
            work = ", ".join(s.description for s in order.services if s.cost_price)
            result.transaction_ids.append(
                self._post(
                    conn, order,
                    type="expense",
                    category="outsourcing",
                    amount=-outsourcing_delta,
                    source_id=self.outsourcing_payment_source,
                    description=f"Outsourcing cost for work order #{order.id} - {work or 'adjustment'}",
                )
            )

        for part_id, delta in stock_deltas.items():
            current = self._call("stock", order.id, True, self.stock_repo.get_stock, conn, part_id, branch_id)
            self._call("stock", order.id, True, self.stock_repo.set_stock, conn, part_id, branch_id, current - delta)
            logger.info("Stock for part %s at %s: %s -> %s", part_id, branch_id, current, current - delta)

        if order.status == "delivered":
            result.debt_id = self._settle_debt(conn, order)

        if vehicle is not None and order.current_km and order.status in MAINTENANCE_STATUSES:
            detected = detect_maintenances(order.parts, order.services, order.issue_description)
            updated = update_vehicle_maintenances(vehicle, detected, order.current_km, now=self.clock())
            self._call("vehicle", order.id, True, self.vehicle_repo.save_maintenance, conn, updated)
            result.maintenance = detected
            if detected:
                logger.info("Recorded maintenance %s on vehicle %s at %s km", sorted(detected), vehicle.id, order.current_km)

        return result

    def _settle_debt(self, conn: Connection, order: WorkOrder) -> int | None:
        existing = self._call(
            "debt", order.id, True, self.debt_repo.get_customer_debt, conn, order.customer_id, order.id
        )
        if order.remaining_amount <= 0 and existing is None:
            return None
        debt_id = self._call(
            "debt",
            order.id,
            True,
            self.debt_repo.upsert_customer_debt,
            conn,
            customer_id=order.customer_id,
            work_order_id=order.id,
            customer_name=order.customer_name,
            phone=order.customer_phone,
            license_plate=order.license_plate,
            description=(
                f"Debt from work order #{order.id} - {order.customer_name}"
                f" - plate {order.license_plate or 'n/a'}"
            ),
            total_amount=order.total,
            paid_amount=min(order.total_paid, order.total),
            branch_id=order.branch_id,
        )
        logger.info("Customer debt %s for work order %s: remaining %s", debt_id, order.id, order.remaining_amount)
        return debt_id

    def _collected_by_source(self, conn: Connection, order: WorkOrder) -> dict[str, Decimal]:
        rows = self._call("read", order.id, False, self.ledger_repo.list_for_reference, conn, order.id)
        collected: dict[str, Decimal] = defaultdict(Decimal)
        for tx in rows:
            if tx.branch_id == order.branch_id and tx.category in INCOME_CATEGORIES:
                collected[tx.payment_source_id] += tx.amount
        # money recorded on the order but missing from the cash book goes back through its method
        missing = order.total_paid - sum(collected.values(), ZERO)
        if missing > 0:
            collected[order.payment_method or self.default_payment_source] += missing
        return {source: amount for source, amount in collected.items() if amount > 0}

    def refund(self, conn: Connection, order_id: str, reason: str, *, branch_id: str | None = None) -> RefundResult:
        """Cancel a work order and pay back everything collected on it.

        Each payment source gets back what it took in for the order, and an open
        customer debt for the order is closed. Parts used on the order are not
        returned to stock here.
        """
        if not (reason and reason.strip()):
            raise ValidationError("REASON_REQUIRED", "A refund reason is required.")
        branch_id = branch_id or self.branch_id

        order = self._call("read", order_id, False, self.work_order_repo.get, conn, order_id, branch_id)
        if order is None:
            raise NotFoundError("ORDER_NOT_FOUND", f"Work order {order_id} not found.")
        if order.refunded:
            raise ConflictError("ALREADY_REFUNDED", f"Work order {order_id} was already refunded.")
        collected = self._collected_by_source(conn, order) if order.total_paid > 0 else {}

        now = self.clock()
        self._call(
            "work_order",
            order_id,
            False,
            self.work_order_repo.mark_refunded,
            conn,
            order_id=order_id,
            branch_id=branch_id,
            reason=reason.strip(),
            refunded_at=now,
        )
        refunded = replace(order, refunded=True, status=TERMINAL_STATUS, refunded_at=now, refund_reason=reason.strip())
        logger.info("Work order %s refunded: %s", order_id, reason.strip())

        result = RefundResult(order=refunded, refund_amount=order.total_paid)
        for source_id, amount in collected.items():
            result.transaction_ids.append(
                self._post(
                    conn, refunded,
                    type="expense",
                    category="refund",
                    amount=-amount,
                    source_id=source_id,
                    description=f"Refund for work order #{order_id} - {reason.strip()}",
                )
            )
        result.debt_id = self._close_debt(conn, refunded)
        return result

    def _close_debt(self, conn: Connection, order: WorkOrder) -> int | None:
        debt = self._call("debt", order.id, True, self.debt_repo.get_customer_debt, conn, order.customer_id, order.id)
        if debt is None or debt.remaining_amount == 0:
            return None
        debt_id = self._call(
            "debt",
            order.id,
            True,
            self.debt_repo.upsert_customer_debt,
            conn,
            customer_id=debt.customer_id,
            work_order_id=debt.work_order_id,
            customer_name=debt.customer_name,
            phone=debt.phone,
            license_plate=debt.license_plate,
            description=debt.description,
            total_amount=debt.total_amount,
            paid_amount=debt.total_amount,
            branch_id=debt.branch_id,
        )
        logger.info("Customer debt %s closed by refund of work order %s", debt_id, order.id)
        return debt_id
