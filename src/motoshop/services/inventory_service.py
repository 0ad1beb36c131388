from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Callable, Optional
from uuid import uuid4

import psycopg
from psycopg import Connection

from ..repositories.debt_repo import DebtRepository
from ..repositories.inventory_repo import InventoryRepository
from ..repositories.ledger_repo import LedgerRepository
from ..repositories.payment_source_repo import PaymentSourceRepository
from ..repositories.stock_repo import StockRepository
from .errors import ConflictError, NotFoundError, RemoteWriteError, ValidationError
from .totals import ZERO

logger = logging.getLogger(__name__)


@dataclass
class ReceiptLineInput:
    part_id: int
    part_name: str
    quantity: int
    unit_cost: Decimal = ZERO


@dataclass
class ReceiptInput:
    lines: list[ReceiptLineInput]
    supplier_name: Optional[str] = None
    # None means paid in full
    paid_amount: Optional[Decimal] = None
    payment_source: Optional[str] = None
    receipt_code: Optional[str] = None
    branch_id: Optional[str] = None


@dataclass
class ReceiptResult:
    receipt_code: str
    total_cost: Decimal
    paid_amount: Decimal
    transaction_id: Optional[int] = None
    supplier_debt_id: Optional[int] = None


@dataclass
class ReceiptRollback:
    receipt_code: str
    stock_changes: dict[int, tuple[int, int]] = field(default_factory=dict)
    clamped_parts: list[int] = field(default_factory=list)
    deleted_transactions: int = 0
    deleted_supplier_debts: int = 0


class InventoryService:
    def __init__(
        self,
        *,
        inventory_repo: InventoryRepository,
        stock_repo: StockRepository,
        ledger_repo: LedgerRepository,
        payment_source_repo: PaymentSourceRepository,
        debt_repo: DebtRepository,
        branch_id: str = "CN1",
        receipt_prefix: str = "NH",
        default_payment_source: str = "cash",
        clock: Callable[[], datetime] = datetime.now,
    ) -> None:
        self.inventory_repo = inventory_repo
        self.stock_repo = stock_repo
        self.ledger_repo = ledger_repo
        self.payment_source_repo = payment_source_repo
        self.debt_repo = debt_repo
        self.branch_id = branch_id
        self.receipt_prefix = receipt_prefix
        self.default_payment_source = default_payment_source
        self.clock = clock

    def _call(self, step: str, reference: str, fn, *args, **kwargs):
        try:
            return fn(*args, **kwargs)
        except psycopg.Error as e:
            logger.error("Receipt step %s failed for %s: %s", step, reference, e)
            raise RemoteWriteError(step=step, reference=reference, cause=e) from e

    def create_receipt(self, conn: Connection, data: ReceiptInput) -> ReceiptResult:
        if not data.lines:
            raise ValidationError("RECEIPT_LINES_REQUIRED", "A receipt needs at least one line.")
        for ln in data.lines:
            if ln.quantity <= 0:
                raise ValidationError("INVALID_QUANTITY", f"Quantity for {ln.part_name} must be > 0.")
            if ln.unit_cost < 0:
                raise ValidationError("INVALID_AMOUNT", f"Unit cost for {ln.part_name} cannot be negative.")

        total = sum((Decimal(ln.quantity) * ln.unit_cost for ln in data.lines), ZERO)
        paid = total if data.paid_amount is None else data.paid_amount
        if paid < 0 or paid > total:
            raise ValidationError("INVALID_PAID_AMOUNT", "Paid amount must be between 0 and the receipt total.")

        branch_id = data.branch_id or self.branch_id
        code = (data.receipt_code or "").strip() or f"{self.receipt_prefix}-{self.clock():%Y%m%d}-{uuid4().hex[:6].upper()}"
        if self._call("read", code, self.inventory_repo.list_for_receipt, conn, code, branch_id):
            raise ConflictError("RECEIPT_EXISTS", f"Receipt {code} already exists.")
        supplier = (data.supplier_name or "").strip() or None

        for ln in data.lines:
            self._call(
                "inventory",
                code,
                self.inventory_repo.add_line,
                conn,
                receipt_code=code,
                part_id=ln.part_id,
                part_name=ln.part_name,
                quantity=ln.quantity,
                unit_cost=ln.unit_cost,
                branch_id=branch_id,
                supplier_name=supplier,
            )
            current = self._call("stock", code, self.stock_repo.get_stock, conn, ln.part_id, branch_id)
            self._call("stock", code, self.stock_repo.set_stock, conn, ln.part_id, branch_id, current + ln.quantity)

        result = ReceiptResult(receipt_code=code, total_cost=total, paid_amount=paid)
        if paid > 0:
            source = data.payment_source or self.default_payment_source
            result.transaction_id = self._call(
                "ledger",
                code,
                self.ledger_repo.append,
                conn,
                type="expense",
                category="inventory_purchase",
                amount=-paid,
                description=f"Goods receipt {code} - {supplier or 'unknown supplier'}",
                branch_id=branch_id,
                payment_source_id=source,
                reference_id=code,
            )
            self._call(
                "payment_source",
                code,
                self.payment_source_repo.adjust_balance,
                conn,
                source_id=source,
                branch_id=branch_id,
                delta=-paid,
            )
        if total - paid > 0:
            result.supplier_debt_id = self._call(
                "debt",
                code,
                self.debt_repo.create_supplier_debt,
                conn,
                supplier_name=supplier or "Unknown supplier",
                description=f"Unpaid goods receipt {code}",
                total_amount=total,
                paid_amount=paid,
                branch_id=branch_id,
                receipt_code=code,
            )
        logger.info("Receipt %s created: %s lines, total %s, paid %s", code, len(data.lines), total, paid)
        return result

    def delete_receipt(self, conn: Connection, receipt_code: str, *, branch_id: str | None = None) -> ReceiptRollback:
        """Undo a goods receipt.

        Stock is rolled back before any ledger or debt row is removed, so a
        failure part way leaves the receipt's transactions in place for a retry.
        Stock that was already consumed clamps at zero.
        """
        branch_id = branch_id or self.branch_id
        lines = self._call("read", receipt_code, self.inventory_repo.list_for_receipt, conn, receipt_code, branch_id)
        if not lines:
            raise NotFoundError("RECEIPT_NOT_FOUND", f"Receipt {receipt_code} not found.")

        qty_by_part: dict[int, int] = defaultdict(int)
        for ln in lines:
            qty_by_part[ln.part_id] += ln.quantity

        rollback = ReceiptRollback(receipt_code=receipt_code)
        for part_id, qty in qty_by_part.items():
            current = self._call("stock", receipt_code, self.stock_repo.get_stock, conn, part_id, branch_id)
            new_stock = max(0, current - qty)
            if current < qty:
                logger.warning(
                    "Receipt %s: part %s has only %s of %s received units left, stock clamped to 0",
                    receipt_code, part_id, current, qty,
                )
                rollback.clamped_parts.append(part_id)
            self._call("stock", receipt_code, self.stock_repo.set_stock, conn, part_id, branch_id, new_stock)
            rollback.stock_changes[part_id] = (current, new_stock)

        self._call("inventory", receipt_code, self.inventory_repo.delete_receipt, conn, receipt_code, branch_id)

        deleted = self._call(
            "ledger",
            receipt_code,
            self.ledger_repo.delete_for_reference,
            conn,
            branch_id=branch_id,
            reference_id=receipt_code,
            category="inventory_purchase",
        )
        for tx in deleted:
            self._call(
                "payment_source",
                receipt_code,
                self.payment_source_repo.adjust_balance,
                conn,
                source_id=tx.payment_source_id,
                branch_id=branch_id,
                delta=-tx.amount,
            )
        rollback.deleted_transactions = len(deleted)
        rollback.deleted_supplier_debts = self._call(
            "debt",
            receipt_code,
            self.debt_repo.delete_supplier_debts_for_receipt,
            conn,
            branch_id=branch_id,
            receipt_code=receipt_code,
        )
        logger.info(
            "Receipt %s deleted: %s parts rolled back, %s transactions, %s supplier debts",
            receipt_code, len(qty_by_part), rollback.deleted_transactions, rollback.deleted_supplier_debts,
        )
        return rollback
