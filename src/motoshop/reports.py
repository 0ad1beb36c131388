from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal

from psycopg import Connection

from .maintenance import MaintenanceWarning, vehicles_needing_maintenance
from .repositories.ledger_repo import LedgerRepository
from .repositories.payment_source_repo import PaymentSourceRepository
from .repositories.vehicle_repo import VehicleRepository


@dataclass
class CashBookSummary:
    income: Decimal = Decimal("0")
    expense: Decimal = Decimal("0")
    by_category: dict[str, Decimal] = field(default_factory=dict)
    count: int = 0

    @property
    def net(self) -> Decimal:
        return self.income + self.expense


def cash_book_summary(
    conn: Connection,
    ledger_repo: LedgerRepository,
    *,
    branch_id: str,
    date_from: datetime,
    date_to: datetime,
) -> CashBookSummary:
    summary = CashBookSummary()
    by_category: dict[str, Decimal] = defaultdict(Decimal)
    for tx in ledger_repo.list_between(conn, branch_id=branch_id, date_from=date_from, date_to=date_to):
        if tx.amount >= 0:
            summary.income += tx.amount
        else:
            summary.expense += tx.amount
        by_category[tx.category] += tx.amount
        summary.count += 1
    summary.by_category = dict(sorted(by_category.items()))
    return summary


def payment_source_balances(conn: Connection, repo: PaymentSourceRepository, branch_id: str) -> dict[str, Decimal]:
    return repo.list_balances(conn, branch_id)


def maintenance_due(conn: Connection, vehicle_repo: VehicleRepository, limit: int = 500) -> list[dict]:
    rows = []
    for vehicle, warnings in vehicles_needing_maintenance(vehicle_repo.list_all(conn, limit=limit)):
        rows.append(
            {
                "vehicle_id": vehicle.id,
                "customer_id": vehicle.customer_id,
                "model": vehicle.model,
                "license_plate": vehicle.license_plate,
                "current_km": vehicle.current_km,
                "warnings": [_warning_dict(w) for w in warnings],
            }
        )
    return rows


def _warning_dict(w: MaintenanceWarning) -> dict:
    return {
        "type": w.type,
        "name": w.name,
        "km_since_last_service": w.km_since_last_service,
        "km_until_due": w.km_until_due,
        "overdue": w.is_overdue,
        "due_soon": w.is_due_soon,
    }
