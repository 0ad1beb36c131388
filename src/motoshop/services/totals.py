from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Iterable

from ..domain import PartLine, PaymentStatus, ServiceLine

ZERO = Decimal("0")


@dataclass(frozen=True)
class Totals:
    parts_subtotal: Decimal
    services_subtotal: Decimal
    subtotal: Decimal
    total: Decimal


def parts_subtotal(parts: Iterable[PartLine]) -> Decimal:
    return sum((Decimal(p.quantity) * p.price for p in parts), ZERO)


def services_subtotal(services: Iterable[ServiceLine]) -> Decimal:
    return sum((Decimal(s.quantity) * s.price for s in services), ZERO)


def outsourcing_cost(services: Iterable[ServiceLine]) -> Decimal:
    return sum((Decimal(s.quantity) * (s.cost_price or ZERO) for s in services), ZERO)


def compute_totals(labor_cost: Decimal, parts: Iterable[PartLine], services: Iterable[ServiceLine], discount: Decimal) -> Totals:
    p = parts_subtotal(parts)
    s = services_subtotal(services)
    subtotal = labor_cost + p + s
    return Totals(parts_subtotal=p, services_subtotal=s, subtotal=subtotal, total=max(ZERO, subtotal - discount))


def payment_status(total_paid: Decimal, total: Decimal) -> PaymentStatus:
    if total_paid >= total:
        return "paid"
    if total_paid > ZERO:
        return "partial"
    return "unpaid"


def remaining_amount(total: Decimal, total_paid: Decimal) -> Decimal:
    return max(ZERO, total - total_paid)
