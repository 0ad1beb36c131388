from __future__ import annotations

from datetime import datetime
from decimal import Decimal

from psycopg import Connection
from psycopg.types.json import Jsonb

from ..domain import PartLine, ServiceLine, WorkOrder
from ..services.errors import NotFoundError

_COLUMNS = (
    "id", "branch_id", "customer_id", "customer_name", "customer_phone",
    "vehicle_id", "vehicle_model", "license_plate", "current_km",
    "issue_description", "technician_name", "status", "labor_cost", "discount",
    "parts_used", "additional_services", "total", "payment_status", "payment_method",
    "deposit_amount", "additional_payment", "total_paid", "remaining_amount",
    "notes", "refunded", "refunded_at", "refund_reason", "created_at",
)


def _parts_to_json(parts: tuple[PartLine, ...]) -> list[dict]:
    return [
        {
            "part_id": p.part_id,
            "name": p.name,
            "sku": p.sku,
            "quantity": p.quantity,
            "price": str(p.price),
            "cost_price": str(p.cost_price),
        }
        for p in parts
    ]


def _services_to_json(services: tuple[ServiceLine, ...]) -> list[dict]:
    return [
        {
            "description": s.description,
            "quantity": s.quantity,
            "price": str(s.price),
            "cost_price": None if s.cost_price is None else str(s.cost_price),
        }
        for s in services
    ]


def _parts_from_json(data: list | None) -> tuple[PartLine, ...]:
    return tuple(
        PartLine(
            part_id=int(d["part_id"]),
            name=d["name"],
            sku=d.get("sku") or "",
            quantity=int(d["quantity"]),
            price=Decimal(d["price"]),
            cost_price=Decimal(d.get("cost_price") or "0"),
        )
        for d in (data or [])
    )


def _services_from_json(data: list | None) -> tuple[ServiceLine, ...]:
    return tuple(
        ServiceLine(
            description=d["description"],
            quantity=int(d["quantity"]),
            price=Decimal(d["price"]),
            cost_price=None if d.get("cost_price") is None else Decimal(d["cost_price"]),
        )
        for d in (data or [])
    )


def work_order_from_row(row: dict) -> WorkOrder:
    data = dict(row)
    data["parts"] = _parts_from_json(data.pop("parts_used"))
    data["services"] = _services_from_json(data.pop("additional_services"))
    return WorkOrder(**data)


def _row_values(order: WorkOrder) -> dict:
    return {
        "id": order.id,
        "branch_id": order.branch_id,
        "customer_id": order.customer_id,
        "customer_name": order.customer_name,
        "customer_phone": order.customer_phone,
        "vehicle_id": order.vehicle_id,
        "vehicle_model": order.vehicle_model,
        "license_plate": order.license_plate,
        "current_km": order.current_km,
        "issue_description": order.issue_description,
        "technician_name": order.technician_name,
        "status": order.status,
        "labor_cost": order.labor_cost,
        "discount": order.discount,
        "parts_used": Jsonb(_parts_to_json(order.parts)),
        "additional_services": Jsonb(_services_to_json(order.services)),
        "total": order.total,
        "payment_status": order.payment_status,
        "payment_method": order.payment_method,
        "deposit_amount": order.deposit_amount,
        "additional_payment": order.additional_payment,
        "total_paid": order.total_paid,
        "remaining_amount": order.remaining_amount,
        "notes": order.notes,
        "refunded": order.refunded,
        "refunded_at": order.refunded_at,
        "refund_reason": order.refund_reason,
        "created_at": order.created_at,
    }


class WorkOrderRepository:
    def insert(self, conn: Connection, order: WorkOrder) -> None:
        values = _row_values(order)
        cols = ", ".join(values)
        placeholders = ", ".join(f"%({c})s" for c in values)
        conn.execute(f"INSERT INTO work_order({cols}) VALUES ({placeholders});", values)

    def update(self, conn: Connection, order: WorkOrder) -> None:
        values = _row_values(order)
        assignments = ", ".join(
            f"{c} = %({c})s" for c in values if c not in ("id", "branch_id", "created_at")
        )
        cur = conn.execute(
            f"UPDATE work_order SET {assignments} WHERE id = %(id)s AND branch_id = %(branch_id)s;",
            values,
        )
        if cur.rowcount != 1:
            raise NotFoundError("ORDER_NOT_FOUND", f"Work order {order.id} not found at {order.branch_id}.")

    def mark_refunded(
        self,
        conn: Connection,
        *,
        order_id: str,
        branch_id: str,
        reason: str,
        refunded_at: datetime,
    ) -> None:
        conn.execute(
            """
            UPDATE work_order
            SET refunded = true, status = 'cancelled', refund_reason = %s, refunded_at = %s
            WHERE id = %s AND branch_id = %s;
            """,
            (reason, refunded_at, order_id, branch_id),
        )

    def delete(self, conn: Connection, order_id: str, branch_id: str) -> None:
        conn.execute("DELETE FROM work_order WHERE id = %s AND branch_id = %s;", (order_id, branch_id))

    def get(self, conn: Connection, order_id: str, branch_id: str) -> WorkOrder | None:
        cur = conn.execute(
            f"SELECT {', '.join(_COLUMNS)} FROM work_order WHERE id = %s AND branch_id = %s;",
            (order_id, branch_id),
        )
        row = cur.fetchone()
        if not row:
            return None
        cols = [d.name for d in cur.description]
        return work_order_from_row(dict(zip(cols, row)))

    def list(self, conn: Connection, branch_id: str, limit: int = 30) -> list[WorkOrder]:
        cur = conn.execute(
            f"""
            SELECT {', '.join(_COLUMNS)} FROM work_order
            WHERE branch_id = %s
            ORDER BY created_at DESC
            LIMIT %s;
            """,
            (branch_id, limit),
        )
        cols = [d.name for d in cur.description]
        return [work_order_from_row(dict(zip(cols, row))) for row in cur.fetchall()]
