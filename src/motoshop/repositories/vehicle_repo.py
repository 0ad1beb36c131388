from __future__ import annotations

from datetime import datetime

from psycopg import Connection
from psycopg.types.json import Jsonb

from ..domain import MaintenanceRecord, Vehicle


def _history_to_json(history: dict[str, MaintenanceRecord]) -> dict:
    return {k: {"km": r.km, "date": r.date.isoformat()} for k, r in history.items()}


def _history_from_json(data: dict | None) -> dict[str, MaintenanceRecord]:
    return {
        k: MaintenanceRecord(km=int(v["km"]), date=datetime.fromisoformat(v["date"]))
        for k, v in (data or {}).items()
    }


def vehicle_from_row(row: dict) -> Vehicle:
    return Vehicle(
        id=int(row["id"]),
        customer_id=int(row["customer_id"]),
        model=row["model"],
        license_plate=row["license_plate"],
        current_km=int(row["current_km"] or 0),
        last_maintenances=_history_from_json(row["last_maintenances"]),
    )


class VehicleRepository:
    def create(
        self,
        conn: Connection,
        *,
        customer_id: int,
        model: str,
        license_plate: str,
        current_km: int = 0,
    ) -> int:
        cur = conn.execute(
            """
            INSERT INTO vehicle(customer_id, model, license_plate, current_km)
            VALUES (%s, %s, %s, %s)
            RETURNING id;
            """,
            (customer_id, model, license_plate, current_km),
        )
        return int(cur.fetchone()[0])

    def get(self, conn: Connection, vehicle_id: int) -> Vehicle | None:
        cur = conn.execute(
            """
            SELECT id, customer_id, model, license_plate, current_km, last_maintenances
            FROM vehicle WHERE id = %s;
            """,
            (vehicle_id,),
        )
        row = cur.fetchone()
        if not row:
            return None
        cols = [d.name for d in cur.description]
        return vehicle_from_row(dict(zip(cols, row)))

    def save_maintenance(self, conn: Connection, vehicle: Vehicle) -> None:
        conn.execute(
            """
            UPDATE vehicle
            SET current_km = %s, last_maintenances = %s
            WHERE id = %s;
            """,
            (vehicle.current_km, Jsonb(_history_to_json(vehicle.last_maintenances)), vehicle.id),
        )

    def list_all(self, conn: Connection, limit: int = 500) -> list[Vehicle]:
        cur = conn.execute(
            """
            SELECT v.id, v.customer_id, v.model, v.license_plate, v.current_km, v.last_maintenances
            FROM vehicle v
            JOIN customer c ON c.id = v.customer_id
            ORDER BY v.id DESC
            LIMIT %s;
            """,
            (limit,),
        )
        cols = [d.name for d in cur.description]
        return [vehicle_from_row(dict(zip(cols, row))) for row in cur.fetchall()]
