from __future__ import annotations

from decimal import Decimal

from psycopg import Connection

from ..domain import InventoryLine


class InventoryRepository:
    """Stock-in lines grouped by receipt code."""

    def add_line(
        self,
        conn: Connection,
        *,
        receipt_code: str,
        part_id: int,
        part_name: str,
        quantity: int,
        unit_cost: Decimal,
        branch_id: str,
        supplier_name: str | None,
    ) -> int:
        cur = conn.execute(
            """
            INSERT INTO inventory_line(receipt_code, part_id, part_name, quantity, unit_cost, branch_id, supplier_name)
            VALUES (%s, %s, %s, %s, %s, %s, %s)
            RETURNING id;
            """,
            (receipt_code, part_id, part_name, quantity, unit_cost, branch_id, supplier_name),
        )
        return int(cur.fetchone()[0])

    def list_for_receipt(self, conn: Connection, receipt_code: str, branch_id: str) -> list[InventoryLine]:
        cur = conn.execute(
            """
            SELECT id, receipt_code, part_id, part_name, quantity, unit_cost, branch_id, supplier_name
            FROM inventory_line
            WHERE receipt_code = %s AND branch_id = %s
            ORDER BY id;
            """,
            (receipt_code, branch_id),
        )
        cols = [d.name for d in cur.description]
        return [InventoryLine(**dict(zip(cols, row))) for row in cur.fetchall()]

    def delete_receipt(self, conn: Connection, receipt_code: str, branch_id: str) -> int:
        cur = conn.execute(
            "DELETE FROM inventory_line WHERE receipt_code = %s AND branch_id = %s;",
            (receipt_code, branch_id),
        )
        return cur.rowcount
