from __future__ import annotations

from psycopg import Connection

from ..services.errors import StockUnderflowError


class StockRepository:
    """Per-branch quantity on hand."""

    def get_stock(self, conn: Connection, part_id: int, branch_id: str) -> int:
        cur = conn.execute(
            "SELECT quantity FROM part_stock WHERE part_id = %s AND branch_id = %s;",
            (part_id, branch_id),
        )
        row = cur.fetchone()
        return int(row[0]) if row else 0

    def set_stock(self, conn: Connection, part_id: int, branch_id: str, quantity: int) -> None:
        if quantity < 0:
            raise StockUnderflowError(
                part_id=part_id,
                branch_id=branch_id,
                available=self.get_stock(conn, part_id, branch_id),
                requested=-quantity,
            )
        conn.execute(
            """
            INSERT INTO part_stock(part_id, branch_id, quantity)
            VALUES (%s, %s, %s)
            ON CONFLICT (part_id, branch_id) DO UPDATE SET
              quantity = EXCLUDED.quantity;
            """,
            (part_id, branch_id, quantity),
        )
