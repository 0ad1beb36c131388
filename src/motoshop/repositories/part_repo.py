from __future__ import annotations

from psycopg import Connection


class PartRepository:
    def upsert_by_sku(
        self,
        conn: Connection,
        *,
        sku: str,
        name: str,
        retail_price: float,
        cost_price: float,
        is_active: bool = True,
    ) -> int:
        cur = conn.execute(
            """
            INSERT INTO part(sku, name, retail_price, cost_price, is_active)
            VALUES (%s, %s, %s, %s, %s)
            ON CONFLICT (sku) DO UPDATE SET
              name = EXCLUDED.name,
              retail_price = EXCLUDED.retail_price,
              cost_price = EXCLUDED.cost_price,
              is_active = EXCLUDED.is_active
            RETURNING id;
            """,
            (sku, name, retail_price, cost_price, is_active),
        )
        return int(cur.fetchone()[0])

    def get_by_sku(self, conn: Connection, sku: str) -> dict | None:
        cur = conn.execute(
            """
            SELECT id, sku, name, retail_price, cost_price, is_active, created_at
            FROM part WHERE sku = %s;
            """,
            (sku,),
        )
        row = cur.fetchone()
        if not row:
            return None
        cols = [d.name for d in cur.description]
        return dict(zip(cols, row))

    def list_with_stock(self, conn: Connection, branch_id: str, limit: int = 50) -> list[dict]:
        cur = conn.execute(
            """
            SELECT p.id, p.sku, p.name, p.retail_price, p.cost_price,
                   COALESCE(s.quantity, 0) AS stock
            FROM part p
            LEFT JOIN part_stock s ON s.part_id = p.id AND s.branch_id = %s
            WHERE p.is_active
            ORDER BY p.id DESC
            LIMIT %s;
            """,
            (branch_id, limit),
        )
        cols = [d.name for d in cur.description]
        return [dict(zip(cols, row)) for row in cur.fetchall()]
