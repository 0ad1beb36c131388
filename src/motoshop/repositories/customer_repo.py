from __future__ import annotations

from psycopg import Connection


class CustomerRepository:
    def create(self, conn: Connection, *, full_name: str, phone: str, email: str | None = None) -> int:
        cur = conn.execute(
            """
            INSERT INTO customer(full_name, phone, email)
            VALUES (%s, %s, %s)
            RETURNING id;
            """,
            (full_name, phone, email),
        )
        return int(cur.fetchone()[0])

    def get_by_phone(self, conn: Connection, phone: str) -> dict | None:
        cur = conn.execute(
            "SELECT id, full_name, phone, email, created_at FROM customer WHERE phone = %s;",
            (phone,),
        )
        row = cur.fetchone()
        if not row:
            return None
        cols = [d.name for d in cur.description]
        return dict(zip(cols, row))

    def get_or_create(self, conn: Connection, *, full_name: str, phone: str, email: str | None = None) -> int:
        existing = self.get_by_phone(conn, phone)
        if existing is not None:
            return int(existing["id"])
        return self.create(conn, full_name=full_name, phone=phone, email=email)

    def list(self, conn: Connection, limit: int = 50) -> list[dict]:
        cur = conn.execute(
            """
            SELECT id, full_name, phone, email, created_at
            FROM customer
            ORDER BY id DESC
            LIMIT %s;
            """,
            (limit,),
        )
        cols = [d.name for d in cur.description]
        return [dict(zip(cols, row)) for row in cur.fetchall()]
