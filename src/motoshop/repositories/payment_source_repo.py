from __future__ import annotations

from decimal import Decimal

from psycopg import Connection


class PaymentSourceRepository:
    def adjust_balance(self, conn: Connection, *, source_id: str, branch_id: str, delta: Decimal) -> None:
        conn.execute(
            """
            INSERT INTO payment_source_balance(source_id, branch_id, balance)
            VALUES (%s, %s, %s)
            ON CONFLICT (source_id, branch_id) DO UPDATE SET
              balance = payment_source_balance.balance + EXCLUDED.balance;
            """,
            (source_id, branch_id, delta),
        )

    def get_balance(self, conn: Connection, source_id: str, branch_id: str) -> Decimal:
        cur = conn.execute(
            "SELECT balance FROM payment_source_balance WHERE source_id = %s AND branch_id = %s;",
            (source_id, branch_id),
        )
        row = cur.fetchone()
        return Decimal(row[0]) if row else Decimal("0")

    def list_balances(self, conn: Connection, branch_id: str) -> dict[str, Decimal]:
        cur = conn.execute(
            "SELECT source_id, balance FROM payment_source_balance WHERE branch_id = %s ORDER BY source_id;",
            (branch_id,),
        )
        return {row[0]: Decimal(row[1]) for row in cur.fetchall()}
