from __future__ import annotations

from datetime import datetime
from decimal import Decimal

from psycopg import Connection

from ..domain import CashTransaction

_SELECT = """
SELECT id, type, category, amount, description, branch_id, payment_source_id, reference_id, created_at
FROM cash_transaction
"""


class LedgerRepository:
    """Append-only cash book. Rows are only removed by explicit rollbacks."""

    def append(
        self,
        conn: Connection,
        *,
        type: str,
        category: str,
        amount: Decimal,
        description: str,
        branch_id: str,
        payment_source_id: str,
        reference_id: str | None = None,
    ) -> int:
        cur = conn.execute(
            """
            INSERT INTO cash_transaction(type, category, amount, description, branch_id, payment_source_id, reference_id)
            VALUES (%s, %s, %s, %s, %s, %s, %s)
            RETURNING id;
            """,
            (type, category, amount, description, branch_id, payment_source_id, reference_id),
        )
        return int(cur.fetchone()[0])

    def delete(self, conn: Connection, tx_id: int) -> None:
        conn.execute("DELETE FROM cash_transaction WHERE id = %s;", (tx_id,))

    def delete_for_reference(
        self, conn: Connection, *, branch_id: str, reference_id: str, category: str
    ) -> list[CashTransaction]:
        cur = conn.execute(
            """
            DELETE FROM cash_transaction
            WHERE branch_id = %s AND reference_id = %s AND category = %s
            RETURNING id, type, category, amount, description, branch_id, payment_source_id, reference_id, created_at;
            """,
            (branch_id, reference_id, category),
        )
        cols = [d.name for d in cur.description]
        return [CashTransaction(**dict(zip(cols, row))) for row in cur.fetchall()]

    def list_for_reference(self, conn: Connection, reference_id: str) -> list[CashTransaction]:
        cur = conn.execute(_SELECT + "WHERE reference_id = %s ORDER BY id;", (reference_id,))
        cols = [d.name for d in cur.description]
        return [CashTransaction(**dict(zip(cols, row))) for row in cur.fetchall()]

    def list_between(self, conn: Connection, *, branch_id: str, date_from: datetime, date_to: datetime) -> list[CashTransaction]:
        cur = conn.execute(
            _SELECT + "WHERE branch_id = %s AND created_at >= %s AND created_at < %s ORDER BY id;",
            (branch_id, date_from, date_to),
        )
        cols = [d.name for d in cur.description]
        return [CashTransaction(**dict(zip(cols, row))) for row in cur.fetchall()]
