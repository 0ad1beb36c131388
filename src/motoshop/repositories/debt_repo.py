from __future__ import annotations

from decimal import Decimal

from psycopg import Connection

from ..domain import CustomerDebt


class DebtRepository:
    def upsert_customer_debt(
        self,
        conn: Connection,
        *,
        customer_id: int,
        work_order_id: str,
        customer_name: str,
        phone: str | None,
        license_plate: str | None,
        description: str,
        total_amount: Decimal,
        paid_amount: Decimal,
        branch_id: str,
    ) -> int:
        cur = conn.execute(
            """
            INSERT INTO customer_debt(customer_id, work_order_id, customer_name, phone, license_plate,
                                      description, total_amount, paid_amount, remaining_amount, branch_id)
            VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
            ON CONFLICT (customer_id, work_order_id) DO UPDATE SET
              customer_name = EXCLUDED.customer_name,
              phone = EXCLUDED.phone,
              license_plate = EXCLUDED.license_plate,
              description = EXCLUDED.description,
              total_amount = EXCLUDED.total_amount,
              paid_amount = EXCLUDED.paid_amount,
              remaining_amount = EXCLUDED.remaining_amount
            RETURNING id;
            """,
            (
                customer_id,
                work_order_id,
                customer_name,
                phone,
                license_plate,
                description,
                total_amount,
                paid_amount,
                total_amount - paid_amount,
                branch_id,
            ),
        )
        return int(cur.fetchone()[0])

    def get_customer_debt(self, conn: Connection, customer_id: int, work_order_id: str) -> CustomerDebt | None:
        cur = conn.execute(
            """
            SELECT id, customer_id, work_order_id, customer_name, phone, license_plate, description,
                   total_amount, paid_amount, remaining_amount, branch_id
            FROM customer_debt
            WHERE customer_id = %s AND work_order_id = %s;
            """,
            (customer_id, work_order_id),
        )
        row = cur.fetchone()
        if not row:
            return None
        cols = [d.name for d in cur.description]
        return CustomerDebt(**dict(zip(cols, row)))

    def create_supplier_debt(
        self,
        conn: Connection,
        *,
        supplier_name: str,
        description: str,
        total_amount: Decimal,
        paid_amount: Decimal,
        branch_id: str,
        receipt_code: str | None = None,
    ) -> int:
        cur = conn.execute(
            """
            INSERT INTO supplier_debt(supplier_name, description, total_amount, paid_amount, remaining_amount,
                                      branch_id, receipt_code)
            VALUES (%s, %s, %s, %s, %s, %s, %s)
            RETURNING id;
            """,
            (supplier_name, description, total_amount, paid_amount, total_amount - paid_amount, branch_id, receipt_code),
        )
        return int(cur.fetchone()[0])

    def delete_supplier_debts_for_receipt(self, conn: Connection, *, branch_id: str, receipt_code: str) -> int:
        cur = conn.execute(
            "DELETE FROM supplier_debt WHERE branch_id = %s AND receipt_code = %s;",
            (branch_id, receipt_code),
        )
        return cur.rowcount
