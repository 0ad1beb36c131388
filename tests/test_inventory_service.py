import logging

import pytest

from fakes import BRANCH, D, order_input, part
from motoshop.services.errors import ConflictError, NotFoundError, RemoteWriteError, ValidationError
from motoshop.services.inventory_service import ReceiptInput, ReceiptLineInput


def _receipt(code="NH-TEST-1", qty=4, unit_cost="90000", paid=None, supplier="Motul VN"):
    return ReceiptInput(
        lines=[ReceiptLineInput(part_id=1, part_name="Nhớt Motul 800ml", quantity=qty, unit_cost=D(unit_cost))],
        supplier_name=supplier,
        paid_amount=None if paid is None else D(paid),
        receipt_code=code,
    )


class TestCreateReceipt:
    def test_paid_in_full(self, svc):
        svc.stock_repo.quantities[(1, BRANCH)] = 6

        result = svc.inventory.create_receipt(None, _receipt())

        assert result.total_cost == D(360000)
        assert result.paid_amount == D(360000)
        assert result.supplier_debt_id is None
        assert svc.stock_repo.quantities[(1, BRANCH)] == 10
        [tx] = svc.ledger_repo.rows
        assert (tx.type, tx.category, tx.amount) == ("expense", "inventory_purchase", D(-360000))
        assert "NH-TEST-1" in tx.description
        assert svc.payment_source_repo.get_balance(None, "cash", BRANCH) == D(-360000)

    def test_partly_paid_creates_supplier_debt(self, svc):
        result = svc.inventory.create_receipt(None, _receipt(paid="100000"))

        [debt] = svc.debt_repo.supplier_debts
        assert debt.id == result.supplier_debt_id
        assert debt.supplier_name == "Motul VN"
        assert debt.remaining_amount == D(260000)
        assert "NH-TEST-1" in debt.description

    def test_unpaid_posts_no_cash(self, svc):
        svc.inventory.create_receipt(None, _receipt(paid="0"))
        assert svc.ledger_repo.rows == []
        assert len(svc.debt_repo.supplier_debts) == 1

    def test_generated_code(self, svc):
        result = svc.inventory.create_receipt(None, _receipt(code=None))
        assert result.receipt_code.startswith("NH-20240501-")

    def test_duplicate_code(self, svc):
        svc.inventory.create_receipt(None, _receipt())
        with pytest.raises(ConflictError) as exc:
            svc.inventory.create_receipt(None, _receipt())
        assert exc.value.code == "RECEIPT_EXISTS"

    @pytest.mark.parametrize(
        "data, code",
        [
            (ReceiptInput(lines=[]), "RECEIPT_LINES_REQUIRED"),
            (_receipt(qty=0), "INVALID_QUANTITY"),
            (_receipt(unit_cost="-1"), "INVALID_AMOUNT"),
            (_receipt(paid="999999999"), "INVALID_PAID_AMOUNT"),
        ],
    )
    def test_validation(self, svc, data, code):
        with pytest.raises(ValidationError) as exc:
            svc.inventory.create_receipt(None, data)
        assert exc.value.code == code
        assert svc.inventory_repo.rows == []


class TestDeleteReceipt:
    def test_rolls_back_stock_and_cash(self, svc):
        svc.stock_repo.quantities[(1, BRANCH)] = 6
        svc.inventory.create_receipt(None, _receipt())

        rb = svc.inventory.delete_receipt(None, "NH-TEST-1")

        assert svc.stock_repo.quantities[(1, BRANCH)] == 6
        assert rb.stock_changes == {1: (10, 6)}
        assert rb.clamped_parts == []
        assert rb.deleted_transactions == 1
        assert svc.ledger_repo.rows == []
        assert svc.inventory_repo.rows == []
        assert svc.payment_source_repo.get_balance(None, "cash", BRANCH) == D(0)

    def test_second_delete_is_not_found(self, svc):
        svc.stock_repo.quantities[(1, BRANCH)] = 6
        svc.inventory.create_receipt(None, _receipt())
        svc.inventory.delete_receipt(None, "NH-TEST-1")

        with pytest.raises(NotFoundError) as exc:
            svc.inventory.delete_receipt(None, "NH-TEST-1")
        assert exc.value.code == "RECEIPT_NOT_FOUND"
        assert svc.stock_repo.quantities[(1, BRANCH)] == 6

    def test_removes_supplier_debt(self, svc):
        svc.inventory.create_receipt(None, _receipt(paid="100000"))
        rb = svc.inventory.delete_receipt(None, "NH-TEST-1")
        assert rb.deleted_supplier_debts == 1
        assert svc.debt_repo.supplier_debts == []

    def test_other_receipts_untouched(self, svc):
        svc.inventory.create_receipt(None, _receipt(code="NH-A"))
        svc.inventory.create_receipt(None, _receipt(code="NH-B", qty=2))

        svc.inventory.delete_receipt(None, "NH-A")

        assert svc.stock_repo.quantities[(1, BRANCH)] == 2
        assert [t.reference_id for t in svc.ledger_repo.rows] == ["NH-B"]

    def test_code_prefix_of_another_receipt(self, svc):
        svc.inventory.create_receipt(None, _receipt(code="NH-1", paid="100000"))
        svc.inventory.create_receipt(None, _receipt(code="NH-10", qty=2, paid="50000"))

        rb = svc.inventory.delete_receipt(None, "NH-1")

        assert rb.deleted_transactions == 1
        assert rb.deleted_supplier_debts == 1
        assert svc.stock_repo.quantities[(1, BRANCH)] == 2
        assert [t.reference_id for t in svc.ledger_repo.rows] == ["NH-10"]
        [debt] = svc.debt_repo.supplier_debts
        assert debt.receipt_code == "NH-10"
        assert debt.remaining_amount == D(130000)
        assert svc.payment_source_repo.get_balance(None, "cash", BRANCH) == D(-50000)

    def test_consumed_stock_clamps_at_zero(self, svc, caplog):
        svc.inventory.create_receipt(None, _receipt(qty=4))
        data = order_input(parts=[part(part_id=1, qty=3)])
        svc.settlement.save_work_order(None, data)
        assert svc.stock_repo.quantities[(1, BRANCH)] == 1

        with caplog.at_level(logging.WARNING):
            rb = svc.inventory.delete_receipt(None, "NH-TEST-1")

        assert svc.stock_repo.quantities[(1, BRANCH)] == 0
        assert rb.clamped_parts == [1]
        assert "clamped" in caplog.text

    def test_stock_rolled_back_before_ledger(self, svc):
        svc.stock_repo.quantities[(1, BRANCH)] = 6
        svc.inventory.create_receipt(None, _receipt())
        svc.ledger_repo.fail_on.add("delete_for_reference")

        with pytest.raises(RemoteWriteError) as exc:
            svc.inventory.delete_receipt(None, "NH-TEST-1")

        assert exc.value.step == "ledger"
        assert svc.stock_repo.quantities[(1, BRANCH)] == 6
        assert len(svc.ledger_repo.rows) == 1


def test_stock_never_negative_across_operations(svc):
    seen = []
    svc.inventory.create_receipt(None, _receipt(code="NH-1", qty=5))
    seen.append(svc.stock_repo.quantities[(1, BRANCH)])
    svc.settlement.save_work_order(None, order_input(parts=[part(part_id=1, qty=4)]))
    seen.append(svc.stock_repo.quantities[(1, BRANCH)])
    svc.inventory.create_receipt(None, _receipt(code="NH-2", qty=2))
    seen.append(svc.stock_repo.quantities[(1, BRANCH)])
    svc.inventory.delete_receipt(None, "NH-1")
    seen.append(svc.stock_repo.quantities[(1, BRANCH)])
    svc.inventory.delete_receipt(None, "NH-2")
    seen.append(svc.stock_repo.quantities[(1, BRANCH)])

    assert seen == [5, 1, 3, 0, 0]
