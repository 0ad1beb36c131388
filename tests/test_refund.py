import pytest

from fakes import BRANCH, NOW, D, order_input, part
from motoshop.services.errors import ConflictError, NotFoundError, ValidationError
from motoshop.services.settlement_service import WorkOrderInput


@pytest.fixture
def paid_order(svc):
    svc.stock_repo.quantities[(1, BRANCH)] = 5
    data = order_input(
        labor_cost=D(100000),
        parts=[part(part_id=1, qty=2, price=50000)],
        deposit_amount=D(50000),
        additional_payment=D(150000),
        payment_method="cash",
    )
    return svc.settlement.save_work_order(None, data).order


def test_refund_reverses_total_paid(svc, paid_order):
    result = svc.settlement.refund(None, paid_order.id, "Khách đổi ý")

    assert result.refund_amount == D(200000)
    assert result.order.refunded
    assert result.order.status == "cancelled"

    stored = svc.work_order_repo.get(None, paid_order.id, BRANCH)
    assert stored.refunded
    assert stored.status == "cancelled"
    assert stored.refund_reason == "Khách đổi ý"
    assert stored.refunded_at == NOW

    tx = svc.ledger_repo.rows[-1]
    assert (tx.type, tx.category, tx.amount) == ("expense", "refund", D(-200000))
    assert tx.payment_source_id == "cash"
    assert svc.payment_source_repo.get_balance(None, "cash", BRANCH) == D(0)


def test_refund_does_not_restock(svc, paid_order):
    svc.settlement.refund(None, paid_order.id, "warranty")
    assert svc.stock_repo.quantities[(1, BRANCH)] == 3


def test_second_refund_conflicts(svc, paid_order):
    svc.settlement.refund(None, paid_order.id, "first")
    with pytest.raises(ConflictError) as exc:
        svc.settlement.refund(None, paid_order.id, "second")
    assert exc.value.code == "ALREADY_REFUNDED"
    assert len([t for t in svc.ledger_repo.rows if t.category == "refund"]) == 1


def test_refunded_order_cannot_be_saved(svc, paid_order):
    svc.settlement.refund(None, paid_order.id, "first")
    refunded = svc.work_order_repo.get(None, paid_order.id, BRANCH)
    data = WorkOrderInput.from_order(refunded)
    data.status = "received"
    with pytest.raises(ConflictError):
        svc.settlement.save_work_order(None, data, order_id=paid_order.id)


def test_reason_required(svc, paid_order):
    with pytest.raises(ValidationError) as exc:
        svc.settlement.refund(None, paid_order.id, "   ")
    assert exc.value.code == "REASON_REQUIRED"
    assert not svc.work_order_repo.get(None, paid_order.id, BRANCH).refunded


def test_unknown_order(svc):
    with pytest.raises(NotFoundError) as exc:
        svc.settlement.refund(None, "SC-MISSING", "reason")
    assert exc.value.code == "ORDER_NOT_FOUND"


def test_unpaid_order_refund_posts_nothing(svc):
    order = svc.settlement.save_work_order(None, order_input(labor_cost=D(50000))).order
    result = svc.settlement.refund(None, order.id, "cancelled by customer")
    assert result.transaction_ids == []
    assert result.refund_amount == D(0)
    assert svc.ledger_repo.rows == []


def test_each_payment_source_gets_its_own_money_back(svc):
    first = svc.settlement.save_work_order(
        None, order_input(labor_cost=D(200000), deposit_amount=D(50000), payment_method="cash")
    ).order
    data = WorkOrderInput.from_order(first)
    data.additional_payment = D(150000)
    data.payment_method = "bank"
    svc.settlement.save_work_order(None, data, order_id=first.id)

    result = svc.settlement.refund(None, first.id, "Khách hủy")

    assert result.refund_amount == D(200000)
    assert len(result.transaction_ids) == 2
    refunds = {t.payment_source_id: t.amount for t in svc.ledger_repo.rows if t.category == "refund"}
    assert refunds == {"cash": D(-50000), "bank": D(-150000)}
    assert svc.payment_source_repo.get_balance(None, "cash", BRANCH) == D(0)
    assert svc.payment_source_repo.get_balance(None, "bank", BRANCH) == D(0)


def test_refund_closes_customer_debt(svc):
    order = svc.settlement.save_work_order(
        None,
        order_input(labor_cost=D(200000), deposit_amount=D(150000), payment_method="cash", status="delivered"),
    ).order
    [debt] = svc.debt_repo.customer_debts.values()
    assert debt.remaining_amount == D(50000)

    result = svc.settlement.refund(None, order.id, "Khách trả xe")

    assert result.debt_id == debt.id
    [closed] = svc.debt_repo.customer_debts.values()
    assert closed.remaining_amount == D(0)
    assert closed.paid_amount == closed.total_amount == D(200000)


def test_refund_without_debt_leaves_debts_alone(svc, paid_order):
    result = svc.settlement.refund(None, paid_order.id, "warranty")
    assert result.debt_id is None
    assert svc.debt_repo.customer_debts == {}
