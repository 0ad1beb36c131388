from __future__ import annotations

import logging
from datetime import datetime, timedelta
from decimal import Decimal, InvalidOperation

from flask import Flask, jsonify, request

from motoshop.cli import Services, build_services
from motoshop.config import AppConfig, ConfigError, config_path_from_env, configure_logging, load_config
from motoshop.db import Db, DbError
from motoshop.domain import PartLine, ServiceLine, WorkOrder
from motoshop.reports import cash_book_summary, maintenance_due, payment_source_balances
from motoshop.services.errors import (
    ConflictError,
    NotFoundError,
    RemoteWriteError,
    SettlementError,
    StockUnderflowError,
    ValidationError,
)
from motoshop.services.inventory_service import ReceiptInput, ReceiptLineInput
from motoshop.services.settlement_service import WorkOrderInput

logger = logging.getLogger(__name__)

app = Flask(__name__)

db: Db = None
cfg: AppConfig = None
services: Services = None

_STATUS_BY_ERROR = (
    (ValidationError, 422),
    (NotFoundError, 404),
    (ConflictError, 409),
    (StockUnderflowError, 409),
    (RemoteWriteError, 502),
)


class BadRequest(Exception):
    pass


def _branch_id() -> str:
    return request.args.get("branch_id") or services.settlement.branch_id


def _decimal(obj: dict, key: str, default: str | None = "0") -> Decimal | None:
    raw = obj.get(key)
    if raw is None or raw == "":
        return None if default is None else Decimal(default)
    try:
        return Decimal(str(raw))
    except InvalidOperation:
        raise BadRequest(f"{key} must be a number") from None


def _int(obj: dict, key: str, default: int | None = None) -> int | None:
    raw = obj.get(key)
    if raw is None or raw == "":
        return default
    try:
        return int(raw)
    except (TypeError, ValueError):
        raise BadRequest(f"{key} must be an integer") from None


def _required_int(obj: dict, key: str) -> int:
    value = _int(obj, key)
    if value is None:
        raise BadRequest(f"{key} is required")
    return value


def _json_body() -> dict:
    body = request.get_json(silent=True)
    if not isinstance(body, dict):
        raise BadRequest("Request body must be a JSON object")
    return body


def _work_order_input(body: dict) -> WorkOrderInput:
    parts = [
        PartLine(
            part_id=_required_int(p, "part_id"),
            name=str(p.get("name", "")),
            sku=str(p.get("sku", "")),
            quantity=_int(p, "quantity", 0),
            price=_decimal(p, "price"),
            cost_price=_decimal(p, "cost_price"),
        )
        for p in body.get("parts") or []
    ]
    services_ = [
        ServiceLine(
            description=str(s.get("description", "")),
            quantity=_int(s, "quantity", 1),
            price=_decimal(s, "price"),
            cost_price=_decimal(s, "cost_price", None),
        )
        for s in body.get("services") or []
    ]
    return WorkOrderInput(
        customer_name=str(body.get("customer_name", "")),
        customer_phone=str(body.get("customer_phone", "")),
        status=body.get("status") or "received",
        labor_cost=_decimal(body, "labor_cost"),
        discount=_decimal(body, "discount"),
        parts=parts,
        services=services_,
        payment_method=body.get("payment_method"),
        deposit_amount=_decimal(body, "deposit_amount"),
        additional_payment=_decimal(body, "additional_payment"),
        vehicle_id=_int(body, "vehicle_id"),
        vehicle_model=body.get("vehicle_model"),
        license_plate=body.get("license_plate"),
        current_km=_int(body, "current_km"),
        issue_description=body.get("issue_description"),
        technician_name=body.get("technician_name"),
        notes=body.get("notes"),
        branch_id=body.get("branch_id"),
    )


def _order_json(o: WorkOrder) -> dict:
    return {
        "id": o.id,
        "branch_id": o.branch_id,
        "customer_id": o.customer_id,
        "customer_name": o.customer_name,
        "customer_phone": o.customer_phone,
        "vehicle_id": o.vehicle_id,
        "license_plate": o.license_plate,
        "current_km": o.current_km,
        "status": o.status,
        "labor_cost": str(o.labor_cost),
        "discount": str(o.discount),
        "parts": [
            {"part_id": p.part_id, "name": p.name, "sku": p.sku, "quantity": p.quantity, "price": str(p.price)}
            for p in o.parts
        ],
        "services": [
            {
                "description": s.description,
                "quantity": s.quantity,
                "price": str(s.price),
                "cost_price": None if s.cost_price is None else str(s.cost_price),
            }
            for s in o.services
        ],
        "total": str(o.total),
        "payment_status": o.payment_status,
        "payment_method": o.payment_method,
        "deposit_amount": str(o.deposit_amount),
        "additional_payment": str(o.additional_payment),
        "total_paid": str(o.total_paid),
        "remaining_amount": str(o.remaining_amount),
        "refunded": o.refunded,
        "refund_reason": o.refund_reason,
        "created_at": o.created_at.isoformat() if o.created_at else None,
    }


@app.errorhandler(SettlementError)
def handle_settlement_error(e: SettlementError):
    status = next((code for cls, code in _STATUS_BY_ERROR if isinstance(e, cls)), 400)
    return jsonify({"error": e.code, "message": e.message}), status


@app.errorhandler(BadRequest)
def handle_bad_request(e: BadRequest):
    return jsonify({"error": "BAD_REQUEST", "message": str(e)}), 400


@app.errorhandler(DbError)
def handle_db_error(e: DbError):
    logger.error("Database unavailable: %s", e)
    return jsonify({"error": "DB_UNAVAILABLE", "message": str(e)}), 502


@app.get("/orders")
def orders_list():
    with db.session() as conn:
        orders = services.work_order_repo.list(conn, _branch_id(), limit=_int(request.args, "limit", 30))
    return jsonify([_order_json(o) for o in orders])


@app.get("/orders/<order_id>")
def orders_get(order_id):
    with db.session() as conn:
        order = services.work_order_repo.get(conn, order_id, _branch_id())
    if order is None:
        raise NotFoundError("ORDER_NOT_FOUND", f"Work order {order_id} not found.")
    return jsonify(_order_json(order))


@app.post("/orders")
def orders_create():
    data = _work_order_input(_json_body())
    with db.transaction() as conn:
        result = services.settlement.save_work_order(conn, data)
    return jsonify(
        {"order": _order_json(result.order), "transaction_ids": result.transaction_ids, "debt_id": result.debt_id}
    ), 201


@app.put("/orders/<order_id>")
def orders_update(order_id):
    data = _work_order_input(_json_body())
    with db.transaction() as conn:
        result = services.settlement.save_work_order(conn, data, order_id=order_id)
    return jsonify(
        {
            "order": _order_json(result.order),
            "transaction_ids": result.transaction_ids,
            "debt_id": result.debt_id,
            "maintenance": sorted(result.maintenance),
        }
    )


@app.post("/orders/<order_id>/refund")
def orders_refund(order_id):
    body = _json_body()
    with db.transaction() as conn:
        result = services.settlement.refund(conn, order_id, str(body.get("reason", "")), branch_id=body.get("branch_id"))
    return jsonify(
        {
            "order": _order_json(result.order),
            "refund_amount": str(result.refund_amount),
            "transaction_ids": result.transaction_ids,
            "debt_id": result.debt_id,
        }
    )


@app.post("/receipts")
def receipts_create():
    body = _json_body()
    lines = [
        ReceiptLineInput(
            part_id=_required_int(ln, "part_id"),
            part_name=str(ln.get("part_name", "")),
            quantity=_int(ln, "quantity", 0),
            unit_cost=_decimal(ln, "unit_cost"),
        )
        for ln in body.get("lines") or []
    ]
    data = ReceiptInput(
        lines=lines,
        supplier_name=body.get("supplier_name"),
        paid_amount=_decimal(body, "paid_amount", None),
        payment_source=body.get("payment_source"),
        receipt_code=body.get("receipt_code"),
        branch_id=body.get("branch_id"),
    )
    with db.transaction() as conn:
        result = services.inventory.create_receipt(conn, data)
    return jsonify(
        {
            "receipt_code": result.receipt_code,
            "total_cost": str(result.total_cost),
            "paid_amount": str(result.paid_amount),
            "transaction_id": result.transaction_id,
            "supplier_debt_id": result.supplier_debt_id,
        }
    ), 201


@app.delete("/receipts/<receipt_code>")
def receipts_delete(receipt_code):
    with db.transaction() as conn:
        rb = services.inventory.delete_receipt(conn, receipt_code, branch_id=request.args.get("branch_id"))
    return jsonify(
        {
            "receipt_code": rb.receipt_code,
            "stock_changes": {str(k): {"before": b, "after": a} for k, (b, a) in rb.stock_changes.items()},
            "clamped_parts": rb.clamped_parts,
            "deleted_transactions": rb.deleted_transactions,
            "deleted_supplier_debts": rb.deleted_supplier_debts,
        }
    )


@app.get("/maintenance/due")
def maintenance_list():
    with db.session() as conn:
        rows = maintenance_due(conn, services.vehicle_repo, limit=_int(request.args, "limit", 500))
    return jsonify(rows)


@app.get("/reports/cash-book")
def reports_cash_book():
    days = _int(request.args, "days", 30)
    d2 = datetime.now()
    d1 = d2 - timedelta(days=days)
    branch_id = _branch_id()
    with db.session() as conn:
        summary = cash_book_summary(conn, services.ledger_repo, branch_id=branch_id, date_from=d1, date_to=d2)
        balances = payment_source_balances(conn, services.payment_source_repo, branch_id)
    return jsonify(
        {
            "income": str(summary.income),
            "expense": str(summary.expense),
            "net": str(summary.net),
            "count": summary.count,
            "by_category": {k: str(v) for k, v in summary.by_category.items()},
            "balances": {k: str(v) for k, v in balances.items()},
        }
    )


if __name__ == "__main__":
    try:
        cfg = load_config(config_path_from_env())
        configure_logging(cfg.log_level)
        db = Db(cfg.db)
        services = build_services(cfg.shop)
        app.run(debug=True, host="127.0.0.1", port=5000)
    except ConfigError as e:
        print(f"[CONFIG ERROR] {e}")
        raise SystemExit(2)
