from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal, InvalidOperation

from .config import ShopConfig
from .db import Db, DbError
from .domain import PartLine, ServiceLine
from .importers import ImportFileError, import_customers_csv, import_parts_json
from .reports import cash_book_summary, maintenance_due, payment_source_balances
from .repositories.customer_repo import CustomerRepository
from .repositories.debt_repo import DebtRepository
from .repositories.inventory_repo import InventoryRepository
from .repositories.ledger_repo import LedgerRepository
from .repositories.part_repo import PartRepository
from .repositories.payment_source_repo import PaymentSourceRepository
from .repositories.stock_repo import StockRepository
from .repositories.vehicle_repo import VehicleRepository
from .repositories.work_order_repo import WorkOrderRepository
from .services.errors import (
    ConflictError,
    NotFoundError,
    RemoteWriteError,
    StockUnderflowError,
    ValidationError,
)
from .services.inventory_service import InventoryService, ReceiptInput, ReceiptLineInput
from .services.settlement_service import SettlementService, WorkOrderInput

logger = logging.getLogger(__name__)


@dataclass
class Services:
    customer_repo: CustomerRepository
    vehicle_repo: VehicleRepository
    part_repo: PartRepository
    stock_repo: StockRepository
    work_order_repo: WorkOrderRepository
    ledger_repo: LedgerRepository
    payment_source_repo: PaymentSourceRepository
    debt_repo: DebtRepository
    inventory_repo: InventoryRepository
    settlement: SettlementService
    inventory: InventoryService


def build_services(shop: ShopConfig, **repos) -> Services:
    """Wire repositories into the services. Keyword arguments replace individual repositories."""
    customer_repo = repos.get("customer_repo") or CustomerRepository()
    vehicle_repo = repos.get("vehicle_repo") or VehicleRepository()
    part_repo = repos.get("part_repo") or PartRepository()
    stock_repo = repos.get("stock_repo") or StockRepository()
    work_order_repo = repos.get("work_order_repo") or WorkOrderRepository()
    ledger_repo = repos.get("ledger_repo") or LedgerRepository()
    payment_source_repo = repos.get("payment_source_repo") or PaymentSourceRepository()
    debt_repo = repos.get("debt_repo") or DebtRepository()
    inventory_repo = repos.get("inventory_repo") or InventoryRepository()

    settlement = SettlementService(
        customer_repo=customer_repo,
        vehicle_repo=vehicle_repo,
        work_order_repo=work_order_repo,
        ledger_repo=ledger_repo,
        payment_source_repo=payment_source_repo,
        stock_repo=stock_repo,
        debt_repo=debt_repo,
        branch_id=shop.branch_id,
        work_order_prefix=shop.work_order_prefix,
        default_payment_source=shop.default_payment_source,
        outsourcing_payment_source=shop.outsourcing_payment_source,
    )
    inventory = InventoryService(
        inventory_repo=inventory_repo,
        stock_repo=stock_repo,
        ledger_repo=ledger_repo,
        payment_source_repo=payment_source_repo,
        debt_repo=debt_repo,
        branch_id=shop.branch_id,
        receipt_prefix=shop.receipt_prefix,
        default_payment_source=shop.default_payment_source,
    )
    return Services(
        customer_repo=customer_repo,
        vehicle_repo=vehicle_repo,
        part_repo=part_repo,
        stock_repo=stock_repo,
        work_order_repo=work_order_repo,
        ledger_repo=ledger_repo,
        payment_source_repo=payment_source_repo,
        debt_repo=debt_repo,
        inventory_repo=inventory_repo,
        settlement=settlement,
        inventory=inventory,
    )


def _prompt(msg: str) -> str:
    return input(msg).strip()


def _money(msg: str, default: str = "0") -> Decimal:
    raw = _prompt(msg) or default
    try:
        return Decimal(raw.replace(",", ""))
    except InvalidOperation:
        raise ValueError(f"Not a number: {raw!r}") from None


def _optional_int(msg: str) -> int | None:
    raw = _prompt(msg)
    return int(raw) if raw else None


def _optional_money(msg: str) -> Decimal | None:
    raw = _prompt(msg)
    if not raw:
        return None
    try:
        return Decimal(raw.replace(",", ""))
    except InvalidOperation:
        raise ValueError(f"Not a number: {raw!r}") from None


def _prompt_lines(s: Services, conn, branch_id: str) -> tuple[list[PartLine], list[ServiceLine]]:
    parts: list[PartLine] = []
    while _prompt("Add part by SKU? (y/n): ").lower() == "y":
        sku = _prompt("  SKU: ")
        part = s.part_repo.get_by_sku(conn, sku)
        if part is None:
            print(f"  Unknown SKU {sku}")
            continue
        qty = int(_prompt("  quantity: "))
        price = _money(f"  unit price (default {part['retail_price']}): ", str(part["retail_price"]))
        parts.append(
            PartLine(
                part_id=int(part["id"]),
                name=part["name"],
                sku=part["sku"],
                quantity=qty,
                price=price,
                cost_price=Decimal(part["cost_price"]),
            )
        )

    services: list[ServiceLine] = []
    while _prompt("Add service line? (y/n): ").lower() == "y":
        desc = _prompt("  description: ")
        qty = int(_prompt("  quantity (default 1): ") or "1")
        price = _money("  unit price: ")
        cost = _optional_money("  outsourcing cost per unit (optional): ")
        services.append(ServiceLine(description=desc, quantity=qty, price=price, cost_price=cost))
    return parts, services


def _print_order(order) -> None:
    print(
        f"#{order.id} [{order.status}] {order.customer_name} {order.license_plate or ''} "
        f"total={order.total} paid={order.total_paid} remaining={order.remaining_amount} "
        f"({order.payment_status}){' REFUNDED' if order.refunded else ''}"
    )


def run_cli(db: Db, shop: ShopConfig) -> None:
    s = build_services(shop)
    branch_id = shop.branch_id

    while True:
        print("\n=== MotoShop CLI ===")
        print("1) List work orders")
        print("2) List parts (stock)")
        print("3) New work order")
        print("4) Update work order / take payment")
        print("5) Refund work order")
        print("6) New goods receipt")
        print("7) Delete goods receipt")
        print("8) Maintenance reminders")
        print("9) Cash book (last 30 days) + balances")
        print("10) Import customers CSV")
        print("11) Import parts JSON")
        print("12) Initialize database schema")
        print("0) Exit")

        choice = _prompt("> ")
        try:
            if choice == "0":
                return

            elif choice == "1":
                with db.session() as conn:
                    orders = s.work_order_repo.list(conn, branch_id, limit=30)
                for o in orders:
                    _print_order(o)

            elif choice == "2":
                with db.session() as conn:
                    rows = s.part_repo.list_with_stock(conn, branch_id, limit=50)
                for r in rows:
                    print(f'#{r["id"]} {r["sku"]} {r["name"]} price={r["retail_price"]} stock={r["stock"]}')

            elif choice == "3":
                name = _prompt("customer name: ")
                phone = _prompt("customer phone: ")
                vehicle_id = _optional_int("vehicle_id (optional): ")
                model = _prompt("vehicle model (optional): ") or None
                plate = _prompt("license plate (optional): ") or None
                km = _optional_int("current km (optional): ")
                issue = _prompt("issue description: ") or None
                tech = _prompt("technician (optional): ") or None
                labor = _money("labor cost: ")
                discount = _money("discount (default 0): ")
                deposit = _money("deposit (default 0): ")
                method = _prompt(f"payment method (default {shop.default_payment_source}): ") or shop.default_payment_source

                # one transaction for the order and all of its ledger/stock/debt effects
                with db.transaction() as conn:
                    parts, services = _prompt_lines(s, conn, branch_id)
                    result = s.settlement.save_work_order(
                        conn,
                        WorkOrderInput(
                            customer_name=name,
                            customer_phone=phone,
                            vehicle_id=vehicle_id,
                            vehicle_model=model,
                            license_plate=plate,
                            current_km=km,
                            issue_description=issue,
                            technician_name=tech,
                            labor_cost=labor,
                            discount=discount,
                            parts=parts,
                            services=services,
                            deposit_amount=deposit,
                            payment_method=method,
                        ),
                    )
                print("Created:")
                _print_order(result.order)

            elif choice == "4":
                order_id = _prompt("work order id: ")
                with db.transaction() as conn:
                    order = s.work_order_repo.get(conn, order_id, branch_id)
                    if order is None:
                        raise NotFoundError("ORDER_NOT_FOUND", f"Work order {order_id} not found.")
                    _print_order(order)
                    data = WorkOrderInput.from_order(order)
                    data.status = _prompt(f"status (default {order.status}): ") or order.status
                    km = _optional_int("current km (blank keeps): ")
                    if km is not None:
                        data.current_km = km
                    data.additional_payment = order.additional_payment + _money("collect now (default 0): ")
                    if data.additional_payment > 0 and not data.payment_method:
                        data.payment_method = _prompt("payment method: ") or shop.default_payment_source
                    result = s.settlement.save_work_order(conn, data, order_id=order_id)
                _print_order(result.order)
                if result.debt_id:
                    print(f"Customer debt #{result.debt_id} recorded.")
                if result.maintenance:
                    print(f"Maintenance recorded: {', '.join(sorted(result.maintenance))}")

            elif choice == "5":
                order_id = _prompt("work order id: ")
                reason = _prompt("reason: ")
                with db.transaction() as conn:
                    refund = s.settlement.refund(conn, order_id, reason)
                print(f"Refunded {refund.refund_amount} for order #{order_id}")

            elif choice == "6":
                supplier = _prompt("supplier (optional): ") or None
                lines: list[ReceiptLineInput] = []
                with db.transaction() as conn:
                    while _prompt("Add line by SKU? (y/n): ").lower() == "y":
                        sku = _prompt("  SKU: ")
                        part = s.part_repo.get_by_sku(conn, sku)
                        if part is None:
                            print(f"  Unknown SKU {sku}")
                            continue
                        qty = int(_prompt("  quantity: "))
                        cost = _money(f"  unit cost (default {part['cost_price']}): ", str(part["cost_price"]))
                        lines.append(ReceiptLineInput(part_id=int(part["id"]), part_name=part["name"], quantity=qty, unit_cost=cost))
                    paid = _optional_money("paid amount (blank = paid in full): ")
                    receipt = s.inventory.create_receipt(
                        conn,
                        ReceiptInput(
                            lines=lines,
                            supplier_name=supplier,
                            paid_amount=paid,
                        ),
                    )
                print(f"Receipt {receipt.receipt_code}: total={receipt.total_cost} paid={receipt.paid_amount}")

            elif choice == "7":
                code = _prompt("receipt code: ")
                with db.transaction() as conn:
                    rb = s.inventory.delete_receipt(conn, code)
                for part_id, (before, after) in rb.stock_changes.items():
                    print(f"  part #{part_id}: {before} -> {after}")
                if rb.clamped_parts:
                    print(f"  stock already consumed for parts {rb.clamped_parts}, clamped to 0")
                print(f"Receipt {code} deleted ({rb.deleted_transactions} cash entries, {rb.deleted_supplier_debts} supplier debts)")

            elif choice == "8":
                with db.session() as conn:
                    rows = maintenance_due(conn, s.vehicle_repo)
                for r in rows:
                    print(f'{r["license_plate"]} {r["model"]} at {r["current_km"]} km')
                    for w in r["warnings"]:
                        flag = "OVERDUE" if w["overdue"] else "due soon"
                        print(f'  {w["name"]}: {flag}, {w["km_since_last_service"]} km since last service')

            elif choice == "9":
                d2 = datetime.now()
                d1 = d2 - timedelta(days=30)
                with db.session() as conn:
                    summary = cash_book_summary(conn, s.ledger_repo, branch_id=branch_id, date_from=d1, date_to=d2)
                    balances = payment_source_balances(conn, s.payment_source_repo, branch_id)
                print(f"Income {summary.income}, expense {summary.expense}, net {summary.net} ({summary.count} entries)")
                for category, amount in summary.by_category.items():
                    print(f"  {category}: {amount}")
                print("Balances:")
                for source, balance in balances.items():
                    print(f"  {source}: {balance}")

            elif choice == "10":
                path = _prompt("path to customers.csv: ")
                with db.transaction() as conn:
                    n = import_customers_csv(conn, path, s.customer_repo)
                print(f"Imported customers: {n}")

            elif choice == "11":
                path = _prompt("path to parts.json: ")
                with db.transaction() as conn:
                    n = import_parts_json(conn, path, s.part_repo, s.stock_repo, branch_id)
                print(f"Imported/updated parts: {n}")

            elif choice == "12":
                db.apply_schema()
                print("Schema ready.")

            else:
                print("Unknown choice.")

        except ValidationError as e:
            print(f"[INPUT ERROR] {e.code}: {e.message}")
        except NotFoundError as e:
            print(f"[NOT FOUND] {e.message}")
        except ConflictError as e:
            print(f"[CONFLICT] {e.message}")
        except StockUnderflowError as e:
            print(f"[STOCK ERROR] {e.message}")
        except RemoteWriteError as e:
            print(f"[DB ERROR] {e.message}")
        except (DbError, ImportFileError) as e:
            print(f"[ERROR] {e}")
        except ValueError as e:
            print(f"[VALUE ERROR] {e}")
        except Exception as e:
            logger.exception("Unexpected error in menu choice %s", choice)
            print(f"[ERROR] {type(e).__name__}: {e}")
