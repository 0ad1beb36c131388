from __future__ import annotations

import csv
import json
import logging
from pathlib import Path

from psycopg import Connection

from .repositories.customer_repo import CustomerRepository
from .repositories.part_repo import PartRepository
from .repositories.stock_repo import StockRepository

logger = logging.getLogger(__name__)


class ImportFileError(Exception):
    pass


def import_customers_csv(conn: Connection, path: str | Path, customer_repo: CustomerRepository) -> int:
    p = Path(path)
    if not p.exists():
        raise ImportFileError(f"File not found: {p}")

    count = 0
    with p.open("r", encoding="utf-8", newline="") as f:
        reader = csv.DictReader(f)
        required = {"full_name", "phone"}
        if not required.issubset(set(reader.fieldnames or [])):
            raise ImportFileError(f"CSV must contain columns: {sorted(required)}")

        for row in reader:
            full_name = (row.get("full_name") or "").strip()
            phone = (row.get("phone") or "").strip()
            if not full_name or not phone:
                continue
            email = (row.get("email") or "").strip() or None
            if customer_repo.get_by_phone(conn, phone) is not None:
                logger.info("Skipping customer %s, phone already registered", full_name)
                continue

            customer_repo.create(conn, full_name=full_name, phone=phone, email=email)
            count += 1
    return count


def import_parts_json(
    conn: Connection,
    path: str | Path,
    part_repo: PartRepository,
    stock_repo: StockRepository,
    branch_id: str,
) -> int:
    p = Path(path)
    if not p.exists():
        raise ImportFileError(f"File not found: {p}")

    try:
        data = json.loads(p.read_text(encoding="utf-8"))
    except json.JSONDecodeError as e:
        raise ImportFileError(f"Invalid JSON: {e}") from e

    if not isinstance(data, list):
        raise ImportFileError("JSON must be a list of objects")

    count = 0
    for obj in data:
        if not isinstance(obj, dict):
            continue
        sku = str(obj.get("sku", "")).strip()
        name = str(obj.get("name", "")).strip()
        if not sku or not name:
            continue
        try:
            retail_price = float(obj.get("retail_price", 0))
            cost_price = float(obj.get("cost_price", 0))
            stock = int(obj.get("stock", 0))
        except (TypeError, ValueError) as e:
            raise ImportFileError(f"Invalid numbers for part {sku}: {e}") from e
        if stock < 0:
            raise ImportFileError(f"Negative stock for part {sku}")

        part_id = part_repo.upsert_by_sku(
            conn,
            sku=sku,
            name=name,
            retail_price=retail_price,
            cost_price=cost_price,
            is_active=bool(obj.get("is_active", True)),
        )
        stock_repo.set_stock(conn, part_id, branch_id, stock)
        count += 1
    return count
