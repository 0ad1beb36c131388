import json

import pytest

from fakes import BRANCH, FakeCustomerRepository, FakePartRepository, FakeStockRepository
from motoshop.importers import ImportFileError, import_customers_csv, import_parts_json


def test_import_customers_skips_known_phones(tmp_path):
    repo = FakeCustomerRepository()
    repo.create(None, full_name="Existing", phone="0901111111")
    p = tmp_path / "customers.csv"
    p.write_text(
        "full_name,phone,email\n"
        "Tran Thi B,0902222222,b@example.com\n"
        "Existing Again,0901111111,\n"
        ",0903333333,\n"
        "Le Van C,0904444444,\n",
        encoding="utf-8",
    )

    assert import_customers_csv(None, p, repo) == 2
    assert sorted(r["phone"] for r in repo.rows.values()) == ["0901111111", "0902222222", "0904444444"]


def test_import_customers_requires_columns(tmp_path):
    p = tmp_path / "customers.csv"
    p.write_text("name,email\nA,a@example.com\n", encoding="utf-8")
    with pytest.raises(ImportFileError):
        import_customers_csv(None, p, FakeCustomerRepository())


def test_import_missing_file(tmp_path):
    with pytest.raises(ImportFileError, match="not found"):
        import_customers_csv(None, tmp_path / "none.csv", FakeCustomerRepository())


def test_import_parts_sets_branch_stock(tmp_path):
    parts, stock = FakePartRepository(), FakeStockRepository()
    p = tmp_path / "parts.json"
    p.write_text(
        json.dumps(
            [
                {"sku": "OIL-800", "name": "Nhớt Motul 800ml", "retail_price": 120000, "cost_price": 90000, "stock": 12},
                {"sku": "", "name": "no sku"},
                {"sku": "BRK-01", "name": "Má phanh", "retail_price": "85000", "stock": 3},
            ]
        ),
        encoding="utf-8",
    )

    assert import_parts_json(None, p, parts, stock, BRANCH) == 2
    oil = parts.get_by_sku(None, "OIL-800")
    assert stock.get_stock(None, oil["id"], BRANCH) == 12


@pytest.mark.parametrize(
    "content, message",
    [
        ("{not json", "Invalid JSON"),
        ('{"sku": "A"}', "list"),
        ('[{"sku": "A", "name": "x", "stock": -1}]', "Negative stock"),
        ('[{"sku": "A", "name": "x", "retail_price": "abc"}]', "Invalid numbers"),
    ],
)
def test_import_parts_rejects_bad_files(tmp_path, content, message):
    p = tmp_path / "parts.json"
    p.write_text(content, encoding="utf-8")
    with pytest.raises(ImportFileError, match=message):
        import_parts_json(None, p, FakePartRepository(), FakeStockRepository(), BRANCH)
