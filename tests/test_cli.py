import json
import os
import sys
from datetime import date

import pytest

sys.path.append(os.path.join(os.path.dirname(__file__), ".."))

from countapp import create_app
from countapp.extensions import db
from countapp.models import (
    Employee,
    Product,
    ProductUnit,
    StockCount,
    StockCountItem,
    StockCountStatus,
    Unit,
)


@pytest.fixture
def app():
    app = create_app({"TESTING": True, "SQLALCHEMY_DATABASE_URI": "sqlite:///:memory:"})
    with app.app_context():
        db.create_all()
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture
def stock_count_id(app):
    unit = Unit(name="Depot")
    employee = Employee(first_name="Kim")
    db.session.add_all([unit, employee])
    db.session.flush()
    product = Product(code="OIL", name="Olive oil", stock_category="Pantry")
    db.session.add(product)
    db.session.flush()
    db.session.add(ProductUnit(product_id=product.id, unit_id=unit.id))
    stock_count = StockCount(
        date=date(2026, 10, 19),
        responsible_id=employee.id,
        unit_id=unit.id,
        status="em_contagem",
    )
    db.session.add(stock_count)
    db.session.flush()
    db.session.add(
        StockCountItem(stock_count_id=stock_count.id, product_id=product.id, counted_quantity=2)
    )
    db.session.commit()
    return stock_count.id


def test_stock_count_summary_command(app, stock_count_id):
    runner = app.test_cli_runner()

    result = runner.invoke(args=["stock-count-summary", str(stock_count_id)])

    assert result.exit_code == 0, result.output
    payload = json.loads(result.output)
    assert payload["status"] == "Counting"
    assert payload["summary"]["countedProducts"] == 1
    assert payload["categories"] == [
        {"name": "Pantry", "total": 1, "counted": 1, "complete": True}
    ]


def test_normalize_stock_count_statuses_command(app, stock_count_id):
    runner = app.test_cli_runner()

    result = runner.invoke(args=["normalize-stock-count-statuses"])

    assert result.exit_code == 0, result.output
    assert "Normalized 1" in result.output
    db.session.expire_all()
    assert db.session.get(StockCount, stock_count_id).status == StockCountStatus.COUNTING
