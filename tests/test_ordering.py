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
    ProductCategory,
    ProductUnit,
    StockCount,
    StockCountItem,
    StockCountStatus,
    Unit,
)
from countapp.stock_counts.ordering import (
    SOURCE_ALPHABETICAL,
    SOURCE_INHERITED,
    SOURCE_SAVED,
    UNCATEGORIZED,
    OrderedProduct,
    apply_walk_order,
    compute_order,
    previous_order_hint,
    resolve_category_name,
)


@pytest.fixture
def app():
    app = create_app(
        {
            "TESTING": True,
            "SQLALCHEMY_DATABASE_URI": "sqlite:///:memory:",
            "ADMIN_USER": "superuser",
            "ADMIN_PASSWORD": "change_me",
        }
    )
    with app.app_context():
        db.create_all()
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    client = app.test_client()
    client.post("/auth/login", data={"username": "superuser", "password": "change_me"})
    return client


@pytest.fixture
def catalog(app):
    unit = Unit(name="Bistro")
    employee = Employee(first_name="Sam")
    other_employee = Employee(first_name="Jo")
    bar = ProductCategory(name="Bar")
    db.session.add_all([unit, employee, other_employee, bar])
    db.session.flush()

    products = {
        "Gin": Product(code="GIN", name="Gin", stock_category=str(bar.id)),
        "Tonic": Product(code="TON", name="Tonic", stock_category=str(bar.id)),
        "Knife": Product(code="KNF", name="Knife", stock_category="Kitchen"),
    }
    db.session.add_all(products.values())
    db.session.flush()
    db.session.add_all(
        [ProductUnit(product_id=product.id, unit_id=unit.id) for product in products.values()]
    )
    db.session.commit()
    return {
        "unit_id": unit.id,
        "employee_id": employee.id,
        "other_employee_id": other_employee.id,
        "products": {name: product.id for name, product in products.items()},
    }


def _count(catalog, *, status=StockCountStatus.DRAFT, responsible_id=None, walk=()):
    stock_count = StockCount(
        date=date(2026, 10, 19),
        responsible_id=responsible_id or catalog["employee_id"],
        unit_id=catalog["unit_id"],
        status=status,
    )
    db.session.add(stock_count)
    db.session.flush()
    for name in walk:
        db.session.add(
            StockCountItem(
                stock_count_id=stock_count.id,
                product_id=catalog["products"][name],
                counted_quantity=1,
            )
        )
        db.session.flush()
    db.session.commit()
    return stock_count


def test_alphabetical_order_without_history(catalog):
    stock_count = _count(catalog)

    order = compute_order(stock_count)

    assert order.source == SOURCE_ALPHABETICAL
    assert order.category_names() == ["Bar", "Kitchen"]
    assert order.product_names() == {"Bar": ["Gin", "Tonic"], "Kitchen": ["Knife"]}


def test_inherits_previous_finalized_walk(catalog):
    previous = _count(
        catalog, status=StockCountStatus.FINALIZED, walk=("Gin", "Tonic", "Knife")
    )
    stock_count = _count(catalog)

    order = compute_order(stock_count)

    assert order.source == SOURCE_INHERITED
    assert order.previous_stock_count_id == previous.id
    assert order.category_names()[:2] == ["Bar", "Kitchen"]
    assert order.product_names()["Bar"][:2] == ["Gin", "Tonic"]


def test_inherited_walk_beats_alphabetical(catalog):
    _count(catalog, status=StockCountStatus.FINALIZED, walk=("Knife", "Tonic", "Gin"))
    stock_count = _count(catalog, walk=("Gin", "Knife", "Tonic"))

    order = compute_order(stock_count)

    assert order.source == SOURCE_INHERITED
    assert order.category_names() == ["Kitchen", "Bar"]
    assert order.product_names()["Bar"] == ["Tonic", "Gin"]


def test_history_of_other_responsibles_and_open_counts_is_ignored(catalog):
    _count(
        catalog,
        status=StockCountStatus.FINALIZED,
        responsible_id=catalog["other_employee_id"],
        walk=("Knife", "Tonic", "Gin"),
    )
    _count(catalog, status=StockCountStatus.COUNTING, walk=("Knife", "Tonic", "Gin"))
    stock_count = _count(catalog)

    assert compute_order(stock_count).source == SOURCE_ALPHABETICAL
    assert previous_order_hint(stock_count).to_dict() == {
        "hasOrder": False,
        "categories": [],
        "products": {},
        "previousStockCountId": None,
    }


def test_saved_order_wins_and_appends_new_entries(catalog):
    _count(catalog, status=StockCountStatus.FINALIZED, walk=("Gin", "Tonic", "Knife"))
    stock_count = _count(catalog, walk=("Gin", "Knife", "Tonic"))
    stock_count.category_order = ["Kitchen", "Retired category"]
    stock_count.product_order = {"Bar": ["Tonic", "Discontinued"]}
    db.session.commit()

    order = compute_order(stock_count)

    assert order.source == SOURCE_SAVED
    assert order.category_names() == ["Kitchen", "Bar"]
    assert order.product_names()["Bar"] == ["Tonic", "Gin"]


def test_apply_walk_order_keeps_every_product():
    groups = [
        ("Bar", [OrderedProduct(1, "Gin"), OrderedProduct(2, "Tonic")]),
        ("Kitchen", [OrderedProduct(3, "Knife")]),
        (UNCATEGORIZED, [OrderedProduct(4, "Mystery")]),
    ]

    ordered = apply_walk_order(groups, ["Kitchen"], {"Bar": ["Tonic"]})

    assert [category.name for category in ordered] == ["Kitchen", "Bar", UNCATEGORIZED]
    assert ordered[1].product_ids == [2, 1]
    assert sum(len(category.products) for category in ordered) == 4


def test_resolve_category_name():
    categories = {7: "Bar"}
    assert resolve_category_name("7", categories) == "Bar"
    assert resolve_category_name(7, categories) == "Bar"
    assert resolve_category_name("12", categories) == "Category 12"
    assert resolve_category_name("Kitchen", categories) == "Kitchen"
    assert resolve_category_name(None, categories) == UNCATEGORIZED
    assert resolve_category_name("  ", categories) == UNCATEGORIZED


def test_order_endpoints_round_trip(client, catalog):
    previous = _count(
        catalog, status=StockCountStatus.FINALIZED, walk=("Knife", "Gin", "Tonic")
    )
    stock_count = _count(catalog)

    hint = client.get(f"/api/stock-counts/{stock_count.id}/previous-order").get_json()
    assert hint == {
        "hasOrder": True,
        "categories": ["Kitchen", "Bar"],
        "products": {"Kitchen": ["Knife"], "Bar": ["Gin", "Tonic"]},
        "previousStockCountId": previous.id,
    }

    response = client.post(
        f"/api/stock-counts/{stock_count.id}/order",
        json={
            "categoryOrder": ["Bar", "Kitchen"],
            "productOrder": {"Bar": ["Tonic", "Gin"], "Kitchen": ["Knife"]},
        },
    )
    assert response.status_code == 200
    saved = response.get_json()["order"]
    assert saved["source"] == SOURCE_SAVED
    assert saved["categoryOrder"] == ["Bar", "Kitchen"]

    order = client.get(f"/api/stock-counts/{stock_count.id}/order").get_json()["order"]
    assert order["productOrder"] == {"Bar": ["Tonic", "Gin"], "Kitchen": ["Knife"]}
    assert order["categories"][0]["complete"] is False

    detail = client.get(f"/api/stock-counts/{stock_count.id}").get_json()["stockCount"]
    assert detail["categoryOrder"] == ["Bar", "Kitchen"]


def test_order_of_finalized_count_cannot_change(client, catalog):
    stock_count = _count(catalog, status=StockCountStatus.FINALIZED, walk=("Gin",))

    response = client.post(
        f"/api/stock-counts/{stock_count.id}/order",
        json={"categoryOrder": ["Bar"], "productOrder": {}},
    )

    assert response.status_code == 409


def test_order_payload_is_validated(client, catalog):
    stock_count = _count(catalog)

    response = client.post(
        f"/api/stock-counts/{stock_count.id}/order", json={"categoryOrder": "Bar"}
    )

    assert response.status_code == 400


def test_saved_product_order_applies_without_category_order(client, catalog):
    stock_count = _count(catalog)

    response = client.post(
        f"/api/stock-counts/{stock_count.id}/order",
        json={"categoryOrder": [], "productOrder": {"Bar": ["Tonic", "Gin"]}},
    )

    assert response.status_code == 200
    saved = response.get_json()["order"]
    assert saved["source"] == SOURCE_SAVED
    db.session.expire_all()
    order = compute_order(db.session.get(StockCount, stock_count.id))
    assert order.source == SOURCE_SAVED
    assert order.product_names()["Bar"] == ["Tonic", "Gin"]
