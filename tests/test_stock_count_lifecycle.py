import os
import sys
from datetime import date

import pytest

sys.path.append(os.path.join(os.path.dirname(__file__), ".."))

from countapp import create_app
from countapp.errors import Conflict
from countapp.extensions import db
from countapp.models import (
    Employee,
    Product,
    ProductCategory,
    ProductUnit,
    StockCount,
    StockCountEvent,
    StockCountItem,
    StockCountStatus,
    Unit,
)
from countapp.stock_counts import repository, services


class RecordingNotifier:
    def __init__(self, result=True):
        self.result = result
        self.messages = []

    def send(self, phone_number, message):
        self.messages.append((phone_number, message))
        return self.result


@pytest.fixture
def app():
    app = create_app(
        {
            "TESTING": True,
            "SQLALCHEMY_DATABASE_URI": "sqlite:///:memory:",
            "ADMIN_USER": "superuser",
            "ADMIN_PASSWORD": "change_me",
            "PUBLIC_BASE_URL": "",
            "PUBLIC_COUNT_PATH": "public-count",
        }
    )
    with app.app_context():
        db.create_all()
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture
def notifier(app):
    recording = RecordingNotifier()
    app.extensions["stock_count_notifier"] = recording
    return recording


@pytest.fixture
def client(app):
    client = app.test_client()
    client.post("/auth/login", data={"username": "superuser", "password": "change_me"})
    return client


@pytest.fixture
def seed(app):
    unit = Unit(name="Downtown")
    employee = Employee(first_name="Ana", last_name="Silva", whatsapp="5511999990000")
    bar = ProductCategory(name="Bar")
    db.session.add_all([unit, employee, bar])
    db.session.flush()

    gin = Product(code="GIN-1", name="Gin", stock_category=str(bar.id))
    tonic = Product(code="TON-1", name="Tonic", stock_category=str(bar.id))
    knife = Product(code="KNF-1", name="Knife", stock_category="Kitchen")
    db.session.add_all([gin, tonic, knife])
    db.session.flush()
    db.session.add_all(
        [
            ProductUnit(product_id=gin.id, unit_id=unit.id, stock_quantity=4),
            ProductUnit(product_id=tonic.id, unit_id=unit.id, stock_quantity=10),
            ProductUnit(product_id=knife.id, unit_id=unit.id, stock_quantity=2),
        ]
    )
    db.session.commit()
    return {
        "unit_id": unit.id,
        "employee_id": employee.id,
        "gin": gin.id,
        "tonic": tonic.id,
        "knife": knife.id,
    }


def _create_count(client, seed):
    response = client.post(
        "/api/stock-counts/",
        json={
            "date": "2026-10-19",
            "responsibleId": seed["employee_id"],
            "unitId": seed["unit_id"],
        },
    )
    assert response.status_code == 201
    return response.get_json()["stockCount"]["id"]


def _category(payload, name):
    for category in payload["order"]["categories"]:
        if category["name"] == name:
            return category
    raise AssertionError(f"category {name} missing")


def test_end_to_end_counting_flow(client, app, seed, notifier):
    stock_count_id = _create_count(client, seed)

    response = client.post(f"/api/stock-counts/{stock_count_id}/initialize")
    assert response.status_code == 200
    assert response.get_json()["created"] == 3

    response = client.post(f"/api/stock-counts/{stock_count_id}/close")
    assert response.status_code == 200
    payload = response.get_json()
    token = payload["publicToken"]
    assert token
    assert len(token) >= 22
    assert payload["publicUrl"] == f"http://localhost/public-count/{token}"
    assert payload["notification"] == {"sent": True, "warning": None}
    assert payload["stockCount"]["status"] == StockCountStatus.READY
    assert len(notifier.messages) == 1
    phone, message = notifier.messages[0]
    assert phone == "5511999990000"
    assert payload["publicUrl"] in message

    response = client.post(f"/api/public/stock-counts/{token}/begin")
    assert response.status_code == 200
    assert response.get_json()["stockCount"]["status"] == StockCountStatus.COUNTING

    response = client.put(
        f"/api/public/stock-counts/{token}/items",
        json={
            "items": [
                {"productId": seed["gin"], "countedQuantity": "3"},
                {"productId": seed["knife"], "countedQuantity": "1,5"},
            ]
        },
    )
    assert response.status_code == 200
    assert response.get_json()["saved"] == 2

    view = client.get(f"/api/public/stock-counts/{token}").get_json()
    bar = _category(view, "Bar")
    assert bar["counted"] == 1
    assert bar["complete"] is False
    assert _category(view, "Kitchen")["complete"] is True
    assert view["summary"] == {
        "totalProducts": 3,
        "countedProducts": 2,
        "remainingProducts": 1,
    }

    response = client.post(
        f"/api/public/stock-counts/{token}/items",
        json=[{"productId": seed["tonic"], "countedQuantity": 6}],
    )
    assert response.status_code == 200
    view = client.get(f"/api/public/stock-counts/{token}").get_json()
    assert _category(view, "Bar")["complete"] is True
    assert view["disclosure"]["allCollapsed"] is True

    response = client.post(f"/api/public/stock-counts/{token}/finish")
    assert response.status_code == 200
    assert response.get_json()["stockCount"]["status"] == StockCountStatus.FINALIZED
    assert response.get_json()["stockCount"]["uncountedItems"] == 0

    response = client.delete(f"/api/stock-counts/{stock_count_id}/items/{seed['gin']}")
    assert response.status_code == 409
    assert response.get_json()["error"] == "conflict"

    detail = client.get(f"/api/stock-counts/{stock_count_id}").get_json()
    assert detail["stockCount"]["publicToken"] == token
    assert detail["stockCount"]["finalizedAt"] is not None


def test_double_close_is_rejected_without_second_notification(client, seed, notifier):
    stock_count_id = _create_count(client, seed)
    first = client.post(f"/api/stock-counts/{stock_count_id}/close")
    assert first.status_code == 200

    second = client.post(f"/api/stock-counts/{stock_count_id}/close")
    assert second.status_code == 409
    assert second.get_json()["retryable"] is False
    assert len(notifier.messages) == 1

    detail = client.get(f"/api/stock-counts/{stock_count_id}").get_json()
    assert detail["stockCount"]["publicToken"] == first.get_json()["publicToken"]


def test_close_keeps_a_token_that_already_exists(app, seed, notifier):
    stock_count = StockCount(
        date=date(2026, 10, 19),
        responsible_id=seed["employee_id"],
        unit_id=seed["unit_id"],
        status=StockCountStatus.DRAFT,
        public_token="previously-issued-token",
    )
    db.session.add(stock_count)
    db.session.commit()

    result = services.close_for_counting(stock_count)

    assert result.stock_count.public_token == "previously-issued-token"
    assert result.public_url.endswith("/public-count/previously-issued-token")


def test_generated_tokens_are_long_and_distinct(app):
    tokens = {services.generate_public_token() for _ in range(20)}
    assert len(tokens) == 20
    assert all(len(token) >= 22 for token in tokens)


def test_compare_and_set_status_only_matches_once(app, seed):
    stock_count = StockCount(
        date=date(2026, 10, 19),
        responsible_id=seed["employee_id"],
        unit_id=seed["unit_id"],
        status=StockCountStatus.READY,
    )
    db.session.add(stock_count)
    db.session.commit()

    values = {"status": StockCountStatus.COUNTING}
    assert repository.compare_and_set_status(
        stock_count.id, StockCountStatus.READY, values
    )
    db.session.commit()
    assert not repository.compare_and_set_status(
        stock_count.id, StockCountStatus.READY, values
    )


def test_transitions_accept_legacy_status_values(app, seed):
    stock_count = StockCount(
        date=date(2026, 10, 19),
        responsible_id=seed["employee_id"],
        unit_id=seed["unit_id"],
        status="pronta_para_contagem",
        public_token="legacy-token",
    )
    db.session.add(stock_count)
    db.session.commit()

    begun = services.begin_counting(stock_count)

    assert begun.status == StockCountStatus.COUNTING
    assert begun.counting_started_at is not None


def test_close_without_phone_number_reports_warning(client, app, seed, notifier):
    employee = db.session.get(Employee, seed["employee_id"])
    employee.whatsapp = None
    db.session.commit()

    stock_count_id = _create_count(client, seed)
    response = client.post(f"/api/stock-counts/{stock_count_id}/close")

    assert response.status_code == 200
    payload = response.get_json()
    assert payload["notification"]["sent"] is False
    assert "no phone number" in payload["notification"]["warning"]
    assert payload["stockCount"]["status"] == StockCountStatus.READY
    assert notifier.messages == []


def test_notifier_failure_never_rolls_back_close(client, app, seed):
    class ExplodingNotifier:
        def send(self, phone_number, message):
            raise RuntimeError("gateway down")

    app.extensions["stock_count_notifier"] = ExplodingNotifier()
    stock_count_id = _create_count(client, seed)

    response = client.post(f"/api/stock-counts/{stock_count_id}/close")

    assert response.status_code == 200
    payload = response.get_json()
    assert payload["notification"]["sent"] is False
    assert payload["notification"]["warning"]
    assert payload["stockCount"]["status"] == StockCountStatus.READY

    events = client.get(f"/api/stock-counts/{stock_count_id}/events").get_json()["events"]
    types = [event["type"] for event in events]
    assert types == [
        StockCountEvent.EVENT_CREATED,
        StockCountEvent.EVENT_CLOSED,
        StockCountEvent.EVENT_NOTIFICATION_FAILED,
    ]


def test_destructive_edits_are_limited_to_drafts(client, seed, notifier):
    stock_count_id = _create_count(client, seed)
    client.post(f"/api/stock-counts/{stock_count_id}/initialize")

    response = client.patch(
        f"/api/stock-counts/{stock_count_id}", json={"notes": "Back room first"}
    )
    assert response.status_code == 200
    assert response.get_json()["stockCount"]["notes"] == "Back room first"

    response = client.delete(f"/api/stock-counts/{stock_count_id}/items/{seed['knife']}")
    assert response.get_json() == {"removed": True, "productId": seed["knife"]}
    response = client.delete(f"/api/stock-counts/{stock_count_id}/items/{seed['knife']}")
    assert response.get_json()["removed"] is False

    client.post(f"/api/stock-counts/{stock_count_id}/close")

    assert client.patch(
        f"/api/stock-counts/{stock_count_id}", json={"notes": "Too late"}
    ).status_code == 409
    assert client.post(f"/api/stock-counts/{stock_count_id}/initialize").status_code == 409
    assert client.delete(f"/api/stock-counts/{stock_count_id}").status_code == 409
    assert client.delete(
        f"/api/stock-counts/{stock_count_id}/items/{seed['gin']}"
    ).status_code == 409


def test_delete_draft_removes_items_and_events(client, app, seed):
    stock_count_id = _create_count(client, seed)
    client.post(f"/api/stock-counts/{stock_count_id}/initialize")

    response = client.delete(f"/api/stock-counts/{stock_count_id}")

    assert response.status_code == 200
    assert client.get(f"/api/stock-counts/{stock_count_id}").status_code == 404
    assert StockCountItem.query.filter_by(stock_count_id=stock_count_id).count() == 0
    assert StockCountEvent.query.filter_by(stock_count_id=stock_count_id).count() == 0


def test_initialize_is_safe_to_repeat(client, seed):
    stock_count_id = _create_count(client, seed)

    first = client.post(f"/api/stock-counts/{stock_count_id}/initialize").get_json()
    second = client.post(f"/api/stock-counts/{stock_count_id}/initialize").get_json()

    assert first["created"] == 3
    assert second["created"] == 0
    assert len(second["items"]) == 3


def test_privileged_finalize_records_uncounted_items(client, app, seed, notifier):
    stock_count_id = _create_count(client, seed)
    client.post(f"/api/stock-counts/{stock_count_id}/initialize")
    token = client.post(f"/api/stock-counts/{stock_count_id}/close").get_json()["publicToken"]

    early = client.post(f"/api/stock-counts/{stock_count_id}/finalize")
    assert early.status_code == 409

    client.post(f"/api/public/stock-counts/{token}/begin")
    client.put(
        f"/api/public/stock-counts/{token}/items",
        json=[{"productId": seed["gin"], "countedQuantity": "2"}],
    )

    response = client.post(f"/api/stock-counts/{stock_count_id}/finalize")
    assert response.status_code == 200
    assert response.get_json()["stockCount"]["uncountedItems"] == 2

    again = client.post(f"/api/stock-counts/{stock_count_id}/finalize")
    assert again.status_code == 409


def test_corrections_after_finalization_are_audited(client, app, seed, notifier):
    stock_count_id = _create_count(client, seed)
    client.post(f"/api/stock-counts/{stock_count_id}/initialize")
    token = client.post(f"/api/stock-counts/{stock_count_id}/close").get_json()["publicToken"]

    before = client.put(
        f"/api/stock-counts/{stock_count_id}/items",
        json=[{"productId": seed["gin"], "countedQuantity": "5"}],
    )
    assert before.status_code == 409

    client.post(f"/api/public/stock-counts/{token}/begin")
    client.put(
        f"/api/public/stock-counts/{token}/items",
        json=[{"productId": seed["gin"], "countedQuantity": "2"}],
    )
    client.post(f"/api/public/stock-counts/{token}/finish")

    response = client.put(
        f"/api/stock-counts/{stock_count_id}/items",
        json=[
            {"productId": seed["gin"], "countedQuantity": "5"},
            {"productId": seed["tonic"], "countedQuantity": "0"},
        ],
    )
    assert response.status_code == 200
    payload = response.get_json()
    assert payload["saved"] == 2
    assert payload["corrections"] == [
        {"productId": seed["gin"], "previousQuantity": "2", "correctedQuantity": "5"},
    ]

    detail = client.get(f"/api/stock-counts/{stock_count_id}").get_json()
    assert detail["stockCount"]["status"] == StockCountStatus.FINALIZED

    events = client.get(f"/api/stock-counts/{stock_count_id}/events").get_json()["events"]
    corrections = [event for event in events if event["type"] == "correction"]
    assert len(corrections) == 1
    assert corrections[0]["actor"] == "user:superuser"


def test_create_validates_required_fields_and_references(client, seed):
    response = client.post("/api/stock-counts/", json={"date": "2026-10-19"})
    assert response.status_code == 400
    payload = response.get_json()
    assert payload["error"] == "validation_error"
    assert payload["details"]["missing"] == ["responsibleId", "unitId"]

    response = client.post(
        "/api/stock-counts/",
        json={"date": "2026-10-19", "responsibleId": 999, "unitId": seed["unit_id"]},
    )
    assert response.status_code == 400


def test_list_filters_by_status(client, seed, notifier):
    draft_id = _create_count(client, seed)
    ready_id = _create_count(client, seed)
    client.post(f"/api/stock-counts/{ready_id}/close")

    ready = client.get("/api/stock-counts/?status=ready").get_json()["stockCounts"]
    assert [entry["id"] for entry in ready] == [ready_id]

    everything = client.get("/api/stock-counts/").get_json()["stockCounts"]
    assert {entry["id"] for entry in everything} == {draft_id, ready_id}

    assert client.get("/api/stock-counts/?status=bogus").status_code == 400


def test_close_with_stale_object_raises_conflict(app, seed, notifier):
    stock_count = StockCount(
        date=date(2026, 10, 19),
        responsible_id=seed["employee_id"],
        unit_id=seed["unit_id"],
        status=StockCountStatus.DRAFT,
    )
    db.session.add(stock_count)
    db.session.commit()

    services.close_for_counting(stock_count)
    with pytest.raises(Conflict):
        services.close_for_counting(stock_count)
    assert len(notifier.messages) == 1


def test_remove_item_from_count_closed_meanwhile_is_rejected(app, seed, notifier):
    stock_count = StockCount(
        date=date(2026, 10, 19),
        responsible_id=seed["employee_id"],
        unit_id=seed["unit_id"],
        status=StockCountStatus.DRAFT,
    )
    db.session.add(stock_count)
    db.session.commit()
    services.initialize_stock_count(stock_count)
    stock_count_id = stock_count.id
    assert stock_count.status == StockCountStatus.DRAFT
    db.session.expunge(stock_count)

    # Another request closes the count after this one loaded it as a draft.
    StockCount.query.filter_by(id=stock_count_id).update(
        {"status": StockCountStatus.READY}, synchronize_session=False
    )
    db.session.commit()

    with pytest.raises(Conflict):
        services.remove_item(stock_count, seed["knife"])

    assert repository.find_item(stock_count_id, seed["knife"]) is not None
    assert db.session.get(StockCount, stock_count_id).status == StockCountStatus.READY
