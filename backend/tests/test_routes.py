"""
HTTP surface: actor header, error mapping and end-to-end flows through the blueprints.
"""

import logging

import pytest

from cylinder_ledger.models import InventoryOutboxTask
from cylinder_ledger.services.movement_service import CylinderMovementService


def _movement_body(quantity, *, movement_type="DELIVERY_FILLED"):
    return {
        "cylinder_type_id": 1,
        "quantity": quantity,
        "movement_type": movement_type,
        "from_location": {"kind": "YARD", "status": "FILLED"},
        "to_location": {"kind": "VEHICLE", "reference_id": 3, "status": "FILLED"},
    }


class TestActorHeader:
    def test_missing_header(self, client, db_session):
        response = client.get("/api/cylinder-inventory/summary")
        assert response.status_code == 401
        assert response.get_json()["error"] == "Authentication required"

    @pytest.mark.parametrize("value", ["abc", "0", "-4"])
    def test_invalid_header(self, client, db_session, value):
        response = client.get("/api/cylinder-inventory/summary", headers={"X-User-Id": value})
        assert response.status_code == 401

    def test_health_is_public(self, client, db_session):
        assert client.get("/api/health").status_code == 200


class TestInventoryRoutes:
    def test_initialize_and_summary(self, client, auth_headers, cylinder_type):
        response = client.post(
            "/api/cylinder-inventory/initialize",
            json={"items": [{"cylinder_type_id": 1, "quantity": 100}]},
            headers=auth_headers,
        )
        assert response.status_code == 201
        assert response.get_json()["items"][0]["moved_by"] == 42

        response = client.get("/api/cylinder-inventory/locations/yard", headers=auth_headers)
        assert response.status_code == 200
        assert [item["quantity"] for item in response.get_json()["items"]] == [100]

    def test_record_movement(self, client, auth_headers, stocked_yard, vehicle):
        response = client.post("/api/cylinder-inventory/movements", json=_movement_body(10), headers=auth_headers)

        assert response.status_code == 201
        data = response.get_json()
        assert data["to_location"]["name"] == "KA-01-AB-1234"

        response = client.get(
            "/api/cylinder-inventory/available",
            query_string={"cylinder_type_id": 1, "kind": "vehicle", "reference_id": 3},
            headers=auth_headers,
        )
        assert response.get_json()["quantity"] == 10
        assert response.get_json()["kind"] == "VEHICLE"

    def test_insufficient_stock_reports_shortfall(self, client, auth_headers, stocked_yard):
        response = client.post("/api/cylinder-inventory/movements", json=_movement_body(1000), headers=auth_headers)

        assert response.status_code == 400
        data = response.get_json()
        assert data["available"] == 100
        assert data["requested"] == 1000
        assert data["shortfall"] == 900

    def test_invalid_movement_lists_errors(self, client, auth_headers, stocked_yard):
        body = _movement_body(5, movement_type="RETURN_EMPTY")
        response = client.post("/api/cylinder-inventory/movements", json=body, headers=auth_headers)

        assert response.status_code == 400
        assert response.get_json()["errors"]

    def test_unknown_cylinder_type(self, client, auth_headers, db_session):
        body = _movement_body(1)
        body["cylinder_type_id"] = 99
        response = client.post("/api/cylinder-inventory/movements", json=body, headers=auth_headers)
        assert response.status_code == 404

    def test_non_object_body(self, client, auth_headers, db_session):
        response = client.post("/api/cylinder-inventory/movements", json=[1, 2], headers=auth_headers)
        assert response.status_code == 400

    def test_validate_does_not_write(self, client, auth_headers, stocked_yard):
        response = client.post("/api/cylinder-inventory/movements/validate", json=_movement_body(5), headers=auth_headers)

        assert response.status_code == 200
        assert response.get_json()["is_valid"] is True
        logs = client.get("/api/cylinder-inventory/movements", headers=auth_headers).get_json()["items"]
        assert len(logs) == 1

    def test_unexpected_error_hides_details(self, client, auth_headers, db_session, monkeypatch, caplog):
        def _boom(self):
            raise RuntimeError("secret connection string")

        monkeypatch.setattr(CylinderMovementService, "get_inventory_summary", _boom)
        with caplog.at_level(logging.ERROR, logger="cylinder_ledger"):
            response = client.get("/api/cylinder-inventory/summary", headers=auth_headers)

        assert response.status_code == 500
        assert response.get_json() == {"error": "Internal server error"}
        assert any("secret connection string" in r.getMessage() for r in caplog.records)

    def test_movement_log_limit_bounds(self, client, auth_headers, db_session):
        response = client.get("/api/cylinder-inventory/movements?limit=0", headers=auth_headers)
        assert response.status_code == 400
        response = client.get("/api/cylinder-inventory/movements?limit=501", headers=auth_headers)
        assert response.status_code == 400


class TestGRRoutes:
    @pytest.fixture
    def delivery(self, client, auth_headers, stocked_yard, make_delivery):
        make_delivery(5, [(1, 10, 4)])
        response = client.post(
            "/api/cylinder-inventory/movements/delivery",
            json={"delivery_id": 5, "cylinder_type_id": 1, "quantity": 10, "vehicle_id": 3},
            headers=auth_headers,
        )
        assert response.status_code == 201

    def test_lifecycle(self, client, auth_headers, delivery):
        response = client.post(
            "/api/gr", json={"delivery_transaction_id": 5, "advance_amount_cents": 500}, headers=auth_headers
        )
        assert response.status_code == 201
        gr = response.get_json()
        assert gr["status"] == "PENDING"

        assert client.post("/api/gr", json={"delivery_transaction_id": 5}, headers=auth_headers).status_code == 409
        assert client.post(f"/api/gr/{gr['id']}/finalize", headers=auth_headers).status_code == 409

        response = client.post(f"/api/gr/{gr['id']}/approve", json={}, headers=auth_headers)
        assert response.status_code == 200
        assert [t["status"] for t in response.get_json()["outbox_tasks"]] == ["DONE"]

        response = client.post(f"/api/gr/{gr['id']}/close-trip", headers=auth_headers)
        assert response.status_code == 200
        data = response.get_json()
        assert data["status"] == "FINALIZED"
        assert sorted(t["status"] for t in data["outbox_tasks"]) == ["DONE", "DONE", "FAILED"]

        failed = client.get("/api/gr/outbox?status=failed", headers=auth_headers).get_json()["items"]
        assert len(failed) == 1
        assert failed[0]["quantity"] == 6

    def test_unknown_delivery(self, client, auth_headers, cylinder_type):
        response = client.post("/api/gr", json={"delivery_transaction_id": 404}, headers=auth_headers)
        assert response.status_code == 404

    def test_preview_and_exists(self, client, auth_headers, delivery):
        preview = client.get("/api/gr/preview/5", headers=auth_headers).get_json()
        assert preview["can_create"] is True
        assert preview["totals"]["net_qty"] == 6

        assert client.get("/api/gr/exists/5", headers=auth_headers).get_json()["exists"] is False

    def test_retry_done_task_conflicts(self, client, auth_headers, db_session, delivery):
        gr = client.post("/api/gr", json={"delivery_transaction_id": 5}, headers=auth_headers).get_json()
        client.post(f"/api/gr/{gr['id']}/approve", headers=auth_headers)
        task = db_session.query(InventoryOutboxTask).one()

        response = client.post(f"/api/gr/outbox/{task.id}/retry", headers=auth_headers)
        assert response.status_code == 409

    def test_process_outbox(self, client, auth_headers, delivery):
        response = client.post("/api/gr/outbox/process", json={"limit": 10}, headers=auth_headers)
        assert response.status_code == 200
        assert response.get_json() == {"processed": 0, "done": 0, "failed": 0, "alert": 0}


class TestExchangeRoutes:
    def test_exchange_and_summary(self, client, auth_headers, cylinder_type):
        body = {"order_id": 1, "plan_id": 11, "cylinder_type_id": 1,
                "filled_delivered": 10, "empty_collected": 8, "expected_empty": 10}
        response = client.post("/api/cylinder-exchange/exchanges", json=body, headers=auth_headers)
        assert response.status_code == 201
        exchange = response.get_json()
        assert exchange["variance_type"] == "SHORTAGE"

        response = client.post(f"/api/cylinder-exchange/exchanges/{exchange['id']}/acknowledge", headers=auth_headers)
        assert response.status_code == 200
        response = client.post(f"/api/cylinder-exchange/exchanges/{exchange['id']}/acknowledge", headers=auth_headers)
        assert response.status_code == 409

        summary = client.get("/api/cylinder-exchange/summary/11", headers=auth_headers).get_json()
        assert summary["shortage_value_cents"] == 500000
        assert summary["pending_acknowledgments"] == 0

        listed = client.get("/api/cylinder-exchange/exchanges?variance_type=SHORTAGE", headers=auth_headers)
        assert len(listed.get_json()["items"]) == 1

    def test_negative_quantity_rejected(self, client, auth_headers, db_session):
        body = {"order_id": 1, "filled_delivered": -1, "empty_collected": 0, "expected_empty": 0}
        response = client.post("/api/cylinder-exchange/exchanges", json=body, headers=auth_headers)
        assert response.status_code == 400

    def test_reconciliation_flow(self, client, auth_headers, cylinder_type):
        body = {"order_id": 1, "plan_id": 11, "cylinder_type_id": 1,
                "filled_delivered": 5, "empty_collected": 6, "expected_empty": 5}
        client.post("/api/cylinder-exchange/exchanges", json=body, headers=auth_headers)

        response = client.post(
            "/api/cylinder-exchange/reconciliations",
            json={"plan_id": 11, "reconciliation_date": "2026-03-02"},
            headers=auth_headers,
        )
        assert response.status_code == 201
        reconciliation = response.get_json()
        assert reconciliation["reconciliation_date"] == "2026-03-02"
        assert reconciliation["total_excess"] == 1
        detail_id = reconciliation["variance_details"][0]["id"]

        rid = reconciliation["id"]
        url = f"/api/cylinder-exchange/reconciliations/{rid}"
        assert client.post(f"{url}/approve", headers=auth_headers).status_code == 409
        assert client.patch(f"{url}/status", json={"status": "IN_PROGRESS"}, headers=auth_headers).status_code == 200
        assert client.patch(f"{url}/status", json={"status": "COMPLETED"}, headers=auth_headers).status_code == 200
        response = client.post(f"{url}/approve", headers=auth_headers)
        assert response.status_code == 200
        assert response.get_json()["status"] == "APPROVED"

        response = client.patch(
            f"/api/cylinder-exchange/variance-details/{detail_id}",
            json={"resolution_status": "RESOLVED", "resolution_notes": "Kept as spare"},
            headers=auth_headers,
        )
        assert response.status_code == 200
        assert response.get_json()["resolution_status"] == "RESOLVED"

    def test_bad_reconciliation_date(self, client, auth_headers, db_session):
        response = client.post(
            "/api/cylinder-exchange/reconciliations",
            json={"plan_id": 11, "reconciliation_date": "02/03/2026"},
            headers=auth_headers,
        )
        assert response.status_code == 400

    def test_vehicle_inventory(self, client, auth_headers, cylinder_type):
        for order_id, filled, collected in ((1, 10, 8), (2, 5, 5)):
            body = {"order_id": order_id, "plan_id": 11, "filled_delivered": filled,
                    "empty_collected": collected, "expected_empty": filled}
            client.post("/api/cylinder-exchange/exchanges", json=body, headers=auth_headers)

        response = client.post(
            "/api/cylinder-exchange/vehicle-inventory",
            json={"plan_id": 11, "items": [{"cylinder_type_id": 1, "actual_remaining": 3}]},
            headers=auth_headers,
        )
        assert response.status_code == 201
        row = response.get_json()["items"][0]
        assert (row["expected_remaining"], row["variance"], row["variance_type"]) == (2, 1, "EXCESS")

        listed = client.get("/api/cylinder-exchange/vehicle-inventory/11", headers=auth_headers).get_json()
        assert listed["plan_id"] == 11
        assert len(listed["items"]) == 1


class TestHealth:
    def test_healthy(self, client, db_session):
        data = client.get("/api/health").get_json()
        assert data["status"] == "healthy"
        assert data["checks"]["database"]["status"] == "healthy"
        assert data["checks"]["outbox"]["status"] == "healthy"

    def test_degraded_by_failed_outbox_task(self, client, auth_headers, stocked_yard, make_delivery):
        make_delivery(8, [(1, 10, 0)])
        gr = client.post("/api/gr", json={"delivery_transaction_id": 8}, headers=auth_headers).get_json()
        client.post(f"/api/gr/{gr['id']}/approve", headers=auth_headers)

        response = client.get("/api/health")
        assert response.status_code == 200
        data = response.get_json()
        assert data["status"] == "degraded"
        assert data["checks"]["outbox"]["status"] == "degraded"
