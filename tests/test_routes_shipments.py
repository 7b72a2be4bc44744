"""Shipment route tests."""

from __future__ import annotations

from litestar.testing import TestClient

from conftest import (
    ADMIN_HEADERS,
    FakeTrackingAdapter,
    InMemoryShipmentRepository,
    upstream_error,
)

UPS = "1Z999AA10123456784"
UPS_2 = "1Z999AA10123456785"


def _create(client: TestClient, **payload) -> dict:
    resp = client.post("/shipments", json=payload, headers=ADMIN_HEADERS)
    assert resp.status_code == 201
    return resp.json()


class TestAuthentication:
    def test_missing_admin_header_is_401(self, client: TestClient) -> None:
        resp = client.post("/shipments", json={})
        assert resp.status_code == 401
        assert resp.json()["code"] == "UNAUTHENTICATED"


class TestShipmentsHealthRoute:
    def test_health_returns_ok(self, client: TestClient) -> None:
        resp = client.get("/shipments/health")
        assert resp.status_code == 200
        assert resp.json() == {"status": "ok", "tracking_provider": "fake"}


class TestCreateShipmentRoute:
    def test_create_shipment_returns_201(self, client: TestClient) -> None:
        body = _create(client, customer_name="Ada", customer_email="a@x.io")
        assert body["status"] == "pending"
        assert body["tracking_code"].startswith("SC")
        assert len(body["tracking_code"]) == 11
        assert body["tracking_assignment_status"] == "unassigned"
        assert body["customer_name"] == "Ada"

    def test_get_shipment(self, client: TestClient) -> None:
        created = _create(client)
        resp = client.get(f"/shipments/{created['id']}", headers=ADMIN_HEADERS)
        assert resp.status_code == 200
        assert resp.json()["tracking_code"] == created["tracking_code"]

    def test_get_unknown_shipment_is_404(self, client: TestClient) -> None:
        resp = client.get("/shipments/nope", headers=ADMIN_HEADERS)
        assert resp.status_code == 404
        assert resp.json()["code"] == "SHIPMENT_NOT_FOUND"


class TestEventsRoute:
    def test_lists_creation_event(self, client: TestClient) -> None:
        created = _create(client)
        resp = client.get(
            f"/shipments/{created['id']}/events", headers=ADMIN_HEADERS
        )
        assert resp.status_code == 200
        body = resp.json()
        assert body["pagination"]["total"] == 1
        assert body["events"][0]["event_type"] == "shipment_created"
        assert body["events"][0]["source_id"] == "admin-1"

    def test_paging_and_filters(self, client: TestClient) -> None:
        created = _create(client)
        for status in ("in-transit", "out-for-delivery", "delivered"):
            client.post(
                f"/shipments/{created['id']}/status",
                json={"status": status},
                headers=ADMIN_HEADERS,
            )
        resp = client.get(
            f"/shipments/{created['id']}/events",
            params={
                "event_type": "status_change",
                "per_page": 2,
                "page": 1,
                "sort_order": "desc",
            },
            headers=ADMIN_HEADERS,
        )
        body = resp.json()
        assert body["pagination"]["has_next"] is True
        assert len(body["events"]) == 2
        assert {e["event_type"] for e in body["events"]} == {"status_change"}

    def test_invalid_paging_is_400(self, client: TestClient) -> None:
        created = _create(client)
        resp = client.get(
            f"/shipments/{created['id']}/events",
            params={"per_page": 500},
            headers=ADMIN_HEADERS,
        )
        assert resp.status_code == 400


class TestStatusRoute:
    def test_manual_update(self, client: TestClient) -> None:
        created = _create(client)
        resp = client.post(
            f"/shipments/{created['id']}/status",
            json={"status": "in-transit", "notes": "Collected"},
            headers=ADMIN_HEADERS,
        )
        assert resp.status_code == 200
        assert resp.json()["status"] == "in-transit"

    def test_invalid_transition_is_409(self, client: TestClient) -> None:
        created = _create(client)
        client.post(
            f"/shipments/{created['id']}/status",
            json={"status": "delivered"},
            headers=ADMIN_HEADERS,
        )
        resp = client.post(
            f"/shipments/{created['id']}/status",
            json={"status": "pending"},
            headers=ADMIN_HEADERS,
        )
        assert resp.status_code == 409
        body = resp.json()
        assert body["code"] == "INVALID_STATUS_TRANSITION"
        assert body["details"]["from"] == "delivered"

    def test_override(self, client: TestClient) -> None:
        created = _create(client)
        client.post(
            f"/shipments/{created['id']}/status",
            json={"status": "delivered"},
            headers=ADMIN_HEADERS,
        )
        resp = client.post(
            f"/shipments/{created['id']}/status",
            json={"status": "in-transit", "override": True},
            headers=ADMIN_HEADERS,
        )
        assert resp.status_code == 200

    def test_unknown_status_is_400(self, client: TestClient) -> None:
        created = _create(client)
        resp = client.post(
            f"/shipments/{created['id']}/status",
            json={"status": "lost"},
            headers=ADMIN_HEADERS,
        )
        assert resp.status_code == 400


class TestAssignTrackingRoute:
    def test_assigns_and_syncs(
        self, client: TestClient, adapter: FakeTrackingAdapter
    ) -> None:
        created = _create(client)
        resp = client.post(
            f"/shipments/{created['id']}/assign-tracking",
            json={"courier": "UPS", "tracking_number": UPS},
            headers=ADMIN_HEADERS,
        )
        assert resp.status_code == 200
        body = resp.json()
        assert body["sync_error"] is None
        assert body["shipment"]["courier"] == "ups"
        assert body["shipment"]["courier_tracking_number"] == UPS
        assert body["shipment"]["tracking_assignment_status"] == "assigned"
        assert adapter.started == [("ups", UPS)]

    def test_sync_failure_is_reported_not_raised(
        self, client: TestClient, adapter: FakeTrackingAdapter
    ) -> None:
        adapter.fail_with = upstream_error("carrier down")
        created = _create(client)
        resp = client.post(
            f"/shipments/{created['id']}/assign-tracking",
            json={"courier": "ups", "tracking_number": UPS},
            headers=ADMIN_HEADERS,
        )
        assert resp.status_code == 200
        assert resp.json()["sync_error"] == "carrier down"
        assert resp.json()["shipment"]["courier_tracking_number"] == UPS

    def test_bad_format_is_400(self, client: TestClient) -> None:
        created = _create(client)
        resp = client.post(
            f"/shipments/{created['id']}/assign-tracking",
            json={"courier": "fedex", "tracking_number": "123"},
            headers=ADMIN_HEADERS,
        )
        assert resp.status_code == 400

    def test_conflict_is_409_with_options(self, client: TestClient) -> None:
        first = _create(client)
        second = _create(client)
        client.post(
            f"/shipments/{first['id']}/assign-tracking",
            json={"courier": "ups", "tracking_number": UPS},
            headers=ADMIN_HEADERS,
        )
        resp = client.post(
            f"/shipments/{second['id']}/assign-tracking",
            json={"courier": "ups", "tracking_number": UPS},
            headers=ADMIN_HEADERS,
        )
        assert resp.status_code == 409
        body = resp.json()
        assert body["code"] == "TRACKING_CONFLICT"
        conflict = body["details"]["conflict"]
        assert conflict["shipment_id"] == first["id"]
        assert conflict["tracking_code"] == first["tracking_code"]
        actions = [o["action"] for o in body["details"]["resolution_options"]]
        assert actions == ["skip", "override", "update_existing"]

    def test_resolve_conflict_override(
        self, client: TestClient, repository: InMemoryShipmentRepository
    ) -> None:
        first = _create(client)
        second = _create(client)
        client.post(
            f"/shipments/{first['id']}/assign-tracking",
            json={"courier": "ups", "tracking_number": UPS},
            headers=ADMIN_HEADERS,
        )
        resp = client.post(
            f"/shipments/{second['id']}/assign-tracking/resolve-conflict",
            json={
                "courier": "ups",
                "tracking_number": UPS,
                "resolution": {"action": "override", "reason": "Relabelled"},
            },
            headers=ADMIN_HEADERS,
        )
        assert resp.status_code == 200
        body = resp.json()
        assert body["success"] is True
        assert body["action"] == "override"
        assert body["affected_shipments"] == [first["id"], second["id"]]
        assert repository.items[first["id"]].courier_tracking_number is None
        assert repository.items[second["id"]].courier_tracking_number == UPS

    def test_resolve_conflict_unknown_action_is_400(
        self, client: TestClient
    ) -> None:
        created = _create(client)
        resp = client.post(
            f"/shipments/{created['id']}/assign-tracking/resolve-conflict",
            json={
                "courier": "ups",
                "tracking_number": UPS,
                "resolution": {"action": "merge"},
            },
            headers=ADMIN_HEADERS,
        )
        assert resp.status_code == 400


class TestBulkAssignRoute:
    def test_all_succeed_is_200(self, client: TestClient) -> None:
        first = _create(client)
        second = _create(client)
        resp = client.post(
            "/shipments/bulk-assign-tracking",
            json={
                "assignments": [
                    {
                        "shipment_id": first["id"],
                        "courier": "ups",
                        "tracking_number": UPS,
                    },
                    {
                        "shipment_id": second["id"],
                        "courier": "ups",
                        "tracking_number": UPS_2,
                    },
                ]
            },
            headers=ADMIN_HEADERS,
        )
        assert resp.status_code == 200
        body = resp.json()
        assert body["total_processed"] == 2
        assert body["successful"] == 2
        assert body["errors"] == []

    def test_invalid_batch_is_400_and_writes_nothing(
        self, client: TestClient, repository: InMemoryShipmentRepository
    ) -> None:
        first = _create(client)
        second = _create(client)
        resp = client.post(
            "/shipments/bulk-assign-tracking",
            json={
                "assignments": [
                    {
                        "shipment_id": first["id"],
                        "courier": "ups",
                        "tracking_number": UPS,
                    },
                    {
                        "shipment_id": second["id"],
                        "courier": "ups",
                        "tracking_number": UPS,
                    },
                ]
            },
            headers=ADMIN_HEADERS,
        )
        assert resp.status_code == 400
        body = resp.json()
        assert body["code"] == "BULK_VALIDATION_FAILED"
        assert "duplicate_in_batch" in body["details"]["errors"]
        assert all(
            s.courier_tracking_number is None
            for s in repository.items.values()
        )

    def test_missing_shipment_is_404(self, client: TestClient) -> None:
        resp = client.post(
            "/shipments/bulk-assign-tracking",
            json={
                "assignments": [
                    {
                        "shipment_id": "ghost",
                        "courier": "ups",
                        "tracking_number": UPS,
                    }
                ]
            },
            headers=ADMIN_HEADERS,
        )
        assert resp.status_code == 404
        assert resp.json()["details"]["missing_shipment_ids"] == ["ghost"]

    def test_empty_batch_is_400(self, client: TestClient) -> None:
        resp = client.post(
            "/shipments/bulk-assign-tracking",
            json={"assignments": []},
            headers=ADMIN_HEADERS,
        )
        assert resp.status_code == 400


class TestSyncRoutes:
    def test_sync_single_shipment(
        self, client: TestClient, adapter: FakeTrackingAdapter
    ) -> None:
        created = _create(client)
        client.post(
            f"/shipments/{created['id']}/assign-tracking",
            json={"courier": "ups", "tracking_number": UPS},
            headers=ADMIN_HEADERS,
        )
        resp = client.post(
            f"/shipments/{created['id']}/sync", headers=ADMIN_HEADERS
        )
        assert resp.status_code == 200
        assert resp.json()["success"] is True
        assert adapter.polled == [f"trk-{UPS}"]

    def test_failed_sync_flags_review(
        self, client: TestClient, adapter: FakeTrackingAdapter
    ) -> None:
        created = _create(client)
        client.post(
            f"/shipments/{created['id']}/assign-tracking",
            json={"courier": "ups", "tracking_number": UPS},
            headers=ADMIN_HEADERS,
        )
        adapter.fail_with = upstream_error("timeout")
        resp = client.post(
            f"/shipments/{created['id']}/sync", headers=ADMIN_HEADERS
        )
        assert resp.status_code == 200
        assert resp.json() == {
            "shipment_id": created["id"],
            "success": False,
            "events_added": 0,
            "status": None,
            "error": "timeout",
        }
        shipment = client.get(
            f"/shipments/{created['id']}", headers=ADMIN_HEADERS
        ).json()
        assert shipment["needs_review"] is True

    def test_batch_sync(self, client: TestClient) -> None:
        created = _create(client)
        resp = client.post(
            "/shipments/sync",
            json={"shipment_ids": [created["id"], "ghost"]},
            headers=ADMIN_HEADERS,
        )
        assert resp.status_code == 200
        body = resp.json()
        assert body["total"] == 2
        assert body["failed"] == 2


class TestStatsRoute:
    def test_stats(self, client: TestClient) -> None:
        created = _create(client)
        client.post(
            f"/shipments/{created['id']}/assign-tracking",
            json={"courier": "ups", "tracking_number": UPS},
            headers=ADMIN_HEADERS,
        )
        resp = client.get(
            "/shipments/tracking-validation/stats", headers=ADMIN_HEADERS
        )
        assert resp.status_code == 200
        assert resp.json() == {
            "total_assigned": 1,
            "by_courier": {"ups": 1},
            "duplicates": [],
        }
