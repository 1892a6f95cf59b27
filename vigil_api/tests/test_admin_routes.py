"""Tests for admin routes."""

from datetime import date
from unittest.mock import AsyncMock, patch

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from vigil.errors import NotAssignedError
from vigil.lifecycle import (
    Active,
    MissesReset,
    Released,
    ReleaseRequested,
    TransitionResult,
)
from vigil_api.auth import get_current_holder, require_admin
from vigil_api.routes.admin import router

ADMIN = {"holder_id": 1, "display_name": "Admin", "is_admin": True}


def _mock_db(mock_ctx):
    conn = AsyncMock()
    mock_ctx.return_value.__aenter__.return_value = conn
    mock_ctx.return_value.__aexit__.return_value = None
    return conn


@pytest.fixture
def client():
    app = FastAPI()
    app.include_router(router)
    app.dependency_overrides[require_admin] = lambda: ADMIN
    return TestClient(app)


def test_non_admin_is_forbidden():
    app = FastAPI()
    app.include_router(router)
    app.dependency_overrides[get_current_holder] = lambda: {"holder_id": 42, "is_admin": False}

    response = TestClient(app).get("/api/admin/assignments")

    assert response.status_code == 403


class TestListings:
    def test_assignments(self, client):
        rows = [
            {
                "assignment_id": 7,
                "holder_id": 42,
                "slot_index": 12,
                "status": "active",
                "missed_count": 2,
                "display_name": "Grace",
            }
        ]
        with patch("vigil_api.routes.admin.get_connection") as mock_conn, patch(
            "vigil_api.routes.admin.list_assignments", new_callable=AsyncMock, return_value=rows
        ) as mock_list:
            conn = _mock_db(mock_conn)
            response = client.get("/api/admin/assignments?status=active&limit=10")

        assert response.status_code == 200
        item = response.json()["assignments"][0]
        assert item["display_name"] == "Grace"
        assert item["slot_label"] == "06:00–06:30"
        mock_list.assert_awaited_once_with(conn, status="active", limit=10, offset=0)

    def test_attendance_for_one_holder_includes_summary(self, client):
        records = [
            {"attendance_date": date(2025, 1, 8), "outcome": "attended"},
            {"attendance_date": date(2025, 1, 9), "outcome": "missed"},
        ]
        with patch("vigil_api.routes.admin.get_connection") as mock_conn, patch(
            "vigil_api.routes.admin.list_attendance", new_callable=AsyncMock, return_value=records
        ) as mock_list:
            conn = _mock_db(mock_conn)
            response = client.get(
                "/api/admin/attendance?since=2025-01-01&until=2025-01-10&holder_id=42"
            )

        assert response.status_code == 200
        data = response.json()
        assert data["summary"]["attended"] == 1
        assert data["summary"]["missed"] == 1
        mock_list.assert_awaited_once_with(
            conn, date(2025, 1, 1), date(2025, 1, 10), holder_id=42
        )

    def test_attendance_rejects_reversed_range(self, client):
        response = client.get("/api/admin/attendance?since=2025-01-10&until=2025-01-01")
        assert response.status_code == 422

    def test_dispatches_filter(self, client):
        with patch("vigil_api.routes.admin.get_connection") as mock_conn, patch(
            "vigil_api.routes.admin.list_dispatches", new_callable=AsyncMock, return_value=[]
        ) as mock_list:
            conn = _mock_db(mock_conn)
            response = client.get("/api/admin/dispatches?status=failed&category=slot_reminder")

        assert response.status_code == 200
        mock_list.assert_awaited_once_with(
            conn, status="failed", category="slot_reminder", holder_id=None, limit=100
        )

    def test_unknown_dispatch_status_is_rejected(self, client):
        response = client.get("/api/admin/dispatches?status=lost")
        assert response.status_code == 422


class TestOverrides:
    def test_force_release(self, client):
        result = TransitionResult(
            assignment_id=7,
            holder_id=42,
            slot_index=12,
            event=ReleaseRequested("admin"),
            previous=Active(missed_count=2),
            current=Released(reason="admin"),
        )
        with patch(
            "vigil_api.routes.admin.force_release", new_callable=AsyncMock, return_value=result
        ) as mock_release:
            response = client.post("/api/admin/holders/42/force-release")

        assert response.status_code == 200
        assert response.json()["slot_index"] == 12
        mock_release.assert_awaited_once_with(42)

    def test_force_release_without_assignment(self, client):
        with patch(
            "vigil_api.routes.admin.force_release",
            new_callable=AsyncMock,
            side_effect=NotAssignedError("Holder 42 has no live assignment"),
        ):
            response = client.post("/api/admin/holders/42/force-release")

        assert response.status_code == 404

    def test_reset_missed(self, client):
        result = TransitionResult(
            assignment_id=7,
            holder_id=42,
            slot_index=12,
            event=MissesReset(),
            previous=Active(missed_count=2),
            current=Active(missed_count=0),
        )
        with patch(
            "vigil_api.routes.admin.reset_missed_count", new_callable=AsyncMock, return_value=result
        ):
            response = client.post("/api/admin/holders/42/reset-missed")

        assert response.json() == {"status": "reset", "assignment_id": 7, "missed_count": 0}


class TestReconcileAndBroadcast:
    def test_reconcile_runs_live_poll_by_default(self, client):
        with patch(
            "vigil_api.routes.admin.run_live_poll",
            new_callable=AsyncMock,
            return_value={"reconciled": 2},
        ), patch("vigil_api.routes.admin.run_catch_up", new_callable=AsyncMock) as mock_catch_up:
            response = client.post("/api/admin/reconcile")

        assert response.json() == {"status": "completed", "stats": {"reconciled": 2}}
        mock_catch_up.assert_not_awaited()

    def test_reconcile_catch_up(self, client):
        with patch(
            "vigil_api.routes.admin.run_catch_up",
            new_callable=AsyncMock,
            return_value={"reconciled": 5},
        ):
            response = client.post("/api/admin/reconcile", json={"catch_up": True})

        assert response.json()["stats"] == {"reconciled": 5}

    def test_broadcast_to_live_holders(self, client):
        live = [{"holder_id": 9}, {"holder_id": 3}]
        with patch(
            "vigil_api.routes.admin.list_active", new_callable=AsyncMock, return_value=live
        ), patch(
            "vigil_api.routes.admin.send_broadcast",
            new_callable=AsyncMock,
            return_value={"sent": 2},
        ) as mock_send:
            response = client.post(
                "/api/admin/broadcasts",
                json={"update_key": "retreat", "title": "Retreat", "body": "Details"},
            )

        assert response.json() == {"status": "sent", "recipients": 2, "outcomes": {"sent": 2}}
        mock_send.assert_awaited_once_with("retreat", "Retreat", "Details", [3, 9])

    def test_broadcast_requires_title(self, client):
        response = client.post(
            "/api/admin/broadcasts", json={"update_key": "retreat", "title": "", "body": "x"}
        )
        assert response.status_code == 422
