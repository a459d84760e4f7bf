"""
HTTP tests for the sign-up store.

These drive the Flask app through its test client against a real data file in
a temporary directory and the in-memory object store, and verify that:
1. Each route returns the documented payload
2. Business outcomes and failures map onto distinct status codes
3. The download is a consistent CSV attachment
"""

from __future__ import annotations

from types import SimpleNamespace

import pytest

from signup_store.errors import BusyError, WriteError
from signup_store.infrastructure import persistence as persistence_module
from signup_store.service import SignupService
from signup_store.web import create_app

from conftest import HEADER, MemoryObjectStore

ANN = {"name": "Ann", "email": "ann@x.com", "phone": "5551234567"}


@pytest.fixture
def client(service: SignupService):
    service.start(background=False)
    app = create_app(service)
    app.config["TESTING"] = True
    return app.test_client()


class TestSubmit:
    def test_submit_ok(self, client) -> None:
        response = client.post("/submit", json=ANN)
        assert response.status_code == 200
        assert response.get_json() == {"success": True, "name": "Ann"}

    def test_submit_duplicate_returns_409(self, client) -> None:
        client.post("/submit", json=ANN)

        response = client.post("/submit", json={**ANN, "email": "ANN@X.COM"})

        assert response.status_code == 409
        body = response.get_json()
        assert body["success"] is False
        assert body["duplicateField"] == "both"
        assert "One entry per customer" in body["error"]

    @pytest.mark.parametrize(
        ("payload", "message"),
        [
            ({"name": "Ann", "email": "ann@x.com"}, "Missing required fields"),
            ({**ANN, "email": "ann"}, "Invalid email format"),
            ({**ANN, "phone": "12"}, "Invalid phone number (10 digits required)"),
        ],
    )
    def test_submit_validation_returns_400(self, client, payload, message: str) -> None:
        response = client.post("/submit", json=payload)
        assert response.status_code == 400
        assert response.get_json()["error"] == message

    def test_submit_without_json_body_returns_400(self, client) -> None:
        response = client.post("/submit", data="name=Ann")
        assert response.status_code == 400

    def test_submit_with_remote_down_reports_warning(self, client, store: MemoryObjectStore) -> None:
        store.fail("create", 3)

        response = client.post("/submit", json=ANN)

        assert response.status_code == 200
        assert "remote sync pending" in response.get_json()["warning"]
        assert client.get("/health").get_json()["dirty"] is True

    def test_submit_when_busy_returns_503(
        self, client, service: SignupService, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        def busy(*args, **kwargs):
            raise BusyError("Server busy, please retry shortly")

        monkeypatch.setattr(service, "submit", busy)

        response = client.post("/submit", json=ANN)
        assert response.status_code == 503

    def test_submit_with_full_disk_returns_507(
        self, client, service: SignupService, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        service.coordinator.persistence.min_free_bytes = 1024
        monkeypatch.setattr(
            persistence_module.psutil, "disk_usage", lambda path: SimpleNamespace(free=1)
        )

        response = client.post("/submit", json=ANN)
        assert response.status_code == 507

    def test_submit_write_failure_returns_500(
        self, client, service: SignupService, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        def broken(table):
            raise WriteError("Writing failed after 3 attempts")

        monkeypatch.setattr(service.coordinator.persistence, "write", broken)

        response = client.post("/submit", json=ANN)
        assert response.status_code == 500
        assert response.get_json() == {"success": False, "error": "Failed to save data"}


class TestSavePrize:
    def test_save_prize(self, client) -> None:
        client.post("/submit", json=ANN)

        response = client.post("/save-prize", json={"email": "ann@x.com", "prize": "Free Cookie"})

        assert response.status_code == 200
        assert response.get_json() == {"success": True}
        assert client.get("/records").get_json()[0]["prize"] == "Free Cookie"

    def test_save_prize_unknown_email_returns_404(self, client) -> None:
        response = client.post("/save-prize", json={"email": "x@x.com", "prize": "Free Dip"})
        assert response.status_code == 404
        assert response.get_json()["error"] == "Email not found"

    def test_save_prize_invalid_prize_returns_400(self, client) -> None:
        response = client.post("/save-prize", json={"email": "ann@x.com", "prize": "A Car"})
        assert response.status_code == 400
        assert response.get_json()["error"] == "Invalid prize: A Car"


class TestDelete:
    def test_delete_by_phone(self, client) -> None:
        client.post("/submit", json=ANN)

        response = client.post("/delete", json={"phone": "555-123-4567"})

        assert response.status_code == 200
        assert response.get_json() == {"success": True, "found": True, "removed": 1}
        assert client.get("/records").get_json() == []

    def test_delete_missing_returns_404(self, client) -> None:
        response = client.post("/delete", json={"email": "nobody@x.com"})
        assert response.status_code == 404
        assert response.get_json()["found"] is False

    def test_delete_without_keys_returns_400(self, client) -> None:
        response = client.post("/delete", json={})
        assert response.status_code == 400


def test_download_returns_csv_attachment(client) -> None:
    client.post("/submit", json=ANN)

    response = client.get("/download")

    assert response.status_code == 200
    assert response.mimetype == "text/csv"
    assert "attachment; filename=customers.csv" in response.headers["Content-Disposition"]
    assert response.data.startswith(HEADER)
    assert b"ann@x.com" in response.data


def test_records_lists_every_field(client) -> None:
    client.post("/submit", json=ANN)

    records = client.get("/records").get_json()

    assert records == [
        {"name": "Ann", "email": "ann@x.com", "phone": "5551234567", "date": "2024-05-01", "prize": ""}
    ]


def test_health(client) -> None:
    response = client.get("/health")
    assert response.status_code == 200
    assert response.get_json() == {"status": "ok", "dirty": False, "phase": "idle"}
