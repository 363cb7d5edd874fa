"""End-to-end tests for the JSON API."""

from __future__ import annotations

import logging
from dataclasses import replace
from datetime import timedelta
from typing import Dict

import pytest
from fastapi.testclient import TestClient

from dnc_checker.accounts import RESET_CONFIRMATION
from dnc_checker.config import Settings
from dnc_checker.errors import UpstreamError
from dnc_checker.service import create_app

from conftest import FakeDecisionService, RecordingMailer


@pytest.fixture()
def client(settings: Settings, decision_service: FakeDecisionService, mailer: RecordingMailer):
    app = create_app(settings, decision_service=decision_service, mailer=mailer, configure_logs=False)
    with TestClient(app) as test_client:
        yield test_client


def _register(client: TestClient, username: str = "alice", email: str = "alice@example.com", password: str = "correct-horse"):
    return client.post("/api/register", json={"username": username, "email": email, "password": password})


def _bearer(client: TestClient, username: str = "alice", password: str = "correct-horse") -> Dict[str, str]:
    response = client.post("/api/auth/login", json={"username": username, "password": password})
    assert response.status_code == 200, response.text
    client.cookies.clear()
    return {"Authorization": f"Bearer {response.json()['data']['token']}"}


def test_end_to_end_alice(client: TestClient, decision_service: FakeDecisionService) -> None:
    registered = _register(client)
    assert registered.status_code == 201, registered.text
    assert registered.json() == {"success": True}

    duplicate = _register(client, email="other@example.com")
    assert duplicate.status_code == 409
    assert duplicate.json() == {"success": False, "error": "Username or email already exists"}

    login = client.post("/api/auth/login", json={"username": "alice", "password": "correct-horse"})
    assert login.status_code == 200, login.text
    data = login.json()["data"]
    assert data["token"]
    assert data["expires_at"]
    assert data["user"]["username"] == "alice"
    assert "password_hash" not in data["user"]
    assert client.cookies.get("dnc_session") == data["token"]

    wrong = client.post("/api/auth/login", json={"username": "alice", "password": "wrong-password"})
    assert wrong.status_code == 401
    assert wrong.json() == {"success": False, "error": "Invalid username or password"}

    lookup = client.post("/api/dnc-lookup", json={"phoneNumber": "5551234567", "lookupDate": "01/15/2024"})
    assert lookup.status_code == 200, lookup.text
    assert lookup.json() == {"success": True, "data": decision_service.rows}

    short = client.post("/api/dnc-lookup", json={"phoneNumber": "555123", "lookupDate": "01/15/2024"})
    assert short.status_code == 400
    assert short.json() == {"success": False, "error": "A valid 10-digit US phone number is required"}
    assert len(decision_service.lookup_calls) == 1


def test_wrong_password_and_unknown_user_are_identical(client: TestClient) -> None:
    _register(client)

    wrong_password = client.post("/api/auth/login", json={"username": "alice", "password": "nope-nope"})
    unknown_user = client.post("/api/auth/login", json={"username": "mallory", "password": "nope-nope"})

    assert wrong_password.status_code == unknown_user.status_code == 401
    assert wrong_password.content == unknown_user.content


def test_duplicate_email_is_conflict(client: TestClient) -> None:
    _register(client)

    response = _register(client, username="alice2", email="ALICE@example.com")

    assert response.status_code == 409


@pytest.mark.parametrize("path", ["/api/dnc-lookup", "/api/dnc-history"])
@pytest.mark.parametrize(
    "headers",
    [{}, {"Authorization": "Bearer not-a-token"}, {"Authorization": "Basic YWxpY2U6cHc="}],
)
def test_protected_operations_reject_missing_sessions(
    client: TestClient, decision_service: FakeDecisionService, path: str, headers
) -> None:
    response = client.post(path, json={"phoneNumber": "5551234567", "lookupDate": "01/15/2024"}, headers=headers)

    assert response.status_code == 401
    assert response.json() == {"success": False, "error": "Unauthorized"}
    assert decision_service.call_count == 0


def test_auth_is_checked_before_body(client: TestClient, decision_service: FakeDecisionService) -> None:
    response = client.post("/api/dnc-history", content=b"not json", headers={"Content-Type": "application/json"})

    assert response.status_code == 401
    assert decision_service.call_count == 0


def test_expired_session_is_rejected(
    client: TestClient, decision_service: FakeDecisionService, monkeypatch: pytest.MonkeyPatch
) -> None:
    _register(client)
    headers = _bearer(client)
    issuer = client.app.state.session_issuer
    real_now = issuer._now()

    monkeypatch.setattr(issuer, "_now", lambda: real_now + timedelta(hours=8, seconds=1))
    response = client.post("/api/dnc-history", json={"phoneNumber": "5551234567"}, headers=headers)

    assert response.status_code == 401
    assert decision_service.call_count == 0


def test_bearer_token_authorises_history(client: TestClient, decision_service: FakeDecisionService) -> None:
    _register(client)
    headers = _bearer(client)

    for raw in ("2125551234", "(212) 555-1234", "212-555-1234"):
        response = client.post("/api/dnc-history", json={"phoneNumber": raw}, headers=headers)
        assert response.status_code == 200, response.text

    assert decision_service.history_calls == ["2125551234"] * 3


def test_numeric_phone_is_accepted(client: TestClient, decision_service: FakeDecisionService) -> None:
    _register(client)
    headers = _bearer(client)

    response = client.post("/api/dnc-history", json={"phoneNumber": 5551234567}, headers=headers)

    assert response.status_code == 200
    assert decision_service.history_calls == ["5551234567"]


@pytest.mark.parametrize(
    ("payload", "message"),
    [
        ({"phoneNumber": "5551234567"}, "Lookup date is required"),
        ({"phoneNumber": "5551234567", "lookupDate": "2024-01-15"}, "Lookup date must be in MM/DD/YYYY format"),
        ({"lookupDate": "01/15/2024"}, "A valid 10-digit US phone number is required"),
    ],
)
def test_lookup_validation_messages(client: TestClient, decision_service: FakeDecisionService, payload, message: str) -> None:
    _register(client)
    headers = _bearer(client)

    response = client.post("/api/dnc-lookup", json=payload, headers=headers)

    assert response.status_code == 400
    assert response.json() == {"success": False, "error": message}
    assert decision_service.call_count == 0


@pytest.mark.parametrize("body", [b"not json", b"[1, 2]", b"\"text\"", b""])
def test_invalid_body(client: TestClient, body: bytes) -> None:
    response = client.post("/api/auth/login", content=body, headers={"Content-Type": "application/json"})

    assert response.status_code == 400
    assert response.json() == {"success": False, "error": "Invalid request body"}


def test_decision_service_failure_is_hidden(client: TestClient, decision_service: FakeDecisionService) -> None:
    _register(client)
    headers = _bearer(client)
    decision_service.error = UpstreamError(detail="sp_dnc_history failed: connection refused to 10.0.0.5")

    response = client.post("/api/dnc-history", json={"phoneNumber": "5551234567"}, headers=headers)

    assert response.status_code == 500
    assert response.json() == {"success": False, "error": "History lookup failed. Please try again."}


def test_unexpected_failure_is_hidden(client: TestClient, decision_service: FakeDecisionService) -> None:
    _register(client)
    headers = _bearer(client)
    decision_service.error = KeyError("internal detail")

    response = client.post("/api/dnc-lookup", json={"phoneNumber": "5551234567", "lookupDate": "01/15/2024"}, headers=headers)

    assert response.status_code == 500
    assert response.json() == {"success": False, "error": "Lookup failed. Please try again."}


def test_registration_validation(client: TestClient) -> None:
    response = _register(client, password="short")

    assert response.status_code == 400
    assert response.json() == {"success": False, "error": "Password must be at least 8 characters"}


def test_forgot_password_is_generic(client: TestClient, mailer: RecordingMailer) -> None:
    _register(client)

    known = client.post("/api/forgot-password", json={"email": "alice@example.com"})
    unknown = client.post("/api/forgot-password", json={"email": "nobody@example.com"})

    assert known.status_code == unknown.status_code == 200
    assert known.json() == unknown.json() == {"success": True, "data": {"message": RESET_CONFIRMATION}}
    assert [identity.username for identity in mailer.sent] == ["alice"]

    missing = client.post("/api/forgot-password", json={})
    assert missing.status_code == 400
    assert missing.json()["error"] == "Email address is required"


def test_logout_clears_cookie(client: TestClient) -> None:
    _register(client)
    client.post("/api/auth/login", json={"username": "alice", "password": "correct-horse"})
    assert client.cookies.get("dnc_session")

    response = client.post("/api/auth/logout")

    assert response.status_code == 200
    assert response.json() == {"success": True}
    assert not client.cookies.get("dnc_session")


def test_healthz(client: TestClient) -> None:
    response = client.get("/healthz")
    assert response.status_code == 200
    assert response.json() == {"status": "ok"}

    client.app.state.pool.close()
    response = client.get("/healthz")
    assert response.status_code == 503
    assert response.json() == {"status": "unavailable"}


@pytest.mark.parametrize("raw_phone", ["5551234567", "(555) 123-4567", "555-123-4567", "555.123.4567"])
def test_lookup_logs_mask_phone_on_every_sink(
    settings: Settings,
    decision_service: FakeDecisionService,
    mailer: RecordingMailer,
    tmp_path,
    capsys,
    isolated_logging,
    raw_phone: str,
) -> None:
    log_dir = tmp_path / "logs"
    app = create_app(replace(settings, log_dir=log_dir), decision_service=decision_service, mailer=mailer)
    with TestClient(app) as client:
        assert _register(client).status_code == 201
        headers = _bearer(client)
        lookup = client.post(
            "/api/dnc-lookup", json={"phoneNumber": raw_phone, "lookupDate": "01/15/2024"}, headers=headers
        )
        history = client.post("/api/dnc-history", json={"phoneNumber": raw_phone}, headers=headers)
        assert lookup.status_code == 200, lookup.text
        assert history.status_code == 200, history.text

    for handler in logging.getLogger().handlers:
        handler.flush()
    file_output = (log_dir / "app.log").read_text(encoding="utf-8")
    console_output = capsys.readouterr().err

    assert decision_service.lookup_calls[0][0] == "5551234567"
    for output in (console_output, file_output):
        assert output.count("***-***-4567") >= 4
        assert raw_phone not in output
        for start in range(len("5551234567") - 5):
            assert "5551234567"[start : start + 6] not in output


def test_password_with_nul_character_is_rejected(client: TestClient) -> None:
    response = _register(client, password="pass\x00word12")

    assert response.status_code == 400
    assert response.json() == {"success": False, "error": "Username and password must not contain null characters"}

    assert _register(client).status_code == 201
    login = client.post("/api/auth/login", json={"username": "alice", "password": "correct-horse\x00"})
    assert login.status_code == 401
    assert login.json() == {"success": False, "error": "Invalid username or password"}
