from unittest.mock import patch

import requests

from security.bruteforce import MAX_ATTEMPTS
from security.password_policy import record_password_history
from security.services import current_security


def test_strength_endpoint(client):
    resp = client.post("/security/password/strength", json={"password": "Tr0ub4dor&3XyZ!"})
    assert resp.status_code == 200
    body = resp.get_json()
    assert body["score"] == 4
    assert body["label"] == "very strong"
    assert resp.headers["X-Content-Type-Options"] == "nosniff"


def test_validate_rejects_weak_password(client):
    resp = client.post("/security/password/validate", json={"password": "abcdefgh"})
    assert resp.status_code == 400
    body = resp.get_json()
    assert body["error"] == "Password does not meet policy"
    assert "Password is too weak. Please choose a stronger password." in body["details"]


def test_validate_accepts_strong_password_when_breach_api_is_down(client):
    with patch.object(requests.Session, "get", side_effect=requests.ConnectionError("down")):
        resp = client.post(
            "/security/password/validate",
            json={"password": "Tr0ub4dor&3XyZ!", "check_breach": True},
        )
    assert resp.status_code == 200
    body = resp.get_json()
    assert body["is_valid"] is True
    assert body["warnings"]
    assert body["breach"]["is_breached"] is False


def test_validate_checks_history(app, client):
    services = current_security()
    record_password_history("42", "Tr0ub4dor&3XyZ!", services.history_store)

    resp = client.post(
        "/security/password/validate",
        json={"password": "Tr0ub4dor&3XyZ!", "user_id": 42, "check_history": True},
    )
    assert resp.status_code == 400
    assert any("recently used" in d for d in resp.get_json()["details"])


def test_cli_clear_lockout(app):
    guard = current_security().guard
    for _ in range(MAX_ATTEMPTS):
        guard.record_failure("dave@example.com", "192.0.2.50")

    result = app.test_cli_runner().invoke(args=["clear-lockout", "Dave@Example.com", "192.0.2.50"])
    assert result.exit_code == 0
    assert "Lockout cleared for dave@example.com" in result.output
    status, _ = guard.check("dave@example.com", "192.0.2.50")
    assert not status.is_blocked


def test_cli_mfa_status(app):
    result = app.test_cli_runner().invoke(args=["mfa-status", "nobody"])
    assert result.exit_code == 0
    assert "enabled=False" in result.output


def test_validate_rejects_non_string_password(client):
    for payload in (
        {"password": 12345678, "check_breach": True},
        {"password": ["Tr0ub4dor&3XyZ!"], "user_id": "1", "check_history": True},
    ):
        resp = client.post("/security/password/validate", json=payload)
        assert resp.status_code == 400
        assert resp.get_json()["error"] == "Invalid password"
