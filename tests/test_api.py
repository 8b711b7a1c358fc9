from datetime import timedelta

import pytest
from fastapi.testclient import TestClient

from unified_api.actions import MANIFEST
from unified_api.bootstrap import build_container
from unified_api.main import create_app
from unified_api.util import utc_now, verify_password

from conftest import USER_PASSWORD
from sample_actions import TEST_ACTIONS


def call(client, headers, **body):
    return client.post("/api", json=body, headers=headers)


def assert_error(r, status, code):
    assert r.status_code == status, r.text
    body = r.json()
    assert body["status"] == "error"
    assert body["error_code"] == code
    assert body["request_id"] == r.headers["X-Request-ID"]
    assert body["timestamp"].endswith("Z")
    return body


# ------------------------------------------------------------------
# Happy path
# ------------------------------------------------------------------

def test_ping_end_to_end(client, auth, user):
    r = call(client, auth, action_type="system.ping")
    assert r.status_code == 200
    body = r.json()
    assert body["status"] == "success"
    assert body["data"]["message"] == "pong"
    assert body["data"]["user_id"] == user.id
    assert body["timestamp"].endswith("Z")
    assert "request_id" not in body
    assert r.headers["X-Request-ID"]


def test_extra_fields_reach_handler(client, container, user):
    token, _ = container.credentials.issue(user.id, "echo", permissions=["test.echo"])
    r = call(client, {"Authorization": f"Bearer {token}"}, action_type="test.echo", text="hi", times=2)
    assert r.status_code == 200
    assert r.json()["data"] == {"echo": "hi hi"}


# ------------------------------------------------------------------
# Method and shape checks
# ------------------------------------------------------------------

@pytest.mark.parametrize("method", ["get", "put", "patch", "delete"])
def test_non_post_is_405(client, auth, method):
    r = getattr(client, method)("/api", headers=auth)
    body = assert_error(r, 405, "METHOD_NOT_ALLOWED")
    assert r.headers["Allow"] == "POST"
    assert body["details"] == {}


def test_non_post_is_405_even_without_credentials(client):
    assert_error(client.get("/api"), 405, "METHOD_NOT_ALLOWED")


@pytest.mark.parametrize("payload", [
    {},
    {"text": "hello"},
    {"action": "system.ping"},
    {"action_type": None},
])
def test_missing_action_type_is_422(client, auth, payload):
    body = assert_error(client.post("/api", json=payload, headers=auth), 422, "VALIDATION_ERROR")
    assert "action_type" in body["details"]


@pytest.mark.parametrize("action_type", [
    "",
    "system ping",
    "system.ping;drop",
    "ação",
    "a" * 101,
    123,
    ["system.ping"],
])
def test_malformed_action_type_is_422(client, auth, action_type):
    body = assert_error(call(client, auth, action_type=action_type), 422, "VALIDATION_ERROR")
    assert "action_type" in body["details"]


def test_action_type_at_max_length_passes_shape_check(client, auth):
    assert_error(call(client, auth, action_type="a" * 100), 404, "ACTION_NOT_FOUND")


def test_non_object_body_is_422(client, auth):
    r = client.post("/api", content=b"[1, 2, 3]", headers={**auth, "Content-Type": "application/json"})
    assert "action_type" in assert_error(r, 422, "VALIDATION_ERROR")["details"]

    r = client.post("/api", content=b"{not json", headers={**auth, "Content-Type": "application/json"})
    assert "action_type" in assert_error(r, 422, "VALIDATION_ERROR")["details"]


def test_deeply_nested_body_is_422_envelope(client, auth):
    depth = 100_000
    raw = b'{"action_type": "system.ping", "x": ' + b"[" * depth + b"]" * depth + b"}"
    r = client.post("/api", content=raw, headers={**auth, "Content-Type": "application/json"})
    assert "action_type" in assert_error(r, 422, "VALIDATION_ERROR")["details"]


# ------------------------------------------------------------------
# Authentication
# ------------------------------------------------------------------

def test_bad_credentials_are_indistinguishable(client, container, user, token):
    revoked, _ = container.credentials.issue(user.id, "revoked")
    container.credentials.revoke(revoked)
    expired, _ = container.credentials.issue(user.id, "expired", expires_at=utc_now() - timedelta(minutes=1))

    headers = [
        {},
        {"Authorization": "Bearer"},
        {"Authorization": f"Token {token}"},
        {"Authorization": "Bearer not-a-real-token"},
        {"Authorization": f"Bearer {revoked}"},
        {"Authorization": f"Bearer {expired}"},
    ]
    bodies = [assert_error(call(client, h, action_type="system.ping"), 401, "UNAUTHORIZED") for h in headers]
    assert len({b["message"] for b in bodies}) == 1
    assert all(b["details"] == {} for b in bodies)


def test_auth_runs_before_shape_check(client):
    assert_error(client.post("/api", json={}), 401, "UNAUTHORIZED")


def test_successful_auth_touches_last_used(client, container, user, auth, token):
    assert container.credentials.find_by_token(token).last_used_at is None
    call(client, auth, action_type="system.ping")
    assert container.credentials.find_by_token(token).last_used_at is not None


# ------------------------------------------------------------------
# Resolution and authorization
# ------------------------------------------------------------------

def test_unknown_action_is_404(client, auth):
    body = assert_error(call(client, auth, action_type="no.such.action"), 404, "ACTION_NOT_FOUND")
    assert body["details"]["action_type"] == "no.such.action"


def test_disabled_action_is_404(client, auth):
    assert_error(call(client, auth, action_type="test.disabled"), 404, "ACTION_NOT_FOUND")


def test_missing_capability_is_403(client, auth):
    body = assert_error(call(client, auth, action_type="user.list"), 403, "FORBIDDEN")
    assert body["details"]["missing_capabilities"] == ["user.list"]


def test_authorization_precedes_parameter_validation(client, auth):
    body = assert_error(call(client, auth, action_type="user.list", per_page="lots"), 403, "FORBIDDEN")
    assert "per_page" not in body["details"]


def test_override_changes_outcome_and_reverts(client, container, auth):
    assert call(client, auth, action_type="system.ping").status_code == 200

    container.permissions.set_override("system.ping", ["admin.write"])
    body = assert_error(call(client, auth, action_type="system.ping"), 403, "FORBIDDEN")
    assert body["details"]["missing_capabilities"] == ["admin.write"]
    assert container.registry.get("system.ping").required_capabilities == ()

    container.permissions.remove_override("system.ping")
    assert call(client, auth, action_type="system.ping").status_code == 200


def test_wildcard_token_reaches_admin_actions(client, container, user):
    token, _ = container.credentials.issue(user.id, "root", permissions=["*"])
    r = call(client, {"Authorization": f"Bearer {token}"}, action_type="user.list")
    assert r.status_code == 200


# ------------------------------------------------------------------
# Parameter validation and handler errors
# ------------------------------------------------------------------

def test_parameter_errors_are_per_field(client, admin_auth):
    body = assert_error(
        call(client, admin_auth, action_type="user.list", per_page=500, sort_by="password"),
        422,
        "VALIDATION_ERROR",
    )
    assert set(body["details"]) == {"per_page", "sort_by"}
    assert all(isinstance(m, list) and m for m in body["details"].values())


def test_handler_api_error_keeps_its_code(client, admin_auth):
    body = assert_error(call(client, admin_auth, action_type="user.info", user_id=9999), 404, "NOT_FOUND")
    assert body["details"] == {"user_id": 9999}


def test_handler_error_details_are_redacted(client, auth):
    body = assert_error(call(client, auth, action_type="test.leaky_deny"), 403, "FORBIDDEN")
    assert body["details"]["api_key"] == "[REDACTED]"
    assert body["details"]["reason"] == "quota"


def test_crash_is_500_with_trace_outside_production(client, auth):
    body = assert_error(call(client, auth, action_type="test.crash"), 500, "INTERNAL_SERVER_ERROR")
    assert body["details"]["exception"] == "RuntimeError"
    assert body["details"]["line"]
    assert body["details"]["trace"]


def test_crash_is_generic_in_production(settings):
    c = build_container(settings.with_overrides(env="prod"), manifest=MANIFEST + TEST_ACTIONS)
    try:
        token, _ = c.credentials.issue(c.users.create("P", "p@acme.io", USER_PASSWORD).id, "t")
        client = TestClient(create_app(container=c))
        body = assert_error(
            call(client, {"Authorization": f"Bearer {token}"}, action_type="test.crash"),
            500,
            "INTERNAL_SERVER_ERROR",
        )
        assert body["message"] == "Internal server error"
        assert body["details"] == {}
        assert "exploded" not in str(body)
    finally:
        c.close()


def test_unserializable_result_is_500(client, auth):
    assert_error(call(client, auth, action_type="test.unserializable"), 500, "INTERNAL_SERVER_ERROR")


# ------------------------------------------------------------------
# Reference actions
# ------------------------------------------------------------------

def test_system_info_types(client, admin_auth):
    for info_type, key in (("basic", "app_name"), ("stats", "total_users"), ("health", "overall_status")):
        r = call(client, admin_auth, action_type="system.info", type=info_type)
        assert r.status_code == 200
        assert key in r.json()["data"]["system_info"]

    body = assert_error(call(client, admin_auth, action_type="system.info", type="secrets"), 422, "VALIDATION_ERROR")
    assert "type" in body["details"]


def test_server_status_details(client, admin_auth):
    r = call(client, admin_auth, action_type="system.server_status", include_details=True)
    status = r.json()["data"]["server_status"]
    assert "uptime" in status and "details" in status

    r = call(client, admin_auth, action_type="system.server_status")
    assert "details" not in r.json()["data"]["server_status"]


def test_user_info_own_and_other(client, auth, admin, user):
    r = call(client, auth, action_type="user.info")
    assert r.json()["data"]["user"]["email"] == "user@acme.io"
    assert "password_hash" not in r.json()["data"]["user"]

    assert_error(call(client, auth, action_type="user.info", user_id=admin.id), 403, "FORBIDDEN")


def test_user_update(client, auth, admin):
    r = call(client, auth, action_type="user.update", name="Renamed")
    assert r.status_code == 200
    assert r.json()["data"]["user"]["name"] == "Renamed"

    body = assert_error(call(client, auth, action_type="user.update", email=admin.email), 422, "VALIDATION_ERROR")
    assert "email" in body["details"]

    assert_error(call(client, auth, action_type="user.update", name="X"), 422, "VALIDATION_ERROR")


def test_change_password(client, container, auth, user):
    body = assert_error(
        call(client, auth, action_type="user.change_password", current_password="wrong-one",
             new_password="newpassword1", new_password_confirmation="newpassword1"),
        422, "VALIDATION_ERROR",
    )
    assert "current_password" in body["details"]
    assert body["details"]["current_password"] != "[REDACTED]"

    body = assert_error(
        call(client, auth, action_type="user.change_password", current_password=USER_PASSWORD,
             new_password="newpassword1", new_password_confirmation="different1"),
        422, "VALIDATION_ERROR",
    )
    assert "new_password_confirmation" in body["details"]

    assert_error(
        call(client, auth, action_type="user.change_password", current_password=USER_PASSWORD,
             new_password=USER_PASSWORD, new_password_confirmation=USER_PASSWORD),
        422, "VALIDATION_ERROR",
    )

    r = call(client, auth, action_type="user.change_password", current_password=USER_PASSWORD,
             new_password="newpassword1", new_password_confirmation="newpassword1")
    assert r.status_code == 200
    assert verify_password("newpassword1", container.users.get(user.id).password_hash)


def test_user_list_paginates(client, container, admin_auth):
    for i in range(4):
        container.users.create(f"Member {i}", f"member{i}@acme.io", USER_PASSWORD)

    r = call(client, admin_auth, action_type="user.list", per_page=2, page=2, sort_by="id", sort_order="asc")
    body = r.json()
    assert r.status_code == 200
    assert body["pagination"] == {
        "current_page": 2,
        "last_page": 3,
        "per_page": 2,
        "total": 5,
        "from": 3,
        "to": 4,
        "has_more_pages": True,
    }
    assert [u["email"] for u in body["data"]] == ["member1@acme.io", "member2@acme.io"]

    r = call(client, admin_auth, action_type="user.list", search="member3")
    assert [u["name"] for u in r.json()["data"]] == ["Member 3"]


@pytest.mark.parametrize("page", [10 ** 20, 1_000_001])
def test_user_list_page_beyond_range_is_422(client, admin_auth, page):
    body = assert_error(call(client, admin_auth, action_type="user.list", page=page), 422, "VALIDATION_ERROR")
    assert "page" in body["details"]


def test_user_info_id_beyond_range_is_422(client, admin_auth):
    body = assert_error(call(client, admin_auth, action_type="user.info", user_id=2 ** 63), 422, "VALIDATION_ERROR")
    assert "user_id" in body["details"]


def test_new_password_longer_than_bcrypt_accepts_is_422(client, auth):
    long_password = "\u00e9" * 40  # 80 bytes in utf-8
    body = assert_error(
        call(client, auth, action_type="user.change_password", current_password=USER_PASSWORD,
             new_password=long_password, new_password_confirmation=long_password),
        422, "VALIDATION_ERROR",
    )
    assert "new_password" in body["details"]


# ------------------------------------------------------------------
# Audit and rate limiting
# ------------------------------------------------------------------

def test_every_outcome_is_audited(client, container, auth):
    responses = [
        call(client, auth, action_type="system.ping"),
        call(client, auth, action_type="no.such"),
        call(client, {}, action_type="system.ping"),
        client.get("/api"),
        call(client, auth, action_type="test.crash"),
    ]
    for r in responses:
        rows = container.audit_logs.for_request(r.headers["X-Request-ID"])
        assert len(rows) == 1
        assert rows[0]["status_code"] == r.status_code

    ping_row = container.audit_logs.for_request(responses[0].headers["X-Request-ID"])[0]
    assert ping_row["outcome"] == "success"
    assert ping_row["action_type"] == "system.ping"
    assert container.audit_logs.usage_stats()["total_requests"] == 5


def test_rate_limit_is_429(settings):
    c = build_container(settings.with_overrides(dispatch_rpm=2))
    try:
        token, _ = c.credentials.issue(c.users.create("R", "r@acme.io", USER_PASSWORD).id, "t")
        client = TestClient(create_app(container=c))
        headers = {"Authorization": f"Bearer {token}"}
        assert call(client, headers, action_type="system.ping").status_code == 200
        assert call(client, headers, action_type="system.ping").status_code == 200
        r = call(client, headers, action_type="system.ping")
        assert_error(r, 429, "RATE_LIMIT_EXCEEDED")
        assert int(r.headers["Retry-After"]) >= 1
    finally:
        c.close()


def test_rotating_forged_tokens_share_one_window(settings):
    c = build_container(settings.with_overrides(dispatch_rpm=2))
    try:
        client = TestClient(create_app(container=c))
        codes = [
            call(client, {"Authorization": f"Bearer {i:03d}forgedxx"}, action_type="system.ping").status_code
            for i in range(10)
        ]
        assert codes[:2] == [401, 401]
        assert set(codes[2:]) == {429}
        assert c.rate_limiter.tracked_keys() == 1
    finally:
        c.close()


def test_forwarded_for_is_ignored_unless_trusted(settings):
    c = build_container(settings.with_overrides(dispatch_rpm=1))
    try:
        client = TestClient(create_app(container=c))
        first = client.post("/api", json={}, headers={"X-Forwarded-For": "1.1.1.1"})
        second = client.post("/api", json={}, headers={"X-Forwarded-For": "2.2.2.2"})
        assert first.status_code == 401
        assert_error(second, 429, "RATE_LIMIT_EXCEEDED")
    finally:
        c.close()


# ------------------------------------------------------------------
# Health and documentation routes
# ------------------------------------------------------------------

def test_health_is_public(client):
    r = client.get("/api/health")
    assert r.status_code == 200
    assert r.json()["status"] == "healthy"

    r = client.get("/api/health/detailed")
    assert r.status_code == 200
    assert r.json()["checks"]["database"] == "healthy"


def test_openapi_route_lists_registry(client, container):
    document = client.get("/api/docs/openapi.json").json()
    enum = document["components"]["schemas"]["ActionRequest"]["properties"]["action_type"]["enum"]
    assert enum == container.registry.action_types()
    assert "bearerAuth" in document["components"]["securitySchemes"]


def test_docs_routes(client):
    r = client.get("/api/docs/actions/system.ping")
    assert r.json()["data"]["name"] == "Ping"

    assert_error(client.get("/api/docs/actions/no.such"), 404, "ACTION_NOT_FOUND")

    r = client.get("/api/docs/validate/system.info")
    assert r.json()["data"]["valid"] is True

    r = client.post("/api/docs/regenerate")
    assert r.status_code == 200
    assert r.json()["data"]["statistics"]["total_actions"] == len(MANIFEST) + len(TEST_ACTIONS)

    summary = client.get("/api/docs/actions").json()["data"]
    assert {a["action_type"] for a in summary} >= {"system.ping", "user.list"}
    assert client.get("/api/docs/statistics").json()["data"]["cached"] is True
    assert "actions" in client.get("/api/docs/json").json()["data"]


def test_app_shutdown_closes_container(container, monkeypatch):
    closed = []
    monkeypatch.setattr(container, "close", lambda: closed.append(True))
    with TestClient(create_app(container=container)) as client:
        assert client.get("/api/health").status_code == 200
        assert closed == []
    assert closed == [True]
