from __future__ import annotations

from starlette.testclient import TestClient

from photoverify.main import create_app

SHELF = {
    "promptText": "Is the shelf stocked?",
    "criteria": [
        {"id": "has_products", "label": "Shelf has products", "kind": "boolean", "expectedValue": True}
    ],
}


def _external(**overrides):
    body = {
        "externalTaskId": "crm-1001",
        "imageUrl": "https://cdn.example/shelf.jpg",
        "config": SHELF,
    }
    body.update(overrides)
    return body


def test_external_verification_envelope(client, tenant, headers_for):
    resp = client.post(
        "/api/verify",
        json=_external(),
        headers={**headers_for(tenant["id"], role="operator"), "X-Request-ID": "req-123"},
    )
    assert resp.status_code == 200, resp.text
    body = resp.json()
    assert body["success"] is True
    data = body["data"]
    assert data["passed"] is True
    assert data["mode"] == "external"
    assert data["taskReference"] == "crm-1001"
    assert data["modelUsed"] == "openai/gpt-4o-mini"
    assert data["criteriaResults"][0]["criterionId"] == "has_products"
    assert data["criteriaResults"][0]["observedValue"] is True
    assert data["inputTokens"] == 100 and data["outputTokens"] == 50
    assert body["meta"]["tenantId"] == tenant["id"]
    assert body["meta"]["requestId"] == "req-123"
    assert body["meta"]["verificationId"]
    assert resp.headers["X-Request-ID"] == "req-123"
    assert resp.headers["X-RateLimit-Limit"] == "20"
    assert resp.headers["X-RateLimit-Remaining"] == "19"


def test_internal_verification_moves_task(client, tenant, headers_for):
    headers = headers_for(tenant["id"], role="operator")
    created = client.post(
        "/api/tasks",
        json={"title": "Aisle 4 audit", "photoVerificationConfig": SHELF},
        headers=headers,
    )
    assert created.status_code == 201, created.text
    task_id = created.json()["data"]["id"]

    resp = client.post(
        "/api/verify",
        json={"taskId": task_id, "imageUrl": "https://cdn.example/aisle4.jpg"},
        headers=headers,
    )
    assert resp.status_code == 200, resp.text
    assert resp.json()["data"]["mode"] == "internal"

    detail = client.get(f"/api/tasks/{task_id}", headers=headers).json()["data"]
    assert detail["status"] == "completed"
    assert len(detail["verifications"]) == 1
    assert detail["verifications"][0]["imageUrl"] == "https://cdn.example/aisle4.jpg"


def test_data_url_image_keeps_mime_type(client, tenant, headers_for, fake_provider):
    body = _external()
    del body["imageUrl"]
    body["imageBase64"] = "data:image/png;base64,QUJD"
    resp = client.post("/api/verify", json=body, headers=headers_for(tenant["id"]))
    assert resp.status_code == 200, resp.text
    image = fake_provider.calls[-1]["image"]
    assert image.mime_type == "image/png"
    assert image.base64 == "QUJD"


def test_request_shape_errors_are_400(client, tenant, headers_for):
    headers = headers_for(tenant["id"])
    bad_bodies = [
        _external(imageBase64="QUJD"),
        {"imageUrl": "https://cdn.example/a.jpg", "config": SHELF},
        {"externalTaskId": "x", "imageUrl": "https://cdn.example/a.jpg"},
        _external(imageUrl="ftp://cdn.example/a.jpg"),
        {"taskId": "t", "externalTaskId": "x", "imageUrl": "https://cdn.example/a.jpg", "config": SHELF},
    ]
    for body in bad_bodies:
        resp = client.post("/api/verify", json=body, headers=headers)
        assert resp.status_code == 400, body
        err = resp.json()
        assert err["success"] is False
        assert err["error"]["code"] == "VALIDATION_ERROR"
        assert err["error"]["details"]["errors"]


def test_identity_headers_required(client, tenant, headers_for):
    resp = client.post("/api/verify", json=_external())
    assert resp.status_code == 401
    assert resp.json()["error"]["code"] == "UNAUTHORIZED"

    headers = headers_for(tenant["id"], role="superuser")
    resp = client.post("/api/verify", json=_external(), headers=headers)
    assert resp.status_code == 401


def test_unknown_tenant_and_task(client, tenant, headers_for):
    resp = client.post("/api/verify", json=_external(), headers=headers_for("ghost-tenant"))
    assert resp.status_code == 404
    assert resp.json()["error"]["code"] == "NOT_FOUND"

    resp = client.post(
        "/api/verify",
        json={"taskId": "no-such-task", "imageUrl": "https://cdn.example/a.jpg"},
        headers=headers_for(tenant["id"]),
    )
    assert resp.status_code == 404


def test_verify_rate_limit_returns_429_with_headers(client, headers_for):
    created = client.post(
        "/api/tenants",
        json={"name": "Tiny", "slug": "tiny", "config": {"maxVerificationsPerMinute": 1}},
        headers=headers_for("bootstrap"),
    )
    assert created.status_code == 201, created.text
    headers = headers_for(created.json()["data"]["id"])

    assert client.post("/api/verify", json=_external(), headers=headers).status_code == 200
    resp = client.post("/api/verify", json=_external(), headers=headers)
    assert resp.status_code == 429
    err = resp.json()["error"]
    assert err["code"] == "RATE_LIMITED"
    assert err["details"]["limit"] == 1
    assert err["details"]["window"] == "60s"
    assert resp.headers["X-RateLimit-Limit"] == "1"
    assert resp.headers["X-RateLimit-Remaining"] == "0"
    assert "Retry-After" in resp.headers


def test_exhausted_provider_is_502(settings, make_provider, provider_error, headers_for):
    app = create_app(settings, providers={"openai": make_provider([provider_error("upstream down")])})
    with TestClient(app) as c:
        tenant = c.post(
            "/api/tenants", json={"name": "Acme", "slug": "acme"}, headers=headers_for("bootstrap")
        ).json()["data"]
        config = {**SHELF, "maxRetries": 1, "fallbackToManual": False}
        resp = c.post("/api/verify", json=_external(config=config), headers=headers_for(tenant["id"]))
        assert resp.status_code == 502
        err = resp.json()["error"]
        assert err["code"] == "VERIFICATION_EXHAUSTED"
        assert err["details"] == {"attempts": 2, "lastError": "upstream down"}

        listed = c.get("/api/verifications", headers=headers_for(tenant["id"])).json()["data"]
        assert listed["pagination"]["total"] == 0


def test_fallback_result_is_still_a_success_response(settings, make_provider, provider_error, headers_for):
    app = create_app(settings, providers={"openai": make_provider([provider_error("upstream down")])})
    with TestClient(app) as c:
        tenant = c.post(
            "/api/tenants", json={"name": "Acme", "slug": "acme"}, headers=headers_for("bootstrap")
        ).json()["data"]
        resp = c.post("/api/verify", json=_external(), headers=headers_for(tenant["id"]))
        assert resp.status_code == 200, resp.text
        data = resp.json()["data"]
        assert data["passed"] is False
        assert data["criteriaResults"] == []
        assert data["retryCount"] == 2


def test_unexpected_failure_is_opaque_500(settings, make_provider, headers_for):
    app = create_app(settings, providers={"openai": make_provider([RuntimeError("secret detail")])})
    with TestClient(app, raise_server_exceptions=False) as c:
        tenant = c.post(
            "/api/tenants", json={"name": "Acme", "slug": "acme"}, headers=headers_for("bootstrap")
        ).json()["data"]
        resp = c.post("/api/verify", json=_external(), headers=headers_for(tenant["id"]))
        assert resp.status_code == 500
        err = resp.json()["error"]
        assert err["code"] == "INTERNAL_ERROR"
        assert "secret" not in resp.text
        assert resp.headers.get("X-Request-ID")


class _UnreachableCounters:
    async def incr(self, key):
        raise ConnectionError("redis down")

    async def expire(self, key, seconds):
        raise ConnectionError("redis down")

    async def ping(self):
        return False


def test_fail_open_responses_omit_unknown_quota_headers(settings, fake_provider, headers_for):
    app = create_app(
        settings, providers={"openai": fake_provider}, counter_store=_UnreachableCounters()
    )
    with TestClient(app) as c:
        tenant = c.post(
            "/api/tenants", json={"name": "Acme", "slug": "acme"}, headers=headers_for("bootstrap")
        ).json()["data"]
        headers = headers_for(tenant["id"], role="operator")

        verified = c.post("/api/verify", json=_external(), headers=headers)
        assert verified.status_code == 200, verified.text
        listed = c.get("/api/tasks", headers=headers)
        assert listed.status_code == 200, listed.text

    assert verified.headers["X-RateLimit-Limit"] == "20"
    assert listed.headers["X-RateLimit-Limit"] == "30"
    for resp in (verified, listed):
        assert "X-RateLimit-Remaining" not in resp.headers
        assert "X-RateLimit-Reset" not in resp.headers
