"""
API tests for authentication, the error envelope and operational endpoints.
"""
from datetime import timedelta
from unittest.mock import patch

from tcgmarket.core.config import get_settings

LISTINGS = "/api/v1/marketplace/listings"


async def test_missing_token_is_401(client, listing_body):
    response = await client.post(LISTINGS, json=listing_body())
    assert response.status_code == 401
    error = response.json()["error"]
    assert error["code"] == "UNAUTHORIZED"
    assert error["traceId"] == response.headers["X-Trace-Id"]


async def test_invalid_tokens_are_401(client, token_factory, listing_body):
    bad_tokens = [
        "not-a-jwt",
        token_factory("alice", secret="another-secret-that-is-long-enough-for-hs256"),
        token_factory("alice", expires_in=timedelta(minutes=-5)),
    ]
    for token in bad_tokens:
        response = await client.post(
            LISTINGS, json=listing_body(), headers={"Authorization": f"Bearer {token}"}
        )
        assert response.status_code == 401


async def test_user_id_claim_preferred_over_sub(client, token_factory, listing_body):
    token = token_factory("sub-id", userId="user-id")
    response = await client.post(LISTINGS, json=listing_body(), headers={"Authorization": f"Bearer {token}"})
    assert response.status_code == 201
    assert response.json()["data"]["listing"]["userId"] == "user-id"


async def test_is_admin_claim_grants_admin(client, auth_headers):
    response = await client.get("/api/v1/admin/reports", headers=auth_headers("boss", isAdmin=True))
    assert response.status_code == 200


async def test_admin_allowlist(client, auth_headers):
    settings = get_settings()
    with patch.object(settings, "ADMIN_USER_IDS", "root"):
        response = await client.get("/api/v1/admin/reports", headers=auth_headers("boss", roles=["ADMIN"]))
        assert response.status_code == 403
        response = await client.get("/api/v1/admin/reports", headers=auth_headers("root", roles=["ADMIN"]))
        assert response.status_code == 200


async def test_optional_auth_rejects_bad_token(client, create_listing):
    listing = await create_listing(owner="seller", publish=True)
    response = await client.get(
        f"{LISTINGS}/{listing['id']}", headers={"Authorization": "Bearer garbage"}
    )
    assert response.status_code == 401


async def test_trace_id_is_echoed(client):
    response = await client.get(f"{LISTINGS}/missing", headers={"X-Trace-Id": "trace-123"})
    assert response.status_code == 404
    assert response.headers["X-Trace-Id"] == "trace-123"
    assert response.json()["error"]["traceId"] == "trace-123"


async def test_unknown_route_uses_envelope(client):
    response = await client.get("/api/v1/nowhere")
    assert response.status_code == 404
    assert response.json()["error"]["code"] == "NOT_FOUND"


async def test_invalid_limit_is_400(client):
    response = await client.get(LISTINGS, params={"limit": 51})
    assert response.status_code == 400
    assert response.json()["error"]["code"] == "VALIDATION_ERROR"


async def test_health_live_and_metrics(client):
    response = await client.get("/health/live")
    assert response.json() == {"status": "alive"}

    response = await client.get("/metrics")
    assert response.status_code == 200
    assert "http_requests_total" in response.text


async def test_health_ready_reports_database_failure(client):
    unhealthy = {"status": "unhealthy", "message": "down"}
    with patch("tcgmarket.core.health.check_database", return_value=unhealthy):
        response = await client.get("/health/ready")
    assert response.status_code == 503
    assert response.json()["components"]["redis"]["status"] == "skipped"
