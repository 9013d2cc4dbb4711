import json
from datetime import timedelta
from decimal import Decimal

from conftest import auth
from ecopoints import config
from ecopoints.models.db.enums import SubmissionStatus, UserRole
from ecopoints.utils.observability import SIGNATURE_HEADER, sign_payload
from ecopoints.utils.time import utc_now


# ------------------------------- Users ------------------------------- #

def test_tourist_self_registration_creates_wallet(client):
    resp = client.post("/api/v1/users/", json={"name": "Asha Traveller", "email": "asha@example.com"})
    assert resp.status_code == 201, resp.text
    body = resp.json()
    assert body["role"] == "tourist"
    assert body["api_key"]
    assert "cash_out" in body["capabilities"] and "moderate" not in body["capabilities"]

    headers = {"Authorization": f"Bearer {body['api_key']}"}
    me = client.get("/api/v1/users/me", headers=headers)
    assert me.status_code == 200
    assert "api_key" not in me.json()
    wallet = client.get("/api/v1/wallets/me", headers=headers).json()
    assert wallet["points_balance"] == 0
    assert Decimal(wallet["available_cash"]) == Decimal("0")


def test_staff_registration_requires_admin_key(client):
    payload = {"name": "Mo Derator", "email": "mod@example.com", "role": "moderator"}
    assert client.post("/api/v1/users/", json=payload).status_code == 403
    resp = client.post("/api/v1/users/", json=payload, headers={"X-Admin-Key": config.ADMIN_BOOTSTRAP_KEY})
    assert resp.status_code == 201
    assert "moderate" in resp.json()["capabilities"]


def test_duplicate_user_is_conflict(client):
    payload = {"name": "Dup", "email": "dup@example.com"}
    assert client.post("/api/v1/users/", json=payload).status_code == 201
    resp = client.post("/api/v1/users/", json={"name": "Dup", "email": "other@example.com"})
    assert resp.status_code == 409
    assert resp.json()["success"] is False


def test_invalid_api_key_is_rejected(client):
    resp = client.get("/api/v1/users/me", headers={"Authorization": "Bearer nope"})
    assert resp.status_code == 401


def test_request_validation_error_envelope(client):
    resp = client.post("/api/v1/users/", json={"name": "", "email": "not-an-email"})
    assert resp.status_code == 422
    body = resp.json()
    assert body["error_code"] == "request_validation_failed"
    assert body["details"]


# -------------------------- Collection points -------------------------- #

def test_collection_point_management(client, user_factory):
    admin = user_factory(UserRole.ADMIN)
    tourist = user_factory()
    payload = {"name": "Baga Beach bins", "latitude": 15.5553, "longitude": 73.7517, "radius_m": 50}

    assert client.post("/api/v1/collection-points/", json=payload, headers=auth(tourist)).status_code == 403
    created = client.post("/api/v1/collection-points/", json=payload, headers=auth(admin))
    assert created.status_code == 201
    point_id = created.json()["id"]

    nearest = client.get("/api/v1/collection-points/nearest", params={"lat": 15.5554, "lng": 73.7517}, headers=auth(tourist))
    assert nearest.status_code == 200
    assert nearest.json()["id"] == point_id
    assert 0 < nearest.json()["distance_m"] < 50

    far = client.get("/api/v1/collection-points/nearest", params={"lat": 0, "lng": 0}, headers=auth(tourist))
    assert far.status_code == 404

    patched = client.patch(f"/api/v1/collection-points/{point_id}", json={"active": False}, headers=auth(admin))
    assert patched.json()["active"] is False
    listed = client.get("/api/v1/collection-points/", headers=auth(tourist)).json()
    assert point_id not in [p["id"] for p in listed]
    listed_all = client.get("/api/v1/collection-points/", params={"include_inactive": True}, headers=auth(tourist)).json()
    assert point_id in [p["id"] for p in listed_all]


# ----------------------------- Submissions ----------------------------- #

def _upload(client, user, data=b"\x00\x00\x00\x18ftypmp42video"):
    return client.post(
        "/api/v1/submissions/media",
        content=data,
        headers={**auth(user), "Content-Type": "video/mp4"},
    )


def test_upload_and_submit(client, storage, verification_queue, user_factory, point_factory):
    tourist = user_factory()
    point = point_factory()

    uploaded = _upload(client, tourist)
    assert uploaded.status_code == 201, uploaded.text
    media_key = uploaded.json()["media_key"]
    assert media_key.startswith("media/") and media_key.endswith(".mp4")
    assert media_key in storage.keys()

    resp = client.post(
        "/api/v1/submissions/",
        json={
            "media_key": media_key,
            "latitude": point.latitude,
            "longitude": point.longitude,
            "recorded_at": (utc_now() - timedelta(minutes=30)).isoformat(),
            "title": "Plastic at the bins",
        },
        headers={**auth(tourist), "X-Request-ID": "req-123"},
    )
    assert resp.status_code == 201, resp.text
    body = resp.json()
    assert body["status"] == "queued"
    assert body["collection_point_id"] == point.id
    assert body["media_url"].startswith("memory://media/")
    assert resp.headers["X-Request-ID"] == "req-123"

    job = verification_queue.dequeue(block=False)
    assert job.submission_id == body["id"]
    assert job.correlation_id == "req-123"

    detail = client.get(f"/api/v1/submissions/{body['id']}", headers=auth(tourist)).json()
    assert [e["event_type"] for e in detail["events"]] == ["created"]
    mine = client.get("/api/v1/submissions/", headers=auth(tourist)).json()
    assert [s["id"] for s in mine] == [body["id"]]


def test_empty_upload_is_rejected(client, user_factory):
    resp = _upload(client, user_factory(), data=b"")
    assert resp.status_code == 422
    assert resp.json()["error_code"] == "validation_failed"


def test_submission_far_from_points_uses_domain_error_envelope(client, user_factory, point_factory):
    tourist = user_factory()
    point_factory(15.5553, 73.7517)
    media_key = _upload(client, tourist).json()["media_key"]
    resp = client.post(
        "/api/v1/submissions/",
        json={"media_key": media_key, "latitude": 0.0, "longitude": 0.0, "recorded_at": utc_now().isoformat()},
        headers=auth(tourist),
    )
    assert resp.status_code == 422
    body = resp.json()
    assert body["success"] is False
    assert body["error_code"] == "location_out_of_range"
    assert body["request_id"]


def test_stale_capture_and_foreign_media_key(client, user_factory, point_factory):
    tourist = user_factory()
    point = point_factory()
    stale = client.post(
        "/api/v1/submissions/",
        json={
            "media_key": _upload(client, tourist).json()["media_key"],
            "latitude": point.latitude,
            "longitude": point.longitude,
            "recorded_at": (utc_now() - timedelta(days=2)).isoformat(),
        },
        headers=auth(tourist),
    )
    assert stale.json()["error_code"] == "stale_or_future_capture"
    foreign = client.post(
        "/api/v1/submissions/",
        json={"media_key": "thumbnails/x.jpg", "latitude": point.latitude, "longitude": point.longitude, "recorded_at": utc_now().isoformat()},
        headers=auth(tourist),
    )
    assert foreign.status_code == 422


def test_moderation_flow(client, db_session, user_factory, submission_factory):
    owner = user_factory()
    moderator = user_factory(UserRole.MODERATOR)
    pending = submission_factory(owner, status=SubmissionStatus.NEEDS_REVIEW)
    doomed = submission_factory(owner, status=SubmissionStatus.NEEDS_REVIEW)

    queue = client.get("/api/v1/submissions/moderation", headers=auth(moderator))
    assert queue.status_code == 200
    assert [s["id"] for s in queue.json()] == [pending.id, doomed.id]
    assert client.get("/api/v1/submissions/moderation", headers=auth(owner)).status_code == 403

    assert client.post(f"/api/v1/submissions/{pending.id}/approve", headers=auth(owner)).status_code == 403
    approved = client.post(f"/api/v1/submissions/{pending.id}/approve", json={"reason": "ok"}, headers=auth(moderator))
    assert approved.status_code == 200, approved.text
    assert approved.json()["data"]["points_credited"] == 100

    again = client.post(f"/api/v1/submissions/{pending.id}/approve", headers=auth(moderator))
    assert again.status_code == 409
    assert again.json()["error_code"] == "invalid_state_transition"

    rejected = client.post(f"/api/v1/submissions/{doomed.id}/reject", json={"reason": "no bin visible"}, headers=auth(moderator))
    assert rejected.status_code == 200
    assert rejected.json()["rejection_reason"] == "no bin visible"

    wallet = client.get("/api/v1/wallets/me", headers=auth(owner)).json()
    assert wallet["points_balance"] == 100
    assert Decimal(wallet["cash_balance"]) == Decimal("1.00")


def test_submission_visibility_and_delete(client, user_factory, submission_factory):
    owner = user_factory()
    stranger = user_factory()
    submission = submission_factory(owner)

    assert client.get(f"/api/v1/submissions/{submission.id}", headers=auth(stranger)).status_code == 403
    assert client.delete(f"/api/v1/submissions/{submission.id}", headers=auth(stranger)).status_code == 403
    deleted = client.delete(f"/api/v1/submissions/{submission.id}", headers=auth(owner))
    assert deleted.status_code == 200
    assert client.get(f"/api/v1/submissions/{submission.id}", headers=auth(owner)).status_code == 404


def test_owner_edits_queued_submission(client, user_factory, submission_factory):
    owner = user_factory()
    stranger = user_factory()
    submission = submission_factory(owner)
    url = f"/api/v1/submissions/{submission.id}"

    resp = client.patch(url, json={"title": "Beach bins, morning run"}, headers=auth(owner))
    assert resp.status_code == 200, resp.text
    assert resp.json()["title"] == "Beach bins, morning run"
    assert client.get(url, headers=auth(owner)).json()["title"] == "Beach bins, morning run"

    assert client.patch(url, json={"title": "Mine now"}, headers=auth(stranger)).status_code == 403

    reviewed = submission_factory(owner, status=SubmissionStatus.NEEDS_REVIEW)
    late = client.patch(f"/api/v1/submissions/{reviewed.id}", json={"description": "Too late"}, headers=auth(owner))
    assert late.status_code == 409
    assert late.json()["error_code"] == "invalid_state_transition"


# ------------------------------ Cashouts ------------------------------ #

def _request_cashout(client, user, points=1000, method="paypal", destination="asha@example.com"):
    return client.post(
        "/api/v1/cashouts/",
        json={"points": points, "method": method, "destination_ref": destination},
        headers=auth(user),
    )


def test_cashout_lifecycle_over_http(client, gateways, user_factory, monkeypatch):
    monkeypatch.setitem(config.WEBHOOK_SECRETS, "paypal", "s3cret")
    tourist = user_factory(points=1000, cash="10.00")
    council = user_factory(UserRole.COUNCIL)

    created = _request_cashout(client, tourist)
    assert created.status_code == 201, created.text
    cashout = created.json()
    assert cashout["status"] == "pending"
    assert Decimal(cashout["cash_amount"]) == Decimal("10.00")
    wallet = client.get("/api/v1/wallets/me", headers=auth(tourist)).json()
    assert Decimal(wallet["locked_amount"]) == Decimal("10.00")
    assert Decimal(wallet["available_cash"]) == Decimal("0.00")

    assert _request_cashout(client, tourist).status_code == 409
    assert client.post(f"/api/v1/cashouts/{cashout['id']}/initiate", headers=auth(tourist)).status_code == 403

    initiated = client.post(f"/api/v1/cashouts/{cashout['id']}/initiate", headers=auth(council))
    assert initiated.status_code == 200, initiated.text
    assert initiated.json()["status"] == "initiated"
    assert initiated.json()["transaction"]["status"] == "processing"

    body = json.dumps({"reference": cashout["reference"], "status": "succeeded", "gateway_txn_id": "PP-1"}).encode()
    unsigned = client.post("/api/v1/webhooks/paypal", content=body, headers={"Content-Type": "application/json"})
    assert unsigned.status_code == 401

    signed_headers = {"Content-Type": "application/json", SIGNATURE_HEADER: f"sha256={sign_payload(body, 's3cret')}"}
    applied = client.post("/api/v1/webhooks/paypal", content=body, headers=signed_headers)
    assert applied.status_code == 200, applied.text
    assert applied.json()["data"]["applied"] is True

    replay = client.post("/api/v1/webhooks/paypal", content=body, headers=signed_headers)
    assert replay.status_code == 200
    assert replay.json()["data"]["applied"] is False

    wallet = client.get("/api/v1/wallets/me", headers=auth(tourist)).json()
    assert wallet["points_balance"] == 0
    assert Decimal(wallet["cash_balance"]) == Decimal("0.00")
    assert Decimal(wallet["locked_amount"]) == Decimal("0.00")

    mine = client.get("/api/v1/cashouts/", headers=auth(tourist)).json()
    assert [c["status"] for c in mine] == ["succeeded"]
    everything = client.get("/api/v1/cashouts/admin", headers=auth(council))
    assert everything.status_code == 200
    assert client.get("/api/v1/cashouts/admin", headers=auth(tourist)).status_code == 403


def test_cashout_errors_over_http(client, user_factory):
    tourist = user_factory(points=300, cash="3.00")
    below = _request_cashout(client, tourist, points=300)
    assert below.status_code == 422
    assert below.json()["error_code"] == "below_minimum"

    poor = user_factory(points=100, cash="10.00")
    insufficient = _request_cashout(client, poor, points=1000)
    assert insufficient.json()["error_code"] == "insufficient_points"


def test_cancel_and_visibility_over_http(client, user_factory):
    tourist = user_factory(points=1000, cash="10.00")
    stranger = user_factory()
    cashout = _request_cashout(client, tourist).json()

    assert client.get(f"/api/v1/cashouts/{cashout['id']}", headers=auth(stranger)).status_code == 404
    canceled = client.post(f"/api/v1/cashouts/{cashout['id']}/cancel", headers=auth(tourist))
    assert canceled.status_code == 200
    assert canceled.json()["status"] == "canceled"
    again = client.post(f"/api/v1/cashouts/{cashout['id']}/cancel", headers=auth(tourist))
    assert again.status_code == 409


def test_webhook_edge_cases(client, user_factory):
    tourist = user_factory(points=1000, cash="10.00")
    cashout = _request_cashout(client, tourist).json()

    assert client.post("/api/v1/webhooks/western_union", json={"reference": "x", "status": "succeeded"}).status_code == 404
    bad = client.post("/api/v1/webhooks/paypal", content=b"{not json", headers={"Content-Type": "application/json"})
    assert bad.status_code == 422
    unknown_ref = client.post("/api/v1/webhooks/paypal", json={"reference": "co_nope", "status": "succeeded"})
    assert unknown_ref.status_code == 404
    pending = client.post("/api/v1/webhooks/paypal", json={"reference": cashout["reference"], "status": "succeeded"})
    assert pending.status_code == 409
    assert pending.json()["error_code"] == "invalid_state_transition"


# ------------------------------- Health ------------------------------- #

def test_health_endpoints(client):
    assert client.get("/health").json()["status"] == "healthy"
    detailed = client.get("/health/detailed").json()
    assert detailed["checks"]["database"] == "healthy"
    assert detailed["checks"]["queue"]["backend"] == "memory"
    assert "gateway_breakers" in detailed["checks"]
    root = client.get("/").json()
    assert root["api_base"] == "/api/v1"
