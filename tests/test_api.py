"""
Tests for the HTTP API.
"""

from unittest.mock import AsyncMock, patch

import pytest
from fastapi.testclient import TestClient

from identity_trust.config import settings
from identity_trust.main import app
from identity_trust.models.internal_models import ProfileSignals
from identity_trust.services.container import set_services

ONECI_SUBMISSION = {
    "channel": "oneci",
    "documentRefs": ["documents/u1/cni-front.jpg", "documents/u1/cni-back.jpg"],
    "identityNumber": "CI0012345678",
}
FACE_SUBMISSION = {"channel": "face", "biometricCaptureRef": "captures/u1/selfie.jpg"}


@pytest.fixture
def client(services):
    """Test client over in-memory services. Lifespan (telemetry setup) is not run."""
    set_services(services)
    yield TestClient(app)
    set_services(None)


@pytest.fixture
def admin_headers(admin_id):
    return {"X-Admin-Id": admin_id, "User-Agent": "admin-console/1.0", "X-Forwarded-For": "203.0.113.9, 10.0.0.1"}


class TestBasics:
    """Health, metrics and middleware."""

    def test_app_creation(self):
        assert app.title == "Identity Trust Service"

    def test_health_check(self, client):
        response = client.get("/healthz")

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "healthy"
        assert "timestamp" in data
        assert data["version"] == "1.0.0"

    def test_health_check_degraded(self, client, db):
        db.health_check = AsyncMock(return_value=False)

        assert client.get("/healthz").json()["status"] == "degraded"

    def test_metrics(self, client):
        client.get("/healthz")
        data = client.get("/metrics").json()

        assert data["metrics"]["total_requests"] >= 1

    def test_security_and_correlation_headers(self, client):
        response = client.get("/api/v1/verifications/u1", headers={"X-Correlation-ID": "corr-123"})

        assert response.headers["X-Correlation-ID"] == "corr-123"
        assert response.headers["X-Content-Type-Options"] == "nosniff"
        assert response.headers["X-Frame-Options"] == "DENY"


class TestVerificationEndpoints:
    """Applicant-facing endpoints."""

    def test_unknown_user_record(self, client):
        response = client.get("/api/v1/verifications/u1")

        assert response.status_code == 200
        data = response.json()
        assert data["oneciStatus"] == "not_submitted"
        assert data["cnamStatus"] == "not_submitted"
        assert data["faceStatus"] == "not_submitted"
        assert data["trustScore"] == 0

    def test_submit_identity(self, client):
        response = client.post("/api/v1/verifications/u1/submissions", json=ONECI_SUBMISSION)

        assert response.status_code == 201
        data = response.json()
        assert data["oneciStatus"] == "pending_review"
        assert data["trustScore"] == 0
        assert "documentRefs" not in data

    def test_submit_without_documents(self, client):
        response = client.post("/api/v1/verifications/u1/submissions", json={"channel": "cnam"})

        assert response.status_code == 422

    def test_face_without_capture(self, client):
        response = client.post("/api/v1/verifications/u1/submissions", json={"channel": "face"})

        assert response.status_code == 422

    def test_duplicate_submission_conflicts(self, client):
        client.post("/api/v1/verifications/u1/submissions", json=ONECI_SUBMISSION)
        response = client.post(
            "/api/v1/verifications/u1/submissions",
            json=ONECI_SUBMISSION,
            headers={"X-Correlation-ID": "corr-dup"}
        )

        assert response.status_code == 409
        detail = response.json()["detail"]
        assert detail["error"] == "InvalidTransition"
        assert detail["correlation_id"] == "corr-dup"
        assert detail["retryable"] is False

    def test_score(self, client, db):
        db.profiles.set_signals("u1", ProfileSignals(documents_present=True))

        response = client.get("/api/v1/verifications/u1/score")

        assert response.status_code == 200
        data = response.json()
        assert data["score"] == 20
        assert data["breakdown"]["documents_present"] == 20
        assert data["recommendation"] == "not_recommended"
        assert data["potentialGain"] == 80

    def test_score_refresh(self, client, db):
        client.post("/api/v1/verifications/u1/submissions", json=ONECI_SUBMISSION)
        db.profiles.set_signals("u1", ProfileSignals(rental_history_present=True))

        response = client.post("/api/v1/verifications/u1/score/refresh")

        assert response.status_code == 200
        assert response.json()["trustScore"] == 10

    def test_score_refresh_unknown_user(self, client):
        response = client.post("/api/v1/verifications/nobody/score/refresh")

        assert response.status_code == 404
        assert response.json()["detail"]["error"] == "RecordNotFound"


class TestGuardEndpoint:
    """Guard check endpoint."""

    def test_blocked_without_identity(self, client):
        response = client.post("/api/v1/guard/check", json={"userId": "u1"})

        assert response.status_code == 200
        assert response.headers["Cache-Control"] == "no-store"
        data = response.json()
        assert data["decision"] == "blocked"
        assert data["oneciStatus"] == "not_submitted"
        assert data["nextStep"] == "submit_oneci_verification"

    def test_pending_then_allowed(self, client, admin_headers):
        client.post("/api/v1/verifications/u1/submissions", json=ONECI_SUBMISSION)
        pending = client.post("/api/v1/guard/check", json={"userId": "u1", "action": "submit_application"})

        client.post(
            "/api/v1/admin/reviews/decisions",
            json={"targetUserId": "u1", "channel": "oneci", "decision": "approve"},
            headers=admin_headers
        )
        allowed = client.post("/api/v1/guard/check", json={"userId": "u1"})

        assert pending.json()["decision"] == "pending"
        assert allowed.json()["decision"] == "allowed"


class TestAdminEndpoints:
    """Administrator endpoints."""

    def test_decision_requires_admin_id(self, client):
        client.post("/api/v1/verifications/u1/submissions", json=ONECI_SUBMISSION)

        response = client.post(
            "/api/v1/admin/reviews/decisions",
            json={"targetUserId": "u1", "channel": "oneci", "decision": "approve"}
        )

        assert response.status_code == 401

    def test_decision_flow(self, client, db, admin_id, admin_headers, notifier):
        client.post("/api/v1/verifications/u1/submissions", json=ONECI_SUBMISSION)

        response = client.post(
            "/api/v1/admin/reviews/decisions",
            json={"targetUserId": "u1", "channel": "oneci", "decision": "reject", "notes": "Document illegible"},
            headers=admin_headers
        )

        assert response.status_code == 200
        data = response.json()
        assert data["oneciStatus"] == "rejected"
        assert data["adminReviewNotes"] == "Document illegible"
        assert data["adminReviewedBy"] == admin_id

        entry = db.access_logs.entries[0]
        assert entry.ip_address == "203.0.113.9"
        assert entry.user_agent == "admin-console/1.0"
        notifier.notify.assert_awaited_once()

    def test_conflicting_decision(self, client, admin_headers):
        client.post("/api/v1/verifications/u1/submissions", json=ONECI_SUBMISSION)
        body = {"targetUserId": "u1", "channel": "oneci", "decision": "approve"}
        client.post("/api/v1/admin/reviews/decisions", json=body, headers=admin_headers)

        replay = client.post("/api/v1/admin/reviews/decisions", json=body, headers=admin_headers)
        conflict = client.post(
            "/api/v1/admin/reviews/decisions",
            json={**body, "decision": "reject", "notes": "Photo mismatch"},
            headers=admin_headers
        )

        assert replay.status_code == 200
        assert conflict.status_code == 409
        assert conflict.json()["detail"]["error"] == "AlreadyFinalized"

    def test_review_queue(self, client, admin_headers):
        client.post("/api/v1/verifications/u1/submissions", json=ONECI_SUBMISSION)
        client.post("/api/v1/verifications/u2/submissions", json=FACE_SUBMISSION)

        everything = client.get("/api/v1/admin/reviews", headers=admin_headers)
        face_only = client.get("/api/v1/admin/reviews?channel=face", headers=admin_headers)
        review_only = client.get("/api/v1/admin/reviews?status=pending_review", headers=admin_headers)

        assert [r["userId"] for r in everything.json()] == ["u1", "u2"]
        assert [r["userId"] for r in face_only.json()] == ["u2"]
        assert [r["userId"] for r in review_only.json()] == ["u1"]

    def test_sensitive_read_is_audited(self, client, db, admin_id, admin_headers):
        client.post("/api/v1/verifications/u1/submissions", json=ONECI_SUBMISSION)

        response = client.get(
            "/api/v1/admin/verifications/u1/sensitive?access_type=oneci_data",
            headers=admin_headers
        )

        assert response.status_code == 200
        data = response.json()
        assert data["accessType"] == "oneci_data"
        assert data["items"][0]["documentRefs"] == ONECI_SUBMISSION["documentRefs"]
        assert data["items"][0]["identityNumber"] == "CI0012345678"

        entries = db.access_logs.entries
        assert len(entries) == 1
        assert entries[0].admin_id == admin_id
        assert entries[0].target_user_id == "u1"

    def test_sensitive_read_fails_closed(self, client, db, admin_headers):
        client.post("/api/v1/verifications/u1/submissions", json=ONECI_SUBMISSION)
        db.access_logs.insert = AsyncMock(side_effect=RuntimeError("database unavailable"))

        response = client.get("/api/v1/admin/verifications/u1/sensitive", headers=admin_headers)

        assert response.status_code == 503
        detail = response.json()["detail"]
        assert detail["error"] == "AuditWriteFailed"
        assert detail["retryable"] is True
        assert "items" not in response.json()

    def test_audit_log_query_and_export(self, client, admin_headers):
        client.post("/api/v1/verifications/u1/submissions", json=ONECI_SUBMISSION)
        for _ in range(3):
            client.get("/api/v1/admin/verifications/u1/sensitive", headers=admin_headers)

        page = client.get("/api/v1/admin/audit-logs?limit=2", headers=admin_headers).json()
        export = client.get("/api/v1/admin/audit-logs/export", params={"delimiter": ";"}, headers=admin_headers)

        assert page["total"] == 3
        assert len(page["entries"]) == 2
        assert page["hasMore"] is True
        assert page["entries"][0]["accessType"] == "full_view"

        assert export.status_code == 200
        assert export.headers["content-type"].startswith("text/csv")
        lines = export.text.strip("\n").split("\n")
        assert lines[0] == "id;accessed_at;admin_id;target_user_id;access_type;ip_address;user_agent"
        assert len(lines) == 4

    def test_export_rejects_unknown_delimiter(self, client, admin_headers):
        response = client.get("/api/v1/admin/audit-logs/export?delimiter=x", headers=admin_headers)

        assert response.status_code == 422

    def test_face_score_only_released_through_audited_read(self, client, db, admin_headers):
        client.post("/api/v1/verifications/u1/submissions", json=FACE_SUBMISSION)
        client.post(
            "/api/v1/verifier-callbacks/neoface",
            json={"userId": "u1", "channel": "face", "decision": "reject", "score": 12.5}
        )
        entries_before = len(db.access_logs.entries)

        queue = client.get("/api/v1/admin/reviews?status=rejected", headers=admin_headers).json()
        record = client.get("/api/v1/verifications/u1").json()

        assert [r["userId"] for r in queue] == ["u1"]
        assert "faceSimilarityScore" not in queue[0]
        assert "faceSimilarityScore" not in record
        assert len(db.access_logs.entries) == entries_before

        sensitive = client.get(
            "/api/v1/admin/verifications/u1/sensitive?access_type=face_data",
            headers=admin_headers
        ).json()

        assert sensitive["items"][0]["faceSimilarityScore"] == 12.5
        assert len(db.access_logs.entries) == entries_before + 1

    def test_rejection_without_notes_is_refused(self, client, admin_headers, notifier):
        client.post("/api/v1/verifications/u1/submissions", json=ONECI_SUBMISSION)

        response = client.post(
            "/api/v1/admin/reviews/decisions",
            json={"targetUserId": "u1", "channel": "oneci", "decision": "reject", "notes": "  "},
            headers=admin_headers
        )

        assert response.status_code == 422
        assert response.json()["detail"]["error"] == "ValidationError"
        assert client.get("/api/v1/verifications/u1").json()["oneciStatus"] == "pending_review"
        notifier.notify.assert_not_called()

    def test_stats(self, client, admin_headers):
        client.post("/api/v1/verifications/u1/submissions", json=ONECI_SUBMISSION)
        client.post("/api/v1/verifications/u2/submissions", json=FACE_SUBMISSION)
        client.post(
            "/api/v1/admin/reviews/decisions",
            json={"targetUserId": "u1", "channel": "oneci", "decision": "approve"},
            headers=admin_headers
        )

        response = client.get("/api/v1/admin/stats", headers=admin_headers)

        assert response.status_code == 200
        data = response.json()
        assert data["total"] == 2
        assert data["pending"] == 1
        assert data["verified"] == 1
        assert data["rejected"] == 0
        assert data["verifiedByChannel"] == {"oneci": 1, "cnam": 0, "face": 0}
        assert data["avgTrustScore"] == 40.0

    def test_stats_requires_admin(self, client):
        assert client.get("/api/v1/admin/stats").status_code == 401

    def test_audit_log_requires_admin(self, client):
        assert client.get("/api/v1/admin/audit-logs").status_code == 401


class TestVerifierCallbackEndpoint:
    """External verifier webhook."""

    CALLBACK = {"userId": "u1", "channel": "face", "decision": "approve", "score": 93.0, "externalReference": "nf-1"}

    def test_callback_applies_result(self, client, db):
        client.post("/api/v1/verifications/u1/submissions", json=FACE_SUBMISSION)

        response = client.post("/api/v1/verifier-callbacks/neoface", json=self.CALLBACK)

        assert response.status_code == 200
        data = response.json()
        assert data["faceStatus"] == "verified"
        assert "faceSimilarityScore" not in data
        assert data["adminReviewedBy"] == "system:neoface"
        assert db.access_logs.entries[0].access_type.value == "face_data"

    def test_callback_token_checked_when_configured(self, client):
        client.post("/api/v1/verifications/u1/submissions", json=FACE_SUBMISSION)

        with patch.object(settings, "verifier_callback_secret", "s3cret"):
            missing = client.post("/api/v1/verifier-callbacks/neoface", json=self.CALLBACK)
            wrong = client.post(
                "/api/v1/verifier-callbacks/neoface",
                json=self.CALLBACK,
                headers={"X-Verifier-Token": "guess"}
            )
            accepted = client.post(
                "/api/v1/verifier-callbacks/neoface",
                json=self.CALLBACK,
                headers={"X-Verifier-Token": "s3cret"}
            )

        assert missing.status_code == 401
        assert wrong.status_code == 401
        assert accepted.status_code == 200

    def test_callback_for_unsubmitted_channel(self, client):
        response = client.post("/api/v1/verifier-callbacks/neoface", json=self.CALLBACK)

        assert response.status_code == 409

    def test_score_out_of_range(self, client):
        response = client.post("/api/v1/verifier-callbacks/neoface", json={**self.CALLBACK, "score": 120})

        assert response.status_code == 422
