"""API tests over the FastAPI app with the pipeline dependency overridden."""

from fastapi.testclient import TestClient

from authenticity.main import app
from authenticity.models.domain import Corpus, CorpusMatch, LinkSignal
from authenticity.pipeline import get_pipeline
from authenticity.services.audio_features import SpectralVoicePrintExtractor
from authenticity.services.media_store import MediaStore
from fakes import FakeAccountLinkage, FakeCorpusMatcher, make_pipeline

ALICE = {"X-User-Id": "alice"}
ADMIN = {"X-User-Id": "mod-1", "X-User-Role": "admin"}


class TestApi:
    def setup_method(self):
        self.pipeline = make_pipeline(
            corpus_matcher=FakeCorpusMatcher({Corpus.CELEBRITY: CorpusMatch(True, similarity=0.9, confidence=0.9)}),
            linkage=FakeAccountLinkage({
                LinkSignal.PHONE: ["p1", "p2", "p3"],
                LinkSignal.DEVICE: ["p1", "p2", "p3"],
            }),
        )
        app.dependency_overrides[get_pipeline] = lambda: self.pipeline
        self.client = TestClient(app)

    def teardown_method(self):
        app.dependency_overrides.clear()

    def test_health(self):
        response = self.client.get("/api/v1/health")
        assert response.status_code == 200
        assert response.json()["status"] == "healthy"

    def test_identity_header_required(self):
        response = self.client.post("/api/v1/liveness/sessions", json={"user_id": "alice"})
        assert response.status_code == 401

    def test_liveness_flow(self):
        response = self.client.post("/api/v1/liveness/sessions", json={"user_id": "alice"}, headers=ALICE)
        assert response.status_code == 201
        session_id = response.json()["session_id"]
        assert response.json()["state"] == "NOT_STARTED"

        response = self.client.post(
            f"/api/v1/liveness/sessions/{session_id}/video",
            json={"video_ref": "videos/alice.mp4", "duration_seconds": 8},
            headers=ALICE,
        )
        body = response.json()
        assert response.status_code == 200
        assert body["state"] == "COMPLETED"
        assert body["check"]["status"] == "APPROVED"
        assert body["check"]["check_type"] == "LIVENESS"

        response = self.client.get(f"/api/v1/liveness/sessions/{session_id}", headers={"X-User-Id": "bob"})
        assert response.status_code == 403

    def test_resubmitting_video_conflicts(self):
        session_id = self.client.post(
            "/api/v1/liveness/sessions", json={"user_id": "alice"}, headers=ALICE,
        ).json()["session_id"]
        payload = {"video_ref": "videos/alice.mp4", "duration_seconds": 8}
        self.client.post(f"/api/v1/liveness/sessions/{session_id}/video", json=payload, headers=ALICE)
        response = self.client.post(f"/api/v1/liveness/sessions/{session_id}/video", json=payload, headers=ALICE)
        assert response.status_code == 409
        assert response.json()["error_code"] == "INVALID_STATE_TRANSITION"

    def test_cannot_check_another_user(self):
        response = self.client.post(
            "/api/v1/content/stolen", json={"user_id": "bob", "photo_ref": "p.jpg"}, headers=ALICE,
        )
        assert response.status_code == 403
        assert response.json()["error_code"] == "OWNERSHIP_VIOLATION"

    def test_stolen_photo_hides_scores(self):
        response = self.client.post(
            "/api/v1/content/stolen", json={"user_id": "alice", "photo_ref": "p.jpg"}, headers=ALICE,
        )
        body = response.json()
        assert response.status_code == 200
        assert body["status"] == "REJECTED"
        assert body["celebrity_match"] is True
        assert body["stolen_photo_detected"] is True
        assert "similarity" not in body
        assert "matches" not in body

    def test_invalid_payload_is_bad_request(self):
        response = self.client.post("/api/v1/photos/consistency", json={"user_id": "alice"}, headers=ALICE)
        assert response.status_code == 400
        assert response.json()["error_code"] == "INVALID_INPUT"

    def test_voice_requires_enrollment(self):
        response = self.client.post(
            "/api/v1/voice/verify", json={"user_id": "alice", "audio_ref": "a.wav"}, headers=ALICE,
        )
        assert response.status_code == 422
        assert response.json()["error_code"] == "NO_ENROLLED_SIGNATURE"

    def test_voice_enroll_and_verify(self):
        response = self.client.post(
            "/api/v1/voice/enroll",
            json={"user_id": "alice", "audio_ref": "calib.wav", "duration_seconds": 7},
            headers=ALICE,
        )
        assert response.status_code == 201

        response = self.client.post(
            "/api/v1/voice/verify", json={"user_id": "alice", "audio_ref": "sample.wav"}, headers=ALICE,
        )
        assert response.status_code == 200
        assert response.json()["voice_match"] is True
        assert response.json()["spoofing_detected"] is False

    def test_social_graph_is_admin_only(self):
        payload = {"target_user_id": "target", "phone_number": "+1", "device_fingerprint": "dev-1"}
        response = self.client.post("/api/v1/admin/fraud/social-graph", json=payload, headers=ALICE)
        assert response.status_code == 403

        response = self.client.post("/api/v1/admin/fraud/social-graph", json=payload, headers=ADMIN)
        body = response.json()
        assert response.status_code == 200
        assert body["risk_level"] == "CRITICAL"
        assert body["repeated_catfish_pattern"] is True
        assert body["linked_accounts"]["phone"] == ["p1", "p2", "p3"]
        assert body["case_id"] is not None
        assert "fraud_probability" not in body

    def test_attempt_limit(self):
        payload = {"user_id": "alice", "media_ref": "m.jpg"}
        for _ in range(3):
            assert self.client.post("/api/v1/content/deepfake", json=payload, headers=ALICE).status_code == 200
        response = self.client.post("/api/v1/content/deepfake", json=payload, headers=ALICE)
        assert response.status_code == 429
        assert response.json()["error_code"] == "ATTEMPT_LIMIT_EXCEEDED"

    def test_needs_verification_and_recent_checks(self):
        url = "/api/v1/checks/needs-verification"
        assert self.client.get(url, params={"check_type": "ANTI_DEEPFAKE"}, headers=ALICE).json()["needs_verification"]

        self.client.post("/api/v1/content/deepfake", json={"user_id": "alice", "media_ref": "m.jpg"}, headers=ALICE)
        response = self.client.get(url, params={"check_type": "ANTI_DEEPFAKE"}, headers=ALICE)
        assert response.json()["needs_verification"] is False

        recent = self.client.get("/api/v1/checks/recent", headers=ALICE).json()
        assert len(recent["checks"]) == 1
        check_id = recent["checks"][0]["check_id"]
        assert self.client.get(f"/api/v1/checks/{check_id}", headers=ALICE).status_code == 200
        assert self.client.get(f"/api/v1/checks/{check_id}", headers={"X-User-Id": "bob"}).status_code == 404

    def test_undecodable_calibration_audio_is_rejected(self, tmp_path):
        (tmp_path / "calib.wav").write_bytes(b"\x00\x01 not audio")
        store = MediaStore(connection_string="", local_dir=str(tmp_path))
        pipeline = make_pipeline(voice_extractor=SpectralVoicePrintExtractor(store))
        app.dependency_overrides[get_pipeline] = lambda: pipeline

        response = self.client.post(
            "/api/v1/voice/enroll",
            json={"user_id": "alice", "audio_ref": "calib.wav", "duration_seconds": 7},
            headers=ALICE,
        )
        assert response.status_code == 400
        assert response.json()["error_code"] == "INVALID_INPUT"

    def test_error_bodies_are_documented(self):
        schema = self.client.get("/openapi.json").json()
        assert "ErrorResponse" in schema["components"]["schemas"]

        responses = schema["paths"]["/api/v1/liveness/sessions/{session_id}/video"]["post"]["responses"]
        for code in ("400", "403", "404", "409", "429"):
            ref = responses[code]["content"]["application/json"]["schema"]["$ref"]
            assert ref.endswith("/ErrorResponse")
