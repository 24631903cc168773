"""Tests for the liveness analyzer and its session state machine."""

import pytest

from authenticity.errors import AttemptLimitExceeded, InvalidInput, InvalidStateTransition, NotFound
from authenticity.models.domain import (
    Artifact, CheckStatus, CheckType, LivenessState, Movement, MovementDetection,
)
from authenticity.services.ledger import InMemoryIdentityCheckLedger
from authenticity.services.liveness import classify_liveness
from fakes import FakeArtifactDetector, FakeMovementDetector, make_pipeline, make_settings


class SnapshotLedger(InMemoryIdentityCheckLedger):
    """Remembers the evidence check id as it was when each check was written."""

    def __init__(self):
        super().__init__()
        self.evidence_check_ids = {}

    async def save(self, check):
        self.evidence_check_ids[check.check_id] = check.evidence.check_id
        await super().save(check)


def _movements(blink=True, head=True, lips=True) -> dict:
    return {
        Movement.BLINK: MovementDetection(blink, 0.9 if blink else 0.2),
        Movement.HEAD_ROTATION: MovementDetection(head, 0.85 if head else 0.2),
        Movement.LIP_MOVEMENT: MovementDetection(lips, 0.8 if lips else 0.3),
    }


def _texture(value=0.02, **overrides) -> dict:
    scores = {
        Artifact.QUANTIZATION: value,
        Artifact.SHADOW: value,
        Artifact.LIGHTING_REFLECTION: value,
        Artifact.GAN_UPSAMPLING: value,
        Artifact.FLOATING_FEATURES: value,
    }
    scores.update(overrides)
    return scores


class TestClassifyLiveness:
    def setup_method(self):
        self.settings = make_settings()

    def test_two_movements_and_clean_texture_pass(self):
        verdict = classify_liveness(_movements(lips=False), _texture(), self.settings)
        assert verdict.movements_detected == 2
        assert verdict.deepfake_score < 0.1
        assert verdict.passed is True
        assert verdict.confidence == pytest.approx(0.6 * 2 / 3 + 0.4 * (1 - verdict.deepfake_score))

    def test_single_movement_fails(self):
        verdict = classify_liveness(_movements(head=False, lips=False), _texture(), self.settings)
        assert verdict.passed is False
        assert "insufficient_movement" in verdict.flags

    def test_deepfake_thresholds(self):
        suspected = classify_liveness(_movements(), _texture(0.6), self.settings)
        assert "deepfake_suspected" in suspected.flags
        assert "deepfake_detected_high" not in suspected.flags

        high = classify_liveness(_movements(), _texture(0.85), self.settings)
        assert {"deepfake_suspected", "deepfake_detected_high"} <= high.flags

    def test_strong_gan_artifact_fails_alone(self):
        verdict = classify_liveness(
            _movements(), _texture(0.05, **{Artifact.GAN_UPSAMPLING: 0.75}), self.settings,
        )
        assert verdict.deepfake_score < 0.5
        assert "gan_artifacts_detected" in verdict.flags
        assert verdict.passed is False


class TestLivenessAnalyzer:
    def setup_method(self):
        self.pipeline = make_pipeline(
            movement_detector=FakeMovementDetector({
                Movement.BLINK: MovementDetection(True, 0.9),
                Movement.HEAD_ROTATION: MovementDetection(True, 0.85),
                Movement.LIP_MOVEMENT: MovementDetection(False, 0.3),
            }),
        )
        self.liveness = self.pipeline.liveness

    @pytest.mark.asyncio
    async def test_session_runs_to_completion(self):
        session = await self.liveness.start_session("alice", "onboarding")
        assert session.state == LivenessState.NOT_STARTED

        session = await self.liveness.submit_video(session.session_id, "videos/alice.mp4", 8.0)
        assert session.state == LivenessState.COMPLETED
        assert session.movements_detected == 2
        assert session.passed is True
        assert session.deepfake_score == pytest.approx(0.05)

        check = await self.pipeline.ledger.get(session.check_id)
        assert check.check_type == CheckType.LIVENESS
        assert check.status == CheckStatus.APPROVED
        assert check.evidence is session

    @pytest.mark.asyncio
    async def test_completed_session_cannot_be_resubmitted(self):
        session = await self.liveness.start_session("alice", "onboarding")
        await self.liveness.submit_video(session.session_id, "videos/alice.mp4", 8.0)
        with pytest.raises(InvalidStateTransition):
            await self.liveness.submit_video(session.session_id, "videos/again.mp4", 8.0)

    @pytest.mark.asyncio
    async def test_video_duration_is_validated(self):
        session = await self.liveness.start_session("alice", "onboarding")
        with pytest.raises(InvalidInput):
            await self.liveness.submit_video(session.session_id, "videos/alice.mp4", 1.0)
        with pytest.raises(InvalidInput):
            await self.liveness.submit_video(session.session_id, "videos/alice.mp4", 90.0)
        assert (await self.liveness.get_session(session.session_id)).state == LivenessState.NOT_STARTED

    @pytest.mark.asyncio
    async def test_unknown_session(self):
        with pytest.raises(NotFound):
            await self.liveness.get_session("live_missing")

    @pytest.mark.asyncio
    async def test_detector_error_uses_neutral_fallback(self):
        pipeline = make_pipeline(artifact_detector=FakeArtifactDetector(broken={Artifact.SHADOW}))
        session = await pipeline.liveness.start_session("bob", "onboarding")
        session = await pipeline.liveness.submit_video(session.session_id, "videos/bob.mp4", 8.0)

        assert session.passed is False
        assert session.flags == frozenset({"analysis_error"})
        assert session.confidence == pytest.approx(0.25)
        assert all(score == 0.5 for score in session.texture_scores.values())
        check = await pipeline.ledger.get(session.check_id)
        assert check.status == CheckStatus.MANUAL_REVIEW
        assert pipeline.activity.named("ANALYSIS_FAILED")

    @pytest.mark.asyncio
    async def test_timed_out_signal_lowers_confidence(self):
        pipeline = make_pipeline(artifact_detector=FakeArtifactDetector(slow={Artifact.FLOATING_FEATURES}))
        session = await pipeline.liveness.start_session("carol", "onboarding")
        session = await pipeline.liveness.submit_video(session.session_id, "videos/carol.mp4", 8.0)

        assert session.passed is True
        assert Artifact.FLOATING_FEATURES not in session.texture_scores
        assert session.degraded_signals == ("floating_features",)
        full = 0.6 * 1.0 + 0.4 * (1 - 0.05)
        assert session.confidence == pytest.approx(full * 7 / 8)

    @pytest.mark.asyncio
    async def test_attempt_limit(self):
        for _ in range(3):
            session = await self.liveness.start_session("dave", "onboarding")
            await self.liveness.submit_video(session.session_id, "videos/dave.mp4", 8.0)
        with pytest.raises(AttemptLimitExceeded):
            await self.liveness.start_session("dave", "onboarding")

    @pytest.mark.asyncio
    async def test_session_links_its_check_before_recording(self):
        ledger = SnapshotLedger()
        pipeline = make_pipeline(ledger=ledger)
        session = await pipeline.liveness.start_session("erin", "onboarding")
        session = await pipeline.liveness.submit_video(session.session_id, "videos/erin.mp4", 8.0)

        check = await pipeline.ledger.get(session.check_id)
        assert check is not None
        assert ledger.evidence_check_ids[check.check_id] == check.check_id
        assert check.evidence.check_id == check.check_id
