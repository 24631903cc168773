"""Tests for voice signature enrollment and verification."""

from dataclasses import replace

import pytest

from authenticity.errors import CalibrationTooShort, NoEnrolledSignature
from authenticity.models.domain import CheckStatus, RiskLevel, Spoof, SpoofSignal
from authenticity.services.voice_signature import classify_voice, compare_voice_prints
from fakes import FakeSpoofingDetector, FakeVoicePrintExtractor, make_pipeline, make_settings, voice_print

CLEAN = {s: SpoofSignal(detected=False, confidence=0.9) for s in Spoof}


class TestClassifyVoice:
    def setup_method(self):
        self.settings = make_settings()

    def test_identical_prints_match(self):
        components = compare_voice_prints(voice_print(), voice_print())
        assert all(v == pytest.approx(1.0) for v in components.values())
        verdict = classify_voice(components, CLEAN, self.settings)
        assert verdict.passed is True
        assert verdict.confidence == pytest.approx(1.0)

    def test_clone_fails_despite_matching_voice(self):
        components = {name: 0.9 for name in ("tone", "timbre", "spectral", "pace", "pitch_range")}
        spoofing = dict(CLEAN)
        spoofing[Spoof.VOICE_CLONE] = SpoofSignal(detected=True, confidence=0.95)

        verdict = classify_voice(components, spoofing, self.settings)
        assert verdict.similarity == pytest.approx(0.9)
        assert verdict.voice_match is True
        assert verdict.passed is False
        assert verdict.confidence == pytest.approx(0.45)
        assert verdict.flags == frozenset({"voice_clone_detected"})

    def test_below_floor_is_a_mismatch(self):
        components = {name: 0.8 for name in ("tone", "timbre", "spectral", "pace", "pitch_range")}
        verdict = classify_voice(components, CLEAN, self.settings)
        assert verdict.voice_match is False
        assert verdict.flags == frozenset({"voice_mismatch"})
        assert verdict.confidence == pytest.approx(0.4)


class TestVoiceSignatureAnalyzer:
    def setup_method(self):
        self.extractor = FakeVoicePrintExtractor({
            "calib/alice-1.wav": voice_print(),
            "calib/alice-2.wav": voice_print(scale=3.0, pace=6.0, pitch_range=(180.0, 300.0)),
            "sample/alice-new.wav": voice_print(scale=3.0, pace=6.0, pitch_range=(180.0, 300.0)),
            "sample/stranger.wav": voice_print(scale=-4.0, pace=1.0, pitch_range=(300.0, 420.0)),
        })
        self.pipeline = make_pipeline(voice_extractor=self.extractor)
        self.voice = self.pipeline.voice

    @pytest.mark.asyncio
    async def test_calibration_too_short(self):
        with pytest.raises(CalibrationTooShort):
            await self.voice.enroll("alice", "calib/alice-1.wav", 4.9)

    @pytest.mark.asyncio
    async def test_measured_length_overrides_claimed_duration(self):
        self.extractor.values["calib/clip.wav"] = replace(voice_print(), duration_seconds=1.0)
        with pytest.raises(CalibrationTooShort):
            await self.voice.enroll("alice", "calib/clip.wav", 10.0)

        assert await self.voice.signatures.get_latest("alice") is None
        assert not self.pipeline.activity.named("VOICE_SIGNATURE_ENROLLED")

    @pytest.mark.asyncio
    async def test_verify_requires_enrollment(self):
        with pytest.raises(NoEnrolledSignature):
            await self.voice.verify("alice", "sample/alice.wav")

    @pytest.mark.asyncio
    async def test_matching_sample_is_approved(self):
        signature = await self.voice.enroll("alice", "calib/alice-1.wav", 6.0)
        check = await self.voice.verify("alice", "calib/alice-1.wav")

        assert check.status == CheckStatus.APPROVED
        assert check.evidence.signature_id == signature.signature_id
        usage = await self.voice.signatures.usage(signature.signature_id)
        assert usage.verification_count == 1
        assert usage.last_verified_at is not None
        assert self.pipeline.activity.named("VOICE_SIGNATURE_ENROLLED")

    @pytest.mark.asyncio
    async def test_latest_enrollment_is_authoritative(self):
        await self.voice.enroll("alice", "calib/alice-1.wav", 6.0)
        latest = await self.voice.enroll("alice", "calib/alice-2.wav", 6.0)

        check = await self.voice.verify("alice", "sample/alice-new.wav")
        assert check.evidence.signature_id == latest.signature_id
        assert check.passed is True
        assert len(await self.voice.signatures.list_for_user("alice")) == 2

    @pytest.mark.asyncio
    async def test_stranger_is_a_mismatch(self):
        signature = await self.voice.enroll("alice", "calib/alice-1.wav", 6.0)
        check = await self.voice.verify("alice", "sample/stranger.wav")

        assert check.evidence.voice_match is False
        assert "voice_mismatch" in check.flags
        assert check.status == CheckStatus.MANUAL_REVIEW
        assert (await self.voice.signatures.usage(signature.signature_id)).verification_count == 0

    @pytest.mark.asyncio
    async def test_clone_detected_opens_high_priority_case(self):
        spoofing = FakeSpoofingDetector({Spoof.VOICE_CLONE: SpoofSignal(detected=True, confidence=0.95)})
        pipeline = make_pipeline(voice_extractor=self.extractor, spoofing_detector=spoofing)
        await pipeline.voice.enroll("alice", "calib/alice-1.wav", 6.0)
        check = await pipeline.voice.verify("alice", "calib/alice-1.wav")

        assert check.evidence.voice_match is True
        assert check.evidence.spoofing_detected is True
        assert check.passed is False
        assert check.confidence == pytest.approx(0.5)

        case = await pipeline.cases.find_by_check(check.check_id)
        assert case.priority == RiskLevel.HIGH
        assert case.case_type == "VOICE_MISMATCH"

    @pytest.mark.asyncio
    async def test_extractor_failure_falls_back(self):
        extractor = FakeVoicePrintExtractor(broken={"sample/broken.wav"})
        pipeline = make_pipeline(voice_extractor=extractor)
        await pipeline.voice.enroll("alice", "calib/alice-1.wav", 6.0)
        check = await pipeline.voice.verify("alice", "sample/broken.wav")

        assert check.flags == frozenset({"analysis_error"})
        assert check.confidence == pytest.approx(0.25)
        assert check.status == CheckStatus.MANUAL_REVIEW
