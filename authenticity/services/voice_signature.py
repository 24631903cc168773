"""
Voice Signature Analyzer.

Enrollment stores a voice print per user (newest generation wins).
Verification compares a fresh sample with the latest print and runs three
anti-spoofing detectors in parallel.
"""

import logging
from dataclasses import dataclass

from ..config import Settings, get_settings
from ..errors import CalibrationTooShort, InvalidInput, NoEnrolledSignature
from ..models.domain import (
    CheckType, IdentityCheck, Spoof, SpoofSignal, VoicePrint, VoiceSignature,
    VoiceVerificationResult, utcnow,
)
from ..utils.vector_utils import clamp, cosine_similarity, interval_overlap, pace_score
from .detectors import SpoofingDetector, VoicePrintExtractor
from .fusion import ANALYSIS_ERROR_FLAG, NEUTRAL_SCORE, fuse, gather_signals
from .ledger import ResultStore, VoiceSignatureStore
from .recorder import CheckRecorder

logger = logging.getLogger(__name__)

SIMILARITY_WEIGHTS = {
    "tone": 0.30,
    "timbre": 0.25,
    "spectral": 0.25,
    "pace": 0.10,
    "pitch_range": 0.10,
}

SPOOFS = (Spoof.VOICE_CHANGER, Spoof.VOICE_CLONE, Spoof.STUDIO_FILTER)

SPOOF_FLAGS = {
    Spoof.VOICE_CHANGER: "voice_changer_detected",
    Spoof.VOICE_CLONE: "voice_clone_detected",
    Spoof.STUDIO_FILTER: "studio_filter_detected",
}

SAMPLE_KEY = "voice_print"


@dataclass(frozen=True)
class VoiceVerdict:
    similarity: float
    voice_match: bool
    confidence: float
    flags: frozenset
    passed: bool


def compare_voice_prints(enrolled: VoicePrint, sample: VoicePrint) -> dict:
    """Per-component similarity between two voice prints."""
    return {
        "tone": cosine_similarity(enrolled.tone, sample.tone),
        "timbre": cosine_similarity(enrolled.timbre, sample.timbre),
        "spectral": cosine_similarity(enrolled.spectral, sample.spectral),
        "pace": pace_score(enrolled.pace, sample.pace),
        "pitch_range": interval_overlap(enrolled.pitch_range, sample.pitch_range),
    }


def classify_voice(component_scores: dict, spoofing: dict, settings: Settings) -> VoiceVerdict:
    similarity = fuse(component_scores, SIMILARITY_WEIGHTS)
    voice_match = similarity >= settings.voice_similarity_floor

    flags = {SPOOF_FLAGS[s] for s, signal in spoofing.items() if signal.detected}
    if not voice_match:
        flags.add("voice_mismatch")
    passed = voice_match and not any(signal.detected for signal in spoofing.values())

    # Spoofing and mismatch are penalised the same way
    confidence = similarity if passed else similarity / 2.0
    return VoiceVerdict(
        similarity=similarity,
        voice_match=voice_match,
        confidence=clamp(confidence),
        flags=frozenset(flags),
        passed=passed,
    )


class VoiceSignatureAnalyzer:
    def __init__(
        self,
        extractor: VoicePrintExtractor,
        spoofing_detector: SpoofingDetector,
        recorder: CheckRecorder,
        signatures: VoiceSignatureStore | None = None,
        results: ResultStore | None = None,
        settings: Settings | None = None,
    ):
        self.extractor = extractor
        self.spoofing_detector = spoofing_detector
        self.recorder = recorder
        self.signatures = signatures or VoiceSignatureStore()
        self.results = results or ResultStore()
        self.settings = settings or get_settings()

    async def enroll(self, user_id: str, audio_ref: str, duration_seconds: float) -> VoiceSignature:
        """Create a new signature generation from a calibration sample."""
        if not audio_ref:
            raise InvalidInput("audio_ref is required")
        floor = self.settings.voice_min_calibration_seconds
        if duration_seconds < floor:
            raise CalibrationTooShort(
                f"Calibration sample is {duration_seconds:.1f}s, at least {floor:.1f}s required"
            )

        voice_print = await self.extractor.extract(audio_ref)
        measured = voice_print.duration_seconds
        if measured < floor:
            raise CalibrationTooShort(
                f"Calibration audio measures {measured:.1f}s, at least {floor:.1f}s required"
            )

        signature = VoiceSignature(user_id=user_id, calibration_audio_ref=audio_ref, voice_print=voice_print)
        await self.signatures.save(signature)

        self.recorder.activity.emit(
            "VOICE_SIGNATURE_ENROLLED", user_id,
            signature_id=signature.signature_id, duration_seconds=measured,
        )
        logger.info(f"Voice signature {signature.signature_id} enrolled for {user_id}")
        return signature

    async def verify(self, user_id: str, audio_ref: str, reason: str = "voice_verification") -> IdentityCheck:
        if not audio_ref:
            raise InvalidInput("audio_ref is required")
        signature = await self.signatures.get_latest(user_id)
        if signature is None:
            raise NoEnrolledSignature(f"No voice signature enrolled for user {user_id}")

        await self.recorder.ensure_attempt_allowed(user_id, CheckType.VOICE_SIGNATURE)
        initiated_at = utcnow()

        calls = {SAMPLE_KEY: self.extractor.extract(audio_ref)}
        calls.update({s: self.spoofing_detector.detect(audio_ref, s) for s in SPOOFS})
        outcome = await gather_signals(calls, self.settings.signal_timeout_seconds)

        spoofing = {s: outcome.values[s] for s in SPOOFS if s in outcome.values}
        if outcome.failed or SAMPLE_KEY not in outcome.values:
            self.recorder.activity.emit(
                "ANALYSIS_FAILED", user_id, analyzer="voice_signature", signals=list(outcome.degraded),
            )
            components = {name: NEUTRAL_SCORE for name in SIMILARITY_WEIGHTS}
            spoofing = {s: SpoofSignal(detected=False, confidence=NEUTRAL_SCORE) for s in SPOOFS}
            verdict = VoiceVerdict(
                similarity=NEUTRAL_SCORE,
                voice_match=False,
                confidence=self.settings.fallback_confidence,
                flags=frozenset({ANALYSIS_ERROR_FLAG}),
                passed=False,
            )
        else:
            components = compare_voice_prints(signature.voice_print, outcome.values[SAMPLE_KEY])
            verdict = classify_voice(components, spoofing, self.settings)
            if len(spoofing) < len(SPOOFS):
                verdict = VoiceVerdict(
                    similarity=verdict.similarity,
                    voice_match=verdict.voice_match,
                    confidence=verdict.confidence * outcome.coverage,
                    flags=verdict.flags,
                    passed=verdict.passed,
                )

        result = VoiceVerificationResult(
            user_id=user_id,
            audio_ref=audio_ref,
            signature_id=signature.signature_id,
            similarity=verdict.similarity,
            component_scores=components,
            voice_match=verdict.voice_match,
            spoofing=spoofing,
            confidence=verdict.confidence,
            flags=verdict.flags,
            passed=verdict.passed,
            degraded_signals=outcome.degraded,
        )
        await self.results.save(result)
        if result.passed:
            await self.signatures.record_verification(signature.signature_id)

        logger.info(
            f"Voice verification for {user_id}: similarity={result.similarity:.2f}, "
            f"match={result.voice_match}, passed={result.passed}"
        )
        return await self.recorder.record(
            user_id=user_id,
            check_type=CheckType.VOICE_SIGNATURE,
            evidence=result,
            confidence=result.confidence,
            passed=result.passed,
            flags=result.flags,
            trigger_reason=reason,
            initiated_at=initiated_at,
        )
