"""
Stolen-Content / Deepfake Analyzer.

Two independent operations over a single photo or media file:
reference-corpus lookups for stolen photos, and a six-artifact synthetic
media detector.
"""

import logging
from dataclasses import dataclass, replace

import numpy as np

from ..config import Settings, get_settings
from ..errors import InvalidInput
from ..models.domain import (
    Artifact, CheckType, Corpus, CorpusMatch, DeepfakeResult, IdentityCheck,
    StolenPhotoResult, utcnow,
)
from ..utils.vector_utils import clamp
from .detectors import ArtifactDetector, ReferenceCorpusMatcher
from .fusion import ANALYSIS_ERROR_FLAG, NEUTRAL_SCORE, fuse, gather_signals, neutral_scores
from .ledger import ResultStore
from .recorder import CheckRecorder

logger = logging.getLogger(__name__)

CORPORA = (Corpus.CELEBRITY, Corpus.STOCK, Corpus.ADULT)

CORPUS_FLAGS = {
    Corpus.CELEBRITY: "celebrity_match",
    Corpus.STOCK: "stock_photo_match",
    Corpus.ADULT: "adult_content_match",
}

ARTIFACT_WEIGHTS = {
    Artifact.QUANTIZATION: 0.20,
    Artifact.SHADOW: 0.15,
    Artifact.HAIR_EDGE: 0.20,
    Artifact.LIGHTING_REFLECTION: 0.15,
    Artifact.GAN_UPSAMPLING: 0.20,
    Artifact.FLOATING_FEATURES: 0.10,
}

ARTIFACT_FLAGS = {
    Artifact.QUANTIZATION: "quantization_artifacts",
    Artifact.SHADOW: "shadow_inconsistency",
    Artifact.HAIR_EDGE: "hair_edge_artifacts",
    Artifact.LIGHTING_REFLECTION: "reflection_inconsistency",
    Artifact.GAN_UPSAMPLING: "gan_upsampling_artifacts",
    Artifact.FLOATING_FEATURES: "floating_features",
}


@dataclass(frozen=True)
class StolenVerdict:
    detected: bool
    confidence: float
    flags: frozenset


@dataclass(frozen=True)
class DeepfakeVerdict:
    score: float
    is_deepfake: bool
    high_confidence: bool
    confidence: float
    flags: frozenset


def classify_stolen(matches: dict) -> StolenVerdict:
    """Any corpus hit marks the photo as stolen."""
    hits = [m for m in matches.values() if m.matched]
    flags = {CORPUS_FLAGS[c] for c, m in matches.items() if m.matched}
    if hits:
        flags.add("stolen_photo_detected")
        confidence = float(np.mean([clamp(m.confidence) for m in hits]))
    else:
        confidence = NEUTRAL_SCORE
    return StolenVerdict(detected=bool(hits), confidence=confidence, flags=frozenset(flags))


def classify_deepfake(artifact_scores: dict, settings: Settings) -> DeepfakeVerdict:
    """
    Weighted artifact fusion plus per-artifact sub-threshold flags.

    A single strong artifact is flagged even when the fused score stays
    below the block threshold.
    """
    score = fuse(artifact_scores, ARTIFACT_WEIGHTS)
    is_deepfake = score >= settings.deepfake_block_threshold
    high = score >= settings.deepfake_high_threshold

    flags = {
        ARTIFACT_FLAGS[a] for a, s in artifact_scores.items()
        if s >= settings.deepfake_artifact_sub_threshold
    }
    if is_deepfake:
        flags.add("deepfake_detected")
    if high:
        flags.add("deepfake_detected_high")

    confidence = score if is_deepfake else 1.0 - score
    return DeepfakeVerdict(
        score=score,
        is_deepfake=is_deepfake,
        high_confidence=high,
        confidence=confidence,
        flags=frozenset(flags),
    )


class StolenContentAnalyzer:
    def __init__(
        self,
        corpus_matcher: ReferenceCorpusMatcher,
        artifact_detector: ArtifactDetector,
        recorder: CheckRecorder,
        results: ResultStore | None = None,
        settings: Settings | None = None,
    ):
        self.corpus_matcher = corpus_matcher
        self.artifact_detector = artifact_detector
        self.recorder = recorder
        self.results = results or ResultStore()
        self.settings = settings or get_settings()

    async def check_stolen_photo(self, user_id: str, photo_ref: str,
                                 reason: str = "photo_upload") -> IdentityCheck:
        if not photo_ref:
            raise InvalidInput("photo_ref is required")
        await self.recorder.ensure_attempt_allowed(user_id, CheckType.ANTI_STOLEN)
        initiated_at = utcnow()

        outcome = await gather_signals(
            {c: self.corpus_matcher.match(photo_ref, c) for c in CORPORA},
            self.settings.signal_timeout_seconds,
        )

        if outcome.failed or not outcome.values:
            self._report_failure(user_id, "stolen_content", outcome)
            matches = {c: CorpusMatch(matched=False, confidence=NEUTRAL_SCORE) for c in CORPORA}
            verdict = StolenVerdict(
                detected=False,
                confidence=self.settings.fallback_confidence,
                flags=frozenset({ANALYSIS_ERROR_FLAG}),
            )
        else:
            matches = {
                c: replace(m, similarity=clamp(m.similarity), confidence=clamp(m.confidence))
                for c, m in outcome.values.items()
            }
            verdict = classify_stolen(matches)
            if not verdict.detected:
                verdict = StolenVerdict(False, verdict.confidence * outcome.coverage, verdict.flags)

        passed = not verdict.detected and ANALYSIS_ERROR_FLAG not in verdict.flags
        result = StolenPhotoResult(
            user_id=user_id,
            photo_ref=photo_ref,
            matches=matches,
            stolen_photo_detected=verdict.detected,
            confidence=verdict.confidence,
            flags=verdict.flags,
            passed=passed,
            degraded_signals=outcome.degraded,
        )
        await self.results.save(result)

        logger.info(f"Stolen photo check for {user_id}: detected={verdict.detected}, flags={sorted(verdict.flags)}")
        return await self.recorder.record(
            user_id=user_id,
            check_type=CheckType.ANTI_STOLEN,
            evidence=result,
            confidence=result.confidence,
            passed=result.passed,
            flags=result.flags,
            trigger_reason=reason,
            initiated_at=initiated_at,
        )

    async def detect_deepfake(self, user_id: str, media_ref: str,
                              reason: str = "media_upload") -> IdentityCheck:
        if not media_ref:
            raise InvalidInput("media_ref is required")
        await self.recorder.ensure_attempt_allowed(user_id, CheckType.ANTI_DEEPFAKE)
        initiated_at = utcnow()

        outcome = await gather_signals(
            {a: self.artifact_detector.score(media_ref, a) for a in ARTIFACT_WEIGHTS},
            self.settings.signal_timeout_seconds,
        )

        if outcome.failed or not outcome.values:
            self._report_failure(user_id, "deepfake", outcome)
            scores = neutral_scores(ARTIFACT_WEIGHTS)
            verdict = DeepfakeVerdict(
                score=NEUTRAL_SCORE,
                is_deepfake=False,
                high_confidence=False,
                confidence=self.settings.fallback_confidence,
                flags=frozenset({ANALYSIS_ERROR_FLAG}),
            )
        else:
            scores = {a: clamp(s) for a, s in outcome.values.items()}
            verdict = classify_deepfake(scores, self.settings)
            verdict = DeepfakeVerdict(
                score=verdict.score,
                is_deepfake=verdict.is_deepfake,
                high_confidence=verdict.high_confidence,
                confidence=verdict.confidence * outcome.coverage,
                flags=verdict.flags,
            )

        passed = not verdict.is_deepfake and ANALYSIS_ERROR_FLAG not in verdict.flags
        result = DeepfakeResult(
            user_id=user_id,
            media_ref=media_ref,
            artifact_scores=scores,
            deepfake_score=verdict.score,
            is_deepfake=verdict.is_deepfake,
            high_confidence=verdict.high_confidence,
            confidence=verdict.confidence,
            flags=verdict.flags,
            passed=passed,
            degraded_signals=outcome.degraded,
        )
        await self.results.save(result)

        logger.info(
            f"Deepfake detection for {user_id}: score={verdict.score:.2f}, "
            f"deepfake={verdict.is_deepfake}, high={verdict.high_confidence}"
        )
        return await self.recorder.record(
            user_id=user_id,
            check_type=CheckType.ANTI_DEEPFAKE,
            evidence=result,
            confidence=result.confidence,
            passed=result.passed,
            flags=result.flags,
            trigger_reason=reason,
            initiated_at=initiated_at,
        )

    def _report_failure(self, user_id: str, analyzer: str, outcome) -> None:
        self.recorder.activity.emit("ANALYSIS_FAILED", user_id, analyzer=analyzer, signals=list(outcome.degraded))
