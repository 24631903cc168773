"""
Photo Consistency Analyzer.

Standard mode compares every pair of a user's photos and measures filter,
beauty-AI and body-morph intensity per photo. Recurrent mode compares a
previously verified photo set against a new one to detect an identity swap.
"""

import logging
from dataclasses import dataclass
from itertools import combinations, product

import numpy as np

from ..config import Settings, get_settings
from ..errors import InvalidInput
from ..models.domain import (
    CheckType, IdentityCheck, Manipulation, PhotoConsistencyResult,
    RecurrentAuthenticityResult, RecurrentTrigger, utcnow,
)
from ..utils.vector_utils import clamp
from .detectors import FaceMatcher, PhotoManipulationDetector
from .fusion import ANALYSIS_ERROR_FLAG, NEUTRAL_SCORE, gather_signals
from .ledger import ResultStore
from .recorder import CheckRecorder

logger = logging.getLogger(__name__)

MANIPULATIONS = (Manipulation.FILTER, Manipulation.BEAUTY_AI, Manipulation.BODY_MORPH)


@dataclass(frozen=True)
class PhotoVerdict:
    consistency: float
    max_filter: float
    max_beauty_ai: float
    max_body_morph: float
    confidence: float
    flags: frozenset
    passed: bool


def _max_or_zero(values) -> float:
    return clamp(max(values)) if values else 0.0


def classify_photos(similarities: list, manipulation_scores: dict, settings: Settings) -> PhotoVerdict:
    """
    Fuse pairwise similarities and per-photo manipulation scores.

    Args:
        similarities: similarity of every compared pair
        manipulation_scores: Manipulation -> list of per-photo scores
        settings: thresholds
    """
    consistency = float(np.mean([clamp(s) for s in similarities])) if similarities else 0.0
    max_filter = _max_or_zero(manipulation_scores.get(Manipulation.FILTER, []))
    max_beauty = _max_or_zero(manipulation_scores.get(Manipulation.BEAUTY_AI, []))
    max_morph = _max_or_zero(manipulation_scores.get(Manipulation.BODY_MORPH, []))

    flags = set()
    if consistency < settings.photo_similarity_floor:
        flags.add("low_photo_consistency")
    if max_filter > settings.photo_filter_ceiling:
        flags.add("heavy_filter_detected")
    if max_beauty > settings.photo_beauty_ai_ceiling:
        flags.add("beauty_ai_detected")
    if max_morph > settings.photo_body_morph_ceiling:
        flags.add("body_morph_detected")

    confidence = (
        0.5 * consistency
        + 0.2 * (1.0 - max_filter)
        + 0.2 * (1.0 - max_beauty)
        + 0.1 * (1.0 - max_morph)
    )
    return PhotoVerdict(
        consistency=consistency,
        max_filter=max_filter,
        max_beauty_ai=max_beauty,
        max_body_morph=max_morph,
        confidence=confidence,
        flags=frozenset(flags),
        passed=not flags,
    )


def identity_swap(consistency: float, settings: Settings) -> bool:
    return consistency < settings.photo_identity_swap_floor


def _fallback_verdict(settings: Settings) -> PhotoVerdict:
    return PhotoVerdict(
        consistency=NEUTRAL_SCORE,
        max_filter=NEUTRAL_SCORE,
        max_beauty_ai=NEUTRAL_SCORE,
        max_body_morph=NEUTRAL_SCORE,
        confidence=settings.fallback_confidence,
        flags=frozenset({ANALYSIS_ERROR_FLAG}),
        passed=False,
    )


class PhotoConsistencyAnalyzer:
    def __init__(
        self,
        face_matcher: FaceMatcher,
        manipulation_detector: PhotoManipulationDetector,
        recorder: CheckRecorder,
        results: ResultStore | None = None,
        settings: Settings | None = None,
    ):
        self.face_matcher = face_matcher
        self.manipulation_detector = manipulation_detector
        self.recorder = recorder
        self.results = results or ResultStore()
        self.settings = settings or get_settings()

    async def check_consistency(
        self,
        user_id: str,
        photo_refs: list,
        new_photo_ref: str | None = None,
        reason: str = "profile_photo_review",
    ) -> IdentityCheck:
        """Standard mode over the profile photos plus an optional new photo."""
        limit = self.settings.photo_max_profile_photos
        if not photo_refs or len(photo_refs) > limit:
            raise InvalidInput(f"Between 1 and {limit} profile photos are required")
        refs = list(photo_refs) + ([new_photo_ref] if new_photo_ref else [])
        if len(refs) < 2:
            raise InvalidInput("At least two photos are needed for a consistency check")

        await self.recorder.ensure_attempt_allowed(user_id, CheckType.PHOTO_CONSISTENCY)
        initiated_at = utcnow()

        pairs = list(combinations(range(len(refs)), 2))
        calls = {("sim", i, j): self.face_matcher.similarity(refs[i], refs[j]) for i, j in pairs}
        calls.update(self._manipulation_calls(refs))
        outcome = await gather_signals(calls, self.settings.signal_timeout_seconds)

        matrix = tuple(
            (i, j, clamp(outcome.values[("sim", i, j)]))
            for i, j in pairs if ("sim", i, j) in outcome.values
        )
        if outcome.failed or not matrix:
            verdict = self._fallback(user_id, outcome)
            confidence = verdict.confidence
        else:
            verdict = classify_photos(
                [s for _, _, s in matrix], self._collect_manipulations(outcome, refs), self.settings,
            )
            confidence = verdict.confidence * outcome.coverage

        result = PhotoConsistencyResult(
            user_id=user_id,
            photo_refs=tuple(refs),
            similarity_matrix=matrix,
            overall_consistency=verdict.consistency,
            max_filter_intensity=verdict.max_filter,
            max_beauty_ai_score=verdict.max_beauty_ai,
            max_body_morph_intensity=verdict.max_body_morph,
            confidence=confidence,
            flags=verdict.flags,
            passed=verdict.passed,
            degraded_signals=outcome.degraded,
        )
        await self.results.save(result)

        logger.info(
            f"Photo consistency for {user_id}: consistency={result.overall_consistency:.2f}, "
            f"flags={sorted(result.flags)}"
        )
        return await self.recorder.record(
            user_id=user_id,
            check_type=CheckType.PHOTO_CONSISTENCY,
            evidence=result,
            confidence=result.confidence,
            passed=result.passed,
            flags=result.flags,
            trigger_reason=reason,
            initiated_at=initiated_at,
        )

    async def check_recurrent(
        self,
        user_id: str,
        old_photo_refs: list,
        new_photo_refs: list,
        trigger: RecurrentTrigger,
    ) -> IdentityCheck:
        """Recurrent mode: cross-compare the verified set with the new set."""
        limit = self.settings.photo_max_profile_photos
        for name, refs in (("old", old_photo_refs), ("new", new_photo_refs)):
            if not refs or len(refs) > limit:
                raise InvalidInput(f"Between 1 and {limit} {name} photos are required")

        await self.recorder.ensure_attempt_allowed(user_id, CheckType.RECURRENT_AUTHENTICITY)
        initiated_at = utcnow()

        pairs = list(dict.fromkeys(product(old_photo_refs, new_photo_refs)))
        calls = {("sim", old, new): self.face_matcher.similarity(old, new) for old, new in pairs}
        calls.update(self._manipulation_calls(new_photo_refs))
        outcome = await gather_signals(calls, self.settings.signal_timeout_seconds)

        comparisons = tuple(
            (old, new, clamp(outcome.values[("sim", old, new)]))
            for old, new in pairs if ("sim", old, new) in outcome.values
        )
        if outcome.failed or not comparisons:
            verdict = self._fallback(user_id, outcome)
            swap = False
            confidence = verdict.confidence
        else:
            verdict = classify_photos(
                [s for _, _, s in comparisons],
                self._collect_manipulations(outcome, new_photo_refs),
                self.settings,
            )
            swap = identity_swap(verdict.consistency, self.settings)
            confidence = verdict.confidence * outcome.coverage

        flags = set(verdict.flags)
        if swap:
            flags.add("identity_swap_detected")

        result = RecurrentAuthenticityResult(
            user_id=user_id,
            trigger=trigger,
            old_photo_refs=tuple(old_photo_refs),
            new_photo_refs=tuple(new_photo_refs),
            comparisons=comparisons,
            facial_consistency=verdict.consistency,
            identity_swap_detected=swap,
            requires_reverification=swap or "low_photo_consistency" in flags,
            blocks_uploads=swap,
            max_filter_intensity=verdict.max_filter,
            max_beauty_ai_score=verdict.max_beauty_ai,
            max_body_morph_intensity=verdict.max_body_morph,
            confidence=confidence,
            flags=frozenset(flags),
            passed=not flags,
            degraded_signals=outcome.degraded,
        )
        await self.results.save(result)

        logger.info(
            f"Recurrent authenticity for {user_id} ({trigger.value}): "
            f"consistency={result.facial_consistency:.2f}, swap={swap}"
        )
        return await self.recorder.record(
            user_id=user_id,
            check_type=CheckType.RECURRENT_AUTHENTICITY,
            evidence=result,
            confidence=result.confidence,
            passed=result.passed,
            flags=result.flags,
            trigger_reason=trigger.value,
            initiated_at=initiated_at,
        )

    def _manipulation_calls(self, refs: list) -> dict:
        return {
            ("manip", idx, kind): self.manipulation_detector.score(ref, kind)
            for idx, ref in enumerate(refs)
            for kind in MANIPULATIONS
        }

    def _collect_manipulations(self, outcome, refs: list) -> dict:
        return {
            kind: [
                clamp(outcome.values[("manip", idx, kind)])
                for idx in range(len(refs)) if ("manip", idx, kind) in outcome.values
            ]
            for kind in MANIPULATIONS
        }

    def _fallback(self, user_id: str, outcome) -> PhotoVerdict:
        self.recorder.activity.emit(
            "ANALYSIS_FAILED", user_id, analyzer="photo_consistency", signals=list(outcome.degraded),
        )
        return _fallback_verdict(self.settings)
