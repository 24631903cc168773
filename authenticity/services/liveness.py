"""
Liveness Analyzer.

Runs a session through NOT_STARTED -> RECORDING -> PROCESSING -> COMPLETED.
Processing fans out three micro-movement detections and five synthetic
texture scores, fuses the texture scores into a deepfake score and
classifies the session.
"""

import logging
from dataclasses import dataclass

from ..config import Settings, get_settings
from ..errors import InvalidInput, InvalidStateTransition, NotFound
from ..models.domain import (
    Artifact, CheckType, LivenessSession, LivenessState, Movement,
    MovementDetection, new_id, utcnow,
)
from ..utils.vector_utils import clamp
from .audit import ActivityLog
from .detectors import ArtifactDetector, MovementDetector
from .fusion import ANALYSIS_ERROR_FLAG, NEUTRAL_SCORE, fuse, gather_signals, neutral_scores
from .ledger import ResultStore
from .recorder import CheckRecorder

logger = logging.getLogger(__name__)

MOVEMENTS = (Movement.BLINK, Movement.HEAD_ROTATION, Movement.LIP_MOVEMENT)

TEXTURE_WEIGHTS = {
    Artifact.QUANTIZATION: 0.25,
    Artifact.SHADOW: 0.20,
    Artifact.LIGHTING_REFLECTION: 0.20,
    Artifact.GAN_UPSAMPLING: 0.25,
    Artifact.FLOATING_FEATURES: 0.10,
}

TRANSITIONS = {
    LivenessState.NOT_STARTED: LivenessState.RECORDING,
    LivenessState.RECORDING: LivenessState.PROCESSING,
    LivenessState.PROCESSING: LivenessState.COMPLETED,
}


@dataclass(frozen=True)
class LivenessVerdict:
    movements_detected: int
    deepfake_score: float
    confidence: float
    flags: frozenset
    passed: bool


def classify_liveness(movements: dict, texture_scores: dict, settings: Settings) -> LivenessVerdict:
    """Pure fusion and threshold step for one liveness session."""
    detected = sum(1 for m in movements.values() if m.detected)
    score = fuse(texture_scores, TEXTURE_WEIGHTS)

    flags = set()
    if detected < settings.liveness_min_movements:
        flags.add("insufficient_movement")
    if score >= settings.liveness_deepfake_block_threshold:
        flags.add("deepfake_suspected")
    if score >= settings.liveness_deepfake_high_threshold:
        flags.add("deepfake_detected_high")
    # Hard flags: one strong artifact fails the session on its own
    if texture_scores.get(Artifact.GAN_UPSAMPLING, 0.0) >= settings.liveness_gan_sub_threshold:
        flags.add("gan_artifacts_detected")
    if texture_scores.get(Artifact.FLOATING_FEATURES, 0.0) >= settings.liveness_floating_sub_threshold:
        flags.add("floating_features_detected")

    confidence = 0.6 * (detected / len(MOVEMENTS)) + 0.4 * (1.0 - score)
    return LivenessVerdict(
        movements_detected=detected,
        deepfake_score=score,
        confidence=confidence,
        flags=frozenset(flags),
        passed=not flags,
    )


class LivenessAnalyzer:
    def __init__(
        self,
        movement_detector: MovementDetector,
        artifact_detector: ArtifactDetector,
        recorder: CheckRecorder,
        sessions: ResultStore | None = None,
        settings: Settings | None = None,
    ):
        self.movement_detector = movement_detector
        self.artifact_detector = artifact_detector
        self.recorder = recorder
        self.sessions = sessions or ResultStore(key_attr="session_id")
        self.settings = settings or get_settings()
        self.activity: ActivityLog = recorder.activity

    async def start_session(self, user_id: str, reason: str) -> LivenessSession:
        await self.recorder.ensure_attempt_allowed(user_id, CheckType.LIVENESS)
        session = LivenessSession(user_id=user_id, reason=reason)
        await self.sessions.save(session)
        self.activity.emit("LIVENESS_SESSION_STARTED", user_id, session_id=session.session_id, reason=reason)
        return session

    async def get_session(self, session_id: str) -> LivenessSession:
        session = await self.sessions.get(session_id)
        if session is None:
            raise NotFound(f"Liveness session not found: {session_id}")
        return session

    async def submit_video(self, session_id: str, video_ref: str, duration_seconds: float) -> LivenessSession:
        """Attach the recorded video and process the session to completion."""
        session = await self.get_session(session_id)
        if not video_ref:
            raise InvalidInput("video_ref is required")
        low, high = self.settings.liveness_min_video_seconds, self.settings.liveness_max_video_seconds
        if not low <= duration_seconds <= high:
            raise InvalidInput(f"Video duration must be between {low:.0f}s and {high:.0f}s")

        self._advance(session, LivenessState.RECORDING)
        session.video_ref = video_ref
        session.video_duration_seconds = duration_seconds
        await self.sessions.save(session)
        self.activity.emit(
            "LIVENESS_VIDEO_SUBMITTED", session.user_id,
            session_id=session_id, duration_seconds=duration_seconds,
        )
        return await self.process(session_id)

    async def process(self, session_id: str) -> LivenessSession:
        session = await self.get_session(session_id)
        self._advance(session, LivenessState.PROCESSING)
        await self.sessions.save(session)

        ref = session.video_ref
        calls = {m: self.movement_detector.detect(ref, m) for m in MOVEMENTS}
        calls.update({a: self.artifact_detector.score(ref, a) for a in TEXTURE_WEIGHTS})
        outcome = await gather_signals(calls, self.settings.signal_timeout_seconds)

        movements = {
            m: outcome.values.get(m, MovementDetection(detected=False, confidence=0.0))
            for m in MOVEMENTS
        }
        texture = {a: clamp(outcome.values[a]) for a in TEXTURE_WEIGHTS if a in outcome.values}

        if outcome.failed or not texture:
            self.activity.emit("ANALYSIS_FAILED", session.user_id, analyzer="liveness", signals=list(outcome.degraded))
            movements = {m: MovementDetection(detected=False, confidence=NEUTRAL_SCORE) for m in MOVEMENTS}
            texture = neutral_scores(TEXTURE_WEIGHTS)
            verdict = LivenessVerdict(
                movements_detected=0,
                deepfake_score=NEUTRAL_SCORE,
                confidence=self.settings.fallback_confidence,
                flags=frozenset({ANALYSIS_ERROR_FLAG}),
                passed=False,
            )
        else:
            verdict = classify_liveness(movements, texture, self.settings)
            verdict = LivenessVerdict(
                movements_detected=verdict.movements_detected,
                deepfake_score=verdict.deepfake_score,
                confidence=verdict.confidence * outcome.coverage,
                flags=verdict.flags,
                passed=verdict.passed,
            )

        session.movements = movements
        session.texture_scores = texture
        session.movements_detected = verdict.movements_detected
        session.deepfake_score = verdict.deepfake_score
        session.confidence = verdict.confidence
        session.flags = verdict.flags
        session.passed = verdict.passed
        session.degraded_signals = outcome.degraded
        self._advance(session, LivenessState.COMPLETED)
        session.completed_at = utcnow()
        session.check_id = new_id("check")

        await self.recorder.record(
            user_id=session.user_id,
            check_type=CheckType.LIVENESS,
            evidence=session,
            confidence=verdict.confidence,
            passed=verdict.passed,
            flags=verdict.flags,
            trigger_reason=session.reason,
            initiated_at=session.created_at,
            check_id=session.check_id,
        )
        await self.sessions.save(session)

        logger.info(
            f"Liveness {session_id}: passed={verdict.passed}, movements={verdict.movements_detected}, "
            f"deepfake={verdict.deepfake_score:.2f}, flags={sorted(verdict.flags)}"
        )
        return session

    def _advance(self, session: LivenessSession, target: LivenessState) -> None:
        if TRANSITIONS.get(session.state) != target:
            raise InvalidStateTransition(
                f"Liveness session {session.session_id} cannot move from "
                f"{session.state.value} to {target.value}"
            )
        session.state = target
