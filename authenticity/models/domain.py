"""Domain records produced by the signal analyzers."""

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Optional, Union


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_id(prefix: str) -> str:
    return f"{prefix}_{uuid.uuid4().hex[:12]}"


class CheckType(str, Enum):
    LIVENESS = "LIVENESS"
    PHOTO_CONSISTENCY = "PHOTO_CONSISTENCY"
    RECURRENT_AUTHENTICITY = "RECURRENT_AUTHENTICITY"
    ANTI_STOLEN = "ANTI_STOLEN"
    ANTI_DEEPFAKE = "ANTI_DEEPFAKE"
    VOICE_SIGNATURE = "VOICE_SIGNATURE"


class CheckStatus(str, Enum):
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
    FLAGGED = "FLAGGED"
    MANUAL_REVIEW = "MANUAL_REVIEW"


class RiskLevel(str, Enum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    CRITICAL = "CRITICAL"


# Ordering used when comparing risk levels and case priorities.
RISK_ORDER = [RiskLevel.LOW, RiskLevel.MEDIUM, RiskLevel.HIGH, RiskLevel.CRITICAL]


class CaseStatus(str, Enum):
    OPEN = "OPEN"
    IN_REVIEW = "IN_REVIEW"
    RESOLVED = "RESOLVED"
    DISMISSED = "DISMISSED"


class LivenessState(str, Enum):
    NOT_STARTED = "NOT_STARTED"
    RECORDING = "RECORDING"
    PROCESSING = "PROCESSING"
    COMPLETED = "COMPLETED"


class RecurrentTrigger(str, Enum):
    PROFILE_EDIT = "PROFILE_EDIT"
    PERIODIC_REVERIFICATION = "PERIODIC_REVERIFICATION"
    SUSPICIOUS_PATTERN = "SUSPICIOUS_PATTERN"


class Movement(str, Enum):
    BLINK = "blink"
    HEAD_ROTATION = "head_rotation"
    LIP_MOVEMENT = "lip_movement"


class Artifact(str, Enum):
    QUANTIZATION = "quantization"
    SHADOW = "shadow"
    HAIR_EDGE = "hair_edge"
    LIGHTING_REFLECTION = "lighting_reflection"
    GAN_UPSAMPLING = "gan_upsampling"
    FLOATING_FEATURES = "floating_features"


class Manipulation(str, Enum):
    FILTER = "filter"
    BEAUTY_AI = "beauty_ai"
    BODY_MORPH = "body_morph"


class Corpus(str, Enum):
    CELEBRITY = "celebrity"
    STOCK = "stock"
    ADULT = "adult"


class Spoof(str, Enum):
    VOICE_CHANGER = "voice_changer"
    VOICE_CLONE = "voice_clone"
    STUDIO_FILTER = "studio_filter"


class LinkSignal(str, Enum):
    PHONE = "phone"
    DEVICE = "device"
    PAYOUT = "payout"
    CARD = "card"
    IP = "ip"
    INTERACTION = "interaction"


# ---------------------------------------------------------------------------
# Sub-signal values returned by detectors
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class MovementDetection:
    detected: bool
    confidence: float


@dataclass(frozen=True)
class CorpusMatch:
    matched: bool
    similarity: float = 0.0
    confidence: float = 0.0
    reference_id: Optional[str] = None


@dataclass(frozen=True)
class SpoofSignal:
    detected: bool
    confidence: float = 0.0


@dataclass(frozen=True)
class IpObservation:
    ip_address: str
    region: str
    seen_at: Optional[datetime] = None


@dataclass(frozen=True)
class VoicePrint:
    """Compact numeric fingerprint of a speaker."""
    tone: tuple
    timbre: tuple
    spectral: tuple
    pace: float
    pitch_range: tuple  # (low_hz, high_hz)
    duration_seconds: float = 0.0


# ---------------------------------------------------------------------------
# Analyzer results
# ---------------------------------------------------------------------------


@dataclass
class LivenessSession:
    user_id: str
    reason: str
    session_id: str = field(default_factory=lambda: new_id("live"))
    state: LivenessState = LivenessState.NOT_STARTED
    video_ref: Optional[str] = None
    video_duration_seconds: float = 0.0
    movements: dict = field(default_factory=dict)  # Movement -> MovementDetection
    texture_scores: dict = field(default_factory=dict)  # Artifact -> float
    movements_detected: int = 0
    deepfake_score: float = 0.0
    confidence: float = 0.0
    flags: frozenset = frozenset()
    passed: bool = False
    degraded_signals: tuple = ()
    check_id: Optional[str] = None
    created_at: datetime = field(default_factory=utcnow)
    completed_at: Optional[datetime] = None


@dataclass(frozen=True)
class PhotoConsistencyResult:
    user_id: str
    photo_refs: tuple
    similarity_matrix: tuple  # ((i, j, similarity), ...)
    overall_consistency: float
    max_filter_intensity: float
    max_beauty_ai_score: float
    max_body_morph_intensity: float
    confidence: float
    flags: frozenset
    passed: bool
    degraded_signals: tuple = ()
    result_id: str = field(default_factory=lambda: new_id("photo"))


@dataclass(frozen=True)
class RecurrentAuthenticityResult:
    user_id: str
    trigger: RecurrentTrigger
    old_photo_refs: tuple
    new_photo_refs: tuple
    comparisons: tuple  # ((old_ref, new_ref, similarity), ...)
    facial_consistency: float
    identity_swap_detected: bool
    requires_reverification: bool
    blocks_uploads: bool
    max_filter_intensity: float
    max_beauty_ai_score: float
    max_body_morph_intensity: float
    confidence: float
    flags: frozenset
    passed: bool
    degraded_signals: tuple = ()
    result_id: str = field(default_factory=lambda: new_id("recur"))


@dataclass(frozen=True)
class StolenPhotoResult:
    user_id: str
    photo_ref: str
    matches: dict  # Corpus -> CorpusMatch
    stolen_photo_detected: bool
    confidence: float
    flags: frozenset
    passed: bool
    degraded_signals: tuple = ()
    result_id: str = field(default_factory=lambda: new_id("stolen"))

    @property
    def celebrity_match(self) -> bool:
        return self._matched(Corpus.CELEBRITY)

    @property
    def stock_photo_match(self) -> bool:
        return self._matched(Corpus.STOCK)

    @property
    def adult_content_match(self) -> bool:
        return self._matched(Corpus.ADULT)

    def _matched(self, corpus: Corpus) -> bool:
        match = self.matches.get(corpus)
        return bool(match and match.matched)


@dataclass(frozen=True)
class DeepfakeResult:
    user_id: str
    media_ref: str
    artifact_scores: dict  # Artifact -> float
    deepfake_score: float
    is_deepfake: bool
    high_confidence: bool
    confidence: float
    flags: frozenset
    passed: bool
    degraded_signals: tuple = ()
    result_id: str = field(default_factory=lambda: new_id("fake"))


@dataclass(frozen=True)
class VoiceSignature:
    user_id: str
    calibration_audio_ref: str
    voice_print: VoicePrint
    signature_id: str = field(default_factory=lambda: new_id("voice"))
    created_at: datetime = field(default_factory=utcnow)


@dataclass
class VoiceSignatureUsage:
    """Mutable counters kept beside an immutable signature."""
    verification_count: int = 0
    last_verified_at: Optional[datetime] = None


@dataclass(frozen=True)
class VoiceVerificationResult:
    user_id: str
    audio_ref: str
    signature_id: str
    similarity: float
    component_scores: dict  # name -> float
    voice_match: bool
    spoofing: dict  # Spoof -> SpoofSignal
    confidence: float
    flags: frozenset
    passed: bool
    degraded_signals: tuple = ()
    result_id: str = field(default_factory=lambda: new_id("vverify"))

    @property
    def spoofing_detected(self) -> bool:
        return any(signal.detected for signal in self.spoofing.values())


@dataclass(frozen=True)
class FraudSignal:
    signal: LinkSignal
    related_user_ids: frozenset
    relation_count: int
    risk_score: float
    fraud_detected: bool
    details: dict = field(default_factory=dict)


@dataclass(frozen=True)
class SocialGraphFraudAnalysis:
    user_id: str
    requested_by: str
    signals: dict  # LinkSignal -> FraudSignal (absent signals omitted)
    clusters: dict  # LinkSignal -> frozenset of related user ids
    repeated_catfish_pattern: bool
    coordinated_accounts: bool
    mass_registration_pattern: bool
    pattern_multiplier: float
    mean_risk_score: float
    fraud_probability: float
    risk_level: RiskLevel
    flags: frozenset
    analysis_id: str = field(default_factory=lambda: new_id("graph"))
    created_at: datetime = field(default_factory=utcnow)


AnalyzerResult = Union[
    LivenessSession,
    PhotoConsistencyResult,
    RecurrentAuthenticityResult,
    StolenPhotoResult,
    DeepfakeResult,
    VoiceVerificationResult,
]

EVIDENCE_TYPES = {
    CheckType.LIVENESS: LivenessSession,
    CheckType.PHOTO_CONSISTENCY: PhotoConsistencyResult,
    CheckType.RECURRENT_AUTHENTICITY: RecurrentAuthenticityResult,
    CheckType.ANTI_STOLEN: StolenPhotoResult,
    CheckType.ANTI_DEEPFAKE: DeepfakeResult,
    CheckType.VOICE_SIGNATURE: VoiceVerificationResult,
}

# Flags that turn a failure into an outright rejection instead of manual review.
HARD_REJECT_FLAGS = frozenset({
    "deepfake_detected_high",
    "stolen_photo_detected",
    "identity_swap_detected",
})


def derive_status(passed: bool, flags) -> CheckStatus:
    """Map a verdict and its flag set onto the ledger status."""
    if passed:
        return CheckStatus.FLAGGED if flags else CheckStatus.APPROVED
    if HARD_REJECT_FLAGS.intersection(flags):
        return CheckStatus.REJECTED
    return CheckStatus.MANUAL_REVIEW


@dataclass(frozen=True)
class IdentityCheck:
    """Canonical, immutable decision record written once per check."""
    user_id: str
    check_type: CheckType
    confidence: float
    passed: bool
    flags: frozenset
    evidence: AnalyzerResult
    trigger_reason: str
    initiated_at: datetime
    completed_at: datetime = field(default_factory=utcnow)
    check_id: str = field(default_factory=lambda: new_id("check"))

    def __post_init__(self):
        expected = EVIDENCE_TYPES[self.check_type]
        if not isinstance(self.evidence, expected):
            raise TypeError(
                f"{self.check_type.value} evidence must be {expected.__name__}, "
                f"got {type(self.evidence).__name__}"
            )
        if not 0.0 <= self.confidence <= 1.0:
            raise ValueError(f"confidence out of range: {self.confidence}")

    @property
    def status(self) -> CheckStatus:
        return derive_status(self.passed, self.flags)


@dataclass
class ActionTaken:
    account_locked: bool = False
    content_removed: bool = False
    notification_sent: bool = False
    ban_evasion_flagged: bool = False


@dataclass
class SafetyCase:
    user_id: str
    case_type: str
    priority: RiskLevel
    flags: frozenset
    check_ids: tuple = ()
    analysis_id: Optional[str] = None
    status: CaseStatus = CaseStatus.OPEN
    action_taken: ActionTaken = field(default_factory=ActionTaken)
    case_id: str = field(default_factory=lambda: new_id("case"))
    created_at: datetime = field(default_factory=utcnow)


@dataclass(frozen=True)
class AuditEvent:
    event: str
    user_id: str
    metadata: dict
    timestamp: datetime = field(default_factory=utcnow)
