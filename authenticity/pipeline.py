"""
Wiring for the verification pipeline.

``Pipeline`` owns the shared ledger, case engine and activity log and builds
the five analyzers on top of whatever capability implementations it is
given. ``get_pipeline`` returns the production wiring and is the FastAPI
dependency that tests override.
"""

import logging
from functools import lru_cache

from .config import Settings, get_settings
from .services.audio_features import SpectralVoicePrintExtractor
from .services.audit import ActivityLog
from .services.case_engine import CaseEngine
from .services.cv_detectors import OpenCVArtifactDetector, OpenCVManipulationDetector, OrbFaceMatcher
from .services.detectors import (
    AccountLinkageLookup, ArtifactDetector, CoordinatedBehaviorFeed, FaceMatcher,
    MovementDetector, PhotoManipulationDetector, ReferenceCorpusMatcher,
    RiskProfileStore, SpoofingDetector, VoicePrintExtractor,
)
from .services.http_detectors import (
    RemoteArtifactDetector, RemoteCorpusMatcher, RemoteModelClient,
    RemoteMovementDetector, RemoteSpoofingDetector,
)
from .services.ledger import CaseStore, IdentityCheckLedger, InMemoryIdentityCheckLedger
from .services.liveness import LivenessAnalyzer
from .services.media_store import MediaStore
from .services.photo_consistency import PhotoConsistencyAnalyzer
from .services.recorder import CheckRecorder
from .services.risk_profile import (
    HttpAccountLinkageLookup, HttpCoordinatedBehaviorFeed, HttpRiskProfileStore,
)
from .services.social_graph import SocialGraphFraudAnalyzer
from .services.stolen_content import StolenContentAnalyzer
from .services.voice_signature import VoiceSignatureAnalyzer

logger = logging.getLogger(__name__)


class Pipeline:
    def __init__(
        self,
        movement_detector: MovementDetector,
        artifact_detector: ArtifactDetector,
        face_matcher: FaceMatcher,
        manipulation_detector: PhotoManipulationDetector,
        corpus_matcher: ReferenceCorpusMatcher,
        voice_extractor: VoicePrintExtractor,
        spoofing_detector: SpoofingDetector,
        linkage: AccountLinkageLookup,
        feed: CoordinatedBehaviorFeed,
        risk_store: RiskProfileStore | None = None,
        ledger: IdentityCheckLedger | None = None,
        archive: MediaStore | None = None,
        activity: ActivityLog | None = None,
        settings: Settings | None = None,
    ):
        self.settings = settings or get_settings()
        self.activity = activity or ActivityLog(retention=self.settings.activity_log_retention)
        self.ledger = ledger or InMemoryIdentityCheckLedger()
        self.cases = CaseStore()
        self.case_engine = CaseEngine(self.cases, risk_store=risk_store, activity=self.activity)
        self.recorder = CheckRecorder(
            self.ledger, self.case_engine, activity=self.activity, archive=archive, settings=self.settings,
        )

        self.liveness = LivenessAnalyzer(
            movement_detector, artifact_detector, self.recorder, settings=self.settings,
        )
        self.photos = PhotoConsistencyAnalyzer(
            face_matcher, manipulation_detector, self.recorder, settings=self.settings,
        )
        self.content = StolenContentAnalyzer(
            corpus_matcher, artifact_detector, self.recorder, settings=self.settings,
        )
        self.voice = VoiceSignatureAnalyzer(
            voice_extractor, spoofing_detector, self.recorder, settings=self.settings,
        )
        self.social_graph = SocialGraphFraudAnalyzer(
            linkage, feed, self.case_engine, risk_store=risk_store,
            activity=self.activity, settings=self.settings,
        )


def build_pipeline(settings: Settings | None = None) -> Pipeline:
    """Production wiring: hosted model service, OpenCV, numpy audio and HTTP risk systems."""
    settings = settings or get_settings()
    media = MediaStore()
    model_client = RemoteModelClient()
    if settings.artifact_backend == "opencv":
        artifact_detector = OpenCVArtifactDetector(media)
    else:
        artifact_detector = RemoteArtifactDetector(model_client)

    logger.info(f"Building verification pipeline (model service: {model_client.endpoint})")
    return Pipeline(
        movement_detector=RemoteMovementDetector(model_client),
        artifact_detector=artifact_detector,
        face_matcher=OrbFaceMatcher(media),
        manipulation_detector=OpenCVManipulationDetector(media),
        corpus_matcher=RemoteCorpusMatcher(model_client),
        voice_extractor=SpectralVoicePrintExtractor(media),
        spoofing_detector=RemoteSpoofingDetector(model_client),
        linkage=HttpAccountLinkageLookup(),
        feed=HttpCoordinatedBehaviorFeed(),
        risk_store=HttpRiskProfileStore(),
        archive=media,
        settings=settings,
    )


@lru_cache()
def get_pipeline() -> Pipeline:
    return build_pipeline()
