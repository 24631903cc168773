"""
Capability interfaces for every sub-signal extractor.

Analyzers only see these interfaces. Production adapters wrap a hosted model
service, OpenCV or numpy; tests inject deterministic doubles.
"""

from abc import ABC, abstractmethod

from ..models.domain import (
    Artifact, Corpus, CorpusMatch, LinkSignal, Manipulation, Movement,
    MovementDetection, Spoof, SpoofSignal, VoicePrint,
)


class MovementDetector(ABC):
    @abstractmethod
    async def detect(self, video_ref: str, movement: Movement) -> MovementDetection:
        """Detect one micro-movement in a liveness video."""


class ArtifactDetector(ABC):
    @abstractmethod
    async def score(self, media_ref: str, artifact: Artifact) -> float:
        """Suspicion score in [0, 1] for one synthetic-texture artifact."""


class FaceMatcher(ABC):
    @abstractmethod
    async def similarity(self, photo_a: str, photo_b: str) -> float:
        """Facial similarity in [0, 1] between two photos."""


class PhotoManipulationDetector(ABC):
    @abstractmethod
    async def score(self, photo_ref: str, manipulation: Manipulation) -> float:
        """Intensity in [0, 1] of one kind of photo manipulation."""


class ReferenceCorpusMatcher(ABC):
    @abstractmethod
    async def match(self, photo_ref: str, corpus: Corpus) -> CorpusMatch:
        """Look a photo up in a celebrity, stock or adult reference set."""


class VoicePrintExtractor(ABC):
    @abstractmethod
    async def extract(self, audio_ref: str) -> VoicePrint:
        """Extract a voice print from an audio sample."""


class SpoofingDetector(ABC):
    @abstractmethod
    async def detect(self, audio_ref: str, spoof: Spoof) -> SpoofSignal:
        """Detect one anti-spoofing signal in an audio sample."""


class AccountLinkageLookup(ABC):
    @abstractmethod
    async def related_accounts(self, signal: LinkSignal, value: str, user_id: str) -> list:
        """Other user ids sharing ``value`` for the given attribute."""

    @abstractmethod
    async def ip_history(self, user_id: str) -> list:
        """The user's own IP observations (list of IpObservation)."""


class CoordinatedBehaviorFeed(ABC):
    @abstractmethod
    async def cluster_members(self, cluster_id: str, user_id: str) -> list:
        """Accounts the external feed places in the same interaction cluster."""


class RiskProfileStore(ABC):
    @abstractmethod
    async def flag_user(self, user_id: str, risk_level: str, reason: str, details: dict) -> None:
        """Write a risk marker for the downstream ban-evasion service."""

