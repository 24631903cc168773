"""
Detectors backed by the hosted model service.

The service receives media references, not bytes, and answers one
sub-signal per request so each call can time out on its own.
"""

import logging
import time

import httpx

from ..config import get_settings
from ..models.domain import (
    Artifact, Corpus, CorpusMatch, Movement, MovementDetection, Spoof, SpoofSignal,
)
from .detectors import ArtifactDetector, MovementDetector, ReferenceCorpusMatcher, SpoofingDetector

logger = logging.getLogger(__name__)


class RemoteModelClient:
    """
    Thin httpx wrapper around the model service API.
    Authenticates with an API key header.
    """

    def __init__(self, endpoint: str | None = None, api_key: str | None = None, timeout: float | None = None):
        settings = get_settings()
        self.endpoint = (endpoint or settings.detector_service_endpoint).rstrip("/")
        self.api_key = api_key if api_key is not None else settings.detector_service_api_key
        self.timeout = timeout or settings.http_timeout_seconds

    async def analyze(self, capability: str, media_ref: str, signal: str) -> dict:
        """
        Run one detector on the model service.

        Args:
            capability: detector family, e.g. "movement" or "spoofing"
            media_ref: storage reference of the media
            signal: sub-signal within the family

        Returns:
            Decoded JSON body of the response
        """
        start_time = time.time()
        url = f"{self.endpoint}/v1/{capability}/{signal}"
        headers = {"X-Api-Key": self.api_key}

        async with httpx.AsyncClient() as client:
            response = await client.post(
                url, headers=headers, json={"mediaRef": media_ref}, timeout=self.timeout
            )
            response.raise_for_status()
            result = response.json()

        elapsed = (time.time() - start_time) * 1000
        logger.debug(f"Model service {capability}/{signal} answered in {elapsed:.0f}ms")
        return result


class RemoteMovementDetector(MovementDetector):
    def __init__(self, client: RemoteModelClient):
        self.client = client

    async def detect(self, video_ref: str, movement: Movement) -> MovementDetection:
        result = await self.client.analyze("movement", video_ref, movement.value)
        return MovementDetection(
            detected=bool(result.get("detected", False)),
            confidence=float(result.get("confidence", 0.0)),
        )


class RemoteArtifactDetector(ArtifactDetector):
    def __init__(self, client: RemoteModelClient):
        self.client = client

    async def score(self, media_ref: str, artifact: Artifact) -> float:
        result = await self.client.analyze("artifact", media_ref, artifact.value)
        return float(result.get("score", 0.0))


class RemoteCorpusMatcher(ReferenceCorpusMatcher):
    def __init__(self, client: RemoteModelClient):
        self.client = client

    async def match(self, photo_ref: str, corpus: Corpus) -> CorpusMatch:
        result = await self.client.analyze("corpus", photo_ref, corpus.value)
        return CorpusMatch(
            matched=bool(result.get("matched", False)),
            similarity=float(result.get("similarity", 0.0)),
            confidence=float(result.get("confidence", 0.0)),
            reference_id=result.get("referenceId"),
        )


class RemoteSpoofingDetector(SpoofingDetector):
    def __init__(self, client: RemoteModelClient):
        self.client = client

    async def detect(self, audio_ref: str, spoof: Spoof) -> SpoofSignal:
        result = await self.client.analyze("spoofing", audio_ref, spoof.value)
        return SpoofSignal(
            detected=bool(result.get("detected", False)),
            confidence=float(result.get("confidence", 0.0)),
        )
