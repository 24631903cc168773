"""Tests for stolen-photo lookups and deepfake detection."""

import pytest

from authenticity.errors import InvalidInput
from authenticity.models.domain import Artifact, CheckStatus, Corpus, CorpusMatch, RiskLevel
from authenticity.services.stolen_content import classify_deepfake, classify_stolen
from fakes import FakeArtifactDetector, FakeCorpusMatcher, make_pipeline, make_settings


class TestClassifiers:
    def test_no_match_is_clean(self):
        verdict = classify_stolen({c: CorpusMatch(matched=False) for c in Corpus})
        assert verdict.detected is False
        assert verdict.flags == frozenset()
        assert verdict.confidence == 0.5

    def test_confidence_is_mean_over_hits(self):
        verdict = classify_stolen({
            Corpus.CELEBRITY: CorpusMatch(True, 0.9, 0.9),
            Corpus.STOCK: CorpusMatch(True, 0.8, 0.7),
            Corpus.ADULT: CorpusMatch(False),
        })
        assert verdict.confidence == pytest.approx(0.8)
        assert verdict.flags == frozenset({"stolen_photo_detected", "celebrity_match", "stock_photo_match"})

    def test_single_strong_artifact_is_flagged_below_block_threshold(self):
        scores = {a: 0.1 for a in Artifact}
        scores[Artifact.HAIR_EDGE] = 0.75
        verdict = classify_deepfake(scores, make_settings())
        assert verdict.score == pytest.approx(0.23)
        assert verdict.is_deepfake is False
        assert verdict.flags == frozenset({"hair_edge_artifacts"})
        assert verdict.confidence == pytest.approx(0.77)

    def test_block_and_high_thresholds(self):
        settings = make_settings()
        medium = classify_deepfake({a: 0.65 for a in Artifact}, settings)
        assert medium.is_deepfake is True
        assert medium.high_confidence is False

        high = classify_deepfake({a: 0.8 for a in Artifact}, settings)
        assert high.high_confidence is True
        assert "deepfake_detected_high" in high.flags


class TestStolenPhoto:
    @pytest.mark.asyncio
    async def test_celebrity_match_rejects(self):
        matcher = FakeCorpusMatcher({Corpus.CELEBRITY: CorpusMatch(True, similarity=0.9, confidence=0.9)})
        pipeline = make_pipeline(corpus_matcher=matcher)
        check = await pipeline.content.check_stolen_photo("eve", "photos/eve.jpg")
        result = check.evidence

        assert result.stolen_photo_detected is True
        assert result.celebrity_match is True
        assert result.stock_photo_match is False
        assert check.confidence == pytest.approx(0.9)
        assert check.status == CheckStatus.REJECTED

        case = await pipeline.cases.find_by_check(check.check_id)
        assert case.case_type == "STOLEN_CONTENT"
        assert case.priority == RiskLevel.HIGH
        assert case.action_taken.content_removed is True

    @pytest.mark.asyncio
    async def test_overconfident_match_is_clamped(self):
        matcher = FakeCorpusMatcher({Corpus.STOCK: CorpusMatch(True, similarity=1.3, confidence=1.2)})
        pipeline = make_pipeline(corpus_matcher=matcher)
        check = await pipeline.content.check_stolen_photo("eve", "photos/eve.jpg")

        assert check.confidence == 1.0
        assert check.evidence.stock_photo_match is True
        assert check.status == CheckStatus.REJECTED

    @pytest.mark.asyncio
    async def test_original_photo_approved(self):
        pipeline = make_pipeline()
        check = await pipeline.content.check_stolen_photo("alice", "photos/alice.jpg")
        assert check.status == CheckStatus.APPROVED
        assert await pipeline.cases.find_by_check(check.check_id) is None

    @pytest.mark.asyncio
    async def test_corpus_timeout_reduces_confidence(self):
        pipeline = make_pipeline(corpus_matcher=FakeCorpusMatcher(slow={Corpus.ADULT}))
        check = await pipeline.content.check_stolen_photo("alice", "photos/alice.jpg")
        assert check.passed is True
        assert check.confidence == pytest.approx(0.5 * 2 / 3)
        assert check.evidence.degraded_signals == ("adult",)

    @pytest.mark.asyncio
    async def test_missing_reference(self):
        pipeline = make_pipeline()
        with pytest.raises(InvalidInput):
            await pipeline.content.check_stolen_photo("alice", "")


class TestDeepfake:
    @pytest.mark.asyncio
    async def test_high_confidence_deepfake_locks_account(self):
        pipeline = make_pipeline(artifact_detector=FakeArtifactDetector(default=0.9))
        check = await pipeline.content.detect_deepfake("trudy", "media/trudy.mp4")

        assert check.evidence.is_deepfake is True
        assert check.evidence.high_confidence is True
        assert check.status == CheckStatus.REJECTED

        case = await pipeline.cases.find_by_check(check.check_id)
        assert case.priority == RiskLevel.CRITICAL
        assert case.action_taken.account_locked is True
        assert case.action_taken.ban_evasion_flagged is True

    @pytest.mark.asyncio
    async def test_clean_media(self):
        pipeline = make_pipeline()
        check = await pipeline.content.detect_deepfake("alice", "media/alice.jpg")
        assert check.status == CheckStatus.APPROVED
        assert check.confidence == pytest.approx(0.95)

    @pytest.mark.asyncio
    async def test_detector_error_falls_back(self):
        pipeline = make_pipeline(artifact_detector=FakeArtifactDetector(broken={Artifact.QUANTIZATION}))
        check = await pipeline.content.detect_deepfake("alice", "media/alice.jpg")
        assert check.flags == frozenset({"analysis_error"})
        assert check.evidence.deepfake_score == 0.5
        assert check.status == CheckStatus.MANUAL_REVIEW

    @pytest.mark.asyncio
    async def test_out_of_range_artifact_scores_are_clamped(self):
        pipeline = make_pipeline(artifact_detector=FakeArtifactDetector(default=1.4))
        check = await pipeline.content.detect_deepfake("trudy", "media/trudy.jpg")

        assert all(s == 1.0 for s in check.evidence.artifact_scores.values())
        assert check.evidence.deepfake_score == 1.0
        assert check.confidence == 1.0
