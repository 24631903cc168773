"""
Social-Graph Fraud Analyzer.

Looks for accounts linked to a target account through shared phone numbers,
devices, payout accounts, cards, IP history and interaction clusters, then
combines the overlaps into composite fraud patterns and a risk level.
Admin-only; every run is appended to the user's analysis history.
"""

import logging
from collections import Counter
from dataclasses import dataclass

import numpy as np

from ..config import Settings, get_settings
from ..errors import InvalidInput
from ..models.domain import (
    LinkSignal, FraudSignal, RiskLevel, SocialGraphFraudAnalysis,
)
from ..utils.vector_utils import clamp
from .audit import ActivityLog
from .case_engine import CaseEngine
from .detectors import AccountLinkageLookup, CoordinatedBehaviorFeed, RiskProfileStore
from .fusion import ANALYSIS_ERROR_FLAG, NEUTRAL_SCORE, gather_signals
from .ledger import ResultStore
from .risk_profile import notify_risk_store

logger = logging.getLogger(__name__)

PATTERN_MULTIPLIERS = {
    "repeated_catfish_pattern": 1.5,
    "coordinated_accounts": 1.3,
    "mass_registration_pattern": 1.4,
}

SIGNAL_FLAGS = {
    LinkSignal.PHONE: "phone_reuse",
    LinkSignal.DEVICE: "device_reuse",
    LinkSignal.PAYOUT: "payout_account_reuse",
    LinkSignal.CARD: "card_reuse",
    LinkSignal.IP: "ip_region_mismatch",
    LinkSignal.INTERACTION: "interaction_cluster",
}


@dataclass(frozen=True)
class AccountAttributes:
    phone_number: str | None = None
    device_fingerprint: str | None = None
    payout_account_id: str | None = None
    card_fingerprint: str | None = None
    ip_address: str | None = None
    interaction_cluster_id: str | None = None

    def is_empty(self) -> bool:
        return not any(vars(self).values())


@dataclass(frozen=True)
class GraphVerdict:
    clusters: dict
    repeated_catfish_pattern: bool
    coordinated_accounts: bool
    mass_registration_pattern: bool
    pattern_multiplier: float
    mean_risk_score: float
    fraud_probability: float
    risk_level: RiskLevel
    flags: frozenset


def overlap_signal(signal: LinkSignal, related, threshold: int, step: float,
                   details: dict | None = None) -> FraudSignal:
    """Risk grows with the number of related accounts, capped at 1.0."""
    related = frozenset(related)
    count = len(related)
    return FraudSignal(
        signal=signal,
        related_user_ids=related,
        relation_count=count,
        risk_score=min(1.0, count * step),
        fraud_detected=count >= threshold,
        details=details or {},
    )


def ip_signal(ip_address: str, history: list, related, threshold: int, step: float) -> FraudSignal:
    """
    Region diversity of the user's own IP history.

    The relation count is the number of distinct regions seen; a current IP
    whose region differs from the dominant historical region adds one step.
    """
    regions = [o.region for o in history if o.region]
    distinct = len(set(regions))
    dominant = Counter(regions).most_common(1)[0][0] if regions else None
    current = next((o.region for o in reversed(history) if o.ip_address == ip_address), None)
    mismatch = current is not None and dominant is not None and current != dominant

    return FraudSignal(
        signal=LinkSignal.IP,
        related_user_ids=frozenset(related),
        relation_count=distinct,
        risk_score=min(1.0, (distinct + (1 if mismatch else 0)) * step),
        fraud_detected=distinct >= threshold,
        details={"distinct_regions": distinct, "region_mismatch": mismatch},
    )


def risk_level_for(probability: float, settings: Settings) -> RiskLevel:
    if probability >= settings.fraud_critical_threshold:
        return RiskLevel.CRITICAL
    if probability >= settings.fraud_high_threshold:
        return RiskLevel.HIGH
    if probability >= settings.fraud_medium_threshold:
        return RiskLevel.MEDIUM
    return RiskLevel.LOW


def pattern_multiplier(patterns: dict) -> float:
    multiplier = 1.0
    for name, active in patterns.items():
        if active:
            multiplier *= PATTERN_MULTIPLIERS[name]
    return multiplier


def fuse_graph(signals: dict, settings: Settings) -> GraphVerdict:
    """Pure fusion of the non-null overlap signals."""
    clusters = {s: sig.related_user_ids for s, sig in signals.items()}

    def size(s: LinkSignal) -> int:
        return len(clusters.get(s, ()))

    interaction = signals.get(LinkSignal.INTERACTION)
    patterns = {
        "repeated_catfish_pattern": size(LinkSignal.PHONE) >= 2 and size(LinkSignal.DEVICE) >= 2,
        "coordinated_accounts": (
            interaction is not None
            and (size(LinkSignal.PHONE) > 0 or size(LinkSignal.DEVICE) > 0)
        ),
        "mass_registration_pattern": size(LinkSignal.PHONE) >= 5 or size(LinkSignal.DEVICE) >= 5,
    }
    multiplier = pattern_multiplier(patterns)
    mean_risk = float(np.mean([clamp(sig.risk_score) for sig in signals.values()])) if signals else 0.0
    probability = clamp(mean_risk * multiplier)

    flags = {SIGNAL_FLAGS[s] for s, sig in signals.items() if sig.fraud_detected}
    flags.update(name for name, active in patterns.items() if active)

    return GraphVerdict(
        clusters=clusters,
        repeated_catfish_pattern=patterns["repeated_catfish_pattern"],
        coordinated_accounts=patterns["coordinated_accounts"],
        mass_registration_pattern=patterns["mass_registration_pattern"],
        pattern_multiplier=multiplier,
        mean_risk_score=mean_risk,
        fraud_probability=probability,
        risk_level=risk_level_for(probability, settings),
        flags=frozenset(flags),
    )


class SocialGraphFraudAnalyzer:
    def __init__(
        self,
        linkage: AccountLinkageLookup,
        feed: CoordinatedBehaviorFeed,
        case_engine: CaseEngine,
        risk_store: RiskProfileStore | None = None,
        history: ResultStore | None = None,
        activity: ActivityLog | None = None,
        settings: Settings | None = None,
    ):
        self.linkage = linkage
        self.feed = feed
        self.case_engine = case_engine
        self.risk_store = risk_store
        self.history = history or ResultStore(key_attr="analysis_id")
        self.activity = activity or case_engine.activity
        self.settings = settings or get_settings()

    async def analyze(self, target_user_id: str, attributes: AccountAttributes,
                      requested_by: str) -> SocialGraphFraudAnalysis:
        if not target_user_id:
            raise InvalidInput("target_user_id is required")
        if attributes.is_empty():
            raise InvalidInput("At least one account attribute is required")

        outcome = await gather_signals(self._signal_calls(target_user_id, attributes),
                                       self.settings.signal_timeout_seconds)

        if outcome.failed:
            self.activity.emit(
                "ANALYSIS_FAILED", target_user_id, analyzer="social_graph", signals=list(outcome.degraded),
            )
            signals = {}
            verdict = GraphVerdict(
                clusters={},
                repeated_catfish_pattern=False,
                coordinated_accounts=False,
                mass_registration_pattern=False,
                pattern_multiplier=1.0,
                mean_risk_score=NEUTRAL_SCORE,
                fraud_probability=NEUTRAL_SCORE,
                risk_level=risk_level_for(NEUTRAL_SCORE, self.settings),
                flags=frozenset({ANALYSIS_ERROR_FLAG}),
            )
        else:
            signals = dict(outcome.values)
            verdict = fuse_graph(signals, self.settings)

        analysis = SocialGraphFraudAnalysis(
            user_id=target_user_id,
            requested_by=requested_by,
            signals=signals,
            clusters=verdict.clusters,
            repeated_catfish_pattern=verdict.repeated_catfish_pattern,
            coordinated_accounts=verdict.coordinated_accounts,
            mass_registration_pattern=verdict.mass_registration_pattern,
            pattern_multiplier=verdict.pattern_multiplier,
            mean_risk_score=verdict.mean_risk_score,
            fraud_probability=verdict.fraud_probability,
            risk_level=verdict.risk_level,
            flags=verdict.flags,
        )
        await self.history.save(analysis)
        self.activity.emit(
            "SOCIAL_GRAPH_ANALYZED", target_user_id,
            analysis_id=analysis.analysis_id, risk_level=analysis.risk_level.value,
            requested_by=requested_by,
        )
        logger.info(
            f"Social graph analysis for {target_user_id}: probability={analysis.fraud_probability:.2f}, "
            f"level={analysis.risk_level.value}, flags={sorted(analysis.flags)}"
        )

        if analysis.risk_level in (RiskLevel.HIGH, RiskLevel.CRITICAL):
            await self._escalate(analysis)
        return analysis

    async def list_history(self, user_id: str) -> list:
        analyses = await self.history.list_for_user(user_id)
        return sorted(analyses, key=lambda a: a.created_at, reverse=True)

    def _signal_calls(self, user_id: str, attrs: AccountAttributes) -> dict:
        s = self.settings
        calls = {}
        simple = (
            (LinkSignal.PHONE, attrs.phone_number, s.fraud_phone_threshold, s.fraud_phone_step),
            (LinkSignal.DEVICE, attrs.device_fingerprint, s.fraud_device_threshold, s.fraud_device_step),
            (LinkSignal.PAYOUT, attrs.payout_account_id, s.fraud_payout_threshold, s.fraud_payout_step),
            (LinkSignal.CARD, attrs.card_fingerprint, s.fraud_card_threshold, s.fraud_card_step),
        )
        for signal, value, threshold, step in simple:
            if value:
                calls[signal] = self._overlap(signal, value, user_id, threshold, step)
        if attrs.ip_address:
            calls[LinkSignal.IP] = self._ip(attrs.ip_address, user_id)
        if attrs.interaction_cluster_id:
            calls[LinkSignal.INTERACTION] = self._interaction(attrs.interaction_cluster_id, user_id)
        return calls

    async def _overlap(self, signal, value, user_id, threshold, step) -> FraudSignal:
        related = await self.linkage.related_accounts(signal, value, user_id)
        return overlap_signal(signal, related, threshold, step)

    async def _ip(self, ip_address: str, user_id: str) -> FraudSignal:
        history = await self.linkage.ip_history(user_id)
        related = await self.linkage.related_accounts(LinkSignal.IP, ip_address, user_id)
        return ip_signal(ip_address, history, related,
                         self.settings.fraud_ip_region_threshold, self.settings.fraud_ip_step)

    async def _interaction(self, cluster_id: str, user_id: str) -> FraudSignal:
        members = await self.feed.cluster_members(cluster_id, user_id)
        return overlap_signal(
            LinkSignal.INTERACTION, members,
            self.settings.fraud_interaction_threshold, self.settings.fraud_interaction_step,
            details={"cluster_id": cluster_id},
        )

    async def _escalate(self, analysis: SocialGraphFraudAnalysis) -> None:
        try:
            await self.case_engine.escalate_analysis(analysis)
        except Exception as e:
            logger.error(f"Case creation for analysis {analysis.analysis_id} failed: {e!r}")

        await notify_risk_store(
            self.risk_store, analysis.user_id, analysis.risk_level,
            reason="social_graph_fraud",
            details={
                "analysis_id": analysis.analysis_id,
                "fraud_probability": round(analysis.fraud_probability, 4),
                "flags": sorted(analysis.flags),
            },
            activity=self.activity,
        )
