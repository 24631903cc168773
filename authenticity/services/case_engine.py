"""
Escalation / Case Engine.

``evaluate`` is a pure mapping from a classified result to a case decision.
``CaseEngine`` persists at most one SafetyCase per identity check or
social-graph analysis.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from ..models.domain import (
    ActionTaken, CheckType, IdentityCheck, RiskLevel, SafetyCase,
    SocialGraphFraudAnalysis,
)
from .audit import ActivityLog
from .detectors import RiskProfileStore
from .ledger import CaseStore
from .risk_profile import notify_risk_store

logger = logging.getLogger(__name__)

CASE_TYPES = {
    CheckType.LIVENESS: "LIVENESS_FAILURE",
    CheckType.PHOTO_CONSISTENCY: "PHOTO_INCONSISTENCY",
    CheckType.RECURRENT_AUTHENTICITY: "RECURRENT_INCONSISTENCY",
    CheckType.ANTI_STOLEN: "STOLEN_CONTENT",
    CheckType.ANTI_DEEPFAKE: "DEEPFAKE",
    CheckType.VOICE_SIGNATURE: "VOICE_MISMATCH",
}
SOCIAL_GRAPH_CASE_TYPE = "SOCIAL_GRAPH_FRAUD"

CRITICAL_FLAGS = frozenset({"deepfake_detected_high", "identity_swap_detected"})
HIGH_FLAGS = frozenset({
    "stolen_photo_detected",
    "deepfake_detected",
    "voice_clone_detected",
})


@dataclass(frozen=True)
class CaseDecision:
    case_type: str
    priority: RiskLevel
    lock_account: bool = False
    remove_content: bool = False
    flag_ban_evasion: bool = False


def evaluate(
    check_type: Optional[CheckType],
    passed: bool,
    flags,
    risk_level: Optional[RiskLevel] = None,
) -> Optional[CaseDecision]:
    """
    Decide whether a result needs a case, and at which priority.

    ``check_type`` is None for social-graph analyses, which escalate on
    risk level alone.
    """
    flags = frozenset(flags)
    elevated = risk_level in (RiskLevel.HIGH, RiskLevel.CRITICAL)

    if check_type is None:
        if not elevated:
            return None
        return CaseDecision(
            case_type=SOCIAL_GRAPH_CASE_TYPE,
            priority=risk_level,
            flag_ban_evasion=risk_level == RiskLevel.CRITICAL,
        )

    if passed and not flags and not elevated:
        return None

    case_type = CASE_TYPES[check_type]
    if "identity_swap_detected" in flags:
        case_type = "IDENTITY_SWAP"

    if flags & CRITICAL_FLAGS or risk_level == RiskLevel.CRITICAL:
        priority = RiskLevel.CRITICAL
    elif flags & HIGH_FLAGS or risk_level == RiskLevel.HIGH:
        priority = RiskLevel.HIGH
    elif not passed:
        priority = RiskLevel.MEDIUM
    else:
        priority = RiskLevel.LOW

    # Only a high-confidence deepfake locks the account outright
    lock = check_type == CheckType.ANTI_DEEPFAKE and "deepfake_detected_high" in flags
    return CaseDecision(
        case_type=case_type,
        priority=priority,
        lock_account=lock,
        remove_content="stolen_photo_detected" in flags,
        flag_ban_evasion=lock,
    )


class CaseEngine:
    def __init__(
        self,
        cases: CaseStore,
        risk_store: RiskProfileStore | None = None,
        activity: ActivityLog | None = None,
    ):
        self.cases = cases
        self.risk_store = risk_store
        self.activity = activity or ActivityLog()

    async def escalate_check(self, check: IdentityCheck) -> Optional[SafetyCase]:
        """Open a case for a failed or flagged check; idempotent per check."""
        existing = await self.cases.find_by_check(check.check_id)
        if existing is not None:
            return existing

        decision = evaluate(check.check_type, check.passed, check.flags)
        if decision is None:
            return None

        case = self._build_case(check.user_id, decision, check.flags, check_ids=(check.check_id,))
        if decision.priority == RiskLevel.CRITICAL:
            case.action_taken.notification_sent = await notify_risk_store(
                self.risk_store, check.user_id, decision.priority,
                reason=decision.case_type,
                details={"check_id": check.check_id, "flags": sorted(check.flags)},
                activity=self.activity,
            )
        await self._open(case)
        return case

    async def escalate_analysis(self, analysis: SocialGraphFraudAnalysis) -> Optional[SafetyCase]:
        """
        Open a case for an elevated social-graph analysis.

        The risk-profile write for analyses is done by the analyzer itself.
        """
        existing = await self.cases.find_by_analysis(analysis.analysis_id)
        if existing is not None:
            return existing

        decision = evaluate(None, False, analysis.flags, analysis.risk_level)
        if decision is None:
            return None

        case = self._build_case(
            analysis.user_id, decision, analysis.flags, analysis_id=analysis.analysis_id,
        )
        await self._open(case)
        return case

    def _build_case(self, user_id, decision: CaseDecision, flags, check_ids=(), analysis_id=None) -> SafetyCase:
        return SafetyCase(
            user_id=user_id,
            case_type=decision.case_type,
            priority=decision.priority,
            flags=frozenset(flags),
            check_ids=tuple(check_ids),
            analysis_id=analysis_id,
            action_taken=ActionTaken(
                account_locked=decision.lock_account,
                content_removed=decision.remove_content,
                ban_evasion_flagged=decision.flag_ban_evasion,
            ),
        )

    async def _open(self, case: SafetyCase) -> None:
        await self.cases.save(case)
        self.activity.emit(
            "SAFETY_CASE_OPENED", case.user_id,
            case_id=case.case_id, case_type=case.case_type, priority=case.priority.value,
        )
        logger.info(f"Safety case {case.case_id} opened: type={case.case_type}, priority={case.priority.value}")
