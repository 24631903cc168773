"""
Writes classified results to the Identity Check Ledger and hands them to
the Case Engine. Archival and escalation are best-effort.
"""

import logging
from datetime import datetime, timedelta

from ..config import Settings, get_settings
from ..errors import AttemptLimitExceeded
from ..models.domain import CheckStatus, CheckType, IdentityCheck, new_id, utcnow
from .audit import ActivityLog
from .case_engine import CaseEngine
from .ledger import IdentityCheckLedger
from .media_store import MediaStore

logger = logging.getLogger(__name__)


def check_summary(check: IdentityCheck) -> dict:
    """Archive payload for a completed check."""
    evidence = check.evidence
    return {
        "check_id": check.check_id,
        "user_id": check.user_id,
        "check_type": check.check_type.value,
        "status": check.status.value,
        "passed": check.passed,
        "confidence": round(check.confidence, 4),
        "flags": sorted(check.flags),
        "evidence_id": getattr(evidence, "result_id", None) or getattr(evidence, "session_id", None),
        "degraded_signals": list(getattr(evidence, "degraded_signals", ())),
        "trigger_reason": check.trigger_reason,
        "initiated_at": check.initiated_at.isoformat(),
        "completed_at": check.completed_at.isoformat(),
    }


class CheckRecorder:
    def __init__(
        self,
        ledger: IdentityCheckLedger,
        case_engine: CaseEngine,
        activity: ActivityLog | None = None,
        archive: MediaStore | None = None,
        settings: Settings | None = None,
    ):
        self.ledger = ledger
        self.case_engine = case_engine
        self.activity = activity or case_engine.activity
        self.archive = archive
        self.settings = settings or get_settings()

    async def ensure_attempt_allowed(self, user_id: str, check_type: CheckType) -> None:
        """Reject a request once the rolling 24 h attempt budget is spent."""
        since = utcnow() - timedelta(hours=24)
        attempts = await self.ledger.count_since(user_id, check_type, since)
        if attempts >= self.settings.max_attempts_per_day:
            raise AttemptLimitExceeded(
                f"Maximum daily attempts exceeded ({self.settings.max_attempts_per_day} per 24h) "
                f"for {check_type.value}"
            )

    async def record(
        self,
        user_id: str,
        check_type: CheckType,
        evidence,
        confidence: float,
        passed: bool,
        flags,
        trigger_reason: str,
        initiated_at: datetime,
        check_id: str | None = None,
    ) -> IdentityCheck:
        check = IdentityCheck(
            user_id=user_id,
            check_type=check_type,
            confidence=confidence,
            passed=passed,
            flags=frozenset(flags),
            evidence=evidence,
            trigger_reason=trigger_reason,
            initiated_at=initiated_at,
            check_id=check_id or new_id("check"),
        )
        await self.ledger.save(check)
        self.activity.emit(
            "IDENTITY_CHECK_COMPLETED", user_id,
            check_id=check.check_id, check_type=check_type.value,
            status=check.status.value, passed=passed,
        )
        await self._archive(check)
        await self._escalate(check)
        return check

    async def needs_verification(self, user_id: str, check_type: CheckType) -> bool:
        """True without any approved check of the type, or when the latest one was not approved."""
        approved = await self.ledger.find(user_id, check_type, CheckStatus.APPROVED)
        if not approved:
            return True
        latest = await self.ledger.get_latest(user_id, check_type)
        return latest.status != CheckStatus.APPROVED

    async def _archive(self, check: IdentityCheck) -> None:
        if self.archive is None:
            return
        try:
            await self.archive.store_result(check.check_id, check_summary(check))
        except Exception as e:
            logger.warning(f"Archiving check {check.check_id} failed: {e!r}")

    async def _escalate(self, check: IdentityCheck) -> None:
        try:
            await self.case_engine.escalate_check(check)
        except Exception as e:
            logger.error(f"Case creation for check {check.check_id} failed: {e!r}")
