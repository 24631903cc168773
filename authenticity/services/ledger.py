"""
Identity Check Ledger and analyzer result repositories.

The ledger is append-only: a check is saved once and never replaced.
In-memory implementations back the service by default; any storage engine
can implement the same interfaces.
"""

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Optional

from ..models.domain import (
    CheckStatus, CheckType, IdentityCheck, SafetyCase, VoiceSignature,
    VoiceSignatureUsage, utcnow,
)


class IdentityCheckLedger(ABC):
    @abstractmethod
    async def save(self, check: IdentityCheck) -> None: ...

    @abstractmethod
    async def get(self, check_id: str) -> Optional[IdentityCheck]: ...

    @abstractmethod
    async def get_latest(self, user_id: str, check_type: CheckType) -> Optional[IdentityCheck]: ...

    @abstractmethod
    async def list_recent(self, user_id: str, check_type: Optional[CheckType] = None,
                          limit: int = 10) -> list: ...

    @abstractmethod
    async def find(self, user_id: str, check_type: CheckType, status: CheckStatus) -> list: ...

    @abstractmethod
    async def count_since(self, user_id: str, check_type: CheckType, since: datetime) -> int: ...


class InMemoryIdentityCheckLedger(IdentityCheckLedger):
    def __init__(self):
        self._checks: dict[str, IdentityCheck] = {}
        # (user_id, check_type, status) -> [check_id, ...]
        self._index: dict[tuple, list] = {}

    async def save(self, check: IdentityCheck) -> None:
        if check.check_id in self._checks:
            raise ValueError(f"Identity check {check.check_id} already recorded")
        self._checks[check.check_id] = check
        self._index.setdefault((check.user_id, check.check_type, check.status), []).append(check.check_id)

    async def get(self, check_id: str) -> Optional[IdentityCheck]:
        return self._checks.get(check_id)

    async def get_latest(self, user_id: str, check_type: CheckType) -> Optional[IdentityCheck]:
        recent = await self.list_recent(user_id, check_type, limit=1)
        return recent[0] if recent else None

    async def list_recent(self, user_id: str, check_type: Optional[CheckType] = None,
                          limit: int = 10) -> list:
        checks = [
            c for c in reversed(list(self._checks.values()))
            if c.user_id == user_id and (check_type is None or c.check_type == check_type)
        ]
        checks.sort(key=lambda c: c.completed_at, reverse=True)
        return checks[:limit]

    async def find(self, user_id: str, check_type: CheckType, status: CheckStatus) -> list:
        return [self._checks[i] for i in self._index.get((user_id, check_type, status), [])]

    async def count_since(self, user_id: str, check_type: CheckType, since: datetime) -> int:
        return sum(
            1 for c in self._checks.values()
            if c.user_id == user_id and c.check_type == check_type and c.initiated_at >= since
        )


class ResultStore:
    """Keyed store for one analyzer's result records."""

    def __init__(self, key_attr: str = "result_id"):
        self.key_attr = key_attr
        self._items: dict = {}

    async def save(self, item) -> None:
        self._items[getattr(item, self.key_attr)] = item

    async def get(self, key: str):
        return self._items.get(key)

    async def list_for_user(self, user_id: str) -> list:
        return [item for item in self._items.values() if item.user_id == user_id]


class VoiceSignatureStore:
    """
    Voice signatures keyed by user, one entry per enrollment generation.
    The newest generation by ``created_at`` is authoritative.
    """

    def __init__(self):
        self._signatures: dict[str, list] = {}
        self._usage: dict[str, VoiceSignatureUsage] = {}

    async def save(self, signature: VoiceSignature) -> None:
        self._signatures.setdefault(signature.user_id, []).append(signature)
        self._usage[signature.signature_id] = VoiceSignatureUsage()

    async def get_latest(self, user_id: str) -> Optional[VoiceSignature]:
        generations = self._signatures.get(user_id, [])
        if not generations:
            return None
        # Ties on created_at go to the most recent enrollment
        return max(reversed(generations), key=lambda s: s.created_at)

    async def list_for_user(self, user_id: str) -> list:
        return list(self._signatures.get(user_id, []))

    async def usage(self, signature_id: str) -> VoiceSignatureUsage:
        return self._usage.setdefault(signature_id, VoiceSignatureUsage())

    async def record_verification(self, signature_id: str) -> VoiceSignatureUsage:
        usage = await self.usage(signature_id)
        usage.verification_count += 1
        usage.last_verified_at = utcnow()
        return usage


class CaseStore:
    def __init__(self):
        self._cases: dict[str, SafetyCase] = {}

    async def save(self, case: SafetyCase) -> None:
        self._cases[case.case_id] = case

    async def get(self, case_id: str) -> Optional[SafetyCase]:
        return self._cases.get(case_id)

    async def find_by_check(self, check_id: str) -> Optional[SafetyCase]:
        return next((c for c in self._cases.values() if check_id in c.check_ids), None)

    async def find_by_analysis(self, analysis_id: str) -> Optional[SafetyCase]:
        return next((c for c in self._cases.values() if c.analysis_id == analysis_id), None)

    async def list_for_user(self, user_id: str) -> list:
        return [c for c in self._cases.values() if c.user_id == user_id]
