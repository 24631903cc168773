"""
Clients for the external risk systems.

The risk-profile store is write-only and best-effort: a failed write is
logged and reported back as ``False``, never raised or retried. The
coordinated-behaviour feed and the account-linkage index are read-only.
"""

import logging
from datetime import datetime

import httpx

from ..config import get_settings
from ..models.domain import IpObservation, LinkSignal, RiskLevel
from .audit import ActivityLog
from .detectors import AccountLinkageLookup, CoordinatedBehaviorFeed, RiskProfileStore

logger = logging.getLogger(__name__)


class HttpRiskProfileStore(RiskProfileStore):
    """Posts risk markers to the downstream ban-evasion risk-profile service."""

    def __init__(self, base_url: str | None = None, timeout: float | None = None):
        settings = get_settings()
        self.base_url = (base_url or settings.risk_profile_store_url).rstrip("/")
        self.timeout = timeout or settings.http_timeout_seconds

    async def flag_user(self, user_id: str, risk_level: str, reason: str, details: dict) -> None:
        url = f"{self.base_url}/v1/risk-profiles/{user_id}/flags"
        payload = {"riskLevel": risk_level, "reason": reason, "details": details}

        async with httpx.AsyncClient() as client:
            response = await client.post(url, json=payload, timeout=self.timeout)
            response.raise_for_status()


class HttpCoordinatedBehaviorFeed(CoordinatedBehaviorFeed):
    """Reads interaction clusters from the coordinated-behaviour feed."""

    def __init__(self, base_url: str | None = None, timeout: float | None = None):
        settings = get_settings()
        self.base_url = (base_url or settings.coordinated_feed_url).rstrip("/")
        self.timeout = timeout or settings.http_timeout_seconds

    async def cluster_members(self, cluster_id: str, user_id: str) -> list:
        url = f"{self.base_url}/v1/clusters/{cluster_id}"

        async with httpx.AsyncClient() as client:
            response = await client.get(url, timeout=self.timeout)
            response.raise_for_status()
            members = response.json().get("members", [])

        return [m for m in members if m != user_id]


class HttpAccountLinkageLookup(AccountLinkageLookup):
    """Queries the account-linkage index kept by the risk-profile service."""

    def __init__(self, base_url: str | None = None, timeout: float | None = None):
        settings = get_settings()
        self.base_url = (base_url or settings.risk_profile_store_url).rstrip("/")
        self.timeout = timeout or settings.http_timeout_seconds

    async def related_accounts(self, signal: LinkSignal, value: str, user_id: str) -> list:
        url = f"{self.base_url}/v1/linkage/{signal.value}"

        async with httpx.AsyncClient() as client:
            response = await client.get(url, params={"value": value}, timeout=self.timeout)
            response.raise_for_status()
            accounts = response.json().get("userIds", [])

        return [a for a in accounts if a != user_id]

    async def ip_history(self, user_id: str) -> list:
        url = f"{self.base_url}/v1/linkage/ip-history/{user_id}"

        async with httpx.AsyncClient() as client:
            response = await client.get(url, timeout=self.timeout)
            response.raise_for_status()
            entries = response.json().get("observations", [])

        return [
            IpObservation(
                ip_address=e["ipAddress"],
                region=e.get("region", ""),
                seen_at=datetime.fromisoformat(e["seenAt"]) if e.get("seenAt") else None,
            )
            for e in entries
        ]


async def notify_risk_store(
    store: RiskProfileStore | None,
    user_id: str,
    risk_level: RiskLevel,
    reason: str,
    details: dict,
    activity: ActivityLog | None = None,
) -> bool:
    """Best-effort write to the risk-profile store. Returns True on success."""
    if store is None:
        return False
    try:
        await store.flag_user(user_id, risk_level.value, reason, details)
    except Exception as e:
        logger.error(f"Risk profile write failed for user {user_id}: {e!r}")
        return False
    if activity is not None:
        activity.emit("RISK_PROFILE_NOTIFIED", user_id, risk_level=risk_level.value, reason=reason)
    return True
