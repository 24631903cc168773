"""
Score fusion and sub-signal fan-out shared by every analyzer.

Sub-signals are launched concurrently and joined before fusion. A sub-signal
that exceeds its timeout is dropped from fusion and lowers confidence; one
that raises switches the analyzer to its neutral fallback.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from enum import Enum

from ..utils.vector_utils import clamp

logger = logging.getLogger(__name__)

NEUTRAL_SCORE = 0.5
ANALYSIS_ERROR_FLAG = "analysis_error"


def signal_name(key) -> str:
    """Readable name for a fan-out key (enum, tuple of parts, or string)."""
    if isinstance(key, Enum):
        return str(key.value)
    if isinstance(key, tuple):
        return ":".join(signal_name(part) for part in key)
    return str(key)


@dataclass
class SignalOutcome:
    """Joined results of one fan-out."""
    values: dict = field(default_factory=dict)
    timed_out: list = field(default_factory=list)
    errors: dict = field(default_factory=dict)
    requested: int = 0

    @property
    def failed(self) -> bool:
        return bool(self.errors)

    @property
    def coverage(self) -> float:
        if self.requested == 0:
            return 1.0
        return len(self.values) / self.requested

    @property
    def degraded(self) -> tuple:
        return tuple(sorted(signal_name(k) for k in list(self.timed_out) + list(self.errors)))


async def gather_signals(calls: dict, timeout: float) -> SignalOutcome:
    """
    Await every coroutine in ``calls`` concurrently.

    Args:
        calls: mapping of signal key to an un-awaited coroutine
        timeout: per-signal timeout in seconds

    Returns:
        SignalOutcome with completed values, timed-out keys and errors
    """
    async def run(key, coro):
        try:
            return key, await asyncio.wait_for(coro, timeout), None
        except asyncio.TimeoutError:
            return key, None, asyncio.TimeoutError()
        except Exception as e:
            return key, None, e

    outcome = SignalOutcome(requested=len(calls))
    results = await asyncio.gather(*(run(key, coro) for key, coro in calls.items()))
    for key, value, error in results:
        if error is None:
            outcome.values[key] = value
        elif isinstance(error, asyncio.TimeoutError):
            logger.warning(f"Sub-signal {signal_name(key)} timed out after {timeout}s, excluded from fusion")
            outcome.timed_out.append(key)
        else:
            logger.error(f"Sub-signal {signal_name(key)} failed: {error!r}")
            outcome.errors[key] = error
    return outcome


def fuse(scores: dict, weights: dict) -> float:
    """
    Weighted sum of the available scores.

    Weights of missing scores are redistributed over the present ones so the
    result stays in [0, 1].
    """
    present = {k: w for k, w in weights.items() if k in scores}
    total = sum(present.values())
    if total <= 0:
        raise ValueError("No weighted sub-signal available for fusion")
    return clamp(sum(clamp(scores[k]) * w for k, w in present.items()) / total)


def neutral_scores(keys) -> dict:
    return {key: NEUTRAL_SCORE for key in keys}
