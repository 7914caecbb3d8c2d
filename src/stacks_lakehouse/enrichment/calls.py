"""Per-call outcome capture for remote enrichment calls.

Every remote call is settled independently into a ``CallResult`` so that one
failing or slow call never discards the results of its siblings.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass
from enum import Enum
from typing import Any

from stacks_lakehouse.enrichment.stacks_client import NotFoundError, ReadOnlyCallError
from stacks_lakehouse.errors import RemoteCallTimeout

logger = logging.getLogger(__name__)


class CallStatus(str, Enum):
    OK = "ok"
    ABSENT = "absent"
    FAILED = "failed"
    TIMEOUT = "timeout"


@dataclass(frozen=True)
class CallResult:
    """Settled outcome of one remote call."""

    name: str
    status: CallStatus
    value: Any = None
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.status == CallStatus.OK

    @property
    def absent(self) -> bool:
        return self.status == CallStatus.ABSENT

    def describe(self) -> str:
        return f"{self.name}: {self.status.value}" + (f" ({self.error})" if self.error else "")


async def settle(name: str, call: Callable[[], Awaitable[Any]], *, timeout: float) -> CallResult:
    """Run one call under a timeout and capture its outcome instead of raising."""
    try:
        value = await asyncio.wait_for(call(), timeout)
    except (TimeoutError, RemoteCallTimeout):
        return CallResult(name, CallStatus.TIMEOUT, error=f"timed out after {timeout:g}s")
    except (NotFoundError, ReadOnlyCallError) as e:
        return CallResult(name, CallStatus.ABSENT, error=str(e))
    except Exception as e:
        logger.warning("Remote call %s failed: %s", name, e)
        return CallResult(name, CallStatus.FAILED, error=str(e) or type(e).__name__)
    return CallResult(name, CallStatus.OK, value=value)


async def fan_out(
    calls: Mapping[str, Callable[[], Awaitable[Any]]],
    *,
    timeout: float,
) -> dict[str, CallResult]:
    """Issue calls concurrently and return each settled result by name."""
    results = await asyncio.gather(*(settle(name, call, timeout=timeout) for name, call in calls.items()))
    return {result.name: result for result in results}


def timed_out(names: list[str] | tuple[str, ...], timeout: float) -> dict[str, CallResult]:
    """Results for calls abandoned because the whole entity ran out of time."""
    return {
        name: CallResult(name, CallStatus.TIMEOUT, error=f"entity timed out after {timeout:g}s") for name in names
    }
