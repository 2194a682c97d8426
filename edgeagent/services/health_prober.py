"""TCP health probes for NLB upstreams

`probe` is a single connect attempt with no retries. `HealthMonitor` is the
caller side: fan-out per NLB, rolling history, periodic background checks.
"""

import asyncio
import logging
import time
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Awaitable, Callable, Optional

from edgeagent.config import get_settings
from edgeagent.models.entities import NetworkLoadBalancer

logger = logging.getLogger(__name__)

MONITOR_TICK = 1.0  # seconds between due-checks in the background loop


@dataclass
class HealthCheckResult:
    """Result of one upstream probe"""
    upstream_host: str
    upstream_port: int
    status: str  # up | down | checking
    response_time_ms: Optional[int] = None
    error: Optional[str] = None
    checked_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


async def probe(host: str, port: int, timeout: float) -> HealthCheckResult:
    """Open one TCP connection; up with elapsed time, or down with the error"""
    start = time.monotonic()
    try:
        _, writer = await asyncio.wait_for(asyncio.open_connection(host, port), timeout=timeout)
    except asyncio.TimeoutError:
        return HealthCheckResult(host, port, "down", error="Connection timeout")
    except OSError as e:
        return HealthCheckResult(host, port, "down", error=str(e) or e.__class__.__name__)

    elapsed = int((time.monotonic() - start) * 1000)
    writer.close()
    try:
        await writer.wait_closed()
    except OSError:
        pass
    return HealthCheckResult(host, port, "up", response_time_ms=elapsed)


async def probe_many(targets: list[tuple[str, int]], timeout: float) -> list[HealthCheckResult]:
    """Probe all targets concurrently, results in input order"""
    return list(await asyncio.gather(*(probe(host, port, timeout) for host, port in targets)))


ProbeFunc = Callable[[str, int, float], Awaitable[HealthCheckResult]]


class HealthMonitor:
    """Keeps latest status and a rolling history per NLB"""

    def __init__(self, history_size: int = 100, prober: ProbeFunc = probe):
        self.history_size = history_size
        self._probe = prober
        self._history: dict[str, deque] = {}
        self._latest: dict[str, dict[tuple[str, int], HealthCheckResult]] = {}
        self._targets: dict[str, NetworkLoadBalancer] = {}
        self._next_due: dict[str, float] = {}
        self._running = False
        self._task: Optional[asyncio.Task] = None

    # ==================== Registration ====================

    def register(self, nlb: NetworkLoadBalancer):
        """Schedule periodic checks for an enabled NLB"""
        if not nlb.health_check_enabled:
            self.unregister(nlb.name)
            return
        self._targets[nlb.name] = nlb
        self._next_due[nlb.name] = 0.0

    def unregister(self, name: str):
        self._targets.pop(name, None)
        self._next_due.pop(name, None)

    def forget(self, name: str):
        """Unregister and drop all recorded results"""
        self.unregister(name)
        self._history.pop(name, None)
        self._latest.pop(name, None)

    @property
    def registered(self) -> list[str]:
        return sorted(self._targets)

    # ==================== Checks ====================

    async def check(self, nlb: NetworkLoadBalancer) -> list[HealthCheckResult]:
        """Probe every upstream of an NLB in parallel and record the results"""
        if not nlb.health_check_enabled:
            return []
        results = list(await asyncio.gather(*(
            self._probe(u.host, u.port, nlb.health_check_timeout) for u in nlb.upstreams
        )))
        self._record(nlb.name, results)
        down = sum(1 for r in results if r.status == "down")
        logger.info(f"Health check {nlb.name}: {len(results) - down} up, {down} down")
        return results

    def _record(self, name: str, results: list[HealthCheckResult]):
        history = self._history.setdefault(name, deque(maxlen=self.history_size))
        latest = self._latest.setdefault(name, {})
        for result in results:
            history.append(result)
            latest[(result.upstream_host, result.upstream_port)] = result

    def history(self, name: str, limit: Optional[int] = None) -> list[HealthCheckResult]:
        """Most recent results first"""
        items = list(reversed(self._history.get(name, ())))
        return items[:limit] if limit else items

    def latest(self, name: str) -> list[HealthCheckResult]:
        return list(self._latest.get(name, {}).values())

    # ==================== Background loop ====================

    async def _monitor_loop(self):
        """Probe each registered NLB once its interval has elapsed"""
        while self._running:
            now = time.monotonic()
            due = [
                nlb for name, nlb in list(self._targets.items())
                if self._next_due.get(name, 0.0) <= now
            ]
            for nlb in due:
                self._next_due[nlb.name] = now + nlb.health_check_interval
            if due:
                outcomes = await asyncio.gather(*(self.check(nlb) for nlb in due), return_exceptions=True)
                for nlb, outcome in zip(due, outcomes):
                    if isinstance(outcome, Exception):
                        logger.error(f"Health check for {nlb.name} failed: {outcome}")
            await asyncio.sleep(MONITOR_TICK)

    async def start(self):
        """Start periodic health checks"""
        if self._running:
            return
        self._running = True
        self._task = asyncio.create_task(self._monitor_loop())
        logger.info("Health monitor started")

    async def stop(self):
        self._running = False
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        logger.info("Health monitor stopped")


_monitor: Optional[HealthMonitor] = None


def get_health_monitor() -> HealthMonitor:
    """Get or create the health monitor"""
    global _monitor
    if _monitor is None:
        _monitor = HealthMonitor(history_size=get_settings().health_check_history_size)
    return _monitor
