"""Auto-Blocker Module — periodic sweep that blocks high-volume failed-login sources.

Every ``interval_seconds`` the sweep counts failed, not-yet-blocked login
attempts per source address over the trailing window. Each address at or
above ``threshold`` has all of its attempts flagged ``blocked`` and gets
one critical security event; the Access Guard denies it from then on.
"""

import asyncio
from dataclasses import asdict, dataclass, field
from datetime import datetime, timedelta
from typing import Optional

from ..models.security_event import SecurityEventType, Severity
from ..monitoring.anomaly_detector import timeframe_label
from ..monitoring.event_store import EventStore
from ..utils.clock import isoformat, utcnow
from .base_module import PeriodicModule


@dataclass
class SweepReport:
    started_at: Optional[str] = None
    candidates: int = 0
    blocked: list[dict] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)
    skipped: bool = False
    error: Optional[str] = None

    def to_dict(self) -> dict:
        return asdict(self)


class AutoBlocker(PeriodicModule):
    """Periodic sweep over recent failed logins.

    Sweeps are serialized by a lock: a tick that arrives while a sweep is
    still running is skipped rather than queued. The guard only covers this
    process; the bulk update in ``EventStore.block_address`` is what keeps a
    second writer from producing a duplicate event.
    """

    def __init__(self, store: EventStore, config: dict | None = None):
        super().__init__(name="auto_blocker", config=config)

        cfg = config or {}
        self._threshold: int = cfg.get("threshold", 50)
        self._window_minutes: int = cfg.get("window_minutes", 60)

        self._store = store
        self._sweep_lock = asyncio.Lock()

        # Stats
        self._sweeps_completed: int = 0
        self._sweeps_skipped: int = 0
        self._addresses_blocked: int = 0
        self._last_sweep_at: Optional[datetime] = None
        self._last_report: Optional[SweepReport] = None

    async def health_check(self) -> dict:
        self.heartbeat()
        return {
            "status": self.health_status,
            "details": {
                "interval_seconds": self._interval_seconds,
                "threshold": self._threshold,
                "window_minutes": self._window_minutes,
                "sweep_in_progress": self._sweep_lock.locked(),
                "sweeps_completed": self._sweeps_completed,
                "sweeps_skipped": self._sweeps_skipped,
                "addresses_blocked": self._addresses_blocked,
                "last_sweep_at": isoformat(self._last_sweep_at),
            },
        }

    @property
    def last_report(self) -> Optional[SweepReport]:
        return self._last_report

    async def tick(self) -> None:
        await self.run_sweep()

    async def run_sweep(self, now: Optional[datetime] = None) -> SweepReport:
        """Run one sweep, or skip it if another sweep holds the lock."""
        if self._sweep_lock.locked():
            self._sweeps_skipped += 1
            self.logger.warning("auto_block_sweep_skipped", reason="sweep_in_progress")
            return SweepReport(skipped=True)

        async with self._sweep_lock:
            report = await self._sweep(now or utcnow())

        self._sweeps_completed += 1
        self._last_report = report
        self.heartbeat()
        return report

    async def _sweep(self, now: datetime) -> SweepReport:
        self._last_sweep_at = now
        report = SweepReport(started_at=isoformat(now))
        since = now - timedelta(minutes=self._window_minutes)
        timeframe = timeframe_label(self._window_minutes)

        try:
            candidates = await self._store.unblocked_failure_counts(since, self._threshold, until=now)
        except Exception as e:
            self.logger.error("auto_block_aggregate_failed", error=str(e))
            report.error = str(e)
            return report

        report.candidates = len(candidates)
        for ip_address, count in candidates:
            try:
                flipped, event = await self._store.block_address(
                    ip_address,
                    event={
                        "type": SecurityEventType.SUSPICIOUS_ACTIVITY,
                        "severity": Severity.CRITICAL,
                        "description": (
                            "Auto-blocked IP due to excessive failed login attempts: "
                            f"{ip_address} ({count} attempts)"
                        ),
                        "ip_address": ip_address,
                        "metadata": {
                            "auto_blocked": True,
                            "failed_attempts": count,
                            "timeframe": timeframe,
                        },
                    },
                )
            except Exception as e:
                self.logger.error("auto_block_failed", ip=ip_address, error=str(e))
                report.failed.append(ip_address)
                continue

            if event is None:
                self.logger.info("auto_block_already_applied", ip=ip_address)
                continue

            self._addresses_blocked += 1
            report.blocked.append({
                "ip_address": ip_address,
                "failed_attempts": count,
                "rows_blocked": flipped,
                "event_id": event.id,
            })
            self.logger.warning(
                "auto_block_applied",
                ip=ip_address,
                failed_attempts=count,
                rows_blocked=flipped,
            )

        self.logger.info(
            "auto_block_sweep_complete",
            candidates=report.candidates,
            blocked=len(report.blocked),
            failed=len(report.failed),
        )
        return report
