"""Anomaly Detector — failed-login thresholds over a trailing window.

Invoked after every failed login. Counts failures from the same source
address and for the same account in ``(now - window, now]`` and raises a
``suspicious_activity`` event for each threshold crossed.

The count-then-insert sequence is not isolated: two concurrent failures
can read the same count and both raise an event. That is accepted; an
extra event is a false positive, never a missed detection.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

from ..models.security_event import SecurityEventType, Severity
from ..utils.clock import utcnow
from ..utils.logging import get_logger
from .event_store import EventStore, security_event_to_dict
from .result import MonitorResult

logger = get_logger("monitoring.anomaly_detector")

POLICY_EVERY_ATTEMPT = "every_attempt"
POLICY_ONCE_PER_WINDOW = "once_per_window"


@dataclass(frozen=True)
class FailureThreshold:
    medium: int
    high: int

    def severity_for(self, count: int) -> Optional[Severity]:
        if count >= self.high:
            return Severity.HIGH
        if count >= self.medium:
            return Severity.MEDIUM
        return None


def timeframe_label(window_minutes: int) -> str:
    """``60`` -> ``"1hour"``, ``120`` -> ``"2hour"``, ``30`` -> ``"30min"``."""
    if window_minutes % 60 == 0:
        return f"{window_minutes // 60}hour"
    return f"{window_minutes}min"


def _timeframe_text(window_minutes: int) -> str:
    if window_minutes == 60:
        return "1 hour"
    if window_minutes % 60 == 0:
        return f"{window_minutes // 60} hours"
    return f"{window_minutes} minutes"


class AnomalyDetector:
    """Raises suspicious-activity events when failed logins cross thresholds."""

    def __init__(
        self,
        store: EventStore,
        ip_threshold: FailureThreshold = FailureThreshold(medium=10, high=20),
        email_threshold: FailureThreshold = FailureThreshold(medium=5, high=10),
        window_minutes: int = 60,
        duplicate_policy: str = POLICY_EVERY_ATTEMPT,
    ):
        if duplicate_policy not in (POLICY_EVERY_ATTEMPT, POLICY_ONCE_PER_WINDOW):
            raise ValueError(f"Unknown duplicate policy: {duplicate_policy}")
        self._store = store
        self._ip_threshold = ip_threshold
        self._email_threshold = email_threshold
        self._window = timedelta(minutes=window_minutes)
        self._window_minutes = window_minutes
        self._duplicate_policy = duplicate_policy

    @classmethod
    def from_config(cls, store: EventStore, config) -> "AnomalyDetector":
        return cls(
            store,
            ip_threshold=FailureThreshold(
                medium=config.ip_failure_medium_threshold,
                high=config.ip_failure_high_threshold,
            ),
            email_threshold=FailureThreshold(
                medium=config.email_failure_medium_threshold,
                high=config.email_failure_high_threshold,
            ),
            window_minutes=config.anomaly_window_minutes,
            duplicate_policy=config.anomaly_duplicate_policy,
        )

    @property
    def duplicate_policy(self) -> str:
        return self._duplicate_policy

    async def evaluate(
        self, email: str, ip_address: str, now: Optional[datetime] = None
    ) -> MonitorResult:
        """Evaluate both thresholds for one failed attempt. Never raises.

        The address and account scopes are checked independently: a store
        failure in one is reported without skipping the other.
        """
        now = now or utcnow()
        since = now - self._window
        raised: list[dict] = []
        error: Optional[Exception] = None

        for scope, subject, threshold in (
            ("ip", ip_address, self._ip_threshold),
            ("email", email, self._email_threshold),
        ):
            try:
                event = await self._check_scope(scope, subject, threshold, ip_address, since, now)
            except Exception as e:
                logger.error(
                    "anomaly_evaluation_failed",
                    scope=scope,
                    email=email,
                    ip=ip_address,
                    error=str(e),
                )
                error = error or e
                continue
            if event:
                raised.append(event)

        if error is not None:
            return MonitorResult.failed(error, events=raised)
        return MonitorResult(events=raised)

    async def _check_scope(
        self,
        scope: str,
        subject: str,
        threshold: FailureThreshold,
        ip_address: str,
        since: datetime,
        now: datetime,
    ) -> Optional[dict]:
        filters = {"ip_address": subject} if scope == "ip" else {"email": subject}
        failures = await self._store.count_failures(since, until=now, **filters)
        severity = threshold.severity_for(failures)
        if severity is None:
            return None

        timeframe = _timeframe_text(self._window_minutes)
        if scope == "ip":
            description = f"Multiple failed login attempts from IP: {subject} ({failures} attempts in {timeframe})"
            metadata = {"scope": "ip"}
        else:
            description = f"Multiple failed login attempts for email: {subject} ({failures} attempts in {timeframe})"
            metadata = {"scope": "email", "email": subject}
        metadata["failed_attempts"] = failures
        metadata["timeframe"] = timeframe_label(self._window_minutes)

        return await self._raise(
            scope=scope,
            subject=subject,
            severity=severity,
            since=since,
            description=description,
            ip_address=ip_address,
            metadata=metadata,
        )

    async def _raise(
        self,
        scope: str,
        subject: str,
        severity: Severity,
        since: datetime,
        description: str,
        ip_address: str,
        metadata: dict,
    ) -> Optional[dict]:
        if self._duplicate_policy == POLICY_ONCE_PER_WINDOW:
            if await self._store.has_recent_event(scope, subject, severity, since):
                logger.debug("anomaly_event_suppressed", scope=scope, subject=subject, severity=severity.value)
                return None

        event = await self._store.add_security_event(
            type=SecurityEventType.SUSPICIOUS_ACTIVITY,
            severity=severity,
            description=description,
            ip_address=ip_address,
            metadata=metadata,
        )
        logger.warning(
            "suspicious_login_activity",
            scope=scope,
            subject=subject,
            severity=severity.value,
            failed_attempts=metadata["failed_attempts"],
        )
        return security_event_to_dict(event)
