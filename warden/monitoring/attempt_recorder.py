"""Attempt Recorder — persists authentication attempts and feeds the detector."""

from typing import Optional

from ..utils.logging import get_logger
from .anomaly_detector import AnomalyDetector
from .event_store import EventStore
from .result import MonitorResult

logger = get_logger("monitoring.attempt_recorder")


class AttemptRecorder:
    """Records every login attempt; failed attempts are evaluated immediately.

    A monitoring failure must never fail or alter a login response, so
    ``record_attempt`` reports problems through its ``MonitorResult``
    instead of raising.
    """

    def __init__(self, store: EventStore, detector: AnomalyDetector):
        self._store = store
        self._detector = detector

    async def record_attempt(
        self,
        email: str,
        ip_address: str,
        user_agent: Optional[str],
        success: bool,
        user_id: Optional[int] = None,
        failure_reason: Optional[str] = None,
    ) -> MonitorResult:
        try:
            await self._store.add_login_attempt(
                email=email,
                ip_address=ip_address,
                user_agent=user_agent,
                success=success,
                user_id=user_id,
                failure_reason=None if success else failure_reason,
            )
        except Exception as e:
            logger.error(
                "login_attempt_record_failed",
                email=email,
                ip=ip_address,
                success=success,
                error=str(e),
            )
            return MonitorResult.failed(e)

        if success:
            return MonitorResult()
        return await self._detector.evaluate(email, ip_address)
