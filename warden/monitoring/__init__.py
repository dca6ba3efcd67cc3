"""Login-attempt recording, anomaly detection, and the event store behind them."""

from .anomaly_detector import AnomalyDetector, FailureThreshold
from .attempt_recorder import AttemptRecorder
from .event_store import EventStore
from .result import MonitorResult

__all__ = [
    "AnomalyDetector",
    "AttemptRecorder",
    "EventStore",
    "FailureThreshold",
    "MonitorResult",
]
