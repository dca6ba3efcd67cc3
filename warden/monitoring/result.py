"""Result channel for best-effort monitoring calls.

Monitoring never raises into the request path. Callers get a
``MonitorResult`` instead and may inspect or ignore its error.
"""

from dataclasses import dataclass, field
from typing import Optional


@dataclass
class MonitorResult:
    ok: bool = True
    events: list[dict] = field(default_factory=list)
    error: Optional[str] = None

    @classmethod
    def failed(cls, exc: BaseException, events: list[dict] | None = None) -> "MonitorResult":
        return cls(ok=False, events=list(events or []), error=f"{type(exc).__name__}: {exc}")
