"""Warden background modules."""

from .auto_blocker import AutoBlocker, SweepReport
from .base_module import PeriodicModule

__all__ = ["AutoBlocker", "PeriodicModule", "SweepReport"]
