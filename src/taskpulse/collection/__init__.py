"""Periodic and manual collection of contextual observations."""

from .collectors import COLLECTORS
from .runner import ContextualDataCollector, enabled_kinds

__all__ = ["COLLECTORS", "ContextualDataCollector", "enabled_kinds"]
