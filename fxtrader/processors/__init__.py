"""
Event processors reacting to execution outcomes.

- BreakEvenMonitor: moves stops to entry once a fill is in profit
- ExecutionJournal: logs and counts every outcome event
"""

from .break_even import BreakEvenMonitor
from .journal import ExecutionJournal

__all__ = [
    "BreakEvenMonitor",
    "ExecutionJournal",
]
