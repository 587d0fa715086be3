"""
Execution module for sizing, building and submitting orders.

This module handles:
- Instrument pip conventions
- Risk-based position sizing
- Bracket order construction
- Immediate and batch execution
- Deferred execution with persistence and recovery
"""

from .instruments import InstrumentRegistry, InstrumentSpec
from .sizing import PositionSizer
from .orders import OrderBuilder
from .executor import TradeExecutor
from .scheduler import ExecutionScheduler

__all__ = [
    "InstrumentRegistry",
    "InstrumentSpec",
    "PositionSizer",
    "OrderBuilder",
    "TradeExecutor",
    "ExecutionScheduler",
]
