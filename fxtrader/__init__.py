"""
FX Trader - Risk-Sized Order Execution Engine

This package contains the core engine for submitting risk-sized foreign-exchange
orders through an OANDA-style broker, immediately or at a scheduled instant,
individually or in batches, with optional break-even stop management.

Modules:
    core: Event bus, domain models, task persistence and clock
    broker: Broker gateway interface and OANDA v20 REST adapter
    execution: Position sizing, order building, execution and scheduling
    processors: Event-driven break-even monitor and execution journal
"""

__version__ = "0.1.0"
__author__ = "FX Trader Team"
