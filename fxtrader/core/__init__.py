"""
Core module for the event-driven execution engine.

This module provides the foundational components:
- EventBus: Publish-subscribe event system
- EventProcessor: Base class for event processors
- EventOrchestrator: Processor lifecycle coordinator
- TaskStore: Durable storage of pending scheduled tasks
- Clock: Wall clock and cancellable asyncio timers
"""

from .event_bus import Event, EventBus, EventType
from .event_processor import EventProcessor, EventOrchestrator
from .task_store import TaskStore, InMemoryTaskStore, SqliteTaskStore
from .clock import Clock, TimerHandle

__all__ = [
    "Event",
    "EventBus",
    "EventType",
    "EventProcessor",
    "EventOrchestrator",
    "TaskStore",
    "InMemoryTaskStore",
    "SqliteTaskStore",
    "Clock",
    "TimerHandle",
]
