"""
QuorumSafe - M-of-N approval and execution engine

A fixed set of owners jointly controls a shared balance and arbitrary calls.
Every call needs a configurable number of owner approvals before it runs, and
it runs exactly once.

Main Components:
- Owner registry: immutable owner set and approval threshold
- Transaction and approval ledgers: proposals and incrementally tallied approvals
- Execution guard: reentrancy latch and rollback around the external call
"""

from quorumsafe.core import (
    ApprovalEngine,
    CallResult,
    EngineEvent,
    EventType,
    LocalCallExecutor,
    QuorumSafeError,
)

__version__ = "0.1.0"
__author__ = "QuorumSafe Development Team"

__all__ = [
    "ApprovalEngine",
    "CallResult",
    "EngineEvent",
    "EventType",
    "LocalCallExecutor",
    "QuorumSafeError",
]
