"""
Approval-engine instrumentation.

Prometheus metrics tracking proposals, approval traffic, execution outcomes
and the shared balance of each engine. The helpers are safe to call from the
engine's hot paths; the engine calls them once an operation's own state change is done.
"""

from __future__ import annotations

from prometheus_client import Counter, Gauge

proposals_counter = Counter(
    "quorumsafe_transactions_proposed_total",
    "Total transactions proposed to approval engines",
    ["engine"],
)

approvals_counter = Counter(
    "quorumsafe_approval_changes_total",
    "Total approvals recorded or revoked",
    ["engine", "action"],
)

executions_counter = Counter(
    "quorumsafe_executions_total",
    "Total execute attempts by outcome",
    ["engine", "outcome"],
)

reentrancy_counter = Counter(
    "quorumsafe_reentrant_calls_blocked_total",
    "Total nested calls rejected by the reentrancy guard",
    ["engine"],
)

deposits_counter = Counter(
    "quorumsafe_deposited_value_total",
    "Total value credited to approval engines",
    ["engine"],
)

balance_gauge = Gauge(
    "quorumsafe_engine_balance",
    "Current shared balance held by an approval engine",
    ["engine"],
)


def record_proposal(engine: str) -> None:
    proposals_counter.labels(engine=engine).inc()


def record_approval_change(engine: str, action: str) -> None:
    """Count an approval change; ``action`` is ``approve`` or ``revoke``."""
    approvals_counter.labels(engine=engine, action=action).inc()


def record_execution(engine: str, outcome: str) -> None:
    """Count an execute attempt; ``outcome`` is ``success``, ``call_failed`` or ``rejected``."""
    executions_counter.labels(engine=engine, outcome=outcome).inc()


def record_reentrancy_blocked(engine: str) -> None:
    reentrancy_counter.labels(engine=engine).inc()


def record_deposit(engine: str, amount: int) -> None:
    if amount <= 0:
        return
    deposits_counter.labels(engine=engine).inc(amount)


def update_balance(engine: str, balance: int) -> None:
    balance_gauge.labels(engine=engine).set(balance)
