"""
Precondition guards and the reentrancy latch.

Each guard checks exactly one condition and raises the matching typed error.
Operations call their guards in a fixed order before touching any state, so
the first violated condition is the one reported and a rejected call never
leaves a partial mutation behind.
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Any, Iterator

from .approvals import ApprovalLedger
from .exceptions import (
    AlreadyApproved,
    AlreadyExecuted,
    NotApproved,
    NotEnoughApprovals,
    NotOwner,
    ReentrantCall,
)
from .owners import OwnerRegistry, normalize_identity
from .transactions import Transaction, TransactionLedger

logger = logging.getLogger(__name__)


def require_owner(registry: OwnerRegistry, caller: Any) -> str:
    """Return the caller's canonical identity if it is an owner."""
    if not registry.is_owner(caller):
        raise NotOwner(caller)
    return normalize_identity(caller)


def require_tx_exists(ledger: TransactionLedger, tx_id: Any) -> Transaction:
    return ledger.get(tx_id)


def require_not_executed(tx: Transaction) -> None:
    if tx.executed:
        raise AlreadyExecuted(tx.tx_id)


def require_not_approved(approvals: ApprovalLedger, tx_id: int, owner: str) -> None:
    if approvals.is_approved(tx_id, owner):
        raise AlreadyApproved(tx_id, owner)


def require_approved(approvals: ApprovalLedger, tx_id: int, owner: str) -> None:
    if not approvals.is_approved(tx_id, owner):
        raise NotApproved(tx_id, owner)


def require_quorum(approvals: ApprovalLedger, tx_id: int, required: int) -> int:
    actual = approvals.approval_count(tx_id)
    if actual < required:
        raise NotEnoughApprovals(tx_id, required, actual)
    return actual


class ReentrancyGuard:
    """
    Single-acquisition latch around guarded entry points.

    While the latch is held, any further attempt to enter fails immediately
    with ReentrantCall. It never blocks, so a nested call made from inside an
    external call cannot deadlock. The latch is released on success and on
    failure.
    """

    __slots__ = ("_entered", "_operation")

    def __init__(self) -> None:
        self._entered = False
        self._operation = ""

    @property
    def entered(self) -> bool:
        return self._entered

    def require_not_entered(self, operation: str) -> None:
        if self._entered:
            logger.warning(
                "Reentrant call rejected",
                extra={
                    "event": "quorumsafe.guard.reentrant_call",
                    "operation": operation,
                    "in_flight": self._operation,
                },
            )
            raise ReentrantCall(operation)

    @contextmanager
    def hold(self, operation: str) -> Iterator[None]:
        self.require_not_entered(operation)
        try:
            self._entered = True
            self._operation = operation
            yield
        finally:
            self._entered = False
            self._operation = ""
