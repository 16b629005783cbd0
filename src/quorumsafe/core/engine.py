"""
M-of-N approval engine.

A fixed set of owners jointly controls a shared balance and arbitrary calls.
Owners propose transactions and approve or revoke them independently. Once a
transaction holds at least ``required`` approvals, anyone may execute it, and
the engine dispatches its call exactly once.

Execution follows checks-effects-interactions: every guard runs first, the
transaction is marked executed and its value debited, and only then is the
external call made. The guard checks and the dispatch run under a reentrancy
latch, so a call that tries to re-enter ``execute`` (for any transaction) is
rejected instead of double-spending. If the call fails or is interrupted, the
engine rolls back to a checkpoint taken before the attempt and the transaction
stays executable. Changes made from inside the call commit or roll back with
it, including their log records and metrics.

Subscribers are notified once the latch is released.
"""

from __future__ import annotations

import dataclasses
import logging
import threading
from typing import Any, Callable, Dict, Iterable, List, NoReturn, Optional, Tuple

from . import metrics
from .approvals import ApprovalLedger
from .call_executor import CallExecutor, CallResult, LocalCallExecutor
from .config import SETTINGS, Settings
from .events import EventLog, EventType
from .exceptions import ExternalCallFailed, InvalidDeposit, QuorumSafeError
from .guards import (
    ReentrancyGuard,
    require_approved,
    require_not_approved,
    require_not_executed,
    require_owner,
    require_quorum,
    require_tx_exists,
)
from .owners import OwnerRegistry, normalize_identity
from .transactions import Transaction, TransactionLedger

logger = logging.getLogger(__name__)


def _identity_label(identity: Any) -> str:
    normalized = normalize_identity(identity)
    return normalized if normalized is not None else str(identity)


class ApprovalEngine:
    def __init__(
        self,
        owners: Iterable[str],
        required: int,
        call_executor: Optional[CallExecutor] = None,
        name: str = "default",
        settings: Optional[Settings] = None,
    ):
        """
        Build an engine for a fixed owner set.

        Args:
            owners: Owner identities (distinct, non-empty)
            required: Approvals needed to execute (M in M-of-N)
            call_executor: Host capability that performs approved calls
                (defaults to an in-memory LocalCallExecutor)
            name: Label used in logs and metrics
            settings: Engine settings (defaults to the environment-derived ones)

        Raises:
            NotEnoughOwners, InvalidOwner, OwnerNotUnique, InvalidRequiredApprovals
        """
        self._registry = OwnerRegistry(owners, required)
        self.settings = settings or SETTINGS
        self.name = name
        self._transactions = TransactionLedger(max_payload_bytes=self.settings.max_payload_bytes or None)
        self._approvals = ApprovalLedger()
        self._events = EventLog()
        self._guard = ReentrancyGuard()
        self._executor: CallExecutor = call_executor if call_executor is not None else LocalCallExecutor()
        self._balance = 0
        self._lock = threading.RLock()
        self._deferred: List[Tuple[Callable[..., None], Tuple[Any, ...]]] = []

        if self.settings.metrics_enabled:
            metrics.update_balance(self.name, 0)

        logger.info(
            "Approval engine initialized",
            extra={
                "event": "quorumsafe.engine.initialized",
                "engine": self.name,
                "owners": len(self._registry),
                "required": self._registry.required,
            },
        )

    # ==================== Read-only views ====================

    @property
    def owners(self) -> List[str]:
        return list(self._registry.owners)

    @property
    def required(self) -> int:
        return self._registry.required

    @property
    def balance(self) -> int:
        with self._lock:
            return self._balance

    @property
    def events(self) -> EventLog:
        return self._events

    @property
    def call_executor(self) -> CallExecutor:
        return self._executor

    @property
    def executing(self) -> bool:
        """True while an execution's external call is in flight."""
        return self._guard.entered

    def is_owner(self, identity: Any) -> bool:
        return self._registry.is_owner(identity)

    def transaction_exists(self, tx_id: Any) -> bool:
        with self._lock:
            return self._transactions.exists(tx_id)

    def get_transaction(self, tx_id: Any) -> Transaction:
        """Return a copy of the transaction; the ledger's record stays private."""
        with self._lock:
            return dataclasses.replace(self._transactions.get(tx_id))

    def approval_count(self, tx_id: Any) -> int:
        with self._lock:
            require_tx_exists(self._transactions, tx_id)
            return self._approvals.approval_count(tx_id)

    def is_approved(self, tx_id: Any, owner: Any) -> bool:
        with self._lock:
            require_tx_exists(self._transactions, tx_id)
            normalized = normalize_identity(owner)
            if normalized is None:
                return False
            return self._approvals.is_approved(tx_id, normalized)

    def get_approvers(self, tx_id: Any) -> List[str]:
        with self._lock:
            require_tx_exists(self._transactions, tx_id)
            return self._approvals.approvers(tx_id, self._registry.owners)

    def is_confirmed(self, tx_id: Any) -> bool:
        """Whether the transaction currently meets the approval threshold."""
        return self.approval_count(tx_id) >= self._registry.required

    def transaction_count(self, pending: bool = True, executed: bool = True) -> int:
        with self._lock:
            return self._transactions.count(pending=pending, executed=executed)

    def get_transaction_ids(
        self,
        start: int = 0,
        stop: Optional[int] = None,
        pending: bool = True,
        executed: bool = True,
    ) -> List[int]:
        with self._lock:
            return self._transactions.ids(start, stop, pending=pending, executed=executed)

    def get_transaction_status(self, tx_id: Any) -> Dict[str, Any]:
        """Get detailed status of a transaction."""
        with self._lock:
            tx = self._transactions.get(tx_id)
            count = self._approvals.approval_count(tx_id)
            status = tx.to_dict()
            status.update(
                {
                    "status": "executed" if tx.executed else "pending",
                    "approvals": self._approvals.approvers(tx_id, self._registry.owners),
                    "approval_count": count,
                    "required": self._registry.required,
                    "ready_to_execute": not tx.executed and count >= self._registry.required,
                }
            )
            return status

    def get_pending_transactions(self) -> List[Dict[str, Any]]:
        with self._lock:
            return [
                self.get_transaction_status(tx_id)
                for tx_id in self._transactions.ids(executed=False)
            ]


    # ==================== Operations ====================

    def deposit(self, caller: Any, amount: int) -> int:
        """
        Credit the shared balance.

        Returns:
            The new balance

        Raises:
            InvalidDeposit: If amount is negative or not an integer
        """
        if isinstance(amount, bool) or not isinstance(amount, int) or amount < 0:
            raise InvalidDeposit(
                f"Deposit amount must be a non-negative integer, got {amount!r}",
                details={"amount": amount},
            )
        depositor = _identity_label(caller)
        with self._lock:
            self._balance += amount
            balance = self._balance
            self._events.record(EventType.DEPOSIT_RECEIVED, depositor, value=amount, balance=balance)
            self._after_commit(self._on_deposit, depositor, amount, balance)
        return balance

    def propose(self, caller: Any, destination: str, value: int = 0, payload: bytes = b"") -> int:
        """
        Propose a call for approval.

        Args:
            caller: Proposing identity (must be an owner)
            destination: Identity the call targets; need not be the caller
            value: Amount to send along with the call
            payload: Opaque call data

        Returns:
            Index of the new transaction

        Raises:
            NotOwner: If caller is not an owner
            InvalidProposal: If destination, value or payload is malformed
        """
        with self._lock:
            proposer = require_owner(self._registry, caller)
            tx_id = self._transactions.propose(destination, value, payload, proposer)
            self._approvals.open(tx_id)
            tx = self._transactions.get(tx_id)
            self._events.record(
                EventType.TRANSACTION_PROPOSED,
                proposer,
                tx_id=tx_id,
                value=tx.value,
                destination=tx.destination,
                payload=tx.payload,
            )
            self._after_commit(self._on_proposed, tx)
        return tx_id

    def submit(self, caller: Any, destination: str, value: int = 0, payload: bytes = b"") -> int:
        """Propose a transaction and record the proposer's own approval."""
        with self._lock, self._events.hold():
            tx_id = self.propose(caller, destination, value, payload)
            self.approve(caller, tx_id)
        return tx_id

    def approve(self, caller: Any, tx_id: Any) -> int:
        """
        Record the caller's approval of a pending transaction.

        Returns:
            The transaction's approval count after this approval

        Raises:
            NotOwner, TxNotFound, AlreadyExecuted, AlreadyApproved
        """
        with self._lock:
            owner = require_owner(self._registry, caller)
            tx = require_tx_exists(self._transactions, tx_id)
            require_not_executed(tx)
            require_not_approved(self._approvals, tx_id, owner)

            count = self._approvals.approve(tx_id, owner)
            self._events.record(EventType.APPROVAL_RECORDED, owner, tx_id=tx_id, approval_count=count)
            self._after_commit(self._on_approved, tx_id, owner, count)
        return count

    def revoke(self, caller: Any, tx_id: Any) -> int:
        """
        Withdraw the caller's earlier approval.

        Returns:
            The transaction's approval count after the revocation

        Raises:
            NotOwner, TxNotFound, AlreadyExecuted, NotApproved
        """
        with self._lock:
            owner = require_owner(self._registry, caller)
            tx = require_tx_exists(self._transactions, tx_id)
            require_not_executed(tx)
            require_approved(self._approvals, tx_id, owner)

            count = self._approvals.revoke(tx_id, owner)
            self._events.record(EventType.APPROVAL_REVOKED, owner, tx_id=tx_id, approval_count=count)
            self._after_commit(self._on_revoked, tx_id, owner, count)
        return count

    def execute(self, caller: Any, tx_id: Any) -> CallResult:
        """
        Dispatch an approved transaction's call.

        Anyone may execute; the approvals are the authorization.

        Args:
            caller: Identity triggering the execution (recorded for audit)
            tx_id: Transaction index

        Returns:
            The successful CallResult from the call executor

        Raises:
            ReentrantCall: If another execution is in flight
            TxNotFound: If tx_id is unknown
            AlreadyExecuted: If the transaction already executed
            NotEnoughApprovals: If approvals are below the threshold
            ExternalCallFailed: If the call failed; all state is rolled back
        """
        if self._guard.entered:
            self._record_reentrancy_blocked()
            self._guard.require_not_entered("execute")

        executor = _identity_label(caller)
        with self._lock, self._events.hold():
            if self._guard.entered:
                self._record_reentrancy_blocked()
                self._guard.require_not_entered("execute")

            # Subscribers are notified by the events hold, after the latch is released
            with self._guard.hold("execute"):
                try:
                    tx = require_tx_exists(self._transactions, tx_id)
                    require_not_executed(tx)
                    approvals = require_quorum(self._approvals, tx_id, self._registry.required)
                except QuorumSafeError as e:
                    logger.info(
                        "Execution rejected",
                        extra={
                            "event": "quorumsafe.engine.execute_rejected",
                            "engine": self.name,
                            "tx_id": tx_id,
                            "error_code": e.code,
                        },
                    )
                    if self.settings.metrics_enabled:
                        metrics.record_execution(self.name, "rejected")
                    raise

                checkpoint = self._begin()
                try:
                    self._transactions.mark_executed(tx_id, executor)
                    result = self._dispatch(tx, checkpoint, executor)
                except ExternalCallFailed:
                    raise
                except BaseException as e:
                    # Not a call failure; undo the attempt and propagate
                    self._rollback(checkpoint)
                    logger.warning(
                        f"Execution of transaction {tx_id} interrupted, state rolled back",
                        extra={
                            "event": "quorumsafe.engine.execute_interrupted",
                            "engine": self.name,
                            "tx_id": tx_id,
                            "error_type": type(e).__name__,
                        },
                    )
                    raise
                self._commit()

                self._events.record(
                    EventType.TRANSACTION_EXECUTED,
                    executor,
                    tx_id=tx_id,
                    value=tx.value,
                    destination=tx.destination,
                    approval_count=approvals,
                )
                balance = self._balance

            self._run_deferred()
            logger.info(
                f"Transaction {tx_id} executed by {executor}. "
                f"Amount {tx.value} sent to {tx.destination}. New balance: {balance}",
                extra={
                    "event": "quorumsafe.engine.executed",
                    "engine": self.name,
                    "tx_id": tx_id,
                    "executor": executor,
                    "destination": tx.destination,
                    "value": tx.value,
                    "balance": balance,
                },
            )
            if self.settings.metrics_enabled:
                metrics.record_execution(self.name, "success")
                metrics.update_balance(self.name, balance)
        return result

    # ==================== Internal ====================

    def _dispatch(self, tx: Transaction, checkpoint: Dict[str, Any], executor: str) -> CallResult:
        """Debit the value, perform the call and roll back on any failure."""
        if tx.value > self._balance:
            self._fail(
                tx,
                checkpoint,
                executor,
                f"insufficient balance ({self._balance}) for value ({tx.value})",
            )

        self._balance -= tx.value
        try:
            result = self._executor.invoke(tx.destination, tx.value, tx.payload)
        except Exception as exc:
            self._fail(tx, checkpoint, executor, f"{type(exc).__name__}: {exc}", cause=exc)

        if not result.success:
            self._fail(tx, checkpoint, executor, result.error or "call reported failure")
        return result

    def _fail(
        self,
        tx: Transaction,
        checkpoint: Dict[str, Any],
        executor: str,
        reason: str,
        cause: Optional[BaseException] = None,
    ) -> NoReturn:
        self._rollback(checkpoint)
        self._events.record(
            EventType.EXECUTION_FAILED,
            executor,
            tx_id=tx.tx_id,
            value=tx.value,
            destination=tx.destination,
            reason=reason,
        )
        logger.warning(
            f"External call for transaction {tx.tx_id} failed, state rolled back",
            extra={
                "event": "quorumsafe.engine.call_failed",
                "engine": self.name,
                "tx_id": tx.tx_id,
                "destination": tx.destination,
                "reason": reason,
            },
        )
        if self.settings.metrics_enabled:
            metrics.record_execution(self.name, "call_failed")
            metrics.update_balance(self.name, self._balance)
        if cause is not None:
            raise ExternalCallFailed(tx.tx_id, reason) from cause
        raise ExternalCallFailed(tx.tx_id, reason)

    def _begin(self) -> Dict[str, Any]:
        return {
            "transactions": self._transactions.begin(),
            "approvals": self._approvals.begin(),
            "balance": self._balance,
            "events": self._events.snapshot(),
        }

    def _commit(self) -> None:
        self._transactions.commit()
        self._approvals.commit()

    def _rollback(self, checkpoint: Dict[str, Any]) -> None:
        self._transactions.rollback(checkpoint["transactions"])
        self._approvals.rollback(checkpoint["approvals"])
        self._balance = checkpoint["balance"]
        self._events.restore(checkpoint["events"])
        self._deferred.clear()

    def _after_commit(self, callback: Callable[..., None], *args: Any) -> None:
        """
        Run a logging/metrics callback for a committed state change.

        Must be called with the lock held. Changes made from inside an
        in-flight call are only committed once that execution succeeds, so
        their callbacks wait for it and are dropped if it rolls back.
        """
        if self._guard.entered:
            self._deferred.append((callback, args))
        else:
            callback(*args)

    def _run_deferred(self) -> None:
        deferred, self._deferred = self._deferred, []
        for callback, args in deferred:
            callback(*args)

    def _record_reentrancy_blocked(self) -> None:
        if self.settings.metrics_enabled:
            metrics.record_reentrancy_blocked(self.name)

    def _on_deposit(self, depositor: str, amount: int, balance: int) -> None:
        logger.info(
            "Deposit received",
            extra={
                "event": "quorumsafe.engine.deposit",
                "engine": self.name,
                "depositor": depositor,
                "amount": amount,
                "balance": balance,
            },
        )
        if self.settings.metrics_enabled:
            metrics.record_deposit(self.name, amount)
            metrics.update_balance(self.name, balance)

    def _on_proposed(self, tx: Transaction) -> None:
        logger.info(
            "Transaction proposed",
            extra={
                "event": "quorumsafe.engine.proposed",
                "engine": self.name,
                "tx_id": tx.tx_id,
                "proposer": tx.proposer,
                "destination": tx.destination,
                "value": tx.value,
                "payload_bytes": len(tx.payload),
            },
        )
        if self.settings.metrics_enabled:
            metrics.record_proposal(self.name)

    def _on_approved(self, tx_id: int, owner: str, count: int) -> None:
        logger.info(
            f"Transaction {tx_id} approved by {owner}. Approvals: {count}/{self._registry.required}",
            extra={
                "event": "quorumsafe.engine.approved",
                "engine": self.name,
                "tx_id": tx_id,
                "owner": owner,
                "approval_count": count,
                "required": self._registry.required,
            },
        )
        if count == self._registry.required:
            logger.info(
                "Transaction reached threshold, ready for execution",
                extra={"event": "quorumsafe.engine.threshold_met", "engine": self.name, "tx_id": tx_id},
            )
        if self.settings.metrics_enabled:
            metrics.record_approval_change(self.name, "approve")

    def _on_revoked(self, tx_id: int, owner: str, count: int) -> None:
        logger.info(
            f"Approval of transaction {tx_id} revoked by {owner}. "
            f"Approvals: {count}/{self._registry.required}",
            extra={
                "event": "quorumsafe.engine.revoked",
                "engine": self.name,
                "tx_id": tx_id,
                "owner": owner,
                "approval_count": count,
            },
        )
        if self.settings.metrics_enabled:
            metrics.record_approval_change(self.name, "revoke")

    def __repr__(self) -> str:
        return (
            f"ApprovalEngine(name={self.name!r}, {self._registry.required}-of-{len(self._registry)}, "
            f"transactions={len(self._transactions)})"
        )
