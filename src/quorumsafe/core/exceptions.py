"""
Approval-engine exception hierarchy for QuorumSafe.

Every failure the engine can report is a typed exception. The invoking
operation aborts entirely and leaves no partial mutation behind, so callers can
match on the exception class (or on its stable ``code`` tag) and decide whether
to retry.
"""

from __future__ import annotations
from typing import Optional, Any, Dict


class QuorumSafeError(Exception):
    """Base exception for all approval-engine errors.

    Attributes:
        message: Human-readable error description
        details: Additional context about the error
        recoverable: Whether re-issuing the operation later can succeed
        code: Stable tag identifying the error variant (the class name)
    """

    recoverable: bool = False

    def __init__(
        self,
        message: str,
        details: Optional[Dict[str, Any]] = None,
        recoverable: Optional[bool] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}
        if recoverable is not None:
            self.recoverable = recoverable

    @property
    def code(self) -> str:
        return type(self).__name__

    def to_dict(self) -> Dict[str, Any]:
        return {
            "code": self.code,
            "message": self.message,
            "details": dict(self.details),
            "recoverable": self.recoverable,
        }


# ==================== Construction Errors ====================


class ConstructionError(QuorumSafeError):
    """Raised when an engine cannot be built from the supplied owners/threshold."""
    pass


class NotEnoughOwners(ConstructionError):
    """Raised when the owner list is empty."""
    pass


class OwnerNotUnique(ConstructionError):
    """Raised when the same identity appears more than once in the owner list."""

    def __init__(self, owner: str, **kwargs: Any) -> None:
        super().__init__(f"Owner {owner} is listed more than once", details={"owner": owner}, **kwargs)
        self.owner = owner


class InvalidOwner(ConstructionError):
    """Raised for a null, sentinel or non-string owner identity."""
    pass


class InvalidRequiredApprovals(ConstructionError):
    """Raised when the threshold is not within 1..len(owners)."""

    def __init__(self, required: Any, owner_count: int, **kwargs: Any) -> None:
        super().__init__(
            f"Required approvals must be an integer between 1 and {owner_count}, got {required!r}",
            details={"required": required, "owner_count": owner_count},
            **kwargs,
        )
        self.required = required
        self.owner_count = owner_count


# ==================== Authorization Errors ====================


class NotOwner(QuorumSafeError):
    """Raised when a caller that is not an owner attempts an owner-only operation."""

    def __init__(self, caller: Any, **kwargs: Any) -> None:
        super().__init__(f"Caller {caller!r} is not an owner", details={"caller": caller}, **kwargs)
        self.caller = caller


# ==================== Transaction State Errors ====================


class TransactionStateError(QuorumSafeError):
    """Raised when an operation does not fit the transaction's current state."""

    def __init__(self, message: str, tx_id: Any = None, **kwargs: Any) -> None:
        details = kwargs.pop("details", None) or {}
        details.setdefault("tx_id", tx_id)
        super().__init__(message, details=details, **kwargs)
        self.tx_id = tx_id


class TxNotFound(TransactionStateError):
    """Raised when a transaction index does not refer to a proposed transaction."""

    def __init__(self, tx_id: Any, **kwargs: Any) -> None:
        super().__init__(f"Transaction {tx_id!r} not found", tx_id=tx_id, **kwargs)


class AlreadyExecuted(TransactionStateError):
    """Raised when approving, revoking or executing an executed transaction."""

    def __init__(self, tx_id: int, **kwargs: Any) -> None:
        super().__init__(f"Transaction {tx_id} has already been executed", tx_id=tx_id, **kwargs)


class AlreadyApproved(TransactionStateError):
    """Raised when an owner approves a transaction a second time."""

    def __init__(self, tx_id: int, owner: str, **kwargs: Any) -> None:
        super().__init__(
            f"Owner {owner} has already approved transaction {tx_id}",
            tx_id=tx_id,
            details={"owner": owner},
            **kwargs,
        )
        self.owner = owner


class NotApproved(TransactionStateError):
    """Raised when an owner revokes an approval it never gave."""

    def __init__(self, tx_id: int, owner: str, **kwargs: Any) -> None:
        super().__init__(
            f"Owner {owner} has not approved transaction {tx_id}",
            tx_id=tx_id,
            details={"owner": owner},
            **kwargs,
        )
        self.owner = owner


class NotEnoughApprovals(TransactionStateError):
    """Raised when executing a transaction below the approval threshold."""

    recoverable = True  # More approvals can arrive

    def __init__(self, tx_id: int, required: int, actual: int, **kwargs: Any) -> None:
        super().__init__(
            f"Transaction {tx_id} does not have enough approvals. "
            f"Required: {required}, Current: {actual}",
            tx_id=tx_id,
            details={"required": required, "actual": actual},
            **kwargs,
        )
        self.required = required
        self.actual = actual


# ==================== Execution Errors ====================


class ExecutionError(QuorumSafeError):
    """Raised when the execution path itself fails."""
    pass


class ExternalCallFailed(ExecutionError):
    """Raised when the call capability reports failure; engine state is rolled back."""

    recoverable = True  # The transaction stays pending and can be executed again

    def __init__(self, tx_id: int, reason: str = "", **kwargs: Any) -> None:
        message = f"External call for transaction {tx_id} failed"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message, details={"tx_id": tx_id, "reason": reason}, **kwargs)
        self.tx_id = tx_id
        self.reason = reason


class ReentrantCall(ExecutionError):
    """Raised when a guarded entry point is invoked while an execution is in flight."""

    def __init__(self, operation: str = "execute", **kwargs: Any) -> None:
        super().__init__(
            f"Reentrant call to {operation} rejected while an execution is in progress",
            details={"operation": operation},
            **kwargs,
        )
        self.operation = operation


# ==================== Input Validation Errors ====================


class ValidationError(QuorumSafeError):
    """Raised when operation arguments are malformed."""
    pass


class InvalidProposal(ValidationError):
    """Raised when a proposed transaction has a bad destination, value or payload."""
    pass


class InvalidDeposit(ValidationError):
    """Raised when a deposit amount is negative or not an integer."""
    pass


# ==================== Configuration Errors ====================


class ConfigurationError(QuorumSafeError):
    """Raised when required configuration is missing or invalid."""
    pass
