"""Core approval-engine components."""

from .call_executor import CallExecutor, CallRecord, CallResult, LocalCallExecutor
from .engine import ApprovalEngine
from .events import EngineEvent, EventLog, EventType
from .exceptions import (
    AlreadyApproved,
    AlreadyExecuted,
    ConfigurationError,
    ExternalCallFailed,
    InvalidDeposit,
    InvalidOwner,
    InvalidProposal,
    InvalidRequiredApprovals,
    NotApproved,
    NotEnoughApprovals,
    NotEnoughOwners,
    NotOwner,
    OwnerNotUnique,
    QuorumSafeError,
    ReentrantCall,
    TxNotFound,
)
from .owners import OwnerRegistry
from .transactions import Transaction

__all__ = [
    "AlreadyApproved",
    "AlreadyExecuted",
    "ApprovalEngine",
    "CallExecutor",
    "CallRecord",
    "CallResult",
    "ConfigurationError",
    "EngineEvent",
    "EventLog",
    "EventType",
    "ExternalCallFailed",
    "InvalidDeposit",
    "InvalidOwner",
    "InvalidProposal",
    "InvalidRequiredApprovals",
    "LocalCallExecutor",
    "NotApproved",
    "NotEnoughApprovals",
    "NotEnoughOwners",
    "NotOwner",
    "OwnerNotUnique",
    "OwnerRegistry",
    "QuorumSafeError",
    "ReentrantCall",
    "Transaction",
    "TxNotFound",
]
