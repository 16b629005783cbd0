"""
Transaction ledger: the append-only sequence of proposed actions.

Each transaction is identified by its 0-based position in the ledger. Committed
records are never deleted; the only mutation after creation is the one-way
execution flag, which the engine flips. A rollback discards proposals made
after its checkpoint and undoes execution flags journaled since then.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple

from .exceptions import InvalidProposal, TxNotFound
from .owners import normalize_identity

logger = logging.getLogger(__name__)

# (ledger length, undo-journal position)
Checkpoint = Tuple[int, int]


@dataclass
class Transaction:
    """A proposed call awaiting quorum.

    ``destination`` is the identity the call is issued against. It is unrelated
    to ``proposer``: any owner may propose a call to any third party.
    """

    tx_id: int
    destination: str
    value: int
    payload: bytes
    proposer: str
    executed: bool = False
    executed_by: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "tx_id": self.tx_id,
            "destination": self.destination,
            "value": self.value,
            "payload": self.payload.hex(),
            "proposer": self.proposer,
            "executed": self.executed,
            "executed_by": self.executed_by,
        }


class TransactionLedger:
    """Append-only store of Transaction records keyed by index."""

    def __init__(self, max_payload_bytes: Optional[int] = None):
        self._transactions: List[Transaction] = []
        self._max_payload_bytes = max_payload_bytes
        self._journal: List[Tuple[int, bool, Optional[str]]] = []
        self._open_checkpoints = 0

    def __len__(self) -> int:
        return len(self._transactions)

    def propose(self, destination: Any, value: Any, payload: Any, proposer: str) -> int:
        """
        Append a new pending transaction.

        Args:
            destination: Identity the call targets
            value: Non-negative integer amount sent with the call
            payload: Opaque call data
            proposer: Owner proposing the call (already authorized by the engine)

        Returns:
            Index of the new transaction

        Raises:
            InvalidProposal: If destination, value or payload is malformed
        """
        target = normalize_identity(destination)
        if target is None:
            raise InvalidProposal(
                f"Destination is not a valid identity: {destination!r}",
                details={"field": "destination"},
            )
        if isinstance(value, bool) or not isinstance(value, int) or value < 0:
            raise InvalidProposal(
                f"Value must be a non-negative integer, got {value!r}",
                details={"field": "value"},
            )
        if payload is None:
            payload = b""
        if not isinstance(payload, (bytes, bytearray)):
            raise InvalidProposal(
                f"Payload must be bytes, got {type(payload).__name__}",
                details={"field": "payload"},
            )
        if self._max_payload_bytes is not None and len(payload) > self._max_payload_bytes:
            raise InvalidProposal(
                f"Payload of {len(payload)} bytes exceeds limit of {self._max_payload_bytes}",
                details={"field": "payload", "size": len(payload), "limit": self._max_payload_bytes},
            )

        tx_id = len(self._transactions)
        self._transactions.append(
            Transaction(
                tx_id=tx_id,
                destination=target,
                value=value,
                payload=bytes(payload),
                proposer=proposer,
            )
        )
        return tx_id

    def exists(self, tx_id: Any) -> bool:
        return (
            isinstance(tx_id, int)
            and not isinstance(tx_id, bool)
            and 0 <= tx_id < len(self._transactions)
        )

    def get(self, tx_id: Any) -> Transaction:
        if not self.exists(tx_id):
            raise TxNotFound(tx_id)
        return self._transactions[tx_id]

    def mark_executed(self, tx_id: int, executor: Optional[str]) -> None:
        tx = self.get(tx_id)
        if self._open_checkpoints:
            self._journal.append((tx_id, tx.executed, tx.executed_by))
        tx.executed = True
        tx.executed_by = executor

    def count(self, pending: bool = True, executed: bool = True) -> int:
        """Number of transactions matching the pending/executed filters."""
        return sum(
            1
            for tx in self._transactions
            if (pending and not tx.executed) or (executed and tx.executed)
        )

    def ids(
        self,
        start: int = 0,
        stop: Optional[int] = None,
        pending: bool = True,
        executed: bool = True,
    ) -> List[int]:
        """Indices in ``[start, stop)`` matching the pending/executed filters."""
        window = self._transactions[start:stop]
        return [
            tx.tx_id
            for tx in window
            if (pending and not tx.executed) or (executed and tx.executed)
        ]

    # ==================== Checkpoints ====================

    def begin(self) -> Checkpoint:
        """Open a checkpoint: the ledger length plus the undo-journal position."""
        self._open_checkpoints += 1
        return len(self._transactions), len(self._journal)

    def commit(self) -> None:
        self._close()

    def rollback(self, checkpoint: Checkpoint) -> None:
        """Undo execution flags set since ``checkpoint`` and drop later proposals."""
        length, mark = checkpoint
        while len(self._journal) > mark:
            tx_id, executed, executed_by = self._journal.pop()
            tx = self._transactions[tx_id]
            tx.executed = executed
            tx.executed_by = executed_by
        dropped = len(self._transactions) - length
        del self._transactions[length:]
        self._close()
        logger.debug(
            "Transaction ledger rolled back",
            extra={"event": "quorumsafe.ledger.rolled_back", "transactions": length, "dropped": dropped},
        )

    def _close(self) -> None:
        self._open_checkpoints -= 1
        if not self._open_checkpoints:
            self._journal.clear()
