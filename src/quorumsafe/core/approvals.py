"""
Approval ledger: per-transaction record of which owners have approved.

The approval count is maintained incrementally on every approve/revoke, so a
quorum check is a single read rather than a scan over the owner set.

While a checkpoint is open (``begin``), every mutation is journaled so that
``rollback`` can undo exactly the changes made since, without copying the
ledger.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Tuple

from .exceptions import TxNotFound

_MISSING = object()

# (tx_id, owner, previous flag, previous count); owner None undoes an ``open``
JournalEntry = Tuple[int, Optional[str], Any, int]


@dataclass
class ApprovalRecord:
    """Approval state of one transaction."""

    approval_count: int = 0
    approved_by: Dict[str, bool] = field(default_factory=dict)


class ApprovalLedger:
    """
    Owns the ApprovalRecord of every transaction, keyed by transaction index.

    Authorization and state guards run in the engine before any method here is
    called; this class only keeps the flag map and the tally in step.
    """

    def __init__(self) -> None:
        self._records: Dict[int, ApprovalRecord] = {}
        self._journal: List[JournalEntry] = []
        self._open_checkpoints = 0

    def open(self, tx_id: int) -> None:
        """Create the empty record for a newly proposed transaction."""
        self._records[tx_id] = ApprovalRecord()
        self._log(tx_id, None, _MISSING, 0)

    def _record(self, tx_id: int) -> ApprovalRecord:
        record = self._records.get(tx_id)
        if record is None:
            raise TxNotFound(tx_id)
        return record

    def _log(self, tx_id: int, owner: Optional[str], previous: Any, count: int) -> None:
        if self._open_checkpoints:
            self._journal.append((tx_id, owner, previous, count))

    def is_approved(self, tx_id: int, owner: str) -> bool:
        return self._record(tx_id).approved_by.get(owner, False)

    def approve(self, tx_id: int, owner: str) -> int:
        """Mark ``owner`` as approving ``tx_id``; returns the new count."""
        record = self._record(tx_id)
        self._log(tx_id, owner, record.approved_by.get(owner, _MISSING), record.approval_count)
        record.approved_by[owner] = True
        record.approval_count += 1
        return record.approval_count

    def revoke(self, tx_id: int, owner: str) -> int:
        """Clear ``owner``'s approval of ``tx_id``; returns the new count."""
        record = self._record(tx_id)
        self._log(tx_id, owner, record.approved_by.get(owner, _MISSING), record.approval_count)
        record.approved_by[owner] = False
        record.approval_count -= 1
        return record.approval_count

    def approval_count(self, tx_id: int) -> int:
        return self._record(tx_id).approval_count

    def approvers(self, tx_id: int, owners: Iterable[str]) -> List[str]:
        """Owners with a live approval on ``tx_id``, in registry order."""
        approved_by = self._record(tx_id).approved_by
        return [owner for owner in owners if approved_by.get(owner, False)]

    # ==================== Checkpoints ====================

    def begin(self) -> int:
        """Open a checkpoint and return its journal position."""
        self._open_checkpoints += 1
        return len(self._journal)

    def commit(self) -> None:
        self._close()

    def rollback(self, checkpoint: int) -> None:
        """Undo every mutation journaled since ``checkpoint``, newest first."""
        while len(self._journal) > checkpoint:
            tx_id, owner, previous, count = self._journal.pop()
            if owner is None:
                del self._records[tx_id]
                continue
            record = self._records[tx_id]
            if previous is _MISSING:
                record.approved_by.pop(owner, None)
            else:
                record.approved_by[owner] = previous
            record.approval_count = count
        self._close()

    def _close(self) -> None:
        self._open_checkpoints -= 1
        if not self._open_checkpoints:
            self._journal.clear()
