"""
Owner registry: the fixed set of identities allowed to propose, approve and
revoke, together with the approval threshold.

The registry is validated once at construction and is read-only afterwards.
Changing owners or the threshold means building a new engine.
"""

from __future__ import annotations

import re
from typing import Any, Iterable, List, Optional, Tuple

from .exceptions import InvalidOwner, InvalidRequiredApprovals, NotEnoughOwners, OwnerNotUnique


_ZERO_ADDRESS = re.compile(r"0x0+")


def normalize_identity(identity: Any) -> Optional[str]:
    """
    Return the canonical form of an identity, or None if it is unusable.

    Identities are compared case-insensitively with surrounding whitespace
    removed. Non-strings, the empty string and the zero address are sentinels.
    """
    if not isinstance(identity, str):
        return None
    normalized = identity.strip().lower()
    if not normalized or _ZERO_ADDRESS.fullmatch(normalized):
        return None
    return normalized


class OwnerRegistry:
    """Immutable M-of-N owner set."""

    __slots__ = ("_owners", "_owner_set", "_required")

    def __init__(self, owners: Iterable[Any], required: Any):
        """
        Validate and freeze the owner set.

        Args:
            owners: Ordered owner identities
            required: Number of approvals needed to execute (M in M-of-N)

        Raises:
            NotEnoughOwners: If the owner list is empty
            InvalidOwner: If an identity is null, a sentinel or not a string
            OwnerNotUnique: If an identity appears twice
            InvalidRequiredApprovals: If required is not in 1..len(owners)
        """
        raw = list(owners) if owners is not None else []
        if not raw:
            raise NotEnoughOwners("Owners list cannot be empty.")

        normalized: List[str] = []
        for position, identity in enumerate(raw):
            owner = normalize_identity(identity)
            if owner is None:
                raise InvalidOwner(
                    f"Owner at position {position} is not a valid identity: {identity!r}",
                    details={"position": position},
                )
            normalized.append(owner)

        seen = set()
        for owner in normalized:
            if owner in seen:
                raise OwnerNotUnique(owner)
            seen.add(owner)

        if (
            isinstance(required, bool)
            or not isinstance(required, int)
            or not (1 <= required <= len(normalized))
        ):
            raise InvalidRequiredApprovals(required, len(normalized))

        self._owners: Tuple[str, ...] = tuple(normalized)
        self._owner_set = frozenset(normalized)
        self._required = required

    @property
    def owners(self) -> Tuple[str, ...]:
        return self._owners

    @property
    def required(self) -> int:
        return self._required

    def __len__(self) -> int:
        return len(self._owners)

    def __contains__(self, identity: Any) -> bool:
        return self.is_owner(identity)

    def is_owner(self, identity: Any) -> bool:
        owner = normalize_identity(identity)
        return owner is not None and owner in self._owner_set

    def __repr__(self) -> str:
        return f"OwnerRegistry({self._required}-of-{len(self._owners)})"
