"""
External call capability consumed by the execution path.

The engine never moves value or runs target code itself. It hands the
destination, value and payload of an approved transaction to a CallExecutor
and only looks at whether the call succeeded. Executors report failure through
``CallResult.success``; raising out of ``invoke`` is treated by the engine as a
failed call.

``LocalCallExecutor`` is the in-process host used by default and in tests:
it keeps per-destination balances and lets callers register handlers that
play the role of contract code at a destination.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Protocol, Union

from .owners import normalize_identity

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CallResult:
    """Outcome of one external call."""

    success: bool
    return_data: bytes = b""
    error: str = ""


class CallExecutor(Protocol):
    def invoke(self, destination: str, value: int, payload: bytes) -> CallResult:
        ...


# A handler returns False to fail the call, bytes to return data, anything
# else (usually None) to succeed with no return data.
CallHandler = Callable[[int, bytes], Union[bool, bytes, None]]


@dataclass(frozen=True)
class CallRecord:
    destination: str
    value: int
    payload: bytes
    success: bool


class LocalCallExecutor:
    """In-memory host ledger: credits destinations and runs registered handlers."""

    def __init__(self) -> None:
        self._balances: Dict[str, int] = {}
        self._handlers: Dict[str, CallHandler] = {}
        self.calls: List[CallRecord] = []

    def register(self, destination: str, handler: CallHandler) -> None:
        """Attach contract-like behaviour to a destination."""
        key = normalize_identity(destination)
        if key is None:
            raise ValueError(f"Invalid destination: {destination!r}")
        self._handlers[key] = handler

    def unregister(self, destination: str) -> None:
        self._handlers.pop(normalize_identity(destination), None)

    def balance_of(self, destination: str) -> int:
        return self._balances.get(normalize_identity(destination), 0)

    def invoke(self, destination: str, value: int, payload: bytes) -> CallResult:
        key = normalize_identity(destination)
        if key is None:
            return self._finish(str(destination), value, payload, CallResult(False, error="invalid destination"))

        self._balances[key] = self._balances.get(key, 0) + value
        handler: Optional[CallHandler] = self._handlers.get(key)
        if handler is None:
            return self._finish(key, value, payload, CallResult(True))

        try:
            outcome = handler(value, payload)
        except Exception as e:
            logger.info(
                "Call handler raised, reverting call",
                extra={
                    "event": "quorumsafe.call.handler_raised",
                    "destination": key,
                    "error_type": type(e).__name__,
                },
            )
            self._balances[key] -= value
            return self._finish(key, value, payload, CallResult(False, error=f"{type(e).__name__}: {e}"))
        except BaseException:
            self._balances[key] -= value
            raise

        if outcome is False:
            self._balances[key] -= value
            return self._finish(key, value, payload, CallResult(False, error="call reverted"))
        if isinstance(outcome, (bytes, bytearray)):
            return self._finish(key, value, payload, CallResult(True, return_data=bytes(outcome)))
        return self._finish(key, value, payload, CallResult(True))

    def _finish(self, destination: str, value: int, payload: bytes, result: CallResult) -> CallResult:
        self.calls.append(CallRecord(destination, value, bytes(payload), result.success))
        logger.debug(
            "External call completed",
            extra={
                "event": "quorumsafe.call.completed",
                "destination": destination,
                "value": value,
                "success": result.success,
            },
        )
        return result
