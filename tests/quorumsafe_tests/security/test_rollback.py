"""
Security regression tests for failed external calls.

When a call fails, the engine must look exactly as it did before the execute
attempt, apart from the recorded failure, and the transaction must remain
executable.
"""

import pytest

from quorumsafe.core.call_executor import CallResult
from quorumsafe.core.events import EventType
from quorumsafe.core.exceptions import ExternalCallFailed


def _approved(engine, destination, value, payload=b""):
    tx_id = engine.submit("alice", destination, value, payload)
    engine.approve("bob", tx_id)
    return tx_id


@pytest.mark.security
class TestFailedCallRollback:
    def test_reverted_call_leaves_state_unchanged(self, engine, executor):
        executor.register("0xContract", lambda value, payload: False)
        tx_id = _approved(engine, "0xContract", 400)
        before = engine.get_transaction_status(tx_id)

        with pytest.raises(ExternalCallFailed) as exc_info:
            engine.execute("alice", tx_id)

        assert exc_info.value.tx_id == tx_id
        assert exc_info.value.reason == "call reverted"
        assert engine.get_transaction_status(tx_id) == before
        assert engine.balance == 1000
        assert executor.balance_of("0xContract") == 0
        assert engine.get_approvers(tx_id) == ["alice", "bob"]

    def test_failure_is_recorded(self, engine, executor):
        executor.register("0xContract", lambda value, payload: False)
        tx_id = _approved(engine, "0xContract", 1)

        with pytest.raises(ExternalCallFailed):
            engine.execute("charlie", tx_id)

        failed = engine.events.of_type(EventType.EXECUTION_FAILED)
        assert len(failed) == 1
        assert failed[0].identity == "charlie"
        assert failed[0].details["reason"] == "call reverted"
        assert engine.events.of_type(EventType.TRANSACTION_EXECUTED) == []

    def test_retry_after_failure_succeeds(self, engine, executor):
        outcomes = iter([False, None])
        executor.register("0xFlaky", lambda value, payload: next(outcomes))
        tx_id = _approved(engine, "0xFlaky", 50)

        with pytest.raises(ExternalCallFailed):
            engine.execute("alice", tx_id)
        result = engine.execute("alice", tx_id)

        assert result.success
        assert engine.balance == 950
        assert executor.balance_of("0xFlaky") == 50

    def test_pending_transaction_can_still_change_approvals(self, engine, executor):
        executor.register("0xContract", lambda value, payload: False)
        tx_id = _approved(engine, "0xContract", 1)

        with pytest.raises(ExternalCallFailed):
            engine.execute("alice", tx_id)

        assert engine.revoke("bob", tx_id) == 1
        assert engine.approve("charlie", tx_id) == 2

    def test_nested_changes_are_rolled_back(self, engine, executor):
        """State changed by the failing call's own code is discarded too."""
        received = []
        engine.events.subscribe(received.append)

        def callback(value, payload):
            engine.deposit("insider", 500)
            engine.propose("alice", "0xSneaky", 1)
            return False

        executor.register("0xContract", callback)
        tx_id = _approved(engine, "0xContract", 10)
        count_before = engine.transaction_count()
        received.clear()

        with pytest.raises(ExternalCallFailed):
            engine.execute("alice", tx_id)

        assert engine.balance == 1000
        assert engine.transaction_count() == count_before
        assert [e.event_type for e in received] == [EventType.EXECUTION_FAILED]

    def test_event_sequence_stays_contiguous(self, engine, executor):
        executor.register("0xContract", lambda value, payload: engine.propose("alice", "0xA1", 0) and False)
        tx_id = _approved(engine, "0xContract", 0)

        with pytest.raises(ExternalCallFailed):
            engine.execute("alice", tx_id)

        assert [e.seq for e in engine.events.events] == list(range(len(engine.events)))


@pytest.mark.security
class TestInsufficientBalance:
    def test_value_above_balance_fails_without_calling(self, engine, executor):
        tx_id = _approved(engine, "0xRecipient", 5000)

        with pytest.raises(ExternalCallFailed, match="insufficient balance"):
            engine.execute("alice", tx_id)

        assert executor.calls == []
        assert engine.balance == 1000
        assert not engine.get_transaction(tx_id).executed

    def test_executes_once_funded(self, engine):
        tx_id = _approved(engine, "0xRecipient", 1500)

        with pytest.raises(ExternalCallFailed):
            engine.execute("alice", tx_id)
        engine.deposit("funder", 500)

        assert engine.execute("alice", tx_id).success
        assert engine.balance == 0

    def test_exact_balance_can_be_spent(self, engine):
        tx_id = _approved(engine, "0xRecipient", 1000)
        engine.execute("alice", tx_id)
        assert engine.balance == 0


@pytest.mark.security
class TestExecutorFailures:
    def test_raising_executor_is_a_failed_call(self, make_engine):
        class BrokenExecutor:
            def invoke(self, destination, value, payload):
                raise ConnectionError("host unreachable")

        engine = make_engine(call_executor=BrokenExecutor())
        engine.deposit("funder", 100)
        tx_id = _approved(engine, "0xRecipient", 100)

        with pytest.raises(ExternalCallFailed) as exc_info:
            engine.execute("alice", tx_id)

        assert isinstance(exc_info.value.__cause__, ConnectionError)
        assert "ConnectionError" in exc_info.value.reason
        assert engine.balance == 100
        assert engine.executing is False
        assert not engine.get_transaction(tx_id).executed

    def test_unsuccessful_result_uses_executor_error(self, make_engine):
        class RefusingExecutor:
            def invoke(self, destination, value, payload):
                return CallResult(False, error="destination rejected value")

        engine = make_engine(call_executor=RefusingExecutor())
        tx_id = _approved(engine, "0xRecipient", 0)

        with pytest.raises(ExternalCallFailed) as exc_info:
            engine.execute("alice", tx_id)

        assert exc_info.value.reason == "destination rejected value"
        assert exc_info.value.__cause__ is None


class CancelledCall(BaseException):
    """Stands in for a cancellation raised out of an async-bridging executor."""


@pytest.mark.security
class TestInterruptedExecution:
    """Exceptions outside the Exception hierarchy still never leave a half-executed transaction."""

    @pytest.mark.parametrize("interrupt", [KeyboardInterrupt, SystemExit, CancelledCall])
    def test_interrupt_rolls_back_and_propagates(self, make_engine, interrupt):
        class InterruptingExecutor:
            def invoke(self, destination, value, payload):
                raise interrupt()

        engine = make_engine(call_executor=InterruptingExecutor())
        engine.deposit("funder", 100)
        tx_id = _approved(engine, "0xRecipient", 40)

        with pytest.raises(interrupt):
            engine.execute("alice", tx_id)

        assert engine.get_transaction(tx_id).executed is False
        assert engine.get_transaction(tx_id).executed_by is None
        assert engine.balance == 100
        assert engine.executing is False
        assert engine.events.of_type(EventType.EXECUTION_FAILED) == []

    def test_interrupted_transaction_can_be_retried(self, engine, executor):
        def interrupted_once(value, payload):
            executor.unregister("0xContract")
            raise CancelledCall()

        executor.register("0xContract", interrupted_once)
        tx_id = _approved(engine, "0xContract", 40)

        with pytest.raises(CancelledCall):
            engine.execute("alice", tx_id)

        assert engine.execute("alice", tx_id).success
        assert engine.balance == 960

    def test_interrupt_discards_nested_changes(self, engine, executor):
        def callback(value, payload):
            engine.deposit("insider", 500)
            engine.propose("alice", "0xSneaky", 1)
            raise SystemExit(1)

        executor.register("0xContract", callback)
        tx_id = _approved(engine, "0xContract", 10)
        count_before = engine.transaction_count()

        with pytest.raises(SystemExit):
            engine.execute("alice", tx_id)

        assert engine.balance == 1000
        assert engine.transaction_count() == count_before
        assert executor.balance_of("0xContract") == 0


@pytest.mark.security
class TestRollbackScope:
    def test_untouched_records_are_not_replaced(self, engine, executor):
        """A failed attempt undoes its own changes in place rather than swapping in copies."""
        executor.register("0xContract", lambda value, payload: False)
        earlier = _approved(engine, "0xRecipient", 1)
        tx_id = _approved(engine, "0xContract", 1)
        earlier_record = engine._transactions.get(earlier)
        failing_record = engine._transactions.get(tx_id)
        approvals_record = engine._approvals._records[earlier]

        with pytest.raises(ExternalCallFailed):
            engine.execute("alice", tx_id)

        assert engine._transactions.get(earlier) is earlier_record
        assert engine._transactions.get(tx_id) is failing_record
        assert engine._approvals._records[earlier] is approvals_record
        assert failing_record.executed is False

    def test_journals_are_empty_between_executions(self, engine, executor):
        executor.register("0xContract", lambda value, payload: engine.approve("charlie", earlier) and False)
        earlier = engine.propose("alice", "0xRecipient", 1)
        tx_id = _approved(engine, "0xContract", 1)

        with pytest.raises(ExternalCallFailed):
            engine.execute("alice", tx_id)
        engine.approve("charlie", earlier)

        assert engine._transactions._journal == []
        assert engine._approvals._journal == []
        assert engine.get_approvers(earlier) == ["charlie"]
