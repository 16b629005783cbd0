"""
Property-based tests for approval counting and execution.

Usage:
    pytest tests/quorumsafe_tests/property -v
"""

from __future__ import annotations

import pytest
from hypothesis import given, settings, strategies as st
from hypothesis.stateful import RuleBasedStateMachine, invariant, precondition, rule

from quorumsafe.core.call_executor import LocalCallExecutor
from quorumsafe.core.config import Settings
from quorumsafe.core.engine import ApprovalEngine
from quorumsafe.core.exceptions import (
    AlreadyApproved,
    AlreadyExecuted,
    ExternalCallFailed,
    NotApproved,
    NotEnoughApprovals,
    QuorumSafeError,
)

QUIET = Settings(environment="test", metrics_enabled=False)

# ============================================================================
# CUSTOM STRATEGIES
# ============================================================================


@st.composite
def owner_sets(draw, min_size=1, max_size=6):
    """Distinct owner identities with a threshold in range."""
    size = draw(st.integers(min_value=min_size, max_value=max_size))
    owners = [f"0x{index + 1:040x}" for index in range(size)]
    required = draw(st.integers(min_value=1, max_value=size))
    return owners, required


def _engine(owners, required, executor=None):
    return ApprovalEngine(owners, required, call_executor=executor, name="property", settings=QUIET)


# ============================================================================
# APPROVAL PROPERTIES
# ============================================================================


class TestApprovalProperties:
    @given(
        owner_sets(),
        st.lists(st.tuples(st.booleans(), st.integers(min_value=0, max_value=5)), max_size=40),
    )
    @settings(max_examples=50, deadline=None)
    def test_count_matches_flags(self, config, steps):
        """
        Property: after any approve/revoke sequence, the count equals the
        number of owners whose flag is set.
        """
        owners, required = config
        engine = _engine(owners, required)
        tx_id = engine.propose(owners[0], "0xRecipient", 0)
        expected = set()

        for approve, index in steps:
            owner = owners[index % len(owners)]
            try:
                if approve:
                    engine.approve(owner, tx_id)
                    expected.add(owner)
                else:
                    engine.revoke(owner, tx_id)
                    expected.discard(owner)
            except AlreadyApproved:
                assert owner in expected
            except NotApproved:
                assert owner not in expected

            flags = [o for o in owners if engine.is_approved(tx_id, o)]
            assert engine.approval_count(tx_id) == len(flags) == len(expected)
            assert engine.get_approvers(tx_id) == flags
            assert 0 <= engine.approval_count(tx_id) <= len(owners)

    @given(owner_sets())
    @settings(max_examples=40, deadline=None)
    def test_threshold_is_exact(self, config):
        """
        Property: required - 1 approvals never execute; required approvals do.
        """
        owners, required = config
        engine = _engine(owners, required)
        tx_id = engine.propose(owners[0], "0xRecipient", 0)

        for owner in owners[: required - 1]:
            engine.approve(owner, tx_id)
        with pytest.raises(NotEnoughApprovals):
            engine.execute(owners[0], tx_id)

        engine.approve(owners[required - 1], tx_id)
        assert engine.execute(owners[0], tx_id).success

    @given(owner_sets(min_size=2), st.integers(min_value=0, max_value=2_000))
    @settings(max_examples=40, deadline=None)
    def test_value_is_conserved(self, config, value):
        """
        Property: engine balance plus destination balance is constant across
        execute, whether the call succeeds or fails.
        """
        owners, required = config
        executor = LocalCallExecutor()
        engine = _engine(owners, required, executor)
        engine.deposit("funder", 1_000)
        tx_id = engine.propose(owners[0], "0xRecipient", value)
        for owner in owners[:required]:
            engine.approve(owner, tx_id)

        try:
            engine.execute(owners[-1], tx_id)
        except ExternalCallFailed:
            assert value > 1_000
            assert not engine.get_transaction(tx_id).executed

        assert engine.balance + executor.balance_of("0xRecipient") == 1_000


# ============================================================================
# STATEFUL ENGINE MODEL
# ============================================================================


class ApprovalEngineMachine(RuleBasedStateMachine):
    """
    Drives a 2-of-3 engine with random operations and checks it against a
    simple model of approvals, executions and balances.
    """

    OWNERS = ["alice", "bob", "charlie"]

    def __init__(self):
        super().__init__()
        self.executor = LocalCallExecutor()
        self.executor.register("0xfails", lambda value, payload: False)
        self.engine = _engine(self.OWNERS, 2, self.executor)
        self.approvals = {}
        self.executed = set()
        self.values = {}
        self.balance = 0

    @rule(amount=st.integers(min_value=0, max_value=500))
    def deposit(self, amount):
        self.engine.deposit("funder", amount)
        self.balance += amount

    @rule(
        owner=st.sampled_from(OWNERS),
        destination=st.sampled_from(["0xok", "0xfails"]),
        value=st.integers(min_value=0, max_value=300),
    )
    def propose(self, owner, destination, value):
        tx_id = self.engine.propose(owner, destination, value)
        self.approvals[tx_id] = set()
        self.values[tx_id] = (destination, value)

    @precondition(lambda self: self.approvals)
    @rule(owner=st.sampled_from(OWNERS), data=st.data())
    def approve(self, owner, data):
        tx_id = data.draw(st.sampled_from(sorted(self.approvals)))
        try:
            self.engine.approve(owner, tx_id)
        except QuorumSafeError as e:
            assert isinstance(e, (AlreadyApproved, AlreadyExecuted))
            return
        assert tx_id not in self.executed
        assert owner not in self.approvals[tx_id]
        self.approvals[tx_id].add(owner)

    @precondition(lambda self: self.approvals)
    @rule(owner=st.sampled_from(OWNERS), data=st.data())
    def revoke(self, owner, data):
        tx_id = data.draw(st.sampled_from(sorted(self.approvals)))
        try:
            self.engine.revoke(owner, tx_id)
        except QuorumSafeError as e:
            assert isinstance(e, (NotApproved, AlreadyExecuted))
            return
        assert owner in self.approvals[tx_id]
        self.approvals[tx_id].discard(owner)

    @precondition(lambda self: self.approvals)
    @rule(data=st.data())
    def execute(self, data):
        tx_id = data.draw(st.sampled_from(sorted(self.approvals)))
        destination, value = self.values[tx_id]
        try:
            self.engine.execute("anyone", tx_id)
        except AlreadyExecuted:
            assert tx_id in self.executed
            return
        except NotEnoughApprovals:
            assert len(self.approvals[tx_id]) < 2
            return
        except ExternalCallFailed:
            assert destination == "0xfails" or value > self.balance
            return
        assert tx_id not in self.executed
        assert len(self.approvals[tx_id]) >= 2
        self.executed.add(tx_id)
        self.balance -= value

    @invariant()
    def counts_match_model(self):
        for tx_id, approvers in self.approvals.items():
            assert self.engine.approval_count(tx_id) == len(approvers)

    @invariant()
    def executed_match_model(self):
        for tx_id in self.approvals:
            assert self.engine.get_transaction(tx_id).executed == (tx_id in self.executed)

    @invariant()
    def balance_matches_model(self):
        assert self.engine.balance == self.balance
        assert self.engine.executing is False


TestApprovalEngineStateful = ApprovalEngineMachine.TestCase
TestApprovalEngineStateful.settings = settings(max_examples=30, stateful_step_count=30, deadline=None)
