"""
Unit tests for voting power resolution and delegation.

Covers the bounded chain reader, the Delegation record and the
VotingPowerResolver delegation table.
"""

import logging

logger = logging.getLogger(__name__)
import threading
from unittest.mock import Mock

import pytest

from lunadao.errors.exceptions import ExternalUnavailable, ValidationError
from lunadao.governance.backends import InMemoryChainReader
from lunadao.governance.chain import BoundedChainReader
from lunadao.governance.delegation import Delegation, VotingPowerResolver
from lunadao.governance.interfaces import ChainReader
from support import T0


@pytest.fixture
def bounded_chain():
    reader = InMemoryChainReader(balances={"alice": 1500, "bob": 2000, "carol": 0})
    bounded = BoundedChainReader(reader, timeout=1.0, max_workers=2)
    yield bounded
    bounded.shutdown()


@pytest.fixture
def resolver(bounded_chain):
    return VotingPowerResolver(bounded_chain)


class TestBoundedChainReader:
    """Test timeout-bounded chain access."""

    def test_passes_through(self, bounded_chain):
        assert bounded_chain.get_balance("alice") == 1500
        assert bounded_chain.get_total_supply() == 3500
        assert bounded_chain.get_block_height() == 0

    def test_reader_exception_wrapped(self):
        reader = Mock(spec=ChainReader)
        reader.get_balance.side_effect = ConnectionError("rpc down")
        bounded = BoundedChainReader(reader, timeout=1.0)
        try:
            with pytest.raises(ExternalUnavailable) as exc_info:
                bounded.get_balance("alice")
            assert exc_info.value.operation == "get_balance"
            assert isinstance(exc_info.value.cause, ConnectionError)
        finally:
            bounded.shutdown()

    def test_timeout(self):
        release = threading.Event()
        reader = Mock(spec=ChainReader)
        reader.get_total_supply.side_effect = lambda: release.wait(5) or 0
        bounded = BoundedChainReader(reader, timeout=0.05)
        try:
            with pytest.raises(ExternalUnavailable) as exc_info:
                bounded.get_total_supply()
            assert exc_info.value.timeout_duration == 0.05
        finally:
            release.set()
            bounded.shutdown()

    def test_negative_balance_rejected(self):
        reader = Mock(spec=ChainReader)
        reader.get_balance.return_value = -5
        bounded = BoundedChainReader(reader, timeout=1.0)
        try:
            with pytest.raises(ExternalUnavailable):
                bounded.get_balance("alice")
        finally:
            bounded.shutdown()


class TestDelegation:
    """Test Delegation record."""

    def test_self_delegation_rejected(self):
        with pytest.raises(ValidationError):
            Delegation("alice", "alice", 10)

    @pytest.mark.parametrize("amount", [0, -1])
    def test_non_positive_amount_rejected(self, amount):
        with pytest.raises(ValidationError):
            Delegation("alice", "bob", amount)

    def test_missing_address_rejected(self):
        with pytest.raises(ValidationError):
            Delegation("", "bob", 10)

    def test_expiry(self):
        delegation = Delegation("alice", "bob", 10, created_at=T0, expires_at=T0 + 100)

        assert delegation.is_valid(T0 + 50)
        assert delegation.is_expired(T0 + 101)
        assert not delegation.is_valid(T0 + 101)

    def test_inactive_is_invalid(self):
        delegation = Delegation("alice", "bob", 10, is_active=False)
        assert not delegation.is_valid(T0)

    def test_to_dict(self):
        data = Delegation("alice", "bob", 10, created_at=T0).to_dict()
        assert data == {
            "delegator": "alice",
            "delegate": "bob",
            "amount": 10,
            "created_at": T0,
            "expires_at": None,
            "is_active": True,
        }


class TestVotingPowerResolver:
    """Test VotingPowerResolver."""

    def test_balance_only(self, resolver):
        assert resolver.get_voting_power("alice", T0) == 1500
        assert resolver.get_voting_power("nobody", T0) == 0

    def test_delegated_power_is_added(self, resolver):
        resolver.delegate("alice", "carol", 1000, now=T0)

        assert resolver.get_delegated_power("carol", T0) == 1000
        assert resolver.get_voting_power("carol", T0) == 1000
        # The delegator keeps its own balance.
        assert resolver.get_voting_power("alice", T0) == 1500

    def test_delegations_from_several_delegators_sum(self, resolver):
        resolver.delegate("alice", "carol", 1000, now=T0)
        resolver.delegate("bob", "carol", 500, now=T0)

        assert resolver.get_voting_power("carol", T0) == 1500

    def test_redelegation_overwrites(self, resolver):
        first = resolver.delegate("alice", "carol", 1000, now=T0)
        resolver.delegate("alice", "bob", 700, now=T0 + 1)

        assert resolver.get_delegated_power("carol", T0 + 1) == 0
        assert resolver.get_delegated_power("bob", T0 + 1) == 700
        assert first.is_active is False
        assert resolver.get_delegation("alice").delegate_address == "bob"

    def test_delegation_is_not_transitive(self, resolver):
        resolver.delegate("alice", "bob", 1000, now=T0)
        resolver.delegate("bob", "carol", 300, now=T0)

        assert resolver.get_voting_power("carol", T0) == 300
        assert resolver.get_voting_power("bob", T0) == 3000

    def test_expired_delegation_ignored(self, resolver):
        resolver.delegate("alice", "carol", 1000, expires_at=T0 + 10, now=T0)

        assert resolver.get_voting_power("carol", T0 + 5) == 1000
        assert resolver.get_voting_power("carol", T0 + 11) == 0

    def test_cleanup_expired(self, resolver):
        resolver.delegate("alice", "carol", 1000, expires_at=T0 + 10, now=T0)
        resolver.delegate("bob", "carol", 10, now=T0)

        assert resolver.cleanup_expired_delegations(T0 + 11) == 1
        assert resolver.get_delegation("alice") is None
        assert resolver.get_delegation("bob") is not None

    def test_revoke(self, resolver):
        resolver.delegate("alice", "carol", 1000, now=T0)

        assert resolver.revoke("alice") is True
        assert resolver.revoke("alice") is False
        assert resolver.get_voting_power("carol", T0) == 0

    def test_chain_failure_resolves_to_zero(self):
        reader = Mock(spec=ChainReader)
        reader.get_balance.side_effect = TimeoutError("slow node")
        bounded = BoundedChainReader(reader, timeout=1.0)
        resolver = VotingPowerResolver(bounded)
        try:
            resolver.delegate("alice", "carol", 40, now=T0)

            assert resolver.get_balance("carol") == 0
            assert resolver.get_voting_power("carol", T0) == 40

            breakdown = resolver.get_power_breakdown("carol", T0)
            assert breakdown.chain_available is False
            assert breakdown.total_power() == 40
        finally:
            bounded.shutdown()

    def test_power_breakdown(self, resolver):
        resolver.delegate("alice", "bob", 100, now=T0)
        resolver.delegate("bob", "carol", 50, now=T0)

        breakdown = resolver.get_power_breakdown("bob", T0)

        assert breakdown.token_balance == 2000
        assert breakdown.delegated_power == 100
        assert breakdown.total_power() == 2100
        assert breakdown.delegation_given.delegate_address == "carol"
        data = breakdown.to_dict()
        assert data["own_power"] == 2000
        assert data["total_power"] == 2100
        assert [d["delegator"] for d in data["delegations_received"]] == ["alice"]

    def test_statistics(self, resolver):
        resolver.delegate("alice", "carol", 100, now=T0)
        resolver.delegate("bob", "carol", 50, now=T0)

        stats = resolver.get_delegation_statistics(T0)

        assert stats == {
            "active_delegations": 2,
            "total_delegated_power": 150,
            "unique_delegates": 1,
        }
