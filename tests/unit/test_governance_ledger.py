"""
Unit tests for ProposalStore and VoteLedger.
"""

import logging

logger = logging.getLogger(__name__)
import threading
from decimal import Decimal
from unittest.mock import Mock

import pytest

from lunadao.errors.exceptions import AlreadyActedError, NotFoundError, StateError, StorageError
from lunadao.governance.core import (
    ActionOutcome,
    Comment,
    Proposal,
    ProposalAction,
    ProposalStatus,
    ProposalType,
    Vote,
    VoteChoice,
)
from lunadao.governance.ledger import KeyedLocks, ProposalStore, VoteLedger, quorum_threshold
from lunadao.storage.base import InMemoryRecordStore, RecordStore
from support import (
    EXECUTION_TIME,
    T0,
    VALID_DESCRIPTION,
    VALID_TITLE,
    VOTING_END,
    FlakyRecordStore,
)


def build_proposal(proposal_id="prop_1", created_at=T0, actions=None):
    return Proposal(
        proposal_id=proposal_id,
        title=VALID_TITLE,
        description=VALID_DESCRIPTION,
        proposal_type=ProposalType.GOVERNANCE,
        proposer_address="alice",
        voting_start_time=created_at,
        voting_end_time=VOTING_END,
        execution_time=EXECUTION_TIME,
        actions=actions or [],
        created_at=created_at,
        updated_at=created_at,
    )


def build_vote(voter, power, choice=VoteChoice.FOR, proposal_id="prop_1", vote_id=None):
    return Vote(
        vote_id=vote_id or f"vote_{voter}",
        proposal_id=proposal_id,
        voter_address=voter,
        choice=choice,
        voting_power=power,
        timestamp=T0 + 10,
    )


@pytest.fixture
def record_store():
    return InMemoryRecordStore()


@pytest.fixture
def ledger(record_store):
    return VoteLedger(record_store)


@pytest.fixture
def store(record_store, ledger):
    store = ProposalStore(record_store, ledger)
    store.add(build_proposal())
    return store


class TestQuorumThreshold:
    """Test quorum threshold arithmetic."""

    def test_exact_decimal(self):
        assert quorum_threshold(100_000, 0.04) == Decimal("4000.00")

    def test_large_supply(self):
        assert quorum_threshold(10**18, 0.04) == Decimal(4 * 10**16)


class TestKeyedLocks:
    """Test the keyed lock registry."""

    def test_same_key_same_lock(self):
        locks = KeyedLocks()
        assert locks.get("a") is locks.get("a")
        assert locks.get("a") is not locks.get("b")
        assert len(locks) == 2

    def test_hold_is_reentrant(self):
        locks = KeyedLocks()
        with locks.hold("a"):
            with locks.hold("a"):
                pass


class TestVoteLedger:
    """Test VoteLedger."""

    def test_record_persists(self, ledger, record_store):
        vote = ledger.record(build_vote("bob", 2000))

        assert ledger.get(vote.vote_id) == vote
        assert record_store.get_vote(vote.vote_id)["voter_address"] == "bob"
        assert ledger.has_voted("prop_1", "bob")
        assert len(ledger) == 1

    def test_duplicate_rejected(self, ledger):
        ledger.record(build_vote("bob", 2000))

        with pytest.raises(AlreadyActedError):
            ledger.record(build_vote("bob", 10, vote_id="vote_other"))
        assert len(ledger) == 1

    def test_same_voter_other_proposal(self, ledger):
        ledger.record(build_vote("bob", 2000))
        ledger.record(build_vote("bob", 2000, proposal_id="prop_2", vote_id="vote_2"))

        assert len(ledger.votes_for("prop_1")) == 1
        assert len(ledger.votes_for("prop_2")) == 1

    def test_tally_for(self, ledger):
        ledger.record(build_vote("bob", 2000))
        ledger.record(build_vote("carol", 3000, VoteChoice.AGAINST))
        ledger.record(build_vote("dave", 500, VoteChoice.ABSTAIN))

        assert ledger.tally_for("prop_1").to_dict() == {
            "for": 2000,
            "against": 3000,
            "abstain": 500,
        }

    def test_failed_persist_leaves_no_vote(self):
        failing = Mock(spec=RecordStore)
        failing.save_vote.side_effect = StorageError("disk full")
        ledger = VoteLedger(failing)

        with pytest.raises(StorageError):
            ledger.record(build_vote("bob", 2000))
        assert not ledger.has_voted("prop_1", "bob")

    def test_discard_removes_vote(self, ledger, record_store):
        vote = ledger.record(build_vote("bob", 2000))
        ledger.record(build_vote("carol", 3000))

        ledger.discard(vote)

        assert not ledger.has_voted("prop_1", "bob")
        assert [v.voter_address for v in ledger.votes_for("prop_1")] == ["carol"]
        assert record_store.get_vote("vote_bob") is None

    def test_discard_logs_when_record_cannot_be_deleted(self, caplog):
        record_store = FlakyRecordStore()
        record_store.failing_vote_deletes = 1
        ledger = VoteLedger(record_store)
        vote = ledger.record(build_vote("bob", 2000))

        with caplog.at_level(logging.ERROR, logger="lunadao.governance.ledger"):
            ledger.discard(vote)

        assert not ledger.has_voted("prop_1", "bob")
        assert "vote_bob" in caplog.text

    def test_restore_skips_duplicates(self, ledger, record_store):
        ledger.restore(build_vote("bob", 2000))
        ledger.restore(build_vote("bob", 2000, vote_id="vote_dup"))

        assert len(ledger) == 1
        assert record_store.load_votes() == []


class TestProposalStore:
    """Test ProposalStore."""

    def test_add_persists(self, store, record_store):
        assert record_store.get_proposal("prop_1")["status"] == "active"
        assert len(store) == 1

    def test_get_returns_snapshot(self, store):
        snapshot = store.get("prop_1")
        snapshot.tally.votes_for = 999
        snapshot.voters.add("mallory")

        fresh = store.get("prop_1")
        assert fresh.tally.votes_for == 0
        assert fresh.voters == set()

    def test_get_unknown(self, store):
        assert store.get("missing") is None

    def test_locked_unknown(self, store):
        with pytest.raises(NotFoundError):
            with store.locked("missing"):
                pass

    def test_locked_unknown_creates_no_lock(self, store):
        for i in range(1000):
            with pytest.raises(NotFoundError):
                with store.locked(f"missing{i}"):
                    pass

        assert len(store._locks) == 1

    def test_apply_vote_updates_tally_and_quorum(self, store, record_store):
        with store.locked("prop_1") as proposal:
            store.apply_vote(proposal, build_vote("bob", 2000), 100_000, 0.04)
        assert store.get("prop_1").quorum_reached is False

        with store.locked("prop_1") as proposal:
            store.apply_vote(proposal, build_vote("carol", 3000), 100_000, 0.04)

        proposal = store.get("prop_1")
        assert proposal.quorum_reached is True
        assert proposal.tally.votes_for == 5000
        assert proposal.voters == {"bob", "carol"}
        assert record_store.get_proposal("prop_1")["votes"]["for"] == 5000

    def test_quorum_never_resets(self, store):
        with store.locked("prop_1") as proposal:
            store.apply_vote(proposal, build_vote("bob", 5000), 100_000, 0.04)
            # A later read of a much larger supply does not clear the flag.
            store.apply_vote(proposal, build_vote("carol", 1), 10**12, 0.04)

        assert store.get("prop_1").quorum_reached is True

    def test_quorum_boundary_is_inclusive(self, store):
        with store.locked("prop_1") as proposal:
            store.apply_vote(proposal, build_vote("bob", 4000), 100_000, 0.04)
        assert store.get("prop_1").quorum_reached is True

    def test_transition(self, store):
        with store.locked("prop_1") as proposal:
            store.transition(proposal, ProposalStatus.ENDED, VOTING_END + 1)

        proposal = store.get("prop_1")
        assert proposal.status == ProposalStatus.ENDED
        assert proposal.updated_at == VOTING_END + 1

    def test_backward_transition_rejected(self, store):
        with store.locked("prop_1") as proposal:
            store.transition(proposal, ProposalStatus.ENDED, VOTING_END + 1)
            with pytest.raises(StateError):
                store.transition(proposal, ProposalStatus.ACTIVE, VOTING_END + 2)

    def test_mark_executed(self, record_store, ledger):
        store = ProposalStore(record_store, ledger)
        store.add(build_proposal(actions=[ProposalAction("mint", {"amount": 1})]))

        with store.locked("prop_1") as proposal:
            store.transition(proposal, ProposalStatus.ENDED, VOTING_END + 1)
            store.mark_executed(
                proposal, [ActionOutcome("mint", True, result="tx")], "bob", EXECUTION_TIME
            )

        proposal = store.get("prop_1")
        assert proposal.executed is True
        assert proposal.status == ProposalStatus.EXECUTED
        assert proposal.executed_by == "bob"
        assert len(proposal.execution_results) == 1

    def test_mark_executed_requires_outcome_per_action(self, record_store, ledger):
        store = ProposalStore(record_store, ledger)
        store.add(build_proposal(actions=[ProposalAction("mint", {"amount": 1})]))

        with store.locked("prop_1") as proposal:
            store.transition(proposal, ProposalStatus.ENDED, VOTING_END + 1)
            with pytest.raises(StateError):
                store.mark_executed(proposal, [], "bob", EXECUTION_TIME)
        assert store.get("prop_1").executed is False

    def test_mark_cancelled(self, store):
        with store.locked("prop_1") as proposal:
            store.mark_cancelled(proposal, "alice", T0 + 5)

        proposal = store.get("prop_1")
        assert proposal.status == ProposalStatus.CANCELLED
        assert proposal.cancelled_by == "alice"
        assert proposal.cancelled_at == T0 + 5

    def test_list_newest_first_and_filter(self, store):
        store.add(build_proposal("prop_2", created_at=T0 + 10))
        store.add(build_proposal("prop_3", created_at=T0 + 5))
        with store.locked("prop_3") as proposal:
            store.mark_cancelled(proposal, "alice", T0 + 6)

        assert [p.proposal_id for p in store.list()] == ["prop_2", "prop_3", "prop_1"]
        assert [p.proposal_id for p in store.list(ProposalStatus.ACTIVE)] == ["prop_2", "prop_1"]
        assert store.ids_with_status(ProposalStatus.CANCELLED) == ["prop_3"]

    def test_snapshot(self, store):
        with store.locked("prop_1") as proposal:
            store.apply_vote(proposal, build_vote("bob", 2000), 100_000, 0.04)

        proposals, votes = store.snapshot()
        assert [p.proposal_id for p in proposals] == ["prop_1"]
        assert [v.voter_address for v in votes] == ["bob"]

    def test_concurrent_votes_keep_tally_consistent(self, store):
        voters = [f"voter{i}" for i in range(50)]
        barrier = threading.Barrier(len(voters))
        errors = []

        def vote(voter):
            barrier.wait()
            try:
                with store.locked("prop_1") as proposal:
                    store.apply_vote(proposal, build_vote(voter, 10), 100_000, 0.04)
            except Exception as e:
                errors.append(e)

        threads = [threading.Thread(target=vote, args=(v,)) for v in voters]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert errors == []
        proposal = store.get("prop_1")
        assert proposal.tally.votes_for == 500
        assert len(proposal.voters) == 50


class TestProposalStoreFailures:
    """Writes that the record store rejects leave no partial state."""

    @pytest.fixture
    def flaky(self):
        return FlakyRecordStore()

    @pytest.fixture
    def store(self, flaky):
        store = ProposalStore(flaky, VoteLedger(flaky))
        store.add(build_proposal(actions=[ProposalAction("mint", {"amount": 1})]))
        return store

    def test_failed_vote_is_rolled_back(self, store, flaky):
        flaky.fail_next_proposal_save()

        with store.locked("prop_1") as proposal:
            with pytest.raises(StorageError):
                store.apply_vote(proposal, build_vote("bob", 5000), 100_000, 0.04)

        proposal = store.get("prop_1")
        assert proposal.tally.total() == 0
        assert proposal.voters == set()
        assert proposal.quorum_reached is False
        assert proposal.updated_at == T0
        assert not store.ledger.has_voted("prop_1", "bob")
        assert flaky.get_vote("vote_bob") is None

        with store.locked("prop_1") as proposal:
            store.apply_vote(proposal, build_vote("bob", 5000), 100_000, 0.04)
        assert store.get("prop_1").quorum_reached is True
        assert flaky.get_proposal("prop_1")["voters"] == ["bob"]

    def test_failed_transition_is_rolled_back(self, store, flaky):
        flaky.fail_next_proposal_save()

        with store.locked("prop_1") as proposal:
            with pytest.raises(StorageError):
                store.transition(proposal, ProposalStatus.ENDED, VOTING_END + 1)

        assert store.get("prop_1").status == ProposalStatus.ACTIVE
        assert flaky.get_proposal("prop_1")["status"] == "active"

    def test_failed_cancel_is_rolled_back(self, store, flaky):
        flaky.fail_next_proposal_save()

        with store.locked("prop_1") as proposal:
            with pytest.raises(StorageError):
                store.mark_cancelled(proposal, "alice", T0 + 5)

        proposal = store.get("prop_1")
        assert proposal.status == ProposalStatus.ACTIVE
        assert proposal.cancelled_by is None

    def test_failed_execution_write_keeps_executed_state(self, store, flaky):
        with store.locked("prop_1") as proposal:
            store.transition(proposal, ProposalStatus.ENDED, VOTING_END + 1)
        flaky.fail_next_proposal_save()

        with store.locked("prop_1") as proposal:
            with pytest.raises(StorageError):
                store.mark_executed(
                    proposal, [ActionOutcome("mint", True, result="tx")], "bob", EXECUTION_TIME
                )

        assert store.get("prop_1").executed is True
        assert flaky.get_proposal("prop_1")["status"] == "ended"


class TestProposalStoreComments:
    """Test discussion comments."""

    def test_add_comment(self, store, record_store):
        comment = Comment("comment_1", "bob", "Looks good to me", T0 + 30)

        with store.locked("prop_1") as proposal:
            store.add_comment(proposal, comment)

        assert store.get("prop_1").discussion == [comment]
        assert store.get("prop_1").updated_at == T0 + 30
        assert record_store.get_proposal("prop_1")["discussion"] == [comment.to_dict()]


class TestReconcile:
    """Test rebuilding restored proposals from the vote ledger."""

    def test_consistent_record_is_untouched(self, store):
        with store.locked("prop_1") as proposal:
            store.apply_vote(proposal, build_vote("bob", 2000), 100_000, 0.04)

        assert store.reconcile("prop_1", 100_000, 0.04) is False
        assert store.get("prop_1").tally.votes_for == 2000

    def test_missing_votes_are_folded_in(self, record_store, ledger):
        store = ProposalStore(record_store, ledger)
        store.restore(build_proposal())
        ledger.restore(build_vote("bob", 2000))
        ledger.restore(build_vote("carol", 3000, choice=VoteChoice.AGAINST))

        assert store.reconcile("prop_1", 100_000, 0.04) is True

        proposal = store.get("prop_1")
        assert proposal.tally.to_dict() == {"for": 2000, "against": 3000, "abstain": 0}
        assert proposal.voters == {"bob", "carol"}
        assert proposal.quorum_reached is True
        assert record_store.get_proposal("prop_1")["voters"] == ["bob", "carol"]

    def test_phantom_votes_are_dropped(self, record_store, ledger):
        stale = build_proposal()
        stale.tally.add(VoteChoice.FOR, 5000)
        stale.voters.add("bob")
        stale.quorum_reached = True
        store = ProposalStore(record_store, ledger)
        store.restore(stale)

        assert store.reconcile("prop_1", 100_000, 0.04) is True

        proposal = store.get("prop_1")
        assert proposal.tally.total() == 0
        assert proposal.voters == set()
        assert proposal.quorum_reached is False

    def test_unknown_proposal(self, store):
        with pytest.raises(NotFoundError):
            store.reconcile("missing", 100_000, 0.04)
