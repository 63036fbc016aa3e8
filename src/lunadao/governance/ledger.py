"""
Proposal and vote ownership.

``ProposalStore`` owns proposal records and every status transition;
``VoteLedger`` owns votes and guarantees one vote per (proposal, voter).
Mutations of a proposal happen only while holding that proposal's lock,
obtained through ``ProposalStore.locked``. Reads hand out deep copies taken
under a short registry lock, so readers never wait on a proposal lock.
"""

import copy
import logging
import threading
import time
from contextlib import contextmanager
from decimal import Decimal
from typing import Dict, Iterator, List, Optional, Tuple

from ..errors.exceptions import AlreadyActedError, NotFoundError, StateError, StorageError
from ..storage.base import RecordStore
from .core import ActionOutcome, Comment, Proposal, ProposalStatus, Tally, Vote

logger = logging.getLogger(__name__)


def quorum_threshold(total_supply: int, quorum_fraction: float) -> Decimal:
    """Minimum participating power: ``quorum_fraction`` of ``total_supply``."""
    return Decimal(int(total_supply)) * Decimal(str(quorum_fraction))


class KeyedLocks:
    """One re-entrant lock per key, created on demand."""

    def __init__(self):
        self._locks: Dict[str, threading.RLock] = {}
        self._guard = threading.Lock()

    def get(self, key: str) -> threading.RLock:
        with self._guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = threading.RLock()
                self._locks[key] = lock
            return lock

    @contextmanager
    def hold(self, key: str) -> Iterator[None]:
        lock = self.get(key)
        with lock:
            yield

    def __len__(self) -> int:
        with self._guard:
            return len(self._locks)


class VoteLedger:
    """Records votes; at most one per (proposal, voter)."""

    def __init__(self, store: RecordStore):
        self.store = store
        self._votes: Dict[str, Vote] = {}
        self._by_proposal: Dict[str, List[str]] = {}
        self._by_voter: Dict[Tuple[str, str], str] = {}
        self._lock = threading.RLock()

    def has_voted(self, proposal_id: str, voter_address: str) -> bool:
        with self._lock:
            return (proposal_id, voter_address) in self._by_voter

    def record(self, vote: Vote) -> Vote:
        """Persist and index a vote."""
        key = (vote.proposal_id, vote.voter_address)
        with self._lock:
            if key in self._by_voter:
                raise AlreadyActedError(
                    f"Already voted on this proposal: {vote.voter_address}",
                    voter_address=vote.voter_address,
                )
            self.store.save_vote(vote.to_dict())
            self._index(vote)
        return vote

    def discard(self, vote: Vote) -> None:
        """Take back a recorded vote whose proposal update could not be saved."""
        key = (vote.proposal_id, vote.voter_address)
        with self._lock:
            if self._by_voter.get(key) != vote.vote_id:
                return
            del self._by_voter[key]
            del self._votes[vote.vote_id]
            self._by_proposal[vote.proposal_id].remove(vote.vote_id)
            try:
                self.store.delete_vote(vote.vote_id)
            except StorageError as e:
                logger.error(
                    "Vote %s was rolled back but its record could not be deleted: %s",
                    vote.vote_id,
                    e.message,
                )

    def restore(self, vote: Vote) -> None:
        """Index a vote loaded from the record store without re-persisting it."""
        with self._lock:
            if (vote.proposal_id, vote.voter_address) in self._by_voter:
                logger.warning(
                    "Ignoring duplicate persisted vote %s by %s on %s",
                    vote.vote_id,
                    vote.voter_address,
                    vote.proposal_id,
                )
                return
            self._index(vote)

    def _index(self, vote: Vote) -> None:
        self._votes[vote.vote_id] = vote
        self._by_proposal.setdefault(vote.proposal_id, []).append(vote.vote_id)
        self._by_voter[(vote.proposal_id, vote.voter_address)] = vote.vote_id

    def get(self, vote_id: str) -> Optional[Vote]:
        with self._lock:
            return self._votes.get(vote_id)

    def votes_for(self, proposal_id: str) -> List[Vote]:
        with self._lock:
            return [self._votes[vid] for vid in self._by_proposal.get(proposal_id, [])]

    def all_votes(self) -> List[Vote]:
        with self._lock:
            return list(self._votes.values())

    def tally_for(self, proposal_id: str) -> Tally:
        """Recompute a tally from the recorded votes."""
        tally = Tally()
        for vote in self.votes_for(proposal_id):
            tally.add(vote.choice, vote.voting_power)
        return tally

    def __len__(self) -> int:
        with self._lock:
            return len(self._votes)


class ProposalStore:
    """Owns proposal records and their status transitions."""

    def __init__(self, store: RecordStore, ledger: VoteLedger):
        self.store = store
        self.ledger = ledger
        self._proposals: Dict[str, Proposal] = {}
        self._registry_lock = threading.RLock()
        self._locks = KeyedLocks()

    # -- reads -------------------------------------------------------------

    def get(self, proposal_id: str) -> Optional[Proposal]:
        """Snapshot of a proposal, or None."""
        with self._registry_lock:
            proposal = self._proposals.get(proposal_id)
            return copy.deepcopy(proposal) if proposal is not None else None

    def list(self, status: Optional[ProposalStatus] = None) -> List[Proposal]:
        """Snapshots, newest first."""
        with self._registry_lock:
            proposals = [
                copy.deepcopy(p)
                for p in self._proposals.values()
                if status is None or p.status == status
            ]
        proposals.sort(key=lambda p: p.created_at, reverse=True)
        return proposals

    def ids(self) -> List[str]:
        with self._registry_lock:
            return list(self._proposals)

    def ids_with_status(self, status: ProposalStatus) -> List[str]:
        with self._registry_lock:
            return [pid for pid, p in self._proposals.items() if p.status == status]

    def snapshot(self) -> Tuple[List[Proposal], List[Vote]]:
        """Consistent copies of every proposal and vote, for analytics."""
        with self._registry_lock:
            proposals = [copy.deepcopy(p) for p in self._proposals.values()]
            votes = self.ledger.all_votes()
        return proposals, votes

    def __len__(self) -> int:
        with self._registry_lock:
            return len(self._proposals)

    # -- writes ------------------------------------------------------------

    def add(self, proposal: Proposal) -> None:
        with self._locks.hold(proposal.proposal_id):
            self.store.save_proposal(proposal.to_dict())
            with self._registry_lock:
                self._proposals[proposal.proposal_id] = proposal

    def restore(self, proposal: Proposal) -> None:
        with self._registry_lock:
            self._proposals[proposal.proposal_id] = proposal

    @contextmanager
    def locked(self, proposal_id: str) -> Iterator[Proposal]:
        """Hold the proposal's lock and yield the live record."""
        with self._registry_lock:
            known = proposal_id in self._proposals
        if not known:
            raise NotFoundError(f"Proposal not found: {proposal_id}", resource_id=proposal_id)
        with self._locks.hold(proposal_id):
            with self._registry_lock:
                proposal = self._proposals[proposal_id]
            yield proposal

    @staticmethod
    def _check_transition(
        proposal: Proposal, target: ProposalStatus, now: Optional[float]
    ) -> None:
        if not proposal.status.can_transition_to(target):
            raise StateError(
                f"Cannot move proposal {proposal.proposal_id} from "
                f"{proposal.status.value} to {target.value}",
                status=proposal.status.value,
                now=now,
            )

    @contextmanager
    def _mutating(
        self, proposal: Proposal, now: float, keep_on_failure: bool = False
    ) -> Iterator[Proposal]:
        """
        Apply the body's changes to ``proposal`` and persist them.

        If the body raises, or the record store rejects the write, the
        proposal is restored to its previous state before the error
        propagates. ``keep_on_failure`` keeps the in-memory changes when only
        the write failed.
        """
        with self._registry_lock:
            before = copy.deepcopy(proposal)
            try:
                yield proposal
                proposal.updated_at = now
                record = proposal.to_dict()
            except BaseException:
                proposal.__dict__.update(before.__dict__)
                raise
        try:
            self.store.save_proposal(record)
        except StorageError:
            if not keep_on_failure:
                with self._registry_lock:
                    proposal.__dict__.update(before.__dict__)
            raise

    def apply_vote(
        self,
        proposal: Proposal,
        vote: Vote,
        total_supply: int,
        quorum_fraction: float,
    ) -> None:
        """Record ``vote`` and fold it into the tally. Caller holds the lock."""
        threshold = quorum_threshold(total_supply, quorum_fraction)
        self.ledger.record(vote)
        reached = False
        try:
            with self._mutating(proposal, vote.timestamp):
                proposal.tally.add(vote.choice, vote.voting_power)
                proposal.voters.add(vote.voter_address)
                if not proposal.quorum_reached:
                    reached = Decimal(proposal.tally.total()) >= threshold
                    proposal.quorum_reached = reached
        except Exception:
            self.ledger.discard(vote)
            raise
        if reached:
            logger.info(
                "Quorum reached on %s: %d >= %s",
                proposal.proposal_id,
                proposal.tally.total(),
                threshold,
            )

    def transition(
        self, proposal: Proposal, target: ProposalStatus, now: Optional[float] = None
    ) -> None:
        """Move ``proposal`` to ``target``. Caller holds the lock."""
        self._check_transition(proposal, target, now)
        now = time.time() if now is None else now
        with self._mutating(proposal, now):
            proposal.status = target

    def mark_executed(
        self,
        proposal: Proposal,
        outcomes: List[ActionOutcome],
        executor: str,
        now: float,
    ) -> None:
        """
        Record execution results and move to executed. Caller holds the lock.

        The actions have already run, so the executed state is kept in memory
        even when the write fails; the StorageError still propagates.
        """
        if len(outcomes) != len(proposal.actions):
            raise StateError(
                f"Expected {len(proposal.actions)} action outcomes, got {len(outcomes)}",
                status=proposal.status.value,
                now=now,
            )
        self._check_transition(proposal, ProposalStatus.EXECUTED, now)
        with self._mutating(proposal, now, keep_on_failure=True):
            proposal.execution_results = list(outcomes)
            proposal.executed = True
            proposal.executed_at = now
            proposal.executed_by = executor
            proposal.status = ProposalStatus.EXECUTED

    def mark_cancelled(self, proposal: Proposal, requester: str, now: float) -> None:
        """Cancel the proposal. Caller holds the lock."""
        self._check_transition(proposal, ProposalStatus.CANCELLED, now)
        with self._mutating(proposal, now):
            proposal.cancelled_at = now
            proposal.cancelled_by = requester
            proposal.status = ProposalStatus.CANCELLED

    def add_comment(self, proposal: Proposal, comment: Comment) -> None:
        """Append a discussion comment. Caller holds the lock."""
        with self._mutating(proposal, comment.timestamp):
            proposal.discussion.append(comment)

    def reconcile(
        self, proposal_id: str, total_supply: int, quorum_fraction: float
    ) -> bool:
        """
        Rebuild a restored proposal's tally and voters from the vote ledger.

        Returns True when the stored record disagreed with the recorded
        votes. Quorum is then recomputed from the rebuilt tally, except on
        executed proposals. The repaired record is written back.
        """
        with self.locked(proposal_id) as proposal:
            votes = self.ledger.votes_for(proposal_id)
            tally = self.ledger.tally_for(proposal_id)
            voters = {vote.voter_address for vote in votes}
            if tally == proposal.tally and voters == proposal.voters:
                return False

            logger.warning(
                "Rebuilding %s from %d recorded votes: stored tally %s, recorded %s",
                proposal_id,
                len(votes),
                proposal.tally.to_dict(),
                tally.to_dict(),
            )
            with self._mutating(proposal, proposal.updated_at, keep_on_failure=True):
                proposal.tally = tally
                proposal.voters = voters
                if not proposal.executed:
                    threshold = quorum_threshold(total_supply, quorum_fraction)
                    proposal.quorum_reached = Decimal(tally.total()) >= threshold
            return True
