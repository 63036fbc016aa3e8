"""
Governance engine.

The engine validates and creates proposals, accepts votes, drives execution
and runs the status sweep. All mutations of a proposal run inside that
proposal's lock (see ``ProposalStore.locked``); broadcasting happens on a
separate worker pool and never blocks or fails the operation that triggered
it.
"""

import logging
import math
import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor
from functools import partial
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple, Union

from ..errors.exceptions import (
    AlreadyActedError,
    ConfigurationError,
    CooldownError,
    ExternalUnavailable,
    NoVotingPowerError,
    NotFoundError,
    ProposalRejectedError,
    QuorumNotReachedError,
    StateError,
    StorageError,
    ThresholdError,
    UnsupportedActionError,
    ValidationError,
    create_validation_error,
)
from ..storage.base import InMemoryRecordStore, RecordStore
from . import analytics
from .backends import InMemoryChainReader, LedgerActionBackend, NullBroadcaster
from .chain import BoundedChainReader
from .core import (
    ActionType,
    Comment,
    ExecutionResult,
    GovernanceConfig,
    Proposal,
    ProposalAction,
    ProposalStatus,
    ProposalType,
    Vote,
    VoteChoice,
    generate_id,
)
from .delegation import Delegation, VotingPower, VotingPowerResolver
from .execution import ActionExecutor
from .interfaces import ActionBackend, Broadcaster, ChainReader
from .ledger import KeyedLocks, ProposalStore, VoteLedger

logger = logging.getLogger(__name__)

ActionInput = Union[ProposalAction, Mapping[str, Any]]


class GovernanceEngine:
    """Main governance engine for LunaDAO."""

    def __init__(
        self,
        config: Optional[GovernanceConfig] = None,
        chain_reader: Optional[ChainReader] = None,
        store: Optional[RecordStore] = None,
        broadcaster: Optional[Broadcaster] = None,
        backend: Optional[ActionBackend] = None,
    ):
        self.config = config or GovernanceConfig()
        self.config.validate()

        if chain_reader is None:
            chain_reader = InMemoryChainReader()
        if backend is None:
            if not isinstance(chain_reader, InMemoryChainReader):
                raise ConfigurationError(
                    "An action backend is required with an external chain reader",
                    config_key="backend",
                )
            backend = LedgerActionBackend(chain_reader)

        self.chain = BoundedChainReader(
            chain_reader,
            timeout=self.config.chain_timeout,
            max_workers=self.config.chain_workers,
        )
        self.record_store = store if store is not None else InMemoryRecordStore()
        self.ledger = VoteLedger(self.record_store)
        self.proposals = ProposalStore(self.record_store, self.ledger)
        self.resolver = VotingPowerResolver(self.chain)
        self.executor = ActionExecutor(backend, action_timeout=self.config.action_timeout)
        self.broadcaster = broadcaster if broadcaster is not None else NullBroadcaster()

        self._broadcast_pool = ThreadPoolExecutor(
            max_workers=self.config.broadcast_workers,
            thread_name_prefix="lunadao-broadcast",
        )
        self._proposer_history: Dict[str, List[float]] = {}
        self._proposer_locks = KeyedLocks()
        self._history_lock = threading.Lock()

    @staticmethod
    def _now(now: Optional[float]) -> float:
        return time.time() if now is None else now

    # -- proposals ---------------------------------------------------------

    def create_proposal(
        self,
        title: str,
        description: str,
        proposal_type: Union[ProposalType, str],
        actions: Optional[Sequence[ActionInput]],
        proposer: str,
        signature: Optional[str] = None,
        now: Optional[float] = None,
    ) -> Proposal:
        """Create a new governance proposal."""
        now = self._now(now)
        kind = self._validate_proposal_input(title, description, proposal_type, proposer)
        parsed_actions = self._parse_actions(actions)

        power = self.resolver.get_voting_power(proposer, now)
        if power < self.config.proposal_threshold:
            raise ThresholdError(
                f"Insufficient voting power. Required: {self.config.proposal_threshold}, "
                f"Available: {power}",
                required=self.config.proposal_threshold,
                available=power,
            )

        with self._proposer_locks.hold(proposer):
            recent = self._recent_proposals(proposer, now)
            if len(recent) >= self.config.max_proposals_per_user:
                retry_after = min(recent) + self.config.proposal_cooldown
                raise CooldownError(
                    f"Too many proposals. Max {self.config.max_proposals_per_user} "
                    f"proposals per {self.config.proposal_cooldown:g}s",
                    recent_proposals=len(recent),
                    retry_after=retry_after,
                )

            voting_end = now + self.config.voting_period
            proposal = Proposal(
                proposal_id=generate_id("prop", now),
                title=title,
                description=description,
                proposal_type=kind,
                proposer_address=proposer,
                voting_start_time=now,
                voting_end_time=voting_end,
                execution_time=voting_end + self.config.execution_delay,
                actions=parsed_actions,
                signature=signature,
                created_at=now,
                updated_at=now,
            )
            self.proposals.add(proposal)
            with self._history_lock:
                self._proposer_history[proposer] = recent + [now]

        logger.info(
            "Proposal created: %s by %s",
            proposal.proposal_id,
            proposer,
            extra={"proposal_id": proposal.proposal_id, "proposer": proposer},
        )
        self._broadcast(
            "proposal_created",
            {"proposal_id": proposal.proposal_id, "proposal": proposal.summary()},
        )
        return self.proposals.get(proposal.proposal_id)

    def _validate_proposal_input(
        self,
        title: str,
        description: str,
        proposal_type: Union[ProposalType, str],
        proposer: str,
    ) -> ProposalType:
        cfg = self.config
        if not isinstance(title, str) or not (
            cfg.min_title_length <= len(title) <= cfg.max_title_length
        ):
            raise create_validation_error(
                "title",
                title,
                f"{cfg.min_title_length}-{cfg.max_title_length} characters",
                f"Title must be {cfg.min_title_length}-{cfg.max_title_length} characters",
            )

        if not isinstance(description, str) or not (
            cfg.min_description_length <= len(description) <= cfg.max_description_length
        ):
            raise create_validation_error(
                "description",
                description,
                f"{cfg.min_description_length}-{cfg.max_description_length} characters",
                f"Description must be {cfg.min_description_length}-"
                f"{cfg.max_description_length} characters",
            )

        try:
            kind = ProposalType(proposal_type)
        except ValueError:
            raise create_validation_error(
                "type",
                proposal_type,
                [t.value for t in ProposalType],
                f"Invalid proposal type: {proposal_type}",
            ) from None

        if not isinstance(proposer, str) or not proposer.strip():
            raise create_validation_error(
                "proposer", proposer, "an address", "Proposer address required"
            )
        return kind

    @staticmethod
    def _parse_actions(actions: Optional[Sequence[ActionInput]]) -> List[ProposalAction]:
        if actions is None:
            return []
        if isinstance(actions, (str, bytes, Mapping)) or not isinstance(
            actions, (list, tuple)
        ):
            raise create_validation_error("actions", actions, "a list of actions")

        parsed = []
        for index, raw in enumerate(actions):
            if isinstance(raw, ProposalAction):
                action = ProposalAction(raw.action_type, dict(raw.parameters or {}))
            elif isinstance(raw, Mapping):
                action = ProposalAction.from_dict(raw)
            else:
                raise create_validation_error(f"actions[{index}]", raw, "a mapping")
            if not isinstance(action.parameters, dict):
                raise create_validation_error(
                    f"actions[{index}].parameters", action.parameters, "a mapping"
                )
            try:
                action.action_type = ActionType.parse(action.action_type).value
            except UnsupportedActionError as e:
                raise ValidationError(
                    e.message,
                    field=f"actions[{index}].type",
                    value=action.action_type,
                    expected=[t.value for t in ActionType],
                ) from e
            parsed.append(action)
        return parsed

    def _recent_proposals(self, proposer: str, now: float) -> List[float]:
        with self._history_lock:
            history = self._proposer_history.get(proposer, [])
        return [t for t in history if now - t < self.config.proposal_cooldown]

    # -- votes -------------------------------------------------------------

    def cast_vote(
        self,
        proposal_id: str,
        voter: str,
        choice: Union[VoteChoice, str],
        now: Optional[float] = None,
        signature: Optional[str] = None,
    ) -> Vote:
        """Cast a vote on a proposal with the voter's current voting power."""
        now = self._now(now)
        try:
            choice = VoteChoice(choice)
        except ValueError:
            raise create_validation_error(
                "choice", choice, [c.value for c in VoteChoice], f"Invalid vote choice: {choice}"
            ) from None
        if not isinstance(voter, str) or not voter.strip():
            raise create_validation_error("voter", voter, "an address", "Voter address required")

        with self.proposals.locked(proposal_id) as proposal:
            if proposal.status != ProposalStatus.ACTIVE:
                raise StateError(
                    f"Proposal is not active: {proposal.status.value}",
                    status=proposal.status.value,
                    now=now,
                )
            if not proposal.is_voting_open(now):
                raise StateError(
                    "Voting period is not active",
                    status=proposal.status.value,
                    now=now,
                )
            if proposal.has_voted(voter) or self.ledger.has_voted(proposal_id, voter):
                raise AlreadyActedError(
                    f"Already voted on this proposal: {voter}", voter_address=voter
                )

            power = self.resolver.get_voting_power(voter, now)
            if power <= 0:
                raise NoVotingPowerError(f"No voting power: {voter}", voter_address=voter)

            vote = Vote(
                vote_id=generate_id("vote", now),
                proposal_id=proposal_id,
                voter_address=voter,
                choice=choice,
                voting_power=power,
                timestamp=now,
                block_height=self._block_height(),
                signature=signature,
            )
            self.proposals.apply_vote(
                proposal, vote, self._total_supply(), self.config.quorum_fraction
            )
            tally = proposal.tally.to_dict()
            quorum_reached = proposal.quorum_reached

        logger.info(
            "Vote cast: %s voted %s on %s with %d power",
            voter,
            choice.value,
            proposal_id,
            power,
            extra={"proposal_id": proposal_id, "voter": voter},
        )
        self._broadcast(
            "vote_cast",
            {
                "proposal_id": proposal_id,
                "voter_address": voter,
                "vote": vote.to_dict(),
                "votes": tally,
                "quorum_reached": quorum_reached,
            },
        )
        return vote

    def _total_supply(self) -> int:
        try:
            return self.chain.get_total_supply()
        except ExternalUnavailable as e:
            logger.warning(
                "Total supply unavailable, using fallback %d: %s",
                self.config.fallback_total_supply,
                e.message,
            )
            return self.config.fallback_total_supply

    def _block_height(self) -> Optional[int]:
        try:
            return self.chain.get_block_height()
        except ExternalUnavailable as e:
            logger.warning("Block height unavailable: %s", e.message)
            return None

    # -- delegation --------------------------------------------------------

    def delegate_voting_power(
        self,
        delegator: str,
        delegate: str,
        amount: int,
        duration: Optional[float] = None,
        now: Optional[float] = None,
    ) -> Delegation:
        """Assign ``amount`` of the delegator's power to ``delegate``."""
        now = self._now(now)
        if not isinstance(delegator, str) or not delegator.strip():
            raise create_validation_error("delegator", delegator, "an address")
        if not isinstance(delegate, str) or not delegate.strip():
            raise create_validation_error("delegate", delegate, "an address")
        if delegator == delegate:
            raise ValidationError(
                "Cannot delegate to yourself", field="delegate", value=delegate
            )
        if isinstance(amount, bool) or not isinstance(amount, int) or amount <= 0:
            raise create_validation_error("amount", amount, "a positive integer")
        if duration is not None and duration <= 0:
            raise create_validation_error("duration", duration, "a positive number of seconds")

        balance = self.resolver.get_balance(delegator)
        if balance < amount:
            raise ThresholdError(
                f"Insufficient balance to delegate. Required: {amount}, Available: {balance}",
                required=amount,
                available=balance,
            )

        expires_at = now + duration if duration is not None else None
        delegation = self.resolver.delegate(delegator, delegate, amount, expires_at, now)
        logger.info("Delegation: %s -> %s (%d)", delegator, delegate, amount)
        self._broadcast("delegation_created", delegation.to_dict())
        return delegation

    def revoke_delegation(self, delegator: str) -> bool:
        if not isinstance(delegator, str) or not delegator.strip():
            raise create_validation_error("delegator", delegator, "an address")
        revoked = self.resolver.revoke(delegator)
        if revoked:
            logger.info("Delegation revoked by %s", delegator)
            self._broadcast("delegation_revoked", {"delegator": delegator})
        return revoked

    # -- execution and cancellation ---------------------------------------

    def execute_proposal(
        self,
        proposal_id: str,
        executor: str,
        now: Optional[float] = None,
        signature: Optional[str] = None,
    ) -> ExecutionResult:
        """Execute a passed proposal's actions, best-effort and in order."""
        now = self._now(now)
        if not isinstance(executor, str) or not executor.strip():
            raise create_validation_error("executor", executor, "an address")

        with self.proposals.locked(proposal_id) as proposal:
            if proposal.status == ProposalStatus.CANCELLED:
                raise StateError("Proposal was cancelled", status=proposal.status.value, now=now)
            if proposal.executed or proposal.status == ProposalStatus.EXECUTED:
                raise StateError("Proposal already executed", status=proposal.status.value, now=now)
            if now < proposal.execution_time:
                raise StateError(
                    "Execution delay not met", status=proposal.status.value, now=now
                )
            if not proposal.quorum_reached:
                raise QuorumNotReachedError("Quorum not reached")
            if not proposal.passed():
                raise ProposalRejectedError(
                    "Proposal rejected",
                    votes_for=proposal.tally.votes_for,
                    votes_against=proposal.tally.votes_against,
                )

            if proposal.status == ProposalStatus.ACTIVE:
                self.proposals.transition(proposal, ProposalStatus.ENDED, now)

            outcomes = self.executor.execute_all(proposal.actions)
            try:
                self.proposals.mark_executed(proposal, outcomes, executor, now)
            except StorageError as e:
                logger.error(
                    "Proposal %s executed but its record could not be saved: %s",
                    proposal_id,
                    e.message,
                    extra={"proposal_id": proposal_id, "executor": executor},
                )
                raise
            result = ExecutionResult(
                proposal_id=proposal_id,
                executed=True,
                executed_by=executor,
                executed_at=now,
                execution_results=outcomes,
            )

        logger.info(
            "Proposal executed: %s (%d/%d actions succeeded)",
            proposal_id,
            result.succeeded,
            len(outcomes),
            extra={"proposal_id": proposal_id, "executor": executor},
        )
        self._broadcast("proposal_executed", result.to_dict())
        return result

    def cancel_proposal(
        self, proposal_id: str, requester: str, now: Optional[float] = None
    ) -> Proposal:
        """Cancel an active or ended proposal. Only its proposer may do so."""
        now = self._now(now)
        with self.proposals.locked(proposal_id) as proposal:
            if requester != proposal.proposer_address:
                raise ValidationError(
                    "Only the proposer can cancel a proposal",
                    field="requester",
                    value=requester,
                    expected=proposal.proposer_address,
                )
            if proposal.status not in (ProposalStatus.ACTIVE, ProposalStatus.ENDED):
                raise StateError(
                    f"Cannot cancel a proposal that is {proposal.status.value}",
                    status=proposal.status.value,
                    now=now,
                )
            self.proposals.mark_cancelled(proposal, requester, now)

        logger.info("Proposal cancelled: %s by %s", proposal_id, requester)
        self._broadcast(
            "proposal_cancelled", {"proposal_id": proposal_id, "cancelled_by": requester}
        )
        return self.proposals.get(proposal_id)

    # -- discussion --------------------------------------------------------

    def add_comment(
        self, proposal_id: str, author: str, message: str, now: Optional[float] = None
    ) -> Comment:
        """Attach a discussion comment to a proposal in any status."""
        now = self._now(now)
        if not isinstance(author, str) or not author.strip():
            raise create_validation_error("author", author, "an address", "Author address required")
        limit = self.config.max_comment_length
        if not isinstance(message, str) or not message.strip() or len(message) > limit:
            raise create_validation_error(
                "message",
                message,
                f"1-{limit} characters",
                f"Comment must be 1-{limit} characters",
            )

        comment = Comment(
            comment_id=generate_id("comment", now),
            author=author,
            message=message,
            timestamp=now,
        )
        with self.proposals.locked(proposal_id) as proposal:
            self.proposals.add_comment(proposal, comment)

        logger.info("Comment added to %s by %s", proposal_id, author)
        self._broadcast(
            "comment_added", {"proposal_id": proposal_id, "comment": comment.to_dict()}
        )
        return comment

    # -- status sweep ------------------------------------------------------

    def advance_time(self, now: float) -> List[str]:
        """Move every active proposal whose voting window closed before ``now`` to ended."""
        ended = []
        for proposal_id in self.proposals.ids_with_status(ProposalStatus.ACTIVE):
            with self.proposals.locked(proposal_id) as proposal:
                if proposal.status == ProposalStatus.ACTIVE and now > proposal.voting_end_time:
                    self.proposals.transition(proposal, ProposalStatus.ENDED, now)
                    ended.append(proposal_id)

        expired = self.resolver.cleanup_expired_delegations(now)
        if expired:
            logger.info("Removed %d expired delegations", expired)

        if ended:
            logger.info("Updated %d proposal statuses", len(ended))
            self._broadcast("proposals_ended", {"proposal_ids": ended, "now": now})
        return ended

    # -- reads -------------------------------------------------------------

    def get_proposal(self, proposal_id: str) -> Proposal:
        proposal = self.proposals.get(proposal_id)
        if proposal is None:
            raise NotFoundError(f"Proposal not found: {proposal_id}", resource_id=proposal_id)
        return proposal

    def list_proposals(
        self,
        status: Optional[Union[ProposalStatus, str]] = None,
        page: int = 1,
        limit: int = 10,
    ) -> Dict[str, Any]:
        """Page of proposal summaries, newest first."""
        if status is not None:
            try:
                status = ProposalStatus(status)
            except ValueError:
                raise create_validation_error(
                    "status", status, [s.value for s in ProposalStatus]
                ) from None
        if isinstance(page, bool) or not isinstance(page, int) or page < 1:
            raise create_validation_error("page", page, "an integer >= 1")
        if isinstance(limit, bool) or not isinstance(limit, int) or limit < 1:
            raise create_validation_error("limit", limit, "an integer >= 1")

        proposals = self.proposals.list(status)
        start = (page - 1) * limit
        return {
            "proposals": [p.summary() for p in proposals[start : start + limit]],
            "pagination": {
                "page": page,
                "limit": limit,
                "total": len(proposals),
                "pages": math.ceil(len(proposals) / limit),
            },
        }

    def get_votes(self, proposal_id: str) -> List[Vote]:
        self.get_proposal(proposal_id)
        return sorted(self.ledger.votes_for(proposal_id), key=lambda v: v.timestamp)

    def get_voting_power(self, address: str, now: Optional[float] = None) -> int:
        return self.resolver.get_voting_power(address, self._now(now))

    def get_power_breakdown(self, address: str, now: Optional[float] = None) -> VotingPower:
        return self.resolver.get_power_breakdown(address, self._now(now))

    def get_statistics(self) -> Dict[str, Any]:
        proposals, votes = self.proposals.snapshot()
        stats = analytics.overview(proposals, votes)
        stats["delegations"] = self.resolver.get_delegation_statistics()
        return stats

    def get_dao_info(self) -> Dict[str, Any]:
        return {
            "config": self.config.to_dict(),
            "stats": self.get_statistics(),
            "timestamp": time.time(),
        }

    def generate_analytics(self, top_voters_limit: int = 10) -> Dict[str, Any]:
        proposals, votes = self.proposals.snapshot()
        report = analytics.generate_analytics(proposals, votes, top_voters_limit)
        report["overview"]["delegations"] = self.resolver.get_delegation_statistics()
        return report

    def get_governance_statistics(
        self, period: str = "30d", now: Optional[float] = None
    ) -> Dict[str, Any]:
        proposals, _ = self.proposals.snapshot()
        return analytics.governance_statistics(proposals, period, self._now(now))

    # -- lifecycle ---------------------------------------------------------

    def load_persisted_data(self) -> Tuple[int, int]:
        """Rebuild in-memory state from the record store."""
        loaded_proposals = 0
        for record in self.record_store.load_proposals():
            try:
                proposal = Proposal.from_dict(record)
            except (KeyError, TypeError, ValueError) as e:
                logger.error("Skipping malformed proposal record %s: %s", record.get("id"), e)
                continue
            self.proposals.restore(proposal)
            with self._history_lock:
                self._proposer_history.setdefault(proposal.proposer_address, []).append(
                    proposal.created_at
                )
            loaded_proposals += 1

        loaded_votes = 0
        for record in self.record_store.load_votes():
            try:
                vote = Vote.from_dict(record)
            except (KeyError, TypeError, ValueError) as e:
                logger.error("Skipping malformed vote record %s: %s", record.get("vote_id"), e)
                continue
            self.ledger.restore(vote)
            loaded_votes += 1

        if loaded_proposals:
            total_supply = self._total_supply()
            for proposal_id in self.proposals.ids():
                try:
                    self.proposals.reconcile(
                        proposal_id, total_supply, self.config.quorum_fraction
                    )
                except StorageError as e:
                    logger.error("Could not save rebuilt proposal %s: %s", proposal_id, e.message)

        logger.info("Loaded %d proposals and %d votes", loaded_proposals, loaded_votes)
        return loaded_proposals, loaded_votes

    def _broadcast(self, event_type: str, payload: Dict[str, Any]) -> None:
        try:
            future = self._broadcast_pool.submit(self.broadcaster.publish, event_type, payload)
        except RuntimeError as e:
            logger.error("Cannot broadcast %s: %s", event_type, e)
            return
        future.add_done_callback(partial(self._on_broadcast_done, event_type))

    @staticmethod
    def _on_broadcast_done(event_type: str, future: Future) -> None:
        if future.cancelled():
            return
        error = future.exception()
        if error is not None:
            logger.error("Broadcast of %s failed: %s", event_type, error)

    def shutdown(self, wait: bool = True) -> None:
        """Stop the worker pools. The record store is left open."""
        self._broadcast_pool.shutdown(wait=wait)
        self.executor.shutdown(wait=wait)
        self.chain.shutdown(wait=False)

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.shutdown()
