"""
Token-weighted governance for LunaDAO.

This package provides:
- Proposal lifecycle management (active, ended, executed, cancelled)
- Vote tallying and quorum tracking
- Voting power resolution with delegation
- Best-effort execution of proposal actions
- Read-only analytics
- Audit trail and event observability
"""

from . import analytics
from .backends import InMemoryChainReader, LedgerActionBackend, NullBroadcaster
from .chain import BoundedChainReader
from .core import (
    ActionOutcome,
    ActionType,
    ExecutionResult,
    GovernanceConfig,
    Proposal,
    ProposalAction,
    ProposalStatus,
    ProposalType,
    Tally,
    Vote,
    VoteChoice,
    generate_id,
)
from .delegation import Delegation, VotingPower, VotingPowerResolver
from .engine import GovernanceEngine
from .execution import ActionExecutor
from .interfaces import ActionBackend, Broadcaster, ChainReader
from .ledger import KeyedLocks, ProposalStore, VoteLedger, quorum_threshold
from .observability import AuditTrail, EventType, GovernanceEvent, GovernanceEvents

__all__ = [
    # Core
    "GovernanceEngine",
    "GovernanceConfig",
    "Proposal",
    "ProposalAction",
    "ProposalStatus",
    "ProposalType",
    "Tally",
    "Vote",
    "VoteChoice",
    "ActionType",
    "ActionOutcome",
    "ExecutionResult",
    "generate_id",
    # Collaborators
    "ChainReader",
    "Broadcaster",
    "ActionBackend",
    "BoundedChainReader",
    "InMemoryChainReader",
    "LedgerActionBackend",
    "NullBroadcaster",
    # Voting power
    "Delegation",
    "VotingPower",
    "VotingPowerResolver",
    # Ledger
    "KeyedLocks",
    "ProposalStore",
    "VoteLedger",
    "quorum_threshold",
    # Execution
    "ActionExecutor",
    # Observability
    "AuditTrail",
    "EventType",
    "GovernanceEvent",
    "GovernanceEvents",
    "analytics",
]
