"""
Core governance types and data structures.

This module defines the fundamental types used throughout the governance
system: proposals, votes, tallies, actions and their outcomes, and the
governance configuration.
"""

import logging
import os
import secrets
import string
import time
from dataclasses import Field, dataclass, field, fields
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Set

from ..errors.exceptions import ConfigurationError, UnsupportedActionError

logger = logging.getLogger(__name__)

_ID_ALPHABET = string.digits + string.ascii_lowercase


def generate_id(prefix: str, now: Optional[float] = None) -> str:
    """Generate a record id such as ``prop_1700000000000_k3j9x0a1b``."""
    millis = int((time.time() if now is None else now) * 1000)
    suffix = "".join(secrets.choice(_ID_ALPHABET) for _ in range(9))
    return f"{prefix}_{millis}_{suffix}"


def json_safe(value: Any) -> Any:
    """
    Reduce ``value`` to something ``json.dumps`` accepts.

    Enums become their value, decimals and unknown objects their string
    form, bytes their hex form. Containers are converted recursively.
    """
    if value is None or isinstance(value, (bool, int, float, str)):
        return value
    if isinstance(value, Enum):
        return json_safe(value.value)
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, Mapping):
        return {str(k): json_safe(v) for k, v in value.items()}
    if isinstance(value, (list, tuple, set, frozenset)):
        return [json_safe(v) for v in value]
    if isinstance(value, (bytes, bytearray)):
        return bytes(value).hex()
    return str(value)


class ProposalStatus(Enum):
    """Status of a governance proposal."""

    ACTIVE = "active"
    ENDED = "ended"
    EXECUTED = "executed"
    CANCELLED = "cancelled"

    def can_transition_to(self, target: "ProposalStatus") -> bool:
        """Check whether moving from this status to ``target`` is allowed."""
        return target in _ALLOWED_TRANSITIONS[self]


_ALLOWED_TRANSITIONS = {
    ProposalStatus.ACTIVE: {ProposalStatus.ENDED, ProposalStatus.CANCELLED},
    ProposalStatus.ENDED: {ProposalStatus.EXECUTED, ProposalStatus.CANCELLED},
    ProposalStatus.EXECUTED: set(),
    ProposalStatus.CANCELLED: set(),
}


class ProposalType(Enum):
    """Type of governance proposal."""

    GOVERNANCE = "governance"
    TREASURY = "treasury"
    TECHNICAL = "technical"
    MARKETING = "marketing"
    PARTNERSHIP = "partnership"


class VoteChoice(Enum):
    """Vote choices for governance proposals."""

    FOR = "for"
    AGAINST = "against"
    ABSTAIN = "abstain"


class ActionType(Enum):
    """Closed set of actions a proposal can carry."""

    TRANSFER = "transfer"
    MINT = "mint"
    BURN = "burn"
    UPDATE_CONFIG = "update_config"
    ADD_VALIDATOR = "add_validator"
    REMOVE_VALIDATOR = "remove_validator"

    @classmethod
    def parse(cls, value: Any) -> "ActionType":
        """Resolve a raw action type, raising UnsupportedActionError if unknown."""
        if isinstance(value, cls):
            return value
        try:
            return cls(value)
        except ValueError:
            raise UnsupportedActionError(
                f"Unknown action type: {value}", action_type=str(value)
            ) from None


@dataclass
class ProposalAction:
    """One action of a proposal: a type plus opaque parameters."""

    action_type: str
    parameters: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": json_safe(self.action_type),
            "parameters": json_safe(dict(self.parameters)),
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "ProposalAction":
        """Accept ``{"type", "parameters"}`` or a flat ``{"type", **params}``."""
        action_type = data.get("type")
        if action_type is None:
            action_type = data.get("action_type")
        if "parameters" in data:
            parameters = dict(data["parameters"] or {})
        else:
            parameters = {
                k: v for k, v in data.items() if k not in ("type", "action_type")
            }
        if isinstance(action_type, ActionType):
            action_type = action_type.value
        return cls(action_type=action_type, parameters=parameters)


@dataclass
class Tally:
    """Running vote totals for one proposal."""

    votes_for: int = 0
    votes_against: int = 0
    votes_abstain: int = 0

    def add(self, choice: VoteChoice, power: int) -> None:
        choice = VoteChoice(choice)
        if power < 0:
            raise ValueError("Voting power cannot be negative")
        if choice == VoteChoice.FOR:
            self.votes_for += power
        elif choice == VoteChoice.AGAINST:
            self.votes_against += power
        else:
            self.votes_abstain += power

    def total(self) -> int:
        return self.votes_for + self.votes_against + self.votes_abstain

    def to_dict(self) -> Dict[str, int]:
        return {
            "for": self.votes_for,
            "against": self.votes_against,
            "abstain": self.votes_abstain,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Tally":
        return cls(
            votes_for=int(data.get("for", 0)),
            votes_against=int(data.get("against", 0)),
            votes_abstain=int(data.get("abstain", 0)),
        )


@dataclass
class ActionOutcome:
    """Outcome of dispatching a single proposal action."""

    action_type: str
    success: bool
    result: Any = None
    error: Optional[str] = None
    error_type: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data = {"action": self.action_type, "success": self.success}
        if self.success:
            data["result"] = json_safe(self.result)
        else:
            data["error"] = self.error
            data["error_type"] = self.error_type
        return data

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "ActionOutcome":
        return cls(
            action_type=data["action"],
            success=bool(data["success"]),
            result=data.get("result"),
            error=data.get("error"),
            error_type=data.get("error_type"),
        )


@dataclass(frozen=True)
class Vote:
    """A governance vote. Immutable once cast."""

    vote_id: str
    proposal_id: str
    voter_address: str
    choice: VoteChoice
    voting_power: int
    timestamp: float
    block_height: Optional[int] = None
    signature: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert vote to dictionary."""
        return {
            "vote_id": self.vote_id,
            "proposal_id": self.proposal_id,
            "voter_address": self.voter_address,
            "choice": self.choice.value,
            "voting_power": self.voting_power,
            "timestamp": self.timestamp,
            "block_height": self.block_height,
            "signature": self.signature,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Vote":
        """Create vote from dictionary."""
        return cls(
            vote_id=data["vote_id"],
            proposal_id=data["proposal_id"],
            voter_address=data["voter_address"],
            choice=VoteChoice(data["choice"]),
            voting_power=int(data["voting_power"]),
            timestamp=float(data["timestamp"]),
            block_height=data.get("block_height"),
            signature=data.get("signature"),
        )


@dataclass(frozen=True)
class Comment:
    """A discussion comment attached to a proposal."""

    comment_id: str
    author: str
    message: str
    timestamp: float

    def to_dict(self) -> Dict[str, Any]:
        return {
            "comment_id": self.comment_id,
            "author": self.author,
            "message": self.message,
            "timestamp": self.timestamp,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Comment":
        return cls(
            comment_id=data["comment_id"],
            author=data["author"],
            message=data["message"],
            timestamp=float(data["timestamp"]),
        )


@dataclass
class Proposal:
    """A governance proposal."""

    proposal_id: str
    title: str
    description: str
    proposal_type: ProposalType
    proposer_address: str
    voting_start_time: float
    voting_end_time: float
    execution_time: float
    actions: List[ProposalAction] = field(default_factory=list)
    status: ProposalStatus = ProposalStatus.ACTIVE
    tally: Tally = field(default_factory=Tally)
    voters: Set[str] = field(default_factory=set)
    quorum_reached: bool = False
    executed: bool = False
    execution_results: List[ActionOutcome] = field(default_factory=list)
    discussion: List[Comment] = field(default_factory=list)
    signature: Optional[str] = None

    # Metadata
    created_at: float = field(default_factory=time.time)
    updated_at: float = field(default_factory=time.time)
    executed_at: Optional[float] = None
    executed_by: Optional[str] = None
    cancelled_at: Optional[float] = None
    cancelled_by: Optional[str] = None

    def is_voting_open(self, now: float) -> bool:
        """Check whether ``now`` falls inside the voting window."""
        return (
            self.status == ProposalStatus.ACTIVE
            and self.voting_start_time <= now <= self.voting_end_time
        )

    def has_voted(self, voter_address: str) -> bool:
        return voter_address in self.voters

    def passed(self) -> bool:
        """Quorum reached and strictly more power for than against."""
        return self.quorum_reached and self.tally.votes_for > self.tally.votes_against

    def summary(self) -> Dict[str, Any]:
        """Short listing form."""
        return {
            "id": self.proposal_id,
            "title": self.title,
            "type": self.proposal_type.value,
            "proposer": self.proposer_address,
            "status": self.status.value,
            "votes": self.tally.to_dict(),
            "quorum_reached": self.quorum_reached,
            "voting_end_time": self.voting_end_time,
            "created_at": self.created_at,
        }

    def to_dict(self) -> Dict[str, Any]:
        """Convert proposal to dictionary."""
        return {
            "id": self.proposal_id,
            "title": self.title,
            "description": self.description,
            "type": self.proposal_type.value,
            "proposer": self.proposer_address,
            "status": self.status.value,
            "voting_start_time": self.voting_start_time,
            "voting_end_time": self.voting_end_time,
            "execution_time": self.execution_time,
            "actions": [action.to_dict() for action in self.actions],
            "votes": self.tally.to_dict(),
            "voters": sorted(self.voters),
            "quorum_reached": self.quorum_reached,
            "executed": self.executed,
            "execution_results": [r.to_dict() for r in self.execution_results],
            "discussion": [c.to_dict() for c in self.discussion],
            "signature": self.signature,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
            "executed_at": self.executed_at,
            "executed_by": self.executed_by,
            "cancelled_at": self.cancelled_at,
            "cancelled_by": self.cancelled_by,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Proposal":
        """Create proposal from dictionary."""
        return cls(
            proposal_id=data["id"],
            title=data["title"],
            description=data["description"],
            proposal_type=ProposalType(data["type"]),
            proposer_address=data["proposer"],
            voting_start_time=float(data["voting_start_time"]),
            voting_end_time=float(data["voting_end_time"]),
            execution_time=float(data["execution_time"]),
            actions=[ProposalAction.from_dict(a) for a in data.get("actions", [])],
            status=ProposalStatus(data["status"]),
            tally=Tally.from_dict(data.get("votes", {})),
            voters=set(data.get("voters", [])),
            quorum_reached=bool(data.get("quorum_reached", False)),
            executed=bool(data.get("executed", False)),
            execution_results=[
                ActionOutcome.from_dict(r) for r in data.get("execution_results", [])
            ],
            discussion=[Comment.from_dict(c) for c in data.get("discussion", [])],
            signature=data.get("signature"),
            created_at=float(data["created_at"]),
            updated_at=float(data["updated_at"]),
            executed_at=data.get("executed_at"),
            executed_by=data.get("executed_by"),
            cancelled_at=data.get("cancelled_at"),
            cancelled_by=data.get("cancelled_by"),
        )


@dataclass
class ExecutionResult:
    """Result of executing a proposal's actions."""

    proposal_id: str
    executed: bool
    executed_by: str
    executed_at: float
    execution_results: List[ActionOutcome] = field(default_factory=list)

    @property
    def succeeded(self) -> int:
        return sum(1 for outcome in self.execution_results if outcome.success)

    @property
    def failed(self) -> int:
        return len(self.execution_results) - self.succeeded

    def to_dict(self) -> Dict[str, Any]:
        return {
            "proposal_id": self.proposal_id,
            "executed": self.executed,
            "executed_by": self.executed_by,
            "executed_at": self.executed_at,
            "execution_results": [r.to_dict() for r in self.execution_results],
        }


DAY = 24 * 60 * 60.0


@dataclass
class GovernanceConfig:
    """Configuration for the governance system."""

    name: str = "LUNACOIN DAO"
    symbol: str = "LUNA-GOV"

    # Voting parameters (seconds)
    voting_period: float = 7 * DAY
    execution_delay: float = 2 * DAY

    # Thresholds
    proposal_threshold: int = 1000
    quorum_fraction: float = 0.04

    # Rate limiting
    max_proposals_per_user: int = 3
    proposal_cooldown: float = 1 * DAY

    # Proposal validation
    min_title_length: int = 10
    max_title_length: int = 200
    min_description_length: int = 50
    max_description_length: int = 5000
    max_comment_length: int = 2000

    # External collaborators
    chain_timeout: float = 5.0
    action_timeout: float = 30.0
    fallback_total_supply: int = 1_000_000_000
    chain_workers: int = 8
    broadcast_workers: int = 2

    def __post_init__(self):
        """Validate configuration after initialization."""
        self.validate()

    def validate(self) -> None:
        """Validate configuration."""
        if self.voting_period <= 0:
            raise ConfigurationError(
                "Voting period must be positive", "voting_period", self.voting_period
            )

        if self.execution_delay < 0:
            raise ConfigurationError(
                "Execution delay cannot be negative",
                "execution_delay",
                self.execution_delay,
            )

        if self.proposal_threshold < 0:
            raise ConfigurationError(
                "Proposal threshold cannot be negative",
                "proposal_threshold",
                self.proposal_threshold,
            )

        if not 0 < self.quorum_fraction <= 1:
            raise ConfigurationError(
                "Quorum fraction must be in (0, 1]",
                "quorum_fraction",
                self.quorum_fraction,
            )

        if self.max_proposals_per_user <= 0:
            raise ConfigurationError(
                "Max proposals per user must be positive",
                "max_proposals_per_user",
                self.max_proposals_per_user,
            )

        if self.proposal_cooldown < 0:
            raise ConfigurationError(
                "Proposal cooldown cannot be negative",
                "proposal_cooldown",
                self.proposal_cooldown,
            )

        if not 0 < self.min_title_length <= self.max_title_length:
            raise ConfigurationError("Invalid title length bounds", "min_title_length")

        if not 0 < self.min_description_length <= self.max_description_length:
            raise ConfigurationError(
                "Invalid description length bounds", "min_description_length"
            )

        if self.max_comment_length <= 0:
            raise ConfigurationError(
                "Max comment length must be positive",
                "max_comment_length",
                self.max_comment_length,
            )

        for key in ("chain_timeout", "action_timeout"):
            if getattr(self, key) <= 0:
                raise ConfigurationError(f"{key} must be positive", key, getattr(self, key))

        for key in ("chain_workers", "broadcast_workers"):
            if getattr(self, key) <= 0:
                raise ConfigurationError(f"{key} must be positive", key, getattr(self, key))

        if self.fallback_total_supply < 0:
            raise ConfigurationError(
                "Fallback total supply cannot be negative",
                "fallback_total_supply",
                self.fallback_total_supply,
            )

    def to_dict(self) -> Dict[str, Any]:
        return {f.name: getattr(self, f.name) for f in fields(self)}

    @staticmethod
    def _coerce(f: Field, value: Any, label: str) -> Any:
        caster = type(f.default)
        if isinstance(value, caster) and not isinstance(value, bool):
            return value
        invalid = isinstance(value, bool) or (
            caster is int and isinstance(value, float) and not value.is_integer()
        )
        try:
            if not invalid:
                return caster(value)
        except (TypeError, ValueError):
            pass
        raise ConfigurationError(
            f"Invalid value for {label}: {value!r}",
            config_key=f.name,
            config_value=value,
        )

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "GovernanceConfig":
        """Build a config from a mapping, ignoring nothing silently."""
        known = {f.name: f for f in fields(cls)}
        unknown = set(data) - set(known)
        if unknown:
            raise ConfigurationError(
                f"Unknown configuration keys: {', '.join(sorted(unknown))}"
            )
        values = {
            key: cls._coerce(known[key], value, key) for key, value in data.items()
        }
        return cls(**values)

    @classmethod
    def from_env(
        cls, prefix: str = "LUNADAO_", environ: Optional[Mapping[str, str]] = None
    ) -> "GovernanceConfig":
        """Build a config from ``<PREFIX><FIELD_NAME>`` environment variables."""
        environ = os.environ if environ is None else environ
        values: Dict[str, Any] = {}
        for f in fields(cls):
            raw = environ.get(prefix + f.name.upper())
            if raw is None:
                continue
            values[f.name] = cls._coerce(f, raw, prefix + f.name.upper())
        logger.debug("Loaded %d configuration overrides from environment", len(values))
        return cls(**values)
