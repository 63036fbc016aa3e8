"""
Voting power resolution and vote delegation.

A voter's effective power is their on-chain balance plus the power other
addresses currently delegate to them. Each delegator has at most one active
delegation: delegating again replaces the previous target, and a delegate's
delegated power is the sum over all delegators pointing at it. Delegations
are not transitive.
"""

import logging
import threading
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from ..errors.exceptions import ExternalUnavailable, ValidationError
from .chain import BoundedChainReader

logger = logging.getLogger(__name__)


@dataclass
class Delegation:
    """A vote delegation."""

    delegator_address: str
    delegate_address: str
    amount: int
    created_at: float = field(default_factory=time.time)
    expires_at: Optional[float] = None
    is_active: bool = True

    def __post_init__(self):
        """Validate delegation after initialization."""
        if not self.delegator_address or not self.delegate_address:
            raise ValidationError("Delegator and delegate addresses are required")

        if self.delegator_address == self.delegate_address:
            raise ValidationError(
                "Cannot delegate to yourself", field="delegate", value=self.delegate_address
            )

        if self.amount <= 0:
            raise ValidationError(
                "Delegation amount must be positive", field="amount", value=self.amount
            )

    def is_expired(self, now: Optional[float] = None) -> bool:
        """Check if delegation has expired."""
        if self.expires_at is None:
            return False
        return (time.time() if now is None else now) > self.expires_at

    def is_valid(self, now: Optional[float] = None) -> bool:
        """Check if delegation is valid."""
        return self.is_active and not self.is_expired(now)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "delegator": self.delegator_address,
            "delegate": self.delegate_address,
            "amount": self.amount,
            "created_at": self.created_at,
            "expires_at": self.expires_at,
            "is_active": self.is_active,
        }


@dataclass
class VotingPower:
    """Breakdown of an address's resolved voting power."""

    voter_address: str
    token_balance: int
    delegated_power: int = 0
    chain_available: bool = True
    delegations_received: List[Delegation] = field(default_factory=list)
    delegation_given: Optional[Delegation] = None

    def total_power(self) -> int:
        """Get total voting power including delegations."""
        return self.token_balance + self.delegated_power

    def to_dict(self) -> Dict[str, Any]:
        return {
            "address": self.voter_address,
            "own_power": self.token_balance,
            "delegated_power": self.delegated_power,
            "total_power": self.total_power(),
            "chain_available": self.chain_available,
            "delegations_received": [d.to_dict() for d in self.delegations_received],
            "delegation_given": self.delegation_given.to_dict()
            if self.delegation_given
            else None,
        }


class VotingPowerResolver:
    """Resolves effective voting power and owns the delegation table."""

    def __init__(self, chain: BoundedChainReader):
        self.chain = chain
        self._delegations: Dict[str, Delegation] = {}  # delegator -> delegation
        self._lock = threading.RLock()

    def get_balance(self, address: str) -> int:
        """Chain balance, or 0 if the chain reader is unavailable."""
        balance, _ = self._read_balance(address)
        return balance

    def _read_balance(self, address: str):
        try:
            return self.chain.get_balance(address), True
        except ExternalUnavailable as e:
            logger.warning(
                "Error getting voting power for %s: %s", address, e.message,
                extra={"address": address, "error_code": e.error_code},
            )
            return 0, False

    def get_delegated_power(self, address: str, now: Optional[float] = None) -> int:
        """Total power currently delegated to ``address``."""
        with self._lock:
            return sum(
                d.amount
                for d in self._delegations.values()
                if d.delegate_address == address and d.is_valid(now)
            )

    def get_voting_power(self, address: str, now: Optional[float] = None) -> int:
        """Balance plus delegated power."""
        return self.get_balance(address) + self.get_delegated_power(address, now)

    def get_power_breakdown(self, address: str, now: Optional[float] = None) -> VotingPower:
        balance, available = self._read_balance(address)
        with self._lock:
            received = [
                d
                for d in self._delegations.values()
                if d.delegate_address == address and d.is_valid(now)
            ]
            given = self._delegations.get(address)
            if given is not None and not given.is_valid(now):
                given = None
        return VotingPower(
            voter_address=address,
            token_balance=balance,
            delegated_power=sum(d.amount for d in received),
            chain_available=available,
            delegations_received=received,
            delegation_given=given,
        )

    def delegate(
        self,
        delegator_address: str,
        delegate_address: str,
        amount: int,
        expires_at: Optional[float] = None,
        now: Optional[float] = None,
    ) -> Delegation:
        """Record a delegation, replacing any previous one by the same delegator."""
        now = time.time() if now is None else now
        delegation = Delegation(
            delegator_address=delegator_address,
            delegate_address=delegate_address,
            amount=amount,
            created_at=now,
            expires_at=expires_at,
        )
        with self._lock:
            previous = self._delegations.get(delegator_address)
            if previous is not None:
                previous.is_active = False
                logger.info(
                    "Delegation from %s moved from %s to %s",
                    delegator_address,
                    previous.delegate_address,
                    delegate_address,
                )
            self._delegations[delegator_address] = delegation
        return delegation

    def revoke(self, delegator_address: str) -> bool:
        """Revoke the delegator's active delegation, if any."""
        with self._lock:
            delegation = self._delegations.pop(delegator_address, None)
        if delegation is None:
            return False
        delegation.is_active = False
        return True

    def get_delegation(self, delegator_address: str) -> Optional[Delegation]:
        with self._lock:
            return self._delegations.get(delegator_address)

    def cleanup_expired_delegations(self, now: Optional[float] = None) -> int:
        """Drop expired delegations; returns how many were removed."""
        with self._lock:
            expired = [
                delegator
                for delegator, d in self._delegations.items()
                if d.is_expired(now)
            ]
            for delegator in expired:
                self._delegations.pop(delegator).is_active = False
        return len(expired)

    def get_delegation_statistics(self, now: Optional[float] = None) -> Dict[str, Any]:
        with self._lock:
            active = [d for d in self._delegations.values() if d.is_valid(now)]
        return {
            "active_delegations": len(active),
            "total_delegated_power": sum(d.amount for d in active),
            "unique_delegates": len({d.delegate_address for d in active}),
        }
