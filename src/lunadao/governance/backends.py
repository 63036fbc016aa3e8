"""
In-process collaborator implementations.

``InMemoryChainReader`` holds balances in a dictionary and
``LedgerActionBackend`` applies actions to an in-memory token ledger,
configuration map and validator set. Both are thread-safe and are what the
service runs against when no real chain is wired in.
"""

import logging
import secrets
import threading
from typing import Any, Dict, Optional, Set

from ..errors.exceptions import ValidationError
from .interfaces import ActionBackend, Broadcaster, ChainReader

logger = logging.getLogger(__name__)


def _tx_id(kind: str) -> str:
    return f"{kind}_tx_{secrets.token_hex(6)}"


class InMemoryChainReader(ChainReader):
    """Chain reader backed by a balance table."""

    def __init__(
        self,
        balances: Optional[Dict[str, int]] = None,
        total_supply: Optional[int] = None,
        block_height: int = 0,
    ):
        self._lock = threading.RLock()
        self._balances: Dict[str, int] = dict(balances or {})
        self._total_supply = total_supply
        self._block_height = block_height

    def get_balance(self, address: str) -> int:
        with self._lock:
            return self._balances.get(address, 0)

    def get_total_supply(self) -> int:
        with self._lock:
            if self._total_supply is not None:
                return self._total_supply
            return sum(self._balances.values())

    def get_block_height(self) -> int:
        with self._lock:
            return self._block_height

    def set_balance(self, address: str, amount: int) -> None:
        if amount < 0:
            raise ValidationError("Balance cannot be negative", field="amount", value=amount)
        with self._lock:
            self._balances[address] = amount

    @property
    def explicit_total_supply(self) -> Optional[int]:
        with self._lock:
            return self._total_supply

    def set_total_supply(self, total_supply: Optional[int]) -> None:
        with self._lock:
            self._total_supply = total_supply

    def credit(self, address: str, amount: int) -> None:
        with self._lock:
            self._balances[address] = self._balances.get(address, 0) + amount

    def debit(self, address: str, amount: int) -> None:
        with self._lock:
            balance = self._balances.get(address, 0)
            if balance < amount:
                raise ValidationError(
                    f"Insufficient balance for {address}: {balance} < {amount}",
                    field="amount",
                    value=amount,
                )
            self._balances[address] = balance - amount


class LedgerActionBackend(ActionBackend):
    """Applies actions to an in-memory ledger.

    Transfers move tokens out of ``treasury_address``; mint and burn adjust the
    chain reader's balances (and its explicit total supply, if set).
    """

    def __init__(self, chain: InMemoryChainReader, treasury_address: str = "treasury"):
        self.chain = chain
        self.treasury_address = treasury_address
        self.config: Dict[str, Any] = {}
        self.validators: Set[str] = set()
        self._lock = threading.RLock()

    def transfer(self, parameters: Dict[str, Any]) -> Any:
        recipient = parameters["recipient"]
        amount = int(parameters["amount"])
        source = parameters.get("from", self.treasury_address)
        with self._lock:
            self.chain.debit(source, amount)
            self.chain.credit(recipient, amount)
        logger.info("Transferred %d from %s to %s", amount, source, recipient)
        return _tx_id("transfer")

    def mint(self, parameters: Dict[str, Any]) -> Any:
        recipient = parameters.get("recipient", self.treasury_address)
        amount = int(parameters["amount"])
        with self._lock:
            self.chain.credit(recipient, amount)
            self._adjust_supply(amount)
        logger.info("Minted %d to %s", amount, recipient)
        return _tx_id("mint")

    def burn(self, parameters: Dict[str, Any]) -> Any:
        holder = parameters.get("from", self.treasury_address)
        amount = int(parameters["amount"])
        with self._lock:
            self.chain.debit(holder, amount)
            self._adjust_supply(-amount)
        logger.info("Burned %d from %s", amount, holder)
        return _tx_id("burn")

    def update_config(self, parameters: Dict[str, Any]) -> Any:
        key = parameters["key"]
        with self._lock:
            old_value = self.config.get(key)
            self.config[key] = parameters.get("value")
        logger.info("Updated config %s: %r -> %r", key, old_value, parameters.get("value"))
        return _tx_id("param")

    def add_validator(self, parameters: Dict[str, Any]) -> Any:
        validator = parameters["validator"]
        with self._lock:
            if validator in self.validators:
                raise ValidationError(f"Validator already registered: {validator}")
            self.validators.add(validator)
        return _tx_id("validator_add")

    def remove_validator(self, parameters: Dict[str, Any]) -> Any:
        validator = parameters["validator"]
        with self._lock:
            if validator not in self.validators:
                raise ValidationError(f"Unknown validator: {validator}")
            self.validators.discard(validator)
        return _tx_id("validator_remove")

    def _adjust_supply(self, delta: int) -> None:
        explicit = self.chain.explicit_total_supply
        if explicit is not None:
            self.chain.set_total_supply(explicit + delta)


class NullBroadcaster(Broadcaster):
    """Broadcaster that drops every event."""

    def publish(self, event_type: str, payload: Dict[str, Any]) -> None:
        logger.debug("Dropping %s event", event_type)
