"""
Collaborator interfaces consumed by the governance engine.

The engine never talks to a blockchain, a message bus or an execution layer
directly; it calls these abstractions. ``backends.py`` provides in-process
implementations used for development and tests.
"""

from abc import ABC, abstractmethod
from typing import Any, Dict


class ChainReader(ABC):
    """Read-only view of the token chain."""

    @abstractmethod
    def get_balance(self, address: str) -> int:
        """Current token balance of ``address``."""
        pass

    @abstractmethod
    def get_total_supply(self) -> int:
        """Current total token supply."""
        pass

    @abstractmethod
    def get_block_height(self) -> int:
        """Current block height (slot)."""
        pass


class Broadcaster(ABC):
    """Fire-and-forget notification sink."""

    @abstractmethod
    def publish(self, event_type: str, payload: Dict[str, Any]) -> None:
        """Publish an event. May be slow or fail; callers do not wait on it."""
        pass


class ActionBackend(ABC):
    """Performs the effect of each executable action type."""

    @abstractmethod
    def transfer(self, parameters: Dict[str, Any]) -> Any:
        pass

    @abstractmethod
    def mint(self, parameters: Dict[str, Any]) -> Any:
        pass

    @abstractmethod
    def burn(self, parameters: Dict[str, Any]) -> Any:
        pass

    @abstractmethod
    def update_config(self, parameters: Dict[str, Any]) -> Any:
        pass

    @abstractmethod
    def add_validator(self, parameters: Dict[str, Any]) -> Any:
        pass

    @abstractmethod
    def remove_validator(self, parameters: Dict[str, Any]) -> Any:
        pass
