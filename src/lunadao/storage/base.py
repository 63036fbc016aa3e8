"""Record store interface.

The governance engine persists one record per proposal and one per vote,
keyed by id and overwritten on every mutation. Records are JSON-safe
dictionaries produced by ``Proposal.to_dict`` / ``Vote.to_dict``.
"""

import copy
import threading
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

Record = Dict[str, Any]


class RecordStore(ABC):
    """Durable store for proposal and vote records."""

    @abstractmethod
    def save_proposal(self, record: Record) -> None:
        """Create or overwrite a proposal record (keyed by ``record["id"]``)."""
        pass

    @abstractmethod
    def save_vote(self, record: Record) -> None:
        """Create or overwrite a vote record (keyed by ``record["vote_id"]``)."""
        pass

    @abstractmethod
    def delete_vote(self, vote_id: str) -> None:
        """Remove a vote record. Deleting a missing record is a no-op."""
        pass

    @abstractmethod
    def get_proposal(self, proposal_id: str) -> Optional[Record]:
        pass

    @abstractmethod
    def get_vote(self, vote_id: str) -> Optional[Record]:
        pass

    @abstractmethod
    def load_proposals(self) -> List[Record]:
        pass

    @abstractmethod
    def load_votes(self) -> List[Record]:
        pass

    def close(self) -> None:
        """Release resources held by the store."""

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()


class InMemoryRecordStore(RecordStore):
    """Record store kept in process memory."""

    def __init__(self):
        self._proposals: Dict[str, Record] = {}
        self._votes: Dict[str, Record] = {}
        self._lock = threading.RLock()

    def save_proposal(self, record: Record) -> None:
        with self._lock:
            self._proposals[record["id"]] = copy.deepcopy(record)

    def save_vote(self, record: Record) -> None:
        with self._lock:
            self._votes[record["vote_id"]] = copy.deepcopy(record)

    def delete_vote(self, vote_id: str) -> None:
        with self._lock:
            self._votes.pop(vote_id, None)

    def get_proposal(self, proposal_id: str) -> Optional[Record]:
        with self._lock:
            record = self._proposals.get(proposal_id)
            return copy.deepcopy(record) if record is not None else None

    def get_vote(self, vote_id: str) -> Optional[Record]:
        with self._lock:
            record = self._votes.get(vote_id)
            return copy.deepcopy(record) if record is not None else None

    def load_proposals(self) -> List[Record]:
        with self._lock:
            return [copy.deepcopy(r) for r in self._proposals.values()]

    def load_votes(self) -> List[Record]:
        with self._lock:
            return [copy.deepcopy(r) for r in self._votes.values()]
