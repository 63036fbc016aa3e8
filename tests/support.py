"""
Constants and helpers shared by the LunaDAO test suites.
"""

from lunadao.errors.exceptions import StorageError
from lunadao.governance.core import DAY
from lunadao.storage.base import InMemoryRecordStore

T0 = 1_700_000_000.0

VALID_TITLE = "Fund the community grants program"
VALID_DESCRIPTION = (
    "Allocate treasury funds to the community grants program for the next quarter."
)

BALANCES = {
    "alice": 1500,
    "bob": 2000,
    "carol": 3000,
    "dave": 500,
    "erin": 10_000,
    "treasury": 1_000_000,
}

VOTING_END = T0 + 7 * DAY
EXECUTION_TIME = T0 + 9 * DAY


class FlakyRecordStore(InMemoryRecordStore):
    """In-memory store whose next writes can be made to fail."""

    def __init__(self):
        super().__init__()
        self.failing_proposal_saves = 0
        self.failing_vote_deletes = 0
        self.fail_when = None

    def fail_next_proposal_save(self, count=1, when=None):
        """Fail the next ``count`` proposal writes whose record matches ``when``."""
        self.failing_proposal_saves = count
        self.fail_when = when

    def save_proposal(self, record):
        if self.failing_proposal_saves and (self.fail_when is None or self.fail_when(record)):
            self.failing_proposal_saves -= 1
            raise StorageError(
                "disk unavailable", storage_type="memory", operation="save_proposal"
            )
        super().save_proposal(record)

    def delete_vote(self, vote_id):
        if self.failing_vote_deletes:
            self.failing_vote_deletes -= 1
            raise StorageError("disk unavailable", storage_type="memory", operation="delete")
        super().delete_vote(vote_id)
