"""
Shared fixtures for LunaDAO tests.
"""

import logging

logger = logging.getLogger(__name__)
import pytest

from lunadao.governance.backends import InMemoryChainReader, LedgerActionBackend
from lunadao.governance.core import GovernanceConfig
from lunadao.governance.engine import GovernanceEngine
from lunadao.governance.observability import GovernanceEvents
from lunadao.storage.base import InMemoryRecordStore
from support import BALANCES, T0, VALID_DESCRIPTION, VALID_TITLE


@pytest.fixture
def governance_config():
    """Default governance configuration."""
    return GovernanceConfig()


@pytest.fixture
def chain():
    """Chain reader with a fixed total supply of 100 000."""
    return InMemoryChainReader(balances=dict(BALANCES), total_supply=100_000, block_height=42)


@pytest.fixture
def record_store():
    return InMemoryRecordStore()


@pytest.fixture
def events():
    return GovernanceEvents()


@pytest.fixture
def backend(chain):
    return LedgerActionBackend(chain)


@pytest.fixture
def engine(governance_config, chain, record_store, events, backend):
    """Governance engine wired to in-memory collaborators."""
    engine = GovernanceEngine(
        governance_config,
        chain_reader=chain,
        store=record_store,
        broadcaster=events,
        backend=backend,
    )
    yield engine
    engine.shutdown()


@pytest.fixture
def make_proposal(engine):
    """Factory creating a proposal at ``T0`` unless told otherwise."""

    def _make(proposer="alice", actions=None, proposal_type="treasury", now=T0, title=VALID_TITLE):
        return engine.create_proposal(
            title=title,
            description=VALID_DESCRIPTION,
            proposal_type=proposal_type,
            actions=actions if actions is not None else [],
            proposer=proposer,
            now=now,
        )

    return _make
