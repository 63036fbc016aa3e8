"""Tests for proposal and vote record stores."""

import logging

logger = logging.getLogger(__name__)
import pytest

from lunadao.errors.exceptions import StorageError
from lunadao.storage import (
    DatabaseConfig,
    InMemoryRecordStore,
    JSONFileRecordStore,
    SQLiteRecordStore,
)
from support import T0


def proposal_record(proposal_id="prop_1", status="active", updated_at=T0):
    return {
        "id": proposal_id,
        "title": "Fund the grants round",
        "status": status,
        "proposer": "alice",
        "votes": {"for": 0, "against": 0, "abstain": 0},
        "updated_at": updated_at,
    }


def vote_record(vote_id="vote_1", voter="bob", timestamp=T0 + 10):
    return {
        "vote_id": vote_id,
        "proposal_id": "prop_1",
        "voter_address": voter,
        "choice": "for",
        "voting_power": 2000,
        "timestamp": timestamp,
    }


@pytest.fixture(params=["memory", "json", "sqlite"])
def store(request, tmp_path):
    if request.param == "memory":
        store = InMemoryRecordStore()
    elif request.param == "json":
        store = JSONFileRecordStore(tmp_path / "records")
    else:
        store = SQLiteRecordStore(DatabaseConfig(database_path=str(tmp_path / "dao.db")))
    yield store
    store.close()


class TestRecordStores:
    """Behaviour shared by every record store."""

    def test_missing_records(self, store):
        assert store.get_proposal("prop_missing") is None
        assert store.get_vote("vote_missing") is None
        assert store.load_proposals() == []
        assert store.load_votes() == []

    def test_save_and_get(self, store):
        store.save_proposal(proposal_record())
        store.save_vote(vote_record())

        assert store.get_proposal("prop_1") == proposal_record()
        assert store.get_vote("vote_1") == vote_record()

    def test_save_overwrites(self, store):
        store.save_proposal(proposal_record())
        store.save_proposal(proposal_record(status="ended", updated_at=T0 + 1))

        assert store.get_proposal("prop_1")["status"] == "ended"
        assert len(store.load_proposals()) == 1

    def test_load_all(self, store):
        store.save_proposal(proposal_record("prop_1"))
        store.save_proposal(proposal_record("prop_2", updated_at=T0 + 1))
        store.save_vote(vote_record("vote_1", "bob"))
        store.save_vote(vote_record("vote_2", "carol", timestamp=T0 + 11))

        assert sorted(r["id"] for r in store.load_proposals()) == ["prop_1", "prop_2"]
        assert sorted(r["voter_address"] for r in store.load_votes()) == ["bob", "carol"]

    def test_returned_records_are_copies(self, store):
        store.save_proposal(proposal_record())
        record = store.get_proposal("prop_1")
        record["votes"]["for"] = 999

        assert store.get_proposal("prop_1")["votes"]["for"] == 0

    def test_delete_vote(self, store):
        store.save_vote(vote_record("vote_1", "bob"))
        store.save_vote(vote_record("vote_2", "carol"))

        store.delete_vote("vote_1")
        store.delete_vote("vote_missing")

        assert store.get_vote("vote_1") is None
        assert [r["vote_id"] for r in store.load_votes()] == ["vote_2"]

    def test_context_manager(self, store):
        with store as s:
            s.save_vote(vote_record())
        assert store.get_vote("vote_1") is not None


class TestJSONFileRecordStore:
    """Test the file-per-record JSON store."""

    def test_layout(self, tmp_path):
        store = JSONFileRecordStore(tmp_path)
        store.save_proposal(proposal_record())
        store.save_vote(vote_record())

        assert (tmp_path / "proposals" / "prop_1.json").exists()
        assert (tmp_path / "votes" / "vote_1.json").exists()
        assert not list(tmp_path.glob("**/.tmp-*"))

    @pytest.mark.parametrize("record_id", ["../escape", "a/b", "", ".."])
    def test_unsafe_id_rejected(self, tmp_path, record_id):
        store = JSONFileRecordStore(tmp_path)

        with pytest.raises(StorageError):
            store.save_proposal(proposal_record(record_id))

    def test_corrupt_file_skipped_on_load(self, tmp_path, caplog):
        store = JSONFileRecordStore(tmp_path)
        store.save_proposal(proposal_record())
        (tmp_path / "proposals" / "prop_bad.json").write_text("{not json", encoding="utf-8")

        with caplog.at_level(logging.ERROR, logger="lunadao.storage.files"):
            records = store.load_proposals()

        assert [r["id"] for r in records] == ["prop_1"]
        assert "prop_bad.json" in caplog.text

    def test_corrupt_file_raises_on_get(self, tmp_path):
        store = JSONFileRecordStore(tmp_path)
        (tmp_path / "votes" / "vote_bad.json").write_text("[", encoding="utf-8")

        with pytest.raises(StorageError):
            store.get_vote("vote_bad")

    def test_unserializable_record(self, tmp_path):
        store = JSONFileRecordStore(tmp_path)
        record = proposal_record()
        record["blob"] = object()

        with pytest.raises(StorageError):
            store.save_proposal(record)
        assert store.get_proposal("prop_1") is None

    def test_reopen(self, tmp_path):
        JSONFileRecordStore(tmp_path).save_vote(vote_record())

        assert JSONFileRecordStore(tmp_path).get_vote("vote_1") == vote_record()


class TestSQLiteRecordStore:
    """Test the SQLite record store."""

    def test_default_config(self):
        config = DatabaseConfig()

        assert config.database_path == "lunadao.db"
        assert config.connection_timeout == 30.0
        assert config.synchronous == "NORMAL"
        assert config.journal_mode == "WAL"

    def test_in_memory(self):
        store = SQLiteRecordStore(DatabaseConfig(database_path=":memory:"))
        try:
            store.save_proposal(proposal_record())
            assert store.get_proposal("prop_1")["proposer"] == "alice"
        finally:
            store.close()

    def test_load_ordering(self, tmp_path):
        store = SQLiteRecordStore(DatabaseConfig(database_path=str(tmp_path / "dao.db")))
        try:
            store.save_vote(vote_record("vote_late", "carol", timestamp=T0 + 50))
            store.save_vote(vote_record("vote_early", "bob", timestamp=T0 + 5))

            assert [r["vote_id"] for r in store.load_votes()] == ["vote_early", "vote_late"]
        finally:
            store.close()

    def test_reopen(self, tmp_path):
        config = DatabaseConfig(database_path=str(tmp_path / "dao.db"))
        with SQLiteRecordStore(config) as store:
            store.save_proposal(proposal_record())

        with SQLiteRecordStore(config) as store:
            assert store.get_proposal("prop_1") == proposal_record()

    def test_close_is_idempotent(self, tmp_path):
        store = SQLiteRecordStore(DatabaseConfig(database_path=str(tmp_path / "dao.db")))
        store.connect()
        store.close()
        store.close()

    def test_connect_failure(self, tmp_path):
        # A directory cannot be opened as a database file.
        (tmp_path / "dir.db").mkdir()
        store = SQLiteRecordStore(DatabaseConfig(database_path=str(tmp_path / "dir.db")))

        with pytest.raises(StorageError):
            store.connect()

    def test_unserializable_record_raises_storage_error(self, tmp_path):
        store = SQLiteRecordStore(DatabaseConfig(database_path=str(tmp_path / "dao.db")))
        try:
            with pytest.raises(StorageError) as exc_info:
                store.save_proposal(dict(proposal_record(), extra=object()))
            assert exc_info.value.operation == "save_proposal"

            with pytest.raises(StorageError):
                store.save_vote(dict(vote_record(), extra={1, 2}))

            assert store.get_proposal("prop_1") is None
            assert store.load_votes() == []
        finally:
            store.close()
