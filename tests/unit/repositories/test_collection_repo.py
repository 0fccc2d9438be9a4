"""
Tests for CollectionRepository and PersistentStore.

Covers JSON round trips through the stored_collections table, upserts,
corrupted rows and the store's failure reporting.
"""

from unittest.mock import Mock

from sqlalchemy.exc import OperationalError

from zapdesk.models import StoredCollection
from zapdesk.repositories.collection_repo import CollectionRepository, PersistentStore


class TestCollectionRepository:
    """Test row-level collection operations."""

    def test_save_and_load_collection(self, test_session):
        """
        Test saving a collection and reading it back.

        Protects against: Lost writes, JSON encoding of non-ASCII text.
        """
        repo = CollectionRepository(test_session)

        repo.save("queue", {"nextId": 2, "items": [{"userId": "u1", "message": "Olá, contábil"}]})

        assert repo.load("queue") == {"nextId": 2, "items": [{"userId": "u1", "message": "Olá, contábil"}]}

    def test_save_replaces_existing_row(self, test_session):
        """
        Test that saving twice keeps a single row with the latest value.

        Protects against: Duplicate collection rows, stale values after restart.
        """
        repo = CollectionRepository(test_session)

        repo.save("tags", [{"id": "tag_1"}])
        repo.save("tags", [{"id": "tag_1"}, {"id": "tag_2"}])

        rows = test_session.query(StoredCollection).filter_by(name="tags").all()
        assert len(rows) == 1
        assert repo.load("tags") == [{"id": "tag_1"}, {"id": "tag_2"}]

    def test_load_missing_collection_returns_default(self, test_session):
        """
        Test loading a collection that was never written.

        Protects against: First-boot crashes on an empty database.
        """
        repo = CollectionRepository(test_session)

        assert repo.load("active_chats", []) == []

    def test_load_corrupted_row_returns_default(self, test_session):
        """
        Test that an undecodable row yields the default instead of raising.

        Protects against: One bad row preventing the console from starting.
        """
        test_session.add(StoredCollection(name="contacts", value="{not json"))
        test_session.commit()

        repo = CollectionRepository(test_session)

        assert repo.load("contacts", []) == []

    def test_save_replaces_existing_row(self, test_session):
        repo = CollectionRepository(test_session)
        repo.save("queue", [{"id": 1}])
        repo.save("queue", [])

        assert repo.load("queue") == []
        assert test_session.query(StoredCollection).filter(StoredCollection.name == "queue").count() == 1


class TestPersistentStore:
    """Test the write-through store used by the pools."""

    def test_store_round_trip_across_sessions(self, store, session_factory):
        """
        Test that data saved through the store is visible to a new session.

        Protects against: Uncommitted writes that vanish on restart.
        """
        assert store.save("bot_sessions", [{"userId": "u1"}]) is True

        fresh = PersistentStore(session_factory)
        assert fresh.load("bot_sessions", []) == [{"userId": "u1"}]

    def test_save_reports_failure_instead_of_raising(self):
        """
        Test that a database failure is logged and reported as False.

        Protects against: A transient disk error crashing message dispatch.
        """
        failing_session = Mock()
        failing_session.query.side_effect = OperationalError("SELECT", {}, Exception("disk I/O error"))
        store = PersistentStore(lambda: failing_session)

        assert store.save("queue", {"items": []}) is False
        failing_session.rollback.assert_called_once()
        failing_session.close.assert_called_once()

    def test_save_rejects_unserializable_data(self, store):
        """
        Test that non-JSON data is reported as a failure.

        Protects against: Serialization bugs raising out of pool mutations.
        """
        assert store.save("queue", {"bad": object()}) is False

    def test_load_returns_default_on_database_failure(self):
        failing_session = Mock()
        failing_session.query.side_effect = OperationalError("SELECT", {}, Exception("locked"))
        store = PersistentStore(lambda: failing_session)

        assert store.load("queue", {"items": []}) == {"items": []}
