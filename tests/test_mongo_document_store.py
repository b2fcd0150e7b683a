# SPDX-License-Identifier: MIT
# Copyright (c) 2025 typed-docstore contributors

"""Unit tests for the MongoDB document store, using a mocked client."""

from unittest.mock import MagicMock, patch

import pytest
from bson import ObjectId
from pymongo.errors import BulkWriteError, ConnectionFailure, OperationFailure
from pymongo.errors import DuplicateKeyError as MongoDuplicateKeyError

from typed_docstore import (
    BulkInsertError,
    DocumentStoreConfig,
    DocumentStoreConnectionError,
    DocumentStoreError,
    DocumentStoreNotConnectedError,
    DuplicateKeyError,
    IndexAlreadyExistsError,
    MongoDocumentStore,
)


@pytest.fixture
def mongo_store():
    """A MongoDocumentStore whose database is a MagicMock."""
    store = MongoDocumentStore(host="localhost", port=27017, database="test_db")
    store.client = MagicMock()
    store.database = MagicMock()
    return store


@pytest.fixture
def coll(mongo_store):
    return mongo_store.database.__getitem__.return_value


class TestMongoDocumentStoreInit:
    """Tests for construction and connection."""

    def test_requires_host(self):
        """Test that a host is required."""
        with pytest.raises(ValueError, match="host is required"):
            MongoDocumentStore(port=27017, database="db")

    def test_requires_port(self):
        """Test that a port is required."""
        with pytest.raises(ValueError, match="port is required"):
            MongoDocumentStore(host="localhost", database="db")

    def test_requires_database(self):
        """Test that a database is required."""
        with pytest.raises(ValueError, match="database is required"):
            MongoDocumentStore(host="localhost", port=27017)

    def test_from_config(self):
        """Test creation from configuration, including client options."""
        config = DocumentStoreConfig(
            store_type="mongodb",
            host="db.example",
            port=27018,
            database="app",
            username="user",
            password="secret",
            client_options={"serverSelectionTimeoutMS": 1000},
        )

        store = MongoDocumentStore.from_config(config)

        assert store.host == "db.example"
        assert store.port == 27018
        assert store.database_name == "app"
        assert store.client_options == {"serverSelectionTimeoutMS": 1000}

    @patch("pymongo.MongoClient")
    def test_connect(self, mock_client_class):
        """Test a successful connection with credentials."""
        store = MongoDocumentStore(
            host="localhost", port=27017, database="app", username="user", password="secret"
        )

        store.connect()

        mock_client_class.assert_called_once_with(
            host="localhost", port=27017, username="user", password="secret", authSource="admin"
        )
        mock_client_class.return_value.admin.command.assert_called_once_with("ping")
        assert store.database is not None

    @patch("pymongo.MongoClient")
    def test_connect_failure(self, mock_client_class):
        """Test that a failed ping leaves the store disconnected."""
        mock_client_class.return_value.admin.command.side_effect = ConnectionFailure("refused")
        store = MongoDocumentStore(host="localhost", port=27017, database="app")

        with pytest.raises(DocumentStoreConnectionError, match="Failed to connect to MongoDB at localhost:27017"):
            store.connect()

        assert store.client is None
        assert store.database is None

    @patch("pymongo.MongoClient")
    def test_connect_unexpected_error(self, mock_client_class):
        """Test that other connection errors are wrapped."""
        mock_client_class.side_effect = RuntimeError("bad uri")
        store = MongoDocumentStore(host="localhost", port=27017, database="app")

        with pytest.raises(DocumentStoreConnectionError, match="Unexpected error"):
            store.connect()

    def test_not_connected(self):
        """Test that operations fail before connect()."""
        store = MongoDocumentStore(host="localhost", port=27017, database="app")

        with pytest.raises(DocumentStoreNotConnectedError):
            store.insert_document("users", {})
        with pytest.raises(DocumentStoreNotConnectedError):
            store.start_session()

    def test_disconnect(self, mongo_store):
        """Test that disconnect closes the client."""
        client = mongo_store.client

        mongo_store.disconnect()

        client.close.assert_called_once()
        assert mongo_store.database is None


class TestMongoDocumentStoreOperations:
    """Tests for CRUD, aggregation and index operations."""

    def test_insert_document_passes_session(self, mongo_store, coll):
        """Test that the session reaches the driver."""
        session = MagicMock()
        coll.insert_one.return_value.inserted_id = "k1"

        assert mongo_store.insert_document("users", {"_id": "k1"}, session=session) == "k1"
        coll.insert_one.assert_called_once_with({"_id": "k1"}, session=session)

    def test_insert_document_duplicate(self, mongo_store, coll):
        """Test that driver duplicate key errors are translated."""
        coll.insert_one.side_effect = MongoDuplicateKeyError("E11000", code=11000)

        with pytest.raises(DuplicateKeyError):
            mongo_store.insert_document("users", {"email": "a"})

    def test_insert_documents_unordered_partial(self, mongo_store, coll):
        """Test that successful ids are recovered from a bulk write error."""
        docs = [{"_id": "a"}, {"_id": "b"}, {"_id": "c"}]
        coll.insert_many.side_effect = BulkWriteError(
            {"writeErrors": [{"index": 1, "errmsg": "E11000 duplicate key"}], "nInserted": 2}
        )

        with pytest.raises(BulkInsertError) as exc_info:
            mongo_store.insert_documents("users", docs, ordered=False)

        assert exc_info.value.inserted_ids == ["a", "c"]
        assert exc_info.value.errors == ["E11000 duplicate key"]

    def test_insert_documents_ordered_partial(self, mongo_store, coll):
        """Test that an ordered bulk insert only reports documents before the failure."""
        docs = [{"_id": "a"}, {"_id": "b"}, {"_id": "c"}]
        coll.insert_many.side_effect = BulkWriteError(
            {"writeErrors": [{"index": 1, "errmsg": "E11000 duplicate key"}], "nInserted": 1}
        )

        with pytest.raises(BulkInsertError) as exc_info:
            mongo_store.insert_documents("users", docs, ordered=True)

        assert exc_info.value.inserted_ids == ["a"]

    def test_find_document_converts_objectids(self, mongo_store, coll):
        """Test that ObjectIds are returned as strings."""
        oid = ObjectId()
        coll.find_one.return_value = {"_id": oid, "refs": [ObjectId(oid)], "nested": {"ref": oid}}

        doc = mongo_store.find_document("users", {"name": "Alice"})

        assert doc == {"_id": str(oid), "refs": [str(oid)], "nested": {"ref": str(oid)}}

    def test_query_documents_limit(self, mongo_store, coll):
        """Test that a limit is applied to the cursor."""
        cursor = MagicMock()
        cursor.limit.return_value = iter([{"_id": "a"}])
        coll.find.return_value = cursor

        assert mongo_store.query_documents("users", limit=1) == [{"_id": "a"}]
        cursor.limit.assert_called_once_with(1)

    def test_aggregate_documents(self, mongo_store, coll):
        """Test that pipelines and sessions are passed to the driver."""
        pipeline = [{"$match": {"age": 1}}]
        coll.aggregate.return_value = iter([{"_id": "a", "age": 1}])

        assert mongo_store.aggregate_documents("users", pipeline) == [{"_id": "a", "age": 1}]
        coll.aggregate.assert_called_once_with(pipeline, session=None)

    def test_aggregate_failure(self, mongo_store, coll):
        """Test that driver failures are wrapped."""
        coll.aggregate.side_effect = OperationFailure("bad stage")

        with pytest.raises(DocumentStoreError, match="Failed to aggregate"):
            mongo_store.aggregate_documents("users", [])

    def test_update_documents_uses_set(self, mongo_store, coll):
        """Test that updates are $set patches returning the modified count."""
        coll.update_many.return_value.modified_count = 2

        assert mongo_store.update_documents("users", {"age": 1}, {"age": 2}) == 2
        coll.update_many.assert_called_once_with({"age": 1}, {"$set": {"age": 2}}, session=None)

    def test_delete_documents(self, mongo_store, coll):
        """Test that deletes return the deleted count."""
        coll.delete_many.return_value.deleted_count = 3

        assert mongo_store.delete_documents("users", {}) == 3

    def test_count_documents(self, mongo_store, coll):
        """Test counting with an empty filter."""
        coll.count_documents.return_value = 4

        assert mongo_store.count_documents("users") == 4
        coll.count_documents.assert_called_once_with({}, session=None)

    def test_index_exists(self, mongo_store, coll):
        """Test index detection by keys and uniqueness."""
        coll.index_information.return_value = {
            "_id_": {"key": [("_id", 1)]},
            "email_1": {"key": [("email", 1)], "unique": True},
            "team_1_user_1": {"key": [("team", 1), ("user", 1)]},
        }

        assert mongo_store.index_exists("users", ["email"])
        assert mongo_store.index_exists("users", ("team", "user"), unique=False)
        assert not mongo_store.index_exists("users", ("team", "user"), unique=True)
        assert not mongo_store.index_exists("users", ["name"])

    def test_create_index(self, mongo_store, coll):
        """Test that indexes are created ascending over the keys."""
        coll.create_index.return_value = "team_1_user_1"

        assert mongo_store.create_index("members", ("team", "user")) == "team_1_user_1"
        coll.create_index.assert_called_once_with([("team", 1), ("user", 1)], unique=True)

    def test_create_index_already_exists(self, mongo_store, coll):
        """Test that IndexAlreadyExists maps to IndexAlreadyExistsError."""
        coll.create_index.side_effect = OperationFailure("exists", code=68)

        with pytest.raises(IndexAlreadyExistsError):
            mongo_store.create_index("users", ["email"])

    @pytest.mark.parametrize("code", [85, 86])
    def test_create_index_conflicting_options(self, mongo_store, coll, code):
        """Test that an index over the same keys with other options is a store error."""
        coll.create_index.side_effect = OperationFailure("IndexOptionsConflict", code=code)

        with pytest.raises(DocumentStoreError, match="different options") as exc_info:
            mongo_store.create_index("users", ["email"])

        assert not isinstance(exc_info.value, IndexAlreadyExistsError)

    def test_create_index_duplicate_data(self, mongo_store, coll):
        """Test that duplicate data maps to DuplicateKeyError."""
        coll.create_index.side_effect = MongoDuplicateKeyError("E11000", code=11000)

        with pytest.raises(DuplicateKeyError):
            mongo_store.create_index("users", ["email"])

    def test_create_index_other_failure(self, mongo_store, coll):
        """Test that other failures map to DocumentStoreError only."""
        coll.create_index.side_effect = OperationFailure("unauthorized", code=13)

        with pytest.raises(DocumentStoreError) as exc_info:
            mongo_store.create_index("users", ["email"])

        assert not isinstance(exc_info.value, (IndexAlreadyExistsError, DuplicateKeyError))

    def test_start_session(self, mongo_store):
        """Test that sessions come from the client."""
        assert mongo_store.start_session() is mongo_store.client.start_session.return_value
