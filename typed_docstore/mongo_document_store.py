# SPDX-License-Identifier: MIT
# Copyright (c) 2025 typed-docstore contributors

"""MongoDB document store implementation."""

import logging
from typing import Any, Sequence

from .config import DocumentStoreConfig
from .document_store import (
    BulkInsertError,
    DocumentStore,
    DocumentStoreConnectionError,
    DocumentStoreError,
    DocumentStoreNotConnectedError,
    DuplicateKeyError,
    IndexAlreadyExistsError,
)

logger = logging.getLogger(__name__)

# IndexAlreadyExists
INDEX_EXISTS_ERROR_CODE = 68
# IndexOptionsConflict, IndexKeySpecsConflict: same keys, different options
INDEX_CONFLICT_ERROR_CODES = (85, 86)


class MongoDocumentStore(DocumentStore):
    """MongoDB document store implementation.

    Lookup stages combining ``localField``/``foreignField`` with a
    sub-pipeline require MongoDB 5.0 or later; transactions require a
    replica set or sharded cluster.
    """

    @classmethod
    def from_config(cls, config: DocumentStoreConfig) -> "MongoDocumentStore":
        """Create a MongoDocumentStore from configuration.

        Args:
            config: Configuration with host, port, database, username, password
                and client_options

        Returns:
            Configured MongoDocumentStore instance
        """
        return cls(
            host=config.host,
            port=config.port,
            username=config.username,
            password=config.password,
            database=config.database,
            **config.client_options,
        )

    def __init__(
        self,
        host: str | None = None,
        port: int | None = None,
        username: str | None = None,
        password: str | None = None,
        database: str | None = None,
        **kwargs
    ):
        """Initialize MongoDB document store.

        Args:
            host: MongoDB host (required)
            port: MongoDB port (required)
            username: MongoDB username (optional)
            password: MongoDB password (optional)
            database: Database name (required)
            **kwargs: Additional MongoDB client options

        Raises:
            ValueError: If required parameters (host, port, database) are not provided
        """
        if not host:
            raise ValueError(
                "MongoDB host is required. "
                "Provide the MongoDB server hostname or IP address."
            )
        if port is None:
            raise ValueError(
                "MongoDB port is required. "
                "Provide the MongoDB server port number."
            )
        if not database:
            raise ValueError(
                "MongoDB database is required. "
                "Provide the database name to use."
            )

        self.host = host
        self.port = port
        self.username = username
        self.password = password
        self.database_name = database
        self.client_options = kwargs
        self.client = None
        self.database = None

    def connect(self) -> None:
        """Connect to MongoDB.

        Does nothing when already connected.

        Raises:
            DocumentStoreConnectionError: If connection fails
        """
        if self.client is not None:
            return

        try:
            from pymongo import MongoClient
            from pymongo.errors import ConnectionFailure
        except ImportError as e:
            logger.error("MongoDocumentStore: pymongo not installed")
            raise DocumentStoreConnectionError("pymongo not installed") from e

        try:
            connection_params = {
                "host": self.host,
                "port": self.port,
            }

            if self.username and self.password:
                connection_params["username"] = self.username
                connection_params["password"] = self.password
                if "authSource" not in self.client_options:
                    connection_params["authSource"] = "admin"

            connection_params.update(self.client_options)

            client = MongoClient(**connection_params)
            client.admin.command('ping')

            self.client = client
            self.database = client[self.database_name]

            logger.info("MongoDocumentStore: connected to %s:%s/%s", self.host, self.port, self.database_name)

        except ConnectionFailure as e:
            logger.error("MongoDocumentStore: connection failed - %s", e, exc_info=True)
            raise DocumentStoreConnectionError(f"Failed to connect to MongoDB at {self.host}:{self.port}") from e
        except Exception as e:
            logger.error("MongoDocumentStore: unexpected error during connect - %s", e, exc_info=True)
            raise DocumentStoreConnectionError(f"Unexpected error connecting to MongoDB: {str(e)}") from e

    def disconnect(self) -> None:
        """Disconnect from MongoDB."""
        if self.client:
            self.client.close()
            self.client = None
            self.database = None
            logger.info("MongoDocumentStore: disconnected")

    def _get_collection(self, collection: str) -> Any:
        if self.database is None:
            raise DocumentStoreNotConnectedError("Not connected to MongoDB")
        return self.database[collection]

    def insert_document(self, collection: str, doc: dict[str, Any], session: Any = None) -> str:
        """Insert a document into the specified collection.

        Raises:
            DocumentStoreNotConnectedError: If not connected to MongoDB
            DuplicateKeyError: If the document violates a unique index
            DocumentStoreError: If insertion fails
        """
        from pymongo.errors import DuplicateKeyError as MongoDuplicateKeyError

        coll = self._get_collection(collection)
        try:
            result = coll.insert_one(doc, session=session)
            doc_id = str(result.inserted_id)
            logger.debug("MongoDocumentStore: inserted document %s into %s", doc_id, collection)
            return doc_id
        except MongoDuplicateKeyError as e:
            logger.debug("MongoDocumentStore: duplicate key inserting into %s - %s", collection, e)
            raise DuplicateKeyError(f"Duplicate key inserting into {collection}: {e}") from e
        except Exception as e:
            logger.error("MongoDocumentStore: insert failed - %s", e, exc_info=True)
            raise DocumentStoreError(f"Failed to insert document into {collection}") from e

    def insert_documents(
        self,
        collection: str,
        docs: list[dict[str, Any]],
        ordered: bool = True,
        session: Any = None,
    ) -> list[str]:
        """Insert several documents.

        Raises:
            DocumentStoreNotConnectedError: If not connected to MongoDB
            BulkInsertError: If some documents were rejected; carries the
                IDs of the ones that were written
            DocumentStoreError: If the operation fails as a whole
        """
        from pymongo.errors import BulkWriteError

        coll = self._get_collection(collection)
        try:
            result = coll.insert_many(docs, ordered=ordered, session=session)
            doc_ids = [str(inserted_id) for inserted_id in result.inserted_ids]
            logger.debug("MongoDocumentStore: inserted %d documents into %s", len(doc_ids), collection)
            return doc_ids
        except BulkWriteError as e:
            write_errors = e.details.get("writeErrors", [])
            failed = {error["index"] for error in write_errors}
            # an ordered insert stops at the first failure
            stop = min(failed) if ordered and failed else len(docs)
            inserted = [
                str(doc["_id"]) for index, doc in enumerate(docs[:stop]) if index not in failed
            ]
            errors = [error.get("errmsg", str(error)) for error in write_errors]
            errors.extend(str(error) for error in e.details.get("writeConcernErrors", []))
            logger.warning(
                "MongoDocumentStore: bulk insert into %s wrote %d of %d documents",
                collection,
                len(inserted),
                len(docs),
            )
            raise BulkInsertError(
                f"Bulk insert into {collection} failed for {len(docs) - len(inserted)} documents",
                inserted_ids=inserted,
                errors=errors,
            ) from e
        except Exception as e:
            logger.error("MongoDocumentStore: insert_documents failed - %s", e, exc_info=True)
            raise DocumentStoreError(f"Failed to insert documents into {collection}") from e

    def find_document(
        self, collection: str, filter_dict: dict[str, Any] | None = None, session: Any = None
    ) -> dict[str, Any] | None:
        """Return the first document matching the filter, or None."""
        coll = self._get_collection(collection)
        try:
            doc = coll.find_one(filter_dict or {}, session=session)
            if doc is not None:
                self._convert_objectids_to_strings(doc)
            return doc
        except Exception as e:
            logger.error("MongoDocumentStore: find_document failed - %s", e, exc_info=True)
            raise DocumentStoreError(f"Failed to find document in {collection}") from e

    def query_documents(
        self,
        collection: str,
        filter_dict: dict[str, Any] | None = None,
        limit: int = 0,
        session: Any = None,
    ) -> list[dict[str, Any]]:
        """Query documents matching the filter criteria.

        Args:
            collection: Name of the collection
            filter_dict: Filter criteria as dictionary (MongoDB query format)
            limit: Maximum number of documents to return (0 for no limit)
            session: Optional client session

        Returns:
            List of matching documents (empty list if no matches)

        Raises:
            DocumentStoreNotConnectedError: If not connected to MongoDB
            DocumentStoreError: If query operation fails
        """
        coll = self._get_collection(collection)
        try:
            cursor = coll.find(filter_dict or {}, session=session)
            if limit:
                cursor = cursor.limit(limit)

            results = []
            for doc in cursor:
                self._convert_objectids_to_strings(doc)
                results.append(doc)

            logger.debug(
                "MongoDocumentStore: query on %s with %s returned %d documents",
                collection,
                filter_dict,
                len(results),
            )
            return results

        except Exception as e:
            logger.error("MongoDocumentStore: query_documents failed - %s", e, exc_info=True)
            raise DocumentStoreError(f"Failed to query documents from {collection}") from e

    def count_documents(
        self, collection: str, filter_dict: dict[str, Any] | None = None, session: Any = None
    ) -> int:
        coll = self._get_collection(collection)
        try:
            return coll.count_documents(filter_dict or {}, session=session)
        except Exception as e:
            logger.error("MongoDocumentStore: count_documents failed - %s", e, exc_info=True)
            raise DocumentStoreError(f"Failed to count documents in {collection}") from e

    def aggregate_documents(
        self, collection: str, pipeline: list[dict[str, Any]], session: Any = None
    ) -> list[dict[str, Any]]:
        """Execute an aggregation pipeline on a collection.

        **Note**: ObjectId values are recursively converted to strings,
        including ObjectIds in documents produced by $lookup stages.

        Raises:
            DocumentStoreNotConnectedError: If not connected to MongoDB
            DocumentStoreError: If aggregation operation fails
        """
        coll = self._get_collection(collection)
        try:
            cursor = coll.aggregate(pipeline, session=session)

            results = []
            for doc in cursor:
                self._convert_objectids_to_strings(doc)
                results.append(doc)

            logger.debug(
                "MongoDocumentStore: aggregation on %s returned %d documents",
                collection,
                len(results),
            )
            return results

        except Exception as e:
            logger.error("MongoDocumentStore: aggregate_documents failed - %s", e, exc_info=True)
            raise DocumentStoreError(f"Failed to aggregate documents from {collection}") from e

    def update_documents(
        self,
        collection: str,
        filter_dict: dict[str, Any],
        patch: dict[str, Any],
        session: Any = None,
    ) -> int:
        """Apply ``$set`` with ``patch`` to every matching document.

        Returns:
            Modified (not matched) count

        Raises:
            DocumentStoreNotConnectedError: If not connected to MongoDB
            DuplicateKeyError: If the update violates a unique index
            DocumentStoreError: If update operation fails
        """
        from pymongo.errors import DuplicateKeyError as MongoDuplicateKeyError

        coll = self._get_collection(collection)
        try:
            result = coll.update_many(filter_dict, {"$set": patch}, session=session)
            logger.debug(
                "MongoDocumentStore: updated %d of %d documents in %s",
                result.modified_count,
                result.matched_count,
                collection,
            )
            return result.modified_count
        except MongoDuplicateKeyError as e:
            raise DuplicateKeyError(f"Duplicate key updating {collection}: {e}") from e
        except Exception as e:
            logger.error("MongoDocumentStore: update_documents failed - %s", e, exc_info=True)
            raise DocumentStoreError(f"Failed to update documents in {collection}") from e

    def delete_documents(
        self, collection: str, filter_dict: dict[str, Any], session: Any = None
    ) -> int:
        coll = self._get_collection(collection)
        try:
            result = coll.delete_many(filter_dict, session=session)
            logger.debug("MongoDocumentStore: deleted %d documents from %s", result.deleted_count, collection)
            return result.deleted_count
        except Exception as e:
            logger.error("MongoDocumentStore: delete_documents failed - %s", e, exc_info=True)
            raise DocumentStoreError(f"Failed to delete documents from {collection}") from e

    def index_exists(self, collection: str, keys: Sequence[str], unique: bool = True) -> bool:
        """Return True if an index over exactly ``keys`` exists."""
        coll = self._get_collection(collection)
        try:
            indexes = coll.index_information()
        except Exception as e:
            logger.error("MongoDocumentStore: index_information failed - %s", e, exc_info=True)
            raise DocumentStoreError(f"Failed to list indexes of {collection}") from e

        wanted = list(keys)
        for spec in indexes.values():
            fields = [name for name, _direction in spec.get("key", [])]
            if fields == wanted and (not unique or spec.get("unique", False)):
                return True
        return False

    def create_index(self, collection: str, keys: Sequence[str], unique: bool = True) -> str:
        """Create an ascending index over ``keys``.

        Raises:
            IndexAlreadyExistsError: If an identical index exists
            DocumentStoreError: If an index over the same keys exists with
                different options, or index creation fails otherwise
            DuplicateKeyError: If existing documents violate the unique constraint
        """
        from pymongo import ASCENDING
        from pymongo.errors import DuplicateKeyError as MongoDuplicateKeyError
        from pymongo.errors import OperationFailure

        coll = self._get_collection(collection)
        try:
            name = coll.create_index([(key, ASCENDING) for key in keys], unique=unique)
            logger.info("MongoDocumentStore: created index %s on %s", name, collection)
            return name
        except MongoDuplicateKeyError as e:
            raise DuplicateKeyError(
                f"Cannot create unique index on {collection}.{list(keys)}: duplicate values exist"
            ) from e
        except OperationFailure as e:
            if e.code == INDEX_EXISTS_ERROR_CODE:
                raise IndexAlreadyExistsError(f"Index on {collection}.{list(keys)} already exists") from e
            if e.code in INDEX_CONFLICT_ERROR_CODES:
                logger.error("MongoDocumentStore: conflicting index on %s.%s - %s", collection, list(keys), e)
                raise DocumentStoreError(
                    f"An index on {collection}.{list(keys)} exists with different options (unique={unique} requested)"
                ) from e
            logger.error("MongoDocumentStore: create_index failed - %s", e, exc_info=True)
            raise DocumentStoreError(f"Failed to create index on {collection}") from e
        except Exception as e:
            logger.error("MongoDocumentStore: create_index failed - %s", e, exc_info=True)
            raise DocumentStoreError(f"Failed to create index on {collection}") from e

    def start_session(self) -> Any:
        """Start a pymongo ClientSession."""
        if self.client is None:
            raise DocumentStoreNotConnectedError("Not connected to MongoDB")
        try:
            return self.client.start_session()
        except Exception as e:
            logger.error("MongoDocumentStore: start_session failed - %s", e, exc_info=True)
            raise DocumentStoreError("Failed to start MongoDB session") from e

    def _convert_objectids_to_strings(self, obj: Any) -> None:
        """Recursively convert ObjectId instances to strings in-place.

        Args:
            obj: Object to convert (dict, list, or primitive)
        """
        from bson import ObjectId

        if isinstance(obj, dict):
            for key, value in obj.items():
                if isinstance(value, ObjectId):
                    obj[key] = str(value)
                elif isinstance(value, dict | list):
                    self._convert_objectids_to_strings(value)
        elif isinstance(obj, list):
            for i, item in enumerate(obj):
                if isinstance(item, ObjectId):
                    obj[i] = str(item)
                elif isinstance(item, dict | list):
                    self._convert_objectids_to_strings(item)
