# SPDX-License-Identifier: MIT
# Copyright (c) 2025 typed-docstore contributors

"""Factory for creating document store instances based on configuration."""

from __future__ import annotations

import logging
from typing import Callable, Mapping

from .config import DocumentStoreConfig
from .document_store import DocumentStore
from .inmemory_document_store import InMemoryDocumentStore
from .mongo_document_store import MongoDocumentStore

logger = logging.getLogger(__name__)


def _build_mongodb(config: DocumentStoreConfig) -> DocumentStore:
    return MongoDocumentStore.from_config(config)


def _build_inmemory(config: DocumentStoreConfig) -> DocumentStore:
    return InMemoryDocumentStore.from_config(config)


DRIVERS: Mapping[str, Callable[[DocumentStoreConfig], DocumentStore]] = {
    "mongodb": _build_mongodb,
    "inmemory": _build_inmemory,
}


def create_document_store(config: DocumentStoreConfig | None) -> DocumentStore:
    """Create a document store instance.

    Args:
        config: Store configuration

    Returns:
        DocumentStore instance (not yet connected)

    Raises:
        ValueError: If config is missing or store_type is unknown
    """
    if config is None:
        raise ValueError("document_store config is required")

    store_type = str(config.store_type).lower()
    try:
        factory = DRIVERS[store_type]
    except KeyError as exc:
        supported = ", ".join(sorted(DRIVERS))
        raise ValueError(
            f"Unknown document_store driver: {store_type}. Supported drivers: {supported}"
        ) from exc
    return factory(config)


def connect_database(config: DocumentStoreConfig | None = None) -> DocumentStore:
    """Create and connect the shared document store.

    Args:
        config: Store configuration; read from the environment when omitted

    Returns:
        Connected DocumentStore; pass it to every Collection and close it
        with :func:`close_database`
    """
    store = create_document_store(config or DocumentStoreConfig.from_env())
    store.connect()
    logger.info("connect_database: %s ready", type(store).__name__)
    return store


def close_database(store: DocumentStore | None) -> None:
    """Disconnect a store opened with :func:`connect_database`."""
    if store is not None:
        store.disconnect()
