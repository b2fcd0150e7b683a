# SPDX-License-Identifier: MIT
# Copyright (c) 2025 typed-docstore contributors

"""Document store configuration."""

import logging
import os
from dataclasses import dataclass, field
from typing import Any

PACKAGE_LOGGER = "typed_docstore"


@dataclass
class DocumentStoreConfig:
    """Configuration of the shared document store.

    Attributes:
        store_type: Driver name ("mongodb" or "inmemory")
        host: MongoDB host
        port: MongoDB port
        database: Database name
        username: MongoDB username (optional)
        password: MongoDB password (optional)
        client_options: Extra keyword arguments for the MongoDB client
    """
    store_type: str = "inmemory"
    host: str | None = "localhost"
    port: int | None = 27017
    database: str | None = "typed_docstore"
    username: str | None = None
    password: str | None = None
    client_options: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_env(cls, **overrides: Any) -> "DocumentStoreConfig":
        """Build a configuration from environment variables.

        Explicit keyword arguments take precedence over environment variables.

        Environment variables:
            DOCUMENT_STORE_TYPE: Driver name (default "inmemory")
            DOCUMENT_DATABASE_HOST: Host (default "localhost")
            DOCUMENT_DATABASE_PORT: Port (default 27017)
            DOCUMENT_DATABASE_NAME: Database (default "typed_docstore")
            DOCUMENT_DATABASE_USER: Username (only if set)
            DOCUMENT_DATABASE_PASSWORD: Password (only if set)

        Raises:
            ValueError: If DOCUMENT_DATABASE_PORT is not an integer
        """
        port = os.getenv("DOCUMENT_DATABASE_PORT", "27017")
        try:
            port_number = int(port)
        except ValueError as e:
            raise ValueError(f"DOCUMENT_DATABASE_PORT must be an integer, got {port!r}") from e

        values: dict[str, Any] = {
            "store_type": os.getenv("DOCUMENT_STORE_TYPE", "inmemory"),
            "host": os.getenv("DOCUMENT_DATABASE_HOST", "localhost"),
            "port": port_number,
            "database": os.getenv("DOCUMENT_DATABASE_NAME", "typed_docstore"),
            "username": os.getenv("DOCUMENT_DATABASE_USER"),
            "password": os.getenv("DOCUMENT_DATABASE_PASSWORD"),
        }
        values.update(overrides)
        return cls(**values)


def set_global_log_status(active: bool) -> None:
    """Enable or disable all log output of this package."""
    # module loggers inherit this level
    logging.getLogger(PACKAGE_LOGGER).setLevel(logging.NOTSET if active else logging.CRITICAL + 1)
