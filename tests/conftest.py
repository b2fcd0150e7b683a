# SPDX-License-Identifier: MIT
# Copyright (c) 2025 typed-docstore contributors

"""Shared fixtures for typed_docstore tests."""

import pytest

from typed_docstore import InMemoryDocumentStore, get_collection


def pytest_configure(config):
    config.addinivalue_line("markers", "integration: tests that need a running MongoDB server")


@pytest.fixture
def store():
    """A connected, empty in-memory store."""
    store = InMemoryDocumentStore()
    store.connect()
    yield store
    store.disconnect()


@pytest.fixture
def users(store):
    return get_collection(store, "users")


@pytest.fixture
def projects(store):
    return get_collection(store, "projects")


@pytest.fixture
def seeded_users(users):
    """Five users with distinct names and ages; returns name -> id."""
    people = [
        {"name": "Alice", "email": "alice@test.com", "age": 31, "tags": ["admin", "dev"]},
        {"name": "Bob", "email": "bob@test.com", "age": 25, "tags": ["dev"]},
        {"name": "Carol", "email": "carol@test.com", "age": 42, "tags": []},
        {"name": "Dave", "email": "dave@test.com", "age": 25, "tags": ["ops"]},
        {"name": "Eve", "email": "eve@test.com", "age": 19},
    ]
    return {person["name"]: users.insert(person) for person in people}
