# SPDX-License-Identifier: MIT
# Copyright (c) 2025 typed-docstore contributors

"""Tests for the Collection facade."""

from unittest.mock import MagicMock

import pytest

from typed_docstore import (
    BulkInsertError,
    Collection,
    DocumentNotFoundError,
    DocumentStoreError,
    DocumentStoreNotConnectedError,
    DocumentValidationError,
    IdentityMapper,
    InvalidQueryError,
    Query,
    get_collection,
)


class TestCollectionWrites:
    """Tests for insert, update and delete."""

    def test_collection_name_required(self, store):
        """Test that a collection needs a name."""
        with pytest.raises(ValueError):
            Collection(store, "")

    def test_insert_returns_external_id(self, users, store):
        """Test that insert returns the id the document is stored under."""
        user_id = users.insert({"name": "Alice"})

        assert isinstance(user_id, str)
        assert store.find_document("users", {"_id": user_id}) == {"_id": user_id, "name": "Alice"}

    def test_insert_ignores_supplied_identifiers(self, users, store):
        """Test that id and _id in the payload are replaced by a generated key."""
        user_id = users.insert({"id": "mine", "_id": "also-mine", "name": "Alice"})

        assert user_id not in ("mine", "also-mine")
        stored = store.find_document("users")
        assert "id" not in stored
        assert stored["_id"] == user_id

    def test_insert_does_not_mutate_input(self, users):
        """Test that the caller's payload is left untouched."""
        data = {"id": "x", "name": "Alice"}

        users.insert(data)

        assert data == {"id": "x", "name": "Alice"}

    def test_insert_generates_distinct_ids(self, users):
        """Test that each insert gets a fresh identifier."""
        assert users.insert({"n": 1}) != users.insert({"n": 1})

    def test_unique_email_scenario(self, users):
        """Test the second insert with a taken unique email fails."""
        users.insert({"name": "Alice", "email": "a@test.com"}, unique_fields=["email"])

        with pytest.raises(DocumentValidationError, match="unique constraint"):
            users.insert({"name": "Other", "email": "a@test.com"}, unique_fields=["email"])

        assert users.count({"email": "a@test.com"}) == 1

    def test_unique_fields_over_existing_duplicates(self, users):
        """Test that declaring uniqueness over duplicated data fails before writing."""
        users.insert({"email": "a"})
        users.insert({"email": "a"})

        with pytest.raises(DocumentValidationError, match="cannot enforce uniqueness"):
            users.insert({"email": "b"}, unique_fields=["email"])

        assert users.count() == 2

    def test_unique_fields_over_plain_index(self, store, users):
        """Test that a non-unique index on the field does not let duplicates through."""
        store.create_index("users", ["email"], unique=False)

        with pytest.raises(DocumentValidationError, match="cannot enforce uniqueness"):
            users.insert({"name": "Alice", "email": "a@test.com"}, unique_fields=["email"])
        with pytest.raises(DocumentValidationError):
            users.insert({"name": "Other", "email": "a@test.com"}, unique_fields=["email"])

        assert users.count() == 0

    def test_insert_many(self, users):
        """Test bulk insertion."""
        ids = users.insert_many([{"name": "A"}, {"name": "B"}])

        assert len(ids) == 2
        assert users.count() == 2

    def test_insert_many_empty(self, users, store):
        """Test that an empty bulk insert writes nothing."""
        assert users.insert_many([]) == []
        assert store.count_documents("users") == 0

    def test_insert_many_partial_success(self, users):
        """Test that only successfully inserted ids are returned."""
        ids = users.insert_many(
            [{"email": "a"}, {"email": "a"}, {"email": "b"}],
            unique_fields=["email"],
        )

        assert len(ids) == 2
        assert {doc["id"] for doc in users.find_many().datas} == set(ids)

    def test_insert_many_propagates_bulk_error_ids(self):
        """Test that BulkInsertError ids are returned as strings."""
        store = MagicMock()
        store.insert_documents.side_effect = BulkInsertError("partial", inserted_ids=["k1"], errors=["dup"])
        collection = Collection(store, "users")

        assert collection.insert_many([{"a": 1}, {"a": 1}]) == ["k1"]

    def test_update(self, users, seeded_users):
        """Test updating matching documents returns the modified count."""
        modified = users.update({"age": 25}, {"team": "blue"})

        assert modified == 2
        assert users.count({"team": "blue"}) == 2

    def test_update_by_id(self, users, seeded_users):
        """Test that the external id can be used in the where clause."""
        users.update({"id": seeded_users["Bob"]}, {"age": 26})

        assert users.find_single({"where": {"id": seeded_users["Bob"]}})["age"] == 26

    def test_update_nothing_matches(self, users, seeded_users):
        """Test that an update matching nothing modifies nothing."""
        assert users.update({"name": "Nobody"}, {"age": 1}) == 0

    def test_update_empty_data(self, users):
        """Test that empty update data is a validation error."""
        with pytest.raises(DocumentValidationError, match="cannot be empty"):
            users.update({"name": "Alice"}, {})

    def test_update_identifier_only(self, users):
        """Test that an update holding only identifiers is rejected."""
        with pytest.raises(DocumentValidationError, match="identifier"):
            users.update({"name": "Alice"}, {"id": "x"})

    def test_update_strips_identifiers(self, users, seeded_users):
        """Test that identifier fields in update data are ignored."""
        users.update({"name": "Alice"}, {"id": "new", "age": 32})

        alice = users.find_single({"where": {"name": "Alice"}})
        assert alice["id"] == seeded_users["Alice"]
        assert alice["age"] == 32

    def test_update_unique_violation(self, users, seeded_users):
        """Test that an update creating a duplicate unique value fails."""
        with pytest.raises(DocumentValidationError):
            users.update({"name": "Bob"}, {"email": "alice@test.com"}, unique_fields=["email"])

    def test_delete(self, users, seeded_users):
        """Test deletion by where clause."""
        assert users.delete({"age": {"$lt": 26}}) == 3
        assert users.count() == 2

    def test_delete_with_logical_where(self, users, seeded_users):
        """Test deletion with an or clause using ids."""
        deleted = users.delete({"or": [{"id": seeded_users["Alice"]}, {"name": "Eve"}]})

        assert deleted == 2

    def test_store_errors_carry_context(self):
        """Test that store failures name the operation and collection."""
        store = MagicMock()
        store.delete_documents.side_effect = DocumentStoreError("offline")
        collection = Collection(store, "users")

        with pytest.raises(DocumentStoreError, match="Failed to delete data in 'users'"):
            collection.delete({"name": "Alice"})

    def test_store_errors_keep_their_class(self, store, users):
        """Test that callers can still catch specific store failures."""
        store.disconnect()

        with pytest.raises(DocumentStoreNotConnectedError, match="Failed to find data in 'users'"):
            users.find_many({"where": {"name": "Alice"}})
        with pytest.raises(DocumentStoreNotConnectedError):
            users.count()


class TestCollectionReads:
    """Tests for find_single, find_many and count."""

    def test_find_many_without_query(self, users, seeded_users):
        """Test that a bare read returns every document with external ids."""
        result = users.find_many()

        assert result.total_count == 5
        assert len(result.datas) == 5
        assert all("_id" not in doc and "id" in doc for doc in result.datas)

    def test_find_many_total_matches_datas_without_pagination(self, users, seeded_users):
        """Test that the total equals the page size when nothing is paginated."""
        result = users.find_many({"where": {"age": {"$gte": 25}}})

        assert result.total_count == len(result.datas) == 4

    def test_pagination_does_not_change_total(self, users, seeded_users):
        """Test skip/limit against the filtered total."""
        result = users.find_many({"sort": {"age": "asc", "name": "asc"}, "skip": 1, "limit": 2})

        assert result.total_count == 5
        assert [doc["name"] for doc in result.datas] == ["Bob", "Dave"]

    def test_select_keeps_selected_fields_only(self, users, seeded_users):
        """Test projection; the id is always returned."""
        result = users.find_many({"select": ["name"], "where": {"name": "Carol"}})

        assert result.datas == [{"id": seeded_users["Carol"], "name": "Carol"}]

    def test_query_object(self, users, seeded_users):
        """Test that Query instances are accepted as well as dicts."""
        result = users.find_many(Query(where={"tags": "dev"}, sort={"name": "desc"}))

        assert [doc["name"] for doc in result.datas] == ["Bob", "Alice"]

    def test_logical_where(self, users, seeded_users):
        """Test or/and where clauses."""
        result = users.find_many({
            "where": {"and": [{"or": [{"name": "Alice"}, {"name": "Bob"}]}, {"tags": "admin"}]},
        })

        assert [doc["name"] for doc in result.datas] == ["Alice"]

    def test_mixed_where_rejected(self, users):
        """Test that a where clause mixing fields and 'or' is rejected."""
        with pytest.raises(InvalidQueryError):
            users.find_many({"where": {"name": "Alice", "or": [{"age": 1}]}})

    def test_aliases(self, users, seeded_users):
        """Test that aliases copy fields before projection."""
        doc = users.find_single({
            "where": {"name": "Alice"},
            "aliases": {"fullName": "name", "ref": "id"},
            "select": ["fullName", "ref"],
        })

        assert doc == {"id": seeded_users["Alice"], "fullName": "Alice", "ref": seeded_users["Alice"]}

    def test_find_single(self, users, seeded_users):
        """Test finding one document by id."""
        doc = users.find_single({"where": {"id": seeded_users["Dave"]}})

        assert doc["name"] == "Dave"
        assert doc["id"] == seeded_users["Dave"]
        assert "_id" not in doc

    def test_find_single_ignores_pagination(self, users, seeded_users):
        """Test that skip/limit do not apply to single reads."""
        doc = users.find_single({"sort": {"age": "desc"}, "skip": 3, "limit": 10})

        assert doc["name"] == "Carol"

    def test_find_single_without_query(self, users, seeded_users):
        """Test that a bare single read returns some document."""
        assert "id" in users.find_single()

    def test_find_single_not_found(self, users, seeded_users):
        """Test that a single read matching nothing raises."""
        with pytest.raises(DocumentNotFoundError):
            users.find_single({"where": {"name": "Nobody"}})

    def test_find_many_empty(self, users):
        """Test a read on an empty collection."""
        result = users.find_many({"where": {"name": "Nobody"}})

        assert result.datas == []
        assert result.total_count == 0

    def test_round_trip(self, users):
        """Test that a stored document reads back with only the external id added."""
        data = {"name": "Zed", "address": {"city": "Oslo"}, "tags": ["x"]}
        user_id = users.insert(data)

        assert users.find_single({"where": {"id": user_id}}) == {**data, "id": user_id}

    def test_count(self, users, seeded_users):
        """Test counting with and without a where clause."""
        assert users.count() == 5
        assert users.count({"age": 25}) == 2
        assert users.count({"or": [{"name": "Alice"}, {"name": "Eve"}]}) == 2
        assert users.count({"name": "Nobody"}) == 0

    def test_custom_external_id_field(self, store):
        """Test a collection exposing its identifier under another name."""
        collection = get_collection(store, "things", external_id_field="uuid")

        key = collection.insert({"uuid": "ignored", "n": 1})

        doc = collection.find_single({"where": {"uuid": key}})
        assert doc == {"uuid": key, "n": 1}

    def test_custom_key_factory(self, store):
        """Test that the identity mapper's key factory provides new keys."""
        keys = iter(["k1", "k2"])
        collection = Collection(store, "things", identity=IdentityMapper(key_factory=lambda: next(keys)))

        assert collection.insert({"n": 1}) == "k1"
        assert collection.insert({"n": 2}) == "k2"


class TestCollectionJoins:
    """Tests for joins between collections."""

    @pytest.fixture
    def project_ids(self, projects, seeded_users):
        return {
            "single": projects.insert({"title": "Apollo", "createdBy": seeded_users["Alice"]}),
            "array": projects.insert({
                "title": "Gemini",
                "createdBy": seeded_users["Bob"],
                "members": [seeded_users["Bob"], seeded_users["Carol"]],
            }),
            "dangling": projects.insert({"title": "Mercury", "createdBy": "missing-user"}),
        }

    def test_single_id_join(self, projects, seeded_users, project_ids):
        """Test that a single identifier resolves to a one-element list."""
        doc = projects.find_single({
            "where": {"id": project_ids["single"]},
            "join": {"createdBy": {"collection_name": "users", "select": ["name"]}},
        })

        assert doc["createdBy"] == [{"id": seeded_users["Alice"], "name": "Alice"}]

    def test_array_join(self, projects, seeded_users, project_ids):
        """Test that an identifier list resolves to every matching target."""
        doc = projects.find_single({
            "where": {"id": project_ids["array"]},
            "join": {"members": {"collection_name": "users", "select": ["name", "email"]}},
        })

        assert sorted(member["name"] for member in doc["members"]) == ["Bob", "Carol"]
        assert all(set(member) == {"id", "name", "email"} for member in doc["members"])

    def test_unresolved_join(self, projects, project_ids):
        """Test that a dangling identifier resolves to an empty list."""
        doc = projects.find_single({
            "where": {"id": project_ids["dangling"]},
            "join": {"createdBy": {"collection_name": "users"}},
        })

        assert doc["createdBy"] == []

    def test_join_without_select_exposes_only_id(self, projects, seeded_users, project_ids):
        """Test that joined documents never expose the internal key."""
        doc = projects.find_single({
            "where": {"id": project_ids["single"]},
            "join": {"createdBy": {"collection_name": "users"}},
        })

        assert doc["createdBy"] == [{"id": seeded_users["Alice"]}]

    def test_join_conditions(self, projects, seeded_users, project_ids):
        """Test that join conditions filter the resolved targets."""
        doc = projects.find_single({
            "where": {"id": project_ids["array"]},
            "join": {"members": {"collection_name": "users", "select": ["name"]}},
            "joinConditions": {"members": {"age": {"$gt": 30}}},
        })

        assert doc["members"] == [{"id": seeded_users["Carol"], "name": "Carol"}]

    def test_join_does_not_change_total(self, projects, project_ids):
        """Test that joins do not affect the total count."""
        result = projects.find_many({
            "join": {"createdBy": {"collection_name": "users"}},
            "limit": 1,
        })

        assert result.total_count == 3
        assert len(result.datas) == 1
