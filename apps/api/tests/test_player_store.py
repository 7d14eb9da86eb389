"""
Tests for the tenant-scoped player store (lookup, unordered bulk write, count).
"""
from unittest.mock import patch

import pytest
from sqlalchemy.exc import OperationalError

from services.migration_errors import TransportError
from services.player_store import InsertOne, PlayerStore, UpdateOne


def _doc(uuid, **extra):
    doc = {
        "minecraftUuid": uuid,
        "usernames": [{"username": f"name_{uuid}", "date": None}],
        "notes": [],
        "ipList": [],
        "punishments": [],
        "pendingNotifications": [],
        "data": {},
    }
    doc.update(extra)
    return doc


def test_insert_find_and_count(db_session, tenant):
    store = PlayerStore(db_session, tenant.id)
    result = store.bulk_write([InsertOne(_doc("U1")), InsertOne(_doc("U2"))])

    assert result.inserted_count == 2
    assert result.write_errors == []
    assert store.count() == 2

    found = store.find_by_uuids(["U1", "U2", "U3"])
    assert set(found) == {"U1", "U2"}
    assert found["U1"]["usernames"] == [{"username": "name_U1", "date": None}]


def test_update_replaces_only_named_fields(db_session, tenant):
    store = PlayerStore(db_session, tenant.id)
    store.bulk_write([InsertOne(_doc("U1", data={"rank": "member"}))])

    result = store.bulk_write([UpdateOne("U1", {"data": {"rank": "vip"}})])

    assert result.modified_count == 1
    doc = store.find_by_uuids(["U1"])["U1"]
    assert doc["data"] == {"rank": "vip"}
    assert doc["usernames"] == [{"username": "name_U1", "date": None}]


def test_one_failing_operation_does_not_abort_the_others(db_session, tenant):
    store = PlayerStore(db_session, tenant.id)
    result = store.bulk_write(
        [
            InsertOne(_doc("U1")),
            InsertOne(_doc("U1")),  # duplicate id within the tenant
            InsertOne(_doc("U2")),
            UpdateOne("missing", {"data": {}}),
        ]
    )

    assert result.inserted_count == 2
    assert result.failed_count == 2
    assert [(e.index, e.minecraft_uuid) for e in result.write_errors] == [(1, "U1"), (3, "missing")]
    assert store.count() == 2


def test_players_are_isolated_per_tenant(db_session, tenant, other_tenant):
    PlayerStore(db_session, tenant.id).bulk_write([InsertOne(_doc("U1"))])
    other = PlayerStore(db_session, other_tenant.id)

    assert other.find_by_uuids(["U1"]) == {}
    result = other.bulk_write([InsertOne(_doc("U1"))])
    assert result.inserted_count == 1
    assert other.count() == 1


def test_connection_failure_becomes_transport_error(db_session, tenant):
    store = PlayerStore(db_session, tenant.id)
    lost = OperationalError("COMMIT", {}, Exception("server closed the connection unexpectedly"))

    with patch.object(db_session, "commit", side_effect=lost):
        with pytest.raises(TransportError, match="Bulk write failed"):
            store.bulk_write([InsertOne(_doc("U1"))])

    assert store.count() == 0


def test_empty_lookup_does_not_query(db_session, tenant):
    store = PlayerStore(db_session, tenant.id)
    with patch.object(db_session, "query") as query:
        assert store.find_by_uuids([]) == {}
    query.assert_not_called()
