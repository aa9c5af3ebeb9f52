from unittest.mock import MagicMock

import pytest
from sqlalchemy.exc import OperationalError

from fairtest.errors import StorageUnavailable
from fairtest.services.identity_store import IdentityStore, InMemoryIdentityStore, SqlIdentityStore


def test_in_memory_store_put_get_and_keys():
    store = InMemoryIdentityStore()
    store.put("fairtest_uid_b", "2")
    store.put("fairtest_uid_a", "1")
    store.put("other", "3")

    assert store.get("fairtest_uid_a") == "1"
    assert store.get("missing") is None
    assert store.keys("fairtest_uid_") == ["fairtest_uid_a", "fairtest_uid_b"]


def test_sql_store_overwrites_existing_key(session_factory):
    store = SqlIdentityStore(session_factory)
    store.put("fairtest_uid_exam-1", '{"v": 1}')
    store.put("fairtest_uid_exam-1", '{"v": 2}')

    assert store.get("fairtest_uid_exam-1") == '{"v": 2}'
    assert store.keys("fairtest_uid_") == ["fairtest_uid_exam-1"]


def test_sql_store_prefix_is_literal(session_factory):
    store = SqlIdentityStore(session_factory)
    store.put("fairtest_uid_1", "a")
    store.put("fairtestXuidY2", "b")

    assert store.keys("fairtest_uid_") == ["fairtest_uid_1"]


def test_sql_store_failure_raises_storage_unavailable():
    session = MagicMock()
    session.get.side_effect = OperationalError("SELECT", {}, Exception("disk I/O error"))
    store = SqlIdentityStore(lambda: session)

    with pytest.raises(StorageUnavailable):
        store.get("fairtest_uid_exam-1")
    with pytest.raises(StorageUnavailable):
        store.put("fairtest_uid_exam-1", "{}")
    assert session.close.call_count == 2


def test_partial_store_cannot_be_built():
    class ReadOnlyStore(IdentityStore):
        def get(self, key):
            return None

    with pytest.raises(TypeError):
        ReadOnlyStore()
