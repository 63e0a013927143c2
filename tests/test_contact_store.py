"""Tests for the contact store backends."""

from concurrent.futures import ThreadPoolExecutor

import pytest

from contact_store import SqliteContactStore
from db_models import LinkPrecedence
from db_setup import execute_query, get_db_connection
from exceptions import StoreUnavailable
from identity_resolver import IdentityResolver


def test_find_orders_oldest_first(store):
    first = store.create("a@x.com", None)
    second = store.create(None, "123")
    store.create("b@x.com", "456")

    matches = store.find_by_email_or_phone("a@x.com", "123")

    assert [c.id for c in matches] == [first.id, second.id]


def test_missing_fields_never_match(store):
    store.create(None, "123")
    store.create("a@x.com", None)

    assert store.find_by_email_or_phone(None, None) == []
    assert store.find_by_email_or_phone("", "") == []
    assert [c.email for c in store.find_by_email_or_phone("a@x.com", None)] == ["a@x.com"]


def test_find_cluster_returns_primary_first(store):
    primary = store.create("a@x.com", "123")
    secondary = store.create("b@x.com", "123", LinkPrecedence.SECONDARY, linked_id=primary.id)
    store.create("c@x.com", "999")

    cluster = store.find_cluster(primary.id)

    assert [c.id for c in cluster] == [primary.id, secondary.id]
    assert store.find_cluster(12345) == []


def test_demote_to_secondary(store):
    older = store.create("a@x.com", None)
    younger = store.create(None, "999")

    store.demote_to_secondary({younger.id}, older.id)

    demoted = store.get(younger.id)
    assert demoted.linkPrecedence == LinkPrecedence.SECONDARY
    assert demoted.linkedId == older.id
    assert store.get(older.id).is_primary


def test_atomic_rolls_back_on_error(store):
    with pytest.raises(RuntimeError):
        with store.atomic():
            store.create("a@x.com", None)
            raise RuntimeError("boom")

    assert store.find_by_email_or_phone("a@x.com") == []


def test_memory_store_hides_soft_deleted(memory_store):
    contact = memory_store.create("a@x.com", None)
    memory_store.soft_delete(contact.id)

    assert memory_store.get(contact.id) is None
    assert memory_store.find_by_email_or_phone("a@x.com") == []


def test_sqlite_store_hides_soft_deleted(sqlite_store):
    contact = sqlite_store.create("a@x.com", None)
    conn = get_db_connection(sqlite_store.db_path)
    execute_query(conn, "UPDATE Contact SET deletedAt = CURRENT_TIMESTAMP WHERE id = ?", (contact.id,))
    conn.close()

    assert sqlite_store.get(contact.id) is None
    assert sqlite_store.find_by_email_or_phone("a@x.com") == []


def test_sqlite_store_unavailable(tmp_path):
    with pytest.raises(StoreUnavailable):
        SqliteContactStore(str(tmp_path / "missing" / "contacts.db"))


def test_concurrent_submissions_create_one_primary(sqlite_store):
    resolver = IdentityResolver(sqlite_store)

    with ThreadPoolExecutor(max_workers=8) as pool:
        results = list(pool.map(
            lambda _: resolver.identify(email="a@x.com", phone_number="123"),
            range(16),
        ))

    assert len({r.primaryContactId for r in results}) == 1
    assert len(sqlite_store.find_by_email_or_phone("a@x.com", "123")) == 1
