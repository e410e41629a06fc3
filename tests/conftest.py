"""Shared fixtures for disc shelf tests."""

import itertools

import pytest

from shelf_core import CollectionDB, CollectionItem, CollectionService


class FakeStore:
    """In-memory stand-in for the storage layer; can be told to fail on given ids."""

    def __init__(self, items, fail_on=()):
        self.items = {it.id: it for it in items}
        self.fail_on = set(fail_on)
        self.deleted = []

    def list_items(self):
        return list(self.items.values())

    def remove(self, item_id):
        if item_id in self.fail_on:
            raise RuntimeError("storage offline")
        if item_id not in self.items:
            raise LookupError("Item not found or you do not have permission to delete it")
        del self.items[item_id]
        self.deleted.append(item_id)


@pytest.fixture
def make_item():
    counter = itertools.count(1)

    def _make(title="Inception", format="Blu-ray", **kw):
        item_id = kw.pop("id", None) or f"item-{next(counter)}"
        user_id = kw.pop("user_id", "alice")
        return CollectionItem(id=item_id, user_id=user_id, title=title, format=format, **kw)

    return _make


@pytest.fixture
def fake_store():
    return FakeStore


@pytest.fixture
def db(tmp_path):
    d = CollectionDB(tmp_path / "shelf.sqlite3")
    d.init_db()
    return d


@pytest.fixture
def service(db):
    return CollectionService(db=db, user_id="alice")


@pytest.fixture
def scheduled():
    """Collects (delay, callback) pairs instead of running them on a timer."""
    calls = []

    def _schedule(delay_s, fn):
        calls.append((delay_s, fn))

    _schedule.calls = calls
    return _schedule
