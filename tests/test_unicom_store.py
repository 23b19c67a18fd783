"""Tests for the sqlite snapshot store.

Each test gets a fresh database under pytest's tmp_path.
"""

import pytest

from conftest import BOT, USER, make_reading
from domains.unicom.errors import AlreadyExistsError, StoreError
from domains.unicom.models import Snapshot, UserConfig
from domains.unicom.store import SnapshotStore


def test_schema_created_lazily(tmp_path):
    db_path = tmp_path / "nested" / "unicom.db"
    store = SnapshotStore(db_path)
    assert not db_path.exists()

    assert store.find_config(USER) is None
    assert db_path.exists()
    store.close()


def test_config_round_trip(store, user_config):
    store.insert_config(user_config)
    assert store.find_config(USER) == user_config


def test_optional_fields_persist_as_none(store):
    cfg = UserConfig(user=USER, bot=BOT, timeout=None, free_threshold=None, nonfree_threshold=None)
    store.insert_config(cfg)

    loaded = store.find_config(USER)
    assert loaded.timeout is None
    assert loaded.free_threshold is None
    assert loaded.nonfree_threshold is None


def test_duplicate_insert_reports_already_exists(store, user_config):
    store.insert_config(user_config)
    with pytest.raises(AlreadyExistsError):
        store.insert_config(user_config)


def test_update_config(registered, user_config):
    updated = user_config.with_changes(interval=300, enable_task=False)
    registered.update_config(updated)

    loaded = registered.find_config(USER)
    assert loaded.interval == 300
    assert loaded.enable_task is False


def test_update_missing_config_fails(store, user_config):
    with pytest.raises(StoreError):
        store.update_config(user_config)


def test_all_configs(store, user_config):
    store.insert_config(user_config)
    store.insert_config(user_config.with_changes(user="discord_2002", enable_task=False))

    users = [c.user for c in store.all_configs()]
    assert users == [USER, "discord_2002"]


def test_snapshot_round_trip_keeps_timezone(registered):
    reading = make_reading(paid=1.25, free=0.75, voice_used=12)
    registered.insert_last(Snapshot(user=USER, bot=BOT, reading=reading))

    loaded = registered.find_last(USER)
    assert loaded.reading == reading
    assert loaded.time.utcoffset() == reading.time.utcoffset()


def test_last_and_daily_are_independent(registered):
    registered.insert_last(Snapshot(user=USER, bot=BOT, reading=make_reading(paid=2.0)))
    assert registered.find_daily(USER) is None

    registered.insert_daily(Snapshot(user=USER, bot=BOT, reading=make_reading(paid=1.0)))
    assert registered.find_last(USER).reading.paid_used == 2.0
    assert registered.find_daily(USER).reading.paid_used == 1.0


def test_snapshot_insert_duplicate(registered):
    snap = Snapshot(user=USER, bot=BOT, reading=make_reading())
    registered.insert_daily(snap)
    with pytest.raises(AlreadyExistsError):
        registered.insert_daily(snap)


def test_snapshot_update_missing_fails(registered):
    with pytest.raises(StoreError):
        registered.update_last(Snapshot(user=USER, bot=BOT, reading=make_reading()))


def test_delete_snapshot(registered):
    registered.insert_last(Snapshot(user=USER, bot=BOT, reading=make_reading()))
    assert registered.delete_last(USER) is True
    assert registered.delete_last(USER) is False
    assert registered.find_last(USER) is None


def test_delete_config_cascades(registered):
    registered.insert_last(Snapshot(user=USER, bot=BOT, reading=make_reading()))
    registered.insert_daily(Snapshot(user=USER, bot=BOT, reading=make_reading()))

    assert registered.delete_config(USER) is True

    assert registered.find_config(USER) is None
    assert registered.find_last(USER) is None
    assert registered.find_daily(USER) is None
    assert registered.delete_config(USER) is False


def test_data_survives_reopen(tmp_path, user_config):
    db_path = tmp_path / "unicom.db"
    first = SnapshotStore(db_path)
    first.insert_config(user_config)
    first.close()

    second = SnapshotStore(db_path)
    assert second.find_config(USER) == user_config
    second.close()
