"""Tests for storage backends."""

import json
import os
from unittest.mock import Mock, patch

import pytest
import redis

from clients.storage import (
    FileStorage,
    MemoryStorage,
    ValkeyStorage,
    create_storage,
)
from clients.valkey_client import ValkeyClient
from core.config import HistoryConfig
from core.exceptions import StorageReadError, StorageWriteError


# =============================================================================
# MEMORY
# =============================================================================


class TestMemoryStorage:

    def test_get_missing_returns_none(self):
        assert MemoryStorage().get_item("missing") is None

    def test_set_and_get(self):
        storage = MemoryStorage()
        storage.set_item("k", "v")
        assert storage.get_item("k") == "v"

    def test_set_replaces_value(self):
        storage = MemoryStorage()
        storage.set_item("k", "old")
        storage.set_item("k", "new")
        assert storage.get_item("k") == "new"

    def test_non_string_value_rejected(self):
        with pytest.raises(StorageWriteError):
            MemoryStorage().set_item("k", ["not", "a", "string"])

    def test_remove(self):
        storage = MemoryStorage()
        storage.set_item("k", "v")
        storage.remove_item("k")
        assert storage.get_item("k") is None

    def test_remove_missing_is_not_error(self):
        MemoryStorage().remove_item("missing")

    def test_watchers_hear_writes(self):
        storage = MemoryStorage()
        keys = []
        storage.watch(keys.append)

        storage.set_item("a", "1")
        storage.remove_item("a")

        assert keys == ["a", "a"]

    def test_unwatch(self):
        storage = MemoryStorage()
        keys = []
        unwatch = storage.watch(keys.append)
        unwatch()

        storage.set_item("a", "1")

        assert keys == []

    def test_failing_watcher_does_not_break_write(self):
        storage = MemoryStorage()

        def broken(key):
            raise RuntimeError("boom")

        storage.watch(broken)
        storage.set_item("a", "1")

        assert storage.get_item("a") == "1"


# =============================================================================
# FILE
# =============================================================================


class TestFileStorage:

    def test_get_missing_returns_none(self, tmp_path):
        assert FileStorage(tmp_path).get_item("invoiceHistory") is None

    def test_set_and_get(self, tmp_path):
        storage = FileStorage(tmp_path)
        storage.set_item("invoiceHistory", "[]")
        assert storage.get_item("invoiceHistory") == "[]"
        assert (tmp_path / "invoiceHistory.json").read_text() == "[]"

    def test_creates_directory(self, tmp_path):
        directory = tmp_path / "nested" / "dir"
        FileStorage(directory).set_item("k", "v")
        assert (directory / "k.json").exists()

    def test_unsafe_key_characters_replaced(self, tmp_path):
        storage = FileStorage(tmp_path)
        storage.set_item("../escape", "v")
        assert storage.get_item("../escape") == "v"
        assert not (tmp_path.parent / "escape.json").exists()

    def test_no_temp_files_left_behind(self, tmp_path):
        storage = FileStorage(tmp_path)
        storage.set_item("k", "one")
        storage.set_item("k", "two")
        assert sorted(p.name for p in tmp_path.iterdir()) == ["k.json"]

    def test_failed_write_keeps_previous_value(self, tmp_path):
        storage = FileStorage(tmp_path)
        storage.set_item("k", "original")

        with patch("clients.storage.os.replace", side_effect=OSError("disk full")):
            with pytest.raises(StorageWriteError, match="disk full"):
                storage.set_item("k", "replacement")

        assert storage.get_item("k") == "original"
        assert sorted(p.name for p in tmp_path.iterdir()) == ["k.json"]

    def test_unreadable_file_raises_read_error(self, tmp_path):
        storage = FileStorage(tmp_path)
        (tmp_path / "k.json").write_bytes(b"\xff\xfe\xfa")
        with pytest.raises(StorageReadError):
            storage.get_item("k")

    def test_remove(self, tmp_path):
        storage = FileStorage(tmp_path)
        storage.set_item("k", "v")
        storage.remove_item("k")
        storage.remove_item("k")
        assert storage.get_item("k") is None

    def test_poll_detects_external_write(self, tmp_path):
        mine = FileStorage(tmp_path)
        other = FileStorage(tmp_path)
        keys = []
        mine.watch(keys.append)
        mine.set_item("k", "v1")

        other.set_item("k", "v2")
        # Force a distinct mtime even on coarse-grained filesystems
        stat = (tmp_path / "k.json").stat()
        os.utime(tmp_path / "k.json", ns=(stat.st_atime_ns, stat.st_mtime_ns + 1_000_000_000))

        assert mine.poll() == ["k"]
        assert keys == ["k"]
        assert mine.poll() == []

    def test_external_write_unseen_until_poll(self, tmp_path):
        mine = FileStorage(tmp_path)
        other = FileStorage(tmp_path)
        keys = []
        mine.watch(keys.append)
        mine.set_item("k", "v1")

        other.set_item("k", "v2")

        assert keys == []

    def test_poll_ignores_own_writes(self, tmp_path):
        storage = FileStorage(tmp_path)
        keys = []
        storage.watch(keys.append)
        storage.set_item("k", "v")

        assert storage.poll() == []
        assert keys == []

    def test_poll_detects_external_delete(self, tmp_path):
        storage = FileStorage(tmp_path)
        storage.set_item("k", "v")
        (tmp_path / "k.json").unlink()
        assert storage.poll() == ["k"]


# =============================================================================
# VALKEY
# =============================================================================


@pytest.fixture
def valkey_client():
    return Mock(spec=ValkeyClient)


class TestValkeyStorage:

    def test_get_delegates_to_client(self, valkey_client):
        valkey_client.get.return_value = "[]"
        storage = ValkeyStorage(valkey_client, "changes", namespace="app:")

        assert storage.get_item("invoiceHistory") == "[]"
        valkey_client.get.assert_called_once_with("app:invoiceHistory")

    def test_set_writes_then_announces(self, valkey_client):
        storage = ValkeyStorage(valkey_client, "changes")

        storage.set_item("invoiceHistory", "[]")

        valkey_client.set.assert_called_once_with("invoiceHistory", "[]")
        channel, message = valkey_client.publish.call_args.args
        assert channel == "changes"
        assert json.loads(message) == {"origin": storage.origin, "key": "invoiceHistory"}

    def test_read_error_wrapped(self, valkey_client):
        valkey_client.get.side_effect = redis.ConnectionError("down")
        with pytest.raises(StorageReadError, match="down"):
            ValkeyStorage(valkey_client, "changes").get_item("k")

    def test_write_error_wrapped(self, valkey_client):
        valkey_client.set.side_effect = redis.ConnectionError("down")
        storage = ValkeyStorage(valkey_client, "changes")

        with pytest.raises(StorageWriteError):
            storage.set_item("k", "v")
        valkey_client.publish.assert_not_called()

    def test_failed_announcement_is_not_a_failed_write(self, valkey_client):
        valkey_client.publish.side_effect = redis.ConnectionError("down")
        ValkeyStorage(valkey_client, "changes").set_item("k", "v")
        valkey_client.set.assert_called_once()

    def test_remove_announces_only_when_deleted(self, valkey_client):
        storage = ValkeyStorage(valkey_client, "changes")
        valkey_client.delete.return_value = False

        storage.remove_item("k")

        valkey_client.publish.assert_not_called()

    def test_message_from_other_origin_notifies(self, valkey_client):
        storage = ValkeyStorage(valkey_client, "changes")
        keys = []
        storage.watch(keys.append)

        storage.handle_message(json.dumps({"origin": "someone-else", "key": "invoiceHistory"}))

        assert keys == ["invoiceHistory"]

    def test_own_message_ignored(self, valkey_client):
        storage = ValkeyStorage(valkey_client, "changes")
        keys = []
        storage.watch(keys.append)

        storage.handle_message(json.dumps({"origin": storage.origin, "key": "invoiceHistory"}))

        assert keys == []

    def test_malformed_message_notifies_unknown_key(self, valkey_client):
        storage = ValkeyStorage(valkey_client, "changes")
        keys = []
        storage.watch(keys.append)

        storage.handle_message("garbage")
        storage.handle_message(json.dumps(["list"]))

        assert keys == [None, None]

    def test_listening_lifecycle(self, valkey_client):
        thread = Mock()
        valkey_client.subscribe.return_value = thread
        storage = ValkeyStorage(valkey_client, "changes")

        storage.start_listening()
        storage.start_listening()
        storage.close()

        valkey_client.subscribe.assert_called_once_with("changes", storage.handle_message)
        thread.stop.assert_called_once()


# =============================================================================
# FACTORY
# =============================================================================


class TestCreateStorage:

    def test_memory(self):
        assert isinstance(create_storage(HistoryConfig(backend="memory")), MemoryStorage)

    def test_file(self, tmp_path):
        storage = create_storage(HistoryConfig(backend="file", storage_dir=tmp_path))
        assert isinstance(storage, FileStorage)
        assert storage.directory == tmp_path

    def test_valkey_requires_url(self):
        with pytest.raises(ValueError, match="valkey_url"):
            create_storage(HistoryConfig(backend="valkey"))

    def test_valkey(self):
        config = HistoryConfig(backend="valkey", valkey_url="redis://localhost:6379/0")
        with patch("clients.storage.ValkeyClient") as client_cls:
            storage = create_storage(config)

        client_cls.assert_called_once_with("redis://localhost:6379/0")
        assert isinstance(storage, ValkeyStorage)
        assert storage.channel == "invoice-history:changes"
        client_cls.return_value.subscribe.assert_called_once()
