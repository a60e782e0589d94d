"""
Key-value storage backends for invoice history.

Every backend stores whole string values under string keys and replaces a
value atomically: readers see either the old value or the new one, never a
mix. Backends also report changes to registered watchers so that several
stores sharing one medium can invalidate their views.

Backends:
- MemoryStorage: process-local dict; watchers hear every write
- FileStorage: one JSON file per key, written via temp file + rename;
  poll() detects writes made by other processes
- ValkeyStorage: shared Valkey key; writes are announced over pub/sub
"""

import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Callable
from uuid import uuid4

import redis

from clients.valkey_client import ValkeyClient
from core.config import HistoryConfig
from core.exceptions import StorageReadError, StorageWriteError

logger = logging.getLogger(__name__)

Watcher = Callable[[str | None], None]


class StorageBackend:
    """
    Base class for storage backends.

    Subclasses implement get_item/set_item/remove_item and call _notify()
    when they learn a key changed.
    """

    def __init__(self):
        self._watchers: list[Watcher] = []

    def get_item(self, key: str) -> str | None:
        """
        Get the value stored under key.

        Returns None if the key doesn't exist.
        Raises StorageReadError if the medium can't be read.
        """
        raise NotImplementedError

    def set_item(self, key: str, value: str) -> None:
        """
        Replace the value stored under key.

        Raises StorageWriteError if the medium can't be written.
        """
        raise NotImplementedError

    def remove_item(self, key: str) -> None:
        """Delete key. Missing keys are not an error."""
        raise NotImplementedError

    def watch(self, callback: Watcher) -> Callable[[], None]:
        """
        Register a change watcher.

        callback receives the changed key, or None if unknown.

        Returns:
            Function that removes the watcher
        """
        self._watchers.append(callback)

        def unwatch():
            if callback in self._watchers:
                self._watchers.remove(callback)

        return unwatch

    def close(self) -> None:
        """Release backend resources."""
        self._watchers.clear()

    def _notify(self, key: str | None) -> None:
        for callback in list(self._watchers):
            try:
                callback(key)
            except Exception:
                logger.exception("Storage watcher failed for key %r", key)


class MemoryStorage(StorageBackend):
    """
    Process-local storage.

    Useful for tests and for several stores in one process sharing a
    history. Every write is reported to all watchers, including the writer.
    """

    def __init__(self):
        super().__init__()
        self._items: dict[str, str] = {}

    def get_item(self, key: str) -> str | None:
        return self._items.get(key)

    def set_item(self, key: str, value: str) -> None:
        if not isinstance(value, str):
            raise StorageWriteError(key, f"Value must be str, got {type(value).__name__}")
        self._items[key] = value
        self._notify(key)

    def remove_item(self, key: str) -> None:
        if self._items.pop(key, None) is not None:
            self._notify(key)


class FileStorage(StorageBackend):
    """
    One file per key under a directory.

    Writes go to a temporary file in the same directory which then replaces
    the target with os.replace, so a crash mid-write leaves the previous
    value intact.

    Other processes' writes are picked up by poll(), which compares file
    modification times against the last ones this instance saw.
    """

    def __init__(self, directory: str | Path):
        super().__init__()
        self.directory = Path(directory)
        self._seen_mtimes: dict[str, int | None] = {}

    def _path(self, key: str) -> Path:
        safe = "".join(c if c.isalnum() or c in "-_." else "_" for c in key)
        return self.directory / f"{safe}.json"

    def _mtime(self, key: str) -> int | None:
        try:
            return self._path(key).stat().st_mtime_ns
        except FileNotFoundError:
            return None

    def get_item(self, key: str) -> str | None:
        path = self._path(key)
        try:
            value = path.read_text(encoding="utf-8")
        except FileNotFoundError:
            self._seen_mtimes[key] = None
            return None
        except (OSError, UnicodeDecodeError) as e:
            raise StorageReadError(key, f"Unable to read {path}: {e}") from e
        self._seen_mtimes[key] = self._mtime(key)
        return value

    def set_item(self, key: str, value: str) -> None:
        path = self._path(key)
        tmp_name = None
        try:
            self.directory.mkdir(parents=True, exist_ok=True)
            with tempfile.NamedTemporaryFile(
                "w",
                encoding="utf-8",
                dir=self.directory,
                prefix=f".{path.stem}.",
                suffix=".tmp",
                delete=False,
            ) as tmp:
                tmp_name = tmp.name
                tmp.write(value)
                tmp.flush()
                os.fsync(tmp.fileno())
            os.replace(tmp_name, path)
        except (OSError, TypeError) as e:
            if tmp_name is not None and os.path.exists(tmp_name):
                os.unlink(tmp_name)
            raise StorageWriteError(key, f"Unable to write {path}: {e}") from e
        self._seen_mtimes[key] = self._mtime(key)

    def remove_item(self, key: str) -> None:
        try:
            self._path(key).unlink()
        except FileNotFoundError:
            return
        except OSError as e:
            raise StorageWriteError(key, f"Unable to remove {self._path(key)}: {e}") from e
        self._seen_mtimes[key] = None

    def poll(self) -> list[str]:
        """
        Check watched keys for changes made outside this instance.

        Only keys this instance has read or written are checked.

        Returns:
            Keys whose files changed since last seen (watchers notified for each)
        """
        changed = []
        for key, seen in list(self._seen_mtimes.items()):
            current = self._mtime(key)
            if current != seen:
                self._seen_mtimes[key] = current
                changed.append(key)
                self._notify(key)
        return changed


class ValkeyStorage(StorageBackend):
    """
    History shared through Valkey.

    Each write is a single SET (atomic), followed by a publish of
    {"origin": ..., "key": ...} on the change channel. start_listening()
    runs a background subscriber that notifies watchers of writes from
    other origins. Delivery is best effort: a missed message only delays a
    view refresh.
    """

    def __init__(self, client: ValkeyClient, channel: str, namespace: str = ""):
        super().__init__()
        self.client = client
        self.channel = channel
        self.namespace = namespace
        self.origin = str(uuid4())
        self._listener = None

    def _key(self, key: str) -> str:
        return f"{self.namespace}{key}"

    def get_item(self, key: str) -> str | None:
        try:
            return self.client.get(self._key(key))
        except redis.RedisError as e:
            raise StorageReadError(key, f"Valkey read failed: {e}") from e

    def set_item(self, key: str, value: str) -> None:
        try:
            self.client.set(self._key(key), value)
        except redis.RedisError as e:
            raise StorageWriteError(key, f"Valkey write failed: {e}") from e
        self._announce(key)

    def remove_item(self, key: str) -> None:
        try:
            removed = self.client.delete(self._key(key))
        except redis.RedisError as e:
            raise StorageWriteError(key, f"Valkey delete failed: {e}") from e
        if removed:
            self._announce(key)

    def _announce(self, key: str) -> None:
        # The value is already stored; a lost announcement is not a failed write
        message = json.dumps({"origin": self.origin, "key": key})
        try:
            self.client.publish(self.channel, message)
        except redis.RedisError:
            logger.warning("Unable to announce change to %r on %s", key, self.channel, exc_info=True)

    def handle_message(self, data: str) -> None:
        """Process one change announcement from the channel."""
        try:
            message = json.loads(data)
        except (TypeError, json.JSONDecodeError):
            logger.warning("Ignoring malformed change message on %s", self.channel)
            self._notify(None)
            return

        if not isinstance(message, dict):
            self._notify(None)
            return
        if message.get("origin") == self.origin:
            return
        key = message.get("key")
        self._notify(key if isinstance(key, str) else None)

    def start_listening(self) -> None:
        """Start the background subscriber. Idempotent."""
        if self._listener is None:
            self._listener = self.client.subscribe(self.channel, self.handle_message)

    def stop_listening(self) -> None:
        """Stop the background subscriber if running."""
        if self._listener is not None:
            self._listener.stop()
            self._listener = None

    def close(self) -> None:
        self.stop_listening()
        super().close()


def create_storage(config: HistoryConfig) -> StorageBackend:
    """
    Build the storage backend selected by config.

    Cross-process change notification differs per backend:
    - memory: watchers hear every write, in this process only
    - file: nothing is detected automatically; the application must call
      FileStorage.poll() periodically (e.g. from its UI timer or event loop)
      to pick up writes made by other processes
    - valkey: a background listener thread delivers other processes' writes

    Raises:
        ValueError: If the valkey backend is selected without a URL
        redis.ConnectionError: If Valkey is unreachable
    """
    if config.backend == "memory":
        return MemoryStorage()

    if config.backend == "file":
        return FileStorage(config.storage_dir)

    if not config.valkey_url:
        raise ValueError("valkey backend requires valkey_url")
    storage = ValkeyStorage(ValkeyClient(config.valkey_url), config.valkey_channel)
    storage.start_listening()
    return storage
