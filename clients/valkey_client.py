"""
Valkey (Redis-compatible) client for shared invoice history storage.

Simple wrapper around redis-py. Several processes pointing at the same
Valkey instance share one history and hear about each other's writes over
pub/sub.
Fail-fast: raises on connection failure, never returns fallback values.
"""

import logging
from typing import Callable

import redis

logger = logging.getLogger(__name__)


class ValkeyClient:
    """
    Redis-compatible client for Valkey.

    Usage:
        client = ValkeyClient("redis://localhost:6379/0")
        client.set("key", "value")
        value = client.get("key")  # Returns None if missing
    """

    def __init__(self, url: str):
        """
        Initialize Valkey connection.

        Args:
            url: Redis-compatible connection URL (e.g., redis://localhost:6379/0)

        Raises:
            redis.ConnectionError: If connection fails
        """
        self._client = redis.from_url(url, decode_responses=True)
        # Verify connectivity immediately (fail-fast)
        self._client.ping()
        logger.info("ValkeyClient connected")

    def ping(self) -> bool:
        """
        Health check.

        Returns True if Valkey responds.
        Raises redis.ConnectionError if unreachable.
        """
        self._client.ping()
        return True

    def get(self, key: str) -> str | None:
        """
        Get value by key.

        Returns None if key doesn't exist (not an error).
        Raises on connection failure.
        """
        return self._client.get(key)

    def set(self, key: str, value: str) -> None:
        """Set key to value. Replaces any previous value atomically."""
        self._client.set(key, value)

    def delete(self, key: str) -> bool:
        """
        Delete key.

        Returns True if key existed and was deleted, False if key didn't exist.
        """
        return self._client.delete(key) > 0

    def publish(self, channel: str, message: str) -> int:
        """
        Publish a message on a pub/sub channel.

        Returns the number of subscribers that received it.
        """
        return self._client.publish(channel, message)

    def subscribe(self, channel: str, callback: Callable[[str], None]):
        """
        Listen on a channel in a background thread.

        Args:
            channel: Channel name
            callback: Called with each message's data (str)

        Returns:
            Worker thread; call .stop() on it to unsubscribe
        """
        pubsub = self._client.pubsub(ignore_subscribe_messages=True)

        def handler(message: dict):
            callback(message["data"])

        def on_error(error: BaseException, pubsub, thread) -> None:
            # Keep the worker alive; the next message retries
            logger.error("Listener on channel %s failed: %s", channel, error, exc_info=error)

        pubsub.subscribe(**{channel: handler})
        thread = pubsub.run_in_thread(sleep_time=0.1, daemon=True, exception_handler=on_error)
        logger.info("Subscribed to channel %s", channel)
        return thread

    def close(self) -> None:
        """Close the connection."""
        self._client.close()
        logger.info("ValkeyClient closed")
