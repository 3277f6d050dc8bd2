"""
Valkey (Redis-compatible) cache for fee rate snapshots.

Thin wrapper around redis-py. Values are JSON documents, every entry carries
a TTL, and keys are namespaced so several services can share one Valkey
database. Connection URL from Vault.

Fail-fast: raises on connection failure, never returns fallback values.
"""

import json
import logging

import redis

logger = logging.getLogger(__name__)

DEFAULT_NAMESPACE = "revenue"
SCAN_BATCH_SIZE = 500


class ValkeyClient:
    """
    JSON snapshot cache backed by Valkey.

    Usage:
        cache = ValkeyClient("redis://localhost:6379/0")
        cache.set_json("fee_rates:tenant:2026-01-01", {...}, expire_seconds=300)
        snapshot = cache.get_json("fee_rates:tenant:2026-01-01")  # None if missing
        cache.delete_pattern("fee_rates:tenant:*")

    Keys passed in are relative; the client stores them as "<namespace>:<key>".
    """

    def __init__(self, url: str, namespace: str = DEFAULT_NAMESPACE):
        """
        Args:
            url: Redis-compatible connection URL (e.g., redis://localhost:6379/0)
            namespace: Prefix for every key this client touches

        Raises:
            redis.ConnectionError: If connection fails
        """
        if not namespace:
            raise ValueError("namespace is required")
        self.namespace = namespace
        self._client = redis.from_url(url, decode_responses=True)
        self._client.ping()
        logger.info("ValkeyClient connected (namespace=%s)", namespace)

    def namespaced(self, key: str) -> str:
        return f"{self.namespace}:{key}"

    def ping(self) -> bool:
        """Returns True if Valkey responds; raises redis.ConnectionError otherwise."""
        self._client.ping()
        return True

    def set_json(self, key: str, value: dict | list, expire_seconds: int) -> None:
        """
        Store a JSON-serializable value that expires after `expire_seconds`.

        Raises:
            ValueError: expire_seconds is not positive
            TypeError: value is not JSON-serializable
        """
        if expire_seconds < 1:
            raise ValueError(f"expire_seconds must be positive, got {expire_seconds}")
        self._client.setex(self.namespaced(key), expire_seconds, json.dumps(value))

    def get_json(self, key: str) -> dict | list | None:
        """
        Load a JSON value.

        Returns None if the key doesn't exist or has expired.
        Raises ValueError if the stored value is not valid JSON.
        """
        raw = self._client.get(self.namespaced(key))
        if raw is None:
            return None
        try:
            return json.loads(raw)
        except json.JSONDecodeError as e:
            raise ValueError(f"Invalid JSON in key '{key}': {e}")

    def delete(self, key: str) -> bool:
        """True if the key existed."""
        return self._client.delete(self.namespaced(key)) > 0

    def delete_pattern(self, pattern: str) -> int:
        """
        Delete every key matching a glob pattern, in SCAN batches.

        Returns:
            Number of keys deleted
        """
        deleted = 0
        batch = []
        for key in self._client.scan_iter(match=self.namespaced(pattern), count=SCAN_BATCH_SIZE):
            batch.append(key)
            if len(batch) >= SCAN_BATCH_SIZE:
                deleted += self._client.unlink(*batch)
                batch = []
        if batch:
            deleted += self._client.unlink(*batch)

        if deleted:
            logger.debug("Deleted %d keys matching %s", deleted, pattern)
        return deleted

    def exists(self, key: str) -> bool:
        return self._client.exists(self.namespaced(key)) > 0

    def ttl(self, key: str) -> int:
        """
        Remaining TTL in seconds.

        Returns:
            -2 if key doesn't exist
            -1 if key has no expiration
            Positive int: remaining seconds
        """
        return self._client.ttl(self.namespaced(key))

    def close(self) -> None:
        self._client.close()
        logger.info("ValkeyClient closed")
