"""
Minimal in-memory TTL cache for clause review results.
"""
import hashlib
import json
import time
from typing import Any, Optional


class TTLCache:
    """
    Minimal Time-To-Live cache with dict storage of {key: (expires_at, value)}.
    Purges expired entries on get/set operations and drops the oldest entry
    once max_entries is reached.
    """

    def __init__(self, max_entries: int = 256):
        """
        Args:
            max_entries: Maximum number of live entries kept in memory.
        """
        self._storage = {}
        self.max_entries = max_entries

    def get(self, key: str) -> Optional[Any]:
        """
        Retrieve value from cache.

        Args:
            key: Cache key.

        Returns:
            Cached value if found and not expired, otherwise None.
        """
        self._purge_expired()

        entry = self._storage.get(key)
        if entry is None:
            return None

        expires_at, value = entry
        if time.time() > expires_at:
            del self._storage[key]
            return None

        return value

    def set(self, key: str, value: Any, ttl: int) -> None:
        """
        Store value in cache with TTL.

        Args:
            key: Cache key.
            value: Value to cache.
            ttl: Time-to-live in seconds.
        """
        self._purge_expired()

        if key not in self._storage and len(self._storage) >= self.max_entries:
            oldest = min(self._storage, key=lambda k: self._storage[k][0])
            del self._storage[oldest]

        self._storage[key] = (time.time() + ttl, value)

    def delete(self, key: str) -> None:
        self._storage.pop(key, None)

    def clear(self) -> None:
        self._storage.clear()

    def __len__(self) -> int:
        return len(self._storage)

    def _purge_expired(self) -> None:
        """Remove all expired entries from storage."""
        current_time = time.time()
        expired_keys = [
            key for key, (expires_at, _) in self._storage.items()
            if current_time > expires_at
        ]
        for key in expired_keys:
            del self._storage[key]


def make_review_key(text: str, instructions: Optional[str], risk_profile: Optional[str]) -> str:
    """
    Build a stable cache key for a clause review request.

    Args:
        text: Clause text sent for review.
        instructions: Optional reviewer guidance.
        risk_profile: Review posture name.

    Returns:
        Hex SHA-256 digest of the request fields.
    """
    payload = json.dumps(
        {'text': text, 'instructions': instructions or '', 'risk_profile': risk_profile or 'balanced'},
        sort_keys=True
    )
    return hashlib.sha256(payload.encode('utf-8')).hexdigest()


# Module-level instance
review_cache = TTLCache()
