"""Exclusive, expiring lease on a single store key."""

from typing import Optional
from uuid import uuid4

from loguru import logger

from lore_kernel.errors import LeaseUnavailableError
from lore_kernel.storage import keys
from lore_kernel.storage.kv import KeyValueStore


class Lease:
    """
    Held by at most one holder at a time. Expires on its own if the holder dies,
    and only the holder's token can renew or release it.
    """

    def __init__(
        self,
        kv: KeyValueStore,
        ttl_seconds: int,
        key: str = keys.CYCLE_LEASE,
        token: Optional[str] = None,
    ):
        self.kv = kv
        self.key = key
        self.ttl_seconds = ttl_seconds
        self.token = token or f"lease_{uuid4().hex[:12]}"

    def acquire(self) -> bool:
        acquired = self.kv.set_if_absent(self.key, self.token, self.ttl_seconds)
        if acquired:
            logger.debug("Lease {} acquired by {}", self.key, self.token)
        return acquired

    def renew(self) -> bool:
        """Push the expiry out again. False if the lease was lost."""
        renewed = self.kv.compare_and_set(self.key, self.token, self.token, self.ttl_seconds)
        if not renewed:
            logger.warning("Lease {} lost by {}", self.key, self.token)
        return renewed

    def release(self) -> bool:
        return self.kv.compare_and_delete(self.key, self.token)

    def held(self) -> bool:
        return self.kv.get(self.key) == self.token

    def __enter__(self) -> "Lease":
        if not self.acquire():
            raise LeaseUnavailableError(f"Lease {self.key} is held by another holder", key=self.key)
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.release()
