"""
Per (organization, season) recalculation lease held in the shared cache tier.

Acquisition is a single atomic add with a TTL: no retries, no blocking. A
crashed holder stops blocking others once the TTL elapses.
"""

import logging
import os
import socket
import uuid

from predictor.exceptions import CacheTierError
from predictor.utils.cache_utils import lock_key
from predictor.utils.timezone_utils import get_utc_time, to_iso

logger = logging.getLogger(__name__)

DEFAULT_LOCK_TTL = 120


def _worker_id():
    return f"{socket.gethostname()}:{os.getpid()}"


class RecalculationLock:
    def __init__(self, tier, ttl=DEFAULT_LOCK_TTL):
        self.tier = tier
        self.ttl = ttl

    def acquire(self, organization_id, season):
        """Try to take the lock. Returns a token on success, None otherwise."""
        key = lock_key(organization_id, season)
        token = f"{_worker_id()}:{uuid.uuid4().hex}"
        value = {
            "acquired_by": token,
            "acquired_at": to_iso(get_utc_time()),
            "ttl": self.ttl,
        }

        try:
            acquired = self.tier.add(key, value, ttl=self.ttl)
        except CacheTierError as e:
            logger.warning(f"Could not reach lock store for {key}: {e}")
            return None

        if not acquired:
            logger.debug(f"Lock {key} already held")
            return None

        logger.debug(f"Acquired lock {key} as {token}")
        return token

    def release(self, organization_id, season, token=None):
        """Release the lock. Safe to call when it is not held.

        With a token, only the matching holder's entry is removed, so a run
        that outlived its TTL cannot drop a successor's lock. The check and
        delete are atomic on Redis; on other backends a lock that expires and
        is retaken between them can still be removed.
        """
        key = lock_key(organization_id, season)
        try:
            if token is None:
                return self.tier.delete(key)
            released = self.tier.delete_if(
                key, lambda held: held.get("acquired_by") == token
            )
            if not released:
                logger.warning(f"Not releasing {key}: no longer held by {token}")
            return released
        except CacheTierError as e:
            logger.warning(f"Failed to release lock {key}, it will expire after {self.ttl}s: {e}")
            return False

    def holder(self, organization_id, season):
        """Lock data ({acquired_by, acquired_at, ttl}) or None"""
        try:
            return self.tier.get(lock_key(organization_id, season))
        except CacheTierError as e:
            logger.warning(f"Could not read lock state: {e}")
            return None

    def is_locked(self, organization_id, season):
        return self.holder(organization_id, season) is not None
