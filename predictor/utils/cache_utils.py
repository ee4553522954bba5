"""
Cache utilities for Score Predictor

CacheTier wraps any cachelib-compatible backend (Flask-Caching's backend,
cachelib.SimpleCache, cachelib.RedisCache) behind get/set/add/delete and
turns backend exceptions into CacheTierError.
"""

import redis

from predictor.exceptions import CacheTierError


class CacheTier:
    """One storage tier of the layered leaderboard cache"""

    def __init__(self, backend, name):
        self.backend = backend
        self.name = name

    def __repr__(self):
        return f"<CacheTier {self.name} {type(self.backend).__name__}>"

    def _call(self, operation, key, *args, **kwargs):
        try:
            return getattr(self.backend, operation)(key, *args, **kwargs)
        except Exception as e:
            raise CacheTierError(self.name, operation, key, e) from e

    def get(self, key):
        return self._call("get", key)

    def set(self, key, value, ttl=None):
        """Store value; returns the backend's success flag"""
        return bool(self._call("set", key, value, timeout=ttl))

    def add(self, key, value, ttl=None):
        """Store value only if key is absent. True when this call stored it."""
        return bool(self._call("add", key, value, timeout=ttl))

    def delete(self, key):
        return bool(self._call("delete", key))

    def delete_if(self, key, predicate):
        """Delete key only while predicate(current value) holds.

        On a Redis backend the read and the delete run under WATCH, so a value
        replaced in between is left in place. Other backends read then delete.
        """
        client = getattr(self.backend, "_write_client", None)
        try:
            if client is None:
                current = self.backend.get(key)
                if current is None or not predicate(current):
                    return False
                return bool(self.backend.delete(key))
            return self._watched_delete(client, key, predicate)
        except Exception as e:
            raise CacheTierError(self.name, "delete", key, e) from e

    def _watched_delete(self, client, key, predicate):
        full_key = self.backend._get_prefix() + key
        with client.pipeline() as pipe:
            try:
                pipe.watch(full_key)
                current = self.backend.serializer.loads(pipe.get(full_key))
                if current is None or not predicate(current):
                    return False
                pipe.multi()
                pipe.delete(full_key)
                return bool(pipe.execute()[0])
            except redis.WatchError:
                return False


def leaderboard_key(organization_id, season):
    return f"leaderboard:{organization_id}:{season}"


def meta_key(organization_id, season):
    return f"leaderboard:meta:{organization_id}:{season}"


def lock_key(organization_id, season):
    return f"leaderboard:lock:{organization_id}:{season}"


def get_cache_stats(app):
    """Basic description of the configured shared cache"""
    return {
        "type": app.config.get("CACHE_TYPE", "Unknown"),
        "timeout": app.config.get("CACHE_DEFAULT_TIMEOUT", 300),
        "key_prefix": app.config.get("CACHE_KEY_PREFIX", ""),
    }
