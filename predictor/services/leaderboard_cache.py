"""
Layered leaderboard cache

Two tiers: a short-lived in-process tier for re-reads within one worker and
a shared tier (Redis through Flask-Caching in production) for cross-process
consistency. Cached leaderboards are disposable; the database is the
authority and the aggregator can rebuild any entry at any time.
"""

import logging
from datetime import timedelta

from cachelib import SimpleCache

from predictor.exceptions import CacheTierError
from predictor.services.results import LeaderboardRow
from predictor.utils.cache_utils import CacheTier, leaderboard_key, meta_key
from predictor.utils.timezone_utils import ensure_utc, get_utc_time, to_iso

logger = logging.getLogger(__name__)

DEFAULT_LOCAL_TTL = 300
DEFAULT_SHARED_TTL = 6 * 60 * 60
DEFAULT_META_TTL = 6 * 60 * 60
DEFAULT_STALE_AFTER = 300


class LayeredCache:
    def __init__(
        self,
        local,
        shared,
        local_ttl=DEFAULT_LOCAL_TTL,
        shared_ttl=DEFAULT_SHARED_TTL,
        meta_ttl=DEFAULT_META_TTL,
        stale_after=DEFAULT_STALE_AFTER,
    ):
        self.local = local if isinstance(local, CacheTier) else CacheTier(local, "local")
        self.shared = (
            shared if isinstance(shared, CacheTier) else CacheTier(shared, "shared")
        )
        self.local_ttl = local_ttl
        self.shared_ttl = shared_ttl
        self.meta_ttl = meta_ttl
        self.stale_after = stale_after

    @classmethod
    def from_app(cls, app, local_backend=None, shared_backend=None):
        """Build the cache from app config.

        The shared tier defaults to the backend behind the app's Flask-Caching
        extension, so it honours CACHE_TYPE / CACHE_REDIS_URL / CACHE_KEY_PREFIX.
        """
        if shared_backend is None:
            from predictor import cache

            shared_backend = app.extensions["cache"][cache]
        if local_backend is None:
            local_backend = SimpleCache(
                threshold=app.config.get("LEADERBOARD_LOCAL_MAX_ENTRIES", 500)
            )

        return cls(
            local_backend,
            shared_backend,
            local_ttl=app.config.get("LEADERBOARD_LOCAL_TTL", DEFAULT_LOCAL_TTL),
            shared_ttl=app.config.get("LEADERBOARD_SHARED_TTL", DEFAULT_SHARED_TTL),
            meta_ttl=app.config.get("LEADERBOARD_META_TTL", DEFAULT_META_TTL),
            stale_after=app.config.get("LEADERBOARD_STALE_AFTER", DEFAULT_STALE_AFTER),
        )

    # Shared tier failures degrade freshness, never correctness

    def _shared_get(self, key):
        try:
            return self.shared.get(key)
        except CacheTierError as e:
            logger.warning(f"Shared cache read failed, treating as miss: {e}")
            return None

    def _shared_set(self, key, value, ttl):
        try:
            return self.shared.set(key, value, ttl=ttl)
        except CacheTierError as e:
            logger.warning(f"Shared cache write failed, keeping local copy only: {e}")
            return False

    def _shared_delete(self, key):
        try:
            return self.shared.delete(key)
        except CacheTierError as e:
            logger.warning(f"Shared cache delete failed: {e}")
            return False

    def _read_through(self, key):
        value = self.local.get(key)
        if value is not None:
            return value

        value = self._shared_get(key)
        if value is not None:
            self.local.set(key, value, ttl=self.local_ttl)
        return value

    def get(self, organization_id, season):
        """Cached leaderboard rows, or None when neither tier has them"""
        payload = self._read_through(leaderboard_key(organization_id, season))
        if payload is None:
            return None
        return [LeaderboardRow.from_dict(row) for row in payload.get("entries", [])]

    def set(self, organization_id, season, rows):
        """Cache rows in their given order, re-ranked 1..n.

        rows may be LeaderboardRow objects or plain dicts. Returns the ranked
        LeaderboardRow list that was cached.
        """
        ranked = []
        for position, row in enumerate(rows, start=1):
            data = row.to_dict() if hasattr(row, "to_dict") else dict(row)
            data["rank"] = position
            ranked.append(LeaderboardRow.from_dict(data))

        payload = {
            "entries": [row.to_dict() for row in ranked],
            "total_users": len(ranked),
            "last_update": to_iso(get_utc_time()),
        }
        key = leaderboard_key(organization_id, season)
        self.local.set(key, payload, ttl=self.local_ttl)
        self._shared_set(key, payload, self.shared_ttl)

        logger.debug(f"Cached leaderboard {key} with {len(ranked)} entries")
        return ranked

    def get_meta(self, organization_id, season):
        meta = self._read_through(meta_key(organization_id, season))
        return dict(meta) if meta is not None else None

    def set_meta(self, organization_id, season, **fields):
        """Merge fields over the existing meta and write both tiers"""
        meta = self.get_meta(organization_id, season) or {}
        meta.update(fields)

        key = meta_key(organization_id, season)
        self.local.set(key, meta, ttl=self.meta_ttl)
        self._shared_set(key, meta, self.meta_ttl)
        return meta

    def note_finished_game(self, organization_id, season, game_time):
        """Record that a finished game was observed, keeping the latest kickoff"""
        game_time = ensure_utc(game_time)
        meta = self.get_meta(organization_id, season) or {}
        observed = ensure_utc(meta.get("observed_game_time"))
        if observed is not None and game_time is not None and observed >= game_time:
            return meta
        return self.set_meta(organization_id, season, observed_game_time=game_time)

    def is_fresh(self, organization_id, season, now=None):
        """True when a recalculation can be skipped.

        Requires meta with a completed (not in-progress) update, and either an
        update younger than stale_after or no finished game newer than the
        last one the update accounted for.
        """
        meta = self.get_meta(organization_id, season)
        if not meta or meta.get("is_calculating"):
            return False

        last_update = ensure_utc(meta.get("last_leaderboard_update"))
        if last_update is None:
            return False

        now = ensure_utc(now) or get_utc_time()
        if now - last_update < timedelta(seconds=self.stale_after):
            return True

        observed = ensure_utc(meta.get("observed_game_time"))
        last_game = ensure_utc(meta.get("last_game_time"))
        return observed is not None and last_game is not None and observed <= last_game

    def invalidate(self, organization_id, season):
        """Drop leaderboard data and meta from both tiers"""
        for key in (leaderboard_key(organization_id, season), meta_key(organization_id, season)):
            self.local.delete(key)
            self._shared_delete(key)
        logger.info(f"Invalidated leaderboard cache for org {organization_id} season {season}")
