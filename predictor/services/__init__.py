"""
Leaderboard engine entry points.

init_app() wires the layered cache, recalculation lock, ledger, aggregator
and integrity checker onto app.extensions["leaderboard"]. The module-level
functions below are what request handlers, the CLI and the scheduler call;
they need an application context.
"""

import logging

from flask import current_app

from predictor import db

logger = logging.getLogger(__name__)

EXTENSION_KEY = "leaderboard"


class LeaderboardEngine:
    """Holds one set of collaborating services sharing a cache and lock"""

    def __init__(self, cache, lock_ttl=None):
        from predictor.services.integrity_checker import IntegrityChecker
        from predictor.services.leaderboard_service import LeaderboardAggregator
        from predictor.services.prediction_ledger import PredictionLedger
        from predictor.services.recalculation_lock import (
            DEFAULT_LOCK_TTL,
            RecalculationLock,
        )

        self.cache = cache
        self.lock = RecalculationLock(cache.shared, ttl=lock_ttl or DEFAULT_LOCK_TTL)
        self.ledger = PredictionLedger(cache)
        self.aggregator = LeaderboardAggregator(cache, self.lock)
        self.integrity = IntegrityChecker(self.aggregator, cache)


def install_engine(app, cache):
    """Attach an engine built around the given LayeredCache"""
    engine = LeaderboardEngine(cache, lock_ttl=app.config.get("LEADERBOARD_LOCK_TTL"))
    app.extensions[EXTENSION_KEY] = engine
    return engine


def init_app(app):
    from predictor.services.leaderboard_cache import LayeredCache

    return install_engine(app, LayeredCache.from_app(app))


def get_engine():
    return current_app.extensions[EXTENSION_KEY]


def score_fixture(fixture_id):
    return get_engine().ledger.score_fixture(fixture_id)


def recalculate_leaderboard(organization_id, season, force=False):
    return get_engine().aggregator.recalculate(organization_id, season, force=force)


def recalculate_all_leaderboards(season, force=False):
    return get_engine().aggregator.recalculate_all(season, force=force)


def get_leaderboard(organization_id, season):
    return get_engine().aggregator.get_leaderboard(organization_id, season)


def check_integrity(season, auto_fix=False, threshold=None):
    if threshold is None:
        threshold = current_app.config.get("INTEGRITY_THRESHOLD", 0)
    return get_engine().integrity.check(season, auto_fix=auto_fix, threshold=threshold)


def repair_unprocessed_predictions(lookback_days=None):
    if lookback_days is None:
        lookback_days = current_app.config.get("REPAIR_LOOKBACK_DAYS", 7)
    return get_engine().ledger.repair_unprocessed(lookback_days)


def repair_fixture(fixture_id):
    return get_engine().ledger.repair_fixture(fixture_id)


def invalidate_leaderboard(organization_id, season):
    get_engine().cache.invalidate(organization_id, season)


def leaderboard_status(organization_id, season):
    """Cached meta, stored meta and lock state for one leaderboard"""
    from predictor.models import LeaderboardMeta
    from predictor.utils.timezone_utils import to_iso

    engine = get_engine()
    cached_meta = engine.cache.get_meta(organization_id, season) or {}
    stored_meta = LeaderboardMeta.get(organization_id, season)

    return {
        "organization_id": organization_id,
        "season": season,
        "is_fresh": engine.cache.is_fresh(organization_id, season),
        "is_locked": engine.lock.is_locked(organization_id, season),
        "lock_holder": engine.lock.holder(organization_id, season),
        "cached_meta": {
            k: to_iso(v) if hasattr(v, "isoformat") else v for k, v in cached_meta.items()
        },
        "stored_meta": stored_meta.to_dict() if stored_meta else None,
    }


def apply_fixture_update(fixture_id, home_score, away_score, status):
    """Record a result from the data feed.

    When the update finishes the fixture or corrects its final score, its
    predictions are (re)scored; when it withdraws a final result, their points
    are cleared. Each touched organization's leaderboard is then recalculated.
    Returns (process_result or None, [recalculation results]).
    """
    from predictor.exceptions import FixtureNotFound
    from predictor.models import Fixture

    fixture = db.session.get(Fixture, fixture_id)
    if fixture is None:
        raise FixtureNotFound(fixture_id)

    was_scoreable = fixture.is_scoreable
    needs_scoring = fixture.update_result(home_score, away_score, status)
    db.session.commit()
    logger.info(
        f"Fixture {fixture_id} updated to {fixture.status} "
        f"{fixture.home_score}-{fixture.away_score}"
    )

    if needs_scoring:
        process_result = score_fixture(fixture_id)
    elif was_scoreable and not fixture.is_scoreable:
        process_result = get_engine().ledger.retract_fixture(fixture_id)
    else:
        return None, []

    recalculations = [
        recalculate_leaderboard(organization_id, fixture.season, force=True)
        for organization_id in process_result.organizations
    ]
    return process_result, recalculations
