"""
Leaderboard aggregation

Full recomputation of one (organization, season) leaderboard from fixtures
and predictions. Categories are re-derived from scores, never read from the
stored points column, so this path also corrects drift left by the
incremental ledger updates.
"""

import logging

from predictor import db
from predictor.models import (
    Fixture,
    FixtureStatus,
    LeaderboardEntry,
    LeaderboardMeta,
    Organization,
    Prediction,
    User,
)
from predictor.services.results import LeaderboardRow, RecalculationResult, UserStats
from predictor.utils.performance import Stopwatch, timer
from predictor.utils.scoring import (
    EXACT,
    OUTCOME,
    calculate_points,
    classify_prediction,
    ranking_key,
)
from predictor.utils.timezone_utils import ensure_utc, get_utc_time

logger = logging.getLogger(__name__)

CONTENTION_MESSAGE = "Another recalculation is in progress"


def season_fixture_stats(season):
    """(total_matches, finished_matches, last_game_time) across all fixtures of a season"""
    fixtures = Fixture.list_for_season(season)
    finished = [f for f in fixtures if f.status == FixtureStatus.FINISHED]
    last_game_time = max((ensure_utc(f.match_date) for f in finished), default=None)
    return len(fixtures), len(finished), last_game_time


def sort_stats(stats):
    return sorted(
        stats,
        key=lambda s: ranking_key(
            s.total_points,
            s.correct_scorelines,
            s.correct_outcomes,
            s.name,
            s.user_id,
        ),
    )


class LeaderboardAggregator:
    def __init__(self, cache, lock):
        self.cache = cache
        self.lock = lock

    def compute_user_stats(self, organization_id, season):
        """Per-user totals for an organization/season, keyed by user id"""
        user_ids = Prediction.distinct_users(organization_id, season)
        if not user_ids:
            return {}

        users = {u.id: u for u in User.query.filter(User.id.in_(user_ids)).all()}
        stats = {
            user_id: UserStats(
                user_id=user_id,
                name=users[user_id].full_name if user_id in users else "",
            )
            for user_id in user_ids
        }

        for prediction, fixture in Prediction.list_with_fixtures(organization_id, season):
            user_stats = stats.get(prediction.user_id)
            if user_stats is None:
                # Prediction written after the user list was read
                user_stats = stats[prediction.user_id] = UserStats(user_id=prediction.user_id)

            user_stats.predicted_fixtures += 1
            if not fixture.is_scoreable:
                continue

            user_stats.completed_fixtures += 1
            category = classify_prediction(
                prediction.predicted_home_score,
                prediction.predicted_away_score,
                fixture.home_score,
                fixture.away_score,
            )
            if category == EXACT:
                user_stats.correct_scorelines += 1
            elif category == OUTCOME:
                user_stats.correct_outcomes += 1
            user_stats.total_points += calculate_points(
                prediction.predicted_home_score,
                prediction.predicted_away_score,
                fixture.home_score,
                fixture.away_score,
                fixture.multiplier,
            )

        return stats

    def _cached_result(self, organization_id, season, rows, watch, message, success=True):
        meta = self.cache.get_meta(organization_id, season) or {}
        return RecalculationResult(
            success=success,
            organization_id=organization_id,
            season=season,
            users_updated=len(rows) if rows else 0,
            total_matches=meta.get("total_matches", 0),
            finished_matches=meta.get("finished_matches", 0),
            last_game_time=ensure_utc(meta.get("last_game_time")),
            execution_time_ms=watch.elapsed_ms,
            from_cache=rows is not None,
            message=message,
        )

    def _mark_calculating(self, organization_id, season):
        self.cache.set_meta(organization_id, season, is_calculating=True)
        LeaderboardMeta.upsert(organization_id, season, is_calculating=True)
        db.session.commit()

    def _reset_calculating(self, organization_id, season):
        """Best effort: a failure here must not mask the original error"""
        try:
            self.cache.set_meta(organization_id, season, is_calculating=False)
        except Exception as e:
            logger.warning(f"Could not reset cached calculating flag: {e}")
        try:
            LeaderboardMeta.upsert(organization_id, season, is_calculating=False)
            db.session.commit()
        except Exception as e:
            db.session.rollback()
            logger.warning(f"Could not reset stored calculating flag: {e}")

    def _aggregate(self, organization_id, season):
        total_matches, finished_matches, last_game_time = season_fixture_stats(season)
        logger.debug(
            f"Season {season}: {total_matches} fixtures, {finished_matches} finished"
        )

        stats = self.compute_user_stats(organization_id, season)
        ordered = sort_stats(stats.values())

        now = get_utc_time()
        LeaderboardEntry.replace_all(organization_id, season, stats)
        LeaderboardMeta.upsert(
            organization_id,
            season,
            last_leaderboard_update=now,
            last_game_time=last_game_time,
            total_matches=total_matches,
            finished_matches=finished_matches,
            is_calculating=False,
        )
        db.session.commit()

        users = {u.id: u for u in User.query.filter(User.id.in_(list(stats))).all()}
        rows = [
            LeaderboardRow(
                rank=position,
                user_id=s.user_id,
                username=users[s.user_id].username if s.user_id in users else "",
                display_name=s.name,
                total_points=s.total_points,
                correct_scorelines=s.correct_scorelines,
                correct_outcomes=s.correct_outcomes,
                predicted_fixtures=s.predicted_fixtures,
                completed_fixtures=s.completed_fixtures,
            )
            for position, s in enumerate(ordered, start=1)
        ]
        self.cache.set(organization_id, season, rows)
        self.cache.set_meta(
            organization_id,
            season,
            last_leaderboard_update=now,
            last_game_time=last_game_time,
            total_matches=total_matches,
            finished_matches=finished_matches,
            is_calculating=False,
        )
        return rows, total_matches, finished_matches, last_game_time

    @timer
    def recalculate(self, organization_id, season, force=False):
        """Recompute and persist one leaderboard.

        Skips the work when the cached copy is fresh (unless forced). Returns
        success=False without writing anything when another run holds the lock.
        """
        with Stopwatch() as watch:
            if not force and self.cache.is_fresh(organization_id, season):
                rows = self.cache.get(organization_id, season)
                if rows is not None:
                    return self._cached_result(
                        organization_id,
                        season,
                        rows,
                        watch,
                        "Leaderboard is up to date (from cache)",
                    )

            token = self.lock.acquire(organization_id, season)
            if token is None:
                logger.info(
                    f"Recalculation for org {organization_id} season {season} skipped: "
                    f"lock held by {self.lock.holder(organization_id, season)}"
                )
                return self._cached_result(
                    organization_id,
                    season,
                    self.cache.get(organization_id, season),
                    watch,
                    CONTENTION_MESSAGE,
                    success=False,
                )

            try:
                self._mark_calculating(organization_id, season)
                rows, total_matches, finished_matches, last_game_time = self._aggregate(
                    organization_id, season
                )
            except Exception as e:
                db.session.rollback()
                logger.error(
                    f"Leaderboard recalculation failed for org {organization_id} "
                    f"season {season}: {e}",
                    exc_info=True,
                )
                self._reset_calculating(organization_id, season)
                return RecalculationResult(
                    success=False,
                    organization_id=organization_id,
                    season=season,
                    execution_time_ms=watch.elapsed_ms,
                    message=f"Failed to recalculate leaderboard: {e}",
                )
            finally:
                self.lock.release(organization_id, season, token)

            message = (
                f"Leaderboard recalculated for {len(rows)} users "
                f"in {watch.elapsed_ms}ms"
            )
            logger.info(f"Org {organization_id} season {season}: {message}")
            return RecalculationResult(
                success=True,
                organization_id=organization_id,
                season=season,
                users_updated=len(rows),
                total_matches=total_matches,
                finished_matches=finished_matches,
                last_game_time=last_game_time,
                execution_time_ms=watch.elapsed_ms,
                from_cache=False,
                message=message,
            )

    def recalculate_all(self, season, force=False):
        """Recalculate every organization's leaderboard, one at a time"""
        results = []
        for organization_id in Organization.list_ids():
            results.append(self.recalculate(organization_id, season, force=force))

        succeeded = sum(1 for r in results if r.success)
        logger.info(
            f"Recalculated {succeeded}/{len(results)} leaderboards for season {season}"
        )
        return results

    def get_leaderboard(self, organization_id, season):
        """Ranked rows: cache, then on-demand recalculation, then storage.

        Never raises for missing data; an unknown leaderboard is [].
        """
        rows = self.cache.get(organization_id, season)
        if rows is not None:
            return rows

        result = self.recalculate(organization_id, season, force=False)
        if result.success:
            rows = self.cache.get(organization_id, season)
            if rows is not None:
                return rows

        entries = LeaderboardEntry.list_ranked(organization_id, season)
        rows = [
            LeaderboardRow.from_entry(entry, rank)
            for rank, entry in enumerate(entries, start=1)
        ]
        if rows:
            rows = self.cache.set(organization_id, season, rows)
        return rows
