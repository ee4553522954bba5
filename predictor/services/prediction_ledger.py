"""
Prediction ledger

Keeps each prediction's stored points in line with its fixture's final score
and pushes the resulting per-user changes onto the leaderboard entries
(the incremental fast path; LeaderboardAggregator is the full recompute).
"""

import logging
from collections import defaultdict
from datetime import timedelta

from predictor import db
from predictor.models import Fixture, LeaderboardEntry, Prediction
from predictor.services.results import ProcessResult, RepairReport
from predictor.utils.performance import timer
from predictor.utils.scoring import (
    EXACT,
    OUTCOME,
    calculate_points,
    classify_points,
    classify_prediction,
)
from predictor.utils.timezone_utils import get_utc_time

logger = logging.getLogger(__name__)

DEFAULT_LOOKBACK_DAYS = 7


class EntryDelta:
    """Accumulated change to one user's leaderboard entry"""

    def __init__(self):
        self.points = 0
        self.correct_scorelines = 0
        self.correct_outcomes = 0
        self.completed_fixtures = 0

    def record(self, old_points, new_points, new_category, multiplier):
        old_category = classify_points(old_points, multiplier)

        self.points += new_points - (old_points or 0)
        self.correct_scorelines += (new_category == EXACT) - (old_category == EXACT)
        self.correct_outcomes += (new_category == OUTCOME) - (old_category == OUTCOME)
        if old_points is None:
            self.completed_fixtures += 1

    def retract(self, old_points, multiplier):
        """Undo a scored prediction whose fixture is no longer final"""
        old_category = classify_points(old_points, multiplier)

        self.points -= old_points
        self.correct_scorelines -= old_category == EXACT
        self.correct_outcomes -= old_category == OUTCOME
        self.completed_fixtures -= 1

    @property
    def is_zero(self):
        return not (
            self.points
            or self.correct_scorelines
            or self.correct_outcomes
            or self.completed_fixtures
        )


class ScoringPass:
    """Per-fixture bookkeeping shared by scoring and repair"""

    def __init__(self, fixture):
        self.fixture = fixture
        self.processed = 0
        self.points_allocated = 0
        self.changed = 0
        self.net_points = 0
        self.users = set()
        self.deltas = defaultdict(EntryDelta)
        self.errors = []

    @property
    def organizations(self):
        return sorted({org_id for _, org_id in self.deltas})


class PredictionLedger:
    def __init__(self, cache=None):
        self.cache = cache

    def _score_predictions(self, fixture):
        """Recompute every prediction of a scoreable fixture.

        Only rows whose points actually change are written, each inside its own
        savepoint: a row the database rejects is recorded in errors and the
        rest are still written.
        """
        scoring = ScoringPass(fixture)
        multiplier = fixture.multiplier

        for prediction in Prediction.list_for_fixture(fixture.id):
            prediction_id = prediction.id
            user_id = prediction.user_id
            organization_id = prediction.organization_id
            try:
                category = classify_prediction(
                    prediction.predicted_home_score,
                    prediction.predicted_away_score,
                    fixture.home_score,
                    fixture.away_score,
                )
                new_points = calculate_points(
                    prediction.predicted_home_score,
                    prediction.predicted_away_score,
                    fixture.home_score,
                    fixture.away_score,
                    multiplier,
                )
                old_points = prediction.points

                if old_points != new_points:
                    with db.session.begin_nested():
                        prediction.set_points(new_points)
                        db.session.flush()
                    scoring.changed += 1
                    scoring.net_points += new_points - (old_points or 0)

            except Exception as e:
                message = f"Failed to score prediction {prediction_id}: {e}"
                logger.error(message)
                scoring.errors.append(message)
                continue

            key = (user_id, organization_id)
            scoring.deltas[key].record(old_points, new_points, category, multiplier)
            scoring.users.add(user_id)
            scoring.processed += 1
            scoring.points_allocated += new_points

        return scoring

    def _retract_predictions(self, fixture):
        """Clear stored points of a fixture whose result was withdrawn"""
        scoring = ScoringPass(fixture)
        multiplier = fixture.multiplier

        for prediction in Prediction.list_for_fixture(fixture.id):
            old_points = prediction.points
            if old_points is None:
                continue

            prediction_id = prediction.id
            key = (prediction.user_id, prediction.organization_id)
            try:
                with db.session.begin_nested():
                    prediction.set_points(None)
                    db.session.flush()
            except Exception as e:
                message = f"Failed to clear points of prediction {prediction_id}: {e}"
                logger.error(message)
                scoring.errors.append(message)
                continue

            scoring.deltas[key].retract(old_points, multiplier)
            scoring.users.add(key[0])
            scoring.processed += 1
            scoring.changed += 1
            scoring.net_points -= old_points

        return scoring

    def _apply_deltas(self, scoring):
        season = scoring.fixture.season

        for (user_id, organization_id), delta in scoring.deltas.items():
            try:
                existing = LeaderboardEntry.get(user_id, organization_id, season)
                if existing is not None and delta.is_zero:
                    continue

                predicted_fixtures = Prediction.count_for_user(user_id, organization_id, season)
                with db.session.begin_nested():
                    LeaderboardEntry.apply_delta(
                        user_id,
                        organization_id,
                        season,
                        points=delta.points,
                        correct_scorelines=delta.correct_scorelines,
                        correct_outcomes=delta.correct_outcomes,
                        completed_fixtures=delta.completed_fixtures,
                        predicted_fixtures=predicted_fixtures,
                    )
                    db.session.flush()
            except Exception as e:
                message = (
                    f"Failed to update leaderboard entry for user {user_id} "
                    f"in organization {organization_id}: {e}"
                )
                logger.error(message)
                scoring.errors.append(message)

    def _note_finished_game(self, scoring):
        if self.cache is None:
            return
        fixture = scoring.fixture
        for organization_id in scoring.organizations:
            self.cache.note_finished_game(organization_id, fixture.season, fixture.match_date)

    def _run(self, fixture):
        """Score, apply deltas and commit. Raises on batch-level failure."""
        scoring = self._score_predictions(fixture)
        self._apply_deltas(scoring)
        db.session.commit()
        self._note_finished_game(scoring)
        return scoring

    @timer
    def score_fixture(self, fixture_id):
        """Score all predictions for a finished fixture.

        Safe to repeat: a second run with unchanged data computes zero deltas.
        Fixtures that are not finished, or lack a score, are skipped untouched.
        """
        result = ProcessResult(fixture_id=fixture_id)

        fixture = db.session.get(Fixture, fixture_id)
        if fixture is None:
            result.message = f"Fixture {fixture_id} not found"
            logger.warning(result.message)
            return result

        if not fixture.is_scoreable:
            result.message = (
                f"Fixture {fixture_id} not scoreable yet "
                f"(status={fixture.status}, score={fixture.home_score}-{fixture.away_score})"
            )
            logger.info(result.message)
            return result

        try:
            scoring = self._run(fixture)
        except Exception as e:
            db.session.rollback()
            result.success = False
            result.errors.append(str(e))
            result.message = f"Failed to score fixture {fixture_id}: {e}"
            logger.error(result.message, exc_info=True)
            return result

        result.processed_count = scoring.processed
        result.points_allocated = scoring.points_allocated
        result.users_affected = len(scoring.users)
        result.organizations = scoring.organizations
        result.errors = scoring.errors
        result.message = (
            f"Scored {scoring.processed} predictions for fixture {fixture_id}, "
            f"{scoring.changed} changed"
        )
        if scoring.errors:
            result.message += f", {len(scoring.errors)} errors"

        logger.info(result.message)
        return result

    @timer
    def retract_fixture(self, fixture_id):
        """Clear points of a fixture that is no longer finished.

        Used when the feed withdraws a final result (e.g. FINISHED back to
        SUSPENDED). Entries lose the points and counts the fixture gave them.
        """
        result = ProcessResult(fixture_id=fixture_id)

        fixture = db.session.get(Fixture, fixture_id)
        if fixture is None:
            result.message = f"Fixture {fixture_id} not found"
            logger.warning(result.message)
            return result

        if fixture.is_scoreable:
            result.message = f"Fixture {fixture_id} is finished, nothing to retract"
            return result

        try:
            scoring = self._retract_predictions(fixture)
            self._apply_deltas(scoring)
            db.session.commit()
        except Exception as e:
            db.session.rollback()
            result.success = False
            result.errors.append(str(e))
            result.message = f"Failed to retract fixture {fixture_id}: {e}"
            logger.error(result.message, exc_info=True)
            return result

        result.processed_count = scoring.processed
        result.users_affected = len(scoring.users)
        result.organizations = scoring.organizations
        result.errors = scoring.errors
        result.message = (
            f"Retracted {scoring.processed} predictions for fixture {fixture_id} "
            f"(status={fixture.status})"
        )
        logger.info(result.message)
        return result

    def _repair(self, fixture, report):
        scoring = self._run(fixture)

        report.fixtures_checked += 1
        report.predictions_fixed += scoring.changed
        report.points_awarded += scoring.net_points
        report.errors.extend(scoring.errors)
        for organization_id in scoring.organizations:
            if organization_id not in report.organizations:
                report.organizations.append(organization_id)

        if scoring.changed:
            logger.info(
                f"Repaired fixture {fixture.id}: {scoring.changed} predictions fixed, "
                f"{scoring.net_points} points"
            )

    @staticmethod
    def _has_suspect_predictions(fixture_id):
        """Unscored rows or rows stuck at 0 that may have been mis-scored"""
        return (
            db.session.query(Prediction.id)
            .filter(
                Prediction.fixture_id == fixture_id,
                db.or_(Prediction.points.is_(None), Prediction.points == 0),
            )
            .first()
            is not None
        )

    @timer
    def repair_unprocessed(self, lookback_days=DEFAULT_LOOKBACK_DAYS):
        """Rescore recently finished fixtures that look unprocessed"""
        report = RepairReport()
        cutoff = get_utc_time() - timedelta(days=lookback_days)

        try:
            fixtures = Fixture.finished_since(cutoff)
            logger.info(
                f"Checking {len(fixtures)} finished fixtures from the last "
                f"{lookback_days} days for unprocessed predictions"
            )

            for fixture in fixtures:
                if not self._has_suspect_predictions(fixture.id):
                    continue
                self._repair(fixture, report)

        except Exception as e:
            db.session.rollback()
            report.success = False
            report.errors.append(f"Repair failed: {e}")
            report.message = f"Repair failed: {e}"
            logger.error(report.message, exc_info=True)
            return report

        report.message = (
            f"Checked {report.fixtures_checked} fixtures, fixed "
            f"{report.predictions_fixed} predictions, {report.points_awarded} points awarded"
        )
        logger.info(report.message)
        return report

    def repair_fixture(self, fixture_id):
        """Rescore one fixture regardless of when it was played"""
        report = RepairReport()

        fixture = db.session.get(Fixture, fixture_id)
        if fixture is None:
            report.success = False
            report.message = f"Fixture {fixture_id} not found"
            return report

        if not fixture.is_scoreable:
            report.success = False
            report.message = f"Fixture {fixture_id} not finished or missing scores"
            return report

        try:
            self._repair(fixture, report)
        except Exception as e:
            db.session.rollback()
            report.success = False
            report.errors.append(str(e))
            report.message = f"Repair of fixture {fixture_id} failed: {e}"
            logger.error(report.message, exc_info=True)
            return report

        report.message = (
            f"Fixture {fixture_id}: {report.predictions_fixed} predictions fixed, "
            f"{report.points_awarded} points awarded"
        )
        return report
