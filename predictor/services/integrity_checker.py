"""
Leaderboard integrity checks

Compares stored leaderboard totals with the sum of prediction points, the
source of truth, and optionally repairs drifted organizations with a forced
recalculation.
"""

import logging

from predictor.models import LeaderboardEntry, Organization, Prediction
from predictor.services.results import IntegrityMismatch, IntegrityReport
from predictor.utils.performance import timer

logger = logging.getLogger(__name__)


class IntegrityChecker:
    def __init__(self, aggregator, cache):
        self.aggregator = aggregator
        self.cache = cache

    @staticmethod
    def find_mismatches(organization_id, season, threshold=0):
        """Mismatches for one organization.

        A user with predictions but no entry counts as stored 0. An entry with
        nonzero points for a user without any predictions is a ghost.
        """
        expected = Prediction.points_by_user(organization_id, season)
        entries = {
            entry.user_id: entry
            for entry in LeaderboardEntry.list_for_leaderboard(organization_id, season)
        }

        mismatches = []
        for user_id, expected_points in sorted(expected.items()):
            entry = entries.get(user_id)
            stored_points = entry.total_points if entry else 0
            if abs(stored_points - expected_points) > threshold:
                mismatches.append(
                    IntegrityMismatch(
                        organization_id=organization_id,
                        user_id=user_id,
                        stored_points=stored_points,
                        expected_points=expected_points,
                    )
                )

        for user_id, entry in sorted(entries.items()):
            if user_id not in expected and entry.total_points:
                mismatches.append(
                    IntegrityMismatch(
                        organization_id=organization_id,
                        user_id=user_id,
                        stored_points=entry.total_points,
                        expected_points=0,
                        ghost=True,
                    )
                )

        return mismatches

    @timer
    def check(self, season, auto_fix=False, threshold=0):
        report = IntegrityReport(season=season)

        for organization_id in Organization.list_ids():
            report.organizations_checked += 1
            try:
                report.mismatches.extend(
                    self.find_mismatches(organization_id, season, threshold)
                )
            except Exception as e:
                logger.error(
                    f"Integrity check failed for org {organization_id}: {e}", exc_info=True
                )

        for mismatch in report.mismatches:
            logger.warning(
                f"Leaderboard drift: org {mismatch.organization_id} user {mismatch.user_id} "
                f"stored {mismatch.stored_points} expected {mismatch.expected_points}"
                + (" (ghost entry)" if mismatch.ghost else "")
            )

        if auto_fix:
            for organization_id in report.affected_organizations:
                self.cache.invalidate(organization_id, season)
                result = self.aggregator.recalculate(organization_id, season, force=True)
                report.recalculations.append(result)
                if result.success:
                    report.fixed_count += 1
                else:
                    logger.warning(
                        f"Auto-fix for org {organization_id} did not complete: {result.message}"
                    )

        logger.info(
            f"Integrity check for season {season}: {report.organizations_checked} organizations, "
            f"{len(report.mismatches)} mismatches, {report.fixed_count} fixed"
        )
        return report
