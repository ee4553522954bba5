from datetime import datetime, timezone

from predictor import db


class LeaderboardEntry(db.Model):
    """Persisted per-user totals for one organization/season leaderboard"""

    __tablename__ = "leaderboard_entries"

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)
    organization_id = db.Column(
        db.Integer, db.ForeignKey("organizations.id"), nullable=False
    )
    season = db.Column(db.String(20), nullable=False)

    total_points = db.Column(db.Integer, nullable=False, default=0)
    correct_scorelines = db.Column(db.Integer, nullable=False, default=0)
    correct_outcomes = db.Column(db.Integer, nullable=False, default=0)
    predicted_fixtures = db.Column(db.Integer, nullable=False, default=0)
    completed_fixtures = db.Column(db.Integer, nullable=False, default=0)

    last_updated = db.Column(
        db.DateTime, nullable=False, default=lambda: datetime.now(timezone.utc)
    )

    user = db.relationship("User", lazy="joined")

    __table_args__ = (
        db.UniqueConstraint(
            "user_id", "organization_id", "season", name="unique_user_org_season_entry"
        ),
        db.Index(
            "idx_leaderboard_org_season_points",
            "organization_id",
            "season",
            "total_points",
        ),
    )

    def __repr__(self):
        return (
            f"<LeaderboardEntry user_id={self.user_id} org={self.organization_id} "
            f"season={self.season} points={self.total_points}>"
        )

    @staticmethod
    def get(user_id, organization_id, season):
        return LeaderboardEntry.query.filter_by(
            user_id=user_id, organization_id=organization_id, season=season
        ).first()

    @staticmethod
    def apply_delta(
        user_id,
        organization_id,
        season,
        points=0,
        correct_scorelines=0,
        correct_outcomes=0,
        completed_fixtures=0,
        predicted_fixtures=None,
    ):
        """Add a delta to a user's entry, creating the entry if needed.

        predicted_fixtures is an absolute count when given.
        """
        entry = LeaderboardEntry.get(user_id, organization_id, season)
        if entry is None:
            entry = LeaderboardEntry(
                user_id=user_id,
                organization_id=organization_id,
                season=season,
                total_points=0,
                correct_scorelines=0,
                correct_outcomes=0,
                predicted_fixtures=0,
                completed_fixtures=0,
            )
            db.session.add(entry)

        entry.total_points = (entry.total_points or 0) + points
        entry.correct_scorelines = max(0, (entry.correct_scorelines or 0) + correct_scorelines)
        entry.correct_outcomes = max(0, (entry.correct_outcomes or 0) + correct_outcomes)
        entry.completed_fixtures = max(0, (entry.completed_fixtures or 0) + completed_fixtures)
        if predicted_fixtures is not None:
            entry.predicted_fixtures = predicted_fixtures
        entry.last_updated = datetime.now(timezone.utc)
        return entry

    @staticmethod
    def replace_all(organization_id, season, stats):
        """Write absolute totals from a full recomputation.

        stats maps user_id -> UserStats. Rows for users missing from stats are
        deleted. The caller owns the commit so the swap is all-or-nothing.
        """
        now = datetime.now(timezone.utc)
        existing = {
            entry.user_id: entry
            for entry in LeaderboardEntry.query.filter_by(
                organization_id=organization_id, season=season
            ).all()
        }

        for user_id, entry in existing.items():
            if user_id not in stats:
                db.session.delete(entry)

        for user_id, user_stats in stats.items():
            entry = existing.get(user_id)
            if entry is None:
                entry = LeaderboardEntry(
                    user_id=user_id, organization_id=organization_id, season=season
                )
                db.session.add(entry)
            entry.total_points = user_stats.total_points
            entry.correct_scorelines = user_stats.correct_scorelines
            entry.correct_outcomes = user_stats.correct_outcomes
            entry.predicted_fixtures = user_stats.predicted_fixtures
            entry.completed_fixtures = user_stats.completed_fixtures
            entry.last_updated = now

    @staticmethod
    def list_for_leaderboard(organization_id, season):
        return LeaderboardEntry.query.filter_by(
            organization_id=organization_id, season=season
        ).all()

    @staticmethod
    def list_ranked(organization_id, season):
        """Entries in leaderboard order, read straight from storage"""
        from predictor.utils.scoring import ranking_key

        entries = LeaderboardEntry.list_for_leaderboard(organization_id, season)
        return sorted(
            entries,
            key=lambda e: ranking_key(
                e.total_points,
                e.correct_scorelines,
                e.correct_outcomes,
                e.user.full_name if e.user else None,
                e.user_id,
            ),
        )
