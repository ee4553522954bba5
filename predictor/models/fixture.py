from datetime import datetime, timezone

from predictor import db


class FixtureStatus:
    """Match status values as reported by the football-data feed"""

    SCHEDULED = "SCHEDULED"
    TIMED = "TIMED"
    IN_PLAY = "IN_PLAY"
    PAUSED = "PAUSED"
    FINISHED = "FINISHED"
    POSTPONED = "POSTPONED"
    CANCELLED = "CANCELLED"
    SUSPENDED = "SUSPENDED"
    AWARDED = "AWARDED"

    ALL = frozenset(
        {
            SCHEDULED,
            TIMED,
            IN_PLAY,
            PAUSED,
            FINISHED,
            POSTPONED,
            CANCELLED,
            SUSPENDED,
            AWARDED,
        }
    )
    LIVE = frozenset({IN_PLAY, PAUSED})
    # Only a finished match carries a result that predictions are scored against
    SCOREABLE = frozenset({FINISHED})

    @classmethod
    def normalize(cls, status):
        """Upper-case a status string and reject unknown values"""
        value = (status or "").strip().upper()
        if value not in cls.ALL:
            raise ValueError(f"Unknown fixture status: {status!r}")
        return value


class Fixture(db.Model):
    __tablename__ = "fixtures"

    id = db.Column(db.Integer, primary_key=True)

    # Fixture identification (fixtures are global, not per organization)
    match_id = db.Column(db.String(50), unique=True, index=True)
    season = db.Column(db.String(20), nullable=False)
    week_id = db.Column(db.Integer, nullable=False)

    home_team_id = db.Column(db.Integer, db.ForeignKey("teams.id"), nullable=False)
    away_team_id = db.Column(db.Integer, db.ForeignKey("teams.id"), nullable=False)

    match_date = db.Column(db.DateTime, nullable=False)

    status = db.Column(db.String(20), nullable=False, default=FixtureStatus.TIMED)
    home_score = db.Column(db.Integer)
    away_score = db.Column(db.Integer)

    points_multiplier = db.Column(db.Integer, nullable=False, default=1)

    last_updated = db.Column(
        db.DateTime,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    predictions = db.relationship(
        "Prediction", backref="fixture", lazy="dynamic", cascade="all, delete-orphan"
    )

    __table_args__ = (
        db.Index("idx_fixture_season_status", "season", "status"),
        db.Index("idx_fixture_season_week", "season", "week_id"),
        db.Index("idx_fixture_status_match_date", "status", "match_date"),
        db.CheckConstraint("points_multiplier >= 1", name="positive_multiplier"),
        db.CheckConstraint("home_team_id != away_team_id", name="different_teams"),
    )

    def __repr__(self):
        return f"<Fixture {self.id} {self.season} week {self.week_id} {self.status}>"

    @property
    def is_finished(self):
        return self.status in FixtureStatus.SCOREABLE

    @property
    def has_result(self):
        return self.home_score is not None and self.away_score is not None

    @property
    def is_scoreable(self):
        """Finished with both scores present; anything less is partial feed data"""
        return self.is_finished and self.has_result

    @property
    def multiplier(self):
        return self.points_multiplier or 1

    def update_result(self, home_score, away_score, status):
        """Record a score/status update from the data feed.

        Returns True when predictions need (re)scoring: the fixture just became
        scoreable, or its final score was corrected after it finished.
        """
        status = FixtureStatus.normalize(status)
        was_scoreable = self.is_scoreable
        previous_result = (self.home_score, self.away_score)

        self.home_score = home_score
        self.away_score = away_score
        self.status = status
        self.last_updated = datetime.now(timezone.utc)

        if not self.is_scoreable:
            return False
        return not was_scoreable or previous_result != (home_score, away_score)

    @staticmethod
    def list_for_season(season):
        """All fixtures of a season ordered by kickoff"""
        return (
            Fixture.query.filter_by(season=season)
            .order_by(Fixture.match_date, Fixture.id)
            .all()
        )

    @staticmethod
    def finished_since(cutoff):
        """Finished fixtures with a result whose kickoff is at or after cutoff"""
        return (
            Fixture.query.filter(
                Fixture.status.in_(FixtureStatus.SCOREABLE),
                Fixture.home_score.isnot(None),
                Fixture.away_score.isnot(None),
                Fixture.match_date >= cutoff,
            )
            .order_by(Fixture.match_date, Fixture.id)
            .all()
        )

    def to_dict(self):
        from predictor.utils.timezone_utils import convert_to_app_timezone

        local_kickoff = convert_to_app_timezone(self.match_date)
        return {
            "id": self.id,
            "match_id": self.match_id,
            "season": self.season,
            "week_id": self.week_id,
            "home_team": self.home_team.to_dict() if self.home_team else None,
            "away_team": self.away_team.to_dict() if self.away_team else None,
            "match_date": local_kickoff.isoformat() if local_kickoff else None,
            "status": self.status,
            "home_score": self.home_score,
            "away_score": self.away_score,
            "points_multiplier": self.multiplier,
        }
