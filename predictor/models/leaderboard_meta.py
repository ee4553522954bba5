from datetime import datetime, timezone

from predictor import db


class LeaderboardMeta(db.Model):
    """Bookkeeping for one organization/season leaderboard. Never deleted."""

    __tablename__ = "leaderboard_meta"

    UPDATABLE_FIELDS = (
        "last_leaderboard_update",
        "last_game_time",
        "total_matches",
        "finished_matches",
        "is_calculating",
    )

    id = db.Column(db.Integer, primary_key=True)
    organization_id = db.Column(
        db.Integer, db.ForeignKey("organizations.id"), nullable=False
    )
    season = db.Column(db.String(20), nullable=False)

    last_leaderboard_update = db.Column(db.DateTime)
    last_game_time = db.Column(db.DateTime)
    total_matches = db.Column(db.Integer, nullable=False, default=0)
    finished_matches = db.Column(db.Integer, nullable=False, default=0)
    is_calculating = db.Column(db.Boolean, nullable=False, default=False)

    created_at = db.Column(db.DateTime, default=lambda: datetime.now(timezone.utc))
    updated_at = db.Column(
        db.DateTime,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    __table_args__ = (
        db.UniqueConstraint("organization_id", "season", name="unique_meta_org_season"),
    )

    def __repr__(self):
        return f"<LeaderboardMeta org={self.organization_id} season={self.season}>"

    @staticmethod
    def get(organization_id, season):
        return LeaderboardMeta.query.filter_by(
            organization_id=organization_id, season=season
        ).first()

    @staticmethod
    def upsert(organization_id, season, **fields):
        """Create or update the meta row, touching only the given fields"""
        unknown = set(fields) - set(LeaderboardMeta.UPDATABLE_FIELDS)
        if unknown:
            raise ValueError(f"Unknown leaderboard meta fields: {sorted(unknown)}")

        meta = LeaderboardMeta.get(organization_id, season)
        if meta is None:
            meta = LeaderboardMeta(organization_id=organization_id, season=season)
            db.session.add(meta)

        for name, value in fields.items():
            setattr(meta, name, value)
        meta.updated_at = datetime.now(timezone.utc)
        return meta

    def to_dict(self):
        from predictor.utils.timezone_utils import to_iso

        return {
            "organization_id": self.organization_id,
            "season": self.season,
            "last_leaderboard_update": to_iso(self.last_leaderboard_update),
            "last_game_time": to_iso(self.last_game_time),
            "total_matches": self.total_matches,
            "finished_matches": self.finished_matches,
            "is_calculating": self.is_calculating,
        }
