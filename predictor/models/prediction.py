from datetime import datetime, timezone

from sqlalchemy import func

from predictor import db


class Prediction(db.Model):
    __tablename__ = "predictions"

    id = db.Column(db.Integer, primary_key=True)

    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)
    organization_id = db.Column(
        db.Integer, db.ForeignKey("organizations.id"), nullable=False
    )
    fixture_id = db.Column(db.Integer, db.ForeignKey("fixtures.id"), nullable=False)

    predicted_home_score = db.Column(db.Integer, nullable=False)
    predicted_away_score = db.Column(db.Integer, nullable=False)

    # NULL until the fixture is finished and scored
    points = db.Column(db.Integer, nullable=True)

    created_at = db.Column(db.DateTime, default=lambda: datetime.now(timezone.utc))
    updated_at = db.Column(
        db.DateTime,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    __table_args__ = (
        db.UniqueConstraint(
            "user_id",
            "fixture_id",
            "organization_id",
            name="unique_user_fixture_organization_prediction",
        ),
        db.Index("idx_prediction_user_org", "user_id", "organization_id"),
        db.Index("idx_prediction_org_fixture", "organization_id", "fixture_id"),
        db.Index("idx_prediction_fixture", "fixture_id"),
        db.CheckConstraint(
            "predicted_home_score >= 0 AND predicted_away_score >= 0",
            name="non_negative_prediction",
        ),
    )

    def __repr__(self):
        return (
            f"<Prediction user_id={self.user_id} fixture_id={self.fixture_id} "
            f"{self.predicted_home_score}-{self.predicted_away_score} points={self.points}>"
        )

    def set_points(self, points):
        """Store computed points for this prediction"""
        self.points = points
        self.updated_at = datetime.now(timezone.utc)

    @staticmethod
    def list_for_fixture(fixture_id):
        return Prediction.query.filter_by(fixture_id=fixture_id).order_by(Prediction.id).all()

    @staticmethod
    def distinct_users(organization_id, season):
        """Ids of users with at least one prediction in this organization/season"""
        from .fixture import Fixture

        rows = (
            db.session.query(Prediction.user_id)
            .join(Fixture, Prediction.fixture_id == Fixture.id)
            .filter(
                Prediction.organization_id == organization_id,
                Fixture.season == season,
            )
            .distinct()
            .order_by(Prediction.user_id)
            .all()
        )
        return [row.user_id for row in rows]

    @staticmethod
    def list_with_fixtures(organization_id, season):
        """(prediction, fixture) pairs for an organization/season in one query"""
        from .fixture import Fixture

        return (
            db.session.query(Prediction, Fixture)
            .join(Fixture, Prediction.fixture_id == Fixture.id)
            .filter(
                Prediction.organization_id == organization_id,
                Fixture.season == season,
            )
            .order_by(Prediction.user_id, Fixture.match_date, Prediction.id)
            .all()
        )

    @staticmethod
    def count_for_user(user_id, organization_id, season):
        from .fixture import Fixture

        return (
            db.session.query(func.count(Prediction.id))
            .join(Fixture, Prediction.fixture_id == Fixture.id)
            .filter(
                Prediction.user_id == user_id,
                Prediction.organization_id == organization_id,
                Fixture.season == season,
            )
            .scalar()
        ) or 0

    @staticmethod
    def points_by_user(organization_id, season):
        """Sum of stored points per user: {user_id: total}. Unscored rows count as 0."""
        from .fixture import Fixture

        rows = (
            db.session.query(
                Prediction.user_id,
                func.coalesce(func.sum(Prediction.points), 0).label("total"),
            )
            .join(Fixture, Prediction.fixture_id == Fixture.id)
            .filter(
                Prediction.organization_id == organization_id,
                Fixture.season == season,
            )
            .group_by(Prediction.user_id)
            .all()
        )
        return {row.user_id: int(row.total) for row in rows}

    def to_dict(self):
        return {
            "id": self.id,
            "user_id": self.user_id,
            "organization_id": self.organization_id,
            "fixture_id": self.fixture_id,
            "predicted_home_score": self.predicted_home_score,
            "predicted_away_score": self.predicted_away_score,
            "points": self.points,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
