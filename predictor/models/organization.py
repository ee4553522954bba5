from datetime import datetime, timezone

from predictor import db


class Organization(db.Model):
    """A prediction league. Each organization keeps its own leaderboard per season."""

    __tablename__ = "organizations"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(100), nullable=False)
    slug = db.Column(db.String(64), unique=True, nullable=False, index=True)
    is_active = db.Column(db.Boolean, default=True)

    created_at = db.Column(db.DateTime, default=lambda: datetime.now(timezone.utc))

    predictions = db.relationship(
        "Prediction", backref="organization", lazy="dynamic"
    )

    __table_args__ = (db.Index("idx_organization_active", "is_active"),)

    def __repr__(self):
        return f"<Organization {self.slug}>"

    @staticmethod
    def list_ids():
        """Every known organization id, in a stable order"""
        rows = db.session.query(Organization.id).order_by(Organization.id).all()
        return [row.id for row in rows]

    def to_dict(self):
        return {
            "id": self.id,
            "name": self.name,
            "slug": self.slug,
            "is_active": self.is_active,
        }
