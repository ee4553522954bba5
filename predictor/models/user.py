from datetime import datetime, timezone

from predictor import db


class User(db.Model):
    __tablename__ = "users"

    id = db.Column(db.Integer, primary_key=True)
    username = db.Column(db.String(80), unique=True, nullable=False, index=True)
    display_name = db.Column(db.String(100))
    email = db.Column(db.String(120), unique=True, index=True)

    created_at = db.Column(db.DateTime, default=lambda: datetime.now(timezone.utc))

    predictions = db.relationship(
        "Prediction", backref="user", lazy="dynamic", cascade="all, delete-orphan"
    )

    def __repr__(self):
        return f"<User {self.username}>"

    @property
    def full_name(self):
        """Return display name or username"""
        return self.display_name or self.username

    def to_dict(self):
        return {
            "id": self.id,
            "username": self.username,
            "display_name": self.full_name,
        }
