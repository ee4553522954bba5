from predictor import db


class Team(db.Model):
    __tablename__ = "teams"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(100), nullable=False)
    short_name = db.Column(db.String(10), nullable=False, index=True)
    external_id = db.Column(db.String(20), unique=True, index=True)

    home_fixtures = db.relationship(
        "Fixture",
        foreign_keys="Fixture.home_team_id",
        backref=db.backref("home_team", lazy="joined"),
        lazy="dynamic",
    )
    away_fixtures = db.relationship(
        "Fixture",
        foreign_keys="Fixture.away_team_id",
        backref=db.backref("away_team", lazy="joined"),
        lazy="dynamic",
    )

    def __repr__(self):
        return f"<Team {self.short_name}>"

    def to_dict(self):
        return {"id": self.id, "name": self.name, "short_name": self.short_name}
