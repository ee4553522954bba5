"""
Test factories for creating consistent test data.
"""
from datetime import datetime, timedelta, timezone

import factory
from factory.alchemy import SQLAlchemyModelFactory

from predictor import db
from predictor.models import Fixture, FixtureStatus, Organization, Prediction, Team, User

SEASON = "2025-26"


class BaseFactory(SQLAlchemyModelFactory):
    class Meta:
        abstract = True
        sqlalchemy_session = db.session
        sqlalchemy_session_persistence = "commit"


class OrganizationFactory(BaseFactory):
    class Meta:
        model = Organization

    name = factory.Sequence(lambda n: f"League {n}")
    slug = factory.Sequence(lambda n: f"league-{n}")
    is_active = True


class UserFactory(BaseFactory):
    class Meta:
        model = User

    username = factory.Sequence(lambda n: f"user{n}")
    display_name = factory.LazyAttribute(lambda obj: obj.username.title())
    email = factory.LazyAttribute(lambda obj: f"{obj.username}@example.com")


class TeamFactory(BaseFactory):
    class Meta:
        model = Team

    name = factory.Sequence(lambda n: f"Team {n} FC")
    short_name = factory.Sequence(lambda n: f"T{n}")


class FixtureFactory(BaseFactory):
    """Finished 2-1 home win from yesterday unless told otherwise."""

    class Meta:
        model = Fixture

    season = SEASON
    week_id = 1
    home_team = factory.SubFactory(TeamFactory)
    away_team = factory.SubFactory(TeamFactory)
    match_date = factory.LazyFunction(
        lambda: datetime.now(timezone.utc).replace(microsecond=0) - timedelta(days=1)
    )
    status = FixtureStatus.FINISHED
    home_score = 2
    away_score = 1
    points_multiplier = 1


class PredictionFactory(BaseFactory):
    class Meta:
        model = Prediction

    user = factory.SubFactory(UserFactory)
    organization = factory.SubFactory(OrganizationFactory)
    fixture = factory.SubFactory(FixtureFactory)
    predicted_home_score = 1
    predicted_away_score = 0
    points = None
