from predictor import db  # noqa: F401 - imported for model imports

from .fixture import Fixture, FixtureStatus
from .leaderboard_entry import LeaderboardEntry
from .leaderboard_meta import LeaderboardMeta
from .organization import Organization
from .prediction import Prediction
from .team import Team
from .user import User

__all__ = [
    "Organization",
    "User",
    "Team",
    "Fixture",
    "FixtureStatus",
    "Prediction",
    "LeaderboardEntry",
    "LeaderboardMeta",
]
