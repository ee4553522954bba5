"""Exception types raised inside the leaderboard engine.

None of these cross the service boundary: the ledger, aggregator and
integrity checker convert them into result objects.
"""


class PredictorError(Exception):
    """Base class for leaderboard engine errors"""


class CacheTierError(PredictorError):
    """A cache backend failed to read or write"""

    def __init__(self, tier, operation, key, original=None):
        self.tier = tier
        self.operation = operation
        self.key = key
        self.original = original
        super().__init__(f"{tier} cache {operation} failed for {key}: {original}")


class FixtureNotFound(PredictorError):
    def __init__(self, fixture_id):
        self.fixture_id = fixture_id
        super().__init__(f"Fixture {fixture_id} not found")
