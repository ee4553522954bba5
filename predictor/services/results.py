"""
Result objects returned by the leaderboard engine.

Every public service call returns one of these instead of raising, so
callers (API, CLI, scheduler) always get a success flag and a message.
"""

from dataclasses import asdict, dataclass, field, fields
from datetime import date, datetime
from typing import Any, Dict, List, Optional


def serialize_value(value: Any) -> Any:
    """Serialize a value to a JSON-compatible format."""
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if hasattr(value, "to_dict"):
        return value.to_dict()
    if isinstance(value, (list, tuple, set)):
        return [serialize_value(item) for item in value]
    if isinstance(value, dict):
        return {k: serialize_value(v) for k, v in value.items()}
    return value


@dataclass
class BaseResult:
    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        return {k: serialize_value(v) for k, v in data.items()}


@dataclass
class UserStats(BaseResult):
    """Per-user totals accumulated during a full recalculation"""

    user_id: int
    name: str = ""
    total_points: int = 0
    correct_scorelines: int = 0
    correct_outcomes: int = 0
    predicted_fixtures: int = 0
    completed_fixtures: int = 0


@dataclass
class LeaderboardRow(BaseResult):
    """One ranked line of a leaderboard as served to readers"""

    rank: int
    user_id: int
    username: str
    display_name: str
    total_points: int = 0
    correct_scorelines: int = 0
    correct_outcomes: int = 0
    predicted_fixtures: int = 0
    completed_fixtures: int = 0

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "LeaderboardRow":
        known = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in data.items() if k in known})

    @classmethod
    def from_entry(cls, entry, rank: int) -> "LeaderboardRow":
        user = entry.user
        return cls(
            rank=rank,
            user_id=entry.user_id,
            username=user.username if user else "",
            display_name=user.full_name if user else "",
            total_points=entry.total_points,
            correct_scorelines=entry.correct_scorelines,
            correct_outcomes=entry.correct_outcomes,
            predicted_fixtures=entry.predicted_fixtures,
            completed_fixtures=entry.completed_fixtures,
        )


@dataclass
class ProcessResult(BaseResult):
    """Outcome of scoring one fixture's predictions"""

    fixture_id: Optional[int] = None
    success: bool = True
    processed_count: int = 0
    points_allocated: int = 0
    users_affected: int = 0
    organizations: List[int] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)
    message: str = ""


@dataclass
class RepairReport(BaseResult):
    """Outcome of a repair sweep over finished fixtures"""

    success: bool = True
    fixtures_checked: int = 0
    predictions_fixed: int = 0
    points_awarded: int = 0
    organizations: List[int] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)
    message: str = ""


@dataclass
class RecalculationResult(BaseResult):
    """Outcome of one leaderboard recalculation attempt"""

    success: bool
    organization_id: int
    season: str
    users_updated: int = 0
    total_matches: int = 0
    finished_matches: int = 0
    last_game_time: Optional[datetime] = None
    execution_time_ms: int = 0
    from_cache: bool = False
    message: str = ""


@dataclass
class IntegrityMismatch(BaseResult):
    organization_id: int
    user_id: int
    stored_points: int
    expected_points: int
    ghost: bool = False

    @property
    def difference(self) -> int:
        return abs(self.stored_points - self.expected_points)

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data["difference"] = self.difference
        return data


@dataclass
class IntegrityReport(BaseResult):
    season: str
    mismatches: List[IntegrityMismatch] = field(default_factory=list)
    fixed_count: int = 0
    organizations_checked: int = 0
    recalculations: List[RecalculationResult] = field(default_factory=list)

    @property
    def is_consistent(self) -> bool:
        return not self.mismatches

    @property
    def affected_organizations(self) -> List[int]:
        """Organizations with at least one mismatch, deduplicated, in report order"""
        seen = []
        for mismatch in self.mismatches:
            if mismatch.organization_id not in seen:
                seen.append(mismatch.organization_id)
        return seen

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data["mismatches"] = [m.to_dict() for m in self.mismatches]
        data["is_consistent"] = self.is_consistent
        return data
