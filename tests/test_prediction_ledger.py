from datetime import datetime, timedelta, timezone

from sqlalchemy import text

from predictor.models import FixtureStatus, LeaderboardEntry
from predictor.utils.timezone_utils import ensure_utc

from tests.factories import FixtureFactory, PredictionFactory


def _entry(user, organization, season):
    return LeaderboardEntry.get(user.id, organization.id, season)


def _predict(users, organization, fixture, scorelines):
    return [
        PredictionFactory(
            user=user,
            organization=organization,
            fixture=fixture,
            predicted_home_score=home,
            predicted_away_score=away,
        )
        for user, (home, away) in zip(users, scorelines)
    ]


def test_score_fixture_awards_points_with_multiplier(engine, organization, users, season):
    fixture = FixtureFactory(home_score=2, away_score=1, points_multiplier=2)
    u1, u2, u3 = users
    p1, p2, p3 = _predict(users, organization, fixture, [(2, 1), (1, 0), (0, 2)])

    result = engine.ledger.score_fixture(fixture.id)

    assert result.success
    assert result.processed_count == 3
    assert result.points_allocated == 8
    assert result.users_affected == 3
    assert result.organizations == [organization.id]
    assert result.errors == []
    assert [p1.points, p2.points, p3.points] == [6, 2, 0]

    entry = _entry(u1, organization, season)
    assert entry.total_points == 6
    assert entry.correct_scorelines == 1
    assert entry.correct_outcomes == 0
    assert entry.completed_fixtures == 1
    assert entry.predicted_fixtures == 1

    entry = _entry(u2, organization, season)
    assert (entry.total_points, entry.correct_scorelines, entry.correct_outcomes) == (2, 0, 1)
    assert _entry(u3, organization, season).total_points == 0


def test_score_fixture_is_idempotent(engine, organization, users, season):
    fixture = FixtureFactory(home_score=2, away_score=1, points_multiplier=2)
    predictions = _predict(users, organization, fixture, [(2, 1), (1, 0), (0, 2)])

    engine.ledger.score_fixture(fixture.id)
    first_points = [p.points for p in predictions]
    first_entries = [
        (e.total_points, e.correct_scorelines, e.correct_outcomes, e.completed_fixtures)
        for e in (_entry(u, organization, season) for u in users)
    ]

    second = engine.ledger.score_fixture(fixture.id)

    assert second.success
    assert [p.points for p in predictions] == first_points
    assert [
        (e.total_points, e.correct_scorelines, e.correct_outcomes, e.completed_fixtures)
        for e in (_entry(u, organization, season) for u in users)
    ] == first_entries


def test_score_fixture_skips_missing_score(engine, organization, users):
    fixture = FixtureFactory(status=FixtureStatus.FINISHED, home_score=None, away_score=1)
    predictions = _predict(users, organization, fixture, [(2, 1), (1, 0), (0, 2)])

    result = engine.ledger.score_fixture(fixture.id)

    assert result.processed_count == 0
    assert result.points_allocated == 0
    assert all(p.points is None for p in predictions)
    assert LeaderboardEntry.query.count() == 0


def test_score_fixture_skips_unfinished_fixture(engine, organization, users):
    fixture = FixtureFactory(status=FixtureStatus.IN_PLAY, home_score=1, away_score=0)
    predictions = _predict(users, organization, fixture, [(1, 0), (1, 0), (1, 0)])

    result = engine.ledger.score_fixture(fixture.id)

    assert result.processed_count == 0
    assert all(p.points is None for p in predictions)


def test_score_fixture_unknown_fixture(engine):
    result = engine.ledger.score_fixture(9999)

    assert result.processed_count == 0
    assert "not found" in result.message


def _reject_updates(db, table, column, row_id):
    """Make the database itself refuse writes to one row"""
    db.session.execute(
        text(
            f"CREATE TRIGGER reject_{table} BEFORE UPDATE OF {column} ON {table} "
            f"WHEN NEW.id = {int(row_id)} BEGIN SELECT RAISE(ABORT, 'row locked'); END"
        )
    )
    db.session.commit()


def test_score_fixture_collects_per_prediction_errors(engine, db, organization, users, season):
    fixture = FixtureFactory(home_score=2, away_score=1)
    p1, p2, p3 = _predict(users, organization, fixture, [(2, 1), (1, 0), (2, 0)])
    _reject_updates(db, "predictions", "points", p2.id)

    result = engine.ledger.score_fixture(fixture.id)

    assert result.success
    assert result.processed_count == 2
    assert len(result.errors) == 1
    assert "row locked" in result.errors[0]

    db.session.expire_all()
    assert [p1.points, p2.points, p3.points] == [3, None, 1]
    assert _entry(users[0], organization, season).total_points == 3
    assert _entry(users[1], organization, season) is None
    assert _entry(users[2], organization, season).total_points == 1


def test_score_fixture_collects_per_entry_errors(engine, db, organization, users, season):
    fixture = FixtureFactory(home_score=2, away_score=1)
    _predict(users[:2], organization, fixture, [(2, 1), (1, 0)])
    engine.ledger.score_fixture(fixture.id)
    locked = _entry(users[0], organization, season)
    _reject_updates(db, "leaderboard_entries", "total_points", locked.id)

    second = FixtureFactory(home_score=0, away_score=0)
    _predict(users[:2], organization, second, [(0, 0), (0, 0)])
    result = engine.ledger.score_fixture(second.id)

    assert result.processed_count == 2
    assert len(result.errors) == 1
    assert f"user {users[0].id}" in result.errors[0]

    db.session.expire_all()
    assert _entry(users[0], organization, season).total_points == 3
    assert _entry(users[1], organization, season).total_points == 4


def test_score_fixture_records_observed_game_time(engine, organization, users, season):
    fixture = FixtureFactory()
    _predict(users[:1], organization, fixture, [(2, 1)])

    engine.ledger.score_fixture(fixture.id)

    meta = engine.cache.get_meta(organization.id, season)
    assert ensure_utc(meta["observed_game_time"]) == ensure_utc(fixture.match_date)


def test_repair_unprocessed_scores_recent_fixtures(engine, organization, users, season):
    recent = FixtureFactory(home_score=2, away_score=1, points_multiplier=2)
    old = FixtureFactory(
        home_score=1,
        away_score=0,
        match_date=datetime.now(timezone.utc) - timedelta(days=10),
    )
    recent_predictions = _predict(users, organization, recent, [(2, 1), (1, 0), (0, 2)])
    (old_prediction,) = _predict(users[:1], organization, old, [(1, 0)])

    report = engine.ledger.repair_unprocessed(lookback_days=7)

    assert report.success
    assert report.fixtures_checked == 1
    assert report.predictions_fixed == 3
    assert report.points_awarded == 8
    assert report.organizations == [organization.id]
    assert [p.points for p in recent_predictions] == [6, 2, 0]
    assert old_prediction.points is None
    assert _entry(users[0], organization, season).total_points == 6


def test_repair_fixes_predictions_stuck_at_zero(engine, db, organization, users):
    fixture = FixtureFactory(home_score=2, away_score=1)
    (stuck,) = _predict(users[:1], organization, fixture, [(2, 1)])
    stuck.points = 0
    db.session.commit()

    report = engine.ledger.repair_unprocessed(lookback_days=7)

    assert report.predictions_fixed == 1
    assert report.points_awarded == 3
    assert stuck.points == 3


def test_repair_leaves_correct_predictions_alone(engine, organization, users):
    fixture = FixtureFactory(home_score=2, away_score=1)
    _predict(users, organization, fixture, [(2, 1), (1, 0), (0, 2)])
    engine.ledger.score_fixture(fixture.id)

    report = engine.ledger.repair_unprocessed(lookback_days=7)

    # The 0-point miss makes the fixture a candidate but nothing changes
    assert report.fixtures_checked == 1
    assert report.predictions_fixed == 0
    assert report.points_awarded == 0


def test_repair_fixture_ignores_window(engine, organization, users):
    fixture = FixtureFactory(
        home_score=0,
        away_score=0,
        match_date=datetime.now(timezone.utc) - timedelta(days=60),
    )
    (prediction,) = _predict(users[:1], organization, fixture, [(1, 1)])

    report = engine.ledger.repair_fixture(fixture.id)

    assert report.success
    assert report.predictions_fixed == 1
    assert prediction.points == 1


def test_repair_fixture_rejects_unfinished(engine):
    fixture = FixtureFactory(status=FixtureStatus.TIMED, home_score=None, away_score=None)

    report = engine.ledger.repair_fixture(fixture.id)

    assert not report.success
    assert "not finished" in report.message
