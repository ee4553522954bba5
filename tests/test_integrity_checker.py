from predictor.models import LeaderboardEntry

from tests.factories import FixtureFactory, OrganizationFactory, PredictionFactory


def _score_47_points(engine, organization, user):
    """Exact 1-0 at x15 (45) plus a correct home win at x2 (2)."""
    exact = FixtureFactory(home_score=1, away_score=0, points_multiplier=15)
    outcome = FixtureFactory(home_score=2, away_score=0, points_multiplier=2)
    for fixture in (exact, outcome):
        PredictionFactory(
            user=user,
            organization=organization,
            fixture=fixture,
            predicted_home_score=1,
            predicted_away_score=0,
        )
        engine.ledger.score_fixture(fixture.id)


def test_consistent_leaderboard_has_no_mismatches(engine, organization, users, season):
    _score_47_points(engine, organization, users[0])

    report = engine.integrity.check(season)

    assert report.is_consistent
    assert report.organizations_checked == 1
    assert LeaderboardEntry.get(users[0].id, organization.id, season).total_points == 47


def test_detects_drift(engine, db, organization, users, season):
    _score_47_points(engine, organization, users[0])
    entry = LeaderboardEntry.get(users[0].id, organization.id, season)
    entry.total_points = 50
    db.session.commit()

    report = engine.integrity.check(season)

    assert len(report.mismatches) == 1
    mismatch = report.mismatches[0]
    assert mismatch.user_id == users[0].id
    assert mismatch.stored_points == 50
    assert mismatch.expected_points == 47
    assert mismatch.difference == 3
    assert report.fixed_count == 0
    # Detection alone never writes
    assert LeaderboardEntry.get(users[0].id, organization.id, season).total_points == 50


def test_auto_fix_converges(engine, db, organization, users, season):
    _score_47_points(engine, organization, users[0])
    LeaderboardEntry.get(users[0].id, organization.id, season).total_points = 50
    db.session.commit()

    report = engine.integrity.check(season, auto_fix=True)

    assert report.fixed_count == 1
    assert [r.organization_id for r in report.recalculations] == [organization.id]
    assert LeaderboardEntry.get(users[0].id, organization.id, season).total_points == 47
    assert engine.integrity.check(season).is_consistent


def test_threshold_tolerates_small_differences(engine, db, organization, users, season):
    _score_47_points(engine, organization, users[0])
    LeaderboardEntry.get(users[0].id, organization.id, season).total_points = 50
    db.session.commit()

    assert engine.integrity.check(season, threshold=3).is_consistent
    assert not engine.integrity.check(season, threshold=2).is_consistent


def test_missing_entry_is_a_mismatch(engine, db, organization, users, season):
    _score_47_points(engine, organization, users[0])
    db.session.delete(LeaderboardEntry.get(users[0].id, organization.id, season))
    db.session.commit()

    report = engine.integrity.check(season)

    assert [(m.stored_points, m.expected_points) for m in report.mismatches] == [(0, 47)]


def test_ghost_entries_are_flagged_and_removed(engine, db, organization, users, season):
    db.session.add(
        LeaderboardEntry(
            user_id=users[1].id, organization_id=organization.id, season=season, total_points=9
        )
    )
    db.session.commit()

    report = engine.integrity.check(season, auto_fix=True)

    assert len(report.mismatches) == 1
    assert report.mismatches[0].ghost
    assert report.fixed_count == 1
    assert LeaderboardEntry.get(users[1].id, organization.id, season) is None


def test_auto_fix_recalculates_each_organization_once(engine, db, users, season):
    first = OrganizationFactory()
    second = OrganizationFactory()
    clean = OrganizationFactory()
    for organization in (first, second, clean):
        _score_47_points(engine, organization, users[0])
        _score_47_points(engine, organization, users[1])
    for organization in (first, second):
        for user in users[:2]:
            LeaderboardEntry.get(user.id, organization.id, season).total_points += 1
    db.session.commit()

    report = engine.integrity.check(season, auto_fix=True)

    assert len(report.mismatches) == 4
    assert report.organizations_checked == 3
    assert [r.organization_id for r in report.recalculations] == [first.id, second.id]
    assert report.fixed_count == 2


def test_auto_fix_reports_contention(engine, db, organization, users, season):
    _score_47_points(engine, organization, users[0])
    LeaderboardEntry.get(users[0].id, organization.id, season).total_points = 50
    db.session.commit()
    engine.lock.acquire(organization.id, season)

    report = engine.integrity.check(season, auto_fix=True)

    assert report.fixed_count == 0
    assert not report.recalculations[0].success
