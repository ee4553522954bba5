from predictor.models import Fixture, FixtureStatus, LeaderboardEntry

from tests.factories import FixtureFactory, PredictionFactory


def _predict(organization, user, fixture, home, away):
    return PredictionFactory(
        user=user,
        organization=organization,
        fixture=fixture,
        predicted_home_score=home,
        predicted_away_score=away,
    )


class TestLeaderboardEndpoint:
    def test_returns_ranked_entries(self, client, engine, organization, users, season):
        fixture = FixtureFactory(home_score=2, away_score=1, points_multiplier=2)
        _predict(organization, users[0], fixture, 2, 1)
        _predict(organization, users[1], fixture, 1, 0)
        _predict(organization, users[2], fixture, 0, 2)

        response = client.get(f"/api/leaderboards/{organization.id}/{season}")

        assert response.status_code == 200
        assert response.headers["Cache-Control"].startswith("no-store")
        data = response.get_json()
        assert data["total_users"] == 3
        assert [(e["rank"], e["username"], e["total_points"]) for e in data["entries"]] == [
            (1, "alice", 6),
            (2, "bob", 2),
            (3, "cara", 0),
        ]

    def test_unknown_organization_is_404(self, client, db, season):
        response = client.get(f"/api/leaderboards/999/{season}")

        assert response.status_code == 404
        assert response.get_json() == {"error": "Resource not found"}

    def test_empty_leaderboard(self, client, organization, engine, season):
        response = client.get(f"/api/leaderboards/{organization.id}/{season}")

        assert response.status_code == 200
        assert response.get_json()["entries"] == []


class TestRecalculateEndpoint:
    def test_recalculates(self, client, engine, organization, users, season):
        _predict(organization, users[0], FixtureFactory(), 2, 1)

        response = client.post(f"/api/leaderboards/{organization.id}/{season}/recalculate")

        assert response.status_code == 200
        data = response.get_json()
        assert data["success"] is True
        assert data["users_updated"] == 1
        assert data["from_cache"] is False

    def test_contention_is_409(self, client, engine, organization, season):
        engine.lock.acquire(organization.id, season)

        response = client.post(
            f"/api/leaderboards/{organization.id}/{season}/recalculate?force=true"
        )

        assert response.status_code == 409
        assert response.get_json()["message"] == "Another recalculation is in progress"

    def test_recalculate_all(self, client, engine, organization, users, season):
        response = client.post(f"/api/leaderboards/{season}/recalculate-all")

        data = response.get_json()
        assert response.status_code == 200
        assert data["total"] == 1
        assert data["succeeded"] == 1

    def test_status_reports_lock(self, client, engine, organization, season):
        engine.lock.acquire(organization.id, season)

        data = client.get(f"/api/leaderboards/{organization.id}/{season}/status").get_json()

        assert data["is_locked"] is True
        assert data["is_fresh"] is False
        assert data["stored_meta"] is None


class TestFixtureResultEndpoint:
    def test_finishing_a_fixture_scores_and_recalculates(
        self, client, db, engine, organization, users, season
    ):
        fixture = FixtureFactory(status=FixtureStatus.IN_PLAY, home_score=0, away_score=0)
        _predict(organization, users[0], fixture, 1, 0)
        _predict(organization, users[1], fixture, 3, 1)

        response = client.post(
            f"/api/fixtures/{fixture.id}/result",
            json={"status": "finished", "home_score": 1, "away_score": 0},
        )

        assert response.status_code == 200
        data = response.get_json()
        assert data["fixture"]["status"] == "FINISHED"
        assert data["scored"]["processed_count"] == 2
        assert data["scored"]["points_allocated"] == 4
        assert [r["organization_id"] for r in data["recalculations"]] == [organization.id]

        db.session.expire_all()
        assert LeaderboardEntry.get(users[0].id, organization.id, season).total_points == 3
        assert LeaderboardEntry.get(users[1].id, organization.id, season).total_points == 1

    def test_live_update_does_not_score(self, client, db, engine, organization, users):
        fixture = FixtureFactory(status=FixtureStatus.TIMED, home_score=None, away_score=None)
        _predict(organization, users[0], fixture, 1, 0)

        response = client.post(
            f"/api/fixtures/{fixture.id}/result",
            json={"status": "IN_PLAY", "home_score": 1, "away_score": 0},
        )

        data = response.get_json()
        assert response.status_code == 200
        assert data["scored"] is None
        assert data["recalculations"] == []
        db.session.expire_all()
        assert db.session.get(Fixture, fixture.id).status == FixtureStatus.IN_PLAY

    def test_missing_status_is_400(self, client, engine):
        response = client.post("/api/fixtures/1/result", json={"home_score": 1})

        assert response.status_code == 400

    def test_unknown_status_is_400(self, client, engine):
        fixture = FixtureFactory()

        response = client.post(
            f"/api/fixtures/{fixture.id}/result",
            json={"status": "ABANDONED", "home_score": 1, "away_score": 0},
        )

        assert response.status_code == 400
        assert "Unknown fixture status" in response.get_json()["error"]

    def test_negative_score_is_400(self, client, engine):
        fixture = FixtureFactory()

        response = client.post(
            f"/api/fixtures/{fixture.id}/result",
            json={"status": "FINISHED", "home_score": -1, "away_score": 0},
        )

        assert response.status_code == 400

    def test_unknown_fixture_is_404(self, client, engine):
        response = client.post(
            "/api/fixtures/4242/result",
            json={"status": "FINISHED", "home_score": 1, "away_score": 0},
        )

        assert response.status_code == 404

    def test_score_endpoint(self, client, engine, organization, users):
        fixture = FixtureFactory(home_score=1, away_score=1)
        _predict(organization, users[0], fixture, 2, 2)

        response = client.post(f"/api/fixtures/{fixture.id}/score")

        assert response.status_code == 200
        assert response.get_json()["points_allocated"] == 1


class TestMaintenanceEndpoints:
    def test_integrity_reports_and_fixes(self, client, db, engine, organization, users, season):
        fixture = FixtureFactory(home_score=1, away_score=0)
        _predict(organization, users[0], fixture, 1, 0)
        engine.ledger.score_fixture(fixture.id)
        LeaderboardEntry.get(users[0].id, organization.id, season).total_points = 10
        db.session.commit()

        data = client.get(f"/api/integrity/{season}").get_json()
        assert data["is_consistent"] is False
        assert data["mismatches"][0]["difference"] == 7

        # Reads never repair, whatever the query string says
        data = client.get(f"/api/integrity/{season}?auto_fix=1").get_json()
        assert data["fixed_count"] == 0
        assert data["is_consistent"] is False

        response = client.post(f"/api/integrity/{season}/fix")
        assert response.status_code == 200
        assert response.get_json()["fixed_count"] == 1

        assert client.get(f"/api/integrity/{season}").get_json()["is_consistent"] is True

    def test_negative_threshold_is_400(self, client, engine, season):
        assert client.get(f"/api/integrity/{season}?threshold=-1").status_code == 400

    def test_repair(self, client, db, engine, organization, users):
        fixture = FixtureFactory(home_score=1, away_score=0)
        _predict(organization, users[0], fixture, 1, 0)

        response = client.post("/api/maintenance/repair?days=3")

        assert response.status_code == 200
        assert response.get_json()["predictions_fixed"] == 1

    def test_repair_rejects_non_positive_days(self, client, engine):
        assert client.post("/api/maintenance/repair?days=0").status_code == 400
