from functools import wraps

from flask import jsonify, request

from predictor import db, limiter, services
from predictor.exceptions import FixtureNotFound
from predictor.models import Fixture, Organization
from predictor.routes.api import bp

TRUE_VALUES = {"1", "true", "yes", "on"}


def no_store(f):
    """Leaderboard responses must not be cached by clients or proxies"""

    @wraps(f)
    def decorated_function(*args, **kwargs):
        response = f(*args, **kwargs)
        if isinstance(response, tuple):
            body = response[0]
        else:
            body = response
        if hasattr(body, "headers"):
            body.headers["Cache-Control"] = "no-store, no-cache, must-revalidate, max-age=0"
        return response

    return decorated_function


def _flag(name, default=False):
    value = request.args.get(name)
    if value is None:
        return default
    return value.strip().lower() in TRUE_VALUES


def _organization_or_404(organization_id):
    return db.get_or_404(Organization, organization_id)


@bp.route("/leaderboards/<int:organization_id>/<season>")
@no_store
def leaderboard(organization_id, season):
    """Ranked leaderboard for an organization and season"""
    _organization_or_404(organization_id)
    rows = services.get_leaderboard(organization_id, season)
    return jsonify(
        {
            "organization_id": organization_id,
            "season": season,
            "total_users": len(rows),
            "entries": [row.to_dict() for row in rows],
        }
    )


@bp.route("/leaderboards/<int:organization_id>/<season>/recalculate", methods=["POST"])
@limiter.limit("30 per hour")
def recalculate_leaderboard(organization_id, season):
    _organization_or_404(organization_id)
    result = services.recalculate_leaderboard(
        organization_id, season, force=_flag("force")
    )
    # Contention is an expected outcome, reported with 409 so callers retry later
    status = 200 if result.success else 409
    return jsonify(result.to_dict()), status


@bp.route("/leaderboards/<season>/recalculate-all", methods=["POST"])
@limiter.limit("10 per hour")
def recalculate_all_leaderboards(season):
    results = services.recalculate_all_leaderboards(season, force=_flag("force"))
    return jsonify(
        {
            "season": season,
            "total": len(results),
            "succeeded": sum(1 for r in results if r.success),
            "results": [r.to_dict() for r in results],
        }
    )


@bp.route("/leaderboards/<int:organization_id>/<season>/status")
@no_store
def leaderboard_status(organization_id, season):
    _organization_or_404(organization_id)
    return jsonify(services.leaderboard_status(organization_id, season))


@bp.route("/fixtures/<int:fixture_id>/score", methods=["POST"])
@limiter.limit("60 per hour")
def score_fixture(fixture_id):
    """Score predictions for a finished fixture"""
    db.get_or_404(Fixture, fixture_id)
    result = services.score_fixture(fixture_id)
    return jsonify(result.to_dict()), 200 if result.success else 500


@bp.route("/fixtures/<int:fixture_id>/result", methods=["POST"])
@limiter.limit("120 per hour")
def fixture_result(fixture_id):
    """Ingest a score/status update for a fixture"""
    data = request.get_json(silent=True) or {}

    status = data.get("status")
    if not status:
        return jsonify({"error": "status is required"}), 400

    try:
        home_score = _optional_score(data.get("home_score"))
        away_score = _optional_score(data.get("away_score"))
        process_result, recalculations = services.apply_fixture_update(
            fixture_id, home_score, away_score, status
        )
    except FixtureNotFound as e:
        return jsonify({"error": str(e)}), 404
    except ValueError as e:
        return jsonify({"error": str(e)}), 400

    fixture = db.session.get(Fixture, fixture_id)
    return jsonify(
        {
            "fixture": fixture.to_dict(),
            "scored": process_result.to_dict() if process_result else None,
            "recalculations": [r.to_dict() for r in recalculations],
        }
    )


def _optional_score(value):
    if value is None:
        return None
    if isinstance(value, bool):
        raise ValueError("Scores must be non-negative integers")
    try:
        score = int(value)
    except (TypeError, ValueError):
        raise ValueError("Scores must be non-negative integers")
    if score < 0:
        raise ValueError("Scores must be non-negative integers")
    return score


def _integrity_report(season, auto_fix):
    threshold = request.args.get("threshold", type=int)
    if threshold is not None and threshold < 0:
        return jsonify({"error": "threshold must be non-negative"}), 400

    report = services.check_integrity(season, auto_fix=auto_fix, threshold=threshold)
    return jsonify(report.to_dict())


@bp.route("/integrity/<season>")
def integrity(season):
    """Report drift between leaderboard entries and prediction points"""
    return _integrity_report(season, auto_fix=False)


@bp.route("/integrity/<season>/fix", methods=["POST"])
@limiter.limit("10 per hour")
def fix_integrity(season):
    """Report drift and recalculate every organization that has any"""
    return _integrity_report(season, auto_fix=True)


@bp.route("/maintenance/repair", methods=["POST"])
@limiter.limit("10 per hour")
def repair_predictions():
    days = request.args.get("days", type=int)
    if days is not None and days <= 0:
        return jsonify({"error": "days must be a positive integer"}), 400

    report = services.repair_unprocessed_predictions(days)
    return jsonify(report.to_dict()), 200 if report.success else 500
