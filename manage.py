#!/usr/bin/env python3
"""
Score Predictor Management CLI

Leaderboard maintenance from the command line: recalculation, fixture
scoring, repair and integrity checks.
"""

import logging

import click
from flask import current_app
from flask.cli import with_appcontext
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from predictor import create_app, db, services
from predictor.exceptions import PredictorError
from predictor.models import Fixture, LeaderboardEntry, Organization, Prediction, User
from predictor.utils.cache_utils import get_cache_stats


def _season_option(f):
    return click.option(
        "--season",
        default=None,
        help="Season, e.g. 2025-26 (default: CURRENT_SEASON)",
    )(f)


def _resolve_season(season):
    season = season or current_app.config.get("CURRENT_SEASON")
    if not season:
        raise click.UsageError("No season given and CURRENT_SEASON is not configured")
    return season


def _echo_recalculation(result):
    icon = "✅" if result.success else "⚠️ "
    source = " (from cache)" if result.from_cache else ""
    click.echo(
        f"{icon} Org {result.organization_id}: {result.message}{source} "
        f"[{result.users_updated} users, {result.finished_matches}/{result.total_matches} "
        f"matches finished]"
    )


@click.group()
def cli():
    """Score Predictor Management CLI"""
    pass


# Leaderboard Commands
@cli.group()
def leaderboard():
    """Leaderboard commands"""
    pass


@leaderboard.command()
@click.argument("organization_id", type=int)
@_season_option
@click.option("--force", is_flag=True, help="Recalculate even if the cache is fresh")
@with_appcontext
def recalc(organization_id, season, force):
    """Recalculate one organization's leaderboard"""
    season = _resolve_season(season)
    if db.session.get(Organization, organization_id) is None:
        click.echo(f"❌ Organization {organization_id} not found!")
        return

    result = services.recalculate_leaderboard(organization_id, season, force=force)
    _echo_recalculation(result)


@leaderboard.command("recalc-all")
@_season_option
@click.option("--force", is_flag=True, help="Recalculate even if caches are fresh")
@with_appcontext
def recalc_all(season, force):
    """Recalculate every organization's leaderboard"""
    season = _resolve_season(season)
    results = services.recalculate_all_leaderboards(season, force=force)

    if not results:
        click.echo("No organizations found.")
        return

    for result in results:
        _echo_recalculation(result)

    succeeded = sum(1 for r in results if r.success)
    click.echo(f"\n🏆 {succeeded}/{len(results)} leaderboards recalculated for {season}")


@leaderboard.command()
@click.argument("organization_id", type=int)
@_season_option
@click.option("--limit", default=20, show_default=True, help="Rows to show")
@with_appcontext
def show(organization_id, season, limit):
    """Show a leaderboard"""
    season = _resolve_season(season)
    rows = services.get_leaderboard(organization_id, season)

    if not rows:
        click.echo(f"No leaderboard data for organization {organization_id} in {season}.")
        return

    click.echo(f"🏆 Leaderboard for organization {organization_id} ({season})")
    click.echo(f"{'#':>3}  {'Name':<24} {'Pts':>5} {'Exact':>6} {'Outc':>5} {'Done':>5}")
    for row in rows[:limit]:
        click.echo(
            f"{row.rank:>3}  {row.display_name[:24]:<24} {row.total_points:>5} "
            f"{row.correct_scorelines:>6} {row.correct_outcomes:>5} "
            f"{row.completed_fixtures:>5}"
        )


@leaderboard.command()
@click.argument("organization_id", type=int)
@_season_option
@with_appcontext
def invalidate(organization_id, season):
    """Drop a cached leaderboard"""
    season = _resolve_season(season)
    services.invalidate_leaderboard(organization_id, season)
    click.echo(f"✅ Cache cleared for organization {organization_id} ({season})")


# Fixture Commands
@cli.group()
def fixtures():
    """Fixture scoring commands"""
    pass


@fixtures.command()
@click.argument("fixture_id", type=int)
@with_appcontext
def score(fixture_id):
    """Score predictions for a finished fixture"""
    result = services.score_fixture(fixture_id)
    icon = "✅" if result.success and not result.errors else "⚠️ "
    click.echo(f"{icon} {result.message}")
    click.echo(
        f"   Predictions: {result.processed_count}, points: {result.points_allocated}, "
        f"users: {result.users_affected}"
    )
    for error in result.errors:
        click.echo(f"   ❌ {error}")


@fixtures.command()
@click.argument("fixture_id", type=int)
@click.argument("home_score", type=int)
@click.argument("away_score", type=int)
@click.option("--status", default="FINISHED", show_default=True, help="Fixture status")
@with_appcontext
def result(fixture_id, home_score, away_score, status):
    """Record a fixture result and update leaderboards"""
    try:
        process_result, recalculations = services.apply_fixture_update(
            fixture_id, home_score, away_score, status
        )
    except ValueError as e:
        click.echo(f"❌ {e}")
        return
    except SQLAlchemyError as e:
        db.session.rollback()
        click.echo(f"❌ Database error updating fixture: {str(e)}")
        logging.error(f"Fixture update failed - SQL error: {e}")
        return
    except PredictorError as e:
        click.echo(f"❌ {e}")
        return

    click.echo(f"✅ Fixture {fixture_id} updated: {home_score}-{away_score} {status.upper()}")
    if process_result:
        click.echo(f"   {process_result.message}")
    for recalculation in recalculations:
        _echo_recalculation(recalculation)


@fixtures.command()
@click.option("--days", type=int, default=None, help="Lookback window in days")
@click.option("--fixture-id", type=int, default=None, help="Repair a single fixture")
@with_appcontext
def repair(days, fixture_id):
    """Fix finished fixtures with unscored or mis-scored predictions"""
    if fixture_id is not None:
        report = services.repair_fixture(fixture_id)
    else:
        report = services.repair_unprocessed_predictions(days)

    icon = "✅" if report.success else "❌"
    click.echo(f"{icon} {report.message}")
    for error in report.errors:
        click.echo(f"   ❌ {error}")


# Integrity Commands
@cli.group()
def integrity():
    """Leaderboard integrity commands"""
    pass


@integrity.command()
@_season_option
@click.option("--auto-fix", is_flag=True, help="Recalculate organizations with drift")
@click.option("--threshold", type=int, default=None, help="Allowed point difference")
@with_appcontext
def check(season, auto_fix, threshold):
    """Compare leaderboard totals with prediction points"""
    season = _resolve_season(season)
    report = services.check_integrity(season, auto_fix=auto_fix, threshold=threshold)

    click.echo(f"🔍 Integrity check for {season}")
    click.echo("=" * 40)
    click.echo(f"Organizations checked: {report.organizations_checked}")

    if report.is_consistent:
        click.echo("✅ All leaderboards match prediction points")
        return

    for mismatch in report.mismatches:
        label = "ghost entry" if mismatch.ghost else f"off by {mismatch.difference}"
        click.echo(
            f"⚠️  Org {mismatch.organization_id} user {mismatch.user_id}: "
            f"stored {mismatch.stored_points}, expected {mismatch.expected_points} ({label})"
        )

    if auto_fix:
        click.echo(
            f"🔧 Fixed {report.fixed_count}/{len(report.affected_organizations)} organizations"
        )


# Database Commands
@cli.group()
def db_cmd():
    """Database commands"""
    pass


@db_cmd.command("init")
@with_appcontext
def init_db():
    """Initialize database tables"""
    try:
        db.create_all()
        click.echo("✅ Database tables created successfully!")
    except SQLAlchemyError as e:
        click.echo(f"❌ Error initializing database: {str(e)}")


@db_cmd.command()
@click.option("--yes", is_flag=True, help="Skip the confirmation prompt")
@with_appcontext
def reset(yes):
    """⚠️  DANGER: Drop and recreate all tables"""
    if not yes and not click.confirm("This will DELETE ALL DATA. Are you sure?"):
        click.echo("Cancelled.")
        return

    try:
        db.drop_all()
        db.create_all()
        click.echo("✅ Database reset successfully!")
    except SQLAlchemyError as e:
        click.echo(f"❌ Error resetting database: {str(e)}")


@cli.command()
@with_appcontext
def status():
    """Show application status"""
    click.echo("⚽ Score Predictor Status")
    click.echo("=" * 40)

    try:
        db.session.execute(text("SELECT 1"))
        click.echo("✅ Database: Connected")
    except SQLAlchemyError as e:
        click.echo(f"❌ Database: Error - {str(e)}")
        return

    season = current_app.config.get("CURRENT_SEASON")
    click.echo(f"📅 Current Season: {season or 'not configured'}")
    cache_stats = get_cache_stats(current_app)
    click.echo(
        f"🗄️  Shared cache: {cache_stats['type']} "
        f"(prefix {cache_stats['key_prefix']!r}, timeout {cache_stats['timeout']}s)"
    )

    click.echo(f"🏢 Organizations: {Organization.query.count()}")
    click.echo(f"👥 Users: {User.query.count()}")
    click.echo(f"🔮 Predictions: {Prediction.query.count()}")

    if season:
        fixture_count = Fixture.query.filter_by(season=season).count()
        finished_count = Fixture.query.filter_by(season=season, status="FINISHED").count()
        click.echo(f"⚽ Fixtures: {finished_count}/{fixture_count} finished")
        entry_count = LeaderboardEntry.query.filter_by(season=season).count()
        click.echo(f"🏆 Leaderboard entries: {entry_count}")


if __name__ == "__main__":
    app = create_app()
    with app.app_context():
        cli()
