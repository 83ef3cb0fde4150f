#!/usr/bin/env python3
"""
Pick'em Scoring Management CLI

Command-line operations for the scoring engine: feeding game results,
administrative recomputes, leaderboard inspection and the retry queue.
"""

import logging
import os

import click
from flask.cli import with_appcontext
from flask_migrate import downgrade, migrate, upgrade
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from pickem import create_app, db
from pickem.models import Game, SeasonSummary, User, WorkItem
from pickem.services import leaderboard_service, overrides, work_queue
from pickem.services.aggregation import aggregation_engine
from pickem.services.completion_gate import GameBusy, GameNotReady, completion_gate
from pickem.services.game_feed import UnknownGame, game_feed
from pickem.services.ranking import ranking_engine
from pickem.utils.scoring import InvalidGameData


@click.group()
def cli():
    """Pick'em Scoring Management CLI"""
    pass


# Game Commands
@cli.group()
def game():
    """Game result commands"""
    pass


@game.command("list")
@click.argument("season", type=int)
@click.argument("week", type=int)
@with_appcontext
def list_games(season, week):
    """List a week's games and their resolution state"""
    games = Game.get_games_for_week(season, week)
    if not games:
        click.echo(f"No games for season {season}, week {week}.")
        return

    for g in games:
        state = f"resolved v{g.resolution_version}" if g.is_resolved else g.status
        click.echo(
            f"  #{g.id} {g.away_team} @ {g.home_team}  {g.away_score}-{g.home_score}  "
            f"spread {g.spread}  [{state}]"
        )


@game.command()
@click.argument("game_id", type=int)
@with_appcontext
def show(game_id):
    """Show a game's scores and resolution state"""
    g = db.session.get(Game, game_id)
    if not g:
        click.echo(f"❌ Game {game_id} not found!")
        return

    click.echo(f"🏈 {g.away_team} @ {g.home_team} (Season {g.season}, Week {g.week})")
    click.echo(f"   Spread: {g.spread}  Score: {g.home_score}-{g.away_score}  Status: {g.status}")
    if g.is_resolved:
        click.echo(
            f"   Resolved v{g.resolution_version}: {g.outcome} covers, bonus {g.margin_bonus}"
        )
    else:
        click.echo("   Not resolved")

    counts = g.get_picks_count()
    click.echo(
        f"   Picks: {counts['home']} home / {counts['away']} away, {counts['locks']} locks"
    )


@game.command()
@click.argument("game_id", type=int)
@click.option("--home", "home_score", type=int, help="Home score")
@click.option("--away", "away_score", type=int, help="Away score")
@click.option(
    "--status", type=click.Choice(["scheduled", "in_progress", "completed"]), help="Game status"
)
@with_appcontext
def update(game_id, home_score, away_score, status):
    """Apply a score/status update as the game feed would"""
    try:
        applied = game_feed.apply_update(
            game_id=game_id, home_score=home_score, away_score=away_score, status=status
        )
    except (UnknownGame, ValueError) as e:
        click.echo(f"❌ {e}")
        return

    click.echo(f"✅ Update applied to game {game_id}")
    if applied["resolution"]:
        click.echo(f"   Resolved: {applied['resolution']}")


@game.command()
@click.argument("game_id", type=int)
@with_appcontext
def complete(game_id):
    """Run the completion gate for a game (no-op if already resolved)"""
    report = completion_gate.complete_game(game_id, trigger="manual")
    if report is None:
        click.echo(f"⚪ Game {game_id}: nothing to resolve (already resolved or not ready)")
        return
    click.echo(
        f"✅ Game {game_id} resolved: {report.outcome} covers, bonus {report.bonus}, "
        f"{report.resolved} picks changed"
    )


@game.command()
@click.argument("game_id", type=int)
@click.option("--reason", help="Reason recorded in the audit log")
@click.option("--admin-id", type=int, help="Admin user performing the recompute")
@with_appcontext
def recompute(game_id, reason, admin_id):
    """Re-arm a resolved game and re-run its full resolution"""
    try:
        report = overrides.recompute_game(game_id, admin_user_id=admin_id, reason=reason)
    except (GameBusy, GameNotReady, InvalidGameData) as e:
        click.echo(f"❌ {e}")
        return
    except SQLAlchemyError as e:
        click.echo(f"❌ Database error recomputing game: {str(e)}")
        logging.error(f"Game recompute failed - SQL error: {e}")
        return

    click.echo(
        f"✅ Game {game_id} recomputed (v{report.version}): {report.outcome} covers, "
        f"{report.resolved} picks changed, {len(report.failed)} failed"
    )


# User Commands
@cli.group()
def user():
    """User summary commands"""
    pass


@user.command("recompute")
@click.argument("user_id", type=int)
@click.argument("season", type=int)
@click.option("--reason", help="Reason recorded in the audit log")
@click.option("--admin-id", type=int, help="Admin user performing the recompute")
@with_appcontext
def recompute_user(user_id, season, reason, admin_id):
    """Rebuild a user's weekly and season summaries from their picks"""
    if not db.session.get(User, user_id):
        click.echo(f"❌ User {user_id} not found!")
        return

    try:
        report = overrides.recompute_user_summaries(
            user_id, season, admin_user_id=admin_id, reason=reason
        )
    except SQLAlchemyError as e:
        click.echo(f"❌ Database error recomputing user: {str(e)}")
        logging.error(f"User recompute failed - SQL error: {e}")
        return

    click.echo(f"✅ Recomputed {report.aggregated} weeks for user {user_id} in {season}")


# Leaderboard Commands
@cli.group()
def leaderboard():
    """Leaderboard commands"""
    pass


@leaderboard.command("show")
@click.argument("season", type=int)
@click.option("--week", type=int, help="Show a weekly board instead of the season")
@click.option("--limit", default=25, help="Rows to show")
@with_appcontext
def show_leaderboard(season, week, limit):
    """Print a leaderboard"""
    if week:
        board = leaderboard_service.weekly_leaderboard(season, week)
        title = f"Season {season}, Week {week}"
    else:
        board = leaderboard_service.season_leaderboard(season)
        title = f"Season {season}"

    click.echo(f"🏆 {title} (computed {board['computed_at']})")
    if board["pending_updates"]:
        click.echo("⏳ Updates pending")
    for row in board["rows"][:limit]:
        click.echo(
            f"  {row['rank'] or '-':>3}  {row['display_name'] or row['user_id']:<24} "
            f"{row['total_points']:>5} pts  {row['wins']}-{row['losses']}-{row['pushes']}  "
            f"[{row['channel']}]"
        )


@leaderboard.command()
@click.argument("season", type=int)
@with_appcontext
def rank(season):
    """Re-rank every board of a season"""
    changed = ranking_engine.rank_all(season)
    click.echo(f"✅ Season {season} re-ranked, {changed} ranks changed")


@leaderboard.command()
@click.argument("season", type=int)
@click.option("--fix", is_flag=True, help="Recompute users whose summaries drifted")
@with_appcontext
def verify(season, fix):
    """Compare stored summaries against the picks they are built from"""
    drift = aggregation_engine.reconcile(season)
    if not drift:
        click.echo(f"✅ Season {season} summaries match source picks")
        return

    click.echo(f"⚠️  {len(drift)} differences in season {season}:")
    for entry in drift:
        scope = f"week {entry['week']}" if entry["week"] is not None else "season"
        click.echo(
            f"  user {entry['user_id']} {scope}: {entry['field']} "
            f"stored={entry['stored']} expected={entry['expected']}"
        )

    if fix:
        for user_id in sorted({entry["user_id"] for entry in drift}):
            overrides.recompute_user_summaries(user_id, season, reason="leaderboard verify --fix")
        click.echo("✅ Drifted users recomputed")


# Retry Queue Commands
@cli.group()
def work():
    """Pending work (retry queue) commands"""
    pass


@work.command("list")
@with_appcontext
def list_work():
    """List queued retries"""
    items = WorkItem.query.order_by(WorkItem.next_attempt_at).all()
    if not items:
        click.echo("No pending work.")
        return

    for item in items:
        click.echo(
            f"  #{item.id} {item.dedup_key} attempts={item.attempts} "
            f"next={item.next_attempt_at} error={item.last_error}"
        )


@work.command()
@click.option("--item-id", type=int, help="Retry one item now, resetting its backoff")
@with_appcontext
def retry(item_id):
    """Run due retries (or one specific item)"""
    if item_id:
        try:
            ok = work_queue.retry_now(item_id)
        except ValueError as e:
            click.echo(f"❌ {e}")
            return
        click.echo(f"{'✅' if ok else '❌'} Work item {item_id} {'done' if ok else 'failed'}")
        return

    succeeded, failed = work_queue.process_due()
    click.echo(f"✅ {succeeded} succeeded, {failed} failed")


# Database Commands
@cli.group()
def db_cmd():
    """Database commands"""
    pass


@db_cmd.command()
@with_appcontext
def init_db():
    """Initialize database tables"""
    try:
        db.create_all()
        click.echo("✅ Database tables created successfully!")
    except Exception as e:
        click.echo(f"❌ Error initializing database: {str(e)}")


# Database Migration Commands
@cli.group()
def db_migrate():
    """Database migration commands"""
    pass


@db_migrate.command()
@with_appcontext
def init_migrations():
    """Initialize migrations repository"""
    try:
        if os.path.exists("migrations"):
            click.echo("❌ Migrations directory already exists!")
            return

        from flask_migrate import init as flask_migrate_init

        flask_migrate_init()
        click.echo("✅ Migrations repository initialized!")
    except Exception as e:
        click.echo(f"❌ Error initializing migrations: {str(e)}")


@db_migrate.command()
@click.option("-m", "--message", required=True, help="Migration message")
@with_appcontext
def create_migration(message):
    """Create a new migration"""
    try:
        migrate(message=message)
        click.echo(f"✅ Migration created: {message}")
    except Exception as e:
        click.echo(f"❌ Error creating migration: {str(e)}")


@db_migrate.command()
@click.option("--revision", default="head", help="Revision to upgrade to")
@with_appcontext
def apply_migrations(revision):
    """Apply migrations to database"""
    try:
        upgrade(revision=revision)
        click.echo(f"✅ Migrations applied to {revision}")
    except Exception as e:
        click.echo(f"❌ Error applying migrations: {str(e)}")


@db_migrate.command()
@click.option("--revision", required=True, help="Revision to downgrade to")
@with_appcontext
def rollback_migration(revision):
    """Rollback migrations to specific revision"""
    try:
        downgrade(revision=revision)
        click.echo(f"✅ Rolled back to {revision}")
    except Exception as e:
        click.echo(f"❌ Error rolling back: {str(e)}")


@cli.command()
@with_appcontext
def status():
    """Show engine status"""
    click.echo("🏈 Pick'em Scoring Engine Status")
    click.echo("=" * 40)

    # Database connection
    try:
        db.session.execute(text("SELECT 1"))
        click.echo("✅ Database: Connected")
    except Exception as e:
        click.echo(f"❌ Database: Error - {str(e)}")
        return

    unresolved = Game.query.filter(
        Game.status == "completed", Game.is_resolved.is_(False)
    ).count()
    resolved = Game.query.filter(Game.is_resolved.is_(True)).count()
    click.echo(f"🏈 Games: {resolved} resolved, {unresolved} completed awaiting resolution")

    seasons = db.session.query(SeasonSummary.season).distinct().count()
    click.echo(f"🏆 Seasons with standings: {seasons}")

    pending = work_queue.pending_count()
    exhausted = len(work_queue.exhausted_items())
    click.echo(f"🔁 Pending work: {pending} ({exhausted} out of retries)")


if __name__ == "__main__":
    app = create_app()
    with app.app_context():
        cli()
