"""
Pick'em Background Scheduler Service

Runs the scoring pipeline's background jobs with APScheduler: the poller that
resolves completed games no trigger has picked up, the retry runner for the
pending work queue, and a periodic ranking sweep that lets every board
converge even if a ranking run was missed.
"""

import atexit
import logging
from datetime import datetime, timezone

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger
from sqlalchemy import distinct

from pickem import db
from pickem.models import SeasonSummary
from pickem.services import work_queue
from pickem.services.completion_gate import completion_gate
from pickem.services.ranking import ranking_engine

logger = logging.getLogger(__name__)


class SchedulerService:
    """Manages background scheduling for the scoring pipeline"""

    def __init__(self, app=None):
        self.scheduler = None
        self.app = app
        self.is_running = False
        self.sync_stats = {
            "last_run": None,
            "total_runs": 0,
            "successful_runs": 0,
            "failed_runs": 0,
            "last_error": None,
            "games_resolved": 0,
            "work_retried": 0,
        }

        if app:
            self.init_app(app)

    def init_app(self, app):
        """Initialize scheduler with Flask app"""
        self.app = app
        self.scheduler = BackgroundScheduler(daemon=True, timezone="UTC")

        # Register shutdown
        atexit.register(self.shutdown)

        # Start scheduler if enabled
        if app.config.get("SCHEDULER_ENABLED", True):
            self.start()

    def start(self):
        """Start the background scheduler"""
        if self.is_running:
            return

        try:
            # Clear any existing jobs
            self.scheduler.remove_all_jobs()

            # Add scheduled jobs
            self._add_core_jobs()

            # Start scheduler
            self.scheduler.start()
            self.is_running = True

            logger.info("Scheduler started successfully")

        except Exception as e:
            logger.error(f"Failed to start scheduler: {e}")
            raise

    def stop(self):
        """Stop the background scheduler"""
        if not self.is_running:
            return

        try:
            self.scheduler.shutdown(wait=False)
            self.is_running = False
            logger.info("Scheduler stopped")

        except Exception as e:
            logger.error(f"Error stopping scheduler: {e}")

    def shutdown(self):
        """Graceful shutdown"""
        self.stop()

    def _add_core_jobs(self):
        """Add core scheduled jobs"""
        config = self.app.config

        # Poller: completed games still waiting for resolution
        self.scheduler.add_job(
            func=self._resolve_completed_games,
            trigger=IntervalTrigger(seconds=config.get("POLL_INTERVAL_SECONDS", 90)),
            id="resolve_completed_games",
            name="Resolve Completed Games",
            max_instances=1,
            coalesce=True,
            misfire_grace_time=30,
        )

        # Retry runner for the pending work queue
        self.scheduler.add_job(
            func=self._retry_pending_work,
            trigger=IntervalTrigger(seconds=config.get("RETRY_INTERVAL_SECONDS", 60)),
            id="retry_pending_work",
            name="Retry Pending Work",
            max_instances=1,
            coalesce=True,
            misfire_grace_time=60,
        )

        # Ranking sweep so every scope converges once quiet
        self.scheduler.add_job(
            func=self._rank_sweep,
            trigger=IntervalTrigger(minutes=config.get("RANK_SWEEP_MINUTES", 15)),
            id="rank_sweep",
            name="Leaderboard Ranking Sweep",
            max_instances=1,
            coalesce=True,
            misfire_grace_time=300,
        )

        logger.info("Core scheduled jobs added")

    def _resolve_completed_games(self):
        with self.app.app_context():
            try:
                resolved = completion_gate.sweep()
                if resolved:
                    logger.info(f"Poller resolved {resolved} completed games")
                self._update_stats(True, games_resolved=resolved)

            except Exception as e:
                db.session.rollback()
                self._update_stats(False)
                self.sync_stats["last_error"] = str(e)
                logger.error(f"Error in completed games sweep: {e}", exc_info=True)
            finally:
                db.session.remove()

    def _retry_pending_work(self):
        with self.app.app_context():
            try:
                succeeded, failed = work_queue.process_due()
                if succeeded or failed:
                    logger.info(f"Retried pending work: {succeeded} succeeded, {failed} failed")
                self._update_stats(True, work_retried=succeeded)

            except Exception as e:
                db.session.rollback()
                self._update_stats(False)
                self.sync_stats["last_error"] = str(e)
                logger.error(f"Error retrying pending work: {e}", exc_info=True)
            finally:
                db.session.remove()

    def _rank_sweep(self):
        with self.app.app_context():
            try:
                seasons = [
                    row[0]
                    for row in db.session.query(distinct(SeasonSummary.season)).all()
                ]
                changed = sum(ranking_engine.rank_all(season) for season in seasons)
                if changed:
                    logger.info(f"Ranking sweep corrected {changed} ranks")
                self._update_stats(True)

            except Exception as e:
                db.session.rollback()
                self._update_stats(False)
                self.sync_stats["last_error"] = str(e)
                logger.error(f"Error in ranking sweep: {e}", exc_info=True)
            finally:
                db.session.remove()

    def _update_stats(self, success, games_resolved=0, work_retried=0):
        """Update run statistics"""
        self.sync_stats["last_run"] = datetime.now(timezone.utc)
        self.sync_stats["total_runs"] += 1

        if success:
            self.sync_stats["successful_runs"] += 1
            self.sync_stats["games_resolved"] += games_resolved
            self.sync_stats["work_retried"] += work_retried
            self.sync_stats["last_error"] = None
        else:
            self.sync_stats["failed_runs"] += 1

    def get_status(self):
        """Get scheduler status information"""
        jobs = []
        if self.scheduler:
            for job in self.scheduler.get_jobs():
                next_run = job.next_run_time
                jobs.append(
                    {
                        "id": job.id,
                        "name": job.name,
                        "next_run": next_run.isoformat() if next_run else None,
                        "trigger": str(job.trigger),
                    }
                )

        stats = dict(self.sync_stats)
        if stats["last_run"]:
            stats["last_run"] = stats["last_run"].isoformat()
        return {"is_running": self.is_running, "jobs": jobs, "stats": stats}

    def force_sync(self, sync_type="poll"):
        """Manually trigger a job"""
        jobs = {
            "poll": self._resolve_completed_games,
            "retry": self._retry_pending_work,
            "rank": self._rank_sweep,
        }
        if sync_type not in jobs:
            return False, f"Unknown sync type: {sync_type}"

        jobs[sync_type]()
        if self.sync_stats["last_error"]:
            return False, f"Manual {sync_type} run failed: {self.sync_stats['last_error']}"
        return True, f"Manual {sync_type} run completed"


# Global scheduler instance
scheduler_service = SchedulerService()
