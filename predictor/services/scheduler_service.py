"""
Score Predictor background scheduler

Runs the leaderboard maintenance jobs with APScheduler. This is the only
place that retries anything: a job that loses the recalculation lock or
fails simply runs again on its next tick.
"""

import atexit
import logging
from datetime import datetime, timezone

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger

from predictor import db

logger = logging.getLogger(__name__)


def _empty_stats():
    return {
        "last_run": None,
        "total_runs": 0,
        "successful_runs": 0,
        "failed_runs": 0,
        "last_error": None,
    }


class SchedulerService:
    """Manages background leaderboard maintenance jobs"""

    JOB_IDS = ("repair_predictions", "recalculate_leaderboards", "integrity_check")

    def __init__(self, app=None):
        self.scheduler = None
        self.app = app
        self.is_running = False
        self.job_stats = {job_id: _empty_stats() for job_id in self.JOB_IDS}

        if app:
            self.init_app(app)

    def init_app(self, app):
        """Initialize scheduler with Flask app"""
        self.app = app
        self.scheduler = BackgroundScheduler(daemon=True, timezone="UTC")

        atexit.register(self.shutdown)

        if app.config.get("SCHEDULER_ENABLED", True):
            self.start()

    def start(self):
        """Start the background scheduler"""
        if self.is_running:
            return

        try:
            self.scheduler.remove_all_jobs()
            self._add_core_jobs()
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
        # Safety net for fixtures whose scoring was interrupted
        self.scheduler.add_job(
            func=self._repair_predictions,
            trigger=CronTrigger(minute=15),
            id="repair_predictions",
            name="Repair Unprocessed Predictions",
            max_instances=1,
            coalesce=True,
            misfire_grace_time=300,
        )

        # Unforced: fresh leaderboards are skipped cheaply
        self.scheduler.add_job(
            func=self._recalculate_leaderboards,
            trigger=IntervalTrigger(minutes=10),
            id="recalculate_leaderboards",
            name="Recalculate Leaderboards",
            max_instances=1,
            coalesce=True,
            misfire_grace_time=120,
        )

        self.scheduler.add_job(
            func=self._integrity_check,
            trigger=CronTrigger(hour=3, minute=0),
            id="integrity_check",
            name="Daily Leaderboard Integrity Check",
            max_instances=1,
            coalesce=True,
            misfire_grace_time=3600,
        )

        logger.info("Core scheduled jobs added")

    @property
    def season(self):
        return self.app.config.get("CURRENT_SEASON")

    def _repair_predictions(self):
        from predictor.services import repair_unprocessed_predictions

        with self.app.app_context():
            try:
                report = repair_unprocessed_predictions()
                if report.predictions_fixed:
                    logger.info(report.message)
                self._update_stats("repair_predictions", report.success, report.message)
            except Exception as e:
                db.session.rollback()
                self._update_stats("repair_predictions", False, str(e))
                logger.error(f"Error repairing predictions: {e}", exc_info=True)

    def _recalculate_leaderboards(self):
        from predictor.services import recalculate_all_leaderboards

        with self.app.app_context():
            try:
                results = recalculate_all_leaderboards(self.season, force=False)
                failures = [r for r in results if not r.success]
                for result in failures:
                    # Contention included: the next tick is the retry
                    logger.info(
                        f"Leaderboard {result.organization_id}/{result.season} "
                        f"not recalculated: {result.message}"
                    )
                recalculated = sum(1 for r in results if r.success and not r.from_cache)
                if recalculated:
                    logger.info(f"Recalculated {recalculated} leaderboards")
                self._update_stats(
                    "recalculate_leaderboards",
                    not failures,
                    "; ".join(r.message for r in failures) or None,
                )
            except Exception as e:
                db.session.rollback()
                self._update_stats("recalculate_leaderboards", False, str(e))
                logger.error(f"Error recalculating leaderboards: {e}", exc_info=True)

    def _integrity_check(self):
        from predictor.services import check_integrity

        with self.app.app_context():
            try:
                report = check_integrity(self.season, auto_fix=True)
                if report.mismatches:
                    logger.warning(
                        f"Integrity check found {len(report.mismatches)} mismatches, "
                        f"fixed {report.fixed_count} organizations"
                    )
                fixed_all = report.fixed_count == len(report.affected_organizations)
                self._update_stats(
                    "integrity_check",
                    fixed_all,
                    None if fixed_all else "Some organizations could not be recalculated",
                )
            except Exception as e:
                db.session.rollback()
                self._update_stats("integrity_check", False, str(e))
                logger.error(f"Error in integrity check: {e}", exc_info=True)

    def _update_stats(self, job_id, success, error=None):
        stats = self.job_stats[job_id]
        stats["last_run"] = datetime.now(timezone.utc)
        stats["total_runs"] += 1

        if success:
            stats["successful_runs"] += 1
            stats["last_error"] = None
        else:
            stats["failed_runs"] += 1
            stats["last_error"] = error

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

        stats = {
            job_id: {
                **job_stats,
                "last_run": job_stats["last_run"].isoformat() if job_stats["last_run"] else None,
            }
            for job_id, job_stats in self.job_stats.items()
        }
        return {"is_running": self.is_running, "jobs": jobs, "stats": stats}

    def run_job(self, job_id):
        """Run a job immediately in the calling thread"""
        jobs = {
            "repair_predictions": self._repair_predictions,
            "recalculate_leaderboards": self._recalculate_leaderboards,
            "integrity_check": self._integrity_check,
        }
        if job_id not in jobs:
            raise ValueError(f"Unknown job: {job_id}")
        jobs[job_id]()
        return self.job_stats[job_id]


# Global scheduler instance
scheduler_service = SchedulerService()
