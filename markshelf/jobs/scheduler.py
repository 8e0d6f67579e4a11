import logging
import os

from apscheduler.schedulers.background import BackgroundScheduler

from markshelf.services.feed import prune_change_events


logger = logging.getLogger(__name__)

scheduler = BackgroundScheduler()


def run_change_feed_prune(app):
    with app.app_context():
        deleted = prune_change_events(app.config["CHANGE_FEED_RETENTION_HOURS"])
        if deleted:
            logger.info("pruned %s change events", deleted)


def start_scheduler(app):
    if not app.config.get("SCHEDULER_ENABLED", True):
        return
    if os.environ.get("WERKZEUG_RUN_MAIN") == "false":
        return

    interval_minutes = app.config["CHANGE_FEED_PRUNE_INTERVAL_MINUTES"]
    if not scheduler.get_jobs():
        scheduler.add_job(
            run_change_feed_prune,
            "interval",
            minutes=interval_minutes,
            kwargs={"app": app},
            id="change_feed_prune",
            replace_existing=True,
        )
        scheduler.start()
