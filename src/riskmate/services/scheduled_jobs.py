"""
Scheduled Jobs Service
Manages background jobs for billing reconciliation, monitoring and exports
"""
import logging
from typing import Optional
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger

from ..config import config
from ..logging_config import set_request_id

logger = logging.getLogger(__name__)

# Global scheduler instance
_scheduler: Optional[BackgroundScheduler] = None


def get_scheduler() -> BackgroundScheduler:
    """
    Get or create the background scheduler instance

    Returns:
        BackgroundScheduler instance
    """
    global _scheduler

    if _scheduler is None:
        _scheduler = BackgroundScheduler(
            job_defaults={
                'coalesce': True,  # Combine missed runs
                'max_instances': 1,  # Only one instance at a time
                'misfire_grace_time': 3600  # 1 hour grace period
            }
        )

    return _scheduler


def start_scheduler():
    """
    Start the background scheduler and register all jobs
    """
    scheduler = get_scheduler()

    if not scheduler.running:
        scheduler.add_job(
            func=run_reconciliation_job,
            trigger=CronTrigger(minute=0),  # Every hour at minute 0
            id='billing_reconciliation',
            name='Stripe billing reconciliation',
            replace_existing=True
        )
        logger.info("Registered billing reconciliation job (hourly)")

        scheduler.add_job(
            func=run_monitoring_job,
            trigger=CronTrigger(minute='*/30'),
            id='billing_monitoring',
            name='Billing monitoring conditions',
            replace_existing=True
        )
        logger.info("Registered billing monitoring job (every 30 minutes)")

        scheduler.add_job(
            func=run_export_worker_job,
            trigger=IntervalTrigger(seconds=config.EXPORT_WORKER_INTERVAL_SECONDS),
            id='export_worker',
            name='Process queued exports',
            replace_existing=True
        )
        logger.info(f"Registered export worker job (every {config.EXPORT_WORKER_INTERVAL_SECONDS}s)")

        scheduler.start()
        logger.info("Background scheduler started")
    else:
        logger.warning("Scheduler already running")


def stop_scheduler():
    """
    Stop the background scheduler
    """
    scheduler = get_scheduler()

    if scheduler.running:
        scheduler.shutdown(wait=True)
        logger.info("Background scheduler stopped")


def run_reconciliation_job(lookback_hours: Optional[int] = None, run_type: str = "scheduled"):
    """
    Reconciliation job - runs hourly to heal drift between Stripe and the database

    Returns:
        ReconciliationResult dict, or None when Stripe is not configured or the run failed
    """
    from ..db.engine import SessionLocal
    from ..exceptions import ApiError
    from .reconciliation_service import ReconciliationService
    from .stripe_gateway import get_stripe_gateway

    request_id = set_request_id()
    logger.info("=" * 60)
    logger.info(f"Starting {run_type} reconciliation job (request {request_id})")
    logger.info("=" * 60)

    try:
        gateway = get_stripe_gateway()
    except ApiError as e:
        logger.warning(f"Skipping reconciliation: {e.message}")
        return None

    db = SessionLocal()
    try:
        result = ReconciliationService(db, gateway).run(lookback_hours=lookback_hours, run_type=run_type)
        summary = result.to_dict()

        logger.info("=" * 60)
        logger.info("Reconciliation Job Summary")
        logger.info("=" * 60)
        logger.info(f"Status: {summary['status']}")
        logger.info(f"Lookback: {summary['lookback_hours']}h")
        logger.info(f"Mismatches: {summary['mismatch_count']}")
        logger.info(f"Created: {summary['created_count']}")
        logger.info(f"Updated: {summary['updated_count']}")
        logger.info(f"Errors: {len(summary.get('errors', []))}")
        logger.info("=" * 60)
        return summary

    except Exception as e:
        logger.error(f"Fatal error during reconciliation job: {e}", exc_info=True)
        return None

    finally:
        db.close()
        logger.info("Reconciliation job finished")


def run_monitoring_job():
    """
    Monitoring job - runs every 30 minutes to raise or clear condition alerts
    """
    from ..db.engine import SessionLocal
    from .billing_monitoring import BillingMonitor

    set_request_id()
    logger.info("Starting scheduled billing monitoring job")

    db = SessionLocal()
    try:
        report = BillingMonitor(db).check_monitoring_conditions()
        logger.info(
            f"Monitoring complete: reconcile_stale={report['reconcile_stale']['triggered']}, "
            f"high_severity_stale={report['high_severity_stale']['triggered']}, "
            f"auto_resolved={report['auto_resolved']}"
        )
        return report

    except Exception as e:
        logger.error(f"Billing monitoring job failed: {e}", exc_info=True)
        return None

    finally:
        db.close()


def run_export_worker_job():
    """
    Export worker tick - claims and processes queued exports
    """
    from .export_worker import get_export_worker

    set_request_id()
    try:
        stats = get_export_worker().process_pending()
        if stats["claimed"]:
            logger.info(
                f"Export worker processed {stats['claimed']} export(s): "
                f"{stats['ready']} ready, {stats['requeued']} requeued, {stats['failed']} failed"
            )
        return stats

    except Exception as e:
        logger.error(f"Export worker job failed: {e}", exc_info=True)
        return None


# Export functions
__all__ = [
    'get_scheduler',
    'start_scheduler',
    'stop_scheduler',
    'run_reconciliation_job',
    'run_monitoring_job',
    'run_export_worker_job'
]
