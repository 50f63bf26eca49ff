"""Periodic auto-return of idle in-progress requests.

An APScheduler interval job scans for requests that stayed ``in_progress``
longer than ``AUTO_RETURN_MINUTES`` and fires the ``auto_return`` transition
for each one. Every request runs in its own transaction; a failure on one is
logged and the pass moves on. A missed or failed pass only delays returns.
"""
from __future__ import annotations
import logging
from datetime import datetime, timedelta
from typing import Callable, Optional

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger

from casedesk.errors import WorkflowError
from casedesk.services.lifecycle import RequestLifecycle
from casedesk.services.queues import QueueViews
from casedesk.utils.timeutil import utcnow

logger = logging.getLogger(__name__)

JOB_ID = 'auto_return_stale_requests'


def run_auto_return_pass(session, minutes: int, now: Optional[datetime] = None,
                         lifecycle: Optional[RequestLifecycle] = None,
                         clock: Callable = utcnow) -> dict:
    """Return every stale in-progress request to the open queue.

    Returns counters: checked, returned, skipped (moved or touched meanwhile), failed.
    """
    now = now or clock()
    cutoff = now - timedelta(minutes=minutes)
    lifecycle = lifecycle or RequestLifecycle(session, clock=clock)
    stale_ids = QueueViews(session).stale_in_progress(cutoff)
    # end the read transaction so each item starts clean
    session.rollback()
    summary = {'checked': len(stale_ids), 'returned': 0, 'skipped': 0, 'failed': 0}
    for request_id in stale_ids:
        try:
            req = lifecycle.auto_return(request_id, stale_before=cutoff)
        except WorkflowError as e:
            summary['skipped'] += 1
            logger.info('auto-return skipped request %s: %s', request_id, e.reason,
                        extra={'event': 'request.auto_return_skipped', 'request_id': request_id})
            continue
        except Exception:
            summary['failed'] += 1
            logger.exception('auto-return failed for request %s', request_id,
                             extra={'event': 'request.auto_return_failed', 'request_id': request_id})
            continue
        if req is None:
            summary['skipped'] += 1
        else:
            summary['returned'] += 1
    if stale_ids:
        logger.info('auto-return pass: %(returned)s returned, %(skipped)s skipped, %(failed)s failed', summary)
    return summary


def auto_return_job(app):
    """Scheduler entry point; one session per pass."""
    from casedesk import get_db, remove_db
    with app.app_context():
        try:
            run_auto_return_pass(get_db(), app.config['AUTO_RETURN_MINUTES'])
        except Exception:
            logger.exception('auto-return pass aborted')
        finally:
            remove_db()


def start_scheduler(app) -> BackgroundScheduler:
    interval = app.config['AUTO_RETURN_INTERVAL_SECONDS']
    scheduler = BackgroundScheduler(timezone='UTC')
    scheduler.add_job(
        auto_return_job,
        trigger=IntervalTrigger(seconds=interval),
        args=[app],
        id=JOB_ID,
        replace_existing=True,
        max_instances=1,
        coalesce=True,
        name='Auto-return idle in-progress requests',
    )
    scheduler.start()
    logger.info('APScheduler started: auto-return every %ss (threshold %s min)',
                interval, app.config['AUTO_RETURN_MINUTES'])
    return scheduler


def shutdown_scheduler(scheduler: Optional[BackgroundScheduler]):
    if scheduler is not None and scheduler.running:
        scheduler.shutdown(wait=False)
        logger.info('APScheduler shut down')
