"""Celery worker and beat schedule for the background sweeps"""
from datetime import timedelta
import logging

from celery import Celery

from marketindex.core.config import settings
from marketindex.core.storage import media_storage
from marketindex.db.session import session_scope
from marketindex.modules.cleanup.services.media_reclaim import sweep_expired_content
from marketindex.modules.cleanup.services.orchestrator import retry_failed_cleanups

logger = logging.getLogger(__name__)

def create_celery_app():
    celery = Celery(
        'marketindex',
        broker=settings.REDIS_URL,
        backend=settings.REDIS_URL,
    )

    celery.conf.update(
        task_serializer='json',
        accept_content=['json'],
        result_serializer='json',
        timezone='UTC',
        enable_utc=True,
        task_track_started=True,
        task_time_limit=600,
        task_soft_time_limit=540,
        worker_prefetch_multiplier=1,
        worker_max_tasks_per_child=100,
        beat_schedule={
            'sweep-expired-content': {
                'task': 'marketindex.celery_app.sweep_expired_content_task',
                'schedule': timedelta(minutes=settings.SWEEP_INTERVAL_MINUTES),
            },
            'retry-failed-cleanups': {
                'task': 'marketindex.celery_app.retry_failed_cleanups_task',
                'schedule': timedelta(minutes=settings.CLEANUP_RETRY_INTERVAL_MINUTES),
            },
        }
    )

    return celery

celery = create_celery_app()

@celery.task(name='marketindex.celery_app.sweep_expired_content_task')
def sweep_expired_content_task():
    """Delete expired content and reclaim blobs nothing references any more"""
    with session_scope() as db:
        result = sweep_expired_content(db, media_storage)
    return {
        "items_deleted": result.items_deleted,
        "media_reclaimed": result.media_reclaimed,
        "orphans_reclaimed": result.orphans_reclaimed,
        "broadcasts_closed": result.broadcasts_closed,
    }

@celery.task(name='marketindex.celery_app.retry_failed_cleanups_task')
def retry_failed_cleanups_task():
    """Re-run account cleanups left in PartialFailure"""
    reports = retry_failed_cleanups(storage=media_storage)
    still_failing = [report.user_id for report in reports if not report.done]
    if still_failing:
        logger.warning(f"{len(still_failing)} cleanup jobs still partially failed: {still_failing}")
    return f"Retried {len(reports)} cleanups, {len(still_failing)} still failing"
