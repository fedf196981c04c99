from celery import Celery
from app.config import get_settings

settings = get_settings()

celery_app = Celery(
    "content_studio",
    broker=settings.CELERY_BROKER_URL,
    backend=settings.CELERY_RESULT_BACKEND,
    include=['app.workers.tasks']
)

celery_app.conf.update(
    task_serializer='json',
    accept_content=['json'],
    result_serializer='json',
    timezone='UTC',
    enable_utc=True,
    task_acks_late=False,
    worker_prefetch_multiplier=1,
    # A job still running past the stale window may already have been superseded
    task_time_limit=settings.STALE_JOB_MINUTES * 60,
    task_routes={
        'app.workers.tasks.transcribe_video_task': {'queue': 'transcription'},
        'app.workers.tasks.probe_video_task': {'queue': 'media'},
    },
)
