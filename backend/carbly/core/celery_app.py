# backend/carbly/core/celery_app.py
from celery import Celery
from celery.schedules import crontab

from carbly.core.config import settings

celery_app = Celery(
    "carbly_tasks",
    broker=settings.CELERY_BROKER_URL,
    backend=settings.CELERY_RESULT_BACKEND,
)

celery_app.conf.update(
    imports=(
        'carbly.background.tasks',
    ),
    task_track_started=True,
    task_serializer='json',
    accept_content=['json'],
    result_serializer='json',
    timezone='Europe/Paris',
    enable_utc=True,

    # Each task runs its coroutine on a private event loop, threads are safe here
    worker_pool='threads',
    worker_concurrency=4,

    # Reliability settings
    task_acks_late=True,
    worker_prefetch_multiplier=1,
    result_expires=3600,
    task_soft_time_limit=300,
    task_time_limit=600,

    # Connection settings
    broker_connection_retry_on_startup=True,
    broker_connection_retry=True,

    worker_max_tasks_per_child=200,
    worker_send_task_events=True,
    task_send_sent_event=True,

    # Daily J-1 return reminders
    beat_schedule={
        'send-return-reminders': {
            'task': 'carbly.background.tasks.send_return_reminders_task',
            'schedule': crontab(hour=9, minute=0),
        },
    },
)
