from celery import Celery

from vacancy_notifier.config import settings

celery_app = Celery(
    "vacancy_notifier",
    broker=settings.redis_url,
    backend=settings.redis_url,
    include=[
        "vacancy_notifier.workers.check_tasks",
    ],
)

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    task_track_started=True,
    task_acks_late=True,
    worker_prefetch_multiplier=1,
    beat_schedule={
        "check-vacancies": {
            "task": "vacancy_notifier.workers.check_tasks.run_check_cycle",
            "schedule": float(settings.tick_interval),
        },
    },
)
