from celery import Celery
from celery.signals import worker_process_init
from exam_engine.core.config import settings
import logging

logging.getLogger('celery.backends.redis').setLevel(logging.ERROR)

celery_app = Celery(
    "exam_engine_worker",
    broker=getattr(settings, 'celery_broker_url', 'redis://localhost:6379/0'),
    backend=getattr(settings, 'celery_result_backend', 'redis://localhost:6379/0'),
    include=[
        'exam_engine.tasks.maintenance',
    ]
)

celery_app.conf.update(
    task_serializer='json',
    accept_content=['json'],
    result_serializer='json',
    timezone='UTC',
    enable_utc=True,

    task_routes={
        'exam_engine.tasks.maintenance.*': {'queue': 'maintenance'},
    },

    worker_prefetch_multiplier=1,
    task_acks_late=True,
    worker_max_tasks_per_child=1000,

    task_soft_time_limit=120,
    task_time_limit=300,

    result_expires=3600,
    broker_connection_retry_on_startup=True,

    task_default_retry_delay=30,
    task_max_retries=3,

    # The sweep only speeds up expiry; every timer read self-corrects anyway
    beat_schedule={
        'expire-stale-attempts': {
            'task': 'expire_stale_attempts',
            'schedule': settings.expiry_sweep_interval_seconds,
        },
        'deactivate-ended-sessions': {
            'task': 'deactivate_ended_sessions',
            'schedule': 300.0,
        },
    },
)


@worker_process_init.connect
def register_event_subscribers(**kwargs):
    from exam_engine.core.cache import cache
    from exam_engine.core.database import SessionLocal
    from exam_engine.core.events import event_bus
    from exam_engine.services.event_handlers import register_default_subscribers
    register_default_subscribers(event_bus, SessionLocal, cache)


def main(argv=None):
    celery_app.start(argv)


if __name__ == "__main__":
    main()
