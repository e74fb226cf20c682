from celery import Celery
from kombu import Exchange, Queue
from .config import settings


celery_app = Celery(
    "reminders",
    broker=settings.CELERY_BROKER_URL,
    backend=settings.CELERY_RESULT_BACKEND or None,
)

exchange = Exchange(settings.EXCHANGE, type="direct", durable=True)

celery_app.conf.update(
    task_acks_late=True,
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    worker_prefetch_multiplier=1,
    worker_concurrency=settings.WORKER_CONCURRENCY,
    task_default_queue=settings.INPUT_QUEUE,
    task_default_exchange=settings.EXCHANGE,
    task_default_routing_key=settings.INPUT_ROUTING_KEY,
    include=["vaxcare.reminders.tasks"],
    task_queues=(
        Queue(settings.INPUT_QUEUE, exchange=exchange, routing_key=settings.INPUT_ROUTING_KEY, durable=True),
        Queue(settings.OUTPUT_QUEUE, exchange=exchange, routing_key=settings.OUTPUT_ROUTING_KEY, durable=True),
    ),
    task_routes={
        "reminders.dispatch": {"queue": settings.OUTPUT_QUEUE, "routing_key": settings.OUTPUT_ROUTING_KEY},
    },
)

# Celery Beat schedule for periodic scanning
celery_app.conf.beat_schedule = {
    "scan-and-dispatch": {
        "task": "reminders.scan_and_dispatch",
        "schedule": settings.SCHEDULER_SCAN_INTERVAL_SECONDS,
    },
    "refresh-government-schedules": {
        "task": "reminders.refresh_government_schedules",
        "schedule": settings.GOVERNMENT_REFRESH_INTERVAL_SECONDS,
    },
}
