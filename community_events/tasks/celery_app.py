"""
Celery application configuration for background tasks.
"""

from celery import Celery

from ..config import Settings, get_settings


def create_celery_app(settings: Settings) -> Celery:
    app = Celery(
        "community_events",
        broker=settings.celery_broker_url,
        backend=settings.celery_result_backend,
        include=[
            "community_events.tasks.notification_tasks",
        ]
    )

    app.conf.update(
        task_serializer="json",
        accept_content=["json"],
        result_serializer="json",
        timezone="UTC",
        enable_utc=True,
        task_track_started=True,
        task_time_limit=5 * 60,
        task_soft_time_limit=4 * 60,
        task_acks_late=True,
        worker_prefetch_multiplier=1,
        worker_max_tasks_per_child=1000,
        # Publishing from the web process must fail fast when the broker is down
        broker_connection_timeout=2,
        broker_transport_options={"max_retries": 1},
    )
    return app


celery_app = create_celery_app(get_settings())
