"""Celery application for background overlay renders."""

from celery import Celery

from akira_render.config import get_settings

settings = get_settings()

celery_app = Celery(
    "akira_render",
    broker=settings.redis_url,
    backend=settings.redis_url,
    include=["akira_render.tasks.render_task"],
)

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    task_track_started=True,
    # Renders go to their own queue: `celery -A akira_render.celery_app worker -Q render`
    task_default_queue=settings.render_queue,
    task_routes={"akira_render.tasks.render_task.*": {"queue": settings.render_queue}},
    # The soft limit raises inside the task so the pipeline can persist the failure
    task_time_limit=settings.render_task_time_limit_s,
    task_soft_time_limit=settings.render_task_soft_time_limit_s,
    worker_prefetch_multiplier=1,
    task_acks_late=True,
    result_expires=24 * 3600,
)
