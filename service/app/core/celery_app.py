import logging

from celery import Celery
from celery.signals import setup_logging, worker_process_init

from app.configs import configs

celery_app = Celery(
    "forfeit_push_worker",
    broker=configs.Redis.REDIS_URL,
    backend=configs.Redis.REDIS_URL,
    include=["app.tasks.notification"],
)

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
)


@setup_logging.connect
def configure_worker_logging(**kwargs: object) -> None:
    """Use the service logging config instead of Celery's default handlers."""
    from app.core.logger import setup_logging as apply_logging_config

    apply_logging_config()


@worker_process_init.connect
def init_worker_process(**kwargs: object) -> None:
    """Validate VAPID keys once per worker process so misconfiguration shows up at boot."""
    from app.core.webpush import ensure_vapid_keys

    if not ensure_vapid_keys(configs.Push):
        logging.getLogger(__name__).warning("Worker started without usable VAPID keys; pushes will fail")
