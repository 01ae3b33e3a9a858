"""
Celery application configuration for background recognition tasks
"""
from celery import Celery
from celery.signals import worker_process_init, worker_process_shutdown
import structlog

from receipt_vault.common.config import get_settings
from receipt_vault.common.logging_setup import configure_logging

logger = structlog.get_logger()
settings = get_settings()

# Create Celery app
app = Celery(
    "receipt_vault_worker",
    broker=settings.celery_broker_url,
    backend=settings.celery_result_backend,
)

# Celery configuration
app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    enable_utc=True,

    # Task execution settings
    task_acks_late=True,
    task_reject_on_worker_lost=True,
    task_time_limit=300,  # 5 minutes hard limit
    task_soft_time_limit=270,

    # Result backend settings
    result_expires=3600,  # Results expire after 1 hour

    # One receipt at a time per process; concurrency is set on the worker
    worker_prefetch_multiplier=1,
    worker_max_tasks_per_child=200,

    task_routes={
        "services.worker.tasks.ocr_receipt.*": {"queue": "ocr"},
    },
)

# Import tasks explicitly to register them
from services.worker.tasks import ocr_receipt  # noqa: E402,F401


@worker_process_init.connect
def init_worker(**kwargs):
    """Initialize worker process"""
    configure_logging(settings.log_level)
    logger.info("celery_worker_starting",
                environment=settings.environment,
                providers=settings.provider_order)


@worker_process_shutdown.connect
def shutdown_worker(**kwargs):
    """Clean up worker process"""
    logger.info("celery_worker_shutting_down")


if __name__ == "__main__":
    app.start()
