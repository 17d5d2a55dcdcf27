"""
Celery configuration for the Portfolio Contact API
Broker: Redis
Queues: notification
"""

import os
from typing import Mapping, Optional

from celery import Celery

from portfolio_api.core.config import settings

DEFAULT_REDIS_URL = "redis://localhost:6379/0"


def _first_defined(*values: Optional[str]) -> str:
    for value in values:
        if value and value.strip():
            return value.strip()
    return DEFAULT_REDIS_URL


def resolve_celery_broker_url(environ: Optional[Mapping[str, str]] = None) -> str:
    env = environ if environ is not None else os.environ
    return _first_defined(
        env.get("CELERY_BROKER_URL"),
        settings.CELERY_BROKER_URL,
        env.get("REDIS_URL"),
        settings.REDIS_URL,
    )


def resolve_celery_result_backend(environ: Optional[Mapping[str, str]] = None) -> str:
    env = environ if environ is not None else os.environ
    return _first_defined(
        env.get("CELERY_RESULT_BACKEND"),
        settings.CELERY_RESULT_BACKEND,
        resolve_celery_broker_url(env),
    )


celery_app = Celery(
    'portfolio_contact',
    broker=resolve_celery_broker_url(),
    backend=resolve_celery_result_backend(),
    include=['workers.tasks.notification'],
)

celery_app.conf.update(
    task_serializer='json',
    accept_content=['json'],
    result_serializer='json',
    timezone='UTC',
    enable_utc=True,

    task_routes={
        'workers.tasks.notification.send_contact_confirmation': {'queue': 'notification'},
    },

    task_acks_late=True,
    worker_prefetch_multiplier=1,
    task_max_retries=3,
    task_default_retry_delay=60,
)
