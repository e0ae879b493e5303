"""Celery application factory for background import drivers."""

import ssl

from celery import Celery

from company_importer.core.config import get_settings

settings = get_settings()

IMPORTS_QUEUE = "imports"

# Get broker and backend URLs
broker_url = settings.celery_broker_url or settings.redis_url
backend_url = settings.celery_result_url or settings.redis_url

# Convert redis:// to rediss:// for Upstash domains to enable SSL
if ".upstash.io" in broker_url and broker_url.startswith("redis://"):
    broker_url = broker_url.replace("redis://", "rediss://", 1)
if ".upstash.io" in backend_url and backend_url.startswith("redis://"):
    backend_url = backend_url.replace("redis://", "rediss://", 1)
is_ssl = broker_url.startswith("rediss://") or backend_url.startswith("rediss://")

# The Redis result backend reads ssl_cert_reqs from the URL during init
if is_ssl:
    ssl_param = "ssl_cert_reqs=none"
    if "ssl_cert_reqs" not in broker_url:
        separator = "&" if "?" in broker_url else "?"
        broker_url = f"{broker_url}{separator}{ssl_param}"
    if "ssl_cert_reqs" not in backend_url:
        separator = "&" if "?" in backend_url else "?"
        backend_url = f"{backend_url}{separator}{ssl_param}"

celery_app = Celery(
    "company_importer",
    broker=broker_url,
    backend=backend_url,
)

celery_config = {
    "task_serializer": "json",
    "accept_content": ["json"],
    "result_serializer": "json",
    "timezone": "UTC",
    "enable_utc": True,
    "task_acks_late": True,  # Acknowledge after task completion
    "task_reject_on_worker_lost": True,  # Re-queue if worker dies
    "worker_prefetch_multiplier": 1,  # Fair task distribution
    "task_default_queue": IMPORTS_QUEUE,
    "task_routes": {
        "company_importer.workers.tasks.run_import_session": {"queue": IMPORTS_QUEUE},
    },
    "result_expires": 3600,
    "broker_connection_retry_on_startup": True,
    # Unacked tasks are redelivered after this window; paused imports hold theirs
    "broker_transport_options": {
        "visibility_timeout": settings.celery_visibility_timeout_seconds,
    },
    "worker_hijack_root_logger": False,
}

if is_ssl:
    ssl_dict = {"ssl_cert_reqs": ssl.CERT_NONE}
    celery_config["broker_use_ssl"] = ssl_dict
    celery_config["redis_backend_use_ssl"] = ssl_dict
    celery_config["broker_transport_options"].update(ssl_dict)
    celery_config["result_backend_transport_options"] = ssl_dict.copy()

celery_app.conf.update(celery_config)

# Register tasks with celery_app
from company_importer.workers.tasks import run_import  # noqa: E402,F401
