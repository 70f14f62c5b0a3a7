"""Refresh worker profiles and signal logging"""

from typing import Any, Dict, Optional
import os

from celery.signals import worker_ready, worker_shutdown, task_prerun, task_postrun, task_failure
import structlog

from tracker.config import settings

logger = structlog.get_logger()

REFRESH_SUMMARY_KEYS = ("due", "refreshed", "failed", "skipped")


def summarize_result(retval: Any) -> Dict[str, Any]:
    """Log fields for a task return value; refresh summaries are logged as counts."""
    if isinstance(retval, dict) and all(key in retval for key in REFRESH_SUMMARY_KEYS):
        return {key: retval[key] for key in REFRESH_SUMMARY_KEYS}
    if retval is None:
        return {}
    return {"result": str(retval)[:200]}


@worker_ready.connect
def on_worker_ready(sender, **kwargs):
    logger.info(
        "Refresh worker ready",
        hostname=sender.hostname,
        pid=os.getpid(),
        batch_size=settings.refresh_batch_size,
        env=settings.app_env
    )


@worker_shutdown.connect
def on_worker_shutdown(sender, **kwargs):
    logger.info("Refresh worker shutting down", hostname=getattr(sender, "hostname", None))


@task_prerun.connect
def on_task_prerun(task_id, task, args, kwargs, **_):
    logger.info("Task starting", task_id=task_id, task_name=task.name, batch_size=kwargs.get("batch_size"))


@task_postrun.connect
def on_task_postrun(task_id, task, args, kwargs, retval, state, **_):
    logger.info("Task completed", task_id=task_id, task_name=task.name, state=state, **summarize_result(retval))


@task_failure.connect
def on_task_failure(task_id=None, exception=None, sender=None, **_):
    logger.error(
        "Task failed",
        task_id=task_id,
        task_name=getattr(sender, "name", None),
        error=str(exception)
    )


# Concurrency bounded by RapidAPI rate limits
WORKER_PROFILES = {
    "default": {"concurrency": 2, "pool": "prefork", "loglevel": "INFO"},
    "refresh": {"concurrency": 4, "pool": "prefork", "loglevel": "INFO", "queues": ["refresh"]},
}


def get_worker_config(worker_type: str = "default", loglevel: Optional[str] = None) -> dict:
    """Pool settings for a worker profile; unknown profiles get the default."""
    config = dict(WORKER_PROFILES.get(worker_type, WORKER_PROFILES["default"]))
    config["loglevel"] = (loglevel or settings.log_level).upper()
    return config
