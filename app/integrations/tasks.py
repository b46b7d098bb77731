"""
Celery tasks for the celery scheduler backend.

- poll_integration_task: poll one discriminator (sent by Scheduler.enqueue)
- scan_stale_integrations_task: enqueue every stale entry (run by Celery beat)
- rotate_credential_encryption_task: re-encrypt one batch of credentials
  under the current key and queue the next batch while rows remain

Each worker process builds its own SyncEngine lazily. Polls run in a fresh
event loop per task, so the shared HTTP client is closed after each one.
"""
import asyncio
import uuid
from typing import Any, Awaitable, Callable, Dict, Optional

from app.core.celery_app import celery_app
from app.core.http_client import close_http_client
from app.core.logging_config import log_error, log_info
from app.integrations.discriminator import Discriminator
from app.integrations.engine import SyncEngine

_engine: Optional[SyncEngine] = None


def get_worker_engine() -> SyncEngine:
    global _engine
    if _engine is None:
        _engine = SyncEngine()
    return _engine


async def _with_client_cleanup(coro: Awaitable[Any]) -> Any:
    try:
        return await coro
    finally:
        await close_http_client()


def _run_async(task_func: Callable[..., Awaitable[Any]], *args, **kwargs) -> Any:
    log_info(f"Starting background task: {task_func.__name__}")
    try:
        result = asyncio.run(_with_client_cleanup(task_func(*args, **kwargs)))
        log_info(f"Completed background task: {task_func.__name__}")
        return result
    except Exception as e:
        log_error(e, task_name=task_func.__name__)
        raise


async def _poll(payload: Dict[str, Any]) -> Dict[str, Any]:
    discriminator = Discriminator.from_payload(payload)
    result = await get_worker_engine().poller.poll(discriminator)
    return {"status": result.status, "version": result.version, "error": result.error}


@celery_app.task(name="app.integrations.tasks.poll_integration_task")
def poll_integration_task(payload: Dict[str, Any]) -> Dict[str, Any]:
    return _run_async(_poll, payload)


@celery_app.task(name="app.integrations.tasks.scan_stale_integrations_task")
def scan_stale_integrations_task() -> Dict[str, int]:
    try:
        enqueued = get_worker_engine().scheduler.scan_due()
    except Exception as e:
        log_error(e, task_name="scan_stale_integrations_task")
        raise
    return {"enqueued": enqueued}


@celery_app.task(name="app.integrations.tasks.rotate_credential_encryption_task")
def rotate_credential_encryption_task(
    batch_size: Optional[int] = None, after_id: Optional[str] = None
) -> Dict[str, Any]:
    try:
        batch = get_worker_engine().vault.rotate_batch(
            batch_size, after_id=uuid.UUID(after_id) if after_id else None
        )
    except Exception as e:
        log_error(e, task_name="rotate_credential_encryption_task")
        raise
    if not batch.done:
        rotate_credential_encryption_task.delay(batch_size, str(batch.last_id))
    return {
        "rotated": batch.rotated,
        "skipped": batch.skipped,
        "errors": batch.errors,
        "next_after_id": None if batch.done else str(batch.last_id),
    }
