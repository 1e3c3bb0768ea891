"""Celery tasks for scheduled transaction synchronization.

Each owner is synced by its own task so one slow or failing item never
holds up the others. A timed-out sync is not retried in place; the next
scheduled run covers the same window again.
"""

import uuid
from typing import List, Optional

from celery_app import celery_app
from config import load_settings
from database import CredentialRepository, get_session
from errors import AggregatorTimeoutError, LedgerError
from logging_config import get_logger
from services.sync_service import SyncOptions

logger = get_logger(__name__)

_services = None


def get_services():
    """Service graph for this worker process, built on first use."""
    global _services
    if _services is None:
        from services import build_services

        _services = build_services(load_settings())
    return _services


def list_sync_owners(services) -> List[uuid.UUID]:
    with get_session(services.session_factory) as session:
        return CredentialRepository(session, services.schema).owners_with_credentials()


def run_owner_sync(services, owner_id: uuid.UUID, force_full: bool = False, trace_id: Optional[str] = None) -> dict:
    """
    Sync one owner and report the outcome as a plain dict.

    Returns:
        dict: {'status': 'completed'|'timeout'|'failed', ...counters}
    """
    try:
        result = services.sync.synchronize(
            owner_id, SyncOptions(force_full_sync=force_full), trace_id=trace_id
        )
    except AggregatorTimeoutError as e:
        logger.warning(f"Scheduled sync timed out: {e.message}", extra={"owner_id": str(owner_id)})
        return {"status": "timeout", "owner_id": str(owner_id), "error": e.code}
    except LedgerError as e:
        logger.error(f"Scheduled sync failed: {e.code}: {e.message}", extra={"owner_id": str(owner_id)})
        return {"status": "failed", "owner_id": str(owner_id), "error": e.code}

    return {
        **result.to_dict(trace_id),
        "status": "completed",
        "owner_id": str(owner_id),
    }


@celery_app.task(time_limit=600, soft_time_limit=540)
def sync_owner_transactions(owner_id: str, force_full: bool = False):
    """
    Celery task to sync one owner's linked items.

    Args:
        owner_id: Tenant id (UUID string)
        force_full: Use the full lookback window

    Returns:
        dict: Sync statistics
    """
    return run_owner_sync(
        get_services(),
        uuid.UUID(owner_id),
        force_full=force_full,
        trace_id=f"task-{uuid.uuid4().hex}",
    )


@celery_app.task
def sync_all_linked_owners():
    """Enqueue one sync task per owner with linked credentials."""
    owners = list_sync_owners(get_services())
    for owner_id in owners:
        sync_owner_transactions.delay(str(owner_id))
    logger.info(f"Queued scheduled sync for {len(owners)} owners")
    return {"status": "queued", "owners": len(owners)}
