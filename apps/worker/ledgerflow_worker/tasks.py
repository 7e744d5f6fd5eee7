"""Celery tasks for indexer maintenance."""

import asyncio
import logging
from typing import Optional

from celery import Task
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ledgerflow_worker.celery_app import celery_app
from ledgerflow_worker.db import SessionLocal, get_db
from ledgerflow_worker.settings import get_settings

logger = logging.getLogger(__name__)


class DatabaseTask(Task):
    """Task with database session."""

    _db: Optional[Session] = None

    @property
    def db(self) -> Session:
        """Get database session."""
        if self._db is None:
            self._db = next(get_db())
        return self._db

    def after_return(self, *args, **kwargs):
        """Close database session after task."""
        if self._db:
            self._db.close()
            self._db = None


@celery_app.task(base=DatabaseTask, bind=True, max_retries=3)
def replay_dead_letters(self, limit: Optional[int] = None) -> dict:
    """Re-apply indexer events that failed to persist."""
    from ledgerflow_api.indexer.store import RecordIndexStore

    settings = get_settings()
    try:
        return RecordIndexStore(self.db).replay_dead_letters(
            limit=limit or settings.dead_letter_replay_batch_size,
            max_attempts=settings.dead_letter_max_attempts,
        )
    except SQLAlchemyError as e:
        logger.error(f"Dead-letter replay failed: {e}")
        self.db.rollback()
        raise self.retry(exc=e, countdown=60)


@celery_app.task(bind=True, max_retries=3)
def reconcile_blocks(self, from_block: int, to_block: Optional[int] = None) -> int:
    """Index every event in a block range (catch-up beyond the backfill window)."""
    from ledgerflow_api.indexer.service import EventIndexer
    from ledgerflow_api.ledger.chain import LocalChainClient

    settings = get_settings()
    chain_client = LocalChainClient(SessionLocal, chain_id=settings.ledger_chain_id)
    indexer = EventIndexer(
        chain_client,
        SessionLocal,
        dead_letter_max_attempts=settings.dead_letter_max_attempts,
    )

    async def run() -> int:
        end = to_block if to_block is not None else await chain_client.get_block_number()
        return await indexer.reconcile_range(from_block, end)

    try:
        applied = asyncio.run(run())
    except SQLAlchemyError as e:
        logger.error(f"Reconcile of blocks from {from_block} failed: {e}")
        raise self.retry(exc=e, countdown=60)

    logger.info(f"Reconciled from block {from_block}: {applied} events")
    return applied
