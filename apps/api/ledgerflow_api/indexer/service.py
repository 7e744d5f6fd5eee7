"""Event indexer: ledger events -> indexed records."""

import asyncio
import logging
from enum import Enum
from typing import Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from ledgerflow_api.indexer.store import RecordIndexStore
from ledgerflow_api.ledger.chain import ChainSubscription, LocalChainClient
from ledgerflow_api.ledger.events import AttestedEvent, LedgerEvent
from ledgerflow_api.settings import get_settings
from ledgerflow_api.utils.metrics import indexer_events, indexer_running

logger = logging.getLogger(__name__)


class IndexerState(str, Enum):
    """Indexer lifecycle."""

    INACTIVE = "inactive"
    RUNNING = "running"
    STOPPED = "stopped"


class EventIndexer:
    """Subscribes to ledger events and upserts one record per content address.

    ``start`` opens the live subscription first and only then scans the
    trailing backfill window, so an event committed in between is seen at
    least once; seeing it twice is harmless because every write is an
    idempotent upsert.

    Events that fail to persist go to the dead-letter table and are retried
    by ``replay_dead_letters``.
    """

    def __init__(
        self,
        chain_client: LocalChainClient,
        session_factory: sessionmaker,
        backfill_blocks: Optional[int] = None,
        dead_letter_max_attempts: Optional[int] = None,
    ):
        """Initialize indexer."""
        settings = get_settings()
        self.chain_client = chain_client
        self._session_factory = session_factory
        self.backfill_blocks = (
            backfill_blocks if backfill_blocks is not None else settings.indexer_backfill_blocks
        )
        self.dead_letter_max_attempts = (
            dead_letter_max_attempts
            if dead_letter_max_attempts is not None
            else settings.dead_letter_max_attempts
        )

        self.state = IndexerState.INACTIVE
        self._subscription: Optional[ChainSubscription] = None
        self._listen_task: Optional[asyncio.Task] = None

        self.last_block: Optional[int] = None
        self.processed = 0
        self.dead_lettered = 0

    async def start(self):
        """Open the live subscription, backfill, then listen in the background."""
        if self.state == IndexerState.RUNNING:
            logger.info("Indexer already running")
            return

        self._subscription = await self.chain_client.subscribe()
        self.state = IndexerState.RUNNING
        indexer_running.set(1)
        logger.info("Indexer subscription established")

        await self.backfill()
        self._listen_task = asyncio.create_task(self._listen(self._subscription))

    async def stop(self):
        """Cancel the subscription and wait for in-flight events to finish."""
        if self.state != IndexerState.RUNNING:
            logger.info(f"Indexer not running (state={self.state.value})")
            return

        self.state = IndexerState.STOPPED
        self._subscription.close()
        if self._listen_task is not None:
            await self._listen_task
            self._listen_task = None
        self._subscription = None
        indexer_running.set(0)
        logger.info("Indexer stopped")

    async def _listen(self, subscription: ChainSubscription):
        async for event in subscription:
            await self.handle_event(event)

    async def backfill(self) -> int:
        """Scan the trailing window of blocks. Returns events applied."""
        try:
            current_block = await self.chain_client.get_block_number()
            from_block = max(1, current_block - self.backfill_blocks + 1)
            events = await self.chain_client.query_events(from_block, current_block)
        except SQLAlchemyError as e:
            # Live subscription stays up; missed blocks can be reconciled later
            logger.error(f"Backfill scan failed: {e}")
            return 0

        logger.info(
            f"Backfilling blocks {from_block}-{current_block}: {len(events)} events"
        )
        applied = 0
        for event in events:
            if await self._apply(event):
                applied += 1
        return applied

    async def reconcile_range(self, from_block: int, to_block: int) -> int:
        """Explicit catch-up for blocks outside the backfill window."""
        events = await self.chain_client.query_events(from_block, to_block)
        applied = 0
        for event in events:
            if await self._apply(event):
                applied += 1
        logger.info(f"Reconciled blocks {from_block}-{to_block}: {applied} events")
        return applied

    async def handle_event(self, event: LedgerEvent) -> bool:
        """Apply a live event. Ignored unless the indexer is running."""
        if self.state != IndexerState.RUNNING:
            indexer_events.labels(outcome="ignored").inc()
            logger.debug(f"Ignoring event at block {event.block_number}: indexer {self.state.value}")
            return False
        return await self._apply(event)

    async def _apply(self, event: LedgerEvent) -> bool:
        if not isinstance(event, AttestedEvent):
            return False

        try:
            with self._session_factory() as db:
                RecordIndexStore(db).upsert_confirmed(event)
        except SQLAlchemyError as e:
            logger.error(f"Failed to index {event.content_address} at block {event.block_number}: {e}")
            self._dead_letter(event, e)
            return False

        self.processed += 1
        self.last_block = max(self.last_block or 0, event.block_number)
        indexer_events.labels(outcome="confirmed").inc()
        logger.info(f"Indexed {event.content_address} from {event.submitter}")
        return True

    def _dead_letter(self, event: AttestedEvent, error: Exception):
        try:
            with self._session_factory() as db:
                RecordIndexStore(db).dead_letter(event, error)
        except SQLAlchemyError as e:
            logger.error(f"Dead-letter write failed, event at block {event.block_number} dropped: {e}")
            return
        self.dead_lettered += 1
        indexer_events.labels(outcome="dead_lettered").inc()

    def replay_dead_letters(self, limit: int = 100) -> dict:
        with self._session_factory() as db:
            return RecordIndexStore(db).replay_dead_letters(
                limit=limit, max_attempts=self.dead_letter_max_attempts
            )

    def status(self) -> dict:
        return {
            "state": self.state.value,
            "last_block": self.last_block,
            "processed": self.processed,
            "dead_lettered": self.dead_lettered,
        }
