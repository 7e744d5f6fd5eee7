"""In-process chain client over the attestation ledger.

Stands in for a blockchain RPC client: historical range queries, live
subscriptions and transaction submission. Subscriptions receive every event
committed through this client after they were opened.
"""

import asyncio
import logging
from typing import Optional

from sqlalchemy.orm import sessionmaker

from ledgerflow_api.ledger.events import AttestedEvent, LedgerEvent, PublicKeyRegisteredEvent
from ledgerflow_api.ledger.service import AttestationLedger

logger = logging.getLogger(__name__)

_CLOSED = object()


class ChainSubscription:
    """Async iterator over live ledger events."""

    def __init__(self, client: "LocalChainClient", loop: asyncio.AbstractEventLoop):
        self._client = client
        self._loop = loop
        self._queue: asyncio.Queue = asyncio.Queue()
        self.closed = False

    def publish(self, event: LedgerEvent):
        if self.closed:
            return
        self._loop.call_soon_threadsafe(self._queue.put_nowait, event)

    def close(self):
        """Stop delivery; iteration ends after already-queued events."""
        if self.closed:
            return
        self.closed = True
        self._client._unsubscribe(self)
        self._loop.call_soon_threadsafe(self._queue.put_nowait, _CLOSED)

    def __aiter__(self):
        return self

    async def __anext__(self) -> LedgerEvent:
        item = await self._queue.get()
        if item is _CLOSED:
            raise StopAsyncIteration
        return item


class LocalChainClient:
    """Chain client backed by the local ledger tables."""

    def __init__(self, session_factory: sessionmaker, chain_id: Optional[str] = None):
        """Initialize chain client."""
        self._session_factory = session_factory
        self.chain_id = chain_id
        self._subscriptions: list[ChainSubscription] = []

    def _ledger(self, db) -> AttestationLedger:
        return AttestationLedger(db, chain_id=self.chain_id)

    def _unsubscribe(self, subscription: ChainSubscription):
        if subscription in self._subscriptions:
            self._subscriptions.remove(subscription)

    def _publish(self, event: LedgerEvent):
        for subscription in list(self._subscriptions):
            subscription.publish(event)

    @property
    def subscriber_count(self) -> int:
        return len(self._subscriptions)

    async def subscribe(self) -> ChainSubscription:
        """Open a live subscription starting from the next committed event."""
        subscription = ChainSubscription(self, asyncio.get_running_loop())
        self._subscriptions.append(subscription)
        return subscription

    async def get_block_number(self) -> int:
        with self._session_factory() as db:
            return self._ledger(db).latest_block_number()

    async def query_events(self, from_block: int, to_block: int) -> list[LedgerEvent]:
        """Historical events in the inclusive block range."""
        with self._session_factory() as db:
            return self._ledger(db).events_between(max(0, from_block), to_block)

    async def is_attested(self, fingerprint: str) -> bool:
        with self._session_factory() as db:
            return self._ledger(db).is_attested(fingerprint)

    async def submit_attestation(
        self,
        submitter: str,
        fingerprint: str,
        content_address: str,
        auxiliary: bytes = b"",
    ) -> AttestedEvent:
        """Submit an attestation; duplicates raise synchronously."""
        with self._session_factory() as db:
            event = self._ledger(db).attest(submitter, fingerprint, content_address, auxiliary)
            db.commit()
        logger.info(f"Attested {content_address} at block {event.block_number}")
        self._publish(event)
        return event

    async def submit_public_key(self, submitter: str, public_key: bytes) -> PublicKeyRegisteredEvent:
        with self._session_factory() as db:
            event = self._ledger(db).register_public_key(submitter, public_key)
            db.commit()
        self._publish(event)
        return event
