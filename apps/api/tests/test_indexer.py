"""Tests for the event indexer."""

import asyncio
from unittest.mock import patch

from sqlalchemy import Text
from sqlalchemy.exc import OperationalError

from ledgerflow_api.indexer.service import EventIndexer, IndexerState
from ledgerflow_api.indexer.store import RecordIndexStore
from ledgerflow_api.models import DeadLetterEvent, IndexedRecord
from ledgerflow_api.records.service import RecordQueryService
from ledgerflow_api.storage.content_store import cid_v1_for

SUBMITTER = "0x742d35Cc6634C0532925a3b844Bc9e7595f0bEb"


def _records(session_factory) -> list[IndexedRecord]:
    with session_factory() as db:
        records = db.query(IndexedRecord).all()
        db.expunge_all()
        return records


def _db_failure():
    return OperationalError("INSERT INTO indexed_records", {}, Exception("database is locked"))


async def _wait_for(predicate, attempts: int = 100) -> bool:
    for _ in range(attempts):
        if predicate():
            return True
        await asyncio.sleep(0.01)
    return predicate()


def test_handle_event_is_idempotent(chain_client, session_factory, attest_content):
    event = attest_content(cid_v1_for(b"idempotent"))

    async def run():
        indexer = EventIndexer(chain_client, session_factory)
        await indexer.start()
        await indexer.handle_event(event)
        await indexer.handle_event(event)
        await indexer.stop()

    asyncio.run(run())

    records = _records(session_factory)
    assert len(records) == 1
    assert records[0].status == "confirmed"
    assert records[0].observed_at_block == event.block_number
    assert records[0].tx_hash == event.tx_hash
    assert records[0].submitter_address == SUBMITTER.lower()


def test_live_event_is_indexed(chain_client, session_factory):
    content_address = cid_v1_for(b"live")

    async def run():
        from ledgerflow_api.ledger.fingerprint import fingerprint_for

        indexer = EventIndexer(chain_client, session_factory)
        await indexer.start()
        assert chain_client.subscriber_count == 1

        await chain_client.submit_attestation(SUBMITTER, fingerprint_for(content_address), content_address)
        seen = await _wait_for(lambda: len(_records(session_factory)) == 1)
        status = indexer.status()
        await indexer.stop()
        return seen, status

    seen, status = asyncio.run(run())
    assert seen
    assert status["state"] == "running"
    assert status["processed"] == 1
    assert chain_client.subscriber_count == 0


def test_event_while_stopped_is_recovered_by_backfill(chain_client, session_factory, attest_content):
    """An event seen while stopped is indexed after start() backfills."""

    async def run():
        indexer = EventIndexer(chain_client, session_factory)
        await indexer.start()
        await indexer.stop()
        assert indexer.state == IndexerState.STOPPED
        return indexer

    indexer = asyncio.run(run())

    event = attest_content(cid_v1_for(b"CID2"))

    async def resume():
        assert await indexer.handle_event(event) is False
        assert _records(session_factory) == []

        await indexer.start()
        assert indexer.state == IndexerState.RUNNING
        await indexer.stop()

    asyncio.run(resume())

    records = _records(session_factory)
    assert [r.content_address for r in records] == [event.content_address]
    assert records[0].status == "confirmed"


def test_backfill_window_and_reconcile(chain_client, session_factory, attest_content):
    events = [attest_content(cid_v1_for(label.encode())) for label in ("a", "b", "c")]

    async def run():
        indexer = EventIndexer(chain_client, session_factory, backfill_blocks=1)
        await indexer.start()
        await indexer.stop()
        assert len(_records(session_factory)) == 1

        return await indexer.reconcile_range(1, 3)

    applied = asyncio.run(run())
    assert applied == 3
    assert {r.content_address for r in _records(session_factory)} == {e.content_address for e in events}


def test_confirmed_status_never_regresses(db, attest_content):
    event = attest_content(cid_v1_for(b"monotonic"))
    store = RecordIndexStore(db)

    store.upsert_confirmed(event)
    record, created = store.register_pending(event.content_address, SUBMITTER, category="food")

    assert created is False
    assert record.status == "confirmed"
    assert record.category == "food"


def test_pending_then_confirmed(db, attest_content):
    content_address = cid_v1_for(b"optimistic")
    store = RecordIndexStore(db)

    record, created = store.register_pending(content_address, SUBMITTER, category="travel", note="taxi")
    assert created
    assert record.status == "pending"
    assert record.observed_at_block is None

    event = attest_content(content_address)
    store.upsert_confirmed(event)
    store.upsert_confirmed(event)

    records = db.query(IndexedRecord).all()
    assert len(records) == 1
    assert records[0].status == "confirmed"
    assert records[0].category == "travel"
    assert records[0].note == "taxi"
    assert records[0].observed_at_block == event.block_number


def test_register_pending_fills_only_unknown_fields(db):
    content_address = cid_v1_for(b"fill")
    store = RecordIndexStore(db)

    store.register_pending(content_address, SUBMITTER, category="food")
    record, _ = store.register_pending(content_address, SUBMITTER, category="rent", note="later note")

    assert record.category == "food"
    assert record.note == "later note"


def test_persistence_failure_is_dead_lettered(chain_client, session_factory, attest_content):
    event = attest_content(cid_v1_for(b"dead-letter"))

    async def run():
        indexer = EventIndexer(chain_client, session_factory, backfill_blocks=0)
        await indexer.start()
        with patch.object(RecordIndexStore, "upsert_confirmed", side_effect=_db_failure()):
            applied = await indexer.handle_event(event)
        await indexer.stop()
        return indexer, applied

    indexer, applied = asyncio.run(run())
    assert applied is False
    assert indexer.dead_lettered == 1
    assert _records(session_factory) == []

    with session_factory() as db:
        letter = db.query(DeadLetterEvent).one()
        assert letter.status == "pending"
        assert letter.content_address == event.content_address
        assert "database is locked" in letter.error

    counts = indexer.replay_dead_letters()
    assert counts == {"resolved": 1, "failed": 0, "abandoned": 0}

    records = _records(session_factory)
    assert len(records) == 1
    assert records[0].status == "confirmed"
    with session_factory() as db:
        assert db.query(DeadLetterEvent).one().status == "resolved"


def test_dead_letter_abandoned_after_max_attempts(db, attest_content):
    event = attest_content(cid_v1_for(b"abandon"))
    store = RecordIndexStore(db)
    store.dead_letter(event, _db_failure())

    with patch.object(RecordIndexStore, "upsert_confirmed", side_effect=_db_failure()):
        first = store.replay_dead_letters(max_attempts=3)
        second = store.replay_dead_letters(max_attempts=3)

    assert first == {"resolved": 0, "failed": 1, "abandoned": 0}
    assert second == {"resolved": 0, "failed": 0, "abandoned": 1}

    letter = db.query(DeadLetterEvent).one()
    assert letter.status == "abandoned"
    assert letter.attempts == 3
    assert store.replay_dead_letters() == {"resolved": 0, "failed": 0, "abandoned": 0}


def test_independent_instances(chain_client, session_factory):
    async def run():
        first = EventIndexer(chain_client, session_factory)
        second = EventIndexer(chain_client, session_factory)
        await first.start()
        states = (first.state, second.state)
        await first.stop()
        return states

    assert asyncio.run(run()) == (IndexerState.RUNNING, IndexerState.INACTIVE)


def test_start_twice_is_noop(chain_client, session_factory):
    async def run():
        indexer = EventIndexer(chain_client, session_factory)
        await indexer.start()
        subscription = indexer._subscription
        await indexer.start()
        result = (indexer.state, chain_client.subscriber_count, indexer._subscription is subscription)
        await indexer.stop()
        return result

    state, subscribers, same_subscription = asyncio.run(run())
    assert state == IndexerState.RUNNING
    assert subscribers == 1
    assert same_subscription


def test_out_of_order_redelivery_keeps_one_record_per_address(chain_client, session_factory, attest_content):
    first = attest_content(cid_v1_for(b"first"))
    second = attest_content(cid_v1_for(b"second"))

    async def run():
        indexer = EventIndexer(chain_client, session_factory, backfill_blocks=0)
        await indexer.start()
        for event in (second, first, second, first):
            assert await indexer.handle_event(event) is True
        await indexer.stop()

    asyncio.run(run())

    records = {r.content_address: r for r in _records(session_factory)}
    assert len(records) == 2
    for event in (first, second):
        record = records[event.content_address]
        assert record.status == "confirmed"
        assert record.observed_at_block == event.block_number
        assert record.fingerprint == event.fingerprint


def test_long_content_address_is_indexed(chain_client, session_factory, attest_content):
    assert isinstance(IndexedRecord.__table__.c.content_address.type, Text)
    assert isinstance(DeadLetterEvent.__table__.c.content_address.type, Text)

    event = attest_content("bafkrei" + "a" * 300)

    async def run():
        indexer = EventIndexer(chain_client, session_factory, backfill_blocks=0)
        await indexer.start()
        applied = await indexer.handle_event(event)
        await indexer.stop()
        return applied

    assert asyncio.run(run()) is True
    [record] = _records(session_factory)
    assert record.content_address == event.content_address


def test_confirmation_takes_ledger_fingerprint(db, attest_content):
    content_address = cid_v1_for(b"rebound")
    store = RecordIndexStore(db)
    store.register_pending(content_address, SUBMITTER, fingerprint="0x" + "ab" * 32)

    event = attest_content(content_address)
    store.upsert_confirmed(event)

    proof = RecordQueryService(db).get_proof(content_address)
    assert proof["fingerprint"] == event.fingerprint
    assert proof["status"] == "confirmed"
