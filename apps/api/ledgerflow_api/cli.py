"""CLI commands for Ledgerflow API."""

import asyncio

import click
from sqlalchemy.exc import SQLAlchemyError

from ledgerflow_api.db.seed import seed_all
from ledgerflow_api.db.session import SessionLocal
from ledgerflow_api.indexer.service import EventIndexer
from ledgerflow_api.ledger.chain import LocalChainClient
from ledgerflow_api.ledger.service import AttestationLedger
from ledgerflow_api.settings import get_settings


def _indexer() -> EventIndexer:
    chain_client = LocalChainClient(SessionLocal, chain_id=get_settings().ledger_chain_id)
    return EventIndexer(chain_client, SessionLocal)


@click.group()
def cli():
    """Ledgerflow API CLI."""
    pass


@cli.command()
def seed():
    """Seed sample records."""
    click.echo("Seeding sample records...")
    db = SessionLocal()
    try:
        added = seed_all(db)
        click.echo(f"✓ Seed data created ({added} new records).")
    except SQLAlchemyError as e:
        db.rollback()
        raise click.ClickException(f"Error seeding data: {e}")
    finally:
        db.close()


@cli.command("replay-dead-letters")
@click.option("--limit", default=100, show_default=True, help="Maximum dead letters to replay.")
def replay_dead_letters(limit):
    """Re-apply indexer events that failed to persist."""
    counts = _indexer().replay_dead_letters(limit=limit)
    click.echo(
        f"✓ Resolved {counts['resolved']}, failed {counts['failed']}, "
        f"abandoned {counts['abandoned']}."
    )


@cli.command()
@click.option("--from-block", type=int, required=True)
@click.option("--to-block", type=int, default=None, help="Defaults to the latest block.")
def reconcile(from_block, to_block):
    """Index every event in a block range."""
    indexer = _indexer()

    async def run():
        end = to_block if to_block is not None else await indexer.chain_client.get_block_number()
        return end, await indexer.reconcile_range(from_block, end)

    end, applied = asyncio.run(run())
    click.echo(f"✓ Reconciled blocks {from_block}-{end}: {applied} events indexed.")


@cli.command("verify-ledger")
def verify_ledger():
    """Recompute the ledger hash chain."""
    db = SessionLocal()
    try:
        valid, error = AttestationLedger(db).verify_chain()
    finally:
        db.close()
    if not valid:
        raise click.ClickException(f"Ledger verification failed: {error}")
    click.echo("✓ Ledger hash chain is intact.")


if __name__ == "__main__":
    cli()
