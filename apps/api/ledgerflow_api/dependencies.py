"""FastAPI dependencies for process-wide collaborators.

Each collaborator is created on first use and cached on ``app.state``;
the lifespan handler installs the same instances the indexer uses.
"""

from fastapi import Request

from ledgerflow_api.coprocessor.service import AggregationService
from ledgerflow_api.db.session import SessionLocal
from ledgerflow_api.ledger.chain import LocalChainClient
from ledgerflow_api.settings import get_settings
from ledgerflow_api.storage.content_store import get_content_store


def get_chain_client(request: Request) -> LocalChainClient:
    client = getattr(request.app.state, "chain_client", None)
    if client is None:
        client = LocalChainClient(SessionLocal, chain_id=get_settings().ledger_chain_id)
        request.app.state.chain_client = client
    return client


def get_store(request: Request):
    store = getattr(request.app.state, "content_store", None)
    if store is None:
        store = get_content_store()
        request.app.state.content_store = store
    return store


def get_aggregation_service(request: Request) -> AggregationService:
    service = getattr(request.app.state, "aggregation_service", None)
    if service is None:
        service = AggregationService(get_store(request))
        request.app.state.aggregation_service = service
    return service
