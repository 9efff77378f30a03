"""
FastAPI Registry Service

Serves funding sources, connector health and per-rail history over REST for
``RegistryClient``. Runs independently of the payment API; backed by the
in-memory repositories and seeded with the demo data.
"""

import logging
from typing import Dict, List

from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel

from flowrail.ledger import AuditLedger, TransactionLogEntry
from flowrail.registry.memory import InMemoryConnectorHealthRepository, InMemoryFundingSourceRepository
from flowrail.registry.mock_data import MOCK_HEALTH, MOCK_SOURCES
from flowrail.registry.models import ConnectorStatus, FundingSource


logger = logging.getLogger(__name__)

app = FastAPI(
    title="FlowRail Registry Service",
    description="Funding sources, connector health and rail history",
    version="0.1.0",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


class HealthUpdate(BaseModel):
    status: ConnectorStatus


sources = InMemoryFundingSourceRepository(MOCK_SOURCES)
health = InMemoryConnectorHealthRepository(MOCK_HEALTH)
history = AuditLedger()


@app.get("/users/{user_id}/sources", response_model=List[FundingSource])
async def list_sources(user_id: str):
    """Linked funding sources for a user (empty if none are linked)."""
    return sources.list_linked(user_id)


@app.put("/users/{user_id}/sources/{source_id}", response_model=FundingSource)
async def upsert_source(user_id: str, source_id: str, source: FundingSource):
    if source.id != source_id:
        raise HTTPException(status_code=400, detail="Source id does not match path")
    sources.upsert(user_id, source)
    logger.info(f"Upserted source {source_id} for {user_id}")
    return sources.get_source(user_id, source_id)


@app.get("/connectors/{rail_id}/health")
async def get_health(rail_id: str):
    return {"rail_id": rail_id, "status": health.status_of(rail_id).value}


@app.put("/connectors/{rail_id}/health")
async def set_health(rail_id: str, update: HealthUpdate):
    health.set_status(rail_id, update.status)
    logger.warning(f"Connector {rail_id} marked {update.status.value}")
    return {"rail_id": rail_id, "status": update.status.value}


@app.get("/users/{user_id}/history/by-rail")
async def history_by_rail(user_id: str, days: int = 30) -> Dict[str, int]:
    """Successful payments per rail within the last ``days`` days."""
    return history.recent_by_rail(user_id, days=days)


@app.post("/users/{user_id}/history")
async def record_transaction(user_id: str, entry: TransactionLogEntry):
    """Record a terminal payment outcome."""
    if entry.user_id is None:
        entry = entry.model_copy(update={"user_id": user_id})
    elif entry.user_id != user_id:
        raise HTTPException(status_code=400, detail="User id does not match path")
    history.append(entry)
    return {"status": "recorded", "intent_id": entry.intent_id}
