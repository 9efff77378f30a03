"""
FlowRail API Server

Exposes rail resolution and payment execution over REST.
"""

import logging
from typing import Any, Dict, List

from dotenv import load_dotenv
from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel

# Load FLOWRAIL_* settings from .env before the container reads them
load_dotenv()

from flowrail.config import settings
from flowrail.container import FlowRailContainer
from flowrail.errors import GuardrailExceeded, InvalidTransition, ValidationError
from flowrail.ledger import EventType


logging.basicConfig(level=getattr(logging, settings.log_level.upper(), logging.INFO))
logger = logging.getLogger(__name__)

app = FastAPI(title="FlowRail API", version="0.1.0")

origins = [
    "http://localhost:5173",  # Vite dev server
    "http://127.0.0.1:5173",
]

app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# Request models
class IntentRequest(BaseModel):
    user_id: str = "user_demo"
    intent: Dict[str, Any]


class ConfirmRequest(BaseModel):
    acknowledge_guardrails: bool = False


class KillSwitchRequest(BaseModel):
    engaged: bool


flow = FlowRailContainer()


def _validate(req: IntentRequest):
    try:
        return flow.validator.validate(req.intent)
    except ValidationError as e:
        flow.ledger.log_event(
            EventType.INTENT_REJECTED,
            payload={"errors": e.errors},
            user_id=req.user_id,
        )
        raise HTTPException(status_code=422, detail={"message": e.message, "errors": e.errors})


def _session_or_404(intent_id: str):
    session = flow.engine.get_session(intent_id)
    if session is None:
        raise HTTPException(status_code=404, detail=f"Unknown intent: {intent_id}")
    return session


# Routes
@app.get("/")
async def root():
    return {"status": "online", "system": "FlowRail"}


@app.post("/resolve")
async def resolve(req: IntentRequest):
    """Dry run: plan a payment without starting it."""
    intent = _validate(req)
    result = flow.resolution.resolve(req.user_id, intent)
    return {
        "plan": result.plan.model_dump(mode="json"),
        "violations": [v.model_dump(mode="json") for v in result.violations],
    }


@app.post("/payments")
async def start_payment(req: IntentRequest):
    """Validate an intent, resolve its plan and open a payment session."""
    intent = _validate(req)
    try:
        session = flow.engine.start(req.user_id, intent)
    except ValidationError as e:
        raise HTTPException(status_code=409, detail={"message": e.message, "errors": e.errors})
    return session.model_dump(mode="json")


@app.post("/payments/{intent_id}/confirm")
async def confirm_payment(intent_id: str, req: ConfirmRequest):
    _session_or_404(intent_id)
    try:
        result = await flow.engine.confirm(intent_id, acknowledged=req.acknowledge_guardrails)
    except GuardrailExceeded as e:
        raise HTTPException(status_code=409, detail={"code": e.code.value, "message": e.message, **e.details})
    except InvalidTransition as e:
        raise HTTPException(status_code=409, detail={"code": e.code.value, "message": e.message})
    return result.model_dump(mode="json")


@app.post("/payments/{intent_id}/cancel")
async def cancel_payment(intent_id: str):
    _session_or_404(intent_id)
    session = flow.engine.cancel(intent_id)
    return session.model_dump(mode="json")


@app.get("/payments/{intent_id}")
async def get_payment(intent_id: str):
    return _session_or_404(intent_id).model_dump(mode="json")


@app.post("/users/{user_id}/kill-switch")
async def set_kill_switch(user_id: str, req: KillSwitchRequest):
    guardrails = flow.guardrails.set_kill_switch(user_id, req.engaged)
    flow.ledger.log_event(
        EventType.KILL_SWITCH_TOGGLED,
        payload={"engaged": req.engaged},
        user_id=user_id,
    )
    return guardrails.model_dump(mode="json")


@app.get("/users/{user_id}/guardrails")
async def get_guardrails(user_id: str):
    return flow.guardrails.get(user_id).model_dump(mode="json")


@app.get("/users/{user_id}/sources")
async def get_sources(user_id: str):
    return [s.model_dump(mode="json") for s in flow.sources.list_linked(user_id)]


@app.get("/users/{user_id}/transactions")
async def get_transactions(user_id: str, limit: int = 20) -> List[Dict[str, Any]]:
    return [t.model_dump(mode="json") for t in flow.ledger.get_transactions(user_id, limit=limit)]


@app.get("/compensation")
async def get_compensation_queue():
    """Late successes that moved money after their intent gave up."""
    return [item.model_dump(mode="json") for item in flow.engine.compensation_queue]


@app.post("/compensation/drain")
async def drain_compensation_queue():
    """Hand the queued compensation items to the caller and clear the queue."""
    return [item.model_dump(mode="json") for item in flow.engine.drain_compensation()]


@app.get("/ledger/validate")
async def validate_ledger():
    return flow.ledger.validate_chain().model_dump(mode="json")


@app.get("/ledger/entries")
async def recent_ledger_entries(limit: int = 20):
    """Most recent audit events, newest first."""
    return [
        {**entry.model_dump(mode="json"), "hash": entry.hash}
        for entry in flow.ledger.get_recent_entries(limit=limit)
    ]


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host=settings.host, port=settings.port)
