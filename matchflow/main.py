"""
Client-Trainer Engagement Engine - API
======================================
FastAPI application: collaborator webhooks in, engagement stages out
"""

import logging
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Literal, Optional

from fastapi import APIRouter, Depends, FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from matchflow.adapters.events import (
    DiscoveryCallNotification,
    EngagementEventRouter,
    ManualAction,
    PaymentNotification,
    SelectionRequestNotification,
    WaitlistNotification,
)
from matchflow.core.engagement_fsm import EngagementFSM
from matchflow.core.engagement_states import EngagementStage, PairId
from matchflow.core.errors import CapacityExceeded, ConcurrencyConflict
from matchflow.core.journey import JourneyProjector, ProjectionDispatcher
from matchflow.db.database import async_session_factory
from matchflow.logging_config import configure_logging

logger = logging.getLogger(__name__)

SERVICE_NAME = "Client-Trainer Engagement Engine"
VERSION = "1.0.0"


# ── Request Models ────────────────────────────────────────────────────────────

class DiscoveryCallEventRequest(BaseModel):
    call_id: str
    client_id: str
    trainer_id: str
    status: Literal["scheduled", "completed", "cancelled", "rescheduled"]
    occurred_at: Optional[datetime] = None


class SelectionRequestEventRequest(BaseModel):
    request_id: str
    client_id: str
    trainer_id: str
    status: Literal["pending", "accepted", "declined", "alternative_suggested"]
    responded_at: Optional[datetime] = None


class WaitlistEventRequest(BaseModel):
    client_id: str
    trainer_id: str
    action: Literal["joined", "left"] = "joined"
    note: Optional[str] = None
    occurred_at: Optional[datetime] = None


class PaymentEventRequest(BaseModel):
    payment_id: str
    client_id: str
    trainer_id: str
    status: Literal["completed", "failed"]
    occurred_at: Optional[datetime] = None


class ManualActionRequest(BaseModel):
    client_id: str
    trainer_id: str
    action: Literal["like", "shortlist", "remove", "dismiss", "unmatch"]
    actor_role: Literal["client", "trainer", "admin"] = "client"


class DismissRequest(BaseModel):
    client_id: str
    trainer_id: str
    was_declined: bool
    actor_role: Literal["client", "trainer", "admin"] = "client"


class NotesRequest(BaseModel):
    notes: Optional[str] = None


# ── Endpoints ─────────────────────────────────────────────────────────────────

api = APIRouter()


def get_events(request: Request) -> EngagementEventRouter:
    return request.app.state.events


@api.get("/")
async def root():
    return {
        "service": SERVICE_NAME,
        "version": VERSION,
        "status": "running",
    }


@api.get("/health")
async def health():
    """Health check endpoint"""
    return {"status": "healthy"}


@api.post("/events/discovery-calls")
async def discovery_call_event(body: DiscoveryCallEventRequest,
                               events: EngagementEventRouter = Depends(get_events)):
    result = await events.on_discovery_call_event(DiscoveryCallNotification(
        call_id=body.call_id,
        pair=PairId(body.client_id, body.trainer_id),
        status=body.status,
        occurred_at=body.occurred_at,
    ))
    return result.as_dict()


@api.post("/events/selection-requests")
async def selection_request_event(body: SelectionRequestEventRequest,
                                  events: EngagementEventRouter = Depends(get_events)):
    result = await events.on_selection_request_event(SelectionRequestNotification(
        request_id=body.request_id,
        pair=PairId(body.client_id, body.trainer_id),
        status=body.status,
        responded_at=body.responded_at,
    ))
    return result.as_dict()


@api.post("/events/waitlist")
async def waitlist_event(body: WaitlistEventRequest,
                         events: EngagementEventRouter = Depends(get_events)):
    result = await events.on_waitlist_event(WaitlistNotification(
        pair=PairId(body.client_id, body.trainer_id),
        action=body.action,
        note=body.note,
        occurred_at=body.occurred_at,
    ))
    return result.as_dict()


@api.post("/events/payments")
async def payment_event(body: PaymentEventRequest,
                        events: EngagementEventRouter = Depends(get_events)):
    result = await events.on_payment_event(PaymentNotification(
        payment_id=body.payment_id,
        pair=PairId(body.client_id, body.trainer_id),
        status=body.status,
        occurred_at=body.occurred_at,
    ))
    return result.as_dict()


@api.post("/engagements/actions")
async def manual_action(body: ManualActionRequest,
                        events: EngagementEventRouter = Depends(get_events)):
    """
    A user clicked something. The only endpoint that can answer 409:
    shortlisting past the cap is reported back to the user.
    """
    result = await events.on_manual_action(ManualAction(
        pair=PairId(body.client_id, body.trainer_id),
        action=body.action,
        actor_role=body.actor_role,
    ))
    result.raise_for_rejection()
    return result.as_dict()


@api.post("/engagements/dismiss")
async def dismiss(body: DismissRequest, events: EngagementEventRouter = Depends(get_events)):
    result = await events.on_manual_dismiss(
        PairId(body.client_id, body.trainer_id), body.was_declined, body.actor_role,
    )
    return result.as_dict()


@api.patch("/engagements/{client_id}/{trainer_id}/notes")
async def update_notes(client_id: str, trainer_id: str, body: NotesRequest,
                       events: EngagementEventRouter = Depends(get_events)):
    pair = PairId(client_id, trainer_id)
    if not await events.update_notes(pair, body.notes):
        raise HTTPException(status_code=404, detail="Engagement not found")
    return {"client_id": client_id, "trainer_id": trainer_id, "notes": body.notes}


@api.get("/engagements/{client_id}/{trainer_id}")
async def get_stage(client_id: str, trainer_id: str,
                    events: EngagementEventRouter = Depends(get_events)):
    stage = await events.get_stage(PairId(client_id, trainer_id))
    return {"client_id": client_id, "trainer_id": trainer_id, "stage": stage.value}


@api.get("/engagements/{client_id}/{trainer_id}/history")
async def get_history(client_id: str, trainer_id: str,
                      events: EngagementEventRouter = Depends(get_events)):
    """Full event history for a pair (audit trail)"""
    history = await events.get_history(PairId(client_id, trainer_id))
    return {
        "client_id": client_id,
        "trainer_id": trainer_id,
        "event_count": len(history),
        "events": history,
    }


@api.get("/clients/{client_id}/engagements")
async def list_client_engagements(client_id: str, stage: Optional[EngagementStage] = None,
                                  events: EngagementEventRouter = Depends(get_events)):
    engagements = await events.list_engagements_for_client(client_id, stage)
    return {"client_id": client_id, "count": len(engagements), "engagements": engagements}


@api.get("/trainers/{trainer_id}/engagements")
async def list_trainer_engagements(trainer_id: str, stage: Optional[EngagementStage] = None,
                                   events: EngagementEventRouter = Depends(get_events)):
    engagements = await events.list_engagements_for_trainer(trainer_id, stage)
    return {"trainer_id": trainer_id, "count": len(engagements), "engagements": engagements}


@api.get("/clients/{client_id}/shortlist")
async def shortlist_capacity(client_id: str, events: EngagementEventRouter = Depends(get_events)):
    return await events.get_shortlist_capacity(client_id)


@api.get("/clients/{client_id}/journey")
async def journey_stage(client_id: str, events: EngagementEventRouter = Depends(get_events)):
    stage = await events.get_journey_stage(client_id)
    return {"client_id": client_id, "journey_stage": stage.value if stage else None}


# ── Error mapping ─────────────────────────────────────────────────────────────

async def capacity_exceeded_handler(request: Request, exc: CapacityExceeded):
    return JSONResponse(
        status_code=409,
        content={"detail": str(exc), "reason": "capacity_exceeded", "limit": exc.limit},
    )


async def concurrency_conflict_handler(request: Request, exc: ConcurrencyConflict):
    logger.warning("Giving up on %s after %d attempts", exc.pair, exc.attempts)
    return JSONResponse(
        status_code=503,
        content={"detail": str(exc), "reason": "concurrency_conflict"},
        headers={"Retry-After": "1"},
    )


# ── App ───────────────────────────────────────────────────────────────────────

def create_app(session_factory=None) -> FastAPI:
    session_factory = session_factory or async_session_factory

    projector = JourneyProjector(session_factory)
    dispatcher = ProjectionDispatcher(projector)
    fsm = EngagementFSM(session_factory, dispatcher=dispatcher)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        configure_logging()
        logger.info("%s %s starting", SERVICE_NAME, VERSION)
        yield
        # Let in-flight journey projections finish
        await dispatcher.drain()

    app = FastAPI(
        title=SERVICE_NAME,
        description="Event-driven client-trainer engagement lifecycle",
        version=VERSION,
        lifespan=lifespan,
    )
    app.state.events = EngagementEventRouter(session_factory, fsm, projector)
    app.state.dispatcher = dispatcher
    app.include_router(api)
    app.add_exception_handler(CapacityExceeded, capacity_exceeded_handler)
    app.add_exception_handler(ConcurrencyConflict, concurrency_conflict_handler)
    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
