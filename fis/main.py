import asyncio
import hmac
import json
from datetime import date
from typing import Any, Dict, Optional

import redis.asyncio as redis
import uvicorn
from fastapi import APIRouter, Body, Depends, FastAPI, Header, HTTPException, Request, WebSocket, WebSocketDisconnect
from fastapi.responses import JSONResponse

from . import classifier, config, events, resources, synchronizer
from .database import AsyncSessionLocal, engine
from .errors import FisError
from .logging_config import get_logger
from .models import Base
from .schemas import (AirlineCodes, BeltChange, BeltDetailOut, BeltBoardRow, BeltIn, BeltOut, BeltPatch,
                      BeltStatusChange, BulkUpdateIn, BulkUpdateOut, FlightCreate, FlightDetailsOut, FlightOut,
                      FlightStatusOut, FlightUpdate, GateBoardRow, GateChange, GateDetailOut, GateIn, GateOut,
                      GatePatch, GateRestrictions, GateStatusChange, ScheduleRow, SchedulePage, StatusChange,
                      StatusUpdateResponse, TerminalIn, TerminalOut, TerminalPatch)

logger = get_logger(__name__)

app = FastAPI(title="FIS Flight Status Sync")


# Simple websocket manager
class WSManager:
    def __init__(self):
        self.connections = set()

    async def connect(self, ws: WebSocket):
        await ws.accept()
        self.connections.add(ws)

    def disconnect(self, ws: WebSocket):
        self.connections.discard(ws)

    async def broadcast(self, message: dict):
        dead = []
        for ws in list(self.connections):
            try:
                await ws.send_json(message)
            except Exception:
                dead.append(ws)
        for d in dead:
            self.disconnect(d)


ws_manager = WSManager()


@app.exception_handler(FisError)
async def fis_error_handler(request: Request, exc: FisError):
    if exc.status_code >= 500:
        logger.error(f"[API] {request.method} {request.url.path} failed: {exc.message}")
    else:
        logger.warning(f"[API] {request.method} {request.url.path} rejected ({exc.kind}): {exc.message}")
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.exception_handler(Exception)
async def unexpected_error_handler(request: Request, exc: Exception):
    # internal details stay in the log
    logger.exception(f"[API] unexpected error on {request.method} {request.url.path}: {exc}")
    return JSONResponse(status_code=500, content={"error": "An unexpected error occurred.",
                                                  "kind": "integration_error"})


# Startup: create tables, seed statuses, start redis subscriber bridge
@app.on_event("startup")
async def startup():
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    if config.SEED_LOOKUPS:
        async with synchronizer.transaction() as session:
            await resources.seed_flight_statuses(session)
    asyncio.create_task(_redis_listener())
    logger.info(f"[STARTUP] FIS ready (home airport {config.HOME_AIRPORT})")


async def _redis_listener():
    pub = events.redis_client.pubsub()
    try:
        await pub.subscribe(config.EVENTS_CHANNEL)
        async for msg in pub.listen():
            if msg is None:
                continue
            if msg.get("type") != "message":
                continue
            try:
                data = json.loads(msg["data"])
            except json.JSONDecodeError:
                logger.warning(f"[WS] dropping undecodable message on {config.EVENTS_CHANNEL}")
                continue
            # forward to connected websockets
            await ws_manager.broadcast(data)
    except redis.RedisError as e:
        logger.error(f"[WS] event bridge stopped: {e}")


@app.get("/health")
async def health():
    return {"status": "ok"}


# ---- integration webhooks ----

async def require_integration_token(x_integration_token: Optional[str] = Header(None)):
    expected = config.INTEGRATION_TOKEN
    if expected is None:
        return
    if not x_integration_token or not hmac.compare_digest(x_integration_token, expected):
        raise HTTPException(status_code=401, detail="Unauthorized")


api = APIRouter(prefix="/api", dependencies=[Depends(require_integration_token)])


@api.post("/flights/sync")
async def webhook_sync_flight(payload: Dict[str, Any] = Body(...)):
    logger.info(f"[WEBHOOK] flight sync received: ref={payload.get('external_ref')} number={payload.get('flight_number')}")
    flight = await synchronizer.sync_flight(payload)
    return {"message": "Flight synchronized successfully.", "flight_id": flight.id}


@api.post("/flights/status", response_model=StatusUpdateResponse)
async def webhook_update_status(payload: Dict[str, Any] = Body(...)):
    logger.info(f"[WEBHOOK] status update received: {payload}")
    flight = await synchronizer.update_status_from_payload(payload)
    return StatusUpdateResponse(message="Flight status successfully updated and history logged.",
                                flight_id=flight.id, status=flight.status.status_code)


@api.post("/airports/sync")
async def webhook_sync_airport(payload: Dict[str, Any] = Body(...)):
    logger.info(f"[WEBHOOK] airport sync received: {payload.get('iata_code')}")
    airport = await synchronizer.sync_airport(payload)
    return {"message": "Airport synchronized successfully.", "iata_code": airport.iata_code}


@api.get("/flights/{flight_id}", response_model=FlightDetailsOut)
async def webhook_read_flight(flight_id: int):
    details = await synchronizer.read_flight_details(flight_id)
    return FlightDetailsOut.model_validate(details)


app.include_router(api)


# ---- flight actions ----

@app.patch("/flights/{flight_id}/status", response_model=FlightOut)
async def change_status(flight_id: int, body: StatusChange):
    return FlightOut.model_validate(await synchronizer.update_status(flight_id, body.status_id, body.reason))


@app.patch("/flights/{flight_id}/gate", response_model=FlightOut)
async def change_gate(flight_id: int, body: GateChange):
    return FlightOut.model_validate(await synchronizer.update_gate(flight_id, body.gate_id, body.reason))


@app.patch("/flights/{flight_id}/gate-status", response_model=GateOut)
async def change_gate_status(flight_id: int, body: GateStatusChange):
    return GateOut.model_validate(await synchronizer.update_gate_status(flight_id, body.gate_status))


@app.patch("/flights/{flight_id}/baggage-belt", response_model=FlightOut)
async def change_baggage_belt(flight_id: int, body: BeltChange):
    return FlightOut.model_validate(await synchronizer.update_baggage_belt(flight_id, body.baggage_belt_id, body.reason))


@app.patch("/flights/{flight_id}/belt-status", response_model=BeltOut)
async def change_belt_status(flight_id: int, body: BeltStatusChange):
    return BeltOut.model_validate(await synchronizer.update_belt_status(flight_id, body.status))


@app.post("/flights/bulk-update", response_model=BulkUpdateOut)
async def bulk_update(body: BulkUpdateIn):
    results = await synchronizer.bulk_update(body.flight_ids, body.update_type, body.value, body.reason)
    updated = sum(r.ok for r in results)
    return BulkUpdateOut(updated=updated, failed=len(results) - updated, results=results)


@app.post("/flights", response_model=FlightOut, status_code=201)
async def create_flight(body: FlightCreate):
    flight = await synchronizer.create_flight(body.model_dump(exclude_none=True))
    return FlightOut.model_validate(flight)


@app.put("/flights/{flight_id}", response_model=FlightOut)
async def update_flight(flight_id: int, body: FlightUpdate):
    flight = await synchronizer.update_flight(flight_id, body.model_dump(exclude_unset=True))
    return FlightOut.model_validate(flight)


@app.delete("/flights/{flight_id}")
async def delete_flight(flight_id: int):
    await synchronizer.delete_flight(flight_id)
    return {"message": "Flight deleted successfully."}


# ---- read side ----

@app.get("/flights/schedule/{role}", response_model=SchedulePage)
async def flight_schedule(role: str, search: Optional[str] = None, status: Optional[str] = None,
                          date_from: Optional[date] = None, date_to: Optional[date] = None,
                          page: int = 1, per_page: int = 10):
    if role not in ("all", "arrivals", "departures"):
        raise HTTPException(status_code=404, detail="Unknown schedule type")
    async with AsyncSessionLocal() as session:
        result = await classifier.list_schedule(
            session, config.HOME_AIRPORT, role, search=search, status=status,
            date_from=date_from, date_to=date_to, page=page, per_page=per_page)
        items = [
            ScheduleRow(**FlightOut.model_validate(e.flight).model_dump(), type=e.type,
                        has_connections=e.connections.has_connections,
                        inbound_count=e.connections.inbound, outbound_count=e.connections.outbound)
            for e in result.items
        ]
    return SchedulePage(items=items, total=result.total, page=result.page, pages=result.pages)


@app.get("/gates/board")
async def gates_board(terminal_id: Optional[int] = None):
    async with AsyncSessionLocal() as session:
        board = await classifier.gate_board(session, terminal_id=terminal_id)
        return [GateBoardRow.model_validate(entry) for entry in board]


@app.get("/baggage-belts/board")
async def belts_board(terminal_id: Optional[int] = None):
    async with AsyncSessionLocal() as session:
        board = await classifier.belt_board(session, terminal_id=terminal_id)
        return [BeltBoardRow.model_validate(entry) for entry in board]


@app.get("/dashboard")
async def dashboard():
    async with AsyncSessionLocal() as session:
        return await classifier.dashboard_stats(session, config.HOME_AIRPORT)


@app.get("/flight-statuses")
async def flight_statuses():
    async with AsyncSessionLocal() as session:
        return [FlightStatusOut.model_validate(s) for s in await resources.list_statuses(session)]


# ---- terminals / gates / baggage belts ----

@app.get("/terminals")
async def list_terminals():
    async with AsyncSessionLocal() as session:
        return [TerminalOut.model_validate(t) for t in await resources.list_terminals(session)]


@app.post("/terminals", response_model=TerminalOut, status_code=201)
async def create_terminal(body: TerminalIn):
    return TerminalOut.model_validate(await resources.create_terminal(body.model_dump()))


@app.put("/terminals/{terminal_id}", response_model=TerminalOut)
async def update_terminal(terminal_id: int, body: TerminalPatch):
    return TerminalOut.model_validate(await resources.update_terminal(terminal_id, body.model_dump(exclude_unset=True)))


@app.delete("/terminals/{terminal_id}")
async def delete_terminal(terminal_id: int):
    await resources.delete_terminal(terminal_id)
    return {"message": "Terminal deleted successfully."}


@app.get("/gates")
async def list_gates(terminal_id: Optional[int] = None):
    async with AsyncSessionLocal() as session:
        return [GateDetailOut.model_validate(g) for g in await resources.list_gates(session, terminal_id)]


@app.post("/gates", response_model=GateDetailOut, status_code=201)
async def create_gate(body: GateIn):
    return GateDetailOut.model_validate(await resources.create_gate(body.model_dump()))


@app.put("/gates/{gate_id}", response_model=GateDetailOut)
async def update_gate(gate_id: int, body: GatePatch):
    return GateDetailOut.model_validate(await resources.update_gate(gate_id, body.model_dump(exclude_unset=True)))


@app.put("/gates/{gate_id}/airlines", response_model=GateDetailOut)
async def assign_gate_airlines(gate_id: int, body: AirlineCodes):
    return GateDetailOut.model_validate(await resources.assign_airlines(gate_id, body.airline_codes))


@app.put("/gates/{gate_id}/restrictions", response_model=GateDetailOut)
async def set_gate_restrictions(gate_id: int, body: GateRestrictions):
    restrictions = [r.model_dump() for r in body.restrictions]
    return GateDetailOut.model_validate(await resources.set_restrictions(gate_id, restrictions))


@app.delete("/gates/{gate_id}")
async def delete_gate(gate_id: int):
    await resources.delete_gate(gate_id)
    return {"message": "Gate deleted successfully."}


@app.get("/baggage-belts")
async def list_belts(terminal_id: Optional[int] = None):
    async with AsyncSessionLocal() as session:
        return [BeltDetailOut.model_validate(b) for b in await resources.list_belts(session, terminal_id)]


@app.post("/baggage-belts", response_model=BeltDetailOut, status_code=201)
async def create_belt(body: BeltIn):
    return BeltDetailOut.model_validate(await resources.create_belt(body.model_dump()))


@app.put("/baggage-belts/{belt_id}", response_model=BeltDetailOut)
async def update_belt(belt_id: int, body: BeltPatch):
    return BeltDetailOut.model_validate(await resources.update_belt(belt_id, body.model_dump(exclude_unset=True)))


@app.delete("/baggage-belts/{belt_id}")
async def delete_belt(belt_id: int):
    await resources.delete_belt(belt_id)
    return {"message": "Baggage belt deleted successfully."}


# WebSocket endpoint: live flight event feed
@app.websocket("/ws")
async def websocket_endpoint(ws: WebSocket):
    await ws_manager.connect(ws)
    try:
        while True:
            await ws.receive_text()
    except WebSocketDisconnect:
        ws_manager.disconnect(ws)


if __name__ == '__main__':
    uvicorn.run("fis.main:app", host="0.0.0.0", port=8000, reload=True)
