"""Status and resource synchronization: the single audited write path for flights.

Each public operation runs as one transaction: resolve identifiers, validate,
mutate the flight record, append to the event log. Typed errors from the
resolver and the store pass through untouched; any other failure surfaces as
``IntegrationError``. Committed events are then published to the live feed.
"""
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional

import pydantic
from sqlalchemy import or_, select
from sqlalchemy.exc import SQLAlchemyError

from . import events, models, resolver, store
from .database import AsyncSessionLocal
from .errors import FisError, IntegrationError, ValidationError
from .logging_config import get_logger
from .models import EventType
from .schemas import AirportSyncPayload, BulkItemResult, FlightSyncPayload, StatusUpdatePayload

logger = get_logger(__name__)

UNASSIGNED = "Unassigned"
BULK_UPDATE_TYPES = ("status", "gate", "baggage_belt")

_EVENT_FOR_FIELD = {
    "status": EventType.STATUS_CHANGE,
    "gate": EventType.GATE_CHANGE,
    "baggage_belt": EventType.CLAIM_CHANGE,
    "terminal": EventType.TERMINAL_CHANGE,
    "scheduled_departure_time": EventType.SCHEDULE_CHANGE,
    "scheduled_arrival_time": EventType.SCHEDULE_CHANGE,
}


@dataclass
class FlightDetails:
    flight: models.Flight
    events: List[models.FlightEvent]
    connections: List[models.FlightConnection] = field(default_factory=list)


@asynccontextmanager
async def transaction():
    async with AsyncSessionLocal() as session:
        try:
            async with session.begin():
                yield session
        except FisError:
            raise
        except SQLAlchemyError as e:
            logger.exception(f"[SYNC] storage failure, transaction rolled back: {e}")
            raise IntegrationError("The update could not be stored.") from e
        except Exception as e:
            logger.exception(f"[SYNC] unexpected failure, transaction rolled back: {e}")
            raise IntegrationError("The update could not be completed.") from e


def _display(field_name: str, value) -> Optional[str]:
    """Human-readable value for the event log."""
    if value is None:
        return None
    if isinstance(value, models.FlightStatus):
        return value.status_name
    if isinstance(value, models.Gate):
        return value.gate_code
    if isinstance(value, models.BaggageBelt):
        return value.belt_code
    if isinstance(value, models.Terminal):
        return value.id_terminal_code
    if isinstance(value, datetime):
        return value.isoformat()
    return str(value)


def _new_display(field_name: str, value) -> Optional[str]:
    if value is None and field_name in ("gate", "baggage_belt", "terminal"):
        return UNASSIGNED
    return _display(field_name, value)


async def _resolve_changes(session, fields: Dict[str, Any]) -> Dict[str, Any]:
    """Turn caller-supplied identifiers into stored rows / validated natural keys."""
    changes = {}
    for name, value in fields.items():
        if name == "status":
            changes[name] = await resolver.resolve_status(session, value)
        elif name == "gate":
            changes[name] = await resolver.resolve_optional(resolver.resolve_gate, session, value)
        elif name == "baggage_belt":
            changes[name] = await resolver.resolve_optional(resolver.resolve_belt, session, value)
        elif name == "terminal":
            changes[name] = await resolver.resolve_optional(resolver.resolve_terminal, session, value)
        elif name in ("origin_code", "destination_code"):
            changes[name] = (await resolver.resolve_airport(session, value, field=name)).iata_code
        elif name == "airline_code":
            changes[name] = (await resolver.resolve_airline(session, value)).airline_code
        elif name == "aircraft_icao_code":
            changes[name] = (await resolver.resolve_aircraft(session, value)).icao_code if value else None
        else:
            changes[name] = value
    return changes


async def _log_changes(session, flight: models.Flight, moved: Iterable[store.FieldChange],
                       timestamp: Optional[datetime] = None) -> List[models.FlightEvent]:
    recorded = []
    for change in moved:
        event_type = _EVENT_FOR_FIELD.get(change.field, EventType.DETAILS_CHANGE)
        description = None
        if event_type in (EventType.SCHEDULE_CHANGE, EventType.DETAILS_CHANGE):
            description = f"{change.field} updated"
        recorded.append(await events.record_event(
            session, flight.id, event_type,
            _display(change.field, change.old), _new_display(change.field, change.new),
            description=description, timestamp=timestamp,
        ))
    return recorded


async def _create(session, changes: Dict[str, Any], timestamp: Optional[datetime] = None):
    flight = await store.create_flight(session, changes)
    recorded = [await events.record_event(session, flight.id, EventType.CREATED,
                                          description="Flight created in FIS", timestamp=timestamp)]
    if flight.scheduled_arrival_time is not None:
        minutes = (flight.scheduled_arrival_time - flight.scheduled_departure_time).total_seconds() / 60
        hours = round(minutes / 60, 2)
        recorded.append(await events.record_event(
            session, flight.id, EventType.FLIGHT_HOURS, new_value=f"{hours:g}",
            description="Scheduled flight duration (hours)", timestamp=timestamp,
        ))
    return flight, recorded


# ---- integration (webhook) operations ----

async def sync_flight(payload: Dict[str, Any]) -> models.Flight:
    """Create-or-update a flight from an external payload.

    The upsert key is ``external_ref`` when the integration sends one, else
    ``(flight_number, scheduled_departure_time)``. A ref that matches nothing
    falls back to that key and is stored on the flight it finds.
    """
    try:
        data = FlightSyncPayload.model_validate(payload)
    except pydantic.ValidationError as e:
        raise IntegrationError(f"Malformed flight payload ({e.error_count()} invalid field(s)).") from e
    if not data.external_ref and not (data.flight_number and data.scheduled_departure_time):
        raise IntegrationError("Flight payload needs external_ref, or flight_number and scheduled_departure_time.")

    present = {name: getattr(data, name) for name in data.model_fields_set if name != "event_timestamp"}
    timestamp = store.to_utc_naive(data.event_timestamp)

    async with transaction() as session:
        existing = await store.find_for_sync(session, data.external_ref, data.flight_number,
                                             data.scheduled_departure_time)
        changes = await _resolve_changes(session, present)
        if existing is None:
            flight, recorded = await _create(session, changes, timestamp)
            action = "created"
        else:
            flight = await store.get_flight(session, existing.id, for_update=True)
            moved = await store.apply_changes(session, flight, changes)
            recorded = await _log_changes(session, flight, moved, timestamp)
            action = f"updated ({len(recorded)} change(s))"
    await events.publish_events(recorded)
    logger.info(f"[SYNC] flight {flight.id} ({flight.flight_number}) {action}")
    return flight


async def update_status_from_payload(payload: Dict[str, Any]) -> models.Flight:
    """Webhook variant of ``update_status``: targets by id or by flight number."""
    try:
        data = StatusUpdatePayload.model_validate(payload)
    except pydantic.ValidationError as e:
        raise IntegrationError(f"Malformed status payload ({e.error_count()} invalid field(s)).") from e
    missing = {}
    if data.flight_id is None and not data.flight_number:
        missing["flight_id"] = "flight_id or flight_number is required"
    if data.status_code is None or data.status_code == "":
        missing["status_code"] = "status_code is required"
    if missing:
        raise ValidationError(missing, "Missing flight_id and/or status_code.")

    async with transaction() as session:
        if data.flight_id is not None:
            flight = await store.get_flight(session, data.flight_id, for_update=True)
        else:
            flight = await store.resolve_by_number(session, data.flight_number, data.scheduled_departure_date)
        flight, event = await _update_status(session, flight, data.status_code)
    await events.publish_events([event])
    return flight


async def sync_airport(payload: Dict[str, Any]) -> models.Airport:
    try:
        data = AirportSyncPayload.model_validate(payload)
    except pydantic.ValidationError as e:
        raise IntegrationError(f"Malformed airport payload ({e.error_count()} invalid field(s)).") from e

    code = data.iata_code.upper()
    async with transaction() as session:
        airport = await session.get(models.Airport, code)
        if airport is None:
            airport = models.Airport(iata_code=code)
            session.add(airport)
        airport.airport_name = data.airport_name
        airport.city = data.city
        airport.country = data.country
        airport.airport_status = data.airport_status or airport.airport_status or "Active"
        airport.timezone = data.timezone or airport.timezone or "UTC"
    logger.info(f"[SYNC] airport {code} synchronized")
    return airport


async def read_flight_details(flight_id: int, include_deleted: bool = False, event_limit: int = 20) -> FlightDetails:
    async with AsyncSessionLocal() as session:
        flight = await store.get_flight(session, flight_id, include_deleted=include_deleted)
        history = await events.flight_history(session, flight_id, limit=event_limit)
        q = select(models.FlightConnection).where(or_(
            models.FlightConnection.arrival_flight_id == flight_id,
            models.FlightConnection.departure_flight_id == flight_id,
        )).order_by(models.FlightConnection.id)
        connections = list((await session.execute(q)).scalars().all())
    return FlightDetails(flight, history, connections)


# ---- single-flight operations (UI actions) ----

async def _update_status(session, flight: models.Flight, status_ref, reason: Optional[str] = None):
    new_status = await resolver.resolve_status(session, status_ref)
    old_status = flight.status
    await store.apply_changes(session, flight, {"status": new_status})
    # logged even when unchanged: the trail records every request
    event = await events.record_event(session, flight.id, EventType.STATUS_CHANGE,
                                      _display("status", old_status), new_status.status_name,
                                      description=reason)
    logger.info(f"[STATUS] flight {flight.id}: {event.old_value} -> {event.new_value}")
    return flight, event


async def update_status(flight_id: int, status_ref, reason: Optional[str] = None) -> models.Flight:
    async with transaction() as session:
        flight = await store.get_flight(session, flight_id, for_update=True)
        flight, event = await _update_status(session, flight, status_ref, reason)
    await events.publish_events([event])
    return flight


async def _reassign(flight_id: int, field_name: str, ref, resolve, event_type: EventType,
                   reason: Optional[str] = None) -> models.Flight:
    async with transaction() as session:
        flight = await store.get_flight(session, flight_id, for_update=True)
        new = await resolver.resolve_optional(resolve, session, ref)
        old = getattr(flight, field_name)
        await store.apply_changes(session, flight, {field_name: new})
        event = await events.record_event(session, flight.id, event_type,
                                          _display(field_name, old), _new_display(field_name, new),
                                          description=reason)
    await events.publish_events([event])
    logger.info(f"[{event_type.value}] flight {flight_id}: {event.old_value} -> {event.new_value}")
    return flight


async def update_gate(flight_id: int, gate_ref=None, reason: Optional[str] = None) -> models.Flight:
    """Assign a gate, or clear it with ``None``. Does not touch the gate's own Open/Closed status."""
    return await _reassign(flight_id, "gate", gate_ref, resolver.resolve_gate, EventType.GATE_CHANGE, reason)


async def update_baggage_belt(flight_id: int, belt_ref=None, reason: Optional[str] = None) -> models.Flight:
    return await _reassign(flight_id, "baggage_belt", belt_ref, resolver.resolve_belt, EventType.CLAIM_CHANGE, reason)


async def update_gate_status(flight_id: int, gate_status: str) -> models.Gate:
    """Open/close the gate the flight currently holds.

    The change is logged against this flight, not as a gate-level record.
    """
    if gate_status not in models.GATE_STATUSES:
        raise ValidationError({"gate_status": "must be one of " + ", ".join(models.GATE_STATUSES)})
    async with transaction() as session:
        flight = await store.get_flight(session, flight_id, for_update=True)
        gate = flight.gate
        if gate is None:
            raise ValidationError({"gate": "Flight does not have an assigned gate."})
        old = gate.gate_status or "N/A"
        gate.gate_status = gate_status
        await session.flush()
        event = await events.record_event(session, flight.id, EventType.GATE_CHANGE, old, gate_status,
                                          description="Gate status updated")
    await events.publish_events([event])
    return gate


async def update_belt_status(flight_id: int, status: str) -> models.BaggageBelt:
    if status not in models.BELT_STATUSES:
        raise ValidationError({"status": "must be one of " + ", ".join(models.BELT_STATUSES)})
    async with transaction() as session:
        flight = await store.get_flight(session, flight_id, for_update=True)
        belt = flight.baggage_belt
        if belt is None:
            raise ValidationError({"baggage_belt": "Flight does not have an assigned baggage belt."})
        old = belt.status or "N/A"
        belt.status = status
        await session.flush()
        event = await events.record_event(session, flight.id, EventType.CLAIM_CHANGE, old, status,
                                          description="Baggage belt status updated")
    await events.publish_events([event])
    return belt


async def bulk_update(flight_ids: Iterable[int], update_type: str, value, reason: Optional[str] = None) -> List[BulkItemResult]:
    """Apply one change to many flights, each in its own transaction.

    A failing flight does not roll back the others; every id gets a result row.
    """
    if update_type not in BULK_UPDATE_TYPES:
        raise ValidationError({"update_type": "must be one of " + ", ".join(BULK_UPDATE_TYPES)})
    operation = {
        "status": update_status,
        "gate": update_gate,
        "baggage_belt": update_baggage_belt,
    }[update_type]

    results = []
    for flight_id in dict.fromkeys(flight_ids):
        try:
            await operation(flight_id, value, reason)
        except FisError as e:
            logger.warning(f"[BULK] {update_type} update skipped for flight {flight_id}: {e.message}")
            results.append(BulkItemResult(flight_id=flight_id, ok=False, error_kind=e.kind, message=e.message))
        else:
            results.append(BulkItemResult(flight_id=flight_id, ok=True))
    logger.info(f"[BULK] {update_type}: {sum(r.ok for r in results)}/{len(results)} flights updated")
    return results


# ---- manual flight management ----

async def create_flight(fields: Dict[str, Any]) -> models.Flight:
    async with transaction() as session:
        changes = await _resolve_changes(session, fields)
        flight, recorded = await _create(session, changes)
    await events.publish_events(recorded)
    logger.info(f"[FLIGHTS] flight {flight.id} ({flight.flight_number}) created")
    return flight


async def update_flight(flight_id: int, fields: Dict[str, Any]) -> models.Flight:
    async with transaction() as session:
        flight = await store.get_flight(session, flight_id, for_update=True)
        changes = await _resolve_changes(session, fields)
        moved = await store.apply_changes(session, flight, changes)
        recorded = await _log_changes(session, flight, moved)
    await events.publish_events(recorded)
    return flight


async def delete_flight(flight_id: int) -> models.Flight:
    async with transaction() as session:
        flight = await store.delete_flight(session, flight_id)
    logger.info(f"[FLIGHTS] flight {flight_id} soft-deleted")
    return flight
