"""Terminal, gate and baggage belt management, plus status seeding."""
from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy import exists, select
from sqlalchemy.ext.asyncio import AsyncSession

from . import events, models, resolver
from .errors import Conflict, NotFound, ValidationError
from .logging_config import get_logger
from .synchronizer import UNASSIGNED, transaction

logger = get_logger(__name__)

STANDARD_STATUSES = (
    ("SCH", "Scheduled", "Flight is scheduled"),
    ("DEP", "Departed", "Flight has departed"),
    ("ARR", "Arrived", "Flight has arrived"),
    ("BRD", "Boarding", "Flight is boarding"),
    ("CNX", "Cancelled", "Flight is cancelled"),
    ("DLY", "Delayed", "Flight is delayed"),
)

# a gate or belt is still in use while one of its flights is in these states
GATE_BUSY_STATUSES = ("SCH", "BRD", "DLY")
BELT_BUSY_STATUSES = ("SCH", "BRD", "ARR")


async def _get(session: AsyncSession, model, row_id: int, label: str):
    row = await session.get(model, row_id)
    if row is None:
        raise NotFound(f"{label} {row_id} not found")
    return row


async def _taken(session: AsyncSession, model, exclude_id: Optional[int] = None, **keys) -> bool:
    q = select(model.id).filter_by(**keys)
    if exclude_id is not None:
        q = q.where(model.id != exclude_id)
    return (await session.execute(q.limit(1))).first() is not None


async def _in_use(session: AsyncSession, column, row_id: int, status_codes: Iterable[str]) -> bool:
    clause = exists().where(
        column == row_id,
        models.Flight.deleted_at.is_(None),
        models.Flight.status_id.in_(
            select(models.FlightStatus.id).where(models.FlightStatus.status_code.in_(list(status_codes)))
        ),
    )
    return bool((await session.execute(select(clause))).scalar())


async def _release(session: AsyncSession, relation: str, row_id: int, old_code: str, description: str,
                   event_type: models.EventType) -> List[models.FlightEvent]:
    """Unassign a gate or belt from every flight still pointing at it, logging each one."""
    column = getattr(models.Flight, f"{relation}_id")
    q = select(models.Flight).where(column == row_id).order_by(models.Flight.id).with_for_update()
    recorded = []
    for flight in (await session.execute(q)).scalars().all():
        setattr(flight, relation, None)
        setattr(flight, column.key, None)
        recorded.append(await events.record_event(session, flight.id, event_type, old_code, UNASSIGNED,
                                                  description=description))
    await session.flush()
    return recorded


async def _airlines(session: AsyncSession, codes: Iterable[str]) -> List[models.Airline]:
    return [await resolver.resolve_airline(session, code) for code in dict.fromkeys(codes)]


def _check_status(value: str, allowed, field: str):
    if value not in allowed:
        raise ValidationError({field: "must be one of " + ", ".join(allowed)})


# ---- terminals ----

async def list_terminals(session: AsyncSession) -> List[models.Terminal]:
    q = select(models.Terminal).order_by(models.Terminal.iata_code, models.Terminal.terminal_code)
    return list((await session.execute(q)).scalars().all())


async def create_terminal(data: Dict[str, Any]) -> models.Terminal:
    async with transaction() as session:
        airport = await resolver.resolve_airport(session, data["iata_code"], field="iata_code")
        code = data["terminal_code"].strip()
        if await _taken(session, models.Terminal, iata_code=airport.iata_code, terminal_code=code):
            raise Conflict(f"terminal {code} already exists at {airport.iata_code}")
        terminal = models.Terminal(iata_code=airport.iata_code, terminal_code=code, name=data.get("name"))
        session.add(terminal)
        await session.flush()
    logger.info(f"[RESOURCES] terminal {terminal.id_terminal_code} created")
    return terminal


async def update_terminal(terminal_id: int, data: Dict[str, Any]) -> models.Terminal:
    async with transaction() as session:
        terminal = await _get(session, models.Terminal, terminal_id, "terminal")
        iata = terminal.iata_code
        if data.get("iata_code"):
            iata = (await resolver.resolve_airport(session, data["iata_code"], field="iata_code")).iata_code
        code = (data.get("terminal_code") or terminal.terminal_code).strip()
        if await _taken(session, models.Terminal, exclude_id=terminal.id, iata_code=iata, terminal_code=code):
            raise Conflict(f"terminal {code} already exists at {iata}")
        terminal.iata_code, terminal.terminal_code = iata, code
        if "name" in data:
            terminal.name = data["name"]
        await session.flush()
    return terminal


async def delete_terminal(terminal_id: int) -> None:
    async with transaction() as session:
        terminal = await _get(session, models.Terminal, terminal_id, "terminal")
        if await _taken(session, models.Gate, terminal_id=terminal.id) or \
                await _taken(session, models.BaggageBelt, terminal_id=terminal.id):
            raise Conflict("Cannot delete terminal with existing gates or baggage belts.")
        await session.delete(terminal)
    logger.info(f"[RESOURCES] terminal {terminal_id} deleted")


# ---- gates ----

async def list_gates(session: AsyncSession, terminal_id: Optional[int] = None) -> List[models.Gate]:
    q = select(models.Gate).order_by(models.Gate.terminal_id, models.Gate.gate_code)
    if terminal_id is not None:
        q = q.where(models.Gate.terminal_id == terminal_id)
    return list((await session.execute(q)).scalars().all())


async def create_gate(data: Dict[str, Any]) -> models.Gate:
    status = data.get("gate_status") or "Open"
    _check_status(status, models.GATE_STATUSES, "gate_status")
    async with transaction() as session:
        terminal = await _get(session, models.Terminal, data["terminal_id"], "terminal")
        code = data["gate_code"].strip()
        if await _taken(session, models.Gate, terminal_id=terminal.id, gate_code=code):
            raise Conflict(f"gate {code} already exists in terminal {terminal.id_terminal_code}")
        gate = models.Gate(terminal_id=terminal.id, gate_code=code, gate_status=status,
                           authorized_airlines=await _airlines(session, data.get("airline_codes") or []))
        session.add(gate)
        await session.flush()
        await session.refresh(gate, ["terminal", "restrictions"])
    logger.info(f"[RESOURCES] gate {gate.id_gate_code} created")
    return gate


async def update_gate(gate_id: int, data: Dict[str, Any]) -> models.Gate:
    """Composite code follows terminal/gate code changes; the stored flights keep pointing at the row."""
    if data.get("gate_status"):
        _check_status(data["gate_status"], models.GATE_STATUSES, "gate_status")
    async with transaction() as session:
        gate = await _get(session, models.Gate, gate_id, "gate")
        terminal_id = gate.terminal_id
        if data.get("terminal_id") is not None:
            terminal_id = (await _get(session, models.Terminal, data["terminal_id"], "terminal")).id
        code = (data.get("gate_code") or gate.gate_code).strip()
        if await _taken(session, models.Gate, exclude_id=gate.id, terminal_id=terminal_id, gate_code=code):
            raise Conflict(f"gate {code} already exists in terminal {terminal_id}")
        gate.terminal_id, gate.gate_code = terminal_id, code
        if data.get("gate_status"):
            gate.gate_status = data["gate_status"]
        if data.get("airline_codes") is not None:
            gate.authorized_airlines = await _airlines(session, data["airline_codes"])
        await session.flush()
        await session.refresh(gate, ["terminal", "restrictions"])
    logger.info(f"[RESOURCES] gate {gate.id} is now {gate.id_gate_code}")
    return gate


async def assign_airlines(gate_id: int, airline_codes: Iterable[str]) -> models.Gate:
    async with transaction() as session:
        gate = await _get(session, models.Gate, gate_id, "gate")
        gate.authorized_airlines = await _airlines(session, airline_codes)
        await session.flush()
    return gate


async def set_restrictions(gate_id: int, restrictions: Iterable[Dict[str, str]]) -> models.Gate:
    """Replace the gate's aircraft restrictions; an aircraft listed twice keeps its last type."""
    wanted = {}
    for item in restrictions:
        restriction_type = (item.get("restriction_type") or "").strip()
        if not restriction_type:
            raise ValidationError({"restriction_type": "is required"})
        wanted[item["aircraft_icao_code"]] = restriction_type
    async with transaction() as session:
        gate = await _get(session, models.Gate, gate_id, "gate")
        resolved = {}
        for code, restriction_type in wanted.items():
            aircraft = await resolver.resolve_aircraft(session, code)
            resolved[aircraft.icao_code] = restriction_type
        current = {r.aircraft_icao_code: r for r in gate.restrictions}
        kept = []
        for code, restriction_type in resolved.items():
            row = current.get(code) or models.GateRestriction(aircraft_icao_code=code)
            row.restriction_type = restriction_type
            kept.append(row)
        gate.restrictions = kept
        await session.flush()
        await session.refresh(gate, ["restrictions"])
    logger.info(f"[RESOURCES] gate {gate.id} restrictions: {len(gate.restrictions)} aircraft type(s)")
    return gate


async def delete_gate(gate_id: int) -> None:
    async with transaction() as session:
        gate = await _get(session, models.Gate, gate_id, "gate")
        if await _in_use(session, models.Flight.gate_id, gate.id, GATE_BUSY_STATUSES):
            raise Conflict("Cannot delete gate with active flights.")
        released = await _release(session, "gate", gate.id, gate.gate_code, "Gate deleted",
                                  models.EventType.GATE_CHANGE)
        await session.delete(gate)
    await events.publish_events(released)
    logger.info(f"[RESOURCES] gate {gate_id} deleted")


# ---- baggage belts ----

async def list_belts(session: AsyncSession, terminal_id: Optional[int] = None) -> List[models.BaggageBelt]:
    q = select(models.BaggageBelt).order_by(models.BaggageBelt.terminal_id, models.BaggageBelt.belt_code)
    if terminal_id is not None:
        q = q.where(models.BaggageBelt.terminal_id == terminal_id)
    return list((await session.execute(q)).scalars().all())


async def create_belt(data: Dict[str, Any]) -> models.BaggageBelt:
    status = data.get("status") or "Active"
    _check_status(status, models.BELT_STATUSES, "status")
    async with transaction() as session:
        terminal = await _get(session, models.Terminal, data["terminal_id"], "terminal")
        code = data["belt_code"].strip()
        if await _taken(session, models.BaggageBelt, terminal_id=terminal.id, belt_code=code):
            raise Conflict(f"baggage belt {code} already exists in terminal {terminal.id_terminal_code}")
        belt = models.BaggageBelt(terminal_id=terminal.id, belt_code=code, status=status)
        session.add(belt)
        await session.flush()
        await session.refresh(belt, ["terminal"])
    logger.info(f"[RESOURCES] baggage belt {belt.id_belt_code} created")
    return belt


async def update_belt(belt_id: int, data: Dict[str, Any]) -> models.BaggageBelt:
    if data.get("status"):
        _check_status(data["status"], models.BELT_STATUSES, "status")
    async with transaction() as session:
        belt = await _get(session, models.BaggageBelt, belt_id, "baggage belt")
        terminal_id = belt.terminal_id
        if data.get("terminal_id") is not None:
            terminal_id = (await _get(session, models.Terminal, data["terminal_id"], "terminal")).id
        code = (data.get("belt_code") or belt.belt_code).strip()
        if await _taken(session, models.BaggageBelt, exclude_id=belt.id, terminal_id=terminal_id, belt_code=code):
            raise Conflict(f"baggage belt {code} already exists in terminal {terminal_id}")
        belt.terminal_id, belt.belt_code = terminal_id, code
        if data.get("status"):
            belt.status = data["status"]
        await session.flush()
        await session.refresh(belt, ["terminal"])
    return belt


async def delete_belt(belt_id: int) -> None:
    async with transaction() as session:
        belt = await _get(session, models.BaggageBelt, belt_id, "baggage belt")
        if await _in_use(session, models.Flight.baggage_belt_id, belt.id, BELT_BUSY_STATUSES):
            raise Conflict("Cannot delete baggage belt with active flights.")
        released = await _release(session, "baggage_belt", belt.id, belt.belt_code, "Baggage belt deleted",
                                  models.EventType.CLAIM_CHANGE)
        await session.delete(belt)
    await events.publish_events(released)
    logger.info(f"[RESOURCES] baggage belt {belt_id} deleted")


# ---- lookups ----

async def list_statuses(session: AsyncSession) -> List[models.FlightStatus]:
    q = select(models.FlightStatus).order_by(models.FlightStatus.id)
    return list((await session.execute(q)).scalars().all())


async def seed_flight_statuses(session: AsyncSession) -> int:
    """Insert any missing standard status; returns how many were added."""
    have = set((await session.execute(select(models.FlightStatus.status_code))).scalars().all())
    added = 0
    for code, name, description in STANDARD_STATUSES:
        if code in have:
            continue
        session.add(models.FlightStatus(status_code=code, status_name=name, description=description))
        added += 1
    await session.flush()
    if added:
        logger.info(f"[SEED] {added} flight status(es) added")
    return added
