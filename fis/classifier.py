"""Read-side derivations over the flight set. Nothing here writes.

The home airport is always passed in by the caller. Configured resource
status (gate Open/Closed, belt Active/Maintenance...) and derived occupancy
(some flight is boarding there now) are reported as separate facts.
"""
from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta
from typing import Dict, Iterable, List, Optional, Union

from sqlalchemy import func, or_, select, union
from sqlalchemy.ext.asyncio import AsyncSession

from . import models, resolver
from .store import day_bounds

ARRIVAL = "Arrival"
DEPARTURE = "Departure"

BOARDING = "BRD"
DEPARTED = "DEP"
ARRIVED = "ARR"
CANCELLED = "CNX"
DELAYED = "DLY"

PER_PAGE_OPTIONS = (10, 25, 50)


@dataclass
class ConnectionCount:
    inbound: int = 0
    outbound: int = 0

    @property
    def has_connections(self) -> bool:
        return bool(self.inbound or self.outbound)


@dataclass
class ScheduleEntry:
    flight: models.Flight
    type: str
    connections: ConnectionCount


@dataclass
class SchedulePage:
    items: List[ScheduleEntry]
    total: int
    page: int
    per_page: int

    @property
    def pages(self) -> int:
        return (self.total + self.per_page - 1) // self.per_page


@dataclass
class GateBoardEntry:
    gate: models.Gate
    current_flights: List[models.Flight] = field(default_factory=list)
    is_occupied: bool = False


@dataclass
class BeltBoardEntry:
    belt: models.BaggageBelt
    current_flights: List[models.Flight] = field(default_factory=list)
    is_active: bool = False


def classify(flight: models.Flight, home_airport: str) -> str:
    """Arrival when the flight lands at the home airport, Departure otherwise."""
    return ARRIVAL if flight.destination_code == home_airport.upper() else DEPARTURE


def resolve_per_page(per_page: int) -> int:
    return per_page if per_page in PER_PAGE_OPTIONS else PER_PAGE_OPTIONS[0]


def default_window(now: Optional[datetime] = None):
    """Start of today until the end of tomorrow."""
    now = now or models.utcnow()
    start = datetime.combine(now.date(), time.min)
    return start, start + timedelta(days=2) - timedelta(microseconds=1)


async def connection_counts(session: AsyncSession, flight_ids: Iterable[int]) -> Dict[int, ConnectionCount]:
    """Per flight: rows where it is the arrival leg (inbound) and the departure leg (outbound)."""
    ids = list(dict.fromkeys(flight_ids))
    counts = {flight_id: ConnectionCount() for flight_id in ids}
    if not ids:
        return counts

    conn = models.FlightConnection
    inbound = await session.execute(
        select(conn.arrival_flight_id, func.count())
        .where(conn.arrival_flight_id.in_(ids))
        .group_by(conn.arrival_flight_id))
    for flight_id, n in inbound:
        counts[flight_id].inbound = n
    outbound = await session.execute(
        select(conn.departure_flight_id, func.count())
        .where(conn.departure_flight_id.in_(ids))
        .group_by(conn.departure_flight_id))
    for flight_id, n in outbound:
        counts[flight_id].outbound = n
    return counts


def _live():
    return select(models.Flight).where(models.Flight.deleted_at.is_(None))


async def is_occupied(session: AsyncSession, gate: Union[models.Gate, int],
                      window_start: datetime, window_end: datetime) -> bool:
    gate_id = gate.id if isinstance(gate, models.Gate) else gate
    q = (select(models.Flight.id)
         .join(models.FlightStatus, models.Flight.status_id == models.FlightStatus.id)
         .where(models.Flight.gate_id == gate_id,
                models.Flight.deleted_at.is_(None),
                models.Flight.scheduled_departure_time.between(window_start, window_end),
                models.FlightStatus.status_code == BOARDING)
         .limit(1))
    return (await session.execute(q)).first() is not None


async def _status_ids(session: AsyncSession) -> Dict[str, int]:
    rows = await session.execute(select(models.FlightStatus.status_code, models.FlightStatus.id))
    out = {}
    for code, status_id in rows:
        out.setdefault(code, status_id)
    return out


def _not_status(status_id: Optional[int]):
    return models.Flight.status_id != status_id if status_id is not None else None


async def list_schedule(session: AsyncSession, home_airport: str, role: str = "all", *,
                        search: Optional[str] = None, status=None,
                        date_from: Optional[date] = None, date_to: Optional[date] = None,
                        page: int = 1, per_page: int = 10) -> SchedulePage:
    """Flight schedule for one role (``all``, ``arrivals`` or ``departures``).

    Cancelled flights never show. Arrivals hide flights already arrived,
    departures hide flights already departed. Each row on the page is
    annotated with its Arrival/Departure type and connection counts.
    """
    home = home_airport.upper()
    codes = await _status_ids(session)
    per_page = resolve_per_page(per_page)
    page = max(page, 1)

    q = _live()
    role = (role or "all").lower()
    if role == "arrivals":
        q = q.where(models.Flight.destination_code == home)
        if ARRIVED in codes:
            q = q.where(_not_status(codes[ARRIVED]))
        order = models.Flight.scheduled_arrival_time
    elif role == "departures":
        q = q.where(models.Flight.origin_code == home)
        if DEPARTED in codes:
            q = q.where(_not_status(codes[DEPARTED]))
        order = models.Flight.scheduled_departure_time
    else:
        order = models.Flight.scheduled_departure_time
    if CANCELLED in codes:
        q = q.where(_not_status(codes[CANCELLED]))

    if search:
        like = f"%{search}%"
        q = q.where(or_(
            models.Flight.flight_number.ilike(like),
            models.Flight.airline_code.ilike(like),
            models.Flight.origin_code.ilike(like),
            models.Flight.destination_code.ilike(like),
        ))
    if status not in (None, "", "all"):
        q = q.where(models.Flight.status_id == (await resolver.resolve_status(session, status)).id)
    if date_from is not None:
        q = q.where(models.Flight.scheduled_departure_time >= day_bounds(date_from)[0])
    if date_to is not None:
        q = q.where(models.Flight.scheduled_departure_time < day_bounds(date_to)[1])

    total = (await session.execute(select(func.count()).select_from(q.subquery()))).scalar_one()
    rows = (await session.execute(
        q.order_by(order, models.Flight.id).offset((page - 1) * per_page).limit(per_page)
    )).scalars().all()

    counts = await connection_counts(session, [f.id for f in rows])
    items = [ScheduleEntry(f, classify(f, home), counts[f.id]) for f in rows]
    return SchedulePage(items=items, total=total, page=page, per_page=per_page)


async def gate_board(session: AsyncSession, window_start: Optional[datetime] = None,
                     window_end: Optional[datetime] = None, terminal_id: Optional[int] = None) -> List[GateBoardEntry]:
    if window_start is None or window_end is None:
        window_start, window_end = default_window()
    gq = select(models.Gate).order_by(models.Gate.gate_code, models.Gate.id)
    if terminal_id is not None:
        gq = gq.where(models.Gate.terminal_id == terminal_id)
    gates = (await session.execute(gq)).scalars().all()

    flights = (await session.execute(
        _live().where(models.Flight.gate_id.in_([g.id for g in gates]),
                      models.Flight.scheduled_departure_time.between(window_start, window_end))
        .order_by(models.Flight.scheduled_departure_time)
    )).scalars().all() if gates else []

    board = {g.id: GateBoardEntry(g) for g in gates}
    for f in flights:
        entry = board[f.gate_id]
        entry.current_flights.append(f)
        if f.status is not None and f.status.status_code == BOARDING:
            entry.is_occupied = True
    return list(board.values())


async def belt_board(session: AsyncSession, window_start: Optional[datetime] = None,
                     window_end: Optional[datetime] = None, terminal_id: Optional[int] = None) -> List[BeltBoardEntry]:
    if window_start is None or window_end is None:
        window_start, window_end = default_window()
    bq = select(models.BaggageBelt).order_by(models.BaggageBelt.belt_code, models.BaggageBelt.id)
    if terminal_id is not None:
        bq = bq.where(models.BaggageBelt.terminal_id == terminal_id)
    belts = (await session.execute(bq)).scalars().all()

    flights = (await session.execute(
        _live().where(models.Flight.baggage_belt_id.in_([b.id for b in belts]),
                      models.Flight.scheduled_arrival_time.between(window_start, window_end))
        .order_by(models.Flight.scheduled_arrival_time)
    )).scalars().all() if belts else []

    board = {b.id: BeltBoardEntry(b) for b in belts}
    for f in flights:
        entry = board[f.baggage_belt_id]
        entry.current_flights.append(f)
        entry.is_active = True
    return list(board.values())


async def dashboard_stats(session: AsyncSession, home_airport: str) -> Dict[str, int]:
    home = home_airport.upper()
    codes = await _status_ids(session)
    live = models.Flight.deleted_at.is_(None)
    base = [live]
    if CANCELLED in codes:
        base.append(_not_status(codes[CANCELLED]))

    async def count(*conditions) -> int:
        q = select(func.count(models.Flight.id)).where(*conditions)
        return (await session.execute(q)).scalar_one()

    arrivals = [models.Flight.destination_code == home]
    if ARRIVED in codes:
        arrivals.append(_not_status(codes[ARRIVED]))
    departures = [models.Flight.origin_code == home]
    if DEPARTED in codes:
        departures.append(_not_status(codes[DEPARTED]))

    tracked = select(models.Flight.id).where(*base)
    conn = models.FlightConnection
    legs = union(
        select(conn.arrival_flight_id.label("flight_id")).where(conn.arrival_flight_id.in_(tracked)),
        select(conn.departure_flight_id.label("flight_id")).where(conn.departure_flight_id.in_(tracked)),
    ).subquery()
    connected = (await session.execute(select(func.count()).select_from(legs))).scalar_one()

    return {
        "totalFlights": await count(*base),
        "arrivals": await count(*base, *arrivals),
        "departures": await count(*base, *departures),
        "delayed": await count(*base, models.Flight.status_id == codes[DELAYED]) if DELAYED in codes else 0,
        "cancelled": await count(live, models.Flight.status_id == codes[CANCELLED]) if CANCELLED in codes else 0,
        "connections": connected,
    }
