"""Flight record store: current-state reads and validated writes.

Every function takes the caller's ``AsyncSession``; the caller owns the
transaction, so a failed validation here leaves nothing half-written.
"""
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, timezone
from typing import Any, Dict, List, Optional

from sqlalchemy import exists, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from . import models
from .errors import Conflict, NotFound, ValidationError

# change-set keys that hold a related row rather than a scalar, and the FK they drive
REFERENCE_FIELDS = {
    "status": "status_id",
    "gate": "gate_id",
    "baggage_belt": "baggage_belt_id",
    "terminal": "terminal_id",
}
SCALAR_FIELDS = (
    "external_ref",
    "flight_number",
    "airline_code",
    "aircraft_icao_code",
    "origin_code",
    "destination_code",
    "scheduled_departure_time",
    "scheduled_arrival_time",
)
REQUIRED_ON_CREATE = (
    "flight_number",
    "airline_code",
    "origin_code",
    "destination_code",
    "scheduled_departure_time",
    "status",
)
FLIGHT_NUMBER_MAX = 10


@dataclass
class FieldChange:
    field: str
    old: Any
    new: Any


def to_utc_naive(value: Optional[datetime]) -> Optional[datetime]:
    """Stored timestamps are naive UTC; aware inputs are converted, naive ones taken as UTC."""
    if value is None:
        return None
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


def day_bounds(day: date):
    start = datetime.combine(day, time.min)
    return start, start + timedelta(days=1)


def _attr(field: str) -> str:
    return "terminal_direct" if field == "terminal" else field


def _current(flight: models.Flight, field: str):
    return getattr(flight, _attr(field))


def field_is_ref(value) -> bool:
    return isinstance(value, models.Base)


def _same(old, new) -> bool:
    if field_is_ref(old) or field_is_ref(new):
        return getattr(old, "id", None) == getattr(new, "id", None)
    return old == new


def validate_fields(fields: Dict[str, Any]) -> None:
    """Check the cross-field invariants on a complete prospective state."""
    errors = {}
    number = fields.get("flight_number")
    if number is not None and len(number) > FLIGHT_NUMBER_MAX:
        errors["flight_number"] = f"must be at most {FLIGHT_NUMBER_MAX} characters"

    origin, destination = fields.get("origin_code"), fields.get("destination_code")
    if origin and destination and origin == destination:
        errors["destination_code"] = "must differ from origin_code"

    departure = fields.get("scheduled_departure_time")
    arrival = fields.get("scheduled_arrival_time")
    if departure is not None and arrival is not None and arrival <= departure:
        errors["scheduled_arrival_time"] = "must be after scheduled_departure_time"

    if errors:
        raise ValidationError(errors)


def _normalise(changes: Dict[str, Any]) -> Dict[str, Any]:
    out = {}
    for key, value in changes.items():
        if key not in REFERENCE_FIELDS and key not in SCALAR_FIELDS:
            raise ValidationError({key: "unknown flight field"})
        if key in ("scheduled_departure_time", "scheduled_arrival_time"):
            value = to_utc_naive(value)
        elif key in ("origin_code", "destination_code", "airline_code", "aircraft_icao_code") and value:
            value = value.strip().upper()
        out[key] = value
    return out


def _assign(flight: models.Flight, field: str, value) -> None:
    setattr(flight, _attr(field), value)
    if field in REFERENCE_FIELDS:
        # keep the FK in step so it reads correctly before the next flush
        setattr(flight, REFERENCE_FIELDS[field], value.id if value is not None else None)


async def get_flight(session: AsyncSession, flight_id: int, *, include_deleted: bool = False,
                     for_update: bool = False, refresh: bool = False) -> models.Flight:
    q = select(models.Flight).where(models.Flight.id == flight_id)
    if refresh:
        # reload columns and eager relationships over the identity-mapped instance
        q = q.execution_options(populate_existing=True)
    if not include_deleted:
        q = q.where(models.Flight.deleted_at.is_(None))
    if for_update:
        q = q.with_for_update()
    flight = (await session.execute(q)).scalars().first()
    if flight is None:
        raise NotFound(f"flight {flight_id} not found")
    return flight


async def resolve_by_number(session: AsyncSession, flight_number: str,
                            departure_date: Optional[date] = None) -> models.Flight:
    """Look a flight up by its display number.

    Flight numbers repeat across days, so more than one live match is rejected
    rather than guessed; ``departure_date`` (UTC day) narrows the match.
    """
    q = select(models.Flight).where(
        models.Flight.flight_number == flight_number,
        models.Flight.deleted_at.is_(None),
    )
    if departure_date is not None:
        start, end = day_bounds(departure_date)
        q = q.where(models.Flight.scheduled_departure_time >= start,
                    models.Flight.scheduled_departure_time < end)
    matches = (await session.execute(q.order_by(models.Flight.id).limit(2))).scalars().all()
    if not matches:
        raise NotFound(f"flight '{flight_number}' not found")
    if len(matches) > 1:
        raise ValidationError({"flight_number": f"'{flight_number}' matches several flights; "
                                                "send flight_id or scheduled_departure_date"})
    return matches[0]


async def find_for_sync(session: AsyncSession, external_ref: Optional[str], flight_number: Optional[str],
                        scheduled_departure_time: Optional[datetime]) -> Optional[models.Flight]:
    """Find the flight an integration payload refers to, or ``None`` when it is new.

    ``external_ref`` wins when it matches. On a miss the
    ``(flight_number, scheduled_departure_time)`` key is tried too, so a flight
    first synced without a ref is adopted instead of created twice.
    """
    if external_ref:
        q = select(models.Flight).where(models.Flight.external_ref == external_ref)
        flight = (await session.execute(q)).scalars().first()
        if flight is not None and flight.is_deleted:
            raise Conflict(f"flight with external_ref '{external_ref}' was deleted")
        if flight is not None:
            return flight
    if not flight_number or scheduled_departure_time is None:
        return None
    q = select(models.Flight).where(
        models.Flight.flight_number == flight_number,
        models.Flight.scheduled_departure_time == to_utc_naive(scheduled_departure_time),
        models.Flight.deleted_at.is_(None),
    )
    matches = (await session.execute(q.limit(2))).scalars().all()
    if len(matches) > 1:
        raise ValidationError({"flight_number": "several flights share this number and departure time"})
    if not matches:
        return None
    flight = matches[0]
    if external_ref and flight.external_ref and flight.external_ref != external_ref:
        raise Conflict(f"flight {flight_number} at {flight.scheduled_departure_time.isoformat()} "
                       f"is already linked to external_ref '{flight.external_ref}'")
    return flight


async def create_flight(session: AsyncSession, fields: Dict[str, Any]) -> models.Flight:
    fields = _normalise(fields)
    missing = {f: "is required" for f in REQUIRED_ON_CREATE if fields.get(f) in (None, "")}
    if missing:
        raise ValidationError(missing)
    validate_fields(fields)

    flight = models.Flight()
    for field, value in fields.items():
        _assign(flight, field, value)
    session.add(flight)
    await session.flush()  # assigns flight.id
    return await get_flight(session, flight.id, refresh=True)


async def apply_changes(session: AsyncSession, flight: models.Flight,
                        changes: Dict[str, Any]) -> List[FieldChange]:
    """Validate then write ``changes``; return the fields whose value actually moved.

    Invariants are checked against the merged state before any attribute is
    touched, so a rejected change-set leaves the row exactly as it was.
    """
    changes = _normalise(changes)
    prospective = {f: getattr(flight, f) for f in SCALAR_FIELDS}
    prospective.update({k: v for k, v in changes.items() if k in SCALAR_FIELDS})
    validate_fields(prospective)
    if "status" in changes and changes["status"] is None:
        raise ValidationError({"status": "a flight always has a status"})

    moved = []
    for field, new in changes.items():
        old = _current(flight, field)
        if _same(old, new):
            continue
        _assign(flight, field, new)
        moved.append(FieldChange(field, old, new))
    if moved:
        await session.flush()
        await get_flight(session, flight.id, include_deleted=True, refresh=True)
    return moved


async def dependents_of(session: AsyncSession, flight_id: int) -> List[str]:
    checks = {
        "arrival": exists().where(models.FlightArrival.flight_id == flight_id),
        "departure": exists().where(models.FlightDeparture.flight_id == flight_id),
        "events": exists().where(models.FlightEvent.flight_id == flight_id),
        "connections": exists().where(or_(
            models.FlightConnection.arrival_flight_id == flight_id,
            models.FlightConnection.departure_flight_id == flight_id,
        )),
    }
    found = []
    for name, clause in checks.items():
        if (await session.execute(select(clause))).scalar():
            found.append(name)
    return found


async def delete_flight(session: AsyncSession, flight_id: int) -> models.Flight:
    flight = await get_flight(session, flight_id, for_update=True)
    blocking = await dependents_of(session, flight_id)
    if blocking:
        raise Conflict("Cannot delete flight with existing records (" + ", ".join(blocking) + "). Archive it instead.")
    flight.deleted_at = models.utcnow()
    await session.flush()
    return flight


async def list_flights(session: AsyncSession, include_deleted: bool = False) -> List[models.Flight]:
    q = select(models.Flight).order_by(models.Flight.scheduled_departure_time)
    if not include_deleted:
        q = q.where(models.Flight.deleted_at.is_(None))
    return list((await session.execute(q)).scalars().all())
