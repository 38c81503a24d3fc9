"""Identifier resolution.

Maps whatever the caller sends (a canonical composite code such as ``"1-SCH"``,
a bare numeric id, or a bare local code such as ``"SCH"``) to the stored row.
Composite codes are matched as whole strings against their cached column;
they are never split on the separator, since local codes may contain ``-``.
"""
from typing import Optional, Type, Union

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from . import models
from .errors import NotFound, ValidationError

Ref = Union[int, str]


async def _first_or_ambiguous(session: AsyncSession, query, field: str, ref):
    rows = (await session.execute(query.limit(2))).scalars().all()
    if len(rows) > 1:
        raise ValidationError({field: f"'{ref}' is ambiguous; use the canonical code"})
    return rows[0] if rows else None


async def _resolve(session: AsyncSession, model: Type, ref: Optional[Ref], *,
                   field: str, composite_col, local_col):
    if ref is None or (isinstance(ref, str) and not ref.strip()):
        raise ValidationError({field: "a value is required"})

    if isinstance(ref, int):
        found = await session.get(model, ref)
        if found is None:
            raise NotFound(f"{field} {ref} not found")
        return found

    ref = ref.strip()
    # 1. canonical composite code
    found = (await session.execute(select(model).where(composite_col == ref))).scalars().first()
    if found is not None:
        return found
    # 2. bare internal id
    if ref.isdigit():
        found = await session.get(model, int(ref))
        if found is not None:
            return found
    # 3. bare local code
    found = await _first_or_ambiguous(session, select(model).where(local_col == ref), field, ref)
    if found is None:
        raise NotFound(f"{field} '{ref}' not found")
    return found


async def resolve_status(session: AsyncSession, ref: Optional[Ref]) -> models.FlightStatus:
    return await _resolve(session, models.FlightStatus, ref, field="status",
                          composite_col=models.FlightStatus.id_status_code,
                          local_col=models.FlightStatus.status_code)


async def resolve_gate(session: AsyncSession, ref: Optional[Ref]) -> models.Gate:
    return await _resolve(session, models.Gate, ref, field="gate",
                          composite_col=models.Gate.id_gate_code,
                          local_col=models.Gate.gate_code)


async def resolve_belt(session: AsyncSession, ref: Optional[Ref]) -> models.BaggageBelt:
    return await _resolve(session, models.BaggageBelt, ref, field="baggage_belt",
                          composite_col=models.BaggageBelt.id_belt_code,
                          local_col=models.BaggageBelt.belt_code)


async def resolve_terminal(session: AsyncSession, ref: Optional[Ref]) -> models.Terminal:
    return await _resolve(session, models.Terminal, ref, field="terminal",
                          composite_col=models.Terminal.id_terminal_code,
                          local_col=models.Terminal.terminal_code)


async def _by_natural_key(session: AsyncSession, model: Type, code: Optional[str], field: str):
    if not code or not str(code).strip():
        raise ValidationError({field: "a value is required"})
    found = await session.get(model, str(code).strip().upper())
    if found is None:
        raise NotFound(f"{field} '{code}' not found")
    return found


async def resolve_airport(session: AsyncSession, iata_code: Optional[str], field: str = "airport") -> models.Airport:
    return await _by_natural_key(session, models.Airport, iata_code, field)


async def resolve_airline(session: AsyncSession, airline_code: Optional[str]) -> models.Airline:
    return await _by_natural_key(session, models.Airline, airline_code, "airline_code")


async def resolve_aircraft(session: AsyncSession, icao_code: Optional[str]) -> models.Aircraft:
    return await _by_natural_key(session, models.Aircraft, icao_code, "aircraft_icao_code")


async def resolve_optional(resolver, session: AsyncSession, ref: Optional[Ref]):
    """Like ``resolver`` but ``None``/empty clears the reference instead of failing."""
    if ref is None or (isinstance(ref, str) and not ref.strip()):
        return None
    return await resolver(session, ref)
