from sqlalchemy import select

from fis import models
from fis.database import AsyncSessionLocal


async def test_composite_codes_generated_on_insert(seeded):
    async with AsyncSessionLocal() as session:
        terminal = await session.get(models.Terminal, 1)
        gate = await session.get(models.Gate, 1)
        belt = await session.get(models.BaggageBelt, 1)
        status = await session.get(models.FlightStatus, 1)
    assert terminal.id_terminal_code == "MNL-T3"
    assert gate.id_gate_code == "1-A2"
    assert belt.id_belt_code == "1-A3"
    assert status.id_status_code == "1-SCH"


async def test_resource_status_defaults(seeded):
    async with AsyncSessionLocal() as session:
        gate = await session.get(models.Gate, 1)
        belt = await session.get(models.BaggageBelt, 1)
    assert gate.gate_status == "Open"
    assert belt.status == "Active"


async def test_gate_code_follows_local_code_change(seeded):
    async with AsyncSessionLocal() as session:
        async with session.begin():
            gate = await session.get(models.Gate, 1)
            gate.gate_code = "B7"

    async with AsyncSessionLocal() as session:
        codes = (await session.execute(select(models.Gate.id_gate_code).where(models.Gate.id == 1))).scalar_one()
    assert codes == "1-B7"


async def test_status_code_follows_local_code_change(seeded):
    async with AsyncSessionLocal() as session:
        async with session.begin():
            status = await session.get(models.FlightStatus, 6)
            status.status_code = "DLA"
    async with AsyncSessionLocal() as session:
        status = await session.get(models.FlightStatus, 6)
    assert status.id_status_code == "6-DLA"


async def test_unrelated_update_keeps_code(seeded):
    async with AsyncSessionLocal() as session:
        async with session.begin():
            gate = await session.get(models.Gate, 2)
            gate.gate_status = "Closed"
    async with AsyncSessionLocal() as session:
        gate = await session.get(models.Gate, 2)
    assert gate.id_gate_code == "1-C4"


async def test_effective_terminal_prefers_explicit_then_gate_then_belt(make_flight, seeded):
    async with AsyncSessionLocal() as session:
        async with session.begin():
            session.add(models.Terminal(id=2, iata_code="MNL", terminal_code="T1"))

    via_gate = await make_flight(gate_id=1)
    via_belt = await make_flight(flight_number="PR502", baggage_belt_id=1)
    explicit = await make_flight(flight_number="PR503", gate_id=1, terminal_id=2)
    bare = await make_flight(flight_number="PR504")

    async with AsyncSessionLocal() as session:
        flights = {f.id: f for f in (await session.execute(select(models.Flight))).scalars().all()}
    assert flights[via_gate].effective_terminal.id == 1
    assert flights[via_belt].effective_terminal.id == 1
    assert flights[explicit].effective_terminal.id == 2
    assert flights[bare].effective_terminal is None
