import pytest
from sqlalchemy import select

from conftest import ARR, DEP, history, load_flight
from fis import models, resources
from fis.database import AsyncSessionLocal
from fis.errors import Conflict, NotFound, ValidationError


async def test_seed_is_idempotent(seeded):
    async with AsyncSessionLocal() as session:
        async with session.begin():
            assert await resources.seed_flight_statuses(session) == 0
        statuses = await resources.list_statuses(session)
    assert [s.status_code for s in statuses] == ["SCH", "DEP", "ARR", "BRD", "CNX", "DLY"]
    assert statuses[3].id_status_code == "4-BRD"


async def test_terminal_lifecycle(seeded):
    terminal = await resources.create_terminal({"iata_code": "sin", "terminal_code": "T2", "name": "Terminal 2"})
    assert terminal.id_terminal_code == "SIN-T2"

    terminal = await resources.update_terminal(terminal.id, {"terminal_code": "T4"})
    assert terminal.id_terminal_code == "SIN-T4"

    with pytest.raises(Conflict):
        await resources.create_terminal({"iata_code": "SIN", "terminal_code": "T4"})

    await resources.delete_terminal(terminal.id)
    async with AsyncSessionLocal() as session:
        assert await session.get(models.Terminal, terminal.id) is None


async def test_terminal_needs_known_airport(seeded):
    with pytest.raises(NotFound):
        await resources.create_terminal({"iata_code": "LAX", "terminal_code": "T1"})


async def test_terminal_with_gates_cannot_be_deleted(seeded):
    with pytest.raises(Conflict):
        await resources.delete_terminal(1)


async def test_gate_create_defaults_and_airlines(seeded):
    gate = await resources.create_gate({"terminal_id": 1, "gate_code": "D1", "airline_codes": ["pr", "5J"]})
    assert gate.id_gate_code == "1-D1"
    assert gate.gate_status == "Open"
    assert sorted(a.airline_code for a in gate.authorized_airlines) == ["5J", "PR"]

    gate = await resources.assign_airlines(gate.id, ["PR"])
    assert [a.airline_code for a in gate.authorized_airlines] == ["PR"]


async def test_gate_rename_regenerates_code(seeded):
    gate = await resources.update_gate(1, {"gate_code": "B7"})
    assert gate.id_gate_code == "1-B7"


async def test_gate_duplicates_and_bad_input(seeded):
    with pytest.raises(Conflict):
        await resources.create_gate({"terminal_id": 1, "gate_code": "A2"})
    with pytest.raises(Conflict):
        await resources.update_gate(2, {"gate_code": "A2"})
    with pytest.raises(ValidationError):
        await resources.create_gate({"terminal_id": 1, "gate_code": "Z9", "gate_status": "Ajar"})
    with pytest.raises(NotFound):
        await resources.create_gate({"terminal_id": 42, "gate_code": "Z9"})
    with pytest.raises(NotFound):
        await resources.create_gate({"terminal_id": 1, "gate_code": "Z9", "airline_codes": ["ZZ"]})


async def test_gate_in_use_cannot_be_deleted(make_flight):
    await make_flight(gate_id=1)
    with pytest.raises(Conflict):
        await resources.delete_gate(1)


async def test_gate_delete_releases_finished_flights(make_flight, published):
    flight_id = await make_flight(gate_id=2, status_id=DEP)
    await resources.delete_gate(2)
    assert (await load_flight(flight_id)).gate_id is None
    [event] = await history(flight_id)
    assert (event.event_type, event.old_value, event.new_value) == ("GATE_CHANGE", "C4", "Unassigned")
    assert event.description == "Gate deleted"
    assert [m["flight_id"] for m in published] == [flight_id]


async def test_belt_delete_logs_released_flights(make_flight):
    flight_id = await make_flight(baggage_belt_id=2, status_id=DEP)
    await resources.delete_belt(2)
    assert (await load_flight(flight_id)).baggage_belt_id is None
    [event] = await history(flight_id)
    assert (event.event_type, event.old_value, event.new_value) == ("CLAIM_CHANGE", "B1", "Unassigned")
    assert event.description == "Baggage belt deleted"


async def test_gate_restrictions_are_replaced(seeded):
    gate = await resources.set_restrictions(1, [{"aircraft_icao_code": "a359", "restriction_type": "Wingspan"}])
    assert [(r.aircraft_icao_code, r.restriction_type) for r in gate.restrictions] == [("A359", "Wingspan")]

    gate = await resources.set_restrictions(1, [{"aircraft_icao_code": "A359", "restriction_type": "No jet bridge"}])
    assert [r.restriction_type for r in gate.restrictions] == ["No jet bridge"]

    gate = await resources.set_restrictions(1, [])
    assert gate.restrictions == []
    async with AsyncSessionLocal() as session:
        assert (await session.execute(select(models.GateRestriction))).scalars().all() == []


async def test_gate_restrictions_need_known_aircraft(seeded):
    with pytest.raises(NotFound):
        await resources.set_restrictions(1, [{"aircraft_icao_code": "B744", "restriction_type": "Wingspan"}])
    with pytest.raises(ValidationError):
        await resources.set_restrictions(1, [{"aircraft_icao_code": "A359", "restriction_type": " "}])


async def test_gate_delete_drops_its_restrictions(seeded):
    await resources.set_restrictions(2, [{"aircraft_icao_code": "A359", "restriction_type": "Wingspan"}])
    await resources.delete_gate(2)
    async with AsyncSessionLocal() as session:
        assert (await session.execute(select(models.GateRestriction))).scalars().all() == []


async def test_belt_lifecycle(make_flight):
    belt = await resources.create_belt({"terminal_id": 1, "belt_code": "C5"})
    assert (belt.id_belt_code, belt.status) == ("1-C5", "Active")

    belt = await resources.update_belt(belt.id, {"status": "Maintenance", "belt_code": "C6"})
    assert (belt.id_belt_code, belt.status) == ("1-C6", "Maintenance")

    with pytest.raises(ValidationError):
        await resources.update_belt(belt.id, {"status": "Melted"})

    await make_flight(baggage_belt_id=belt.id, status_id=ARR)
    with pytest.raises(Conflict):
        await resources.delete_belt(belt.id)


async def test_list_resources(seeded):
    async with AsyncSessionLocal() as session:
        assert [t.id_terminal_code for t in await resources.list_terminals(session)] == ["MNL-T3"]
        assert [g.gate_code for g in await resources.list_gates(session, terminal_id=1)] == ["A2", "C4"]
        assert [b.belt_code for b in await resources.list_belts(session)] == ["A3", "B1"]
