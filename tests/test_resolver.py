import pytest

from fis import models, resolver
from fis.database import AsyncSessionLocal
from fis.errors import NotFound, ValidationError


@pytest.fixture
async def second_terminal(seeded):
    async with AsyncSessionLocal() as session:
        async with session.begin():
            session.add(models.Terminal(id=2, iata_code="MNL", terminal_code="T1"))
            await session.flush()
            session.add_all([
                models.Gate(id=3, terminal_id=2, gate_code="A2"),
                models.Gate(id=4, terminal_id=1, gate_code="C-1"),
            ])


@pytest.mark.parametrize("ref", ["1-SCH", "1", 1, "SCH", " SCH "])
async def test_status_resolves_every_identifier_form(seeded, ref):
    async with AsyncSessionLocal() as session:
        status = await resolver.resolve_status(session, ref)
    assert status.id == 1
    assert status.status_code == "SCH"


async def test_status_by_bare_local_code(seeded):
    async with AsyncSessionLocal() as session:
        status = await resolver.resolve_status(session, "BRD")
    assert status.id_status_code == "4-BRD"
    assert status.status_name == "Boarding"


@pytest.mark.parametrize("ref", ["9-XXX", "XXX", 99, "99"])
async def test_unknown_status_is_not_found(seeded, ref):
    async with AsyncSessionLocal() as session:
        with pytest.raises(NotFound):
            await resolver.resolve_status(session, ref)


@pytest.mark.parametrize("ref", [None, "", "   "])
async def test_missing_status_is_a_validation_error(seeded, ref):
    async with AsyncSessionLocal() as session:
        with pytest.raises(ValidationError) as exc:
            await resolver.resolve_status(session, ref)
    assert "status" in exc.value.errors


async def test_gate_composite_code(seeded):
    async with AsyncSessionLocal() as session:
        gate = await resolver.resolve_gate(session, "1-A2")
    assert gate.id == 1


async def test_ambiguous_local_gate_code_is_rejected(second_terminal):
    async with AsyncSessionLocal() as session:
        with pytest.raises(ValidationError) as exc:
            await resolver.resolve_gate(session, "A2")
        assert "gate" in exc.value.errors
        assert (await resolver.resolve_gate(session, "2-A2")).id == 3


async def test_composite_code_with_hyphenated_local_code(second_terminal):
    async with AsyncSessionLocal() as session:
        gate = await resolver.resolve_gate(session, "1-C-1")
    assert gate.id == 4
    assert gate.gate_code == "C-1"


async def test_belt_and_terminal(seeded):
    async with AsyncSessionLocal() as session:
        belt = await resolver.resolve_belt(session, "1-A3")
        terminal = await resolver.resolve_terminal(session, "MNL-T3")
        by_local = await resolver.resolve_terminal(session, "T3")
    assert belt.belt_code == "A3"
    assert terminal.id == by_local.id == 1


async def test_optional_reference_clears_on_empty(seeded):
    async with AsyncSessionLocal() as session:
        assert await resolver.resolve_optional(resolver.resolve_gate, session, None) is None
        assert await resolver.resolve_optional(resolver.resolve_gate, session, "") is None
        assert (await resolver.resolve_optional(resolver.resolve_gate, session, "C4")).id == 2


async def test_natural_keys_are_case_insensitive(seeded):
    async with AsyncSessionLocal() as session:
        assert (await resolver.resolve_airport(session, "mnl")).iata_code == "MNL"
        assert (await resolver.resolve_airline(session, "pr")).airline_code == "PR"
        with pytest.raises(NotFound):
            await resolver.resolve_airport(session, "LAX", field="origin_code")
        with pytest.raises(ValidationError):
            await resolver.resolve_aircraft(session, "")
