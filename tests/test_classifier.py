from datetime import date, datetime, timedelta

import pytest

from conftest import ARR, BRD, CNX, DEP, DEPARTURE, DLY
from fis import classifier, models
from fis.database import AsyncSessionLocal


async def _connect(arrival_id, departure_id):
    async with AsyncSessionLocal() as session:
        async with session.begin():
            session.add(models.FlightConnection(arrival_flight_id=arrival_id, departure_flight_id=departure_id))


@pytest.mark.parametrize("origin, destination, expected", [
    ("SIN", "MNL", "Arrival"),
    ("MNL", "SIN", "Departure"),
    # neither end is home: treated as a departure
    ("SIN", "HKG", "Departure"),
])
def test_classify(origin, destination, expected):
    flight = models.Flight(origin_code=origin, destination_code=destination)
    assert classifier.classify(flight, "mnl") == expected


async def test_connection_counts(make_flight):
    inbound = await make_flight()
    onward_a = await make_flight(flight_number="PR300", origin_code="MNL", destination_code="HKG")
    onward_b = await make_flight(flight_number="PR302", origin_code="MNL", destination_code="SIN")
    lonely = await make_flight(flight_number="PR900")
    await _connect(inbound, onward_a)
    await _connect(inbound, onward_b)

    async with AsyncSessionLocal() as session:
        counts = await classifier.connection_counts(session, [inbound, onward_a, onward_b, lonely])

    assert (counts[inbound].inbound, counts[inbound].outbound) == (2, 0)
    assert (counts[onward_a].inbound, counts[onward_a].outbound) == (0, 1)
    assert counts[onward_b].has_connections
    assert not counts[lonely].has_connections


async def test_connection_counts_empty(seeded):
    async with AsyncSessionLocal() as session:
        assert await classifier.connection_counts(session, []) == {}


async def test_gate_occupied_only_while_boarding_in_window(make_flight):
    await make_flight(gate_id=1, status_id=BRD)
    await make_flight(flight_number="PR600", gate_id=2, status_id=DLY)
    start, end = DEPARTURE - timedelta(hours=1), DEPARTURE + timedelta(hours=1)

    async with AsyncSessionLocal() as session:
        assert await classifier.is_occupied(session, 1, start, end)
        assert not await classifier.is_occupied(session, 2, start, end)
        assert not await classifier.is_occupied(session, 1, end, end + timedelta(hours=2))


async def test_schedule_roles(make_flight):
    arriving = await make_flight()
    landed = await make_flight(flight_number="PR502", status_id=ARR)
    leaving = await make_flight(flight_number="PR300", origin_code="MNL", destination_code="HKG",
                                scheduled_departure_time=DEPARTURE + timedelta(hours=6),
                                scheduled_arrival_time=DEPARTURE + timedelta(hours=8))
    gone = await make_flight(flight_number="PR302", origin_code="MNL", destination_code="SIN", status_id=DEP)
    await make_flight(flight_number="PR999", status_id=CNX)
    await _connect(arriving, leaving)

    async with AsyncSessionLocal() as session:
        everything = await classifier.list_schedule(session, "MNL", "all")
        arrivals = await classifier.list_schedule(session, "MNL", "arrivals")
        departures = await classifier.list_schedule(session, "MNL", "departures")

    assert {e.flight.id for e in everything.items} == {arriving, landed, leaving, gone}
    assert [e.flight.id for e in arrivals.items] == [arriving]
    assert [e.flight.id for e in departures.items] == [leaving]

    rows = {e.flight.id: e for e in everything.items}
    assert rows[arriving].type == "Arrival"
    assert rows[leaving].type == "Departure"
    assert rows[arriving].connections.inbound == 1
    assert rows[leaving].connections.outbound == 1
    assert not rows[gone].connections.has_connections


async def test_schedule_search_status_and_dates(make_flight):
    await make_flight()
    await make_flight(flight_number="5J188", airline_code="5J", status_id=DLY,
                      scheduled_departure_time=DEPARTURE + timedelta(days=2),
                      scheduled_arrival_time=DEPARTURE + timedelta(days=2, hours=3))

    async with AsyncSessionLocal() as session:
        by_text = await classifier.list_schedule(session, "MNL", search="5j")
        by_status = await classifier.list_schedule(session, "MNL", status="DLY")
        by_date = await classifier.list_schedule(session, "MNL", date_from=date(2030, 1, 15), date_to=date(2030, 1, 15))

    assert [e.flight.flight_number for e in by_text.items] == ["5J188"]
    assert [e.flight.flight_number for e in by_status.items] == ["5J188"]
    assert [e.flight.flight_number for e in by_date.items] == ["PR501"]


async def test_schedule_pagination(make_flight):
    for n in range(12):
        await make_flight(flight_number=f"PR{600 + n}",
                          scheduled_departure_time=DEPARTURE + timedelta(minutes=n),
                          scheduled_arrival_time=DEPARTURE + timedelta(hours=4, minutes=n))

    async with AsyncSessionLocal() as session:
        first = await classifier.list_schedule(session, "MNL", page=1, per_page=10)
        second = await classifier.list_schedule(session, "MNL", page=2, per_page=10)
        odd_size = await classifier.list_schedule(session, "MNL", per_page=7)

    assert (first.total, first.pages, len(first.items)) == (12, 2, 10)
    assert [e.flight.flight_number for e in second.items] == ["PR610", "PR611"]
    assert odd_size.per_page == 10


async def test_gate_board_keeps_configured_and_derived_status_apart(make_flight):
    await make_flight(gate_id=1, status_id=BRD)
    async with AsyncSessionLocal() as session:
        async with session.begin():
            (await session.get(models.Gate, 1)).gate_status = "Closed"

    window = (datetime(2030, 1, 15), datetime(2030, 1, 16))
    async with AsyncSessionLocal() as session:
        board = {e.gate.gate_code: e for e in await classifier.gate_board(session, *window)}

    assert board["A2"].gate.gate_status == "Closed"
    assert board["A2"].is_occupied
    assert len(board["A2"].current_flights) == 1
    assert board["C4"].gate.gate_status == "Open"
    assert not board["C4"].is_occupied


async def test_belt_board(make_flight):
    await make_flight(baggage_belt_id=2)
    window = (datetime(2030, 1, 15), datetime(2030, 1, 16))
    async with AsyncSessionLocal() as session:
        board = {e.belt.belt_code: e for e in await classifier.belt_board(session, *window)}
    assert board["B1"].is_active
    assert not board["A3"].is_active
    assert board["A3"].belt.status == "Active"


def test_default_window_spans_today_and_tomorrow():
    start, end = classifier.default_window(datetime(2030, 1, 15, 13, 45))
    assert start == datetime(2030, 1, 15)
    assert end.date() == date(2030, 1, 16)


async def test_dashboard_stats(make_flight):
    arriving = await make_flight()
    leaving = await make_flight(flight_number="PR300", origin_code="MNL", destination_code="HKG", status_id=DLY)
    await make_flight(flight_number="PR999", status_id=CNX)
    await _connect(arriving, leaving)

    async with AsyncSessionLocal() as session:
        stats = await classifier.dashboard_stats(session, "MNL")

    assert stats == {
        "totalFlights": 2,
        "arrivals": 1,
        "departures": 1,
        "delayed": 1,
        "cancelled": 1,
        "connections": 2,
    }
