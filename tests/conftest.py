import os
import tempfile
from datetime import datetime, timedelta

# must be set before fis.config is imported
_db_dir = tempfile.mkdtemp(prefix="fis-tests-")
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///" + os.path.join(_db_dir, "fis.db")
os.environ["FIS_HOME_AIRPORT"] = "MNL"
os.environ["INTEGRATION_TOKEN"] = ""
os.environ["FIS_SEED_LOOKUPS"] = ""

import fakeredis.aioredis  # noqa: E402
import pytest  # noqa: E402

from fis import events, models, resources, store  # noqa: E402
from fis.database import AsyncSessionLocal, engine  # noqa: E402

DEPARTURE = datetime(2030, 1, 15, 8, 0)
ARRIVAL = DEPARTURE + timedelta(hours=4)

# ids as inserted by resources.seed_flight_statuses
SCH, DEP, ARR, BRD, CNX, DLY = 1, 2, 3, 4, 5, 6


@pytest.fixture(autouse=True)
async def db():
    async with engine.begin() as conn:
        await conn.run_sync(models.Base.metadata.create_all)
    yield
    async with engine.begin() as conn:
        await conn.run_sync(models.Base.metadata.drop_all)
    # connections are bound to this test's event loop
    await engine.dispose()


@pytest.fixture(autouse=True)
def fake_redis(monkeypatch):
    client = fakeredis.aioredis.FakeRedis(decode_responses=True)
    monkeypatch.setattr(events, "redis_client", client)
    return client


@pytest.fixture
def published(monkeypatch):
    """Collects every message handed to the live feed."""
    sent = []

    async def _capture(message):
        sent.append(message)

    monkeypatch.setattr(events, "publish_event", _capture)
    return sent


@pytest.fixture
async def seeded():
    async with AsyncSessionLocal() as session:
        async with session.begin():
            session.add_all([
                models.Airport(iata_code="MNL", airport_name="Ninoy Aquino International Airport",
                               city="Manila", country="Philippines"),
                models.Airport(iata_code="SIN", airport_name="Singapore Changi Airport",
                               city="Singapore", country="Singapore"),
                models.Airport(iata_code="HKG", airport_name="Hong Kong International Airport",
                               city="Hong Kong", country="China"),
                models.Airline(airline_code="PR", airline_name="Philippine Airlines"),
                models.Airline(airline_code="5J", airline_name="Cebu Pacific"),
                models.Aircraft(icao_code="A359", model_name="Airbus A350-900", manufacturer="Airbus",
                                capacity_pax=295),
            ])
            await session.flush()
            session.add(models.Terminal(id=1, iata_code="MNL", terminal_code="T3", name="Terminal 3"))
            await session.flush()
            session.add_all([
                models.Gate(id=1, terminal_id=1, gate_code="A2"),
                models.Gate(id=2, terminal_id=1, gate_code="C4"),
                models.BaggageBelt(id=1, terminal_id=1, belt_code="A3"),
                models.BaggageBelt(id=2, terminal_id=1, belt_code="B1"),
            ])
            await resources.seed_flight_statuses(session)


@pytest.fixture
def make_flight(seeded):
    """Insert a flight row directly, bypassing the audited write path."""
    async def _make(**fields):
        values = dict(
            flight_number="PR501",
            airline_code="PR",
            aircraft_icao_code="A359",
            origin_code="SIN",
            destination_code="MNL",
            scheduled_departure_time=DEPARTURE,
            scheduled_arrival_time=ARRIVAL,
            status_id=SCH,
        )
        values.update(fields)
        async with AsyncSessionLocal() as session:
            async with session.begin():
                flight = models.Flight(**values)
                session.add(flight)
        return flight.id

    return _make


async def history(flight_id):
    async with AsyncSessionLocal() as session:
        return await events.flight_history(session, flight_id)


async def load_flight(flight_id, include_deleted=False):
    async with AsyncSessionLocal() as session:
        return await store.get_flight(session, flight_id, include_deleted=include_deleted)
