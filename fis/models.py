from datetime import datetime
from enum import Enum

from sqlalchemy import (Column, Integer, String, ForeignKey, DateTime, Text, Table,
                        UniqueConstraint, event, inspect, update)
from sqlalchemy.orm import relationship, declarative_base
from sqlalchemy.orm.attributes import set_committed_value

Base = declarative_base()

CODE_SEPARATOR = "-"


def utcnow():
    return datetime.utcnow()


def composite_code(parent, local_code) -> str:
    """Canonical cross-system code: ``{parent}-{local_code}``. Never parsed back apart."""
    return f"{parent}{CODE_SEPARATOR}{local_code}"


class EventType(str, Enum):
    CREATED = "created"
    FLIGHT_HOURS = "flight_hours"
    STATUS_CHANGE = "STATUS_CHANGE"
    GATE_CHANGE = "GATE_CHANGE"
    CLAIM_CHANGE = "CLAIM_CHANGE"
    TERMINAL_CHANGE = "TERMINAL_CHANGE"
    SCHEDULE_CHANGE = "SCHEDULE_CHANGE"
    DETAILS_CHANGE = "DETAILS_CHANGE"


GATE_STATUSES = ("Open", "Closed")
BELT_STATUSES = ("Active", "Maintenance", "Closed", "Scheduled")


class Airport(Base):
    __tablename__ = "airports"
    iata_code = Column(String(3), primary_key=True)
    airport_name = Column(String(100), nullable=False)
    city = Column(String(50), nullable=False)
    country = Column(String(50))
    airport_status = Column(String(50), nullable=False, default="Active")
    timezone = Column(String(50), nullable=False, default="UTC")


class Airline(Base):
    __tablename__ = "airlines"
    airline_code = Column(String(2), primary_key=True)
    airline_name = Column(String(100), nullable=False)
    airline_status = Column(String(20), nullable=False, default="Active")


class Aircraft(Base):
    __tablename__ = "aircrafts"
    icao_code = Column(String(4), primary_key=True)
    model_name = Column(String(100), nullable=False)
    manufacturer = Column(String(50), nullable=False)
    capacity_pax = Column(Integer)
    aircraft_status = Column(String(10), nullable=False, default="Active")


class Terminal(Base):
    __tablename__ = "terminals"
    id = Column(Integer, primary_key=True)
    iata_code = Column(String(3), ForeignKey("airports.iata_code"), nullable=False)
    terminal_code = Column(String(5), nullable=False)
    name = Column(String(100))
    id_terminal_code = Column(String(25), unique=True)
    __table_args__ = (UniqueConstraint("iata_code", "terminal_code", name="uix_airport_terminal"),)

    airport = relationship("Airport", lazy="selectin")


airline_gates = Table(
    "airline_gates",
    Base.metadata,
    Column("gate_id", Integer, ForeignKey("gates.id", ondelete="CASCADE"), primary_key=True),
    Column("airline_code", String(2), ForeignKey("airlines.airline_code"), primary_key=True),
)


class Gate(Base):
    __tablename__ = "gates"
    id = Column(Integer, primary_key=True)
    terminal_id = Column(Integer, ForeignKey("terminals.id"), nullable=False)
    gate_code = Column(String(10), nullable=False)
    gate_status = Column(String(50), nullable=False, default="Open")
    id_gate_code = Column(String(25), unique=True)
    __table_args__ = (UniqueConstraint("terminal_id", "gate_code", name="uix_terminal_gate"),)

    terminal = relationship("Terminal", lazy="selectin")
    authorized_airlines = relationship("Airline", secondary=airline_gates, lazy="selectin")
    restrictions = relationship("GateRestriction", cascade="all, delete-orphan", lazy="selectin",
                                order_by="GateRestriction.aircraft_icao_code")


class GateRestriction(Base):
    __tablename__ = "gate_restrictions"
    gate_id = Column(Integer, ForeignKey("gates.id", ondelete="CASCADE"), primary_key=True)
    aircraft_icao_code = Column(String(4), ForeignKey("aircrafts.icao_code"), primary_key=True)
    restriction_type = Column(String(50), nullable=False)

    aircraft = relationship("Aircraft", lazy="selectin")


class BaggageBelt(Base):
    __tablename__ = "baggage_belts"
    id = Column(Integer, primary_key=True)
    terminal_id = Column(Integer, ForeignKey("terminals.id"), nullable=False)
    belt_code = Column(String(10), nullable=False)
    status = Column(String(20), nullable=False, default="Active")
    id_belt_code = Column(String(25), unique=True)

    terminal = relationship("Terminal", lazy="selectin")


class FlightStatus(Base):
    __tablename__ = "flight_status"
    id = Column(Integer, primary_key=True)
    status_code = Column(String(15), nullable=False, index=True)
    status_name = Column(String(50), nullable=False)
    description = Column(String(255))
    id_status_code = Column(String(25), unique=True)


class Flight(Base):
    __tablename__ = "flights"
    id = Column(Integer, primary_key=True)
    # stable reference supplied by the integration; upserts key on it when present
    external_ref = Column(String(64), unique=True)
    flight_number = Column(String(10), nullable=False, index=True)
    airline_code = Column(String(2), ForeignKey("airlines.airline_code"), nullable=False, index=True)
    aircraft_icao_code = Column(String(4), ForeignKey("aircrafts.icao_code"))
    origin_code = Column(String(3), ForeignKey("airports.iata_code"), nullable=False, index=True)
    destination_code = Column(String(3), ForeignKey("airports.iata_code"), nullable=False, index=True)
    scheduled_departure_time = Column(DateTime, nullable=False, index=True)
    scheduled_arrival_time = Column(DateTime, index=True)
    status_id = Column(Integer, ForeignKey("flight_status.id"), nullable=False, index=True)
    gate_id = Column(Integer, ForeignKey("gates.id"), index=True)
    baggage_belt_id = Column(Integer, ForeignKey("baggage_belts.id"), index=True)
    terminal_id = Column(Integer, ForeignKey("terminals.id"), index=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)
    deleted_at = Column(DateTime, index=True)

    status = relationship("FlightStatus", lazy="selectin")
    gate = relationship("Gate", lazy="selectin")
    baggage_belt = relationship("BaggageBelt", lazy="selectin")
    terminal_direct = relationship("Terminal", lazy="selectin")
    airline = relationship("Airline", lazy="selectin")
    aircraft = relationship("Aircraft", lazy="selectin")
    origin = relationship("Airport", foreign_keys=[origin_code], lazy="selectin")
    destination = relationship("Airport", foreign_keys=[destination_code], lazy="selectin")

    @property
    def effective_terminal(self):
        # explicit terminal first, then whatever the gate or belt sits in
        if self.terminal_direct is not None:
            return self.terminal_direct
        if self.gate is not None:
            return self.gate.terminal
        if self.baggage_belt is not None:
            return self.baggage_belt.terminal
        return None

    @property
    def is_deleted(self) -> bool:
        return self.deleted_at is not None


class FlightEvent(Base):
    __tablename__ = "flight_events"
    id = Column(Integer, primary_key=True)
    flight_id = Column(Integer, ForeignKey("flights.id"), nullable=False, index=True)
    event_type = Column(String(50), nullable=False)
    description = Column(Text)
    old_value = Column(Text)
    new_value = Column(Text)
    timestamp = Column(DateTime, nullable=False, default=utcnow, index=True)


class FlightConnection(Base):
    __tablename__ = "flight_connections"
    id = Column(Integer, primary_key=True)
    arrival_flight_id = Column(Integer, ForeignKey("flights.id"), nullable=False, index=True)
    departure_flight_id = Column(Integer, ForeignKey("flights.id"), nullable=False, index=True)
    __table_args__ = (UniqueConstraint("arrival_flight_id", "departure_flight_id", name="uix_connection"),)


class FlightArrival(Base):
    __tablename__ = "flight_arrivals"
    flight_id = Column(Integer, ForeignKey("flights.id"), primary_key=True)
    actual_arrival_time = Column(DateTime)
    landing_time = Column(DateTime)
    baggage_belt_id = Column(Integer, ForeignKey("baggage_belts.id"))


class FlightDeparture(Base):
    __tablename__ = "flight_departures"
    flight_id = Column(Integer, ForeignKey("flights.id"), primary_key=True)
    actual_departure_time = Column(DateTime)
    gate_id = Column(Integer, ForeignKey("gates.id"))


# Composite codes are a cached projection of (parent key, local code).
# Recompute on insert when absent, and on update when either part changed.

def _parts_changed(target, *attrs) -> bool:
    state = inspect(target)
    return any(state.attrs[a].history.has_changes() for a in attrs)


@event.listens_for(Terminal, "before_insert")
def _terminal_code_on_insert(mapper, connection, target):
    if not target.id_terminal_code and target.iata_code and target.terminal_code:
        target.id_terminal_code = composite_code(target.iata_code, target.terminal_code)


@event.listens_for(Terminal, "before_update")
def _terminal_code_on_update(mapper, connection, target):
    if _parts_changed(target, "iata_code", "terminal_code") and target.iata_code and target.terminal_code:
        target.id_terminal_code = composite_code(target.iata_code, target.terminal_code)


@event.listens_for(Gate, "before_insert")
def _gate_code_on_insert(mapper, connection, target):
    if not target.id_gate_code and target.terminal_id and target.gate_code:
        target.id_gate_code = composite_code(target.terminal_id, target.gate_code)
    if not target.gate_status:
        target.gate_status = "Open"


@event.listens_for(Gate, "before_update")
def _gate_code_on_update(mapper, connection, target):
    if _parts_changed(target, "terminal_id", "gate_code") and target.terminal_id and target.gate_code:
        target.id_gate_code = composite_code(target.terminal_id, target.gate_code)


@event.listens_for(BaggageBelt, "before_insert")
def _belt_code_on_insert(mapper, connection, target):
    if not target.id_belt_code and target.terminal_id and target.belt_code:
        target.id_belt_code = composite_code(target.terminal_id, target.belt_code)
    if not target.status:
        target.status = "Active"


@event.listens_for(BaggageBelt, "before_update")
def _belt_code_on_update(mapper, connection, target):
    if _parts_changed(target, "terminal_id", "belt_code") and target.terminal_id and target.belt_code:
        target.id_belt_code = composite_code(target.terminal_id, target.belt_code)


@event.listens_for(FlightStatus, "before_insert")
def _status_code_on_insert(mapper, connection, target):
    if not target.id_status_code and target.id is not None:
        target.id_status_code = composite_code(target.id, target.status_code)


@event.listens_for(FlightStatus, "after_insert")
def _status_code_after_insert(mapper, connection, target):
    # autoincrement id is only known now
    if not target.id_status_code:
        code = composite_code(target.id, target.status_code)
        connection.execute(
            update(FlightStatus.__table__)
            .where(FlightStatus.__table__.c.id == target.id)
            .values(id_status_code=code)
        )
        set_committed_value(target, "id_status_code", code)


@event.listens_for(FlightStatus, "before_update")
def _status_code_on_update(mapper, connection, target):
    if _parts_changed(target, "status_code"):
        target.id_status_code = composite_code(target.id, target.status_code)
