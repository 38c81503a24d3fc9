from datetime import date, datetime
from typing import List, Literal, Optional, Union

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator

Ref = Union[int, str]


# ---- inbound: integration webhooks ----

class FlightSyncPayload(BaseModel):
    """Full or partial flight upsert pushed by the automation tool.

    Only the fields actually present are applied on update; an explicit
    ``null`` for gate/belt/terminal clears that assignment.
    """
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    external_ref: Optional[str] = Field(None, max_length=64)
    flight_number: Optional[str] = Field(None, min_length=1, max_length=10)
    airline_code: Optional[str] = None
    aircraft_icao_code: Optional[str] = None
    origin_code: Optional[str] = None
    destination_code: Optional[str] = None
    scheduled_departure_time: Optional[datetime] = None
    scheduled_arrival_time: Optional[datetime] = None
    status: Optional[Ref] = Field(None, validation_alias=AliasChoices("status_code", "fk_id_status_code", "status"))
    gate: Optional[Ref] = Field(None, validation_alias=AliasChoices("gate", "gate_code", "fk_id_gate_code"))
    baggage_belt: Optional[Ref] = Field(
        None, validation_alias=AliasChoices("baggage_belt", "belt_code", "fk_id_belt_code"))
    terminal: Optional[Ref] = Field(
        None, validation_alias=AliasChoices("terminal", "terminal_code", "fk_id_terminal_code"))
    # backfilled deliveries may carry the time the change really happened
    event_timestamp: Optional[datetime] = Field(None, validation_alias=AliasChoices("event_timestamp", "timestamp"))


class StatusUpdatePayload(BaseModel):
    model_config = ConfigDict(extra="ignore")

    flight_id: Optional[int] = None
    flight_number: Optional[str] = None
    scheduled_departure_date: Optional[date] = None
    status_code: Optional[Ref] = Field(
        None, validation_alias=AliasChoices("status_code", "new_status_code", "status"))


class AirportSyncPayload(BaseModel):
    model_config = ConfigDict(extra="ignore")

    iata_code: str = Field(..., min_length=3, max_length=3)
    airport_name: str = Field(..., max_length=100)
    city: str = Field(..., max_length=50)
    country: Optional[str] = Field(None, max_length=50)
    airport_status: Optional[str] = None
    timezone: Optional[str] = None


# ---- inbound: UI actions ----

class FlightCreate(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    flight_number: str = Field(..., max_length=10)
    airline_code: str
    aircraft_icao_code: Optional[str] = None
    origin_code: str
    destination_code: str
    scheduled_departure_time: datetime
    scheduled_arrival_time: Optional[datetime] = None
    status: Ref = Field(..., validation_alias=AliasChoices("status", "fk_id_status_code", "status_code"))
    gate: Optional[Ref] = Field(None, validation_alias=AliasChoices("gate", "fk_id_gate_code"))
    baggage_belt: Optional[Ref] = Field(None, validation_alias=AliasChoices("baggage_belt", "fk_id_belt_code"))
    terminal: Optional[Ref] = Field(None, validation_alias=AliasChoices("terminal", "fk_id_terminal_code"))


class FlightUpdate(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    flight_number: Optional[str] = Field(None, max_length=10)
    airline_code: Optional[str] = None
    aircraft_icao_code: Optional[str] = None
    origin_code: Optional[str] = None
    destination_code: Optional[str] = None
    scheduled_departure_time: Optional[datetime] = None
    scheduled_arrival_time: Optional[datetime] = None
    status: Optional[Ref] = Field(None, validation_alias=AliasChoices("status", "fk_id_status_code", "status_code"))
    gate: Optional[Ref] = Field(None, validation_alias=AliasChoices("gate", "fk_id_gate_code"))
    baggage_belt: Optional[Ref] = Field(None, validation_alias=AliasChoices("baggage_belt", "fk_id_belt_code"))
    terminal: Optional[Ref] = Field(None, validation_alias=AliasChoices("terminal", "fk_id_terminal_code"))


class StatusChange(BaseModel):
    status_id: Ref
    reason: Optional[str] = Field(None, max_length=500)


class GateChange(BaseModel):
    gate_id: Optional[Ref] = None
    reason: Optional[str] = Field(None, max_length=500)


class BeltChange(BaseModel):
    baggage_belt_id: Optional[Ref] = None
    reason: Optional[str] = Field(None, max_length=500)


class GateStatusChange(BaseModel):
    gate_status: Literal["Open", "Closed"]


class BeltStatusChange(BaseModel):
    status: Literal["Active", "Maintenance", "Closed", "Scheduled"]


class BulkUpdateIn(BaseModel):
    flight_ids: List[int] = Field(..., min_length=1)
    update_type: Literal["status", "gate", "baggage_belt"]
    value: Optional[Ref] = None
    reason: Optional[str] = Field(None, max_length=500)


class TerminalIn(BaseModel):
    iata_code: str = Field(..., min_length=3, max_length=3)
    terminal_code: str = Field(..., max_length=5)
    name: Optional[str] = Field(None, max_length=100)


class TerminalPatch(BaseModel):
    iata_code: Optional[str] = Field(None, min_length=3, max_length=3)
    terminal_code: Optional[str] = Field(None, max_length=5)
    name: Optional[str] = Field(None, max_length=100)


class GateIn(BaseModel):
    terminal_id: int
    gate_code: str = Field(..., max_length=10)
    gate_status: Optional[Literal["Open", "Closed"]] = None
    airline_codes: List[str] = []


class GatePatch(BaseModel):
    terminal_id: Optional[int] = None
    gate_code: Optional[str] = Field(None, max_length=10)
    gate_status: Optional[Literal["Open", "Closed"]] = None
    airline_codes: Optional[List[str]] = None


class AirlineCodes(BaseModel):
    airline_codes: List[str]


class GateRestrictionIn(BaseModel):
    aircraft_icao_code: str = Field(..., max_length=4)
    restriction_type: str = Field(..., min_length=1, max_length=50)


class GateRestrictions(BaseModel):
    restrictions: List[GateRestrictionIn]


class BeltIn(BaseModel):
    terminal_id: int
    belt_code: str = Field(..., max_length=10)
    status: Literal["Active", "Maintenance", "Closed", "Scheduled"] = "Active"


class BeltPatch(BaseModel):
    terminal_id: Optional[int] = None
    belt_code: Optional[str] = Field(None, max_length=10)
    status: Optional[Literal["Active", "Maintenance", "Closed", "Scheduled"]] = None


# ---- outbound ----

class FlightStatusOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    status_code: str
    status_name: str
    id_status_code: Optional[str]


class TerminalOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    iata_code: str
    terminal_code: str
    name: Optional[str]
    id_terminal_code: Optional[str]


class GateOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    terminal_id: int
    gate_code: str
    gate_status: str
    id_gate_code: Optional[str]


class BeltOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    terminal_id: int
    belt_code: str
    status: str
    id_belt_code: Optional[str]


class AirportOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    iata_code: str
    airport_name: str
    city: str
    country: Optional[str]
    airport_status: str
    timezone: str


class FlightOut(BaseModel):
    model_config = ConfigDict(from_attributes=True, populate_by_name=True)

    id: int
    external_ref: Optional[str]
    flight_number: str
    airline_code: str
    aircraft_icao_code: Optional[str]
    origin_code: str
    destination_code: str
    scheduled_departure_time: datetime
    scheduled_arrival_time: Optional[datetime]
    status: FlightStatusOut
    gate: Optional[GateOut]
    baggage_belt: Optional[BeltOut]
    terminal: Optional[TerminalOut] = Field(None, validation_alias="effective_terminal")
    deleted_at: Optional[datetime] = None


class FlightEventOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    flight_id: int
    event_type: str
    description: Optional[str]
    old_value: Optional[str]
    new_value: Optional[str]
    timestamp: datetime


class ConnectionOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    arrival_flight_id: int
    departure_flight_id: int


class FlightDetailsOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    flight: FlightOut
    events: List[FlightEventOut]
    connections: List[ConnectionOut]


class ScheduleRow(FlightOut):
    type: Literal["Arrival", "Departure"]
    has_connections: bool
    inbound_count: int
    outbound_count: int


class SchedulePage(BaseModel):
    items: List[ScheduleRow]
    total: int
    page: int
    pages: int


class BulkItemResult(BaseModel):
    flight_id: int
    ok: bool
    error_kind: Optional[str] = None
    message: Optional[str] = None


class StatusUpdateResponse(BaseModel):
    message: str
    flight_id: int
    status: str



class GateRestrictionOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    aircraft_icao_code: str
    restriction_type: str


class GateDetailOut(GateOut):
    terminal: Optional[TerminalOut] = None
    authorized_airlines: List[str] = []
    restrictions: List[GateRestrictionOut] = []

    @field_validator("authorized_airlines", mode="before")
    @classmethod
    def _airline_codes(cls, value):
        return [getattr(a, "airline_code", a) for a in value or []]


class BeltDetailOut(BeltOut):
    terminal: Optional[TerminalOut] = None


class GateBoardRow(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    gate: GateDetailOut
    current_flights: List[FlightOut]
    is_occupied: bool


class BeltBoardRow(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    belt: BeltDetailOut
    current_flights: List[FlightOut]
    is_active: bool


class BulkUpdateOut(BaseModel):
    updated: int
    failed: int
    results: List[BulkItemResult]
