"""Append-only flight event log.

Rows are written inside the caller's transaction, so an event that cannot be
stored takes the whole change down with it. Once the transaction commits the
same events go out on a Redis channel for the live activity feed.
"""
import json
from datetime import datetime
from typing import Iterable, List, Optional

import redis.asyncio as redis
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from . import models
from .config import EVENTS_CHANNEL, REDIS_URL
from .logging_config import get_logger

logger = get_logger(__name__)

redis_client = redis.from_url(REDIS_URL, encoding="utf-8", decode_responses=True)


async def record_event(session: AsyncSession, flight_id: int, event_type, old_value=None, new_value=None,
                       description: Optional[str] = None, timestamp: Optional[datetime] = None) -> models.FlightEvent:
    event = models.FlightEvent(
        flight_id=flight_id,
        event_type=models.EventType(event_type).value,
        old_value=None if old_value is None else str(old_value),
        new_value=None if new_value is None else str(new_value),
        description=description,
        timestamp=timestamp or models.utcnow(),
    )
    session.add(event)
    await session.flush()  # surface insert failures inside the transaction
    return event


async def flight_history(session: AsyncSession, flight_id: int, limit: Optional[int] = None) -> List[models.FlightEvent]:
    q = (select(models.FlightEvent)
         .where(models.FlightEvent.flight_id == flight_id)
         .order_by(models.FlightEvent.timestamp.desc(), models.FlightEvent.id.desc()))
    if limit:
        q = q.limit(limit)
    return list((await session.execute(q)).scalars().all())


def event_message(event: models.FlightEvent) -> dict:
    return {
        "id": event.id,
        "flight_id": event.flight_id,
        "event_type": event.event_type,
        "old_value": event.old_value,
        "new_value": event.new_value,
        "description": event.description,
        "timestamp": event.timestamp.isoformat() if event.timestamp else None,
    }


async def publish_event(message: dict):
    await redis_client.publish(EVENTS_CHANNEL, json.dumps(message))


async def publish_events(events: Iterable[models.FlightEvent]):
    """Fan committed events out to feed subscribers.

    Runs after commit: the stored row is the history, a dropped notification
    only costs a live update.
    """
    for event in events:
        try:
            await publish_event(event_message(event))
        except redis.RedisError as e:
            logger.warning(f"[EVENTS] publish failed for event {event.id} (flight {event.flight_id}): {e}")
