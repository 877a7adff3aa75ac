from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select
from sqlalchemy.exc import IntegrityError

from tripsync.core.logger import logger
from tripsync.models.nudges.nudge_models import TripMessage
from tripsync.schemas.nudges.nudge import Nudge
from tripsync.services.nudges.copy import build_chat_message

CHAT_CARD_SUBTYPE = "nudge"


async def has_chat_message_with_event_key(db: AsyncSession, trip_id: int, event_key: str) -> bool:
    result = await db.execute(
        select(TripMessage.id).where(TripMessage.trip_id == trip_id, TripMessage.event_key == event_key)
    )
    return result.first() is not None


async def create_chat_card_message(db: AsyncSession, trip_id: int, nudge: Nudge) -> bool:
    """Append the nudge to the trip thread once per dedupe key.

    The existence check covers the common case; the unique (trip_id,
    event_key) index settles concurrent renders. Returns True only when
    this call wrote the message.
    """
    if await has_chat_message_with_event_key(db, trip_id, nudge.dedupe_key):
        return False

    message = TripMessage(
        trip_id=trip_id,
        content=build_chat_message(nudge.type, nudge.payload),
        is_system=True,
        subtype=CHAT_CARD_SUBTYPE,
        event_key=nudge.dedupe_key,
        nudge_type=nudge.type.value,
    )
    db.add(message)
    try:
        await db.commit()
    except IntegrityError:
        await db.rollback()
        logger.info(f"Chat card {nudge.dedupe_key} already written for trip {trip_id}")
        return False

    logger.info(f"Chat card {nudge.dedupe_key} posted to trip {trip_id}")
    return True
