from sqlalchemy import (
    Column, Integer, String, ForeignKey, DateTime, Boolean, Text,
    UniqueConstraint, Index, func,
)
from tripsync.core.database import Base


class TripMessage(Base):
    """System chat message. Only nudge chat cards are written by this service."""
    __tablename__ = "trip_messages"

    id = Column(Integer, primary_key=True, index=True)
    trip_id = Column(Integer, ForeignKey("trips.id", ondelete="CASCADE"), nullable=False)
    content = Column(Text, nullable=False)
    is_system = Column(Boolean, nullable=False, default=True)
    subtype = Column(String, nullable=True)
    event_key = Column(String, nullable=True)
    nudge_type = Column(String, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (
        UniqueConstraint("trip_id", "event_key", name="uq_trip_message_event_key"),
        Index("ix_trip_messages_trip_id", "trip_id"),
    )


class NudgeCorrelation(Base):
    """Durable record that an action followed a displayed nudge."""
    __tablename__ = "nudge_correlations"

    id = Column(Integer, primary_key=True, index=True)
    trip_id = Column(Integer, ForeignKey("trips.id", ondelete="CASCADE"), nullable=False)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    nudge_type = Column(String, nullable=False)
    dedupe_key = Column(String, nullable=False)
    action_type = Column(String, nullable=False)
    nudge_shown_at = Column(DateTime(timezone=True), nullable=False)
    latency_seconds = Column(Integer, nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False)

    __table_args__ = (
        Index("ix_nudge_correlations_trip_action", "trip_id", "action_type"),
    )
