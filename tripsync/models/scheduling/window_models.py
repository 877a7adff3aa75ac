from sqlalchemy import (
    Column, Integer, String, Date, ForeignKey, DateTime, Boolean, Text,
    UniqueConstraint, Index, func, text,
)
from sqlalchemy.orm import relationship
from tripsync.core.database import Base
import sqlalchemy as sa
import enum

class WindowPrecision(str, enum.Enum):
    exact = "exact"
    approx = "approx"

class WindowPreferenceType(str, enum.Enum):
    WORKS = "WORKS"
    MAYBE = "MAYBE"
    NO = "NO"


class WindowProposal(Base):
    __tablename__ = "window_proposals"

    id = Column(Integer, primary_key=True, index=True)
    trip_id = Column(Integer, ForeignKey("trips.id", ondelete="CASCADE"), nullable=False)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)

    source_text = Column(Text, nullable=False)
    start_date = Column(Date, nullable=False)
    end_date = Column(Date, nullable=False)
    precision = Column(sa.Enum(WindowPrecision, name="windowprecision"), nullable=False)
    is_bare_month = Column(Boolean, nullable=False, default=False)

    # Quota slot (1..MAX_WINDOWS_PER_USER); unique among a user's active windows
    slot = Column(Integer, nullable=False)
    archived = Column(Boolean, nullable=False, default=False)
    archived_at = Column(DateTime(timezone=True), nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())

    preferences = relationship("WindowPreference", back_populates="window", cascade="all, delete")

    __table_args__ = (
        Index(
            "uq_window_proposals_active_slot",
            "trip_id", "user_id", "slot",
            unique=True,
            postgresql_where=text("archived = false"),
            sqlite_where=text("archived = 0"),
        ),
        Index("ix_window_proposals_trip_id", "trip_id"),
    )


class WindowPreference(Base):
    __tablename__ = "window_preferences"

    id = Column(Integer, primary_key=True, index=True)
    trip_id = Column(Integer, ForeignKey("trips.id", ondelete="CASCADE"), nullable=False)
    window_id = Column(Integer, ForeignKey("window_proposals.id", ondelete="CASCADE"), nullable=False)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    preference = Column(sa.Enum(WindowPreferenceType, name="windowpreferencetype"), nullable=False)
    note = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    window = relationship("WindowProposal", back_populates="preferences")

    __table_args__ = (
        UniqueConstraint("window_id", "user_id", name="uq_window_preference_user"),
        Index("ix_window_preferences_trip_id", "trip_id"),
    )
