from sqlalchemy import Column, Integer, String, Date, ForeignKey, DateTime, func
from tripsync.core.database import Base
from sqlalchemy.orm import relationship
import sqlalchemy as sa
import enum

class TripMode(str, enum.Enum):
    collaborative = "collaborative"
    hosted = "hosted"

class TripStatus(str, enum.Enum):
    active = "active"
    locked = "locked"
    canceled = "canceled"

class Trip(Base):
    __tablename__ = "trips"

    id = Column(Integer, primary_key=True, index=True)
    title = Column(String, nullable=False)
    circle_id = Column(Integer, ForeignKey("circles.id"), nullable=True)
    creator_id = Column(Integer, ForeignKey("users.id"), nullable=False)

    mode = Column(sa.Enum(TripMode, name="tripmode"), nullable=False, default=TripMode.collaborative)
    status = Column(sa.Enum(TripStatus, name="tripstatus"), nullable=False, default=TripStatus.active)

    # Optional planning bounds a leader sets before windows are collected
    start_bound = Column(Date, nullable=True)
    end_bound = Column(Date, nullable=True)

    # Written exactly once, by the lock transition (or at creation for hosted trips)
    locked_start_date = Column(Date, nullable=True)
    locked_end_date = Column(Date, nullable=True)
    locked_at = Column(DateTime(timezone=True), nullable=True)

    # Bumped by every propose; used as a conditional-write guard
    date_proposal_seq = Column(Integer, nullable=False, default=0)

    created_at = Column(DateTime(timezone=True), server_default=func.now())

    creator = relationship("User", back_populates="created_trips")
    circle = relationship("Circle", back_populates="trips")
    members = relationship("TripMember", back_populates="trip", cascade="all, delete")

    def to_dict(self):
        """Convert Trip instance to dictionary for caching"""
        return {
            "id": self.id,
            "title": self.title,
            "circle_id": self.circle_id,
            "creator_id": self.creator_id,
            "mode": self.mode.value,
            "status": self.status.value,
            "start_bound": self.start_bound.isoformat() if self.start_bound else None,
            "end_bound": self.end_bound.isoformat() if self.end_bound else None,
            "locked_start_date": self.locked_start_date.isoformat() if self.locked_start_date else None,
            "locked_end_date": self.locked_end_date.isoformat() if self.locked_end_date else None,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
