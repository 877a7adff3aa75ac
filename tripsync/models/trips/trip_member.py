from sqlalchemy import Column, Integer, ForeignKey, DateTime, UniqueConstraint
from sqlalchemy.orm import relationship
from tripsync.core.database import Base
from datetime import datetime
import enum
import sqlalchemy as sa

class TripRole(enum.Enum):
    MEMBER = "member"
    OWNER = "owner"

class MemberStatus(enum.Enum):
    ACTIVE = "active"
    LEFT = "left"
    REMOVED = "removed"


class TripMember(Base):
    __tablename__ = "trip_members"

    id = Column(Integer, primary_key=True, index=True)

    trip_id = Column(Integer, ForeignKey("trips.id", ondelete="CASCADE"))
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"))

    triprole_enum = sa.Enum(
        TripRole,
        name="triprole",
        values_callable=lambda obj: [e.value for e in obj]  # this ensures lowercase values
    )
    role = Column(triprole_enum, nullable=False, default=TripRole.MEMBER)

    memberstatus_enum = sa.Enum(
        MemberStatus,
        name="memberstatus",
        values_callable=lambda obj: [e.value for e in obj]
    )
    status = Column(memberstatus_enum, nullable=False, default=MemberStatus.ACTIVE)

    joined_at = Column(DateTime, default=datetime.utcnow)

    # To ensure no duplicate members in a trip
    __table_args__ = (
        UniqueConstraint('trip_id', 'user_id', name='uq_trip_user'),
    )

    trip = relationship("Trip", back_populates="members")
    user = relationship("User", back_populates="trips")
