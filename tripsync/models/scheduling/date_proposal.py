from sqlalchemy import (
    Column, Integer, Date, ForeignKey, DateTime, Boolean, Text,
    UniqueConstraint, Index, func, text,
)
from sqlalchemy.orm import relationship
from tripsync.core.database import Base
import sqlalchemy as sa
import enum

class DateReactionType(str, enum.Enum):
    WORKS = "WORKS"
    CAVEAT = "CAVEAT"
    CANT = "CANT"


class DateProposal(Base):
    __tablename__ = "date_proposals"

    id = Column(Integer, primary_key=True, index=True)
    trip_id = Column(Integer, ForeignKey("trips.id", ondelete="CASCADE"), nullable=False)
    start_date = Column(Date, nullable=False)
    end_date = Column(Date, nullable=False)
    proposed_by = Column(Integer, ForeignKey("users.id"), nullable=False)
    note = Column(Text, nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), nullable=False)
    retired_at = Column(DateTime(timezone=True), nullable=True)

    reactions = relationship("DateReaction", back_populates="proposal", cascade="all, delete")

    __table_args__ = (
        Index(
            "uq_date_proposals_active_trip",
            "trip_id",
            unique=True,
            postgresql_where=text("is_active = true"),
            sqlite_where=text("is_active = 1"),
        ),
    )


class DateReaction(Base):
    __tablename__ = "date_reactions"

    id = Column(Integer, primary_key=True, index=True)
    trip_id = Column(Integer, ForeignKey("trips.id", ondelete="CASCADE"), nullable=False)
    proposal_id = Column(Integer, ForeignKey("date_proposals.id", ondelete="CASCADE"), nullable=False)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    reaction = Column(sa.Enum(DateReactionType, name="datereactiontype"), nullable=False)
    note = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    proposal = relationship("DateProposal", back_populates="reactions")

    __table_args__ = (
        UniqueConstraint("proposal_id", "user_id", name="uq_date_reaction_user"),
    )
