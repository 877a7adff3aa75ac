from pydantic import BaseModel, Field, model_validator
from typing import List, Optional
from datetime import date, datetime
from tripsync.models.scheduling.date_proposal import DateReactionType


class DateProposalCreate(BaseModel):
    start_date: date
    end_date: date
    note: Optional[str] = Field(None, max_length=500)
    # Leader confirmed proposing despite low coverage
    force: bool = False

    @model_validator(mode="after")
    def check_order(self):
        if self.end_date < self.start_date:
            raise ValueError("end_date must be on or after start_date")
        return self


class DateReactionSet(BaseModel):
    reaction: DateReactionType
    note: Optional[str] = Field(None, max_length=500)


class LockRequest(BaseModel):
    # Lock before the approval threshold is reached
    override: bool = False


class DateReactionOut(BaseModel):
    id: int
    proposal_id: int
    user_id: int
    reaction: DateReactionType
    note: Optional[str] = None

    model_config = {"from_attributes": True}


class DateProposalOut(BaseModel):
    id: int
    trip_id: int
    start_date: date
    end_date: date
    proposed_by: int
    note: Optional[str] = None
    is_active: bool
    created_at: datetime

    model_config = {"from_attributes": True}


class DateProposalWithReactions(DateProposalOut):
    reactions: List[DateReactionOut] = []
    approvals: int = 0
    required_approvals: int = 1
    viewer_reaction: Optional[DateReactionType] = None
