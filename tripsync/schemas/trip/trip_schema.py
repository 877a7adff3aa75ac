from pydantic import BaseModel, Field, model_validator
from typing import Optional
from datetime import date, datetime
from tripsync.models.trips.trip_model import TripMode, TripStatus

class TripBase(BaseModel):
    title: str = Field(..., min_length=1, max_length=120)
    circle_id: Optional[int] = None
    mode: TripMode = TripMode.collaborative

class TripCreate(TripBase):
    # Planning bounds for collaborative trips; the fixed dates for hosted ones
    start_date: Optional[date] = None
    end_date: Optional[date] = None

    @model_validator(mode="after")
    def check_dates(self):
        if self.mode == TripMode.hosted and (not self.start_date or not self.end_date):
            raise ValueError("Hosted trips need a start and end date")
        if self.start_date and self.end_date and self.end_date < self.start_date:
            raise ValueError("end_date must be on or after start_date")
        return self

class TripResponse(TripBase):
    id: int
    creator_id: int
    status: TripStatus
    start_bound: Optional[date] = None
    end_bound: Optional[date] = None
    locked_start_date: Optional[date] = None
    locked_end_date: Optional[date] = None
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True
