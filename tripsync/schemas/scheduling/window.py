from pydantic import BaseModel, Field
from typing import Optional
from datetime import date, datetime
from tripsync.models.scheduling.window_models import WindowPrecision, WindowPreferenceType


class WindowContext(BaseModel):
    """Hints used to pick a year for under-specified input like "March"."""
    trip_year: Optional[int] = None
    start_bound: Optional[date] = None
    end_bound: Optional[date] = None


class NormalizedWindow(BaseModel):
    start_date: date
    end_date: date
    precision: WindowPrecision
    is_bare_month: bool = False

    @property
    def ok(self) -> bool:
        return True


class WindowNormalizationError(BaseModel):
    error: str

    @property
    def ok(self) -> bool:
        return False


class DateWindow(BaseModel):
    """Minimal window shape the overlap analyzer works on."""
    id: Optional[int] = None
    user_id: int
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    precision: Optional[str] = None


class WindowCreate(BaseModel):
    text: str = Field(..., max_length=200)


class NormalizeRequest(BaseModel):
    text: str = Field(..., max_length=200)


class WindowPreferenceSet(BaseModel):
    preference: WindowPreferenceType
    note: Optional[str] = Field(None, max_length=500)


class PreferenceCounts(BaseModel):
    works: int = 0
    maybe: int = 0
    no: int = 0


class WindowOut(BaseModel):
    id: int
    trip_id: int
    user_id: int
    source_text: str
    start_date: date
    end_date: date
    precision: WindowPrecision
    is_bare_month: bool
    archived: bool
    created_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


class WindowWithPreferences(WindowOut):
    preferences: PreferenceCounts = PreferenceCounts()
    score: int = 0
    viewer_preference: Optional[WindowPreferenceType] = None


class WindowPreferenceOut(BaseModel):
    id: int
    trip_id: int
    window_id: int
    user_id: int
    preference: WindowPreferenceType
    note: Optional[str] = None

    model_config = {"from_attributes": True}


class SuggestWindowResponse(BaseModel):
    window: WindowOut
    similar_window_id: Optional[int] = None
    similarity_score: Optional[float] = None
    user_window_count: int
    max_windows: int
