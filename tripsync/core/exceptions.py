from typing import Any, Dict, Optional
from fastapi import HTTPException, status


class SchedulingError(HTTPException):
    """HTTPException carrying a stable error code for scheduling callers.

    detail is always a dict: {"code": ..., "message": ..., **extra} so the
    client can branch on the code and still show the message verbatim.
    """

    def __init__(
        self,
        code: str,
        message: str,
        status_code: int = status.HTTP_400_BAD_REQUEST,
        extra: Optional[Dict[str, Any]] = None,
    ):
        self.code = code
        self.message = message
        detail = {"code": code, "message": message}
        if extra:
            detail.update(extra)
        super().__init__(status_code=status_code, detail=detail)


class ErrorCode:
    TRIP_NOT_FOUND = "TRIP_NOT_FOUND"
    WINDOW_NOT_FOUND = "WINDOW_NOT_FOUND"
    TRIP_CANCELED = "TRIP_CANCELED"
    UNKNOWN_ACTION = "UNKNOWN_ACTION"
    LEADER_ONLY = "LEADER_ONLY"
    NOT_A_PARTICIPANT = "NOT_A_PARTICIPANT"
    STAGE_BLOCKED = "STAGE_BLOCKED"
    INVALID_STAGE_TRANSITION = "INVALID_STAGE_TRANSITION"
    INVALID_WINDOW = "INVALID_WINDOW"
    INVALID_DATE_RANGE = "INVALID_DATE_RANGE"
    USER_WINDOW_CAP_REACHED = "USER_WINDOW_CAP_REACHED"
    WINDOW_CONFLICT = "WINDOW_CONFLICT"
    LOW_COVERAGE_CONFIRM_REQUIRED = "LOW_COVERAGE_CONFIRM_REQUIRED"
