from __future__ import annotations
from fastapi import HTTPException, status

from ..services.outcomes import Failure, Outcome

STATUS_BY_FAILURE = {
    Failure.INVALID_INPUT: status.HTTP_400_BAD_REQUEST,
    Failure.INVALID_QR: status.HTTP_400_BAD_REQUEST,
    Failure.ALREADY_CHECKED_IN: status.HTTP_409_CONFLICT,
    Failure.NOT_CHECKED_IN: status.HTTP_409_CONFLICT,
    Failure.BACK_IN_RADIUS: status.HTTP_409_CONFLICT,
    Failure.VENUE_COORDINATES_REQUIRED: status.HTTP_422_UNPROCESSABLE_ENTITY,
    Failure.UNAVAILABLE: status.HTTP_503_SERVICE_UNAVAILABLE,
}

def raise_for_failure(outcome: Outcome) -> None:
    if outcome.ok:
        return
    raise HTTPException(
        status_code=STATUS_BY_FAILURE.get(outcome.failure, status.HTTP_400_BAD_REQUEST),
        detail={"code": outcome.failure.value, "message": outcome.message},
    )
