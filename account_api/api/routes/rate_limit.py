"""Attempt rate limiting endpoints for sensitive actions (OTP, password reset)."""

from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends, status
from fastapi.responses import JSONResponse

from account_api.core.auth import verify_api_key
from account_api.core.dependencies import get_rate_limit_service
from account_api.schemas.rate_limit import IncrementResponse, RateLimitRequest, RateLimitStatus
from account_api.services.rate_limit_service import RateLimitService

router = APIRouter(tags=["Rate Limit"], dependencies=[Depends(verify_api_key)])

RateLimitServiceDep = Annotated[RateLimitService, Depends(get_rate_limit_service)]


def _status_response(result: RateLimitStatus) -> JSONResponse:
    """Render a status; blocked callers get 429 with the same body.

    ``resetTime`` is always present (null when not blocked); ``reason`` only
    when there is one.
    """

    body = result.model_dump(
        mode="json",
        by_alias=True,
        exclude={"reason"} if result.reason is None else None,
    )
    code = status.HTTP_429_TOO_MANY_REQUESTS if result.blocked else status.HTTP_200_OK
    return JSONResponse(status_code=code, content=body)


@router.post(
    "/check-rate-limit",
    response_model=RateLimitStatus,
    responses={429: {"model": RateLimitStatus, "description": "Action is locked out"}},
)
def check_rate_limit(payload: RateLimitRequest, service: RateLimitServiceDep) -> JSONResponse:
    """Report the attempt budget without counting an attempt.

    Applies an expired lockout reset and locks the action once the
    threshold is reached. Fails open when the store is unavailable.
    """

    return _status_response(service.check(payload.user_id, payload.action_type))


@router.post("/increment-rate-limit", response_model=IncrementResponse)
def increment_rate_limit(
    payload: RateLimitRequest, service: RateLimitServiceDep
) -> IncrementResponse:
    """Count one attempt; call after the attempt actually happened."""

    return IncrementResponse(success=service.increment(payload.user_id, payload.action_type))


@router.post(
    "/record-attempt",
    response_model=RateLimitStatus,
    responses={429: {"model": RateLimitStatus, "description": "Action is locked out"}},
)
def record_attempt(payload: RateLimitRequest, service: RateLimitServiceDep) -> JSONResponse:
    """Check and count in one step.

    Blocked callers are answered with 429 and not counted.
    """

    return _status_response(service.record_attempt(payload.user_id, payload.action_type))
