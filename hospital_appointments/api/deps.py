from fastapi import Depends, HTTPException, status, Request
from fastapi.security import HTTPAuthorizationCredentials
from sqlalchemy.orm import Session
from typing import Optional

from ..core.config import settings
from ..core.database import get_db, get_redis
from ..core.security import (
    security, verify_token, caller_from_token, AuthenticationError,
    CallerContext, TokenPayload
)
from ..services.appointment_service import AppointmentService
from ..services.results import ErrorKind, ServiceResult

ERROR_STATUS_CODES = {
    ErrorKind.NOT_FOUND: status.HTTP_404_NOT_FOUND,
    ErrorKind.FORBIDDEN: status.HTTP_403_FORBIDDEN,
    ErrorKind.CONFLICT: status.HTTP_409_CONFLICT,
    ErrorKind.VALIDATION_FAILED: status.HTTP_422_UNPROCESSABLE_ENTITY,
}


async def get_current_user_token(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security)
) -> TokenPayload:
    """Extract and verify JWT token from Authorization header."""
    if credentials is None:
        raise AuthenticationError("Not authenticated")

    # Verify token
    token_payload = verify_token(credentials.credentials)
    if not token_payload:
        raise AuthenticationError("Invalid or expired token")

    # Check if token is access token
    if token_payload.token_type != "access":
        raise AuthenticationError("Invalid token type")

    return token_payload


async def get_caller(
    token_payload: TokenPayload = Depends(get_current_user_token)
) -> CallerContext:
    """Caller identity and role, passed explicitly into every service call."""
    caller = caller_from_token(token_payload)
    if caller is None:
        raise AuthenticationError("Token has no usable subject or role")
    return caller


def get_appointment_service(db: Session = Depends(get_db)) -> AppointmentService:
    return AppointmentService(db)


def unwrap(result: ServiceResult):
    """Return the value of a successful result or raise the matching HTTP error."""
    if result.ok:
        return result.value
    raise HTTPException(
        status_code=ERROR_STATUS_CODES[result.error.kind],
        detail=result.error.message
    )


# Rate limiting dependency
async def booking_rate_limit(
    request: Request,
    redis_client = Depends(get_redis)
) -> None:
    """Basic per-client rate limiting for appointment booking."""
    client_ip = request.client.host if request.client else "unknown"
    key = f"rate_limit:booking:{client_ip}"

    current_requests = redis_client.get(key)
    if current_requests is None:
        redis_client.setex(key, 3600, 1)  # 1 hour window
    else:
        if int(current_requests) >= settings.BOOKING_RATE_LIMIT_PER_HOUR:
            raise HTTPException(
                status_code=status.HTTP_429_TOO_MANY_REQUESTS,
                detail="Too many booking requests. Please try again later."
            )
        redis_client.incr(key)
