from datetime import timedelta
from typing import Optional
from jose import JWTError, jwt
from fastapi import HTTPException, status
from fastapi.security import HTTPBearer
from pydantic import BaseModel
from enum import Enum

from .config import settings
from .timeutils import utcnow

# JWT Security
security = HTTPBearer(auto_error=False)


class UserRole(str, Enum):
    ADMIN = "admin"
    STAFF = "staff"
    DOCTOR = "doctor"
    NURSE = "nurse"
    PATIENT = "patient"

    @classmethod
    def parse(cls, value: Optional[str]) -> Optional["UserRole"]:
        """Case-insensitive lookup; returns None for unknown roles."""
        if not value:
            return None
        try:
            return cls(value.strip().lower())
        except ValueError:
            return None


class TokenPayload(BaseModel):
    sub: Optional[str] = None
    role: Optional[str] = None
    exp: Optional[int] = None
    token_type: Optional[str] = None  # only "access" is accepted here


class CallerContext(BaseModel):
    """Who is calling: the only identity information the services consume."""
    user_id: str
    role: UserRole

    @property
    def is_privileged(self) -> bool:
        return self.role in (UserRole.ADMIN, UserRole.STAFF)


# JWT utilities
def create_access_token(
    data: dict,
    expires_delta: Optional[timedelta] = None
) -> str:
    """Create JWT access token.

    Token issuance belongs to the identity provider; this helper exists so
    tooling and tests can mint tokens the service will accept.
    """
    to_encode = data.copy()

    if expires_delta:
        expire = utcnow() + expires_delta
    else:
        expire = utcnow() + timedelta(
            minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES
        )

    to_encode.update({
        "exp": expire,
        "token_type": "access"
    })

    encoded_jwt = jwt.encode(
        to_encode,
        settings.SECRET_KEY,
        algorithm=settings.ALGORITHM
    )
    return encoded_jwt


def verify_token(token: str) -> Optional[TokenPayload]:
    """Verify and decode JWT token."""
    try:
        payload = jwt.decode(
            token,
            settings.SECRET_KEY,
            algorithms=[settings.ALGORITHM]
        )

        return TokenPayload(**payload)

    except JWTError:
        return None


def caller_from_token(token_payload: TokenPayload) -> Optional[CallerContext]:
    """Build the caller context from verified claims."""
    role = UserRole.parse(token_payload.role)
    if not token_payload.sub or role is None:
        return None
    return CallerContext(user_id=str(token_payload.sub), role=role)


# Security exceptions
class AuthenticationError(HTTPException):
    def __init__(self, detail: str = "Could not validate credentials"):
        super().__init__(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=detail,
            headers={"WWW-Authenticate": "Bearer"},
        )

