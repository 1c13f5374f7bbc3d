from dataclasses import dataclass
from datetime import UTC, datetime, timedelta

import jwt
from fastapi import Depends, HTTPException, Request

from backoffice.core.config import settings

STAFF_ROLES = ("employee", "admin")


@dataclass(frozen=True)
class StaffPrincipal:
    subject: str
    role: str

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"


def create_access_token(subject: str, role: str = "employee", expires_minutes: int | None = None) -> str:
    """Issue a staff JWT. Used by scripts and tests; login lives elsewhere."""
    if role not in STAFF_ROLES:
        raise ValueError(f"Unknown staff role: {role}")
    minutes = expires_minutes if expires_minutes is not None else settings.JWT_EXPIRATION_MINUTES
    payload = {
        "sub": subject,
        "role": role,
        "exp": datetime.now(UTC) + timedelta(minutes=minutes),
    }
    return jwt.encode(payload, settings.JWT_SECRET, algorithm=settings.JWT_ALGORITHM)


def decode_access_token(token: str) -> StaffPrincipal:
    """Raises jwt.ExpiredSignatureError or jwt.InvalidTokenError on failure."""
    payload = jwt.decode(token, settings.JWT_SECRET, algorithms=[settings.JWT_ALGORITHM])
    role = payload.get("role")
    if role not in STAFF_ROLES:
        raise jwt.InvalidTokenError("Invalid staff role")
    return StaffPrincipal(subject=str(payload["sub"]), role=role)


def get_current_staff(request: Request) -> StaffPrincipal:
    """Resolve the staff member from the ``Authorization: Bearer`` header."""
    auth_header = request.headers.get("Authorization")
    if not auth_header:
        raise HTTPException(status_code=401, detail="Authorization header is required")

    if not auth_header.startswith("Bearer "):
        raise HTTPException(status_code=401, detail="Invalid authorization header format")

    token = auth_header[7:]
    if not token:
        raise HTTPException(status_code=401, detail="Access token is required")

    try:
        return decode_access_token(token)
    except jwt.ExpiredSignatureError:
        raise HTTPException(status_code=401, detail="Access token has expired") from None
    except (jwt.InvalidTokenError, KeyError, ValueError):
        raise HTTPException(status_code=401, detail="Invalid access token") from None


def require_admin(staff: StaffPrincipal = Depends(get_current_staff)) -> StaffPrincipal:
    if not staff.is_admin:
        raise HTTPException(status_code=403, detail="Admin role required")
    return staff
