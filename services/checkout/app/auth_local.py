from datetime import datetime, timedelta, timezone
from dataclasses import dataclass
import jwt
from typing import Optional
from .core_settings import get_settings

ADMIN_ROLE = "ADMIN"

@dataclass(frozen=True)
class CurrentUser:
    id: str
    role: str = "CUSTOMER"
    email: Optional[str] = None
    name: Optional[str] = None

    @property
    def is_admin(self) -> bool:
        return self.role == ADMIN_ROLE

def create_access_token(subject: str, role: str = "CUSTOMER", email: Optional[str] = None,
                        name: Optional[str] = None, expires_minutes: int = 60) -> str:
    settings = get_settings()
    now = datetime.now(timezone.utc)
    payload = {"sub": subject, "role": role, "iat": now, "exp": now + timedelta(minutes=expires_minutes)}
    if email:
        payload["email"] = email
    if name:
        payload["name"] = name
    return jwt.encode(payload, settings.JWT_SECRET, algorithm=settings.JWT_ALG)

def decode_access_token(token: str) -> Optional[dict]:
    settings = get_settings()
    try:
        return jwt.decode(token, settings.JWT_SECRET, algorithms=[settings.JWT_ALG])
    except jwt.PyJWTError:
        return None

def user_from_claims(claims: dict) -> Optional[CurrentUser]:
    subject = claims.get("sub")
    if not subject:
        return None
    return CurrentUser(
        id=str(subject),
        role=str(claims.get("role") or "CUSTOMER").upper(),
        email=claims.get("email"),
        name=claims.get("name"),
    )
