"""Identity handed over by the upstream authentication layer.

Tokens are issued elsewhere; this service only decodes them to learn who is
calling, in which role, and for which station.
"""
from dataclasses import dataclass
from datetime import datetime, timezone, timedelta
from typing import Optional

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import jwt, JWTError, ExpiredSignatureError

from app.core.config import settings
from app.core.enums import Capability, OperatorRole, capabilities_for
from app.core.errors import SessionExpired

bearer_scheme = HTTPBearer(auto_error=False)


@dataclass(frozen=True)
class Operator:
    subject: str
    role: OperatorRole
    station_id: Optional[int] = None

    @property
    def capabilities(self) -> frozenset:
        return capabilities_for(self.role)

    def can(self, capability: Capability) -> bool:
        return capability in self.capabilities


def create_access_token(
    subject: str,
    role: OperatorRole,
    station_id: Optional[int] = None,
    expires_minutes: int | None = None,
) -> str:
    expires = expires_minutes if expires_minutes is not None else settings.ACCESS_TOKEN_EXPIRE_MINUTES
    expire_dt = datetime.now(timezone.utc) + timedelta(minutes=expires)
    to_encode = {"sub": str(subject), "role": str(role), "exp": expire_dt}
    if station_id is not None:
        to_encode["station_id"] = station_id
    return jwt.encode(to_encode, settings.SECRET_KEY, algorithm=settings.JWT_ALGORITHM)


def decode_operator(token: str) -> Operator:
    try:
        payload = jwt.decode(token, settings.SECRET_KEY, algorithms=[settings.JWT_ALGORITHM])
    except ExpiredSignatureError:
        raise SessionExpired()
    except JWTError:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token")

    subject = payload.get("sub")
    try:
        role = OperatorRole(payload.get("role"))
    except ValueError:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unknown role")
    if subject is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token")
    return Operator(subject=subject, role=role, station_id=payload.get("station_id"))


async def get_current_operator(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
) -> Operator:
    if credentials is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Not authenticated")
    return decode_operator(credentials.credentials)


def require(capability: Capability):
    def dependency(operator: Operator = Depends(get_current_operator)) -> Operator:
        if not operator.can(capability):
            raise HTTPException(status_code=403, detail=f"Missing capability: {capability}")
        return operator

    return dependency


def check_station(operator: Operator, station_id: int) -> None:
    """Station operators act only for the station their token is bound to; an unbound token acts for none."""
    if operator.role == OperatorRole.STATION_OPERATOR and operator.station_id != station_id:
        raise HTTPException(status_code=403, detail="Operators may only act for their own station")
