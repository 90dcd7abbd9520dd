from dataclasses import dataclass
from typing import Optional

from fastapi import Depends, Header, HTTPException
from jose import JWTError, jwt

from wedding_payments.config import load_settings
from wedding_payments.models import Role


@dataclass
class Caller:
    id: str
    role: Role
    email: Optional[str] = None


def get_current_user(authorization: str = Header(None)) -> Caller:
    try:
        scheme, token = authorization.split()
        if scheme.lower() != "bearer":
            raise ValueError("unsupported scheme")
        claims = jwt.decode(token, load_settings().jwt_secret, algorithms=["HS256"])
        return Caller(id=str(claims["id"]), role=Role(claims["role"]), email=claims.get("email"))
    except (AttributeError, ValueError, KeyError, JWTError):
        raise HTTPException(status_code=401, detail="Not authorized, token failed")


def require_role(*roles: Role):
    def checker(caller: Caller = Depends(get_current_user)) -> Caller:
        if caller.role not in roles:
            raise HTTPException(
                status_code=403,
                detail="Access denied. Requires one of these roles: "
                + ", ".join(r.value for r in roles),
            )
        return caller
    return checker
