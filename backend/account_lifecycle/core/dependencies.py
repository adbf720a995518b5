from dataclasses import dataclass
from uuid import UUID

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from account_lifecycle.core.security import decode_token
from account_lifecycle.db.session import SessionLocal
from account_lifecycle.services.identity import IdentityGateway, build_identity_gateway

bearer_scheme = HTTPBearer(auto_error=False)


@dataclass(frozen=True)
class CurrentUser:
    id: UUID
    email: str | None
    access_token: str


async def get_current_user(credentials: HTTPAuthorizationCredentials = Depends(bearer_scheme)) -> CurrentUser:
    if credentials is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Not authenticated")

    payload = decode_token(credentials.credentials)
    # Provider-issued tokens may omit "type"; refresh tokens never authenticate.
    if not payload or payload.get("type", "access") != "access":
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token")

    try:
        user_id = UUID(str(payload.get("sub")))
    except ValueError:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token payload")

    return CurrentUser(id=user_id, email=payload.get("email"), access_token=credentials.credentials)


def get_identity_gateway(request: Request) -> IdentityGateway:
    gateway = getattr(request.app.state, "identity_gateway", None)
    if gateway is None:
        gateway = build_identity_gateway(SessionLocal)
        request.app.state.identity_gateway = gateway
    return gateway


def get_sweep_secret(credentials: HTTPAuthorizationCredentials = Depends(bearer_scheme)) -> str | None:
    """Raw bearer value; the sweeper itself decides whether it matches."""
    return credentials.credentials if credentials else None
