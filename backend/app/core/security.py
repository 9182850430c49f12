"""
Security and Authentication for the VIP identity API.

Session tokens are issued by the booking site's identity provider and signed
with the shared SECRET_KEY. The token subject is the profile id.
"""

from datetime import datetime, timedelta, timezone
from typing import Optional, List

from fastapi import Depends, HTTPException, status
from fastapi.security import OAuth2PasswordBearer, SecurityScopes
from jose import JWTError, jwt
from pydantic import BaseModel

from backend.app.core.config import get_settings
from backend.app.core.logging import profile_id_ctx

settings = get_settings()

VIP_READ = "vip:read"
VIP_WRITE = "vip:write"
CRM_ADMIN = "crm:admin"

oauth2_scheme = OAuth2PasswordBearer(
    tokenUrl="api/auth/token",
    scopes={
        VIP_READ: "Read own VIP status and CRM mapping",
        VIP_WRITE: "Link own profile to a CRM customer",
        CRM_ADMIN: "Manage CRM mappings for any profile",
    },
)


def create_access_token(data: dict, expires_delta: Optional[timedelta] = None):
    """
    Generate a signed JWT token.
    """
    to_encode = data.copy()
    if expires_delta:
        expire = datetime.now(timezone.utc) + expires_delta
    else:
        expire = datetime.now(timezone.utc) + timedelta(minutes=15)

    to_encode.update({"exp": expire})
    encoded_jwt = jwt.encode(to_encode, settings.secret_key, algorithm=settings.algorithm)
    return encoded_jwt


class Role:
    ADMIN = "admin"
    CUSTOMER = "customer"


ROLE_SCOPES = {
    Role.ADMIN: [VIP_READ, VIP_WRITE, CRM_ADMIN],
    Role.CUSTOMER: [VIP_READ, VIP_WRITE],
}


class User(BaseModel):
    profile_id: str
    role: str
    scopes: List[str] = []

    @property
    def is_admin(self) -> bool:
        return self.role == Role.ADMIN


async def get_current_user(
    security_scopes: SecurityScopes,
    token: str = Depends(oauth2_scheme)
) -> User:
    """
    Validate the session JWT and check required scopes.
    """
    if security_scopes.scopes:
        authenticate_value = f'Bearer scope="{security_scopes.scope_str}"'
    else:
        authenticate_value = "Bearer"

    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": authenticate_value},
    )

    try:
        payload = jwt.decode(
            token,
            settings.secret_key,
            algorithms=[settings.algorithm]
        )
    except JWTError:
        raise credentials_exception

    profile_id: Optional[str] = payload.get("sub")
    if profile_id is None:
        raise credentials_exception

    role: str = payload.get("role", Role.CUSTOMER)
    # Assign scopes based on role if not present in token
    token_scopes = payload.get("scopes", ROLE_SCOPES.get(role, []))

    for scope in security_scopes.scopes:
        if scope not in token_scopes:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Not enough permissions. Required scope: {scope}",
                headers={"WWW-Authenticate": authenticate_value},
            )

    profile_id_ctx.set(profile_id)
    return User(profile_id=profile_id, role=role, scopes=token_scopes)


def ensure_profile_access(user: User, profile_id: str) -> None:
    """Customers may only act on their own profile; admins on any."""
    if user.profile_id != profile_id and not user.is_admin:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="You can only access your own profile",
        )
