"""
Authentication dependencies for FastAPI.

The session is owned by an external identity service; every request
carries its bearer token and this module only validates it.
"""

from fastapi import Depends
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from trust_backend.app.core.jwt import decode_access_token
from trust_backend.app.core.exceptions import AuthenticationError

# HTTP Bearer security scheme
security = HTTPBearer(auto_error=False)

REQUIRED_CLAIMS = ("user_id", "company_id", "role")


async def get_current_user(
    credentials: HTTPAuthorizationCredentials = Depends(security),
) -> dict:
    """
    FastAPI dependency for JWT authentication.

    Returns:
        Decoded token payload (sub, user_id, company_id, role)

    Raises:
        AuthenticationError: 401 if the token is missing, invalid, expired
            or lacks a required claim
    """
    if credentials is None:
        raise AuthenticationError("Missing bearer token")

    payload = decode_access_token(credentials.credentials)
    if payload is None:
        raise AuthenticationError("Could not validate credentials")

    missing = [claim for claim in REQUIRED_CLAIMS if payload.get(claim) is None]
    if missing:
        raise AuthenticationError("Invalid token payload", details={"missing_claims": missing})

    return payload
