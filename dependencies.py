from typing import Any, Dict, Optional

from fastapi import Depends, Header, Request

from errors import AuthenticationError, PermissionDeniedError
from security import verify_token


def get_database(request: Request):
    """Database handle created in the app lifespan."""
    return request.app.state.db


def _bearer_token(authorization: Optional[str]) -> Optional[str]:
    if not authorization:
        return None
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer":
        return None
    return token.strip() or None


def require_token(request: Request, authorization: Optional[str] = Header(None)) -> Dict[str, Any]:
    token = _bearer_token(authorization)
    if not token:
        raise AuthenticationError("A valid Bearer token is required in the Authorization header")
    claims = verify_token(token)
    request.state.user = claims
    return claims


def require_admin(claims: Dict[str, Any] = Depends(require_token)) -> Dict[str, Any]:
    if claims.get("role") != "admin":
        raise PermissionDeniedError("Administrator privileges are required for this action")
    return claims
