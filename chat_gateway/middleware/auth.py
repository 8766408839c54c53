"""Authentication middleware and utilities"""

from typing import Any, Dict, Optional

import jwt
from fastapi import Depends, HTTPException, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from starlette.middleware.base import BaseHTTPMiddleware
import structlog

logger = structlog.get_logger(__name__)
security = HTTPBearer(auto_error=False)


class AuthMiddleware(BaseHTTPMiddleware):
    """Attaches the verified JWT payload to ``request.state.user``"""

    def __init__(self, app, jwt_secret: str, jwt_algorithm: str = "HS256"):
        super().__init__(app)
        self.jwt_secret = jwt_secret
        self.jwt_algorithm = jwt_algorithm

    async def dispatch(self, request: Request, call_next):
        request.state.user = None

        auth_header = request.headers.get("Authorization")
        if auth_header and auth_header.startswith("Bearer "):
            token = auth_header.split(" ", 1)[1]
            try:
                request.state.user = verify_token(token, self.jwt_secret, self.jwt_algorithm)
            except HTTPException:
                # Invalid token, continue anonymously
                logger.debug("Ignoring invalid bearer token", path=request.url.path)

        return await call_next(request)


def verify_token(token: str, secret: str, algorithm: str = "HS256") -> Dict[str, Any]:
    """Verify JWT token and return payload"""
    try:
        return jwt.decode(token, secret, algorithms=[algorithm])
    except jwt.ExpiredSignatureError:
        raise HTTPException(status_code=401, detail="Token has expired")
    except jwt.InvalidTokenError:
        raise HTTPException(status_code=401, detail="Invalid token")


async def require_auth(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
) -> Dict[str, Any]:
    """Require authentication for endpoint"""
    user = getattr(request.state, "user", None)
    if not credentials or not user:
        raise HTTPException(status_code=401, detail="Authentication required")
    return user


async def require_admin(user: Dict[str, Any] = Depends(require_auth)) -> Dict[str, Any]:
    """Require the admin role"""
    if "admin" not in user.get("roles", []):
        raise HTTPException(status_code=403, detail="Insufficient permissions")
    return user
