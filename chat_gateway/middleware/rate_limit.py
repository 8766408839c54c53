"""Client identification for rate limiting"""

import hashlib
import ipaddress
from typing import Optional

from fastapi import Request

# Checked in order; the first public address wins
_FORWARDING_HEADERS = ("CF-Connecting-IP", "X-Forwarded-For", "X-Real-IP")


def _is_public(value: str) -> bool:
    try:
        address = ipaddress.ip_address(value)
    except ValueError:
        return False
    return address.is_global


def get_client_ip(request: Request) -> str:
    """Extract client IP from request"""
    for header in _FORWARDING_HEADERS:
        raw = request.headers.get(header)
        if not raw:
            continue
        for candidate in raw.split(","):
            candidate = candidate.strip()
            if _is_public(candidate):
                return candidate

    # Fallback to the socket peer even if it is private (local development)
    return request.client.host if request.client else "127.0.0.1"


def current_user_id(request: Request) -> Optional[str]:
    """Subject of the verified JWT, if the auth middleware found one"""
    user = getattr(request.state, "user", None)
    if not user:
        return None
    user_id = user.get("sub") or user.get("user_id") or user.get("uid")
    return str(user_id) if user_id is not None else None


def client_identifier(request: Request) -> str:
    """Rate limit identifier: user id when authenticated, hashed IP otherwise"""
    user_id = current_user_id(request)
    if user_id:
        return f"user_{user_id}"
    ip = get_client_ip(request)
    return "ip_" + hashlib.md5(ip.encode("utf-8")).hexdigest()
