"""Request utility functions for client identification."""

import ipaddress
import logging

from fastapi import Request

logger = logging.getLogger(__name__)


def _is_valid_ip(ip_str: str) -> bool:
    """Check if a string is a valid IP address."""
    try:
        ipaddress.ip_address(ip_str)
        return True
    except ValueError:
        return False


def get_client_ip(request: Request, trusted_proxies: set[str] | None = None) -> str:
    """Get the client IP address from a request.

    Priority order:
    1. X-Forwarded-For (first hop), only when the direct peer is a trusted proxy
    2. X-Real-IP, only when the direct peer is a trusted proxy or localhost
    3. Direct client connection

    Forwarded headers from any other source are ignored because a client can
    set them freely to dodge IP-keyed rate limits.

    Returns "unknown" when no address is available.
    """
    direct_ip = request.client.host if request.client else None
    trusted = trusted_proxies or set()
    from_proxy = direct_ip is not None and direct_ip in trusted

    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded and from_proxy:
        ip = forwarded.split(",")[0].strip()
        if _is_valid_ip(ip):
            return ip
        logger.warning(f"Invalid IP in X-Forwarded-For header: {ip}")

    if from_proxy or direct_ip in ("127.0.0.1", "::1", "localhost"):
        real_ip = request.headers.get("X-Real-IP")
        if real_ip:
            ip = real_ip.strip()
            if _is_valid_ip(ip):
                return ip
            logger.warning(f"Invalid X-Real-IP: {real_ip}")

    if direct_ip:
        return direct_ip

    return "unknown"


def get_user_agent(request: Request) -> str:
    return request.headers.get("user-agent", "unknown")
