"""Rate limiting for the Mindmate backend.

A device replaying its offline queue is limited per owner, so every device
of one owner shares a budget and owners behind one NAT do not. Requests
without a valid bearer token fall back to the client IP.
"""

import ipaddress
import logging
from functools import lru_cache

from jose import JWTError, jwt
from slowapi import Limiter
from slowapi.util import get_remote_address

from .config import get_settings

logger = logging.getLogger(__name__)

Network = ipaddress.IPv4Network | ipaddress.IPv6Network


@lru_cache
def parse_networks(cidrs: tuple[str, ...]) -> tuple[Network, ...]:
    networks = []
    for cidr in cidrs:
        try:
            networks.append(ipaddress.ip_network(cidr.strip(), strict=False))
        except ValueError:
            logger.warning(f"Ignoring invalid trusted proxy CIDR: {cidr}")
    return tuple(networks)


def is_trusted_proxy(ip_str: str) -> bool:
    try:
        addr = ipaddress.ip_address(ip_str)
    except ValueError:
        return False
    networks = parse_networks(tuple(get_settings().trusted_proxy_cidrs))
    return any(addr in network for network in networks)


def get_client_ip(request) -> str:
    """Client IP, honoring X-Forwarded-For only from a trusted proxy."""
    direct_ip = get_remote_address(request)
    if is_trusted_proxy(direct_ip):
        client_ip = request.headers.get("x-forwarded-for", "").split(",")[0].strip()
        if client_ip:
            return client_ip
    return direct_ip


def _owner_from_request(request) -> str | None:
    scheme, _, token = request.headers.get("authorization", "").partition(" ")
    if scheme.lower() != "bearer" or not token:
        return None
    settings = get_settings()
    try:
        payload = jwt.decode(token, settings.jwt_secret_key, algorithms=[settings.jwt_algorithm])
    except JWTError:
        return None
    return payload.get("sub") or None


def get_rate_limit_key(request) -> str:
    """``owner:<id>`` for authenticated requests, ``ip:<addr>`` otherwise."""
    owner_id = _owner_from_request(request)
    if owner_id:
        return f"owner:{owner_id}"
    return f"ip:{get_client_ip(request)}"


limiter = Limiter(key_func=get_rate_limit_key)
