"""Client address and user agent for audit entries."""

import ipaddress
import logging
from typing import Iterable, Optional

from fastapi import Request

from webhook_scheduler.config import settings

log = logging.getLogger(__name__)

MAX_USER_AGENT_LENGTH = 512


def is_trusted_proxy(host: Optional[str], networks: Optional[Iterable[str]] = None) -> bool:
    """True if the direct peer sits inside one of the trusted proxy networks."""
    if not host:
        return False
    try:
        address = ipaddress.ip_address(host)
    except ValueError:
        return False
    for network in networks if networks is not None else settings.trusted_proxies_list:
        try:
            if address in ipaddress.ip_network(network, strict=False):
                return True
        except ValueError:
            log.warning(f"Ignoring invalid trusted proxy network: {network}")
    return False


def get_client_ip(request: Request, trusted_networks: Optional[Iterable[str]] = None) -> str:
    """
    Client IP for the audit trail.

    X-Forwarded-For (first hop) and X-Real-IP are only honored when the socket
    peer is a trusted proxy; otherwise anyone could write their own address
    into the audit log.
    """
    peer = request.client.host if request.client else None

    if is_trusted_proxy(peer, trusted_networks):
        forwarded_for = request.headers.get("X-Forwarded-For", "")
        first_hop = forwarded_for.split(",")[0].strip()
        if first_hop:
            return first_hop
        real_ip = request.headers.get("X-Real-IP", "").strip()
        if real_ip:
            return real_ip

    return peer or "unknown"


def get_user_agent(request: Request) -> Optional[str]:
    user_agent = request.headers.get("User-Agent")
    return user_agent[:MAX_USER_AGENT_LENGTH] if user_agent else None
