"""
Caller network helpers.
"""
import ipaddress
from typing import Optional

import httpx

from pool_orchestrator.config.logging import get_logger
from pool_orchestrator.config.settings import settings

logger = get_logger(__name__)


async def resolve_public_ip(url: Optional[str] = None, timeout: float = 5.0) -> str:
    """
    Resolve this machine's public IPv4 address through a lookup service.

    Args:
        url: Lookup service returning the address as plain text
        timeout: Request timeout in seconds

    Returns:
        The public address

    Raises:
        httpx.HTTPError: If the lookup request fails
        ValueError: If the service answered with something that is not an IPv4 address
    """
    lookup_url = url or settings.public_ip_lookup_url
    async with httpx.AsyncClient(timeout=timeout) as client:
        response = await client.get(lookup_url)
        response.raise_for_status()

    text = response.text.strip()
    address = ipaddress.ip_address(text)
    if address.version != 4:
        raise ValueError(f"Expected an IPv4 address, got {text!r}")

    logger.info("public_ip_resolved", address=text, lookup_url=lookup_url)
    return text
