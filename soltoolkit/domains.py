"""
Reverse lookup of .sol names owned by an address, through the Bonfida SNS proxy.

Lookups never raise: any network or format failure is logged and reported
as ``None``.
"""

import asyncio
from typing import Optional, Union

import aiohttp
from solders.pubkey import Pubkey

from .log import get_logger

logger = get_logger(__name__)

SNS_PROXY_URL = "https://sns-sdk-proxy.bonfida.workers.dev"


async def get_domains_from_address(address: Union[str, Pubkey], timeout: float = 10.0) -> Optional[list[str]]:
    """All .sol domains owned by ``address``, ordered by domain account key."""
    url = f"{SNS_PROXY_URL}/domains/{address}"
    try:
        async with aiohttp.ClientSession() as session:
            async with session.get(url, timeout=aiohttp.ClientTimeout(total=timeout)) as response:
                response.raise_for_status()
                body = await response.json()
        entries = sorted(body["result"], key=lambda entry: entry["key"])
        return [entry["domain"] for entry in entries]
    except (aiohttp.ClientError, asyncio.TimeoutError, ValueError, KeyError, TypeError) as e:
        logger.debug("Domain lookup for %s failed: %r", address, e)
        return None


async def get_domain_from_address(address: Union[str, Pubkey], timeout: float = 10.0) -> Optional[str]:
    """The first .sol domain owned by ``address``, or None if it owns none."""
    domains = await get_domains_from_address(address, timeout)
    if not domains:
        return None
    return domains[0]
