import asyncio
import base64
from typing import Any, Optional, Sequence, Union

import aiohttp
import base58

from .errors import RelayError, TransportError
from .latency import tcp_ping
from .log import get_logger
from .networks import FALLBACK_RELAY_REGION, RELAY_REGIONS, RelayRegion, relay_region

logger = get_logger(__name__)


async def probe_regions() -> list[tuple[RelayRegion, dict]]:
    # Create coroutines for all regions to run in parallel
    coros = [tcp_ping(region.base_url) for region in RELAY_REGIONS]
    metrics_list = await asyncio.gather(*coros)
    return list(zip(RELAY_REGIONS, metrics_list))


def _pick_fastest(results: list[tuple[RelayRegion, dict]]) -> RelayRegion:
    # Find regions with valid latency data
    valid_results = [(r, m["avg_ms"]) for r, m in results if m["avg_ms"] is not None]

    if not valid_results:
        return relay_region(FALLBACK_RELAY_REGION)

    # Sort by latency and return fastest
    valid_results.sort(key=lambda x: x[1])
    return valid_results[0][0]


async def pick_fastest_region() -> RelayRegion:
    results = await probe_regions()
    return _pick_fastest(results)


def encode_transaction(transaction: Union[bytes, str], encoding: str = "base58") -> str:
    if isinstance(transaction, str):
        # Assume it's already encoded
        return transaction
    if isinstance(transaction, bytes):
        if encoding == "base58":
            return base58.b58encode(transaction).decode("ascii")
        if encoding == "base64":
            return base64.b64encode(transaction).decode("ascii")
        raise ValueError(f"Unsupported encoding: {encoding}")
    raise ValueError("Transaction must be bytes or string")


class BundleRelayClient:
    """Out-of-band submission through a block engine bundle relay."""

    def __init__(
        self,
        region_code: str | None = None,
        max_retries: int = 3,
        timeout: float = 30.0,
        retry_delay: float = 1.0,
    ):
        self.region_code = region_code
        self.max_retries = max_retries
        self.timeout = timeout
        self.retry_delay = retry_delay

    async def _resolve_region(self) -> RelayRegion:
        if self.region_code:
            return relay_region(self.region_code)

        # Pick fastest region automatically
        return await pick_fastest_region()

    async def send_transaction(
        self,
        transaction: Union[bytes, str],
        encoding: str = "base58",
        bundle_only: bool = True,
    ) -> str:
        """
        Submit one signed transaction.

        Args:
            transaction: The signed transaction as bytes or an already encoded string
            encoding: Encoding for bytes input ("base58" or "base64")
            bundle_only: Ask the relay to only forward it inside a bundle

        Returns:
            The transaction signature reported by the relay

        Raises:
            ValueError: If the transaction format is invalid
            RelayError: If the relay answers with a JSON-RPC error
            TransportError: If the request keeps failing at the network level
        """
        tx_encoded = encode_transaction(transaction, encoding)
        params: list[Any] = [tx_encoded]
        if encoding != "base58":
            params.append({"encoding": encoding})

        region = await self._resolve_region()
        url = region.transactions_url + ("?bundleOnly=true" if bundle_only else "")
        return await self._call(url, "sendTransaction", params)

    async def send_bundle(self, transactions: Sequence[Union[bytes, str]], encoding: str = "base58") -> str:
        """Submit signed transactions as one atomically ordered bundle; returns the bundle id."""
        encoded = [encode_transaction(tx, encoding) for tx in transactions]
        params: list[Any] = [encoded]
        if encoding != "base58":
            params.append({"encoding": encoding})

        region = await self._resolve_region()
        return await self._call(region.bundles_url, "sendBundle", params)

    async def get_bundle_statuses(self, bundle_ids: Sequence[str]) -> Any:
        region = await self._resolve_region()
        return await self._call(region.bundles_url, "getBundleStatuses", [list(bundle_ids)])

    async def list_regions(self) -> list[dict]:
        """Get latency information for all regions."""
        results = await probe_regions()
        fastest = _pick_fastest(results)

        regions_info = []
        for region, metrics in results:
            regions_info.append({
                "region": region.code,
                "tx_url": region.transactions_url,
                "avg_ms": metrics["avg_ms"],
                "samples_ms": metrics["samples_ms"],
                "fastest": region.code == fastest.code,
            })

        return regions_info

    async def _call(self, url: str, method: str, params: list) -> Any:
        payload = {
            "jsonrpc": "2.0",
            "id": 1,
            "method": method,
            "params": params,
        }
        logger.debug("%s -> %s", method, url)

        last_error: Optional[BaseException] = None
        for attempt in range(self.max_retries):
            try:
                async with aiohttp.ClientSession() as session:
                    async with session.post(url, json=payload, timeout=aiohttp.ClientTimeout(total=self.timeout)) as response:
                        response.raise_for_status()
                        result = await response.json()
            except (aiohttp.ClientError, asyncio.TimeoutError) as e:
                last_error = e
                if attempt < self.max_retries - 1:
                    logger.warning("Attempt %d failed, retrying... (%s)", attempt + 1, e)
                    await asyncio.sleep(self.retry_delay * (attempt + 1))
                continue

            if "error" in result:
                error = result["error"]
                raise RelayError(error.get("message", "Unknown error"), code=error.get("code"))
            if "result" not in result:
                raise RelayError("Invalid response format: missing 'result' field")
            return result["result"]

        raise TransportError(f"{method} failed after {self.max_retries} tries: {last_error}", endpoint=url) from last_error
