import asyncio
import time
from dataclasses import dataclass
from typing import Callable, Optional, Sequence
from urllib.parse import urlparse

from .errors import ConfigurationError
from .ledger import DEFAULT_TIMEOUT, LedgerClient
from .log import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class EndpointHealth:
    """One probe result. Numeric fields are all set or all None."""

    endpoint: str
    reachable: bool
    latency_ms: Optional[float] = None
    current_height: Optional[int] = None
    freshness_marker: Optional[int] = None

    @classmethod
    def unreachable(cls, endpoint: str) -> "EndpointHealth":
        return cls(endpoint=endpoint, reachable=False)


async def probe(
    endpoint: str,
    commitment: Optional[str] = None,
    timeout: float = DEFAULT_TIMEOUT,
    client_factory: Callable[..., LedgerClient] = LedgerClient,
) -> EndpointHealth:
    """Measure reachability, latency and ledger height of one endpoint. Never raises."""
    try:
        async with client_factory(endpoint, commitment=commitment, timeout=timeout) as client:
            start = time.perf_counter()
            height = await client.get_slot(commitment)
            end = time.perf_counter()
            latest = await client.get_latest_blockhash(commitment)
    except Exception as e:
        logger.debug("Probe of %s failed: %r", endpoint, e)
        return EndpointHealth.unreachable(endpoint)

    return EndpointHealth(
        endpoint=endpoint,
        reachable=True,
        latency_ms=(end - start) * 1000.0,
        current_height=height,
        freshness_marker=latest.last_valid_block_height,
    )


async def probe_all(
    endpoints: Sequence[str],
    commitment: Optional[str] = None,
    timeout: float = DEFAULT_TIMEOUT,
    client_factory: Callable[..., LedgerClient] = LedgerClient,
) -> list[EndpointHealth]:
    """Probe every endpoint concurrently; results keep the input order."""
    if not endpoints:
        raise ConfigurationError("Endpoints array is empty")

    coros = [probe(endpoint, commitment, timeout, client_factory) for endpoint in endpoints]
    results = await asyncio.gather(*coros)

    for health in results:
        if health.reachable:
            logger.debug("%s: %.1f ms, slot %s", health.endpoint, health.latency_ms, health.current_height)
        else:
            logger.debug("%s: unreachable", health.endpoint)
    return list(results)


async def _tcp_ping_once(host: str, port: int, timeout: float) -> float | None:
    try:
        start = time.perf_counter()
        _, writer = await asyncio.wait_for(asyncio.open_connection(host, port), timeout)
        end = time.perf_counter()
        writer.close()
        return (end - start) * 1000.0
    except (OSError, asyncio.TimeoutError):
        return None


async def tcp_ping(url: str, count: int = 3, timeout: float = 0.75) -> dict:
    """Simple TCP ping to measure latency."""
    parsed = urlparse(url)
    host = parsed.hostname or url
    port = parsed.port or (443 if parsed.scheme == "https" else 80)

    samples = []
    for _ in range(count):
        result = await _tcp_ping_once(host, port, timeout)
        samples.append(result)

    # Calculate average from valid samples
    valid_samples = [x for x in samples if x is not None]
    avg = sum(valid_samples) / len(valid_samples) if valid_samples else None

    return {"avg_ms": avg, "samples_ms": samples}
