"""
Manager for one or more ledger connections.

A ConnectionManager probes its endpoints once at start-up, binds one of them
according to its SelectionPolicy and hands out LedgerClients bound to the
current endpoint. There are two access paths:

* ``get_cached()`` never touches the network. With ``force_reselect=True`` it
  re-runs selection on the last health snapshot, so ranked policies reflect
  the last probe round, not current conditions.
* ``get_fresh()`` re-probes first for ranked policies.

The usual lifecycle is one manager per process, created through
``ConnectionManager.initialize()`` and passed to consumers. Configuration is
fixed at the first initialization; later calls return the same instance.

Example::

    cm = await ConnectionManager.initialize(ManagerConfig(
        network="devnet",
        endpoints=["https://a.example", "https://b.example"],
        policy="round-robin",
        commitment="confirmed",
    ))
    client = cm.get_cached(force_reselect=True)
"""

import asyncio
import random
import threading
from dataclasses import dataclass, replace
from typing import Awaitable, Callable, Optional, Sequence

from .config import ManagerConfig
from .errors import NoReachableEndpoints, ToolkitError
from .latency import EndpointHealth, probe_all
from .ledger import LedgerClient
from .log import configure_logging, get_logger
from .networks import default_endpoint
from .router import SelectionPolicy, ranked_endpoints, select, validate_policy

logger = get_logger(__name__)

Prober = Callable[..., Awaitable[list[EndpointHealth]]]


@dataclass(frozen=True)
class ConnectionState:
    endpoint: str
    fastest: str
    highest_slot: str
    freshest: str
    # last endpoint handed out by a round-robin rotation
    rotation: Optional[str] = None


class ConnectionManager:
    _instance: Optional["ConnectionManager"] = None
    _instance_lock: Optional[asyncio.Lock] = None

    def __init__(
        self,
        config: ManagerConfig,
        *,
        client_factory: Callable[..., LedgerClient] = LedgerClient,
        prober: Prober = probe_all,
        rng: Optional[random.Random] = None,
    ):
        self._config = config
        self._policy = validate_policy(config.policy, config.endpoints)
        # resolves the network default up front so a bad network fails here
        self._targets = config.probe_targets()
        default_endpoint(config.network)

        self._client_factory = client_factory
        self._prober = prober
        self._rng = rng or random.Random()
        self._clients: dict[str, LedgerClient] = {}
        self._lock = threading.Lock()
        self._state: Optional[ConnectionState] = None
        self._health: list[EndpointHealth] = []

        if config.verbose:
            configure_logging(verbose=True)
        logger.debug("Initializing ConnectionManager with params: %s", config.model_dump())

    @classmethod
    async def initialize(cls, config: Optional[ManagerConfig] = None, **kwargs) -> "ConnectionManager":
        """Build (once) and return the process-wide manager.

        The first call probes every configured endpoint and binds one. Later
        calls return the existing instance; their configuration is ignored.
        """
        if cls._instance_lock is None:
            cls._instance_lock = asyncio.Lock()

        async with cls._instance_lock:
            if cls._instance is None:
                manager = cls(config if config is not None else ManagerConfig(), **kwargs)
                await manager.start()
                cls._instance = manager
            elif config is not None and config != cls._instance.config:
                logger.warning("ConnectionManager already initialized; ignoring new configuration")
        return cls._instance

    @classmethod
    def instance(cls) -> "ConnectionManager":
        if cls._instance is None:
            raise ToolkitError("ConnectionManager has not been initialized")
        return cls._instance

    @classmethod
    def reset_instance(cls) -> None:
        cls._instance = None
        cls._instance_lock = None

    async def start(self) -> "ConnectionManager":
        """Probe all endpoints once and bind the initial endpoint."""
        health = await self._probe()
        if not any(h.reachable for h in health):
            raise NoReachableEndpoints("No reachable endpoints", {"endpoints": self._targets})

        fastest, highest_slot, freshest = ranked_endpoints(health)
        endpoint = self._select(health, previous=None)
        with self._lock:
            self._health = health
            self._state = ConnectionState(
                endpoint=endpoint,
                fastest=fastest,
                highest_slot=highest_slot,
                freshest=freshest,
            )
        logger.debug("Using endpoint: %s", endpoint)
        return self

    @property
    def config(self) -> ManagerConfig:
        return self._config

    @property
    def policy(self) -> SelectionPolicy:
        return self._policy

    @property
    def commitment(self) -> str:
        return self._config.commitment

    @property
    def state(self) -> ConnectionState:
        if self._state is None:
            raise ToolkitError("ConnectionManager has not been started")
        return self._state

    @property
    def endpoint(self) -> str:
        return self.state.endpoint

    @property
    def endpoints(self) -> list[str]:
        """Every configured endpoint; racing sends go to all of them."""
        return list(self._targets)

    def get_health_snapshot(self) -> list[EndpointHealth]:
        return list(self._health)

    def client_for(self, endpoint: str) -> LedgerClient:
        client = self._clients.get(endpoint)
        if client is None:
            client = self._client_factory(
                endpoint,
                commitment=self._config.commitment,
                timeout=self._config.submission_timeout,
            )
            self._clients[endpoint] = client
        return client

    def get_cached(self, force_reselect: bool = False, use_network_default: bool = False) -> LedgerClient:
        """Client for the bound endpoint, without probing.

        ``use_network_default`` returns a client for the network's canonical
        endpoint (needed for airdrops) and leaves the binding alone.
        """
        if use_network_default:
            return self.client_for(default_endpoint(self._config.network))
        if force_reselect:
            self._reselect(self._health)
        return self.client_for(self.endpoint)

    async def get_fresh(self, force_reselect: bool = True, use_network_default: bool = False) -> LedgerClient:
        """Like get_cached, but ranked policies re-probe before selecting.

        If nothing answers, NoReachableEndpoints is raised and both the
        binding and the health snapshot are kept.
        """
        if use_network_default:
            return self.client_for(default_endpoint(self._config.network))
        if not force_reselect:
            return self.client_for(self.endpoint)

        health = self._health
        if self._policy.ranked:
            health = await self._probe()
            if not any(h.reachable for h in health):
                raise NoReachableEndpoints("All endpoints unreachable", {"endpoints": self._targets})

        self._reselect(health)
        return self.client_for(self.endpoint)

    async def close(self) -> None:
        clients, self._clients = self._clients, {}
        await asyncio.gather(*(client.close() for client in clients.values()))

    async def _probe(self) -> list[EndpointHealth]:
        return await self._prober(
            self._targets,
            self._config.commitment,
            self._config.probe_timeout,
            self._client_factory,
        )

    def _select(self, health: Sequence[EndpointHealth], previous: Optional[str]) -> str:
        return select(
            self._policy,
            health,
            previous=previous,
            endpoints=self._config.endpoints,
            endpoint=self._config.endpoint,
            network=self._config.network,
            rng=self._rng,
        )

    def _reselect(self, health: list[EndpointHealth]) -> None:
        # read, select and rebind as one step so concurrent callers never
        # rotate from the same stale position
        with self._lock:
            state = self.state
            if self._policy in (SelectionPolicy.SINGLE, SelectionPolicy.FIRST, SelectionPolicy.LAST):
                return

            endpoint = self._select(health, previous=state.rotation)
            if self._policy.ranked:
                fastest, highest_slot, freshest = ranked_endpoints(health)
                state = replace(state, fastest=fastest, highest_slot=highest_slot, freshest=freshest)
                self._health = list(health)
            if self._policy is SelectionPolicy.ROUND_ROBIN:
                state = replace(state, rotation=endpoint)

            if endpoint != state.endpoint:
                logger.debug("Changing endpoint to %s", endpoint)
            self._state = replace(state, endpoint=endpoint)
