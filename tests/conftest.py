import asyncio
import os
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional

import pytest
from solders.hash import Hash
from solders.keypair import Keypair
from solders.signature import Signature

# Add the project root to the Python path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from soltoolkit.config import ManagerConfig  # noqa: E402
from soltoolkit.errors import TransportError  # noqa: E402
from soltoolkit.latency import EndpointHealth  # noqa: E402
from soltoolkit.ledger import BlockhashInfo, Confirmation  # noqa: E402
from soltoolkit.manager import ConnectionManager  # noqa: E402

# Test configuration
pytest_plugins = ["pytest_asyncio"]

# Environment variables for testing
os.environ.setdefault("SOLTOOLKIT_LOG_LEVEL", "DEBUG")

A = "https://a.rpc.test"
B = "https://b.rpc.test"
C = "https://c.rpc.test"


@dataclass
class FakeNode:
    """Scripted behaviour of one RPC endpoint."""

    endpoint: str
    reachable: bool = True
    slot: int = 1_000
    last_valid: int = 2_000
    latency_ms: float = 10.0
    delay: float = 0.0
    blockhash: Hash = field(default_factory=Hash.new_unique)
    accounts: dict = field(default_factory=dict)
    # items are an exception to raise or None for success
    send_script: list = field(default_factory=list)
    # items are an exception to raise, or the err payload (None = confirmed)
    confirm_script: list = field(default_factory=list)
    sent: list = field(default_factory=list)
    calls: dict = field(default_factory=dict)
    closed: int = 0

    def count(self, name: str) -> None:
        self.calls[name] = self.calls.get(name, 0) + 1

    def ensure_reachable(self) -> None:
        if not self.reachable:
            raise TransportError(f"{self.endpoint} refused connection", endpoint=self.endpoint)


class FakeLedger:
    """Stands in for LedgerClient; same method surface."""

    def __init__(self, endpoint: str, node: FakeNode, commitment: Optional[str] = None, timeout: Any = None):
        self.endpoint = endpoint
        self.node = node
        self.commitment = commitment

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.close()

    async def close(self):
        self.node.closed += 1

    async def get_slot(self, commitment=None):
        self.node.count("get_slot")
        await asyncio.sleep(self.node.delay)
        self.node.ensure_reachable()
        return self.node.slot

    async def get_latest_blockhash(self, commitment=None):
        self.node.count("get_latest_blockhash")
        self.node.ensure_reachable()
        return BlockhashInfo(blockhash=self.node.blockhash, last_valid_block_height=self.node.last_valid)

    async def send_raw_transaction(self, payload, skip_preflight=False, preflight_commitment=None):
        self.node.count("send_raw_transaction")
        await asyncio.sleep(self.node.delay)
        self.node.ensure_reachable()
        self.node.sent.append(payload)
        outcome = self.node.send_script.pop(0) if self.node.send_script else None
        if isinstance(outcome, BaseException):
            raise outcome
        if len(payload) >= 65:
            return Signature.from_bytes(payload[1:65])
        return Signature.default()

    async def confirm_transaction(self, signature, commitment=None, last_valid_block_height=None):
        self.node.count("confirm_transaction")
        await asyncio.sleep(self.node.delay)
        self.node.ensure_reachable()
        outcome = self.node.confirm_script.pop(0) if self.node.confirm_script else None
        if isinstance(outcome, BaseException):
            raise outcome
        return Confirmation(signature=signature, slot=self.node.slot, err=outcome)

    async def get_account_info(self, address):
        self.node.count("get_account_info")
        self.node.ensure_reachable()
        return self.node.accounts.get(address)

    async def request_airdrop(self, address, lamports):
        self.node.count("request_airdrop")
        return Signature.default()


class FakeCluster:
    def __init__(self):
        self.nodes: dict[str, FakeNode] = {}
        self.probe_calls = 0

    def add(self, endpoint: str, **kwargs) -> FakeNode:
        self.nodes[endpoint] = FakeNode(endpoint, **kwargs)
        return self.nodes[endpoint]

    def node(self, endpoint: str) -> FakeNode:
        if endpoint not in self.nodes:
            self.add(endpoint)
        return self.nodes[endpoint]

    def factory(self, endpoint: str, commitment=None, timeout=None) -> FakeLedger:
        return FakeLedger(endpoint, self.node(endpoint), commitment, timeout)

    async def prober(self, endpoints, commitment=None, timeout=None, client_factory=None) -> list[EndpointHealth]:
        """Health built from each node's scripted latency, counting calls."""
        self.probe_calls += 1
        results = []
        for endpoint in endpoints:
            node = self.node(endpoint)
            if node.reachable:
                results.append(EndpointHealth(endpoint, True, node.latency_ms, node.slot, node.last_valid))
            else:
                results.append(EndpointHealth.unreachable(endpoint))
        return results

    async def manager(self, **config) -> ConnectionManager:
        manager = ConnectionManager(ManagerConfig(**config), client_factory=self.factory, prober=self.prober)
        return await manager.start()


@pytest.fixture(autouse=True)
def reset_manager():
    """Forget the process-wide manager between tests."""
    ConnectionManager.reset_instance()
    yield
    ConnectionManager.reset_instance()


@pytest.fixture
def cluster():
    cluster = FakeCluster()
    cluster.add(A)
    cluster.add(B)
    cluster.add(C)
    return cluster


@pytest.fixture
def keypair():
    return Keypair()
