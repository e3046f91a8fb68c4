from dataclasses import dataclass

from .errors import ConfigurationError

DEFAULT_ENDPOINTS: dict[str, str] = {
    "mainnet-beta": "https://api.mainnet-beta.solana.com",
    "testnet": "https://api.testnet.solana.com",
    "devnet": "https://api.devnet.solana.com",
    "localnet": "http://localhost:8899",
}


def default_endpoint(network: str | None) -> str:
    """Canonical public endpoint for a network (the only one that serves airdrops)."""
    try:
        return DEFAULT_ENDPOINTS[network]
    except KeyError:
        raise ConfigurationError(f"Invalid network: {network}") from None


@dataclass(frozen=True)
class RelayRegion:
    code: str      # "mainnet", "amsterdam", "frankfurt", "ny", "tokyo"
    base_url: str  # block engine root

    @property
    def transactions_url(self) -> str:
        return f"{self.base_url}/api/v1/transactions"

    @property
    def bundles_url(self) -> str:
        return f"{self.base_url}/api/v1/bundles"


RELAY_REGIONS: list[RelayRegion] = [
    RelayRegion(code="mainnet", base_url="https://mainnet.block-engine.jito.wtf"),
    RelayRegion(code="amsterdam", base_url="https://amsterdam.mainnet.block-engine.jito.wtf"),
    RelayRegion(code="frankfurt", base_url="https://frankfurt.mainnet.block-engine.jito.wtf"),
    RelayRegion(code="ny", base_url="https://ny.mainnet.block-engine.jito.wtf"),
    RelayRegion(code="tokyo", base_url="https://tokyo.mainnet.block-engine.jito.wtf"),
]

# Catch-all region; the provider routes to a region of its choosing
FALLBACK_RELAY_REGION = "mainnet"


def relay_region(code: str) -> RelayRegion:
    for region in RELAY_REGIONS:
        if region.code == code:
            return region
    raise ConfigurationError(f"Unknown region code: {code}")
