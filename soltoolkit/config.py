"""
Connection manager configuration.

Priority: constructor arguments > SOLTOOLKIT_* environment variables > defaults.
"""

from typing import Literal, Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from .networks import default_endpoint
from .router import SelectionPolicy

Commitment = Literal["processed", "confirmed", "finalized"]

# Strictness order used to check that confirmation is never laxer than stamping
COMMITMENT_RANK: dict[str, int] = {"processed": 0, "confirmed": 1, "finalized": 2}


class ManagerConfig(BaseSettings):
    """Everything a ConnectionManager needs; fixed once the manager exists."""

    model_config = SettingsConfigDict(env_prefix="SOLTOOLKIT_", frozen=True, extra="ignore")

    network: str = Field(default="mainnet-beta")
    endpoint: Optional[str] = Field(default=None)
    endpoints: Optional[list[str]] = Field(default=None)
    policy: SelectionPolicy = Field(default=SelectionPolicy.SINGLE)
    commitment: Commitment = Field(default="processed")
    verbose: bool = Field(default=False)
    submission_timeout: float = Field(default=120.0, gt=0.0, le=600.0)
    max_retries: int = Field(default=5, ge=1, le=100)
    probe_timeout: float = Field(default=5.0, gt=0.0, le=60.0)

    def probe_targets(self) -> list[str]:
        """Endpoints probed at start-up and raced on send.

        The list, else the single endpoint, else the network default. Under
        the single policy an explicit endpoint is the one bound, so it leads
        the list (once).
        """
        if self.endpoints:
            if self.policy == SelectionPolicy.SINGLE and self.endpoint is not None:
                return list(dict.fromkeys([self.endpoint, *self.endpoints]))
            return list(self.endpoints)
        if self.endpoint is not None:
            return [self.endpoint]
        return [default_endpoint(self.network)]
