import random
from enum import Enum
from typing import TYPE_CHECKING, Optional, Sequence

from .errors import ConfigurationError, NoReachableEndpoints
from .networks import default_endpoint

if TYPE_CHECKING:
    from .latency import EndpointHealth


class SelectionPolicy(str, Enum):
    SINGLE = "single"
    FIRST = "first"
    LAST = "last"
    ROUND_ROBIN = "round-robin"
    RANDOM = "random"
    FASTEST = "fastest"
    HIGHEST_SLOT = "highest-slot"
    FRESHEST = "freshest"

    @classmethod
    def parse(cls, value: "str | SelectionPolicy") -> "SelectionPolicy":
        try:
            return cls(value)
        except ValueError:
            raise ConfigurationError(f"Invalid mode: {value}") from None

    @property
    def requires_endpoint_list(self) -> bool:
        return self in _LIST_POLICIES

    @property
    def ranked(self) -> bool:
        return self in _RANKINGS


_LIST_POLICIES = frozenset({
    SelectionPolicy.FIRST,
    SelectionPolicy.LAST,
    SelectionPolicy.ROUND_ROBIN,
    SelectionPolicy.RANDOM,
})

# policy -> (EndpointHealth attribute, descending)
_RANKINGS = {
    SelectionPolicy.FASTEST: ("latency_ms", False),
    SelectionPolicy.HIGHEST_SLOT: ("current_height", True),
    SelectionPolicy.FRESHEST: ("freshness_marker", True),
}


def validate_policy(policy: SelectionPolicy, endpoints: Optional[Sequence[str]]) -> SelectionPolicy:
    """Fail fast when a policy needs an endpoint list that is missing or empty."""
    policy = SelectionPolicy.parse(policy)
    if policy.requires_endpoint_list and not endpoints:
        raise ConfigurationError(f'No endpoints provided with mode "{policy.value}"')
    return policy


def rank(policy: SelectionPolicy, health: Sequence["EndpointHealth"]) -> list["EndpointHealth"]:
    """Reachable endpoints, best first. Sorting is stable: ties keep input order."""
    policy = SelectionPolicy.parse(policy)
    if not policy.ranked:
        raise ConfigurationError(f'Mode "{policy.value}" does not rank endpoints')

    attribute, descending = _RANKINGS[policy]
    reachable = [h for h in health if h.reachable]
    if not reachable:
        raise NoReachableEndpoints("No reachable endpoints")
    return sorted(reachable, key=lambda h: getattr(h, attribute), reverse=descending)


def ranked_endpoints(health: Sequence["EndpointHealth"]) -> tuple[str, str, str]:
    """Fastest, highest-slot and freshest endpoints of one probe round."""
    return (
        rank(SelectionPolicy.FASTEST, health)[0].endpoint,
        rank(SelectionPolicy.HIGHEST_SLOT, health)[0].endpoint,
        rank(SelectionPolicy.FRESHEST, health)[0].endpoint,
    )


def select(
    policy: SelectionPolicy,
    health: Sequence["EndpointHealth"] = (),
    previous: Optional[str] = None,
    endpoints: Optional[Sequence[str]] = None,
    endpoint: Optional[str] = None,
    network: Optional[str] = None,
    rng: Optional[random.Random] = None,
) -> str:
    """Pick one endpoint according to ``policy``.

    Unranked policies never look at ``health``; they may return an endpoint
    that turns out to be unreachable when used.
    """
    policy = validate_policy(policy, endpoints)

    if policy is SelectionPolicy.SINGLE:
        if endpoint:
            return endpoint
        if endpoints:
            return endpoints[0]
        return default_endpoint(network)

    if policy is SelectionPolicy.FIRST:
        return endpoints[0]

    if policy is SelectionPolicy.LAST:
        return endpoints[-1]

    if policy is SelectionPolicy.ROUND_ROBIN:
        try:
            index = list(endpoints).index(previous) + 1
        except ValueError:
            # previous is unset or not one of ours (e.g. the network default)
            index = 0
        return endpoints[index % len(endpoints)]

    if policy is SelectionPolicy.RANDOM:
        return (rng or random).choice(list(endpoints))

    return rank(policy, health)[0].endpoint
