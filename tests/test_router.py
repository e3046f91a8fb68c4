import random
from collections import Counter

import pytest

from soltoolkit.errors import ConfigurationError, NoReachableEndpoints
from soltoolkit.latency import EndpointHealth
from soltoolkit.networks import DEFAULT_ENDPOINTS
from soltoolkit.router import SelectionPolicy, rank, ranked_endpoints, select, validate_policy

from conftest import A, B, C

ENDPOINTS = [A, B, C]
LIST_POLICIES = [
    SelectionPolicy.FIRST,
    SelectionPolicy.LAST,
    SelectionPolicy.ROUND_ROBIN,
    SelectionPolicy.RANDOM,
]
RANKED_POLICIES = [
    SelectionPolicy.FASTEST,
    SelectionPolicy.HIGHEST_SLOT,
    SelectionPolicy.FRESHEST,
]


def healthy(endpoint, latency=10.0, slot=100, marker=200):
    return EndpointHealth(endpoint, True, latency, slot, marker)


pytestmark = pytest.mark.unit


class TestListPolicies:

    @pytest.mark.parametrize("policy", LIST_POLICIES)
    @pytest.mark.parametrize("endpoints", [None, []])
    def test_missing_endpoint_list_fails_fast(self, policy, endpoints):
        with pytest.raises(ConfigurationError, match="No endpoints provided"):
            select(policy, endpoints=endpoints, endpoint=A, network="devnet")

    def test_unknown_policy(self):
        with pytest.raises(ConfigurationError, match="Invalid mode"):
            select("weighted", endpoints=ENDPOINTS)

    def test_policy_strings_are_parsed(self):
        assert validate_policy("round-robin", ENDPOINTS) is SelectionPolicy.ROUND_ROBIN

    def test_first_and_last(self):
        assert select(SelectionPolicy.FIRST, endpoints=ENDPOINTS) == A
        assert select(SelectionPolicy.LAST, endpoints=ENDPOINTS) == C

    def test_round_robin_advances_and_wraps(self):
        assert select(SelectionPolicy.ROUND_ROBIN, previous=A, endpoints=ENDPOINTS) == B
        assert select(SelectionPolicy.ROUND_ROBIN, previous=B, endpoints=ENDPOINTS) == C
        assert select(SelectionPolicy.ROUND_ROBIN, previous=C, endpoints=ENDPOINTS) == A

    @pytest.mark.parametrize("previous", [None, DEFAULT_ENDPOINTS["devnet"], "https://elsewhere.test"])
    def test_round_robin_resets_when_previous_unknown(self, previous):
        assert select(SelectionPolicy.ROUND_ROBIN, previous=previous, endpoints=ENDPOINTS) == A

    @pytest.mark.parametrize("selections", [3, 7, 10, 30])
    def test_round_robin_visits_evenly(self, selections):
        counts = Counter()
        previous = None
        for _ in range(selections):
            previous = select(SelectionPolicy.ROUND_ROBIN, previous=previous, endpoints=ENDPOINTS)
            counts[previous] += 1

        expected = selections / len(ENDPOINTS)
        assert all(abs(counts[e] - expected) <= 1 for e in ENDPOINTS)

    def test_random_stays_in_list(self):
        rng = random.Random(7)
        picks = {select(SelectionPolicy.RANDOM, endpoints=ENDPOINTS, rng=rng) for _ in range(200)}
        assert picks == set(ENDPOINTS)

    @pytest.mark.parametrize("policy", LIST_POLICIES + [SelectionPolicy.SINGLE])
    def test_unranked_policies_ignore_health(self, policy):
        dead = [EndpointHealth.unreachable(e) for e in ENDPOINTS]
        assert select(policy, dead, endpoints=ENDPOINTS) in ENDPOINTS


class TestSinglePolicy:

    def test_explicit_endpoint_wins(self):
        assert select(SelectionPolicy.SINGLE, endpoints=ENDPOINTS, endpoint=C) == C

    def test_falls_back_to_first_of_list(self):
        assert select(SelectionPolicy.SINGLE, endpoints=ENDPOINTS) == A

    def test_falls_back_to_network_default(self):
        assert select(SelectionPolicy.SINGLE, network="testnet") == "https://api.testnet.solana.com"

    def test_invalid_network(self):
        with pytest.raises(ConfigurationError, match="Invalid network"):
            select(SelectionPolicy.SINGLE, network="moonnet")


class TestRankedPolicies:

    def test_fastest(self):
        health = [healthy(A, latency=50), healthy(B, latency=10), healthy(C, latency=30)]
        assert select(SelectionPolicy.FASTEST, health) == B

    def test_highest_slot(self):
        health = [healthy(A, slot=10), healthy(B, slot=12), healthy(C, slot=30)]
        assert select(SelectionPolicy.HIGHEST_SLOT, health) == C

    def test_freshest(self):
        health = [healthy(A, marker=500), healthy(B, marker=400), healthy(C, marker=300)]
        assert select(SelectionPolicy.FRESHEST, health) == A

    def test_unreachable_endpoints_are_skipped(self):
        health = [EndpointHealth.unreachable(A), healthy(B, latency=90), healthy(C, latency=40)]
        assert select(SelectionPolicy.FASTEST, health) == C
        assert [h.endpoint for h in rank(SelectionPolicy.FASTEST, health)] == [C, B]

    @pytest.mark.parametrize("policy", RANKED_POLICIES)
    def test_ties_keep_input_order(self, policy):
        health = [healthy(B), healthy(A), healthy(C)]
        for _ in range(20):
            assert select(policy, health) == B

        health = [healthy(C), healthy(B), healthy(A)]
        assert select(policy, health) == C

    @pytest.mark.parametrize("policy", RANKED_POLICIES)
    def test_all_unreachable(self, policy):
        dead = [EndpointHealth.unreachable(e) for e in ENDPOINTS]
        with pytest.raises(NoReachableEndpoints):
            select(policy, dead, endpoints=ENDPOINTS)

    def test_ranked_endpoints(self):
        health = [
            healthy(A, latency=5, slot=1, marker=9),
            healthy(B, latency=9, slot=7, marker=1),
            healthy(C, latency=7, slot=3, marker=4),
        ]
        assert ranked_endpoints(health) == (A, B, A)

    def test_rank_rejects_unranked_policy(self):
        with pytest.raises(ConfigurationError):
            rank(SelectionPolicy.FIRST, [healthy(A)])
