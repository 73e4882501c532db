"""Metrics kept by the BTC staking tracker: unbonding watcher and slashers."""

from __future__ import annotations

from typing import Any, Optional

from vigilante.metrics import Registry

_NAMESPACE = "vigilante"
_LATENCY_BUCKETS = (0.001, 0.002, 0.005, 0.01, 0.025, 0.05, 0.1)


def _hex(value: Any) -> str:
    if isinstance(value, (bytes, bytearray)):
        return bytes(value).hex()
    return str(value)


class UnbondingWatcherMetrics:
    """Counters and gauges of the unbonding watcher."""

    def __init__(self, registry: Registry) -> None:
        self.registry = registry
        r = registry
        ns = _NAMESPACE
        self.reported_unbonding_transactions_counter = r.counter(
            "unbonding_watcher_reported_unbonding_transactions",
            "The total number of unbonding transactions successfully reported to Babylon node",
            ns,
        )
        self.failed_reported_unbonding_transactions = r.counter(
            "unbonding_watcher_failed_reported_unbonding_transactions",
            "The total number times reporting unbonding transactions to Babylon node failed",
            ns,
        )
        self.number_of_tracked_active_delegations = r.gauge(
            "unbonding_watcher_tracked_active_delegations",
            "The number of active delegations tracked by unbonding watcher",
            ns,
        )
        self.detected_unbonding_transactions_counter = r.counter(
            "unbonding_watcher_detected_unbonding_transactions",
            "The total number of unbonding transactions detected by unbonding watcher",
            ns,
        )
        self.detected_non_unbonding_transactions_counter = r.counter(
            "unbonding_watcher_detected_non_unbonding_transactions",
            "The total number of non unbonding (slashing or withdrawal) transactions detected by unbonding watcher",
            ns,
        )
        self.failed_reported_activate_delegations = r.counter(
            "unbonding_watcher_failed_reported_activate_delegation",
            "The total number times reporting activation delegation failed on Babylon node",
            ns,
        )
        self.reported_activate_delegations_counter = r.counter(
            "unbonding_watcher_reported_activate_delegations",
            "The total number of unbonding transactions successfully reported to Babylon node",
            ns,
        )
        self.method_execution_latency = r.histogram_vec(
            "unbonding_watcher_method_latency_seconds",
            "Latency in seconds",
            ["method"],
            _LATENCY_BUCKETS,
            ns,
        )
        self.number_of_activation_in_progress = r.gauge(
            "unbonding_watcher_number_of_activation_in_progress",
            "The number of activations in progress",
            ns,
        )
        self.number_of_verified_delegations = r.gauge(
            "unbonding_watcher_number_of_verified_delegations",
            "The number of verified delegations",
            ns,
        )


class SlasherMetrics:
    """Counters of slashed finality providers, delegations and funds."""

    def __init__(self, registry: Registry) -> None:
        r = registry
        self.slashed_finality_providers_counter = r.counter(
            "slasher_slashed_finality_providers", "The number of slashed finality providers"
        )
        self.slashed_delegations_counter = r.counter(
            "slasher_slashed_delegations", "The number of slashed delegations"
        )
        self.slashed_sats_counter = r.counter("slasher_slashed_sats", "The amount of slashed funds in Satoshi")
        # del_btc_pk and fp_btc_pk are hex-encoded secp256k1 public keys
        self.slashed_delegation_gauge_vec = r.gauge_vec(
            "slasher_new_slashed_delegation",
            "The metric of a newly slashed delegation",
            ["del_btc_pk", "fp_btc_pk"],
        )

    def record_slashed_delegation(self, delegation: Any) -> None:
        """Record a slashed delegation.

        ``delegation`` needs ``btc_pk``, ``fp_btc_pk_list`` and ``total_sat``;
        keys may be bytes or hex strings.
        """
        del_pk = _hex(delegation.btc_pk)
        for fp_pk in delegation.fp_btc_pk_list:
            self.slashed_delegation_gauge_vec.with_label_values(del_pk, _hex(fp_pk)).set_to_current_time()
        self.slashed_sats_counter.add(float(delegation.total_sat))
        self.slashed_delegations_counter.inc()


class AtomicSlasherMetrics:
    """Gauge of the delegations tracked by the atomic slasher."""

    def __init__(self, registry: Registry) -> None:
        self.registry = registry
        self.tracked_btc_delegations_gauge = registry.gauge(
            "atomic_slasher_tracked_delegations_gauge",
            "The number of BTC delegations the atomic slasher routine is tracking",
        )


class BTCStakingTrackerMetrics:
    """All staking tracker metrics, sharing one registry."""

    def __init__(self, registry: Optional[Registry] = None) -> None:
        self.registry = registry if registry is not None else Registry()
        self.unbonding_watcher = UnbondingWatcherMetrics(self.registry)
        self.slasher = SlasherMetrics(self.registry)
        self.atomic_slasher = AtomicSlasherMetrics(self.registry)