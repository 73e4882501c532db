# vigilante

Building blocks for a Bitcoin/Babylon vigilante: retrying calls to chain
nodes, keeping metrics, persisting monitor progress, checking that Babylon
reports checkpoints in time, and finding and submitting the BTC headers that
Babylon's light client lacks.

Install with `pip install .` (add `.[test]` for the test dependencies). The
only runtime dependency is `cryptography`, used for the TLS key pair.

## Modules

- `vigilante.retry`: `do(func, policy)` calls `func` until it succeeds under a
  `RetryPolicy` (`attempts`, default 10, where 0 means no limit; `delay`,
  default 0.1 s, doubled after every attempt unless `fixed` is set;
  `max_delay` caps it when positive; optional `on_retry` callback and `sleep`
  function). An `UnrecoverableError` (for example `InvalidHeaderError`,
  `HeaderParentDoesNotExistError`, `InvalidCheckpointProofError`) is raised at
  once. An `ExpectedError` (`DuplicatedSubmissionError`,
  `CheckpointInvalidHeaderError`) ends the loop and `do` returns `None`.
  Otherwise the last error is raised when the attempts run out.
  `is_unrecoverable` and `is_expected` look at the error and the chain of
  errors it was raised from.
- `vigilante.metrics`: an in-process metrics registry with `Counter`, `Gauge`,
  `Histogram`, `GaugeVec` and `HistogramVec`. `Registry.expose()` renders all
  metric families in the Prometheus text format, sorted by name. The metric
  sets `MonitorMetrics`, `ReporterMetrics`, `SubmitterMetrics` and
  `RelayerMetrics` each own their counters and gauges; `tick()` advances the
  "seconds since last ..." gauges by one and `record_metrics()` does so once a
  second in a daemon thread. `start_metrics_server("host:port", registry)`
  serves `/metrics` over HTTP in a background thread and returns the server.
- `vigilante.staking_metrics`: `BTCStakingTrackerMetrics` groups
  `UnbondingWatcherMetrics`, `SlasherMetrics` and `AtomicSlasherMetrics` on one
  registry. `SlasherMetrics.record_slashed_delegation(delegation)` takes an
  object with `btc_pk`, `fp_btc_pk_list` and `total_sat`.
- `vigilante.netparams`: `get_btc_params(net)` returns the `NetParams` of one
  of the `BtcNet` names `mainnet`, `testnet`, `simnet`, `regtest`, `signet`,
  and raises `ValueError` for any other.
- `vigilante.monitor_store`: `MonitorStore(path)` keeps the latest epoch and
  BTC height in an SQLite file. `latest_epoch()` and `latest_height()` return
  `None` until something was stored; values are kept as 8-byte big-endian
  integers (`uint64_to_bytes`, `uint64_from_bytes`). It is a context manager.
  `CorruptedDBError` is raised when a bucket is missing.
- `vigilante.tls`: `open_rpc_key_pair(one_time_tls_key, key_file, cert_file)`
  loads the `KeyPair` from disk, or creates a self-signed one when the key
  file is missing. With a one-time key the key is never written, and an
  existing key file raises `TLSKeyExistsError`.
  `generate_rpc_key_pair(key_file, cert_file, write_key)` always creates a
  fresh pair, valid for ten years, with files written in mode 0600.
- `vigilante.service`: `VigilanteService().version()` returns a
  `VersionResponse` for API version 0.0.1.
- `vigilante.querier`: `BabylonQuerier` wraps any object that follows the
  `BabylonQueryClient` protocol and retries each query under one policy.
  `query_info_for_next_epoch(epoch)` builds an `EpochInfo` of
  `ValidatorWithBlsKey`s (`convert_bls_public_key_list` decodes the hex keys);
  `find_tip_confirmed_epoch()` walks back from the current epoch to the latest
  checkpoint whose `CheckpointStatus` is confirmed or finalized, and raises
  `LookupError` if there is none.
- `vigilante.liveness`: `LivenessChecker` tracks `CheckpointRecord`s.
  `check_liveness(record)` measures the BTC-height gap from
  `min(epoch end height, first seen height)` to the height at which the
  checkpoint was reported, or, when the client raises
  `CheckpointNotReportedError`, to the current light client tip. A gap above
  `max_live_btc_heights` raises `LivenessAttackError`; other failures raise
  `LivenessError`. `run_once()` checks all tracked records, drops those that
  pass and returns those that fail; `run(stop_event)` repeats it every
  `interval` seconds.
- `vigilante.chain`: `classify_new_block(tip_height, tip_hash, height,
  prev_hash)` returns `BlockAction.SKIP` for a block at or below the tip and
  `BlockAction.CONNECT` for the next block on top of the tip. It raises
  `BlockConnectionError` when there is no tip, blocks are missing, or the block
  forks away (then `fork` is true).
- `vigilante.headers`: `HeaderReporter(client, max_headers_in_msg)` finds the
  first header Babylon does not contain and submits it and all later headers
  in `MsgInsertHeaders` chunks (`chunk_by`). `process_headers` returns the
  number submitted and raises `HeaderSubmissionError` on failure. The client
  follows the `BabylonClient` protocol.
- `vigilante.bootstrap`: the height arithmetic of bootstrapping
  (`consistency_check_height`, `cache_base_height`, `btc_caught_up`) and
  `check_consistency(client, blocks_by_height, confirmation_depth)`, which
  returns a `ConsistencyCheckInfo` or raises `InconsistentChainError`.

## Examples

```python
from vigilante.bootstrap import btc_caught_up, cache_base_height, consistency_check_height

consistency_check_height(100, 10, 6)       # 94
cache_base_height(100, 10, 6, 20)          # 75
btc_caught_up(120, 100)                    # True
```

```python
from vigilante.headers import chunk_by

chunk_by([1, 2, 3, 4, 5], 2)               # [[1, 2], [3, 4], [5]]
```

```python
from vigilante.retry import DuplicatedSubmissionError, InvalidHeaderError, is_expected, is_unrecoverable

is_expected(DuplicatedSubmissionError())   # True
is_unrecoverable(InvalidHeaderError())     # True
```

```python
from vigilante.monitor_store import MonitorStore, uint64_to_bytes

uint64_to_bytes(1)                         # b"\x00\x00\x00\x00\x00\x00\x00\x01"
with MonitorStore("monitor.db") as store:
    store.put_latest_epoch(42)
    store.latest_epoch()                   # 42
```

```python
from vigilante.liveness import min_btc_height

min_btc_height(120, 110)                   # 110
```

## What this package does not do

- It has no clients for a Bitcoin node or a Babylon node. Queries and
  submissions go through objects you supply that follow the
  `BabylonQueryClient` and `BabylonClient` protocols.
- It has no command and no long-running monitor, reporter, submitter or
  staking tracker process; the pieces above have to be wired together by the
  caller.
- It does not extract or match checkpoint segments from BTC transactions, nor
  verify BLS signatures of checkpoints.
- `VigilanteService` is a plain class; no RPC server is provided. The only
  network server is the HTTP metrics endpoint of `start_metrics_server`.