import random
import threading
from types import SimpleNamespace

import pytest

from vigilante.liveness import (
    CheckpointNotReportedError,
    CheckpointRecord,
    LivenessAttackError,
    LivenessChecker,
    LivenessError,
    min_btc_height,
)
from vigilante.metrics import MonitorMetrics
from vigilante.querier import BabylonQuerier
from vigilante.retry import RetryPolicy


class FakeClient:
    def __init__(self, ended=0, reported=None, tip=0):
        self.ended = ended
        self.reported = reported
        self.tip = tip
        self.ended_error = None
        self.requested_ids = []

    def ended_epoch_btc_height(self, epoch):
        if self.ended_error is not None:
            raise self.ended_error
        return self.ended

    def reported_checkpoint_btc_height(self, checkpoint_id):
        self.requested_ids.append(checkpoint_id)
        if self.reported is None:
            raise CheckpointNotReportedError("checkpoint not reported")
        return self.reported

    def btc_header_chain_tip(self):
        return SimpleNamespace(height=self.tip, hash_hex="ab" * 32)


def _rand(rng):
    return rng.randint(1, 49)


def _record(rng):
    return CheckpointRecord(
        epoch_num=rng.randint(1, 1000),
        block_hash=bytes(rng.getrandbits(8) for _ in range(32)),
        bitmap=bytes(rng.getrandbits(8) for _ in range(13)),
        bls_multi_sig=bytes(rng.getrandbits(8) for _ in range(48)),
        first_seen_btc_height=0,
    )


def _checker(client, max_gap, metrics=None):
    policy = RetryPolicy(attempts=1, delay=0, sleep=lambda _: None)
    return LivenessChecker(BabylonQuerier(client, policy), max_gap, metrics=metrics)


@pytest.mark.parametrize("seed", range(10))
def test_liveness_checker(seed):
    rng = random.Random(seed)
    record = _record(rng)
    max_gap = _rand(rng) + 200
    h1 = _rand(rng)
    h2 = _rand(rng) + h1
    record.first_seen_btc_height = h2
    client = FakeClient(ended=h1)
    checker = _checker(client, max_gap)

    # reported, gap within the threshold
    client.reported = _rand(rng) + h2
    checker.check_liveness(record)
    assert client.requested_ids[-1] == record.id

    # reported, gap above the threshold
    client.reported = _rand(rng) + h2 + max_gap
    with pytest.raises(LivenessAttackError):
        checker.check_liveness(record)

    # not reported, tip within the threshold
    client.reported = None
    client.tip = _rand(rng) + h2
    checker.check_liveness(record)
    assert client.requested_ids[-1] == record.id

    # not reported, tip above the threshold
    client.tip = _rand(rng) + h2 + max_gap
    with pytest.raises(LivenessAttackError):
        checker.check_liveness(record)


def test_negative_gap_is_error_but_not_attack():
    record = _record(random.Random(1))
    record.first_seen_btc_height = 100
    client = FakeClient(ended=90, reported=50)
    with pytest.raises(LivenessError) as info:
        _checker(client, 10).check_liveness(record)
    assert not isinstance(info.value, LivenessAttackError)


def test_gap_equal_to_threshold_passes():
    record = _record(random.Random(2))
    record.first_seen_btc_height = 20
    client = FakeClient(ended=10, reported=30)
    checker = _checker(client, 20)
    checker.check_liveness(record)
    client.reported = 31
    with pytest.raises(LivenessAttackError, match="21"):
        checker.check_liveness(record)


def test_epoch_not_ended_is_error():
    record = _record(random.Random(3))
    client = FakeClient()
    client.ended_error = RuntimeError("epoch not ended")
    with pytest.raises(LivenessError, match="not ended"):
        _checker(client, 10).check_liveness(record)


def test_other_report_error_is_wrapped():
    class Broken(FakeClient):
        def reported_checkpoint_btc_height(self, checkpoint_id):
            raise RuntimeError("node down")

    with pytest.raises(LivenessError, match="node down"):
        _checker(Broken(ended=1), 10).check_liveness(_record(random.Random(4)))


def test_min_btc_height():
    assert min_btc_height(3, 5) == 3
    assert min_btc_height(9, 2) == 2
    assert min_btc_height(4, 4) == 4


def test_record_id_depends_on_contents():
    rng = random.Random(5)
    a = _record(rng)
    b = CheckpointRecord(a.epoch_num, a.block_hash, a.bitmap, a.bls_multi_sig, 77)
    assert a.id == b.id
    c = CheckpointRecord(a.epoch_num + 1, a.block_hash, a.bitmap, a.bls_multi_sig, 0)
    assert c.id != a.id
    assert len(a.id) == 64


def test_run_once_removes_passing_and_counts_attacks():
    rng = random.Random(6)
    metrics = MonitorMetrics()
    client = FakeClient(ended=10, reported=15)
    checker = _checker(client, 100, metrics)
    good = _record(rng)
    good.first_seen_btc_height = 12
    checker.add(good)
    assert checker.run_once() == []
    assert checker.pending == ()
    assert metrics.liveness_attacks_counter.value == 0

    client.reported = 500
    bad = _record(rng)
    bad.first_seen_btc_height = 12
    checker.add(bad)
    failed = checker.run_once()
    assert [r.id for r in failed] == [bad.id]
    assert [r.id for r in checker.pending] == [bad.id]
    assert metrics.liveness_attacks_counter.value == 1


def test_add_stores_copy():
    rng = random.Random(7)
    checker = _checker(FakeClient(), 10)
    record = _record(rng)
    record.first_seen_btc_height = 5
    checker.add(record)
    record.first_seen_btc_height = 99
    assert checker.pending[0].first_seen_btc_height == 5


def test_run_stops_when_event_set():
    checker = _checker(FakeClient(ended=0, reported=1000), 10)
    checker.add(_record(random.Random(8)))
    stop = threading.Event()
    stop.set()
    checker.run(stop)
    assert len(checker.pending) == 1


def test_interval_must_be_positive():
    with pytest.raises(ValueError):
        LivenessChecker(BabylonQuerier(FakeClient()), 10, interval=0)