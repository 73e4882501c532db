import random
from types import SimpleNamespace

import pytest

from vigilante.querier import (
    BabylonQuerier,
    CheckpointStatus,
    EpochInfo,
    ValidatorWithBlsKey,
    convert_bls_public_key_list,
)
from vigilante.retry import InvalidHeaderError, RetryPolicy


def _policy(attempts=1):
    return RetryPolicy(attempts=attempts, delay=0, sleep=lambda _: None)


class FakeClient:
    def __init__(self, entries=(), statuses=None, current=0):
        self.entries = list(entries)
        self.statuses = statuses or {}
        self.current = current
        self.calls = []
        self.failures = 0

    def start(self):
        pass

    def stop(self):
        pass

    def is_running(self):
        return True

    def ended_epoch_btc_height(self, epoch):
        return 0

    def reported_checkpoint_btc_height(self, checkpoint_id):
        return 0

    def raw_checkpoint(self, epoch):
        self.calls.append(epoch)
        return SimpleNamespace(status=self.statuses.get(epoch, CheckpointStatus.ACCUMULATING))

    def btc_header_chain_tip(self):
        return SimpleNamespace(height=7, hash_hex="00" * 32)

    def contains_btc_block(self, block_hash):
        if self.failures:
            self.failures -= 1
            raise ConnectionError("temporarily unavailable")
        return block_hash == b"\x01" * 32

    def current_epoch(self):
        return self.current

    def bls_public_key_list(self, epoch, pagination=None):
        assert pagination is None
        return self.entries


def _random_validators(rng, n):
    return [
        ValidatorWithBlsKey(
            f"bbnvaloper1{rng.getrandbits(64):016x}",
            bytes(rng.getrandbits(8) for _ in range(96)),
            rng.randint(1, 1000),
        )
        for _ in range(n)
    ]


def _entries(validators):
    return [
        SimpleNamespace(
            validator_address=v.validator_address,
            bls_pub_key_hex=v.bls_pub_key.hex(),
            voting_power=v.voting_power,
        )
        for v in validators
    ]


@pytest.mark.parametrize("seed", range(10))
def test_query_info_for_next_epoch(seed):
    rng = random.Random(seed)
    validators = _random_validators(rng, rng.randint(1, 100))
    epoch = rng.randint(1, 10000)
    querier = BabylonQuerier(FakeClient(_entries(validators)), _policy())
    info = querier.query_info_for_next_epoch(epoch)
    assert info == EpochInfo(epoch, tuple(validators))
    assert info.total_voting_power == sum(v.voting_power for v in validators)


def test_convert_rejects_bad_hex():
    bad = [SimpleNamespace(validator_address="v", bls_pub_key_hex="zz", voting_power=1)]
    with pytest.raises(ValueError):
        convert_bls_public_key_list(bad)


def test_query_info_with_bad_hex_raises():
    bad = [SimpleNamespace(validator_address="v", bls_pub_key_hex="abc", voting_power=1)]
    querier = BabylonQuerier(FakeClient(bad), _policy())
    with pytest.raises(ValueError, match="epoch 3"):
        querier.query_info_for_next_epoch(3)


def test_convert_keeps_order_and_values():
    entries = [
        SimpleNamespace(validator_address="a", bls_pub_key_hex="0102", voting_power=5),
        SimpleNamespace(validator_address="b", bls_pub_key_hex="ff", voting_power=7),
    ]
    assert convert_bls_public_key_list(entries) == [
        ValidatorWithBlsKey("a", b"\x01\x02", 5),
        ValidatorWithBlsKey("b", b"\xff", 7),
    ]


def test_find_tip_confirmed_epoch_skips_unconfirmed():
    client = FakeClient(statuses={4: CheckpointStatus.SEALED, 3: CheckpointStatus.CONFIRMED}, current=5)
    querier = BabylonQuerier(client, _policy())
    assert querier.find_tip_confirmed_epoch() == 3
    assert client.calls == [4, 3]


def test_find_tip_confirmed_epoch_accepts_finalized():
    client = FakeClient(statuses={1: CheckpointStatus.FINALIZED}, current=2)
    assert BabylonQuerier(client, _policy()).find_tip_confirmed_epoch() == 1


def test_find_tip_confirmed_epoch_none_found():
    client = FakeClient(statuses={}, current=3)
    with pytest.raises(LookupError):
        BabylonQuerier(client, _policy()).find_tip_confirmed_epoch()
    assert client.calls == [2, 1, 0]


def test_query_retries_until_success():
    client = FakeClient()
    client.failures = 2
    querier = BabylonQuerier(client, _policy(attempts=3))
    assert querier.contains_btc_block(b"\x01" * 32) is True
    assert client.failures == 0


def test_query_gives_up_after_attempts():
    client = FakeClient()
    client.failures = 5
    querier = BabylonQuerier(client, _policy(attempts=2))
    with pytest.raises(ConnectionError):
        querier.contains_btc_block(b"\x01" * 32)
    assert client.failures == 3


def test_unrecoverable_error_is_not_retried():
    class Failing(FakeClient):
        def __init__(self):
            super().__init__()
            self.count = 0

        def current_epoch(self):
            self.count += 1
            raise InvalidHeaderError("bad header")

    client = Failing()
    with pytest.raises(InvalidHeaderError):
        BabylonQuerier(client, _policy(attempts=5)).current_epoch()
    assert client.count == 1


def test_btc_header_chain_tip_passes_through():
    tip = BabylonQuerier(FakeClient(), _policy()).btc_header_chain_tip()
    assert tip.height == 7