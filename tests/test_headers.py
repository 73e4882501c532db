import random
from dataclasses import dataclass

import pytest

from vigilante.headers import (
    HeaderReporter,
    HeaderSubmissionError,
    MsgInsertHeaders,
    chunk_by,
)
from vigilante.metrics import ReporterMetrics
from vigilante.retry import (
    DuplicatedSubmissionError,
    HeaderParentDoesNotExistError,
    RetryPolicy,
)

GENESIS_HEADER = bytes.fromhex(
    "0100000000000000000000000000000000000000000000000000000000000000"
    "000000003ba3edfd7a7b12b27ac72c3e67768f617fc81bc3888a51323a9fb8aa"
    "4b1e5e4a29ab5f49ffff001d1dac2b7c"
)
GENESIS_HASH = "000000000019d6689c085ae165831e934ff763ae46a2a6c172b3f1b60a8ce26f"


@dataclass
class Block:
    header: bytes


@dataclass
class Response:
    code: int


class FakeBabylon:
    def __init__(self, contained=0, insert_errors=None):
        self.contained = contained
        self.contains_calls = 0
        self.inserted = []
        self.insert_errors = list(insert_errors or [])

    def contains_btc_block(self, block_hash):
        self.contains_calls += 1
        return self.contains_calls <= self.contained

    def insert_headers(self, msg):
        if self.insert_errors:
            raise self.insert_errors.pop(0)
        self.inserted.append(msg)
        return Response(0)


def _policy(attempts=3):
    return RetryPolicy(attempts=attempts, delay=0, sleep=lambda s: None)


def _blocks(rng, n):
    return [Block(rng.randbytes(80)) for _ in range(n)]


@pytest.mark.parametrize("seed", range(10))
def test_process_headers_submits_headers_not_on_chain(seed):
    rng = random.Random(seed)
    num_blocks = rng.randint(1, 1000) + 100
    blocks = _blocks(rng, num_blocks)
    on_chain = rng.randrange(num_blocks)
    client = FakeBabylon(contained=on_chain)
    reporter = HeaderReporter(client, 100, _policy(), ReporterMetrics())

    submitted = reporter.process_headers("", blocks)

    assert submitted == num_blocks - on_chain
    sent = [h for msg in client.inserted for h in msg.headers]
    assert sent == [b.header for b in blocks[on_chain:]]
    assert all(len(msg.headers) <= 100 for msg in client.inserted)


def test_all_headers_duplicated_submits_nothing():
    rng = random.Random(1)
    client = FakeBabylon(contained=5)
    reporter = HeaderReporter(client, 10, _policy())
    assert reporter.process_headers("signer", _blocks(rng, 5)) == 0
    assert client.inserted == []


def test_header_msgs_chunked_and_signed():
    rng = random.Random(2)
    blocks = _blocks(rng, 7)
    reporter = HeaderReporter(FakeBabylon(contained=2), 2, _policy())
    msgs = reporter.header_msgs_to_submit("bbn1signer", blocks)
    assert [len(m.headers) for m in msgs] == [2, 2, 1]
    assert all(m.signer == "bbn1signer" for m in msgs)
    assert msgs[0].headers[0] == blocks[2].header


def test_raw_header_bytes_accepted_as_blocks():
    reporter = HeaderReporter(FakeBabylon(), 5, _policy())
    msgs = reporter.header_msgs_to_submit("s", [GENESIS_HEADER])
    assert msgs == [MsgInsertHeaders("s", (GENESIS_HEADER,))]


def test_successful_submission_updates_metrics():
    metrics = ReporterMetrics()
    metrics.seconds_since_last_header_gauge.set(42)
    reporter = HeaderReporter(FakeBabylon(), 5, _policy(), metrics)
    assert reporter.process_headers("s", [Block(GENESIS_HEADER)]) == 1
    assert metrics.successful_headers_counter.value == 1
    assert metrics.seconds_since_last_header_gauge.value == 0
    assert metrics.new_reported_header_gauge_vec.with_label_values(GENESIS_HASH).value > 0


def test_unrecoverable_insert_error_fails_and_counts():
    metrics = ReporterMetrics()
    client = FakeBabylon(insert_errors=[HeaderParentDoesNotExistError("no parent")])
    reporter = HeaderReporter(client, 5, _policy(), metrics)
    rng = random.Random(3)
    with pytest.raises(HeaderSubmissionError):
        reporter.process_headers("s", _blocks(rng, 3))
    assert metrics.failed_headers_counter.value == 3
    assert metrics.successful_headers_counter.value == 0


def test_transient_insert_error_is_retried():
    client = FakeBabylon(insert_errors=[ConnectionError("down")])
    reporter = HeaderReporter(client, 5, _policy())
    rng = random.Random(4)
    assert reporter.process_headers("s", _blocks(rng, 4)) == 4
    assert len(client.inserted) == 1


def test_duplicated_submission_counts_as_success():
    metrics = ReporterMetrics()
    client = FakeBabylon(insert_errors=[DuplicatedSubmissionError("dup")])
    reporter = HeaderReporter(client, 5, _policy(), metrics)
    rng = random.Random(5)
    assert reporter.process_headers("s", _blocks(rng, 2)) == 2
    assert metrics.successful_headers_counter.value == 2


def test_contains_failure_raises_submission_error():
    class Broken(FakeBabylon):
        def contains_btc_block(self, block_hash):
            raise TimeoutError("unreachable")

    reporter = HeaderReporter(Broken(), 5, _policy(attempts=2))
    with pytest.raises(HeaderSubmissionError):
        reporter.process_headers("s", [Block(GENESIS_HEADER)])


@pytest.mark.parametrize("n,size", [(0, 3), (1, 3), (3, 3), (10, 3), (10, 1), (5, 100)])
def test_chunk_by_preserves_items(n, size):
    items = list(range(n))
    chunks = chunk_by(items, size)
    assert [x for c in chunks for x in c] == items
    assert all(len(c) <= size for c in chunks)
    assert all(len(c) == size for c in chunks[:-1])


def test_chunk_by_empty_gives_one_empty_chunk():
    assert chunk_by([], 4) == [[]]


def test_chunk_by_rejects_non_positive_size():
    with pytest.raises(ValueError):
        chunk_by([1, 2], 0)


def test_reporter_rejects_non_positive_chunk_size():
    with pytest.raises(ValueError):
        HeaderReporter(FakeBabylon(), 0)