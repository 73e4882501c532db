"""Finding BTC headers that Babylon lacks and submitting them in chunks."""

from __future__ import annotations

import hashlib
import logging
from dataclasses import dataclass
from typing import Any, List, Optional, Protocol, Sequence, Tuple, TypeVar

from vigilante import retry
from vigilante.metrics import ReporterMetrics
from vigilante.retry import RetryPolicy

_log = logging.getLogger("vigilante.reporter")

T = TypeVar("T")


def chunk_by(items: Sequence[T], size: int) -> List[List[T]]:
    """Split ``items`` into consecutive chunks of at most ``size``.

    An empty sequence gives a single empty chunk.
    """
    if size <= 0:
        raise ValueError("chunk size must be positive")
    items = list(items)
    chunks = [items[start:start + size] for start in range(0, len(items), size)]
    return chunks or [[]]


def _header_bytes(block: Any) -> bytes:
    return bytes(getattr(block, "header", block))


def _block_hash(header: bytes) -> bytes:
    return hashlib.sha256(hashlib.sha256(header).digest()).digest()


def _hash_string(block_hash: bytes) -> str:
    return block_hash[::-1].hex()


@dataclass(frozen=True)
class MsgInsertHeaders:
    """A request to insert serialized BTC headers into Babylon's light client."""

    signer: str
    headers: Tuple[bytes, ...]

    def __post_init__(self) -> None:
        object.__setattr__(self, "headers", tuple(bytes(h) for h in self.headers))


class HeaderSubmissionError(Exception):
    """Headers could not be found or submitted."""


class BabylonClient(Protocol):
    """What the reporter needs from a Babylon node."""

    def must_get_addr(self) -> str: ...

    def get_config(self) -> Any: ...

    def btc_checkpoint_params(self) -> Any: ...

    def insert_headers(self, msg: MsgInsertHeaders) -> Any: ...

    def contains_btc_block(self, block_hash: bytes) -> bool: ...

    def btc_header_chain_tip(self) -> Any: ...

    def btc_base_header(self) -> Any: ...

    def insert_btc_spv_proof(self, msg: Any) -> Any: ...

    def stop(self) -> None: ...


class HeaderReporter:
    """Reports BTC headers that Babylon's light client does not hold yet.

    Blocks are objects with a ``header`` attribute holding the 80-byte
    serialized header, or the header bytes themselves.
    """

    def __init__(
        self,
        client: BabylonClient,
        max_headers_in_msg: int,
        policy: Optional[RetryPolicy] = None,
        metrics: Optional[ReporterMetrics] = None,
    ) -> None:
        if max_headers_in_msg <= 0:
            raise ValueError("max_headers_in_msg must be positive")
        self.client = client
        self.max_headers_in_msg = max_headers_in_msg
        self.policy = policy if policy is not None else RetryPolicy()
        self.metrics = metrics

    def header_msgs_to_submit(self, signer: str, blocks: Sequence[Any]) -> List[MsgInsertHeaders]:
        """Messages for every header from the first one Babylon does not contain."""
        headers = [_header_bytes(b) for b in blocks]
        start = None
        for index, header in enumerate(headers):
            block_hash = _block_hash(header)
            contains = retry.do(lambda: self.client.contains_btc_block(block_hash), self.policy)
            if not contains:
                start = index
                break

        if start is None:
            _log.info("All headers are duplicated, no need to submit")
            return []

        return [
            MsgInsertHeaders(signer, tuple(chunk))
            for chunk in chunk_by(headers[start:], self.max_headers_in_msg)
        ]

    def submit_header_msg(self, msg: MsgInsertHeaders) -> None:
        """Submit one message, with retries, and update the metrics."""
        try:
            res = retry.do(lambda: self.client.insert_headers(msg), self.policy)
        except Exception as err:
            if self.metrics is not None:
                self.metrics.failed_headers_counter.add(float(len(msg.headers)))
            raise HeaderSubmissionError(f"failed to submit headers: {err}") from err

        _log.info(
            "Successfully submitted %d headers to Babylon with response code %s",
            len(msg.headers),
            getattr(res, "code", None),
        )
        if self.metrics is not None:
            self.metrics.successful_headers_counter.add(float(len(msg.headers)))
            self.metrics.seconds_since_last_header_gauge.set(0)
            for header in msg.headers:
                self.metrics.new_reported_header_gauge_vec.with_label_values(
                    _hash_string(_block_hash(header))
                ).set_to_current_time()

    def process_headers(self, signer: str, blocks: Sequence[Any]) -> int:
        """Submit the headers Babylon lacks; return how many were submitted."""
        try:
            msgs = self.header_msgs_to_submit(signer, blocks)
        except Exception as err:
            raise HeaderSubmissionError(f"failed to find headers to submit: {err}") from err

        if not msgs:
            _log.info("No new headers to submit")
            return 0

        submitted = 0
        for msg in msgs:
            self.submit_header_msg(msg)
            submitted += len(msg.headers)
        return submitted