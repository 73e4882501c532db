"""Queries to Babylon that the monitor needs, with retries."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import IntEnum
from typing import Any, Callable, Iterable, List, Optional, Protocol, Sequence, Tuple, TypeVar

from vigilante import retry
from vigilante.retry import RetryPolicy

_log = logging.getLogger("vigilante.monitor")

T = TypeVar("T")


class CheckpointStatus(IntEnum):
    """Lifecycle states of a raw checkpoint on Babylon."""

    ACCUMULATING = 0
    SEALED = 1
    SUBMITTED = 2
    CONFIRMED = 3
    FINALIZED = 4


@dataclass(frozen=True)
class ValidatorWithBlsKey:
    """A validator with its BLS public key and voting power."""

    validator_address: str
    bls_pub_key: bytes
    voting_power: int


@dataclass(frozen=True)
class EpochInfo:
    """The validator set needed to verify the checkpoint of one epoch."""

    epoch_number: int
    validators: Tuple[ValidatorWithBlsKey, ...] = ()

    def __post_init__(self) -> None:
        object.__setattr__(self, "validators", tuple(self.validators))

    @property
    def total_voting_power(self) -> int:
        return sum(v.voting_power for v in self.validators)


class BabylonQueryClient(Protocol):
    """What the monitor needs from a Babylon node.

    ``raw_checkpoint`` returns an object with a ``status`` attribute,
    ``btc_header_chain_tip`` an object with ``height`` and ``hash_hex``, and
    ``bls_public_key_list`` entries with ``validator_address``,
    ``bls_pub_key_hex`` and ``voting_power``.
    """

    def start(self) -> None: ...

    def stop(self) -> None: ...

    def is_running(self) -> bool: ...

    def ended_epoch_btc_height(self, epoch: int) -> int: ...

    def reported_checkpoint_btc_height(self, checkpoint_id: str) -> int: ...

    def raw_checkpoint(self, epoch: int) -> Any: ...

    def btc_header_chain_tip(self) -> Any: ...

    def contains_btc_block(self, block_hash: bytes) -> bool: ...

    def current_epoch(self) -> int: ...

    def bls_public_key_list(self, epoch: int, pagination: Optional[Any] = None) -> Sequence[Any]: ...


def convert_bls_public_key_list(entries: Iterable[Any]) -> List[ValidatorWithBlsKey]:
    """Turn BLS key list entries with hex-encoded keys into validators."""
    result = []
    for entry in entries:
        try:
            key = bytes.fromhex(entry.bls_pub_key_hex)
        except ValueError as err:
            raise ValueError(f"invalid BLS public key hex {entry.bls_pub_key_hex!r}: {err}") from err
        result.append(ValidatorWithBlsKey(entry.validator_address, key, entry.voting_power))
    return result


class BabylonQuerier:
    """Wraps a Babylon query client, retrying each query under one policy."""

    def __init__(self, client: BabylonQueryClient, policy: Optional[RetryPolicy] = None) -> None:
        self.client = client
        self.policy = policy if policy is not None else RetryPolicy()

    def _query(self, what: str, func: Callable[[], T]) -> T:
        try:
            return retry.do(func, self.policy)
        except Exception as err:
            _log.debug("failed to query the %s: %s", what, err)
            raise

    def current_epoch(self) -> int:
        return self._query("current epoch", self.client.current_epoch)

    def raw_checkpoint(self, epoch: int) -> Any:
        return self._query("raw checkpoint", lambda: self.client.raw_checkpoint(epoch))

    def bls_public_key_list(self, epoch: int) -> Sequence[Any]:
        return self._query("BLS public key list", lambda: self.client.bls_public_key_list(epoch, None))

    def ended_epoch_btc_height(self, epoch: int) -> int:
        return self._query("ended epoch BTC height", lambda: self.client.ended_epoch_btc_height(epoch))

    def reported_checkpoint_btc_height(self, checkpoint_id: str) -> int:
        return self._query(
            "reported checkpoint BTC height",
            lambda: self.client.reported_checkpoint_btc_height(checkpoint_id),
        )

    def btc_header_chain_tip(self) -> Any:
        return self._query("BTC header chain tip", self.client.btc_header_chain_tip)

    def contains_btc_block(self, block_hash: bytes) -> bool:
        return self._query("contains BTC block", lambda: self.client.contains_btc_block(block_hash))

    def query_info_for_next_epoch(self, epoch: int) -> EpochInfo:
        """Fetch the validator set with BLS keys for verifying ``epoch``."""
        entries = self.bls_public_key_list(epoch)
        try:
            validators = convert_bls_public_key_list(entries)
        except ValueError as err:
            raise ValueError(f"failed to convert BLS key response set for epoch {epoch}: {err}") from err
        return EpochInfo(epoch, tuple(validators))

    def find_tip_confirmed_epoch(self) -> int:
        """The latest epoch whose checkpoint is confirmed or finalized."""
        cur = self.current_epoch()
        _log.debug("current epoch number is %d", cur)
        while cur >= 1:
            ckpt = self.raw_checkpoint(cur - 1)
            if ckpt.status in (CheckpointStatus.CONFIRMED, CheckpointStatus.FINALIZED):
                return cur - 1
            cur -= 1
        raise LookupError("cannot find a confirmed or finalized epoch from Babylon")