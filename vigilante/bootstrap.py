"""Checks run while the reporter bootstraps against Babylon's BTC light client."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Mapping

from vigilante.headers import BabylonClient, _block_hash, _hash_string, _header_bytes

_log = logging.getLogger("vigilante.reporter")


class InconsistentChainError(Exception):
    """The BTC main chain disagrees with Babylon's header chain at a confirmed height."""


@dataclass(frozen=True)
class ConsistencyCheckInfo:
    """Outcome of a consistency check: Babylon's tip and where syncing resumes."""

    bbn_latest_block_height: int
    start_sync_height: int


def _check_non_negative(**values: int) -> None:
    for name, value in values.items():
        if value < 0:
            raise ValueError(f"{name} must not be negative, got {value}")


def consistency_check_height(tip_height: int, base_height: int, confirmation_depth: int) -> int:
    """The height ``max(tip - k, base)`` whose block both chains must agree on."""
    _check_non_negative(
        tip_height=tip_height, base_height=base_height, confirmation_depth=confirmation_depth
    )
    if tip_height >= base_height + confirmation_depth:
        return tip_height - confirmation_depth
    return base_height


def cache_base_height(
    tip_height: int, base_height: int, confirmation_depth: int, finalization_timeout: int
) -> int:
    """The first BTC height to cache: ``T - k - w + 1``, but never below the base."""
    _check_non_negative(
        tip_height=tip_height,
        base_height=base_height,
        confirmation_depth=confirmation_depth,
        finalization_timeout=finalization_timeout,
    )
    if tip_height > base_height + confirmation_depth + finalization_timeout:
        return tip_height - confirmation_depth - finalization_timeout + 1
    return base_height


def check_consistency(
    client: BabylonClient, blocks_by_height: Mapping[int, Any], confirmation_depth: int
) -> ConsistencyCheckInfo:
    """Check that the k-deep block of Babylon's header chain is on the BTC main chain.

    ``blocks_by_height`` maps BTC heights to cached blocks (objects with a
    ``header`` attribute, or the serialized headers). Raises LookupError when
    the block to check is not cached and InconsistentChainError when Babylon
    does not contain it.
    """
    tip = client.btc_header_chain_tip()
    base = client.btc_base_header()
    height = consistency_check_height(tip.height, base.height, confirmation_depth)

    try:
        block = blocks_by_height[height]
    except KeyError:
        raise LookupError(
            f"cannot find the {height}-th block of BBN header chain in BTC cache "
            "for initial consistency check"
        ) from None

    block_hash = _block_hash(_header_bytes(block))
    hash_str = _hash_string(block_hash)
    _log.debug("block for consistency check: height %d, hash %s", height, hash_str)

    # Headers are hash-chained, so a block Babylon holds sits at the same height there.
    if not client.contains_btc_block(block_hash):
        raise InconsistentChainError(
            "BTC main chain is inconsistent with BBN header chain: "
            f"k-deep block in BBN header chain: {hash_str}"
        )

    return ConsistencyCheckInfo(bbn_latest_block_height=tip.height, start_sync_height=height + 1)


def btc_caught_up(btc_height: int, bbn_height: int) -> bool:
    """Whether the BTC chain is non-empty and no shorter than Babylon's header chain."""
    return btc_height > 0 and btc_height >= bbn_height