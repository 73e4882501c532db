"""Deciding how a newly announced BTC block relates to the cached chain tip."""

from __future__ import annotations

import logging
from enum import Enum
from typing import Optional

_log = logging.getLogger("vigilante.chain")


class BlockAction(Enum):
    """What to do with a newly announced block."""

    SKIP = "skip"
    CONNECT = "connect"


class BlockConnectionError(Exception):
    """A new block cannot be appended to the cache; a fresh bootstrap is needed.

    ``fork`` is set when the block does not extend the cached tip. Callers that
    keep a cache of recent blocks should then drop it before bootstrapping.
    """

    def __init__(self, message: str, *, fork: bool = False) -> None:
        super().__init__(message)
        self.fork = fork


def classify_new_block(
    tip_height: Optional[int],
    tip_hash: Optional[bytes],
    height: int,
    prev_hash: bytes,
) -> BlockAction:
    """Decide whether a block at ``height`` with parent ``prev_hash`` extends the tip.

    Returns SKIP for a block at or below the tip and CONNECT for the block right
    after it whose parent is the tip. Raises BlockConnectionError when the cache
    is empty, when blocks are missing in between, or when the block forks away.
    """
    if height < 0:
        raise ValueError(f"received negative block height: {height}")
    if tip_height is None or tip_hash is None:
        raise BlockConnectionError("cache is empty, restart bootstrap process")

    if tip_height >= height:
        _log.debug("the connecting block (height: %d) is too early, skipping the block", height)
        return BlockAction.SKIP

    if tip_height + 1 < height:
        raise BlockConnectionError(
            f"missing blocks, expected block height: {tip_height + 1}, got: {height}"
        )

    if bytes(prev_hash) != bytes(tip_hash):
        raise BlockConnectionError(
            "block does not connect to the cache, diff hash, bootstrap required", fork=True
        )

    return BlockAction.CONNECT