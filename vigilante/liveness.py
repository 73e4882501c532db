"""Detection of censorship of checkpoints on Babylon (liveness attacks)."""

from __future__ import annotations

import dataclasses
import hashlib
import logging
import threading
from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple

from vigilante.metrics import MonitorMetrics
from vigilante.querier import BabylonQuerier

_log = logging.getLogger("vigilante.monitor")


class LivenessError(Exception):
    """A checkpoint failed the liveness check."""


class LivenessAttackError(LivenessError):
    """A checkpoint was reported too late, or not at all, on Babylon."""


class CheckpointNotReportedError(Exception):
    """Raised by a Babylon client when a checkpoint has not been reported yet."""


def min_btc_height(h1: int, h2: int) -> int:
    """The smaller of two BTC heights."""
    return h2 if h1 > h2 else h1


@dataclass
class CheckpointRecord:
    """A raw checkpoint found on BTC, with the BTC height where it first appeared."""

    epoch_num: int
    block_hash: bytes
    bitmap: bytes
    bls_multi_sig: bytes
    first_seen_btc_height: int

    @property
    def id(self) -> str:
        """Hex digest identifying the checkpoint itself."""
        digest = hashlib.sha256()
        digest.update(self.epoch_num.to_bytes(8, "big"))
        digest.update(self.block_hash)
        digest.update(self.bitmap)
        digest.update(self.bls_multi_sig)
        return digest.hexdigest()


def _not_reported(err: Optional[BaseException]) -> bool:
    while err is not None:
        if isinstance(err, CheckpointNotReportedError):
            return True
        err = err.__cause__
    return False


class LivenessChecker:
    """Keeps checkpoints seen on BTC and checks that Babylon reports them in time."""

    def __init__(
        self,
        querier: BabylonQuerier,
        max_live_btc_heights: int,
        interval: float = 100.0,
        metrics: Optional[MonitorMetrics] = None,
    ) -> None:
        if interval <= 0:
            raise ValueError("liveness check interval must be positive")
        self.querier = querier
        self.max_live_btc_heights = max_live_btc_heights
        self.interval = interval
        self.metrics = metrics
        self._checklist: Dict[str, CheckpointRecord] = {}
        self._lock = threading.Lock()

    @property
    def pending(self) -> Tuple[CheckpointRecord, ...]:
        """Checkpoints still awaiting a passed liveness check."""
        with self._lock:
            return tuple(self._checklist.values())

    def add(self, record: CheckpointRecord) -> None:
        """Track a checkpoint until it passes the liveness check."""
        copy = dataclasses.replace(record)
        with self._lock:
            self._checklist[copy.id] = copy

    def check_liveness(self, record: CheckpointRecord) -> None:
        """Raise if the checkpoint was not reported within the allowed BTC heights.

        The gap is measured from the lower of the height where the epoch ended
        on Babylon and the height where the checkpoint first appeared on BTC, to
        the light client height when it was reported or, if it was not, to the
        current light client tip.
        """
        epoch = record.epoch_num
        try:
            ended = self.querier.ended_epoch_btc_height(epoch)
        except Exception as err:
            raise LivenessError(
                f"the checkpoint at epoch {epoch} is submitted on BTC the epoch is not ended on Babylon: {err}"
            ) from err
        _log.debug("the epoch %d is ended at BTC height %d", epoch, ended)

        min_height = min_btc_height(ended, record.first_seen_btc_height)

        try:
            reported = self.querier.reported_checkpoint_btc_height(record.id)
        except Exception as err:
            if not _not_reported(err):
                raise LivenessError(
                    f"failed to query checkpoint of epoch {epoch} reported BTC height: {err}"
                ) from err
            _log.debug("the checkpoint of epoch %d has not been reported: %s", epoch, err)
            try:
                tip = self.querier.btc_header_chain_tip()
            except Exception as tip_err:
                raise LivenessError(
                    f"failed to query the current tip height of BTC light client: {tip_err}"
                ) from tip_err
            _log.debug("the current tip height of BTC light client is %d", tip.height)
            gap = tip.height - min_height
        else:
            gap = reported - min_height

        if gap < 0:
            raise LivenessError(f"the gap {gap} between two BTC heights should not be negative")
        if gap > self.max_live_btc_heights:
            raise LivenessAttackError(
                f"the gap BTC height is {gap}, larger than the threshold {self.max_live_btc_heights}"
            )

    def run_once(self) -> List[CheckpointRecord]:
        """Check every tracked checkpoint; drop those that pass, return those that fail."""
        failed = []
        for record in self.pending:
            try:
                self.check_liveness(record)
            except LivenessError as err:
                _log.error("the checkpoint at epoch %d is detected being censored: %s", record.epoch_num, err)
                if self.metrics is not None:
                    self.metrics.liveness_attacks_counter.inc()
                failed.append(record)
                continue
            _log.debug("the checkpoint at epoch %d has passed the liveness check", record.epoch_num)
            with self._lock:
                self._checklist.pop(record.id, None)
        return failed

    def run(self, stop_event: threading.Event) -> None:
        """Check liveness every ``interval`` seconds until ``stop_event`` is set."""
        _log.info("liveness checker is started, checking liveness every %s seconds", self.interval)
        while not stop_event.wait(self.interval):
            _log.debug("next liveness check is in %s seconds", self.interval)
            self.run_once()
        _log.info("the liveness checker is stopped")