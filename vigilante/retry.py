"""Retrying of calls to chain nodes, aware of errors that must not be retried."""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Callable, Iterator, Optional, TypeVar

T = TypeVar("T")


class UnrecoverableError(Exception):
    """An error that is unsafe to retry; the call fails at once."""


class ExpectedError(Exception):
    """An error that is safe to ignore; the call is treated as successful."""


class HeaderParentDoesNotExistError(UnrecoverableError):
    """The parent of a submitted BTC header is unknown to the light client."""


class ChainWithNotEnoughWorkError(UnrecoverableError):
    """The submitted header chain has less work than the current one."""


class InvalidHeaderError(UnrecoverableError):
    """The BTC light client rejected a header as invalid."""


class ProvidedHeaderDoesNotHaveAncestorError(UnrecoverableError):
    """A checkpoint proof refers to a header without a known ancestor."""


class CheckpointInvalidHeaderError(UnrecoverableError, ExpectedError):
    """The checkpoint module rejected a header; ignored rather than retried."""


class NoCheckpointsForPreviousEpochError(UnrecoverableError):
    """No checkpoint exists for the epoch before the submitted one."""


class InvalidCheckpointProofError(UnrecoverableError):
    """The submitted checkpoint proof is invalid."""


class BlsPrivKeyDoesNotExistError(UnrecoverableError):
    """No BLS private key is available for signing."""


class DuplicatedSubmissionError(ExpectedError):
    """The submission was already accepted earlier."""


def _error_chain(err: Optional[BaseException]) -> Iterator[BaseException]:
    seen: set[int] = set()
    while err is not None and id(err) not in seen:
        seen.add(id(err))
        yield err
        err = err.__cause__


def is_unrecoverable(err: BaseException) -> bool:
    """Whether the error, or an error it was raised from, must not be retried."""
    return any(isinstance(e, UnrecoverableError) for e in _error_chain(err))


def is_expected(err: BaseException) -> bool:
    """Whether the error, or an error it was raised from, can be ignored."""
    return any(isinstance(e, ExpectedError) for e in _error_chain(err))


@dataclass
class RetryPolicy:
    """How often and how long to wait between attempts.

    ``attempts`` of 0 retries without limit. Delays grow exponentially from
    ``delay`` seconds unless ``fixed`` is set; a positive ``max_delay`` caps them.
    """

    attempts: int = 10
    delay: float = 0.1
    max_delay: float = 0.0
    fixed: bool = False
    on_retry: Optional[Callable[[int, Exception], None]] = None
    sleep: Callable[[float], None] = field(default=time.sleep, repr=False)

    def __post_init__(self) -> None:
        if self.attempts < 0:
            raise ValueError("attempts must not be negative")
        if self.delay < 0 or self.max_delay < 0:
            raise ValueError("delays must not be negative")

    def _delay(self, attempt: int) -> float:
        wait = self.delay if self.fixed else self.delay * (1 << min(attempt, 62))
        if self.max_delay > 0:
            wait = min(wait, self.max_delay)
        return wait


def do(func: Callable[[], T], policy: Optional[RetryPolicy] = None) -> Optional[T]:
    """Call ``func`` until it succeeds, following ``policy``.

    Unrecoverable errors are raised immediately; expected errors end the
    retries and return None. Otherwise the last error is raised once the
    attempts are used up.
    """
    policy = policy if policy is not None else RetryPolicy()
    attempt = 0
    while True:
        try:
            return func()
        except Exception as err:
            if is_expected(err):
                return None
            if is_unrecoverable(err):
                raise
            if policy.on_retry is not None:
                policy.on_retry(attempt, err)
            if policy.attempts and attempt + 1 >= policy.attempts:
                raise
            policy.sleep(policy._delay(attempt))
            attempt += 1