from __future__ import annotations

import concurrent.futures
import threading
import time
from typing import Callable, Iterable, Optional, Set, Tuple

from astral_projection.exceptions import CancelledError, UploadTimeoutError

Futures = Set[concurrent.futures.Future]


class Deadline:
    """
    A time budget for one operation that also follows an outer cancellation
    event. Whichever fires first wins.

    Long running operations call `check` between steps (for example between
    two multipart upload parts) so that they unwind promptly.
    """

    # Upper bound of a single blocking wait, so cancellation is noticed
    poll_interval = 0.25

    def __init__(
        self,
        timeout: float,
        cancel_event: Optional[threading.Event] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.timeout = timeout
        self._clock = clock
        self._expires_at = clock() + timeout
        self._cancel_event = cancel_event

    @property
    def cancelled(self) -> bool:
        return self._cancel_event is not None and self._cancel_event.is_set()

    def remaining(self) -> float:
        return max(0.0, self._expires_at - self._clock())

    def expired(self) -> bool:
        return self.cancelled or self.remaining() <= 0

    def check(self, operation: str = "operation") -> None:
        """
        Raises if the operation must stop now.

        Raises:
            CancelledError: If the outer cancellation event is set.
            UploadTimeoutError: If the time budget is used up.
        """
        if self.cancelled:
            raise CancelledError(f"{operation} cancelled")
        if self.remaining() <= 0:
            raise UploadTimeoutError(f"{operation} timed out after {self.timeout}s")

    def wait(
        self,
        futures: Iterable[concurrent.futures.Future],
        operation: str = "operation",
        return_when: str = concurrent.futures.ALL_COMPLETED,
    ) -> Tuple[Futures, Futures]:
        """
        Waits for futures like `concurrent.futures.wait`, but never past the
        deadline and never after cancellation.

        Futures still running when this raises are left alone; the caller
        decides whether to abandon them.

        Raises:
            CancelledError: If the outer cancellation event is set first.
            UploadTimeoutError: If the time budget is used up first.
        """
        futures = list(futures)
        while True:
            self.check(operation)
            done, not_done = concurrent.futures.wait(
                futures,
                timeout=min(self.remaining(), self.poll_interval),
                return_when=return_when,
            )
            if not not_done:
                return done, not_done
            if done and return_when == concurrent.futures.FIRST_COMPLETED:
                return done, not_done
