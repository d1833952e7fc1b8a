from __future__ import annotations

from threading import Lock
from types import TracebackType
from typing import Any, Optional, Type, Union

from tqdm import tqdm


class ProgressBar:
    def __init__(self, message: str, total_size: int = 0) -> None:
        self.lock = Lock()
        self.progress_bar: Optional[tqdm] = tqdm(
            total=total_size or None,
            unit="B",
            unit_scale=True,
            desc=message,
            leave=False,
        )

    def __enter__(self) -> "ProgressBar":
        return self

    def __exit__(
        self,
        exc_type: Optional[Type[BaseException]],
        exc: Optional[BaseException],
        tb: Optional[TracebackType],
    ) -> None:
        self.close_progress_bar()

    def advance_progress_bar(self, value: int) -> None:
        with self.lock:
            if self.progress_bar is not None:
                self.progress_bar.update(value)

    def close_progress_bar(self) -> None:
        with self.lock:
            if self.progress_bar is not None:
                self.progress_bar.close()
                self.progress_bar = None


class NullProgressBar:
    def __init__(self, *args: Any, **kwargs: Any) -> None:
        pass

    def __enter__(self) -> "NullProgressBar":
        return self

    def __exit__(self, *args: Any) -> None:
        pass

    def __getattr__(self, name: str) -> Any:
        return lambda *args, **kwargs: None


AnyProgressBar = Union[ProgressBar, NullProgressBar]


def create_progress_bar(
    message: str, total_size: int = 0, enabled: bool = False
) -> AnyProgressBar:
    if enabled:
        return ProgressBar(message, total_size)
    return NullProgressBar()
