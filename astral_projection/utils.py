from __future__ import annotations

import os
import tempfile
import threading
from contextlib import contextmanager
from io import StringIO
from typing import Any, Dict, Generator, Optional

import requests
from ruamel.yaml import YAML

from astral_projection.exceptions import ArchiveTooLargeError, CancelledError
from astral_projection.logger import logger
from astral_projection.storage.progress_bar import create_progress_bar

DOWNLOAD_CHUNK_SIZE = 64 * 1024


def to_yaml(obj: Dict[Any, Any]) -> str:
    """
    Converts an dictionary to a YAML string.

    Args:
        obj (dict): The dictionary to be converted.

    Returns:
        str: The YAML string.
    """
    yaml = YAML()
    yaml.indent(mapping=2, sequence=4, offset=2)
    buf = StringIO()
    yaml.dump(obj, buf)
    return buf.getvalue()


def format_size(size: float) -> str:
    """
    Formats a byte count for log messages.

    Example:
        >>> format_size(1536)
        '1.5 KiB'
    """
    for unit in ("B", "KiB", "MiB", "GiB"):
        if size < 1024 or unit == "GiB":
            return f"{size:.0f} {unit}" if unit == "B" else f"{size:.1f} {unit}"
        size /= 1024
    return f"{size:.1f} GiB"


def write_text_atomically(path: str, text: str) -> None:
    """
    Replaces the content of a text file so that readers never see a partially
    written file.

    Args:
        path (str): The file to write.
        text (str): The new content, written as UTF-8.
    """
    directory = os.path.dirname(os.path.abspath(path))
    fd, tmp_file = tempfile.mkstemp(dir=directory, suffix=".tmp")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(text)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_file, path)
    finally:
        if os.path.exists(tmp_file):
            os.remove(tmp_file)


@contextmanager
def download_url(
    url: str,
    session: Optional[requests.Session] = None,
    max_size: int = 0,
    stop_event: Optional[threading.Event] = None,
    timeout: float = 60,
    with_progress_bar: bool = False,
) -> Generator[str, None, None]:
    """
    Download a file from a URL and return the path to the downloaded file.

    The file is removed when the context exits, whether the body of the
    `with` block succeeded or not.

    Args:
        url (str): The URL of the file to be downloaded.
        session (Optional[requests.Session]): The session to download with.
        max_size (int): Size limit in bytes, 0 for no limit.
        stop_event (Optional[threading.Event]): Aborts the download once set.
        timeout (float): Connect and read timeout in seconds.
        with_progress_bar (bool): Show a progress bar while downloading.

    Returns:
        str: The path to the downloaded file.

    Raises:
        ArchiveTooLargeError: If the file is larger than `max_size`.
        CancelledError: If `stop_event` is set during the download.
        requests.RequestException: If the request fails.
    """
    fd, tmp_file = tempfile.mkstemp(suffix=".download")
    try:
        with os.fdopen(fd, "wb") as tf:
            get = session.get if session is not None else requests.get
            with get(url, stream=True, timeout=timeout) as r:
                r.raise_for_status()

                content_length = int(r.headers.get("content-length") or 0)
                if max_size and content_length > max_size:
                    raise ArchiveTooLargeError(
                        f"{url} is {format_size(content_length)}, over the limit of {format_size(max_size)}"
                    )

                downloaded = 0
                with create_progress_bar(
                    f"Downloading {url.split('/')[-1]}",
                    content_length,
                    with_progress_bar,
                ) as progress_bar:
                    for chunk in r.iter_content(chunk_size=DOWNLOAD_CHUNK_SIZE):
                        if stop_event is not None and stop_event.is_set():
                            raise CancelledError(f"Download of {url} cancelled")

                        downloaded += len(chunk)
                        if max_size and downloaded > max_size:
                            raise ArchiveTooLargeError(
                                f"{url} exceeds the limit of {format_size(max_size)}"
                            )
                        tf.write(chunk)
                        progress_bar.advance_progress_bar(len(chunk))

            tf.flush()
            os.fsync(tf.fileno())

        logger.debug(f"Downloaded {format_size(downloaded)} from {url}")
        yield tmp_file
    finally:
        os.remove(tmp_file)
