from __future__ import annotations

import copy
import json
import os
import posixpath
import shutil
import tempfile
import threading
import zipfile
from contextlib import contextmanager
from dataclasses import dataclass
from enum import Enum
from typing import BinaryIO, Generator, List, Optional

import requests

from astral_projection.constants import MANIFEST_TYPES
from astral_projection.exceptions import ArchiveError, ManifestEntryNotFoundError
from astral_projection.logger import logger
from astral_projection.utils import download_url, format_size


class MissingEntryPolicy(str, Enum):
    # Discard the download and fail the item
    FAIL = "fail"
    # Upload the archive unmodified
    UPLOAD = "upload"


@dataclass
class PatchedArchive:
    stream: BinaryIO
    size: int
    replaced_entries: int

    @property
    def patched(self) -> bool:
        return self.replaced_entries > 0


def _entry_package_name(zf: zipfile.ZipFile, info: zipfile.ZipInfo) -> Optional[str]:
    try:
        document = json.loads(zf.read(info).decode("utf-8-sig"))
    except (ValueError, UnicodeDecodeError):
        return None
    return document.get("name") if isinstance(document, dict) else None


def find_manifest_entries(
    zf: zipfile.ZipFile, manifest_type: str, expected_name: Optional[str] = None
) -> List[str]:
    """
    Finds the metadata entries of an archive.

    Every file entry named `<manifest_type>.json`, in any folder, matches.
    When there are several and some of them carry the expected package name,
    only those are returned.
    """
    entry_name = f"{manifest_type}.json"
    matches = [
        info
        for info in zf.infolist()
        if not info.is_dir() and posixpath.basename(info.filename) == entry_name
    ]

    if len(matches) > 1 and expected_name:
        named = [m for m in matches if _entry_package_name(zf, m) == expected_name]
        if named:
            matches = named

    return [info.filename for info in matches]


def patch_archive(
    source_path: str,
    target_path: str,
    manifest_text: str,
    manifest_type: str,
    expected_name: Optional[str] = None,
) -> int:
    """
    Writes a copy of an archive in which the metadata entries are replaced by
    the given manifest. All other entries keep their name, timestamp,
    attributes and compression method.

    Args:
        source_path (str): The downloaded archive.
        target_path (str): Where the patched copy is written.
        manifest_text (str): The new content of the metadata entries.
        manifest_type (str): Either "system" or "module".
        expected_name (Optional[str]): The package name, used when several
            metadata entries exist.

    Returns:
        int: The number of replaced entries.

    Raises:
        ArchiveError: If the archive cannot be read or rewritten.
    """
    if manifest_type not in MANIFEST_TYPES:
        raise ValueError(f"Unknown manifest type: {manifest_type}")

    data = manifest_text.encode("utf-8")
    try:
        with zipfile.ZipFile(source_path, "r") as src, zipfile.ZipFile(
            target_path, "w", allowZip64=True
        ) as dst:
            targets = set(find_manifest_entries(src, manifest_type, expected_name))
            dst.comment = src.comment

            for info in src.infolist():
                new_info = copy.copy(info)
                if info.filename in targets:
                    new_info.file_size = len(data)
                    dst.writestr(new_info, data)
                    logger.debug(f"Replaced archive entry {info.filename}")
                elif info.is_dir():
                    dst.writestr(new_info, b"")
                else:
                    with src.open(info) as s, dst.open(new_info, "w") as d:
                        shutil.copyfileobj(s, d)
    except (zipfile.BadZipFile, zipfile.LargeZipFile) as e:
        raise ArchiveError(f"Invalid archive: {e}") from e
    except (RuntimeError, NotImplementedError) as e:
        # Encrypted entries or unsupported compression methods
        raise ArchiveError(f"Unable to rewrite archive: {e}") from e

    return len(targets)


class ArchivePatcher:
    """
    Downloads origin archives and points their embedded manifest at the
    mirror.
    """

    def __init__(
        self,
        session: requests.Session,
        max_size: int = 0,
        missing_entry_policy: MissingEntryPolicy = MissingEntryPolicy.FAIL,
        timeout: float = 60,
        with_progress_bar: bool = False,
    ) -> None:
        self.session = session
        self.max_size = max_size
        self.missing_entry_policy = MissingEntryPolicy(missing_entry_policy)
        self.timeout = timeout
        self.with_progress_bar = with_progress_bar

    @contextmanager
    def patch(
        self,
        url: str,
        manifest_text: str,
        manifest_type: str,
        expected_name: Optional[str] = None,
        stop_event: Optional[threading.Event] = None,
    ) -> Generator[PatchedArchive, None, None]:
        """
        Downloads an archive and yields it, patched, as a stream ready to be
        uploaded. Temporary files are removed when the context exits.

        Args:
            url (str): The origin download URL.
            manifest_text (str): The rewritten manifest.
            manifest_type (str): Either "system" or "module".
            expected_name (Optional[str]): The package name.
            stop_event (Optional[threading.Event]): Aborts the download once set.

        Raises:
            ArchiveTooLargeError: If the archive exceeds the size limit.
            ArchiveError: If the archive is empty or unreadable.
            ManifestEntryNotFoundError: If no metadata entry exists and the
                policy is to fail.
        """
        with download_url(
            url,
            session=self.session,
            max_size=self.max_size,
            stop_event=stop_event,
            timeout=self.timeout,
            with_progress_bar=self.with_progress_bar,
        ) as downloaded:
            if os.path.getsize(downloaded) == 0:
                raise ArchiveError(f"Downloaded archive is empty: {url}")

            fd, patched_path = tempfile.mkstemp(suffix=".zip")
            os.close(fd)
            try:
                replaced = patch_archive(
                    downloaded, patched_path, manifest_text, manifest_type, expected_name
                )

                upload_path = patched_path
                if not replaced:
                    logger.warning(
                        f"Manifest file {manifest_type}.json not found in the archive from: {url}"
                    )
                    if self.missing_entry_policy is MissingEntryPolicy.FAIL:
                        raise ManifestEntryNotFoundError(
                            f"{manifest_type}.json not found in the archive from {url}"
                        )
                    upload_path = downloaded

                size = os.path.getsize(upload_path)
                logger.debug(f"Archive ready to be uploaded ({format_size(size)}): {url}")
                with open(upload_path, "rb") as stream:
                    yield PatchedArchive(
                        stream=stream, size=size, replaced_entries=replaced
                    )
            finally:
                os.remove(patched_path)
