from __future__ import annotations

import threading
from typing import Any, Dict, Optional

from astral_projection.deadline import Deadline
from astral_projection.exceptions import UploadTimeoutError
from astral_projection.logger import logger
from astral_projection.mirror.archive import PatchedArchive
from astral_projection.mirror.manifest import dump_manifest
from astral_projection.mirror.paths import MirrorTarget
from astral_projection.storage.store import ObjectStore
from astral_projection.utils import write_text_atomically


class UploadPipeline:
    """
    Writes a mirrored item to the object store and then moves the local
    snapshot forward.

    The archive is written before the manifest: the mirrored manifest is what
    marks an item as mirrored, so it must never point at a missing archive.
    """

    def __init__(self, store: ObjectStore, timeout: float) -> None:
        self.store = store
        self.timeout = timeout

    def upload(
        self,
        archive: PatchedArchive,
        manifest_text: str,
        target: MirrorTarget,
        stop_event: Optional[threading.Event] = None,
    ) -> None:
        """
        Uploads the archive and the manifest under one deadline.

        Raises:
            UploadTimeoutError: If the uploads take longer than the timeout.
            CancelledError: If shutdown is requested in the meantime.
        """
        deadline = Deadline(self.timeout, stop_event)
        self.store.save_stream(target.archive_key, archive.stream, deadline, archive.size)
        self.store.save_text(target.manifest_key, manifest_text, deadline)

    def publish(
        self,
        file: str,
        archive: PatchedArchive,
        manifest_text: str,
        target: MirrorTarget,
        remote_document: Optional[Dict[str, Any]] = None,
        stop_event: Optional[threading.Event] = None,
    ) -> None:
        """
        Uploads an item, then replaces the local manifest with the origin
        document when one is given.

        The local file is only written after both uploads succeeded. A failed
        upload leaves it untouched, so the item is picked up again in the next
        cycle.

        Args:
            file (str): The local manifest file.
            archive (PatchedArchive): The archive to upload.
            manifest_text (str): The rewritten manifest.
            target (MirrorTarget): The storage keys.
            remote_document (Optional[Dict[str, Any]]): The new local snapshot,
                None when the local file is already current.
            stop_event (Optional[threading.Event]): The cycle cancellation.
        """
        try:
            self.upload(archive, manifest_text, target, stop_event)
        except UploadTimeoutError:
            logger.error(
                f"Failed to upload files to the storage due to timeout for: {file}"
            )
            raise

        logger.info(f"Uploaded {target.archive_key} and {target.manifest_key}")

        if remote_document is not None:
            write_text_atomically(file, dump_manifest(remote_document))
            logger.info(f"Local manifest updated for: {file}")
