from __future__ import annotations

import threading
from contextlib import AbstractContextManager
from dataclasses import dataclass, field
from typing import Callable, List, Optional

import requests

from astral_projection.config import Config
from astral_projection.exceptions import CancelledError
from astral_projection.logger import logger
from astral_projection.mirror.archive import ArchivePatcher, MissingEntryPolicy
from astral_projection.mirror.differ import MirrorDecision, decide, diff_manifest
from astral_projection.mirror.manifest import (
    dump_manifest,
    manifest_type_for,
    rewrite_manifest,
)
from astral_projection.mirror.paths import mirror_target
from astral_projection.mirror.sources import ensure_manifest_dir, find_manifest_files
from astral_projection.mirror.upload import UploadPipeline
from astral_projection.storage.credentials import open_store
from astral_projection.storage.store import ObjectStore

StoreFactory = Callable[[], AbstractContextManager]
SessionFactory = Callable[[], requests.Session]


@dataclass
class CycleReport:
    mirrored: List[str] = field(default_factory=list)
    skipped: List[str] = field(default_factory=list)
    failed: List[str] = field(default_factory=list)
    cancelled: List[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.failed

    def summary(self) -> str:
        return (
            f"{len(self.mirrored)} mirrored, {len(self.skipped)} up to date, "
            f"{len(self.failed)} failed, {len(self.cancelled)} not processed"
        )


class AstralWorker:
    """
    Keeps the mirrored copies of the tracked manifests and their archives in
    sync with the origin.

    One call to `process` is one cycle: every manifest under the root
    directory is handled in turn. A failing item is logged and the cycle goes
    on with the next one.
    """

    name = "AstralWorker"

    def __init__(
        self,
        config: Config,
        store_factory: Optional[StoreFactory] = None,
        session_factory: SessionFactory = requests.Session,
        create_dir: bool = True,
    ) -> None:
        self.config = config
        self.options = config.astral
        self.root = ensure_manifest_dir(self.options.dir, create_dir)
        self.store_factory = store_factory or (
            lambda: open_store(
                config.storage,
                with_progress_bar=self.options.progress,
                timeout=self.options.uploadTimeout,
            )
        )
        self.session_factory = session_factory

    def process(self, stop_event: Optional[threading.Event] = None) -> CycleReport:
        """
        Runs one synchronization cycle.

        Args:
            stop_event (Optional[threading.Event]): Stops the cycle before the
                next item, and aborts downloads and uploads in flight.

        Returns:
            CycleReport: What happened to every manifest file.
        """
        stop_event = stop_event or threading.Event()
        report = CycleReport()

        files = find_manifest_files(self.root)
        if not files:
            logger.info(f"No manifest files found in {self.root}")
            return report

        # HTTP session and store handle only live for this cycle
        with self.session_factory() as session, self.store_factory() as store:
            for index, file in enumerate(files):
                if stop_event.is_set():
                    logger.warning("Cancellation requested, stopping...")
                    report.cancelled.extend(files[index:])
                    break

                try:
                    mirrored = self.process_file(file, session, store, stop_event)
                except CancelledError:
                    logger.warning(f"Cancelled while processing: {file}")
                    report.cancelled.extend(files[index:])
                    break
                except Exception:
                    logger.exception(f"Failed to process: {file}")
                    report.failed.append(file)
                    continue

                if mirrored:
                    report.mirrored.append(file)
                else:
                    report.skipped.append(file)

        logger.info(f"Worker process completed: {self.name}, {report.summary()}")
        return report

    def process_file(
        self,
        file: str,
        session: requests.Session,
        store: ObjectStore,
        stop_event: Optional[threading.Event] = None,
    ) -> bool:
        """
        Mirrors one manifest if it changed upstream or was never mirrored.

        Returns:
            bool: True if the item was uploaded, False if it was up to date.
        """
        diff = diff_manifest(file, session, self.options.httpTimeout)
        remote = diff.remote

        target = mirror_target(remote.manifest.manifest, self.options.prefix)
        decision = decide(diff, store, target.manifest_key)
        if not decision.needs_mirror:
            return False

        manifest_text = dump_manifest(
            rewrite_manifest(remote.document, target.manifest_url, target.archive_url)
        )
        manifest_type = manifest_type_for(target.manifest_key)
        package_name = remote.manifest.name or diff.local.manifest.name

        patcher = ArchivePatcher(
            session,
            max_size=self.options.sizeLimit,
            missing_entry_policy=MissingEntryPolicy(self.options.missingEntryPolicy),
            timeout=self.options.httpTimeout,
            with_progress_bar=self.options.progress,
        )
        pipeline = UploadPipeline(store, self.options.uploadTimeout)

        with patcher.patch(
            remote.manifest.download,
            manifest_text,
            manifest_type,
            expected_name=package_name,
            stop_event=stop_event,
        ) as archive:
            pipeline.publish(
                file,
                archive,
                manifest_text,
                target,
                remote_document=(
                    remote.document if decision is MirrorDecision.CHANGED else None
                ),
                stop_event=stop_event,
            )

        logger.info(
            f"Updated the {manifest_type} named {remote.manifest.title or package_name} from: {file}"
        )
        return True
