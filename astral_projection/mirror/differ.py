from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any

import requests

from astral_projection.logger import logger
from astral_projection.mirror.manifest import ParsedManifest, read_manifest
from astral_projection.storage.store import ObjectStore


class MirrorDecision(Enum):
    # The origin manifest differs from the local snapshot
    CHANGED = "changed"
    # Same content, but nothing has been mirrored yet
    FIRST_MIRROR = "first_mirror"
    UNCHANGED = "unchanged"

    @property
    def needs_mirror(self) -> bool:
        return self is not MirrorDecision.UNCHANGED


def documents_equal(a: Any, b: Any) -> bool:
    """
    Compares two parsed JSON values field by field.

    Unlike `==`, a boolean never equals a number, so `true` and `1` are
    different values. Integers and floats still compare by value, and key order
    does not count.
    """
    if isinstance(a, bool) or isinstance(b, bool):
        return type(a) is type(b) and a == b
    if isinstance(a, dict) and isinstance(b, dict):
        return a.keys() == b.keys() and all(documents_equal(a[k], b[k]) for k in a)
    if isinstance(a, list) and isinstance(b, list):
        return len(a) == len(b) and all(
            documents_equal(x, y) for x, y in zip(a, b)
        )
    if isinstance(a, (dict, list)) or isinstance(b, (dict, list)):
        return False
    return a == b


@dataclass
class ManifestDiff:
    file: str
    local: ParsedManifest
    remote: ParsedManifest

    @property
    def changed(self) -> bool:
        # Whitespace and key order do not count as a change
        return not documents_equal(self.local.document, self.remote.document)


def read_local_manifest(path: str) -> ParsedManifest:
    with open(path, "r", encoding="utf-8-sig") as f:
        text = f.read()
    return read_manifest(text, path)


def read_remote_manifest(
    url: str, session: requests.Session, timeout: float = 60
) -> ParsedManifest:
    """
    Fetches the current manifest from the origin.

    Raises:
        requests.RequestException: If the request fails.
        ManifestValidationError: If the response is not a valid manifest.
    """
    response = session.get(url, timeout=timeout)
    response.raise_for_status()
    return read_manifest(response.content.decode("utf-8-sig"), url)


def diff_manifest(
    path: str, session: requests.Session, timeout: float = 60
) -> ManifestDiff:
    """
    Loads the local snapshot of a manifest and the current origin version
    it points to.

    Args:
        path (str): The local manifest file.
        session (requests.Session): The HTTP session used for the origin.
        timeout (float): The request timeout in seconds.

    Returns:
        ManifestDiff: Both parsed documents.
    """
    local = read_local_manifest(path)
    remote = read_remote_manifest(local.manifest.manifest, session, timeout)
    return ManifestDiff(file=path, local=local, remote=remote)


def decide(diff: ManifestDiff, store: ObjectStore, manifest_key: str) -> MirrorDecision:
    """
    Decides whether a manifest has to be mirrored in this cycle.

    A changed manifest is always mirrored. An unchanged one is mirrored only
    if the mirrored manifest does not exist yet, so unchanged archives are not
    downloaded again on every cycle.
    """
    if diff.changed:
        logger.debug(f"Origin manifest changed for {diff.file}")
        return MirrorDecision.CHANGED

    if not store.exists(manifest_key):
        logger.debug(f"Mirrored manifest {manifest_key} does not exist yet")
        return MirrorDecision.FIRST_MIRROR

    logger.debug(f"Manifest is up to date, skipping: {diff.file}")
    return MirrorDecision.UNCHANGED
