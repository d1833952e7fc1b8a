from __future__ import annotations

from typing import NamedTuple
from urllib.parse import quote, unquote, urlsplit

from astral_projection.constants import ARCHIVE_SUFFIX
from astral_projection.exceptions import MirrorPathError

DEFAULT_PORTS = {"http": 80, "https": 443, "ftp": 21}


class MirrorPath(NamedTuple):
    manifest_key: str
    archive_key: str


class MirrorTarget(NamedTuple):
    manifest_key: str
    archive_key: str
    manifest_url: str
    archive_url: str


def derive_mirror_path(url: str) -> MirrorPath:
    """
    Turns an origin manifest URL into the storage keys of the mirrored
    manifest and archive.

    The scheme, user info, query string and fragment are dropped, the host is
    lowercased, a non-default port is kept and the path is percent-decoded.
    The result only depends on the URL, so the same manifest always lands on
    the same keys.

    A port is only dropped when it is the default of the URL's own scheme:
    `https://h:443/x` maps to `h/x`, but `http://h:443/x` maps to `h:443/x`.

    Args:
        url (str): An absolute URL.

    Returns:
        MirrorPath: The manifest key and the archive key.

    Raises:
        MirrorPathError: If the URL is not absolute or its port is invalid.

    Example:
        >>> derive_mirror_path("https://example.com/a%20b/system.json?v=2")
        MirrorPath(manifest_key='example.com/a b/system.json', archive_key='example.com/a b/system.json.zip')
    """
    try:
        parts = urlsplit(url)
        port = parts.port
    except ValueError as e:
        raise MirrorPathError(f"URL is invalid: {url}") from e

    if not parts.scheme or not parts.hostname:
        raise MirrorPathError(f"URL is not absolute: {url}")

    host = parts.hostname
    if ":" in host:
        host = f"[{host}]"
    if port is not None and port != DEFAULT_PORTS.get(parts.scheme.lower()):
        host = f"{host}:{port}"

    path = unquote(parts.path) or "/"
    if not path.startswith("/"):
        path = f"/{path}"

    manifest_key = f"{host}{path}"
    return MirrorPath(manifest_key, f"{manifest_key}{ARCHIVE_SUFFIX}")


def public_url(prefix: str, key: str) -> str:
    return f"{prefix}{quote(key, safe='/:[]@')}"


def mirror_target(url: str, prefix: str) -> MirrorTarget:
    """
    Derives the storage keys of a manifest URL together with the public URLs
    the mirrored files are served from.
    """
    manifest_key, archive_key = derive_mirror_path(url)
    return MirrorTarget(
        manifest_key=manifest_key,
        archive_key=archive_key,
        manifest_url=public_url(prefix, manifest_key),
        archive_url=public_url(prefix, archive_key),
    )
