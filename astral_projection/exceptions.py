"""Error types raised by the mirror.

Convention:
- ``ConfigurationError`` is fatal and only raised at startup.
- Validation errors (``ManifestValidationError``, ``MirrorPathError``) and
  I/O errors (``ArchiveError``, ``UploadTimeoutError``) abort one item; the
  cycle goes on with the next one.
- ``ManifestEntryNotFoundError`` is the integrity warning raised when the
  archive carries no metadata entry to patch.
- ``CancelledError`` unwinds the current cycle once shutdown was requested.
"""

from __future__ import annotations


class AstralError(Exception):
    """Base class for all errors raised by this package."""


class ConfigurationError(AstralError):
    """Invalid configuration, root directory, schedule or credentials."""


class ManifestValidationError(AstralError, ValueError):
    """A manifest document is not parseable or lacks a required field."""


class MirrorPathError(AstralError, ValueError):
    """A URL cannot be turned into a mirror path."""


class ArchiveError(AstralError):
    """The downloaded archive is empty, unreadable or cannot be rewritten."""


class ArchiveTooLargeError(ArchiveError):
    """The downloaded archive exceeds the configured size limit."""


class ManifestEntryNotFoundError(ArchiveError):
    """No metadata entry matching the manifest type exists in the archive."""


class UploadTimeoutError(AstralError):
    """The upload deadline passed before both objects were written."""


class CancelledError(AstralError):
    """Shutdown was requested while work was in flight."""
