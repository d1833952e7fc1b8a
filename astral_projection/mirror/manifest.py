from __future__ import annotations

import json
from typing import Any, Dict, NamedTuple, Optional

from pydantic import BaseModel, ConfigDict, ValidationError, field_validator

from astral_projection.constants import MANIFEST_TYPE_MODULE, MANIFEST_TYPE_SYSTEM
from astral_projection.exceptions import ManifestValidationError
from astral_projection.logger import logger


class Manifest(BaseModel):
    """
    The fields of a package manifest the mirror relies on. Any other field is
    kept as is.

    Attributes:
        name (Optional[str]): The stable identifier of the package.
        title (Optional[str]): The display name of the package.
        manifest (str): The canonical URL of this manifest.
        download (str): The URL of the package archive.
    """

    model_config = ConfigDict(extra="allow")

    name: Optional[str] = None
    title: Optional[str] = None
    manifest: str
    download: str

    @field_validator("manifest", "download")
    def validate_url(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("must not be empty")
        return v


class ParsedManifest(NamedTuple):
    document: Dict[str, Any]
    manifest: Manifest


def read_manifest(text: str, source: str) -> ParsedManifest:
    """
    Parses a manifest document and checks its required fields.

    Args:
        text (str): The JSON text of the manifest.
        source (str): Where the text came from, used in error messages.

    Returns:
        ParsedManifest: The raw document and its validated view.

    Raises:
        ManifestValidationError: If the text is not a JSON object or the
            manifest/download URLs are missing or empty.
    """
    try:
        document = json.loads(text)
    except json.JSONDecodeError as e:
        raise ManifestValidationError(f"Invalid JSON in {source}: {e}") from e

    if not isinstance(document, dict):
        raise ManifestValidationError(f"Manifest in {source} is not a JSON object")

    try:
        manifest = Manifest.model_validate(document)
    except ValidationError as e:
        raise ManifestValidationError(
            f"Manifest in {source} does not include valid manifest/download URLs: {e}"
        ) from e

    logger.debug(
        f"Extracted URLs from {source}: {manifest.manifest}, {manifest.download}"
    )
    return ParsedManifest(document=document, manifest=manifest)


def manifest_type_for(manifest_key: str) -> str:
    """
    Infers the package type from the manifest file name.
    """
    if manifest_key.lower().endswith(f"{MANIFEST_TYPE_SYSTEM}.json"):
        return MANIFEST_TYPE_SYSTEM
    return MANIFEST_TYPE_MODULE


def rewrite_manifest(
    document: Dict[str, Any], manifest_url: str, download_url: str
) -> Dict[str, Any]:
    rewritten = dict(document)
    rewritten["manifest"] = manifest_url
    rewritten["download"] = download_url
    return rewritten


def dump_manifest(document: Dict[str, Any]) -> str:
    return json.dumps(document, indent=2, ensure_ascii=False)
