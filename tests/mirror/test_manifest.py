import json
from typing import Dict

import pytest

from astral_projection.exceptions import ManifestValidationError
from astral_projection.mirror.manifest import (
    dump_manifest,
    manifest_type_for,
    read_manifest,
    rewrite_manifest,
)


def test_read_manifest(system_manifest: Dict[str, str]) -> None:
    document = dict(system_manifest, compatibleCoreVersion="0.7.9")
    parsed = read_manifest(json.dumps(document), "test")

    assert parsed.document == document
    assert parsed.manifest.name == "dnd5e"
    assert parsed.manifest.manifest == "https://origin/system.json"
    assert parsed.manifest.download == "https://origin/system.zip"


def test_read_manifest_without_name_and_title() -> None:
    parsed = read_manifest(
        '{"manifest": "https://o/module.json", "download": "https://o/m.zip"}', "test"
    )
    assert parsed.manifest.name is None
    assert parsed.manifest.title is None


def test_invalid_json() -> None:
    with pytest.raises(ManifestValidationError, match="Invalid JSON in local.json"):
        read_manifest("{not json", "local.json")


def test_not_an_object() -> None:
    with pytest.raises(ManifestValidationError, match="not a JSON object"):
        read_manifest('["https://o/system.json"]', "test")


@pytest.mark.parametrize("field", ["manifest", "download"])
def test_missing_url(system_manifest: Dict[str, str], field: str) -> None:
    del system_manifest[field]
    with pytest.raises(ManifestValidationError, match="manifest/download"):
        read_manifest(json.dumps(system_manifest), "test")


@pytest.mark.parametrize("field", ["manifest", "download"])
def test_empty_url(system_manifest: Dict[str, str], field: str) -> None:
    system_manifest[field] = "  "
    with pytest.raises(ManifestValidationError):
        read_manifest(json.dumps(system_manifest), "test")


def test_manifest_type_for() -> None:
    assert manifest_type_for("origin/system.json") == "system"
    assert manifest_type_for("origin/SYSTEM.JSON") == "system"
    assert manifest_type_for("origin/module.json") == "module"
    assert manifest_type_for("origin/manifest.json") == "module"


def test_rewrite_manifest(system_manifest: Dict[str, str]) -> None:
    rewritten = rewrite_manifest(
        system_manifest, "https://m/origin/system.json", "https://m/origin/system.json.zip"
    )

    assert rewritten["manifest"] == "https://m/origin/system.json"
    assert rewritten["download"] == "https://m/origin/system.json.zip"
    assert rewritten["name"] == "dnd5e"
    assert list(rewritten) == list(system_manifest)
    # The origin document is left alone
    assert system_manifest["manifest"] == "https://origin/system.json"


def test_dump_manifest() -> None:
    text = dump_manifest({"name": "ü", "manifest": "a"})
    assert text == '{\n  "name": "ü",\n  "manifest": "a"\n}'
