import os
from typing import Any

import pytest

from astral_projection.exceptions import ConfigurationError
from astral_projection.mirror.sources import ensure_manifest_dir, find_manifest_files


def test_find_manifest_files(tmp_path: Any) -> None:
    (tmp_path / "systems").mkdir()
    (tmp_path / "modules" / "nested").mkdir(parents=True)
    (tmp_path / "systems" / "dnd5e.json").write_text("{}")
    (tmp_path / "modules" / "nested" / "dice.JSON").write_text("{}")
    (tmp_path / "modules" / "readme.txt").write_text("")
    (tmp_path / "top.json").write_text("{}")

    files = find_manifest_files(str(tmp_path))

    assert sorted(os.path.relpath(f, tmp_path) for f in files) == sorted(
        [
            os.path.join("systems", "dnd5e.json"),
            os.path.join("modules", "nested", "dice.JSON"),
            "top.json",
        ]
    )


def test_find_manifest_files_missing_dir(tmp_path: Any) -> None:
    with pytest.raises(ConfigurationError, match="does not exist"):
        find_manifest_files(str(tmp_path / "missing"))


def test_ensure_manifest_dir_creates(tmp_path: Any) -> None:
    path = ensure_manifest_dir(str(tmp_path / "manifests"))
    assert os.path.isdir(path)


def test_ensure_manifest_dir_without_create(tmp_path: Any) -> None:
    with pytest.raises(ConfigurationError):
        ensure_manifest_dir(str(tmp_path / "manifests"), create=False)


def test_ensure_manifest_dir_invalid(tmp_path: Any) -> None:
    with pytest.raises(ConfigurationError, match="empty"):
        ensure_manifest_dir("  ")

    file_path = tmp_path / "file"
    file_path.write_text("")
    with pytest.raises(ConfigurationError, match="not a directory"):
        ensure_manifest_dir(str(file_path))
