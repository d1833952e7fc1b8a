import io
import json
import os
import tempfile
import zipfile
from typing import Any

import pytest

from astral_projection.exceptions import (
    ArchiveError,
    ArchiveTooLargeError,
    ManifestEntryNotFoundError,
)
from astral_projection.mirror.archive import (
    ArchivePatcher,
    MissingEntryPolicy,
    find_manifest_entries,
    patch_archive,
)

URL = "https://origin/system.zip"
NEW_MANIFEST = '{\n  "name": "dnd5e",\n  "manifest": "https://m/origin/system.json"\n}'


@pytest.fixture
def temp_dir(tmp_path: Any, monkeypatch: pytest.MonkeyPatch) -> Any:
    d = tmp_path / "tmp"
    d.mkdir()
    monkeypatch.setattr(tempfile, "tempdir", str(d))
    return d


def test_patch_archive_replaces_metadata_entry(
    tmp_path: Any, make_zip: Any, unzip: Any
) -> None:
    source = tmp_path / "source.zip"
    source.write_bytes(
        make_zip(
            {
                "dnd5e/system.json": '{"name": "dnd5e", "manifest": "https://origin"}',
                "dnd5e/module.json": "untouched",
                "dnd5e/lang/en.json": '{"hello": "world"}',
                "dnd5e/icons/": "",
            }
        )
    )
    target = tmp_path / "target.zip"

    replaced = patch_archive(str(source), str(target), NEW_MANIFEST, "system")

    assert replaced == 1
    entries = unzip(target.read_bytes())
    assert entries["dnd5e/system.json"] == NEW_MANIFEST.encode("utf-8")
    assert entries["dnd5e/module.json"] == b"untouched"
    assert entries["dnd5e/lang/en.json"] == b'{"hello": "world"}'
    assert "dnd5e/icons/" in entries


def test_patch_archive_keeps_entry_metadata(tmp_path: Any) -> None:
    buf = io.BytesIO()
    with zipfile.ZipFile(buf, "w") as zf:
        info = zipfile.ZipInfo("module.json", date_time=(2020, 5, 17, 10, 0, 0))
        info.compress_type = zipfile.ZIP_STORED
        zf.writestr(info, "{}")
        zf.writestr("scripts/main.js", "console.log(1)", compress_type=zipfile.ZIP_DEFLATED)
        zf.comment = b"packed"
    source = tmp_path / "source.zip"
    source.write_bytes(buf.getvalue())
    target = tmp_path / "target.zip"

    assert patch_archive(str(source), str(target), "{}", "module") == 1

    with zipfile.ZipFile(target) as zf:
        assert zf.comment == b"packed"
        assert zf.getinfo("module.json").date_time == (2020, 5, 17, 10, 0, 0)
        assert zf.getinfo("module.json").compress_type == zipfile.ZIP_STORED
        assert zf.getinfo("scripts/main.js").compress_type == zipfile.ZIP_DEFLATED
        assert zf.read("scripts/main.js") == b"console.log(1)"


def test_patch_archive_without_metadata_entry(tmp_path: Any, make_zip: Any) -> None:
    source = tmp_path / "source.zip"
    source.write_bytes(make_zip({"dnd5e/template.json": "{}"}))

    assert patch_archive(str(source), str(tmp_path / "t.zip"), "{}", "system") == 0


def test_patch_archive_invalid(tmp_path: Any) -> None:
    source = tmp_path / "source.zip"
    source.write_bytes(b"this is not a zip file")

    with pytest.raises(ArchiveError, match="Invalid archive"):
        patch_archive(str(source), str(tmp_path / "t.zip"), "{}", "system")

    with pytest.raises(ValueError, match="Unknown manifest type"):
        patch_archive(str(source), str(tmp_path / "t.zip"), "{}", "world")


def test_find_manifest_entries_prefers_expected_name(tmp_path: Any, make_zip: Any) -> None:
    data = make_zip(
        {
            "packs/dep/module.json": json.dumps({"name": "dep"}),
            "mymod/module.json": json.dumps({"name": "mymod"}),
        }
    )
    with zipfile.ZipFile(io.BytesIO(data)) as zf:
        assert find_manifest_entries(zf, "module", "mymod") == ["mymod/module.json"]
        assert len(find_manifest_entries(zf, "module")) == 2
        # Nothing carries the name, every candidate is kept
        assert len(find_manifest_entries(zf, "module", "other")) == 2


def test_patcher_yields_patched_stream(
    temp_dir: Any, fake_session: Any, make_zip: Any, unzip: Any
) -> None:
    session = fake_session({URL: make_zip({"system.json": "{}", "a.txt": "a"})})
    patcher = ArchivePatcher(session)

    with patcher.patch(URL, NEW_MANIFEST, "system", expected_name="dnd5e") as archive:
        data = archive.stream.read()
        assert archive.patched
        assert archive.size == len(data)

    assert unzip(data)["system.json"] == NEW_MANIFEST.encode("utf-8")
    assert os.listdir(temp_dir) == []


def test_patcher_fails_without_metadata_entry(
    temp_dir: Any, fake_session: Any, make_zip: Any
) -> None:
    session = fake_session({URL: make_zip({"module.json": "{}"})})
    patcher = ArchivePatcher(session, missing_entry_policy=MissingEntryPolicy.FAIL)

    with pytest.raises(ManifestEntryNotFoundError, match="system.json not found"):
        with patcher.patch(URL, NEW_MANIFEST, "system"):
            pytest.fail("nothing must be uploaded")

    assert os.listdir(temp_dir) == []


def test_patcher_uploads_unmodified_archive_by_policy(
    temp_dir: Any, fake_session: Any, make_zip: Any
) -> None:
    original = make_zip({"module.json": "{}"})
    session = fake_session({URL: original})
    patcher = ArchivePatcher(session, missing_entry_policy="upload")

    with patcher.patch(URL, NEW_MANIFEST, "system") as archive:
        assert not archive.patched
        assert archive.stream.read() == original

    assert os.listdir(temp_dir) == []


def test_patcher_size_limit(temp_dir: Any, fake_session: Any, make_zip: Any) -> None:
    data = make_zip({"system.json": "x" * 5000})
    session = fake_session({URL: data})
    patcher = ArchivePatcher(session, max_size=len(data) - 1)

    with pytest.raises(ArchiveTooLargeError):
        with patcher.patch(URL, NEW_MANIFEST, "system"):
            pass

    assert os.listdir(temp_dir) == []


def test_patcher_empty_download(temp_dir: Any, fake_session: Any) -> None:
    patcher = ArchivePatcher(fake_session({URL: b""}))

    with pytest.raises(ArchiveError, match="empty"):
        with patcher.patch(URL, NEW_MANIFEST, "system"):
            pass

    assert os.listdir(temp_dir) == []


def test_patcher_removes_files_when_upload_fails(
    temp_dir: Any, fake_session: Any, make_zip: Any
) -> None:
    patcher = ArchivePatcher(fake_session({URL: make_zip({"system.json": "{}"})}))

    with pytest.raises(RuntimeError, match="upload failed"):
        with patcher.patch(URL, NEW_MANIFEST, "system"):
            raise RuntimeError("upload failed")

    assert os.listdir(temp_dir) == []
